"""
Elasticsearch connection and index lifecycle management.

The connection manager builds an AsyncElasticsearch client and waits for
the cluster to report it can serve requests; the index manager makes sure
the pages index exists with the expected mapping before anything writes
to or reads from it.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from elasticsearch import ApiError, AsyncElasticsearch, TransportError

from ..exceptions import IndexSetupError, SearchEngineConnectionError
from ..utils.config import ElasticsearchConfig


logger = logging.getLogger(__name__)

DEFAULT_INDEX = "pages"

PAGES_MAPPING: Dict[str, Any] = {
    "properties": {
        "url": {"type": "text"},
        "title": {"type": "text"},
        "content": {"type": "text"},
    }
}

HEALTHY_STATUSES = ("green", "yellow")


def response_body(response: Any) -> Any:
    """Unwrap an ApiResponse into its decoded body."""
    return getattr(response, "body", response)


def error_status(exc: BaseException) -> Optional[int]:
    """HTTP status of an engine error, None for transport failures."""
    meta = getattr(exc, "meta", None)
    return getattr(meta, "status", None)


def error_detail(exc: BaseException) -> Any:
    """Structured error body when the engine sent one, else the message."""
    if isinstance(exc, ApiError) and exc.body:
        return exc.body
    return str(exc)


def error_type(exc: BaseException) -> Optional[str]:
    detail = error_detail(exc)
    if not isinstance(detail, dict):
        return None
    error = detail.get("error")
    if isinstance(error, dict):
        return error.get("type")
    return error


def build_client(settings: ElasticsearchConfig) -> AsyncElasticsearch:
    """Construct a client from configuration. Does not touch the network."""
    options: Dict[str, Any] = {"request_timeout": settings.request_timeout}

    if settings.username and settings.password:
        options["basic_auth"] = (settings.username, settings.password)

    # TLS options are rejected for plain http nodes
    if settings.url.startswith("https://"):
        options["verify_certs"] = settings.verify_certs
        if settings.ca_certs:
            options["ca_certs"] = settings.ca_certs

    return AsyncElasticsearch(hosts=[settings.url], **options)


async def wait_until_ready(client: AsyncElasticsearch, settings: ElasticsearchConfig):
    """
    Poll the cluster until it reports it can serve requests.

    In ``health`` mode the cluster health endpoint is polled up to
    ``health_check_attempts`` times and green or yellow is accepted. In
    ``info`` mode a single info call must return a version.

    Raises:
        SearchEngineConnectionError: readiness was never confirmed
    """
    if settings.readiness_check == "info":
        attempts = 1
    else:
        attempts = settings.health_check_attempts

    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            if settings.readiness_check == "info":
                info = response_body(await client.info())
                version = (info.get("version") or {}).get("number") if isinstance(info, dict) else None
                if version:
                    logger.info(f"Elasticsearch {version} is reachable")
                    return
                last_error = SearchEngineConnectionError("info response carried no version")
            else:
                health = response_body(await client.cluster.health())
                status = health.get("status") if isinstance(health, dict) else None
                if status in HEALTHY_STATUSES:
                    logger.info(f"Elasticsearch is healthy and ready (status={status})")
                    return
                last_error = SearchEngineConnectionError(f"cluster status is {status!r}")
                logger.warning(f"Elasticsearch not ready (health attempt {attempt}): status={status}")
        except (ApiError, TransportError) as e:
            last_error = e
            logger.warning(f"Error checking Elasticsearch health (attempt {attempt}): {e}")

        if attempt < attempts:
            await asyncio.sleep(settings.health_check_interval)

    raise SearchEngineConnectionError(
        f"Elasticsearch not ready after {attempts} readiness checks",
        attempts=attempts,
        cause=last_error,
    )


async def connect_search_engine(
    settings: ElasticsearchConfig,
    client_factory: Optional[Callable[[ElasticsearchConfig], AsyncElasticsearch]] = None,
) -> AsyncElasticsearch:
    """
    Return a client for a cluster that has passed its readiness check.

    Client construction and the readiness check are retried together up
    to ``connect_attempts`` times, ``connect_backoff`` seconds apart.

    Raises:
        SearchEngineConnectionError: the retry budget was exhausted; carries
            the last underlying cause
    """
    factory = client_factory or build_client
    attempts = settings.connect_attempts
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        logger.info(f"Connecting to Elasticsearch at {settings.url} (attempt {attempt}/{attempts})")

        try:
            client = factory(settings)
        except Exception as e:
            last_error = e
            logger.error(f"Error creating Elasticsearch client (attempt {attempt}): {e}")
        else:
            try:
                await wait_until_ready(client, settings)
            except SearchEngineConnectionError as e:
                last_error = e.cause or e
                logger.warning(f"Elasticsearch not ready after health checks (attempt {attempt})")
                await client.close()
            else:
                return client

        if attempt < attempts:
            await asyncio.sleep(settings.connect_backoff)

    raise SearchEngineConnectionError(
        f"Failed to connect to Elasticsearch after {attempts} attempts: {last_error}",
        attempts=attempts,
        cause=last_error,
    ) from last_error


async def ensure_index(
    client: AsyncElasticsearch,
    name: str = DEFAULT_INDEX,
    mapping: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Create the index with its mapping unless it already exists.

    Losing a creation race to another process counts as success.

    Returns:
        True if this call created the index

    Raises:
        IndexSetupError: existence could not be checked or creation failed
    """
    mapping = mapping or PAGES_MAPPING

    try:
        exists = await client.indices.exists(index=name)
    except (ApiError, TransportError) as e:
        raise IndexSetupError(f"Could not check index {name!r}: {e}", name, error_detail(e)) from e

    if exists:
        return False

    logger.info(f"Creating index {name!r}")
    try:
        await client.indices.create(index=name, mappings=mapping)
    except ApiError as e:
        if error_type(e) == "resource_already_exists_exception":
            logger.info(f"Index {name!r} was created concurrently")
            return False
        logger.error(f"Failed to create index {name!r}: {error_detail(e)}")
        raise IndexSetupError(f"Failed to create index {name!r}", name, error_detail(e)) from e
    except TransportError as e:
        raise IndexSetupError(f"Failed to create index {name!r}: {e}", name, str(e)) from e

    logger.info(f"Index {name!r} created")
    return True
