import pytest

from crawlsearch.utils.config import (
    Config,
    apply_env_overrides,
    config_from_dict,
    load_config,
    validate_config,
)


def test_defaults_match_documented_retry_budget():
    config = Config()

    assert config.elasticsearch.connect_attempts == 5
    assert config.elasticsearch.connect_backoff == 5.0
    assert config.elasticsearch.health_check_attempts == 10
    assert config.elasticsearch.health_check_interval == 2.0
    assert config.elasticsearch.index_name == "pages"
    assert config.crawler.link_resolution == "seed_relative"
    validate_config(config)


def test_environment_overrides_endpoint_and_credentials():
    config = apply_env_overrides(Config(), {
        'ELASTICSEARCH_URL': 'http://es:9200',
        'ELASTICSEARCH_PASSWORD': 's3cret',
        'DATABASE_URL': 'postgresql://u:p@db/crawler',
        'ELASTICSEARCH_USERNAME': '',
    })

    assert config.elasticsearch.url == 'http://es:9200'
    assert config.elasticsearch.password == 's3cret'
    assert config.elasticsearch.username == 'elastic'
    assert config.database.dsn == 'postgresql://u:p@db/crawler'


def test_unknown_keys_are_rejected():
    with pytest.raises(ValueError, match="worker_count"):
        config_from_dict({'worker': {'worker_count': 3}})


@pytest.mark.parametrize("section,key,value", [
    ('elasticsearch', 'readiness_check', 'ping'),
    ('elasticsearch', 'connect_attempts', 0),
    ('crawler', 'link_resolution', 'magic'),
    ('worker', 'concurrency', 0),
])
def test_invalid_values_fail_validation(section, key, value):
    config = config_from_dict({section: {key: value}})
    with pytest.raises(ValueError):
        validate_config(config)


def test_load_config_reads_yaml_and_environment(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "crawler:\n"
        "  start_url: https://golang.org\n"
        "  link_resolution: page_relative\n"
        "elasticsearch:\n"
        "  url: http://localhost:9200\n"
        "  readiness_check: info\n"
    )
    monkeypatch.setenv('ELASTICSEARCH_URL', 'http://override:9200')
    monkeypatch.delenv('DATABASE_URL', raising=False)

    config = load_config(str(path))

    assert config.crawler.start_url == 'https://golang.org'
    assert config.crawler.link_resolution == 'page_relative'
    assert config.elasticsearch.readiness_check == 'info'
    assert config.elasticsearch.url == 'http://override:9200'
    assert config.worker.concurrency == 4


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "absent.yaml"))
