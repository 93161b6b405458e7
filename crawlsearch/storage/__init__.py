"""
Frontier store and search engine access.
"""

from .frontier import FrontierStore
from .search_engine import PAGES_MAPPING, connect_search_engine, ensure_index

__all__ = ['FrontierStore', 'PAGES_MAPPING', 'connect_search_engine', 'ensure_index']
