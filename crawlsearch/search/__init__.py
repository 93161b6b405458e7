"""
Search query service.
"""

from .service import SearchHit, SearchService

__all__ = ['SearchHit', 'SearchService']
