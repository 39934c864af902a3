"""Sources package.

Provides site configuration loading for the crawl and search pipelines.
"""

from .loader import (
    SEARCH_TYPES,
    SiteConfig,
    SiteLoader,
    SiteRepository
)

__all__ = [
    'SEARCH_TYPES',
    'SiteConfig',
    'SiteLoader',
    'SiteRepository'
]
