"""Configuration module.

Provides configuration management for the crawler, vector index and search.
"""

from .settings import (
    AppSettings,
    CrawlerSettings,
    IndexSettings,
    SearchSettings,
    EmbeddingProviderType,
    get_settings,
    reset_settings
)

__all__ = [
    'AppSettings',
    'CrawlerSettings',
    'IndexSettings',
    'SearchSettings',
    'EmbeddingProviderType',
    'get_settings',
    'reset_settings'
]
