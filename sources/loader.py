"""Site configuration loader.

Sites that administrators registered for crawling live in a YAML file; each
entry says whether the site is active and which search types it serves.
The pipelines only read this configuration.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import yaml

from pipelines.policy import is_valid_url

logger = logging.getLogger(__name__)

SEARCH_TYPES = (
    "concurso_publico",
    "vestibular",
    "escola",
    "faculdade",
    "desenvolvimento_profissional",
    "outras",
)


@dataclass
class SiteConfig:
    """Configuration for one crawlable site."""
    id: str
    url: str
    name: str = ""
    is_active: bool = True
    search_types: Dict[str, bool] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.id:
            raise ValueError("Site id cannot be empty")
        if not is_valid_url(self.url):
            raise ValueError(f"Invalid site URL: {self.url}")
        unknown = set(self.search_types) - set(SEARCH_TYPES)
        if unknown:
            raise ValueError(f"Unknown search types: {', '.join(sorted(unknown))}")
        if not self.name:
            self.name = self.url

    @property
    def enabled_search_types(self) -> List[str]:
        return [search_type for search_type, enabled in self.search_types.items() if enabled]

    def serves(self, search_types: Iterable[str]) -> bool:
        enabled = set(self.enabled_search_types)
        return any(search_type in enabled for search_type in search_types)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteConfig":
        """Create SiteConfig from dictionary.

        ``search_types`` may be a mapping of type to enabled flag or a plain
        list of enabled types.
        """
        raw_types = data.get("search_types") or {}
        if isinstance(raw_types, list):
            raw_types = {search_type: True for search_type in raw_types}
        return cls(
            id=str(data["id"]),
            url=data["url"],
            name=data.get("name", ""),
            is_active=bool(data.get("is_active", True)),
            search_types={str(k): bool(v) for k, v in raw_types.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "name": self.name,
            "is_active": self.is_active,
            "search_types": dict(self.search_types),
        }


class SiteRepository(Protocol):
    def list_sites(self) -> List[SiteConfig]: ...

    def active_sites_for_types(self, search_types: Iterable[str]) -> List[SiteConfig]: ...


class SiteLoader:
    """Loads site configurations from a YAML file, reloading when it changes."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialize site loader.

        Args:
            config_path: YAML file with a top-level ``sites`` list
        """
        self.config_path = Path(config_path)
        self._cache: Optional[List[SiteConfig]] = None
        self._last_modified: float = 0.0

    def _read(self) -> List[SiteConfig]:
        with open(self.config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        sites = []
        for entry in data.get("sites") or []:
            try:
                sites.append(SiteConfig.from_dict(entry))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Invalid site configuration in {self.config_path}: {e}")
        return sites

    def list_sites(self) -> List[SiteConfig]:
        """Return every configured site, active or not."""
        if not self.config_path.exists():
            logger.warning(f"Site configuration not found: {self.config_path}")
            return []

        current_mtime = self.config_path.stat().st_mtime
        if self._cache is not None and self._last_modified >= current_mtime:
            return list(self._cache)

        try:
            sites = self._read()
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML file {self.config_path}: {e}")
            return []

        self._cache = sites
        self._last_modified = current_mtime
        logger.info(f"Loaded {len(sites)} site configurations from {self.config_path}")
        return list(sites)

    def get_site(self, site_id: str) -> Optional[SiteConfig]:
        for site in self.list_sites():
            if site.id == site_id:
                return site
        return None

    def active_sites_for_types(self, search_types: Iterable[str]) -> List[SiteConfig]:
        """Active sites enabling at least one of ``search_types``."""
        search_types = list(search_types)
        sites = [site for site in self.list_sites() if site.is_active and site.serves(search_types)]
        logger.debug(f"Found {len(sites)} active sites for types: {', '.join(search_types)}")
        return sites

    def sites_by_type(self) -> Dict[str, List[SiteConfig]]:
        """Group every site under each search type it enables."""
        grouped: Dict[str, List[SiteConfig]] = {}
        for site in self.list_sites():
            for search_type in site.enabled_search_types:
                grouped.setdefault(search_type, []).append(site)
        return grouped

    def reload_cache(self):
        """Clear cache to force a reload on next access."""
        self._cache = None
        self._last_modified = 0.0
        logger.info("Site configuration cache cleared")
