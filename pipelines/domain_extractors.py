"""Site-family extractors for portals whose listings defeat generic extraction.

A family extractor recognises a group of hosts and turns their listing markup
into structured line items. Extractors are registered in a
``SiteFamilyRegistry``; new families can be added without touching the
content extractor.
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from .policy import resolve_link

logger = logging.getLogger(__name__)


@dataclass
class LineItem:
    """One structured entry extracted from a listing page."""
    name: str
    text: str
    link: Optional[str] = None
    vacancies: Optional[str] = None
    salary: Optional[str] = None
    fields: Dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        """Render the item as a single content line."""
        parts = [self.name]
        if self.vacancies:
            parts.append(f"Vagas: {self.vacancies}")
        if self.salary:
            parts.append(f"Salário: {self.salary}")
        for key, value in self.fields.items():
            parts.append(f"{key}: {value}")
        if self.link:
            parts.append(f"Link: {self.link}")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class SiteFamilyExtractor:
    """Base class for host-specific listing extractors."""

    name = "generic"
    hosts: Sequence[str] = ()

    def matches(self, url: str) -> bool:
        host = urlparse(url).netloc.lower()
        if host.startswith("www."):
            host = host[4:]
        return any(host == h or host.endswith("." + h) for h in self.hosts)

    def extract_items(self, soup: BeautifulSoup, url: str) -> List[LineItem]:
        raise NotImplementedError


VACANCIES_RE = re.compile(r"(\d[\d.]*)\s+vagas?\b", re.IGNORECASE)
SALARY_RE = re.compile(r"R\$\s?\d{1,3}(?:\.\d{3})*(?:,\d{2})?")
EXAM_KEYWORDS = ("concurso", "edital", "cargo", "vaga", "inscri", "seleção", "selecao")

# Body-text patterns used when no listing container is recognised
EXAM_TEXT_PATTERNS = [
    re.compile(
        r"((?:POLÍCIA|POLICIA|TRIBUNAL|MINISTÉRIO|MINISTERIO|SECRETARIA|PREFEITURA|"
        r"AGÊNCIA|AGENCIA|BANCO|CÂMARA|CAMARA|ASSEMBLEIA|DEFENSORIA)[A-ZÁÀÂÃÉÊÍÓÔÕÚÇ0-9 \-/]{3,120})"
        r"([\s\S]{0,200}?(?:vagas?|salário|salario|edital))",
    ),
    re.compile(r"([A-ZÁÀÂÃÉÊÍÓÔÕÚÇ][A-ZÁÀÂÃÉÊÍÓÔÕÚÇ \-/]{5,}\s20\d{2})\s*\n([^\n]{0,200}\d+\s+vagas?[^\n]{0,200})"),
]


class ExamListingExtractor(SiteFamilyExtractor):
    """Public-exam organiser portals listing open and closed selection processes."""

    name = "exam_listing"
    hosts = (
        "cebraspe.org.br",
        "cespe.unb.br",
        "fgv.br",
        "vunesp.com.br",
        "cesgranrio.org.br",
        "fcc.org.br",
    )
    container_selectors = (
        ".concurso-item",
        ".card-concurso",
        "[data-concurso]",
        ".list-group-item",
        "article",
        'div[class*="concurso"]',
        'div[class*="card"]',
        "li",
    )
    title_selectors = "h1, h2, h3, h4, .title, .titulo, .nome, .nome-concurso"
    min_container_text = 50
    max_items = 50

    def _looks_like_exam(self, text: str) -> bool:
        lowered = text.lower()
        return len(text) > self.min_container_text and any(k in lowered for k in EXAM_KEYWORDS)

    def _item_from_container(self, element: Tag, url: str) -> Optional[LineItem]:
        text = " ".join(element.get_text(" ").split())
        if not self._looks_like_exam(text):
            return None

        heading = element.select_one(self.title_selectors)
        name = heading.get_text(" ", strip=True) if heading else ""
        if not name:
            first_line = next((line.strip() for line in element.get_text("\n").splitlines() if line.strip()), text)
            name = first_line[:120]

        anchor = element if element.name == "a" and element.get("href") else element.find("a", href=True)
        link = resolve_link(anchor["href"], url) if anchor is not None else None

        vacancies = VACANCIES_RE.search(text)
        salary = SALARY_RE.search(text)
        return LineItem(
            name=name,
            text=text,
            link=link or url,
            vacancies=vacancies.group(1) if vacancies else None,
            salary=salary.group(0) if salary else None,
        )

    def _items_from_text(self, soup: BeautifulSoup, url: str) -> List[LineItem]:
        body = soup.body or soup
        full_text = body.get_text("\n")
        items: List[LineItem] = []
        for pattern in EXAM_TEXT_PATTERNS:
            for match in pattern.finditer(full_text):
                if len(items) >= self.max_items:
                    return items
                snippet = " ".join(match.group(0).split())
                vacancies = VACANCIES_RE.search(snippet)
                salary = SALARY_RE.search(snippet)
                items.append(LineItem(
                    name=" ".join(match.group(1).split()),
                    text=snippet,
                    link=url,
                    vacancies=vacancies.group(1) if vacancies else None,
                    salary=salary.group(0) if salary else None,
                ))
            if items:
                break
        return items

    def extract_items(self, soup: BeautifulSoup, url: str) -> List[LineItem]:
        for selector in self.container_selectors:
            elements = soup.select(selector)
            if not elements:
                continue
            items = []
            seen = set()
            for element in elements:
                item = self._item_from_container(element, url)
                if item is None or item.text in seen:
                    continue
                seen.add(item.text)
                items.append(item)
                if len(items) >= self.max_items:
                    break
            if items:
                logger.debug(f"{self.name}: {len(items)} items via selector {selector!r} on {url}")
                return items

        items = self._items_from_text(soup, url)
        if items:
            logger.debug(f"{self.name}: {len(items)} items via text patterns on {url}")
        return items


class SiteFamilyRegistry:
    """Ordered collection of site-family extractors."""

    def __init__(self, extractors: Optional[Iterable[SiteFamilyExtractor]] = None):
        self._extractors: List[SiteFamilyExtractor] = list(extractors) if extractors is not None else []

    def register(self, extractor: SiteFamilyExtractor) -> None:
        self._extractors.append(extractor)

    def find(self, url: str) -> Optional[SiteFamilyExtractor]:
        for extractor in self._extractors:
            if extractor.matches(url):
                return extractor
        return None

    def __len__(self) -> int:
        return len(self._extractors)


def default_registry() -> SiteFamilyRegistry:
    return SiteFamilyRegistry([ExamListingExtractor()])


def render_items(items: Iterable[LineItem]) -> str:
    return "\n".join(item.render() for item in items)
