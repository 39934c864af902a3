"""Title-aware chunking for long structured documents.

Public notices, regulations and exam announcements are organised by
chapters, numbered sections and uppercase headings. This module splits such
text at its headings, one chunk per section, and records the heading level
and the parent section of every chunk. Text with no recognisable structure
goes through a forced semantic split, and as a last resort an even split by
lines (or by words when there are too few lines), so a long document never
ends up as one oversized chunk.
"""

import logging
import re
import string
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .models import Chunk, StructureHints

logger = logging.getLogger(__name__)

UPPER = "A-ZÁÀÂÃÉÊÍÓÔÕÚÜÇ"

PREAMBLE_TITLE = "Preâmbulo"

DEFAULT_SECTION_TITLES = [
    "Preâmbulo",
    "Informações do Concurso",
    "Das Inscrições",
    "Das Provas e Avaliação",
    "Do Resultado e Classificação",
    "Das Disposições Gerais",
    "Anexos e Complementos",
]

FUNCTION_WORDS = frozenset({
    "a", "o", "as", "os", "um", "uma", "uns", "umas",
    "de", "da", "do", "das", "dos", "em", "na", "no", "nas", "nos", "por", "para",
    "the", "of", "and", "to", "in", "for", "on",
})

SECTION_KEYWORDS = (
    "EDITAL", "CONCURSO", "SELEÇÃO", "PROCESSO SELETIVO",
    "REQUISITOS", "ATRIBUIÇÕES", "REMUNERAÇÃO", "SALÁRIO",
    "INSCRIÇÃO", "TAXA", "DOCUMENTAÇÃO", "CRONOGRAMA",
    "PROVA", "EXAME", "AVALIAÇÃO", "TESTE",
    "RESULTADO", "CLASSIFICAÇÃO", "CONVOCAÇÃO",
    "POSSE", "EXERCÍCIO", "LOTAÇÃO",
    "IMPUGNAÇÃO", "RECURSO", "QUESTIONAMENTO",
)

INFERENCE_KEYWORDS = (
    "EDITAL", "CONCURSO", "INSCRIÇÃO", "INSCRIÇAO", "PROVA", "RESULTADO", "CRONOGRAMA",
    "DISPOSIÇÃO", "DISPOSIÇÕES", "ANEXO", "REQUISITOS", "ATRIBUIÇÕES", "REMUNERAÇÃO",
    "CARGO", "VAGA", "SALÁRIO", "BENEFÍCIO",
)

DATE_RE = re.compile(r"^\d{4}[-/]\d{1,2}[-/]\d{1,2}|^\d{1,2}/\d{1,2}/\d{2,4}")
INLINE_DATE_RE = re.compile(r"\d{2}/\d{2}/\d{4}")
DECIMAL_RE = re.compile(r"^\d+,\d+|^\d+\.\d+\s*(%|$)")
PREPOSITION_RE = re.compile(rf"^(DOS?|DAS?|NOS?|NAS?)\s+[{UPPER}\s]{{3,}}", re.IGNORECASE)
SPECIAL_CHAR_RE = re.compile(r"[^\w\s\-()\[\]]")


@dataclass
class TitleMatch:
    """A line recognised as a heading."""
    title: str
    level: int
    pattern: str


def clean_title_text(text: str) -> str:
    """Strip dashes, leading numbering and structural prefixes from a heading."""
    text = re.sub(r"^[-–—]+", "", text.strip())
    text = re.sub(r"[-–—]+$", "", text).strip()
    text = re.sub(r"^\d+(\.\d+)*\.?\)?\s*", "", text)
    text = re.sub(r"^(CAPÍTULO|SEÇÃO|TÍTULO|ANEXO)\s+[IVXLC\d]*\s*[-–—:.]?\s*", "", text, flags=re.IGNORECASE)
    return text.strip()


def display_title(title: str) -> str:
    """Normalise spacing and capitalise each word for chunk labels."""
    title = re.sub(r"^[^\w\s]+|[^\w\s]+$", "", title.strip())
    return string.capwords(" ".join(title.split()).lower())


def passes_line_filter(line: str) -> bool:
    """Cheap rejection of lines that cannot be headings."""
    if len(line) < 3 or len(line) > 200:
        return False
    if DATE_RE.match(line) or DECIMAL_RE.match(line):
        return False
    if line[0].islower() and len(line) > 50:
        return False
    return True


def is_plausible_title(title: str) -> bool:
    """Reject heading candidates that look like data or running prose."""
    title = title.strip()
    if len(title) < 2 or len(title) > 150:
        return False
    digits = sum(ch.isdigit() for ch in title)
    if digits > len(title) * 0.3:
        return False
    if len(SPECIAL_CHAR_RE.findall(title)) > len(title) * 0.2:
        return False
    words = title.lower().split()
    common = sum(1 for word in words if word in FUNCTION_WORDS)
    if len(words) > 8 and common > len(words) * 0.4:
        return False
    return True


class TitlePattern:
    """One class of heading. Subclasses return a TitleMatch or None."""

    name = "pattern"
    level = 2

    def match(self, line: str) -> Optional[TitleMatch]:
        raise NotImplementedError

    def _result(self, title: str, level: Optional[int] = None) -> TitleMatch:
        return TitleMatch(title=title, level=self.level if level is None else level, pattern=self.name)


class RegexTitlePattern(TitlePattern):
    """Heading recognised by a single regular expression."""

    regex: re.Pattern = re.compile(r"$^")

    def match(self, line: str) -> Optional[TitleMatch]:
        m = self.regex.match(line)
        if not m:
            return None
        title = m.group("title") if "title" in m.groupdict() and m.group("title") else m.group(0)
        return self._result(title)


class ChapterPattern(RegexTitlePattern):
    name = "chapter"
    level = 1
    regex = re.compile(
        r"^(CAPÍTULO|CAPITULO|CHAPTER|TÍTULO|TITULO|PARTE|PART)\s+[IVXLC\d]+\b[\s\-–—:.]*(?P<title>.*)$",
        re.IGNORECASE,
    )


class SectionPattern(RegexTitlePattern):
    name = "section"
    level = 2
    regex = re.compile(
        r"^(SEÇÃO|SECAO|SECTION|ANEXO|ANNEX|APÊNDICE|APENDICE|APPENDIX)\b\s*[IVXLC\d]*\b[\s\-–—:.]*(?P<title>.*)$",
        re.IGNORECASE,
    )


class DecimalNumberingPattern(TitlePattern):
    """``1. Title`` is level 2, ``1.2 Title`` level 3, down to level 5."""

    name = "decimal"
    nested = re.compile(r"^(?P<number>\d{1,3}(?:\.\d{1,3}){1,3})\.?\s+(?P<title>\S.*)$")
    single = re.compile(r"^(?P<number>\d{1,3})[.)]\s*(?P<title>[^\d\s].*)$")

    def match(self, line: str) -> Optional[TitleMatch]:
        m = self.nested.match(line) or self.single.match(line)
        if not m:
            return None
        depth = m.group("number").count(".") + 1
        return self._result(m.group("title"), level=min(depth + 1, 5))


class KeywordPattern(RegexTitlePattern):
    name = "keyword"
    level = 2
    regex = re.compile(
        r"^(DISPOSIÇÕES?\s+(GERAIS|FINAIS|PRELIMINARES)|CRONOGRAMA|RECURSOS?|IMPUGNAÇÕES?"
        r"|INSCRIÇÕES?|PROVAS?|AVALIAÇÃO|RESULTADOS?|CLASSIFICAÇÃO|NOMEAÇÃO|HOMOLOGAÇÃO)\b(?!\s+(?-i:[a-z]))",
        re.IGNORECASE,
    )

    def match(self, line: str) -> Optional[TitleMatch]:
        if len(line) > 100:
            return None
        return super().match(line)


class PrepositionHeadingPattern(TitlePattern):
    """Uppercase headings such as ``DAS INSCRIÇÕES`` or ``DOS REQUISITOS``."""

    name = "preposition"
    level = 2
    regex = re.compile(rf"^(DOS?|DAS?|NOS?|NAS?|DES?)\s+[{UPPER}][{UPPER}\s\-,]{{2,}}$")

    def match(self, line: str) -> Optional[TitleMatch]:
        if self.regex.match(line):
            return self._result(line)
        return None


class UppercaseHeadingPattern(TitlePattern):
    name = "uppercase"
    level = 2
    regex = re.compile(rf"^[{UPPER}][{UPPER}\s\-]{{8,}}$")

    def match(self, line: str) -> Optional[TitleMatch]:
        if not self.regex.match(line):
            return None
        return self._result(line, level=3 if len(line) > 50 else 2)


class UppercaseColonPattern(TitlePattern):
    name = "colon"
    level = 3
    regex = re.compile(rf"^[{UPPER}][{UPPER}\s\-]{{4,}}:$")

    def match(self, line: str) -> Optional[TitleMatch]:
        if len(line) <= 80 and self.regex.match(line):
            return self._result(line[:-1])
        return None


def default_patterns() -> List[TitlePattern]:
    return [
        ChapterPattern(),
        SectionPattern(),
        DecimalNumberingPattern(),
        KeywordPattern(),
        PrepositionHeadingPattern(),
        UppercaseHeadingPattern(),
        UppercaseColonPattern(),
    ]


def contextual_title(line: str) -> Optional[TitleMatch]:
    """Short lines carrying a section keyword in capitals are headings too."""
    if len(line) < 5 or len(line) > 100:
        return None
    if DECIMAL_RE.match(line) or INLINE_DATE_RE.search(line):
        return None
    upper = line.upper()
    if any(keyword in line or upper.startswith(keyword) for keyword in SECTION_KEYWORDS):
        return TitleMatch(title=line, level=2, pattern="contextual")
    return None


# Break rules for the forced split, each called with (line, preceded_by_blank)
BreakRule = Callable[[str, bool], bool]

BREAK_RULES: Sequence[BreakRule] = (
    lambda line, _: 15 < len(line) < 150 and line.upper() == line and bool(re.match(r"^[A-Z\s\-()]{15,}", line)),
    lambda line, _: len(line) > 10 and bool(re.match(rf"^\d+[.\-]\s*[{UPPER}]", line)),
    lambda line, _: bool(re.match(
        r"^(EDITAL|CONCURSO|ABERTURA|INSCRIÇÃO|INSCRIÇAO|PROVA|RESULTADO|CRONOGRAMA"
        r"|DISPOSIÇÃO|ANEXO|CARGO|VAGA|REQUISITO|ATRIBUIÇ)", line, re.IGNORECASE)),
    lambda line, _: len(line) > 10 and bool(re.match(rf"^(DOS?|DAS?|NOS?|NAS?)\s+[{UPPER}]", line, re.IGNORECASE)),
    lambda line, _: bool(re.match(r"^(LEI|DECRETO|PORTARIA|RESOLUÇÃO|INSTRUÇÃO)\b", line, re.IGNORECASE)),
    lambda line, blank: blank and len(line) > 20 and bool(re.match(rf"^[{UPPER}]", line)),
)


def infer_section_title(lines: Sequence[str], section_index: int) -> str:
    """Guess a label for a section produced by the forced split."""
    for line in lines[:10]:
        line = line.strip()
        if not 10 < len(line) < 120:
            continue
        upper = line.upper()
        if any(keyword in upper for keyword in INFERENCE_KEYWORDS):
            return clean_title_text(line)
        if upper == line and 15 < len(line) < 80:
            return clean_title_text(line)
        if PREPOSITION_RE.match(line):
            return clean_title_text(line)
    if section_index < len(DEFAULT_SECTION_TITLES):
        return DEFAULT_SECTION_TITLES[section_index]
    return f"Seção {section_index + 1}"


class TitleAwareChunker:
    """Splits text at detected headings, with a forced fallback."""

    def __init__(self,
                 patterns: Optional[Sequence[TitlePattern]] = None,
                 min_section_chars: int = 800,
                 max_section_chars: int = 3000,
                 fallback_segments: int = 4,
                 min_fallback_sections: int = 3):
        self.patterns = list(patterns) if patterns is not None else default_patterns()
        self.min_section_chars = min_section_chars
        self.max_section_chars = max_section_chars
        self.fallback_segments = fallback_segments
        self.min_fallback_sections = min_fallback_sections

    def detect_title(self, line: str) -> Optional[TitleMatch]:
        """Classify one stripped line; None when it is body text."""
        if not passes_line_filter(line):
            return None
        for pattern in self.patterns:
            found = pattern.match(line)
            if found and is_plausible_title(found.title):
                found.title = clean_title_text(found.title) or line
                return found
        found = contextual_title(line)
        if found:
            found.title = clean_title_text(found.title) or line
        return found

    def count_titles(self, text: str, limit: Optional[int] = None) -> int:
        """Count heading lines, stopping early once ``limit`` is reached."""
        count = 0
        for line in text.splitlines():
            line = line.strip()
            if line and self.detect_title(line):
                count += 1
                if limit is not None and count >= limit:
                    break
        return count

    def chunk(self, text: str, source_id: str) -> List[Chunk]:
        """Split ``text`` into titled chunks.

        Returns:
            Chunks with StructureHints; empty only when ``text`` is blank
        """
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            return []

        sections: List[Tuple[str, int, List[str]]] = []
        title, level, body = PREAMBLE_TITLE, 1, []
        for line in lines:
            found = self.detect_title(line)
            if found and body:
                sections.append((title, level, body))
                title, level, body = found.title, found.level, [line]
            else:
                if found:
                    title, level = found.title, found.level
                body.append(line)
        sections.append((title, level, body))

        if len(sections) <= 1:
            logger.debug(f"No headings detected in {source_id}; forcing semantic split")
            return self.force_semantic_split(text, source_id)

        return self._build_chunks(
            [(display_title(title), level, body) for title, level, body in sections], source_id
        )

    def force_semantic_split(self, text: str, source_id: str) -> List[Chunk]:
        """Split unstructured text on contextual break rules, then evenly if needed."""
        entries = self._entries(text)
        if len(entries) < self.min_fallback_sections:
            # Too few lines: sentences become the split units when there are more of them
            sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", " ".join(line for line, _ in entries))]
            sentences = [s for s in sentences if s]
            if len(sentences) > len(entries):
                entries = [(s, False) for s in sentences]
        if not entries:
            return []

        groups: List[List[str]] = []
        current: List[str] = []
        for line, preceded_by_blank in entries:
            size = len("\n".join(current))
            should_break = any(rule(line, preceded_by_blank) for rule in BREAK_RULES)
            forced_by_size = size > self.max_section_chars and len(line) > 20
            # Every group except the last exceeds min_section_chars
            if current and (should_break or forced_by_size) and size > self.min_section_chars:
                groups.append(current)
                current = []
            current.append(line)
        if current:
            groups.append(current)

        if len(groups) < self.min_fallback_sections:
            logger.debug(f"Semantic split of {source_id} gave {len(groups)} sections; splitting evenly")
            units = [line for line, _ in entries]
            if len(units) < self.fallback_segments:
                units = self.split_words(units)
            return self.split_evenly(units, source_id)

        return self._build_chunks(
            [(infer_section_title(group, i), 1 if i == 0 else 2, group) for i, group in enumerate(groups)],
            source_id,
        )

    def split_evenly(self, lines: Sequence[str], source_id: str) -> List[Chunk]:
        """Split lines into ``fallback_segments`` contiguous runs of similar length."""
        total = len(lines)
        segments: List[List[str]] = []
        for i in range(self.fallback_segments):
            start = i * total // self.fallback_segments
            end = total if i == self.fallback_segments - 1 else (i + 1) * total // self.fallback_segments
            segment = list(lines[start:end])
            if segment:
                segments.append(segment)
        return self._build_chunks(
            [(infer_section_title(segment, i), 1 if i == 0 else 2, segment) for i, segment in enumerate(segments)],
            source_id,
        )

    def split_words(self, units: Sequence[str]) -> List[str]:
        """Cut the text into ``fallback_segments`` runs at word positions."""
        words = " ".join(units).split()
        total = len(words)
        runs = []
        for i in range(self.fallback_segments):
            run = words[i * total // self.fallback_segments:(i + 1) * total // self.fallback_segments]
            if run:
                runs.append(" ".join(run))
        return runs

    @staticmethod
    def _entries(text: str) -> List[Tuple[str, bool]]:
        entries = []
        preceded_by_blank = False
        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                preceded_by_blank = True
                continue
            entries.append((line, preceded_by_blank))
            preceded_by_blank = False
        return entries

    @staticmethod
    def _build_chunks(sections: Sequence[Tuple[str, int, List[str]]], source_id: str) -> List[Chunk]:
        chunks: List[Chunk] = []
        for index, (title, level, body) in enumerate(sections):
            chunks.append(Chunk(
                source_id=source_id,
                index=index,
                text="\n".join(body),
                structure=StructureHints(title=title, level=level),
            ))
        establish_parents(chunks)
        return chunks


def establish_parents(chunks: List[Chunk]) -> None:
    """Point each chunk at the nearest preceding chunk with a lower level."""
    for i, chunk in enumerate(chunks):
        if chunk.structure is None:
            continue
        for candidate in reversed(chunks[:i]):
            if candidate.structure is not None and candidate.structure.level < chunk.structure.level:
                chunk.structure.parent_id = candidate.chunk_id
                break
