"""Document chunking pipeline.

Splits extracted text into retrievable chunks, either as fixed word windows
or along the document's heading structure.
"""

import logging
from enum import Enum
from typing import List, Optional, Union

from .models import Chunk
from .title_chunker import TitleAwareChunker

logger = logging.getLogger(__name__)

FIXED_WINDOW_SIZE = 1000
# Smaller windows for domains where exact figures (vacancies, salaries, dates) matter
PRECISION_WINDOW_SIZE = 500

AUTO_MIN_CHARS = 20000
AUTO_MIN_TITLES = 3


class ChunkingMode(str, Enum):
    FIXED = "fixed"
    TITLE = "title"
    AUTO = "auto"


class SemanticChunker:
    """Chunks documents into smaller pieces for better retrieval."""

    def __init__(self,
                 window_size: int = FIXED_WINDOW_SIZE,
                 auto_min_chars: int = AUTO_MIN_CHARS,
                 auto_min_titles: int = AUTO_MIN_TITLES,
                 title_chunker: Optional[TitleAwareChunker] = None):
        """Initialize chunker.

        Args:
            window_size: Words per chunk in fixed mode
            auto_min_chars: Minimum text length for auto mode to pick title-aware chunking
            auto_min_titles: Minimum number of heading lines for auto mode to pick title-aware chunking
            title_chunker: Title-aware chunker used by title and auto modes
        """
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self.window_size = window_size
        self.auto_min_chars = auto_min_chars
        self.auto_min_titles = auto_min_titles
        self.title_chunker = title_chunker or TitleAwareChunker()

    def chunk_fixed(self, text: str, source_id: str, window_size: Optional[int] = None) -> List[Chunk]:
        """Split text into windows of ``window_size`` whitespace-separated words."""
        size = window_size or self.window_size
        words = text.split()
        return [
            Chunk(source_id=source_id, index=index, text=" ".join(words[start:start + size]))
            for index, start in enumerate(range(0, len(words), size))
        ]

    def choose_mode(self, text: str) -> ChunkingMode:
        """Pick title-aware chunking for long documents with visible structure."""
        if len(text) < self.auto_min_chars:
            return ChunkingMode.FIXED
        if self.title_chunker.count_titles(text, limit=self.auto_min_titles) >= self.auto_min_titles:
            return ChunkingMode.TITLE
        return ChunkingMode.FIXED

    def chunk(self, text: str, mode: Union[str, ChunkingMode] = ChunkingMode.FIXED,
              source_id: str = "doc") -> List[Chunk]:
        """Chunk a document.

        Args:
            text: Document text
            mode: "fixed", "title" or "auto"
            source_id: Identifier used to derive chunk ids

        Returns:
            List of non-empty chunks, indexed from 0; empty only for blank input
        """
        if not text or not text.strip():
            return []

        mode = ChunkingMode(mode)
        if mode == ChunkingMode.AUTO:
            mode = self.choose_mode(text)
            logger.debug(f"Auto chunking picked {mode.value} for {source_id} ({len(text)} chars)")

        if mode == ChunkingMode.TITLE:
            chunks = self.title_chunker.chunk(text, source_id)
        else:
            chunks = self.chunk_fixed(text, source_id)

        chunks = [chunk for chunk in chunks if chunk.text.strip()]
        for index, chunk in enumerate(chunks):
            chunk.index = index

        logger.info(f"Created {len(chunks)} chunks for {source_id} using {mode.value} mode")
        return chunks


def chunk_text(text: str, mode: str = "fixed", source_id: str = "doc",
               window_size: int = FIXED_WINDOW_SIZE) -> List[Chunk]:
    """Convenience function to chunk text with a default chunker."""
    return SemanticChunker(window_size=window_size).chunk(text, mode, source_id)
