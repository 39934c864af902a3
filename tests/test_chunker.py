"""Tests for the chunking pipeline."""

import pytest

from pipelines.chunker import (FIXED_WINDOW_SIZE, PRECISION_WINDOW_SIZE, ChunkingMode, SemanticChunker,
                               chunk_text)

BODY_LINE = "O candidato deverá observar todas as regras estabelecidas para esta etapa do certame."


def structured_document(chapters: int = 4, lines_per_chapter: int = 80) -> str:
    numerals = ["I", "II", "III", "IV", "V", "VI"]
    parts = []
    for i in range(chapters):
        parts.append(f"CAPÍTULO {numerals[i]} - DISPOSIÇÕES DA ETAPA")
        parts.extend([BODY_LINE] * lines_per_chapter)
    return "\n".join(parts)


class TestSemanticChunker:
    """Test fixed, title and auto chunking modes."""

    @pytest.fixture
    def chunker(self):
        return SemanticChunker()

    def test_fixed_windows(self, chunker):
        """Fixed mode cuts every 1000 words."""
        text = " ".join(f"w{i}" for i in range(2500))
        chunks = chunker.chunk(text, "fixed", "doc")

        assert [len(c.text.split()) for c in chunks] == [1000, 1000, 500]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [c.chunk_id for c in chunks] == ["doc_0", "doc_1", "doc_2"]
        assert all(c.source_id == "doc" for c in chunks)

    def test_fixed_preserves_words(self, chunker):
        """Joining fixed chunks gives back the whitespace-normalized input."""
        text = "Linha um  com espaços\n\nLinha   dois\tcom tab " * 300
        chunks = chunker.chunk(text, ChunkingMode.FIXED, "doc")
        assert " ".join(c.text for c in chunks) == " ".join(text.split())

    def test_short_text_single_chunk(self, chunker):
        chunks = chunker.chunk("Inscrições abertas até sexta-feira.", "fixed", "doc")
        assert len(chunks) == 1
        assert chunks[0].text == "Inscrições abertas até sexta-feira."

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_blank_input(self, chunker, text):
        """Blank text produces no chunks in any mode."""
        for mode in ("fixed", "title", "auto"):
            assert chunker.chunk(text, mode, "doc") == []

    def test_unknown_mode(self, chunker):
        with pytest.raises(ValueError):
            chunker.chunk("texto", "paragraph", "doc")

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            SemanticChunker(window_size=0)

    def test_precision_window(self):
        """Site-family pages use a smaller window."""
        chunker = SemanticChunker(window_size=PRECISION_WINDOW_SIZE)
        chunks = chunker.chunk(" ".join(["vaga"] * 1200), "fixed", "doc")
        assert [len(c.text.split()) for c in chunks] == [500, 500, 200]

    def test_title_mode(self, chunker):
        """Title mode labels chunks with their headings."""
        chunks = chunker.chunk(structured_document(chapters=3, lines_per_chapter=3), "title", "doc")

        assert len(chunks) == 3
        assert all(c.structure is not None for c in chunks)
        assert chunks[0].structure.title == "Disposições Da Etapa"
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_auto_picks_fixed_for_short_text(self, chunker):
        text = structured_document(chapters=3, lines_per_chapter=3)
        assert chunker.choose_mode(text) == ChunkingMode.FIXED

    def test_auto_picks_title_for_long_structured_text(self, chunker):
        """Long documents with at least three headings are chunked by title."""
        text = structured_document()
        assert len(text) > 20000

        chunks = chunker.chunk(text, "auto", "doc")

        assert chunker.choose_mode(text) == ChunkingMode.TITLE
        assert len(chunks) == 4
        assert all(c.structure.level == 1 for c in chunks)

    def test_auto_picks_fixed_for_long_unstructured_text(self, chunker):
        text = "palavra " * 5000
        assert chunker.choose_mode(text) == ChunkingMode.FIXED
        assert len(chunker.chunk(text, "auto", "doc")) == 5


class TestHelpers:
    """Test module-level helpers."""

    def test_chunk_text(self):
        chunks = chunk_text(" ".join(["x"] * 30), "fixed", "page", window_size=10)
        assert len(chunks) == 3
        assert chunks[-1].chunk_id == "page_2"

    def test_default_window(self):
        assert FIXED_WINDOW_SIZE == 1000
