# =============================================================================
# Unit Tests - Chunker Service
# =============================================================================
#
# Tests the fixed-size, fixed-overlap character windows and their page
# attribution. No API keys, databases, or network calls needed.
# =============================================================================

import pytest

from mr_broker.services.chunker import chunk_document, chunk_text, merge_chunks


class TestChunkText:
    """Tests for chunk_text()."""

    def test_blank_text_produces_no_chunks(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\t ") == []

    def test_short_text_is_one_chunk(self):
        assert chunk_text("Awareness rose to 41%.") == ["Awareness rose to 41%."]

    def test_text_exactly_one_window(self):
        text = "a" * 2000
        assert chunk_text(text, size=2000, overlap=200) == [text]

    def test_4500_chars_make_three_chunks(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(4500))
        chunks = chunk_text(text, size=2000, overlap=200)

        assert [len(c) for c in chunks] == [2000, 2000, 900]
        assert chunks[1] == text[1800:3800]
        assert chunks[2] == text[3600:]

    def test_consecutive_chunks_share_the_overlap(self):
        text = "".join(str(i % 10) for i in range(5000))
        chunks = chunk_text(text, size=1000, overlap=100)
        for left, right in zip(chunks, chunks[1:]):
            assert left[-100:] == right[:100]

    def test_zero_overlap(self):
        chunks = chunk_text("abcdefghij", size=4, overlap=0)
        assert chunks == ["abcd", "efgh", "ij"]

    def test_overlap_at_least_size_steps_one_character(self):
        assert chunk_text("abcdef", 3, 5) == ["abc", "bcd", "cde", "def"]
        assert chunk_text("abcdef", 3, 3) == ["abc", "bcd", "cde", "def"]

    def test_trailing_whitespace_makes_no_blank_chunk(self):
        chunks = chunk_text("abc" + " " * 10, size=3, overlap=0)

        assert chunks == ["abc"]
        assert all(c.strip() for c in chunk_text("Awareness 41%.\n\n\n\n   ", 4, 1))

    def test_invalid_size_rejected(self):
        with pytest.raises(ValueError):
            chunk_text("abc", size=0, overlap=0)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ValueError):
            chunk_text("abc", size=10, overlap=-1)


class TestMergeChunks:
    """Removing the overlapped regions reconstructs the original text."""

    @pytest.mark.parametrize("length", [1, 1999, 2000, 2001, 4500, 12345])
    def test_reconstructs_original(self, length):
        text = "".join(chr(ord("A") + i % 26) for i in range(length))
        assert merge_chunks(chunk_text(text, 2000, 200), 2000, 200) == text

    def test_reconstructs_when_overlap_exceeds_size(self):
        assert merge_chunks(chunk_text("abcdef", 3, 5), 3, 5) == "abcdef"

    def test_trailing_whitespace_is_not_recovered(self):
        text = "Awareness rose." + " " * 50
        assert merge_chunks(chunk_text(text, 10, 2), 10, 2) == text[:18]

    def test_reconstructs_with_small_windows(self):
        text = "The quick brown fox jumps over the lazy dog. " * 20
        assert merge_chunks(chunk_text(text, 37, 11), 37, 11) == text


class TestChunkDocument:
    """Tests for chunk_document() positional metadata."""

    def test_indices_and_offsets(self):
        text = "x" * 4500
        chunks = chunk_document(text, 2000, 200)

        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [c.start for c in chunks] == [0, 1800, 3600]
        assert all(c.page_number is None for c in chunks)

    def test_page_attribution_uses_chunk_start(self):
        # Page 1 = [0, 100), page 2 = [100, 250), page 3 = [250, ...)
        text = "p" * 400
        chunks = chunk_document(text, 100, 0, page_starts=[0, 100, 250])

        assert [c.page_number for c in chunks] == [1, 2, 2, 3]

    def test_offset_before_first_page_start_is_page_one(self):
        chunks = chunk_document("abc", 10, 0, page_starts=[5])
        assert chunks[0].page_number == 1
