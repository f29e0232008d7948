"""
Tests for the document chunker.

Tests cover:
- Dense and wide chunking profiles
- Contiguous re-indexing and offset tracking
- Chunk validation and content cleaning
"""

import pytest

from medroute.core.models import DocumentType
from medroute.rag.chunker import (
    DENSE_CHUNK_OVERLAP,
    DENSE_CHUNK_SIZE,
    WIDE_CHUNK_OVERLAP,
    WIDE_CHUNK_SIZE,
    DocumentChunker,
    chunker_for,
    create_dense_chunker,
    create_wide_chunker,
)


@pytest.fixture
def dense_chunker():
    return create_dense_chunker()


class TestDenseProfile:
    """Chunking a 2,400-character protocol with size 800 / overlap 100."""

    @pytest.mark.unit
    def test_produces_three_or_four_chunks(self, dense_chunker, long_protocol_text):
        chunks = dense_chunker.chunk(long_protocol_text)
        assert 3 <= len(chunks) <= 4

    @pytest.mark.unit
    def test_every_chunk_meets_minimum_length(self, dense_chunker, long_protocol_text):
        for chunk in dense_chunker.chunk(long_protocol_text):
            assert len(chunk.content) >= 50

    @pytest.mark.unit
    def test_chunks_cover_content_with_overlap(self, dense_chunker, long_protocol_text):
        content = long_protocol_text
        chunks = dense_chunker.chunk(content)

        assert chunks[0].metadata.start_offset == 0
        assert chunks[-1].metadata.end_offset == len(content)
        for previous, current in zip(chunks, chunks[1:]):
            # Each chunk starts inside the previous one
            assert current.metadata.start_offset < previous.metadata.end_offset

    @pytest.mark.unit
    def test_chunk_size_respected(self, dense_chunker, long_protocol_text):
        for chunk in dense_chunker.chunk(long_protocol_text):
            span = chunk.metadata.end_offset - chunk.metadata.start_offset
            assert span <= DENSE_CHUNK_SIZE


class TestIndexing:
    """Indices are contiguous and offsets stay inside the content."""

    @pytest.mark.unit
    def test_indices_are_contiguous_from_zero(self, dense_chunker, long_protocol_text):
        chunks = dense_chunker.chunk(long_protocol_text)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))

    @pytest.mark.unit
    def test_total_chunks_matches_count(self, dense_chunker, long_protocol_text):
        chunks = dense_chunker.chunk(long_protocol_text)
        assert all(c.metadata.total_chunks == len(chunks) for c in chunks)

    @pytest.mark.unit
    def test_offsets_within_content(self, dense_chunker, long_protocol_text):
        content = long_protocol_text
        for chunk in dense_chunker.chunk(content):
            assert 0 <= chunk.metadata.start_offset <= chunk.metadata.end_offset <= len(content)

    @pytest.mark.unit
    def test_offsets_span_raw_text_before_cleaning(self, dense_chunker):
        content = (
            "Refer  members   with sudden chest pain\n\n"
            "to the emergency department without any delay at all."
        )

        [chunk] = dense_chunker.chunk(content)
        start, end = chunk.metadata.start_offset, chunk.metadata.end_offset

        assert (start, end) == (0, len(content))
        assert end - start > len(chunk.content)
        assert chunk.content == DocumentChunker.clean_chunk_content(content[start:end])

    @pytest.mark.unit
    def test_reindexes_after_dropping_invalid_fragments(self):
        """A degenerate fragment in the middle does not leave a gap in indices."""
        chunker = DocumentChunker(chunk_size=120, chunk_overlap=0)
        good = "Assess airway and breathing, then record blood pressure and pulse rate."
        content = f"{good}\n\n{'. . . . ' * 10}\n\n{good}"

        chunks = chunker.chunk(content)

        assert len(chunks) == 2
        assert [c.chunk_index for c in chunks] == [0, 1]

    @pytest.mark.unit
    def test_document_identity_is_denormalised(self, dense_chunker, long_protocol_text):
        chunks = dense_chunker.chunk(
            long_protocol_text,
            {
                "document_title": "Primary Survey Protocol",
                "document_type": "protocol",
                "source": "CAF Health Services",
            },
        )
        assert all(c.metadata.document_title == "Primary Survey Protocol" for c in chunks)
        assert all(c.metadata.source == "CAF Health Services" for c in chunks)


class TestValidation:
    """Tests for chunk validation and cleaning."""

    @pytest.mark.unit
    def test_empty_content_yields_no_chunks(self, dense_chunker):
        assert dense_chunker.chunk("") == []
        assert dense_chunker.chunk("   \n\n  ") == []

    @pytest.mark.unit
    def test_short_content_is_rejected(self, dense_chunker):
        assert dense_chunker.chunk("Too short to index.") == []

    @pytest.mark.unit
    def test_punctuation_heavy_text_is_rejected(self, dense_chunker):
        assert dense_chunker.validate_chunk("... ,,, ;;; ::: !!! ??? " * 5) is False

    @pytest.mark.unit
    def test_meaningful_text_is_accepted(self, dense_chunker):
        assert dense_chunker.validate_chunk(
            "Refer members with sudden chest pain to the emergency department."
        )

    @pytest.mark.unit
    def test_clean_normalises_whitespace(self):
        assert DocumentChunker.clean_chunk_content("chest\n\n  pain\tprotocol ") == "chest pain protocol"

    @pytest.mark.unit
    def test_clean_strips_disallowed_characters(self):
        assert DocumentChunker.clean_chunk_content("dose: 5mg » daily ★") == "dose: 5mg daily"

    @pytest.mark.unit
    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            DocumentChunker(chunk_size=100, chunk_overlap=100)


class TestProfiles:
    """Tests for profile selection by document type."""

    @pytest.mark.unit
    def test_dense_profile_settings(self):
        chunker = create_dense_chunker()
        assert chunker.chunk_size == DENSE_CHUNK_SIZE
        assert chunker.chunk_overlap == DENSE_CHUNK_OVERLAP

    @pytest.mark.unit
    def test_wide_profile_settings(self):
        chunker = create_wide_chunker()
        assert chunker.chunk_size == WIDE_CHUNK_SIZE
        assert chunker.chunk_overlap == WIDE_CHUNK_OVERLAP
        assert ": " in chunker.separators

    @pytest.mark.unit
    def test_profile_sizes(self):
        assert (DENSE_CHUNK_SIZE, DENSE_CHUNK_OVERLAP) == (800, 100)
        assert (WIDE_CHUNK_SIZE, WIDE_CHUNK_OVERLAP) == (1200, 200)

    @pytest.mark.unit
    def test_policy_uses_wide_profile(self):
        assert chunker_for(DocumentType.POLICY).chunk_size == WIDE_CHUNK_SIZE
        assert chunker_for("policy").chunk_size == WIDE_CHUNK_SIZE

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "document_type",
        [DocumentType.PROTOCOL, DocumentType.GUIDELINE, DocumentType.SPECIALIST_PROTOCOL],
    )
    def test_other_types_use_dense_profile(self, document_type):
        assert chunker_for(document_type).chunk_size == DENSE_CHUNK_SIZE
