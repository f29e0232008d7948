"""
MedRoute Document Chunker Module

Recursive text chunking for the ingestion pipeline. Splits on paragraph,
line, sentence, clause, phrase and word boundaries (coarsest first), then
validates and cleans every fragment and re-indexes the survivors so chunk
indices are always contiguous from zero.
"""

import logging
import re
from typing import Any

from langchain_text_splitters import RecursiveCharacterTextSplitter

from medroute.core.models import ChunkMetadata, DocumentType, TextChunk

logger = logging.getLogger(__name__)

# ============================================
# Profiles
# ============================================

DENSE_CHUNK_SIZE = 800
DENSE_CHUNK_OVERLAP = 100
DENSE_SEPARATORS = ["\n\n", "\n", ". ", "; ", ", ", " ", ""]

WIDE_CHUNK_SIZE = 1200
WIDE_CHUNK_OVERLAP = 200
WIDE_SEPARATORS = ["\n\n", "\n", ". ", ": ", "; ", ", ", " ", ""]

MIN_CHUNK_LENGTH = 50
MIN_MEANINGFUL_RATIO = 0.3

# Whitespace and punctuation do not count as meaningful content
_NOISE_CHARS = re.compile(r"[\s.,;:!?()\[\]{}'\"]")
_WHITESPACE = re.compile(r"\s+")
_DISALLOWED_CHARS = re.compile(r"[^\w\s.,;:!?()\[\]{}'\"/-]")


# ============================================
# Document Chunker
# ============================================


class DocumentChunker:
    """Splits document text into overlapping, offset-tracked chunks.

    Attributes:
        chunk_size: Maximum characters per raw fragment.
        chunk_overlap: Characters shared between adjacent fragments.
        separators: Split boundaries, coarsest first.
    """

    def __init__(
        self,
        chunk_size: int = DENSE_CHUNK_SIZE,
        chunk_overlap: int = DENSE_CHUNK_OVERLAP,
        separators: list[str] | None = None,
        min_chunk_length: int = MIN_CHUNK_LENGTH,
        min_meaningful_ratio: float = MIN_MEANINGFUL_RATIO,
    ) -> None:
        """Initialize the chunker.

        Args:
            chunk_size: Target chunk size in characters.
            chunk_overlap: Overlap between consecutive chunks.
            separators: Ordered split boundaries. Defaults to the dense set.
            min_chunk_length: Shortest chunk kept after cleaning.
            min_meaningful_ratio: Minimum share of non-whitespace,
                non-punctuation characters.

        Raises:
            ValueError: If overlap is not smaller than chunk size.
        """
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = separators or list(DENSE_SEPARATORS)
        self.min_chunk_length = min_chunk_length
        self.min_meaningful_ratio = min_meaningful_ratio

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=self.separators,
            keep_separator=True,
            add_start_index=True,
            strip_whitespace=False,
            length_function=len,
        )

    def chunk(
        self, content: str, metadata: dict[str, Any] | None = None
    ) -> list[TextChunk]:
        """Split content into validated, cleaned chunks.

        Args:
            content: Full document text.
            metadata: Document identity to denormalise onto every chunk
                (document_title, document_type, source).

        Returns:
            Chunks with indices 0..N-1 and offsets into ``content``.
            Empty when nothing valid survives.
        """
        if not content or not content.strip():
            return []

        metadata = metadata or {}
        kept: list[tuple[str, int, int]] = []

        for fragment in self._splitter.create_documents([content]):
            raw = fragment.page_content
            start = int(fragment.metadata.get("start_index", -1))
            if start < 0:
                # Splitter could not locate the fragment; fall back to a search
                start = max(content.find(raw), 0)
            end = min(start + len(raw), len(content))

            cleaned = self.clean_chunk_content(raw)
            if not self.validate_chunk(cleaned):
                continue
            kept.append((cleaned, start, end))

        total = len(kept)
        chunks = [
            TextChunk(
                content=text,
                metadata=ChunkMetadata(
                    chunk_index=index,
                    total_chunks=total,
                    start_offset=start,
                    end_offset=end,
                    document_title=str(metadata.get("document_title", "")),
                    document_type=str(metadata.get("document_type", "")),
                    source=str(metadata.get("source", "")),
                ),
            )
            for index, (text, start, end) in enumerate(kept)
        ]

        logger.debug(
            "Chunked %d chars into %d chunks (size=%d, overlap=%d)",
            len(content),
            total,
            self.chunk_size,
            self.chunk_overlap,
        )
        return chunks

    def validate_chunk(self, text: str) -> bool:
        """Reject short or degenerate (mostly punctuation/whitespace) chunks."""
        stripped = text.strip()
        if len(stripped) < self.min_chunk_length:
            return False

        meaningful = len(_NOISE_CHARS.sub("", stripped))
        return meaningful / len(stripped) >= self.min_meaningful_ratio

    @staticmethod
    def clean_chunk_content(text: str) -> str:
        """Normalise whitespace and strip characters outside the allowed set."""
        text = _DISALLOWED_CHARS.sub("", text)
        return _WHITESPACE.sub(" ", text).strip()


# ============================================
# Factories
# ============================================


def create_dense_chunker() -> DocumentChunker:
    """Chunker for precise retrieval of protocol and guideline text."""
    return DocumentChunker(DENSE_CHUNK_SIZE, DENSE_CHUNK_OVERLAP, DENSE_SEPARATORS)


def create_wide_chunker() -> DocumentChunker:
    """Chunker for policy text, where surrounding context matters more."""
    return DocumentChunker(WIDE_CHUNK_SIZE, WIDE_CHUNK_OVERLAP, WIDE_SEPARATORS)


def chunker_for(document_type: DocumentType | str) -> DocumentChunker:
    """Pick the chunking profile for a document type."""
    value = (
        document_type.value
        if isinstance(document_type, DocumentType)
        else str(document_type)
    )
    if value == DocumentType.POLICY.value:
        return create_wide_chunker()
    return create_dense_chunker()
