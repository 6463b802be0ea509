"""Paragraph- and sentence-aware text chunking for the RAG pipeline.

Chunks are bounded by a word budget rather than characters so that scraped
pages with very different markup density produce comparable chunks.
"""
import re
from typing import List
import structlog

from pagemate import config

logger = structlog.get_logger()

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
HEADING_LINE = re.compile(r"^#{1,6}\s+\S")

# Fraction of the target a sentence-split chunk may reach before it is dropped
OVERSIZE_FACTOR = 1.5


def word_count(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


class TextChunker:
    """Splits a structured-text document into overlapping semantic chunks."""

    def __init__(
        self,
        target_size: int = None,
        overlap: int = None,
        min_words: int = None,
    ):
        """Initialize the text chunker.

        Args:
            target_size: Word budget per chunk (default from config)
            overlap: Word budget carried into the next chunk when a
                paragraph has to be split (default from config)
            min_words: Minimum words for a sentence-split chunk (default from config)
        """
        self.target_size = target_size or config.CHUNK_TARGET_SIZE
        self.overlap = config.CHUNK_OVERLAP if overlap is None else overlap
        self.min_words = config.CHUNK_MIN_WORDS if min_words is None else min_words

        if self.overlap >= self.target_size:
            raise ValueError(
                f"Overlap ({self.overlap}) must be less than "
                f"target size ({self.target_size})"
            )

        logger.debug(
            "chunker_initialized",
            target_size=self.target_size,
            overlap=self.overlap,
            min_words=self.min_words,
        )

    @property
    def max_words(self) -> int:
        return int(self.target_size * OVERSIZE_FACTOR)

    def chunk_text(self, text: str) -> List[str]:
        """Split text into chunks.

        Paragraphs that fit within the target size are kept whole. Longer
        paragraphs are split on sentence boundaries with a sentence-level
        overlap between consecutive pieces; pieces that end up below the
        minimum or far above the target are dropped.

        Args:
            text: Document text, paragraphs separated by blank lines

        Returns:
            List of chunk strings in document order
        """
        if not text or not text.strip():
            return []

        chunks: List[str] = []
        dropped = 0

        for paragraph in self._paragraphs(text):
            if word_count(paragraph) <= self.target_size:
                chunks.append(paragraph)
                continue

            for piece in self._split_paragraph(paragraph):
                words = word_count(piece)
                if self.min_words <= words <= self.max_words:
                    chunks.append(piece)
                else:
                    dropped += 1

        if dropped:
            logger.debug("chunks_dropped_by_size", dropped=dropped)

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
            dropped=dropped,
        )

        return chunks

    def _paragraphs(self, text: str) -> List[str]:
        """Split on blank lines, attaching heading-only paragraphs to the next one."""
        paragraphs = []
        pending_heading = None

        for raw in PARAGRAPH_SPLIT.split(text):
            paragraph = raw.strip()
            if not paragraph:
                continue

            if self._is_heading(paragraph):
                pending_heading = (
                    f"{pending_heading}\n{paragraph}" if pending_heading else paragraph
                )
                continue

            if pending_heading:
                paragraph = f"{pending_heading}\n\n{paragraph}"
                pending_heading = None
            paragraphs.append(paragraph)

        if pending_heading:
            paragraphs.append(pending_heading)

        return paragraphs

    @staticmethod
    def _is_heading(paragraph: str) -> bool:
        lines = paragraph.splitlines()
        return all(HEADING_LINE.match(line.strip()) for line in lines)

    def _split_paragraph(self, paragraph: str) -> List[str]:
        """Greedily pack sentences into pieces of at most target_size words."""
        sentences = [s for s in SENTENCE_SPLIT.split(paragraph) if s.strip()]
        pieces = []
        current: List[str] = []
        current_words = 0

        for sentence in sentences:
            sentence_words = word_count(sentence)

            if current_words + sentence_words <= self.target_size:
                current.append(sentence)
                current_words += sentence_words
                continue

            if not current:
                # Single sentence larger than the target; the size filter decides
                current = [sentence]
                current_words = sentence_words
                continue

            pieces.append(" ".join(current).strip())
            carry = self._overlap_sentences(current)
            current = carry + [sentence]
            current_words = sum(word_count(s) for s in current)

        if current:
            pieces.append(" ".join(current).strip())

        return pieces

    def _overlap_sentences(self, sentences: List[str]) -> List[str]:
        """Last one or two sentences of an emitted piece that fit the overlap budget."""
        carry: List[str] = []
        budget = self.overlap
        for sentence in reversed(sentences[-2:]):
            words = word_count(sentence)
            if words > budget:
                break
            carry.insert(0, sentence)
            budget -= words
        return carry

    def get_chunk_stats(self, chunks: List[str]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: Chunk strings

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "average_chunk_length": 0.0,
                "min_chunk_words": 0,
                "max_chunk_words": 0,
            }

        lengths = [len(c) for c in chunks]
        words = [word_count(c) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(lengths),
            "average_chunk_length": sum(lengths) / len(chunks),
            "min_chunk_words": min(words),
            "max_chunk_words": max(words),
        }
