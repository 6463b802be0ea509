"""Similarity search over stored page chunks.

Handles:
- Cosine similarity with zero-norm and dimension checks
- Indexed vector search with a post-ranking threshold
- Lexical token-overlap scoring as a vector-free alternative
- Result formatting
"""
import math
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import numpy as np
import structlog

from pagemate import config
from pagemate.rag.errors import DimensionMismatchError
from pagemate.rag.store import Chunk, ChunkStore

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with its score."""

    chunk_id: str
    text: str
    score: float
    metadata: Dict[str, Any]
    document_key: Optional[str] = None
    mode: str = "vector"

    @property
    def source(self) -> str:
        """Formatted source string for display."""
        title = self.metadata.get("title")
        if title:
            return f"{title} ({self.document_key})"
        return self.document_key or ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.chunk_id,
            "text": self.text,
            "score": round(self.score, 4),
            "mode": self.mode,
            "document_key": self.document_key,
            "metadata": self.metadata,
        }

    @classmethod
    def from_chunk(cls, chunk: Chunk, score: float, mode: str) -> "RetrievalResult":
        return cls(
            chunk_id=chunk.id,
            text=chunk.text,
            score=score,
            metadata=chunk.metadata,
            document_key=chunk.document_key,
            mode=mode,
        )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def length_factor(token_count: int, target_tokens: int = None) -> float:
    """Preference for chunks near the target length.

    1.0 at the target, decaying symmetrically in log space for shorter or
    longer chunks.
    """
    target_tokens = target_tokens or config.LEXICAL_TARGET_TOKENS
    if token_count <= 0:
        return 0.0
    return math.exp(-0.5 * math.log(token_count / target_tokens) ** 2)


def lexical_score(
    query_tokens: Sequence[str],
    chunk_tokens: Sequence[str],
    target_tokens: int = None,
) -> float:
    """Token-overlap relevance score.

    coverage (distinct query tokens found / distinct query tokens)
    x frequency (chunk occurrences of the matching tokens)
    x length preference.
    """
    distinct = set(query_tokens)
    if not distinct or not chunk_tokens:
        return 0.0

    counts = Counter(chunk_tokens)
    matched = [t for t in distinct if counts[t]]
    if not matched:
        return 0.0

    coverage = len(matched) / len(distinct)
    frequency = sum(counts[t] for t in matched)
    return coverage * frequency * length_factor(len(chunk_tokens), target_tokens)


def rank_by_cosine(
    query_embedding: Sequence[float],
    candidates: List[Chunk],
    top_k: int,
    threshold: float = 0.0,
) -> List[RetrievalResult]:
    """Rank a candidate pool by cosine similarity.

    All candidates are scored and stably sorted before the top-K cut and
    the threshold are applied. Scores of zero or below never count as a
    match, whatever the threshold.
    """
    scored = [
        (cosine_similarity(query_embedding, chunk.embedding), position, chunk)
        for position, chunk in enumerate(candidates)
    ]
    scored.sort(key=lambda s: (-s[0], s[1]))

    return [
        RetrievalResult.from_chunk(chunk, score, "vector")
        for score, _, chunk in scored[:top_k]
        if score > 0 and score >= threshold
    ]


def rank_by_tokens(
    query_tokens: Sequence[str],
    candidates: List[Chunk],
    top_k: int,
    target_tokens: int = None,
) -> List[RetrievalResult]:
    """Rank a candidate pool by lexical score; zero scores are excluded."""
    scored = []
    for position, chunk in enumerate(candidates):
        score = lexical_score(query_tokens, chunk.tokens, target_tokens)
        if score > 0:
            scored.append((score, position, chunk))
    scored.sort(key=lambda s: (-s[0], s[1]))

    return [
        RetrievalResult.from_chunk(chunk, score, "lexical")
        for score, _, chunk in scored[:top_k]
    ]


class SimilaritySearch:
    """Ranks stored chunks against a query vector or token set."""

    def __init__(
        self,
        store: ChunkStore,
        threshold: float = None,
        lexical_target_tokens: int = None,
    ):
        """Initialize the search.

        Args:
            store: Chunk store whose index and rows are searched
            threshold: Minimum similarity kept after ranking (default from config)
            lexical_target_tokens: Peak of the lexical length preference
        """
        self.store = store
        self.threshold = config.SIMILARITY_THRESHOLD if threshold is None else threshold
        self.lexical_target_tokens = lexical_target_tokens or config.LEXICAL_TARGET_TOKENS

    async def search(
        self,
        query_embedding: Sequence[float],
        document_key: Optional[str] = None,
        top_k: int = None,
        threshold: Optional[float] = None,
    ) -> List[RetrievalResult]:
        """Vector search through the store's index.

        Args:
            query_embedding: Query vector, same length as stored vectors
            document_key: Restrict to one document
            top_k: Maximum results (default from config)
            threshold: Override of the instance threshold

        Returns:
            Results sorted by descending similarity

        Raises:
            DimensionMismatchError: If the query has the wrong length
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        threshold = self.threshold if threshold is None else threshold

        hits = self.store.index.search(query_embedding, document_key)
        candidates = hits[:top_k]
        if not candidates:
            return []

        # The index picks candidates; scores come from the stored vectors
        chunks = await self.store.get_chunks_by_ids([h.chunk_id for h in candidates])
        if len(chunks) < len(candidates):
            logger.warning(
                "indexed_chunks_missing",
                document_key=document_key,
                missing=len(candidates) - len(chunks),
            )

        results = rank_by_cosine(query_embedding, chunks, top_k, threshold)

        if not results:
            logger.info(
                "no_results_above_threshold",
                document_key=document_key,
                candidates=len(hits),
                threshold=threshold,
            )
            return []

        logger.info(
            "vector_search_completed",
            document_key=document_key,
            candidates=len(hits),
            results_returned=len(results),
            top_similarity=results[0].score,
        )
        return results

    async def search_lexical(
        self,
        query_tokens: Sequence[str],
        document_key: Optional[str] = None,
        top_k: int = None,
    ) -> List[RetrievalResult]:
        """Lexical search over the stored token lists."""
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k

        if not query_tokens:
            return []

        if document_key is not None:
            candidates = await self.store.get_chunks(document_key)
        else:
            candidates = await self.store.get_all_chunks()

        results = rank_by_tokens(
            query_tokens, candidates, top_k, self.lexical_target_tokens
        )

        logger.info(
            "lexical_search_completed",
            document_key=document_key,
            candidates=len(candidates),
            results_returned=len(results),
        )
        return results
