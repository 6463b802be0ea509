"""In-memory FAISS index mirroring the vectors held in SQLite.

Handles:
- One flat inner-product index per document key
- Unit normalization, so inner product equals cosine similarity
- Dimension validation for stored and query vectors
- Whole-document replacement by a single reference swap
"""
import itertools
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import numpy as np
import faiss
import structlog

from pagemate.rag.errors import DimensionMismatchError

logger = structlog.get_logger()


@dataclass
class IndexHit:
    """A scored index entry."""

    chunk_id: str
    similarity: float
    seq: int


@dataclass
class _DocumentEntry:
    ids: List[str]
    seqs: List[int]
    index: faiss.Index


class FAISSVectorIndex:
    """Per-document FAISS indexes with stable, exhaustive ranking.

    The index is a cache of the chunk store: it is patched on every
    mutation and can be rebuilt from the store at any time.
    """

    def __init__(self, dimension: int):
        """Initialize an empty index.

        Args:
            dimension: Embedding dimension every vector must have
        """
        if dimension <= 0:
            raise ValueError(f"Index dimension must be positive, got {dimension}")

        self.dimension = dimension
        self._documents: Dict[str, _DocumentEntry] = {}
        self._counter = itertools.count()

        logger.debug("faiss_index_initialized", dimension=dimension)

    def _as_matrix(self, embeddings: Sequence[Sequence[float]]) -> np.ndarray:
        vectors = np.array(embeddings, dtype=np.float32)
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)

        if vectors.shape[1] != self.dimension:
            raise DimensionMismatchError(self.dimension, vectors.shape[1])

        vectors = np.ascontiguousarray(vectors)
        # Zero rows are left untouched, so they score 0 against everything
        faiss.normalize_L2(vectors)
        return vectors

    def build_entry(
        self, chunk_ids: List[str], embeddings: Sequence[Sequence[float]]
    ) -> Optional[_DocumentEntry]:
        """Build (but do not install) the index entry for one document.

        Raises:
            DimensionMismatchError: If any embedding has the wrong length
            ValueError: If ids and embeddings differ in count
        """
        if len(chunk_ids) != len(embeddings):
            raise ValueError(
                f"Got {len(chunk_ids)} ids for {len(embeddings)} embeddings"
            )
        if not chunk_ids:
            return None

        for embedding in embeddings:
            if len(embedding) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(embedding))

        index = faiss.IndexFlatIP(self.dimension)
        index.add(self._as_matrix(embeddings))

        return _DocumentEntry(
            ids=list(chunk_ids),
            seqs=[next(self._counter) for _ in chunk_ids],
            index=index,
        )

    def install(self, document_key: str, entry: Optional[_DocumentEntry]) -> None:
        """Swap in a document's entry; ``None`` removes the document."""
        if entry is None:
            self._documents.pop(document_key, None)
        else:
            self._documents[document_key] = entry

        logger.debug(
            "faiss_document_installed",
            document_key=document_key,
            vectors=len(entry.ids) if entry else 0,
            total_vectors=self.ntotal,
        )

    def remove(self, document_key: str) -> None:
        self._documents.pop(document_key, None)

    def clear(self) -> None:
        self._documents = {}

    def has_document(self, document_key: str) -> bool:
        return document_key in self._documents

    def search(
        self, query_embedding: Sequence[float], document_key: Optional[str] = None
    ) -> List[IndexHit]:
        """Score every candidate vector against the query.

        Every candidate is ranked; no threshold is applied here. Ties keep
        insertion order.

        Args:
            query_embedding: Query vector of length ``dimension``
            document_key: Restrict candidates to one document

        Returns:
            All candidates, best first

        Raises:
            DimensionMismatchError: If the query has the wrong length
        """
        if len(query_embedding) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(query_embedding), "query")

        if document_key is not None:
            entry = self._documents.get(document_key)
            entries = [entry] if entry is not None else []
        else:
            entries = list(self._documents.values())

        if not entries:
            return []

        query = self._as_matrix(query_embedding)
        hits: List[IndexHit] = []

        for entry in entries:
            scores, positions = entry.index.search(query, entry.index.ntotal)
            for score, position in zip(scores[0].tolist(), positions[0].tolist()):
                if position < 0:
                    continue
                hits.append(
                    IndexHit(
                        chunk_id=entry.ids[position],
                        similarity=min(1.0, max(-1.0, float(score))),
                        seq=entry.seqs[position],
                    )
                )

        hits.sort(key=lambda h: (-h.similarity, h.seq))
        return hits

    @property
    def ntotal(self) -> int:
        return sum(entry.index.ntotal for entry in self._documents.values())

    @property
    def document_count(self) -> int:
        return len(self._documents)

    def get_stats(self) -> Dict[str, int]:
        return {
            "dimension": self.dimension,
            "vector_count": self.ntotal,
            "document_count": self.document_count,
        }

