"""Durable per-page chunk storage with a mirrored in-memory vector index.

Handles:
- Replace-on-reprocess writes (delete + insert in one transaction)
- Per-document write serialization
- Keeping the FAISS index consistent with SQLite
- Rebuilding the index from SQLite after a restart
"""
import asyncio
import sqlite3
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import numpy as np
import structlog

from pagemate import config, db
from pagemate.rag.errors import DimensionMismatchError, StorageError
from pagemate.rag.store_faiss import FAISSVectorIndex

logger = structlog.get_logger()


@dataclass
class Chunk:
    """A span of page text with its retrieval signatures."""

    text: str
    tokens: List[str]
    embedding: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    document_key: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Chunk":
        return cls(
            text=row["text"],
            tokens=row["tokens"],
            embedding=row["embedding"],
            metadata=row["metadata"],
            id=row["id"],
            document_key=row["document_key"],
        )


def make_chunk_id(document_key: str, timestamp_ms: int, generation: str, index: int) -> str:
    """Chunk id from document key, processing time, generation token and position."""
    return f"{document_key}_{timestamp_ms}_{generation}_{index}"


class ChunkStore:
    """SQLite-backed chunk store with a FAISS index cache."""

    def __init__(
        self,
        dimension: int = None,
        db_path: Optional[Path] = None,
        index: Optional[FAISSVectorIndex] = None,
    ):
        """Initialize the chunk store.

        Args:
            dimension: Embedding dimension (default from config)
            db_path: SQLite database file (default from config)
            index: Vector index to maintain (a new one if not provided)
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.index = index or FAISSVectorIndex(dimension or config.EMBEDDING_DIMENSION)
        self.dimension = self.index.dimension
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._opened = False

        logger.info(
            "chunk_store_initialized",
            db_path=str(self.db_path),
            dimension=self.dimension,
        )

    async def open(self) -> None:
        """Create the schema if needed and load the index from disk.

        Raises:
            StorageError: If the database cannot be opened
            DimensionMismatchError: If stored vectors don't match ``dimension``
        """
        try:
            db.init_database(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to open chunk database: {e}") from e

        await self.rebuild_index()
        self._opened = True

    @property
    def is_open(self) -> bool:
        return self._opened

    async def _ensure_open(self) -> None:
        if not self._opened:
            await self.open()

    async def rebuild_index(self) -> int:
        """Rebuild the in-memory index from the durable store.

        The new index is installed only once every document has been loaded.

        Returns:
            Number of vectors indexed
        """
        try:
            rows = db.get_all_chunks(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chunks: {e}") from e

        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            if row["embedding_dim"] != self.dimension:
                logger.error(
                    "stored_dimension_mismatch",
                    document_key=row["document_key"],
                    stored=row["embedding_dim"],
                    expected=self.dimension,
                )
                raise DimensionMismatchError(self.dimension, row["embedding_dim"], "stored embedding")
            grouped.setdefault(row["document_key"], []).append(row)

        entries = {
            key: self.index.build_entry(
                [r["id"] for r in doc_rows], [r["embedding"] for r in doc_rows]
            )
            for key, doc_rows in grouped.items()
        }

        self.index.clear()
        for key, entry in entries.items():
            self.index.install(key, entry)

        logger.info(
            "index_rebuilt_from_store",
            documents=len(entries),
            vector_count=self.index.ntotal,
        )
        return self.index.ntotal

    async def store_chunks(self, document_key: str, chunks: List[Chunk]) -> int:
        """Replace every stored chunk for a document.

        The index entry is built before the database write and swapped in
        only after the transaction commits, so a failure leaves both layers
        on the previous set.

        Args:
            document_key: Page identifier
            chunks: New chunks (ids are assigned here)

        Returns:
            Number of chunks stored

        Raises:
            StorageError: If the database write fails
            DimensionMismatchError: If a chunk embedding has the wrong length
        """
        await self._ensure_open()

        async with self._locks[document_key]:
            timestamp_ms = int(time.time() * 1000)
            generation = uuid.uuid4().hex[:8]

            rows = []
            for position, chunk in enumerate(chunks):
                rows.append({
                    "id": make_chunk_id(document_key, timestamp_ms, generation, position),
                    "chunk_index": chunk.metadata.get("chunk_index", position),
                    "text": chunk.text,
                    "tokens": list(chunk.tokens),
                    "embedding": np.asarray(chunk.embedding, dtype=np.float32),
                    "metadata": chunk.metadata,
                })

            entry = self.index.build_entry(
                [r["id"] for r in rows], [r["embedding"] for r in rows]
            )

            try:
                deleted = db.replace_document_chunks(document_key, rows, self.db_path)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to store chunks for {document_key}: {e}") from e

            self.index.install(document_key, entry)

            for chunk, row in zip(chunks, rows):
                chunk.id = row["id"]
                chunk.document_key = document_key

            logger.info(
                "chunks_stored",
                document_key=document_key,
                stored=len(rows),
                replaced=deleted,
                total_vectors=self.index.ntotal,
            )
            return len(rows)

    async def get_chunks(self, document_key: str) -> List[Chunk]:
        """All chunks currently stored for a document, in insertion order."""
        await self._ensure_open()
        try:
            rows = db.get_chunks_by_document(document_key, self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chunks for {document_key}: {e}") from e
        return [Chunk.from_row(row) for row in rows]

    async def get_chunks_by_ids(self, ids: List[str]) -> List[Chunk]:
        """Chunks for the given ids; ids that no longer exist are skipped."""
        await self._ensure_open()
        try:
            rows = db.get_chunks_by_ids(ids, self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chunks by id: {e}") from e
        return [Chunk.from_row(row) for row in rows]

    async def get_all_chunks(self) -> List[Chunk]:
        await self._ensure_open()
        try:
            rows = db.get_all_chunks(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chunks: {e}") from e
        return [Chunk.from_row(row) for row in rows]

    async def delete_document(self, document_key: str) -> int:
        """Remove a document's chunks from both layers.

        Returns:
            Number of chunks deleted
        """
        await self._ensure_open()
        async with self._locks[document_key]:
            try:
                deleted = db.delete_document_chunks(document_key, self.db_path)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to delete chunks for {document_key}: {e}") from e
            self.index.remove(document_key)
            return deleted

    async def get_stats(self) -> Dict[str, Any]:
        await self._ensure_open()
        try:
            stats = db.get_chunk_stats(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read chunk stats: {e}") from e

        index_stats = self.index.get_stats()
        stats["indexed_vectors"] = index_stats["vector_count"]
        stats["indexed_documents"] = index_stats["document_count"]
        stats["index_dimension"] = index_stats["dimension"]
        return stats
