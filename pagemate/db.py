"""SQLite persistence for page chunks.

One table holds every chunk, namespaced by document key (the page URL):
- chunk text, retrieval tokens and metadata as JSON
- the embedding as a float32 blob plus its dimension
- an autoincrement sequence column recording insertion order
"""
import sqlite3
import json
from pathlib import Path
from typing import Optional, List, Dict, Any, Sequence
from datetime import datetime, timezone
import numpy as np
import structlog

from pagemate import config

logger = structlog.get_logger()


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path or config.DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Optional[Path] = None) -> None:
    """Create the chunks table and its indexes if they don't exist."""
    db_path = Path(db_path or config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                document_key TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                text TEXT NOT NULL,
                tokens_json TEXT NOT NULL,
                embedding BLOB NOT NULL,
                embedding_dim INTEGER NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document_key
            ON chunks(document_key)
        """)
        conn.commit()
        logger.info("database_initialized", db_path=str(db_path))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def encode_embedding(embedding: Sequence[float]) -> bytes:
    return np.asarray(embedding, dtype=np.float32).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "seq": row["seq"],
        "id": row["id"],
        "document_key": row["document_key"],
        "chunk_index": row["chunk_index"],
        "text": row["text"],
        "tokens": json.loads(row["tokens_json"]),
        "embedding": decode_embedding(row["embedding"]),
        "embedding_dim": row["embedding_dim"],
        "metadata": json.loads(row["metadata_json"]) if row["metadata_json"] else {},
        "created_at": row["created_at"],
    }


def replace_document_chunks(
    document_key: str,
    rows: List[Dict[str, Any]],
    db_path: Optional[Path] = None,
) -> int:
    """Delete every chunk for a document and insert the new rows.

    Both statements run in one transaction, so other connections see either
    the previous set or the new one.

    Args:
        document_key: Page identifier
        rows: Dicts with id, chunk_index, text, tokens, embedding, metadata
        db_path: Database file (default from config)

    Returns:
        Number of rows deleted
    """
    conn = get_connection(db_path)
    created_at = datetime.now(timezone.utc).isoformat()

    try:
        cursor = conn.execute(
            "DELETE FROM chunks WHERE document_key = ?", (document_key,)
        )
        deleted = cursor.rowcount

        conn.executemany("""
            INSERT INTO chunks (
                id, document_key, chunk_index, text, tokens_json,
                embedding, embedding_dim, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                row["id"],
                document_key,
                row["chunk_index"],
                row["text"],
                json.dumps(row["tokens"]),
                encode_embedding(row["embedding"]),
                len(row["embedding"]),
                json.dumps(row["metadata"]) if row.get("metadata") else None,
                created_at,
            )
            for row in rows
        ])

        conn.commit()
        return deleted

    except Exception as e:
        conn.rollback()
        logger.error("chunk_replace_failed", error=str(e), document_key=document_key)
        raise
    finally:
        conn.close()


def get_chunks_by_document(
    document_key: str, db_path: Optional[Path] = None
) -> List[Dict[str, Any]]:
    """All chunks for a document in insertion order."""
    conn = get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM chunks WHERE document_key = ? ORDER BY seq",
            (document_key,),
        ).fetchall()
        return [_row_to_dict(row) for row in rows]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e), document_key=document_key)
        raise
    finally:
        conn.close()


def get_chunks_by_ids(
    ids: List[str], db_path: Optional[Path] = None
) -> List[Dict[str, Any]]:
    """Chunks for the given ids, in the order requested; unknown ids are skipped."""
    if not ids:
        return []

    conn = get_connection(db_path)
    try:
        placeholders = ",".join("?" * len(ids))
        rows = conn.execute(
            f"SELECT * FROM chunks WHERE id IN ({placeholders})", list(ids)
        ).fetchall()
        by_id = {row["id"]: _row_to_dict(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_all_chunks(db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Every stored chunk in insertion order (used to rebuild the index)."""
    conn = get_connection(db_path)
    try:
        rows = conn.execute("SELECT * FROM chunks ORDER BY seq").fetchall()
        return [_row_to_dict(row) for row in rows]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def delete_document_chunks(document_key: str, db_path: Optional[Path] = None) -> int:
    """Delete all chunks for a document.

    Returns:
        Number of chunks deleted
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            "DELETE FROM chunks WHERE document_key = ?", (document_key,)
        )
        conn.commit()
        logger.info("document_chunks_deleted", document_key=document_key, count=cursor.rowcount)
        return cursor.rowcount

    except Exception as e:
        conn.rollback()
        logger.error("chunk_delete_failed", error=str(e), document_key=document_key)
        raise
    finally:
        conn.close()


def get_chunk_stats(db_path: Optional[Path] = None) -> Dict[str, Any]:
    """Totals across every stored document."""
    conn = get_connection(db_path)
    try:
        row = conn.execute("""
            SELECT
                COUNT(*) AS total_chunks,
                COUNT(DISTINCT document_key) AS total_documents,
                MAX(embedding_dim) AS embedding_dimension
            FROM chunks
        """).fetchone()
        return {
            "total_chunks": row["total_chunks"],
            "total_documents": row["total_documents"],
            "embedding_dimension": row["embedding_dimension"] or 0,
        }

    except Exception as e:
        logger.error("chunk_stats_failed", error=str(e))
        raise
    finally:
        conn.close()
