"""RAG pipeline for webpage question answering.

Orchestrates:
- Chunking, embedding and storing a page (replacing any earlier version)
- Query embedding and similarity search restricted to a page
- Context assembly with an explicit fallback to the page's first chunks
"""
import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import structlog

from pagemate import config
from pagemate.rag.chunker import TextChunker
from pagemate.rag.embedder import EmbeddingCache, EmbeddingGenerator, create_embedding_generator
from pagemate.rag.errors import DimensionMismatchError
from pagemate.rag.page_parser import Link
from pagemate.rag.retriever import RetrievalResult, SimilaritySearch
from pagemate.rag.store import Chunk, ChunkStore

logger = structlog.get_logger()

RETRIEVAL_MODES = ("vector", "lexical")


@dataclass
class RetrievalContext:
    """Context text handed to the language model, with what produced it."""

    context: str
    results: List[RetrievalResult] = field(default_factory=list)
    used_fallback: bool = False
    fallback_chunks: int = 0


class RAGPipeline:
    """Chunk -> embed -> store on page load; embed -> search -> assemble on query."""

    def __init__(
        self,
        store: Optional[ChunkStore] = None,
        embedder: Optional[EmbeddingGenerator] = None,
        chunker: Optional[TextChunker] = None,
        retrieval_mode: str = None,
        threshold: float = None,
        db_path: Optional[Path] = None,
        batch_size: int = 16,
    ):
        """Initialize the pipeline.

        Args:
            store: Chunk store (built from config and the embedder dimension if not provided)
            embedder: Embedding generator (configured backend with a fresh cache if not provided)
            chunker: Text chunker (default config if not provided)
            retrieval_mode: "vector" or "lexical" (default from config)
            threshold: Similarity threshold for vector retrieval (default from config)
            db_path: Database file used when building the default store
            batch_size: Number of chunks embedded concurrently
        """
        self.retrieval_mode = retrieval_mode or config.RETRIEVAL_MODE
        if self.retrieval_mode not in RETRIEVAL_MODES:
            raise ValueError(f"Unknown retrieval mode: {self.retrieval_mode}")

        self.embedder = embedder or create_embedding_generator(cache=EmbeddingCache())
        self.chunker = chunker or TextChunker()
        self.store = store
        self.db_path = db_path
        self.threshold = threshold
        self.batch_size = batch_size
        self.search: Optional[SimilaritySearch] = None
        if store is not None:
            self.search = SimilaritySearch(store, threshold=threshold)

        logger.info(
            "rag_pipeline_initialized",
            retrieval_mode=self.retrieval_mode,
            embedder=type(self.embedder).__name__,
            target_size=self.chunker.target_size,
        )

    async def init(self) -> None:
        """Resolve the embedding dimension and open the store."""
        dimension = await self.embedder.prepare()
        if self.store is None:
            self.store = ChunkStore(dimension=dimension, db_path=self.db_path)
            self.search = SimilaritySearch(self.store, threshold=self.threshold)
        elif self.store.dimension != dimension:
            raise DimensionMismatchError(self.store.dimension, dimension, "embedder")

        if not self.store.is_open:
            await self.store.open()

    async def _ensure_ready(self) -> None:
        if self.store is None or not self.store.is_open:
            await self.init()

    async def _embed_chunk(
        self, text: str, position: int, total: int, document_key: str, metadata: Dict[str, Any]
    ) -> Chunk:
        embedding = await self.embedder.embed(text)
        return Chunk(
            text=text,
            tokens=self.embedder.tokenize(text),
            embedding=embedding,
            metadata={
                "chunk_index": position,
                "total_chunks": total,
                "chunk_length": len(text),
                "document_key": document_key,
                **metadata,
            },
        )

    async def process_page_content(
        self,
        structured_text: str,
        document_key: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Chunk, embed and store a page, replacing its previous chunks.

        Chunks whose embedding fails are logged and skipped. Empty text
        clears whatever was stored for the page.

        Args:
            structured_text: Flattened page text
            document_key: Page URL
            metadata: Extra fields copied into every chunk's metadata

        Returns:
            Summary with total_chunks, document_key and average_chunk_length

        Raises:
            StorageError: If the chunks could not be persisted
        """
        await self._ensure_ready()
        metadata = metadata or {}

        if not structured_text or not structured_text.strip():
            logger.warning("empty_page_content", document_key=document_key)
            await self.store.store_chunks(document_key, [])
            return {"total_chunks": 0, "document_key": document_key, "average_chunk_length": 0.0}

        texts = self.chunker.chunk_text(structured_text)
        total = len(texts)
        logger.info("page_chunked", document_key=document_key, chunk_count=total)

        chunks: List[Chunk] = []
        failed = 0
        for start in range(0, total, self.batch_size):
            batch = texts[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *(
                    self._embed_chunk(text, start + offset, total, document_key, metadata)
                    for offset, text in enumerate(batch)
                ),
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, Exception):
                    failed += 1
                    logger.error(
                        "chunk_embedding_failed",
                        document_key=document_key,
                        chunk_index=start + offset,
                        error=str(outcome),
                    )
                    continue
                chunks.append(outcome)

        stored = await self.store.store_chunks(document_key, chunks)

        average = self.chunker.get_chunk_stats(texts)["average_chunk_length"]
        logger.info(
            "page_processed",
            document_key=document_key,
            total_chunks=total,
            stored=stored,
            failed=failed,
            average_chunk_length=round(average, 1),
        )

        return {
            "total_chunks": total,
            "document_key": document_key,
            "average_chunk_length": average,
        }

    async def retrieve_relevant_chunks(
        self,
        query: str,
        document_key: Optional[str] = None,
        top_k: int = None,
        threshold: Optional[float] = None,
    ) -> List[RetrievalResult]:
        """Rank a page's chunks against a query.

        Returns an empty list for an empty query or an unprocessed page;
        nothing is substituted for missing matches.

        Raises:
            StorageError: If stored chunks cannot be read
            DimensionMismatchError: If the query vector doesn't fit the index
        """
        await self._ensure_ready()

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        logger.info(
            "retrieval_started",
            document_key=document_key,
            query_length=len(query),
            top_k=top_k,
            mode=self.retrieval_mode,
        )

        if self.retrieval_mode == "lexical":
            results = await self.search.search_lexical(
                self.embedder.tokenize(query), document_key, top_k
            )
        else:
            query_embedding = await self.embedder.embed(query)
            results = await self.search.search(
                query_embedding, document_key, top_k, threshold
            )

        logger.info(
            "retrieval_completed",
            document_key=document_key,
            results_returned=len(results),
            top_score=round(results[0].score, 3) if results else None,
        )
        return results

    async def search_across_all_pages(
        self, query: str, top_k: int = None, threshold: float = None
    ) -> List[RetrievalResult]:
        """Retrieve from every stored page with a stricter threshold."""
        threshold = config.CROSS_PAGE_THRESHOLD if threshold is None else threshold
        return await self.retrieve_relevant_chunks(query, None, top_k, threshold)

    async def assemble_context(
        self,
        query: str,
        document_key: str,
        top_k: int = None,
        links: Optional[List[Link]] = None,
        fallback_count: int = None,
        max_chars: int = None,
    ) -> RetrievalContext:
        """Build the prompt context for a query about one page.

        Ranked chunks are numbered sections. When retrieval finds nothing the
        page's first stored chunks are used verbatim instead. Page links are
        appended in both cases.
        """
        fallback_count = config.FALLBACK_CHUNK_COUNT if fallback_count is None else fallback_count
        max_chars = config.MAX_CONTEXT_CHARS if max_chars is None else max_chars

        results = await self.retrieve_relevant_chunks(query, document_key, top_k)

        if results:
            context = "\n\n---\n\n".join(
                f"[Section {i}]\n{result.text}" for i, result in enumerate(results, 1)
            )
            outcome = RetrievalContext(context=context, results=results)
        else:
            stored = await self.store.get_chunks(document_key)
            fallback = [c.text for c in stored[:fallback_count] if c.text]
            logger.info(
                "retrieval_fallback_used",
                document_key=document_key,
                fallback_chunks=len(fallback),
            )
            outcome = RetrievalContext(
                context="\n\n".join(fallback),
                used_fallback=True,
                fallback_chunks=len(fallback),
            )

        if links:
            link_text = "; ".join(f"{link.text} ({link.href})" for link in links)
            outcome.context = f"{outcome.context}\n\nLinks: {link_text}" if outcome.context else f"Links: {link_text}"

        if len(outcome.context) > max_chars:
            outcome.context = outcome.context[:max_chars].rstrip() + "..."

        logger.debug(
            "context_assembled",
            document_key=document_key,
            sections=len(outcome.results),
            used_fallback=outcome.used_fallback,
            total_chars=len(outcome.context),
        )
        return outcome

    async def is_processed(self, document_key: str) -> bool:
        await self._ensure_ready()
        return self.store.index.has_document(document_key)

    async def clear_document(self, document_key: str) -> int:
        await self._ensure_ready()
        return await self.store.delete_document(document_key)

    async def get_stats(self) -> Dict[str, Any]:
        """Totals across stored pages, in the shape the popup reported them."""
        await self._ensure_ready()
        stats = await self.store.get_stats()
        return {
            "total_chunks": stats["total_chunks"],
            "total_documents": stats["total_documents"],
            "embedding_dimension": stats["embedding_dimension"] or self.store.dimension,
            "indexed_vectors": stats["indexed_vectors"],
            "retrieval_mode": self.retrieval_mode,
        }


# Singleton instance for convenience
_pipeline_instance: Optional[RAGPipeline] = None


async def get_pipeline() -> RAGPipeline:
    """Get or create the shared pipeline, opening its store on first use."""
    global _pipeline_instance
    if _pipeline_instance is None:
        pipeline = RAGPipeline()
        await pipeline.init()
        _pipeline_instance = pipeline
    return _pipeline_instance
