"""Pytest configuration and fixtures for the retrieval engine tests."""
import pytest

from pagemate.rag.chunker import TextChunker
from pagemate.rag.embedder import EmbeddingCache, HashingEmbeddingGenerator
from pagemate.rag.pipeline import RAGPipeline
from pagemate.rag.store import ChunkStore


CATS_AND_DOGS = (
    "# Title\n\n"
    "Paragraph one about cats. Cats are mammals.\n\n"
    "Paragraph two about dogs."
)


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite file per test."""
    return tmp_path / "chunks.sqlite"


@pytest.fixture
def embedder():
    return HashingEmbeddingGenerator(cache=EmbeddingCache())


@pytest.fixture
async def store(db_path, embedder):
    chunk_store = ChunkStore(dimension=embedder.dimension, db_path=db_path)
    await chunk_store.open()
    return chunk_store


@pytest.fixture
async def pipeline(store, embedder):
    rag = RAGPipeline(store=store, embedder=embedder, chunker=TextChunker(target_size=400, overlap=50))
    await rag.init()
    return rag


@pytest.fixture
async def lexical_pipeline(store, embedder):
    rag = RAGPipeline(store=store, embedder=embedder, retrieval_mode="lexical")
    await rag.init()
    return rag


@pytest.fixture
def cats_and_dogs():
    """Two short paragraphs under a title heading."""
    return CATS_AND_DOGS
