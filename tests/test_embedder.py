"""Tests for tokenization, feature hashing and the embedding cache."""
from unittest.mock import AsyncMock

import numpy as np
import pytest

from pagemate.rag.embedder import (
    EmbeddingCache,
    HashingEmbeddingGenerator,
    OllamaEmbeddingGenerator,
    create_embedding_generator,
    string_hash,
    tokenize,
)


def test_tokenize_normalizes_and_filters():
    assert tokenize("The Cats, are mammals!") == ["cats", "mammals"]


def test_tokenize_keeps_duplicates_and_drops_short_tokens():
    assert tokenize("Cats cats at ox CATS.") == ["cats", "cats", "cats"]


def test_tokenize_empty():
    assert tokenize("") == []
    assert tokenize("the of and") == []


def test_tokens_are_filtered_words():
    text = "Feature hashing maps tokens into buckets, accepting collisions."
    words = text.lower().replace(",", "").replace(".", "").split()
    assert all(token in words for token in tokenize(text))


def test_string_hash_is_stable():
    assert string_hash("") == 0
    assert string_hash("a") == 97
    assert string_hash("ab") == 97 * 31 + 98
    assert string_hash("hello") == 99162322


def test_vectorize_is_deterministic():
    embedder = HashingEmbeddingGenerator()
    first = embedder.vectorize("Retrieval grounds answers in page content.")
    second = embedder.vectorize("Retrieval grounds answers in page content.")

    assert first.dtype == np.float32
    assert first.shape == (384,)
    assert np.array_equal(first, second)


def test_vectorize_is_unit_length():
    vector = HashingEmbeddingGenerator().vectorize("cats are mammals and cats purr")
    assert float(np.linalg.norm(vector)) == pytest.approx(1.0, abs=1e-6)
    assert (vector >= 0).all()


def test_vectorize_without_tokens_is_zero():
    vector = HashingEmbeddingGenerator().vectorize("it is to be")
    assert not vector.any()


def test_custom_dimension():
    vector = HashingEmbeddingGenerator(dimension=16).vectorize("small vector space")
    assert vector.shape == (16,)


async def test_embed_empty_text_returns_zero_vector():
    embedder = HashingEmbeddingGenerator()
    vector = await embedder.embed("   ")
    assert vector.shape == (embedder.dimension,)
    assert not vector.any()


async def test_embed_uses_cache_by_normalized_text():
    cache = EmbeddingCache()
    embedder = HashingEmbeddingGenerator(cache=cache)

    first = await embedder.embed("Cats purr")
    second = await embedder.embed("  cats purr ")

    assert np.array_equal(first, second)
    assert cache.hits == 1
    assert cache.misses == 1
    assert len(cache) == 1


async def test_cached_vectors_are_copies():
    cache = EmbeddingCache()
    embedder = HashingEmbeddingGenerator(cache=cache)

    vector = await embedder.embed("mutable arrays")
    vector[:] = 0.0
    again = await embedder.embed("mutable arrays")

    assert again.any()


def test_cache_clear():
    cache = EmbeddingCache()
    cache.put("text", np.ones(3, dtype=np.float32))
    cache.clear()

    assert len(cache) == 0
    assert cache.get("text") is None


def test_create_embedding_generator():
    assert isinstance(create_embedding_generator("hashing"), HashingEmbeddingGenerator)
    assert isinstance(create_embedding_generator("ollama"), OllamaEmbeddingGenerator)
    with pytest.raises(ValueError):
        create_embedding_generator("word2vec")


async def test_ollama_generator_detects_dimension_and_normalizes():
    client = AsyncMock()
    client.embeddings.return_value = {"embedding": [3.0, 4.0]}
    embedder = OllamaEmbeddingGenerator(model="test-embed", client=client)

    assert await embedder.prepare() == 2
    vector = await embedder.embed("anything")

    assert vector.tolist() == pytest.approx([0.6, 0.8])


async def test_ollama_generator_empty_embedding_fails():
    client = AsyncMock()
    client.embeddings.return_value = {"embedding": []}
    embedder = OllamaEmbeddingGenerator(model="test-embed", client=client)

    with pytest.raises(RuntimeError):
        await embedder.prepare()
