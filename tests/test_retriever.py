"""Tests for cosine and lexical ranking."""
import numpy as np
import pytest

from pagemate.rag.embedder import HashingEmbeddingGenerator, tokenize
from pagemate.rag.errors import DimensionMismatchError
from pagemate.rag.retriever import (
    RetrievalResult,
    SimilaritySearch,
    cosine_similarity,
    length_factor,
    lexical_score,
    rank_by_cosine,
    rank_by_tokens,
)
from pagemate.rag.store import Chunk

KEY = "https://example.com/guide"


def chunk(text, embedding=None, chunk_id=None):
    return Chunk(
        text=text,
        tokens=tokenize(text),
        embedding=np.asarray(embedding, dtype=np.float32) if embedding is not None else HashingEmbeddingGenerator().vectorize(text),
        metadata={},
        id=chunk_id or text,
        document_key=KEY,
    )


def test_cosine_similarity_is_symmetric():
    a = [0.2, 0.5, 0.1]
    b = [0.9, 0.1, 0.4]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_cosine_similarity_of_vector_with_itself():
    assert cosine_similarity([3.0, 4.0], [3.0, 4.0]) == pytest.approx(1.0)


def test_cosine_similarity_zero_vector():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_cosine_similarity_dimension_mismatch():
    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    # Still a ValueError for callers that only know about that
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 0.0])


def test_length_factor_peaks_at_target():
    assert length_factor(80, 80) == pytest.approx(1.0)
    assert length_factor(40, 80) == pytest.approx(length_factor(160, 80))
    assert length_factor(40, 80) < 1.0
    assert length_factor(0, 80) == 0.0


def test_lexical_score():
    tokens = ["cats", "cats", "mammals"]

    expected = 1.0 * 2 * length_factor(3, 80)
    assert lexical_score(["cats"], tokens, 80) == pytest.approx(expected)
    assert lexical_score(["dogs"], tokens, 80) == 0.0
    assert lexical_score([], tokens, 80) == 0.0


def test_lexical_score_rewards_coverage():
    tokens = ["cats", "purr", "loudly"]
    full = lexical_score(["cats", "purr"], tokens, 80)
    half = lexical_score(["cats", "bark"], tokens, 80)
    assert full > half > 0


def test_rank_by_cosine_keeps_insertion_order_on_ties():
    candidates = [
        chunk("first", [1.0, 0.0]),
        chunk("second", [0.5, 1.0]),
        chunk("third", [1.0, 0.0]),
    ]

    results = rank_by_cosine([1.0, 0.0], candidates, top_k=3)

    assert [r.text for r in results] == ["first", "third", "second"]
    assert all(r.mode == "vector" for r in results)


def test_rank_by_cosine_thresholds_after_top_k():
    candidates = [chunk("near", [1.0, 0.1]), chunk("far", [0.0, 1.0])]

    results = rank_by_cosine([1.0, 0.0], candidates, top_k=2, threshold=0.5)

    assert [r.text for r in results] == ["near"]


def test_rank_by_cosine_drops_zero_scores_at_zero_threshold():
    candidates = [chunk("orthogonal", [0.0, 1.0]), chunk("opposite", [-1.0, 0.0])]

    assert rank_by_cosine([1.0, 0.0], candidates, top_k=5, threshold=0.0) == []
    assert rank_by_cosine([0.0, 0.0], candidates, top_k=5, threshold=0.0) == []


def test_rank_by_tokens_excludes_zero_scores_and_limits():
    candidates = [
        chunk("cats are independent animals"),
        chunk("dogs enjoy long walks"),
        chunk("cats and cats and more cats"),
    ]

    results = rank_by_tokens(["cats"], candidates, top_k=1)

    assert len(results) == 1
    assert results[0].text == "cats and cats and more cats"
    assert results[0].mode == "lexical"


def test_retrieval_result_to_dict_and_source():
    result = RetrievalResult(
        chunk_id="id-1",
        text="text",
        score=0.123456,
        metadata={"title": "Guide"},
        document_key=KEY,
    )

    assert result.to_dict()["score"] == 0.1235
    assert result.source == f"Guide ({KEY})"


async def test_search_respects_top_k_and_order(store):
    texts = [f"cats topic number {word}" for word in ("alpha", "bravo", "charlie", "delta", "echo")]
    await store.store_chunks(KEY, [chunk(t) for t in texts])
    search = SimilaritySearch(store, threshold=0.0)

    results = await search.search(HashingEmbeddingGenerator().vectorize("cats topic"), KEY, top_k=3)

    assert len(results) == 3
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)


async def test_search_threshold_filters_everything(store):
    await store.store_chunks(KEY, [chunk("completely unrelated words")])
    search = SimilaritySearch(store, threshold=0.5)

    query = np.zeros(384, dtype=np.float32)
    assert await search.search(query, KEY) == []


async def test_search_zero_vector_query_at_zero_threshold(store):
    await store.store_chunks(KEY, [chunk("cats nap in the sun")])
    search = SimilaritySearch(store, threshold=0.0)

    assert await search.search(np.zeros(384, dtype=np.float32), KEY) == []


async def test_search_top_k_zero_returns_nothing(store):
    await store.store_chunks(KEY, [chunk("cats nap in the sun")])
    search = SimilaritySearch(store, threshold=0.0)

    query = HashingEmbeddingGenerator().vectorize("cats")
    assert await search.search(query, KEY, top_k=0) == []


async def test_search_query_dimension_mismatch(store):
    await store.store_chunks(KEY, [chunk("some stored content")])
    search = SimilaritySearch(store)

    with pytest.raises(DimensionMismatchError):
        await search.search(np.ones(10, dtype=np.float32), KEY)


async def test_search_lexical_restricted_to_document(store):
    await store.store_chunks(KEY, [chunk("cats nap in the sun")])
    await store.store_chunks("https://example.com/other", [chunk("cats chase string")])
    search = SimilaritySearch(store)

    results = await search.search_lexical(["cats"], KEY)

    assert [r.text for r in results] == ["cats nap in the sun"]
    assert results[0].document_key == KEY
