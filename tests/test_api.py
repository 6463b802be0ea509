"""Tests for the Quart service endpoints."""
from unittest.mock import AsyncMock

import httpx
import pytest

from pagemate import main
from pagemate.llm_client import LanguageModelUnavailable

PAGE_URL = "https://example.com/pets"


@pytest.fixture
def client(monkeypatch, pipeline):
    async def fake_get_pipeline():
        return pipeline

    monkeypatch.setattr(main, "get_pipeline", fake_get_pipeline)
    return main.app.test_client()


@pytest.fixture
def answer(monkeypatch):
    complete = AsyncMock(return_value="Cats are mammals, according to the page.")
    monkeypatch.setattr(main.ollama_client, "complete", complete)
    return complete


async def test_health_live(client):
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert (await response.get_json()) == {"status": "alive"}


async def test_process_page_from_text(client, cats_and_dogs):
    response = await client.post("/api/pages", json={"url": PAGE_URL, "text": cats_and_dogs})

    assert response.status_code == 201
    data = await response.get_json()
    assert data["total_chunks"] == 2
    assert data["document_key"] == PAGE_URL


async def test_process_page_from_scraped_record(client, pipeline):
    page = {"title": "Pets", "paras": ["Cats are curious animals that love to explore."]}
    response = await client.post("/api/pages", json={"url": PAGE_URL, "page": page})

    assert response.status_code == 201
    chunks = await pipeline.store.get_chunks(PAGE_URL)
    assert chunks[0].metadata["title"] == "Pets"


async def test_process_page_requires_content(client):
    response = await client.post("/api/pages", json={"url": PAGE_URL})
    assert response.status_code == 400


async def test_invalid_bodies_rejected(client):
    response = await client.post("/api/pages", json={"text": "no url given"})
    assert response.status_code == 400
    assert "details" in (await response.get_json())

    response = await client.post(
        "/api/pages", data="not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


async def test_ask_returns_answer_and_sources(client, answer, cats_and_dogs):
    await client.post("/api/pages", json={"url": PAGE_URL, "text": cats_and_dogs})

    response = await client.post("/api/ask", json={"url": PAGE_URL, "query": "cats"})

    assert response.status_code == 200
    data = await response.get_json()
    assert data["answer"] == "Cats are mammals, according to the page."
    assert data["sources"]
    assert "cats" in data["sources"][0]["text"]
    assert data["metadata"]["used_fallback"] is False

    prompt = answer.await_args.args[0]
    assert "[Section 1]" in prompt
    assert prompt.endswith("Question:\ncats")


async def test_ask_with_page_processes_it_first(client, answer):
    page = {"title": "Pets", "paras": ["Parrots can mimic human speech remarkably well."]}

    response = await client.post(
        "/api/ask", json={"url": PAGE_URL, "query": "parrots speech", "page": page}
    )

    data = await response.get_json()
    assert response.status_code == 200
    assert data["metadata"]["title"] == "Pets"
    assert data["metadata"]["total_chunks"] >= 1


async def test_ask_uses_fallback_context(client, answer, cats_and_dogs):
    await client.post("/api/pages", json={"url": PAGE_URL, "text": cats_and_dogs})

    response = await client.post("/api/ask", json={"url": PAGE_URL, "query": "What is this?"})

    data = await response.get_json()
    assert data["metadata"]["used_fallback"] is True
    assert data["sources"] == []
    assert "Paragraph two about dogs." in answer.await_args.args[0]


async def test_ask_rejects_empty_and_oversized_queries(client, answer):
    response = await client.post("/api/ask", json={"url": PAGE_URL, "query": "   "})
    assert response.status_code == 400

    response = await client.post("/api/ask", json={"url": PAGE_URL, "query": "x" * 5000})
    assert response.status_code == 400
    answer.assert_not_awaited()


async def test_ask_language_model_unavailable(client, monkeypatch):
    monkeypatch.setattr(
        main.ollama_client,
        "complete",
        AsyncMock(side_effect=LanguageModelUnavailable("connection refused")),
    )

    response = await client.post("/api/ask", json={"url": PAGE_URL, "query": "cats"})

    assert response.status_code == 503
    assert (await response.get_json())["error"] == "Language model unavailable"


@pytest.mark.parametrize(
    "post",
    [
        AsyncMock(side_effect=httpx.ReadTimeout("timed out")),
        AsyncMock(return_value=httpx.Response(500, request=httpx.Request("POST", "http://ollama.test/api/chat"))),
    ],
    ids=["timeout", "server_error"],
)
async def test_ask_maps_ollama_failures_to_503(client, monkeypatch, post):
    monkeypatch.setattr(httpx.AsyncClient, "post", post)

    response = await client.post("/api/ask", json={"url": PAGE_URL, "query": "cats"})

    assert response.status_code == 503
    assert (await response.get_json())["error"] == "Language model unavailable"


async def test_clear_page(client, cats_and_dogs):
    await client.post("/api/pages", json={"url": PAGE_URL, "text": cats_and_dogs})

    response = await client.delete("/api/pages", query_string={"url": PAGE_URL})
    assert response.status_code == 204

    response = await client.delete("/api/pages", query_string={"url": PAGE_URL})
    assert response.status_code == 404


async def test_search_and_stats(client, cats_and_dogs):
    await client.post("/api/pages", json={"url": PAGE_URL, "text": cats_and_dogs})

    response = await client.post("/api/search", json={"query": "cats", "threshold": 0.1})
    results = (await response.get_json())["results"]
    assert results[0]["document_key"] == PAGE_URL

    response = await client.get("/api/stats")
    stats = await response.get_json()
    assert stats["total_chunks"] == 2
    assert stats["total_documents"] == 1


async def test_unknown_route(client):
    response = await client.get("/api/nope")
    assert response.status_code == 404
    assert (await response.get_json()) == {"error": "Not found"}
