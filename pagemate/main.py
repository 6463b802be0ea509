"""Quart application exposing page processing and question answering."""
import logging
from typing import Optional
from quart import Quart, request, jsonify
from pydantic import BaseModel, ValidationError
import structlog

from pagemate import config
from pagemate.llm_client import LanguageModelUnavailable, ollama_client
from pagemate.rag.errors import DimensionMismatchError, StorageError
from pagemate.rag.page_parser import ScrapedPage, to_structured_text
from pagemate.rag.pipeline import get_pipeline

# Configure structured logging
logging.basicConfig(format="%(message)s", level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

app = Quart(__name__)

SYSTEM_PROMPT = (
    "You are PageMate, a friendly assistant that helps users explore and "
    "understand the content of the webpage they are viewing. Answer from the "
    "page context when it is relevant and say so when it is not."
)


class ProcessPageRequest(BaseModel):
    url: str
    page: Optional[ScrapedPage] = None
    text: Optional[str] = None


class AskRequest(BaseModel):
    url: str
    query: str
    page: Optional[ScrapedPage] = None
    top_k: Optional[int] = None


class SearchRequest(BaseModel):
    query: str
    top_k: Optional[int] = None
    threshold: Optional[float] = None


async def _parse(model: type[BaseModel]):
    data = await request.get_json(silent=True)
    if data is None:
        return None, (jsonify({"error": "Request body must be JSON"}), 400)
    try:
        return model.model_validate(data), None
    except ValidationError as e:
        logger.warning("invalid_request_body", errors=e.errors(include_url=False, include_context=False))
        return None, (jsonify({"error": "Invalid request body", "details": e.errors(include_url=False, include_context=False)}), 400)


async def _process(pipeline, url: str, page: Optional[ScrapedPage], text: Optional[str] = None) -> dict:
    structured_text = text if text is not None else to_structured_text(page)
    metadata = {"title": page.title} if page and page.title else {}
    return await pipeline.process_page_content(structured_text, url, metadata)


@app.route("/api/pages", methods=["POST"])
async def process_page():
    """Process a scraped page for later questions.

    Expects JSON body:
    {
        "url": "https://example.com/article",
        "page": {"title": "...", "headings": [...], "paras": [...], "links": [...]},
        "text": "optional pre-flattened text, used instead of page"
    }

    Returns JSON:
    {"total_chunks": 5, "document_key": "...", "average_chunk_length": 812.4}
    """
    body, error = await _parse(ProcessPageRequest)
    if error:
        return error

    if body.page is None and body.text is None:
        return jsonify({"error": "Provide 'page' or 'text'"}), 400

    try:
        pipeline = await get_pipeline()
        summary = await _process(pipeline, body.url, body.page, body.text)
        return jsonify(summary), 201

    except (StorageError, DimensionMismatchError) as e:
        logger.error("page_processing_failed", error=str(e), error_type=type(e).__name__, url=body.url)
        return jsonify({"error": "Retrieval storage is unavailable for this page"}), 500


@app.route("/api/pages", methods=["DELETE"])
async def clear_page():
    """Delete every stored chunk for ?url=..."""
    url = request.args.get("url")
    if not url:
        return jsonify({"error": "Missing 'url' query parameter"}), 400

    try:
        pipeline = await get_pipeline()
        deleted = await pipeline.clear_document(url)
    except StorageError as e:
        logger.error("page_clear_failed", error=str(e), url=url)
        return jsonify({"error": "Failed to clear page"}), 500

    if not deleted:
        return jsonify({"error": "Page not found"}), 404
    return "", 204


@app.route("/api/ask", methods=["POST"])
async def ask():
    """Answer a question about a page.

    Expects JSON body:
    {
        "url": "https://example.com/article",
        "query": "What is this article about?",
        "page": {...}  // optional; processed (replacing earlier chunks) when given
    }

    Returns JSON:
    {
        "answer": "...",
        "sources": [...],
        "metadata": {"total_chunks": 5, "relevant_chunks": 2, "used_fallback": false, ...}
    }
    """
    body, error = await _parse(AskRequest)
    if error:
        return error

    query = body.query.strip()
    if not query:
        return jsonify({"error": "Query cannot be empty"}), 400
    if len(query) > config.MAX_QUERY_LENGTH:
        return jsonify({"error": f"Query too long (max {config.MAX_QUERY_LENGTH} characters)"}), 400

    logger.info("ask_request_received", url=body.url, query_length=len(query), has_page=body.page is not None)

    try:
        pipeline = await get_pipeline()

        total_chunks = None
        if body.page is not None:
            summary = await _process(pipeline, body.url, body.page)
            total_chunks = summary["total_chunks"]

        retrieval = await pipeline.assemble_context(
            query,
            body.url,
            top_k=body.top_k,
            links=body.page.links if body.page else None,
        )

    except (StorageError, DimensionMismatchError) as e:
        logger.error("ask_retrieval_failed", error=str(e), error_type=type(e).__name__, url=body.url)
        return jsonify({"error": "Retrieval is unavailable for this page"}), 500

    title = body.page.title if body.page and body.page.title else "Current Page"
    prompt = f"Page ({title}):\n{retrieval.context}\n\nQuestion:\n{query}"

    try:
        answer = await ollama_client.complete(prompt, system=SYSTEM_PROMPT)
    except LanguageModelUnavailable as e:
        logger.error("language_model_unavailable", error=str(e))
        return jsonify({"error": "Language model unavailable"}), 503

    logger.info(
        "ask_response_sent",
        url=body.url,
        relevant_chunks=len(retrieval.results),
        used_fallback=retrieval.used_fallback,
        answer_length=len(answer),
    )

    return jsonify({
        "answer": answer,
        "model": config.CHAT_MODEL,
        "sources": [result.to_dict() for result in retrieval.results],
        "metadata": {
            "source": body.url,
            "title": title,
            "total_chunks": total_chunks,
            "relevant_chunks": len(retrieval.results),
            "used_fallback": retrieval.used_fallback,
        },
    })


@app.route("/api/search", methods=["POST"])
async def search_all_pages():
    """Search every stored page (stricter threshold than per-page retrieval)."""
    body, error = await _parse(SearchRequest)
    if error:
        return error

    try:
        pipeline = await get_pipeline()
        results = await pipeline.search_across_all_pages(body.query, body.top_k, body.threshold)
    except (StorageError, DimensionMismatchError) as e:
        logger.error("cross_page_search_failed", error=str(e))
        return jsonify({"error": "Search failed"}), 500

    return jsonify({"results": [result.to_dict() for result in results]})


@app.route("/api/stats", methods=["GET"])
async def stats():
    try:
        pipeline = await get_pipeline()
        return jsonify(await pipeline.get_stats())
    except StorageError as e:
        logger.error("stats_failed", error=str(e))
        return jsonify({"error": "Failed to read stats"}), 500


@app.route("/health/ready")
async def health_ready():
    """Readiness probe.

    Checks:
    - Ollama service is reachable and has the chat model
    - The chunk store opens
    """
    checks = {"status": "healthy", "ollama": False, "models": False, "storage": False}

    try:
        await get_pipeline()
        checks["storage"] = True
    except (StorageError, DimensionMismatchError) as e:
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503

    try:
        models = await ollama_client.list_models()
        checks["ollama"] = True

        if config.CHAT_MODEL in models:
            checks["models"] = True
        else:
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing chat model: {config.CHAT_MODEL}"

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


@app.route("/health/live")
async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


@app.errorhandler(404)
async def not_found(error):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
async def internal_error(error):
    logger.error("internal_server_error", error=str(error))
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    app.run(host="127.0.0.1", port=5000, debug=True)
