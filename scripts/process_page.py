#!/usr/bin/env python
"""Process a scraped page into the RAG store and optionally query it.

Usage:
    python scripts/process_page.py page.json --url https://example.com/post
    python scripts/process_page.py article.txt --url https://example.com/post --query "What is it about?"
    python scripts/process_page.py --url https://example.com/post --query "pricing" --no-process
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path
from datetime import datetime

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pagemate import config
from pagemate.rag.page_parser import ScrapedPage, to_structured_text
from pagemate.rag.pipeline import RAGPipeline
from pagemate.rag.errors import InputError, RAGError
import structlog

logger = structlog.get_logger()


def load_structured_text(path: Path):
    """Read a scraper JSON record or plain text file.

    Returns:
        Tuple of (structured_text, metadata)
    """
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        raise InputError(f"{path} is empty")
    if path.suffix.lower() == ".json":
        page = ScrapedPage.model_validate(json.loads(raw))
        return to_structured_text(page), {"title": page.title} if page.title else {}
    return raw, {}


def print_summary(summary: dict, elapsed_seconds: float):
    print(f"\n{'=' * 60}")
    print("  Page processed")
    print(f"{'=' * 60}\n")
    print(f"  Document key:          {summary['document_key']}")
    print(f"  Chunks created:        {summary['total_chunks']}")
    print(f"  Average chunk length:  {summary['average_chunk_length']:.1f} chars")
    print(f"  Time elapsed:          {elapsed_seconds:.2f}s\n")


def print_results(query: str, retrieval):
    print(f"{'=' * 60}")
    print(f"  Query: {query}")
    print(f"{'=' * 60}\n")

    if retrieval.used_fallback:
        print(f"  No relevant chunks; fallback context from {retrieval.fallback_chunks} chunk(s)\n")
    for position, result in enumerate(retrieval.results, 1):
        preview = result.text.replace("\n", " ")[:100]
        print(f"  {position}. [{result.score:.3f}] {preview}")

    print(f"\n{'-' * 60}\n{retrieval.context}\n")


async def main():
    """Main entry point for the process script."""
    parser = argparse.ArgumentParser(
        description="Process a scraped page for retrieval and query it",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("input", type=Path, nargs="?", help="Scraped page JSON or text file")
    parser.add_argument("--url", required=True, help="Document key (page URL)")
    parser.add_argument("--query", "-q", help="Question to retrieve context for")
    parser.add_argument("--top-k", type=int, default=config.RETRIEVAL_TOP_K)
    parser.add_argument("--mode", choices=["vector", "lexical"], default=config.RETRIEVAL_MODE)
    parser.add_argument("--db-path", type=Path, default=None, help=f"Database (default: {config.DB_PATH})")
    parser.add_argument("--no-process", action="store_true", help="Only query already stored chunks")

    args = parser.parse_args()

    if not args.no_process and args.input is None:
        parser.error("an input file is required unless --no-process is given")

    pipeline = RAGPipeline(retrieval_mode=args.mode, db_path=args.db_path)

    try:
        await pipeline.init()

        if not args.no_process:
            text, metadata = load_structured_text(args.input)
            started = datetime.now()
            summary = await pipeline.process_page_content(text, args.url, metadata)
            print_summary(summary, (datetime.now() - started).total_seconds())

        if args.query:
            retrieval = await pipeline.assemble_context(args.query, args.url, top_k=args.top_k)
            print_results(args.query, retrieval)

    except FileNotFoundError as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)

    except RAGError as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("process_page_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
