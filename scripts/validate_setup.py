#!/usr/bin/env python
"""Validate setup - check dependencies, configuration, Ollama and the chunk store."""
import sys
import asyncio
import tempfile
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")


def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")


def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")


def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")


def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")


async def main():
    print_section("PageMate - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 10):
        print_success("Python version >= 3.10")
    else:
        print_error("Python version < 3.10 (required)")
        errors.append("Python version too old")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    dependencies = [
        ("quart", "Quart web framework"),
        ("httpx", "HTTP client"),
        ("numpy", "Numeric arrays"),
        ("faiss", "FAISS vector index"),
        ("pydantic", "Data validation"),
        ("structlog", "Structured logging"),
    ]

    for module_name, description in dependencies:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Configuration
    print_section("3. Configuration")

    try:
        sys.path.insert(0, str(Path(__file__).parent.parent))
        from pagemate import config

        print_success("Config loaded successfully")
        print_info(f"  Chat model: {config.CHAT_MODEL}")
        print_info(f"  Embedding backend: {config.EMBEDDING_BACKEND}")
        print_info(f"  Retrieval mode: {config.RETRIEVAL_MODE}")
        print_info(f"  Chunk target size: {config.CHUNK_TARGET_SIZE} words")
        print_info(f"  Similarity threshold: {config.SIMILARITY_THRESHOLD}")
        print_info(f"  Database: {config.DB_PATH}")

        if config.SIMILARITY_THRESHOLD < 0.05:
            print_warning("Similarity threshold is very permissive; near-arbitrary matches may be returned")
            warnings.append("Low similarity threshold")

    except Exception as e:
        print_error(f"Failed to load config: {e}")
        errors.append("Config loading failed")
        return errors, warnings

    # 4. Chunk store round trip on a scratch database
    print_section("4. Chunk Store")

    try:
        from pagemate.rag.pipeline import RAGPipeline

        with tempfile.TemporaryDirectory() as tmp:
            pipeline = RAGPipeline(db_path=Path(tmp) / "check.sqlite", retrieval_mode="vector")
            await pipeline.init()
            await pipeline.process_page_content(
                "Validation paragraph about storage checks and retrieval sanity.",
                "pagemate://validate",
            )
            results = await pipeline.retrieve_relevant_chunks("storage checks", "pagemate://validate")

        if results:
            print_success(f"Store and retrieve working (top similarity {results[0].score:.3f})")
        else:
            print_error("Stored chunk was not retrieved")
            errors.append("Retrieval round trip failed")

    except Exception as e:
        print_error(f"Chunk store check failed: {e}")
        errors.append(f"Chunk store error: {e}")

    # 5. Ollama service
    print_section("5. Ollama Service")

    try:
        import httpx
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{config.OLLAMA_BASE_URL}/api/tags")
            response.raise_for_status()
            models = {m["name"] for m in response.json().get("models", [])}

        print_success(f"Ollama service running at {config.OLLAMA_BASE_URL}")

        if config.CHAT_MODEL in models:
            print_success(f"Chat model available: {config.CHAT_MODEL}")
        else:
            print_error(f"Chat model missing: {config.CHAT_MODEL}")
            print_info(f"  Run: ollama pull {config.CHAT_MODEL}")
            errors.append(f"Missing chat model: {config.CHAT_MODEL}")

        if config.EMBEDDING_BACKEND == "ollama" and config.EMBEDDING_MODEL not in models:
            print_error(f"Embedding model missing: {config.EMBEDDING_MODEL}")
            errors.append(f"Missing embedding model: {config.EMBEDDING_MODEL}")

    except httpx.ConnectError:
        print_error("Cannot connect to Ollama service")
        print_info("  Make sure Ollama is running: ollama serve")
        errors.append("Ollama not running")
    except Exception as e:
        print_error(f"Ollama check failed: {e}")
        errors.append(f"Ollama error: {e}")

    # 6. Summary
    print_section("Summary")

    if not errors:
        print_success("All checks passed! ✨")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings


if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
