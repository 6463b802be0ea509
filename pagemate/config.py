"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("PAGEMATE_DATA_DIR", str(BASE_DIR / "data")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:4b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60.0"))

# Embeddings: "hashing" (local feature hashing) or "ollama"
EMBEDDING_BACKEND = os.getenv("EMBEDDING_BACKEND", "hashing")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "384"))

# Chunking parameters (word-based, matches what a page scrape produces)
CHUNK_TARGET_SIZE = int(os.getenv("CHUNK_TARGET_SIZE", "400"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))
CHUNK_MIN_WORDS = int(os.getenv("CHUNK_MIN_WORDS", "10"))

# Retrieval parameters
RETRIEVAL_MODE = os.getenv("RETRIEVAL_MODE", "vector")  # "vector" or "lexical"
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "4"))
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.01"))
CROSS_PAGE_THRESHOLD = float(os.getenv("CROSS_PAGE_THRESHOLD", "0.6"))
LEXICAL_TARGET_TOKENS = int(os.getenv("LEXICAL_TARGET_TOKENS", "80"))
FALLBACK_CHUNK_COUNT = int(os.getenv("FALLBACK_CHUNK_COUNT", "3"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "6000"))

# Request limits
MAX_QUERY_LENGTH = int(os.getenv("MAX_QUERY_LENGTH", "2000"))

# Database
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "pagemate.sqlite")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
