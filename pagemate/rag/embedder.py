"""Embedding generation for page chunks and queries.

Handles:
- Text normalization into retrieval tokens
- Feature-hashed bag-of-words vectors (no model dependency)
- Optional Ollama-hosted embedding model behind the same interface
- A component-owned embedding cache
"""
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import numpy as np
import structlog

from pagemate import config
from pagemate.llm_client import OllamaClient, ollama_client

logger = structlog.get_logger()

NON_WORD = re.compile(r"[^\w\s]")

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does", "did",
    "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they",
    "my", "your", "his", "her", "its", "our", "their", "what", "which", "who", "whom",
    "such", "as", "from", "when", "where", "how", "why", "all", "any", "both", "each",
    "few", "more", "most", "other", "some", "than", "too", "very", "can", "will", "just",
})


def tokenize(text: str) -> List[str]:
    """Normalize text into retrieval tokens.

    Lowercases, replaces punctuation with spaces, and drops stop words and
    tokens of two characters or fewer. Duplicates are kept.
    """
    if not text:
        return []
    words = NON_WORD.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS]


def string_hash(token: str) -> int:
    """Stable non-negative 32-bit string hash (h = h * 31 + c)."""
    h = 0
    for ch in token:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale to unit length; the zero vector is returned unchanged."""
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


class EmbeddingCache:
    """Process-lifetime embedding cache keyed by normalized text.

    Purely an optimization: embeddings are deterministic, so clearing the
    cache only costs recomputation.
    """

    def __init__(self):
        self._entries: Dict[str, np.ndarray] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(text: str) -> str:
        return text.lower().strip()

    def get(self, text: str) -> Optional[np.ndarray]:
        vector = self._entries.get(self.key_for(text))
        if vector is None:
            self.misses += 1
            return None
        self.hits += 1
        return vector.copy()

    def put(self, text: str, vector: np.ndarray) -> None:
        self._entries[self.key_for(text)] = vector.copy()

    def clear(self) -> None:
        self._entries.clear()
        logger.debug("embedding_cache_cleared")

    def __len__(self) -> int:
        return len(self._entries)


class EmbeddingGenerator(ABC):
    """Maps text to a fixed-length vector for similarity search."""

    dimension: int

    def __init__(self, cache: Optional[EmbeddingCache] = None):
        self.cache = cache

    async def prepare(self) -> int:
        """Make ``dimension`` available before the first embedding call."""
        return self.dimension

    @abstractmethod
    async def _compute(self, text: str) -> np.ndarray:
        """Compute the embedding for non-empty text."""

    async def embed(self, text: str) -> np.ndarray:
        """Embed text, consulting the cache if one is attached.

        Args:
            text: Chunk or query text

        Returns:
            float32 vector of length ``dimension``
        """
        if not text or not text.strip():
            return np.zeros(self.dimension, dtype=np.float32)

        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached

        vector = await self._compute(text)

        if self.cache is not None:
            self.cache.put(text, vector)
        return vector

    def tokenize(self, text: str) -> List[str]:
        return tokenize(text)


class HashingEmbeddingGenerator(EmbeddingGenerator):
    """Feature-hashed bag-of-words embeddings.

    Each surviving token adds 1 to bucket ``hash(token) % dimension``, then
    the vector is L2-normalized. Collisions are accepted as noise.
    """

    def __init__(self, dimension: int = None, cache: Optional[EmbeddingCache] = None):
        super().__init__(cache=cache)
        self.dimension = dimension or config.EMBEDDING_DIMENSION

    def vectorize(self, text: str) -> np.ndarray:
        """Synchronous embedding, used directly by tests and scripts."""
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in tokenize(text):
            vector[string_hash(token) % self.dimension] += 1.0
        return l2_normalize(vector)

    async def _compute(self, text: str) -> np.ndarray:
        return self.vectorize(text)


class OllamaEmbeddingGenerator(EmbeddingGenerator):
    """Embeddings from an Ollama-hosted model, normalized to unit length."""

    def __init__(
        self,
        model: str = None,
        client: Optional[OllamaClient] = None,
        cache: Optional[EmbeddingCache] = None,
    ):
        super().__init__(cache=cache)
        self.model = model or config.EMBEDDING_MODEL
        self.client = client or ollama_client
        self.dimension = 0

    async def detect_dimension(self) -> int:
        """Detect embedding dimension by embedding a test string.

        Raises:
            RuntimeError: If the model returns no embedding
        """
        logger.info("detecting_embedding_dimension", model=self.model)
        try:
            response = await self.client.embeddings(prompt="test", model=self.model)
        except Exception as e:
            logger.error(
                "embedding_dimension_detection_failed",
                model=self.model,
                error=str(e),
            )
            raise RuntimeError(f"Failed to detect embedding dimension: {e}") from e

        embedding = response.get("embedding", [])
        if not embedding:
            raise RuntimeError("Empty embedding returned from Ollama")

        self.dimension = len(embedding)
        logger.info("embedding_dimension_detected", dimension=self.dimension)
        return self.dimension

    async def prepare(self) -> int:
        if not self.dimension:
            await self.detect_dimension()
        return self.dimension

    async def _compute(self, text: str) -> np.ndarray:
        if not self.dimension:
            await self.detect_dimension()

        response = await self.client.embeddings(prompt=text, model=self.model)
        embedding = response.get("embedding", [])
        if not embedding:
            raise RuntimeError("Empty embedding returned for text")

        return l2_normalize(np.asarray(embedding, dtype=np.float32))


def create_embedding_generator(
    backend: str = None, cache: Optional[EmbeddingCache] = None
) -> EmbeddingGenerator:
    """Build the configured embedding generator.

    Args:
        backend: "hashing" or "ollama" (default from config)
        cache: Optional cache to attach

    Raises:
        ValueError: For an unknown backend name
    """
    backend = backend or config.EMBEDDING_BACKEND
    if backend == "hashing":
        return HashingEmbeddingGenerator(cache=cache)
    if backend == "ollama":
        return OllamaEmbeddingGenerator(cache=cache)
    raise ValueError(f"Unknown embedding backend: {backend}")
