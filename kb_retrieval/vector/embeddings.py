"""
Text embeddings.
Provider interface, a deterministic lexical hash provider, a sentence-transformers provider,
and the codec that normalizes output and degrades to the lexical hash when the provider fails.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
import hashlib
import re
import threading
import time
from typing import Callable, List, Optional, Tuple

import numpy as np

from .validator import validate_embedding
from ..util.logging import logger

_TOKEN_PATTERN = re.compile(r"[\w']+", re.UNICODE)
_EMPTY_TEXT_TOKEN = "<empty>"


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic lexical hash embedding.

    Each lowercase word token and each character trigram is hashed into a
    signed bucket (the hashing trick), so texts sharing vocabulary end up
    close under cosine similarity. Reproducible across processes and never
    degenerate: empty input hashes a sentinel token instead.
    """

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        """Generate a unit-length vector from the text's tokens."""
        vector = np.zeros(self.dimension, dtype=np.float64)

        tokens = _TOKEN_PATTERN.findall((text or "").lower())
        if not tokens:
            tokens = [_EMPTY_TEXT_TOKEN]

        for token in tokens:
            self._accumulate(vector, f"w:{token}", 1.0)
            padded = f"#{token}#"
            for i in range(len(padded) - 2):
                self._accumulate(vector, f"c:{padded[i:i + 3]}", 0.5)

        norm = np.linalg.norm(vector)
        if norm == 0:
            # Every bucket cancelled out; fall back to the sentinel's bucket
            self._accumulate(vector, f"w:{_EMPTY_TEXT_TOKEN}", 1.0)
            norm = np.linalg.norm(vector)

        return (vector / norm).tolist()

    def _accumulate(self, vector: np.ndarray, feature: str, weight: float) -> None:
        digest = hashlib.md5(feature.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "little") % self.dimension
        sign = 1.0 if digest[4] & 1 else -1.0
        vector[bucket] += sign * weight

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Defaults to all-MiniLM-L6-v2 (384 dimensions).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False, normalize_embeddings=True)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class EmbeddingCache:
    """Bounded LRU cache with per-entry expiry. Safe to share across request threads."""

    def __init__(self, max_size: int = 1000, ttl_sec: float = 86400, clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, np.ndarray]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, vector = entry
            if self._clock() - stored_at > self.ttl_sec:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return vector

    def put(self, key: str, vector: np.ndarray) -> None:
        if self.max_size <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock(), vector)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EmbeddingCodec:
    """
    Text to fixed-dimension, L2-normalized vector.

    Never raises on input text. If the provider fails or returns a vector that
    does not pass validation, the codec logs the downgrade and returns the
    deterministic lexical hash vector instead.
    """

    def __init__(
        self,
        provider: Optional[IEmbeddingProvider],
        dimension: int,
        cache_max_size: int = 1000,
        cache_ttl_sec: float = 86400,
    ):
        """
        Initialize the codec.

        Args:
            provider: Upstream embedding provider; None means lexical hash only
            dimension: Output dimension D, fixed for one index instance
            cache_max_size: Maximum cached provider vectors
            cache_ttl_sec: Cached vector lifetime
        """
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.provider = provider
        self._lexical = DeterministicHashEmbedding(dimension)
        self._cache = EmbeddingCache(cache_max_size, cache_ttl_sec)
        self.downgrade_count = 0
        self._downgrade_lock = threading.Lock()

    @property
    def provider_name(self) -> str:
        if self.provider is None:
            return "none"
        return type(self.provider).__name__

    def encode(self, text: str) -> np.ndarray:
        """Embed text, falling back to the lexical hash on any provider failure."""
        text = text if isinstance(text, str) else ("" if text is None else str(text))

        cached = self._cache.get(text)
        if cached is not None:
            return cached.copy()

        if self.provider is None or isinstance(self.provider, DeterministicHashEmbedding):
            vector = self._normalize(self._lexical.embed_text(text))
            self._cache.put(text, vector)
            return vector.copy()

        try:
            raw = self.provider.embed_text(text)
        except Exception as e:
            return self._downgrade(text, f"{type(e).__name__}: {e}")

        result = validate_embedding(raw, self.dimension)
        if not result.valid:
            return self._downgrade(text, f"provider returned invalid vector: {result.reason}")

        vector = self._normalize(raw)
        self._cache.put(text, vector)
        return vector.copy()

    def encode_batch(self, texts: List[str]) -> List[np.ndarray]:
        return [self.encode(text) for text in texts]

    def lexical_encode(self, text: str) -> np.ndarray:
        """The deterministic fallback vector for text."""
        return self._normalize(self._lexical.embed_text(text or ""))

    def clear_cache(self) -> None:
        self._cache.clear()

    def _downgrade(self, text: str, reason: str) -> np.ndarray:
        with self._downgrade_lock:
            self.downgrade_count += 1
        logger.log_embedding_downgrade(self.provider_name, reason, len(text))
        # Not cached: a recovered provider is used on the next call
        return self.lexical_encode(text)

    @staticmethod
    def _normalize(values) -> np.ndarray:
        vector = np.asarray(values, dtype=np.float64)
        norm = np.linalg.norm(vector)
        if norm == 0:
            return vector.astype(np.float32)
        return (vector / norm).astype(np.float32)
