"""
Retrieval core configuration.
Environment-driven settings and factories that build explicitly wired service instances.
"""

import os

# Vector backend configuration
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "in-memory")  # in-memory|remote
INDEX_STRATEGY = os.getenv("INDEX_STRATEGY", "auto")  # auto|hnsw|brute-force
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence-transformers
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))

# HNSW index parameters
HNSW_MAX_ELEMENTS = int(os.getenv("HNSW_MAX_ELEMENTS", "100000"))
HNSW_M = int(os.getenv("HNSW_M", "16"))
HNSW_EF_CONSTRUCTION = int(os.getenv("HNSW_EF_CONSTRUCTION", "200"))
HNSW_EF_SEARCH = int(os.getenv("HNSW_EF_SEARCH", "64"))
TOMBSTONE_REBUILD_RATIO = float(os.getenv("TOMBSTONE_REBUILD_RATIO", "0.25"))
TOMBSTONE_REBUILD_MIN = int(os.getenv("TOMBSTONE_REBUILD_MIN", "64"))

# Retrieval behaviour
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "3"))
RETRIEVAL_OVERFETCH = int(os.getenv("RETRIEVAL_OVERFETCH", "3"))
RETRIEVAL_MIN_SCORE = float(os.getenv("RETRIEVAL_MIN_SCORE", "0.5"))
AUDIENCE_BOOST = float(os.getenv("AUDIENCE_BOOST", "1.2"))
CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "0.6"))
AUDIENCE_WILDCARD = os.getenv("AUDIENCE_WILDCARD", "all")

# Remote (externally hosted) vector search
REMOTE_INDEX_ENDPOINT = os.getenv("REMOTE_INDEX_ENDPOINT", "")
REMOTE_INDEX_ID = os.getenv("REMOTE_INDEX_ID", "")
REMOTE_API_KEY = os.getenv("REMOTE_API_KEY", "")
REMOTE_DISTANCE_METRIC = os.getenv("REMOTE_DISTANCE_METRIC", "COSINE")  # COSINE|DOT_PRODUCT|EUCLIDEAN
REMOTE_MAX_RETRIES = int(os.getenv("REMOTE_MAX_RETRIES", "3"))
REMOTE_RETRY_DELAY_MS = int(os.getenv("REMOTE_RETRY_DELAY_MS", "1000"))
REMOTE_TIMEOUT_SEC = float(os.getenv("REMOTE_TIMEOUT_SEC", "10"))

# External search fallback
FALLBACK_PROVIDER = os.getenv("FALLBACK_PROVIDER", "none")  # none|keyword|http
FALLBACK_ENDPOINT = os.getenv("FALLBACK_ENDPOINT", "")
FALLBACK_TIMEOUT_SEC = float(os.getenv("FALLBACK_TIMEOUT_SEC", "5"))

# Usage counting and caches
USAGE_QUEUE_SIZE = int(os.getenv("USAGE_QUEUE_SIZE", "1000"))
USAGE_CACHE_MAX_SIZE = int(os.getenv("USAGE_CACHE_MAX_SIZE", "100"))
EMBEDDING_CACHE_MAX_SIZE = int(os.getenv("EMBEDDING_CACHE_MAX_SIZE", "1000"))
EMBEDDING_CACHE_TTL_SEC = int(os.getenv("EMBEDDING_CACHE_TTL_SEC", "86400"))

# HTTP surface
KB_API_ENABLED = os.getenv("KB_API_ENABLED", "true").lower() == "true"

VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def get_index_strategy():
    """Get index strategy (auto|hnsw|brute-force)."""
    return os.getenv("INDEX_STRATEGY", INDEX_STRATEGY)


def get_overfetch_factor():
    """Overfetch factor clamped to the supported 2x-5x range."""
    return max(2, min(5, RETRIEVAL_OVERFETCH))


def validate_vector_config():
    """Validate vector configuration and return any issues."""
    issues = []

    if VECTOR_BACKEND not in ["in-memory", "remote"]:
        issues.append(f"Invalid VECTOR_BACKEND: {VECTOR_BACKEND}")

    if get_index_strategy() not in ["auto", "hnsw", "brute-force"]:
        issues.append(f"Invalid INDEX_STRATEGY: {get_index_strategy()}")

    if EMBED_PROVIDER not in ["hash", "sentence-transformers"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if FALLBACK_PROVIDER not in ["none", "keyword", "http"]:
        issues.append(f"Invalid FALLBACK_PROVIDER: {FALLBACK_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if HNSW_MAX_ELEMENTS < 1:
        issues.append("HNSW_MAX_ELEMENTS must be >= 1")

    if not 0.0 <= CONFIDENCE_THRESHOLD <= 1.0:
        issues.append("CONFIDENCE_THRESHOLD must be within [0, 1]")

    if not 0.0 <= RETRIEVAL_MIN_SCORE <= 1.0:
        issues.append("RETRIEVAL_MIN_SCORE must be within [0, 1]")

    if AUDIENCE_BOOST < 1.0:
        issues.append("AUDIENCE_BOOST must be >= 1.0")

    if VECTOR_BACKEND == "remote" and not (REMOTE_INDEX_ENDPOINT and REMOTE_INDEX_ID):
        issues.append("VECTOR_BACKEND=remote requires REMOTE_INDEX_ENDPOINT and REMOTE_INDEX_ID")

    if FALLBACK_PROVIDER == "http" and not FALLBACK_ENDPOINT:
        issues.append("FALLBACK_PROVIDER=http requires FALLBACK_ENDPOINT")

    return issues


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    if EMBED_PROVIDER == "sentence-transformers":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)
    from ..vector.embeddings import DeterministicHashEmbedding
    return DeterministicHashEmbedding(dimension=EMBED_DIM)


def get_vector_store(dimension: int = None):
    """Build the configured vector store. Remote stores fail fast on missing identifiers."""
    dimension = dimension or EMBED_DIM

    if VECTOR_BACKEND == "remote":
        from ..vector.remote_store import RemoteVectorStore
        return RemoteVectorStore(
            endpoint=REMOTE_INDEX_ENDPOINT,
            index_id=REMOTE_INDEX_ID,
            dimension=dimension,
            api_key=REMOTE_API_KEY or None,
            distance_metric=REMOTE_DISTANCE_METRIC,
            max_retries=REMOTE_MAX_RETRIES,
            retry_delay_ms=REMOTE_RETRY_DELAY_MS,
            timeout=REMOTE_TIMEOUT_SEC,
            audience_wildcard=AUDIENCE_WILDCARD,
        )

    from ..vector.index import create_index
    from ..vector.record_store import VectorRecordStore
    index = create_index(
        dimension,
        strategy=get_index_strategy(),
        max_elements=HNSW_MAX_ELEMENTS,
        m=HNSW_M,
        ef_construction=HNSW_EF_CONSTRUCTION,
        ef_search=HNSW_EF_SEARCH,
    )
    return VectorRecordStore(
        dimension,
        index=index,
        audience_wildcard=AUDIENCE_WILDCARD,
        rebuild_ratio=TOMBSTONE_REBUILD_RATIO,
        rebuild_min=TOMBSTONE_REBUILD_MIN,
        overfetch=get_overfetch_factor(),
    )


def get_search_fallback():
    """Get configured external search fallback, or None when disabled."""
    if FALLBACK_PROVIDER == "keyword":
        from ..search.fallback import KeywordSearchFallback
        return KeywordSearchFallback()
    if FALLBACK_PROVIDER == "http":
        from ..search.fallback import HttpSearchFallback
        return HttpSearchFallback(FALLBACK_ENDPOINT, timeout=FALLBACK_TIMEOUT_SEC)
    return None


def build_retrieval_service():
    """Wire a complete retrieval service from configuration."""
    from .errors import ConfigurationError
    from ..vector.embeddings import EmbeddingCodec
    from .retrieval_service import RetrievalService

    issues = validate_vector_config()
    if issues:
        raise ConfigurationError(f"Vector configuration invalid: {issues}")

    codec = EmbeddingCodec(
        get_embedding_provider(),
        dimension=EMBED_DIM,
        cache_max_size=EMBEDDING_CACHE_MAX_SIZE,
        cache_ttl_sec=EMBEDDING_CACHE_TTL_SEC,
    )
    return RetrievalService(
        codec=codec,
        store=get_vector_store(EMBED_DIM),
        fallback=get_search_fallback(),
        top_k=RETRIEVAL_TOP_K,
        overfetch=get_overfetch_factor(),
        min_score=RETRIEVAL_MIN_SCORE,
        audience_boost=AUDIENCE_BOOST,
        confidence_threshold=CONFIDENCE_THRESHOLD,
        fallback_timeout=FALLBACK_TIMEOUT_SEC,
        audience_wildcard=AUDIENCE_WILDCARD,
        usage_queue_size=USAGE_QUEUE_SIZE,
        usage_cache_max_size=USAGE_CACHE_MAX_SIZE,
    )
