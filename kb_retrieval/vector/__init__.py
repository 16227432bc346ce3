"""
Vector layer: embedding codec, validation, ANN index and record stores.
The faiss-backed index is imported lazily by create_index() so the package loads without faiss.
"""

from .types import (
    DocumentMetadata,
    VectorDocument,
    SearchFilters,
    SearchQuery,
    SearchResult,
    BatchOperationResult,
    ValidationResult,
    KnowledgeItem,
    RetrievedDocument,
    RetrievalResult,
    FallbackHit,
)
from .validator import EmbeddingValidator, validate_embedding
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding, EmbeddingCodec
from .filters import MetadataFilterEngine
from .index import IVectorIndex, BruteForceIndex, create_index
from .record_store import IVectorStore, VectorRecordStore

__all__ = [
    'DocumentMetadata',
    'VectorDocument',
    'SearchFilters',
    'SearchQuery',
    'SearchResult',
    'BatchOperationResult',
    'ValidationResult',
    'KnowledgeItem',
    'RetrievedDocument',
    'RetrievalResult',
    'FallbackHit',
    'EmbeddingValidator',
    'validate_embedding',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'EmbeddingCodec',
    'MetadataFilterEngine',
    'IVectorIndex',
    'BruteForceIndex',
    'create_index',
    'IVectorStore',
    'VectorRecordStore',
]
