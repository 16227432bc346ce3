"""
Vector layer data model.
Documents, queries and results exchanged between the store, the index and the retrieval service.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass
class DocumentMetadata:
    """Closed set of metadata fields carried by every vector document."""

    category: str
    """Knowledge base category (e.g. 'donations', 'case_management')"""

    audience: List[str] = field(default_factory=list)
    """Target audiences; may contain the wildcard marker"""

    source: str = "admin"
    """Where the information came from"""

    timestamp: datetime = field(default_factory=datetime.now)
    """When the document was added or last updated"""

    version: str = "1.0"
    """Version for tracking updates"""

    tags: List[str] = field(default_factory=list)
    """Optional tags for additional filtering"""

    domain_tags: List[str] = field(default_factory=list)
    """Domains allowed to see this document; empty means every domain"""

    title: str = ""
    """Human readable title"""

    extra: Dict[str, Any] = field(default_factory=dict)
    """Forward-compatible extension fields (scalar JSON values only)"""

    def __post_init__(self):
        for key, value in self.extra.items():
            if not isinstance(key, str):
                raise TypeError(f"metadata extension keys must be strings, got {type(key).__name__}")
            if value is not None and not isinstance(value, (str, int, float, bool)):
                raise TypeError(f"metadata extension '{key}' must be a scalar, got {type(value).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "audience": list(self.audience),
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "tags": list(self.tags),
            "domain_tags": list(self.domain_tags),
            "title": self.title,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentMetadata":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            category=data.get("category", "general"),
            audience=list(data.get("audience") or []),
            source=data.get("source", "admin"),
            timestamp=timestamp or datetime.now(),
            version=data.get("version", "1.0"),
            tags=list(data.get("tags") or []),
            domain_tags=list(data.get("domain_tags") or []),
            title=data.get("title", ""),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class VectorDocument:
    """A document as stored in the vector layer."""

    id: str
    """Unique, immutable identifier"""

    embedding: np.ndarray
    """Fixed-length float vector"""

    content: str
    """Document text returned to callers"""

    metadata: DocumentMetadata
    """Filterable metadata"""


@dataclass
class SearchFilters:
    """Metadata predicates. A field left as None is an open filter."""

    category: Optional[str] = None
    audience: Optional[List[str]] = None
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    min_timestamp: Optional[datetime] = None
    max_timestamp: Optional[datetime] = None
    domain: Optional[str] = None
    """Domain the caller searches from; documents scoped to other domains are excluded."""

    def is_empty(self) -> bool:
        return (
            not self.category
            and not self.audience
            and not self.source
            and not self.tags
            and self.min_timestamp is None
            and self.max_timestamp is None
            and not self.domain
        )


@dataclass
class SearchQuery:
    """Parameters for a similarity search."""

    embedding: np.ndarray
    top_k: int = 5
    filters: Optional[SearchFilters] = None
    min_score: Optional[float] = None

    def __post_init__(self):
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")
        if self.min_score is not None and not 0.0 <= self.min_score <= 1.0:
            raise ValueError(f"min_score must be within [0, 1], got {self.min_score}")


@dataclass
class SearchResult:
    """A single search hit."""

    document: VectorDocument
    score: float
    """Similarity in [0, 1], higher is better"""

    distance: float
    """Metric-specific distance, lower is better"""


@dataclass
class BatchOperationResult:
    """Outcome of a batch upsert or delete."""

    success: bool
    processed_count: int
    failed_count: int
    errors: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Outcome of an embedding validation."""

    valid: bool
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchValidationReport:
    valid_count: int
    invalid_count: int
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class KnowledgeItem:
    """Knowledge base entry as delivered by the content-management side."""

    id: str
    title: str
    content: str
    category: str
    domain_tags: List[str] = field(default_factory=list)
    audience: List[str] = field(default_factory=list)
    source: str = "admin"
    version: str = "1.0"
    tags: List[str] = field(default_factory=list)
    usage_count: int = 0
    last_updated: Optional[datetime] = None
    embedding: Optional[List[float]] = None

    @property
    def embedding_text(self) -> str:
        """Title and content joined so the title contributes lexical signal."""
        title = (self.title or "").strip()
        content = (self.content or "").strip()
        if title and content:
            return f"{title}\n\n{content}"
        return title or content


@dataclass
class RetrievedDocument:
    """A document returned to the conversational caller."""

    id: str
    title: str
    content: str
    category: str
    audience: List[str]
    score: float
    """Adjusted ranking score (may exceed 1.0 after the audience boost)"""

    raw_score: float
    """Cosine similarity before any boost"""

    source: str = "vector"
    """'vector' for local hits, 'fallback' for external search hits"""

    usage_count: int = 0


@dataclass
class RetrievalResult:
    documents: List[RetrievedDocument]
    confidence: float
    fallback_used: bool = False
    query: str = ""
    domain_tag: str = ""
    total_candidates: int = 0


@dataclass
class FallbackHit:
    """Result row returned by an external search collaborator."""

    id: str
    title: str
    content: str
    score: float
