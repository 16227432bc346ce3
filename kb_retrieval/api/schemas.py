"""
Request and response models for the knowledge-base HTTP surface.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class KnowledgeItemRequest(BaseModel):
    id: str
    title: str
    content: str
    category: str = "general"
    domain_tags: List[str] = Field(default_factory=list)
    audience: List[str] = Field(default_factory=list)
    source: str = "admin"
    version: str = "1.0"
    tags: List[str] = Field(default_factory=list)
    usage_count: int = 0
    last_updated: Optional[datetime] = None
    embedding: Optional[List[float]] = None

    @field_validator('id')
    @classmethod
    def id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('id cannot be empty')
        return v


class IngestRequest(BaseModel):
    items: List[KnowledgeItemRequest]


class IngestResponse(BaseModel):
    success: bool
    processed_count: int
    failed_count: int
    errors: List[Dict[str, str]] = Field(default_factory=list)


class RetrieveRequest(BaseModel):
    query: str
    domain_tag: str
    audience: Optional[str] = None
    top_k: Optional[int] = None
    category: Optional[str] = None

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v

    @field_validator('top_k')
    @classmethod
    def top_k_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('top_k must be >= 1')
        return v


class RetrievedDocumentResponse(BaseModel):
    id: str
    title: str
    content: str
    category: str
    audience: List[str]
    score: float
    raw_score: float
    source: str
    usage_count: int = 0


class RetrieveResponse(BaseModel):
    documents: List[RetrievedDocumentResponse]
    confidence: float
    fallback_used: bool
    total_candidates: int


class DeleteResponse(BaseModel):
    success: bool
    id: str


class HealthResponse(BaseModel):
    status: str
    version: str
    documents: int
    embedding_provider: str


class StatsResponse(BaseModel):
    stats: Dict[str, Any]
