"""
Vector record store.
Authoritative id -> document map kept consistent with an ANN index through integer handles.
"""

from abc import ABC, abstractmethod
import threading
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from ..core.errors import ValidationError
from ..util.logging import logger
from .filters import MetadataFilterEngine
from .index import IVectorIndex, create_index
from .types import (
    BatchOperationResult,
    DocumentMetadata,
    SearchFilters,
    SearchQuery,
    SearchResult,
    VectorDocument,
)
from .validator import validate_embedding


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    dimension: int

    @abstractmethod
    def upsert(self, document: VectorDocument) -> None:
        """Insert or replace a single document."""
        pass

    @abstractmethod
    def upsert_batch(self, documents: List[VectorDocument]) -> BatchOperationResult:
        """Insert or replace many documents; malformed items are reported, not fatal."""
        pass

    @abstractmethod
    def search(self, query: SearchQuery) -> List[SearchResult]:
        """Search for similar vectors and return ranked results."""
        pass

    @abstractmethod
    def delete(self, document_id: str) -> None:
        """Delete a document by ID; unknown ids are a no-op."""
        pass

    @abstractmethod
    def delete_batch(self, document_ids: List[str]) -> BatchOperationResult:
        """Delete many documents."""
        pass

    @abstractmethod
    def get(self, document_id: str) -> Optional[VectorDocument]:
        """Fetch a document, or None when absent."""
        pass

    @abstractmethod
    def count(self, filters: Optional[SearchFilters] = None) -> int:
        """Count documents matching filters; -1 when the backend cannot tell."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every document."""
        pass


def check_document(document: VectorDocument, dimension: int) -> Optional[str]:
    """Return a reason string if the document is structurally invalid, else None."""
    if not isinstance(document, VectorDocument):
        return f"expected VectorDocument, got {type(document).__name__}"
    if not isinstance(document.id, str) or not document.id.strip():
        return "document id must be a non-empty string"
    if not isinstance(document.content, str):
        return "document content must be a string"
    if not isinstance(document.metadata, DocumentMetadata):
        return "document metadata must be DocumentMetadata"
    if not isinstance(document.metadata.category, str):
        return "metadata category must be a string"
    if any(not isinstance(a, str) for a in document.metadata.audience or []):
        return "metadata audience must contain strings only"
    result = validate_embedding(document.embedding, dimension)
    if not result.valid:
        return result.reason
    return None


class VectorRecordStore(IVectorStore):
    """
    In-memory record store backed by an approximate index.

    Each live document id is bound to one index handle. Handles are assigned
    monotonically and never reused: replacing a document's vector binds a new
    handle and tombstones the old one. Mutations and searches take a single
    re-entrant lock, so one instance can be shared by concurrent callers.
    """

    def __init__(
        self,
        dimension: int,
        index: Optional[IVectorIndex] = None,
        audience_wildcard: str = "all",
        rebuild_ratio: float = 0.25,
        rebuild_min: int = 64,
        overfetch: int = 3,
    ):
        """
        Initialize the record store.

        Args:
            dimension: Fixed embedding length D
            index: Index strategy; chosen by create_index() when omitted
            audience_wildcard: Audience marker matching every requested audience
            rebuild_ratio: Tombstone share of the index that triggers compaction
            rebuild_min: Minimum tombstones before the ratio applies
            overfetch: Candidate multiplier when filters are applied after the ANN walk
        """
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.index = index if index is not None else create_index(dimension)
        if self.index.dimension != dimension:
            raise ValueError(
                f"index dimension {self.index.dimension} does not match store dimension {dimension}"
            )
        self.filters = MetadataFilterEngine(audience_wildcard)
        self.rebuild_ratio = rebuild_ratio
        self.rebuild_min = rebuild_min
        self.overfetch = max(1, overfetch)

        self._documents: Dict[str, VectorDocument] = {}
        self._handles: Dict[str, int] = {}
        self._ids_by_handle: Dict[int, str] = {}
        self._next_handle = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._documents

    def upsert(self, document: VectorDocument) -> None:
        """Insert or replace a single document. Raises ValidationError or CapacityError."""
        reason = check_document(document, self.dimension)
        if reason:
            logger.log_vector_operation("upsert", getattr(document, "id", "?"), {"error": reason}, status="rejected")
            raise ValidationError(reason, context=f"upsert {getattr(document, 'id', '?')}")

        with self._lock:
            self._write([document])
        logger.log_vector_operation("upsert", document.id, {"store_size": len(self._documents)})

    def upsert_batch(self, documents: List[VectorDocument]) -> BatchOperationResult:
        """
        Insert or replace documents with partial success.

        Every item is checked before any write. Structurally invalid items are
        reported and skipped. The capacity check covers the whole remaining
        batch and is all-or-nothing: CapacityError is raised and nothing is
        written.
        """
        errors = []
        valid: Dict[str, VectorDocument] = {}
        for document in documents:
            reason = check_document(document, self.dimension)
            if reason:
                errors.append({"id": str(getattr(document, "id", "?")), "error": reason})
                continue
            # Last write wins within the batch as well
            valid.pop(document.id, None)
            valid[document.id] = document

        with self._lock:
            self._write(list(valid.values()))

        processed = len(documents) - len(errors)
        logger.log_batch_result("upsert", processed, len(errors), errors)
        return BatchOperationResult(
            success=not errors,
            processed_count=processed,
            failed_count=len(errors),
            errors=errors,
        )

    def _write(self, documents: List[VectorDocument]) -> None:
        """Bind documents to new handles. Caller holds the lock and has validated them."""
        to_index: List[Tuple[VectorDocument, np.ndarray]] = []
        for document in documents:
            embedding = np.asarray(document.embedding, dtype=np.float32)
            current = self._documents.get(document.id)
            if current is not None and np.array_equal(current.embedding, embedding):
                continue
            to_index.append((document, embedding))

        # Raises CapacityError before anything is touched
        self.index.check_capacity(len(to_index))

        handles = list(range(self._next_handle, self._next_handle + len(to_index)))
        if to_index:
            self.index.add_points([e for _, e in to_index], handles)
            self._next_handle += len(to_index)

        for (document, _), handle in zip(to_index, handles):
            self._release_handle(document.id)
            self._handles[document.id] = handle
            self._ids_by_handle[handle] = document.id

        for document in documents:
            self._documents[document.id] = VectorDocument(
                id=document.id,
                embedding=np.asarray(document.embedding, dtype=np.float32),
                content=document.content,
                metadata=document.metadata,
            )

    def _release_handle(self, document_id: str) -> None:
        handle = self._handles.pop(document_id, None)
        if handle is not None:
            self.index.mark_deleted(handle)
            self._ids_by_handle.pop(handle, None)

    def delete(self, document_id: str) -> None:
        """Delete a document. Unknown ids succeed as a no-op."""
        with self._lock:
            if self._documents.pop(document_id, None) is None:
                return
            self._release_handle(document_id)
            self._maybe_compact()
        logger.log_vector_operation("delete", document_id, {"store_size": len(self._documents)})

    def delete_batch(self, document_ids: List[str]) -> BatchOperationResult:
        with self._lock:
            for document_id in document_ids:
                if self._documents.pop(document_id, None) is not None:
                    self._release_handle(document_id)
            self._maybe_compact()
        logger.log_batch_result("delete", len(document_ids), 0)
        return BatchOperationResult(success=True, processed_count=len(document_ids), failed_count=0)

    def get(self, document_id: str) -> Optional[VectorDocument]:
        return self._documents.get(document_id)

    def documents(self) -> Iterator[VectorDocument]:
        """Snapshot iterator over live documents."""
        with self._lock:
            snapshot = list(self._documents.values())
        return iter(snapshot)

    def count(self, filters: Optional[SearchFilters] = None) -> int:
        if filters is None or filters.is_empty():
            return len(self._documents)
        with self._lock:
            return sum(1 for doc in self._documents.values() if self.filters.matches(doc, filters))

    def clear(self) -> None:
        """Remove every document and reset the index. Handles keep counting up."""
        with self._lock:
            self._documents.clear()
            self._handles.clear()
            self._ids_by_handle.clear()
            self.index.clear()
        logger.info("In-memory vector store cleared")

    def rebuild(self) -> int:
        """Physically drop tombstoned points from the index."""
        with self._lock:
            return self.index.rebuild(reason="manual")

    def search(self, query: SearchQuery) -> List[SearchResult]:
        """
        Rank live documents by cosine similarity.

        Filters are applied after the ANN walk; the candidate pool grows until
        top_k matches are found or the index is exhausted.

        Raises:
            ValidationError: if the query embedding is malformed
        """
        check = validate_embedding(query.embedding, self.dimension)
        if not check.valid:
            raise ValidationError(check.reason, context="search")

        has_filters = query.filters is not None and not query.filters.is_empty()

        with self._lock:
            live = len(self.index)
            if live == 0:
                return []

            k = query.top_k * self.overfetch if has_filters else query.top_k
            while True:
                k = min(k, live)
                candidates = self.index.search_knn(np.asarray(query.embedding, dtype=np.float32), k)
                results = self._collect(candidates, query, has_filters)
                # Scores are sorted, so a min_score cut-off also ends the search
                exhausted = k >= live or (
                    query.min_score is not None and candidates and max(0.0, candidates[-1][1]) < query.min_score
                )
                if len(results) >= query.top_k or exhausted:
                    break
                k *= 2

        return results[:query.top_k]

    def _collect(self, candidates, query: SearchQuery, has_filters: bool) -> List[SearchResult]:
        results = []
        for handle, similarity in candidates:
            document_id = self._ids_by_handle.get(handle)
            if document_id is None:
                # Resolved but removed handle
                continue
            document = self._documents[document_id]
            if has_filters and not self.filters.matches(document, query.filters):
                continue
            score = min(1.0, max(0.0, similarity))
            if query.min_score is not None and score < query.min_score:
                continue
            results.append(SearchResult(document=document, score=score, distance=1.0 - similarity))
        return results

    def _maybe_compact(self) -> None:
        tombstones = self.index.tombstone_count
        if tombstones < self.rebuild_min or self.index.size == 0:
            return
        if tombstones / self.index.size >= self.rebuild_ratio:
            self.index.rebuild(reason="tombstone_ratio")

    def stats(self) -> Dict[str, object]:
        stats = dict(self.index.stats())
        stats["documents"] = len(self._documents)
        stats["next_handle"] = self._next_handle
        return stats
