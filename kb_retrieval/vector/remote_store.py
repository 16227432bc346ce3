"""
Externally hosted vector search backend.
JSON-over-HTTP client with bounded retries; same interface as the in-memory record store.
"""

import math
from typing import Any, Dict, List, Optional

import numpy as np
import requests

from ..core.errors import (
    BackendRequestError,
    ConfigurationError,
    TransientBackendError,
    UnsupportedOperationError,
    ValidationError,
)
from ..core.retry import with_retry
from ..util.logging import logger
from .filters import MetadataFilterEngine
from .record_store import IVectorStore, check_document
from .types import (
    BatchOperationResult,
    DocumentMetadata,
    SearchFilters,
    SearchQuery,
    SearchResult,
    VectorDocument,
)
from .validator import validate_embedding

DISTANCE_METRICS = ("COSINE", "DOT_PRODUCT", "EUCLIDEAN")
# Domain restrict token carried by documents visible from every domain
OPEN_DOMAIN = "*"


def distance_to_score(distance: float, metric: str) -> float:
    """Convert a backend distance to a similarity in [0, 1]."""
    if metric == "COSINE":
        score = 1.0 - distance
    elif metric == "DOT_PRODUCT":
        score = distance
    else:
        score = math.exp(-distance)
    return min(1.0, max(0.0, score))


class RemoteVectorStore(IVectorStore):
    """
    Client for a hosted vector index.

    Endpoints (relative to the configured base URL):
        POST /indexes/{index_id}:upsert   {"datapoints": [...]}
        POST /indexes/{index_id}:remove   {"datapoint_ids": [...]}
        POST /indexes/{index_id}:read     {"datapoint_ids": [...]}
        POST /indexes/{index_id}:search   {"queries": [...]}

    Category, audience, source and domain filters are pushed down as restricts; the
    remaining filters are evaluated on the returned neighbours.
    """

    def __init__(
        self,
        endpoint: str,
        index_id: str,
        dimension: int,
        api_key: Optional[str] = None,
        distance_metric: str = "COSINE",
        max_retries: int = 3,
        retry_delay_ms: float = 1000,
        timeout: float = 10.0,
        audience_wildcard: str = "all",
        session: Optional[requests.Session] = None,
        sleep=None,
    ):
        if not endpoint or not index_id:
            raise ConfigurationError("Remote vector backend requires an endpoint and an index id")
        if distance_metric not in DISTANCE_METRICS:
            raise ConfigurationError(f"Unknown distance metric: {distance_metric}")
        if dimension <= 0:
            raise ConfigurationError("dimension must be positive")

        self.endpoint = endpoint.rstrip("/")
        self.index_id = index_id
        self.dimension = dimension
        self.distance_metric = distance_metric
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.timeout = timeout
        self.filters = MetadataFilterEngine(audience_wildcard)
        self.session = session or requests.Session()
        self._retry_kwargs: Dict[str, Any] = {}
        if sleep is not None:
            self._retry_kwargs["sleep"] = sleep

        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

        logger.info(f"Remote vector backend configured: {self.endpoint} (index: {self.index_id})")

    def _call(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.endpoint}/indexes/{self.index_id}:{action}"

        def attempt():
            try:
                response = self.session.post(url, json=payload, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                raise TransientBackendError(str(e), context=action) from e

            if response.status_code == 429 or response.status_code >= 500:
                raise TransientBackendError(f"HTTP {response.status_code}: {response.text[:200]}", context=action)
            if response.status_code >= 400:
                raise BackendRequestError(
                    f"HTTP {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                    context=action,
                )
            if not response.content:
                return {}
            return response.json()

        return with_retry(
            attempt,
            operation=f"remote.{action}",
            max_retries=self.max_retries,
            base_delay_ms=self.retry_delay_ms,
            **self._retry_kwargs,
        )

    @staticmethod
    def _restricts(filters: Optional[SearchFilters]) -> List[Dict[str, Any]]:
        if filters is None:
            return []
        restricts = []
        if filters.category:
            restricts.append({"namespace": "category", "allow": [filters.category]})
        if filters.audience:
            restricts.append({"namespace": "audience", "allow": list(filters.audience)})
        if filters.source:
            restricts.append({"namespace": "source", "allow": [filters.source]})
        if filters.domain:
            restricts.append({"namespace": "domain", "allow": [filters.domain, OPEN_DOMAIN]})
        return restricts

    def _datapoint(self, document: VectorDocument) -> Dict[str, Any]:
        metadata = document.metadata
        return {
            "datapoint_id": document.id,
            "feature_vector": np.asarray(document.embedding, dtype=np.float32).tolist(),
            "restricts": [
                {"namespace": "category", "allow": [metadata.category]},
                {"namespace": "audience", "allow": list(metadata.audience)},
                {"namespace": "source", "allow": [metadata.source]},
                {"namespace": "domain", "allow": list(metadata.domain_tags) or [OPEN_DOMAIN]},
            ],
            "payload": {"content": document.content, "metadata": metadata.to_dict()},
        }

    def _document(self, datapoint: Dict[str, Any]) -> Optional[VectorDocument]:
        vector = datapoint.get("feature_vector")
        if vector:
            check = validate_embedding(vector, self.dimension)
            if not check.valid:
                logger.log_vector_operation(
                    "read", datapoint.get("datapoint_id", "?"), {"error": check.reason}, status="rejected"
                )
                return None
            embedding = np.asarray(vector, dtype=np.float32)
        else:
            embedding = np.empty(0, dtype=np.float32)

        payload = datapoint.get("payload") or {}
        return VectorDocument(
            id=datapoint.get("datapoint_id", ""),
            embedding=embedding,
            content=payload.get("content", ""),
            metadata=DocumentMetadata.from_dict(payload.get("metadata") or {}),
        )

    def upsert(self, document: VectorDocument) -> None:
        reason = check_document(document, self.dimension)
        if reason:
            raise ValidationError(reason, context=f"upsert {getattr(document, 'id', '?')}")
        self._call("upsert", {"datapoints": [self._datapoint(document)]})
        logger.log_vector_operation("upsert", document.id, {"backend": "remote"})

    def upsert_batch(self, documents: List[VectorDocument]) -> BatchOperationResult:
        errors = []
        valid = []
        for document in documents:
            reason = check_document(document, self.dimension)
            if reason:
                errors.append({"id": str(getattr(document, "id", "?")), "error": reason})
            else:
                valid.append(document)

        if valid:
            try:
                self._call("upsert", {"datapoints": [self._datapoint(d) for d in valid]})
            except (TransientBackendError, BackendRequestError) as e:
                errors.extend({"id": d.id, "error": str(e)} for d in valid)
                valid = []

        logger.log_batch_result("upsert", len(valid), len(errors), errors)
        return BatchOperationResult(
            success=not errors,
            processed_count=len(valid),
            failed_count=len(errors),
            errors=errors,
        )

    def search(self, query: SearchQuery) -> List[SearchResult]:
        check = validate_embedding(query.embedding, self.dimension)
        if not check.valid:
            raise ValidationError(check.reason, context="search")

        request = {
            "feature_vector": np.asarray(query.embedding, dtype=np.float32).tolist(),
            "neighbor_count": query.top_k,
        }
        restricts = self._restricts(query.filters)
        if restricts:
            request["restricts"] = restricts

        response = self._call("search", {"queries": [request]})
        nearest = response.get("nearest_neighbors") or [{}]
        neighbors = nearest[0].get("neighbors") or []

        results = []
        for neighbor in neighbors:
            document = self._document(neighbor.get("datapoint") or {})
            if document is None:
                continue
            if query.filters is not None and not self.filters.matches(document, query.filters):
                continue
            distance = float(neighbor.get("distance", 0.0))
            score = distance_to_score(distance, self.distance_metric)
            if query.min_score is not None and score < query.min_score:
                continue
            results.append(SearchResult(document=document, score=score, distance=distance))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:query.top_k]

    def delete(self, document_id: str) -> None:
        """Remove a document; an id the backend does not hold is a no-op."""
        self._remove([document_id])
        logger.log_vector_operation("delete", document_id, {"backend": "remote"})

    def delete_batch(self, document_ids: List[str]) -> BatchOperationResult:
        try:
            self._remove(list(document_ids))
        except (TransientBackendError, BackendRequestError) as e:
            errors = [{"id": i, "error": str(e)} for i in document_ids]
            logger.log_batch_result("delete", 0, len(errors), errors)
            return BatchOperationResult(success=False, processed_count=0, failed_count=len(errors), errors=errors)
        logger.log_batch_result("delete", len(document_ids), 0)
        return BatchOperationResult(success=True, processed_count=len(document_ids), failed_count=0)

    def _remove(self, document_ids: List[str]) -> None:
        try:
            self._call("remove", {"datapoint_ids": document_ids})
        except BackendRequestError as e:
            if e.status_code != 404:
                raise
            logger.log_vector_operation("delete", ",".join(document_ids), {"backend": "remote", "absent": True})

    def get(self, document_id: str) -> Optional[VectorDocument]:
        try:
            response = self._call("read", {"datapoint_ids": [document_id]})
        except BackendRequestError as e:
            if e.status_code == 404:
                return None
            raise
        datapoints = response.get("datapoints") or []
        if not datapoints:
            return None
        return self._document(datapoints[0])

    def count(self, filters: Optional[SearchFilters] = None) -> int:
        # The hosted index has no count endpoint
        logger.warning("Count not supported by remote vector backend, returning -1")
        return -1

    def clear(self) -> None:
        raise UnsupportedOperationError("Clear operation not supported for remote vector backend")
