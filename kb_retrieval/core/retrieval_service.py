"""
Retrieval service.
End-to-end query path (embed, ANN search, filter, boost, rank, confidence, fallback) and knowledge ingestion.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime
import threading
import time
from typing import Callable, Dict, List, Optional

from .errors import CapacityError, ValidationError
from .usage import UsageTracker
from ..search.fallback import ExternalSearchFallback
from ..util.logging import logger
from ..vector.embeddings import EmbeddingCodec
from ..vector.filters import MetadataFilterEngine
from ..vector.record_store import IVectorStore
from ..vector.types import (
    BatchOperationResult,
    DocumentMetadata,
    FallbackHit,
    KnowledgeItem,
    RetrievalResult,
    RetrievedDocument,
    SearchFilters,
    SearchQuery,
    SearchResult,
    VectorDocument,
)
from ..vector.validator import EmbeddingValidator


class RetrievalService:
    """
    Retrieval orchestrator for the conversational agent.

    Retrieval is best-effort: any internal failure yields an empty result
    with confidence 0 instead of an exception. Ingestion reports failures
    per item so one bad document never blocks a sync batch.
    """

    def __init__(
        self,
        codec: EmbeddingCodec,
        store: IVectorStore,
        fallback: Optional[ExternalSearchFallback] = None,
        top_k: int = 3,
        overfetch: int = 3,
        min_score: float = 0.5,
        audience_boost: float = 1.2,
        confidence_threshold: float = 0.6,
        fallback_timeout: float = 5.0,
        audience_wildcard: str = "all",
        usage_tracker: Optional[UsageTracker] = None,
        usage_sink: Optional[Callable[[str, int], None]] = None,
        usage_loader: Optional[Callable[[str], Optional[int]]] = None,
        usage_queue_size: int = 1000,
        usage_cache_max_size: int = 100,
    ):
        """
        Initialize the retrieval service.

        Args:
            codec: Text embedding codec; its dimension must match the store
            store: In-memory or remote vector store
            fallback: External search collaborator consulted on low confidence
            top_k: Default number of documents returned
            overfetch: Candidate multiplier compensating for post-filtering (2-5)
            min_score: Minimum raw cosine score, applied before the audience boost
            audience_boost: Multiplier for documents whose audience matches the hint
            confidence_threshold: Fallback is consulted below this confidence
            fallback_timeout: Seconds to wait for the fallback before giving up
            usage_tracker: Pre-built tracker (tests); built from usage_* when omitted
        """
        if codec.dimension != store.dimension:
            raise ValueError(
                f"codec dimension {codec.dimension} does not match store dimension {store.dimension}"
            )
        if top_k < 1:
            raise ValueError("top_k must be >= 1")
        if not 2 <= overfetch <= 5:
            raise ValueError("overfetch must be between 2 and 5")

        self.codec = codec
        self.store = store
        self.fallback = fallback
        self.top_k = top_k
        self.overfetch = overfetch
        self.min_score = min_score
        self.audience_boost = audience_boost
        self.confidence_threshold = confidence_threshold
        self.fallback_timeout = fallback_timeout
        self.validator = EmbeddingValidator(store.dimension)
        self.filters = MetadataFilterEngine(audience_wildcard)
        self.usage = usage_tracker or UsageTracker(
            sink=usage_sink, queue_size=usage_queue_size, cache_max_size=usage_cache_max_size,
            loader=usage_loader,
        )
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ===== RETRIEVAL =====

    def retrieve(
        self,
        query_text: str,
        domain_tag: str,
        audience: Optional[str] = None,
        top_k: Optional[int] = None,
        filters: Optional[SearchFilters] = None,
    ) -> RetrievalResult:
        """
        Retrieve the most relevant documents for a query.

        Args:
            query_text: User question
            domain_tag: Caller's domain (agent type); restricts documents that declare domains
            audience: Optional audience hint; filters (wildcard passes) and boosts matches
            top_k: Number of documents to return (default from construction)
            filters: Extra metadata filters (category, source, tags, time range)

        Returns:
            RetrievalResult with documents, confidence and whether the fallback was used
        """
        started = time.monotonic()
        top_k = max(1, top_k or self.top_k)

        try:
            documents, total = self._search_local(query_text, domain_tag, audience, top_k, filters)
        except Exception as e:
            logger.log_operation(
                "retrieval.query", "failed",
                {"domain_tag": domain_tag, "error": f"{type(e).__name__}: {str(e)[:200]}"},
            )
            return RetrievalResult(documents=[], confidence=0.0, fallback_used=False,
                                   query=query_text, domain_tag=domain_tag)

        confidence = self._confidence(documents)
        fallback_used = False

        if confidence < self.confidence_threshold and self.fallback is not None:
            hits = self._consult_fallback(query_text, top_k, confidence)
            if hits is not None:
                fallback_used = True
                documents = self._merge(documents, hits, top_k)
                confidence = self._confidence(documents)

        local_ids = [d.id for d in documents if d.source == "vector"]
        if local_ids:
            self.usage.record(local_ids)

        logger.log_retrieval(domain_tag, audience, len(documents), confidence, fallback_used,
                             (time.monotonic() - started) * 1000)
        return RetrievalResult(
            documents=documents,
            confidence=confidence,
            fallback_used=fallback_used,
            query=query_text,
            domain_tag=domain_tag,
            total_candidates=total,
        )

    def _search_local(self, query_text, domain_tag, audience, top_k, extra_filters):
        vector = self.codec.encode(query_text)
        vector = self.validator.assert_valid(vector, context="retrieve")

        filters = SearchFilters(
            category=extra_filters.category if extra_filters else None,
            audience=[audience] if audience else (extra_filters.audience if extra_filters else None),
            source=extra_filters.source if extra_filters else None,
            tags=extra_filters.tags if extra_filters else None,
            min_timestamp=extra_filters.min_timestamp if extra_filters else None,
            max_timestamp=extra_filters.max_timestamp if extra_filters else None,
            domain=domain_tag or None,
        )
        candidates = self.store.search(SearchQuery(
            embedding=vector,
            top_k=top_k * self.overfetch,
            filters=None if filters.is_empty() else filters,
            min_score=self.min_score,
        ))

        # Scoped documents are hidden from an empty domain tag as well
        accessible = [c for c in candidates if self.filters.is_domain_accessible(c.document, domain_tag)]
        scored = [(self._adjusted_score(c, audience), c) for c in accessible]
        # Ties on the adjusted score keep the higher raw similarity first, then id order
        scored.sort(key=lambda item: (-item[0], -item[1].score, item[1].document.id))

        return [self._to_retrieved(score, c) for score, c in scored[:top_k]], len(candidates)

    def _adjusted_score(self, result: SearchResult, audience: Optional[str]) -> float:
        score = result.score
        if audience and audience in (result.document.metadata.audience or []):
            score *= self.audience_boost
        return score

    def _to_retrieved(self, score: float, result: SearchResult) -> RetrievedDocument:
        document = result.document
        return RetrievedDocument(
            id=document.id,
            title=document.metadata.title,
            content=document.content,
            category=document.metadata.category,
            audience=list(document.metadata.audience),
            score=score,
            raw_score=result.score,
            source="vector",
            usage_count=self.usage.get_count(document.id),
        )

    @staticmethod
    def _confidence(documents: List[RetrievedDocument]) -> float:
        if not documents:
            return 0.0
        return sum(d.score for d in documents) / len(documents)

    def _fallback_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="search-fallback")
            return self._executor

    def _consult_fallback(self, query_text: str, top_k: int, confidence: float) -> Optional[List[FallbackHit]]:
        """Ask the fallback, bounded by fallback_timeout. None means it failed."""
        future = self._fallback_executor().submit(self.fallback.search, query_text, top_k, self.min_score)
        try:
            hits = future.result(timeout=self.fallback_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.log_fallback("timeout", {"timeout_sec": self.fallback_timeout, "confidence": round(confidence, 4)})
            return None
        except Exception as e:
            logger.log_fallback("failed", {"error": f"{type(e).__name__}: {str(e)[:200]}"})
            return None

        logger.log_fallback("used" if hits else "empty", {"hits": len(hits), "confidence": round(confidence, 4)})
        return list(hits)

    @staticmethod
    def _merge(local: List[RetrievedDocument], hits: List[FallbackHit], top_k: int) -> List[RetrievedDocument]:
        merged = list(local)
        seen = {d.id for d in local}
        for hit in hits:
            if hit.id in seen:
                continue
            seen.add(hit.id)
            merged.append(RetrievedDocument(
                id=hit.id,
                title=hit.title,
                content=hit.content,
                category="",
                audience=[],
                score=hit.score,
                raw_score=hit.score,
                source="fallback",
            ))
        merged.sort(key=lambda d: d.score, reverse=True)
        return merged[:top_k]

    # ===== INGESTION =====

    def ingest(self, items: List[KnowledgeItem]) -> BatchOperationResult:
        """
        Embed and upsert knowledge items with per-item error reporting.

        Title and content are concatenated before embedding. A pre-computed
        embedding is validated and reused, never coerced. If the batch would
        exceed the index capacity, nothing is persisted.
        """
        errors = []
        documents = []
        for item in items:
            try:
                documents.append(self._to_document(item))
            except ValidationError as e:
                errors.append({"id": str(getattr(item, "id", "?")), "error": str(e)})

        try:
            result = self.store.upsert_batch(documents)
        except CapacityError as e:
            failed = [{"id": str(getattr(item, "id", "?")), "error": str(e)} for item in items]
            logger.log_batch_result("ingest", 0, len(failed), failed)
            return BatchOperationResult(success=False, processed_count=0, failed_count=len(items), errors=failed)

        stored = {d.id for d in documents} - {e["id"] for e in result.errors}
        for item in items:
            if isinstance(item, KnowledgeItem) and item.id in stored and item.usage_count:
                self.usage.set_count(item.id, item.usage_count)

        errors.extend(result.errors)
        logger.log_batch_result("ingest", len(items) - len(errors), len(errors), errors)
        return BatchOperationResult(
            success=not errors,
            processed_count=len(items) - len(errors),
            failed_count=len(errors),
            errors=errors,
        )

    def _to_document(self, item: KnowledgeItem) -> VectorDocument:
        if not isinstance(item, KnowledgeItem):
            raise ValidationError(f"expected KnowledgeItem, got {type(item).__name__}")
        if not isinstance(item.id, str) or not item.id.strip():
            raise ValidationError("knowledge item id must be a non-empty string")
        if not isinstance(item.title, str) or not isinstance(item.content, str):
            raise ValidationError("knowledge item title and content must be strings", context=item.id)

        if item.embedding is not None:
            embedding = self.validator.assert_valid(item.embedding, context=f"ingest {item.id}")
        else:
            embedding = self.validator.assert_valid(self.codec.encode(item.embedding_text),
                                                    context=f"ingest {item.id}")

        return VectorDocument(
            id=item.id,
            embedding=embedding,
            content=item.content.strip(),
            metadata=DocumentMetadata(
                category=item.category,
                audience=list(item.audience or []),
                source=item.source,
                timestamp=item.last_updated or datetime.now(),
                version=item.version,
                tags=list(item.tags or []),
                domain_tags=list(item.domain_tags or []),
                title=item.title.strip(),
            ),
        )

    def update_item(self, item_id: str, **changes) -> bool:
        """
        Apply changes to a stored item. Re-embeds only when title or content change.

        Returns:
            False when the item does not exist

        Raises:
            ValidationError: when the updated document is invalid
        """
        current = self.store.get(item_id)
        if current is None:
            return False

        metadata = current.metadata
        title = changes.get("title", metadata.title)
        content = changes.get("content", current.content)
        item = KnowledgeItem(
            id=item_id,
            title=title,
            content=content,
            category=changes.get("category", metadata.category),
            domain_tags=changes.get("domain_tags", metadata.domain_tags),
            audience=changes.get("audience", metadata.audience),
            source=changes.get("source", metadata.source),
            version=changes.get("version", metadata.version),
            tags=changes.get("tags", metadata.tags),
            last_updated=datetime.now(),
            embedding=changes.get("embedding"),
        )
        if item.embedding is None and title == metadata.title and content == current.content \
                and current.embedding.size == self.store.dimension:
            item.embedding = current.embedding.tolist()

        self.store.upsert(self._to_document(item))
        if "usage_count" in changes:
            self.usage.set_count(item_id, changes["usage_count"])
        return True

    def delete_item(self, item_id: str) -> None:
        """Delete an item; unknown ids are a no-op."""
        self.store.delete(item_id)
        self.usage.forget(item_id)

    def delete_items(self, item_ids: List[str]) -> BatchOperationResult:
        result = self.store.delete_batch(item_ids)
        for item_id in item_ids:
            self.usage.forget(item_id)
        return result

    def get_item(self, item_id: str) -> Optional[VectorDocument]:
        return self.store.get(item_id)

    def reload(self, items: List[KnowledgeItem]) -> BatchOperationResult:
        """Repopulate an empty in-memory store after a restart."""
        if self.store.count() > 0:
            self.store.clear()
            self.usage.clear()
        return self.ingest(items)

    def stats(self) -> Dict[str, object]:
        stats: Dict[str, object] = {
            "documents": self.store.count(),
            "embedding_provider": self.codec.provider_name,
            "embedding_downgrades": self.codec.downgrade_count,
            "fallback_configured": self.fallback is not None,
            "usage": self.usage.stats(),
        }
        store_stats = getattr(self.store, "stats", None)
        if callable(store_stats):
            stats["index"] = store_stats()
        return stats

    def close(self) -> None:
        self.usage.stop()
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)


RetrievalOrchestrator = RetrievalService
