"""
External search fallback.
Collaborators consulted only when local retrieval confidence is low.
"""

from abc import ABC, abstractmethod
import re
from typing import Any, Dict, List, Optional

import requests

from ..core.errors import BackendRequestError, TransientBackendError
from ..util.logging import logger
from ..vector.types import FallbackHit

_WORD_PATTERN = re.compile(r"\S+")


class ExternalSearchFallback(ABC):
    """Interface to an external search collaborator."""

    @abstractmethod
    def search(self, query: str, top_k: int, min_score: float) -> List[FallbackHit]:
        """Return hits scored in [0, 1], best first."""
        pass


class KeywordSearchFallback(ExternalSearchFallback):
    """In-process document set searched by query-word overlap."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    def index_document(self, id: str, title: str, content: str, category: Optional[str] = None,
                       source: str = "", metadata: Optional[Dict[str, Any]] = None) -> bool:
        if not id:
            logger.warning("Refusing to index fallback document without an id")
            return False
        self._documents[id] = {
            "id": id,
            "title": title or "",
            "content": content or "",
            "category": category or "general",
            "source": source,
            "metadata": metadata or {},
        }
        return True

    def index_documents(self, documents: List[Dict[str, Any]]) -> Dict[str, int]:
        success = 0
        failed = 0
        for doc in documents:
            if self.index_document(
                doc.get("id", ""),
                doc.get("title", ""),
                doc.get("content", ""),
                doc.get("category"),
                doc.get("source", ""),
                doc.get("metadata"),
            ):
                success += 1
            else:
                failed += 1
        logger.info(f"Indexed {success} fallback documents, {failed} failed")
        return {"success": success, "failed": failed}

    def search(self, query: str, top_k: int, min_score: float, category: Optional[str] = None) -> List[FallbackHit]:
        words = [w.lower() for w in _WORD_PATTERN.findall(query or "")]
        if not words or not self._documents:
            return []

        scored = []
        for doc in self._documents.values():
            if category and doc["category"] != category:
                continue
            text = f"{doc['title']} {doc['content']}".lower()
            matches = sum(1 for word in words if word in text)
            score = matches / len(words)
            if score >= min_score:
                scored.append((score, doc))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            FallbackHit(id=doc["id"], title=doc["title"], content=doc["content"], score=score)
            for score, doc in scored[:top_k]
        ]

    def get_stats(self) -> Dict[str, Any]:
        categories: Dict[str, int] = {}
        for doc in self._documents.values():
            categories[doc["category"]] = categories.get(doc["category"], 0) + 1
        return {"total_documents": len(self._documents), "categories": categories}

    def clear_index(self) -> None:
        self._documents.clear()
        logger.info("Fallback keyword index cleared")


class HttpSearchFallback(ExternalSearchFallback):
    """Posts the query to a search service and parses [{id, title, content, score}]."""

    def __init__(self, endpoint: str, timeout: float = 5.0, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        if not endpoint:
            raise ValueError("endpoint is required")
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def search(self, query: str, top_k: int, min_score: float) -> List[FallbackHit]:
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "top_k": top_k, "min_score": min_score},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientBackendError(str(e), context="fallback.search") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientBackendError(f"HTTP {response.status_code}", context="fallback.search")
        if response.status_code >= 400:
            raise BackendRequestError(
                f"HTTP {response.status_code}", status_code=response.status_code, context="fallback.search"
            )

        body = response.json()
        rows = body.get("results", []) if isinstance(body, dict) else body
        hits = []
        for row in rows or []:
            try:
                score = float(row.get("score", 0.0))
            except (TypeError, ValueError):
                continue
            if score < min_score:
                continue
            hits.append(FallbackHit(
                id=str(row.get("id", "")),
                title=row.get("title", "") or "",
                content=row.get("content", "") or "",
                score=min(1.0, max(0.0, score)),
            ))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]
