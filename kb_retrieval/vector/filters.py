"""
Metadata filtering.
Dimensions are AND-combined; each list-valued dimension is OR within itself.
"""

from typing import Optional

from .types import SearchFilters, VectorDocument


class MetadataFilterEngine:
    """Evaluates SearchFilters and domain accessibility against document metadata."""

    def __init__(self, audience_wildcard: str = "all"):
        self.audience_wildcard = audience_wildcard

    def matches(self, doc: VectorDocument, filters: Optional[SearchFilters]) -> bool:
        """Return True when the document passes every present filter dimension."""
        if filters is None:
            return True

        metadata = doc.metadata

        if filters.category and metadata.category != filters.category:
            return False

        if filters.audience and not self.audience_matches(metadata.audience, filters.audience):
            return False

        if filters.source and metadata.source != filters.source:
            return False

        if filters.tags:
            doc_tags = set(metadata.tags or [])
            if not doc_tags.intersection(filters.tags):
                return False

        if filters.min_timestamp is not None and metadata.timestamp < filters.min_timestamp:
            return False
        if filters.max_timestamp is not None and metadata.timestamp > filters.max_timestamp:
            return False

        if filters.domain and not self.is_domain_accessible(doc, filters.domain):
            return False

        return True

    def audience_matches(self, doc_audience, requested) -> bool:
        """Wildcard documents match any request; otherwise the sets must intersect."""
        doc_audience = set(doc_audience or [])
        if self.audience_wildcard in doc_audience:
            return True
        return bool(doc_audience.intersection(requested))

    @staticmethod
    def is_domain_accessible(doc: VectorDocument, domain_tag: Optional[str]) -> bool:
        """Empty domain tags mean the document is visible from every domain."""
        domain_tags = doc.metadata.domain_tags
        if not domain_tags:
            return True
        return bool(domain_tag) and domain_tag in domain_tags
