"""
Test cases for metadata filtering and domain accessibility.
"""

from datetime import datetime

import numpy as np
import pytest

from kb_retrieval.vector.filters import MetadataFilterEngine
from kb_retrieval.vector.types import DocumentMetadata, SearchFilters, VectorDocument


def make_doc(audience=None, category="adoption", source="admin", tags=None, domain_tags=None,
             timestamp=datetime(2024, 6, 1)):
    return VectorDocument(
        id="doc",
        embedding=np.array([1.0, 0.0], dtype=np.float32),
        content="content",
        metadata=DocumentMetadata(
            category=category,
            audience=audience or [],
            source=source,
            timestamp=timestamp,
            tags=tags or [],
            domain_tags=domain_tags or [],
        ),
    )


@pytest.fixture
def engine():
    return MetadataFilterEngine()


def test_absent_filters_pass(engine):
    assert engine.matches(make_doc(), None)
    assert engine.matches(make_doc(), SearchFilters())


def test_category_exact_match(engine):
    assert engine.matches(make_doc(category="adoption"), SearchFilters(category="adoption"))
    assert not engine.matches(make_doc(category="events"), SearchFilters(category="adoption"))


def test_audience_excludes_other_audience(engine):
    """A guardians-only document never matches a donors request."""
    doc = make_doc(audience=["guardians"])
    assert not engine.matches(doc, SearchFilters(audience=["donors"]))


def test_audience_wildcard_matches_any_request(engine):
    doc = make_doc(audience=["all"])
    assert engine.matches(doc, SearchFilters(audience=["donors"]))
    assert engine.matches(doc, SearchFilters(audience=["guardians", "volunteers"]))


def test_audience_is_or_within_dimension(engine):
    doc = make_doc(audience=["volunteers"])
    assert engine.matches(doc, SearchFilters(audience=["donors", "volunteers"]))


def test_custom_wildcard_marker():
    engine = MetadataFilterEngine(audience_wildcard="*")
    assert engine.matches(make_doc(audience=["*"]), SearchFilters(audience=["donors"]))
    assert not engine.matches(make_doc(audience=["all"]), SearchFilters(audience=["donors"]))


def test_source_and_tags(engine):
    doc = make_doc(source="import", tags=["faq", "dogs"])
    assert engine.matches(doc, SearchFilters(source="import", tags=["cats", "dogs"]))
    assert not engine.matches(doc, SearchFilters(source="admin"))
    assert not engine.matches(doc, SearchFilters(tags=["cats"]))


def test_time_range_bounds(engine):
    doc = make_doc(timestamp=datetime(2024, 6, 1))
    assert engine.matches(doc, SearchFilters(min_timestamp=datetime(2024, 1, 1), max_timestamp=datetime(2024, 12, 31)))
    assert not engine.matches(doc, SearchFilters(min_timestamp=datetime(2024, 7, 1)))
    assert not engine.matches(doc, SearchFilters(max_timestamp=datetime(2024, 5, 1)))


def test_dimensions_are_and_combined(engine):
    doc = make_doc(audience=["donors"], category="events")
    assert not engine.matches(doc, SearchFilters(category="adoption", audience=["donors"]))


def test_domain_accessibility():
    """Empty domain tags are visible everywhere; otherwise the caller's domain must be listed."""
    open_doc = make_doc()
    scoped_doc = make_doc(domain_tags=["fundraising"])

    assert MetadataFilterEngine.is_domain_accessible(open_doc, "adoption")
    assert MetadataFilterEngine.is_domain_accessible(scoped_doc, "fundraising")
    assert not MetadataFilterEngine.is_domain_accessible(scoped_doc, "adoption")
    assert not MetadataFilterEngine.is_domain_accessible(scoped_doc, None)


def test_domain_filter_dimension(engine):
    scoped_doc = make_doc(domain_tags=["fundraising"])

    assert engine.matches(make_doc(), SearchFilters(domain="adoption"))
    assert engine.matches(scoped_doc, SearchFilters(domain="fundraising"))
    assert not engine.matches(scoped_doc, SearchFilters(domain="adoption"))
    assert not SearchFilters(domain="adoption").is_empty()
