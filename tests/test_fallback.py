"""
Test cases for external search fallback collaborators.
"""

from unittest.mock import MagicMock

import pytest
import requests

from kb_retrieval.core.errors import BackendRequestError, TransientBackendError
from kb_retrieval.search.fallback import ExternalSearchFallback, HttpSearchFallback, KeywordSearchFallback


@pytest.fixture
def keyword():
    fallback = KeywordSearchFallback()
    fallback.index_documents([
        {"id": "hours", "title": "Shelter hours", "content": "Open daily from 9 to 5", "category": "visit"},
        {"id": "fees", "title": "Adoption fees", "content": "Dogs cost 150, cats cost 90", "category": "adoption"},
        {"id": "", "title": "No id", "content": "skipped"},
    ])
    return fallback


def test_keyword_fallback_is_a_fallback(keyword):
    assert isinstance(keyword, ExternalSearchFallback)


def test_keyword_scores_by_word_overlap(keyword):
    """Score is the share of query words found in title or content."""
    hits = keyword.search("adoption fees dogs parking", top_k=5, min_score=0.0)

    assert hits[0].id == "fees"
    assert hits[0].score == pytest.approx(0.75)


def test_keyword_min_score_and_category(keyword):
    assert keyword.search("adoption fees dogs parking", top_k=5, min_score=0.9) == []
    assert keyword.search("open daily", top_k=5, min_score=0.5, category="adoption") == []
    assert [h.id for h in keyword.search("open daily", top_k=5, min_score=0.5, category="visit")] == ["hours"]


def test_keyword_stats_and_clear(keyword):
    assert keyword.get_stats() == {"total_documents": 2, "categories": {"visit": 1, "adoption": 1}}
    keyword.clear_index()
    assert keyword.search("adoption", top_k=5, min_score=0.0) == []


def test_http_fallback_parses_results():
    session = MagicMock()
    session.headers = {}
    resp = MagicMock(status_code=200)
    resp.json.return_value = {"results": [
        {"id": "x", "title": "Web result", "content": "text", "score": 0.8},
        {"id": "y", "title": "Weak", "content": "text", "score": 0.2},
    ]}
    session.post.return_value = resp
    fallback = HttpSearchFallback("https://search.example.com/q", timeout=2.0, api_key="k", session=session)

    hits = fallback.search("volunteer", top_k=3, min_score=0.5)

    assert [h.id for h in hits] == ["x"]
    assert session.post.call_args.kwargs["json"] == {"query": "volunteer", "top_k": 3, "min_score": 0.5}
    assert session.post.call_args.kwargs["timeout"] == 2.0


def test_http_fallback_error_classes():
    session = MagicMock()
    session.headers = {}
    fallback = HttpSearchFallback("https://search.example.com/q", session=session)

    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(TransientBackendError):
        fallback.search("q", top_k=1, min_score=0.0)

    session.post.side_effect = None
    session.post.return_value = MagicMock(status_code=403)
    with pytest.raises(BackendRequestError):
        fallback.search("q", top_k=1, min_score=0.0)


def test_http_fallback_requires_endpoint():
    with pytest.raises(ValueError):
        HttpSearchFallback("")
