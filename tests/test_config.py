"""
Test cases for configuration validation and service wiring.
"""

import pytest

from kb_retrieval.core import config
from kb_retrieval.core.errors import ConfigurationError
from kb_retrieval.core.retrieval_service import RetrievalService
from kb_retrieval.search.fallback import HttpSearchFallback, KeywordSearchFallback
from kb_retrieval.vector.index import BruteForceIndex
from kb_retrieval.vector.record_store import VectorRecordStore
from kb_retrieval.vector.remote_store import RemoteVectorStore


def test_default_config_is_valid():
    assert config.validate_vector_config() == []


def test_invalid_values_are_reported(monkeypatch):
    monkeypatch.setattr(config, "VECTOR_BACKEND", "cloud")
    monkeypatch.setattr(config, "AUDIENCE_BOOST", 0.5)
    monkeypatch.setenv("INDEX_STRATEGY", "lsh")

    issues = config.validate_vector_config()

    assert "Invalid VECTOR_BACKEND: cloud" in issues
    assert "Invalid INDEX_STRATEGY: lsh" in issues
    assert "AUDIENCE_BOOST must be >= 1.0" in issues


def test_remote_backend_requires_identifiers(monkeypatch):
    """Missing backend identifiers fail at construction, not at first query."""
    monkeypatch.setattr(config, "VECTOR_BACKEND", "remote")
    monkeypatch.setattr(config, "REMOTE_INDEX_ENDPOINT", "")

    with pytest.raises(ConfigurationError):
        config.build_retrieval_service()


def test_remote_backend_is_built(monkeypatch):
    monkeypatch.setattr(config, "VECTOR_BACKEND", "remote")
    monkeypatch.setattr(config, "REMOTE_INDEX_ENDPOINT", "https://vectors.example.com")
    monkeypatch.setattr(config, "REMOTE_INDEX_ID", "kb")

    store = config.get_vector_store(16)

    assert isinstance(store, RemoteVectorStore)
    assert store.dimension == 16


def test_overfetch_is_clamped(monkeypatch):
    monkeypatch.setattr(config, "RETRIEVAL_OVERFETCH", 10)
    assert config.get_overfetch_factor() == 5
    monkeypatch.setattr(config, "RETRIEVAL_OVERFETCH", 1)
    assert config.get_overfetch_factor() == 2


def test_in_memory_store_uses_strategy(monkeypatch):
    monkeypatch.setenv("INDEX_STRATEGY", "brute-force")
    store = config.get_vector_store(8)
    assert isinstance(store, VectorRecordStore)
    assert isinstance(store.index, BruteForceIndex)


def test_fallback_selection(monkeypatch):
    monkeypatch.setattr(config, "FALLBACK_PROVIDER", "none")
    assert config.get_search_fallback() is None

    monkeypatch.setattr(config, "FALLBACK_PROVIDER", "keyword")
    assert isinstance(config.get_search_fallback(), KeywordSearchFallback)

    monkeypatch.setattr(config, "FALLBACK_PROVIDER", "http")
    monkeypatch.setattr(config, "FALLBACK_ENDPOINT", "https://search.example.com")
    assert isinstance(config.get_search_fallback(), HttpSearchFallback)


def test_build_retrieval_service(monkeypatch):
    monkeypatch.setenv("INDEX_STRATEGY", "brute-force")
    monkeypatch.setattr(config, "FALLBACK_PROVIDER", "keyword")

    service = config.build_retrieval_service()

    assert isinstance(service, RetrievalService)
    assert service.top_k == config.RETRIEVAL_TOP_K
    assert service.store.dimension == config.EMBED_DIM
    assert isinstance(service.fallback, KeywordSearchFallback)
    service.close()
