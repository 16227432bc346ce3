"""
Test cases for structured logging and payload sanitization.
"""

import logging

from kb_retrieval.util.logging import StructuredLogger, sanitize_payload


def test_sanitize_redacts_content_and_embeddings():
    payload = {"id": "a", "content": "private text", "embedding": [0.1, 0.2], "nested": {"api_key": "k"}}
    assert sanitize_payload(payload) == {
        "id": "a",
        "content": "[REDACTED]",
        "embedding": "[REDACTED]",
        "nested": {"api_key": "[REDACTED]"},
    }


def test_sanitize_truncates_long_strings():
    assert sanitize_payload("x" * 150) == "x" * 100 + "..."
    assert sanitize_payload(["short", 3]) == ["short", 3]


def test_operation_log_format(caplog):
    logger = StructuredLogger("kb_retrieval.test")
    with caplog.at_level(logging.INFO, logger="kb_retrieval.test"):
        logger.log_operation("vector.upsert", "success", {"record_id": "a", "content": "secret"})

    assert "Operation: vector.upsert, Status: success" in caplog.text
    assert "secret" not in caplog.text


def test_degraded_paths_log_warnings(caplog):
    logger = StructuredLogger("kb_retrieval.test")
    with caplog.at_level(logging.INFO, logger="kb_retrieval.test"):
        logger.log_embedding_downgrade("SentenceTransformerEmbedding", "timeout", 42)
        logger.log_fallback("timeout", {"timeout_sec": 5})
        logger.log_batch_result("upsert", 2, 1, [{"id": "bad", "error": "all zeros"}])

    levels = [r.levelname for r in caplog.records]
    assert levels == ["WARNING", "WARNING", "WARNING"]
    assert "lexical_hash" in caplog.records[0].getMessage()
    assert "'processed': 2" in caplog.records[2].getMessage()
