"""
Test cases for embedding validation.
"""

import math

import numpy as np
import pytest

from kb_retrieval.core.errors import ValidationError
from kb_retrieval.vector.validator import (
    EmbeddingValidator,
    validate_embedding,
    validate_embedding_batch,
)


def test_valid_embedding_list_and_array():
    """Finite, non-zero vectors of the right length are valid."""
    assert validate_embedding([0.1, -0.2, 0.3], 3).valid
    assert validate_embedding(np.array([1.0, 0.0, 0.0], dtype=np.float32), 3).valid
    assert validate_embedding((0, 0, 2), 3).valid


def test_rejects_none():
    result = validate_embedding(None, 3)
    assert not result.valid
    assert "null" in result.reason


def test_rejects_non_array():
    result = validate_embedding("not a vector", 3)
    assert not result.valid
    assert "must be an array" in result.reason

    result = validate_embedding(np.ones((2, 3)), 3)
    assert not result.valid
    assert "1-D" in result.reason


def test_rejects_empty():
    result = validate_embedding([], 3)
    assert not result.valid
    assert result.reason == "Embedding array is empty"


def test_rejects_wrong_dimension():
    """Wrong length is reported with both sizes."""
    result = validate_embedding([0.5] * 4, 3)
    assert not result.valid
    assert "expected 3, got 4" in result.reason
    assert result.details["dimension"] == 4
    assert result.details["expected_dimension"] == 3


def test_rejects_nan():
    result = validate_embedding([0.1, math.nan, 0.3], 3)
    assert not result.valid
    assert "NaN" in result.reason
    assert result.details["has_nan"] is True


def test_rejects_non_numeric_components():
    """Strings and bools get their own reason, not the NaN one."""
    for bad in ([0.1, "x", 0.3], [True, 0.0, 0.3], [0.1, None, 0.3]):
        result = validate_embedding(bad, 3)
        assert not result.valid
        assert result.reason == "Embedding contains non-numeric components"
        assert result.details["non_numeric"] is True


def test_rejects_infinity():
    for bad in (math.inf, -math.inf):
        result = validate_embedding([0.1, bad, 0.3], 3)
        assert not result.valid
        assert "Infinity" in result.reason
        assert result.details["has_infinity"] is True


def test_rejects_all_zeros():
    result = validate_embedding([0.0, 0.0, 0.0], 3)
    assert not result.valid
    assert "all zeros" in result.reason
    assert result.details["is_all_zeros"] is True


def test_batch_report_counts_by_position():
    report = validate_embedding_batch([[1.0, 0.0], [0.0, 0.0], None, [0.5, 0.5]], 2)
    assert report.valid_count == 2
    assert report.invalid_count == 2
    assert [e["index"] for e in report.errors] == [1, 2]


def test_assert_valid_returns_float32():
    validator = EmbeddingValidator(3)
    vector = validator.assert_valid([1, 2, 3])
    assert vector.dtype == np.float32
    assert vector.tolist() == [1.0, 2.0, 3.0]


def test_assert_valid_raises_with_context():
    """The typed error carries the diagnostic context string."""
    validator = EmbeddingValidator(3)
    with pytest.raises(ValidationError) as exc_info:
        validator.assert_valid([1.0, 2.0], context="ingest doc-7")
    assert exc_info.value.context == "ingest doc-7"
    assert str(exc_info.value).startswith("[ingest doc-7]")


def test_validator_requires_positive_dimension():
    with pytest.raises(ValueError):
        EmbeddingValidator(0)


def test_large_finite_values_within_float32_are_valid():
    assert validate_embedding([1e20, 1e20, 0.0, 0.0], 4).valid


def test_rejects_values_outside_float32_range():
    """Finite doubles that become infinity once stored as float32 are rejected."""
    result = validate_embedding([1e39, 1.0, 0.0, 0.0], 4)
    assert not result.valid
    assert "float32 range" in result.reason
    assert result.details["out_of_range"] is True


def test_rejects_values_that_underflow_to_zero():
    result = validate_embedding([1e-50, 0.0, 0.0, 0.0], 4)
    assert not result.valid
    assert "all zeros" in result.reason
