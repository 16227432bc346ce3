"""
Embedding validation.
Structural sanity gate applied to every vector entering or leaving the vector layer.
"""

import math
from typing import Any, Iterable, Optional

import numpy as np

from ..core.errors import ValidationError
from .types import BatchValidationReport, ValidationResult

_FLOAT32_MAX = float(np.finfo(np.float32).max)


def validate_embedding(embedding: Any, expected_dim: int) -> ValidationResult:
    """
    Check that an embedding is usable for cosine search.

    Rejects None, non-sequences, empty or wrongly sized vectors, NaN and
    infinite components, and all-zero vectors (a generation failure upstream).

    Args:
        embedding: Candidate vector (list, tuple or 1-D numpy array)
        expected_dim: Dimension the index was built for

    Returns:
        ValidationResult with a specific reason when invalid
    """
    if embedding is None:
        return ValidationResult(valid=False, reason="Embedding is null or undefined")

    if isinstance(embedding, np.ndarray):
        if embedding.ndim != 1:
            return ValidationResult(
                valid=False,
                reason=f"Embedding must be a 1-D array, got {embedding.ndim} dimensions",
            )
        values = embedding.tolist()
    elif isinstance(embedding, (list, tuple)):
        values = list(embedding)
    else:
        return ValidationResult(
            valid=False,
            reason=f"Embedding must be an array, got {type(embedding).__name__}",
        )

    if len(values) == 0:
        return ValidationResult(
            valid=False,
            reason="Embedding array is empty",
            details={"dimension": 0, "expected_dimension": expected_dim},
        )

    if len(values) != expected_dim:
        return ValidationResult(
            valid=False,
            reason=f"Invalid embedding dimension: expected {expected_dim}, got {len(values)}",
            details={"dimension": len(values), "expected_dimension": expected_dim},
        )

    details = {"dimension": len(values), "expected_dimension": expected_dim}

    # bool is an int subclass but never a legitimate component
    if any(isinstance(v, bool) or not isinstance(v, (int, float, np.floating, np.integer)) for v in values):
        return ValidationResult(
            valid=False,
            reason="Embedding contains non-numeric components",
            details={**details, "non_numeric": True},
        )

    if any(math.isnan(v) for v in values):
        return ValidationResult(
            valid=False,
            reason="Embedding contains NaN values",
            details={**details, "has_nan": True},
        )

    if any(math.isinf(v) for v in values):
        return ValidationResult(
            valid=False,
            reason="Embedding contains Infinity values",
            details={**details, "has_infinity": True},
        )

    if all(v == 0 for v in values):
        return ValidationResult(
            valid=False,
            reason="Embedding is all zeros (possible generation failure)",
            details={**details, "is_all_zeros": True},
        )

    # Vectors are stored as float32: components must survive the cast
    as_float64 = np.asarray(values, dtype=np.float64)
    if np.any(np.abs(as_float64) > _FLOAT32_MAX):
        return ValidationResult(
            valid=False,
            reason="Embedding contains values outside the float32 range",
            details={**details, "out_of_range": True},
        )

    if not np.any(as_float64.astype(np.float32)):
        return ValidationResult(
            valid=False,
            reason="Embedding is all zeros after float32 conversion (values too small)",
            details={**details, "is_all_zeros": True},
        )

    return ValidationResult(valid=True, details=details)


def assert_valid_embedding(embedding: Any, expected_dim: int, context: Optional[str] = None) -> np.ndarray:
    """Validate and return the embedding as float32, raising ValidationError otherwise."""
    result = validate_embedding(embedding, expected_dim)
    if not result.valid:
        raise ValidationError(result.reason, context=context)
    return np.asarray(embedding, dtype=np.float32)


def validate_embedding_batch(embeddings: Iterable[Any], expected_dim: int) -> BatchValidationReport:
    """Validate many embeddings, reporting failures by position."""
    report = BatchValidationReport(valid_count=0, invalid_count=0)
    for index, embedding in enumerate(embeddings):
        result = validate_embedding(embedding, expected_dim)
        if result.valid:
            report.valid_count += 1
        else:
            report.invalid_count += 1
            report.errors.append({"index": index, "error": result.reason})
    return report


class EmbeddingValidator:
    """Validator bound to one index dimension."""

    def __init__(self, dimension: int):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def validate(self, embedding: Any) -> ValidationResult:
        return validate_embedding(embedding, self.dimension)

    def assert_valid(self, embedding: Any, context: Optional[str] = None) -> np.ndarray:
        return assert_valid_embedding(embedding, self.dimension, context)

    def validate_batch(self, embeddings: Iterable[Any]) -> BatchValidationReport:
        return validate_embedding_batch(embeddings, self.dimension)
