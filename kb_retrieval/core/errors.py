"""
Error types raised by the retrieval core.
"""

from typing import Optional


class RetrievalError(Exception):
    """Base class for retrieval core errors."""

    def __init__(self, message: str, context: Optional[str] = None):
        self.context = context
        if context:
            message = f"[{context}] {message}"
        super().__init__(message)


class ValidationError(RetrievalError):
    """Bad embedding, wrong dimension or malformed document. Never coerced."""
    pass


class CapacityError(ValidationError):
    """The index would grow past its declared maximum capacity."""
    pass


class TransientBackendError(RetrievalError):
    """Network or timeout failure against a remote backend; safe to retry."""
    pass


class BackendRequestError(RetrievalError):
    """The remote backend rejected the request; retrying will not help."""

    def __init__(self, message: str, status_code: Optional[int] = None, context: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message, context)


class ConfigurationError(RetrievalError):
    """Required backend identifiers are missing or invalid."""
    pass


class UnsupportedOperationError(RetrievalError):
    """The operation is not available on this backend."""
    pass
