"""
Structured operation logging for the retrieval core.
Every degraded path (embedding fallback, retries, search fallback) is logged here.
"""

import logging
from typing import Any, Dict, List

class StructuredLogger:
    """Structured logger for vector, ingestion and retrieval operations."""

    def __init__(self, name: str = "kb_retrieval"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"vector.{operation}", status, log_details, level)

    def log_batch_result(self, operation: str, processed: int, failed: int, errors: List[Dict[str, str]] = None):
        """Log the outcome of a batch upsert or delete."""
        log_details = {"processed": processed, "failed": failed}
        if errors:
            # Only ids and truncated reasons, never document content
            log_details["errors"] = [
                {"id": e.get("id"), "error": str(e.get("error", ""))[:100]} for e in errors[:10]
            ]
        status = "success" if failed == 0 else "partial"
        level = logging.INFO if failed == 0 else logging.WARNING
        self.log_operation(f"batch.{operation}", status, log_details, level)

    def log_embedding_downgrade(self, provider: str, reason: str, text_length: int):
        """Log a switch from the embedding provider to the lexical hash fallback."""
        log_details = {
            "provider": provider,
            "reason": reason[:200],
            "text_length": text_length,
            "fallback": "lexical_hash"
        }
        self.log_operation("embedding.downgrade", "degraded", log_details, logging.WARNING)

    def log_retrieval(self, domain_tag: str, audience: str, returned: int, confidence: float, fallback_used: bool, duration_ms: float):
        """Log a completed retrieval."""
        log_details = {
            "domain_tag": domain_tag,
            "audience": audience or "",
            "returned": returned,
            "confidence": round(confidence, 4),
            "fallback_used": fallback_used,
            "duration_ms": round(duration_ms, 2)
        }
        self.log_operation("retrieval.query", "success", log_details)

    def log_fallback(self, status: str, details: Dict[str, Any] = None):
        """Log an external search fallback attempt."""
        level = logging.INFO if status in ("used", "empty") else logging.WARNING
        self.log_operation("retrieval.fallback", status, details, level)

    def log_index_rebuild(self, strategy: str, live: int, reclaimed: int, reason: str):
        """Log an index compaction."""
        log_details = {
            "strategy": strategy,
            "live": live,
            "reclaimed": reclaimed,
            "reason": reason
        }
        self.log_operation("index.rebuild", "success", log_details)

    def log_retry(self, operation: str, attempt: int, delay_ms: float, error: str):
        """Log a retry against a remote backend."""
        log_details = {
            "attempt": attempt,
            "delay_ms": delay_ms,
            "error": error[:200]
        }
        self.log_operation(f"retry.{operation}", "retrying", log_details, logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, max_length: int = 100, sensitive_fields: List[str] = None) -> Any:
    """Truncate long strings and redact embedding/content fields for log output."""
    if sensitive_fields is None:
        sensitive_fields = ['embedding', 'content', 'api_key', 'secret', 'password']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if k in sensitive_fields:
                sanitized[k] = "[REDACTED]"
            else:
                sanitized[k] = sanitize_payload(v, max_length, sensitive_fields)
        return sanitized
    elif isinstance(payload, str):
        return payload[:max_length] + "..." if len(payload) > max_length else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, max_length, sensitive_fields) for item in payload]
    else:
        return payload
