"""
Structured logging for the retrieval-and-verification pipeline.
Operational events, persistence activity and safety audit trail.
"""

import json
import logging
import os
from typing import Any, Dict, List

class StructuredLogger:
    """Structured logger for vector, persistence, detection and pipeline operations."""

    def __init__(self, name: str = "replyguard"):
        self.logger = logging.getLogger(name)
        debug = os.getenv("DEBUG", "false").lower() == "true"
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)

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
            message += f", Details: {json.dumps(details, default=str, sort_keys=True)}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, collection: str, record_count: int = 0, status: str = "success", details: Dict[str, Any] = None):
        """Log a vector collection operation."""
        log_details = {"collection": collection, "record_count": record_count}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_persistence(self, operation: str, collection: str = None, status: str = "success", details: Dict[str, Any] = None):
        """Log a persistent cache operation."""
        log_details = {}
        if collection is not None:
            log_details["collection"] = collection
        if details:
            log_details.update(details)

        level = logging.WARNING if status in ("failed", "unavailable") else logging.INFO
        self.log_operation(f"cache.{operation}", status, log_details, level=level)

    def log_embedding_fallback(self, provider: str, error: str):
        """Log a switch to degraded (hashed) embeddings."""
        self.log_operation(
            "embedding.fallback",
            "degraded",
            {"provider": provider, "error": error[:100]},
            level=logging.WARNING,
        )

    def log_pipeline_stage(self, stage: str, status: str, duration_ms: float, details: Dict[str, Any] = None):
        """Log execution of a single pipeline stage."""
        log_details = {"duration_ms": round(duration_ms, 2)}
        if details:
            log_details.update(details)

        level = logging.WARNING if status in ("failed", "timeout") else logging.DEBUG
        self.log_operation(f"pipeline.{stage}", status, log_details, level=level)

    def log_detection(self, flag_count: int, confidence: float, is_hallucination: bool, details: Dict[str, Any] = None):
        """Log a hallucination detection outcome."""
        log_details = {
            "flag_count": flag_count,
            "confidence": round(confidence, 3),
            "is_hallucination": is_hallucination
        }
        if details:
            log_details.update(details)

        self.log_operation("detection.result", "flagged" if is_hallucination else "clean", log_details)

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

DEFAULT_SENSITIVE_FIELDS = ['content', 'text', 'response', 'user_input', 'history', 'payload']

# General audit event function
def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    # Determine operation type from event_type
    if event_type.startswith("detection"):
        operation = "safety"
    elif event_type.startswith("cache"):
        operation = "persistence"
    else:
        operation = event_type.replace(".", "_")

    logger.log_operation(f"audit.{operation}", event_type, log_details, level=logging.WARNING)

# Payload sanitization utility
def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging.

    Conversational text is truncated to a short preview rather than removed,
    so an auditor can locate the turn without the log holding the full text.
    """
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            elif isinstance(v, str):
                sanitized[k] = v[:24] + "..." if len(v) > 24 else v
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
