"""
Structured Logging
==================

One JSON object per log line, written to stdout.

Every line carries a UTC timestamp and the environment name. Lines
written while handling a request or a queued job also carry that
request's or job's correlation id. Credentials and complaint text are
replaced before a line is emitted.

Usage:
    from complaint_triage.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Complaint triaged", extra={"complaint_id": complaint.id})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"

# Matched as substrings of the lowercased key
SECRET_KEY_PARTS = ("password", "api_key", "secret")
# Matched exactly
CONTENT_KEYS = frozenset({"raw_text", "complaint_text"})


def is_sensitive_key(key: str) -> bool:
    """
    True for keys whose string values must not reach the log sink.

    ``token`` is treated as a credential, but token counts
    (``prompt_tokens``, ``total_tokens``) are kept.
    """
    lowered = key.lower()
    if lowered in CONTENT_KEYS:
        return True
    if any(part in lowered for part in SECRET_KEY_PARTS):
        return True
    return "token" in lowered and "tokens" not in lowered


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, environment and correlation id, with redaction."""

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["environment"] = self._environment
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id is not None:
            log_record["correlation_id"] = correlation_id

        for key, value in list(log_record.items()):
            if isinstance(value, str) and is_sensitive_key(key):
                log_record[key] = REDACTED


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """
    Route all loggers through a single JSON stdout handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        environment: Written on every line
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(CustomJsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        environment=environment,
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's context into each call's ``extra`` instead of replacing it."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_context_logger(name: str, correlation_id: str | None = None) -> logging.Logger:
    """Logger whose lines all carry ``correlation_id`` (a request id or a complaint id for queued jobs)."""
    logger = get_logger(name)
    if correlation_id:
        logger = ContextLoggerAdapter(logger, {"correlation_id": correlation_id})
    return logger


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Log ``<operation> completed`` with its wall-clock latency when the block exits.

    Usage:
        with log_latency(logger, "similarity_query", tenant_id=tenant_id):
            matches = await index.find_similar(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                **extra_context,
            },
        )
