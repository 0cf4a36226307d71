"""Structured logging configuration for LQS.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import get_settings

# Attributes present on every LogRecord; anything else came in via ``extra``
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure logging based on settings."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Suppress noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, agency_id="a1", batch_id="abc123")
        logger.info("Processing row")  # Includes agency_id and batch_id
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_batch_start(kind: str, batch_id: str, agency_id: str, row_count: int) -> None:
    """Log the start of an ingestion batch."""
    logger = get_logger("lqs.ingestion")
    logger.info(
        f"Starting {kind} batch",
        extra={
            "kind": kind,
            "batch_id": batch_id,
            "agency_id": agency_id,
            "row_count": row_count,
            "event": "batch_start",
        },
    )


def log_batch_complete(
    kind: str,
    batch_id: str,
    agency_id: str,
    status: str,
    counts: dict[str, int],
    duration_seconds: float,
) -> None:
    """Log the completion of an ingestion batch."""
    logger = get_logger("lqs.ingestion")
    logger.info(
        f"Completed {kind} batch ({status})",
        extra={
            "kind": kind,
            "batch_id": batch_id,
            "agency_id": agency_id,
            "status": status,
            "counts": counts,
            "duration_seconds": duration_seconds,
            "event": "batch_complete",
        },
    )


def log_row_result(
    kind: str,
    batch_id: str,
    row_index: int,
    status: str,
    reason: str | None = None,
) -> None:
    """Log the outcome of an individual batch row.

    Args:
        kind: Batch kind (leads, quotes, sales)
        batch_id: Batch identifier
        row_index: Zero-based position of the row in the batch
        status: Row status (created, updated, matched, flagged, ...)
        reason: Explanation for skipped, failed or flagged rows
    """
    logger = get_logger("lqs.ingestion")
    level = logging.DEBUG if reason is None else logging.INFO
    logger.log(
        level,
        f"Row {row_index} {status}" + (f": {reason}" if reason else ""),
        extra={
            "kind": kind,
            "batch_id": batch_id,
            "row_index": row_index,
            "status": status,
            "reason": reason,
            "event": "row_processed",
        },
    )


def log_resolution_event(
    step: str,
    sale_id: str,
    household_id: str | None,
    outcome: str,
    score: int | None = None,
) -> None:
    """Log a sale resolution decision.

    Args:
        step: Resolution step that decided (policy_number, scored, one_call_close, manual)
        sale_id: Sale being resolved
        household_id: Linked household (if any)
        outcome: matched, flagged or created
        score: Winning candidate score for scored matches
    """
    logger = get_logger("lqs.resolution")
    logger.info(
        f"Sale {sale_id} {outcome} via {step} -> {household_id or 'review'}",
        extra={
            "step": step,
            "sale_id": sale_id,
            "household_id": household_id,
            "outcome": outcome,
            "score": score,
            "event": "sale_resolution",
        },
    )


def log_data_quality(
    agency_id: str,
    issue: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Log a non-fatal data quality finding (e.g. a duplicate policy number).

    Args:
        agency_id: Agency the row belongs to
        issue: Short issue code
        details: Additional context
    """
    logger = get_logger("lqs.quality")
    logger.warning(
        f"Data quality issue for agency {agency_id}: {issue}",
        extra={
            "agency_id": agency_id,
            "issue": issue,
            "details": details,
            "event": "data_quality",
        },
    )
