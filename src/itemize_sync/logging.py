"""Structured JSON logging for the itemize sync agent.

Provides audit-friendly logging with contextual fields for queue events,
upload attempts, and connectivity changes. Bearer credentials are masked
before any record is emitted.

Usage:
    from itemize_sync.logging import setup_logging, log_queued

    setup_logging("INFO")
    log_queued(logging.getLogger(__name__), item_id, local_id, reason="offline")
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from itemize_sync import __version__

# Device identifier included in every record once set
_device_id: str | None = None


class RedactingFilter(logging.Filter):
    """Mask bearer tokens and token-like fields in log messages."""

    PATTERNS = [
        (re.compile(r"(bearer\s+)([^\s,}'\"]+)", re.IGNORECASE), r"\1***MASKED***"),
        (
            re.compile(r"((?:access|refresh)_?token[\"']?\s*[:=]\s*[\"']?)([^\"'}\s,]+)", re.IGNORECASE),
            r"\1***MASKED***",
        ),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._mask(arg) if isinstance(arg, str) else arg for arg in record.args)
        return True

    def _mask(self, value: str) -> str:
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value


class ItemizeJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds agent context to all log records."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["agent_version"] = __version__
        if _device_id:
            log_record["device_id"] = _device_id

        if "message" not in log_record and record.getMessage():
            log_record["message"] = record.getMessage()

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format time as ISO 8601."""
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat()


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    device_id: str | None = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> None:
    """Configure root logger with JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for rotating file handler
        device_id: Identifier for this device, added to every record
        max_bytes: Max size per log file for rotation
        backup_count: Number of backup files to keep
    """
    if device_id:
        set_device_id(device_id)

    formatter = ItemizeJsonFormatter()
    redactor = RedactingFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(redactor)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redactor)
        root_logger.addHandler(file_handler)


def set_device_id(device_id: str | None) -> None:
    """Set the device identifier for log context."""
    global _device_id
    _device_id = device_id


# --- Audit Event Functions ---


def log_queued(
    logger: logging.Logger,
    item_id: str,
    local_id: str,
    reason: str,
) -> None:
    """Log a capture being saved to the offline queue.

    Args:
        logger: Logger instance
        item_id: Queue item identifier
        local_id: Local file identifier
        reason: Why it was queued (offline, upload_failed, duplicate)
    """
    logger.info(
        "Upload queued",
        extra={
            "event": "upload_queued",
            "item_id": item_id,
            "local_id": local_id,
            "reason": reason,
        },
    )


def log_upload_success(
    logger: logging.Logger,
    item_id: str | None,
    duration_ms: float,
) -> None:
    """Log a successful delivery to the extraction endpoint.

    Args:
        logger: Logger instance
        item_id: Queue item identifier, None for direct uploads
        duration_ms: Time spent on the request in milliseconds
    """
    logger.info(
        "Upload successful",
        extra={
            "event": "upload_success",
            "item_id": item_id,
            "duration_ms": round(duration_ms, 1),
        },
    )


def log_upload_failed(
    logger: logging.Logger,
    item_id: str | None,
    error: str,
    attempt_count: int,
) -> None:
    """Log a failed delivery attempt.

    Args:
        logger: Logger instance
        item_id: Queue item identifier, None for direct uploads
        error: Error message (never includes credentials)
        attempt_count: Attempts recorded after this failure
    """
    logger.warning(
        "Upload failed",
        extra={
            "event": "upload_failed",
            "item_id": item_id,
            "error": error,
            "attempt_count": attempt_count,
        },
    )


def log_state_change(
    logger: logging.Logger,
    old_state: str,
    new_state: str,
    trigger: str | None = None,
) -> None:
    """Log a state transition.

    Args:
        logger: Logger instance
        old_state: Previous state
        new_state: New state
        trigger: What triggered the change
    """
    extra = {
        "event": "state_change",
        "old_state": old_state,
        "new_state": new_state,
    }
    if trigger:
        extra["trigger"] = trigger
    logger.info("State changed", extra=extra)
