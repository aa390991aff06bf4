"""
LiveTriage - Structured Logging

Provides JSON or human-readable logging with call-id context injection.
Call ids and phone numbers are masked before they reach a log line.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from typing import Optional

from livetriage.core.types import format_timestamp, utcnow


# =============================================================================
# Context Variables
# =============================================================================

call_id_var: ContextVar[Optional[str]] = ContextVar('call_id', default=None)


# =============================================================================
# Masking Utilities
# =============================================================================

def mask_call_id(cid: Optional[str]) -> Optional[str]:
    """Keep the last 4 characters of a call id."""
    if not cid:
        return None
    return f"***{cid[-4:]}" if len(cid) > 4 else "***"


def mask_phone_number(number: Optional[str], show_last_digits: int = 2) -> str:
    """
    Keep only the trailing digits of a phone number.

    Examples:
        +15550123    → ***23
        None         → unknown
    """
    if not number:
        return "unknown"

    digits = re.sub(r'\D', '', str(number))
    if len(digits) < show_last_digits:
        return "***"
    return f"***{digits[-show_last_digits:]}"


# Keys carrying callback numbers or credentials in triage payloads and
# platform responses.
PHONE_KEYS = ('callback_number', 'user_number', 'usernumber', 'agent_number', 'agentnumber', 'phone')
SECRET_KEYS = ('token', 'api_key', 'apikey', 'secret', 'authorization')


def mask_sensitive_data(data: dict) -> dict:
    """Recursively mask phone numbers and credentials in a log payload."""
    masked = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(s in key_lower for s in SECRET_KEYS):
            masked[key] = "[REDACTED]"
        elif any(s in key_lower for s in PHONE_KEYS):
            masked[key] = mask_phone_number(value) if isinstance(value, str) else "[REDACTED]"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        elif isinstance(value, list):
            masked[key] = [mask_sensitive_data(v) if isinstance(v, dict) else v for v in value]
        else:
            masked[key] = value

    return masked


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that injects the call id and masks sensitive data.

    Output format:
    {
        "timestamp": "2026-01-01T00:00:00.000Z",
        "level": "INFO",
        "logger": "livetriage.core.triage_store",
        "call_id": "***1234",
        "message": "Human-readable message",
        "data": { ... }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": format_timestamp(utcnow()),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        call_id = call_id_var.get()
        if call_id:
            log_entry["call_id"] = mask_call_id(call_id)

        if hasattr(record, 'data') and record.data:
            log_entry["data"] = mask_sensitive_data(record.data)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")

        call_id = call_id_var.get()
        context_str = f" [call={mask_call_id(call_id)}]" if call_id else ""

        message = f"{timestamp} | {record.levelname:<8} | {record.name}{context_str} | {record.getMessage()}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production, False for development)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())

    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# =============================================================================
# Context Manager
# =============================================================================

class LogContext:
    """
    Context manager that tags log lines with a call id.

    Usage:
        with LogContext(call_id="c-42"):
            logger.info("Triage saved")
    """

    def __init__(self, call_id: Optional[str] = None):
        self._call_id = call_id
        self._token = None

    def __enter__(self):
        if self._call_id:
            self._token = call_id_var.set(self._call_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            call_id_var.reset(self._token)
            self._token = None
        return False
