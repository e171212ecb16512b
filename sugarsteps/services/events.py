"""Structured event helpers shared across the application."""

from __future__ import annotations

import contextlib
import logging
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("sugarsteps.events")

DB_QUERY = "DB_QUERY"
FILE_OP = "FILE_OP"
TASK_STATE = "TASK_STATE"


def sanitize_context_value(value: Any) -> Any:
    """Return a log-friendly representation for *value*."""

    if value is None:
        return None
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return sanitize_context_value(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        sanitized: Dict[str, Any] = {}
        for key, item in value.items():
            if key is None:
                continue
            cleaned = sanitize_context_value(item)
            if cleaned is None or cleaned == "":
                continue
            sanitized[str(key)] = cleaned
        return sanitized
    if isinstance(value, (list, tuple, set)):
        joined = ", ".join(str(item) for item in value)
    else:
        joined = str(value)
    trimmed = joined.strip()
    if not trimmed:
        return None
    return trimmed[:200] + ("…" if len(trimmed) > 200 else "")


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalise structured metadata for event emission."""

    if not values:
        return {}
    normalised: Dict[str, Any] = {}
    for key, raw_value in values.items():
        if not key:
            continue
        value = sanitize_context_value(raw_value)
        if value is None or value == "":
            continue
        normalised[str(key)] = value
    return normalised


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Emit a structured event with consistent logging metadata."""

    base_message = str(message).strip()
    normalised_context = normalize_context(context)
    normalised_payload = normalize_context(payload)
    combined_details = {**normalised_context, **normalised_payload}
    details_text = ", ".join(f"{key}={value}" for key, value in combined_details.items())
    display_message = f"[{event_type}] {base_message}" if event_type else base_message
    if duration_ms is not None:
        display_message = f"{display_message} in {duration_ms:.1f}ms"
    log_message = f"{display_message} ({details_text})" if details_text else display_message
    extra: Dict[str, Any] = {
        "debug_event": base_message,
        "debug_event_type": event_type or "",
    }
    if normalised_context:
        extra["debug_context"] = normalised_context
    if normalised_payload:
        extra["debug_payload"] = normalised_payload
    if duration_ms is not None:
        extra["debug_duration_ms"] = float(duration_ms)
    logger.log(level, log_message, extra=extra)


def emit_db_event(action: str, **kwargs: Any) -> None:
    """Emit a structured database event."""

    emit_structured_event(DB_QUERY, action, **kwargs)


def emit_file_event(operation: str, **kwargs: Any) -> None:
    """Emit a structured file-system event."""

    emit_structured_event(FILE_OP, operation, **kwargs)


def emit_task_event(phase: str, message: str = "", **kwargs: Any) -> None:
    """Emit a structured task lifecycle event."""

    payload = dict(kwargs.pop("payload", None) or {})
    payload.setdefault("phase", phase)
    emit_structured_event(TASK_STATE, message or phase, payload=payload, **kwargs)


@contextlib.contextmanager
def track_event(event_type: str, message: str, **payload: Any) -> Iterator[Dict[str, Any]]:
    """Time the enclosed block and emit one event describing its outcome.

    The yielded dictionary can be enriched by the caller; a ``status`` key is
    filled in automatically (``ok`` or ``error``) unless already present.
    """

    start = time.perf_counter()
    event_payload: Dict[str, Any] = dict(payload)
    level = logging.DEBUG
    try:
        yield event_payload
    except Exception as exc:
        event_payload.setdefault("status", "error")
        event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
        level = logging.WARNING
        raise
    finally:
        event_payload.setdefault("status", "ok")
        emit_structured_event(
            event_type,
            message,
            payload=event_payload,
            duration_ms=(time.perf_counter() - start) * 1000.0,
            level=level,
        )


__all__ = [
    "DB_QUERY",
    "DEFAULT_EVENT_LOGGER",
    "FILE_OP",
    "TASK_STATE",
    "emit_db_event",
    "emit_file_event",
    "emit_structured_event",
    "emit_task_event",
    "normalize_context",
    "sanitize_context_value",
    "track_event",
]
