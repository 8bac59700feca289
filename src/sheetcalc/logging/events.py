"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Evaluation diagnostics
    formula_error = "formula_error"
    circular_reference = "circular_reference"
    depth_exceeded = "depth_exceeded"

    # Workbook storage
    workbook_loaded = "workbook_loaded"
    workbook_saved = "workbook_saved"
    workbook_load_failed = "workbook_load_failed"
    workbook_save_failed = "workbook_save_failed"
    csv_imported = "csv_imported"
    csv_exported = "csv_exported"

    # Mutations
    sheet_mutated = "sheet_mutated"


# ---------------------------------------------------------------------------
# Context truncation
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256


def truncate_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with long strings cut to 256 chars.

    Formula text and cell values can be arbitrarily large; the log keeps
    enough of them to identify the cell.
    """
    out: dict[str, Any] = {}
    for k, v in context.items():
        if isinstance(v, dict):
            out[k] = truncate_context(v)
        elif isinstance(v, list):
            out[k] = [_truncate_value(item) for item in v]
        else:
            out[k] = _truncate_value(v)
    return out


def _truncate_value(v: Any) -> Any:
    if isinstance(v, dict):
        return truncate_context(v)
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

# Required context keys per event type.
_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.formula_error.value: {"sheet_id"},
    EventType.circular_reference.value: {"sheet_id", "cell"},
    EventType.depth_exceeded.value: {"sheet_id", "cell"},
    EventType.workbook_loaded.value: {"workbook_id", "path"},
    EventType.workbook_saved.value: {"workbook_id", "path"},
    EventType.workbook_load_failed.value: {"path"},
    EventType.workbook_save_failed.value: {"workbook_id", "path"},
    EventType.csv_imported.value: {"path"},
    EventType.csv_exported.value: {"path"},
    EventType.sheet_mutated.value: {"workbook_id", "operation"},
}


def _validate_attribution(event: SheetcalcEvent) -> SheetcalcEvent:
    """Check required context keys; downgrade to warning if missing."""
    required = _EVENT_REQUIRED_KEYS.get(event.event_type.value, set())
    missing = required - set(event.context.keys())
    if not missing:
        return event
    ctx = dict(event.context)
    ctx["_missing_attribution"] = sorted(missing)
    return event.model_copy(update={"level": EventLevel.warning, "context": ctx})


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SheetcalcEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Set when ``set_log_dir`` is called.
_sink: Any = None  # EventSink | None


def set_log_dir(log_dir: str | Path | None, *, fsync: bool = False) -> None:
    """Configure the module-level event sink.

    This should be called early in a CLI command.  If it is never called
    (or called with ``None``), ``emit()`` silently discards events.
    """
    global _sink
    from sheetcalc.logging.sink import EventSink

    _sink = EventSink(Path(log_dir), fsync=fsync) if log_dir is not None else None


def _get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[sheetcalc] {msg}", file=sys.stderr)
    except OSError:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: SheetcalcEvent, *, workbook_id: str | None = None) -> None:
    """Write an event to the global log and optionally to a per-workbook log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.
    """
    try:
        sink = _get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": truncate_context(event.context)})
        event = _validate_attribution(event)
        sink.write(event, workbook_id=workbook_id)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def _emit_level(
    level: EventLevel,
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None,
    error_code: str | None,
    workbook_id: str | None,
) -> None:
    emit(
        SheetcalcEvent(
            level=level,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        ),
        workbook_id=workbook_id,
    )


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    workbook_id: str | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    _emit_level(EventLevel.info, event_type, message, context, None, workbook_id)


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    workbook_id: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    _emit_level(EventLevel.warning, event_type, message, context, error_code, workbook_id)


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    workbook_id: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    _emit_level(EventLevel.error, event_type, message, context, error_code, workbook_id)
