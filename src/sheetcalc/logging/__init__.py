"""Structured event logging for sheetcalc.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from sheetcalc.logging.events import (
    EventLevel,
    EventType,
    SheetcalcEvent,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    set_log_dir,
    truncate_context,
)
from sheetcalc.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "SheetcalcEvent",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "set_log_dir",
    "truncate_context",
]
