"""Filesystem NDJSON event sink.

One JSON object per line, ``sort_keys=True``, in two places:

- ``<log_dir>/events.ndjson``: every event
- ``<log_dir>/workbooks/<workbook_id>.ndjson``: events attributed to one workbook

Appends take an exclusive ``fcntl.flock`` and reads a shared one, so several
CLI processes can share a log directory.  Without ``fcntl`` (Windows) the
locks are skipped.
"""

from __future__ import annotations

import contextlib
import json
import os
import re
from pathlib import Path
from typing import IO, Any, Iterator

from sheetcalc.logging.events import SheetcalcEvent

try:
    import fcntl
except ImportError:
    fcntl = None  # type: ignore[assignment]

# Workbook ids become file names; anything else could escape the log dir
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024
_MAX_LIMIT = 2000


@contextlib.contextmanager
def _locked(f: IO[bytes], *, exclusive: bool) -> Iterator[IO[bytes]]:
    if fcntl is None:
        yield f
        return
    fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    try:
        yield f
    finally:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class EventSink:
    """Append-only NDJSON log writer and reader.

    Parameters
    ----------
    log_dir : Path
        Directory holding the logs; created if missing.
    fsync : bool
        Flush every append to disk.
    tail_bytes : int | None
        Reads only look at this many trailing bytes of a log (default 2 MB).
    """

    def __init__(self, log_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = Path(log_dir)
        self._fsync = fsync
        self._tail_bytes = tail_bytes if tail_bytes is not None else _DEFAULT_TAIL_BYTES
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def global_path(self) -> Path:
        return self.logs_dir / "events.ndjson"

    def workbook_path(self, workbook_id: str) -> Path | None:
        """Per-workbook log path, or ``None`` for an id unsafe as a file name."""
        if not _SAFE_ID_RE.match(workbook_id):
            return None
        return self.logs_dir / "workbooks" / f"{workbook_id}.ndjson"

    def write(self, event: SheetcalcEvent, *, workbook_id: str | None = None) -> None:
        """Append *event* to the global log and, when attributed, the workbook's log."""
        line = (json.dumps(event.model_dump(mode="json"), sort_keys=True, default=str) + "\n").encode("utf-8")
        self._append(self.global_path, line)
        per_workbook = self.workbook_path(workbook_id) if workbook_id else None
        if per_workbook is not None:
            self._append(per_workbook, line)

    def read_global(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        sheet_id: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Events from the global log, most recent first.

        Filters combine with AND; ``limit`` is capped at 2000.
        """
        wanted = {"level": level, "event_type": event_type}
        events = [
            e for e in self._read_ndjson(self.global_path)
            if all(v is None or e.get(k) == v for k, v in wanted.items())
            and (sheet_id is None or e.get("context", {}).get("sheet_id") == sheet_id)
        ]
        events.reverse()
        return events[:min(limit, _MAX_LIMIT)]

    def read_workbook_log(self, workbook_id: str) -> list[dict[str, Any]]:
        """All events logged for one workbook, oldest first."""
        path = self.workbook_path(workbook_id)
        return self._read_ndjson(path) if path is not None else []

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append(self, path: Path, line: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "ab") as f, _locked(f, exclusive=True):
            f.write(line)
            f.flush()
            if self._fsync:
                os.fsync(f.fileno())

    def _read_ndjson(self, path: Path) -> list[dict[str, Any]]:
        """Parse a log, skipping blank and corrupt lines."""
        if not path.exists():
            return []
        events: list[dict[str, Any]] = []
        for line in self._read_tail(path).splitlines():
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events

    def _read_tail(self, path: Path) -> str:
        with open(path, "rb") as f, _locked(f, exclusive=False):
            size = os.fstat(f.fileno()).st_size
            if size <= self._tail_bytes:
                data = f.read()
            else:
                f.seek(size - self._tail_bytes)
                data = f.read()
                # The first line is most likely cut in half
                data = data[data.find(b"\n") + 1:]
        return data.decode("utf-8", errors="replace")
