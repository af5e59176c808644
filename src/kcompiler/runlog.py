"""Per-stage audit trail.

Each stage invocation opens a run keyed ``<StageName>:<id>``, attaches
captures while it works, and flushes exactly once with a terminal status.
Flushed runs are appended as JSON lines to ``<run_log_dir>/runs-YYYY-MM-DD.jsonl``
and the most recent ones are kept in memory on the logger (``logger.flushed``)
for inspection.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 1000


class Run:
    """One open run. Obtain via RunLogger.start()."""

    def __init__(self, owner: RunLogger, key: str, context: dict[str, Any] | None = None) -> None:
        self.key = key
        self.context = dict(context or {})
        self.captures: list[dict[str, Any]] = []
        self.status: str | None = None
        self._owner = owner
        self._started = time.monotonic()

    @property
    def flushed(self) -> bool:
        return self.status is not None

    def capture(self, name: str, data: dict[str, Any] | None = None) -> None:
        """Attach a named payload to the run. Ignored after flush."""
        if self.flushed:
            return
        self.captures.append({"name": name, "data": data or {}})

    def flush(self, status: str, details: dict[str, Any] | None = None) -> bool:
        """Write the run with its terminal *status*.

        Returns:
            True on the first call, False (no-op) on any later call.
        """
        if self.flushed:
            return False
        self.status = status
        entry = {
            "run": self.key,
            "status": status,
            "details": details or {},
            "context": self.context,
            "captures": self.captures,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "flushed_at": datetime.now(timezone.utc).isoformat(),
        }
        self._owner._write(entry)
        return True


class RunLogger:
    """Factory and sink for Run objects.

    Args:
        log_dir: Directory for daily JSONL files. None keeps runs in memory only.
        keep: How many flushed runs to hold in memory, newest wins.
    """

    def __init__(self, log_dir: Path | str | None = None, keep: int = DEFAULT_KEEP) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.flushed: deque[dict[str, Any]] = deque(maxlen=keep)
        self._lock = threading.Lock()

    def start(self, stage: str, record_id: str, context: dict[str, Any] | None = None) -> Run:
        return Run(self, f"{stage}:{record_id}", context)

    def statuses(self, key: str) -> list[str]:
        """Return terminal statuses flushed for *key*, oldest first."""
        return [e["status"] for e in self.flushed if e["run"] == key]

    def _write(self, entry: dict[str, Any]) -> None:
        with self._lock:
            self.flushed.append(entry)
            if self.log_dir is None:
                return
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
                path = self.log_dir / f"runs-{day}.jsonl"
                with path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(entry, default=str) + "\n")
            except OSError as exc:
                logger.warning("runlog.write_failed run=%s error=%s", entry["run"], exc)
