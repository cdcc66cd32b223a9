"""JSONL event logging."""

from __future__ import annotations

import json
import os
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator


def default_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("run_%Y%m%d_%H%M%S")
    return f"{stamp}_{os.getpid()}"


class EventLogger:
    """Append-only JSONL logger with per-process run directories."""

    def __init__(
        self,
        *,
        logs_dir: str,
        run_id: str | None = None,
        event_file_name: str = "events.jsonl",
    ) -> None:
        self.logs_dir = Path(logs_dir)
        self.run_id = run_id or default_run_id()
        self.run_dir = self.logs_dir / self.run_id
        self.output_path = self.run_dir / event_file_name
        self.sequence = 0
        self._lock = threading.Lock()

        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.output_path.write_text("", encoding="utf-8")

        latest = self.logs_dir / "latest"
        try:
            if latest.exists() or latest.is_symlink():
                latest.unlink()
            latest.symlink_to(self.run_id)
        except OSError:
            # Another worker swapped the link first.
            pass

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def log(self, event_type: str, data: dict[str, Any]) -> None:
        with self._lock:
            self.sequence += 1
            payload = {
                "timestamp": self._timestamp(),
                "sequence": self.sequence,
                "event_type": event_type,
                **data,
            }
            with self.output_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=True, default=str) + "\n")

    def _iter_events(self) -> Iterator[dict[str, Any]]:
        """Decoded events in file order. Blank or torn lines are skipped."""
        if not self.output_path.exists():
            return
        with self.output_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue

    def read_recent(self, n: int = 50) -> list[dict[str, Any]]:
        if n <= 0:
            return []
        return list(deque(self._iter_events(), maxlen=n))

    def events_of(
        self,
        event_type: str | None = None,
        n: int = 500,
        *,
        room_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """The last `n` events matching a type and a room. Either filter may be None."""
        if n <= 0:
            return []
        matches = (
            event
            for event in self._iter_events()
            if (event_type is None or event.get("event_type") == event_type)
            and (room_id is None or event.get("room_id") == room_id)
        )
        return list(deque(matches, maxlen=n))
