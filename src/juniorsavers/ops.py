"""Operational utilities for Junior Savers."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """Write JSON lines log entries for sync and gate activity.

    Entries are kept in memory (see :meth:`tail`) and optionally appended to
    ``path``. Child loggers created with :meth:`bind` share the same buffer
    and sink but stamp a different ``component``.
    """

    LEVELS = ("debug", "info", "warning", "error")

    def __init__(self, *, path: Path | None = None, component: str = "juniorsavers") -> None:
        self.path = path
        self.component = component
        self._entries: list[dict] = []

    def bind(self, component: str) -> "StructuredLogger":
        child = StructuredLogger(path=self.path, component=component)
        child._entries = self._entries
        return child

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        if level not in self.LEVELS:
            raise ValueError(f"Unknown log level '{level}'.")
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": level,
            "component": self.component,
            "event": event_type,
            **fields,
        }
        self._entries.append(entry)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def error(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="error", **fields)

    def tail(self, limit: int = 50, *, event: Optional[str] = None) -> tuple[dict, ...]:
        entries = self._entries
        if event is not None:
            entries = [entry for entry in entries if entry["event"] == event]
        return tuple(entries[-limit:])


__all__ = ["StructuredLogger"]
