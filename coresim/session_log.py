from __future__ import annotations

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


LEVELS = ("INFO", "SUCCESS", "WARNING", "ERROR")


@dataclass
class EventRecord:
    ts: str
    node_id: str
    level: str  # INFO|SUCCESS|WARNING|ERROR
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[EventRecord], None]


class EventLog:
    """In-memory event log shared by the store, scheduler and orchestrator.

    The core only appends records; the log panel owns formatting, filtering
    and export. Optionally can be saved to a JSON file.
    """

    def __init__(self, max_events: int = 5000):
        self.max_events = max_events
        self.events: List[EventRecord] = []
        self._listeners: List[EventListener] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def add(self, node_id: str, level: str, message: str, details: Optional[Dict[str, Any]] = None) -> EventRecord:
        level = (level or "").upper()
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")
        rec = EventRecord(
            ts=self._now(),
            node_id=str(node_id),
            level=level,
            message=str(message),
            details=dict(details or {}),
        )
        self.events.append(rec)
        if len(self.events) > self.max_events:
            # keep the newest events
            self.events = self.events[-self.max_events :]

        for cb in list(self._listeners):
            try:
                cb(rec)
            except Exception:
                # A broken log panel must not break the simulation.
                continue
        return rec

    def subscribe(self, callback: EventListener) -> None:
        self._listeners.append(callback)

    def unsubscribe(self, callback: EventListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def records(self, node_id: Optional[str] = None, level: Optional[str] = None) -> List[EventRecord]:
        out = self.events
        if node_id is not None:
            out = [r for r in out if r.node_id == node_id]
        if level is not None:
            out = [r for r in out if r.level == level.upper()]
        return list(out)

    def messages(self, node_id: Optional[str] = None) -> List[str]:
        return [r.message for r in self.records(node_id=node_id)]

    def clear(self) -> None:
        self.events.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": "coresim-event-log/v1",
            "eventCount": len(self.events),
            "events": [asdict(e) for e in self.events],
        }

    def save_json(self, path: str) -> None:
        import json

        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
