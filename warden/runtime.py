from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from threading import Lock, RLock
from typing import Any, Iterator

from .events import utc_now


class TrackedContainerSet:
    """Containers created by this run, in creation order.

    Mutated from the boot thread and from the signal handler, hence the lock.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._names: dict[str, None] = {}

    def add(self, name: str) -> None:
        with self._lock:
            self._names[name] = None

    def discard(self, name: str) -> None:
        with self._lock:
            self._names.pop(name, None)

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self._names)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())


@dataclass
class HistoryEntry:
    type: str  # status|progress|log|error
    status: str | None = None
    message: str | None = None
    detail: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)


@dataclass
class HistorySummary:
    status: str = "pending"  # pending|pulling|starting|waiting|ready|error
    percent: float | None = None
    detail: str | None = None
    updated_at: str = field(default_factory=utc_now)


class ServiceHistory:
    """Bounded, in-memory timeline of boot events per service."""

    def __init__(self, limit: int = 200) -> None:
        self.limit = max(1, int(limit))
        self.lock = Lock()
        self._entries: dict[str, deque[HistoryEntry]] = {}
        self._summaries: dict[str, HistorySummary] = {}

    def record(self, service: str, entry: HistoryEntry) -> None:
        with self.lock:
            self._entries.setdefault(service, deque(maxlen=self.limit)).append(entry)
            if entry.type == "status" and entry.status:
                self._summaries[service] = HistorySummary(status=entry.status, detail=entry.detail)
            elif entry.type == "error":
                self._summaries[service] = HistorySummary(status="error", detail=entry.message)

    def status(self, service: str, status: str, message: str | None = None, detail: str | None = None) -> None:
        self.record(service, HistoryEntry(type="status", status=status, message=message, detail=detail))

    def progress(self, service: str, event: dict[str, Any]) -> None:
        meta = {"layerId": event.get("id")} if event.get("id") else {}
        self.record(
            service,
            HistoryEntry(type="progress", status=event.get("status"), detail=event.get("progress"), meta=meta),
        )

    def log_line(self, service: str, line: str) -> None:
        self.record(service, HistoryEntry(type="log", message=line))

    def error(self, service: str, message: str) -> None:
        self.record(service, HistoryEntry(type="error", message=message))

    def get(self, service: str) -> dict[str, Any]:
        with self.lock:
            entries = [asdict(e) for e in self._entries.get(service, [])]
            summary = asdict(self._summaries.get(service, HistorySummary()))
        return {"service": service, "summary": summary, "entries": entries}
