from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from time import time
from typing import Any, Callable, Dict, Optional


@dataclass
class PipelineStatus:
    state: str = "idle"
    detail: Optional[str] = None
    backlog_submitted: Optional[int] = None
    deliveries: Dict[str, int] = field(default_factory=dict)
    updated_at: float = field(default_factory=time)


class PipelineStatusStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._status = PipelineStatus()
        self._runtime_snapshot: Optional[Callable[[], Dict[str, Any]]] = None

    def attach(self, snapshot: Optional[Callable[[], Dict[str, Any]]]) -> None:
        with self._lock:
            self._runtime_snapshot = snapshot

    def update(self, **fields: Any) -> None:
        # Written from request handlers and background threads alike.
        with self._lock:
            for key, value in fields.items():
                if hasattr(self._status, key):
                    setattr(self._status, key, value)
            self._status.updated_at = time()

    def count_delivery(self, status: str) -> None:
        with self._lock:
            self._status.deliveries[status] = self._status.deliveries.get(status, 0) + 1
            self._status.updated_at = time()

    def snapshot(self) -> Dict[str, Any]:
        # Copies only; the runtime snapshot is taken outside the lock.
        with self._lock:
            data: Dict[str, Any] = {
                "state": self._status.state,
                "detail": self._status.detail,
                "backlog_submitted": self._status.backlog_submitted,
                "deliveries": dict(self._status.deliveries),
                "updated_at": self._status.updated_at,
            }
            runtime_snapshot = self._runtime_snapshot
        if runtime_snapshot is not None:
            data["runtime"] = runtime_snapshot()
        return data


pipeline_status = PipelineStatusStore()
