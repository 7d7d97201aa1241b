from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

JOB_TTL_SECONDS = 3600.0


@dataclass
class SplitJobStore:
    """In-memory progress of split jobs, keyed by source file id.

    Finished jobs are dropped once they are older than ``ttl_seconds``.
    """

    ttl_seconds: float = JOB_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    _jobs: dict[str, dict[str, Any]] = field(default_factory=dict)
    _finished: dict[str, float] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def start(self, file_id: str) -> bool:
        with self._lock:
            self._prune()
            job = self._jobs.get(file_id)
            if job and job["state"] == "running":
                return False
            self._finished.pop(file_id, None)
            self._jobs[file_id] = {
                "file_id": file_id,
                "state": "running",
                "current": 0,
                "total": 0,
                "percent": 0.0,
                "status": "Starting video processing...",
                "error": None,
                "updated_at": _now(),
            }
            return True

    def update(self, file_id: str, current: int, total: int, status: str) -> None:
        with self._lock:
            job = self._jobs.setdefault(file_id, {"file_id": file_id, "state": "running", "error": None})
            job.update(
                current=current,
                total=total,
                percent=round(current / total * 100, 1) if total else 0.0,
                status=status,
                updated_at=_now(),
            )

    def finish(self, file_id: str, error: str | None = None) -> None:
        with self._lock:
            job = self._jobs.setdefault(file_id, {"file_id": file_id})
            job.update(state="failed" if error else "done", error=error, updated_at=_now())
            if not error:
                job["percent"] = 100.0
            self._finished[file_id] = self.clock()

    def get(self, file_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._prune()
            job = self._jobs.get(file_id)
            return dict(job) if job else None

    def _prune(self) -> None:
        cutoff = self.clock() - self.ttl_seconds
        for file_id, finished_at in list(self._finished.items()):
            if finished_at < cutoff:
                self._finished.pop(file_id)
                self._jobs.pop(file_id, None)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


split_jobs = SplitJobStore()
