from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from flask import Flask, current_app

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_ERROR})


class ProgressNotFound(LookupError):
    """Raised when a job id is unknown or its progress record has expired."""


@dataclass
class JobProgress:
    job_id: str
    total_batches: int
    total_records: int
    current_batch: int = 0
    total_inserted: int = 0
    baseline_inserted: int = 0
    status: str = STATUS_PROCESSING
    error: Optional[str] = None
    lot_number: Optional[str] = None
    production_id: Optional[int] = None
    started_at: float = 0.0
    updated_at: float = 0.0
    finished_at: Optional[float] = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def percentage(self) -> int:
        if self.total_records <= 0:
            return 100 if self.status == STATUS_COMPLETED else 0
        return min(100, round(self.total_inserted * 100 / self.total_records))

    @property
    def run_inserted(self) -> int:
        """Rows inserted by this run, excluding rows a resumed run found in place."""

        return max(self.total_inserted - self.baseline_inserted, 0)

    def estimated_time_remaining(self, now: float) -> Optional[int]:
        """Seconds left at this run's insert rate, or None before its first chunk."""

        if self.terminal:
            return 0
        if self.run_inserted <= 0:
            return None
        elapsed = max(now - self.started_at, 0.0)
        remaining = max(self.total_records - self.total_inserted, 0)
        return round(elapsed / self.run_inserted * remaining)

    def to_dict(self, now: float) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "production_id": self.production_id,
            "lot_number": self.lot_number,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "total_inserted": self.total_inserted,
            "total_records": self.total_records,
            "status": self.status,
            "error": self.error,
            "percentage": self.percentage,
            "estimated_time_remaining": self.estimated_time_remaining(now),
            "terminal": self.terminal,
        }


class ProgressStore:
    """In-process map of job progress records with lazy expiry."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        stale_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.stale_seconds = stale_seconds
        self.clock = clock
        self._records: dict[str, JobProgress] = {}
        self._lock = threading.Lock()

    def _expired(self, record: JobProgress, now: float) -> bool:
        if record.terminal:
            return now - (record.finished_at or record.updated_at) >= self.ttl_seconds
        return now - record.updated_at >= self.stale_seconds

    def _purge_locked(self, now: float) -> int:
        expired = [job_id for job_id, record in self._records.items() if self._expired(record, now)]
        for job_id in expired:
            del self._records[job_id]
        return len(expired)

    def _require_locked(self, job_id: str) -> JobProgress:
        record = self._records.get(job_id)
        if record is None:
            raise ProgressNotFound(job_id)
        return record

    def start(
        self,
        job_id: str,
        total_batches: int,
        total_records: int,
        *,
        lot_number: Optional[str] = None,
        production_id: Optional[int] = None,
        already_inserted: int = 0,
    ) -> JobProgress:
        now = self.clock()
        record = JobProgress(
            job_id=job_id,
            total_batches=total_batches,
            total_records=total_records,
            total_inserted=already_inserted,
            baseline_inserted=already_inserted,
            lot_number=lot_number,
            production_id=production_id,
            started_at=now,
            updated_at=now,
        )
        with self._lock:
            self._purge_locked(now)
            self._records[job_id] = record
            return replace(record)

    def update(self, job_id: str, *, current_batch: int, total_inserted: int) -> JobProgress:
        now = self.clock()
        with self._lock:
            self._purge_locked(now)
            record = self._require_locked(job_id)
            record.current_batch = current_batch
            record.total_inserted = total_inserted
            record.updated_at = now
            return replace(record)

    def complete(self, job_id: str, *, total_inserted: Optional[int] = None) -> JobProgress:
        now = self.clock()
        with self._lock:
            self._purge_locked(now)
            record = self._require_locked(job_id)
            if total_inserted is not None:
                record.total_inserted = total_inserted
            record.current_batch = record.total_batches
            record.status = STATUS_COMPLETED
            record.error = None
            record.updated_at = now
            record.finished_at = now
            return replace(record)

    def fail(self, job_id: str, message: str) -> JobProgress:
        now = self.clock()
        with self._lock:
            self._purge_locked(now)
            record = self._require_locked(job_id)
            record.status = STATUS_ERROR
            record.error = message
            record.updated_at = now
            record.finished_at = now
            return replace(record)

    def get(self, job_id: str) -> JobProgress:
        with self._lock:
            self._purge_locked(self.clock())
            return replace(self._require_locked(job_id))

    def snapshot(self, job_id: str) -> dict[str, Any]:
        record = self.get(job_id)
        return record.to_dict(self.clock())

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._records.pop(job_id, None)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self.clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def init_progress_store(app: Flask) -> ProgressStore:
    store = ProgressStore(
        ttl_seconds=float(app.config.get("PROGRESS_TTL_SECONDS", 300.0)),
        stale_seconds=float(app.config.get("PROGRESS_STALE_SECONDS", 3600.0)),
    )
    app.extensions["progress_store"] = store
    return store


def get_progress_store() -> ProgressStore:
    store = current_app.extensions.get("progress_store")
    if store is None:
        store = init_progress_store(current_app)
    return store


__all__ = [
    "JobProgress",
    "ProgressNotFound",
    "ProgressStore",
    "STATUS_COMPLETED",
    "STATUS_ERROR",
    "STATUS_PROCESSING",
    "TERMINAL_STATUSES",
    "get_progress_store",
    "init_progress_store",
]
