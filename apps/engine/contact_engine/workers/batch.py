"""Bounded worker pool and the shared state bulk jobs are allowed to touch.

Workers never mutate module globals. Each job owns one ``BatchAccumulator``
and every counter update goes through its lock; the orchestrator hands back
an immutable ``BatchReport`` once the pool drains.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

from contact_engine.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BatchError(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    message: str


class BatchReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    processed: int = 0
    succeeded: int = 0
    errors: list[BatchError] = Field(default_factory=list)
    counters: dict[str, int] = Field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.errors)


class BatchAccumulator:
    def __init__(self, job: str) -> None:
        self.job = job
        self._lock = threading.Lock()
        self._processed = 0
        self._succeeded = 0
        self._errors: list[BatchError] = []
        self._counters: dict[str, int] = {}

    def record_success(self, **counters: int) -> None:
        with self._lock:
            self._processed += 1
            self._succeeded += 1
            for name, value in counters.items():
                self._counters[name] = self._counters.get(name, 0) + value

    def record_failure(self, item_id: str, message: str) -> None:
        with self._lock:
            self._processed += 1
            self._errors.append(BatchError(item_id=item_id, message=message))

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def report(self) -> BatchReport:
        with self._lock:
            return BatchReport(
                job=self.job,
                processed=self._processed,
                succeeded=self._succeeded,
                errors=sorted(self._errors, key=lambda error: error.item_id),
                counters=dict(self._counters),
            )


class KeyedLocks:
    """One lock per string key, created on demand and dropped once unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._holders[key] = self._holders.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                del self._holders[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        # Sorted acquisition keeps two holders of overlapping key sets from deadlocking.
        ordered = sorted({key for key in keys if key})
        acquired: list[tuple[str, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


def run_batch(
    job: str,
    items: Iterable[T],
    worker: Callable[[T], Mapping[str, int] | None],
    *,
    item_id: Callable[[T], str] = str,
    max_workers: int | None = None,
) -> BatchReport:
    """Run ``worker`` over ``items`` on a bounded thread pool.

    A worker that raises is recorded as a failed item; the batch carries on.
    Whatever counters a worker returns are added to the report.
    """
    max_workers = max_workers or get_settings().bulk_max_workers
    accumulator = BatchAccumulator(job)
    materialized = list(items)
    logger.info("batch_started", extra={"job": job, "item_count": len(materialized), "max_workers": max_workers})

    def _run(item: T) -> None:
        counters = worker(item) or {}
        accumulator.record_success(**counters)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{job}-worker") as executor:
        futures = {executor.submit(_run, item): item for item in materialized}
        for future in as_completed(futures):
            item = futures[future]
            exc = future.exception()
            if exc is None:
                continue
            key = item_id(item)
            logger.error(
                "batch_item_failed",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"job": job, "item_id": key},
            )
            accumulator.record_failure(key, str(exc) or type(exc).__name__)

    report = accumulator.report()
    logger.info(
        "batch_finished",
        extra={
            "job": job,
            "processed": report.processed,
            "succeeded": report.succeeded,
            "failed": report.failed,
        },
    )
    return report
