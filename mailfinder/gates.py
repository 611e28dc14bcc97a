"""
Quota gate and job queue collaborators.

Both are narrow interfaces owned by the caller. ``DailyQuotaGate`` and
``WorkerQueue`` are in-process reference implementations: a per-owner daily
URL allowance, and a thread pool consuming job payloads from a queue.
"""

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

# Initialize logger
log = logging.getLogger(__name__)

BULK_NOT_ALLOWED = "CSV upload is not available in your current plan."
DAILY_LIMIT_REACHED = "You have reached your daily limit of {limit} URLs. You have {remaining} URLs remaining."


@dataclass
class QuotaDecision:
    allowed: bool
    reason: str = ""
    limits: Dict[str, Any] = field(default_factory=dict)
    usage: Dict[str, Any] = field(default_factory=dict)


class QuotaGate:
    """Decides whether an owner may submit ``count`` more URLs."""

    def check(self, owner_id: str, count: int, is_bulk: bool) -> QuotaDecision:
        raise NotImplementedError

    def record_usage(self, owner_id: str, count: int) -> None:
        raise NotImplementedError


class UnlimitedQuotaGate(QuotaGate):
    def check(self, owner_id: str, count: int, is_bulk: bool) -> QuotaDecision:
        return QuotaDecision(True)

    def record_usage(self, owner_id: str, count: int) -> None:
        pass


class DailyQuotaGate(QuotaGate):
    """
    Per-owner daily URL allowance.

    Args:
        daily_limit: URLs per owner per day unless overridden in ``limits``
        limits: Per-owner daily limits
        bulk_owners: Owners allowed to submit CSV batches; ``None`` allows everyone
        today: Clock returning the current date
    """

    def __init__(
        self,
        daily_limit: int = 100,
        limits: Optional[Dict[str, int]] = None,
        bulk_owners: Optional[Set[str]] = None,
        today: Callable[[], date] = date.today,
    ):
        self.daily_limit = daily_limit
        self.limits = dict(limits or {})
        self.bulk_owners = bulk_owners
        self.today = today
        self._usage: Dict[Tuple[str, date], int] = {}
        self._lock = threading.Lock()

    def limit_for(self, owner_id: str) -> int:
        return self.limits.get(owner_id, self.daily_limit)

    def used(self, owner_id: str) -> int:
        with self._lock:
            return self._usage.get((owner_id, self.today()), 0)

    def check(self, owner_id: str, count: int, is_bulk: bool) -> QuotaDecision:
        limit = self.limit_for(owner_id)
        used = self.used(owner_id)
        remaining = max(0, limit - used)
        limits = {"daily_limit": limit, "bulk_allowed": self._bulk_allowed(owner_id)}
        usage = {"used_today": used, "remaining": remaining, "requested": count}

        if is_bulk and not limits["bulk_allowed"]:
            return QuotaDecision(False, BULK_NOT_ALLOWED, limits, usage)
        if count > remaining:
            return QuotaDecision(
                False, DAILY_LIMIT_REACHED.format(limit=limit, remaining=remaining), limits, usage
            )
        return QuotaDecision(True, "", limits, usage)

    def record_usage(self, owner_id: str, count: int) -> None:
        today = self.today()
        key = (owner_id, today)
        with self._lock:
            # earlier days can never be consulted again
            for stale in [k for k in self._usage if k[1] != today]:
                del self._usage[stale]
            self._usage[key] = self._usage.get(key, 0) + count
        log.debug("Recorded %d URLs for %s", count, owner_id)

    def _bulk_allowed(self, owner_id: str) -> bool:
        return self.bulk_owners is None or owner_id in self.bulk_owners


class JobQueue:
    """Accepts ``{job_id, owner_id, urls}`` payloads for asynchronous processing."""

    def enqueue(self, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


@dataclass
class TaskResult:
    """Container for a processed payload and its outcome."""
    task: Dict[str, Any]
    result: Any = None
    error: Optional[Exception] = None
    success: bool = False
    duration: float = 0.0


class WorkerQueue(JobQueue):
    """
    Thread pool consuming job payloads from a ``queue.Queue``.

    Each payload is handed to ``processor`` on a worker thread; outcomes,
    including exceptions, are collected as ``TaskResult`` records. Only the
    most recent ``max_results`` records are kept.
    """

    def __init__(self, processor: Callable[[Dict[str, Any]], Any],
                 worker_count: int = 1, name: str = "extraction_queue",
                 max_results: int = 1000):
        self.name = name
        self.worker_count = max(1, worker_count)
        self.processor = processor

        self.task_queue: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.results: Deque[TaskResult] = deque(maxlen=max_results)
        self.results_lock = threading.Lock()

        self.active = False
        self.workers: List[threading.Thread] = []
        self.stop_event = threading.Event()

    def enqueue(self, payload: Dict[str, Any]) -> None:
        self.task_queue.put(payload)
        log.debug("[%s] Enqueued job %s", self.name, payload.get("job_id"))

    def _worker_loop(self) -> None:
        thread_id = threading.get_ident()
        log.debug("[%s] Worker %d starting", self.name, thread_id)

        while not self.stop_event.is_set():
            try:
                task = self.task_queue.get(timeout=0.5)
            except queue.Empty:
                continue

            start_time = time.time()
            task_result = TaskResult(task=task)
            try:
                task_result.result = self.processor(task)
                task_result.success = True
            except Exception as e:
                log.exception("[%s] Error processing job %s: %s", self.name, task.get("job_id"), e)
                task_result.error = e
            task_result.duration = time.time() - start_time

            with self.results_lock:
                self.results.append(task_result)
            self.task_queue.task_done()

        log.debug("[%s] Worker %d stopping", self.name, thread_id)

    def start(self) -> None:
        if self.active:
            log.warning("[%s] Worker queue already started", self.name)
            return

        log.info("[%s] Starting %d workers", self.name, self.worker_count)
        self.active = True
        self.stop_event.clear()
        self.workers = []
        for _ in range(self.worker_count):
            worker = threading.Thread(target=self._worker_loop, daemon=True)
            worker.start()
            self.workers.append(worker)

    def wait(self) -> None:
        """Block until every enqueued payload has been processed."""
        if self.active:
            self.task_queue.join()

    def stop(self, wait: bool = True) -> None:
        if not self.active:
            return

        log.info("[%s] Stopping worker queue", self.name)
        if wait:
            self.task_queue.join()
        self.stop_event.set()
        for worker in self.workers:
            worker.join(timeout=1.0)
        self.active = False

    def get_results(self) -> List[TaskResult]:
        with self.results_lock:
            return list(self.results)

    def __enter__(self) -> "WorkerQueue":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop(wait=exc_type is None)
