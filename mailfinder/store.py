"""
Progress store module.

Jobs are documents keyed by job id; per-URL records are addressed by
``(job_id, url)``. Every write is a partial update applied under a lock to a
private copy which only replaces the stored job once it has been persisted,
and every read hands back a deep copy. A failed write therefore leaves the
previous state visible and raises ``ProgressStoreError``.
"""

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from mailfinder.errors import JobNotFoundError, ProgressStoreError
from mailfinder.models import (
    ExtractionJob,
    ExtractionStep,
    JobStatus,
    StepStatus,
    elapsed_ms,
    utcnow,
)

# Initialize logger
log = logging.getLogger(__name__)

_RESULT_FIELDS = frozenset({
    "emails", "provenance", "status", "error", "started_at",
    "extracted_at", "duration_ms", "current_step",
})
_JOB_FIELDS = frozenset({
    "status", "started_at", "completed_at", "duration_ms", "error", "total_emails",
})


class ProgressStore:
    """
    Base progress store.

    Subclasses only decide where committed jobs live: ``_persist`` is called
    with the lock held after every write and may raise to reject it.
    """

    def __init__(self):
        self._jobs: Dict[str, ExtractionJob] = {}
        self.lock = threading.RLock()

    # -- persistence hooks --------------------------------------------------

    def _persist(self) -> None:
        pass

    @contextmanager
    def _mutate(self, job_id: str) -> Iterator[ExtractionJob]:
        with self.lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(f"Unknown job {job_id}")
            draft = copy.deepcopy(current)
            yield draft
            draft.updated_at = utcnow()
            self._jobs[job_id] = draft
            try:
                self._persist()
            except Exception as e:
                self._jobs[job_id] = current
                raise ProgressStoreError(f"Failed to persist job {job_id}: {e}") from e

    # -- jobs ---------------------------------------------------------------

    def create_job(self, job: ExtractionJob) -> ExtractionJob:
        with self.lock:
            if job.job_id in self._jobs:
                raise ProgressStoreError(f"Job {job.job_id} already exists")
            self._jobs[job.job_id] = copy.deepcopy(job)
            try:
                self._persist()
            except Exception as e:
                del self._jobs[job.job_id]
                raise ProgressStoreError(f"Failed to persist job {job.job_id}: {e}") from e
        log.debug("Created job %s with %d URLs", job.job_id, len(job.urls))
        return copy.deepcopy(job)

    def get_job(self, job_id: str) -> ExtractionJob:
        """
        Return a deep copy of a job.

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        with self.lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Unknown job {job_id}")
            return copy.deepcopy(job)

    def list_jobs(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[ExtractionJob]:
        """Jobs of ``owner_id``, newest first."""
        with self.lock:
            # insertion order breaks ties between equal timestamps
            ordered = [
                job for _, job in sorted(
                    ((i, j) for i, j in enumerate(self._jobs.values()) if j.owner_id == owner_id),
                    key=lambda pair: (pair[1].created_at, pair[0]),
                    reverse=True,
                )
            ]
            return copy.deepcopy(ordered[offset:offset + limit])

    def update_job(self, job_id: str, **fields: Any) -> ExtractionJob:
        """Partial update of job-level fields; status moves forward only."""
        unknown = set(fields) - _JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        with self._mutate(job_id) as job:
            status = fields.get("status")
            if status is not None and not JobStatus.can_transition(job.status, status):
                raise ProgressStoreError(
                    f"Illegal status transition {job.status} -> {status} for job {job_id}"
                )
            for key, value in fields.items():
                setattr(job, key, value)
            job.recount()
            return copy.deepcopy(job)

    # -- per-URL records ----------------------------------------------------

    def update_result(self, job_id: str, url: str, **fields: Any) -> None:
        """Partial update of the result for ``url``; ignored once the job is terminal."""
        unknown = set(fields) - _RESULT_FIELDS
        if unknown:
            raise ValueError(f"Unknown result fields: {sorted(unknown)}")

        with self._mutate(job_id) as job:
            if job.is_terminal:
                log.warning("Ignoring result update for %s on terminal job %s", url, job_id)
                return
            result = job.result_for(url)
            if result is None:
                raise ProgressStoreError(f"Job {job_id} has no URL {url}")
            for key, value in fields.items():
                setattr(result, key, value)
            if "emails" in fields:
                result.emails = sorted({e.lower() for e in result.emails})
            job.recount()

    def update_step(
        self,
        job_id: str,
        url: str,
        step: str,
        status: str,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Create or advance the record of one cascade step.

        A step appears at most once per URL; updates to a step that already
        reached a terminal status are ignored with a warning.
        """
        with self._mutate(job_id) as job:
            if job.is_terminal:
                log.warning("Ignoring step %s for %s on terminal job %s", step, url, job_id)
                return
            result = job.result_for(url)
            if result is None:
                raise ProgressStoreError(f"Job {job_id} has no URL {url}")

            now = utcnow()
            record = result.get_step(step)
            if record is None:
                record = ExtractionStep(step=step, started_at=now)
                result.progress.append(record)
            elif record.is_terminal:
                log.warning("Step %s for %s already %s, ignoring %s",
                            step, url, record.status, status)
                return

            record.status = status
            if message:
                record.message = message
            if details:
                record.details.update(details)
            if status in StepStatus.TERMINAL:
                record.completed_at = now
                record.duration_ms = elapsed_ms(record.started_at, now)
            result.current_step = step


class MemoryProgressStore(ProgressStore):
    """Process-local store; state is lost on exit."""
    pass


class JsonProgressStore(ProgressStore):
    """
    Store persisted to one JSON file.

    The file is rewritten after each write through a temporary file and
    reloaded when the store is created.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        if self.path.parent:
            os.makedirs(self.path.parent, exist_ok=True)
        self._load()

    def _load(self) -> None:
        """Load jobs from disk."""
        if not self.path.exists():
            return

        try:
            with self.lock:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                for job_id, entry in data.items():
                    self._jobs[job_id] = ExtractionJob.from_dict(entry)
            log.debug("Loaded %d jobs from %s", len(self._jobs), self.path)
        except (OSError, ValueError, KeyError) as e:
            log.warning("Failed to load progress store from %s: %s", self.path, e)

    def _persist(self) -> None:
        data = {job_id: job.to_dict() for job_id, job in self._jobs.items()}
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)
        log.debug("Saved %d jobs to %s", len(data), self.path)


def build_store(path: Optional[str] = None) -> ProgressStore:
    """JSON-backed store when a path is configured, in-memory otherwise."""
    if path:
        return JsonProgressStore(path)
    return MemoryProgressStore()
