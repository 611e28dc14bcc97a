"""
Job orchestrator.

``start_extraction`` admits a submission, consults the quota gate, persists
the job and hands it to the job queue. ``process_job`` then runs the URLs of
one job strictly one after another through the extraction pipeline; any
per-URL failure is recorded on that URL only, while a storage failure fails
the whole job.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional

from mailfinder.admission import UrlAdmission
from mailfinder.config import Config, config as default_config
from mailfinder.errors import AdmissionError, JobNotFoundError, ProgressStoreError, QuotaExceededError
from mailfinder.export import render_results_csv
from mailfinder.gates import JobQueue, QuotaGate, UnlimitedQuotaGate
from mailfinder.models import ExtractionJob, JobStatus, Mode, elapsed_ms, utcnow
from mailfinder.pipeline import ExtractionPipeline
from mailfinder.store import ProgressStore, build_store

# Initialize logger
log = logging.getLogger(__name__)


class Orchestrator:
    """Job lifecycle around the per-URL extraction pipeline."""

    def __init__(
        self,
        store: Optional[ProgressStore] = None,
        quota_gate: Optional[QuotaGate] = None,
        job_queue: Optional[JobQueue] = None,
        pipeline: Optional[ExtractionPipeline] = None,
        admission: Optional[UrlAdmission] = None,
        cfg: Optional[Config] = None,
    ):
        self.config = cfg or default_config
        self.store = store or build_store(self.config.progress_store_path)
        self.quota_gate = quota_gate or UnlimitedQuotaGate()
        self.job_queue = job_queue
        self.pipeline = pipeline or ExtractionPipeline(self.store, cfg=self.config)
        self.admission = admission or UrlAdmission(self.config)
        self._admit_lock = threading.Lock()

    def start_extraction(self, owner_id: str, urls: Any, mode: str = Mode.SINGLE) -> str:
        """
        Admit, gate and enqueue a submission.

        Returns:
            The id of the newly created job

        Raises:
            AdmissionError: If the URLs fail admission control
            QuotaExceededError: If the quota gate denies the submission
        """
        if mode not in Mode.ALL:
            raise AdmissionError(f"Unknown extraction mode {mode!r}", [f"Unknown mode {mode}"])

        check = self.admission.validate_urls(urls, self.admission.max_urls_for(mode))
        if not check.valid:
            log.info("Rejected submission from %s: %s", owner_id, "; ".join(check.errors))
            raise AdmissionError(check.errors[-1], check.errors)
        if check.errors:
            log.info("Dropped %d invalid URLs from submission by %s", len(check.errors), owner_id)

        # check, create and record as one step so concurrent submissions
        # cannot both spend the same remaining allowance
        with self._admit_lock:
            decision = self.quota_gate.check(owner_id, len(check.urls), mode == Mode.CSV)
            if not decision.allowed:
                log.info("Quota denied for %s: %s", owner_id, decision.reason)
                raise QuotaExceededError(decision.reason, decision)

            job = ExtractionJob.create(owner_id, check.urls, mode)
            self.store.create_job(job)
            self.quota_gate.record_usage(owner_id, len(check.urls))
        log.info("Created job %s (%s) with %d URLs", job.job_id, mode, len(job.urls))

        if self.job_queue is not None:
            self.job_queue.enqueue({"job_id": job.job_id, "owner_id": owner_id, "urls": list(job.urls)})
        return job.job_id

    async def process_job(self, job_id: str) -> Optional[ExtractionJob]:
        """
        Run every URL of a job in order and finalise the job.

        A job that is unknown to the store yields ``None``; one that already
        finished (or was cancelled) is returned as stored without rerunning.
        """
        started = utcnow()
        try:
            job = self.store.get_job(job_id)
        except JobNotFoundError:
            log.error("Job %s not found; nothing to process", job_id)
            return None
        if job.is_terminal:
            log.warning("Job %s is already %s; not processing it again", job_id, job.status)
            return job
        try:
            job = self.store.update_job(job_id, status=JobStatus.PROCESSING, started_at=started)
        except ProgressStoreError as e:
            log.error("Could not start job %s: %s", job_id, e)
            return self.store.get_job(job_id)
        log.info("Processing job %s (%d URLs)", job_id, len(job.urls))

        try:
            for index, url in enumerate(job.urls, start=1):
                log.info("[%s] URL %d/%d: %s", job_id, index, len(job.urls), url)
                await self._process_url(job_id, url)
        except Exception as e:
            log.exception("Job %s failed: %s", job_id, e)
            now = utcnow()
            try:
                return self.store.update_job(
                    job_id,
                    status=JobStatus.FAILED,
                    error=str(e) or e.__class__.__name__,
                    completed_at=now,
                    duration_ms=elapsed_ms(started, now),
                )
            except ProgressStoreError as store_error:
                log.error("Could not mark job %s failed: %s", job_id, store_error)
                return self.store.get_job(job_id)

        now = utcnow()
        job = self.store.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            completed_at=now,
            duration_ms=elapsed_ms(started, now),
        )
        log.info("Job %s completed: %d emails in %d ms", job_id, job.total_emails, job.duration_ms)
        return job

    async def _process_url(self, job_id: str, url: str) -> None:
        reporter = self.pipeline.reporter(job_id, url)
        started = utcnow()
        try:
            await self.pipeline.run(job_id, url, reporter)
        except ProgressStoreError:
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            log.warning("Extraction failed for %s: %s", url, message)
            reporter.fail(message, started)

    def run_job(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Synchronous job-queue entry point; ``None`` for an unknown job."""
        job = asyncio.run(self.process_job(payload["job_id"]))
        return job.summary() if job is not None else None

    # -- projections --------------------------------------------------------

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self.store.get_job(job_id).to_dict()

    def list_jobs(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        return [j.summary() for j in self.store.list_jobs(owner_id, limit, offset)]

    def export_csv(self, job_id: str) -> str:
        return render_results_csv(self.store.get_job(job_id))
