"""
Per-URL extraction pipeline.

Runs the strategies in order against one URL, recording every transition in
the progress store. Once any strategy has found an address the remaining
ones are recorded as skipped. The cascade runs under one hard ceiling; when
it expires the step in flight is marked failed and the URL fails with
``ExtractionTimeoutError``.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from mailfinder.config import Config, config as default_config
from mailfinder.errors import ExtractionTimeoutError
from mailfinder.models import ResultStatus, Step, StepStatus, elapsed_ms, utcnow
from mailfinder.store import ProgressStore
from mailfinder.strategies import CascadeContext, Strategy, StepOutcome, default_strategies

log = logging.getLogger(__name__)


class ProgressReporter:
    """Writes step and result updates for one ``(job_id, url)`` pair."""

    def __init__(self, store: ProgressStore, job_id: str, url: str):
        self.store = store
        self.job_id = job_id
        self.url = url
        self.in_flight: Optional[str] = None

    def step(self, name: str, status: str, message: str = "",
             details: Optional[Dict[str, Any]] = None) -> None:
        self.store.update_step(self.job_id, self.url, name, status, message, details)
        if status == StepStatus.PROCESSING:
            self.in_flight = name
        elif self.in_flight == name:
            self.in_flight = None

    def result(self, **fields: Any) -> None:
        self.store.update_result(self.job_id, self.url, **fields)

    def fail(self, message: str, started_at=None) -> None:
        """Record the URL as failed: in-flight step, terminal step and result."""
        if self.in_flight:
            self.step(self.in_flight, StepStatus.FAILED, message)
        now = utcnow()
        self.step(Step.EXTRACTION_FAILED, StepStatus.FAILED, message)
        self.result(
            status=ResultStatus.FAILED,
            error=message,
            extracted_at=now,
            duration_ms=elapsed_ms(started_at, now),
        )


class ExtractionPipeline:
    """Runs the strategy cascade for a single URL."""

    def __init__(
        self,
        store: ProgressStore,
        strategies: Optional[Sequence[Strategy]] = None,
        cfg: Optional[Config] = None,
    ):
        self.config = cfg or default_config
        self.store = store
        self.strategies: List[Strategy] = list(
            strategies if strategies is not None else default_strategies(self.config)
        )

    def reporter(self, job_id: str, url: str) -> ProgressReporter:
        return ProgressReporter(self.store, job_id, url)

    async def _cascade(self, context: CascadeContext, reporter: ProgressReporter) -> None:
        for strategy in self.strategies:
            # checkpoint: lets the cascade ceiling interrupt between states
            await asyncio.sleep(0)

            if context.emails:
                reporter.step(strategy.name, StepStatus.SKIPPED, "Skipped: emails already found")
                continue

            reporter.step(strategy.name, StepStatus.PROCESSING)
            try:
                outcome = await strategy.attempt(context)
            except Exception as exc:
                log.warning("Step %s failed for %s: %s", strategy.name, context.url, exc)
                outcome = StepOutcome.failed(str(exc) or exc.__class__.__name__)

            context.add(outcome.emails, strategy.name)
            details = dict(outcome.details)
            if outcome.emails:
                details["emails"] = sorted(outcome.emails)
            reporter.step(strategy.name, outcome.status, outcome.message, details)
            log.debug("[%s] %s -> %s: %s", context.url, strategy.name,
                      outcome.status, outcome.message)

    async def run(self, job_id: str, url: str, reporter: Optional[ProgressReporter] = None) -> List[str]:
        """
        Extract addresses for ``url`` and record them on the job.

        Returns:
            Sorted addresses found (guessed ones included)

        Raises:
            ExtractionTimeoutError: If the cascade exceeds its ceiling
        """
        reporter = reporter or self.reporter(job_id, url)
        started = utcnow()
        reporter.result(status=ResultStatus.PROCESSING, started_at=started)
        context = CascadeContext(url=url)
        timeout = self.config.cascade_timeout

        try:
            await asyncio.wait_for(self._cascade(context, reporter), timeout=timeout)
        except asyncio.TimeoutError:
            if reporter.in_flight:
                reporter.step(reporter.in_flight, StepStatus.FAILED,
                              f"Interrupted after {timeout:g}s")
            raise ExtractionTimeoutError(f"Extraction timeout after {timeout:g}s")

        emails = sorted(context.emails)
        guessed = sorted(e for e, step in context.provenance.items()
                         if step == Step.FALLBACK_GENERATION)
        if emails:
            message = f"Found {len(emails)} email{'s' if len(emails) != 1 else ''}"
        else:
            message = "No emails found"

        now = utcnow()
        reporter.step(
            Step.EXTRACTION_COMPLETE,
            StepStatus.COMPLETED,
            message,
            {"count": len(emails), "guessed": guessed},
        )
        reporter.result(
            emails=emails,
            provenance=dict(context.provenance),
            status=ResultStatus.SUCCESS,
            error=None,
            extracted_at=now,
            duration_ms=elapsed_ms(started, now),
            current_step=Step.EXTRACTION_COMPLETE,
        )
        log.info("%s: %s", url, message)
        return emails
