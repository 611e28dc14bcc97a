"""
Job, per-URL result and step records.

All three serialise to plain dicts with ISO-8601 timestamps so stores can
persist them and projections can hand them to callers unchanged.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = frozenset({COMPLETED, FAILED, CANCELLED})
    TRANSITIONS = {
        PENDING: frozenset({PROCESSING, CANCELLED, FAILED}),
        PROCESSING: frozenset({COMPLETED, FAILED}),
    }

    @classmethod
    def can_transition(cls, old: str, new: str) -> bool:
        return old == new and old not in cls.TERMINAL or new in cls.TRANSITIONS.get(old, ())


class ResultStatus:
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class StepStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    TERMINAL = frozenset({COMPLETED, FAILED, SKIPPED})


class Step:
    HOMEPAGE_SCAN = "homepage_scan"
    HOMEPAGE_EMAIL_EXTRACTION = "homepage_email_extraction"
    CONTACT_PAGES = "contact_pages"
    PUPPETEER_SCAN = "puppeteer_scan"
    WHOIS_LOOKUP = "whois_lookup"
    FALLBACK_GENERATION = "fallback_generation"
    EXTRACTION_COMPLETE = "extraction_complete"
    EXTRACTION_FAILED = "extraction_failed"

    CASCADE = (
        HOMEPAGE_SCAN,
        HOMEPAGE_EMAIL_EXTRACTION,
        CONTACT_PAGES,
        PUPPETEER_SCAN,
        WHOIS_LOOKUP,
        FALLBACK_GENERATION,
    )
    ALL = CASCADE + (EXTRACTION_COMPLETE, EXTRACTION_FAILED)


class Mode:
    SINGLE = "single"
    MULTIPLE = "multiple"
    CSV = "csv"

    ALL = (SINGLE, MULTIPLE, CSV)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_ms(start: Optional[datetime], end: Optional[datetime] = None) -> Optional[int]:
    if start is None:
        return None
    return int(((end or utcnow()) - start).total_seconds() * 1000)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ExtractionStep:
    step: str
    status: str = StepStatus.PENDING
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in StepStatus.TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status,
            "message": self.message,
            "details": dict(self.details),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionStep":
        return cls(
            step=data["step"],
            status=data.get("status", StepStatus.PENDING),
            message=data.get("message", ""),
            details=dict(data.get("details") or {}),
            started_at=_parse(data.get("started_at")),
            completed_at=_parse(data.get("completed_at")),
            duration_ms=data.get("duration_ms"),
        )


@dataclass
class ExtractionResult:
    """Outcome for one URL of a job, including its step history."""
    url: str
    emails: List[str] = field(default_factory=list)
    provenance: Dict[str, str] = field(default_factory=dict)
    status: str = ResultStatus.PROCESSING
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    extracted_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    progress: List[ExtractionStep] = field(default_factory=list)
    current_step: Optional[str] = None

    def get_step(self, name: str) -> Optional[ExtractionStep]:
        for step in self.progress:
            if step.step == name:
                return step
        return None

    @property
    def guessed(self) -> bool:
        return bool(self.emails) and all(
            self.provenance.get(e) == Step.FALLBACK_GENERATION for e in self.emails
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "emails": list(self.emails),
            "provenance": dict(self.provenance),
            "status": self.status,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "extracted_at": _iso(self.extracted_at),
            "duration_ms": self.duration_ms,
            "progress": [s.to_dict() for s in self.progress],
            "current_step": self.current_step,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionResult":
        return cls(
            url=data["url"],
            emails=list(data.get("emails") or []),
            provenance=dict(data.get("provenance") or {}),
            status=data.get("status", ResultStatus.PROCESSING),
            error=data.get("error"),
            started_at=_parse(data.get("started_at")),
            extracted_at=_parse(data.get("extracted_at")),
            duration_ms=data.get("duration_ms"),
            progress=[ExtractionStep.from_dict(s) for s in data.get("progress") or []],
            current_step=data.get("current_step"),
        )


@dataclass
class ExtractionJob:
    """A submitted batch of URLs and its per-URL results, in submission order."""
    job_id: str
    owner_id: str
    urls: List[str]
    mode: str = Mode.SINGLE
    status: str = JobStatus.PENDING
    results: List[ExtractionResult] = field(default_factory=list)
    total_emails: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def create(cls, owner_id: str, urls: List[str], mode: str = Mode.SINGLE) -> "ExtractionJob":
        """New pending job with one placeholder result per URL."""
        return cls(
            job_id=uuid.uuid4().hex,
            owner_id=owner_id,
            urls=list(urls),
            mode=mode,
            results=[ExtractionResult(url=u) for u in urls],
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def result_for(self, url: str) -> Optional[ExtractionResult]:
        for result in self.results:
            if result.url == url:
                return result
        return None

    def recount(self) -> int:
        self.total_emails = sum(len(r.emails) for r in self.results)
        return self.total_emails

    def summary(self) -> Dict[str, Any]:
        """Job fields without per-URL step history."""
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "status": self.status,
            "mode": self.mode,
            "url_count": len(self.urls),
            "total_emails": self.total_emails,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "urls": list(self.urls),
            "mode": self.mode,
            "status": self.status,
            "results": [r.to_dict() for r in self.results],
            "total_emails": self.total_emails,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionJob":
        return cls(
            job_id=data["job_id"],
            owner_id=data["owner_id"],
            urls=list(data.get("urls") or []),
            mode=data.get("mode", Mode.SINGLE),
            status=data.get("status", JobStatus.PENDING),
            results=[ExtractionResult.from_dict(r) for r in data.get("results") or []],
            total_emails=data.get("total_emails", 0),
            created_at=_parse(data.get("created_at")) or utcnow(),
            updated_at=_parse(data.get("updated_at")) or utcnow(),
            started_at=_parse(data.get("started_at")),
            completed_at=_parse(data.get("completed_at")),
            duration_ms=data.get("duration_ms"),
            error=data.get("error"),
        )
