"""
Types shared by the retry core: targets, per-attempt outcomes and final results.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from app.models.job_model import AttemptTelemetry, JobRecord


class ClassificationLabel(str, Enum):
    """Verdict for one attempt. Only OK allows extraction."""
    OK = "ok"
    EMPTY_RESPONSE = "empty_response"
    LOGIN_REQUIRED = "login_required"
    BOT_CHALLENGE = "bot_challenge"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    # Assigned by the attempt executor when the attempt raised instead of loading
    TIMEOUT = "timeout"
    TRANSPORT_FAILURE = "transport_failure"
    EXTRACTION_ERROR = "extraction_error"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"  # Page loaded but is not usable content
    HARD_FAILURE = "hard_failure"  # Attempt aborted by an exception


@dataclass(frozen=True)
class ScrapeTarget:
    raw_input: str
    normalized_url: str
    identifier: Optional[str] = None


@dataclass(frozen=True)
class AttemptOutcome:
    attempt_index: int
    started_at: datetime
    duration_ms: int
    outcome: OutcomeKind
    classification: Optional[ClassificationLabel] = None
    status_code: Optional[int] = None
    record: Optional[JobRecord] = None
    error_message: Optional[str] = None
    resolved_url: Optional[str] = None
    user_agent: Optional[str] = None
    viewport: Optional[str] = None
    proxy: Optional[str] = None  # Masked

    @property
    def succeeded(self) -> bool:
        return self.outcome is OutcomeKind.SUCCESS

    def to_telemetry(self) -> AttemptTelemetry:
        return AttemptTelemetry(
            attempt=self.attempt_index,
            started_at=self.started_at.isoformat(),
            duration_ms=self.duration_ms,
            outcome=self.outcome.value,
            classification=self.classification.value if self.classification else None,
            status_code=self.status_code,
            resolved_url=self.resolved_url,
            user_agent=self.user_agent,
            viewport=self.viewport,
            proxy=self.proxy,
            error=self.error_message,
        )


@dataclass(frozen=True)
class ScrapeResult:
    success: bool
    record: Optional[JobRecord] = None
    final_error_kind: Optional[str] = None
    attempts: Tuple[AttemptOutcome, ...] = field(default_factory=tuple)
