from pydantic import BaseModel
from typing import Optional, List


class JobRecord(BaseModel):
    """Fields read off a rendered Upwork job page. Missing elements stay None."""
    job_title: Optional[str] = None
    job_description: Optional[str] = None
    job_description_html: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    experience_level: Optional[str] = None  # Entry, Intermediate, Expert
    project_length: Optional[str] = None
    hourly_range: Optional[str] = None
    fixed_budget: Optional[str] = None
    client_country: Optional[str] = None
    client_rating: Optional[str] = None
    client_total_spent: Optional[str] = None
    client_hires: Optional[str] = None
    client_payment_verified: Optional[str] = None
    raw_job_html: Optional[str] = None


class AttemptTelemetry(BaseModel):
    attempt: int
    started_at: str
    duration_ms: int
    outcome: str
    classification: Optional[str] = None
    status_code: Optional[int] = None
    resolved_url: Optional[str] = None
    user_agent: Optional[str] = None
    viewport: Optional[str] = None
    proxy: Optional[str] = None
    error: Optional[str] = None


class ScrapedJob(JobRecord):
    job_id: Optional[str] = None
    job_url: str
    attempts: List[AttemptTelemetry] = []


class ScrapeError(BaseModel):
    error: str
    message: str
    input: Optional[str] = None
    attempts: List[AttemptTelemetry] = []


class ScrapeRequest(BaseModel):
    jobId: Optional[str] = None
    url: Optional[str] = None
