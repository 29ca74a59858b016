import re
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from app.core.config import Settings, settings
from app.models.scrape_model import ScrapeTarget
from app.services.attempt_executor import AttemptExecutor
from app.services.retry_orchestrator import RetryOrchestrator

JOB_ID_IN_URL_RE = re.compile(r"~([A-Za-z0-9]+)")
NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


class InvalidTargetError(ValueError):
    """Raised when the input is neither a job URL nor a usable job identifier."""
    pass


def _is_well_formed_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_on_site(url: str, base_url: str) -> bool:
    site = (urlparse(base_url).hostname or "").lower()
    host = (urlparse(url).hostname or "").lower()
    return bool(site) and (host == site or host.endswith("." + site))


def build_job_url(job_id: str, base_url: str = settings.UPWORK_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/jobs/~{job_id}"


def normalize_target(raw_input: Optional[str], base_url: str = settings.UPWORK_BASE_URL) -> ScrapeTarget:
    """
    Turn caller input into a ScrapeTarget.

    A well-formed http(s) URL on the Upwork host (or a subdomain of it) is
    used as-is (its ``~id`` segment, if any, becomes the identifier). Anything
    else is a bare identifier: every non-alphanumeric character is dropped and
    the canonical job URL is built from what is left.

    Raises:
        InvalidTargetError: input is blank, has no alphanumeric characters,
            or is a URL pointing at another host
    """
    value = (raw_input or "").strip()
    if not value:
        raise InvalidTargetError("Provide ?jobId=XXXX or ?url=https://www.upwork.com/jobs/~XXXX")

    if _is_well_formed_url(value):
        if not _is_on_site(value, base_url):
            raise InvalidTargetError(f"'{raw_input}' is not an Upwork URL")
        match = JOB_ID_IN_URL_RE.search(value)
        return ScrapeTarget(
            raw_input=raw_input,
            normalized_url=value,
            identifier=match.group(1) if match else None,
        )

    # Scheme-less links such as "www.upwork.com/jobs/~01abc" keep only their ~id segment
    match = JOB_ID_IN_URL_RE.search(value) if "/" in value else None
    job_id = match.group(1) if match else NON_ALNUM_RE.sub("", value)
    if not job_id:
        raise InvalidTargetError(f"'{raw_input}' does not contain a job identifier")
    return ScrapeTarget(raw_input=raw_input, normalized_url=build_job_url(job_id, base_url), identifier=job_id)


def build_orchestrator(config: Settings = settings) -> RetryOrchestrator:
    executor = AttemptExecutor(config)
    return RetryOrchestrator(executor.execute_attempt, config)


@lru_cache(maxsize=1)
def get_orchestrator() -> RetryOrchestrator:
    """Process-wide orchestrator, used as a FastAPI dependency."""
    return build_orchestrator(settings)
