import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from app.models.job_model import ScrapedJob, ScrapeError, ScrapeRequest # pylint: disable=import-error
from app.models.scrape_model import ScrapeResult, ScrapeTarget # pylint: disable=import-error
from app.services.retry_orchestrator import RetryOrchestrator # pylint: disable=import-error
from app.services.upwork_service import InvalidTargetError, get_orchestrator, normalize_target # pylint: disable=import-error

logger = logging.getLogger(__name__)

router = APIRouter()

# Failure kinds that mean the site is pushing back on us rather than broken
THROTTLED_KINDS = frozenset({"rate_limited", "bot_challenge", "login_required", "forbidden"})


def status_for_failure(final_error_kind: Optional[str]) -> int:
    return 429 if final_error_kind in THROTTLED_KINDS else 502


def result_to_response(target: ScrapeTarget, result: ScrapeResult) -> JSONResponse:
    """Map a ScrapeResult onto the HTTP response."""
    telemetry = [attempt.to_telemetry() for attempt in result.attempts]

    if result.success:
        body = ScrapedJob(
            **result.record.model_dump(),
            job_id=target.identifier,
            job_url=target.normalized_url,
            attempts=telemetry,
        )
        return JSONResponse(status_code=200, content=body.model_dump())

    kind = result.final_error_kind or "scrape_failed"
    body = ScrapeError(
        error=kind,
        message=f"Scrape failed after {len(result.attempts)} attempt(s): {kind}",
        input=target.raw_input,
        attempts=telemetry,
    )
    return JSONResponse(status_code=status_for_failure(kind), content=body.model_dump())


async def _handle_scrape(raw_input: Optional[str], orchestrator: RetryOrchestrator) -> JSONResponse:
    try:
        target = normalize_target(raw_input)
    except InvalidTargetError as e:
        body = ScrapeError(error="invalid_input", message=str(e), input=raw_input)
        return JSONResponse(status_code=400, content=body.model_dump())

    try:
        result = await orchestrator.scrape_with_retry(target)
    except Exception as e:  # pylint: disable=broad-except
        logger.exception(f"SCRAPE ERROR for {target.normalized_url}")
        body = ScrapeError(error="internal_error", message=f"Scrape failed: {str(e)}", input=raw_input)
        return JSONResponse(status_code=500, content=body.model_dump())

    return result_to_response(target, result)


@router.get("/scrape", response_model=ScrapedJob, responses={
    400: {"model": ScrapeError}, 429: {"model": ScrapeError},
    500: {"model": ScrapeError}, 502: {"model": ScrapeError},
})
async def scrape_job(
    job_id: Optional[str] = Query(None, alias="jobId", description="Upwork job identifier, e.g. '~01a2b3c4d5e6f7'"),
    url: Optional[str] = Query(None, description="Full job URL, e.g. 'https://www.upwork.com/jobs/~01a2b3c4d5e6f7'"),
    orchestrator: RetryOrchestrator = Depends(get_orchestrator),
):
    """
    Scrape a single Upwork job page.

    Provide either `jobId` or `url`; `jobId` wins when both are given.

    Failure responses carry the error classification and per-attempt telemetry:
    - 400: missing or malformed input
    - 429: the site is blocking or throttling (bot challenge, login wall, forbidden, rate limited)
    - 502: the page could not be loaded after all attempts
    - 500: unexpected internal error
    """
    return await _handle_scrape(job_id or url, orchestrator)


@router.post("/scrape", response_model=ScrapedJob, responses={
    400: {"model": ScrapeError}, 429: {"model": ScrapeError},
    500: {"model": ScrapeError}, 502: {"model": ScrapeError},
})
async def scrape_job_post(
    request: ScrapeRequest = Body(...),
    orchestrator: RetryOrchestrator = Depends(get_orchestrator),
):
    """
    Scrape a single Upwork job page (JSON body variant).

    Request Body:
    {
        "jobId": "~01a2b3c4d5e6f7",
        "url": "https://www.upwork.com/jobs/~01a2b3c4d5e6f7" (optional)
    }
    """
    return await _handle_scrape(request.jobId or request.url, orchestrator)
