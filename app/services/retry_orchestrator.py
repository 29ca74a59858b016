import asyncio
import logging
import random
from typing import Awaitable, Callable, List, Optional

from app.core.config import Settings
from app.models.scrape_model import AttemptOutcome, ClassificationLabel, ScrapeResult, ScrapeTarget

logger = logging.getLogger(__name__)

GENERIC_FAILURE_KIND = "scrape_failed"

# Conditions that may clear up on a fresh session after a pause
RETRYABLE_CLASSIFICATIONS = frozenset({
    ClassificationLabel.TIMEOUT,
    ClassificationLabel.EMPTY_RESPONSE,
    ClassificationLabel.BOT_CHALLENGE,
    ClassificationLabel.FORBIDDEN,
    ClassificationLabel.RATE_LIMITED,
    ClassificationLabel.SERVER_ERROR,
    ClassificationLabel.TRANSPORT_FAILURE,
})

AttemptRunner = Callable[[ScrapeTarget, int], Awaitable[AttemptOutcome]]


def is_retryable(classification: Optional[ClassificationLabel]) -> bool:
    """Login walls, extraction errors and anything unlabelled stop the loop."""
    return classification in RETRYABLE_CLASSIFICATIONS


def compute_backoff(attempt: int, backoff_min: float, backoff_max: float) -> float:
    """Jittered delay in seconds after ``attempt``; the window widens with each attempt."""
    return random.uniform(backoff_min, backoff_max) * (1 + 0.5 * (attempt - 1))


class RetryOrchestrator:
    """Drives sequential attempts against one target until success, a permanent failure or exhaustion."""

    def __init__(
        self,
        run_attempt: AttemptRunner,
        config: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.run_attempt = run_attempt
        self.config = config
        self.sleep = sleep

    async def scrape_with_retry(self, target: ScrapeTarget, max_attempts: Optional[int] = None) -> ScrapeResult:
        """
        Scrape ``target`` with up to ``max_attempts`` attempts.

        Args:
            target: Normalized scrape target
            max_attempts: Attempt ceiling (defaults to MAX_ATTEMPTS)

        Returns:
            ScrapeResult carrying the record on success, or the failure kind
            of the last attempt otherwise. Expected scrape failures are never
            raised.
        """
        if max_attempts is None:
            max_attempts = self.config.MAX_ATTEMPTS
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        attempts: List[AttemptOutcome] = []
        for attempt in range(1, max_attempts + 1):
            outcome = await self.run_attempt(target, attempt)
            attempts.append(outcome)

            if outcome.succeeded:
                return ScrapeResult(success=True, record=outcome.record, attempts=tuple(attempts))

            label = outcome.classification.value if outcome.classification else "unclassified"
            if not is_retryable(outcome.classification):
                logger.warning(f"⚠️  {label} is not retryable, giving up on {target.normalized_url} "
                               f"after {attempt} attempt(s)")
                break

            if attempt == max_attempts:
                logger.warning(f"⚠️  All {max_attempts} attempts failed for {target.normalized_url} "
                               f"(last: {label})")
                break

            backoff = compute_backoff(attempt, self.config.BACKOFF_MIN, self.config.BACKOFF_MAX)
            logger.info(f"{label} on attempt {attempt}/{max_attempts}, waiting {backoff:.1f}s before retry...")
            await self.sleep(backoff)

        last = attempts[-1]
        final_error_kind = last.classification.value if last.classification else GENERIC_FAILURE_KIND
        return ScrapeResult(success=False, final_error_kind=final_error_kind, attempts=tuple(attempts))
