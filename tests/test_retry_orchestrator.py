import asyncio
import random
from datetime import datetime, timezone

import pytest

from app.models.job_model import JobRecord
from app.models.scrape_model import AttemptOutcome, ClassificationLabel, OutcomeKind, ScrapeTarget
from app.services.retry_orchestrator import (
    GENERIC_FAILURE_KIND,
    RETRYABLE_CLASSIFICATIONS,
    RetryOrchestrator,
    compute_backoff,
    is_retryable,
)

TARGET = ScrapeTarget(raw_input="01abc", normalized_url="https://www.upwork.com/jobs/~01abc", identifier="01abc")


def success(title="Job"):
    return (OutcomeKind.SUCCESS, ClassificationLabel.OK, JobRecord(job_title=title))


def soft(label):
    return (OutcomeKind.SOFT_FAILURE, label, None)


def hard(label):
    return (OutcomeKind.HARD_FAILURE, label, None)


class ScriptedAttempts:
    """Plays back a fixed list of (outcome, classification, record) per call."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    async def __call__(self, target, attempt_index):
        self.calls.append(attempt_index)
        outcome, label, record = self.script[attempt_index - 1]
        return AttemptOutcome(
            attempt_index=attempt_index,
            started_at=datetime.now(timezone.utc),
            duration_ms=10,
            outcome=outcome,
            classification=label,
            record=record,
        )


@pytest.fixture
def make_orchestrator(fast_settings, fake_sleep):
    def _make(script):
        attempts = ScriptedAttempts(script)
        return RetryOrchestrator(attempts, fast_settings, sleep=fake_sleep), attempts
    return _make


def scrape(orchestrator, max_attempts=None):
    return asyncio.run(orchestrator.scrape_with_retry(TARGET, max_attempts))


def test_first_attempt_success(make_orchestrator, recorded_sleeps):
    orchestrator, attempts = make_orchestrator([success("First")])

    result = scrape(orchestrator)

    assert result.success
    assert result.record.job_title == "First"
    assert result.final_error_kind is None
    assert attempts.calls == [1]
    assert recorded_sleeps == []


def test_success_on_second_of_three(make_orchestrator, recorded_sleeps):
    orchestrator, attempts = make_orchestrator([
        soft(ClassificationLabel.BOT_CHALLENGE),
        success("Second"),
        success("Third"),
    ])

    result = scrape(orchestrator, 3)

    assert result.success
    assert attempts.calls == [1, 2]
    assert len(result.attempts) == 2
    assert result.record.job_title == "Second"
    assert result.record is result.attempts[1].record
    assert len(recorded_sleeps) == 1


@pytest.mark.parametrize("k", [1, 2])
def test_login_required_stops_immediately(make_orchestrator, recorded_sleeps, k):
    script = [soft(ClassificationLabel.RATE_LIMITED)] * (k - 1) + [soft(ClassificationLabel.LOGIN_REQUIRED)]
    script += [success()] * (3 - k)
    orchestrator, attempts = make_orchestrator(script)

    result = scrape(orchestrator, 3)

    assert not result.success
    assert len(result.attempts) == k
    assert attempts.calls == list(range(1, k + 1))
    assert result.final_error_kind == "login_required"
    assert len(recorded_sleeps) == k - 1


def test_extraction_error_is_not_retried(make_orchestrator):
    orchestrator, attempts = make_orchestrator([hard(ClassificationLabel.EXTRACTION_ERROR), success()])

    result = scrape(orchestrator, 2)

    assert not result.success
    assert attempts.calls == [1]
    assert result.final_error_kind == "extraction_error"


def test_unclassified_failure_stops_with_generic_kind(make_orchestrator):
    orchestrator, attempts = make_orchestrator([hard(None), success()])

    result = scrape(orchestrator, 2)

    assert not result.success
    assert attempts.calls == [1]
    assert result.final_error_kind == GENERIC_FAILURE_KIND


def test_all_retryable_failures_exhaust_attempts(make_orchestrator, recorded_sleeps):
    orchestrator, attempts = make_orchestrator([
        hard(ClassificationLabel.TIMEOUT),
        soft(ClassificationLabel.SERVER_ERROR),
        soft(ClassificationLabel.FORBIDDEN),
    ])

    result = scrape(orchestrator, 3)

    assert not result.success
    assert result.record is None
    assert attempts.calls == [1, 2, 3]
    assert result.final_error_kind == "forbidden"
    # No sleep after the final attempt
    assert len(recorded_sleeps) == 2


def test_max_attempts_defaults_to_settings(make_orchestrator, fast_settings):
    orchestrator, attempts = make_orchestrator([soft(ClassificationLabel.EMPTY_RESPONSE)] * 5)

    result = scrape(orchestrator)

    assert len(result.attempts) == fast_settings.MAX_ATTEMPTS


@pytest.mark.parametrize("bad", [0, -1])
def test_max_attempts_below_one_is_an_error(make_orchestrator, bad):
    orchestrator, attempts = make_orchestrator([success()])

    with pytest.raises(ValueError):
        scrape(orchestrator, bad)
    assert attempts.calls == []


def test_never_exceeds_max_attempts_for_random_sequences(make_orchestrator):
    rng = random.Random(1234)
    labels = list(ClassificationLabel)
    for _ in range(200):
        max_attempts = rng.randint(1, 6)
        script = []
        for _ in range(max_attempts):
            label = rng.choice(labels)
            if label is ClassificationLabel.OK:
                script.append(success())
            else:
                script.append(soft(label))
        orchestrator, attempts = make_orchestrator(script)

        result = scrape(orchestrator, max_attempts)

        assert 1 <= len(result.attempts) <= max_attempts
        assert len(attempts.calls) == len(result.attempts)
        last = result.attempts[-1]
        if result.success:
            assert last.outcome is OutcomeKind.SUCCESS
        else:
            assert len(result.attempts) == max_attempts or not is_retryable(last.classification)
        # Every attempt before the last one was a retryable failure
        for earlier in result.attempts[:-1]:
            assert not earlier.succeeded
            assert is_retryable(earlier.classification)


def test_login_required_is_not_retryable():
    assert not is_retryable(ClassificationLabel.LOGIN_REQUIRED)
    assert not is_retryable(ClassificationLabel.OK)
    assert not is_retryable(None)
    assert ClassificationLabel.TRANSPORT_FAILURE in RETRYABLE_CLASSIFICATIONS


@pytest.mark.parametrize("attempt", [1, 2, 3, 4])
def test_backoff_window_scales_with_attempt(attempt):
    scale = 1 + 0.5 * (attempt - 1)
    for _ in range(50):
        delay = compute_backoff(attempt, 2.0, 6.0)
        assert 2.0 * scale <= delay <= 6.0 * scale


def test_backoff_sleeps_use_attempt_scaled_window(fast_settings, fake_sleep, recorded_sleeps):
    config = fast_settings.model_copy(update={"BACKOFF_MIN": 1.0, "BACKOFF_MAX": 1.0})
    attempts = ScriptedAttempts([soft(ClassificationLabel.RATE_LIMITED)] * 3)
    orchestrator = RetryOrchestrator(attempts, config, sleep=fake_sleep)

    scrape(orchestrator, 3)

    assert recorded_sleeps == [1.0, 1.5]
