"""
One scrape attempt: a fresh browser session from launch to teardown.

The executor never raises. Every way an attempt can end is folded into an
AttemptOutcome so the retry loop only ever deals with returned values.
"""
import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from functools import partial
from typing import Awaitable, Callable, Optional

from app.core.config import Settings
from app.core.identities import ClientIdentity, get_identity_rotator
from app.core.proxy_manager import RoundRobin, get_proxy_manager, mask_proxy
from app.models.job_model import JobRecord
from app.models.scrape_model import AttemptOutcome, ClassificationLabel, OutcomeKind, ScrapeTarget
from app.services.browser_session import BrowserSession, NavigationTimeout, SessionFactory, chrome_session_factory
from app.services.field_extractor import extract_job_record
from app.services.page_classifier import classify

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]
Extractor = Callable[[str], JobRecord]


class ExtractionError(Exception):
    """Raised when field extraction fails on a page classified as ok."""
    pass


class AttemptExecutor:
    """Runs single attempts against a target, each in its own browser session."""

    def __init__(
        self,
        config: Settings,
        session_factory: SessionFactory = chrome_session_factory,
        extractor: Extractor = extract_job_record,
        identities: Optional[RoundRobin[ClientIdentity]] = None,
        proxies: Optional[RoundRobin[str]] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.config = config
        self.session_factory = session_factory
        self.extractor = extractor
        self.identities = identities if identities is not None else get_identity_rotator()
        self.proxies = proxies if proxies is not None else get_proxy_manager(config.proxy_urls)
        self.sleep = sleep

    async def _call(self, fn, *args):
        """Run a blocking driver call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    async def _pre_navigation_delay(self) -> None:
        delay_ms = random.uniform(self.config.MIN_DELAY_MS, self.config.MAX_DELAY_MS)
        await self.sleep(delay_ms / 1000)

    async def _wait_until_ready(self, session: BrowserSession, attempt_index: int) -> None:
        """Best-effort readiness waits. Neither failing is fatal; classification decides."""
        try:
            await self._call(session.wait_for_network_idle, self.config.SETTLE_TIMEOUT_MS)
        except Exception as e:  # pylint: disable=broad-except
            logger.debug(f"Attempt {attempt_index}: network did not settle within "
                         f"{self.config.SETTLE_TIMEOUT_MS} ms ({type(e).__name__})")
        try:
            await self._call(session.wait_for_selector, self.config.DESCRIPTION_SELECTOR,
                             self.config.DESCRIPTION_WAIT_MS)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning(f"⚠️  Attempt {attempt_index}: description not found in time, "
                           f"continuing anyway ({type(e).__name__})")

    async def execute_attempt(self, target: ScrapeTarget, attempt_index: int) -> AttemptOutcome:
        """
        Run one navigate-classify-extract cycle.

        Args:
            target: Normalized scrape target
            attempt_index: 1-based attempt number, recorded in telemetry

        Returns:
            AttemptOutcome; success, soft failure (page loaded but unusable)
            or hard failure (the attempt raised)
        """
        identity = self.identities.next()
        proxy_url = self.proxies.next()
        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()

        telemetry = {
            "attempt_index": attempt_index,
            "started_at": started_at,
            "user_agent": identity.user_agent if identity else None,
            "viewport": identity.viewport if identity else None,
            "proxy": mask_proxy(proxy_url),
        }

        def elapsed_ms() -> int:
            return int((time.perf_counter() - t0) * 1000)

        logger.info(f"Attempt {attempt_index}: {target.normalized_url} "
                    f"(viewport {telemetry['viewport']}, proxy {telemetry['proxy'] or 'direct'})")

        status_code = None
        resolved_url = None
        session = None
        try:
            session = self.session_factory(identity, proxy_url, self.config)
            await self._pre_navigation_delay()
            await self._call(session.open)
            await self._call(session.navigate, target.normalized_url, self.config.NAV_TIMEOUT_MS)
            await self._wait_until_ready(session, attempt_index)

            markup = await self._call(session.page_source)
            resolved_url = await self._call(session.current_url)
            status_code = await self._call(session.status_code)
            label = classify(markup, resolved_url, status_code)

            if label is not ClassificationLabel.OK:
                logger.warning(f"⚠️  Attempt {attempt_index}: page classified as {label.value} "
                               f"(status {status_code}, url {resolved_url})")
                return AttemptOutcome(
                    duration_ms=elapsed_ms(),
                    outcome=OutcomeKind.SOFT_FAILURE,
                    classification=label,
                    status_code=status_code,
                    resolved_url=resolved_url,
                    error_message=f"Page classified as {label.value}",
                    **telemetry,
                )

            try:
                record = self.extractor(markup)
            except Exception as e:  # pylint: disable=broad-except
                raise ExtractionError(str(e)) from e

            logger.info(f"✓ Attempt {attempt_index}: extracted '{record.job_title or 'untitled'}' "
                        f"in {elapsed_ms()} ms")
            return AttemptOutcome(
                duration_ms=elapsed_ms(),
                outcome=OutcomeKind.SUCCESS,
                classification=label,
                status_code=status_code,
                resolved_url=resolved_url,
                record=record,
                **telemetry,
            )
        except Exception as e:  # pylint: disable=broad-except
            label = _label_for_exception(e)
            logger.error(f"❌ Attempt {attempt_index} failed ({label.value}): {type(e).__name__}: {e}")
            return AttemptOutcome(
                duration_ms=elapsed_ms(),
                outcome=OutcomeKind.HARD_FAILURE,
                classification=label,
                status_code=status_code,
                resolved_url=resolved_url,
                error_message=f"{type(e).__name__}: {e}",
                **telemetry,
            )
        finally:
            if session is not None:
                try:
                    await self._call(session.close)
                except Exception as e:  # pylint: disable=broad-except
                    logger.warning(f"⚠️  Attempt {attempt_index}: error closing browser session: {e}")


def _label_for_exception(error: Exception) -> ClassificationLabel:
    if isinstance(error, ExtractionError):
        return ClassificationLabel.EXTRACTION_ERROR
    if isinstance(error, (NavigationTimeout, asyncio.TimeoutError, TimeoutError)):
        return ClassificationLabel.TIMEOUT
    return ClassificationLabel.TRANSPORT_FAILURE
