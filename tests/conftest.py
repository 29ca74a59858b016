from typing import Dict, List, Optional

import pytest

from app.core.config import Settings
from app.core.identities import CLIENT_IDENTITIES
from app.core.proxy_manager import RoundRobin

JOB_PAGE_HTML = """
<html>
  <head><title>Build a Django dashboard - Upwork</title></head>
  <body>
    <nav data-test="breadcrumb">
      <a href="/">Jobs</a><a href="/cat/dev">Web, Mobile &amp; Software Dev</a><a href="/cat/web">Web Development</a>
    </nav>
    <h1 data-test="job-header-title">Build a Django dashboard</h1>
    <section data-test="job-description"><p>We need a <b>dashboard</b> for our sales data.</p></section>
    <ul>
      <li data-test="experience-level">Intermediate</li>
      <li data-test="project-length">1 to 3 months</li>
      <li data-test="job-type-hourly">$25.00 - $45.00</li>
    </ul>
    <div data-test="client-location">United States</div>
    <div data-test="client-feedback">4.9 of 5</div>
    <div data-test="client-spend">$10K+ total spent</div>
    <div data-test="client-hires">12 hires</div>
    <div data-test="payment-verification-status">Payment method verified</div>
  </body>
</html>
"""

CHALLENGE_HTML = "<html><body><h1>Please verify you are a human</h1><p>Support ID: 123</p></body></html>"


class FakeSession:
    """Stands in for ChromeSession; records calls and can fail on demand."""

    def __init__(self, identity, proxy_url, config, markup: str = JOB_PAGE_HTML,
                 url: str = "https://www.upwork.com/jobs/~01abc", status: Optional[int] = 200,
                 failures: Optional[Dict[str, Exception]] = None):
        self.identity = identity
        self.proxy_url = proxy_url
        self.config = config
        self.markup = markup
        self.url = url
        self.status = status
        self.failures = failures or {}
        self.calls: List[str] = []
        self.close_calls = 0

    def _record(self, name):
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def open(self):
        self._record("open")

    def navigate(self, url, timeout_ms):
        self.navigated_to = url
        self.navigation_timeout_ms = timeout_ms
        self._record("navigate")

    def wait_for_network_idle(self, timeout_ms):
        self._record("wait_for_network_idle")

    def wait_for_selector(self, selector, timeout_ms):
        self._record("wait_for_selector")

    def page_source(self):
        self._record("page_source")
        return self.markup

    def current_url(self):
        self._record("current_url")
        return self.url

    def status_code(self):
        self._record("status_code")
        return self.status

    def close(self):
        self.close_calls += 1


class FakeSessionFactory:
    def __init__(self, **session_kwargs):
        self.session_kwargs = session_kwargs
        self.sessions: List[FakeSession] = []

    def __call__(self, identity, proxy_url, config):
        session = FakeSession(identity, proxy_url, config, **self.session_kwargs)
        self.sessions.append(session)
        return session


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        MAX_ATTEMPTS=3,
        MIN_DELAY_MS=0,
        MAX_DELAY_MS=0,
        BACKOFF_MIN=0.0,
        BACKOFF_MAX=0.0,
        PROXY_URLS="",
    )


@pytest.fixture
def identities() -> RoundRobin:
    return RoundRobin(CLIENT_IDENTITIES)


@pytest.fixture
def no_proxies() -> RoundRobin:
    return RoundRobin([])


@pytest.fixture
def recorded_sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps):
    async def _sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)
    return _sleep


@pytest.fixture
def job_page_html() -> str:
    return JOB_PAGE_HTML


@pytest.fixture
def challenge_html() -> str:
    return CHALLENGE_HTML


@pytest.fixture
def make_session_factory():
    """FakeSessionFactory class; keyword arguments become FakeSession overrides."""
    return FakeSessionFactory
