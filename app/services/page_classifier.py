"""
Page classification for rendered Upwork job pages.

Decides whether a loaded page is real job content or one of the known
failure pages (login wall, bot challenge, access denied, rate limit, server
error). Rules are checked in a fixed order and the first match wins.
"""
import re
from typing import Optional
from urllib.parse import urlparse

from app.models.scrape_model import ClassificationLabel

LOGIN_PATH_RE = re.compile(r"^/(ab/account-security|login)(/|$)", re.IGNORECASE)

BOT_CHALLENGE_PHRASES = (
    "verify you are a human",
    "unusual activity",
    "support id",
    "checking your browser",  # Cloudflare's actual text
    "enable javascript and cookies to continue",  # Cloudflare block message
    "just a moment...",  # Cloudflare interstitial title
    "cf-chl-",
    "are you a robot",
)

ACCESS_DENIED_PHRASES = (
    "access denied",
    "403 forbidden",
    "you don't have permission to access",
)

RATE_LIMIT_PHRASES = (
    "too many requests",
    "rate limit exceeded",
    "you have been rate limited",
)

SERVER_ERROR_PHRASES = (
    "internal server error",
    "502 bad gateway",
    "503 service unavailable",
    "504 gateway time-out",
    "504 gateway timeout",
)


def _contains_any(haystack: str, phrases) -> bool:
    return any(phrase in haystack for phrase in phrases)


def is_login_url(resolved_url: Optional[str]) -> bool:
    """True when the browser ended up on Upwork's login / account-security flow."""
    if not resolved_url:
        return False
    try:
        path = urlparse(resolved_url).path or "/"
    except ValueError:
        return False
    return bool(LOGIN_PATH_RE.match(path))


def classify(markup: Optional[str], resolved_url: Optional[str], status_code: Optional[int]) -> ClassificationLabel:
    """
    Assign exactly one classification label to a loaded page.

    Args:
        markup: Final rendered HTML (None when nothing was captured)
        resolved_url: URL the browser settled on after redirects
        status_code: HTTP status of the main document, if known

    Returns:
        ClassificationLabel; only OK permits field extraction
    """
    if not markup or not markup.strip():
        return ClassificationLabel.EMPTY_RESPONSE

    if is_login_url(resolved_url):
        return ClassificationLabel.LOGIN_REQUIRED

    lower = markup.lower()

    if _contains_any(lower, BOT_CHALLENGE_PHRASES):
        return ClassificationLabel.BOT_CHALLENGE

    if status_code == 403 or _contains_any(lower, ACCESS_DENIED_PHRASES):
        return ClassificationLabel.FORBIDDEN

    if status_code == 429 or _contains_any(lower, RATE_LIMIT_PHRASES):
        return ClassificationLabel.RATE_LIMITED

    if (status_code is not None and status_code >= 500) or _contains_any(lower, SERVER_ERROR_PHRASES):
        return ClassificationLabel.SERVER_ERROR

    return ClassificationLabel.OK
