"""
Field extraction for rendered Upwork job pages.

Every field is a single CSS lookup against the parsed page. A lookup that
finds nothing, or blows up on odd markup, yields None for that field only.
"""
import logging
from typing import Callable, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from app.models.job_model import JobRecord

logger = logging.getLogger(__name__)

TEXT = "text"
HTML = "html"

DESCRIPTION_SELECTOR = "[data-test='job-description'], section[data-test='job-description']"

# (field name, selector, reader)
FIELD_SELECTORS: Tuple[Tuple[str, str, str], ...] = (
    ("job_title", "h1[data-test='job-header-title'], h1", TEXT),
    ("job_description", DESCRIPTION_SELECTOR, TEXT),
    ("job_description_html", DESCRIPTION_SELECTOR, HTML),
    ("category", "[data-test='job-features'] [data-test='job-category'], [data-test='breadcrumb'] a:nth-child(2)", TEXT),
    ("subcategory", "[data-test='job-features'] [data-test='job-subcategory'], [data-test='breadcrumb'] a:nth-child(3)", TEXT),
    ("experience_level", "[data-test='experience-level']", TEXT),
    ("project_length", "[data-test='project-length']", TEXT),
    ("hourly_range", "[data-test='job-type-hourly'], [data-test='budget-hourly']", TEXT),
    ("fixed_budget", "[data-test='job-type-fixed'], [data-test='budget-fixed']", TEXT),
    ("client_country", "[data-test='client-location']", TEXT),
    ("client_rating", "[data-test='client-feedback']", TEXT),
    ("client_total_spent", "[data-test='client-spend']", TEXT),
    ("client_hires", "[data-test='client-hires']", TEXT),
    ("client_payment_verified", "[data-test='payment-verification-status']", TEXT),
)


def _read_text(element: Tag) -> str:
    return element.get_text(" ", strip=True)


def _read_html(element: Tag) -> str:
    return element.decode_contents().strip()


READERS = {
    TEXT: _read_text,
    HTML: _read_html,
}


def safe_lookup(soup: BeautifulSoup, selector: str, reader: Callable[[Tag], str]) -> Optional[str]:
    """
    Read the first element matching ``selector``.

    Returns None when nothing matches, when the value is blank, or when the
    selector or reader raises.
    """
    try:
        element = soup.select_one(selector)
        if element is None:
            return None
        value = reader(element)
        return value or None
    except Exception as e:  # pylint: disable=broad-except
        logger.debug(f"Lookup failed for selector {selector!r}: {e}")
        return None


def extract_job_record(markup: str) -> JobRecord:
    """Build a JobRecord from the rendered page markup."""
    soup = BeautifulSoup(markup, "html.parser")
    values = {
        name: safe_lookup(soup, selector, READERS[reader])
        for name, selector, reader in FIELD_SELECTORS
    }
    values["raw_job_html"] = markup
    return JobRecord(**values)
