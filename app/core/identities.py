"""
Client identities (user agent + viewport) rotated across browser sessions.
"""
from dataclasses import dataclass
from typing import Optional

from app.core.proxy_manager import RoundRobin


@dataclass(frozen=True)
class ClientIdentity:
    user_agent: str
    width: int
    height: int

    @property
    def viewport(self) -> str:
        return f"{self.width}x{self.height}"


CLIENT_IDENTITIES = [
    ClientIdentity(
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
        1280, 720,
    ),
    ClientIdentity(
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
        1440, 900,
    ),
    ClientIdentity(
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36',
        1920, 1080,
    ),
    ClientIdentity(
        'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
        1366, 768,
    ),
    ClientIdentity(
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
        1536, 864,
    ),
]

_identity_rotator: Optional[RoundRobin[ClientIdentity]] = None


def get_identity_rotator() -> RoundRobin[ClientIdentity]:
    """Process-wide rotator over CLIENT_IDENTITIES."""
    global _identity_rotator  # pylint: disable=global-statement
    if _identity_rotator is None:
        _identity_rotator = RoundRobin(CLIENT_IDENTITIES)
    return _identity_rotator
