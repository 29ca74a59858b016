import json
import logging
import os
import shutil
import tempfile
from typing import Callable, Optional, Protocol
from urllib.parse import unquote, urlparse

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from app.core.config import Settings
from app.core.identities import ClientIdentity

logger = logging.getLogger(__name__)

_NAVIGATION_STATUS_JS = (
    "const nav = performance.getEntriesByType('navigation')[0];"
    "return nav && nav.responseStatus ? nav.responseStatus : null;"
)
_RESOURCE_COUNT_JS = "return performance.getEntriesByType('resource').length;"


class NavigationTimeout(Exception):
    """Raised when the page did not load within the navigation deadline."""
    pass


class BrowserError(Exception):
    """Raised for transport or driver failures while talking to the browser."""
    pass


class BrowserSession(Protocol):
    """One isolated browser process, used for a single attempt and then closed."""

    def open(self) -> None: ...

    def navigate(self, url: str, timeout_ms: int) -> None: ...

    def wait_for_network_idle(self, timeout_ms: int) -> None: ...

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...

    def page_source(self) -> str: ...

    def current_url(self) -> str: ...

    def status_code(self) -> Optional[int]: ...

    def close(self) -> None: ...


SessionFactory = Callable[[ClientIdentity, Optional[str], Settings], BrowserSession]


def get_chrome_executable_path(configured: Optional[str] = None) -> Optional[str]:
    """
    Get Chrome executable path based on environment.
    Checks the configured path / CHROME_BIN first, then common installation paths.
    """
    chrome_bin = configured or os.environ.get("CHROME_BIN")
    if chrome_bin and os.path.exists(chrome_bin):
        return chrome_bin

    candidates = [
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium-browser",
        "/usr/bin/chromium",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
    ]
    for path in candidates:
        if os.path.exists(path):
            return path

    # If not found, let undetected-chromedriver find it
    return None


_PROXY_EXTENSION_MANIFEST = {
    "version": "1.0",
    "manifest_version": 2,
    "name": "ProxyAuth",
    "permissions": ["proxy", "<all_urls>", "webRequest", "webRequestBlocking"],
    "background": {"scripts": ["background.js"]},
    "minimum_chrome_version": "88.0",
}

# Proxy settings and credentials are spliced in as JSON literals
_PROXY_BACKGROUND_JS = """\
chrome.proxy.settings.set({value: %(proxy_config)s, scope: "regular"}, function() {});
chrome.webRequest.onAuthRequired.addListener(
  function() { return {authCredentials: %(credentials)s}; },
  {urls: ["<all_urls>"]},
  ["blocking"]
);
"""


def build_proxy_auth_extension(proxy_url: str) -> str:
    """Create a minimal Chrome extension that configures a fixed proxy and handles auth.

    Returns the directory holding the unpacked extension, for --load-extension.
    The caller owns the directory and must remove it.
    """
    parsed = urlparse(proxy_url)
    if not parsed.hostname or not parsed.port:
        raise ValueError("Invalid proxy URL; must include host and port")

    proxy_config = {
        "mode": "fixed_servers",
        "rules": {
            "singleProxy": {"scheme": parsed.scheme or "http", "host": parsed.hostname, "port": parsed.port},
            "bypassList": ["localhost", "127.0.0.1"],
        },
    }
    credentials = {
        "username": unquote(parsed.username or ""),
        "password": unquote(parsed.password or ""),
    }
    background_js = _PROXY_BACKGROUND_JS % {
        "proxy_config": json.dumps(proxy_config),
        "credentials": json.dumps(credentials),
    }

    temp_dir = tempfile.mkdtemp(prefix="proxy_ext_")
    with open(os.path.join(temp_dir, "manifest.json"), "w", encoding="utf-8") as f:
        json.dump(_PROXY_EXTENSION_MANIFEST, f)
    with open(os.path.join(temp_dir, "background.js"), "w", encoding="utf-8") as f:
        f.write(background_js)
    return temp_dir


class ChromeSession:
    """
    Undetected Chrome driven through Selenium.

    Each instance owns its own Chrome process and profile, so cookies and
    fingerprint state never carry over between attempts.
    """

    def __init__(self, identity: ClientIdentity, proxy_url: Optional[str], config: Settings):
        self.identity = identity
        self.proxy_url = proxy_url
        self.config = config
        self._driver = None
        self._extension_dir: Optional[str] = None

    def _build_options(self):
        import undetected_chromedriver as uc

        options = uc.ChromeOptions()
        if self.config.HEADLESS:
            options.add_argument("--headless=new")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-setuid-sandbox")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--disable-blink-features=AutomationControlled")
        options.add_argument(f"user-agent={self.identity.user_agent}")
        options.add_argument(f"--window-size={self.identity.width},{self.identity.height}")
        lang_hint = self.config.ACCEPT_LANGUAGE.split(",")[0]
        if lang_hint:
            options.add_argument(f"--lang={lang_hint}")
        # Return after DOMContentLoaded; readiness is handled by the explicit waits
        options.page_load_strategy = "eager"

        if self.proxy_url:
            parsed = urlparse(self.proxy_url)
            if parsed.username and parsed.password:
                # Chrome has no flag for proxy credentials; the extension answers the auth challenge
                self._extension_dir = build_proxy_auth_extension(self.proxy_url)
                options.add_argument(f"--load-extension={self._extension_dir}")
                options.add_argument(f"--disable-extensions-except={self._extension_dir}")
            else:
                options.add_argument(f"--proxy-server={parsed.scheme}://{parsed.hostname}:{parsed.port}")
        return options

    def open(self) -> None:
        import undetected_chromedriver as uc
        from selenium_stealth import stealth

        try:
            self._driver = uc.Chrome(
                options=self._build_options(),
                browser_executable_path=get_chrome_executable_path(self.config.CHROME_BIN),
                use_subprocess=True,
                version_main=self.config.CHROME_VERSION_MAIN,
            )
        except WebDriverException as e:
            raise BrowserError(f"Failed to launch browser: {e.msg or e}") from e

        driver = self._driver
        driver.set_window_size(self.identity.width, self.identity.height)
        driver.execute_cdp_cmd('Network.setUserAgentOverride', {
            "userAgent": self.identity.user_agent,
            "acceptLanguage": self.config.ACCEPT_LANGUAGE,
        })
        try:
            languages = [l.strip() for l in self.config.ACCEPT_LANGUAGE.split(",") if l.strip()]
            stealth(
                driver,
                languages=[languages[0].split(";")[0] if languages else "en-US", "en"],
                vendor="Google Inc.",
                platform="Win32",
                webgl_vendor="Intel Inc.",
                renderer="Intel Iris OpenGL Engine",
                fix_hairline=True,
            )
        except WebDriverException as e:
            logger.warning(f"⚠️  selenium-stealth patching failed, continuing without it: {e}")

    def navigate(self, url: str, timeout_ms: int) -> None:
        self._driver.set_page_load_timeout(timeout_ms / 1000)
        try:
            self._driver.get(url)
        except TimeoutException as e:
            raise NavigationTimeout(f"Navigation to {url} exceeded {timeout_ms} ms") from e
        except WebDriverException as e:
            raise BrowserError(e.msg or str(e)) from e

    def wait_for_network_idle(self, timeout_ms: int) -> None:
        """Wait until the document is complete and no new resources loaded since the last poll."""
        last_count = [-1]

        def _quiet(driver) -> bool:
            if driver.execute_script("return document.readyState;") != "complete":
                return False
            count = driver.execute_script(_RESOURCE_COUNT_JS)
            settled = count == last_count[0]
            last_count[0] = count
            return settled

        WebDriverWait(self._driver, timeout_ms / 1000, poll_frequency=0.5).until(_quiet)

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        WebDriverWait(self._driver, timeout_ms / 1000).until(
            EC.presence_of_element_located((By.CSS_SELECTOR, selector))
        )

    def page_source(self) -> str:
        return self._driver.page_source or ""

    def current_url(self) -> str:
        return self._driver.current_url

    def status_code(self) -> Optional[int]:
        try:
            status = self._driver.execute_script(_NAVIGATION_STATUS_JS)
        except WebDriverException:
            return None
        return int(status) if status else None

    def close(self) -> None:
        driver, self._driver = self._driver, None
        if driver is not None:
            try:
                driver.quit()
            except Exception as e:  # pylint: disable=broad-except
                logger.warning(f"⚠️  Error quitting driver: {e}")
        if self._extension_dir:
            shutil.rmtree(self._extension_dir, ignore_errors=True)
            self._extension_dir = None


def chrome_session_factory(identity: ClientIdentity, proxy_url: Optional[str], config: Settings) -> BrowserSession:
    return ChromeSession(identity, proxy_url, config)
