import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",  # Required for Docker
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


@dataclass
class LoadedPage:
    """What a single browser visit to a URL observed."""

    url: str
    status_code: Optional[int] = None
    load_time_ms: Optional[int] = None
    html: str = ""
    form_fields: int = 0
    screenshot_taken: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def successful(self):
        return self.status_code is not None and self.status_code < 400


class BrowserClient:
    FORM_FIELDS_SCRIPT = "document.querySelectorAll('input:not([type=hidden]), select, textarea').length"

    def __init__(
        self,
        timeout_ms: int = 60000,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        executable_path: str = "",
    ):
        self.timeout_ms = timeout_ms
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.executable_path = executable_path or None

    @contextmanager
    def _page(self):
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=True, args=BROWSER_ARGS, executable_path=self.executable_path)
            try:
                context = browser.new_context(viewport=self.viewport, ignore_https_errors=True)
                page = context.new_page()
                page.set_default_timeout(self.timeout_ms)
                yield page
            finally:
                browser.close()

    def screenshot(self, url: str, path: str, full_page: bool = True) -> bool:
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            with self._page() as page:
                page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                page.screenshot(path=path, full_page=full_page)
        except PlaywrightError as e:
            logger.error(f"Failed to capture screenshot of {url}: {e}")
            return False
        logger.info(f"Screenshot captured for {url} at {path}")
        return True

    def evaluate_script(self, url: str, script: str) -> Any:
        try:
            with self._page() as page:
                page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                return page.evaluate(script)
        except PlaywrightError as e:
            logger.error(f"Failed to evaluate script on {url}: {e}")
            return None

    def load_page(self, url: str, screenshot_path: str = "") -> LoadedPage:
        """
        Visit ``url`` once and collect everything the checkout flow needs from
        it: response status, timed load, rendered HTML, visible form field
        count and, optionally, a full-page screenshot.
        """
        result = LoadedPage(url=url)
        try:
            with self._page() as page:
                page.on("pageerror", lambda err: result.errors.append(f"Page error: {err}"))
                started = time.monotonic()
                response = page.goto(url, wait_until="load", timeout=self.timeout_ms)
                result.load_time_ms = int((time.monotonic() - started) * 1000)
                result.status_code = response.status if response is not None else None
                if result.status_code is not None and result.status_code >= 400:
                    result.errors.append(f"HTTP {result.status_code}")

                result.html = page.content()
                result.form_fields = int(page.evaluate(self.FORM_FIELDS_SCRIPT) or 0)

                if screenshot_path:
                    Path(screenshot_path).parent.mkdir(parents=True, exist_ok=True)
                    page.screenshot(path=screenshot_path, full_page=True)
                    result.screenshot_taken = True
        except PlaywrightError as e:
            logger.warning(f"Browser visit to {url} failed: {e}")
            result.errors.append(f"Failed to load page: {e}")
        return result
