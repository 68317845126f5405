"""
Factories for the external collaborators the pipeline talks to.

Units and discovery only ever obtain collaborators through these functions,
so tests patch ``audits.services.get_*`` in one place.
"""

from audits.conf import get_audit_settings

from .browser import BrowserClient
from .crawler import SiteCrawler
from .html import HtmlClient
from .http_check import LinkChecker
from .lighthouse import LighthouseRunner


def get_crawler() -> SiteCrawler:
    conf = get_audit_settings()
    return SiteCrawler(user_agent=conf.crawler.user_agent, timeout=conf.crawler.timeout)


def get_html_client() -> HtmlClient:
    conf = get_audit_settings()
    return HtmlClient(user_agent=conf.crawler.user_agent, timeout=conf.crawler.timeout)


def get_lighthouse_runner() -> LighthouseRunner:
    conf = get_audit_settings()
    return LighthouseRunner(lighthouse_path=conf.lighthouse_path, chrome_path=conf.browser.chrome_path)


def get_browser() -> BrowserClient:
    conf = get_audit_settings()
    return BrowserClient(
        timeout_ms=conf.browser.timeout_ms,
        viewport_width=conf.browser.viewport_width,
        viewport_height=conf.browser.viewport_height,
        executable_path=conf.browser.chrome_path,
    )


def get_link_checker() -> LinkChecker:
    conf = get_audit_settings()
    return LinkChecker(user_agent=conf.crawler.user_agent, max_redirects=conf.link_check.max_redirects)


__all__ = [
    "BrowserClient",
    "HtmlClient",
    "LighthouseRunner",
    "LinkChecker",
    "SiteCrawler",
    "get_browser",
    "get_crawler",
    "get_html_client",
    "get_lighthouse_runner",
    "get_link_checker",
]
