import logging
import posixpath
import time
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from audits.exceptions import PermanentUnitError, TransientUnitError

logger = logging.getLogger(__name__)

SPECIAL_SCHEMES = ("#", "javascript:", "mailto:", "tel:")
ASSET_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "svg", "webp", "css", "js", "pdf", "zip"}

# Client errors that usually clear up on a retry
RETRYABLE_CLIENT_ERRORS = {408, 425, 429}


@dataclass(frozen=True)
class FetchedPage:
    url: str
    status_code: int
    html: str
    load_time: float


@dataclass(frozen=True)
class PageMetadata:
    title: str = ""
    description: str = ""
    h1: str = ""
    has_viewport: bool = False
    viewport_content: str = ""


@dataclass(frozen=True)
class ExtractedLink:
    url: str
    text: str = ""
    link_type: str = ""


def is_special_link(href: str) -> bool:
    return href.strip().lower().startswith(SPECIAL_SCHEMES)


def normalize_url(url: str) -> str:
    """Canonical form used for deduplication: fragment dropped, host lowercased, empty path as '/'."""
    url, _ = urldefrag(url.strip())
    parsed = urlparse(url)
    path = parsed.path or "/"
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, parsed.query, ""))


def classify_link(url: str, page_url: str) -> str:
    if is_special_link(url):
        return "internal"

    extension = posixpath.splitext(urlparse(url).path)[1].lstrip(".").lower()
    if extension in ASSET_EXTENSIONS:
        return "asset"

    if urlparse(url).hostname == urlparse(page_url).hostname:
        return "internal"
    return "external"


def absolute_url(href: str, base_url: str) -> Optional[str]:
    href = href.strip()
    if not href:
        return None
    if is_special_link(href):
        return href
    absolute = urljoin(base_url, href)
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


class HtmlClient:
    def __init__(self, user_agent: str, timeout: float = 30, session: requests.Session = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def fetch(self, url: str) -> FetchedPage:
        started = time.monotonic()
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientUnitError(f"Could not fetch {url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise PermanentUnitError(f"Could not fetch {url}: {e}") from e
        load_time = time.monotonic() - started

        status = response.status_code
        if status >= 500 or status in RETRYABLE_CLIENT_ERRORS:
            raise TransientUnitError(f"{url} answered with HTTP {status}")
        if status >= 400:
            raise PermanentUnitError(f"{url} answered with HTTP {status}")

        logger.debug(f"Fetched {url} ({status}) in {load_time:.2f}s")
        return FetchedPage(url=response.url or url, status_code=status, html=response.text, load_time=load_time)

    def extract_metadata(self, html: str) -> PageMetadata:
        soup = BeautifulSoup(html or "", "html.parser")

        title = soup.title.get_text(strip=True) if soup.title else ""

        description = ""
        description_tag = soup.find("meta", attrs={"name": lambda value: value and value.lower() == "description"})
        if description_tag:
            description = (description_tag.get("content") or "").strip()

        h1_tag = soup.find("h1")
        h1 = h1_tag.get_text(" ", strip=True) if h1_tag else ""

        viewport_tag = soup.find("meta", attrs={"name": lambda value: value and value.lower() == "viewport"})
        viewport_content = (viewport_tag.get("content") or "").strip() if viewport_tag else ""

        return PageMetadata(
            title=title,
            description=description,
            h1=h1,
            has_viewport=viewport_tag is not None,
            viewport_content=viewport_content,
        )

    def extract_links(self, html: str, base_url: str) -> List[ExtractedLink]:
        soup = BeautifulSoup(html or "", "html.parser")
        links = []
        for anchor in soup.find_all("a", href=True):
            url = absolute_url(anchor["href"], base_url)
            if url is None:
                continue
            link_type = classify_link(url, base_url)
            links.append(ExtractedLink(url=url, text=anchor.get_text(strip=True), link_type=link_type))
        return links

    def extract_assets(self, html: str, base_url: str) -> List[ExtractedLink]:
        soup = BeautifulSoup(html or "", "html.parser")
        assets = []
        for tag in soup.find_all("img", src=True):
            url = absolute_url(tag["src"], base_url)
            if url and not is_special_link(url):
                assets.append(ExtractedLink(url=url, text=tag.get("alt", "").strip(), link_type="asset"))
        return assets
