"""
Breadth-first, same-host site crawler.

Fetches pages level by level with a small thread pool, following ``<a href>``
links that stay on the seed's host. Only the seed fetch is retried: if the
seed cannot be reached at all the crawl raises ``SeedUnreachable`` and the
audit fails, while any later page that errors is logged and skipped.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from audits.exceptions import SeedUnreachable
from audits.services.html import absolute_url, is_special_link, normalize_url

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


@dataclass(frozen=True)
class CrawledUrl:
    url: str
    status_code: Optional[int]

    @property
    def ok(self):
        return self.status_code is not None and 200 <= self.status_code < 300


class SiteCrawler:
    def __init__(
        self,
        user_agent: str,
        timeout: float = 30,
        seed_attempts: int = 3,
        retry_wait: float = 1,
        session: requests.Session = None,
    ):
        self.timeout = timeout
        self.seed_attempts = seed_attempts
        self.retry_wait = retry_wait
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def discover(
        self,
        seed_url: str,
        max_pages: int,
        concurrency: int = 5,
        delay: float = 0.1,
        max_depth: int = 3,
    ) -> List[CrawledUrl]:
        host = urlparse(seed_url).hostname
        seed_response = self._fetch_seed(seed_url)

        results = [CrawledUrl(url=seed_url, status_code=seed_response.status_code)]
        seen = {normalize_url(seed_url)}
        ok_count = 1 if results[0].ok else 0
        frontier = self._same_host_links(seed_response, seed_url, host, seen) if results[0].ok else []

        depth = 1
        with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
            while frontier and depth <= max_depth and ok_count < max_pages:
                next_frontier = []
                for start in range(0, len(frontier), max(1, concurrency)):
                    if ok_count >= max_pages:
                        break
                    batch = frontier[start : start + max(1, concurrency)]
                    for url, response in zip(batch, executor.map(self._fetch, batch)):
                        if ok_count >= max_pages:
                            break
                        status_code = response.status_code if response is not None else None
                        crawled = CrawledUrl(url=url, status_code=status_code)
                        results.append(crawled)
                        if crawled.ok:
                            ok_count += 1
                            next_frontier.extend(self._same_host_links(response, url, host, seen))
                    if delay:
                        time.sleep(delay)
                frontier = next_frontier
                depth += 1

        logger.info(f"Crawled {len(results)} URLs from {seed_url} ({ok_count} answered 2xx)")
        return results

    def _fetch_seed(self, url):
        retrying = Retrying(
            stop=stop_after_attempt(self.seed_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=30),
            retry=retry_if_exception_type(NETWORK_ERRORS),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(f"Retrying seed fetch for {url} (attempt {attempt.retry_state.attempt_number})")
                    return self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as e:
            raise SeedUnreachable(url, str(e)) from e

    def _fetch(self, url):
        try:
            return self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to crawl {url}: {e}")
            return None

    def _same_host_links(self, response, page_url, host, seen):
        content_type = response.headers.get("Content-Type", "")
        if "html" not in content_type.lower():
            return []

        soup = BeautifulSoup(response.text, "html.parser")
        found = []
        for anchor in soup.find_all("a", href=True):
            if is_special_link(anchor["href"]):
                continue
            url = absolute_url(anchor["href"], page_url)
            if url is None or urlparse(url).hostname != host:
                continue
            key = normalize_url(url)
            if key in seen:
                continue
            seen.add(key)
            found.append(key)
        return found
