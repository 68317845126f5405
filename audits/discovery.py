import logging
from typing import List, Optional

from django.utils import timezone

from audits import services
from audits.conf import AuditSettings, get_audit_settings
from audits.models import Audit, Page
from audits.services.html import normalize_url

logger = logging.getLogger(__name__)


class PageDiscovery:
    """
    Produces the bounded, deduplicated list of pages one audit analyzes.

    The crawl itself is delegated to the crawler collaborator. What this class
    owns is the contract on its output: only 2xx pages, each URL once (after
    normalization), in discovery order, at most ``audit.max_pages`` of them.
    """

    def __init__(self, crawler=None, audit_settings: Optional[AuditSettings] = None):
        self.crawler = crawler
        self.settings = audit_settings or get_audit_settings()

    def crawl(self, audit: Audit):
        """Run the crawl and return the retained ``(url, status_code)`` pairs. No database writes."""
        crawler = self.crawler or services.get_crawler()
        conf = self.settings.crawler
        crawled = crawler.discover(
            audit.url,
            max_pages=audit.max_pages,
            concurrency=conf.concurrency,
            delay=conf.delay_ms / 1000,
            max_depth=conf.max_depth,
        )

        retained = []
        seen = set()
        for item in crawled:
            if item.status_code is None or not 200 <= item.status_code < 300:
                continue
            key = normalize_url(item.url)
            if key in seen:
                continue
            seen.add(key)
            retained.append((key, item.status_code))
            if len(retained) >= audit.max_pages:
                break

        logger.info(f"Discovered {len(retained)} pages for audit {audit.pk} ({len(crawled)} URLs crawled)")
        return retained

    def persist(self, audit: Audit, discovered) -> List[Page]:
        now = timezone.now()
        pages = [
            Page(audit=audit, url=url, status_code=status_code, position=position, crawled_at=now)
            for position, (url, status_code) in enumerate(discovered)
        ]
        return Page.objects.bulk_create(pages)

    def discover(self, audit: Audit) -> List[Page]:
        return self.persist(audit, self.crawl(audit))
