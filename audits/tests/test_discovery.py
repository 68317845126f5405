from unittest.mock import MagicMock

from django.test import TestCase

from audits.conf import build_audit_settings
from audits.discovery import PageDiscovery
from audits.models import Page
from audits.services.crawler import CrawledUrl
from audits.tests.factories import AuditFactory


class PageDiscoveryTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_audit(status="crawling", max_pages=3)
        self.crawler = MagicMock()
        self.discovery = PageDiscovery(crawler=self.crawler, audit_settings=build_audit_settings())

    def test_keeps_only_successful_unique_pages_in_order(self):
        """Non-2xx pages and normalized duplicates are dropped, order is kept."""
        self.crawler.discover.return_value = [
            CrawledUrl("https://shop.example.com", 200),
            CrawledUrl("https://shop.example.com/missing", 404),
            CrawledUrl("https://shop.example.com/#hero", 200),
            CrawledUrl("https://shop.example.com/products", 200),
            CrawledUrl("https://shop.example.com/down", None),
        ]

        pages = self.discovery.discover(self.audit)

        actual = [(page.url, page.position) for page in pages]
        expected = [("https://shop.example.com/", 0), ("https://shop.example.com/products", 1)]
        message = f"Expected discovered pages {expected}, got {actual}"
        self.assertEqual(actual, expected, message)
        self.assertEqual(Page.objects.filter(audit=self.audit).count(), 2)

    def test_caps_at_max_pages(self):
        self.crawler.discover.return_value = [CrawledUrl(f"https://shop.example.com/p{n}", 200) for n in range(10)]

        pages = self.discovery.discover(self.audit)

        self.assertEqual(len(pages), 3)

    def test_passes_crawler_settings(self):
        self.crawler.discover.return_value = []

        self.discovery.crawl(self.audit)

        self.crawler.discover.assert_called_once_with(
            "https://shop.example.com",
            max_pages=3,
            concurrency=5,
            delay=0.1,
            max_depth=3,
        )

    def test_crawl_writes_nothing(self):
        self.crawler.discover.return_value = [CrawledUrl("https://shop.example.com/", 200)]

        self.discovery.crawl(self.audit)

        self.assertFalse(Page.objects.exists())
