from unittest.mock import MagicMock, patch

from django.test import TestCase

from audits.conf import build_audit_settings
from audits.models import Audit, Finding, LinkRecord
from audits.services.html import ExtractedLink, FetchedPage, HtmlClient
from audits.tests.factories import AuditFactory, PageFactory, ReportFactory
from audits.units import LinkValidationUnit, UnitKind, UnitSpec
from audits.units.links import is_broken_status


class BrokenLinksFindingTests(TestCase):
    def setUp(self):
        spec = UnitSpec(UnitKind.LINKS, "audit", 1, page_id="page")
        self.unit = LinkValidationUnit(spec, build_audit_settings())

    def broken(self, count):
        return [(ExtractedLink(f"https://shop.example.com/gone-{n}", f"Gone {n}"), 404) for n in range(count)]

    def test_few_broken_links_are_medium(self):
        draft = self.unit.broken_links_finding(self.broken(2))

        self.assertEqual(draft.severity, "medium")
        self.assertEqual(draft.title, "Broken Links Found (2)")
        self.assertIn('- https://shop.example.com/gone-0 (Status: 404) - Link text: "Gone 0"', draft.description)

    def test_many_broken_links_are_high_and_listing_is_capped(self):
        """More than five broken links is high severity and only five are listed."""
        draft = self.unit.broken_links_finding(self.broken(8))

        self.assertEqual(draft.severity, "high")
        self.assertNotIn("gone-5", draft.description)
        self.assertTrue(draft.description.endswith("... and 3 more broken links."))
        self.assertEqual(draft.metadata, {"broken_links_count": 8})

    def test_is_broken_status(self):
        self.assertTrue(is_broken_status(None))
        self.assertTrue(is_broken_status(404))
        self.assertTrue(is_broken_status(500))
        self.assertFalse(is_broken_status(200))
        self.assertFalse(is_broken_status(301))


class LinkValidationExecuteTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_running_audit()
        self.page = PageFactory.create_page(self.audit, url="https://shop.example.com/products/widget")
        self.spec = UnitSpec(UnitKind.LINKS, self.audit.pk, 1, page_id=self.page.pk)

        # Real extraction over a canned page, only the network is faked
        self.html_client = HtmlClient(user_agent="TestBot", session=MagicMock(headers={}))
        self.html_client.fetch = MagicMock(
            return_value=FetchedPage(self.page.url, 200, ReportFactory.product_page_html(), 0.1)
        )
        self.checker = MagicMock()
        statuses = {
            "https://shop.example.com/cart": 200,
            "https://partner.example.org/offer": None,
            "https://shop.example.com/static/widget.png": 404,
        }
        self.checker.head_status.side_effect = lambda url, **kwargs: statuses[url]

    def run_unit(self):
        with patch("audits.services.get_html_client", return_value=self.html_client), patch(
            "audits.services.get_link_checker", return_value=self.checker
        ):
            return LinkValidationUnit(self.spec).execute()

    def test_execute_records_every_link(self):
        self.run_unit()

        records = {record.destination_url: record for record in LinkRecord.objects.filter(source_page=self.page)}
        self.assertEqual(len(records), 4)
        self.assertFalse(records["https://shop.example.com/cart"].is_broken)
        self.assertTrue(records["https://partner.example.org/offer"].is_broken)
        self.assertEqual(records["https://shop.example.com/static/widget.png"].link_type, "asset")

    def test_special_links_are_not_requested(self):
        """mailto links are recorded as healthy without any HTTP request."""
        self.run_unit()

        record = LinkRecord.objects.get(destination_url="mailto:help@shop.example.com")
        self.assertEqual(record.status_code, 200)
        self.assertFalse(record.is_broken)
        requested = [call.args[0] for call in self.checker.head_status.call_args_list]
        self.assertNotIn("mailto:help@shop.example.com", requested)

    def test_execute_records_one_broken_links_finding(self):
        result = self.run_unit()

        finding = Finding.objects.get(audit=self.audit, category="links")
        self.assertEqual(finding.title, "Broken Links Found (2)")
        self.assertEqual(finding.page_id, self.page.pk)
        self.assertEqual(result.findings, 1)

    def test_rerun_does_not_duplicate_records(self):
        self.run_unit()
        self.run_unit()

        self.assertEqual(LinkRecord.objects.filter(source_page=self.page).count(), 4)

    def test_checks_use_link_settings(self):
        self.run_unit()

        self.checker.head_status.assert_any_call("https://shop.example.com/cart", timeout=5.0)

    def test_superseded_run_keeps_previous_records(self):
        """Restarting mid-check leaves the new run's link records alone."""
        self.run_unit()
        fetch = self.html_client.fetch.return_value

        def restart_then_fetch(url):
            Audit.objects.filter(pk=self.audit.pk).update(run_number=2)
            return fetch

        self.html_client.fetch = MagicMock(side_effect=restart_then_fetch)
        LinkRecord.objects.filter(source_page=self.page).update(link_text="kept")

        result = self.run_unit()

        self.assertEqual(result.findings, 0)
        texts = set(LinkRecord.objects.filter(source_page=self.page).values_list("link_text", flat=True))
        self.assertEqual(texts, {"kept"})
        self.assertEqual(Finding.objects.filter(audit=self.audit).count(), 1)
