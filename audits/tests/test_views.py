from django.test import TestCase
from django.urls import reverse

from audits.tests.factories import AuditFactory, FindingFactory, LinkRecordFactory, PageFactory


class AuditSummaryViewTest(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_running_audit(jobs_total=9, jobs_completed=3)
        page = PageFactory.create_page(self.audit)
        FindingFactory.create_finding(self.audit, page=page, category="seo", severity="high")
        LinkRecordFactory.create_link(page, is_broken=True, status_code=404)

    def test_summary(self):
        response = self.client.get(reverse("audits:summary", args=[self.audit.pk]))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["id"], str(self.audit.pk))
        self.assertEqual(data["status"], "analyzing")
        self.assertEqual(data["jobs"], {"total": 9, "completed": 3, "failed": 0})
        self.assertEqual(data["findings_by_category"], {"seo": 1})
        self.assertEqual(data["broken_links"], 1)
        self.assertIsNone(data["score"])

    def test_unknown_audit_is_404(self):
        response = self.client.get(reverse("audits:summary", args=["00000000-0000-0000-0000-000000000000"]))

        self.assertEqual(response.status_code, 404)

    def test_post_not_allowed(self):
        response = self.client.post(reverse("audits:summary", args=[self.audit.pk]))

        self.assertEqual(response.status_code, 405)


class AuditCompareViewTest(TestCase):
    def setUp(self):
        self.previous = AuditFactory.create_completed_audit(score=90)
        self.current = AuditFactory.create_completed_audit(score=72)

    def test_compare(self):
        response = self.client.get(reverse("audits:compare", args=[self.current.pk, self.previous.pk]))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["current"], str(self.current.pk))
        self.assertEqual(data["previous"], str(self.previous.pk))
        self.assertEqual(data["score_change"], {"absolute": -18, "percentage": -20.0, "direction": "down"})

    def test_incomplete_audit_cannot_be_compared(self):
        running = AuditFactory.create_running_audit()

        response = self.client.get(reverse("audits:compare", args=[running.pk, self.previous.pk]))

        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
