import json
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from audits.models import Audit
from audits.tests.factories import AuditFactory, FindingFactory


class StartAuditCommandTest(TestCase):
    """Test cases for the start_audit management command."""

    def call(self, *args, **kwargs):
        out = StringIO()
        with self.captureOnCommitCallbacks() as callbacks:
            call_command("start_audit", *args, stdout=out, **kwargs)
        return out.getvalue(), callbacks

    def test_creates_and_queues_audit(self):
        output, callbacks = self.call("https://shop.example.com", max_pages=5)

        audit = Audit.objects.get()
        self.assertEqual(audit.status, Audit.Status.CRAWLING)
        self.assertEqual(audit.max_pages, 5)
        self.assertEqual(len(callbacks), 1, "Discovery should be queued once the transaction commits")
        self.assertIn(f"Started audit {audit.pk} for https://shop.example.com (max 5 pages)", output)

    def test_no_start(self):
        output, callbacks = self.call("https://shop.example.com", no_start=True)

        audit = Audit.objects.get()
        self.assertEqual(audit.status, Audit.Status.PENDING)
        self.assertEqual(callbacks, [])
        self.assertIn("Created audit", output)

    def test_checkout_paths_are_stored(self):
        steps = [{"name": "Basket", "path": "/basket"}]

        self.call("https://shop.example.com", checkout_paths=json.dumps(steps), no_start=True)

        self.assertEqual(Audit.objects.get().config, {"checkout_paths": steps})

    def test_invalid_checkout_paths(self):
        with self.assertRaisesMessage(CommandError, "--checkout-paths is not valid JSON"):
            self.call("https://shop.example.com", checkout_paths="[{")
        self.assertFalse(Audit.objects.exists())

    def test_invalid_url(self):
        with self.assertRaisesMessage(CommandError, "Invalid URL provided"):
            self.call("shop.example.com")

    def test_url_is_required(self):
        with self.assertRaises(CommandError):
            self.call()

    def test_restart(self):
        audit = AuditFactory.create_completed_audit()

        output, callbacks = self.call(restart=str(audit.pk))

        audit.refresh_from_db()
        self.assertEqual(audit.run_number, 2)
        self.assertEqual(audit.status, Audit.Status.CRAWLING)
        self.assertIsNone(audit.score)
        self.assertEqual(len(callbacks), 1)
        self.assertIn(f"Restarted audit {audit.pk} (run 2)", output)

    def test_restart_running_audit_is_rejected(self):
        audit = AuditFactory.create_running_audit()

        with self.assertRaisesMessage(CommandError, "already processing"):
            self.call(restart=str(audit.pk))

    def test_restart_unknown_audit(self):
        with self.assertRaisesMessage(CommandError, "not found"):
            self.call(restart="not-a-uuid")


class AuditSummaryCommandTest(TestCase):
    """Test cases for the audit_summary management command."""

    def setUp(self):
        self.previous = AuditFactory.create_completed_audit(score=70)
        self.audit = AuditFactory.create_completed_audit(score=80)
        FindingFactory.create_finding(self.audit, severity="critical")

    def call(self, *args, **kwargs):
        out = StringIO()
        call_command("audit_summary", *args, stdout=out, **kwargs)
        return out.getvalue()

    def test_summary_output(self):
        output = self.call(str(self.audit.pk))

        self.assertIn(f"Audit {self.audit.pk} - https://shop.example.com", output)
        self.assertIn("Score: 80", output)
        self.assertIn("Findings: 1 (1 critical, 0 high)", output)

    def test_compare_output(self):
        output = self.call(str(self.audit.pk), compare=str(self.previous.pk))

        self.assertIn("Score change: +10 (14.29%, up)", output)
        self.assertIn("Findings change: +1", output)

    def test_json_output(self):
        payload = json.loads(self.call(str(self.audit.pk), compare=str(self.previous.pk), json=True))

        self.assertEqual(payload["summary"]["id"], str(self.audit.pk))
        self.assertEqual(payload["summary"]["score"], 80)
        self.assertEqual(payload["comparison"]["score_change"]["direction"], "up")

    def test_compare_across_domains_is_rejected(self):
        other = AuditFactory.create_completed_audit(url="https://other-shop.example.com")

        with self.assertRaisesMessage(CommandError, "Cannot compare"):
            self.call(str(self.audit.pk), compare=str(other.pk))

    def test_unknown_audit(self):
        with self.assertRaises(CommandError):
            self.call("00000000-0000-0000-0000-000000000000")
