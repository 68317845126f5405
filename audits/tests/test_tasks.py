from unittest.mock import MagicMock, patch

from celery.exceptions import SoftTimeLimitExceeded
from django.db import OperationalError
from django.test import TestCase

from audits.exceptions import PermanentUnitError, SeedUnreachable, TransientUnitError
from audits.models import Audit, UnitOutcome
from audits.orchestrator import AuditOrchestrator
from audits.services.crawler import CrawledUrl
from audits.tasks import (
    REPORT_ATTEMPTS,
    aggregate_results,
    discover_pages,
    process_unit,
    retry_countdown,
    run_analysis_unit,
)
from audits.tests.factories import AuditFactory, PageFactory
from audits.tracker import CompletionTracker
from audits.units import UnitKind, UnitResult, UnitSpec


def fake_unit(*effects):
    unit = MagicMock()
    if effects:
        unit.execute.side_effect = list(effects)
    else:
        unit.execute.return_value = UnitResult(findings=2)
    return unit


class ProcessUnitTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_audit(status="crawling", jobs_total=9)
        self.page = PageFactory.create_page(self.audit)
        self.spec = UnitSpec(UnitKind.METADATA, self.audit.pk, 1, page_id=self.page.pk)

    def process(self, unit, attempt=1, spec=None):
        with patch("audits.tasks.build_unit", return_value=unit):
            return process_unit(spec or self.spec, attempt=attempt)

    def test_success_reports_and_marks_analyzing(self):
        result = self.process(fake_unit())

        self.assertEqual(result, "succeeded")
        self.audit.refresh_from_db()
        self.assertEqual(self.audit.status, Audit.Status.ANALYZING)
        self.assertEqual(self.audit.jobs_completed, 1)
        outcome = UnitOutcome.objects.get(audit=self.audit)
        self.assertEqual((outcome.unit_key, outcome.outcome, outcome.attempts), (self.spec.unit_key, "succeeded", 1))

    def test_permanent_error_gives_up_immediately(self):
        unit = fake_unit(PermanentUnitError("https://shop.example.com/ answered with HTTP 404"))

        result = self.process(unit)

        self.assertEqual(result, "failed")
        unit.on_failure.assert_called_once()
        outcome = UnitOutcome.objects.get(audit=self.audit)
        self.assertIn("HTTP 404", outcome.error)
        self.audit.refresh_from_db()
        self.assertEqual(self.audit.jobs_failed, 1)

    def test_transient_error_is_raised_while_attempts_remain(self):
        unit = fake_unit(TransientUnitError("timed out"))

        with self.assertRaises(TransientUnitError):
            self.process(unit, attempt=2)

        unit.on_failure.assert_not_called()
        self.assertFalse(UnitOutcome.objects.exists())

    def test_last_attempt_gives_up(self):
        unit = fake_unit(TransientUnitError("timed out"))

        result = self.process(unit, attempt=3)

        self.assertEqual(result, "failed")
        unit.on_failure.assert_called_once()
        self.assertEqual(UnitOutcome.objects.get(audit=self.audit).attempts, 3)

    def test_soft_time_limit_counts_as_a_failed_attempt(self):
        unit = fake_unit(SoftTimeLimitExceeded())

        self.assertEqual(self.process(unit, attempt=3), "failed")

    def test_outcome_is_reported_when_diagnostic_cannot_be_written(self):
        """A broken on_failure must not keep the audit from reaching fan-in."""
        unit = fake_unit(PermanentUnitError("gone"))
        unit.on_failure.side_effect = RuntimeError("database unavailable")

        self.assertEqual(self.process(unit), "failed")
        self.assertEqual(UnitOutcome.objects.get(audit=self.audit).outcome, "failed")

    @patch("audits.tasks.REPORT_RETRY_WAIT", 0)
    def test_locked_database_on_last_attempt_still_reports(self):
        """The final failure report hits a locked database once and is retried."""
        real_report = CompletionTracker.report
        calls = []

        def locked_once(tracker, *args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise OperationalError("database is locked")
            return real_report(tracker, *args, **kwargs)

        unit = fake_unit(TransientUnitError("timed out"))
        with patch.object(CompletionTracker, "report", autospec=True, side_effect=locked_once):
            result = self.process(unit, attempt=3)

        self.assertEqual(result, "failed")
        self.assertEqual(len(calls), 2)
        outcome = UnitOutcome.objects.get(audit=self.audit)
        self.assertEqual((outcome.outcome, outcome.attempts), ("failed", 3))
        self.audit.refresh_from_db()
        self.assertEqual(self.audit.jobs_failed, 1)

    @patch("audits.tasks.REPORT_RETRY_WAIT", 0)
    def test_soft_time_limit_during_success_report_still_reports(self):
        real_report = CompletionTracker.report
        limits = [SoftTimeLimitExceeded()]

        def interrupted_once(tracker, *args, **kwargs):
            if limits:
                raise limits.pop()
            return real_report(tracker, *args, **kwargs)

        with patch.object(CompletionTracker, "report", autospec=True, side_effect=interrupted_once):
            result = self.process(fake_unit(), attempt=3)

        self.assertEqual(result, "succeeded")
        self.assertEqual(UnitOutcome.objects.get(audit=self.audit).outcome, "succeeded")

    @patch("audits.tasks.REPORT_RETRY_WAIT", 0)
    def test_report_gives_up_after_repeated_database_errors(self):
        unit = fake_unit()
        error = OperationalError("server closed the connection")
        with patch.object(CompletionTracker, "report", side_effect=error) as report:
            with self.assertRaises(OperationalError):
                self.process(unit)

        self.assertEqual(report.call_count, REPORT_ATTEMPTS)
        unit.execute.assert_called_once()

    def test_cancelled_audit_skips_work_but_reports(self):
        """Units of a cancelled audit do nothing and count as succeeded."""
        AuditOrchestrator().cancel(self.audit)
        unit = fake_unit()

        result = self.process(unit)

        self.assertEqual(result, "skipped")
        unit.execute.assert_not_called()
        self.assertEqual(UnitOutcome.objects.get(audit=self.audit).outcome, "succeeded")

    def test_stale_run_is_skipped(self):
        Audit.objects.filter(pk=self.audit.pk).update(run_number=2)
        unit = fake_unit()

        self.assertEqual(self.process(unit), "skipped")
        unit.execute.assert_not_called()
        self.assertFalse(UnitOutcome.objects.exists())

    def test_deleted_audit_is_skipped(self):
        spec = UnitSpec(UnitKind.METADATA, "00000000-0000-0000-0000-000000000000", 1, page_id=self.page.pk)

        self.assertEqual(self.process(fake_unit(), spec=spec), "skipped")


class RunAnalysisUnitTaskTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_running_audit(jobs_total=9)
        self.page = PageFactory.create_page(self.audit)

    def run_task(self, spec, unit):
        with patch("audits.tasks.build_unit", return_value=unit):
            return run_analysis_unit.delay(spec.to_payload()).get()

    def test_transient_failures_are_retried(self):
        spec = UnitSpec(UnitKind.PERFORMANCE, self.audit.pk, 1, page_id=self.page.pk, device_type="mobile")
        crash = TransientUnitError("lighthouse crashed")
        unit = fake_unit(crash, crash, UnitResult())

        result = self.run_task(spec, unit)

        self.assertEqual(result, "succeeded")
        self.assertEqual(unit.execute.call_count, 3)
        outcome = UnitOutcome.objects.get(audit=self.audit)
        self.assertEqual((outcome.outcome, outcome.attempts), ("succeeded", 3))

    def test_retried_task_finishes_successfully(self):
        spec = UnitSpec(UnitKind.METADATA, self.audit.pk, 1, page_id=self.page.pk)
        unit = fake_unit(TransientUnitError("connection reset"), UnitResult())

        with patch("audits.tasks.build_unit", return_value=unit):
            result = run_analysis_unit.delay(spec.to_payload())

        self.assertTrue(result.successful())
        self.assertEqual(result.get(), "succeeded")
        self.assertEqual(UnitOutcome.objects.get(audit=self.audit).attempts, 2)

    def test_gives_up_after_policy_attempts(self):
        """Checkout units get two attempts before the diagnostic is written."""
        spec = UnitSpec(UnitKind.CHECKOUT, self.audit.pk, 1)
        unit = fake_unit(TransientUnitError("net::ERR"), TransientUnitError("net::ERR"))

        result = self.run_task(spec, unit)

        self.assertEqual(result, "failed")
        self.assertEqual(unit.execute.call_count, 2)
        unit.on_failure.assert_called_once()
        self.audit.refresh_from_db()
        self.assertEqual(self.audit.jobs_failed, 1)

    def test_retry_countdown_is_capped(self):
        for retries in range(12):
            with self.subTest(retries=retries):
                self.assertLessEqual(retry_countdown(retries), 600)
                self.assertGreaterEqual(retry_countdown(retries), 0)


class DiscoverPagesTaskTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_audit(status="crawling")
        self.crawler = MagicMock()

    def run_task(self, audit_id=None):
        with patch("audits.services.get_crawler", return_value=self.crawler):
            return discover_pages.apply(args=[str(audit_id or self.audit.pk), 1]).get()

    def test_pages_are_persisted_and_units_queued(self):
        self.crawler.discover.return_value = [
            CrawledUrl("https://shop.example.com/", 200),
            CrawledUrl("https://shop.example.com/products", 200),
        ]

        with self.captureOnCommitCallbacks() as callbacks:
            result = self.run_task()

        self.assertEqual(result, 2)
        self.assertEqual(len(callbacks), 1)
        self.audit.refresh_from_db()
        self.assertEqual(self.audit.pages_crawled, 2)
        self.assertEqual(self.audit.jobs_total, 9)

    def test_unreachable_seed_fails_the_audit(self):
        self.crawler.discover.side_effect = SeedUnreachable("https://shop.example.com", "DNS lookup failed")

        self.assertEqual(self.run_task(), 0)

        self.audit.refresh_from_db()
        self.assertEqual(self.audit.status, Audit.Status.FAILED)
        self.assertEqual(self.audit.error_message, "Could not reach https://shop.example.com: DNS lookup failed")
        self.crawler.discover.assert_called_once()

    def test_crawler_errors_are_retried(self):
        self.crawler.discover.side_effect = [
            RuntimeError("connection pool full"),
            [CrawledUrl("https://shop.example.com/", 200)],
        ]

        self.assertEqual(self.run_task(), 1)
        self.assertEqual(self.crawler.discover.call_count, 2)

    def test_repeated_errors_fail_the_audit(self):
        self.crawler.discover.side_effect = RuntimeError("connection pool full")

        self.assertEqual(self.run_task(), 0)

        self.assertEqual(self.crawler.discover.call_count, 3)
        self.audit.refresh_from_db()
        self.assertEqual(self.audit.status, Audit.Status.FAILED)
        self.assertEqual(self.audit.error_message, "Page discovery failed: connection pool full")

    def test_deleted_audit(self):
        self.assertEqual(self.run_task("00000000-0000-0000-0000-000000000000"), 0)
        self.crawler.discover.assert_not_called()


class AggregateResultsTaskTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_running_audit(jobs_total=1, jobs_completed=1)

    def test_completes_the_audit(self):
        card = aggregate_results.apply(args=[str(self.audit.pk)]).get()

        self.audit.refresh_from_db()
        self.assertEqual(self.audit.status, Audit.Status.COMPLETED)
        self.assertEqual(card["overall_score"], self.audit.score)

    def test_missing_audit(self):
        self.assertIsNone(aggregate_results.apply(args=["00000000-0000-0000-0000-000000000000"]).get())

    def test_unexpected_error_fails_the_audit(self):
        with patch.object(AuditOrchestrator, "aggregate", side_effect=RuntimeError("connection lost")):
            self.assertIsNone(aggregate_results.apply(args=[str(self.audit.pk)]).get())

        self.audit.refresh_from_db()
        self.assertEqual(self.audit.status, Audit.Status.FAILED)
        self.assertEqual(self.audit.error_message, "Aggregation failed: connection lost")
