from unittest.mock import MagicMock, patch

from django.test import TestCase

from audits.conf import build_audit_settings
from audits.exceptions import TransientUnitError
from audits.models import Audit, Finding, PerformanceSample
from audits.tests.factories import AuditFactory, PageFactory, ReportFactory
from audits.units import PerformanceUnit, UnitKind, UnitSpec


def good_metrics(**overrides):
    metrics = {"lcp": 1.8, "cls": 0.05, "performance_score": 90}
    metrics.update(overrides)
    return metrics


class PerformanceEvaluateTests(TestCase):
    def unit(self, device_type):
        spec = UnitSpec(UnitKind.PERFORMANCE, "audit", 1, page_id="page", device_type=device_type)
        return PerformanceUnit(spec, build_audit_settings())

    def test_good_metrics_have_no_findings(self):
        self.assertEqual(self.unit("mobile").evaluate(good_metrics()), [])

    def test_poor_lcp_on_desktop(self):
        """LCP of 4.2s on desktop is critical and names the device."""
        drafts = self.unit("desktop").evaluate(good_metrics(lcp=4.2))

        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].severity, "critical")
        self.assertIn("Poor LCP Score (Desktop)", drafts[0].title)

    def test_lcp_needs_improvement(self):
        drafts = self.unit("mobile").evaluate(good_metrics(lcp=3.0))

        self.assertEqual([(d.title, d.severity) for d in drafts], [("LCP Needs Improvement (Mobile)", "high")])

    def test_cls_rules(self):
        poor = self.unit("mobile").evaluate(good_metrics(cls=0.3))
        middling = self.unit("mobile").evaluate(good_metrics(cls=0.2))

        self.assertEqual([(d.title, d.severity) for d in poor], [("Poor CLS Score (Mobile)", "high")])
        self.assertEqual([(d.title, d.severity) for d in middling], [("CLS Needs Improvement (Mobile)", "medium")])

    def test_performance_score_rules(self):
        poor = self.unit("mobile").evaluate(good_metrics(performance_score=40))
        middling = self.unit("mobile").evaluate(good_metrics(performance_score=60))

        self.assertEqual([d.severity for d in poor], ["critical"])
        self.assertEqual([d.severity for d in middling], ["medium"])

    def test_missing_metrics_are_skipped(self):
        self.assertEqual(self.unit("mobile").evaluate({"lcp": None, "cls": None, "performance_score": None}), [])


class PerformanceUnitExecuteTests(TestCase):
    def setUp(self):
        self.audit = AuditFactory.create_running_audit()
        self.page = PageFactory.create_page(self.audit)
        self.spec = UnitSpec(UnitKind.PERFORMANCE, self.audit.pk, 1, page_id=self.page.pk, device_type="desktop")
        self.runner = MagicMock()

    def test_execute_stores_sample_and_findings(self):
        self.runner.measure.return_value = ReportFactory.lighthouse_report(performance=0.45, lcp_ms=4500)

        with patch("audits.services.get_lighthouse_runner", return_value=self.runner):
            PerformanceUnit(self.spec).execute()

        self.runner.measure.assert_called_once_with(self.page.url, "desktop")
        sample = PerformanceSample.objects.get(page=self.page, device_type="desktop")
        self.assertEqual(sample.performance_score, 45)
        self.assertAlmostEqual(sample.lcp, 4.5)
        self.assertIsNotNone(sample.raw_report)
        titles = set(Finding.objects.filter(page=self.page).values_list("title", flat=True))
        self.assertEqual(titles, {"Poor LCP Score (Desktop)", "Poor Performance Score (Desktop)"})

    def test_rerun_replaces_sample(self):
        """Running the same unit twice keeps one sample per page and device."""
        self.runner.measure.return_value = ReportFactory.lighthouse_report()

        with patch("audits.services.get_lighthouse_runner", return_value=self.runner):
            PerformanceUnit(self.spec).execute()
            PerformanceUnit(self.spec).execute()

        self.assertEqual(PerformanceSample.objects.filter(page=self.page).count(), 1)

    def test_no_report_is_transient(self):
        self.runner.measure.return_value = None

        with patch("audits.services.get_lighthouse_runner", return_value=self.runner):
            with self.assertRaises(TransientUnitError):
                PerformanceUnit(self.spec).execute()

        self.assertFalse(PerformanceSample.objects.exists())

    def test_cancelled_audit_gets_no_sample(self):
        """The audit is cancelled while Lighthouse is running."""

        def measure(url, device_type):
            Audit.objects.filter(pk=self.audit.pk).update(status=Audit.Status.FAILED)
            return ReportFactory.lighthouse_report(performance=0.45, lcp_ms=4500)

        self.runner.measure.side_effect = measure

        with patch("audits.services.get_lighthouse_runner", return_value=self.runner):
            result = PerformanceUnit(self.spec).execute()

        self.assertIsNone(result.record)
        self.assertFalse(PerformanceSample.objects.exists())
        self.assertFalse(Finding.objects.filter(page=self.page).exists())
