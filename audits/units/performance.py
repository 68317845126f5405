import logging

from django.db import transaction

from audits import services
from audits.exceptions import PermanentUnitError, TransientUnitError
from audits.findings import FindingDraft
from audits.models import Page, PerformanceSample
from audits.services.lighthouse import extract_metrics

from .base import AnalysisUnit, UnitKind, UnitResult

logger = logging.getLogger(__name__)


class PerformanceUnit(AnalysisUnit):
    kind = UnitKind.PERFORMANCE
    diagnostic_category = "performance"
    diagnostic_title = "Performance Analysis Failed"
    diagnostic_recommendation = "Check if Lighthouse CLI is properly installed and the page is accessible."

    def diagnostic_description(self, exc):
        return f"Failed to run performance analysis: {exc}"

    @property
    def device_type(self):
        return self.spec.device_type or PerformanceSample.DeviceType.MOBILE

    def execute(self) -> UnitResult:
        try:
            page = Page.objects.get(pk=self.spec.page_id)
        except Page.DoesNotExist as e:
            raise PermanentUnitError(f"Page {self.spec.page_id} no longer exists") from e

        report = services.get_lighthouse_runner().measure(page.url, self.device_type)
        if report is None:
            raise TransientUnitError(f"Lighthouse returned no report for {page.url} ({self.device_type})")

        metrics = extract_metrics(report)
        drafts = self.evaluate(metrics)

        with transaction.atomic():
            if not self.run_is_live():
                return UnitResult()
            sample, _ = PerformanceSample.objects.update_or_create(
                page=page,
                device_type=self.device_type,
                defaults={**metrics, "raw_report": report},
            )
            self.sink().record_many(drafts)

        logger.info(
            f"Measured {page.url} ({self.device_type}): score {metrics['performance_score']}, {len(drafts)} findings"
        )
        return UnitResult(findings=len(drafts), record=sample.pk)

    def evaluate(self, metrics):
        t = self.thresholds
        device = self.device_type.capitalize()
        drafts = []

        lcp = metrics.get("lcp")
        if lcp is not None:
            if lcp > t.lcp_poor:
                drafts.append(
                    FindingDraft(
                        category="performance",
                        severity="critical",
                        title=f"Poor LCP Score ({device})",
                        description=(
                            f"Largest Contentful Paint is {lcp}s, which is considered poor "
                            f"(should be < {t.lcp_good}s)."
                        ),
                        recommendation=(
                            "Optimize images, reduce server response times, eliminate render-blocking resources, "
                            "and use a CDN."
                        ),
                        metadata={"metric": "lcp", "value": lcp, "device": self.device_type},
                    )
                )
            elif lcp > t.lcp_good:
                drafts.append(
                    FindingDraft(
                        category="performance",
                        severity="high",
                        title=f"LCP Needs Improvement ({device})",
                        description=(
                            f"Largest Contentful Paint is {lcp}s, which needs improvement (should be < {t.lcp_good}s)."
                        ),
                        recommendation="Optimize images and reduce server response times.",
                        metadata={"metric": "lcp", "value": lcp, "device": self.device_type},
                    )
                )

        cls = metrics.get("cls")
        if cls is not None:
            if cls > t.cls_poor:
                drafts.append(
                    FindingDraft(
                        category="performance",
                        severity="high",
                        title=f"Poor CLS Score ({device})",
                        description=(
                            f"Cumulative Layout Shift is {cls}, which is considered poor (should be < {t.cls_good})."
                        ),
                        recommendation=(
                            "Include size attributes on images and video elements, avoid inserting content above "
                            "existing content, and use CSS transforms."
                        ),
                        metadata={"metric": "cls", "value": cls, "device": self.device_type},
                    )
                )
            elif cls > t.cls_good:
                drafts.append(
                    FindingDraft(
                        category="performance",
                        severity="medium",
                        title=f"CLS Needs Improvement ({device})",
                        description=(
                            f"Cumulative Layout Shift is {cls}, which needs improvement (should be < {t.cls_good})."
                        ),
                        recommendation="Add size attributes to images and avoid dynamic content insertion.",
                        metadata={"metric": "cls", "value": cls, "device": self.device_type},
                    )
                )

        score = metrics.get("performance_score")
        if score is not None:
            if score < t.performance_score_poor:
                drafts.append(
                    FindingDraft(
                        category="performance",
                        severity="critical",
                        title=f"Poor Performance Score ({device})",
                        description=f"Lighthouse performance score is {score}/100, which is poor.",
                        recommendation=(
                            "Review Lighthouse report for specific recommendations. Focus on optimizing images, "
                            "reducing JavaScript, and improving server response times."
                        ),
                        metadata={"score": score, "device": self.device_type},
                    )
                )
            elif score < t.performance_score_good:
                drafts.append(
                    FindingDraft(
                        category="performance",
                        severity="medium",
                        title=f"Performance Score Needs Improvement ({device})",
                        description=f"Lighthouse performance score is {score}/100.",
                        recommendation="Review Lighthouse report for optimization opportunities.",
                        metadata={"score": score, "device": self.device_type},
                    )
                )

        return drafts
