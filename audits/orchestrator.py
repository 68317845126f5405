"""
Audit orchestrator.

Owns the audit state machine::

    pending -> crawling -> analyzing -> completed
    pending | crawling | analyzing -> failed

and sequences one run of the pipeline: discovery, fan-out of the analysis
units, and the single aggregation that scores the audit once the completion
tracker reports every unit as finished. ``completed`` and ``failed`` are
terminal; ``restart`` is the only way back to ``pending``.

State checks that can reject a request (start, cancel, restart) happen under
the audit row lock and raise before anything is written. Celery tasks are
only ever sent from ``transaction.on_commit`` so a worker never sees rows the
dispatching transaction has not committed yet.
"""

import logging
from typing import List, Optional
from urllib.parse import urlparse

from django.db import transaction
from django.db.models import Avg, Count
from django.utils import timezone

from audits.conf import AuditSettings, get_audit_settings
from audits.discovery import PageDiscovery
from audits.exceptions import (
    AlreadyCompleted,
    AlreadyProcessing,
    IncomparableAudits,
    InvalidAuditUrl,
    NotProcessing,
    RestartRequired,
    ScoringError,
)
from audits.models import Audit, Page, PerformanceSample
from audits.scoring import ScoreCard, ScoringEngine, collect_audit_data, grade_for, label_for, score_change
from audits.tracker import CompletionTracker
from audits.units import plan_units
from audits.units.base import UnitKind, get_policy

logger = logging.getLogger(__name__)

Status = Audit.Status

RESET_FIELDS = {
    "status": Status.PENDING,
    "score": None,
    "started_at": None,
    "completed_at": None,
    "pages_crawled": 0,
    "jobs_total": 0,
    "jobs_completed": 0,
    "jobs_failed": 0,
    "current_step": "",
    "error_message": "",
    "fanned_in_at": None,
}

CANCELLED_MESSAGE = "Cancelled"


def extract_domain(url: str) -> Optional[str]:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return parsed.hostname


class AuditOrchestrator:
    def __init__(
        self,
        tracker: Optional[CompletionTracker] = None,
        discovery: Optional[PageDiscovery] = None,
        scoring: Optional[ScoringEngine] = None,
        audit_settings: Optional[AuditSettings] = None,
    ):
        self.settings = audit_settings or get_audit_settings()
        self.tracker = tracker or CompletionTracker(on_complete=self.on_fan_out_complete)
        self.discovery = discovery or PageDiscovery(audit_settings=self.settings)
        self.scoring = scoring or ScoringEngine(self.settings)

    # Lifecycle

    def create_audit(self, url: str, max_pages: Optional[int] = None, config: Optional[dict] = None) -> Audit:
        url = (url or "").strip()
        domain = extract_domain(url)
        if not domain:
            raise InvalidAuditUrl(f"Invalid URL provided: {url!r}")
        if max_pages is not None and max_pages < 1:
            raise ValueError("max_pages must be at least 1")

        audit = Audit.objects.create(
            url=url,
            domain=domain,
            max_pages=max_pages or self.settings.default_max_pages,
            config=config or {},
        )
        logger.info(f"Created audit {audit.pk} for {url} (max {audit.max_pages} pages)")
        return audit

    def start(self, audit: Audit) -> Audit:
        from audits import tasks

        with transaction.atomic():
            locked = Audit.objects.select_for_update().get(pk=audit.pk)
            if locked.is_running:
                raise AlreadyProcessing(locked, f"Audit {locked.pk} is already processing")
            if locked.is_completed:
                raise AlreadyCompleted(locked, f"Audit {locked.pk} has already been completed")
            if locked.is_failed:
                raise RestartRequired(locked, f"Audit {locked.pk} has failed and must be restarted")

            locked.status = Status.CRAWLING
            locked.started_at = timezone.now()
            locked.current_step = "Discovering pages"
            locked.save(update_fields=["status", "started_at", "current_step", "updated_at"])

            audit_id, run_number = str(locked.pk), locked.run_number
            transaction.on_commit(
                lambda: tasks.discover_pages.apply_async(
                    args=[audit_id, run_number],
                    queue=get_policy(UnitKind.DISCOVERY).queue,
                )
            )

        self._copy_state(locked, audit)
        logger.info(f"Started audit {audit.pk} for {audit.url} (run {audit.run_number})")
        return audit

    def cancel(self, audit: Audit) -> Audit:
        with transaction.atomic():
            locked = Audit.objects.select_for_update().get(pk=audit.pk)
            if not locked.is_processing:
                raise NotProcessing(locked, f"Audit {locked.pk} is not currently processing")
            locked.status = Status.FAILED
            locked.completed_at = timezone.now()
            locked.error_message = CANCELLED_MESSAGE
            locked.current_step = CANCELLED_MESSAGE
            locked.save(update_fields=["status", "completed_at", "error_message", "current_step", "updated_at"])

        self._copy_state(locked, audit)
        logger.info(f"Cancelled audit {audit.pk}")
        return audit

    def restart(self, audit: Audit, start: bool = False) -> Audit:
        with transaction.atomic():
            locked = Audit.objects.select_for_update().get(pk=audit.pk)
            if locked.is_running:
                raise AlreadyProcessing(locked, f"Audit {locked.pk} is already processing")

            bump = locked.status != Status.PENDING
            self._delete_children(locked)
            for field, value in RESET_FIELDS.items():
                setattr(locked, field, value)
            if bump:
                locked.run_number += 1
            locked.save()

        self._copy_state(locked, audit)
        logger.info(f"Restarted audit {audit.pk} (run {audit.run_number})")
        if start:
            self.start(audit)
        return audit

    def delete(self, audit: Audit) -> None:
        audit_id = audit.pk
        with transaction.atomic():
            locked = Audit.objects.select_for_update().get(pk=audit_id)
            if locked.is_processing:
                self.cancel(locked)
            self._delete_children(locked)
            locked.delete()
        logger.info(f"Deleted audit {audit_id}")

    def fail(self, audit_id, message: str, run_number: Optional[int] = None) -> bool:
        """Move a processing audit to ``failed``. Returns False when it was already terminal."""
        qs = Audit.objects.filter(pk=audit_id, status__in=Audit.PROCESSING_STATUSES)
        if run_number is not None:
            qs = qs.filter(run_number=run_number)
        updated = qs.update(
            status=Status.FAILED,
            error_message=message,
            completed_at=timezone.now(),
            current_step="Failed",
            updated_at=timezone.now(),
        )
        if updated:
            logger.error(f"Audit {audit_id} failed: {message}")
        return bool(updated)

    # Pipeline steps

    def run_discovery(self, audit_id, run_number: int) -> List[Page]:
        audit = Audit.objects.get(pk=audit_id)
        if not self._ready_for_discovery(audit, run_number):
            return []

        discovered = self.discovery.crawl(audit)

        with transaction.atomic():
            audit = Audit.objects.select_for_update().get(pk=audit_id)
            if not self._ready_for_discovery(audit, run_number):
                return []
            pages = self.discovery.persist(audit, discovered)
            self.on_discovery_complete(audit, pages)
        return pages

    def _ready_for_discovery(self, audit, run_number):
        if audit.run_number != run_number or audit.status != Status.CRAWLING:
            logger.info(f"Skipping discovery for audit {audit.pk}: status {audit.status}, run {audit.run_number}")
            return False
        if audit.jobs_total:
            logger.info(f"Skipping discovery for audit {audit.pk}: units already dispatched")
            return False
        return True

    def on_discovery_complete(self, audit: Audit, pages: List[Page]) -> None:
        if not audit.is_processing:
            logger.info(f"Audit {audit.pk} is no longer processing, not dispatching units")
            return

        specs = plan_units(audit, pages)
        audit.pages_crawled = len(pages)
        audit.current_step = f"Analyzing {len(pages)} pages"
        audit.save(update_fields=["pages_crawled", "current_step", "updated_at"])
        self.tracker.register(audit, len(specs))

        transaction.on_commit(lambda: self.dispatch_units(specs))
        logger.info(f"Discovered {len(pages)} pages for audit {audit.pk}, dispatching {len(specs)} units")

    def dispatch_units(self, specs) -> None:
        from audits import tasks

        for spec in specs:
            policy = spec.policy
            tasks.run_analysis_unit.apply_async(
                args=[spec.to_payload()],
                queue=policy.queue,
                soft_time_limit=policy.soft_time_limit,
                time_limit=policy.time_limit,
            )

    def mark_analyzing(self, audit_id, run_number: int) -> bool:
        updated = Audit.objects.filter(pk=audit_id, run_number=run_number, status=Status.CRAWLING).update(
            status=Status.ANALYZING,
            current_step="Analyzing pages",
            updated_at=timezone.now(),
        )
        return bool(updated)

    def on_fan_out_complete(self, audit_id) -> None:
        from audits import tasks

        policy = get_policy(UnitKind.AGGREGATION)
        tasks.aggregate_results.apply_async(
            args=[str(audit_id)],
            queue=policy.queue,
            soft_time_limit=policy.soft_time_limit,
            time_limit=policy.time_limit,
        )

    def aggregate(self, audit_id) -> Optional[ScoreCard]:
        audit = Audit.objects.get(pk=audit_id)
        if not audit.is_processing:
            logger.info(f"Audit {audit_id} is {audit.status}, skipping aggregation")
            return None

        try:
            card = self.scoring.score(collect_audit_data(audit))
        except ScoringError as e:
            logger.error(f"Scoring failed for audit {audit_id}: {e}", exc_info=True)
            self.fail(audit_id, str(e), run_number=audit.run_number)
            return None

        with transaction.atomic():
            locked = Audit.objects.select_for_update().get(pk=audit_id)
            if locked.run_number != audit.run_number or not locked.is_processing:
                logger.info(f"Audit {audit_id} changed while scoring, discarding score")
                return None
            locked.score = card.overall_score
            locked.status = Status.COMPLETED
            locked.completed_at = timezone.now()
            locked.current_step = "Completed"
            locked.save(update_fields=["score", "status", "completed_at", "current_step", "updated_at"])

        logger.info(f"Audit {audit_id} completed with score {card.overall_score} ({card.grade})")
        return card

    # Read helpers

    def summary(self, audit: Audit) -> dict:
        findings = audit.findings.all()
        by_category = dict(findings.values_list("category").annotate(total=Count("id")).order_by())
        by_severity = dict(findings.values_list("severity").annotate(total=Count("id")).order_by())
        return {
            "id": str(audit.pk),
            "url": audit.url,
            "domain": audit.domain,
            "status": audit.status,
            "current_step": audit.current_step,
            "progress": audit.progress_percentage,
            "score": audit.score,
            "grade": grade_for(audit.score) if audit.score is not None else None,
            "label": label_for(audit.score) if audit.score is not None else None,
            "total_pages": audit.pages.count(),
            "total_findings": findings.count(),
            "critical_findings": audit.critical_findings().count(),
            "high_findings": audit.high_findings().count(),
            "total_links": audit.link_records.count(),
            "broken_links": audit.broken_links().count(),
            "jobs": {
                "total": audit.jobs_total,
                "completed": audit.jobs_completed,
                "failed": audit.jobs_failed,
            },
            "findings_by_category": by_category,
            "findings_by_severity": by_severity,
            "error_message": audit.error_message,
        }

    def compare(self, current: Audit, previous: Audit) -> dict:
        if current.domain != previous.domain:
            raise IncomparableAudits(f"Cannot compare audits of {current.domain} and {previous.domain}")
        if not (current.is_completed and previous.is_completed):
            raise IncomparableAudits("Only completed audits can be compared")

        current_performance = self._average_performance(current)
        previous_performance = self._average_performance(previous)
        performance_delta = None
        if current_performance is not None and previous_performance is not None:
            performance_delta = round(current_performance - previous_performance, 2)

        return {
            "score_change": score_change(current.score, previous.score),
            "findings_change": current.findings.count() - previous.findings.count(),
            "critical_findings_change": current.critical_findings().count() - previous.critical_findings().count(),
            "broken_links_change": current.broken_links().count() - previous.broken_links().count(),
            "performance_change": {
                "current": current_performance,
                "previous": previous_performance,
                "change": performance_delta,
            },
        }

    def _average_performance(self, audit):
        average = PerformanceSample.objects.filter(page__audit=audit).aggregate(avg=Avg("performance_score"))["avg"]
        return round(average, 2) if average is not None else None

    def _delete_children(self, audit):
        # Pages cascade to their samples, links and page-level findings
        audit.findings.all().delete()
        audit.link_records.all().delete()
        audit.checkout_steps.all().delete()
        audit.unit_outcomes.all().delete()
        audit.pages.all().delete()

    @staticmethod
    def _copy_state(source, target):
        if source is target:
            return
        for field in source._meta.concrete_fields:
            setattr(target, field.attname, getattr(source, field.attname))
