"""
Audit model - one requested audit of an e-commerce site.

The row doubles as the pipeline's bookkeeping record: the completion counters
live here and are only ever changed under a row lock (see ``audits.tracker``).
"""

from django.db import models
from django.db.models import F, Q

from .base import AuditRecord


class Audit(AuditRecord):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CRAWLING = "crawling", "Crawling"
        ANALYZING = "analyzing", "Analyzing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    PROCESSING_STATUSES = (Status.PENDING, Status.CRAWLING, Status.ANALYZING)
    RUNNING_STATUSES = (Status.CRAWLING, Status.ANALYZING)

    url = models.URLField(max_length=2048, help_text="Seed URL the crawl starts from")
    domain = models.CharField(max_length=255, db_index=True, help_text="Host part of the seed URL")
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    max_pages = models.PositiveIntegerField(default=50, help_text="Upper bound on discovered pages")
    pages_crawled = models.PositiveIntegerField(default=0)
    jobs_total = models.PositiveIntegerField(default=0, help_text="Analysis units dispatched for this run")
    jobs_completed = models.PositiveIntegerField(default=0)
    jobs_failed = models.PositiveIntegerField(default=0)
    current_step = models.CharField(max_length=255, blank=True, default="")
    score = models.PositiveSmallIntegerField(null=True, blank=True, help_text="Overall score 0-100")
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")
    config = models.JSONField(default=dict, blank=True, help_text="Per-audit overrides such as checkout_paths")

    run_number = models.PositiveIntegerField(
        default=1,
        help_text="Generation counter, bumped on restart so late work from an earlier run is ignored",
    )
    fanned_in_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the last unit of this run reported and aggregation was triggered",
    )

    class Meta(AuditRecord.Meta):
        constraints = [
            models.CheckConstraint(
                condition=Q(jobs_total__gte=F("jobs_completed") + F("jobs_failed")),
                name="audit_job_counters_within_total",
            ),
            models.CheckConstraint(
                condition=Q(score__isnull=True) | Q(score__lte=100),
                name="audit_score_within_range",
            ),
        ]

    def __str__(self):
        return f"{self.domain} ({self.get_status_display()})"

    @property
    def is_processing(self):
        return self.status in self.PROCESSING_STATUSES

    @property
    def is_running(self):
        return self.status in self.RUNNING_STATUSES

    @property
    def is_completed(self):
        return self.status == self.Status.COMPLETED

    @property
    def is_failed(self):
        return self.status == self.Status.FAILED

    @property
    def jobs_finished(self):
        return self.jobs_completed + self.jobs_failed

    @property
    def progress_percentage(self):
        if not self.jobs_total:
            return 0
        return round(self.jobs_finished / self.jobs_total * 100, 1)

    @property
    def has_failed_jobs(self):
        return self.jobs_failed > 0

    def critical_findings(self):
        return self.findings.filter(severity="critical")

    def high_findings(self):
        return self.findings.filter(severity="high")

    def broken_links(self):
        return self.link_records.filter(is_broken=True)
