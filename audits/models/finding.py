from django.db import models

from .base import AuditRecord


class Finding(AuditRecord):
    """
    One detected problem. Rows are append-only and are written exclusively
    through ``audits.findings.FindingSink``.
    """

    class Category(models.TextChoices):
        PERFORMANCE = "performance", "Performance"
        MOBILE = "mobile", "Mobile"
        SEO = "seo", "SEO"
        CHECKOUT = "checkout", "Checkout"
        LINKS = "links", "Links"
        ACCESSIBILITY = "accessibility", "Accessibility"

    class Severity(models.TextChoices):
        CRITICAL = "critical", "Critical"
        HIGH = "high", "High"
        MEDIUM = "medium", "Medium"
        LOW = "low", "Low"
        INFO = "info", "Info"

    audit = models.ForeignKey("audits.Audit", on_delete=models.CASCADE, related_name="findings")
    page = models.ForeignKey(
        "audits.Page",
        on_delete=models.CASCADE,
        related_name="findings",
        null=True,
        blank=True,
    )
    category = models.CharField(max_length=20, choices=Category.choices, db_index=True)
    severity = models.CharField(max_length=10, choices=Severity.choices, db_index=True)
    title = models.CharField(max_length=255)
    description = models.TextField()
    recommendation = models.TextField(blank=True, default="")
    affected_element = models.TextField(blank=True, default="")
    metadata = models.JSONField(null=True, blank=True)

    class Meta(AuditRecord.Meta):
        indexes = [
            models.Index(fields=["audit", "category"], name="audits_find_audit_cat_idx"),
            models.Index(fields=["audit", "severity"], name="audits_find_audit_sev_idx"),
        ]

    def __str__(self):
        return f"[{self.severity}] {self.title}"
