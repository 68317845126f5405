from django.db import models

from .base import AuditRecord


class PerformanceSample(AuditRecord):
    """One Lighthouse measurement of a page on one device."""

    class DeviceType(models.TextChoices):
        MOBILE = "mobile", "Mobile"
        DESKTOP = "desktop", "Desktop"

    page = models.ForeignKey("audits.Page", on_delete=models.CASCADE, related_name="performance_samples")
    device_type = models.CharField(max_length=10, choices=DeviceType.choices)

    # Core Web Vitals, lcp and fcp in seconds
    lcp = models.FloatField(null=True, blank=True)
    fid = models.FloatField(null=True, blank=True)
    cls = models.FloatField(null=True, blank=True)
    fcp = models.FloatField(null=True, blank=True)
    ttfb = models.FloatField(null=True, blank=True)
    speed_index = models.FloatField(null=True, blank=True)
    total_blocking_time = models.FloatField(null=True, blank=True)

    performance_score = models.PositiveSmallIntegerField(null=True, blank=True)
    accessibility_score = models.PositiveSmallIntegerField(null=True, blank=True)
    seo_score = models.PositiveSmallIntegerField(null=True, blank=True)
    best_practices_score = models.PositiveSmallIntegerField(null=True, blank=True)

    raw_report = models.JSONField(null=True, blank=True)

    class Meta(AuditRecord.Meta):
        constraints = [
            models.UniqueConstraint(fields=["page", "device_type"], name="performance_sample_unique_device"),
        ]

    def __str__(self):
        return f"{self.page} ({self.device_type}): {self.performance_score}"
