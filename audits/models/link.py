from django.db import models

from .base import AuditRecord


class LinkRecord(AuditRecord):
    class LinkType(models.TextChoices):
        INTERNAL = "internal", "Internal"
        EXTERNAL = "external", "External"
        ASSET = "asset", "Asset"

    audit = models.ForeignKey("audits.Audit", on_delete=models.CASCADE, related_name="link_records")
    source_page = models.ForeignKey("audits.Page", on_delete=models.CASCADE, related_name="link_records")
    destination_url = models.TextField()
    link_text = models.TextField(blank=True, default="")
    link_type = models.CharField(max_length=10, choices=LinkType.choices)
    status_code = models.PositiveSmallIntegerField(null=True, blank=True)
    is_broken = models.BooleanField(default=False, db_index=True)
    checked_at = models.DateTimeField(null=True, blank=True)

    class Meta(AuditRecord.Meta):
        indexes = [
            models.Index(fields=["audit", "is_broken"], name="audits_link_audit_broken_idx"),
        ]

    def __str__(self):
        return self.destination_url
