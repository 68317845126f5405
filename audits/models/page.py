from django.db import models

from .base import AuditRecord


class Page(AuditRecord):
    audit = models.ForeignKey("audits.Audit", on_delete=models.CASCADE, related_name="pages")
    url = models.URLField(max_length=2048)
    position = models.PositiveIntegerField(default=0, help_text="Discovery order within the audit")
    status_code = models.PositiveSmallIntegerField(null=True, blank=True)
    title = models.TextField(blank=True, default="")
    meta_description = models.TextField(blank=True, default="")
    h1 = models.TextField(blank=True, default="")
    load_time = models.FloatField(null=True, blank=True, help_text="Seconds taken to fetch the HTML")
    screenshot_path = models.CharField(max_length=500, blank=True, default="")
    html_excerpt = models.TextField(blank=True, default="", help_text="First 2000 characters of the HTML")
    crawled_at = models.DateTimeField(null=True, blank=True)

    HTML_EXCERPT_LENGTH = 2000

    class Meta:
        ordering = ["position", "created_at"]
        constraints = [
            models.UniqueConstraint(fields=["audit", "url"], name="page_unique_url_per_audit"),
        ]

    def __str__(self):
        return self.url
