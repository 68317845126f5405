from django.db import models

from .base import AuditRecord


class CheckoutStepResult(AuditRecord):
    audit = models.ForeignKey("audits.Audit", on_delete=models.CASCADE, related_name="checkout_steps")
    step_number = models.PositiveSmallIntegerField()
    step_name = models.CharField(max_length=255)
    url = models.URLField(max_length=2048)
    screenshot_path = models.CharField(max_length=500, blank=True, default="")
    form_fields_count = models.PositiveIntegerField(default=0)
    errors = models.JSONField(default=list, blank=True)
    load_time = models.PositiveIntegerField(null=True, blank=True, help_text="Milliseconds")
    successful = models.BooleanField(default=False)

    class Meta:
        ordering = ["step_number"]
        constraints = [
            models.UniqueConstraint(fields=["audit", "step_number"], name="checkout_step_unique_number"),
        ]

    def __str__(self):
        return f"Step {self.step_number}: {self.step_name}"
