from django.db import models

from .base import AuditRecord


class UnitOutcome(AuditRecord):
    """
    Terminal report of one analysis unit within one audit generation.

    The unique constraint is what makes accounting idempotent: a redelivered
    task that reports again hits the existing row instead of bumping the
    audit counters a second time.
    """

    class Outcome(models.TextChoices):
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"

    audit = models.ForeignKey("audits.Audit", on_delete=models.CASCADE, related_name="unit_outcomes")
    run_number = models.PositiveIntegerField()
    unit_key = models.CharField(max_length=255)
    outcome = models.CharField(max_length=10, choices=Outcome.choices)
    error = models.TextField(blank=True, default="")
    attempts = models.PositiveSmallIntegerField(default=1)

    class Meta(AuditRecord.Meta):
        constraints = [
            models.UniqueConstraint(
                fields=["audit", "run_number", "unit_key"],
                name="unit_outcome_unique_per_run",
            ),
        ]

    def __str__(self):
        return f"{self.unit_key}: {self.outcome}"
