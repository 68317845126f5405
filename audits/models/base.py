import uuid

from django.db import models
from django.utils import timezone


class AuditRecord(models.Model):
    """Base for every row an audit run writes: UUID key plus creation and update times."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        db_index=True,
        help_text="When the row was written",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        db_index=True,
        help_text="When the row last changed",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]
