"""
Completion tracker.

Counts terminal unit outcomes against the number of units dispatched and
decides, exactly once per audit run, that the fan-out is finished.

Every report runs inside one transaction holding the audit row lock
(``select_for_update``). Counting, the comparison with ``jobs_total`` and
stamping ``fanned_in_at`` therefore happen as a single step, so two workers
reporting the last two units at the same moment cannot both see "done".
``UnitOutcome`` rows make a repeated report of the same unit a no-op, which
is what lets units run with ``acks_late`` and be redelivered.
"""

import logging
from typing import Callable, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from audits.models import Audit, UnitOutcome
from audits.units.base import UnitSpec

logger = logging.getLogger(__name__)

SUCCEEDED = UnitOutcome.Outcome.SUCCEEDED
FAILED = UnitOutcome.Outcome.FAILED


class CompletionTracker:
    def __init__(self, on_complete: Optional[Callable] = None):
        self._on_complete = on_complete

    def on_complete(self, audit_id):
        if self._on_complete is not None:
            return self._on_complete(audit_id)
        # Imported late, the orchestrator depends on this module
        from audits.orchestrator import AuditOrchestrator

        return AuditOrchestrator().on_fan_out_complete(audit_id)

    def register(self, audit: Audit, total: int) -> None:
        Audit.objects.filter(pk=audit.pk, run_number=audit.run_number).update(
            jobs_total=total,
            jobs_completed=0,
            jobs_failed=0,
            fanned_in_at=None,
        )
        audit.jobs_total = total
        audit.jobs_completed = 0
        audit.jobs_failed = 0
        audit.fanned_in_at = None
        logger.info(f"Registered {total} units for audit {audit.pk} (run {audit.run_number})")

    def report(self, spec: UnitSpec, outcome: str, error: str = "", attempts: int = 1) -> bool:
        """Record a unit's terminal outcome. Returns True when this report completed the fan-out."""
        with transaction.atomic():
            try:
                audit = Audit.objects.select_for_update().get(pk=spec.audit_id)
            except Audit.DoesNotExist:
                logger.info(f"Dropping report for {spec}: audit no longer exists")
                return False

            if audit.run_number != spec.run_number:
                logger.info(f"Dropping stale report for {spec}: audit is on run {audit.run_number}")
                return False

            if audit.jobs_finished >= audit.jobs_total:
                logger.warning(
                    f"Ignoring report for {spec}: {audit.jobs_finished}/{audit.jobs_total} units already reported"
                )
                return False

            try:
                with transaction.atomic():
                    UnitOutcome.objects.create(
                        audit=audit,
                        run_number=spec.run_number,
                        unit_key=spec.unit_key,
                        outcome=outcome,
                        error=error or "",
                        attempts=attempts,
                    )
            except IntegrityError:
                logger.info(f"Duplicate report for {spec} ignored")
                return False

            if outcome == FAILED:
                audit.jobs_failed += 1
            else:
                audit.jobs_completed += 1
            audit.current_step = f"Analyzed {audit.jobs_finished} of {audit.jobs_total} units"
            update_fields = ["jobs_completed", "jobs_failed", "current_step", "updated_at"]

            fired = False
            if audit.jobs_finished == audit.jobs_total and audit.fanned_in_at is None:
                audit.fanned_in_at = timezone.now()
                update_fields.append("fanned_in_at")
                if audit.is_processing:
                    audit.current_step = "Calculating score"
                    fired = True
                    audit_id = audit.pk
                    transaction.on_commit(lambda: self.on_complete(audit_id))

            audit.save(update_fields=update_fields)

        if fired:
            logger.info(f"All {audit.jobs_total} units reported for audit {audit.pk}, aggregation scheduled")
        return fired
