import logging

from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded
from celery.utils.time import get_exponential_backoff_interval
from django.db import InterfaceError, OperationalError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from audits.exceptions import PermanentUnitError, SeedUnreachable
from audits.models import Audit, UnitOutcome
from audits.orchestrator import AuditOrchestrator
from audits.units import UnitKind, UnitSpec, build_unit, get_policy

logger = logging.getLogger(__name__)

RETRY_BACKOFF_FACTOR = 2
RETRY_BACKOFF_MAX = 600  # Max 10 minutes between retries

REPORT_ATTEMPTS = 5
REPORT_RETRY_WAIT = 0.5

SUCCEEDED = UnitOutcome.Outcome.SUCCEEDED
FAILED = UnitOutcome.Outcome.FAILED
SKIPPED = "skipped"


def retry_countdown(retries: int) -> int:
    return get_exponential_backoff_interval(
        factor=RETRY_BACKOFF_FACTOR,
        retries=retries,
        maximum=RETRY_BACKOFF_MAX,
        full_jitter=True,
    )


def report_outcome(tracker, spec: UnitSpec, outcome: str, **kwargs) -> bool:
    """
    Report a terminal outcome, retrying connection and lock errors and a soft
    time limit that fires mid-report.

    The unit's work is done at this point and its attempt budget may be spent,
    so a lost report would leave the audit short of fan-in for good.
    """
    retrying = Retrying(
        stop=stop_after_attempt(REPORT_ATTEMPTS),
        wait=wait_exponential(multiplier=REPORT_RETRY_WAIT, max=10),
        retry=retry_if_exception_type((OperationalError, InterfaceError, SoftTimeLimitExceeded)),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(f"Retrying {outcome} report for {spec} (attempt {attempt.retry_state.attempt_number})")
            return tracker.report(spec, outcome, **kwargs)


def process_unit(spec: UnitSpec, attempt: int = 1, orchestrator: AuditOrchestrator = None) -> str:
    """
    Run one analysis unit attempt and report its terminal outcome.

    Returns the outcome that was reported. Re-raises the unit's exception when
    the failure is retryable and the attempt budget is not spent yet; the
    caller is expected to schedule the next attempt.
    """
    orchestrator = orchestrator or AuditOrchestrator()
    tracker = orchestrator.tracker
    policy = spec.policy

    audit = Audit.objects.filter(pk=spec.audit_id).only("status", "run_number").first()
    if audit is None:
        logger.info(f"Skipping {spec}: audit no longer exists")
        return SKIPPED
    if audit.run_number != spec.run_number or not audit.is_processing:
        logger.info(f"Skipping {spec}: audit is {audit.status} on run {audit.run_number}")
        report_outcome(tracker, spec, SUCCEEDED, attempts=attempt)
        return SKIPPED

    orchestrator.mark_analyzing(spec.audit_id, spec.run_number)
    unit = build_unit(spec, orchestrator.settings)

    try:
        result = unit.execute()
    except PermanentUnitError as exc:
        return _give_up(unit, tracker, spec, exc, attempt)
    except (Exception, SoftTimeLimitExceeded) as exc:
        if attempt < policy.max_attempts:
            logger.warning(f"Unit {spec} attempt {attempt}/{policy.max_attempts} failed: {exc}")
            raise
        return _give_up(unit, tracker, spec, exc, attempt)

    report_outcome(tracker, spec, SUCCEEDED, attempts=attempt)
    logger.info(f"Unit {spec} succeeded with {result.findings} findings")
    return SUCCEEDED


def _give_up(unit, tracker, spec, exc, attempt):
    logger.error(f"Unit {spec} failed permanently after {attempt} attempt(s): {exc}", exc_info=exc)
    try:
        unit.on_failure(exc)
    except Exception:
        # The outcome must still be reported or the audit never reaches fan-in
        logger.error(f"Could not record diagnostic finding for {spec}", exc_info=True)
    report_outcome(tracker, spec, FAILED, error=str(exc), attempts=attempt)
    return FAILED


@shared_task(bind=True, acks_late=True, max_retries=None)
def run_analysis_unit(self, payload: dict):
    spec = UnitSpec.from_payload(payload)
    policy = spec.policy
    try:
        return process_unit(spec, attempt=self.request.retries + 1)
    except (Exception, SoftTimeLimitExceeded) as exc:
        raise self.retry(
            exc=exc,
            countdown=retry_countdown(self.request.retries),
            max_retries=policy.max_attempts - 1,
        )


@shared_task(bind=True, acks_late=True, max_retries=None)
def discover_pages(self, audit_id: str, run_number: int):
    policy = get_policy(UnitKind.DISCOVERY)
    orchestrator = AuditOrchestrator()
    try:
        pages = orchestrator.run_discovery(audit_id, run_number)
    except Audit.DoesNotExist:
        logger.info(f"Audit {audit_id} was deleted before discovery ran")
        return 0
    except SeedUnreachable as exc:
        orchestrator.fail(audit_id, str(exc), run_number=run_number)
        return 0
    except (Exception, SoftTimeLimitExceeded) as exc:
        if self.request.retries + 1 >= policy.max_attempts:
            logger.error(f"Page discovery for audit {audit_id} failed: {exc}", exc_info=True)
            orchestrator.fail(audit_id, f"Page discovery failed: {exc}", run_number=run_number)
            return 0
        logger.warning(f"Page discovery for audit {audit_id} failed, retrying: {exc}")
        raise self.retry(
            exc=exc,
            countdown=retry_countdown(self.request.retries),
            max_retries=policy.max_attempts - 1,
        )
    return len(pages)


@shared_task(bind=True, max_retries=0)
def aggregate_results(self, audit_id: str):
    orchestrator = AuditOrchestrator()
    try:
        card = orchestrator.aggregate(audit_id)
    except Audit.DoesNotExist:
        logger.info(f"Audit {audit_id} was deleted before aggregation ran")
        return None
    except (Exception, SoftTimeLimitExceeded) as exc:
        logger.error(f"Aggregation for audit {audit_id} failed: {exc}", exc_info=True)
        orchestrator.fail(audit_id, f"Aggregation failed: {exc}")
        return None
    return card.as_dict() if card else None
