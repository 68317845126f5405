"""
Shared contract for analysis units.

A unit is one independently retryable piece of work inside an audit run:
analyze one page's metadata, measure one page on one device, validate one
page's links, or walk the checkout flow once. Units are identified by a
``UnitSpec`` (serialized into the Celery task payload) and implemented as
``AnalysisUnit`` subclasses. ``execute`` does the network I/O first and
writes its results in one transaction at the end; ``on_failure`` writes the
diagnostic finding once the unit has given up. Both write only while the
unit's run is still the audit's live run, checked under the audit row lock.
"""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from django.conf import settings
from django.db import transaction

from audits.conf import AuditSettings, get_audit_settings
from audits.findings import FindingDraft, FindingSink
from audits.models import Audit

logger = logging.getLogger(__name__)


class UnitKind(str, enum.Enum):
    METADATA = "metadata"
    PERFORMANCE = "performance"
    LINKS = "links"
    CHECKOUT = "checkout"
    DISCOVERY = "discovery"
    AGGREGATION = "aggregation"


@dataclass(frozen=True)
class UnitPolicy:
    max_attempts: int
    timeout: int = 300
    diagnostic_severity: Optional[str] = None
    queue: str = "default"

    @property
    def soft_time_limit(self):
        return self.timeout

    @property
    def time_limit(self):
        # Leave room for on_failure to run after the soft limit fires
        return self.timeout + 30


UNIT_POLICIES = {
    UnitKind.METADATA: UnitPolicy(max_attempts=3, diagnostic_severity="high"),
    UnitKind.PERFORMANCE: UnitPolicy(max_attempts=3, diagnostic_severity="high"),
    UnitKind.LINKS: UnitPolicy(max_attempts=3, diagnostic_severity="medium"),
    UnitKind.CHECKOUT: UnitPolicy(max_attempts=2, diagnostic_severity="high"),
    UnitKind.DISCOVERY: UnitPolicy(max_attempts=3),
    UnitKind.AGGREGATION: UnitPolicy(max_attempts=1, queue="high"),
}


def get_policy(kind) -> UnitPolicy:
    return UNIT_POLICIES[UnitKind(kind)]


@dataclass(frozen=True)
class UnitSpec:
    kind: UnitKind
    audit_id: str
    run_number: int
    page_id: Optional[str] = None
    device_type: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", UnitKind(self.kind))
        object.__setattr__(self, "audit_id", str(self.audit_id))
        if self.page_id is not None:
            object.__setattr__(self, "page_id", str(self.page_id))

    @property
    def unit_key(self) -> str:
        parts = [self.kind.value]
        if self.page_id:
            parts.append(self.page_id)
        if self.device_type:
            parts.append(self.device_type)
        return ":".join(parts)

    @property
    def policy(self) -> UnitPolicy:
        return get_policy(self.kind)

    def to_payload(self) -> dict:
        return {
            "kind": self.kind.value,
            "audit_id": self.audit_id,
            "run_number": self.run_number,
            "page_id": self.page_id,
            "device_type": self.device_type,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "UnitSpec":
        return cls(
            kind=payload["kind"],
            audit_id=payload["audit_id"],
            run_number=int(payload["run_number"]),
            page_id=payload.get("page_id"),
            device_type=payload.get("device_type"),
        )

    def __str__(self):
        return f"{self.unit_key} (audit {self.audit_id}, run {self.run_number})"


@dataclass
class UnitResult:
    findings: int = 0
    record: Any = None
    notes: List[str] = field(default_factory=list)


def screenshot_file(audit_id, name: str, audit_settings: Optional[AuditSettings] = None) -> Path:
    conf = audit_settings or get_audit_settings()
    root = Path(conf.screenshot_root)
    if not root.is_absolute():
        root = Path(settings.MEDIA_ROOT) / root
    return root / str(audit_id) / f"{name}.png"


class AnalysisUnit(ABC):
    kind: UnitKind
    diagnostic_category: str
    diagnostic_title: str
    diagnostic_recommendation: str = ""

    def __init__(self, spec: UnitSpec, audit_settings: Optional[AuditSettings] = None):
        self.spec = spec
        self.settings = audit_settings or get_audit_settings()

    @property
    def thresholds(self):
        return self.settings.thresholds

    def sink(self) -> FindingSink:
        return FindingSink(self.spec.audit_id, self.spec.page_id)

    def run_is_live(self) -> bool:
        """
        Lock the audit row and check this unit's run is still the one being processed.

        Must be called inside ``transaction.atomic()`` before the unit writes
        anything. Cancel and restart take the same lock, so once this returns
        True they wait for the unit's writes to commit.
        """
        audit = Audit.objects.select_for_update().filter(pk=self.spec.audit_id).only("status", "run_number").first()
        if audit is None:
            logger.info(f"Discarding results of {self.spec}: audit no longer exists")
            return False
        if audit.run_number != self.spec.run_number or not audit.is_processing:
            logger.info(f"Discarding results of {self.spec}: audit is {audit.status} on run {audit.run_number}")
            return False
        return True

    @abstractmethod
    def execute(self) -> UnitResult:
        """Run the unit. Raise TransientUnitError to be retried, PermanentUnitError to give up."""

    def diagnostic_description(self, exc: BaseException) -> str:
        return f"{self.diagnostic_title}: {exc}"

    def on_failure(self, exc: BaseException) -> None:
        draft = FindingDraft(
            category=self.diagnostic_category,
            severity=self.spec.policy.diagnostic_severity,
            title=self.diagnostic_title,
            description=self.diagnostic_description(exc),
            recommendation=self.diagnostic_recommendation,
            metadata={"unit": self.spec.unit_key, "error": str(exc)},
        )
        with transaction.atomic():
            if not self.run_is_live():
                return
            self.sink().record(draft)
        logger.warning(f"Unit {self.spec} gave up: {exc}")
