"""
Write-only sink for audit findings.

Analysis units never touch ``Finding.objects`` directly. They describe what
they found as ``FindingDraft`` values and hand them to a ``FindingSink`` bound
to the audit (and page, where there is one). Nothing here can read, update or
delete an existing finding.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from audits.models import Finding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FindingDraft:
    category: str
    severity: str
    title: str
    description: str
    recommendation: str = ""
    affected_element: str = ""
    metadata: Optional[dict] = field(default=None, hash=False, compare=False)

    def __post_init__(self):
        if self.category not in Finding.Category.values:
            raise ValueError(f"Unknown finding category: {self.category}")
        if self.severity not in Finding.Severity.values:
            raise ValueError(f"Unknown finding severity: {self.severity}")


class FindingSink:
    def __init__(self, audit_id, page_id=None):
        self.audit_id = audit_id
        self.page_id = page_id

    def record(self, draft: FindingDraft) -> Finding:
        finding = Finding.objects.create(**self._row(draft))
        logger.debug(f"Recorded finding '{draft.title}' ({draft.severity}) for audit {self.audit_id}")
        return finding

    def record_many(self, drafts: Iterable[FindingDraft]) -> int:
        rows = [Finding(**self._row(draft)) for draft in drafts]
        if rows:
            Finding.objects.bulk_create(rows)
            logger.debug(f"Recorded {len(rows)} findings for audit {self.audit_id}")
        return len(rows)

    def _row(self, draft: FindingDraft):
        return {
            "audit_id": self.audit_id,
            "page_id": self.page_id,
            "category": draft.category,
            "severity": draft.severity,
            "title": draft.title[:255],
            "description": draft.description,
            "recommendation": draft.recommendation,
            "affected_element": draft.affected_element,
            "metadata": draft.metadata,
        }
