"""
Scoring engine.

Turns a snapshot of an audit's results into five category scores and a
weighted overall score. ``ScoringEngine.score`` is pure: it works on an
``AuditData`` value and never queries the database, so historical audits can
be re-scored with different weights. ``collect_audit_data`` is the only piece
that reads the ORM.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from django.db.models import Count, Q

from audits.conf import SCORED_CATEGORIES, AuditSettings, get_audit_settings
from audits.exceptions import ScoringError
from audits.models import Audit, Finding, PerformanceSample

GRADE_BANDS = (
    (90, "A", "Excellent", "green"),
    (80, "B", "Good", "blue"),
    (70, "C", "Fair", "yellow"),
    (60, "D", "Poor", "orange"),
    (0, "F", "Critical", "red"),
)

MOBILE_LIGHTHOUSE_SHARE = 0.60
MOBILE_FINDINGS_SHARE = 0.40


@dataclass(frozen=True)
class AuditData:
    page_count: int
    # (device_type, performance_score) for every sample that produced a score
    performance_samples: Tuple[Tuple[str, Optional[float]], ...] = ()
    # category -> {severity: count}
    finding_severities: Dict[str, Dict[str, int]] = field(default_factory=dict)
    total_links: int = 0
    broken_links: int = 0


@dataclass(frozen=True)
class ScoreCard:
    category_scores: Dict[str, float]
    overall_score: int
    grade: str
    label: str
    color: str

    def as_dict(self):
        return {
            "category_scores": dict(self.category_scores),
            "overall_score": self.overall_score,
            "grade": self.grade,
            "label": self.label,
            "color": self.color,
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _band(score):
    for floor, grade, label, color in GRADE_BANDS:
        if score >= floor:
            return grade, label, color
    return GRADE_BANDS[-1][1:]


def grade_for(score: int) -> str:
    return _band(score)[0]


def label_for(score: int) -> str:
    return _band(score)[1]


def color_for(score: int) -> str:
    return _band(score)[2]


def score_change(current: int, previous: int) -> dict:
    change = current - previous
    percentage = round(change / previous * 100, 2) if previous > 0 else 0
    if change > 0:
        direction = "up"
    elif change < 0:
        direction = "down"
    else:
        direction = "neutral"
    return {"absolute": change, "percentage": percentage, "direction": direction}


def _mean(values):
    values = [value for value in values if value is not None]
    if not values:
        return None
    return sum(values) / len(values)


def _clamp(value):
    return max(0.0, min(100.0, float(value)))


class ScoringEngine:
    def __init__(self, audit_settings: Optional[AuditSettings] = None):
        self.settings = audit_settings or get_audit_settings()

    def penalty(self, severities: Dict[str, int]) -> int:
        penalties = self.settings.severity_penalties
        return sum(penalties.get(severity, 0) * count for severity, count in severities.items())

    def performance_score(self, data: AuditData) -> float:
        mean = _mean(score for _, score in data.performance_samples)
        return mean if mean is not None else 0

    def mobile_score(self, data: AuditData) -> float:
        mobile = [score for device, score in data.performance_samples if device == PerformanceSample.DeviceType.MOBILE]
        if not mobile:
            return 0
        lighthouse = _mean(mobile) or 0
        penalty = self.penalty(data.finding_severities.get("mobile", {}))
        return lighthouse * MOBILE_LIGHTHOUSE_SHARE + (100 - penalty) * MOBILE_FINDINGS_SHARE

    def seo_score(self, data: AuditData) -> float:
        if data.page_count == 0:
            return 0
        return max(0, 100 - self.penalty(data.finding_severities.get("seo", {})))

    def checkout_score(self, data: AuditData) -> float:
        return max(0, 100 - self.penalty(data.finding_severities.get("checkout", {})))

    def links_score(self, data: AuditData) -> float:
        if data.total_links == 0:
            return 100
        return (data.total_links - data.broken_links) / data.total_links * 100

    def category_scores(self, data: AuditData) -> Dict[str, float]:
        scores = {
            "performance": self.performance_score(data),
            "mobile": self.mobile_score(data),
            "seo": self.seo_score(data),
            "checkout": self.checkout_score(data),
            "links": self.links_score(data),
        }
        return {category: _clamp(scores[category]) for category in SCORED_CATEGORIES}

    def score(self, data: AuditData) -> ScoreCard:
        try:
            categories = self.category_scores(data)
            weighted = sum(self.settings.weights[category] * value for category, value in categories.items())
        except (KeyError, TypeError, ValueError, ZeroDivisionError) as e:
            raise ScoringError(f"Could not score audit data: {e!r}") from e
        overall = min(100, max(0, round_half_up(weighted)))
        grade, label, color = _band(overall)
        return ScoreCard(
            category_scores=categories,
            overall_score=overall,
            grade=grade,
            label=label,
            color=color,
        )


def collect_audit_data(audit: Audit) -> AuditData:
    samples = PerformanceSample.objects.filter(page__audit=audit).values_list("device_type", "performance_score")

    severities = {}
    rows = Finding.objects.filter(audit=audit).values("category", "severity").annotate(total=Count("id"))
    for row in rows:
        severities.setdefault(row["category"], Counter())[row["severity"]] += row["total"]

    links = audit.link_records.aggregate(
        total=Count("id"),
        broken=Count("id", filter=Q(is_broken=True)),
    )

    return AuditData(
        page_count=audit.pages.count(),
        performance_samples=tuple(samples),
        finding_severities={category: dict(counts) for category, counts in severities.items()},
        total_links=links["total"] or 0,
        broken_links=links["broken"] or 0,
    )
