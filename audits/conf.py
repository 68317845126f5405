"""
Audit pipeline configuration.

Everything tunable about an audit (crawl limits, scoring weights, finding
thresholds, link checking, browser options) lives in the ``AUDIT`` Django
setting. ``get_audit_settings()`` merges it over ``DEFAULTS`` and returns a
frozen ``AuditSettings`` that the scoring engine and every analysis unit
receive at construction time.
"""

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.signals import setting_changed
from django.dispatch import receiver

SCORED_CATEGORIES = ("performance", "mobile", "seo", "checkout", "links")
SEVERITIES = ("critical", "high", "medium", "low", "info")

DEFAULTS = {
    "DEFAULT_MAX_PAGES": 50,
    "CRAWLER": {
        "CONCURRENCY": 5,
        "DELAY_MS": 100,
        "TIMEOUT": 30,
        "MAX_DEPTH": 3,
        "USER_AGENT": "EcommerceAuditBot/1.0 (Conversion Audit Tool)",
    },
    "LIGHTHOUSE_PATH": "npx lighthouse",
    "CHROME_PATH": "",
    "BROWSER": {
        "TIMEOUT_MS": 60000,
        "VIEWPORT_WIDTH": 1920,
        "VIEWPORT_HEIGHT": 1080,
    },
    "LINK_CHECK": {
        "TIMEOUT": 5,
        "MAX_REDIRECTS": 3,
        "CONCURRENCY": 8,
    },
    "SCORING": {
        "WEIGHTS": {
            "performance": 0.30,
            "mobile": 0.25,
            "seo": 0.20,
            "checkout": 0.15,
            "links": 0.10,
        },
        "SEVERITY_PENALTIES": {
            "critical": 20,
            "high": 10,
            "medium": 5,
            "low": 2,
            "info": 0,
        },
    },
    "THRESHOLDS": {
        "LCP_GOOD": 2.5,
        "LCP_POOR": 4.0,
        "CLS_GOOD": 0.1,
        "CLS_POOR": 0.25,
        "PERFORMANCE_SCORE_GOOD": 75,
        "PERFORMANCE_SCORE_POOR": 50,
        "TITLE_MIN_LENGTH": 30,
        "TITLE_MAX_LENGTH": 60,
        "DESCRIPTION_MAX_LENGTH": 160,
        "BROKEN_LINKS_HIGH": 5,
        "CHECKOUT_MAX_STEPS": 5,
        "CHECKOUT_MAX_TOTAL_FIELDS": 15,
        "CHECKOUT_MAX_STEP_FIELDS": 8,
        "CHECKOUT_MAX_LOAD_MS": 5000,
    },
    "CHECKOUT_PATHS": [
        {"name": "Homepage", "path": ""},
        {"name": "Cart Page", "path": "/cart"},
        {"name": "Checkout", "path": "/checkout"},
    ],
    "SCREENSHOT_ROOT": "screenshots",
}


@dataclass(frozen=True)
class CrawlerSettings:
    concurrency: int
    delay_ms: int
    timeout: int
    max_depth: int
    user_agent: str


@dataclass(frozen=True)
class BrowserSettings:
    timeout_ms: int
    viewport_width: int
    viewport_height: int
    chrome_path: str


@dataclass(frozen=True)
class LinkCheckSettings:
    timeout: float
    max_redirects: int
    concurrency: int


@dataclass(frozen=True)
class Thresholds:
    lcp_good: float
    lcp_poor: float
    cls_good: float
    cls_poor: float
    performance_score_good: int
    performance_score_poor: int
    title_min_length: int
    title_max_length: int
    description_max_length: int
    broken_links_high: int
    checkout_max_steps: int
    checkout_max_total_fields: int
    checkout_max_step_fields: int
    checkout_max_load_ms: int


@dataclass(frozen=True)
class AuditSettings:
    default_max_pages: int
    crawler: CrawlerSettings
    browser: BrowserSettings
    link_check: LinkCheckSettings
    weights: Dict[str, float]
    severity_penalties: Dict[str, int]
    thresholds: Thresholds
    lighthouse_path: str
    checkout_paths: tuple
    screenshot_root: str

    def validate(self):
        missing = set(SCORED_CATEGORIES) - set(self.weights)
        unknown = set(self.weights) - set(SCORED_CATEGORIES)
        if missing or unknown:
            raise ImproperlyConfigured(
                f"AUDIT['SCORING']['WEIGHTS'] must cover exactly {', '.join(SCORED_CATEGORIES)} "
                f"(missing: {sorted(missing)}, unknown: {sorted(unknown)})"
            )
        if any(weight < 0 for weight in self.weights.values()):
            raise ImproperlyConfigured("Scoring weights cannot be negative")
        total = sum(self.weights.values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ImproperlyConfigured(f"Scoring weights must sum to 1.0, got {total:.4f}")

        missing_severities = set(SEVERITIES) - set(self.severity_penalties)
        if missing_severities:
            raise ImproperlyConfigured(f"Missing severity penalties for {sorted(missing_severities)}")

        t = self.thresholds
        ordered = [
            ("LCP_GOOD", t.lcp_good, "LCP_POOR", t.lcp_poor),
            ("CLS_GOOD", t.cls_good, "CLS_POOR", t.cls_poor),
            # Lower performance scores are worse, so the pair runs the other way.
            ("PERFORMANCE_SCORE_POOR", t.performance_score_poor, "PERFORMANCE_SCORE_GOOD", t.performance_score_good),
            ("TITLE_MIN_LENGTH", t.title_min_length, "TITLE_MAX_LENGTH", t.title_max_length),
        ]
        for low_name, low, high_name, high in ordered:
            if not low < high:
                raise ImproperlyConfigured(f"AUDIT threshold {low_name} ({low}) must be below {high_name} ({high})")

        if self.default_max_pages < 1:
            raise ImproperlyConfigured("AUDIT['DEFAULT_MAX_PAGES'] must be at least 1")
        if self.link_check.max_redirects < 0:
            raise ImproperlyConfigured("AUDIT['LINK_CHECK']['MAX_REDIRECTS'] cannot be negative")
        return self


# Tables that only make sense whole: an override replaces the default table
REPLACED_TABLES = {("SCORING", "WEIGHTS"), ("SCORING", "SEVERITY_PENALTIES")}


def _merged(overrides):
    merged = {}
    for key, default in DEFAULTS.items():
        value = overrides.get(key, default)
        if isinstance(default, dict) and isinstance(value, dict):
            nested = dict(default)
            for nested_key, nested_value in value.items():
                mergeable = (key, nested_key) not in REPLACED_TABLES
                if mergeable and isinstance(nested.get(nested_key), dict) and isinstance(nested_value, dict):
                    nested[nested_key] = {**nested[nested_key], **nested_value}
                else:
                    nested[nested_key] = nested_value
            value = nested
        merged[key] = value
    return merged


def build_audit_settings(overrides=None) -> AuditSettings:
    raw = _merged(overrides or {})
    crawler = raw["CRAWLER"]
    browser = raw["BROWSER"]
    link_check = raw["LINK_CHECK"]
    scoring = raw["SCORING"]
    thresholds = raw["THRESHOLDS"]

    return AuditSettings(
        default_max_pages=int(raw["DEFAULT_MAX_PAGES"]),
        crawler=CrawlerSettings(
            concurrency=int(crawler["CONCURRENCY"]),
            delay_ms=int(crawler["DELAY_MS"]),
            timeout=int(crawler["TIMEOUT"]),
            max_depth=int(crawler["MAX_DEPTH"]),
            user_agent=crawler["USER_AGENT"],
        ),
        browser=BrowserSettings(
            timeout_ms=int(browser["TIMEOUT_MS"]),
            viewport_width=int(browser["VIEWPORT_WIDTH"]),
            viewport_height=int(browser["VIEWPORT_HEIGHT"]),
            chrome_path=raw["CHROME_PATH"],
        ),
        link_check=LinkCheckSettings(
            timeout=float(link_check["TIMEOUT"]),
            max_redirects=int(link_check["MAX_REDIRECTS"]),
            concurrency=int(link_check["CONCURRENCY"]),
        ),
        weights={key: float(value) for key, value in scoring["WEIGHTS"].items()},
        severity_penalties={key: int(value) for key, value in scoring["SEVERITY_PENALTIES"].items()},
        thresholds=Thresholds(**{key.lower(): value for key, value in thresholds.items()}),
        lighthouse_path=raw["LIGHTHOUSE_PATH"],
        checkout_paths=tuple(dict(step) for step in raw["CHECKOUT_PATHS"]),
        screenshot_root=str(raw["SCREENSHOT_ROOT"]),
    ).validate()


@lru_cache(maxsize=1)
def get_audit_settings() -> AuditSettings:
    return build_audit_settings(getattr(settings, "AUDIT", {}))


@receiver(setting_changed)
def _reset_audit_settings(sender, setting, **kwargs):
    if setting == "AUDIT":
        get_audit_settings.cache_clear()
