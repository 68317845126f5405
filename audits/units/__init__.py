from .base import UNIT_POLICIES, AnalysisUnit, UnitKind, UnitPolicy, UnitResult, UnitSpec, get_policy
from .checkout import CheckoutUnit
from .links import LinkValidationUnit
from .metadata import MetadataUnit
from .performance import PerformanceUnit

UNIT_CLASSES = {
    UnitKind.METADATA: MetadataUnit,
    UnitKind.PERFORMANCE: PerformanceUnit,
    UnitKind.LINKS: LinkValidationUnit,
    UnitKind.CHECKOUT: CheckoutUnit,
}

DEVICE_TYPES = ("mobile", "desktop")


def build_unit(spec: UnitSpec, audit_settings=None) -> AnalysisUnit:
    try:
        unit_class = UNIT_CLASSES[spec.kind]
    except KeyError:
        raise ValueError(f"{spec.kind.value} is not an analysis unit") from None
    return unit_class(spec, audit_settings)


def plan_units(audit, pages):
    """Four units per page (metadata, one performance run per device, links) and one checkout unit."""
    specs = []
    for page in pages:
        specs.append(UnitSpec(UnitKind.METADATA, audit.pk, audit.run_number, page_id=page.pk))
        for device_type in DEVICE_TYPES:
            specs.append(
                UnitSpec(UnitKind.PERFORMANCE, audit.pk, audit.run_number, page_id=page.pk, device_type=device_type)
            )
        specs.append(UnitSpec(UnitKind.LINKS, audit.pk, audit.run_number, page_id=page.pk))
    specs.append(UnitSpec(UnitKind.CHECKOUT, audit.pk, audit.run_number))
    return specs


__all__ = [
    "DEVICE_TYPES",
    "UNIT_CLASSES",
    "UNIT_POLICIES",
    "AnalysisUnit",
    "CheckoutUnit",
    "LinkValidationUnit",
    "MetadataUnit",
    "PerformanceUnit",
    "UnitKind",
    "UnitPolicy",
    "UnitResult",
    "UnitSpec",
    "build_unit",
    "get_policy",
    "plan_units",
]
