from .audit import Audit
from .checkout import CheckoutStepResult
from .finding import Finding
from .link import LinkRecord
from .outcome import UnitOutcome
from .page import Page
from .performance import PerformanceSample

__all__ = [
    "Audit",
    "CheckoutStepResult",
    "Finding",
    "LinkRecord",
    "Page",
    "PerformanceSample",
    "UnitOutcome",
]
