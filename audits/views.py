from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET

from audits.exceptions import IncomparableAudits
from audits.models import Audit
from audits.orchestrator import AuditOrchestrator


@require_GET
def audit_summary(request, audit_id):
    """Current state of one audit: progress while running, score and finding counts once done."""
    audit = get_object_or_404(Audit, pk=audit_id)
    return JsonResponse(AuditOrchestrator().summary(audit))


@require_GET
def audit_compare(request, audit_id, other_id):
    """
    Compare an audit against an earlier audit of the same domain.
    Both audits must be completed, otherwise a 400 is returned.
    """
    current = get_object_or_404(Audit, pk=audit_id)
    previous = get_object_or_404(Audit, pk=other_id)
    try:
        comparison = AuditOrchestrator().compare(current, previous)
    except IncomparableAudits as e:
        return JsonResponse({"error": str(e)}, status=400)
    return JsonResponse(
        {
            "current": str(current.pk),
            "previous": str(previous.pk),
            **comparison,
        }
    )
