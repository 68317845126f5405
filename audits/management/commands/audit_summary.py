import json

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from audits.exceptions import IncomparableAudits
from audits.models import Audit
from audits.orchestrator import AuditOrchestrator


class Command(BaseCommand):
    """Print an audit's summary, optionally compared against an earlier audit."""

    help = "Show the summary of an audit"

    def add_arguments(self, parser):
        parser.add_argument("audit_id", help="Audit to summarize")
        parser.add_argument("--compare", metavar="AUDIT_ID", help="Earlier audit of the same domain to compare with")
        parser.add_argument("--json", action="store_true", help="Print raw JSON")

    def handle(self, *args, **options):
        orchestrator = AuditOrchestrator()
        audit = self._get_audit(options["audit_id"])
        summary = orchestrator.summary(audit)

        comparison = None
        if options["compare"]:
            previous = self._get_audit(options["compare"])
            try:
                comparison = orchestrator.compare(audit, previous)
            except IncomparableAudits as e:
                raise CommandError(str(e)) from e

        if options["json"]:
            payload = {"summary": summary}
            if comparison is not None:
                payload["comparison"] = comparison
            self.stdout.write(json.dumps(payload, indent=2, default=str))
            return

        self.stdout.write(f"Audit {summary['id']} - {summary['url']}")
        self.stdout.write(f"  Status: {summary['status']} ({summary['progress']}%)")
        if summary["score"] is not None:
            score_line = f"  Score: {summary['score']} ({summary['grade']}, {summary['label']})"
            self.stdout.write(self.style.SUCCESS(score_line))
        if summary["error_message"]:
            self.stdout.write(self.style.ERROR(f"  Error: {summary['error_message']}"))
        self.stdout.write(f"  Pages: {summary['total_pages']}")
        self.stdout.write(
            f"  Findings: {summary['total_findings']} "
            f"({summary['critical_findings']} critical, {summary['high_findings']} high)"
        )
        self.stdout.write(f"  Links: {summary['total_links']} ({summary['broken_links']} broken)")

        if comparison is not None:
            change = comparison["score_change"]
            self.stdout.write(
                f"  Score change: {change['absolute']:+d} ({change['percentage']}%, {change['direction']})"
            )
            self.stdout.write(f"  Findings change: {comparison['findings_change']:+d}")

    def _get_audit(self, audit_id):
        try:
            return Audit.objects.get(pk=audit_id)
        except (Audit.DoesNotExist, ValidationError) as e:
            raise CommandError(f"Audit {audit_id} not found") from e
