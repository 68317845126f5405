"""
Create an audit for a store URL and queue it.

Usage:
    python manage.py start_audit https://shop.example.com
    python manage.py start_audit https://shop.example.com --max-pages 20
    python manage.py start_audit --restart <audit id>
"""

import json

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from audits.exceptions import AuditError
from audits.models import Audit
from audits.orchestrator import AuditOrchestrator


class Command(BaseCommand):
    help = "Create and start an e-commerce site audit"

    def add_arguments(self, parser):
        parser.add_argument("url", nargs="?", help="Store URL to audit")
        parser.add_argument("--max-pages", type=int, default=None, help="Maximum number of pages to crawl")
        parser.add_argument(
            "--checkout-paths",
            type=str,
            default=None,
            help='JSON list of checkout steps, e.g. \'[{"name": "Cart", "path": "/cart"}]\'',
        )
        parser.add_argument("--restart", metavar="AUDIT_ID", help="Reset an existing audit and start it again")
        parser.add_argument("--no-start", action="store_true", help="Create the audit without queueing it")

    def handle(self, *args, **options):
        orchestrator = AuditOrchestrator()

        if options["restart"]:
            audit = self._get_audit(options["restart"])
            try:
                orchestrator.restart(audit, start=True)
            except AuditError as e:
                raise CommandError(str(e)) from e
            self.stdout.write(self.style.SUCCESS(f"Restarted audit {audit.pk} (run {audit.run_number})"))
            return

        if not options["url"]:
            raise CommandError("A URL is required unless --restart is given")

        config = {}
        if options["checkout_paths"]:
            try:
                config["checkout_paths"] = json.loads(options["checkout_paths"])
            except json.JSONDecodeError as e:
                raise CommandError(f"--checkout-paths is not valid JSON: {e}") from e

        try:
            audit = orchestrator.create_audit(options["url"], max_pages=options["max_pages"], config=config)
        except (AuditError, ValueError) as e:
            raise CommandError(str(e)) from e

        if options["no_start"]:
            self.stdout.write(self.style.SUCCESS(f"Created audit {audit.pk} for {audit.url}"))
            return

        orchestrator.start(audit)
        self.stdout.write(
            self.style.SUCCESS(f"Started audit {audit.pk} for {audit.url} (max {audit.max_pages} pages)")
        )

    def _get_audit(self, audit_id):
        try:
            return Audit.objects.get(pk=audit_id)
        except (Audit.DoesNotExist, ValidationError) as e:
            raise CommandError(f"Audit {audit_id} not found") from e
