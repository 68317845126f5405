import logging
from concurrent.futures import ThreadPoolExecutor

from django.db import transaction
from django.utils import timezone

from audits import services
from audits.exceptions import PermanentUnitError
from audits.findings import FindingDraft
from audits.models import LinkRecord, Page
from audits.services.html import is_special_link

from .base import AnalysisUnit, UnitKind, UnitResult

logger = logging.getLogger(__name__)

BROKEN_LINKS_LISTED = 5


def is_broken_status(status_code):
    return status_code is None or status_code >= 400


class LinkValidationUnit(AnalysisUnit):
    kind = UnitKind.LINKS
    diagnostic_category = "links"
    diagnostic_title = "Link Validation Failed"
    diagnostic_recommendation = "Retry the audit or manually check links on this page."

    def diagnostic_description(self, exc):
        return f"Failed to validate links on this page: {exc}"

    def execute(self) -> UnitResult:
        try:
            page = Page.objects.get(pk=self.spec.page_id)
        except Page.DoesNotExist as e:
            raise PermanentUnitError(f"Page {self.spec.page_id} no longer exists") from e

        client = services.get_html_client()
        html = client.fetch(page.url).html

        links = {}
        for link in client.extract_links(html, page.url) + client.extract_assets(html, page.url):
            links.setdefault(link.url, link)
        links = list(links.values())

        statuses = self.check_all([link.url for link in links])
        checked_at = timezone.now()

        records = []
        broken = []
        for link, status_code in zip(links, statuses):
            is_broken = is_broken_status(status_code)
            records.append(
                LinkRecord(
                    audit_id=self.spec.audit_id,
                    source_page=page,
                    destination_url=link.url,
                    link_text=link.text,
                    link_type=link.link_type,
                    status_code=status_code,
                    is_broken=is_broken,
                    checked_at=checked_at,
                )
            )
            if is_broken:
                broken.append((link, status_code))

        drafts = [self.broken_links_finding(broken)] if broken else []
        with transaction.atomic():
            if not self.run_is_live():
                return UnitResult()
            LinkRecord.objects.filter(source_page=page).delete()
            LinkRecord.objects.bulk_create(records)
            self.sink().record_many(drafts)

        logger.info(f"Validated {len(records)} links on {page.url}: {len(broken)} broken")
        return UnitResult(findings=len(drafts), record=len(records))

    def check_all(self, urls):
        conf = self.settings.link_check
        checker = services.get_link_checker()

        def check(url):
            if is_special_link(url):
                return 200
            return checker.head_status(url, timeout=conf.timeout)

        with ThreadPoolExecutor(max_workers=max(1, conf.concurrency)) as executor:
            return list(executor.map(check, urls))

    def broken_links_finding(self, broken) -> FindingDraft:
        count = len(broken)
        lines = [f"Found {count} broken link(s) on this page:"]
        for link, status_code in broken[:BROKEN_LINKS_LISTED]:
            line = f"- {link.url} (Status: {status_code if status_code is not None else 'no response'})"
            if link.text:
                line += f' - Link text: "{link.text}"'
            lines.append(line)
        description = "\n".join(lines)
        if count > BROKEN_LINKS_LISTED:
            description += f"\n\n... and {count - BROKEN_LINKS_LISTED} more broken links."

        return FindingDraft(
            category="links",
            severity="high" if count > self.thresholds.broken_links_high else "medium",
            title=f"Broken Links Found ({count})",
            description=description,
            recommendation=(
                "Fix or remove broken links. Check if the linked pages have moved or been deleted, "
                "and update the URLs accordingly."
            ),
            metadata={"broken_links_count": count},
        )
