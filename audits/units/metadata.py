import logging

from django.db import transaction

from audits import services
from audits.exceptions import PermanentUnitError
from audits.findings import FindingDraft
from audits.models import Page
from audits.services.html import PageMetadata

from .base import AnalysisUnit, UnitKind, UnitResult, screenshot_file

logger = logging.getLogger(__name__)


class MetadataUnit(AnalysisUnit):
    kind = UnitKind.METADATA
    diagnostic_category = "seo"
    diagnostic_title = "Page Analysis Failed"
    diagnostic_recommendation = "Check if the page is accessible and retry the audit."

    def diagnostic_description(self, exc):
        return f"Failed to analyze page: {exc}"

    def execute(self) -> UnitResult:
        try:
            page = Page.objects.get(pk=self.spec.page_id)
        except Page.DoesNotExist as e:
            raise PermanentUnitError(f"Page {self.spec.page_id} no longer exists") from e

        client = services.get_html_client()
        fetched = client.fetch(page.url)
        metadata = client.extract_metadata(fetched.html)
        screenshot = self.take_screenshot(page)

        drafts = self.evaluate(page.url, metadata)
        with transaction.atomic():
            if not self.run_is_live():
                return UnitResult()
            Page.objects.filter(pk=page.pk).update(
                title=metadata.title,
                meta_description=metadata.description,
                h1=metadata.h1,
                load_time=fetched.load_time,
                screenshot_path=screenshot,
                html_excerpt=fetched.html[: Page.HTML_EXCERPT_LENGTH],
            )
            self.sink().record_many(drafts)

        logger.info(f"Analyzed {page.url}: {len(drafts)} findings")
        return UnitResult(findings=len(drafts), record=page.pk)

    def take_screenshot(self, page) -> str:
        path = screenshot_file(page.audit_id, f"page-{page.pk}", self.settings)
        if services.get_browser().screenshot(page.url, str(path)):
            return str(path)
        return ""

    def evaluate(self, url, metadata: PageMetadata):
        t = self.thresholds
        drafts = []

        title_length = len(metadata.title)
        if not metadata.title:
            drafts.append(
                FindingDraft(
                    category="seo",
                    severity="high",
                    title="Missing Page Title",
                    description=f"The page at {url} does not have a title tag.",
                    recommendation="Add a descriptive title tag (50-60 characters) that includes target keywords.",
                    affected_element="<title>",
                )
            )
        elif title_length < t.title_min_length:
            drafts.append(
                FindingDraft(
                    category="seo",
                    severity="medium",
                    title="Title Too Short",
                    description=f"The page title is only {title_length} characters long.",
                    recommendation="Expand the title to 50-60 characters for better SEO.",
                    affected_element="<title>",
                )
            )
        elif title_length > t.title_max_length:
            drafts.append(
                FindingDraft(
                    category="seo",
                    severity="low",
                    title="Title Too Long",
                    description=(
                        f"The page title is {title_length} characters long and may be truncated in search results."
                    ),
                    recommendation="Shorten the title to 50-60 characters.",
                    affected_element="<title>",
                )
            )

        if not metadata.description:
            drafts.append(
                FindingDraft(
                    category="seo",
                    severity="medium",
                    title="Missing Meta Description",
                    description=f"The page at {url} does not have a meta description.",
                    recommendation="Add a compelling meta description (150-160 characters) that encourages clicks.",
                    affected_element='<meta name="description">',
                )
            )
        elif len(metadata.description) > t.description_max_length:
            drafts.append(
                FindingDraft(
                    category="seo",
                    severity="low",
                    title="Meta Description Too Long",
                    description=(
                        f"The meta description is {len(metadata.description)} characters "
                        "and may be truncated in search results."
                    ),
                    recommendation="Shorten the meta description to 150-160 characters.",
                    affected_element='<meta name="description">',
                )
            )

        if not metadata.h1:
            drafts.append(
                FindingDraft(
                    category="seo",
                    severity="medium",
                    title="Missing H1 Tag",
                    description=f"The page at {url} does not have an H1 heading.",
                    recommendation="Add a single, descriptive H1 heading that clearly indicates the page content.",
                    affected_element="<h1>",
                )
            )

        if not metadata.has_viewport:
            drafts.append(
                FindingDraft(
                    category="mobile",
                    severity="high",
                    title="Missing Viewport Meta Tag",
                    description=(
                        f"The page at {url} does not declare a viewport, so mobile browsers render it zoomed out."
                    ),
                    recommendation='Add <meta name="viewport" content="width=device-width, initial-scale=1">.',
                    affected_element='<meta name="viewport">',
                )
            )
        elif "width=device-width" not in metadata.viewport_content.replace(" ", "").lower():
            drafts.append(
                FindingDraft(
                    category="mobile",
                    severity="medium",
                    title="Viewport Not Responsive",
                    description=f'The viewport is set to "{metadata.viewport_content}" instead of the device width.',
                    recommendation="Set the viewport width to device-width so the layout adapts to the screen.",
                    affected_element='<meta name="viewport">',
                    metadata={"viewport": metadata.viewport_content},
                )
            )

        return drafts
