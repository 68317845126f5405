import logging
import re

from bs4 import BeautifulSoup
from django.db import transaction
from django.utils.text import slugify

from audits import services
from audits.exceptions import PermanentUnitError, TransientUnitError
from audits.findings import FindingDraft
from audits.models import Audit, CheckoutStepResult

from .base import AnalysisUnit, UnitKind, UnitResult, screenshot_file

logger = logging.getLogger(__name__)

GUEST_WORDING = re.compile(r"\bguest\b", re.IGNORECASE)


def detect_guest_checkout(html: str) -> bool:
    """
    A guest path exists when the page offers it in words ("Continue as guest")
    or asks for an email address without also asking for a password.
    """
    if not html:
        return False
    soup = BeautifulSoup(html, "html.parser")
    if soup.find(string=GUEST_WORDING):
        return True

    email_field = soup.find("input", attrs={"type": "email"}) or soup.find(
        "input", attrs={"name": re.compile("email", re.IGNORECASE)}
    )
    password_field = soup.find("input", attrs={"type": "password"})
    return email_field is not None and password_field is None


class CheckoutUnit(AnalysisUnit):
    kind = UnitKind.CHECKOUT
    diagnostic_category = "checkout"
    diagnostic_title = "Checkout Flow Test Failed"
    diagnostic_recommendation = (
        "The automated checkout test could not be completed. "
        "This may indicate issues with the checkout process or site accessibility."
    )

    def diagnostic_description(self, exc):
        return f"Failed to test checkout flow: {exc}"

    def checkout_paths(self, audit):
        return (audit.config or {}).get("checkout_paths") or list(self.settings.checkout_paths)

    def execute(self) -> UnitResult:
        try:
            audit = Audit.objects.get(pk=self.spec.audit_id)
        except Audit.DoesNotExist as e:
            raise PermanentUnitError(f"Audit {self.spec.audit_id} no longer exists") from e

        browser = services.get_browser()
        steps = []
        guest_checkout = None
        paths = self.checkout_paths(audit)
        for number, step in enumerate(paths, start=1):
            name = step.get("name") or f"Step {number}"
            url = audit.url.rstrip("/") + step.get("path", "")
            screenshot = screenshot_file(audit.pk, f"checkout-step-{number}-{slugify(name)}", self.settings)

            loaded = browser.load_page(url, screenshot_path=str(screenshot))
            steps.append(
                CheckoutStepResult(
                    audit=audit,
                    step_number=number,
                    step_name=name,
                    url=url,
                    screenshot_path=str(screenshot) if loaded.screenshot_taken else "",
                    form_fields_count=loaded.form_fields,
                    errors=list(loaded.errors),
                    load_time=loaded.load_time_ms,
                    successful=loaded.successful,
                )
            )
            if number == len(paths) and loaded.successful:
                guest_checkout = detect_guest_checkout(loaded.html)

        if steps and not any(step.successful for step in steps):
            raise TransientUnitError(f"None of the {len(steps)} checkout pages of {audit.url} could be loaded")

        drafts = self.evaluate(steps, guest_checkout)
        with transaction.atomic():
            if not self.run_is_live():
                return UnitResult()
            CheckoutStepResult.objects.filter(audit=audit).delete()
            CheckoutStepResult.objects.bulk_create(steps)
            self.sink().record_many(drafts)

        logger.info(f"Checkout flow for {audit.url}: {len(steps)} steps, {len(drafts)} findings")
        return UnitResult(findings=len(drafts), record=len(steps))

    def evaluate(self, steps, guest_checkout=None):
        """``guest_checkout`` is None when the final step could not be inspected."""
        t = self.thresholds
        drafts = []
        total_steps = len(steps)
        failed_steps = [step for step in steps if not step.successful]
        total_fields = sum(step.form_fields_count for step in steps)

        if failed_steps:
            drafts.append(
                FindingDraft(
                    category="checkout",
                    severity="critical",
                    title="Checkout Flow Failed",
                    description="The automated checkout test encountered errors and could not complete the flow.",
                    recommendation=(
                        "Review the checkout process to ensure all steps are accessible and functional. "
                        "Check for JavaScript errors or broken functionality."
                    ),
                    metadata={"failed_steps": len(failed_steps), "total_steps": total_steps},
                )
            )

        if total_steps > t.checkout_max_steps:
            drafts.append(
                FindingDraft(
                    category="checkout",
                    severity="medium",
                    title="Too Many Checkout Steps",
                    description=f"The checkout process has {total_steps} steps, which may increase cart abandonment.",
                    recommendation=(
                        "Consider consolidating checkout steps. Best practice is 3-4 steps maximum "
                        "(Cart, Shipping/Billing, Payment, Confirmation)."
                    ),
                    metadata={"steps_count": total_steps},
                )
            )

        if total_fields > t.checkout_max_total_fields:
            drafts.append(
                FindingDraft(
                    category="checkout",
                    severity="high",
                    title="Excessive Form Fields",
                    description=(
                        f"The checkout process requires {total_fields} form fields, which can lead to abandonment."
                    ),
                    recommendation=(
                        "Reduce required form fields. Remove optional fields, use autofill, and consider "
                        "guest checkout. Aim for 8-12 fields maximum."
                    ),
                    metadata={"total_fields": total_fields},
                )
            )

        for step in steps:
            if step.form_fields_count > t.checkout_max_step_fields:
                drafts.append(
                    FindingDraft(
                        category="checkout",
                        severity="medium",
                        title=f"Too Many Fields in {step.step_name}",
                        description=f"The '{step.step_name}' step has {step.form_fields_count} form fields.",
                        recommendation=(
                            "Reduce the number of required fields in this step. "
                            "Consider making some fields optional or removing them entirely."
                        ),
                        metadata={"step": step.step_name, "fields_count": step.form_fields_count},
                    )
                )

            if step.load_time is not None and step.load_time > t.checkout_max_load_ms:
                drafts.append(
                    FindingDraft(
                        category="checkout",
                        severity="high",
                        title=f"Slow Checkout Page: {step.step_name}",
                        description=f"The '{step.step_name}' step took {step.load_time}ms to load.",
                        recommendation=(
                            "Optimize this checkout page for faster loading. "
                            "Slow checkout pages lead to cart abandonment."
                        ),
                        metadata={"step": step.step_name, "load_time": step.load_time},
                    )
                )

            if step.errors:
                drafts.append(
                    FindingDraft(
                        category="checkout",
                        severity="critical",
                        title=f"Errors in {step.step_name}",
                        description=f"Errors detected during '{step.step_name}' step: {', '.join(step.errors)}",
                        recommendation="Fix the errors preventing successful checkout completion.",
                        metadata={"step": step.step_name, "errors": step.errors},
                    )
                )

        if guest_checkout is False:
            drafts.append(
                FindingDraft(
                    category="checkout",
                    severity="high",
                    title="No Guest Checkout Option",
                    description=(
                        "The checkout process appears to require account creation, "
                        "which significantly increases cart abandonment."
                    ),
                    recommendation=(
                        "Implement a guest checkout option. Allow users to complete purchases without creating "
                        "an account. You can optionally offer account creation after purchase."
                    ),
                )
            )

        return drafts
