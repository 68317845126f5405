from django.contrib import admin, messages
from django.utils.html import format_html

from audits.exceptions import StateConflict
from audits.models import Audit, CheckoutStepResult, Finding, LinkRecord, Page, PerformanceSample, UnitOutcome
from audits.orchestrator import AuditOrchestrator
from audits.scoring import color_for, grade_for


class FindingInline(admin.TabularInline):
    model = Finding
    extra = 0
    fields = ("category", "severity", "title", "page")
    readonly_fields = fields
    show_change_link = True
    can_delete = False


class CheckoutStepInline(admin.TabularInline):
    model = CheckoutStepResult
    extra = 0
    fields = ("step_number", "step_name", "url", "form_fields_count", "load_time", "successful")
    readonly_fields = fields
    can_delete = False


@admin.register(Audit)
class AuditAdmin(admin.ModelAdmin):
    list_display = ("url", "status", "score_display", "progress_display", "pages_crawled", "run_number", "created_at")
    list_filter = ("status", "created_at")
    search_fields = ("url", "domain")
    actions = ["start_audits", "cancel_audits", "restart_audits"]
    inlines = [CheckoutStepInline, FindingInline]
    readonly_fields = (
        "domain",
        "status",
        "pages_crawled",
        "jobs_total",
        "jobs_completed",
        "jobs_failed",
        "current_step",
        "score",
        "started_at",
        "completed_at",
        "fanned_in_at",
        "error_message",
        "run_number",
        "created_at",
        "updated_at",
    )

    def score_display(self, obj):
        """Score with its letter grade, colored by band."""
        if obj.score is None:
            return "-"
        return format_html(
            '<span style="color: {};">{} ({})</span>', color_for(obj.score), obj.score, grade_for(obj.score)
        )

    score_display.short_description = "Score"

    def progress_display(self, obj):
        return f"{obj.progress_percentage}%"

    progress_display.short_description = "Progress"

    def _apply(self, request, queryset, operation, verb):
        orchestrator = AuditOrchestrator()
        count = 0
        for audit in queryset:
            try:
                operation(orchestrator, audit)
            except StateConflict as e:
                messages.warning(request, str(e))
                continue
            count += 1
        if count:
            messages.success(request, f"{verb} {count} audit(s)")

    @admin.action(description="Start selected audits")
    def start_audits(self, request, queryset):
        self._apply(request, queryset, lambda orchestrator, audit: orchestrator.start(audit), "Started")

    @admin.action(description="Cancel selected audits")
    def cancel_audits(self, request, queryset):
        self._apply(request, queryset, lambda orchestrator, audit: orchestrator.cancel(audit), "Cancelled")

    @admin.action(description="Restart selected audits")
    def restart_audits(self, request, queryset):
        self._apply(
            request, queryset, lambda orchestrator, audit: orchestrator.restart(audit, start=True), "Restarted"
        )


@admin.register(Page)
class PageAdmin(admin.ModelAdmin):
    list_display = ("url", "audit", "position", "status_code", "load_time", "crawled_at")
    list_filter = ("status_code",)
    search_fields = ("url", "title")
    raw_id_fields = ("audit",)


@admin.register(Finding)
class FindingAdmin(admin.ModelAdmin):
    list_display = ("title", "audit", "category", "severity", "created_at")
    list_filter = ("category", "severity")
    search_fields = ("title", "description")
    raw_id_fields = ("audit", "page")


@admin.register(PerformanceSample)
class PerformanceSampleAdmin(admin.ModelAdmin):
    list_display = ("page", "device_type", "performance_score", "lcp", "cls", "created_at")
    list_filter = ("device_type",)
    raw_id_fields = ("page",)
    exclude = ("raw_report",)


@admin.register(LinkRecord)
class LinkRecordAdmin(admin.ModelAdmin):
    list_display = ("destination_url", "link_type", "status_code", "is_broken", "checked_at")
    list_filter = ("link_type", "is_broken")
    search_fields = ("destination_url", "link_text")
    raw_id_fields = ("audit", "source_page")


@admin.register(UnitOutcome)
class UnitOutcomeAdmin(admin.ModelAdmin):
    list_display = ("unit_key", "audit", "run_number", "outcome", "attempts", "created_at")
    list_filter = ("outcome",)
    search_fields = ("unit_key", "error")
    raw_id_fields = ("audit",)

    def has_add_permission(self, request):
        """Outcomes are only written by the completion tracker."""
        return False
