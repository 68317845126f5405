from django.apps import AppConfig


class AuditsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "audits"
    verbose_name = "Site Audits"

    def ready(self):
        # Fail at startup on a bad AUDIT setting instead of mid-run
        from audits.conf import get_audit_settings

        get_audit_settings()
