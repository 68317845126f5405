class AuditError(Exception):
    pass


class InvalidAuditUrl(AuditError):
    pass


class StateConflict(AuditError):
    """An operation was requested against an audit in an incompatible state.

    Raised before anything is written, so the audit is left untouched.
    """

    def __init__(self, audit, message: str):
        self.audit_id = getattr(audit, "pk", audit)
        self.status = getattr(audit, "status", None)
        super().__init__(message)


class AlreadyProcessing(StateConflict):
    pass


class AlreadyCompleted(StateConflict):
    pass


class NotProcessing(StateConflict):
    pass


class RestartRequired(StateConflict):
    pass


class IncomparableAudits(AuditError):
    pass


class TransientUnitError(AuditError):
    """Network timeouts, temporary 5xx responses and similar. Retried."""


class PermanentUnitError(AuditError):
    """Unambiguous 4xx responses, parse failures. Not retried."""


class SeedUnreachable(AuditError):
    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        message = f"Could not reach {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ScoringError(AuditError):
    pass
