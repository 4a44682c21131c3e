"""Custom exception types for mailgate.

Error messages follow the same standard everywhere:
- What failed (specific operation or component)
- Where it failed (trace_id, cache key, file)
- Why it failed (the specific condition)
- How to fix it (actionable guidance)

Recoverable ledger outcomes (ExecutionNotFoundError, NotApplicableError) are
turned into "not found" / "already handled" replies by callers. Store failures
on the ledger are fatal to the action attempt; store failures on the list
cache are never raised (the cache degrades to a miss instead).
"""


class MailGateError(Exception):
    """Base exception for all mailgate errors."""

    pass


class ConfigValidationError(MailGateError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailGateError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class DatabaseError(MailGateError):
    """Raised when SQLite operations fail."""

    pass


class StoreUnavailableError(DatabaseError):
    """Raised when the persistent store is not initialized or unreachable.

    Ledger operations always propagate this: a dangerous action must never
    run without a readable ledger.
    """

    pass


class DuplicateTraceIdError(DatabaseError):
    """Raised when creating an execution whose trace_id already exists.

    Attributes:
        trace_id: The conflicting trace id
    """

    def __init__(self, message: str, trace_id: str):
        super().__init__(message)
        self.trace_id = trace_id


class InvalidParamsError(MailGateError):
    """Raised when an execution payload does not match its type's field set.

    Attributes:
        execution_type: The declared execution type
    """

    def __init__(self, message: str, execution_type: str | None = None):
        super().__init__(message)
        self.execution_type = execution_type


class ExecutionNotFoundError(MailGateError):
    """Raised when no ledger record exists for a trace_id.

    Attributes:
        trace_id: The trace id that was looked up
    """

    def __init__(self, message: str, trace_id: str):
        super().__init__(message)
        self.trace_id = trace_id


class NotApplicableError(MailGateError):
    """Raised when a transition is attempted on a record in the wrong state.

    Distinct from ExecutionNotFoundError so callers can answer
    "already processed" instead of "unknown".

    Attributes:
        trace_id: The execution trace id
        status: The status the record was found in
    """

    def __init__(self, message: str, trace_id: str, status: str | None = None):
        super().__init__(message)
        self.trace_id = trace_id
        self.status = status


class ExecutionDeniedError(MailGateError):
    """Raised by the confirmation gate when a dangerous action is not confirmed.

    Attributes:
        trace_id: The trace id presented (None if missing)
        action: The action that was attempted
        status: Current ledger status, or None if no record exists
        reason: Short machine-readable denial reason
    """

    def __init__(
        self,
        message: str,
        trace_id: str | None = None,
        action: str | None = None,
        status: str | None = None,
        reason: str = "not_confirmed",
    ):
        super().__init__(message)
        self.trace_id = trace_id
        self.action = action
        self.status = status
        self.reason = reason


class NotificationError(MailGateError):
    """Raised when a chat notice cannot be delivered.

    Attributes:
        status_code: HTTP status from the webhook, or None for transport errors
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
