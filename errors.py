"""
Lead cache error hierarchy.

All lead cache exceptions inherit from LeadsError, which provides:
- message: technical detail (for logs)
- user_message: safe string (for UI display, no PII)
- recoverable: whether the caller should retry

Provider (Apollo) errors live in apollo_client.py and also inherit from LeadsError.
"""


class LeadsError(Exception):
    """Base exception for all lead cache errors."""

    def __init__(self, message: str, user_message: str, recoverable: bool = True):
        self.message = message
        self.user_message = user_message
        self.recoverable = recoverable
        super().__init__(message)


class TenantContextError(LeadsError):
    """No tenant could be resolved for an operation."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        message = f"Tenant context required for {operation}."
        if detail:
            message = f"{message} {detail}"
        super().__init__(
            message=message,
            user_message="Your organization could not be identified. Please sign in again.",
            recoverable=False,
        )


class ValidationError(LeadsError):
    """Caller supplied missing or invalid input."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            user_message=message,
            recoverable=False,
        )


class ConfigurationError(LeadsError):
    """Required configuration (API key, URL) is missing."""

    def __init__(self, setting: str, detail: str = ""):
        self.setting = setting
        message = f"{setting} is not configured."
        if detail:
            message = f"{message} {detail}"
        super().__init__(
            message=message,
            user_message="Lead search is not configured. Please contact your administrator.",
            recoverable=False,
        )


class CacheError(LeadsError):
    """Database failure while reading or writing the lead cache."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        super().__init__(
            message=f"Cache {operation} failed: {detail}",
            user_message="Saved lead data is temporarily unavailable.",
            recoverable=True,
        )


class RecordNotFoundError(LeadsError):
    """A tenant-scoped record does not exist or belongs to someone else."""

    def __init__(self, record_type: str, record_id):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=f"{record_type} {record_id} not found or access denied",
            user_message=f"{record_type.capitalize()} not found.",
            recoverable=False,
        )
