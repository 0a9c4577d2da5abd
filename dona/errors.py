"""
Shared error types for the entitlement core.

Expected user-facing outcomes (capacity exceeded, balance insufficient,
already used today) are result values, not exceptions.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class UnknownResourceKind(ValidationIssue):
    """Raised when a caller names a resource kind the policy table does not know."""

    def __init__(self, kind):
        super().__init__(
            f"Unknown resource kind: {kind!r}",
            field="resource_kind",
            error_type="unknown_resource_kind",
        )
        self.kind = kind


class Unauthenticated(PermissionError):
    """Raised when there is no account in the request context."""


class AccountNotFound(LookupError):
    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class StorageUnavailable(RuntimeError):
    """Raised when the backing store cannot be reached; the outcome is unknown."""

    retryable = True
