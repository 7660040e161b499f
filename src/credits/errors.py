"""Error taxonomy for the credit award engine."""

from __future__ import annotations


class CreditServiceError(Exception):
    """Base exception for credit engine failures."""

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with a machine-readable code and details."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class CreditValidationError(CreditServiceError):
    """Raised when administrative inputs fail validation."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a validation error with optional details."""
        super().__init__("validation_error", message, details)


class NotFoundError(CreditServiceError):
    """Raised when a grant, category, package, award, or exception id is unknown."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error with optional details."""
        super().__init__("not_found", message, details)


class ConfigurationConflictError(CreditServiceError):
    """Raised when a category is already bound to another active package."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a configuration conflict error with optional details."""
        super().__init__("configuration_conflict", message, details)


class InUseConflictError(CreditServiceError):
    """Raised when deleting or archiving a record that history or links still use."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize an in-use conflict error with optional details."""
        super().__init__("in_use_conflict", message, details)


class GrantBusyError(CreditServiceError):
    """Raised when a grant is already executing in this process."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a grant-busy error with optional details."""
        super().__init__("grant_busy", message, details)


class DuplicateAwardError(CreditServiceError):
    """Signals an award insert collided with an existing triple.

    Executions treat this as "already handled" and never surface it.
    """

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a duplicate-award signal with optional details."""
        super().__init__("duplicate_award", message, details)


class TransientStorageError(CreditServiceError):
    """Raised when storage fails mid-execution; carries the partial result."""

    def __init__(
        self,
        message: str,
        details: dict[str, object] | None = None,
        *,
        result: object | None = None,
    ) -> None:
        """Initialize a storage error with the partial execution result."""
        super().__init__("transient_storage", message, details)
        self.result = result
