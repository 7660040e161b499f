"""Continuing-education credit award engine."""

from credits.errors import (
    ConfigurationConflictError,
    CreditServiceError,
    CreditValidationError,
    DuplicateAwardError,
    GrantBusyError,
    InUseConflictError,
    NotFoundError,
    TransientStorageError,
)

__all__ = [
    "ConfigurationConflictError",
    "CreditServiceError",
    "CreditValidationError",
    "DuplicateAwardError",
    "GrantBusyError",
    "InUseConflictError",
    "NotFoundError",
    "TransientStorageError",
]
