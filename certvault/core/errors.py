"""Typed failures raised by the certificate core.

Every record-level operation fails with exactly one of these and leaves
persisted state untouched.  Batch operations never raise them past their
own boundary: they are caught per item and reported in the outcome.
"""

from __future__ import annotations


class CertVaultError(Exception):
    """Base class for all domain errors."""


class ValidationError(CertVaultError):
    """Malformed or missing input; the caller can correct and retry."""

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class InvalidTransition(CertVaultError):
    """Lifecycle action attempted from a state that does not allow it,
    or lost a concurrent race for the same record."""

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class IntegrityError(CertVaultError):
    """Authenticated decryption failed: wrong key or tampered data."""


class NotFoundError(CertVaultError):
    """Referenced certificate or content id does not exist."""


class PermissionDenied(CertVaultError):
    """Actor lacks the permission a transition guard requires."""


class ExternalCollaboratorError(CertVaultError):
    """Blob store or ledger call failed; no record state was changed."""

    def __init__(self, collaborator: str, operation: str, message: str) -> None:
        super().__init__(f"{collaborator} {operation} failed: {message}")
        self.collaborator = collaborator
        self.operation = operation
