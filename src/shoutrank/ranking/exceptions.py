"""Errors raised by the ranking service."""

from __future__ import annotations


class SubmissionValidationError(ValueError):
    """Raised when a submission is rejected before anything is persisted."""


class EntryNotFoundError(KeyError):
    """Raised when a ranking entry or audio key is unknown to the store."""


class EntryPermissionError(PermissionError):
    """Raised when a caller tries to delete an entry they do not own."""
