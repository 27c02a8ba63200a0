#!/usr/bin/env python3
"""
errors.py

Error taxonomy for the profile → contact sync.

Every failure carries an ErrorKind tag so the invoking host can decide what to
do with a batch (re-run it, or surface it to an operator) by looking at
`error.kind` instead of matching exception classes.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Failure categories understood by the invoking host"""
    RETRYABLE = "retryable"
    VALIDATION = "validation"
    UNMAPPED_FIELD = "unmapped_field"
    EVENT_NOT_SUPPORTED = "event_not_supported"
    FATAL = "fatal"


class SyncError(Exception):
    """Base class for every failure raised while processing a batch"""

    kind = ErrorKind.FATAL

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.RETRYABLE


class RetryableError(SyncError):
    """Transient upstream failure (HTTP 5xx, 429, network). Re-run the whole batch."""
    kind = ErrorKind.RETRYABLE


class ValidationError(SyncError):
    """Malformed or destination-incompatible data. Needs an operator or data fix."""
    kind = ErrorKind.VALIDATION


class EventNotSupportedError(SyncError):
    """Event type this integration does not handle"""
    kind = ErrorKind.EVENT_NOT_SUPPORTED


class FatalError(SyncError):
    """Any other non-retryable upstream failure"""
    kind = ErrorKind.FATAL


class UnmappedFieldError(SyncError):
    """
    A synced or active-audience trait has no matching custom field in the
    destination. The field has to be created in the destination before the
    batch is re-run.
    """
    kind = ErrorKind.UNMAPPED_FIELD

    def __init__(self, missing_fields: Dict[str, Any], details: Optional[Dict[str, Any]] = None):
        self.missing_fields = dict(missing_fields)
        names = ", ".join(sorted(self.missing_fields))
        super().__init__(
            f"Custom fields not found in destination: {names} "
            f"(values: {self.missing_fields!r})",
            details,
        )
