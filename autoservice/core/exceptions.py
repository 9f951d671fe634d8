"""
Exception hierarchy shared by the job order engine.

Every error carries a human-readable message plus keyword context, which the
API layer logs and (for eligibility and partial-apply failures) returns to
the caller. Validation and eligibility failures are raised before any write;
partial-apply failures are raised after some writes already happened.
"""

from typing import Any


class JobOrderError(Exception):
    """Base exception for job order engine errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(JobOrderError):
    """Raised when input is malformed or incomplete."""

    pass


class NotFoundError(JobOrderError):
    """Raised when a job order or related record does not exist."""

    pass


class EligibilityError(JobOrderError):
    """Raised when a computed eligibility gate rejects an action."""

    pass


class PartialApplyError(JobOrderError):
    """
    Raised when a multi-write operation stopped after applying some writes.

    ``context["applied"]`` lists the mutations that were already persisted
    and are not rolled back.
    """

    pass


class StoreError(JobOrderError):
    """Raised when the backing store fails; wraps the underlying message."""

    pass
