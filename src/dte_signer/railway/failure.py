"""
Failure description — structured error information for the failure track.

Every failure carries a stable ErrorCode, a human-readable message and,
for validation failures, the list of individual reasons that were found.
The optional exception is kept for development diagnostics only; it is
never part of a default API response.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """
    Stable error kinds returned by the DTE core.

    Client-side kinds (4xx):
      NOT_FOUND, INVALID_STATE, INCOMPLETE_DATA, VALIDATION_FAILURE, MALFORMED_INPUT
    Server-side kinds (5xx):
      DATABASE_ERROR, EXTERNAL_SERVICE_ERROR, TECHNICAL_ERROR
    """

    NOT_FOUND = "NOT_FOUND"
    """Sale, customer, seller, DTE or certificate missing (→ 404)."""

    INVALID_STATE = "INVALID_STATE"
    """Already invoiced, already voided, or a forbidden status transition (→ 409)."""

    INCOMPLETE_DATA = "INCOMPLETE_DATA"
    """Required data absent: recipient fields, XML content, email, signature (→ 422)."""

    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    """Signature or certificate checks failed — see reasons (→ 422)."""

    MALFORMED_INPUT = "MALFORMED_INPUT"
    """Bad email format, unsupported document type, unserialisable input (→ 400)."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Storage connectivity or query failures (→ 500)."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """Mail relay failures (→ 502)."""

    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Unexpected exception caught at an execution boundary (→ 500)."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.NOT_FOUND, "DTE not found")
    >>> desc.code
    <ErrorCode.NOT_FOUND: 'NOT_FOUND'>
    >>> desc.reasons
    ()
    """

    code: ErrorCode
    message: str
    reasons: tuple[str, ...] = ()
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"
