"""
Convenience factories for the failures the DTE core produces.

    from dte_signer.railway import ResultFailures

    ResultFailures.not_found("DTE", dte_id)
    ResultFailures.invalid_state("DTE is already voided")
"""

from __future__ import annotations

from collections.abc import Sequence

from dte_signer.railway.failure import ErrorCode
from dte_signer.railway.result import Result


class ResultFailures:
    """Factory methods for the core's failure kinds."""

    @staticmethod
    def not_found(resource_type: str, identifier: object) -> Result:
        return Result.failure(
            ErrorCode.NOT_FOUND,
            f"{resource_type} not found with identifier: {identifier}",
        )

    @staticmethod
    def invalid_state(message: str) -> Result:
        return Result.failure(ErrorCode.INVALID_STATE, message)

    @staticmethod
    def incomplete_data(message: str) -> Result:
        return Result.failure(ErrorCode.INCOMPLETE_DATA, message)

    @staticmethod
    def validation_failure(message: str, reasons: Sequence[str]) -> Result:
        """Signature/certificate checks failed; every individual reason is kept."""
        return Result.failure(ErrorCode.VALIDATION_FAILURE, message, reasons=reasons)

    @staticmethod
    def malformed_input(message: str) -> Result:
        return Result.failure(ErrorCode.MALFORMED_INPUT, message)

