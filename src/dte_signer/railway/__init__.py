"""
Railway-Oriented Programming primitives used across dte_signer.

Explicit, composable error handling — no exceptions in business logic.

    from dte_signer.railway import Result, ErrorCode

    def ensure_not_voided(dte: Dte) -> Result[Dte]:
        if dte.is_voided:
            return Result.failure(ErrorCode.INVALID_STATE, "DTE is already voided")
        return Result.success(dte)
"""

from dte_signer.railway.assertions import ResultAssertions
from dte_signer.railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from dte_signer.railway.failure import ErrorCode, FailureDescription
from dte_signer.railway.result import Failure, Result, Success
from dte_signer.railway.result_failures import ResultFailures

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultFailures",
    "ResultAssertions",
]
