"""
Execution contexts — separate WHAT an operation does from HOW it is run.

The lifecycle operations are pure Result pipelines; the HTTP layer runs each
one inside a LoggingExecutionContext so timing and outcome are logged in one
place and any exception that escapes an adapter is turned into a
TECHNICAL_ERROR failure instead of a 500 with a traceback.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

import structlog

from dte_signer.railway.failure import ErrorCode, FailureDescription
from dte_signer.railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger()


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything with execute(computation) -> Result."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]: ...


class NoOpExecutionContext:
    """Passthrough context — runs the computation as is."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Log entry, exit, duration and result state of an operation.

        ctx = LoggingExecutionContext(operation="GenerateDte")
        result = ctx.execute(lambda: lifecycle.generate(sale_id))
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        log.debug("operation.started", operation=self._operation)
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            log.error(
                "operation.crashed",
                operation=self._operation,
                elapsed_seconds=round(time.monotonic() - start, 3),
                error=str(e),
            )
            return Failure(
                FailureDescription(ErrorCode.TECHNICAL_ERROR, "Unexpected internal error", exception=e)
            )

        elapsed = round(time.monotonic() - start, 3)
        if result.is_success():
            log.info("operation.completed", operation=self._operation, elapsed_seconds=elapsed, state="SUCCESS")
        else:
            failure = result.error()
            log.info(
                "operation.completed",
                operation=self._operation,
                elapsed_seconds=elapsed,
                state="FAILURE",
                error_code=failure.code.value,
            )
        return result
