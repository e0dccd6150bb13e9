"""
HTTP integration — ErrorCode → HTTP status mapping and response builders.

Every failure leaves the API as a stable error kind plus a message (and the
list of reasons for validation failures). The stack trace of the underlying
exception is attached only when the caller asks for it, which the ASGI layer
does in the development environment.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from fastapi.responses import JSONResponse

from dte_signer.railway.failure import ErrorCode, FailureDescription
from dte_signer.railway.result import Result

T = TypeVar("T")


class HttpStatusMapper:
    """Maps ErrorCode values to HTTP status codes."""

    _CODE_TO_STATUS: dict[ErrorCode, int] = {
        ErrorCode.MALFORMED_INPUT: 400,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.INVALID_STATE: 409,
        ErrorCode.INCOMPLETE_DATA: 422,
        ErrorCode.VALIDATION_FAILURE: 422,
        ErrorCode.DATABASE_ERROR: 500,
        ErrorCode.TECHNICAL_ERROR: 500,
        ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        return cls._CODE_TO_STATUS.get(code, 500)


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """
    Standardized error response body.

        {
            "error_code": "INVALID_STATE",
            "message": "Sale already invoiced: V-000001",
            "reasons": [],
            "timestamp": "2026-02-17T10:30:00+00:00"
        }
    """

    error_code: str
    message: str
    reasons: tuple[str, ...]
    timestamp: str
    detail: str | None = None

    @staticmethod
    def from_failure(failure: FailureDescription, include_trace: bool = False) -> ErrorResponse:
        return ErrorResponse(
            error_code=failure.code.value,
            message=failure.message,
            reasons=failure.reasons,
            timestamp=failure.timestamp.isoformat(),
            detail=failure.full_stack_trace() if include_trace else None,
        )

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "reasons": list(self.reasons),
            "timestamp": self.timestamp,
        }
        if self.detail is not None:
            body["detail"] = self.detail
        return body


def build_response(
    result: Result[T],
    serializer: Callable[[T], Any],
    success_status: int = 200,
    include_trace: bool = False,
) -> tuple[Any, int]:
    """Build a (body, status_code) tuple from a Result."""
    return result.either(
        on_success=lambda value: (serializer(value), success_status),
        on_failure=lambda error: (
            ErrorResponse.from_failure(error, include_trace).to_dict(),
            HttpStatusMapper.map_error_code(error.code),
        ),
    )


def build_fastapi_response(
    result: Result[T],
    serializer: Callable[[T], Any],
    success_status: int = 200,
    include_trace: bool = False,
) -> JSONResponse:
    """
    Build a FastAPI JSONResponse from a Result.

        return build_fastapi_response(result, codec.dte_to_document, success_status=201)
    """
    body, status = build_response(result, serializer, success_status, include_trace)
    return JSONResponse(content=body, status_code=status)
