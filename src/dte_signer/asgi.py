"""
FastAPI + Uvicorn ASGI application — thin HTTP surface over DteLifecycle.

Every endpoint follows the same shape: parse the request, run one lifecycle
operation inside a LoggingExecutionContext on a worker thread (the
lifecycle and its adapters are synchronous), and turn the Result into a
JSON response via build_fastapi_response. Error bodies carry a stack trace
only in the development environment.

Entry point for production: uvicorn dte_signer.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from fastapi import FastAPI, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dte_signer import __version__
from dte_signer.adapters.codec import certificate_to_dict, dte_to_dict, validation_to_dict
from dte_signer.config import AppSettings
from dte_signer.domain.dte import Dte
from dte_signer.domain.models import (
    Certificate,
    DeliveryReceipt,
    DocumentType,
    DteStatus,
    RevocationReceipt,
    StatusTransition,
)
from dte_signer.domain.ports import DtePage, DteQuery
from dte_signer.lifecycle import DteLifecycle, SignatureReport
from dte_signer.main import build_lifecycle, configure_structlog
from dte_signer.railway import LoggingExecutionContext, Result, ResultFailures
from dte_signer.railway.http_support import build_fastapi_response

T = TypeVar("T")

# ─────────────────────── Global State ───────────────────────
# Set during app startup; tests assign them directly.

_lifecycle: DteLifecycle | None = None
_settings: AppSettings | None = None
_error_message: str | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: load settings and wire the lifecycle. Shutdown: log only."""
    global _lifecycle, _settings, _error_message

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    try:
        _lifecycle = build_lifecycle(settings)
    except Exception as e:
        _error_message = f"Failed to initialize adapters: {e}"
        log.error("asgi.init_error", error=_error_message)
        raise
    _settings = settings

    log.info("asgi.startup_complete", version=__version__, environment=settings.environment.value)
    yield
    log.info("asgi.shutdown_complete")


app = FastAPI(
    title="dte-signer",
    description="Electronic tax document generation, simulated signing and lifecycle",
    version=__version__,
    lifespan=lifespan,
)


# ─────────────────────── Request bodies ───────────────────────


class GenerateRequest(BaseModel):
    sale_id: str = Field(min_length=1)
    document_type: str = Field(default=DocumentType.FACTURA.value)


class SendRequest(BaseModel):
    recipient_email: str | None = None


class VoidRequest(BaseModel):
    reason: str = ""
    credit_note_number: str | None = None


class StatusRequest(BaseModel):
    status: str


# ─────────────────────── Serializers ───────────────────────


def _dte_body(dte: Dte) -> dict[str, Any]:
    return dte_to_dict(dte, include_content=False)


def _page_body(page: DtePage) -> dict[str, Any]:
    return {
        "items": [_dte_body(dte) for dte in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": page.pages,
    }


def _receipt_body(receipt: DeliveryReceipt) -> dict[str, Any]:
    return {
        "dte_id": receipt.dte_id,
        "document_number": receipt.document_number,
        "recipient_email": receipt.recipient_email,
        "sent_at": receipt.sent_at.isoformat(),
        "attempts": receipt.attempts,
        "mode": receipt.mode,
    }


def _transition_body(transition: StatusTransition) -> dict[str, Any]:
    return {
        "dte_id": transition.dte_id,
        "document_number": transition.document_number,
        "previous_status": transition.previous_status.value,
        "new_status": transition.new_status.value,
        "changed_at": transition.changed_at.isoformat(),
    }


def _report_body(report: SignatureReport) -> dict[str, Any]:
    return {
        "dte_id": report.dte_id,
        "document_number": report.document_number,
        "validation": validation_to_dict(report.validation),
        "signature": {
            "signature_id": report.signature_id,
            "algorithm": report.algorithm,
            "key_size": report.key_size,
            "signed_at": report.signed_at.isoformat(),
            "validation_code": report.validation_code,
            "certificate_serial": report.certificate_serial,
        },
    }


def _revocation_body(receipt: RevocationReceipt) -> dict[str, Any]:
    return {
        "issuer_tax_id": receipt.issuer_tax_id,
        "revoked_at": receipt.revoked_at.isoformat(),
        "message": receipt.message,
    }


def _certificates_body(certificates: list[Certificate]) -> list[dict[str, Any]]:
    return [certificate_to_dict(cert) for cert in certificates]


# ─────────────────────── Helpers ───────────────────────


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": _error_message or "Service not initialized"},
    )


async def _run(operation: str, computation: Callable[[], Result[T]]) -> Result[T]:
    context = LoggingExecutionContext(operation=operation)
    return await asyncio.to_thread(context.execute, computation)


def _respond(result: Result[T], serializer: Callable[[T], Any], success_status: int = 200) -> JSONResponse:
    include_trace = _settings is not None and _settings.is_development
    return build_fastapi_response(result, serializer, success_status, include_trace)


def _as_utc(moment: datetime | None) -> datetime | None:
    """Date-only and naive query bounds are read as UTC."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=UTC)


def _build_query(
    status: str | None,
    document_type: str | None,
    created_from: datetime | None,
    created_to: datetime | None,
    page: int = 1,
    limit: int = 10,
) -> Result[DteQuery]:
    try:
        parsed_status = DteStatus(status) if status else None
    except ValueError:
        return ResultFailures.malformed_input(f"Unknown DTE status: {status!r}")

    def _query(doc_type: DocumentType | None) -> DteQuery:
        return DteQuery(
            status=parsed_status,
            document_type=doc_type,
            created_from=_as_utc(created_from),
            created_to=_as_utc(created_to),
            page=page,
            limit=limit,
        )

    if not document_type:
        return Result.success(_query(None))
    return DocumentType.parse(document_type).map(_query)


# ─────────────────────── DTE endpoints ───────────────────────


@app.post("/dte")
async def generate_dte(request: GenerateRequest) -> JSONResponse:
    """Generate and sign the DTE for a sale. 201 with the DTE on success."""
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run("GenerateDte", lambda: lifecycle.generate(request.sale_id, request.document_type))
    return _respond(result, _dte_body, success_status=201)


@app.get("/dte")
async def search_dtes(
    status: str | None = None,
    document_type: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run(
        "SearchDtes",
        lambda: _build_query(status, document_type, created_from, created_to, page, limit).flat_map(
            lifecycle.search
        ),
    )
    return _respond(result, _page_body)


@app.get("/dte/export", response_model=None)
async def export_dtes(
    status: str | None = None,
    document_type: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> Response:
    """ZIP archive of the XML and PDF files of every matching DTE."""
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run(
        "ExportDtes",
        lambda: _build_query(status, document_type, created_from, created_to).flat_map(
            lifecycle.export_archive
        ),
    )
    if result.is_failure():
        return _respond(result, lambda _: None)
    return Response(
        content=result.value(),
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="dtes.zip"'},
    )


@app.get("/dte/{dte_id}")
async def get_dte(dte_id: str) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run("GetDte", lambda: lifecycle.get(dte_id))
    return _respond(result, _dte_body)


@app.post("/dte/{dte_id}/send")
async def send_dte(dte_id: str, request: SendRequest | None = None) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    email = request.recipient_email if request else None
    result = await _run("SendDte", lambda: lifecycle.send(dte_id, email))
    return _respond(result, _receipt_body)


@app.post("/dte/{dte_id}/void")
async def void_dte(dte_id: str, request: VoidRequest) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run(
        "VoidDte", lambda: lifecycle.void(dte_id, request.reason, request.credit_note_number)
    )
    return _respond(result, _dte_body)


@app.post("/dte/{dte_id}/validate-signature")
async def validate_signature(dte_id: str, strict: bool = False) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run("ValidateSignature", lambda: lifecycle.validate_signature(dte_id, strict))
    return _respond(result, _report_body)


@app.post("/dte/{dte_id}/simulate-status")
async def simulate_status(dte_id: str, request: StatusRequest) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run(
        "SimulateStatus", lambda: lifecycle.simulate_status_transition(dte_id, request.status)
    )
    return _respond(result, _transition_body)


# ─────────────────────── Certificates ───────────────────────


@app.get("/certificates")
async def list_certificates() -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    return JSONResponse(status_code=200, content=_certificates_body(lifecycle.list_certificates()))


@app.put("/certificates/{issuer_tax_id}/revoke")
async def revoke_certificate(issuer_tax_id: str) -> JSONResponse:
    lifecycle = _lifecycle
    if lifecycle is None:
        return _unavailable()
    result = await _run("RevokeCertificate", lambda: lifecycle.revoke_certificate(issuer_tax_id))
    return _respond(result, _revocation_body)


# ─────────────────────── Probes ───────────────────────


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness: 200 once the lifecycle is wired, 503 otherwise."""
    if _error_message:
        log.warning("health.check_failed", error=_error_message)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "error": _error_message})
    if _lifecycle is None:
        return JSONResponse(status_code=503, content={"status": "unhealthy", "reason": "not initialized"})
    return JSONResponse(status_code=200, content={"status": "healthy"})


@app.get("/info")
async def info() -> dict[str, Any]:
    return {
        "name": "dte-signer",
        "version": __version__,
        "environment": _settings.environment.value if _settings else None,
        "initialized": _lifecycle is not None,
        "has_error": _error_message is not None,
    }
