"""
Record codec — plain-dict form of the domain records.

Used by the PostgreSQL adapter (JSONB documents) and by the HTTP layer
(response bodies). Datetimes are ISO-8601 strings, money is a two-decimal
string, file contents are base64.

Decoding raises KeyError/ValueError on malformed documents; callers wrap it
in Result.from_computation.
"""

from __future__ import annotations

import base64
from datetime import datetime
from decimal import Decimal
from typing import Any

from dte_signer.domain.dte import Dte
from dte_signer.domain.models import (
    Address,
    Certificate,
    CertificateStatus,
    Customer,
    Delivery,
    DocumentType,
    DteStatus,
    GeneratedFile,
    GeneratedFiles,
    Party,
    Sale,
    SaleStatus,
    Seller,
    SignatureBundle,
    SignatureStatus,
    Totals,
    ValidationResult,
    VoidInfo,
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


# ─────────────────────── Certificates & signatures ───────────────────────


def certificate_to_dict(cert: Certificate) -> dict[str, Any]:
    return {
        "issuer_tax_id": cert.issuer_tax_id,
        "issuer_dn": cert.issuer_dn,
        "subject_dn": cert.subject_dn,
        "serial_number": cert.serial_number,
        "valid_from": _ts(cert.valid_from),
        "valid_to": _ts(cert.valid_to),
        "algorithm": cert.algorithm,
        "key_size": cert.key_size,
        "revoked": cert.revoked,
        "revoked_at": _ts(cert.revoked_at),
    }


def certificate_from_dict(data: dict[str, Any]) -> Certificate:
    return Certificate(
        issuer_tax_id=data["issuer_tax_id"],
        issuer_dn=data["issuer_dn"],
        subject_dn=data["subject_dn"],
        serial_number=data["serial_number"],
        valid_from=_parse_ts(data["valid_from"]),  # type: ignore[arg-type]
        valid_to=_parse_ts(data["valid_to"]),  # type: ignore[arg-type]
        algorithm=data["algorithm"],
        key_size=int(data["key_size"]),
        revoked=bool(data.get("revoked", False)),
        revoked_at=_parse_ts(data.get("revoked_at")),
    )


def signature_to_dict(bundle: SignatureBundle) -> dict[str, Any]:
    return {
        "signature_value": bundle.signature_value,
        "signed_at": _ts(bundle.signed_at),
        "certificate": certificate_to_dict(bundle.certificate),
        "content_hash": bundle.content_hash,
        "algorithm": bundle.algorithm,
        "key_size": bundle.key_size,
        "status": bundle.status.value,
        "signature_id": bundle.signature_id,
        "validation_code": bundle.validation_code,
        "issued_at": _ts(bundle.issued_at),
    }


def signature_from_dict(data: dict[str, Any]) -> SignatureBundle:
    return SignatureBundle(
        signature_value=data["signature_value"],
        signed_at=_parse_ts(data["signed_at"]),  # type: ignore[arg-type]
        certificate=certificate_from_dict(data["certificate"]),
        content_hash=data["content_hash"],
        algorithm=data["algorithm"],
        key_size=int(data["key_size"]),
        status=SignatureStatus(data["status"]),
        signature_id=data["signature_id"],
        validation_code=data["validation_code"],
        issued_at=_parse_ts(data.get("issued_at")),
    )


def validation_to_dict(result: ValidationResult) -> dict[str, Any]:
    return {
        "is_valid": result.is_valid,
        "errors": list(result.errors),
        "warnings": list(result.warnings),
        "certificate_status": result.certificate_status.value,
        "algorithm": result.algorithm,
        "validated_at": _ts(result.validated_at),
    }


def validation_from_dict(data: dict[str, Any]) -> ValidationResult:
    return ValidationResult(
        is_valid=bool(data["is_valid"]),
        errors=tuple(data["errors"]),
        warnings=tuple(data["warnings"]),
        certificate_status=CertificateStatus(data["certificate_status"]),
        algorithm=data["algorithm"],
        validated_at=_parse_ts(data["validated_at"]),  # type: ignore[arg-type]
    )


# ─────────────────────── DTE ───────────────────────


def _party_to_dict(party: Party) -> dict[str, str]:
    return {"tax_id": party.tax_id, "name": party.name, "address": party.address}


def _party_from_dict(data: dict[str, str]) -> Party:
    return Party(tax_id=data["tax_id"], name=data["name"], address=data["address"])


def _file_to_dict(file: GeneratedFile | None, include_content: bool) -> dict[str, Any] | None:
    if file is None:
        return None
    data: dict[str, Any] = {"sha256": file.sha256, "path": file.path}
    if include_content:
        data["content"] = base64.b64encode(file.content).decode("ascii")
    return data


def _file_from_dict(data: dict[str, Any] | None) -> GeneratedFile | None:
    if data is None:
        return None
    return GeneratedFile(
        content=base64.b64decode(data["content"]),
        sha256=data["sha256"],
        path=data["path"],
    )


def dte_to_dict(dte: Dte, include_content: bool = True) -> dict[str, Any]:
    """
    Full document form. include_content=False drops the file payloads
    (API listings); stored documents always keep them.
    """
    return {
        "id": dte.id,
        "document_number": dte.document_number,
        "document_type": dte.document_type.value,
        "document_type_label": dte.document_type.label,
        "issuer": _party_to_dict(dte.issuer),
        "recipient": _party_to_dict(dte.recipient),
        "sale_id": dte.sale_id,
        "totals": {
            "subtotal": _money(dte.totals.subtotal),
            "tax": _money(dte.totals.tax),
            "total": _money(dte.totals.total),
            "total_in_words": dte.total_in_words,
        },
        "status": dte.status.value,
        "signature": signature_to_dict(dte.signature) if dte.signature else None,
        "files": {
            "xml": _file_to_dict(dte.files.xml, include_content),
            "pdf": _file_to_dict(dte.files.pdf, include_content),
        },
        "delivery": {
            "sent_at": _ts(dte.delivery.sent_at),
            "recipient_email": dte.delivery.recipient_email,
            "attempts": dte.delivery.attempts,
        },
        "void_info": (
            {
                "voided_at": _ts(dte.void_info.voided_at),
                "reason": dte.void_info.reason,
                "credit_note_number": dte.void_info.credit_note_number,
            }
            if dte.void_info
            else None
        ),
        "created_at": _ts(dte.created_at),
        "updated_at": _ts(dte.updated_at),
    }


def dte_from_dict(data: dict[str, Any]) -> Dte:
    totals = data["totals"]
    delivery = data.get("delivery") or {}
    void = data.get("void_info")
    files = data.get("files") or {}
    return Dte(
        id=data["id"],
        document_number=data["document_number"],
        document_type=DocumentType(data["document_type"]),
        issuer=_party_from_dict(data["issuer"]),
        recipient=_party_from_dict(data["recipient"]),
        sale_id=data["sale_id"],
        totals=Totals(
            subtotal=Decimal(totals["subtotal"]),
            tax=Decimal(totals["tax"]),
            total=Decimal(totals["total"]),
        ),
        status=DteStatus(data["status"]),
        signature=signature_from_dict(data["signature"]) if data.get("signature") else None,
        files=GeneratedFiles(xml=_file_from_dict(files.get("xml")), pdf=_file_from_dict(files.get("pdf"))),
        delivery=Delivery(
            sent_at=_parse_ts(delivery.get("sent_at")),
            recipient_email=delivery.get("recipient_email"),
            attempts=int(delivery.get("attempts", 0)),
        ),
        void_info=(
            VoidInfo(
                voided_at=_parse_ts(void["voided_at"]),  # type: ignore[arg-type]
                reason=void["reason"],
                credit_note_number=void.get("credit_note_number"),
            )
            if void
            else None
        ),
        created_at=_parse_ts(data["created_at"]),  # type: ignore[arg-type]
        updated_at=_parse_ts(data["updated_at"]),  # type: ignore[arg-type]
    )


# ─────────────────────── Collaborator records ───────────────────────


def _address_to_dict(address: Address | None) -> dict[str, str | None] | None:
    if address is None:
        return None
    return {
        "street": address.street,
        "city": address.city,
        "department": address.department,
        "postal_code": address.postal_code,
    }


def _address_from_dict(data: dict[str, Any] | None) -> Address | None:
    if data is None:
        return None
    return Address(
        street=data.get("street"),
        city=data.get("city"),
        department=data.get("department"),
        postal_code=data.get("postal_code"),
    )


def sale_to_dict(sale: Sale) -> dict[str, Any]:
    return {
        "id": sale.id,
        "number": sale.number,
        "customer_id": sale.customer_id,
        "seller_id": sale.seller_id,
        "subtotal": _money(sale.subtotal),
        "tax": _money(sale.tax),
        "total": _money(sale.total),
        "status": sale.status.value,
        "invoiced": sale.invoiced,
        "invoice_number": sale.invoice_number,
    }


def sale_from_dict(data: dict[str, Any]) -> Sale:
    return Sale(
        id=data["id"],
        number=data["number"],
        customer_id=data["customer_id"],
        seller_id=data["seller_id"],
        subtotal=Decimal(data["subtotal"]),
        tax=Decimal(data["tax"]),
        total=Decimal(data["total"]),
        status=SaleStatus(data.get("status", SaleStatus.COMPLETED.value)),
        invoiced=bool(data.get("invoiced", False)),
        invoice_number=data.get("invoice_number"),
    )


def customer_to_dict(customer: Customer) -> dict[str, Any]:
    return {
        "id": customer.id,
        "name": customer.name,
        "tax_id": customer.tax_id,
        "email": customer.email,
        "address": _address_to_dict(customer.address),
    }


def customer_from_dict(data: dict[str, Any]) -> Customer:
    return Customer(
        id=data["id"],
        name=data.get("name"),
        tax_id=data.get("tax_id"),
        email=data.get("email"),
        address=_address_from_dict(data.get("address")),
    )


def seller_to_dict(seller: Seller) -> dict[str, Any]:
    return {
        "id": seller.id,
        "name": seller.name,
        "business_name": seller.business_name,
        "tax_id": seller.tax_id,
        "address": _address_to_dict(seller.address),
    }


def seller_from_dict(data: dict[str, Any]) -> Seller:
    return Seller(
        id=data["id"],
        name=data["name"],
        business_name=data.get("business_name"),
        tax_id=data.get("tax_id"),
        address=_address_from_dict(data.get("address")),
    )
