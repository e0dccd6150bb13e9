"""
Domain models — immutable value objects for certificates, signatures and the
collaborator records (sale, customer, seller) the DTE core reads.

All models are frozen dataclasses. State changes produce new instances via
dataclasses.replace(); the DTE entity itself lives in domain/dte.py.

Money is Decimal quantized to cents; never float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum, unique

from dte_signer.railway import Result, ResultFailures

CENT = Decimal("0.01")
ADDRESS_PLACEHOLDER = "Dirección no especificada"


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize an amount to two decimals (half-up). Raises InvalidOperation on garbage."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ─────────────────────── Enumerations ───────────────────────


@unique
class DocumentType(Enum):
    """DTE type codes."""

    FACTURA = "01"
    CREDITO_FISCAL = "02"
    NOTA_REMISION = "03"
    NOTA_CREDITO = "04"
    NOTA_DEBITO = "05"
    COMPROBANTE_RETENCION = "06"
    COMPROBANTE_LIQUIDACION = "07"
    DOCUMENTO_CONTABLE_LIQUIDACION = "08"

    @property
    def label(self) -> str:
        return _DOCUMENT_TYPE_LABELS[self]

    @staticmethod
    def parse(code: str) -> Result[DocumentType]:
        """Resolve a type code such as '01'; unknown codes are MALFORMED_INPUT."""
        try:
            return Result.success(DocumentType(code))
        except ValueError:
            return ResultFailures.malformed_input(f"Unsupported document type: {code!r}")


_DOCUMENT_TYPE_LABELS = {
    DocumentType.FACTURA: "Factura",
    DocumentType.CREDITO_FISCAL: "Comprobante de Crédito Fiscal",
    DocumentType.NOTA_REMISION: "Nota de Remisión",
    DocumentType.NOTA_CREDITO: "Nota de Crédito",
    DocumentType.NOTA_DEBITO: "Nota de Débito",
    DocumentType.COMPROBANTE_RETENCION: "Comprobante de Retención",
    DocumentType.COMPROBANTE_LIQUIDACION: "Comprobante de Liquidación",
    DocumentType.DOCUMENTO_CONTABLE_LIQUIDACION: "Documento Contable de Liquidación",
}


@unique
class DteStatus(Enum):
    """Lifecycle states of a DTE. VOIDED is terminal."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    OBSERVED = "OBSERVED"
    VOIDED = "VOIDED"


@unique
class SignatureStatus(Enum):
    """Simulated adjudication outcome attached to a signature bundle."""

    ACCEPTED = "ACCEPTED"
    OBSERVED = "OBSERVED"
    REJECTED = "REJECTED"


@unique
class CertificateStatus(Enum):
    VALID = "VALID"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"
    REVOKED = "REVOKED"


@unique
class SaleStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    INVOICED = "INVOICED"


# ─────────────────────── Certificates & signatures ───────────────────────


@dataclass(frozen=True, slots=True)
class Certificate:
    """
    Simulated signing certificate, keyed by the issuer's tax ID.

    Only `revoked`/`revoked_at` ever change, and only inside the registry.
    """

    issuer_tax_id: str
    issuer_dn: str
    subject_dn: str
    serial_number: str
    valid_from: datetime
    valid_to: datetime
    algorithm: str
    key_size: int
    revoked: bool = False
    revoked_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RevocationReceipt:
    issuer_tax_id: str
    revoked_at: datetime
    message: str


@dataclass(frozen=True, slots=True)
class SignatureBundle:
    """
    Simulated proof-of-signing attached to a DTE.

    `certificate` is a snapshot taken at signing time, not a live registry
    reference. `issued_at` is the instant embedded in the signed content;
    validation needs it to recompute the content hash.
    """

    signature_value: str
    signed_at: datetime
    certificate: Certificate
    content_hash: str
    algorithm: str
    key_size: int
    status: SignatureStatus
    signature_id: str
    validation_code: str
    issued_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[str, ...]
    warnings: tuple[str, ...]
    certificate_status: CertificateStatus
    algorithm: str
    validated_at: datetime


# ─────────────────────── DTE building blocks ───────────────────────


@dataclass(frozen=True, slots=True)
class Party:
    """Issuer or recipient block of a DTE."""

    tax_id: str
    name: str
    address: str


@dataclass(frozen=True, slots=True)
class Totals:
    """
    DTE totals. Always built through Totals.of(), which recomputes
    total = subtotal + tax instead of trusting the caller.
    """

    subtotal: Decimal
    tax: Decimal
    total: Decimal

    @staticmethod
    def of(subtotal: Decimal | int | float | str, tax: Decimal | int | float | str) -> Result[Totals]:
        try:
            sub = to_money(subtotal)
            vat = to_money(tax)
        except (InvalidOperation, ValueError):
            return ResultFailures.malformed_input(f"Totals are not numeric: {subtotal!r}, {tax!r}")
        if not (sub.is_finite() and vat.is_finite()):
            return ResultFailures.malformed_input(f"Totals are not numeric: {subtotal!r}, {tax!r}")
        if sub < 0 or vat < 0:
            return ResultFailures.malformed_input("Totals must not be negative")
        return Result.success(Totals(subtotal=sub, tax=vat, total=sub + vat))


@dataclass(frozen=True, slots=True)
class GeneratedFile:
    """A rendered artifact (XML or PDF) with its SHA-256 digest and storage path."""

    content: bytes = field(repr=False)
    sha256: str
    path: str


@dataclass(frozen=True, slots=True)
class GeneratedFiles:
    xml: GeneratedFile | None = None
    pdf: GeneratedFile | None = None


@dataclass(frozen=True, slots=True)
class Delivery:
    sent_at: datetime | None = None
    recipient_email: str | None = None
    attempts: int = 0


@dataclass(frozen=True, slots=True)
class VoidInfo:
    voided_at: datetime
    reason: str
    credit_note_number: str | None = None


# ─────────────────────── Collaborator records ───────────────────────


@dataclass(frozen=True, slots=True)
class Address:
    street: str | None = None
    city: str | None = None
    department: str | None = None
    postal_code: str | None = None

    def full(self) -> str:
        """Non-empty parts joined by ', ' (empty string when nothing is set)."""
        parts = [self.street, self.city, self.department, self.postal_code]
        return ", ".join(p for p in parts if p)


@dataclass(frozen=True, slots=True)
class Customer:
    """Read-only view of a customer (cliente)."""

    id: str
    name: str | None
    tax_id: str | None
    email: str | None = None
    address: Address | None = None


@dataclass(frozen=True, slots=True)
class Seller:
    """Read-only view of the selling user (issuer of the DTE)."""

    id: str
    name: str
    business_name: str | None = None
    tax_id: str | None = None
    address: Address | None = None


@dataclass(frozen=True, slots=True)
class Sale:
    """
    Sale record owned by the sales collaborator.

    The DTE core only flips `invoiced`, `invoice_number` and `status`.
    """

    id: str
    number: str
    customer_id: str
    seller_id: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    status: SaleStatus = SaleStatus.COMPLETED
    invoiced: bool = False
    invoice_number: str | None = None


# ─────────────────────── Operation outputs ───────────────────────


@dataclass(frozen=True, slots=True)
class DeliveryReceipt:
    dte_id: str
    document_number: str
    recipient_email: str
    sent_at: datetime
    attempts: int
    mode: str


@dataclass(frozen=True, slots=True)
class StatusTransition:
    dte_id: str
    document_number: str
    previous_status: DteStatus
    new_status: DteStatus
    changed_at: datetime


@dataclass(frozen=True, slots=True)
class MailAttachment:
    filename: str
    content: bytes = field(repr=False)
    content_type: str


@dataclass(frozen=True, slots=True)
class MailMessage:
    """Everything a mail transport needs to deliver one DTE."""

    sender: str
    recipient: str
    subject: str
    html: str
    attachments: tuple[MailAttachment, ...] = ()
