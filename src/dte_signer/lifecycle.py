"""
DTE lifecycle — the orchestrator tying sales, signing, storage and delivery.

Every operation is a Result pipeline over injected ports; nothing in here
performs I/O directly. Generation reads:

  DocumentType.parse(code)
    → sale (not yet invoiced)
      → customer (tax ID and name present)
        → seller
          → next_sequence() → unsigned DTE
            → sign
              → render XML + PDF
                → save DTE
                  → flip sale to INVOICED

A failure before "save DTE" leaves nothing behind. A failure after it (the
sale update) leaves the saved DTE in place; DTEs are never deleted, so the
partial state stays visible.

Two generate() calls for the same sale racing each other can both pass the
"not yet invoiced" check; only the document numbers are allocated atomically.
"""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass, replace
from datetime import datetime

import structlog

from dte_signer.domain.clock import Clock, utcnow
from dte_signer.domain.dte import Dte, format_document_number
from dte_signer.domain.models import (
    ADDRESS_PLACEHOLDER,
    Certificate,
    Customer,
    DeliveryReceipt,
    DocumentType,
    DteStatus,
    MailAttachment,
    MailMessage,
    Party,
    RevocationReceipt,
    Sale,
    SaleStatus,
    Seller,
    StatusTransition,
    Totals,
    ValidationResult,
)
from dte_signer.domain.ports import (
    CustomerStore,
    DtePage,
    DteQuery,
    DteRepository,
    MailTransport,
    PdfRenderer,
    SaleStore,
    SellerStore,
)
from dte_signer.railway import ErrorCode, Result, ResultFailures
from dte_signer.signing.engine import SignatureEngine
from dte_signer.signing.registry import DEFAULT_ISSUER_TAX_ID, CertificateRegistry

log = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True, slots=True)
class _Draft:
    """Collaborator records gathered and checked before numbering."""

    sale: Sale
    customer: Customer
    seller: Seller
    document_type: DocumentType


@dataclass(frozen=True, slots=True)
class SignatureReport:
    """validate_signature() output: the validation result plus bundle metadata."""

    dte_id: str
    document_number: str
    validation: ValidationResult
    signature_id: str
    algorithm: str
    key_size: int
    signed_at: datetime
    validation_code: str
    certificate_serial: str


def issuer_party(seller: Seller, default_tax_id: str = DEFAULT_ISSUER_TAX_ID) -> Party:
    if seller.address is not None:
        address = f"{seller.address.street or ''}, {seller.address.city or ''}"
    else:
        address = ADDRESS_PLACEHOLDER
    return Party(
        tax_id=seller.tax_id or default_tax_id,
        name=seller.business_name or seller.name,
        address=address,
    )


def recipient_party(customer: Customer) -> Party:
    address = customer.address.full() if customer.address else ""
    return Party(
        tax_id=customer.tax_id or "",
        name=customer.name or "",
        address=address or ADDRESS_PLACEHOLDER,
    )


def _ensure_recipient_complete(customer: Customer) -> Result[Customer]:
    if not customer.tax_id or not customer.name:
        return ResultFailures.incomplete_data(
            f"Customer {customer.id} lacks the tax ID or name required for a DTE"
        )
    return Result.success(customer)


class DteLifecycle:
    """Generate, sign, void, deliver and validate DTEs."""

    def __init__(
        self,
        sales: SaleStore,
        customers: CustomerStore,
        sellers: SellerStore,
        dtes: DteRepository,
        engine: SignatureEngine,
        registry: CertificateRegistry,
        mail: MailTransport,
        pdf: PdfRenderer,
        sender: str = "facturacion@empresa.com",
        default_issuer_tax_id: str = DEFAULT_ISSUER_TAX_ID,
        clock: Clock = utcnow,
    ) -> None:
        self._sales = sales
        self._customers = customers
        self._sellers = sellers
        self._dtes = dtes
        self._engine = engine
        self._registry = registry
        self._mail = mail
        self._pdf = pdf
        self._sender = sender
        self._default_issuer_tax_id = default_issuer_tax_id
        self._clock = clock

    # ──────────────────────── Generation ────────────────────────

    def generate(self, sale_id: str, document_type: str = DocumentType.FACTURA.value) -> Result[Dte]:
        """Create, sign, render and persist the DTE for a sale, then mark the sale invoiced."""
        return (
            DocumentType.parse(document_type)
            .flat_map(lambda doc_type: self._gather(sale_id, doc_type))
            .flat_map(
                lambda draft: self._draft_dte(draft)
                .flat_map(lambda dte: dte.sign(self._engine))
                .flat_map(self._attach_files)
                .flat_map(self._dtes.save)
                .flat_map(lambda dte: self._mark_invoiced(draft.sale, dte))
            )
            .peek(
                lambda dte: log.info(
                    "dte.generated",
                    dte_id=dte.id,
                    document_number=dte.document_number,
                    sale_id=dte.sale_id,
                    status=dte.status.value,
                )
            )
        )

    def _gather(self, sale_id: str, document_type: DocumentType) -> Result[_Draft]:
        return (
            self._sales.find_by_id(sale_id)
            .ensure(lambda sale: not sale.invoiced, ErrorCode.INVALID_STATE, f"Sale {sale_id} is already invoiced")
            .flat_map(
                lambda sale: self._customers.find_by_id(sale.customer_id)
                .flat_map(_ensure_recipient_complete)
                .flat_map(
                    lambda customer: self._sellers.find_by_id(sale.seller_id).map(
                        lambda seller: _Draft(sale, customer, seller, document_type)
                    )
                )
            )
        )

    def _draft_dte(self, draft: _Draft) -> Result[Dte]:
        return Totals.of(draft.sale.subtotal, draft.sale.tax).flat_map(
            lambda totals: self._dtes.next_sequence().map(
                lambda sequence: self._new_dte(draft, totals, sequence)
            )
        )

    def _new_dte(self, draft: _Draft, totals: Totals, sequence: int) -> Dte:
        now = self._clock()
        return Dte(
            document_number=format_document_number(now, sequence),
            document_type=draft.document_type,
            issuer=issuer_party(draft.seller, self._default_issuer_tax_id),
            recipient=recipient_party(draft.customer),
            sale_id=draft.sale.id,
            totals=totals,
            created_at=now,
            updated_at=now,
        )

    def _attach_files(self, dte: Dte) -> Result[Dte]:
        return Result.from_computation(
            lambda: dte.render().encode("utf-8"),
            ErrorCode.MALFORMED_INPUT,
            f"DTE {dte.document_number} holds text that cannot be written as XML",
        ).flat_map(lambda xml: self._pdf.render(dte).map(lambda pdf: dte.with_files(xml, pdf, self._clock())))

    def _mark_invoiced(self, sale: Sale, dte: Dte) -> Result[Dte]:
        invoiced = replace(sale, invoiced=True, invoice_number=dte.document_number, status=SaleStatus.INVOICED)
        return self._sales.save(invoiced).map(lambda _: dte)

    # ──────────────────────── Transitions ────────────────────────

    def void(self, dte_id: str, reason: str, credit_note_number: str | None = None) -> Result[Dte]:
        """Void a DTE (terminal) and release its sale for re-invoicing."""
        return (
            self.get(dte_id)
            .flat_map(lambda dte: dte.void(reason, credit_note_number, self._clock()))
            .flat_map(self._dtes.save)
            .flat_map(self._release_sale)
            .peek(lambda dte: log.info("dte.voided", dte_id=dte.id, document_number=dte.document_number))
        )

    def _release_sale(self, dte: Dte) -> Result[Dte]:
        return (
            self._sales.find_by_id(dte.sale_id)
            .map(lambda sale: replace(sale, invoiced=False, invoice_number=None, status=SaleStatus.COMPLETED))
            .flat_map(self._sales.save)
            .map(lambda _: dte)
        )

    def simulate_status_transition(self, dte_id: str, new_status: str) -> Result[StatusTransition]:
        """Stand-in for the tax authority's answer: PENDING, ACCEPTED, REJECTED or OBSERVED."""
        try:
            target = DteStatus(new_status)
        except ValueError:
            return ResultFailures.invalid_state(f"Invalid status target: {new_status!r}")

        return self.get(dte_id).flat_map(
            lambda dte: dte.simulate_status(target, self._clock())
            .flat_map(self._dtes.save)
            .map(
                lambda updated: StatusTransition(
                    dte_id=updated.id,
                    document_number=updated.document_number,
                    previous_status=dte.status,
                    new_status=updated.status,
                    changed_at=updated.updated_at,
                )
            )
            .peek(
                lambda t: log.info(
                    "dte.status_changed",
                    dte_id=t.dte_id,
                    previous=t.previous_status.value,
                    new=t.new_status.value,
                )
            )
        )

    # ──────────────────────── Delivery ────────────────────────

    def send(self, dte_id: str, recipient_email: str | None = None) -> Result[DeliveryReceipt]:
        """
        Deliver the DTE's XML and PDF to the recipient.

        The attempt counter is saved before the transport is called, so a
        failed delivery still shows up as an attempt.
        """
        return (
            self.get(dte_id)
            .ensure(lambda dte: not dte.is_voided, ErrorCode.INVALID_STATE, "Cannot send a voided DTE")
            .flat_map(
                lambda dte: self._sales.find_by_id(dte.sale_id)
                .flat_map(lambda sale: self._customers.find_by_id(sale.customer_id))
                .flat_map(lambda customer: self._prepare_delivery(dte, customer, recipient_email))
            )
        )

    def _prepare_delivery(
        self, dte: Dte, customer: Customer, override: str | None
    ) -> Result[DeliveryReceipt]:
        if dte.files.xml is None or not dte.files.xml.content:
            return ResultFailures.incomplete_data(f"DTE {dte.document_number} has no generated XML")

        email = (override or customer.email or "").strip()
        if not email:
            return ResultFailures.incomplete_data(
                "No recipient email was provided and the customer has none on file"
            )
        if not EMAIL_PATTERN.match(email):
            return ResultFailures.malformed_input(f"Invalid email address: {email}")

        return (
            self._pdf_bytes(dte)
            .map(lambda pdf: self._message(dte, customer, email, pdf))
            .flat_map(
                lambda message: self._dtes.save(dte.with_delivery_attempt(self._clock())).flat_map(
                    lambda attempted: self._deliver(attempted, message)
                )
            )
        )

    def _pdf_bytes(self, dte: Dte) -> Result[bytes]:
        if dte.files.pdf is not None and dte.files.pdf.content:
            return Result.success(dte.files.pdf.content)
        return self._pdf.render(dte)

    def _message(self, dte: Dte, customer: Customer, email: str, pdf: bytes) -> MailMessage:
        number = dte.document_number
        html = (
            "<h2>Factura Electrónica</h2>"
            f"<p>Estimado/a {customer.name or 'Cliente'},</p>"
            f"<p>Adjunto encontrará su factura electrónica DTE {number}.</p>"
            f"<p>Total: ${dte.totals.total:.2f}</p>"
            "<p>Gracias por su compra.</p>"
        )
        return MailMessage(
            sender=self._sender,
            recipient=email,
            subject=f"DTE {number} - Factura Electrónica",
            html=html,
            attachments=(
                MailAttachment(f"DTE_{number}.xml", dte.files.xml.content, "application/xml"),  # type: ignore[union-attr]
                MailAttachment(f"DTE_{number}.pdf", pdf, "application/pdf"),
            ),
        )

    def _deliver(self, dte: Dte, message: MailMessage) -> Result[DeliveryReceipt]:
        return (
            self._mail.deliver(message)
            .peek_failure(
                lambda err: log.warning(
                    "dte.delivery_failed",
                    dte_id=dte.id,
                    attempts=dte.delivery.attempts,
                    error=err.message,
                )
            )
            .flat_map(
                lambda mode: self._dtes.save(dte.with_delivery(message.recipient, self._clock())).map(
                    lambda sent: DeliveryReceipt(
                        dte_id=sent.id,
                        document_number=sent.document_number,
                        recipient_email=message.recipient,
                        sent_at=sent.delivery.sent_at,  # type: ignore[arg-type]
                        attempts=sent.delivery.attempts,
                        mode=mode,
                    )
                )
            )
            .peek(lambda r: log.info("dte.sent", dte_id=r.dte_id, recipient=r.recipient_email, mode=r.mode))
        )

    # ──────────────────────── Validation ────────────────────────

    def validate_signature(self, dte_id: str, strict: bool = False) -> Result[SignatureReport]:
        """
        Validate the DTE's signature bundle against its current fields.

        strict=False always returns the report (is_valid may be False);
        strict=True turns an invalid report into VALIDATION_FAILURE.
        """
        return self.get(dte_id).flat_map(lambda dte: self._validate(dte, strict))

    def _validate(self, dte: Dte, strict: bool) -> Result[SignatureReport]:
        bundle = dte.signature
        if bundle is None:
            return ResultFailures.incomplete_data(f"DTE {dte.document_number} is not signed")

        validation = (
            self._engine.verify(bundle, dte.signable_fields())
            if strict
            else Result.success(self._engine.validate(bundle, dte.signable_fields()))
        )
        return validation.map(
            lambda report: SignatureReport(
                dte_id=dte.id,
                document_number=dte.document_number,
                validation=report,
                signature_id=bundle.signature_id,
                algorithm=bundle.algorithm,
                key_size=bundle.key_size,
                signed_at=bundle.signed_at,
                validation_code=bundle.validation_code,
                certificate_serial=bundle.certificate.serial_number,
            )
        )

    # ──────────────────────── Queries ────────────────────────

    def get(self, dte_id: str) -> Result[Dte]:
        return self._dtes.find_by_id(dte_id)

    def search(self, query: DteQuery) -> Result[DtePage]:
        return self._dtes.search(query)

    def export_archive(self, query: DteQuery) -> Result[bytes]:
        """ZIP of DTE_<number>.xml / DTE_<number>.pdf for every DTE matching the filters."""
        return (
            self._dtes.find_all(query)
            .ensure(bool, ErrorCode.NOT_FOUND, "No DTEs match the export filters")
            .map(_zip_files)
            .peek(lambda archive: log.info("dte.exported", size_bytes=len(archive)))
        )

    # ──────────────────────── Certificates ────────────────────────

    def list_certificates(self) -> list[Certificate]:
        return self._registry.list_all()

    def revoke_certificate(self, issuer_tax_id: str) -> Result[RevocationReceipt]:
        return self._registry.revoke(issuer_tax_id)


def _zip_files(dtes: list[Dte]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for dte in dtes:
            if dte.files.xml is not None:
                archive.writestr(f"DTE_{dte.document_number}.xml", dte.files.xml.content)
            if dte.files.pdf is not None:
                archive.writestr(f"DTE_{dte.document_number}.pdf", dte.files.pdf.content)
    return buffer.getvalue()
