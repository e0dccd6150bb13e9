"""
DTE entity — the electronic tax document and its lifecycle state machine.

    PENDING ──sign / simulate──→ ACCEPTED | REJECTED | OBSERVED
       │                              │
       └──────────── void ────────────┴──→ VOIDED (terminal)

The entity is a frozen dataclass: every transition returns a new instance
wrapped in a Result, and a transition the table does not allow is an
INVALID_STATE failure. Nothing outside this module writes `status`.

render() produces the canonical XML representation. It is a pure function
of the current fields, so rendering an unchanged DTE twice yields
byte-identical output; unsigned documents carry placeholders in the
signature block.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from lxml import etree

from dte_signer.domain.hashing import sha256_hex
from dte_signer.domain.models import (
    Delivery,
    DocumentType,
    DteStatus,
    GeneratedFile,
    GeneratedFiles,
    Party,
    SignatureBundle,
    Totals,
    VoidInfo,
)
from dte_signer.domain.ports import Signer
from dte_signer.domain.words import amount_in_words
from dte_signer.railway import Result, ResultFailures

DTE_NS = "http://www.sat.gob.sv/dte/fel/0.1.0"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
XML_VERSION = "1.0"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'
UNSIGNED = "SIN_FIRMA"

_SIGNATURE_METHOD = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
_DIGEST_METHOD = "http://www.w3.org/2001/04/xmlenc#sha256"

_SIGNATURE_TO_DOCUMENT_STATUS: dict[str, DteStatus] = {
    "ACCEPTED": DteStatus.ACCEPTED,
    "REJECTED": DteStatus.REJECTED,
    "OBSERVED": DteStatus.OBSERVED,
}

_LIVE = frozenset(
    {DteStatus.PENDING, DteStatus.ACCEPTED, DteStatus.REJECTED, DteStatus.OBSERVED, DteStatus.VOIDED}
)

_TRANSITIONS: dict[DteStatus, frozenset[DteStatus]] = {
    DteStatus.PENDING: _LIVE,
    DteStatus.ACCEPTED: _LIVE,
    DteStatus.REJECTED: _LIVE,
    DteStatus.OBSERVED: _LIVE,
    DteStatus.VOIDED: frozenset(),
}

SIMULATABLE_STATUSES = frozenset(
    {DteStatus.PENDING, DteStatus.ACCEPTED, DteStatus.REJECTED, DteStatus.OBSERVED}
)


def map_signature_status(status: str) -> DteStatus:
    """Map a signature outcome to a document status; anything unrecognized is PENDING."""
    return _SIGNATURE_TO_DOCUMENT_STATUS.get(status, DteStatus.PENDING)


def format_document_number(issued_at: datetime, sequence: int) -> str:
    """YYYYMM followed by the 8-digit zero-padded sequence."""
    return f"{issued_at:%Y%m}{sequence:08d}"


@dataclass(frozen=True, slots=True)
class Dte:
    """An electronic tax document generated from one sale."""

    document_number: str
    document_type: DocumentType
    issuer: Party
    recipient: Party
    sale_id: str
    totals: Totals
    created_at: datetime
    updated_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))
    status: DteStatus = DteStatus.PENDING
    signature: SignatureBundle | None = None
    files: GeneratedFiles = field(default_factory=GeneratedFiles)
    delivery: Delivery = field(default_factory=Delivery)
    void_info: VoidInfo | None = None

    @property
    def is_voided(self) -> bool:
        return self.status is DteStatus.VOIDED

    @property
    def total_in_words(self) -> str:
        return amount_in_words(self.totals.total)

    def signable_fields(self) -> Mapping[str, Any]:
        """The business fields covered by the signature."""
        return {
            "documentNumber": self.document_number,
            "documentType": self.document_type.value,
            "issuer": _party_fields(self.issuer),
            "recipient": _party_fields(self.recipient),
            "totals": {
                "subtotal": f"{self.totals.subtotal:.2f}",
                "tax": f"{self.totals.tax:.2f}",
                "total": f"{self.totals.total:.2f}",
            },
        }

    # ──────────────────────── Transitions ────────────────────────

    def _transition(self, target: DteStatus, at: datetime) -> Result[Dte]:
        if self.is_voided:
            return ResultFailures.invalid_state(
                f"DTE {self.document_number} is voided; no further transitions are allowed"
            )
        if target not in _TRANSITIONS[self.status]:
            return ResultFailures.invalid_state(
                f"Cannot move DTE {self.document_number} from {self.status.value} to {target.value}"
            )
        return Result.success(replace(self, status=target, updated_at=at))

    def sign(self, signer: Signer) -> Result[Dte]:
        """Ask the signer for a bundle and apply the mapped outcome."""
        if self.is_voided:
            return ResultFailures.invalid_state(f"Cannot sign voided DTE {self.document_number}")
        return signer.sign(self.signable_fields(), self.issuer.tax_id).flat_map(self.with_signature)

    def with_signature(self, bundle: SignatureBundle) -> Result[Dte]:
        target = map_signature_status(bundle.status.value)
        return self._transition(target, bundle.signed_at).map(
            lambda dte: replace(dte, signature=bundle)
        )

    def simulate_status(self, target: DteStatus, at: datetime) -> Result[Dte]:
        """Explicit status change standing in for the authority's asynchronous answer."""
        if target not in SIMULATABLE_STATUSES:
            return ResultFailures.invalid_state(
                f"Invalid status target {target.value}; use void to cancel a DTE"
            )
        return self._transition(target, at)

    def void(self, reason: str, credit_note_number: str | None, at: datetime) -> Result[Dte]:
        if self.is_voided:
            return ResultFailures.invalid_state(f"DTE {self.document_number} is already voided")
        if not reason or not reason.strip():
            return ResultFailures.incomplete_data("A reason is required to void a DTE")
        info = VoidInfo(voided_at=at, reason=reason.strip(), credit_note_number=credit_note_number)
        return self._transition(DteStatus.VOIDED, at).map(lambda dte: replace(dte, void_info=info))

    # ──────────────────────── Artifacts & delivery ────────────────────────

    def with_files(self, xml: bytes, pdf: bytes, at: datetime) -> Dte:
        files = GeneratedFiles(
            xml=GeneratedFile(content=xml, sha256=sha256_hex(xml), path=f"dtes/xml/{self.document_number}.xml"),
            pdf=GeneratedFile(content=pdf, sha256=sha256_hex(pdf), path=f"dtes/pdf/{self.document_number}.pdf"),
        )
        return replace(self, files=files, updated_at=at)

    def with_delivery_attempt(self, at: datetime) -> Dte:
        delivery = replace(self.delivery, attempts=self.delivery.attempts + 1)
        return replace(self, delivery=delivery, updated_at=at)

    def with_delivery(self, recipient_email: str, at: datetime) -> Dte:
        delivery = replace(self.delivery, sent_at=at, recipient_email=recipient_email)
        return replace(self, delivery=delivery, updated_at=at)

    # ──────────────────────── Rendering ────────────────────────

    def render(self) -> str:
        """Canonical XML representation of the document."""
        root = etree.Element(_dte("DTE"), nsmap={"dte": DTE_NS})

        header = etree.SubElement(root, _dte("Encabezado"))
        _text(header, "Version", XML_VERSION)
        _text(header, "TipoDTE", self.document_type.value)
        _text(header, "NombreDTE", self.document_type.label)
        _text(header, "NumeroDTE", self.document_number)
        _text(header, "FechaEmision", self.created_at.date().isoformat())
        _text(header, "HoraEmision", self.created_at.strftime("%H:%M:%S"))
        _text(header, "FechaFirma", self.signature.signed_at.isoformat() if self.signature else UNSIGNED)
        _text(header, "CodigoValidacion", self.signature.validation_code if self.signature else UNSIGNED)
        _text(header, "Estado", self.status.value)

        _party_block(root, "Emisor", self.issuer)
        _party_block(root, "Receptor", self.recipient)

        totals = etree.SubElement(root, _dte("Totales"))
        _text(totals, "SubTotal", f"{self.totals.subtotal:.2f}")
        _text(totals, "Impuesto", f"{self.totals.tax:.2f}")
        _text(totals, "GranTotal", f"{self.totals.total:.2f}")
        _text(totals, "TotalLetras", self.total_in_words)

        self._signature_block(root)

        return XML_DECLARATION + etree.tostring(root, encoding="unicode", pretty_print=True)

    def _signature_block(self, root: etree._Element) -> None:
        bundle = self.signature
        signature = etree.SubElement(root, _dte("Signature"), nsmap={None: DSIG_NS})
        signature.set("Id", bundle.signature_id if bundle else UNSIGNED)

        signed_info = etree.SubElement(signature, _dsig("SignedInfo"))
        etree.SubElement(signed_info, _dsig("SignatureMethod")).set("Algorithm", _SIGNATURE_METHOD)
        reference = etree.SubElement(signed_info, _dsig("Reference"))
        reference.set("URI", f"#{self.document_number}")
        etree.SubElement(reference, _dsig("DigestMethod")).set("Algorithm", _DIGEST_METHOD)
        etree.SubElement(reference, _dsig("DigestValue")).text = bundle.content_hash if bundle else UNSIGNED

        etree.SubElement(signature, _dsig("SignatureValue")).text = (
            bundle.signature_value if bundle else UNSIGNED
        )

        x509 = etree.SubElement(etree.SubElement(signature, _dsig("KeyInfo")), _dsig("X509Data"))
        etree.SubElement(x509, _dsig("X509SubjectName")).text = (
            bundle.certificate.subject_dn if bundle else UNSIGNED
        )
        etree.SubElement(x509, _dsig("X509SerialNumber")).text = (
            bundle.certificate.serial_number if bundle else UNSIGNED
        )


def _party_fields(party: Party) -> dict[str, str]:
    return {"taxId": party.tax_id, "name": party.name, "address": party.address}


def _dte(tag: str) -> str:
    return f"{{{DTE_NS}}}{tag}"


def _dsig(tag: str) -> str:
    return f"{{{DSIG_NS}}}{tag}"


def _text(parent: etree._Element, tag: str, value: str) -> None:
    etree.SubElement(parent, _dte(tag)).text = value


def _party_block(root: etree._Element, tag: str, party: Party) -> None:
    block = etree.SubElement(root, _dte(tag))
    _text(block, "NIT", party.tax_id)
    _text(block, "Nombre", party.name)
    _text(block, "Direccion", party.address)
