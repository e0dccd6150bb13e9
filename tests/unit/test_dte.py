"""
Unit tests for the DTE entity — state machine, artifacts and XML rendering.

Test categories:
  - Status mapping: every signature outcome maps to a document status
  - Transitions: sign / simulate / void, VOIDED is terminal
  - Rendering: canonical XML content, idempotence, unsigned placeholders
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from lxml import etree
from support import NOW, FakeClock, ScriptedRandom

from dte_signer.domain.dte import (
    DSIG_NS,
    DTE_NS,
    UNSIGNED,
    Dte,
    format_document_number,
    map_signature_status,
)
from dte_signer.domain.hashing import sha256_hex
from dte_signer.domain.models import (
    DocumentType,
    DteStatus,
    Party,
    SignatureStatus,
    Totals,
)
from dte_signer.railway import ErrorCode, Result, ResultAssertions
from dte_signer.signing.engine import SignatureEngine
from dte_signer.signing.registry import CertificateRegistry

NS = {"dte": DTE_NS, "ds": DSIG_NS}


def _unsigned_dte(**overrides: object) -> Dte:
    fields: dict[str, object] = {
        "document_number": "20260300000001",
        "document_type": DocumentType.FACTURA,
        "issuer": Party("12345678-9", "Comercializadora Ejemplo S.A. de C.V.", "Boulevard Los Héroes 45, San Salvador"),
        "recipient": Party("1234-567890-123-4", "Distribuidora La Palma S.A. de C.V.", "Calle Arce 1020, San Salvador"),
        "sale_id": "sale-0001",
        "totals": Totals.of(Decimal("200.00"), Decimal("26.00")).value(),
        "created_at": NOW,
        "updated_at": NOW,
        "id": "dte-0001",
    }
    fields.update(overrides)
    return Dte(**fields)  # type: ignore[arg-type]


def _engine(roll: float = 0.1) -> SignatureEngine:
    clock = FakeClock()
    return SignatureEngine(CertificateRegistry(clock=clock), rng=ScriptedRandom([roll]), clock=clock)


def _signed_dte(roll: float = 0.1) -> Dte:
    return ResultAssertions.assert_success(_unsigned_dte().sign(_engine(roll)))


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("outcome", "expected"),
        [
            ("ACCEPTED", DteStatus.ACCEPTED),
            ("REJECTED", DteStatus.REJECTED),
            ("OBSERVED", DteStatus.OBSERVED),
        ],
    )
    def test_known_outcomes(self, outcome: str, expected: DteStatus) -> None:
        assert map_signature_status(outcome) is expected

    @pytest.mark.parametrize("outcome", ["", "UNKNOWN", "accepted", "VOIDED"])
    def test_anything_else_is_pending(self, outcome: str) -> None:
        """
        GIVEN an outcome string that is not one of the three known values
        WHEN mapped
        THEN the document status is PENDING (the mapping is total).
        """
        assert map_signature_status(outcome) is DteStatus.PENDING


class TestDocumentNumber:
    def test_format_is_year_month_and_eight_digit_sequence(self) -> None:
        assert format_document_number(NOW, 1) == "20260300000001"
        assert format_document_number(NOW, 12345) == "20260300012345"


class TestSign:
    @pytest.mark.parametrize(
        ("roll", "expected"),
        [(0.1, DteStatus.ACCEPTED), (0.85, DteStatus.OBSERVED), (0.95, DteStatus.REJECTED)],
    )
    def test_sign_applies_mapped_outcome(self, roll: float, expected: DteStatus) -> None:
        """
        GIVEN an unsigned DTE and an engine forced to a given outcome
        WHEN the DTE is signed
        THEN the status follows the outcome and the bundle is attached.
        """
        dte = _signed_dte(roll)
        assert dte.status is expected
        assert dte.signature is not None
        assert dte.updated_at == dte.signature.signed_at

    def test_signer_failure_propagates(self) -> None:
        signer = MagicMock()
        signer.sign.return_value = Result.failure(ErrorCode.MALFORMED_INPUT, "bad fields")

        result = _unsigned_dte().sign(signer)

        ResultAssertions.assert_failure(result, ErrorCode.MALFORMED_INPUT)

    def test_signable_fields_cover_business_data(self) -> None:
        fields = _unsigned_dte().signable_fields()
        assert fields["documentNumber"] == "20260300000001"
        assert fields["documentType"] == "01"
        assert fields["issuer"]["taxId"] == "12345678-9"
        assert fields["recipient"]["taxId"] == "1234-567890-123-4"
        assert fields["totals"] == {"subtotal": "200.00", "tax": "26.00", "total": "226.00"}


class TestTransitions:
    def test_simulate_status_changes_status(self) -> None:
        dte = _signed_dte()
        later = NOW + timedelta(minutes=5)

        updated = ResultAssertions.assert_success(dte.simulate_status(DteStatus.OBSERVED, later))

        assert updated.status is DteStatus.OBSERVED
        assert updated.updated_at == later

    def test_simulate_status_rejects_voided_target(self) -> None:
        """
        GIVEN a signed DTE
        WHEN a status simulation targets VOIDED
        THEN it fails with INVALID_STATE (voiding has its own operation).
        """
        result = _signed_dte().simulate_status(DteStatus.VOIDED, NOW)
        ResultAssertions.assert_failure(result, ErrorCode.INVALID_STATE)

    def test_void_records_reason_and_credit_note(self) -> None:
        voided = ResultAssertions.assert_success(_signed_dte().void(" Error en datos ", "NC-0001", NOW))

        assert voided.status is DteStatus.VOIDED
        assert voided.void_info is not None
        assert voided.void_info.reason == "Error en datos"
        assert voided.void_info.credit_note_number == "NC-0001"
        assert voided.void_info.voided_at == NOW

    def test_void_requires_reason(self) -> None:
        ResultAssertions.assert_failure(_signed_dte().void("   ", None, NOW), ErrorCode.INCOMPLETE_DATA)

    def test_void_is_terminal(self) -> None:
        """
        GIVEN a voided DTE
        WHEN it is voided again, status-simulated, or signed
        THEN every attempt fails with INVALID_STATE and the status stays VOIDED.
        """
        voided = ResultAssertions.assert_success(_signed_dte().void("duplicada", None, NOW))

        ResultAssertions.assert_failure(voided.void("otra vez", None, NOW), ErrorCode.INVALID_STATE)
        for target in (DteStatus.PENDING, DteStatus.ACCEPTED, DteStatus.REJECTED, DteStatus.OBSERVED):
            ResultAssertions.assert_failure(voided.simulate_status(target, NOW), ErrorCode.INVALID_STATE)
        ResultAssertions.assert_failure(voided.sign(_engine()), ErrorCode.INVALID_STATE)
        assert voided.status is DteStatus.VOIDED

    def test_delivery_attempts_accumulate(self) -> None:
        dte = _unsigned_dte().with_delivery_attempt(NOW).with_delivery_attempt(NOW)
        assert dte.delivery.attempts == 2
        sent = dte.with_delivery("cliente@example.com", NOW)
        assert sent.delivery.attempts == 2
        assert sent.delivery.sent_at == NOW
        assert sent.delivery.recipient_email == "cliente@example.com"

    def test_with_files_stores_hashes_and_paths(self) -> None:
        dte = _unsigned_dte().with_files(b"<xml/>", b"%PDF", NOW)

        assert dte.files.xml is not None and dte.files.pdf is not None
        assert dte.files.xml.sha256 == sha256_hex(b"<xml/>")
        assert dte.files.xml.path == "dtes/xml/20260300000001.xml"
        assert dte.files.pdf.path == "dtes/pdf/20260300000001.pdf"


class TestRender:
    def test_render_is_idempotent(self) -> None:
        """
        GIVEN a signed DTE that is not modified
        WHEN rendered twice
        THEN both outputs are byte-identical.
        """
        dte = _signed_dte()
        assert dte.render() == dte.render()

    def test_render_contains_document_fields(self) -> None:
        dte = _signed_dte()
        xml = dte.render()
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')

        root = etree.fromstring(xml.split("\n", 1)[1].encode("utf-8"))
        assert root.findtext("dte:Encabezado/dte:NumeroDTE", namespaces=NS) == "20260300000001"
        assert root.findtext("dte:Encabezado/dte:TipoDTE", namespaces=NS) == "01"
        assert root.findtext("dte:Encabezado/dte:Estado", namespaces=NS) == "ACCEPTED"
        assert root.findtext("dte:Emisor/dte:NIT", namespaces=NS) == "12345678-9"
        assert root.findtext("dte:Receptor/dte:NIT", namespaces=NS) == "1234-567890-123-4"
        assert root.findtext("dte:Totales/dte:GranTotal", namespaces=NS) == "226.00"
        assert root.findtext("dte:Totales/dte:TotalLetras", namespaces=NS) == dte.total_in_words

        assert dte.signature is not None
        assert root.findtext("dte:Signature/ds:SignatureValue", namespaces=NS) == dte.signature.signature_value
        assert root.findtext("dte:Signature/ds:SignedInfo/ds:Reference/ds:DigestValue", namespaces=NS) == (
            dte.signature.content_hash
        )
        assert root.find("dte:Signature", namespaces=NS).get("Id") == dte.signature.signature_id

    def test_unsigned_document_uses_placeholders(self) -> None:
        root = etree.fromstring(_unsigned_dte().render().split("\n", 1)[1].encode("utf-8"))
        assert root.findtext("dte:Signature/ds:SignatureValue", namespaces=NS) == UNSIGNED
        assert root.findtext("dte:Encabezado/dte:CodigoValidacion", namespaces=NS) == UNSIGNED

    def test_render_escapes_markup_in_names(self) -> None:
        dte = _unsigned_dte(recipient=Party("1", "Ferretería <Los & Pinos>", "San Miguel"))
        root = etree.fromstring(dte.render().split("\n", 1)[1].encode("utf-8"))
        assert root.findtext("dte:Receptor/dte:Nombre", namespaces=NS) == "Ferretería <Los & Pinos>"

    def test_signature_outcome_enum_matches_status_names(self) -> None:
        for outcome in SignatureStatus:
            assert map_signature_status(outcome.value).value == outcome.value
