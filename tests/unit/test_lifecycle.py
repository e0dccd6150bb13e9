"""
Unit tests for the DTE lifecycle orchestrator.

Runs against in-memory stores with a frozen clock, a scripted signing
outcome and mocked mail/PDF ports.

Test categories:
  - Generation: success track, each precondition failure, no partial DTE
  - Numbering: sequential format, uniqueness under concurrent generation
  - Void and status simulation
  - Delivery: every precondition, attempt accounting, transport failure
  - Signature validation, search and export
"""

from __future__ import annotations

import io
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from support import (
    CUSTOMER_EMAIL,
    CUSTOMER_TAX_ID,
    NOW,
    OBSERVE,
    SALE_ID,
    SELLER_TAX_ID,
    World,
    build_world,
    make_customer,
    make_sale,
    make_seller,
)

from dte_signer.adapters.memory import (
    InMemoryCustomerStore,
    InMemorySaleStore,
    InMemorySellerStore,
)
from dte_signer.domain.dte import Dte
from dte_signer.domain.models import (
    ADDRESS_PLACEHOLDER,
    CertificateStatus,
    DocumentType,
    DteStatus,
    GeneratedFiles,
    SaleStatus,
)
from dte_signer.domain.ports import DteQuery
from dte_signer.railway import ErrorCode, Result, ResultAssertions


def _generate(world: World, sale_id: str = SALE_ID) -> Dte:
    return ResultAssertions.assert_success(world.lifecycle.generate(sale_id))


def _sale(world: World, sale_id: str = SALE_ID):
    return ResultAssertions.assert_success(world.sales.find_by_id(sale_id))


# ─────────────────────── Generation ───────────────────────


class TestGenerate:
    def test_generate_then_validate(self, world: World) -> None:
        """
        GIVEN a sale with subtotal 200.00 and tax 26.00
        WHEN a DTE is generated and its signature validated
        THEN the DTE is signed with total 226.00 and the validation is valid.
        """
        dte = _generate(world)

        assert dte.status in {DteStatus.ACCEPTED, DteStatus.REJECTED, DteStatus.OBSERVED}
        assert dte.signature is not None
        assert dte.totals.total == Decimal("226.00")

        report = ResultAssertions.assert_success(world.lifecycle.validate_signature(dte.id))
        assert report.validation.is_valid
        assert report.validation.certificate_status is CertificateStatus.VALID
        assert report.signature_id == dte.signature.signature_id

    def test_document_number_and_parties(self, world: World) -> None:
        dte = _generate(world)

        assert dte.document_number == "20260300000001"
        assert dte.document_type is DocumentType.FACTURA
        assert dte.issuer.tax_id == SELLER_TAX_ID
        assert dte.issuer.name == "Comercializadora Ejemplo S.A. de C.V."
        assert dte.issuer.address == "Boulevard Los Héroes 45, San Salvador"
        assert dte.recipient.tax_id == CUSTOMER_TAX_ID
        assert dte.recipient.address == "Calle Arce 1020, San Salvador, San Salvador"
        assert dte.created_at == NOW

    def test_artifacts_are_stored_with_hashes(self, world: World) -> None:
        dte = _generate(world)

        assert dte.files.xml is not None and dte.files.pdf is not None
        assert dte.files.xml.content.decode("utf-8") == dte.render()
        assert dte.files.xml.path == "dtes/xml/20260300000001.xml"
        assert dte.files.pdf.content == b"%PDF-1.4 test"
        world.pdf.render.assert_called_once()

    def test_sale_is_flipped_to_invoiced(self, world: World) -> None:
        dte = _generate(world)

        sale = _sale(world)
        assert sale.invoiced is True
        assert sale.invoice_number == dte.document_number
        assert sale.status is SaleStatus.INVOICED

    def test_dte_is_persisted(self, world: World) -> None:
        dte = _generate(world)
        assert ResultAssertions.assert_success(world.lifecycle.get(dte.id)) == dte

    def test_observed_outcome_sets_status(self, world: World) -> None:
        world.rng.script([OBSERVE])
        assert _generate(world).status is DteStatus.OBSERVED

    def test_double_invoicing_is_rejected(self, world: World) -> None:
        """
        GIVEN a sale that was just invoiced
        WHEN generate is called again for it
        THEN it fails with INVALID_STATE and no second DTE exists.
        """
        _generate(world)

        result = world.lifecycle.generate(SALE_ID)

        ResultAssertions.assert_failure(result, ErrorCode.INVALID_STATE)
        ResultAssertions.assert_failure_message_contains(result, "already invoiced")
        assert world.dtes.count().value() == 1

    @pytest.mark.parametrize("missing", ["tax_id", "name"])
    def test_incomplete_recipient_creates_nothing(self, missing: str) -> None:
        """
        GIVEN a customer without a tax ID (or name)
        WHEN generate is called
        THEN it fails with INCOMPLETE_DATA, no DTE exists and the sale is untouched.
        """
        world = build_world(customers=InMemoryCustomerStore([make_customer(**{missing: None})]))

        result = world.lifecycle.generate(SALE_ID)

        ResultAssertions.assert_failure(result, ErrorCode.INCOMPLETE_DATA)
        assert world.dtes.count().value() == 0
        assert _sale(world).invoiced is False

    def test_unknown_sale_is_not_found(self, world: World) -> None:
        ResultAssertions.assert_failure(world.lifecycle.generate("nope"), ErrorCode.NOT_FOUND)

    def test_unknown_customer_is_not_found(self) -> None:
        world = build_world(customers=InMemoryCustomerStore())
        ResultAssertions.assert_failure(world.lifecycle.generate(SALE_ID), ErrorCode.NOT_FOUND)

    def test_unknown_seller_is_not_found(self) -> None:
        world = build_world(sellers=InMemorySellerStore())
        ResultAssertions.assert_failure(world.lifecycle.generate(SALE_ID), ErrorCode.NOT_FOUND)

    def test_unsupported_document_type_is_malformed(self, world: World) -> None:
        result = world.lifecycle.generate(SALE_ID, "99")

        ResultAssertions.assert_failure(result, ErrorCode.MALFORMED_INPUT)
        assert _sale(world).invoiced is False

    def test_other_document_type(self, world: World) -> None:
        dte = ResultAssertions.assert_success(world.lifecycle.generate(SALE_ID, "02"))
        assert dte.document_type is DocumentType.CREDITO_FISCAL

    def test_seller_without_tax_id_or_address_uses_defaults(self) -> None:
        seller = make_seller(tax_id=None, business_name=None, address=None)
        world = build_world(sellers=InMemorySellerStore([seller]))

        dte = _generate(world)

        assert dte.issuer.tax_id == "00000000-0"
        assert dte.issuer.name == "Ana Martínez"
        assert dte.issuer.address == ADDRESS_PLACEHOLDER
        assert dte.signature is not None
        assert dte.signature.certificate.issuer_tax_id == "00000000-0"

    def test_customer_without_address_uses_placeholder(self) -> None:
        world = build_world(customers=InMemoryCustomerStore([make_customer(address=None)]))
        assert _generate(world).recipient.address == ADDRESS_PLACEHOLDER

    def test_negative_sale_totals_are_malformed(self) -> None:
        world = build_world(sales=InMemorySaleStore([make_sale(subtotal=Decimal("-5.00"))]))

        ResultAssertions.assert_failure(world.lifecycle.generate(SALE_ID), ErrorCode.MALFORMED_INPUT)
        assert world.dtes.count().value() == 0

    @pytest.mark.parametrize("field", ["customer", "seller"])
    def test_xml_incompatible_name_is_malformed(self, field: str) -> None:
        """
        GIVEN a customer (or seller) name holding a vertical-tab control character
        WHEN generate is called
        THEN it fails with MALFORMED_INPUT instead of raising
        AND no DTE is stored and the sale stays uninvoiced.
        """
        if field == "customer":
            world = build_world(customers=InMemoryCustomerStore([make_customer(name="La Palma\x0b S.A.")]))
        else:
            world = build_world(sellers=InMemorySellerStore([make_seller(business_name="Tienda\x0b Central")]))

        result = world.lifecycle.generate(SALE_ID)

        ResultAssertions.assert_failure(result, ErrorCode.MALFORMED_INPUT)
        ResultAssertions.assert_failure_message_contains(result, "cannot be written as XML")
        assert world.dtes.count().value() == 0
        assert _sale(world).invoiced is False

    def test_pdf_failure_persists_nothing(self, world: World) -> None:
        world.pdf.render.return_value = Result.failure(ErrorCode.TECHNICAL_ERROR, "pdf broke")

        ResultAssertions.assert_failure(world.lifecycle.generate(SALE_ID), ErrorCode.TECHNICAL_ERROR)

        assert world.dtes.count().value() == 0
        assert _sale(world).invoiced is False

    def test_sale_update_failure_leaves_dte_in_place(self) -> None:
        """
        GIVEN a sales store whose save fails
        WHEN generate is called
        THEN the failure is returned but the already persisted DTE remains.
        """
        sales = MagicMock()
        sales.find_by_id.return_value = Result.success(make_sale())
        sales.save.return_value = Result.failure(ErrorCode.DATABASE_ERROR, "sales down")
        world = build_world(sales=sales)

        ResultAssertions.assert_failure(world.lifecycle.generate(SALE_ID), ErrorCode.DATABASE_ERROR)

        assert world.dtes.count().value() == 1


class TestNumbering:
    def test_numbers_are_sequential(self) -> None:
        world = build_world(sales=InMemorySaleStore([make_sale("a"), make_sale("b"), make_sale("c")]))

        numbers = [_generate(world, sale_id).document_number for sale_id in ("a", "b", "c")]

        assert numbers == ["20260300000001", "20260300000002", "20260300000003"]

    def test_concurrent_generation_yields_unique_numbers(self) -> None:
        """
        GIVEN twenty uninvoiced sales
        WHEN DTEs are generated for all of them from eight threads at once
        THEN every generation succeeds and the twenty document numbers are distinct and contiguous.
        """
        sale_ids = [f"sale-{i:03d}" for i in range(20)]
        world = build_world(sales=InMemorySaleStore([make_sale(sale_id) for sale_id in sale_ids]))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(world.lifecycle.generate, sale_ids))

        numbers = {ResultAssertions.assert_success(result).document_number for result in results}
        assert numbers == {f"202603{n:08d}" for n in range(1, 21)}


# ─────────────────────── Void & status ───────────────────────


class TestVoid:
    def test_void_releases_sale(self, world: World) -> None:
        """
        GIVEN a generated DTE
        WHEN it is voided with a reason
        THEN the DTE is VOIDED and the sale is back to COMPLETED and uninvoiced.
        """
        dte = _generate(world)

        voided = ResultAssertions.assert_success(world.lifecycle.void(dte.id, "Error en el monto", "NC-0001"))

        assert voided.status is DteStatus.VOIDED
        assert voided.void_info is not None
        assert voided.void_info.credit_note_number == "NC-0001"
        sale = _sale(world)
        assert sale.invoiced is False
        assert sale.invoice_number is None
        assert sale.status is SaleStatus.COMPLETED

    def test_sale_can_be_invoiced_again_after_void(self, world: World) -> None:
        first = _generate(world)
        ResultAssertions.assert_success(world.lifecycle.void(first.id, "Reemplazo"))

        second = _generate(world)

        assert second.document_number == "20260300000002"
        assert _sale(world).invoice_number == second.document_number

    def test_void_twice_is_invalid_state(self, world: World) -> None:
        dte = _generate(world)
        ResultAssertions.assert_success(world.lifecycle.void(dte.id, "duplicada"))

        ResultAssertions.assert_failure(world.lifecycle.void(dte.id, "otra vez"), ErrorCode.INVALID_STATE)

    def test_void_twice_without_reason_is_invalid_state(self, world: World) -> None:
        """
        GIVEN a voided DTE
        WHEN void is called again with an empty reason
        THEN it fails with INVALID_STATE, not INCOMPLETE_DATA
        AND the original void reason is kept.
        """
        dte = _generate(world)
        ResultAssertions.assert_success(world.lifecycle.void(dte.id, "customer request"))

        ResultAssertions.assert_failure(world.lifecycle.void(dte.id, ""), ErrorCode.INVALID_STATE)
        ResultAssertions.assert_failure(world.lifecycle.void(dte.id, "   "), ErrorCode.INVALID_STATE)

        stored = ResultAssertions.assert_success(world.lifecycle.get(dte.id))
        assert stored.void_info is not None
        assert stored.void_info.reason == "customer request"

    def test_void_without_reason(self, world: World) -> None:
        dte = _generate(world)
        ResultAssertions.assert_failure(world.lifecycle.void(dte.id, ""), ErrorCode.INCOMPLETE_DATA)
        assert _sale(world).invoiced is True

    def test_void_unknown_dte(self, world: World) -> None:
        ResultAssertions.assert_failure(world.lifecycle.void("nope", "x"), ErrorCode.NOT_FOUND)


class TestSimulateStatus:
    def test_transition_is_recorded(self, world: World) -> None:
        dte = _generate(world)
        world.clock.advance(timedelta(minutes=3))

        transition = ResultAssertions.assert_success(
            world.lifecycle.simulate_status_transition(dte.id, "REJECTED")
        )

        assert transition.previous_status is DteStatus.ACCEPTED
        assert transition.new_status is DteStatus.REJECTED
        assert transition.changed_at == NOW + timedelta(minutes=3)
        assert ResultAssertions.assert_success(world.lifecycle.get(dte.id)).status is DteStatus.REJECTED

    @pytest.mark.parametrize("target", ["VOIDED", "ANULADO", ""])
    def test_invalid_targets(self, world: World, target: str) -> None:
        dte = _generate(world)
        ResultAssertions.assert_failure(
            world.lifecycle.simulate_status_transition(dte.id, target), ErrorCode.INVALID_STATE
        )

    def test_voided_dte_cannot_move(self, world: World) -> None:
        dte = _generate(world)
        ResultAssertions.assert_success(world.lifecycle.void(dte.id, "duplicada"))

        ResultAssertions.assert_failure(
            world.lifecycle.simulate_status_transition(dte.id, "ACCEPTED"), ErrorCode.INVALID_STATE
        )


# ─────────────────────── Delivery ───────────────────────


class TestSend:
    def test_send_to_customer_email(self, world: World) -> None:
        """
        GIVEN a generated DTE whose customer has an email on file
        WHEN it is sent without an override
        THEN the transport receives both attachments and the delivery is recorded.
        """
        dte = _generate(world)

        receipt = ResultAssertions.assert_success(world.lifecycle.send(dte.id))

        assert receipt.recipient_email == CUSTOMER_EMAIL
        assert receipt.attempts == 1
        assert receipt.mode == "simulated"
        assert receipt.sent_at == NOW

        message = world.mail.deliver.call_args.args[0]
        assert message.subject == f"DTE {dte.document_number} - Factura Electrónica"
        assert [a.filename for a in message.attachments] == [
            f"DTE_{dte.document_number}.xml",
            f"DTE_{dte.document_number}.pdf",
        ]
        assert "226.00" in message.html

        stored = ResultAssertions.assert_success(world.lifecycle.get(dte.id))
        assert stored.delivery.sent_at == NOW
        assert stored.delivery.recipient_email == CUSTOMER_EMAIL
        assert stored.delivery.attempts == 1

    def test_override_email_wins(self, world: World) -> None:
        dte = _generate(world)
        receipt = ResultAssertions.assert_success(world.lifecycle.send(dte.id, "contabilidad@example.com"))
        assert receipt.recipient_email == "contabilidad@example.com"

    def test_transport_failure_still_counts_attempt(self, world: World) -> None:
        """
        GIVEN a mail transport that fails
        WHEN the DTE is sent twice
        THEN both calls fail, the attempt counter is 2 and sent_at is still unset.
        """
        dte = _generate(world)
        world.mail.deliver.return_value = Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, "relay down")

        ResultAssertions.assert_failure(world.lifecycle.send(dte.id), ErrorCode.EXTERNAL_SERVICE_ERROR)
        ResultAssertions.assert_failure(world.lifecycle.send(dte.id), ErrorCode.EXTERNAL_SERVICE_ERROR)

        stored = ResultAssertions.assert_success(world.lifecycle.get(dte.id))
        assert stored.delivery.attempts == 2
        assert stored.delivery.sent_at is None

    def test_retry_after_failure_reports_total_attempts(self, world: World) -> None:
        dte = _generate(world)
        world.mail.deliver.return_value = Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, "relay down")
        world.lifecycle.send(dte.id)
        world.mail.deliver.return_value = Result.success("relay")

        receipt = ResultAssertions.assert_success(world.lifecycle.send(dte.id))

        assert receipt.attempts == 2
        assert receipt.mode == "relay"

    def test_voided_dte_cannot_be_sent(self, world: World) -> None:
        dte = _generate(world)
        ResultAssertions.assert_success(world.lifecycle.void(dte.id, "duplicada"))

        ResultAssertions.assert_failure(world.lifecycle.send(dte.id), ErrorCode.INVALID_STATE)
        world.mail.deliver.assert_not_called()

    def test_missing_xml_is_incomplete(self, world: World) -> None:
        dte = _generate(world)
        world.dtes.save(replace(dte, files=GeneratedFiles()))

        ResultAssertions.assert_failure(world.lifecycle.send(dte.id), ErrorCode.INCOMPLETE_DATA)
        assert ResultAssertions.assert_success(world.lifecycle.get(dte.id)).delivery.attempts == 0

    def test_no_email_anywhere_is_incomplete(self) -> None:
        customers = InMemoryCustomerStore([make_customer()])
        world = build_world(customers=customers)
        dte = _generate(world)
        customers.add(make_customer(email=None))

        ResultAssertions.assert_failure(world.lifecycle.send(dte.id), ErrorCode.INCOMPLETE_DATA)

    @pytest.mark.parametrize("email", ["sin-arroba.com", "a@b", "con espacio@example.com"])
    def test_malformed_email(self, world: World, email: str) -> None:
        dte = _generate(world)

        ResultAssertions.assert_failure(world.lifecycle.send(dte.id, email), ErrorCode.MALFORMED_INPUT)
        world.mail.deliver.assert_not_called()

    def test_missing_sale_link_is_not_found(self, world: World) -> None:
        dte = _generate(world)
        world.dtes.save(replace(dte, sale_id="gone"))

        ResultAssertions.assert_failure(world.lifecycle.send(dte.id), ErrorCode.NOT_FOUND)


# ─────────────────────── Validation ───────────────────────


class TestValidateSignature:
    def test_unsigned_dte_is_incomplete(self, world: World) -> None:
        dte = _generate(world)
        world.dtes.save(replace(dte, signature=None))

        ResultAssertions.assert_failure(world.lifecycle.validate_signature(dte.id), ErrorCode.INCOMPLETE_DATA)

    def test_tampered_dte_reports_invalid(self, world: World) -> None:
        dte = _generate(world)
        world.dtes.save(replace(dte, recipient=replace(dte.recipient, name="Otro Cliente")))

        report = ResultAssertions.assert_success(world.lifecycle.validate_signature(dte.id))

        assert not report.validation.is_valid
        assert "hash does not match data" in report.validation.errors

    def test_strict_mode_turns_invalid_into_failure(self, world: World) -> None:
        dte = _generate(world)
        world.dtes.save(replace(dte, recipient=replace(dte.recipient, name="Otro Cliente")))

        error = ResultAssertions.assert_failure(
            world.lifecycle.validate_signature(dte.id, strict=True), ErrorCode.VALIDATION_FAILURE
        )

        assert "hash does not match data" in error.reasons

    def test_validation_still_passes_a_day_later_with_warning(self, world: World) -> None:
        dte = _generate(world)
        world.clock.advance(timedelta(hours=30))

        report = ResultAssertions.assert_success(world.lifecycle.validate_signature(dte.id))

        assert report.validation.is_valid
        assert report.validation.warnings

    def test_revocation_after_signing_keeps_signature_valid(self, world: World) -> None:
        dte = _generate(world)
        ResultAssertions.assert_success(world.lifecycle.revoke_certificate(SELLER_TAX_ID))

        report = ResultAssertions.assert_success(world.lifecycle.validate_signature(dte.id))

        assert report.validation.is_valid


# ─────────────────────── Queries & certificates ───────────────────────


@pytest.fixture()
def three_dtes() -> tuple[World, list[Dte]]:
    """Three DTEs generated one hour apart; the second one is voided."""
    world = build_world(sales=InMemorySaleStore([make_sale("a"), make_sale("b"), make_sale("c")]))
    dtes = []
    for sale_id in ("a", "b", "c"):
        dtes.append(_generate(world, sale_id))
        world.clock.advance(timedelta(hours=1))
    dtes[1] = ResultAssertions.assert_success(world.lifecycle.void(dtes[1].id, "Error"))
    return world, dtes


class TestSearch:
    def test_newest_first_with_pagination(self, three_dtes: tuple[World, list[Dte]]) -> None:
        world, dtes = three_dtes

        page = ResultAssertions.assert_success(world.lifecycle.search(DteQuery(page=1, limit=2)))

        assert page.total == 3
        assert page.pages == 2
        assert [d.id for d in page.items] == [dtes[2].id, dtes[1].id]

        second = ResultAssertions.assert_success(world.lifecycle.search(DteQuery(page=2, limit=2)))
        assert [d.id for d in second.items] == [dtes[0].id]

    def test_filter_by_status(self, three_dtes: tuple[World, list[Dte]]) -> None:
        world, dtes = three_dtes

        page = ResultAssertions.assert_success(world.lifecycle.search(DteQuery(status=DteStatus.VOIDED)))

        assert [d.id for d in page.items] == [dtes[1].id]

    def test_filter_by_creation_range(self, three_dtes: tuple[World, list[Dte]]) -> None:
        world, dtes = three_dtes

        page = ResultAssertions.assert_success(
            world.lifecycle.search(DteQuery(created_from=NOW + timedelta(minutes=30)))
        )

        assert {d.id for d in page.items} == {dtes[1].id, dtes[2].id}

    def test_empty_result(self, world: World) -> None:
        page = ResultAssertions.assert_success(world.lifecycle.search(DteQuery()))
        assert page.items == []
        assert page.total == 0


class TestExport:
    def test_archive_contains_xml_and_pdf(self, three_dtes: tuple[World, list[Dte]]) -> None:
        world, dtes = three_dtes

        archive = ResultAssertions.assert_success(world.lifecycle.export_archive(DteQuery()))

        with zipfile.ZipFile(io.BytesIO(archive)) as bundle:
            names = set(bundle.namelist())
            assert f"DTE_{dtes[0].document_number}.xml" in names
            assert f"DTE_{dtes[0].document_number}.pdf" in names
            assert len(names) == 6
            assert bundle.read(f"DTE_{dtes[0].document_number}.pdf") == b"%PDF-1.4 test"

    def test_nothing_to_export_is_not_found(self, three_dtes: tuple[World, list[Dte]]) -> None:
        world, _ = three_dtes
        result = world.lifecycle.export_archive(DteQuery(document_type=DocumentType.NOTA_DEBITO))
        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)


class TestCertificates:
    def test_list_and_revoke(self, world: World) -> None:
        assert [c.issuer_tax_id for c in world.lifecycle.list_certificates()] == ["00000000-0", "12345678-9"]

        receipt = ResultAssertions.assert_success(world.lifecycle.revoke_certificate("12345678-9"))

        assert receipt.revoked_at == NOW
        assert world.lifecycle.list_certificates()[1].revoked is True

    def test_revoke_unknown(self, world: World) -> None:
        ResultAssertions.assert_failure(world.lifecycle.revoke_certificate("nadie"), ErrorCode.NOT_FOUND)
