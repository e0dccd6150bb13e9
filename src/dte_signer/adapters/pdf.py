"""
PDF adapter — printable representation of a DTE with fpdf2.

Adapter layer — implements the PdfRenderer port.

The layout is a single Letter page: title bar, control block (number,
type, dates, validation code), issuer and recipient blocks, totals with the
amount in words, and the signature block. The creation date embedded in the
file is the DTE's own created_at, so re-rendering an unchanged DTE yields
the same bytes.

fpdf2's core fonts are Latin-1 only; text outside it is replaced.
"""

from __future__ import annotations

import structlog
from fpdf import FPDF

from dte_signer.domain.dte import UNSIGNED, Dte
from dte_signer.domain.models import Party
from dte_signer.railway import ErrorCode, Result

log = structlog.get_logger()

PRIMARY_COLOR = (26, 60, 94)
PAGE_WIDTH = 196


def _latin1(text: str) -> str:
    return text.encode("latin-1", "replace").decode("latin-1")


class FpdfRenderer:
    """
    Render DTEs to PDF bytes.

    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def render(self, dte: Dte) -> Result[bytes]:
        return Result.from_computation(
            lambda: self._render(dte),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to render DTE PDF",
        )

    def _render(self, dte: Dte) -> bytes:
        pdf = FPDF(orientation="P", unit="mm", format="Letter")
        pdf.set_creation_date(dte.created_at)
        pdf.set_title(_latin1(f"DTE {dte.document_number}"))
        pdf.set_auto_page_break(auto=True, margin=20)
        pdf.add_page()

        self._header(pdf, dte)
        self._party(pdf, "EMISOR", dte.issuer)
        self._party(pdf, "RECEPTOR", dte.recipient)
        self._totals(pdf, dte)
        self._signature(pdf, dte)

        data = bytes(pdf.output())
        log.debug("pdf.rendered", document_number=dte.document_number, size_bytes=len(data))
        return data

    def _header(self, pdf: FPDF, dte: Dte) -> None:
        r, g, b = PRIMARY_COLOR
        pdf.set_fill_color(r, g, b)
        pdf.rect(10, 10, PAGE_WIDTH, 14, "F")
        pdf.set_font("Helvetica", "B", 14)
        pdf.set_text_color(255, 255, 255)
        pdf.set_xy(10, 12)
        pdf.cell(PAGE_WIDTH, 10, _latin1("DOCUMENTO TRIBUTARIO ELECTRÓNICO"), align="C")

        pdf.set_xy(10, 26)
        pdf.set_font("Helvetica", "B", 12)
        pdf.set_text_color(r, g, b)
        pdf.cell(PAGE_WIDTH, 8, _latin1(dte.document_type.label.upper()), align="C")
        pdf.ln(10)

        signature = dte.signature
        fields = [
            ("Número DTE:", dte.document_number),
            ("Tipo:", dte.document_type.value),
            ("Fecha de Emisión:", dte.created_at.date().isoformat()),
            ("Hora:", dte.created_at.strftime("%H:%M:%S")),
            ("Estado:", dte.status.value),
            ("Código de Validación:", signature.validation_code if signature else UNSIGNED),
        ]
        pdf.set_text_color(60, 60, 60)
        y = pdf.get_y()
        for i, (label, value) in enumerate(fields):
            row, column = divmod(i, 2)
            pdf.set_xy(10 + column * 98, y + row * 5)
            pdf.set_font("Helvetica", "B", 8)
            pdf.cell(34, 5, _latin1(label))
            pdf.set_font("Helvetica", "", 8)
            pdf.cell(60, 5, _latin1(value))
        pdf.set_y(y + 18)

    def _party(self, pdf: FPDF, title: str, party: Party) -> None:
        self._section_title(pdf, title)
        pdf.set_font("Helvetica", "", 9)
        pdf.set_text_color(40, 40, 40)
        for label, value in (("NIT", party.tax_id), ("Nombre", party.name), ("Dirección", party.address)):
            pdf.cell(30, 5, _latin1(f"{label}:"))
            pdf.multi_cell(PAGE_WIDTH - 30, 5, _latin1(value), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(3)

    def _totals(self, pdf: FPDF, dte: Dte) -> None:
        self._section_title(pdf, "TOTALES")
        pdf.set_font("Helvetica", "", 9)
        for label, amount in (
            ("Subtotal", dte.totals.subtotal),
            ("Impuesto", dte.totals.tax),
            ("Total", dte.totals.total),
        ):
            pdf.cell(PAGE_WIDTH - 40, 6, label, align="R")
            pdf.cell(40, 6, f"${amount:,.2f}", align="R", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", "I", 8)
        pdf.multi_cell(PAGE_WIDTH, 5, _latin1(f"Son: {dte.total_in_words}"), new_x="LMARGIN", new_y="NEXT")
        pdf.ln(3)

    def _signature(self, pdf: FPDF, dte: Dte) -> None:
        self._section_title(pdf, "FIRMA ELECTRÓNICA (SIMULADA)")
        pdf.set_font("Courier", "", 7)
        bundle = dte.signature
        lines = (
            [
                f"Id: {bundle.signature_id}",
                f"Algoritmo: {bundle.algorithm} ({bundle.key_size} bits)",
                f"Firmado: {bundle.signed_at.isoformat()}",
                f"Certificado: {bundle.certificate.serial_number}",
                f"Hash: {bundle.content_hash}",
                f"Firma: {bundle.signature_value}",
            ]
            if bundle
            else [UNSIGNED]
        )
        for line in lines:
            pdf.multi_cell(PAGE_WIDTH, 4, _latin1(line), new_x="LMARGIN", new_y="NEXT")

    @staticmethod
    def _section_title(pdf: FPDF, title: str) -> None:
        r, g, b = PRIMARY_COLOR
        pdf.set_font("Helvetica", "B", 10)
        pdf.set_text_color(r, g, b)
        pdf.cell(PAGE_WIDTH, 7, _latin1(title), new_x="LMARGIN", new_y="NEXT")
        pdf.set_text_color(40, 40, 40)
