"""
Certificate registry — the process-wide table of simulated signing certificates.

Certificates are keyed by issuer tax ID. Lookups for signing fall back to a
designated default certificate; revocation does not, it needs an exact entry.

The table is shared by every signing and validation call and changes only
through revoke(). Entries are replaced, never mutated: a revocation is
visible to the next lookup while signature bundles keep the snapshot they
were signed with.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, datetime

import structlog

from dte_signer.domain.clock import Clock, utcnow
from dte_signer.domain.models import Certificate, RevocationReceipt
from dte_signer.railway import Result, ResultFailures

log = structlog.get_logger()

DEFAULT_ISSUER_TAX_ID = "00000000-0"
SIGNATURE_ALGORITHM = "RSA-SHA256"
KEY_SIZE = 2048

_AUTHORITY_DN = "CN=Autoridad Certificadora de El Salvador, O=Ministerio de Hacienda, C=SV"

DEFAULT_CERTIFICATES: tuple[Certificate, ...] = (
    Certificate(
        issuer_tax_id=DEFAULT_ISSUER_TAX_ID,
        issuer_dn=_AUTHORITY_DN,
        subject_dn="CN=Empresa Demo S.A. de C.V., OU=Facturación Electrónica, O=Empresa Demo, C=SV",
        serial_number="12345678901234567890",
        valid_from=datetime(2025, 1, 1, tzinfo=UTC),
        valid_to=datetime(2030, 12, 31, 23, 59, 59, tzinfo=UTC),
        algorithm=SIGNATURE_ALGORITHM,
        key_size=KEY_SIZE,
    ),
    Certificate(
        issuer_tax_id="12345678-9",
        issuer_dn=_AUTHORITY_DN,
        subject_dn=(
            "CN=Comercializadora Ejemplo S.A. de C.V., OU=Facturación Electrónica, "
            "O=Comercializadora Ejemplo, C=SV"
        ),
        serial_number="98765432109876543210",
        valid_from=datetime(2025, 1, 1, tzinfo=UTC),
        valid_to=datetime(2030, 12, 31, 23, 59, 59, tzinfo=UTC),
        algorithm=SIGNATURE_ALGORITHM,
        key_size=KEY_SIZE,
    ),
)


class CertificateRegistry:
    """In-memory certificate table with default fallback and revocation."""

    def __init__(
        self,
        certificates: Iterable[Certificate] = DEFAULT_CERTIFICATES,
        default_tax_id: str = DEFAULT_ISSUER_TAX_ID,
        clock: Clock = utcnow,
    ) -> None:
        self._certificates = {cert.issuer_tax_id: cert for cert in certificates}
        if default_tax_id not in self._certificates:
            raise ValueError(f"Default certificate {default_tax_id!r} is not registered")
        self._default_tax_id = default_tax_id
        self._clock = clock
        self._lock = threading.Lock()

    def lookup(self, issuer_tax_id: str) -> Certificate:
        """Certificate registered under the exact tax ID, else the default one."""
        with self._lock:
            cert = self._certificates.get(issuer_tax_id)
            if cert is None:
                log.debug("registry.default_certificate", issuer_tax_id=issuer_tax_id)
                return self._certificates[self._default_tax_id]
            return cert

    def find(self, issuer_tax_id: str) -> Result[Certificate]:
        """Exact lookup with no fallback."""
        with self._lock:
            cert = self._certificates.get(issuer_tax_id)
        return Result.from_optional(cert, f"Certificate not found for issuer: {issuer_tax_id}")

    def list_all(self) -> list[Certificate]:
        """All certificates, revoked or not, in registration order."""
        with self._lock:
            return list(self._certificates.values())

    def revoke(self, issuer_tax_id: str) -> Result[RevocationReceipt]:
        """
        Mark the exact entry as revoked.

        Revoking an already revoked certificate succeeds and keeps the
        original revocation instant.
        """
        with self._lock:
            cert = self._certificates.get(issuer_tax_id)
            if cert is None:
                return ResultFailures.not_found("Certificate", issuer_tax_id)
            if not cert.revoked:
                cert = replace(cert, revoked=True, revoked_at=self._clock())
                self._certificates[issuer_tax_id] = cert

        log.info("registry.revoked", issuer_tax_id=issuer_tax_id, revoked_at=cert.revoked_at)
        return Result.success(
            RevocationReceipt(
                issuer_tax_id=issuer_tax_id,
                revoked_at=cert.revoked_at,  # type: ignore[arg-type]
                message="Certificate revoked",
            )
        )
