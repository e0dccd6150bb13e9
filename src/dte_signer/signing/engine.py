"""
Signature engine — SIMULATED signing and validation of DTE content.

Nothing here is real public-key cryptography. The "signature value" is a
SHA-256 digest over the certificate serial, the content hash, the subject DN
and a random nonce. It stands in for an RSA signature so the rest of the
lifecycle (status mapping, XML signature block, validation report) has
something realistic to carry.

Signing:
    1. resolve the issuer's certificate (registry fallback to the default)
    2. canonical content = sorted, compact JSON of the signable fields plus
       `issuedAt`, the instant captured at sign time
    3. content hash = SHA-256 of that content
    4. simulated signature value (see above)
    5. simulated adjudication: 80% ACCEPTED, 10% OBSERVED, 10% REJECTED
    6. signatureId = "SIG-<epoch millis>-<4 random bytes hex>",
       validationCode = 8 random bytes hex. Both are opaque and unlikely to
       collide; global uniqueness is not guaranteed.

Because `issuedAt` is part of the signed content, signing identical fields at
two different instants yields two different hashes. The bundle records
`issued_at` so validation can recompute the exact hash later. A bundle
without it (signed elsewhere) is validated against the current time and will
report a hash mismatch.

Randomness and time are injected (RandomSource, Clock) so tests can force
each outcome branch and pin timestamps.
"""

from __future__ import annotations

import json
import random
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Protocol

import structlog

from dte_signer.domain.clock import Clock, utcnow
from dte_signer.domain.hashing import sha256_hex
from dte_signer.domain.models import (
    Certificate,
    CertificateStatus,
    SignatureBundle,
    SignatureStatus,
    ValidationResult,
)
from dte_signer.railway import Result, ResultFailures
from dte_signer.signing.registry import SIGNATURE_ALGORITHM, CertificateRegistry

log = structlog.get_logger()

ACCEPTED_THRESHOLD = 0.8
OBSERVED_THRESHOLD = 0.9
DEFAULT_MAX_SIGNATURE_AGE = timedelta(hours=24)

HASH_MISMATCH = "hash does not match data"


class RandomSource(Protocol):
    """The slice of random.Random the engine draws from."""

    def random(self) -> float: ...

    def randbytes(self, n: int) -> bytes: ...


def canonical_content(fields: Mapping[str, Any], issued_at: datetime) -> str:
    """Deterministic serialization of the signable fields plus the issuance instant."""
    payload = {**fields, "issuedAt": issued_at.isoformat()}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def draw_outcome(roll: float) -> SignatureStatus:
    if roll < ACCEPTED_THRESHOLD:
        return SignatureStatus.ACCEPTED
    if roll < OBSERVED_THRESHOLD:
        return SignatureStatus.OBSERVED
    return SignatureStatus.REJECTED


class SignatureEngine:
    """
    Signs DTE fields and validates bundles against original fields.

    enforce_revocation=False keeps validation limited to the certificate
    snapshot inside the bundle, so a bundle signed before its certificate
    was revoked still validates. Set it to True to also consult the live
    registry and report REVOKED.
    """

    def __init__(
        self,
        registry: CertificateRegistry,
        rng: RandomSource | None = None,
        clock: Clock = utcnow,
        max_signature_age: timedelta = DEFAULT_MAX_SIGNATURE_AGE,
        enforce_revocation: bool = False,
    ) -> None:
        self._registry = registry
        self._rng = rng if rng is not None else random.SystemRandom()
        self._clock = clock
        self._max_signature_age = max_signature_age
        self._enforce_revocation = enforce_revocation

    # ──────────────────────── Signing ────────────────────────

    def sign(self, fields: Mapping[str, Any], issuer_tax_id: str) -> Result[SignatureBundle]:
        certificate = self._registry.lookup(issuer_tax_id)
        issued_at = self._clock()

        try:
            content = canonical_content(fields, issued_at)
        except (TypeError, ValueError) as e:
            return ResultFailures.malformed_input(f"DTE fields cannot be serialized for signing: {e}")

        content_hash = sha256_hex(content)
        nonce = self._rng.randbytes(16).hex()
        signature_value = sha256_hex(
            f"{certificate.serial_number}-{content_hash}-{certificate.subject_dn}-{nonce}"
        )
        status = draw_outcome(self._rng.random())

        bundle = SignatureBundle(
            signature_value=signature_value,
            signed_at=issued_at,
            certificate=certificate,
            content_hash=content_hash,
            algorithm=SIGNATURE_ALGORITHM,
            key_size=certificate.key_size,
            status=status,
            signature_id=f"SIG-{int(issued_at.timestamp() * 1000)}-{self._rng.randbytes(4).hex().upper()}",
            validation_code=self._rng.randbytes(8).hex().upper(),
            issued_at=issued_at,
        )
        log.info(
            "signature.signed",
            signature_id=bundle.signature_id,
            issuer_tax_id=certificate.issuer_tax_id,
            status=status.value,
        )
        return Result.success(bundle)

    # ──────────────────────── Validation ────────────────────────

    def validate(self, bundle: SignatureBundle, fields: Mapping[str, Any]) -> ValidationResult:
        """
        Check a bundle against the fields it claims to cover.

        Order: certificate window and completeness, signing time (future is
        an error, older than max age is only a warning), algorithm, content
        hash, then revocation when enforced. Valid means no errors.
        """
        now = self._clock()
        errors: list[str] = []
        warnings: list[str] = []

        certificate_status = self._certificate_status(bundle.certificate, now)
        match certificate_status:
            case CertificateStatus.NOT_YET_VALID:
                errors.append("certificate is not yet valid")
            case CertificateStatus.EXPIRED:
                errors.append("certificate has expired")
            case CertificateStatus.INVALID:
                errors.append("certificate is missing required fields")

        if bundle.signed_at > now:
            errors.append("signature timestamp is in the future")
        elif now - bundle.signed_at > self._max_signature_age:
            warnings.append(f"signature is older than {self._max_signature_age.total_seconds() // 3600:.0f} hours")

        if bundle.algorithm != SIGNATURE_ALGORITHM:
            errors.append(f"unsupported algorithm: {bundle.algorithm}")

        issued_at = bundle.issued_at or now
        try:
            recomputed = sha256_hex(canonical_content(fields, issued_at))
        except (TypeError, ValueError):
            recomputed = None
        if recomputed != bundle.content_hash:
            errors.append(HASH_MISMATCH)

        if self._enforce_revocation and self._is_revoked(bundle.certificate):
            certificate_status = CertificateStatus.REVOKED
            errors.append("certificate has been revoked")

        result = ValidationResult(
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            certificate_status=certificate_status,
            algorithm=bundle.algorithm,
            validated_at=now,
        )
        log.info(
            "signature.validated",
            signature_id=bundle.signature_id,
            is_valid=result.is_valid,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    def verify(self, bundle: SignatureBundle, fields: Mapping[str, Any]) -> Result[ValidationResult]:
        """validate() on the railway: an invalid report becomes VALIDATION_FAILURE with its errors."""
        report = self.validate(bundle, fields)
        if report.is_valid:
            return Result.success(report)
        return ResultFailures.validation_failure("Signature validation failed", report.errors)

    @staticmethod
    def _certificate_status(certificate: Certificate, now: datetime) -> CertificateStatus:
        required = (
            certificate.issuer_tax_id,
            certificate.issuer_dn,
            certificate.subject_dn,
            certificate.serial_number,
            certificate.algorithm,
        )
        if not all(required) or certificate.valid_from is None or certificate.valid_to is None:
            return CertificateStatus.INVALID
        if now < certificate.valid_from:
            return CertificateStatus.NOT_YET_VALID
        if now > certificate.valid_to:
            return CertificateStatus.EXPIRED
        return CertificateStatus.VALID

    def _is_revoked(self, certificate: Certificate) -> bool:
        return self._registry.find(certificate.issuer_tax_id).either(
            lambda live: live.revoked,
            lambda _: certificate.revoked,
        )
