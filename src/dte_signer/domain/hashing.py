"""SHA-256 helpers shared by the signature engine and the rendered artifacts."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes


def sha256_hex(data: bytes | str) -> str:
    """Hex SHA-256 digest of bytes (str input is UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize().hex()
