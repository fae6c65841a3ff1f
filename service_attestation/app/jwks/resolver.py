"""
Resolution of a token's signing key from the trusted issuer's key set.
"""

from __future__ import annotations

from typing import Protocol

from shared.errors import (
    DecodeError,
    KeyDecodeError,
    KeyNotFoundError,
    KeySetFetchError,
    UntrustedIssuerError,
)
from shared.logging import get_logger
from .codec import decode_uint
from .models import KeyRecord, KeySet, PublicKey

# Exponents are narrowed to a native signed 64-bit integer
_MAX_EXPONENT = 2 ** 63 - 1


class KeySetSource(Protocol):
    def fetch_key_set(self) -> KeySet:
        ...


class KeyResolver:
    """Resolves ``(issuer, kid)`` pairs to RSA public keys.

    Only tokens from ``trusted_issuer`` are resolved; anything else is
    rejected before the key set is fetched.
    """

    def __init__(self, trusted_issuer: str, fetcher: KeySetSource) -> None:
        if not trusted_issuer:
            raise ValueError("trusted_issuer is required")
        self.trusted_issuer = trusted_issuer
        self.fetcher = fetcher
        self.logger = get_logger("attestation.resolver")

    def resolve_key(self, issuer: str, kid: str) -> PublicKey:
        if issuer != self.trusted_issuer:
            self.logger.warning("Rejected untrusted issuer", issuer=issuer)
            raise UntrustedIssuerError(
                f"Unknown issuer, expected {self.trusted_issuer}",
                details={"issuer": issuer, "expected": self.trusted_issuer}
            )

        try:
            key_set = self.fetcher.fetch_key_set()
        except KeySetFetchError as exc:
            exc.details.update({"issuer": issuer, "kid": kid})
            raise

        # First match wins when a kid is listed more than once
        record = key_set.find(kid)
        if record is None:
            invalidate = getattr(self.fetcher, "invalidate", None)
            if callable(invalidate):
                invalidate()
            self.logger.warning("Key not found", kid=kid, keys_count=len(key_set.keys))
            raise KeyNotFoundError(kid, details={"issuer": issuer})

        return self._build_public_key(record)

    def _build_public_key(self, record: KeyRecord) -> PublicKey:
        try:
            n = decode_uint(record.n)
        except DecodeError as exc:
            raise KeyDecodeError(
                f"Failed to decode modulus: {exc.message}",
                details={"kid": record.kid, "field": "n"}
            ) from exc

        try:
            e = decode_uint(record.e)
        except DecodeError as exc:
            raise KeyDecodeError(
                f"Failed to decode exponent: {exc.message}",
                details={"kid": record.kid, "field": "e"}
            ) from exc

        if e > _MAX_EXPONENT:
            raise KeyDecodeError(
                "Exponent does not fit a native integer",
                details={"kid": record.kid, "field": "e"}
            )

        key = PublicKey(n=n, e=e, kid=record.kid)
        try:
            key.to_cryptography()
        except ValueError as exc:
            raise KeyDecodeError(
                f"Key material is not a valid RSA public key: {exc}",
                details={"kid": record.kid}
            ) from exc
        return key
