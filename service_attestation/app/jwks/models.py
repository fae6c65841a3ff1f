"""
Key set data model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, ConfigDict, Field


class KeyRecord(BaseModel):
    """One published signing key as it appears in a JWKS document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    alg: str = ""
    kty: str = ""
    kid: str = ""
    use: str = ""
    n: str = ""
    e: str = ""


class KeySet(BaseModel):
    """Immutable snapshot of an issuer's published keys, in document order."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    keys: Tuple[KeyRecord, ...] = Field(...)

    def find(self, kid: str) -> KeyRecord | None:
        """Return the first record carrying ``kid``."""
        for record in self.keys:
            if record.kid == kid:
                return record
        return None


@dataclass(frozen=True)
class PublicKey:
    """RSA public key reconstructed from a key record."""

    n: int
    e: int
    kid: str = ""

    def to_cryptography(self) -> rsa.RSAPublicKey:
        return rsa.RSAPublicNumbers(self.e, self.n).public_key()

    def to_pem(self) -> str:
        """Render as a PEM SubjectPublicKeyInfo block."""
        return self.to_cryptography().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
