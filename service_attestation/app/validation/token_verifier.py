"""
Attestation token verification.

A token is verified in one synchronous pass: the unverified envelope is
parsed to learn the issuer and key identifier, the injected key provider
resolves the signing key, then the RS256 signature and time claims are
checked. An optional claims policy pins values the verifier expects the
attestation to carry.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from pydantic import BaseModel, ConfigDict

from shared.errors import (
    ClaimMismatchError,
    ExpiredTokenError,
    MalformedTokenError,
    SignatureInvalidError,
)
from shared.logging import get_logger, verification_context
from ..jwks.models import PublicKey

ALGORITHM = "RS256"

KeyProvider = Callable[[str, str], PublicKey]

_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": True,
    "verify_nbf": True,
    "verify_iat": True,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
    "verify_at_hash": False,
    "leeway": 0,
}


class ClaimsPolicy(BaseModel):
    """Golden values a verified attestation must carry."""

    model_config = ConfigDict(frozen=True)

    audience: Optional[str] = None
    image_digest: Optional[str] = None


@dataclass(frozen=True)
class VerifiedToken:
    """Header and claims of a token whose signature and expiry were checked."""

    header: Mapping[str, Any]
    claims: Mapping[str, Any]
    raw: str = field(repr=False, default="")

    def __post_init__(self):
        object.__setattr__(self, "header", MappingProxyType(dict(self.header)))
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))

    @property
    def issuer(self) -> str:
        return self.header["iss"]

    @property
    def kid(self) -> str:
        return self.header["kid"]


def nonce_digest(nonce: str) -> str:
    """Hex SHA-256 of a nonce, as embedded in the ``eat_nonce`` claim."""
    return hashlib.sha256(nonce.encode("utf-8")).hexdigest()


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value is None:
        return []
    return [value]


class AttestationTokenVerifier:
    """Verifies attestation tokens against keys supplied by ``key_provider``."""

    def __init__(self, key_provider: KeyProvider, policy: Optional[ClaimsPolicy] = None) -> None:
        self.key_provider = key_provider
        self.policy = policy or ClaimsPolicy()
        self.logger = get_logger("attestation.verifier")

    def verify_token(self, raw: Union[bytes, str], nonce: Optional[str] = None) -> VerifiedToken:
        token = self._decode_raw(raw)
        header = self._parse_envelope(token)

        issuer = header.get("iss")
        kid = header.get("kid")
        if not isinstance(issuer, str):
            raise MalformedTokenError("Token header is missing the iss claim")
        if not isinstance(kid, str):
            raise MalformedTokenError("Token header is missing the kid claim")

        with verification_context(issuer, kid):
            public_key = self.key_provider(issuer, kid)
            claims = self._verify_signature(token, public_key)
            self._apply_policy(claims, nonce)
            self.logger.info("Token verified", sub=claims.get("sub"))

        return VerifiedToken(header=header, claims=claims, raw=token)

    def _verify_signature(self, token: str, public_key: PublicKey) -> Dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                public_key.to_pem(),
                algorithms=[ALGORITHM],
                options=_DECODE_OPTIONS,
            )
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError(str(exc), details={"kid": public_key.kid}) from exc
        except JWTError as exc:
            raise SignatureInvalidError(str(exc), details={"kid": public_key.kid}) from exc
        except (TypeError, ValueError, OverflowError) as exc:
            # Signed, but a time claim is not a number
            raise SignatureInvalidError(
                f"Invalid time claim: {exc}",
                details={"kid": public_key.kid}
            ) from exc

        # A token is already expired during the second named by exp
        exp = claims.get("exp")
        if exp is not None and time.time() >= int(exp):
            raise ExpiredTokenError("Signature has expired.", details={"kid": public_key.kid, "exp": exp})
        return claims

    def _decode_raw(self, raw: Union[bytes, str]) -> str:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedTokenError("Token is not valid UTF-8") from exc
        if not isinstance(raw, str) or not raw.strip():
            raise MalformedTokenError("Token must be a non-empty string")
        return raw.strip()

    def _parse_envelope(self, token: str) -> Mapping[str, Any]:
        if token.count(".") != 2:
            raise MalformedTokenError("Token must have three dot-separated segments")
        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError(f"Invalid token envelope: {exc}") from exc
        return header

    def _apply_policy(self, claims: Mapping[str, Any], nonce: Optional[str]) -> None:
        policy = self.policy

        if policy.audience is not None:
            audiences = _as_list(claims.get("aud"))
            if policy.audience not in audiences:
                raise ClaimMismatchError("aud", policy.audience, claims.get("aud"))

        if policy.image_digest is not None:
            digest = image_digest_of(claims)
            if digest != policy.image_digest:
                raise ClaimMismatchError("submods.container.image_digest", policy.image_digest, digest)

        if nonce is not None:
            expected = nonce_digest(nonce)
            if expected not in _as_list(claims.get("eat_nonce")):
                raise ClaimMismatchError("eat_nonce", expected, claims.get("eat_nonce"))


def container_claims(claims: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return ``submods.container`` or an empty mapping."""
    submods = claims.get("submods")
    if not isinstance(submods, Mapping):
        return {}
    container = submods.get("container")
    return container if isinstance(container, Mapping) else {}


def image_digest_of(claims: Mapping[str, Any]) -> Optional[str]:
    digest = container_claims(claims).get("image_digest")
    return digest if isinstance(digest, str) else None
