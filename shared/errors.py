"""
Shared error handling for the attestation token verifier.

Every failure carries a stable ``code`` and the ``stage`` of the
verification chain that produced it, so callers can branch on the kind of
failure without parsing messages.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class VerificationStage(str, Enum):
    """Stage of the verification chain that produced a failure."""

    CODEC = "codec"
    KEY_SET_FETCH = "key_set_fetch"
    UNTRUSTED_ISSUER = "untrusted_issuer"
    KEY_NOT_FOUND = "key_not_found"
    KEY_DECODE = "key_decode"
    ENVELOPE = "envelope"
    SIGNATURE = "signature"
    EXPIRY = "expiry"
    CLAIMS = "claims"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    stage: Optional[str] = None
    details: Dict[str, Any] = {}


class VerifierException(Exception):
    """Base exception for the verifier."""

    status_code: int = 400
    stage: Optional[VerificationStage] = None

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            stage=self.stage.value if self.stage else None,
            details=self.details
        )


class DecodeError(VerifierException):
    """Malformed base64url integer encoding."""

    stage = VerificationStage.CODEC

    def __init__(self, message: str = "Invalid base64url integer", details: Optional[Dict[str, Any]] = None):
        super().__init__("DECODE_ERROR", message, details)


class KeySetFetchError(VerifierException):
    """Base for failures while retrieving the issuer's key set."""

    status_code = 502
    stage = VerificationStage.KEY_SET_FETCH


class DiscoveryError(KeySetFetchError):
    """Discovery document unreachable, malformed or missing ``jwks_uri``."""

    def __init__(self, message: str = "Discovery document unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("DISCOVERY_ERROR", message, details)


class KeySetError(KeySetFetchError):
    """Key set endpoint unreachable or malformed."""

    def __init__(self, message: str = "Key set unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("KEY_SET_ERROR", message, details)


class TokenRejectedError(VerifierException):
    """Base for failures attributable to the presented token."""

    status_code = 401


class UntrustedIssuerError(TokenRejectedError):
    """Token issuer is not the configured trusted issuer."""

    stage = VerificationStage.UNTRUSTED_ISSUER

    def __init__(self, message: str = "Untrusted token issuer", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNTRUSTED_ISSUER", message, details)


class KeyNotFoundError(TokenRejectedError):
    """No published key matches the token's key identifier."""

    stage = VerificationStage.KEY_NOT_FOUND

    def __init__(self, kid: str, details: Optional[Dict[str, Any]] = None):
        self.kid = kid
        merged = {"kid": kid}
        merged.update(details or {})
        super().__init__("KEY_NOT_FOUND", f"No signing key with kid {kid!r}", merged)


class KeyDecodeError(VerifierException):
    """Matched key record could not be turned into a public key."""

    status_code = 502
    stage = VerificationStage.KEY_DECODE

    def __init__(self, message: str = "Invalid key material", details: Optional[Dict[str, Any]] = None):
        super().__init__("KEY_DECODE_ERROR", message, details)


class MalformedTokenError(TokenRejectedError):
    """Token envelope or required header claims are unusable."""

    stage = VerificationStage.ENVELOPE

    def __init__(self, message: str = "Malformed token", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_TOKEN", message, details)


class ExpiredTokenError(TokenRejectedError):
    """Signature is valid but the token has expired."""

    stage = VerificationStage.EXPIRY

    def __init__(self, message: str = "Token has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_EXPIRED", message, details)


class SignatureInvalidError(TokenRejectedError):
    """Signature does not validate against the resolved key."""

    stage = VerificationStage.SIGNATURE

    def __init__(self, message: str = "Token signature is invalid", details: Optional[Dict[str, Any]] = None):
        super().__init__("SIGNATURE_INVALID", message, details)


class ClaimMismatchError(TokenRejectedError):
    """A verified claim does not carry the expected golden value."""

    stage = VerificationStage.CLAIMS

    def __init__(self, claim: str, expected: Any, actual: Any):
        self.claim = claim
        self.expected = expected
        self.actual = actual
        super().__init__(
            "CLAIM_MISMATCH",
            f"Claim {claim!r} does not match the expected value",
            {"claim": claim, "expected": expected, "actual": actual}
        )
