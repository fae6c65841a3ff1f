"""
Token validation service for the Attestation service.
"""

import time
from typing import Dict, Any, List, Optional, Union

from pydantic import BaseModel

from shared.config import BaseConfig
from shared.errors import VerifierException
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..jwks.client import CachingKeySetFetcher, KeySetFetcher
from ..jwks.resolver import KeyResolver
from .token_verifier import (
    AttestationTokenVerifier,
    ClaimsPolicy,
    VerifiedToken,
    container_claims,
)


class TokenVerificationRequest(BaseModel):
    """Request model for token verification."""
    token: str
    nonce: Optional[str] = None


class TokenVerificationResponse(BaseModel):
    """Response model for token verification."""
    valid: bool
    claims: Optional[Dict[str, Any]] = None
    header: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    stage: Optional[str] = None


class WorkloadInfo(BaseModel):
    """Workload facts attested by a verified token."""
    subject: Optional[str] = None
    image_reference: Optional[str] = None
    image_digest: Optional[str] = None
    hardware_model: Optional[str] = None
    software_name: Optional[str] = None
    software_versions: List[str] = []
    expires_at: Optional[int] = None


class TokenValidator:
    """Token validation service."""

    def __init__(self, verifier: AttestationTokenVerifier, metrics: Optional[MetricsCollector] = None):
        self.verifier = verifier
        self.metrics = metrics
        self.logger = get_logger("attestation.validator")

    @classmethod
    def from_config(cls, config: BaseConfig, metrics: Optional[MetricsCollector] = None, **fetcher_kwargs) -> "TokenValidator":
        """Wire fetcher, resolver and verifier from configuration."""
        fetcher = KeySetFetcher(
            config.trusted_issuer,
            well_known_path=config.well_known_path,
            timeout=config.http_timeout_seconds,
            **fetcher_kwargs
        )
        source: Union[KeySetFetcher, CachingKeySetFetcher] = fetcher
        if config.jwks_cache_ttl_seconds > 0:
            source = CachingKeySetFetcher(fetcher, ttl_seconds=config.jwks_cache_ttl_seconds)

        resolver = KeyResolver(config.trusted_issuer, source)
        policy = ClaimsPolicy(
            audience=config.expected_audience,
            image_digest=config.expected_image_digest
        )
        return cls(AttestationTokenVerifier(resolver.resolve_key, policy), metrics)

    def verify_token(self, token: str, nonce: Optional[str] = None) -> TokenVerificationResponse:
        """Verify an attestation token, reporting failures in the response."""
        start_time = time.time()
        try:
            verified = self.verifier.verify_token(self._strip_bearer(token), nonce=nonce)
        except VerifierException as e:
            self.logger.warning(
                "Token verification failed",
                error=e.message,
                code=e.code,
                stage=e.stage.value if e.stage else None
            )
            self._record("rejected" if e.status_code == 401 else "error", e.code, start_time)
            return TokenVerificationResponse(
                valid=False,
                error=e.message,
                error_code=e.code,
                stage=e.stage.value if e.stage else None
            )

        self._record("verified", None, start_time)
        return TokenVerificationResponse(
            valid=True,
            claims=dict(verified.claims),
            header=dict(verified.header)
        )

    def verify(self, token: str, nonce: Optional[str] = None) -> VerifiedToken:
        """Verify an attestation token, raising the typed error on failure."""
        return self.verifier.verify_token(self._strip_bearer(token), nonce=nonce)

    def extract_claims(self, token: str, nonce: Optional[str] = None) -> Dict[str, Any]:
        """Extract claims from a valid token."""
        return dict(self.verify(token, nonce).claims)

    def get_workload_info(self, token: str) -> WorkloadInfo:
        """Get workload information from token claims."""
        claims = self.extract_claims(token)
        container = container_claims(claims)

        versions = claims.get("swversion")
        if isinstance(versions, str):
            versions = [versions]

        return WorkloadInfo(
            subject=claims.get("sub"),
            image_reference=container.get("image_reference"),
            image_digest=container.get("image_digest"),
            hardware_model=claims.get("hwmodel"),
            software_name=claims.get("swname"),
            software_versions=[str(v) for v in versions or []],
            expires_at=claims.get("exp")
        )

    def _strip_bearer(self, token: str) -> str:
        if token.startswith("Bearer "):
            return token[7:]
        return token

    def _record(self, outcome: str, error_code: Optional[str], start_time: float) -> None:
        if self.metrics is None:
            return
        self.metrics.record_verification(outcome, time.time() - start_time)
        if error_code:
            self.metrics.record_error(error_code)
