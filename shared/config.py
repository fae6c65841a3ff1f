"""
Shared configuration management for the attestation token verifier.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


GCP_CONFIDENTIAL_COMPUTING_ISSUER = "https://confidentialcomputing.googleapis.com"
OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ATTEST_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Trusted issuer
    trusted_issuer: str = Field(default=GCP_CONFIDENTIAL_COMPUTING_ISSUER)
    well_known_path: str = Field(default=OPENID_CONFIGURATION_PATH)
    http_timeout_seconds: float = Field(default=5.0, gt=0)

    # 0 disables the in-process key set cache
    jwks_cache_ttl_seconds: int = Field(default=0, ge=0)

    # Claims policy
    expected_audience: Optional[str] = Field(default=None)
    expected_image_digest: Optional[str] = Field(default=None)

    @property
    def discovery_url(self) -> str:
        """Location of the trusted issuer's discovery document."""
        return self.trusted_issuer.rstrip("/") + self.well_known_path


class AttestationConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> AttestationConfig:
    """Get configuration for a specific service."""
    return AttestationConfig(service_name=service_name, port=port, **overrides)
