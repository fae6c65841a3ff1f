"""
Attestation service: verifies confidential-computing attestation tokens.
"""

from typing import Optional

import httpx

from shared.base_service import VERSION, BaseService
from shared.config import AttestationConfig
from .validation.token_validator import (
    TokenValidator,
    TokenVerificationRequest,
    TokenVerificationResponse,
    WorkloadInfo,
)


class AttestationService(BaseService):
    """Attestation service implementation."""

    def __init__(self, config: Optional[AttestationConfig] = None, validator: Optional[TokenValidator] = None):
        super().__init__("attestation", 8010, config)
        self.token_validator = validator or TokenValidator.from_config(self.config, self.metrics)
        self._setup_attestation_routes()

    def _setup_attestation_routes(self):
        """Set up attestation-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "attestation",
                "message": "Confidential-computing attestation token verifier",
                "version": VERSION,
                "trusted_issuer": self.config.trusted_issuer
            }

        # Plain def: verification blocks on the issuer round trips
        @self.app.post("/attestation/verify", response_model=TokenVerificationResponse)
        def verify_token(request: TokenVerificationRequest):
            """Token verification endpoint."""
            return self.token_validator.verify_token(request.token, nonce=request.nonce)

        @self.app.post("/attestation/workload", response_model=WorkloadInfo)
        def get_workload_info(request: TokenVerificationRequest):
            """Attested workload details for a valid token."""
            return self.token_validator.get_workload_info(request.token)

    async def _check_dependencies(self):
        """Check that the trusted issuer's discovery document is reachable."""
        dependencies = {}

        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout_seconds, follow_redirects=True) as client:
                response = await client.get(self.config.discovery_url)
                dependencies["issuer"] = "ok" if response.status_code == 200 else "error"
        except httpx.HTTPError as e:
            self.logger.warning("Issuer health check failed", error=str(e))
            dependencies["issuer"] = "error"

        return dependencies


def create_app(config: Optional[AttestationConfig] = None):
    """Create FastAPI application."""
    service = AttestationService(config)
    return service.app


if __name__ == "__main__":
    service = AttestationService()
    service.run()
