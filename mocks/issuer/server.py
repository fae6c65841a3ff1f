"""
Mock attestation issuer providing discovery, JWKS and token minting endpoints.
"""

from typing import Dict, Any, Optional, List
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import sys
import os

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import GCP_CONFIDENTIAL_COMPUTING_ISSUER, OPENID_CONFIGURATION_PATH
from shared.logging import get_logger
from shared.test_helpers import MockTokenGenerator, SigningKey, nonce_claim


class TokenRequest(BaseModel):
    """Request body for minting an attestation token."""
    audience: Optional[str] = None
    nonces: List[str] = []
    image_digest: Optional[str] = None
    expires_in: int = 3600


class MockIssuerServer:
    """Mock confidential-computing issuer implementation."""

    def __init__(self, issuer: str = GCP_CONFIDENTIAL_COMPUTING_ISSUER, port: int = 8090):
        self.port = port
        self.issuer = issuer.rstrip("/")
        self.jwks_uri = f"{self.issuer}/jwks"
        self.logger = get_logger("mock.issuer")
        self.app = FastAPI(title="Mock Attestation Issuer", version="1.0.0")

        # Published keys, newest last; the newest one signs
        self.signing_keys: List[SigningKey] = [SigningKey.generate("mock-key-1")]
        self.generator = MockTokenGenerator(self.signing_keys[-1], self.issuer)

        self._setup_routes()

    @property
    def jwks(self) -> Dict[str, Any]:
        return {"keys": [key.to_jwk() for key in self.signing_keys]}

    def _setup_routes(self):
        """Set up mock issuer routes."""

        @self.app.get(OPENID_CONFIGURATION_PATH)
        async def discovery():
            """OpenID discovery document."""
            return {
                "issuer": self.issuer,
                "jwks_uri": self.jwks_uri,
                "response_types_supported": ["id_token"],
                "subject_types_supported": ["public"],
                "id_token_signing_alg_values_supported": ["RS256"],
                "claims_supported": [
                    "sub", "aud", "exp", "iat", "iss", "nbf", "eat_nonce",
                    "hwmodel", "swname", "swversion", "submods"
                ]
            }

        @self.app.get("/jwks")
        async def jwks():
            """Published signing keys."""
            return self.jwks

        @self.app.post("/token")
        async def mint_token(request: TokenRequest):
            """Mint an attestation token signed by the current key."""
            if request.expires_in <= 0:
                raise HTTPException(status_code=400, detail="expires_in must be positive")

            overrides: Dict[str, Any] = {}
            if request.audience:
                overrides["aud"] = request.audience
            if request.nonces:
                overrides["eat_nonce"] = nonce_claim(request.nonces)
            claims = self.generator.attestation_claims(request.expires_in, **overrides)
            if request.image_digest:
                claims["submods"]["container"]["image_digest"] = request.image_digest

            self.logger.info("Minted attestation token", kid=self.generator.signing_key.kid)
            return {
                "token": self.generator.generate_token(claims),
                "kid": self.generator.signing_key.kid,
                "expires_in": request.expires_in
            }

        @self.app.post("/keys/rotate")
        async def rotate_keys():
            """Publish a new signing key and sign with it from now on."""
            key = SigningKey.generate(f"mock-key-{len(self.signing_keys) + 1}")
            self.signing_keys.append(key)
            self.generator.signing_key = key
            self.logger.info("Rotated signing key", kid=key.kid)
            return {"kid": key.kid, "keys_count": len(self.signing_keys)}

        @self.app.delete("/keys/{kid}")
        async def retire_key(kid: str):
            """Stop publishing a key."""
            remaining = [key for key in self.signing_keys if key.kid != kid]
            if len(remaining) == len(self.signing_keys):
                raise HTTPException(status_code=404, detail="Key not found")
            if not remaining:
                raise HTTPException(status_code=400, detail="Cannot retire the last key")
            self.signing_keys = remaining
            self.generator.signing_key = remaining[-1]
            return {"kid": kid, "keys_count": len(remaining)}


def create_app():
    """Create mock issuer application."""
    server = MockIssuerServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8090)
