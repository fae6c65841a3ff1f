"""
Attestation Service package.

This package exposes the FastAPI application that verifies attestation
tokens issued by a confidential-computing attestation service:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.jwks: Discovery, key set retrieval and signing key resolution.
- app.validation: Token verification and the service-facing validator.

Design notes:
- Module import must not perform network calls. Issuer round trips
  happen inside a verification call.
- Use the shared/ utilities for config, logging, metrics and errors.
- The service is stateless unless the key set cache is enabled.
"""
