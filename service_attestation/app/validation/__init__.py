"""
Token validation package.

Verifies compact RS256 attestation tokens: envelope parsing, signing key
resolution through an injected key provider, signature and expiry checks,
and optional golden-value checks on audience, container image digest and
attestation nonce.
"""
