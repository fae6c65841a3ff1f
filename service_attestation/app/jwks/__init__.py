"""
JWKS package.

Contains the logic for locating and decoding the trusted issuer's signing
keys:

- codec: base64url big-endian integer decoding for ``n`` and ``e``.
- client: discovery document and key set retrieval, optional TTL cache.
- resolver: issuer check, ``kid`` lookup and RSA public key construction.
"""
