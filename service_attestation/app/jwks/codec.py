"""
Integer codec for JWK key material.

RSA moduli and exponents are published as unpadded base64url encodings of
big-endian unsigned integers (RFC 7518, section 6.3.1).
"""

import base64
import binascii
import re

from shared.errors import DecodeError

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def decode_uint(value: str) -> int:
    """Decode an unpadded base64url string into an unsigned integer."""
    if not isinstance(value, str):
        raise DecodeError("Encoded integer must be a string", details={"type": type(value).__name__})
    if not _BASE64URL_RE.match(value):
        raise DecodeError("Encoded integer contains characters outside the base64url alphabet")
    # A single trailing sextet cannot encode a whole byte
    if len(value) % 4 == 1:
        raise DecodeError("Encoded integer has an impossible length", details={"length": len(value)})

    try:
        raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Encoded integer is not valid base64url: {exc}") from exc

    return int.from_bytes(raw, byteorder="big", signed=False)

