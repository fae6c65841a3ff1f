"""
Unit tests for KeyResolver.
"""

import pytest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_attestation.app.jwks.client import CachingKeySetFetcher, KeySetFetcher
from service_attestation.app.jwks.models import KeyRecord, KeySet, PublicKey
from service_attestation.app.jwks.resolver import KeyResolver
from shared.config import GCP_CONFIDENTIAL_COMPUTING_ISSUER
from shared.errors import (
    DiscoveryError,
    KeyDecodeError,
    KeyNotFoundError,
    KeySetError,
    UntrustedIssuerError,
    VerificationStage,
)
from shared.test_helpers import MockIssuer, SigningKey, b64url_uint

TRUSTED = GCP_CONFIDENTIAL_COMPUTING_ISSUER


class TestKeyResolver:
    """Test cases for KeyResolver."""

    @pytest.fixture(scope="class")
    def signing_key(self):
        return SigningKey.generate("k1")

    @pytest.fixture
    def mock_issuer(self, signing_key):
        return MockIssuer(issuer=TRUSTED, keys=[signing_key.to_jwk()])

    @pytest.fixture
    def resolver(self, mock_issuer):
        fetcher = KeySetFetcher(TRUSTED, client_factory=mock_issuer.client_factory)
        return KeyResolver(TRUSTED, fetcher)

    def resolver_for(self, *records):
        fetcher = MagicMock(spec=KeySetFetcher)
        fetcher.fetch_key_set.return_value = KeySet(keys=list(records))
        return KeyResolver(TRUSTED, fetcher)

    def test_resolve_key_success(self, resolver, signing_key):
        public_key = resolver.resolve_key(TRUSTED, "k1")

        numbers = signing_key.private_key.public_key().public_numbers()
        assert isinstance(public_key, PublicKey)
        assert public_key.n == numbers.n
        assert public_key.e == 65537
        assert public_key.kid == "k1"
        assert "BEGIN PUBLIC KEY" in public_key.to_pem()

    def test_untrusted_issuer_makes_no_network_calls(self, resolver, mock_issuer):
        with pytest.raises(UntrustedIssuerError) as exc_info:
            resolver.resolve_key("https://evil.example.com", "k1")

        assert exc_info.value.code == "UNTRUSTED_ISSUER"
        assert exc_info.value.stage == VerificationStage.UNTRUSTED_ISSUER
        assert exc_info.value.details["issuer"] == "https://evil.example.com"
        assert mock_issuer.requests == []

    @pytest.mark.parametrize("issuer", [
        TRUSTED + "/",
        TRUSTED.upper(),
        "http://confidentialcomputing.googleapis.com",
        ""
    ])
    def test_issuer_comparison_is_exact(self, issuer):
        resolver = self.resolver_for()

        with pytest.raises(UntrustedIssuerError):
            resolver.resolve_key(issuer, "k1")

        resolver.fetcher.fetch_key_set.assert_not_called()

    def test_configurable_trusted_issuer(self, signing_key):
        mock_issuer = MockIssuer(issuer="https://issuer.test", keys=[signing_key.to_jwk()])
        fetcher = KeySetFetcher("https://issuer.test", client_factory=mock_issuer.client_factory)
        resolver = KeyResolver("https://issuer.test", fetcher)

        assert resolver.resolve_key("https://issuer.test", "k1").kid == "k1"
        with pytest.raises(UntrustedIssuerError):
            resolver.resolve_key(TRUSTED, "k1")

    def test_trusted_issuer_required(self):
        with pytest.raises(ValueError):
            KeyResolver("", MagicMock())

    def test_empty_key_set(self, resolver, mock_issuer):
        mock_issuer.keys = []

        with pytest.raises(KeyNotFoundError) as exc_info:
            resolver.resolve_key(TRUSTED, "k1")

        assert exc_info.value.kid == "k1"
        assert exc_info.value.code == "KEY_NOT_FOUND"
        assert exc_info.value.details == {"kid": "k1", "issuer": TRUSTED}

    def test_unknown_kid(self, resolver):
        with pytest.raises(KeyNotFoundError) as exc_info:
            resolver.resolve_key(TRUSTED, "k2")

        assert exc_info.value.stage == VerificationStage.KEY_NOT_FOUND
        assert "k2" in exc_info.value.message

    def test_first_matching_kid_wins(self):
        first = KeyRecord(kid="k1", n=b64url_uint((1 << 2047) + 1), e="AQAB")
        second = KeyRecord(kid="k1", n=b64url_uint((1 << 2047) + 3), e="AQAB")
        resolver = self.resolver_for(KeyRecord(kid="k0", n="AQAB", e="AQAB"), first, second)

        public_key = resolver.resolve_key(TRUSTED, "k1")

        assert public_key.n == (1 << 2047) + 1

    def test_key_not_found_invalidates_cache(self, signing_key, mock_issuer):
        cache = CachingKeySetFetcher(
            KeySetFetcher(TRUSTED, client_factory=mock_issuer.client_factory),
            ttl_seconds=300
        )
        resolver = KeyResolver(TRUSTED, cache)

        resolver.resolve_key(TRUSTED, "k1")
        resolver.resolve_key(TRUSTED, "k1")
        assert len(mock_issuer.requests) == 2

        # Key rotation: the issuer now publishes k2
        rotated = SigningKey.generate("k2")
        mock_issuer.keys.append(rotated.to_jwk())

        with pytest.raises(KeyNotFoundError):
            resolver.resolve_key(TRUSTED, "k2")
        assert len(mock_issuer.requests) == 2

        assert resolver.resolve_key(TRUSTED, "k2").kid == "k2"
        assert len(mock_issuer.requests) == 4

    def test_discovery_failure_carries_resolver_context(self, resolver, mock_issuer):
        mock_issuer.discovery_status = 500

        with pytest.raises(DiscoveryError) as exc_info:
            resolver.resolve_key(TRUSTED, "k1")

        assert exc_info.value.stage == VerificationStage.KEY_SET_FETCH
        assert exc_info.value.status_code == 502
        assert exc_info.value.details["issuer"] == TRUSTED
        assert exc_info.value.details["kid"] == "k1"

    def test_key_set_failure_propagates(self, resolver, mock_issuer):
        mock_issuer.key_set = {"keys": None}

        with pytest.raises(KeySetError):
            resolver.resolve_key(TRUSTED, "k1")

    @pytest.mark.parametrize("field,record", [
        ("n", KeyRecord(kid="k1", n="!!!", e="AQAB")),
        ("n", KeyRecord(kid="k1", n="", e="AQAB")),
        ("e", KeyRecord(kid="k1", n="AQAB", e="AQ==")),
        ("e", KeyRecord(kid="k1", n="AQAB", e=""))
    ])
    def test_undecodable_key_material(self, field, record):
        resolver = self.resolver_for(record)

        with pytest.raises(KeyDecodeError) as exc_info:
            resolver.resolve_key(TRUSTED, "k1")

        assert exc_info.value.code == "KEY_DECODE_ERROR"
        assert exc_info.value.stage == VerificationStage.KEY_DECODE
        assert exc_info.value.details["field"] == field

    def test_exponent_must_fit_native_integer(self):
        record = KeyRecord(kid="k1", n=b64url_uint((1 << 2047) + 1), e=b64url_uint(2 ** 63 + 1))
        resolver = self.resolver_for(record)

        with pytest.raises(KeyDecodeError) as exc_info:
            resolver.resolve_key(TRUSTED, "k1")

        assert exc_info.value.details["field"] == "e"

    @pytest.mark.parametrize("n,e", [
        ((1 << 2047) + 1, 1),
        ((1 << 2047) + 1, 4),
        (65537, 65537)
    ])
    def test_invalid_rsa_parameters(self, n, e):
        """Exponents must be odd, at least 3 and smaller than the modulus."""
        resolver = self.resolver_for(KeyRecord(kid="k1", n=b64url_uint(n), e=b64url_uint(e)))

        with pytest.raises(KeyDecodeError):
            resolver.resolve_key(TRUSTED, "k1")
