"""
Key set retrieval for the trusted attestation issuer.

The issuer advertises its signing keys through an OpenID discovery
document; the key set is fetched from the ``jwks_uri`` found there.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from shared.config import OPENID_CONFIGURATION_PATH
from shared.errors import DiscoveryError, KeySetError, KeySetFetchError
from shared.logging import get_logger
from .models import KeySet


class KeySetFetcher:
    """Fetches the issuer's discovery document and key set on every call."""

    def __init__(
        self,
        issuer: str,
        *,
        well_known_path: str = OPENID_CONFIGURATION_PATH,
        timeout: float = 5.0,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
    ) -> None:
        self.issuer = issuer
        self.discovery_url = issuer.rstrip("/") + well_known_path
        self.timeout = timeout
        self._client_factory = client_factory or self._default_client
        self.logger = get_logger("attestation.jwks")

    def _default_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, follow_redirects=True)

    def fetch_key_set(self) -> KeySet:
        """Retrieve the discovery document, then the key set it points to."""
        with self._client_factory() as client:
            jwks_uri = self._fetch_jwks_uri(client)
            key_set = self._fetch_keys(client, jwks_uri)

        self.logger.info(
            "Key set fetched",
            jwks_uri=jwks_uri,
            keys_count=len(key_set.keys)
        )
        return key_set

    def _fetch_jwks_uri(self, client: httpx.Client) -> str:
        document = self._get_json(client, self.discovery_url, DiscoveryError)
        jwks_uri = document.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise DiscoveryError(
                "Discovery document has no jwks_uri",
                details={"url": self.discovery_url}
            )
        return jwks_uri

    def _fetch_keys(self, client: httpx.Client, jwks_uri: str) -> KeySet:
        document = self._get_json(client, jwks_uri, KeySetError)
        try:
            return KeySet.model_validate(document)
        except ValidationError as exc:
            raise KeySetError(
                "Malformed key set document",
                details={"url": jwks_uri, "error": str(exc)}
            ) from exc

    def _get_json(self, client: httpx.Client, url: str, error_cls: type) -> Dict[str, Any]:
        try:
            response = client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.logger.warning("Issuer request failed", url=url, error=str(exc))
            raise error_cls(f"Request to {url} failed: {exc}", details={"url": url}) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise error_cls(f"Response from {url} is not JSON", details={"url": url}) from exc

        if not isinstance(body, dict):
            raise error_cls(f"Response from {url} is not a JSON object", details={"url": url})
        return body


class CachingKeySetFetcher:
    """Time-bounded in-process cache in front of a key set fetcher.

    Only successful fetches are cached. A TTL of zero disables caching.
    """

    def __init__(self, fetcher: KeySetFetcher, ttl_seconds: float = 300.0) -> None:
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("attestation.jwks.cache")

        self._key_set: Optional[KeySet] = None
        self._fetched_at: Optional[float] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def issuer(self) -> str:
        return self.fetcher.issuer

    def fetch_key_set(self) -> KeySet:
        with self._lock:
            if self._key_set is not None and self._age(time.monotonic()) < self.ttl_seconds:
                return self._key_set
            generation = self._generation

        # Issuer round trips run unlocked
        try:
            key_set = self.fetcher.fetch_key_set()
        except KeySetFetchError:
            with self._lock:
                if self._generation == generation:
                    self._drop()
            raise

        with self._lock:
            # An invalidate() that raced this fetch wins
            if self._generation == generation:
                self._key_set = key_set
                self._fetched_at = time.monotonic()
        return key_set

    def age_seconds(self) -> float:
        with self._lock:
            return self._age(time.monotonic())

    def invalidate(self) -> None:
        """Drop the cached snapshot so the next call refetches."""
        with self._lock:
            self._drop()
        self.logger.info("Key set cache invalidated")

    def _age(self, now: float) -> float:
        if self._fetched_at is None:
            return float("inf")
        return max(0.0, now - self._fetched_at)

    def _drop(self) -> None:
        self._key_set = None
        self._fetched_at = None
        self._generation += 1
