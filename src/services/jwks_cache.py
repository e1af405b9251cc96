"""
Cache for the identity provider's public signing keys.

Keys are fetched lazily, kept for a fixed TTL, and refetched once when a
token names a key id the warm cache does not know (key rotation). Concurrent
refreshes are tolerated: a duplicate fetch is harmless and the last writer
wins.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import jwt

logger = logging.getLogger(__name__)

DEFAULT_JWKS_TTL = 3600  # 1 hour


class JWKSFetchError(Exception):
    """Raised when the key set cannot be retrieved or parsed."""
    pass


JWKSFetcher = Callable[[], Awaitable[Dict[str, Any]]]


class JWKSCache:
    """Process-wide, explicitly constructed signing-key cache."""

    def __init__(
        self,
        jwks_url: str,
        ttl_seconds: int = DEFAULT_JWKS_TTL,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        fetcher: Optional[JWKSFetcher] = None
    ):
        """
        Initialize the cache.

        Args:
            jwks_url: URL of the provider's ``jwks.json``
            ttl_seconds: Maximum age of a fetched key set
            timeout: HTTP timeout for the fetch in seconds
            clock: Monotonic time source, injectable for tests
            fetcher: Coroutine returning the raw JWKS document; defaults to an HTTP GET
        """
        self.jwks_url = jwks_url
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._clock = clock
        self._fetcher = fetcher or self._fetch_over_http
        self._keys: Dict[str, jwt.PyJWK] = {}
        self._fetched_at: Optional[float] = None

    @property
    def is_stale(self) -> bool:
        return self._fetched_at is None or (self._clock() - self._fetched_at) >= self.ttl_seconds

    def invalidate(self) -> None:
        self._keys = {}
        self._fetched_at = None

    async def _fetch_over_http(self) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info(f"Fetching JWKS from {self.jwks_url}")
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise JWKSFetchError(f"Timeout fetching JWKS: {e}")
        except httpx.HTTPStatusError as e:
            raise JWKSFetchError(f"HTTP error fetching JWKS: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            raise JWKSFetchError(f"Failed to fetch JWKS: {e}")

    async def refresh(self) -> Dict[str, jwt.PyJWK]:
        """Fetch the key set unconditionally and replace the cached copy."""
        document = await self._fetcher()
        if not isinstance(document, dict) or not isinstance(document.get("keys", []), list):
            raise JWKSFetchError("JWKS document is not a key set object")

        keys: Dict[str, jwt.PyJWK] = {}
        for jwk in document.get("keys", []):
            if not isinstance(jwk, dict):
                continue
            kid = jwk.get("kid")
            if not kid:
                continue
            try:
                keys[kid] = jwt.PyJWK(jwk)
            except (jwt.PyJWKError, jwt.InvalidKeyError) as e:
                logger.warning(f"Skipping unusable JWK {kid}: {e}")

        if not keys:
            raise JWKSFetchError("JWKS document contains no usable keys")

        self._keys = keys
        self._fetched_at = self._clock()
        logger.info(f"JWKS cached with {len(keys)} keys")
        return keys

    async def get_signing_key(self, kid: str) -> Optional[Any]:
        """
        Resolve the public key for a key id.

        Args:
            kid: Key identifier from the token header

        Returns:
            Public key object usable by ``jwt.decode``, or None if the provider
            does not publish that key even after a forced refetch
        """
        refreshed = False
        if self.is_stale:
            await self.refresh()
            refreshed = True

        jwk = self._keys.get(kid)
        if jwk is None and not refreshed:
            logger.info(f"Key id {kid} not in cached JWKS, refetching")
            await self.refresh()
            jwk = self._keys.get(kid)

        return jwk.key if jwk is not None else None
