"""
Interfaces to HybridChat's external collaborators.

This module provides abstract base classes for the key-bundle exchange (where
users publish and fetch identity public keys) and the blob store (where
encrypted media bodies live). Implementations can use any HTTP client or
object store; in-memory versions are provided for tests and local use.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional
import logging
import uuid

from .storage import PublicKeyCache
from .types import BlobNotFoundError, PublicKeyNotFoundError

logger = logging.getLogger(__name__)


class KeyBundleExchange(ABC):
    """Publication and lookup of identity public keys."""

    @abstractmethod
    async def publish(self, user_id: str, public_key: str) -> None:
        """
        Publish a user's public key.

        Args:
            user_id: Owner of the key
            public_key: Base64 SPKI public key
        """
        pass

    @abstractmethod
    async def fetch(self, user_id: str) -> str:
        """
        Fetch a user's current public key.

        Raises:
            PublicKeyNotFoundError: If the user has not published a key
        """
        pass


class InMemoryKeyBundleExchange(KeyBundleExchange):
    """In-memory key-bundle exchange (for testing)."""

    def __init__(self) -> None:
        self._bundles: dict[str, str] = {}

    async def publish(self, user_id: str, public_key: str) -> None:
        self._bundles[str(user_id)] = public_key

    async def fetch(self, user_id: str) -> str:
        key = self._bundles.get(str(user_id))
        if key is None:
            raise PublicKeyNotFoundError(str(user_id))
        return key


class BlobStore(ABC):
    """Storage for encrypted media bodies."""

    @abstractmethod
    async def upload(self, data: bytes, mime_type: str) -> str:
        """
        Upload encrypted bytes.

        Args:
            data: Ciphertext (never plaintext media)
            mime_type: Content type recorded alongside the blob

        Returns:
            Locator (URL) for later retrieval
        """
        pass

    @abstractmethod
    async def download(self, locator: str) -> bytes:
        """
        Download bytes by locator.

        Raises:
            BlobNotFoundError: If the locator does not resolve
        """
        pass


class InMemoryBlobStore(BlobStore):
    """In-memory blob store (for testing)."""

    SCHEME = "memory://blob/"

    def __init__(self) -> None:
        self._blobs: dict[str, tuple[bytes, str]] = {}
        self.download_count = 0

    async def upload(self, data: bytes, mime_type: str) -> str:
        locator = f"{self.SCHEME}{uuid.uuid4().hex}"
        self._blobs[locator] = (bytes(data), mime_type)
        return locator

    async def download(self, locator: str) -> bytes:
        self.download_count += 1
        blob = self._blobs.get(locator)
        if blob is None:
            raise BlobNotFoundError(locator)
        return blob[0]

    def mime_type_of(self, locator: str) -> Optional[str]:
        blob = self._blobs.get(locator)
        return blob[1] if blob else None


class KeyDirectory:
    """
    Cached lookups against a key-bundle exchange.

    Example usage:
        ```python
        directory = KeyDirectory(exchange)
        key = await directory.public_key_for("42")
        ```
    """

    def __init__(
        self,
        exchange: KeyBundleExchange,
        cache: Optional[PublicKeyCache] = None,
        ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self.exchange = exchange
        self.cache = cache or PublicKeyCache(ttl=ttl)

    async def public_key_for(self, user_id: str) -> str:
        """
        Get a user's public key, from cache when fresh.

        Raises:
            PublicKeyNotFoundError: If the user has not published a key
        """
        cached = self.cache.retrieve(str(user_id))
        if cached is not None:
            return cached

        key = await self.exchange.fetch(str(user_id))
        self.cache.store(str(user_id), key)
        return key

    async def public_keys_for(self, user_ids: list) -> tuple[dict[str, str], list[str]]:
        """
        Look up several users.

        Returns:
            Tuple of (keys by user id, user ids without a published key)
        """
        found: dict[str, str] = {}
        missing: list[str] = []
        for user_id in user_ids:
            try:
                found[str(user_id)] = await self.public_key_for(user_id)
            except PublicKeyNotFoundError:
                logger.warning("No published public key for user %s", user_id)
                missing.append(str(user_id))
        return found, missing

    def invalidate(self, user_id: str) -> None:
        """Drop a cached key, e.g. after the owner re-keys."""
        self.cache.invalidate(str(user_id))
