"""
Per-user identity key lifecycle.

The KeyPairStore owns the local private key slot of each identity: it creates
the key pair on first run, persists the private half exactly once, publishes
only the public half, and hands imported key objects to the resolver.
"""

import asyncio
import logging
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .exchange import KeyBundleExchange
from .fingerprint import fingerprint
from .keys import (
    export_public_key,
    generate_keypair,
    import_private_key,
    private_key_from_bytes,
    private_key_to_bytes,
)
from .storage import EncryptionKeyStorage, KeyNotFoundError
from .types import RSA_KEY_SIZE, PublicKeyNotFoundError, PublishedKeyConflictError, StorageError

logger = logging.getLogger(__name__)


class KeyPairStore:
    """
    Generates, persists and loads identity key pairs.

    Example usage:
        ```python
        store = KeyPairStore(FileKeyStorage(password="..."), exchange)
        await store.ensure_keypair("42")
        private_key = await store.load_private_key("42")
        ```
    """

    def __init__(
        self,
        storage: EncryptionKeyStorage,
        exchange: Optional[KeyBundleExchange] = None,
        key_size: int = RSA_KEY_SIZE,
    ) -> None:
        self.storage = storage
        self.exchange = exchange
        self.key_size = key_size
        self._loaded: dict[str, rsa.RSAPrivateKey] = {}
        self._lock = asyncio.Lock()

    def generate(self, key_size: Optional[int] = None) -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
        """Generate a key pair without persisting it."""
        return generate_keypair(key_size or self.key_size)

    async def ensure_keypair(
        self,
        user_id: str,
        publish: bool = True,
        key_size: Optional[int] = None,
    ) -> rsa.RSAPublicKey:
        """
        Make sure a key pair exists for a user.

        Neither the local private key nor an already published public key is
        ever replaced: doing so would orphan every envelope wrapped under the
        old public key, and every other device of the user.

        Args:
            user_id: Local identity
            publish: Publish the public key to the exchange when one is set
            key_size: Modulus size for a newly generated pair

        Returns:
            The identity's public key

        Raises:
            PublishedKeyConflictError: A key is published but this device
                holds no private key, or holds a different one
        """
        user_id = str(user_id)
        async with self._lock:
            existing = await self.load_private_key(user_id)
            published = await self._published_key(user_id)

            if existing is not None:
                public_key = existing.public_key()
                if published is not None and fingerprint(published) != fingerprint(public_key):
                    raise PublishedKeyConflictError(user_id, "published key does not match the local private key")
            elif published is not None:
                raise PublishedKeyConflictError(user_id, "key is published but no local private key exists")
            else:
                private_key, public_key = await asyncio.to_thread(self.generate, key_size)
                await self.storage.store(private_key_to_bytes(private_key), user_id)
                self._loaded[user_id] = private_key
                logger.info("Generated identity key pair for user %s", user_id)

        if publish and self.exchange is not None and published is None:
            await self.exchange.publish(user_id, export_public_key(public_key))
            logger.info("Published public key for user %s", user_id)
        return public_key

    async def _published_key(self, user_id: str) -> Optional[str]:
        if self.exchange is None:
            return None
        try:
            return await self.exchange.fetch(user_id)
        except PublicKeyNotFoundError:
            return None

    async def has_keypair(self, user_id: str) -> bool:
        return await self.storage.has_key(str(user_id))

    async def load_private_key(self, user_id: str) -> Optional[rsa.RSAPrivateKey]:
        """
        Load a user's private key.

        Returns:
            The key, or None when the device holds none

        Raises:
            KeyFormatError: If the stored key cannot be parsed
        """
        user_id = str(user_id)
        cached = self._loaded.get(user_id)
        if cached is not None:
            return cached

        try:
            data = await self.storage.retrieve(user_id)
        except KeyNotFoundError:
            return None

        private_key = private_key_from_bytes(data)
        self._loaded[user_id] = private_key
        return private_key

    async def load_public_key(self, user_id: str) -> Optional[rsa.RSAPublicKey]:
        """Returns the public half of a stored key pair, or None."""
        private_key = await self.load_private_key(user_id)
        return private_key.public_key() if private_key is not None else None

    async def export_public(self, user_id: str) -> Optional[str]:
        """Returns the base64 public key of a stored key pair, or None."""
        public_key = await self.load_public_key(user_id)
        return export_public_key(public_key) if public_key is not None else None

    async def import_identity(
        self,
        user_id: str,
        private_key_b64: str,
        overwrite: bool = False,
    ) -> rsa.RSAPublicKey:
        """
        Install an existing private key, e.g. when moving to a new device.

        Raises:
            KeyFormatError: If the key is malformed
            StorageError: If a different key already exists and overwrite is False
        """
        user_id = str(user_id)
        private_key = import_private_key(private_key_b64)
        async with self._lock:
            if not overwrite and await self.storage.has_key(user_id):
                current = await self.load_private_key(user_id)
                if current is None or private_key_to_bytes(current) != private_key_to_bytes(private_key):
                    raise StorageError(f"A different private key is already stored for user {user_id}")
            await self.storage.store(private_key_to_bytes(private_key), user_id)
            self._loaded[user_id] = private_key
        logger.info("Imported identity key for user %s", user_id)
        return private_key.public_key()

    async def reset(self, user_id: str) -> None:
        """Clear a user's key slot (explicit logout or key reset)."""
        user_id = str(user_id)
        async with self._lock:
            await self.storage.delete(user_id)
            self._loaded.pop(user_id, None)
        logger.info("Cleared identity key for user %s", user_id)

    def forget_loaded(self) -> None:
        """Drop imported key objects held in memory."""
        self._loaded.clear()
