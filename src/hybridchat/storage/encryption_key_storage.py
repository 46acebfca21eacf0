"""Private key storage interface and in-memory implementation."""

from abc import ABC, abstractmethod

from ..types import StorageError


class KeyNotFoundError(StorageError):
    """Error thrown when no key is stored for a user."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Key not found for user: {user_id}")
        self.user_id = user_id


class EncryptionKeyStorage(ABC):
    """
    Durable, user-namespaced store for identity private keys.

    Implementations hold one opaque key blob per user id and must never
    return another user's slot.
    """

    @abstractmethod
    async def store(self, private_key: bytes, user_id: str) -> None:
        """Store a private key for a user."""
        ...

    @abstractmethod
    async def retrieve(self, user_id: str) -> bytes:
        """Retrieve a private key for a user."""
        ...

    @abstractmethod
    async def has_key(self, user_id: str) -> bool:
        """Check if a key exists for a user."""
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> None:
        """Delete a key for a user."""
        ...

    @abstractmethod
    async def list_stored_users(self) -> list[str]:
        """List all user ids with a stored key."""
        ...


class InMemoryKeyStorage(EncryptionKeyStorage):
    """
    In-memory implementation of EncryptionKeyStorage (for testing).

    WARNING: This is NOT secure for production use. Keys are stored in memory
    without encryption and are lost when the process exits.
    """

    def __init__(self) -> None:
        self._keys: dict[str, bytes] = {}

    async def store(self, private_key: bytes, user_id: str) -> None:
        """Store a private key for a user."""
        self._keys[str(user_id)] = bytes(private_key)

    async def retrieve(self, user_id: str) -> bytes:
        """Retrieve a private key for a user."""
        key = self._keys.get(str(user_id))
        if key is None:
            raise KeyNotFoundError(str(user_id))
        return bytes(key)

    async def has_key(self, user_id: str) -> bool:
        """Check if a key exists for a user."""
        return str(user_id) in self._keys

    async def delete(self, user_id: str) -> None:
        """Delete a key for a user."""
        self._keys.pop(str(user_id), None)

    async def list_stored_users(self) -> list[str]:
        """List all user ids with a stored key."""
        return list(self._keys.keys())
