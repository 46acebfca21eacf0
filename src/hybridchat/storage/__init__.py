"""HybridChat storage module."""

from .public_key_cache import PublicKeyCache
from .encryption_key_storage import EncryptionKeyStorage, InMemoryKeyStorage, KeyNotFoundError
from .file_key_storage import (
    FileKeyStorage,
    PasswordRequiredError,
    DecryptionFailedError,
    InvalidKeyDataError,
)

__all__ = [
    "PublicKeyCache",
    "EncryptionKeyStorage",
    "InMemoryKeyStorage",
    "KeyNotFoundError",
    "FileKeyStorage",
    "PasswordRequiredError",
    "DecryptionFailedError",
    "InvalidKeyDataError",
]
