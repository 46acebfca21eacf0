"""
File-based private key storage with password protection.

Stores PKCS#8-encoded RSA identity keys encrypted with AES-256-GCM, using a
password derived key via PBKDF2. Keys are stored in `~/.hybridchat/keys/`
unless another directory is given.

## Storage Format

Each key file contains:
- Salt: 32 bytes (random, for PBKDF2)
- Nonce: 12 bytes (random, for AES-GCM)
- Ciphertext: variable (encrypted PKCS#8 DER)
- Tag: 16 bytes (authentication tag)

## Security

- Uses PBKDF2 with 100,000 iterations for key derivation
- Uses AES-256-GCM for authenticated encryption
- Keys are stored with 600 permissions (owner read/write only)
- Salt is unique per key file
"""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..types import StorageError
from .encryption_key_storage import EncryptionKeyStorage, KeyNotFoundError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


class PasswordRequiredError(StorageError):
    """Raised when password is required but not set."""

    def __init__(self) -> None:
        super().__init__("Password is required for file key storage")


class DecryptionFailedError(StorageError):
    """Raised when decryption fails (wrong password)."""

    def __init__(self) -> None:
        super().__init__("Decryption failed - incorrect password or corrupted data")


class InvalidKeyDataError(StorageError):
    """Raised when key data is invalid."""

    def __init__(self) -> None:
        super().__init__("Invalid key data format")


class FileKeyStorage(EncryptionKeyStorage):
    """
    File-based private key storage with password protection.

    Example usage:
        ```python
        storage = FileKeyStorage(password="user-password")

        # Store a key
        await storage.store(pkcs8_der, "42")

        # Retrieve
        key = await storage.retrieve("42")
        ```
    """

    # PBKDF2 iteration count (OWASP recommendation for SHA256)
    PBKDF2_ITERATIONS = 100_000

    # Salt size in bytes
    SALT_SIZE = 32

    # AES-GCM nonce size in bytes
    NONCE_SIZE = 12

    # AES-GCM tag size in bytes
    TAG_SIZE = 16

    # Directory name for key storage, relative to the home directory
    DIRECTORY_NAME = ".hybridchat/keys"

    # Minimum file size (salt + nonce + at least one byte + tag)
    MIN_FILE_SIZE = 32 + 12 + 1 + 16

    def __init__(
        self,
        password: Optional[str] = None,
        directory: Optional[Union[str, Path]] = None,
    ) -> None:
        """
        Create a new file key storage.

        Args:
            password: Optional password for encryption. If not provided,
                      must be set before use.
            directory: Optional storage directory (default `~/.hybridchat/keys`).
        """
        self._password = password
        self._directory = Path(directory) if directory is not None else None
        self._cached_derived_key: Optional[bytes] = None
        self._cached_salt: Optional[bytes] = None

    def set_password(self, password: str) -> None:
        """
        Set the password for encryption/decryption.

        Args:
            password: The password to use.
        """
        self._password = password
        self._cached_derived_key = None
        self._cached_salt = None

    def clear_password(self) -> None:
        """Clear the password and cached keys from memory."""
        self._password = None
        self._cached_derived_key = None
        self._cached_salt = None

    async def store(self, private_key: bytes, user_id: str) -> None:
        """
        Store a private key for a user.

        Args:
            private_key: The PKCS#8 DER encoded private key.
            user_id: The owning user id.

        Raises:
            PasswordRequiredError: If no password is set.
        """
        if not self._password:
            raise PasswordRequiredError()

        directory = self._ensure_directory()

        salt = os.urandom(self.SALT_SIZE)
        nonce = os.urandom(self.NONCE_SIZE)

        derived_key = self._derive_key(self._password, salt)

        aesgcm = AESGCM(derived_key)
        ciphertext_and_tag = aesgcm.encrypt(nonce, bytes(private_key), None)

        file_path = self._key_file_path(user_id, directory)
        file_path.write_bytes(salt + nonce + ciphertext_and_tag)

        self._set_restrictive_permissions(file_path)
        logger.debug("Stored private key for user %s", user_id)

    async def retrieve(self, user_id: str) -> bytes:
        """
        Retrieve a private key for a user.

        Args:
            user_id: The owning user id.

        Returns:
            The PKCS#8 DER encoded private key.

        Raises:
            PasswordRequiredError: If no password is set.
            KeyNotFoundError: If no key is stored for this user.
            DecryptionFailedError: If decryption fails (wrong password).
            InvalidKeyDataError: If the key data is corrupted.
        """
        if not self._password:
            raise PasswordRequiredError()

        file_path = self._key_file_path(user_id, self._get_directory())

        if not file_path.exists():
            raise KeyNotFoundError(str(user_id))

        file_data = file_path.read_bytes()

        if len(file_data) < self.MIN_FILE_SIZE:
            raise InvalidKeyDataError()

        salt = file_data[: self.SALT_SIZE]
        nonce = file_data[self.SALT_SIZE : self.SALT_SIZE + self.NONCE_SIZE]
        ciphertext_and_tag = file_data[self.SALT_SIZE + self.NONCE_SIZE :]

        derived_key = self._derive_key(self._password, salt)

        try:
            return AESGCM(derived_key).decrypt(nonce, ciphertext_and_tag, None)
        except InvalidTag as e:
            raise DecryptionFailedError() from e

    async def has_key(self, user_id: str) -> bool:
        """Check if a key exists for a user."""
        return self._key_file_path(user_id, self._get_directory()).exists()

    async def delete(self, user_id: str) -> None:
        """Delete a key for a user."""
        file_path = self._key_file_path(user_id, self._get_directory())
        if file_path.exists():
            file_path.unlink()

    async def list_stored_users(self) -> List[str]:
        """List all user ids with a stored key."""
        directory = self._get_directory()

        if not directory.exists():
            return []

        return [
            f.stem
            for f in directory.iterdir()
            if f.suffix == ".key"
        ]

    def _get_directory(self) -> Path:
        """Get the key storage directory path."""
        if self._directory is not None:
            return self._directory
        return Path.home() / self.DIRECTORY_NAME

    def _ensure_directory(self) -> Path:
        """Ensure the key storage directory exists."""
        directory = self._get_directory()
        directory.mkdir(parents=True, exist_ok=True)
        # Set directory permissions to 700 (owner only)
        try:
            directory.chmod(0o700)
        except OSError:
            logger.debug("Could not restrict permissions on %s", directory)
        return directory

    def _key_file_path(self, user_id: str, directory: Path) -> Path:
        """Return the file path for a key."""
        return directory / f"{_SAFE_NAME.sub('_', str(user_id))}.key"

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        """Derive an encryption key from password using PBKDF2."""
        if self._cached_derived_key and self._cached_salt == salt:
            return self._cached_derived_key

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.PBKDF2_ITERATIONS,
        )
        derived_key = kdf.derive(password.encode("utf-8"))

        self._cached_derived_key = derived_key
        self._cached_salt = salt

        return derived_key

    def _set_restrictive_permissions(self, file_path: Path) -> None:
        """Set restrictive file permissions (600 on Unix)."""
        try:
            file_path.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", file_path)
