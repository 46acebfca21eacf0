"""Type definitions and constants for HybridChat."""

from enum import Enum


class EnvelopeType(str, Enum):
    """Envelope variants carried in the ``type`` field."""
    DIRECT = "E2E"
    GROUP = "E2E_GROUP"
    DIRECT_AUDIO = "E2E_AUDIO"
    GROUP_AUDIO = "E2E_GROUP_AUDIO"
    DIRECT_IMAGE = "E2E_IMAGE"
    GROUP_IMAGE = "E2E_GROUP_IMAGE"

    @property
    def is_group(self) -> bool:
        return self in (EnvelopeType.GROUP, EnvelopeType.GROUP_AUDIO, EnvelopeType.GROUP_IMAGE)

    @property
    def is_audio(self) -> bool:
        return self in (EnvelopeType.DIRECT_AUDIO, EnvelopeType.GROUP_AUDIO)

    @property
    def is_image(self) -> bool:
        return self in (EnvelopeType.DIRECT_IMAGE, EnvelopeType.GROUP_IMAGE)

    @property
    def is_media(self) -> bool:
        return self.is_audio or self.is_image


# Asymmetric constants
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
OAEP_HASH_SIZE = 32
# OAEP ceiling: k - 2*hLen - 2
MAX_WRAP_PLAINTEXT = RSA_KEY_SIZE // 8 - 2 * OAEP_HASH_SIZE - 2

# Symmetric constants
SESSION_KEY_SIZE = 32
IV_SIZE = 12
TAG_SIZE = 16
AES_KEY_SIZES = (16, 24, 32)

# Envelope constants
MAX_DECODE_DEPTH = 4
NO_AUDITABLE = "NO_AUDITABLE"
IMAGE_BLOB_MIME = "application/octet-stream"
DEFAULT_AUDIO_MIME = "audio/webm"
DEFAULT_IMAGE_MIME = "image/jpeg"

# Slot names on the wire
SLOT_SENDER = "forEmisor"
SLOT_RECIPIENT = "forReceptor"
SLOT_RECIPIENTS = "forReceptores"
SLOT_ADMIN = "forAdmin"


# Exception types
class HybridChatError(Exception):
    """Base exception for HybridChat errors."""
    pass


class KeyFormatError(HybridChatError):
    """Malformed key encoding."""
    pass


class AsymmetricEncryptError(HybridChatError):
    """Wrapping a session key failed."""
    pass


class AsymmetricDecryptError(HybridChatError):
    """Unwrapping a session key failed (wrong key or corrupted input)."""
    pass


class AuthenticationError(HybridChatError):
    """Authenticated decryption failed; content is unreadable."""
    pass


class NoLocalKeyError(HybridChatError):
    """No private key is stored locally for the reading user."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"No local private key for user: {user_id}")
        self.user_id = user_id


class KeySlotNotFoundError(HybridChatError):
    """The envelope carries no wrapped key the reading user can open."""

    def __init__(self, user_id: str, slot: str) -> None:
        super().__init__(f"No usable {slot} slot for user: {user_id}")
        self.user_id = user_id
        self.slot = slot


class MalformedEnvelopeError(HybridChatError):
    """Content is not a well-formed envelope."""
    pass


class FanOutError(HybridChatError):
    """One or more slots could not be wrapped while building an envelope."""

    def __init__(self, failures: list) -> None:
        recipients = ", ".join(f.recipient for f in failures)
        super().__init__(f"Could not wrap session key for: {recipients}")
        self.failures = failures


class PublicKeyNotFoundError(HybridChatError):
    """Public key not published for a user."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Public key not found for user: {user_id}")
        self.user_id = user_id


class BlobNotFoundError(HybridChatError):
    """Blob locator does not resolve."""

    def __init__(self, locator: str) -> None:
        super().__init__(f"Blob not found: {locator}")
        self.locator = locator


class HandleRevokedError(HybridChatError):
    """A decrypted media handle was read after being released."""
    pass


class StorageError(HybridChatError):
    """Storage operation failed."""
    pass


class PublishedKeyConflictError(HybridChatError):
    """The published public key does not belong to the local key slot."""

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"Published key conflict for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason
