"""Configuration for HybridChat envelopes."""

from dataclasses import dataclass, field, replace
from typing import Optional

from .types import MAX_DECODE_DEPTH, RSA_KEY_SIZE


@dataclass
class Placeholders:
    """User-visible strings shown in place of content that cannot be displayed."""

    legacy: str = "⚠️ [Legacy message, not auditable]"
    """Message predates encryption (``auditStatus == NO_AUDITABLE``)."""

    no_local_key: str = "🔒 [Encrypted message - no local private key]"
    """The reading device holds no private key."""

    no_slot: str = "🔒 [Encrypted message - key not available for this user]"
    """The envelope carries no wrapped key for the reader."""

    unreadable: str = "🔒 [E2E decryption error]"
    """A key was found but the payload could not be opened."""

    preview_encrypted: str = "🔒 [Encrypted message]"
    """Chat-list label for any text resolution failure."""

    preview_image: str = "📷 Image"
    """Chat-list label for images without a readable caption."""

    preview_audio: str = "🎤 Voice message"
    """Chat-list label for voice notes; duration is appended when known."""


@dataclass
class EnvelopeConfig:
    """Configuration shared by the builder, resolver and summarizer."""

    max_decode_depth: int = MAX_DECODE_DEPTH
    """Maximum JSON decode passes when normalizing transport content."""

    admin_user_id: Optional[str] = None
    """Audit identity that reads through ``forAdmin``."""

    admin_public_key: Optional[str] = None
    """Base64 SPKI public key of the audit identity."""

    require_admin_slot: bool = False
    """Report a fan-out failure when no admin key is available."""

    key_size: int = RSA_KEY_SIZE
    """Modulus size for newly generated identity keys."""

    placeholders: Placeholders = field(default_factory=Placeholders)

    @classmethod
    def default(cls) -> "EnvelopeConfig":
        """Creates the default configuration (no audit identity)."""
        return cls()

    def with_admin(self, user_id: str, public_key: Optional[str] = None) -> "EnvelopeConfig":
        """Sets the audit identity."""
        return replace(self, admin_user_id=str(user_id), admin_public_key=public_key)

    def with_placeholders(self, placeholders: Placeholders) -> "EnvelopeConfig":
        """Sets the user-visible placeholder strings."""
        return replace(self, placeholders=placeholders)
