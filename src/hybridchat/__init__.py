"""
HybridChat - End-to-end encrypted chat envelopes

Python implementation of the HybridChat envelope protocol using
RSA-OAEP (SHA-256) key wrapping + AES-256-GCM.
"""

from .keys import (
    generate_keypair,
    export_public_key,
    export_private_key,
    import_public_key,
    import_private_key,
)
from .crypto import (
    generate_session_key,
    wrap_session_key,
    unwrap_session_key,
    seal_payload,
    open_payload,
    seal_text,
    open_text,
)
from .envelope import (
    ChatEnvelope,
    encode_envelope,
    decode_envelope,
    normalize_content,
    is_e2e_message,
    check_group_roster,
    RosterCheck,
)
from .types import (
    EnvelopeType,
    MAX_DECODE_DEPTH,
    NO_AUDITABLE,
    RSA_KEY_SIZE,
    SESSION_KEY_SIZE,
    IV_SIZE,
    HybridChatError,
    KeyFormatError,
    AsymmetricEncryptError,
    AsymmetricDecryptError,
    AuthenticationError,
    NoLocalKeyError,
    KeySlotNotFoundError,
    MalformedEnvelopeError,
    FanOutError,
    PublicKeyNotFoundError,
    BlobNotFoundError,
    HandleRevokedError,
    StorageError,
    PublishedKeyConflictError,
)
from .fingerprint import fingerprint, envelope_fingerprint
from .config import EnvelopeConfig, Placeholders
from .models import (
    ResolutionState,
    ResolveResult,
    RecipientFailure,
    BuildResult,
    MediaHandle,
)
from .storage import (
    PublicKeyCache,
    EncryptionKeyStorage,
    InMemoryKeyStorage,
    FileKeyStorage,
    KeyNotFoundError,
)
from .exchange import (
    KeyBundleExchange,
    InMemoryKeyBundleExchange,
    BlobStore,
    InMemoryBlobStore,
    KeyDirectory,
)
from .keystore import KeyPairStore
from .builder import EnvelopeBuilder
from .resolver import EnvelopeResolver
from .preview import PreviewSummarizer, format_duration
from .media import MediaEnvelopeBuilder, MediaResolver, seal_media, open_media
from .client import HybridChatClient, MediaNotConfiguredError

__version__ = "0.1.0"

__all__ = [
    # Keys
    "generate_keypair",
    "export_public_key",
    "export_private_key",
    "import_public_key",
    "import_private_key",
    "KeyPairStore",
    # Crypto
    "generate_session_key",
    "wrap_session_key",
    "unwrap_session_key",
    "seal_payload",
    "open_payload",
    "seal_text",
    "open_text",
    # Envelope
    "ChatEnvelope",
    "EnvelopeType",
    "encode_envelope",
    "decode_envelope",
    "normalize_content",
    "is_e2e_message",
    "check_group_roster",
    "RosterCheck",
    # Fingerprints
    "fingerprint",
    "envelope_fingerprint",
    # Config
    "EnvelopeConfig",
    "Placeholders",
    # Models
    "ResolutionState",
    "ResolveResult",
    "RecipientFailure",
    "BuildResult",
    "MediaHandle",
    # Storage
    "PublicKeyCache",
    "EncryptionKeyStorage",
    "InMemoryKeyStorage",
    "FileKeyStorage",
    # Collaborators
    "KeyBundleExchange",
    "InMemoryKeyBundleExchange",
    "BlobStore",
    "InMemoryBlobStore",
    "KeyDirectory",
    # Envelopes in and out
    "EnvelopeBuilder",
    "EnvelopeResolver",
    "PreviewSummarizer",
    "format_duration",
    # Media
    "MediaEnvelopeBuilder",
    "MediaResolver",
    "seal_media",
    "open_media",
    # Client
    "HybridChatClient",
    # Errors
    "HybridChatError",
    "KeyFormatError",
    "AsymmetricEncryptError",
    "AsymmetricDecryptError",
    "AuthenticationError",
    "NoLocalKeyError",
    "KeySlotNotFoundError",
    "MalformedEnvelopeError",
    "FanOutError",
    "PublicKeyNotFoundError",
    "BlobNotFoundError",
    "HandleRevokedError",
    "StorageError",
    "PublishedKeyConflictError",
    "KeyNotFoundError",
    "MediaNotConfiguredError",
    # Constants
    "MAX_DECODE_DEPTH",
    "NO_AUDITABLE",
    "RSA_KEY_SIZE",
    "SESSION_KEY_SIZE",
    "IV_SIZE",
]
