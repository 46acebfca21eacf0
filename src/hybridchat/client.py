"""
HybridChat client for end-to-end encrypted chat envelopes.

The HybridChatClient wires the key store, key directory, builders and
resolvers together for one local identity.
"""

import logging
from typing import Any, Iterable, List, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .builder import EnvelopeBuilder
from .config import EnvelopeConfig
from .exchange import BlobStore, KeyDirectory
from .keystore import KeyPairStore
from .media import MediaEnvelopeBuilder, MediaResolver
from .models import BuildResult, MediaHandle, ResolveResult
from .preview import PreviewSummarizer
from .resolver import EnvelopeResolver
from .types import (
    DEFAULT_AUDIO_MIME,
    DEFAULT_IMAGE_MIME,
    HybridChatError,
    NoLocalKeyError,
    PublicKeyNotFoundError,
)

logger = logging.getLogger(__name__)


class MediaNotConfiguredError(HybridChatError):
    """Raised when a media operation is used without a blob store."""

    def __init__(self) -> None:
        super().__init__("No blob store configured for media envelopes")


class HybridChatClient:
    """
    High-level client for HybridChat encrypted messaging.

    The HybridChatClient provides methods for:
    - Creating and publishing the local identity key
    - Encrypting direct and group messages (text, voice notes, images)
    - Reading and previewing inbound messages
    - Opening and releasing decrypted media

    Example usage:
        ```python
        client = HybridChatClient(
            user_id="1",
            key_store=KeyPairStore(FileKeyStorage(password="..."), exchange),
            directory=KeyDirectory(exchange),
        )
        await client.setup()

        # Send a message
        result = await client.encrypt_direct("hola", to="2")
        transport.send(result.content)

        # Read a message
        text = await client.read(row.content, sender_id=row.sender_id)
        ```
    """

    def __init__(
        self,
        user_id: str,
        key_store: KeyPairStore,
        directory: KeyDirectory,
        blob_store: Optional[BlobStore] = None,
        config: Optional[EnvelopeConfig] = None,
    ) -> None:
        """
        Initialize the HybridChat client.

        Args:
            user_id: The local identity.
            key_store: Holds the local private key.
            directory: Looks up other users' public keys.
            blob_store: Storage for encrypted media bodies (media is disabled without one).
            config: Envelope configuration (default: no audit identity).
        """
        self.user_id = str(user_id)
        self.key_store = key_store
        self.directory = directory
        self.blob_store = blob_store
        self.config = config or EnvelopeConfig.default()

        self.builder = (
            MediaEnvelopeBuilder(blob_store, self.config)
            if blob_store is not None
            else EnvelopeBuilder(self.config)
        )
        self.resolver = EnvelopeResolver(key_store, self.config)
        self.summarizer = PreviewSummarizer(self.resolver)
        self.media = MediaResolver(self.resolver, blob_store) if blob_store is not None else None

    # MARK: - Identity

    async def setup(self, publish: bool = True) -> rsa.RSAPublicKey:
        """
        Create the local key pair on first run and publish the public key.

        Calling this again is harmless: the stored key is reused. New pairs
        use the configured key size.

        Raises:
            PublishedKeyConflictError: If a key is already published for this
                user but this device does not hold its private half.
        """
        return await self.key_store.ensure_keypair(
            self.user_id, publish=publish, key_size=self.config.key_size
        )

    async def public_key(self) -> rsa.RSAPublicKey:
        """
        The local identity's public key.

        Raises:
            NoLocalKeyError: If setup() has not run on this device.
        """
        public_key = await self.key_store.load_public_key(self.user_id)
        if public_key is None:
            raise NoLocalKeyError(self.user_id)
        return public_key

    # MARK: - Sending

    async def encrypt_direct(self, plaintext: str, to: str) -> BuildResult:
        """
        Encrypt a one-to-one text message.

        Args:
            plaintext: Message text.
            to: Recipient user id.

        Returns:
            BuildResult; a recipient without a published key is reported as a failure.
        """
        sender_key = await self.public_key()
        recipient_key = await self._lookup(to)
        return await self.builder.build_direct(
            plaintext, sender_key, recipient_key, admin_public_key=await self._admin_key()
        )

    async def encrypt_group(self, plaintext: str, members: Iterable[str]) -> BuildResult:
        """
        Encrypt a group text message for every member except the local user.

        Raises:
            ValueError: If the group has no other members.
        """
        sender_key = await self.public_key()
        recipients = await self._roster(members)
        return await self.builder.build_group(
            plaintext, sender_key, recipients, admin_public_key=await self._admin_key()
        )

    async def encrypt_direct_audio(
        self,
        data: bytes,
        to: str,
        mime_type: str = DEFAULT_AUDIO_MIME,
        duration_ms: int = 0,
    ) -> BuildResult:
        """Encrypt and upload a voice note for one recipient."""
        builder = self._media_builder()
        return await builder.build_direct_audio(
            data,
            await self.public_key(),
            await self._lookup(to),
            mime_type=mime_type,
            duration_ms=duration_ms,
            admin_public_key=await self._admin_key(),
        )

    async def encrypt_group_audio(
        self,
        data: bytes,
        members: Iterable[str],
        mime_type: str = DEFAULT_AUDIO_MIME,
        duration_ms: int = 0,
    ) -> BuildResult:
        """Encrypt and upload a voice note for a group."""
        builder = self._media_builder()
        return await builder.build_group_audio(
            data,
            await self.public_key(),
            await self._roster(members),
            mime_type=mime_type,
            duration_ms=duration_ms,
            admin_public_key=await self._admin_key(),
        )

    async def encrypt_direct_image(
        self,
        data: bytes,
        to: str,
        mime_type: str = DEFAULT_IMAGE_MIME,
        caption: str = "",
        file_name: Optional[str] = None,
    ) -> BuildResult:
        """Encrypt and upload an image, with an optional caption, for one recipient."""
        builder = self._media_builder()
        return await builder.build_direct_image(
            data,
            await self.public_key(),
            await self._lookup(to),
            mime_type=mime_type,
            caption=caption,
            file_name=file_name,
            admin_public_key=await self._admin_key(),
        )

    async def encrypt_group_image(
        self,
        data: bytes,
        members: Iterable[str],
        mime_type: str = DEFAULT_IMAGE_MIME,
        caption: str = "",
        file_name: Optional[str] = None,
    ) -> BuildResult:
        """Encrypt and upload an image, with an optional caption, for a group."""
        builder = self._media_builder()
        return await builder.build_group_image(
            data,
            await self.public_key(),
            await self._roster(members),
            mime_type=mime_type,
            caption=caption,
            file_name=file_name,
            admin_public_key=await self._admin_key(),
        )

    # MARK: - Reading

    async def read(self, content: Any, sender_id: Any = None) -> str:
        """Resolve message content into displayable text. Never raises."""
        return await self.resolver.resolve_text(content, self.user_id, sender_id)

    async def read_result(self, content: Any, sender_id: Any = None) -> ResolveResult:
        """Resolve message content, keeping the terminal state."""
        return await self.resolver.resolve(content, self.user_id, sender_id)

    async def read_many(self, items: Iterable[tuple[Any, Any]]) -> List[ResolveResult]:
        """Resolve a batch of ``(content, sender_id)`` pairs in input order."""
        return await self.resolver.resolve_many(items, self.user_id)

    async def preview(self, content: Any, sender_id: Any = None, max_length: Optional[int] = None) -> str:
        """One-line chat-list summary. Never raises."""
        return await self.summarizer.summarize(content, self.user_id, sender_id, max_length=max_length)

    # MARK: - Media

    async def open_media(self, content: Any, sender_id: Any, message_id: Any) -> Optional[MediaHandle]:
        """
        Decrypt the media body of a message.

        Returns:
            A MediaHandle, or None when the message is not media or cannot be opened.
        """
        if self.media is None:
            return None
        return await self.media.open(content, self.user_id, sender_id, message_id)

    def release_media(self, message_id: Any) -> int:
        """Revoke the local user's handles for a message; returns how many were released."""
        if self.media is None:
            return 0
        return self.media.release(self.user_id, message_id)

    # MARK: - Private

    def _media_builder(self) -> MediaEnvelopeBuilder:
        if not isinstance(self.builder, MediaEnvelopeBuilder):
            raise MediaNotConfiguredError()
        return self.builder

    async def _lookup(self, user_id: str) -> Optional[str]:
        try:
            return await self.directory.public_key_for(str(user_id))
        except PublicKeyNotFoundError:
            logger.warning("No published public key for user %s", user_id)
            return None

    async def _roster(self, members: Iterable[str]) -> dict:
        ids = [str(m) for m in members if str(m) != self.user_id]
        if not ids:
            raise ValueError("Group envelope needs at least one recipient")
        found, _ = await self.directory.public_keys_for(ids)
        # Missing members stay in the roster so the builder reports them.
        return {user_id: found.get(user_id) for user_id in ids}

    async def _admin_key(self) -> Optional[str]:
        if self.config.admin_public_key is not None:
            return self.config.admin_public_key
        if self.config.admin_user_id is None:
            return None
        return await self._lookup(self.config.admin_user_id)
