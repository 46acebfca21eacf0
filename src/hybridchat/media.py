"""
Encrypted media (voice notes and images) for HybridChat.

Media bodies are sealed with the message's session key and uploaded to a
blob store; the envelope carries only the locator, the body IV (``ivFile``)
and the wrapped keys. Decrypted bodies are handed out as ``MediaHandle``
objects that the owner must release once the message is off screen.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Tuple

from .builder import EnvelopeBuilder
from .config import EnvelopeConfig
from .crypto import (
    PublicKeyLike,
    b64decode,
    b64encode,
    generate_session_key,
    open_payload,
    seal_payload,
    open_text,
    seal_text,
)
from .envelope import ChatEnvelope
from .exchange import BlobStore
from .fingerprint import envelope_fingerprint
from .models import BuildResult, MediaHandle
from .resolver import EnvelopeResolver
from .types import (
    DEFAULT_AUDIO_MIME,
    DEFAULT_IMAGE_MIME,
    IMAGE_BLOB_MIME,
    AuthenticationError,
    EnvelopeType,
    HybridChatError,
    MalformedEnvelopeError,
)

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


def seal_media(data: bytes, session_key: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt a media body.

    Returns:
        Tuple of (ciphertext_with_tag, iv)
    """
    return seal_payload(bytes(data), session_key)


def open_media(ciphertext: bytes, iv: bytes, session_key: bytes) -> bytes:
    """
    Decrypt a media body.

    Raises:
        AuthenticationError: If the body was tampered with or the key is wrong
    """
    return open_payload(bytes(ciphertext), iv, session_key)


class MediaEnvelopeBuilder(EnvelopeBuilder):
    """Builds audio and image envelopes whose bodies live in a blob store."""

    def __init__(self, blob_store: BlobStore, config: Optional[EnvelopeConfig] = None) -> None:
        super().__init__(config)
        self.blob_store = blob_store

    async def build_direct_audio(
        self,
        data: bytes,
        sender_public_key: PublicKeyLike,
        recipient_public_key: PublicKeyLike,
        mime_type: str = DEFAULT_AUDIO_MIME,
        duration_ms: int = 0,
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """Build an ``E2E_AUDIO`` envelope for a one-to-one chat."""
        envelope = ChatEnvelope(
            type=EnvelopeType.DIRECT_AUDIO,
            media_mime=mime_type,
            duration_ms=int(duration_ms or 0),
        )
        return await self._build(envelope, data, sender_public_key, admin_public_key,
                                 recipient_public_key=recipient_public_key)

    async def build_group_audio(
        self,
        data: bytes,
        sender_public_key: PublicKeyLike,
        recipient_public_keys: Mapping[str, PublicKeyLike],
        mime_type: str = DEFAULT_AUDIO_MIME,
        duration_ms: int = 0,
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """Build an ``E2E_GROUP_AUDIO`` envelope."""
        if not recipient_public_keys:
            raise ValueError("Group envelope needs at least one recipient")
        envelope = ChatEnvelope(
            type=EnvelopeType.GROUP_AUDIO,
            media_mime=mime_type,
            duration_ms=int(duration_ms or 0),
        )
        return await self._build(envelope, data, sender_public_key, admin_public_key,
                                 recipient_public_keys=recipient_public_keys)

    async def build_direct_image(
        self,
        data: bytes,
        sender_public_key: PublicKeyLike,
        recipient_public_key: PublicKeyLike,
        mime_type: str = DEFAULT_IMAGE_MIME,
        caption: str = "",
        file_name: Optional[str] = None,
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """Build an ``E2E_IMAGE`` envelope with an optional encrypted caption."""
        envelope = ChatEnvelope(
            type=EnvelopeType.DIRECT_IMAGE,
            media_mime=mime_type or DEFAULT_IMAGE_MIME,
            media_name=file_name,
        )
        return await self._build(envelope, data, sender_public_key, admin_public_key,
                                 recipient_public_key=recipient_public_key, caption=caption)

    async def build_group_image(
        self,
        data: bytes,
        sender_public_key: PublicKeyLike,
        recipient_public_keys: Mapping[str, PublicKeyLike],
        mime_type: str = DEFAULT_IMAGE_MIME,
        caption: str = "",
        file_name: Optional[str] = None,
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """Build an ``E2E_GROUP_IMAGE`` envelope with an optional encrypted caption."""
        if not recipient_public_keys:
            raise ValueError("Group envelope needs at least one recipient")
        envelope = ChatEnvelope(
            type=EnvelopeType.GROUP_IMAGE,
            media_mime=mime_type or DEFAULT_IMAGE_MIME,
            media_name=file_name,
        )
        return await self._build(envelope, data, sender_public_key, admin_public_key,
                                 recipient_public_keys=recipient_public_keys, caption=caption)

    async def _build(
        self,
        envelope: ChatEnvelope,
        data: bytes,
        sender_public_key: PublicKeyLike,
        admin_public_key: Optional[PublicKeyLike],
        recipient_public_key: Optional[PublicKeyLike] = None,
        recipient_public_keys: Optional[Mapping[str, PublicKeyLike]] = None,
        caption: str = "",
    ) -> BuildResult:
        session_key = generate_session_key()
        ciphertext, iv = await asyncio.to_thread(seal_media, data, session_key)

        # Images are uploaded as opaque bytes; the real type travels in the envelope.
        upload_mime = IMAGE_BLOB_MIME if envelope.type.is_image else (envelope.media_mime or DEFAULT_AUDIO_MIME)
        envelope.media_url = await self.blob_store.upload(ciphertext, upload_mime)
        envelope.iv_file = b64encode(iv)

        caption = (caption or "").strip()
        if caption:
            envelope.caption_ciphertext, envelope.caption_iv = seal_text(caption, session_key)

        return await self.fan_out(
            envelope,
            session_key,
            sender_public_key,
            recipient_public_key=recipient_public_key,
            recipient_public_keys=recipient_public_keys,
            admin_public_key=admin_public_key,
        )


class MediaResolver:
    """
    Fetches and decrypts media bodies into revocable handles.

    Handles are cached per (reader, message id, envelope fingerprint).
    Concurrent requests for the same key share one in-flight decryption.
    Failures are logged and reported as ``None``.
    """

    def __init__(self, resolver: EnvelopeResolver, blob_store: BlobStore) -> None:
        self.resolver = resolver
        self.blob_store = blob_store
        self._handles: dict[CacheKey, MediaHandle] = {}
        self._in_flight: dict[CacheKey, "asyncio.Task[Optional[MediaHandle]]"] = {}
        self._released: set[CacheKey] = set()

    @staticmethod
    def cache_key(reader_id: Any, message_id: Any, envelope: ChatEnvelope) -> CacheKey:
        return (str(reader_id), str(message_id), envelope_fingerprint(envelope))

    async def open(
        self,
        raw: Any,
        reader_id: Any,
        sender_id: Any,
        message_id: Any,
    ) -> Optional[MediaHandle]:
        """
        Decrypt the media body of a message.

        Args:
            raw: Message content as delivered
            reader_id: Local user
            sender_id: Declared sender
            message_id: Id of the owning message row

        Returns:
            A live MediaHandle, or None if the content is not media or cannot
            be decrypted
        """
        envelope = self.resolver.parse(raw)
        if envelope is None or not envelope.type.is_media or envelope.is_legacy:
            return None

        key = self.cache_key(reader_id, message_id, envelope)
        handle = self._handles.get(key)
        if handle is not None and not handle.revoked:
            return handle

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._decrypt(key, envelope, reader_id, sender_id))
            self._in_flight[key] = task
        return await asyncio.shield(task)

    async def _decrypt(
        self,
        key: CacheKey,
        envelope: ChatEnvelope,
        reader_id: Any,
        sender_id: Any,
    ) -> Optional[MediaHandle]:
        fp = key[2]
        try:
            if not envelope.media_url or not envelope.iv_file:
                raise MalformedEnvelopeError("Media envelope has no locator or ivFile")
            session_key = await self.resolver.unlock(envelope, reader_id, sender_id)
            caption = _open_caption(envelope, session_key)
            ciphertext = await self.blob_store.download(envelope.media_url)
            iv = b64decode(envelope.iv_file)
            data = await asyncio.to_thread(open_media, ciphertext, iv, session_key)
        except (HybridChatError, ValueError) as e:
            logger.warning(
                "Media decryption failed for %s envelope %s (user %s): %s",
                envelope.type.value, fp, reader_id, type(e).__name__,
            )
            return None
        except Exception:
            logger.exception("Unexpected media failure for %s envelope %s", envelope.type.value, fp)
            return None
        finally:
            self._in_flight.pop(key, None)
            released = key in self._released
            self._released.discard(key)

        if released:
            logger.debug("Discarding %s envelope %s released during decryption", envelope.type.value, fp)
            return None

        mime = envelope.media_mime or (DEFAULT_AUDIO_MIME if envelope.type.is_audio else DEFAULT_IMAGE_MIME)
        handle = MediaHandle(data, mime, caption)
        self._handles[key] = handle
        logger.debug("Decrypted %s envelope %s into handle %s", envelope.type.value, fp, handle.id)
        return handle

    def release(self, reader_id: Any, message_id: Any) -> int:
        """
        Revoke every handle of a message for a reader.

        Decryptions still in flight for the message are marked released;
        they finish without producing a handle.

        Returns:
            Number of handles and pending decryptions released
        """
        def matches(key: CacheKey) -> bool:
            return key[0] == str(reader_id) and key[1] == str(message_id)

        keys = [k for k in self._handles if matches(k)]
        for key in keys:
            self._handles.pop(key).revoke()
        pending = [k for k in self._in_flight if matches(k)]
        self._released.update(pending)
        return len(keys) + len(pending)

    def release_all(self) -> None:
        """Revoke every cached handle and every pending decryption."""
        for handle in self._handles.values():
            handle.revoke()
        self._handles.clear()
        self._released.update(self._in_flight)

    @property
    def cached_count(self) -> int:
        return len(self._handles)


def _open_caption(envelope: ChatEnvelope, session_key: bytes) -> str:
    if not envelope.has_caption:
        return ""
    try:
        return open_text(envelope.caption_ciphertext, envelope.caption_iv, session_key).strip()
    except AuthenticationError:
        return ""
