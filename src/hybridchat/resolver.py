"""
Inbound envelope resolution for HybridChat.

Resolution walks a fixed sequence of stages and stops at the first terminal
state:

    RAW -> PARSED -> PLAINTEXT_PASSTHROUGH
                  -> LEGACY_MARKER
                  -> NO_KEY
                  -> SLOT_FOUND -> UNWRAPPED -> OPENED | UNREADABLE

Every terminal state carries a string that is safe to render. Nothing here
raises to the caller of ``resolve``/``resolve_text``/``resolve_many``.
"""

import asyncio
import json
import logging
from typing import Any, Iterable, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .config import EnvelopeConfig
from .crypto import open_text, unwrap_session_key
from .envelope import ChatEnvelope, normalize_content, parse_envelope_type
from .fingerprint import envelope_fingerprint
from .keystore import KeyPairStore
from .models import ResolutionState, ResolveResult
from .types import (
    SLOT_ADMIN,
    SLOT_RECIPIENT,
    SLOT_RECIPIENTS,
    SLOT_SENDER,
    AsymmetricDecryptError,
    AuthenticationError,
    KeyFormatError,
    KeySlotNotFoundError,
    MalformedEnvelopeError,
    NoLocalKeyError,
    StorageError,
)

logger = logging.getLogger(__name__)


def _same_id(a: Any, b: Any) -> bool:
    return a is not None and b is not None and str(a).strip() == str(b).strip()


class EnvelopeResolver:
    """
    Decrypts envelopes for the reading user.

    Example usage:
        ```python
        resolver = EnvelopeResolver(key_store)
        text = await resolver.resolve_text(row.content, reader_id="2", sender_id=row.sender_id)
        ```
    """

    def __init__(self, key_store: KeyPairStore, config: Optional[EnvelopeConfig] = None) -> None:
        self.key_store = key_store
        self.config = config or EnvelopeConfig.default()

    def parse(self, raw: Any) -> Optional[ChatEnvelope]:
        """
        Normalize and classify transport content.

        Returns:
            The envelope, or None when the content must be shown as plaintext
        """
        data = normalize_content(raw, max_depth=self.config.max_decode_depth)
        if data is None or parse_envelope_type(data.get("type")) is None:
            return None
        try:
            return ChatEnvelope.from_dict(data)
        except MalformedEnvelopeError as e:
            logger.debug("Treating malformed envelope as plaintext: %s", e)
            return None

    async def resolve(self, raw: Any, reader_id: Any, sender_id: Any = None) -> ResolveResult:
        """
        Resolve transport content into displayable text.

        Args:
            raw: Message content as delivered (text, JSON, re-stringified JSON)
            reader_id: Id of the local user reading the message
            sender_id: Declared sender of the message, if known

        Returns:
            ResolveResult describing the terminal state
        """
        placeholders = self.config.placeholders
        envelope = self.parse(raw)
        if envelope is None:
            return ResolveResult(ResolutionState.PLAINTEXT_PASSTHROUGH, _as_text(raw))

        kind = envelope.type.value
        if envelope.is_legacy:
            return ResolveResult(ResolutionState.LEGACY_MARKER, placeholders.legacy, envelope_type=kind)

        try:
            session_key = await self.unlock(envelope, reader_id, sender_id)
        except NoLocalKeyError:
            self._log_failure(envelope, reader_id, "key")
            return ResolveResult(
                ResolutionState.NO_KEY, placeholders.no_local_key,
                stage="key", reason="no local private key", envelope_type=kind,
            )
        except KeySlotNotFoundError as e:
            self._log_failure(envelope, reader_id, "slot", e.slot)
            return ResolveResult(
                ResolutionState.NO_KEY, placeholders.no_slot,
                stage="slot", reason=f"no usable {e.slot} slot", envelope_type=kind,
            )
        except (AsymmetricDecryptError, KeyFormatError, StorageError) as e:
            self._log_failure(envelope, reader_id, "unwrap", type(e).__name__)
            return ResolveResult(
                ResolutionState.UNREADABLE, placeholders.unreadable,
                stage="unwrap", reason=type(e).__name__, envelope_type=kind,
            )
        except Exception as e:
            # Rendering a thread must survive one bad envelope.
            logger.exception("Unexpected error unlocking %s envelope for user %s", kind, reader_id)
            return ResolveResult(
                ResolutionState.UNREADABLE, placeholders.unreadable,
                stage="unwrap", reason=type(e).__name__, envelope_type=kind,
            )

        try:
            text = await asyncio.to_thread(self._open, envelope, session_key)
        except (AuthenticationError, MalformedEnvelopeError) as e:
            self._log_failure(envelope, reader_id, "open", type(e).__name__)
            return ResolveResult(
                ResolutionState.UNREADABLE, placeholders.unreadable,
                stage="open", reason=type(e).__name__, envelope_type=kind,
            )

        return ResolveResult(ResolutionState.OPENED, text, envelope_type=kind)

    async def resolve_text(self, raw: Any, reader_id: Any, sender_id: Any = None) -> str:
        """Resolve content and return only the displayable string."""
        return (await self.resolve(raw, reader_id, sender_id)).text

    async def resolve_many(
        self,
        items: Iterable[tuple[Any, Any]],
        reader_id: Any,
    ) -> list[ResolveResult]:
        """
        Resolve a batch of ``(content, sender_id)`` pairs concurrently.

        Results are returned in input order; one bad envelope does not affect
        the others.
        """
        return list(await asyncio.gather(
            *(self.resolve(raw, reader_id, sender_id) for raw, sender_id in items)
        ))

    async def unlock(self, envelope: ChatEnvelope, reader_id: Any, sender_id: Any = None) -> bytes:
        """
        Recover the session key of an envelope for the reading user.

        Raises:
            NoLocalKeyError: The device holds no private key for the reader
            KeySlotNotFoundError: No slot in the envelope opens with that key
            AsymmetricDecryptError: The selected slot does not open
            KeyFormatError: The stored private key is unreadable
        """
        private_key = await self.key_store.load_private_key(str(reader_id))
        if private_key is None:
            raise NoLocalKeyError(str(reader_id))

        if sender_id is None:
            return await self._probe_all(envelope, reader_id, private_key)

        slot, wrapped = self._select_slot(envelope, reader_id, sender_id)
        if wrapped is not None:
            return await asyncio.to_thread(unwrap_session_key, wrapped, private_key)

        if slot == SLOT_RECIPIENTS and envelope.for_receptores:
            logger.warning(
                "No %s entry for user %s in %s envelope %s; probing %d slot(s)",
                SLOT_RECIPIENTS,
                reader_id,
                envelope.type.value,
                envelope_fingerprint(envelope),
                len(envelope.for_receptores),
            )
            found = await self._probe(envelope.for_receptores.values(), private_key)
            if found is not None:
                return found

        raise KeySlotNotFoundError(str(reader_id), slot)

    def _select_slot(
        self,
        envelope: ChatEnvelope,
        reader_id: Any,
        sender_id: Any,
    ) -> tuple[str, Optional[str]]:
        if _same_id(reader_id, sender_id):
            return SLOT_SENDER, envelope.for_emisor
        if _same_id(reader_id, self.config.admin_user_id):
            return SLOT_ADMIN, envelope.for_admin
        if not envelope.type.is_group:
            return SLOT_RECIPIENT, envelope.for_receptor
        return SLOT_RECIPIENTS, (envelope.for_receptores or {}).get(str(reader_id))

    async def _probe(self, candidates: Iterable[Optional[str]], private_key: rsa.RSAPrivateKey) -> Optional[bytes]:
        # Sequential: at most one unwrap attempt per roster entry.
        for wrapped in list(candidates):
            if not wrapped:
                continue
            try:
                return await asyncio.to_thread(unwrap_session_key, wrapped, private_key)
            except AsymmetricDecryptError:
                continue
        return None

    async def _probe_all(self, envelope: ChatEnvelope, reader_id: Any, private_key: rsa.RSAPrivateKey) -> bytes:
        receptores = envelope.for_receptores or {}
        candidates = [envelope.for_admin, envelope.for_receptor, receptores.get(str(reader_id))]
        candidates.extend(v for k, v in receptores.items() if k != str(reader_id))
        candidates.append(envelope.for_emisor)
        found = await self._probe(candidates, private_key)
        if found is None:
            raise KeySlotNotFoundError(str(reader_id), "any")
        return found

    def _open(self, envelope: ChatEnvelope, session_key: bytes) -> str:
        if envelope.type.is_audio:
            return ""
        if envelope.type.is_image:
            if not envelope.has_caption:
                return ""
            return open_text(envelope.caption_ciphertext, envelope.caption_iv, session_key).strip()
        if not envelope.ciphertext or not envelope.iv:
            raise MalformedEnvelopeError("Text envelope has no ciphertext")
        return open_text(envelope.ciphertext, envelope.iv, session_key)

    def _log_failure(self, envelope: ChatEnvelope, reader_id: Any, stage: str, detail: str = "") -> None:
        logger.debug(
            "Resolution of %s envelope %s for user %s stopped at %s %s",
            envelope.type.value,
            envelope_fingerprint(envelope),
            reader_id,
            stage,
            detail,
        )


def _as_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, ensure_ascii=False)
    return str(raw)
