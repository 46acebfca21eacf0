"""Outgoing envelope construction for HybridChat."""

import asyncio
import logging
from typing import Mapping, Optional

from .config import EnvelopeConfig
from .crypto import PublicKeyLike, generate_session_key, seal_text, wrap_session_key
from .envelope import ChatEnvelope
from .models import BuildResult, RecipientFailure
from .types import (
    SLOT_ADMIN,
    SLOT_RECIPIENT,
    SLOT_RECIPIENTS,
    SLOT_SENDER,
    AsymmetricEncryptError,
    EnvelopeType,
)

logger = logging.getLogger(__name__)

SENDER_LABEL = "sender"
ADMIN_LABEL = "admin"


class EnvelopeBuilder:
    """
    Seals outgoing text and fans the session key out to every reader.

    Example usage:
        ```python
        builder = EnvelopeBuilder(EnvelopeConfig().with_admin("99", admin_pub))
        result = await builder.build_group("hi", my_pub, {"2": pub2, "3": pub3})
        if not result.is_complete:
            ...  # decide whether to abort or send to the reduced set
        transport.send(result.content)
        ```
    """

    def __init__(self, config: Optional[EnvelopeConfig] = None) -> None:
        self.config = config or EnvelopeConfig.default()

    async def build_direct(
        self,
        plaintext: str,
        sender_public_key: PublicKeyLike,
        recipient_public_key: PublicKeyLike,
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """
        Build a one-to-one text envelope (``E2E``).

        Args:
            plaintext: Message text
            sender_public_key: Sender's own public key, for ``forEmisor``
            recipient_public_key: Counterpart's public key, for ``forReceptor``
            admin_public_key: Audit key, defaults to the configured one

        Returns:
            BuildResult whose failures list any slot that could not be wrapped
        """
        session_key = generate_session_key()
        ciphertext, iv = await asyncio.to_thread(seal_text, plaintext, session_key)
        envelope = ChatEnvelope(type=EnvelopeType.DIRECT, ciphertext=ciphertext, iv=iv)
        return await self.fan_out(
            envelope,
            session_key,
            sender_public_key,
            recipient_public_key=recipient_public_key,
            admin_public_key=admin_public_key,
        )

    async def build_group(
        self,
        plaintext: str,
        sender_public_key: PublicKeyLike,
        recipient_public_keys: Mapping[str, PublicKeyLike],
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """
        Build a group text envelope (``E2E_GROUP``).

        Args:
            plaintext: Message text
            sender_public_key: Sender's own public key, for ``forEmisor``
            recipient_public_keys: Public key per recipient user id
            admin_public_key: Audit key, defaults to the configured one

        Raises:
            ValueError: If the roster is empty
        """
        if not recipient_public_keys:
            raise ValueError("Group envelope needs at least one recipient")

        session_key = generate_session_key()
        ciphertext, iv = await asyncio.to_thread(seal_text, plaintext, session_key)
        envelope = ChatEnvelope(type=EnvelopeType.GROUP, ciphertext=ciphertext, iv=iv)
        return await self.fan_out(
            envelope,
            session_key,
            sender_public_key,
            recipient_public_keys=recipient_public_keys,
            admin_public_key=admin_public_key,
        )

    async def fan_out(
        self,
        envelope: ChatEnvelope,
        session_key: bytes,
        sender_public_key: PublicKeyLike,
        recipient_public_key: Optional[PublicKeyLike] = None,
        recipient_public_keys: Optional[Mapping[str, PublicKeyLike]] = None,
        admin_public_key: Optional[PublicKeyLike] = None,
    ) -> BuildResult:
        """
        Wrap one session key into every slot of an envelope.

        Wraps run concurrently; each failure is recorded against its recipient
        instead of aborting the others.
        """
        jobs: list[tuple[str, str, Optional[PublicKeyLike]]] = [
            (SENDER_LABEL, SLOT_SENDER, sender_public_key),
        ]
        if envelope.type.is_group:
            for user_id, public_key in (recipient_public_keys or {}).items():
                jobs.append((str(user_id), SLOT_RECIPIENTS, public_key))
            envelope.for_receptores = {}
        else:
            jobs.append(("recipient", SLOT_RECIPIENT, recipient_public_key))

        admin_key = admin_public_key if admin_public_key is not None else self.config.admin_public_key
        if admin_key is not None or self.config.require_admin_slot:
            jobs.append((ADMIN_LABEL, SLOT_ADMIN, admin_key))

        outcomes = await asyncio.gather(
            *(self._wrap(session_key, public_key) for _, _, public_key in jobs)
        )

        result = BuildResult(envelope=envelope)
        for (recipient, slot, _), (wrapped, error) in zip(jobs, outcomes):
            if wrapped is None:
                result.failures.append(RecipientFailure(recipient, slot, error or "wrap failed"))
                continue
            if slot == SLOT_SENDER:
                envelope.for_emisor = wrapped
            elif slot == SLOT_RECIPIENT:
                envelope.for_receptor = wrapped
            elif slot == SLOT_ADMIN:
                envelope.for_admin = wrapped
            else:
                envelope.for_receptores[recipient] = wrapped
            result.succeeded.append(recipient)

        if result.failures:
            logger.warning(
                "%s envelope built with %d failed slot(s): %s",
                envelope.type.value,
                len(result.failures),
                ", ".join(f"{f.recipient}/{f.slot}" for f in result.failures),
            )
        else:
            logger.debug("%s envelope built with %d slot(s)", envelope.type.value, len(result.succeeded))
        return result

    async def _wrap(
        self,
        session_key: bytes,
        public_key: Optional[PublicKeyLike],
    ) -> tuple[Optional[str], Optional[str]]:
        if public_key is None:
            return None, "no public key available"
        try:
            wrapped = await asyncio.to_thread(wrap_session_key, session_key, public_key)
        except AsymmetricEncryptError as e:
            return None, str(e)
        return wrapped, None
