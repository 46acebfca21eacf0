"""Chat-list previews of HybridChat messages."""

import logging
import re
from typing import Any, Optional

from .envelope import ChatEnvelope
from .models import ResolutionState
from .resolver import EnvelopeResolver

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def format_duration(ms: Optional[int]) -> str:
    """Format milliseconds as ``mm:ss``; empty for missing or negative values."""
    if not ms or ms < 0:
        return ""
    total = int(ms) // 1000
    return f"{total // 60:02d}:{total % 60:02d}"


def truncate(text: str, max_length: int) -> str:
    """Collapse whitespace and cut to ``max_length`` characters with an ellipsis."""
    if not text:
        return ""
    clean = _WHITESPACE.sub(" ", text.strip())
    if len(clean) <= max_length:
        return clean
    return clean[: max(0, max_length - 1)] + "…"


class PreviewSummarizer:
    """
    Best-effort one-line summaries for the chat list.

    Audio previews need no decryption. Image previews decrypt only the caption.
    Text previews run a full resolution but collapse every failure into a
    single generic label. ``summarize`` never raises.
    """

    def __init__(self, resolver: EnvelopeResolver) -> None:
        self.resolver = resolver

    @property
    def placeholders(self):
        return self.resolver.config.placeholders

    async def summarize(
        self,
        raw: Any,
        reader_id: Any,
        sender_id: Any = None,
        max_length: Optional[int] = None,
    ) -> str:
        """
        Summarize one message for the chat list.

        Args:
            raw: Message content as delivered
            reader_id: Local user
            sender_id: Declared sender, if known
            max_length: Optional truncation length

        Returns:
            A renderable string
        """
        try:
            summary = await self._summarize(raw, reader_id, sender_id)
        except Exception:
            logger.exception("Preview failed for user %s", reader_id)
            summary = self.placeholders.preview_encrypted
        if max_length is not None:
            return truncate(summary, max_length)
        return summary

    async def _summarize(self, raw: Any, reader_id: Any, sender_id: Any) -> str:
        envelope = self.resolver.parse(raw)
        if envelope is None:
            result = await self.resolver.resolve(raw, reader_id, sender_id)
            return result.text
        if envelope.is_legacy:
            return self.placeholders.legacy
        if envelope.type.is_audio:
            return self._audio_label(envelope)
        if envelope.type.is_image:
            return await self._image_label(envelope, raw, reader_id, sender_id)

        result = await self.resolver.resolve(raw, reader_id, sender_id)
        if result.state == ResolutionState.OPENED:
            return result.text
        return self.placeholders.preview_encrypted

    def _audio_label(self, envelope: ChatEnvelope) -> str:
        duration = format_duration(envelope.duration_ms)
        label = self.placeholders.preview_audio
        return f"{label} ({duration})" if duration else label

    async def _image_label(self, envelope: ChatEnvelope, raw: Any, reader_id: Any, sender_id: Any) -> str:
        label = self.placeholders.preview_image
        if not envelope.has_caption:
            return label
        result = await self.resolver.resolve(raw, reader_id, sender_id)
        if result.state == ResolutionState.OPENED and result.text:
            return f"{label}: {result.text}"
        return label
