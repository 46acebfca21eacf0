"""Envelope encoding and decoding for HybridChat."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from .types import (
    MAX_DECODE_DEPTH,
    NO_AUDITABLE,
    SLOT_ADMIN,
    SLOT_RECIPIENT,
    SLOT_RECIPIENTS,
    SLOT_SENDER,
    EnvelopeType,
    MalformedEnvelopeError,
)


@dataclass
class ChatEnvelope:
    """
    HybridChat message envelope.

    Every wrapped slot holds the same session key, wrapped independently for
    its owner. Media variants carry the blob locator and ``iv_file`` instead
    of an inline ciphertext.
    """
    type: EnvelopeType
    for_emisor: Optional[str] = None
    ciphertext: Optional[str] = None  # base64, text payloads
    iv: Optional[str] = None  # base64, 12 bytes
    for_receptor: Optional[str] = None
    for_receptores: Optional[dict[str, str]] = None
    for_admin: Optional[str] = None
    iv_file: Optional[str] = None
    media_url: Optional[str] = None
    media_mime: Optional[str] = None
    media_name: Optional[str] = None
    duration_ms: Optional[int] = None
    caption_ciphertext: Optional[str] = None
    caption_iv: Optional[str] = None
    audit_status: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_legacy(self) -> bool:
        """Whether the envelope predates encryption and must never be decrypted."""
        return (self.audit_status or "").strip().upper() == NO_AUDITABLE

    @property
    def has_caption(self) -> bool:
        return bool(self.caption_ciphertext and self.caption_iv)

    def recipient_ids(self) -> list[str]:
        """Returns the user ids carried in ``forReceptores``."""
        return list((self.for_receptores or {}).keys())

    def slot_count(self) -> int:
        """Number of wrapped copies of the session key."""
        slots = [self.for_emisor, self.for_receptor, self.for_admin]
        return sum(1 for s in slots if s) + len(self.for_receptores or {})

    def to_dict(self) -> dict[str, Any]:
        """Wire representation; absent fields are omitted."""
        data: dict[str, Any] = {"type": self.type.value}
        if self.type.is_audio:
            media_keys = ("audioUrl", "audioMime", None)
        else:
            media_keys = ("imageUrl", "imageMime", "imageNombre")

        pairs = [
            ("iv", self.iv),
            ("ciphertext", self.ciphertext),
            ("ivFile", self.iv_file),
            (media_keys[0], self.media_url),
            (media_keys[1], self.media_mime),
            (media_keys[2], self.media_name),
            ("audioDuracionMs", self.duration_ms if self.type.is_audio else None),
            ("captionIv", self.caption_iv),
            ("captionCiphertext", self.caption_ciphertext),
            (SLOT_SENDER, self.for_emisor),
            (SLOT_RECIPIENT, self.for_receptor),
            (SLOT_RECIPIENTS, dict(self.for_receptores) if self.for_receptores is not None else None),
            (SLOT_ADMIN, self.for_admin),
            ("auditStatus", self.audit_status),
        ]
        for key, value in pairs:
            if key is not None and value is not None:
                data[key] = value
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatEnvelope":
        """
        Build an envelope from its wire dict.

        Raises:
            MalformedEnvelopeError: If ``type`` is unknown or a field has the
                wrong shape
        """
        envelope_type = parse_envelope_type(data.get("type"))
        if envelope_type is None:
            raise MalformedEnvelopeError(f"Unknown envelope type: {data.get('type')!r}")

        receptores = data.get(SLOT_RECIPIENTS)
        if receptores is not None:
            if not isinstance(receptores, dict):
                raise MalformedEnvelopeError(f"{SLOT_RECIPIENTS} must be an object")
            receptores = {str(k): v for k, v in receptores.items() if isinstance(v, str)}

        if envelope_type.is_audio:
            url_key, mime_key, name_key = "audioUrl", "audioMime", None
        else:
            url_key, mime_key, name_key = "imageUrl", "imageMime", "imageNombre"

        known = {
            "type", "iv", "ciphertext", "ivFile", "audioUrl", "audioMime", "audioDuracionMs",
            "imageUrl", "imageMime", "imageNombre", "captionIv", "captionCiphertext",
            SLOT_SENDER, SLOT_RECIPIENT, SLOT_RECIPIENTS, SLOT_ADMIN, "auditStatus",
        }

        return cls(
            type=envelope_type,
            for_emisor=_optional_str(data, SLOT_SENDER),
            ciphertext=_optional_str(data, "ciphertext"),
            iv=_optional_str(data, "iv"),
            for_receptor=_optional_str(data, SLOT_RECIPIENT),
            for_receptores=receptores,
            for_admin=_optional_str(data, SLOT_ADMIN),
            iv_file=_optional_str(data, "ivFile"),
            media_url=_optional_str(data, url_key),
            media_mime=_optional_str(data, mime_key),
            media_name=_optional_str(data, name_key) if name_key else None,
            duration_ms=_optional_int(data.get("audioDuracionMs")),
            caption_ciphertext=_optional_str(data, "captionCiphertext"),
            caption_iv=_optional_str(data, "captionIv"),
            audit_status=_optional_str(data, "auditStatus"),
            extra={k: v for k, v in data.items() if k not in known},
        )


def parse_envelope_type(value: Any) -> Optional[EnvelopeType]:
    """Map a raw ``type`` value onto a known variant, or ``None``."""
    if not isinstance(value, str):
        return None
    try:
        return EnvelopeType(value.strip().upper())
    except ValueError:
        return None


def encode_envelope(envelope: ChatEnvelope) -> str:
    """
    Encode an envelope as compact JSON for the transport.

    Args:
        envelope: ChatEnvelope to encode

    Returns:
        JSON string
    """
    return json.dumps(envelope.to_dict(), separators=(",", ":"), ensure_ascii=False)


def normalize_content(raw: Any, max_depth: int = MAX_DECODE_DEPTH) -> Optional[dict[str, Any]]:
    """
    Undo transport re-serialization and return the envelope object.

    Relays may stringify the content one or more times. Decoding is repeated
    at most ``max_depth`` times; anything that does not end in a JSON object
    returns ``None``. Never raises.
    """
    value = raw
    for _ in range(max_depth):
        if isinstance(value, dict):
            return value
        if isinstance(value, (bytes, bytearray)):
            try:
                value = bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                return None
        if not isinstance(value, str):
            return None
        text = value.strip()
        if not text or text[0] not in "{\"":
            return None
        try:
            value = json.loads(text)
        except (ValueError, RecursionError):
            return None
    return value if isinstance(value, dict) else None


def decode_envelope(raw: Any, max_depth: int = MAX_DECODE_DEPTH) -> ChatEnvelope:
    """
    Decode transport content into an envelope.

    Raises:
        MalformedEnvelopeError: If the content is not an envelope
    """
    data = normalize_content(raw, max_depth=max_depth)
    if data is None:
        raise MalformedEnvelopeError("Content is not a JSON object")
    return ChatEnvelope.from_dict(data)


def is_e2e_message(raw: Any, max_depth: int = MAX_DECODE_DEPTH) -> bool:
    """
    Check if content looks like a HybridChat envelope.

    Args:
        raw: Transport content

    Returns:
        True if content decodes to an object with a known ``type``
    """
    data = normalize_content(raw, max_depth=max_depth)
    return data is not None and parse_envelope_type(data.get("type")) is not None


@dataclass
class RosterCheck:
    """Outcome of comparing ``forReceptores`` with the expected roster."""
    missing: list[str]
    extra: list[str]

    @property
    def ok(self) -> bool:
        return not self.missing and not self.extra


def check_group_roster(envelope: ChatEnvelope, expected_ids: list) -> RosterCheck:
    """
    Compare the group slots of an envelope with the members it was meant for.

    Used before handing a group envelope to the transport so a sender notices
    recipients that were dropped or added along the way.
    """
    expected = {str(i).strip() for i in expected_ids}
    present = {str(i).strip() for i in envelope.recipient_ids()}
    return RosterCheck(
        missing=sorted(expected - present),
        extra=sorted(present - expected),
    )


def _optional_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedEnvelopeError(f"{key} must be a string")
    return value


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
