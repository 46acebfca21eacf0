"""Result models for HybridChat envelope building and resolution."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from .envelope import ChatEnvelope, encode_envelope
from .types import FanOutError, HandleRevokedError


class ResolutionState(Enum):
    """Terminal states of a single resolution attempt."""
    PLAINTEXT_PASSTHROUGH = "plaintext_passthrough"
    LEGACY_MARKER = "legacy_marker"
    NO_KEY = "no_key"
    OPENED = "opened"
    UNREADABLE = "unreadable"


@dataclass
class ResolveResult:
    """
    Outcome of resolving one piece of transport content.

    ``text`` is always safe to render. ``stage`` and ``reason`` describe where
    resolution stopped and are meant for diagnostics only.
    """
    state: ResolutionState
    text: str
    stage: Optional[str] = None
    reason: Optional[str] = None
    envelope_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Whether the content is displayable as real message text."""
        return self.state in (ResolutionState.OPENED, ResolutionState.PLAINTEXT_PASSTHROUGH)

    @property
    def was_encrypted(self) -> bool:
        return self.state != ResolutionState.PLAINTEXT_PASSTHROUGH


@dataclass
class RecipientFailure:
    """A slot that could not be wrapped while building an envelope."""
    recipient: str
    slot: str
    reason: str


@dataclass
class BuildResult:
    """Result of building an envelope, including per-recipient failures."""
    envelope: ChatEnvelope
    succeeded: list[str] = field(default_factory=list)
    failures: list[RecipientFailure] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """Whether every requested slot was wrapped."""
        return not self.failures

    @property
    def failed_recipients(self) -> list[str]:
        return [f.recipient for f in self.failures]

    @property
    def content(self) -> str:
        """Serialized envelope for the transport."""
        return encode_envelope(self.envelope)

    def raise_if_incomplete(self) -> "BuildResult":
        """Raise ``FanOutError`` when any slot failed, else return self."""
        if self.failures:
            raise FanOutError(self.failures)
        return self


class MediaHandle:
    """
    Ephemeral reference to decrypted media.

    The plaintext lives only in memory and is dropped on ``revoke()``; reading
    a revoked handle raises ``HandleRevokedError``.
    """

    def __init__(self, data: bytes, mime_type: str, caption: str = "") -> None:
        self.id = str(uuid.uuid4())
        self.mime_type = mime_type
        self.caption = caption
        self.size = len(data)
        self.created_at = datetime.now()
        self._data: Optional[bytes] = data

    @property
    def revoked(self) -> bool:
        return self._data is None

    def read(self) -> bytes:
        """Returns the decrypted bytes."""
        if self._data is None:
            raise HandleRevokedError(f"Media handle {self.id} has been released")
        return self._data

    def revoke(self) -> None:
        """Drops the decrypted bytes."""
        self._data = None

    def __repr__(self) -> str:
        state = "revoked" if self.revoked else f"{self.size} bytes"
        return f"MediaHandle(id={self.id!r}, mime_type={self.mime_type!r}, {state})"
