"""Tests for outgoing envelope construction."""

import json

import pytest

from hybridchat.builder import EnvelopeBuilder
from hybridchat.config import EnvelopeConfig
from hybridchat.crypto import open_text, unwrap_session_key
from hybridchat.types import SLOT_ADMIN, SLOT_RECIPIENTS, EnvelopeType, FanOutError


class TestDirectEnvelope:
    """Test one-to-one envelopes."""

    @pytest.mark.asyncio
    async def test_build_direct(self, identities, public_keys) -> None:
        """Sender and recipient each unwrap the same session key."""
        result = await EnvelopeBuilder().build_direct("hola", public_keys["1"], public_keys["2"])

        assert result.is_complete
        assert result.succeeded == ["sender", "recipient"]

        envelope = result.envelope
        assert envelope.type == EnvelopeType.DIRECT
        assert envelope.for_receptores is None
        assert envelope.for_admin is None

        sender_key = unwrap_session_key(envelope.for_emisor, identities["1"][0])
        recipient_key = unwrap_session_key(envelope.for_receptor, identities["2"][0])
        assert sender_key == recipient_key
        assert open_text(envelope.ciphertext, envelope.iv, sender_key) == "hola"

    @pytest.mark.asyncio
    async def test_content_is_wire_json(self, public_keys) -> None:
        result = await EnvelopeBuilder().build_direct("hola", public_keys["1"], public_keys["2"])
        data = json.loads(result.content)
        assert data["type"] == "E2E"
        assert set(data) == {"type", "iv", "ciphertext", "forEmisor", "forReceptor"}
        assert "hola" not in result.content

    @pytest.mark.asyncio
    async def test_missing_recipient_key(self, public_keys) -> None:
        """An unavailable recipient key is reported, not raised."""
        result = await EnvelopeBuilder().build_direct("hola", public_keys["1"], None)

        assert not result.is_complete
        assert result.failed_recipients == ["recipient"]
        assert result.envelope.for_receptor is None
        assert result.envelope.for_emisor is not None

        with pytest.raises(FanOutError):
            result.raise_if_incomplete()

    @pytest.mark.asyncio
    async def test_fresh_session_key_per_message(self, identities, public_keys) -> None:
        builder = EnvelopeBuilder()
        first = await builder.build_direct("hola", public_keys["1"], public_keys["2"])
        second = await builder.build_direct("hola", public_keys["1"], public_keys["2"])

        private_key = identities["1"][0]
        assert unwrap_session_key(first.envelope.for_emisor, private_key) != unwrap_session_key(
            second.envelope.for_emisor, private_key
        )
        assert first.envelope.iv != second.envelope.iv


class TestGroupEnvelope:
    """Test group fan-out."""

    @pytest.mark.asyncio
    async def test_every_member_gets_the_same_key(self, identities, public_keys) -> None:
        recipients = {uid: public_keys[uid] for uid in ("2", "3", "4")}
        result = await EnvelopeBuilder().build_group("hola grupo", public_keys["1"], recipients)

        assert result.is_complete
        envelope = result.envelope
        assert envelope.type == EnvelopeType.GROUP
        assert sorted(envelope.recipient_ids()) == ["2", "3", "4"]
        assert envelope.for_receptor is None

        keys = {unwrap_session_key(envelope.for_emisor, identities["1"][0])}
        for uid in ("2", "3", "4"):
            keys.add(unwrap_session_key(envelope.for_receptores[uid], identities[uid][0]))
        assert len(keys) == 1
        assert open_text(envelope.ciphertext, envelope.iv, keys.pop()) == "hola grupo"

    @pytest.mark.asyncio
    async def test_partial_failure(self, public_keys) -> None:
        """A malformed member key does not block the others."""
        recipients = {"2": public_keys["2"], "3": "not-a-key", "4": public_keys["4"]}
        result = await EnvelopeBuilder().build_group("hola", public_keys["1"], recipients)

        assert result.failed_recipients == ["3"]
        assert result.failures[0].slot == SLOT_RECIPIENTS
        assert sorted(result.envelope.recipient_ids()) == ["2", "4"]
        assert "sender" in result.succeeded

    @pytest.mark.asyncio
    async def test_empty_roster(self, public_keys) -> None:
        with pytest.raises(ValueError):
            await EnvelopeBuilder().build_group("hola", public_keys["1"], {})


class TestAdminSlot:
    """Test the audit slot."""

    @pytest.mark.asyncio
    async def test_configured_admin_key(self, identities, public_keys) -> None:
        config = EnvelopeConfig.default().with_admin("99", public_keys["99"])
        result = await EnvelopeBuilder(config).build_direct("hola", public_keys["1"], public_keys["2"])

        assert result.is_complete
        assert "admin" in result.succeeded
        admin_key = unwrap_session_key(result.envelope.for_admin, identities["99"][0])
        sender_key = unwrap_session_key(result.envelope.for_emisor, identities["1"][0])
        assert admin_key == sender_key

    @pytest.mark.asyncio
    async def test_admin_key_argument(self, public_keys) -> None:
        result = await EnvelopeBuilder().build_group(
            "hola", public_keys["1"], {"2": public_keys["2"]}, admin_public_key=public_keys["99"]
        )
        assert result.envelope.for_admin is not None

    @pytest.mark.asyncio
    async def test_required_admin_slot_missing(self, public_keys) -> None:
        """With the admin slot required, its absence is a reported failure."""
        config = EnvelopeConfig(require_admin_slot=True)
        result = await EnvelopeBuilder(config).build_direct("hola", public_keys["1"], public_keys["2"])

        assert not result.is_complete
        assert result.failures[0].recipient == "admin"
        assert result.failures[0].slot == SLOT_ADMIN
