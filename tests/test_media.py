"""Tests for encrypted media envelopes and media handles."""

import asyncio
import json
import os

import pytest

from hybridchat.config import EnvelopeConfig
from hybridchat.crypto import generate_session_key
from hybridchat.media import MediaEnvelopeBuilder, MediaResolver, open_media, seal_media
from hybridchat.resolver import EnvelopeResolver
from hybridchat.types import (
    DEFAULT_AUDIO_MIME,
    IMAGE_BLOB_MIME,
    AuthenticationError,
    EnvelopeType,
    HandleRevokedError,
)

IMAGE_BYTES = os.urandom(4096)
AUDIO_BYTES = os.urandom(2048)


@pytest.fixture
def builder(blob_store):
    return MediaEnvelopeBuilder(blob_store)


@pytest.fixture
def media_for(make_key_store, blob_store):
    def make(*user_ids: str) -> MediaResolver:
        return MediaResolver(EnvelopeResolver(make_key_store(*user_ids)), blob_store)

    return make


class TestMediaSealing:
    """Test media body encryption."""

    def test_seal_open(self) -> None:
        key = generate_session_key()
        ciphertext, iv = seal_media(IMAGE_BYTES, key)
        assert ciphertext != IMAGE_BYTES
        assert open_media(ciphertext, iv, key) == IMAGE_BYTES

    def test_tampered_body(self) -> None:
        key = generate_session_key()
        ciphertext, iv = seal_media(IMAGE_BYTES, key)
        with pytest.raises(AuthenticationError):
            open_media(ciphertext[:-1] + bytes([ciphertext[-1] ^ 0x01]), iv, key)


class TestMediaEnvelopeBuilder:
    """Test audio and image envelope construction."""

    @pytest.mark.asyncio
    async def test_image_envelope(self, builder, blob_store, public_keys) -> None:
        result = await builder.build_direct_image(
            IMAGE_BYTES, public_keys["1"], public_keys["2"], mime_type="image/png", caption="mira", file_name="a.png"
        )
        assert result.is_complete

        data = json.loads(result.content)
        assert data["type"] == "E2E_IMAGE"
        assert data["imageMime"] == "image/png"
        assert data["imageNombre"] == "a.png"
        assert "ivFile" in data and "captionCiphertext" in data
        assert "ciphertext" not in data

        # The blob holds ciphertext uploaded as opaque bytes
        assert blob_store.mime_type_of(data["imageUrl"]) == IMAGE_BLOB_MIME
        assert await blob_store.download(data["imageUrl"]) != IMAGE_BYTES

    @pytest.mark.asyncio
    async def test_audio_envelope(self, builder, blob_store, public_keys) -> None:
        recipients = {"2": public_keys["2"], "3": public_keys["3"]}
        result = await builder.build_group_audio(AUDIO_BYTES, public_keys["1"], recipients, duration_ms=4200)

        data = json.loads(result.content)
        assert data["type"] == "E2E_GROUP_AUDIO"
        assert data["audioDuracionMs"] == 4200
        assert data["audioMime"] == DEFAULT_AUDIO_MIME
        assert sorted(data["forReceptores"]) == ["2", "3"]
        assert blob_store.mime_type_of(data["audioUrl"]) == DEFAULT_AUDIO_MIME

    @pytest.mark.asyncio
    async def test_group_image_requires_roster(self, builder, public_keys) -> None:
        with pytest.raises(ValueError):
            await builder.build_group_image(IMAGE_BYTES, public_keys["1"], {})

    @pytest.mark.asyncio
    async def test_admin_slot(self, blob_store, public_keys) -> None:
        config = EnvelopeConfig.default().with_admin("99", public_keys["99"])
        result = await MediaEnvelopeBuilder(blob_store, config).build_direct_audio(
            AUDIO_BYTES, public_keys["1"], public_keys["2"]
        )
        assert result.envelope.for_admin is not None
        assert result.envelope.type == EnvelopeType.DIRECT_AUDIO


class TestMediaResolver:
    """Test decryption into revocable handles."""

    @pytest.fixture
    async def image_message(self, builder, public_keys):
        result = await builder.build_direct_image(
            IMAGE_BYTES, public_keys["1"], public_keys["2"], mime_type="image/png", caption=" mira "
        )
        return result.content

    @pytest.mark.asyncio
    async def test_open_image(self, media_for, image_message) -> None:
        handle = await media_for("2").open(image_message, "2", "1", message_id=10)

        assert handle is not None
        assert handle.read() == IMAGE_BYTES
        assert handle.mime_type == "image/png"
        assert handle.caption == "mira"
        assert handle.size == len(IMAGE_BYTES)

    @pytest.mark.asyncio
    async def test_sender_opens_own_media(self, media_for, image_message) -> None:
        handle = await media_for("1").open(image_message, "1", "1", message_id=10)
        assert handle.read() == IMAGE_BYTES

    @pytest.mark.asyncio
    async def test_handle_is_cached(self, media_for, blob_store, image_message) -> None:
        media = media_for("2")
        first = await media.open(image_message, "2", "1", message_id=10)
        second = await media.open(image_message, "2", "1", message_id=10)

        assert first is second
        assert blob_store.download_count == 1
        assert media.cached_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_decryption(self, media_for, blob_store, image_message) -> None:
        """Simultaneous opens of one message download and decrypt once."""
        media = media_for("2")
        handles = await asyncio.gather(*(media.open(image_message, "2", "1", message_id=10) for _ in range(5)))

        assert all(h is handles[0] for h in handles)
        assert blob_store.download_count == 1

    @pytest.mark.asyncio
    async def test_cache_is_per_message(self, media_for, image_message) -> None:
        media = media_for("2")
        first = await media.open(image_message, "2", "1", message_id=10)
        second = await media.open(image_message, "2", "1", message_id=11)
        assert first is not second
        assert media.cached_count == 2

    @pytest.mark.asyncio
    async def test_release(self, media_for, blob_store, image_message) -> None:
        """Released handles cannot be read; reopening decrypts again."""
        media = media_for("2")
        handle = await media.open(image_message, "2", "1", message_id=10)

        assert media.release("2", 10) == 1
        assert handle.revoked
        with pytest.raises(HandleRevokedError):
            handle.read()

        reopened = await media.open(image_message, "2", "1", message_id=10)
        assert reopened is not handle
        assert reopened.read() == IMAGE_BYTES
        assert blob_store.download_count == 2

    @pytest.mark.asyncio
    async def test_release_during_decryption(self, media_for, image_message) -> None:
        """A message released while its body is decrypting leaves no live handle."""
        media = media_for("2")
        pending = asyncio.ensure_future(media.open(image_message, "2", "1", message_id="m1"))
        await asyncio.sleep(0)

        assert media.release("2", "m1") == 1
        assert await pending is None
        assert media.cached_count == 0

        reopened = await media.open(image_message, "2", "1", message_id="m1")
        assert reopened.read() == IMAGE_BYTES
        assert media.cached_count == 1

    @pytest.mark.asyncio
    async def test_release_all_during_decryption(self, media_for, image_message) -> None:
        media = media_for("2")
        pending = asyncio.ensure_future(media.open(image_message, "2", "1", message_id="m1"))
        await asyncio.sleep(0)

        media.release_all()
        assert await pending is None
        assert media.cached_count == 0

    @pytest.mark.asyncio
    async def test_release_all(self, media_for, image_message) -> None:
        media = media_for("2")
        handle = await media.open(image_message, "2", "1", message_id=10)
        media.release_all()
        assert handle.revoked
        assert media.cached_count == 0

    @pytest.mark.asyncio
    async def test_third_party_gets_none(self, media_for, image_message) -> None:
        assert await media_for("3").open(image_message, "3", "1", message_id=10) is None

    @pytest.mark.asyncio
    async def test_tampered_blob(self, media_for, blob_store, image_message) -> None:
        locator = json.loads(image_message)["imageUrl"]
        ciphertext, mime = blob_store._blobs[locator]
        blob_store._blobs[locator] = (bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:], mime)

        assert await media_for("2").open(image_message, "2", "1", message_id=10) is None

    @pytest.mark.asyncio
    async def test_missing_blob(self, media_for, blob_store, image_message) -> None:
        blob_store._blobs.clear()
        assert await media_for("2").open(image_message, "2", "1", message_id=10) is None

    @pytest.mark.asyncio
    async def test_text_message_is_not_media(self, media_for) -> None:
        assert await media_for("2").open("hola", "2", "1", message_id=10) is None

    @pytest.mark.asyncio
    async def test_audio_round_trip(self, blob_store, public_keys, media_for) -> None:
        builder = MediaEnvelopeBuilder(blob_store)
        recipients = {"2": public_keys["2"], "3": public_keys["3"]}
        result = await builder.build_group_audio(AUDIO_BYTES, public_keys["1"], recipients, duration_ms=4200)

        handle = await media_for("3").open(result.content, "3", "1", message_id="m1")
        assert handle.read() == AUDIO_BYTES
        assert handle.mime_type == DEFAULT_AUDIO_MIME
        assert handle.caption == ""
