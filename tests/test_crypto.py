"""Tests for session key wrapping and payload sealing."""

import base64

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from hybridchat.crypto import (
    b64decode,
    b64encode,
    generate_session_key,
    open_payload,
    open_text,
    seal_payload,
    seal_text,
    unwrap_session_key,
    wrap_session_key,
)
from hybridchat.types import (
    IV_SIZE,
    MAX_WRAP_PLAINTEXT,
    SESSION_KEY_SIZE,
    TAG_SIZE,
    AsymmetricDecryptError,
    AsymmetricEncryptError,
    AuthenticationError,
)


class TestSessionKeyWrapping:
    """Test RSA-OAEP wrapping of session keys."""

    def test_wrap_unwrap(self, identities) -> None:
        """A wrapped session key opens with the matching private key."""
        private_key, public_key = identities["1"]
        session_key = generate_session_key()
        assert len(session_key) == SESSION_KEY_SIZE

        wrapped = wrap_session_key(session_key, public_key)
        assert unwrap_session_key(wrapped, private_key) == session_key

    def test_wrap_accepts_base64_public_key(self, identities, public_keys) -> None:
        """Published base64 keys can be used directly."""
        session_key = generate_session_key()
        wrapped = wrap_session_key(session_key, public_keys["2"])
        assert unwrap_session_key(wrapped, identities["2"][0]) == session_key

    def test_wrapping_is_randomized(self, public_keys) -> None:
        """OAEP gives a different ciphertext each time."""
        session_key = generate_session_key()
        assert wrap_session_key(session_key, public_keys["1"]) != wrap_session_key(session_key, public_keys["1"])

    def test_wrong_private_key(self, identities, public_keys) -> None:
        """Only the addressed key can unwrap."""
        wrapped = wrap_session_key(generate_session_key(), public_keys["1"])
        with pytest.raises(AsymmetricDecryptError):
            unwrap_session_key(wrapped, identities["2"][0])

    @pytest.mark.parametrize("wrapped", ["", "***", base64.b64encode(b"short").decode()])
    def test_corrupted_slot(self, identities, wrapped) -> None:
        with pytest.raises(AsymmetricDecryptError):
            unwrap_session_key(wrapped, identities["1"][0])

    def test_oversized_input(self, public_keys) -> None:
        """Inputs above the OAEP ceiling cannot be wrapped."""
        with pytest.raises(AsymmetricEncryptError):
            wrap_session_key(b"x" * (MAX_WRAP_PLAINTEXT + 1), public_keys["1"])

    def test_malformed_public_key(self) -> None:
        with pytest.raises(AsymmetricEncryptError):
            wrap_session_key(generate_session_key(), "not-a-key")

    def test_legacy_base64_wrapped_key(self, identities) -> None:
        """Slots that wrapped the base64 text of the key still open."""
        private_key, public_key = identities["1"]
        session_key = generate_session_key()
        oaep = padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None,
        )
        legacy = public_key.encrypt(base64.b64encode(session_key), oaep)

        unwrapped = unwrap_session_key(base64.b64encode(legacy).decode(), private_key)
        assert unwrapped == session_key


class TestPayloadSealing:
    """Test AES-GCM sealing."""

    def test_seal_open(self) -> None:
        key = generate_session_key()
        ciphertext, iv = seal_payload(b"hola", key)

        assert len(iv) == IV_SIZE
        assert len(ciphertext) == len(b"hola") + TAG_SIZE
        assert open_payload(ciphertext, iv, key) == b"hola"

    def test_fresh_iv_per_seal(self) -> None:
        key = generate_session_key()
        _, iv1 = seal_payload(b"hola", key)
        _, iv2 = seal_payload(b"hola", key)
        assert iv1 != iv2

    def test_tampered_ciphertext(self) -> None:
        """Any flipped bit fails authentication."""
        key = generate_session_key()
        ciphertext, iv = seal_payload(b"hola", key)
        tampered = bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:]
        with pytest.raises(AuthenticationError):
            open_payload(tampered, iv, key)

    def test_tampered_iv(self) -> None:
        key = generate_session_key()
        ciphertext, iv = seal_payload(b"hola", key)
        tampered = bytes([iv[0] ^ 0x01]) + iv[1:]
        with pytest.raises(AuthenticationError):
            open_payload(ciphertext, tampered, key)

    def test_wrong_key(self) -> None:
        ciphertext, iv = seal_payload(b"hola", generate_session_key())
        with pytest.raises(AuthenticationError):
            open_payload(ciphertext, iv, generate_session_key())

    def test_empty_plaintext(self) -> None:
        key = generate_session_key()
        ciphertext, iv = seal_payload(b"", key)
        assert open_payload(ciphertext, iv, key) == b""


class TestTextSealing:
    """Test the base64 text form stored in envelopes."""

    def test_unicode_round_trip(self) -> None:
        key = generate_session_key()
        ciphertext, iv = seal_text("¿Qué tal? 👋", key)
        assert open_text(ciphertext, iv, key) == "¿Qué tal? 👋"

    def test_invalid_base64(self) -> None:
        key = generate_session_key()
        _, iv = seal_text("hola", key)
        with pytest.raises(AuthenticationError):
            open_text("%%%", iv, key)

    def test_strict_base64(self) -> None:
        assert b64decode(b64encode(b"\x00\xff")) == b"\x00\xff"
        with pytest.raises(ValueError):
            b64decode("abc$")
