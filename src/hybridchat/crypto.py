"""Hybrid RSA-OAEP / AES-GCM primitives for HybridChat envelopes."""

import base64
import binascii
import os
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .keys import import_public_key
from .types import (
    AES_KEY_SIZES,
    IV_SIZE,
    SESSION_KEY_SIZE,
    AsymmetricDecryptError,
    AsymmetricEncryptError,
    AuthenticationError,
    KeyFormatError,
)


PublicKeyLike = Union[rsa.RSAPublicKey, str]

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def generate_session_key() -> bytes:
    """Generate a fresh 256-bit AES session key."""
    return AESGCM.generate_key(bit_length=SESSION_KEY_SIZE * 8)


def coerce_public_key(public_key: PublicKeyLike) -> rsa.RSAPublicKey:
    """Accept either an RSA key object or its base64 SPKI encoding."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return public_key
    if isinstance(public_key, str):
        return import_public_key(public_key)
    raise KeyFormatError(f"Unsupported public key type: {type(public_key).__name__}")


def wrap_session_key(session_key: bytes, recipient_public_key: PublicKeyLike) -> str:
    """
    Wrap a session key for one recipient.

    Args:
        session_key: Raw symmetric key material
        recipient_public_key: Recipient's RSA public key (object or base64 SPKI)

    Returns:
        Base64 RSA-OAEP ciphertext

    Raises:
        AsymmetricEncryptError: If the key is malformed or the input exceeds
            the OAEP plaintext ceiling
    """
    try:
        public_key = coerce_public_key(recipient_public_key)
        wrapped = public_key.encrypt(session_key, _OAEP)
    except KeyFormatError as e:
        raise AsymmetricEncryptError(str(e)) from e
    except (ValueError, TypeError) as e:
        raise AsymmetricEncryptError(f"Wrap failed: {e}") from e
    return base64.b64encode(wrapped).decode("ascii")


def unwrap_session_key(wrapped_b64: str, private_key: rsa.RSAPrivateKey) -> bytes:
    """
    Recover a session key from a wrapped slot.

    Older clients wrapped the base64 text of the AES key instead of the raw
    bytes, so a decrypted value that is itself base64 of a valid AES key is
    decoded once more.

    Raises:
        AsymmetricDecryptError: If the private key cannot open the slot
    """
    if not isinstance(wrapped_b64, str) or not wrapped_b64.strip():
        raise AsymmetricDecryptError("Wrapped key is empty")
    try:
        wrapped = base64.b64decode(wrapped_b64.strip(), validate=True)
        raw = private_key.decrypt(wrapped, _OAEP)
    except (binascii.Error, ValueError, TypeError) as e:
        raise AsymmetricDecryptError("Unwrap failed") from e
    return _coerce_session_key(raw)


def _coerce_session_key(raw: bytes) -> bytes:
    if len(raw) in AES_KEY_SIZES:
        return raw
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AsymmetricDecryptError("Unwrapped key has an invalid length") from e
    if len(decoded) not in AES_KEY_SIZES:
        raise AsymmetricDecryptError("Unwrapped key has an invalid length")
    return decoded


def seal_payload(plaintext: bytes, session_key: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt a payload with AES-GCM under a fresh random 96-bit IV.

    Returns:
        Tuple of (ciphertext_with_tag, iv)
    """
    iv = os.urandom(IV_SIZE)
    ciphertext = AESGCM(session_key).encrypt(iv, plaintext, None)
    return ciphertext, iv


def open_payload(ciphertext: bytes, iv: bytes, session_key: bytes) -> bytes:
    """
    Decrypt and authenticate a sealed payload.

    Raises:
        AuthenticationError: If the tag does not verify, or the key or IV is
            unusable. No plaintext is returned on failure.
    """
    try:
        return AESGCM(session_key).decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        raise AuthenticationError("Payload failed authentication") from e
    except (ValueError, TypeError) as e:
        raise AuthenticationError(f"Payload cannot be opened: {e}") from e


def seal_text(plaintext: str, session_key: bytes) -> Tuple[str, str]:
    """Seal UTF-8 text, returning base64 (ciphertext, iv) as stored in envelopes."""
    ciphertext, iv = seal_payload(plaintext.encode("utf-8"), session_key)
    return b64encode(ciphertext), b64encode(iv)


def open_text(ciphertext_b64: str, iv_b64: str, session_key: bytes) -> str:
    """Open base64 envelope fields back into text."""
    try:
        ciphertext = b64decode(ciphertext_b64)
        iv = b64decode(iv_b64)
    except ValueError as e:
        raise AuthenticationError("Sealed fields are not valid base64") from e
    plaintext = open_payload(ciphertext, iv, session_key)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthenticationError("Payload is not valid UTF-8") from e


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Strict base64 decode raising ``ValueError`` on bad input."""
    if not isinstance(data, str):
        raise ValueError("Expected a base64 string")
    try:
        return base64.b64decode(data.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError(str(e)) from e
