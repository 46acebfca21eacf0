"""RSA identity key generation and encoding for HybridChat."""

import base64
import binascii
from typing import Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .types import RSA_KEY_SIZE, RSA_PUBLIC_EXPONENT, KeyFormatError


def generate_keypair(key_size: int = RSA_KEY_SIZE) -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """
    Generate a new RSA identity key pair.

    The pair is used with OAEP/SHA-256 for wrapping session keys. Provider
    failures propagate to the caller.

    Args:
        key_size: Modulus size in bits (default 2048)

    Returns:
        Tuple of (private_key, public_key)
    """
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=key_size,
    )
    return private_key, private_key.public_key()


def public_key_to_bytes(public_key: rsa.RSAPublicKey) -> bytes:
    """Serialize a public key as SubjectPublicKeyInfo DER."""
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def private_key_to_bytes(private_key: rsa.RSAPrivateKey) -> bytes:
    """Serialize a private key as unencrypted PKCS#8 DER."""
    return private_key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def public_key_from_bytes(data: bytes) -> rsa.RSAPublicKey:
    """Load a public key from SubjectPublicKeyInfo DER."""
    try:
        key = serialization.load_der_public_key(data)
    except (ValueError, TypeError) as e:
        raise KeyFormatError(f"Invalid public key: {e}") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyFormatError(f"Expected an RSA public key, got {type(key).__name__}")
    return key


def private_key_from_bytes(data: bytes) -> rsa.RSAPrivateKey:
    """Load a private key from unencrypted PKCS#8 DER."""
    try:
        key = serialization.load_der_private_key(data, password=None)
    except (ValueError, TypeError) as e:
        raise KeyFormatError(f"Invalid private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyFormatError(f"Expected an RSA private key, got {type(key).__name__}")
    return key


def export_public_key(public_key: rsa.RSAPublicKey) -> str:
    """Export a public key as base64 SPKI, the form published to other users."""
    return base64.b64encode(public_key_to_bytes(public_key)).decode("ascii")


def export_private_key(private_key: rsa.RSAPrivateKey) -> str:
    """Export a private key as base64 PKCS#8."""
    return base64.b64encode(private_key_to_bytes(private_key)).decode("ascii")


def import_public_key(encoded: str) -> rsa.RSAPublicKey:
    """
    Import a base64 SPKI public key.

    Raises:
        KeyFormatError: If the encoding or key material is malformed
    """
    return public_key_from_bytes(_b64decode_key(encoded))


def import_private_key(encoded: str) -> rsa.RSAPrivateKey:
    """
    Import a base64 PKCS#8 private key.

    Raises:
        KeyFormatError: If the encoding or key material is malformed
    """
    return private_key_from_bytes(_b64decode_key(encoded))


def _b64decode_key(encoded: str) -> bytes:
    if not isinstance(encoded, str) or not encoded.strip():
        raise KeyFormatError("Key encoding must be a non-empty base64 string")
    try:
        return base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyFormatError(f"Invalid base64 key encoding: {e}") from e
