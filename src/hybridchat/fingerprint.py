"""
Fingerprints for HybridChat keys and envelopes.

Key fingerprints give users a short string to compare out of band before
trusting a published key. Envelope fingerprints identify an envelope in cache
keys and log records without exposing any of its contents.
"""

import hashlib
import json
from typing import Any, Union

from cryptography.hazmat.primitives.asymmetric import rsa

from .crypto import coerce_public_key
from .envelope import ChatEnvelope
from .keys import public_key_to_bytes


ENVELOPE_FINGERPRINT_LENGTH = 12


def fingerprint(public_key: Union[rsa.RSAPublicKey, str]) -> str:
    """
    Generate a human-readable fingerprint for an identity public key.

    The fingerprint is a truncated SHA-256 hash of the SPKI encoding.

    Args:
        public_key: RSA public key (object or base64 SPKI)

    Returns:
        A fingerprint string like "A7B3 C9D1 E5F2 8A4B"
    """
    key = coerce_public_key(public_key)
    hash_bytes = hashlib.sha256(public_key_to_bytes(key)).digest()

    # Take first 8 bytes and format as hex groups
    hex_bytes = [f"{b:02X}" for b in hash_bytes[:8]]

    # Group into pairs of bytes (4 chars each), space separated
    groups = [hex_bytes[i] + hex_bytes[i + 1] for i in range(0, 8, 2)]

    return " ".join(groups)


def envelope_fingerprint(envelope: Union[ChatEnvelope, dict[str, Any], str]) -> str:
    """
    Short stable identifier for an envelope.

    Dicts and envelopes are hashed in canonical (sorted-key) form so that
    re-serialization by the transport does not change the fingerprint.

    Returns:
        First 12 hex characters of the SHA-256 digest
    """
    if isinstance(envelope, ChatEnvelope):
        envelope = envelope.to_dict()
    if isinstance(envelope, dict):
        raw = json.dumps(envelope, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    else:
        raw = str(envelope)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:ENVELOPE_FINGERPRINT_LENGTH]
