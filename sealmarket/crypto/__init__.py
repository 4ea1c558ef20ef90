"""
Cryptographic primitives for sealmarket.

This module provides:
- Hashing (SHA-256)
- Per-market symmetric key generation
- Authenticated encryption (AES-256-GCM)
- Hex / base64 conversion helpers

Design Notes:
-------------
Sealed choices use AES-256-GCM with a 96-bit nonce and a 128-bit tag. The
envelope layout is fixed so any party holding the revealed key can open a
choice without extra framing:

    nonce[12] || tag[16] || ciphertext

A fresh random nonce is drawn for every seal; a (key, nonce) pair must never
repeat.
"""

import base64
import binascii
import hashlib
from typing import Tuple

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes


# =============================================================================
# Constants
# =============================================================================

KEY_SIZE = 32    # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16    # 128-bit GCM tag

# Smallest envelope that can carry a tag (empty ciphertext)
MIN_ENVELOPE_SIZE = NONCE_SIZE + TAG_SIZE


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return hashlib.sha256(data).digest()


def key_fingerprint(key: bytes) -> str:
    """
    Short, non-reversible identifier for a key.

    Used in logs so a key mix-up can be diagnosed without printing the key.
    """
    return sha256(key).hex()[:12]


# =============================================================================
# Keys
# =============================================================================


def generate_key() -> bytes:
    """Generate a new random 32-byte market key."""
    return get_random_bytes(KEY_SIZE)


def generate_key_hex() -> str:
    """Generate a new random market key, hex-encoded (64 chars)."""
    return generate_key().hex()


# =============================================================================
# Authenticated Encryption (AES-256-GCM)
# =============================================================================


def seal(plaintext: bytes, key: bytes) -> bytes:
    """
    Encrypt and authenticate a message.

    Args:
        plaintext: Message to seal
        key: 32-byte key

    Returns:
        nonce || tag || ciphertext
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")

    nonce = get_random_bytes(NONCE_SIZE)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return nonce + tag + ciphertext


def split_envelope(envelope: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Split an envelope into (nonce, tag, ciphertext) by fixed offsets.

    Raises:
        ValueError: if the envelope is shorter than nonce + tag
    """
    if len(envelope) < MIN_ENVELOPE_SIZE:
        raise ValueError(
            f"Envelope too short: {len(envelope)} bytes, need at least {MIN_ENVELOPE_SIZE}"
        )
    nonce = envelope[:NONCE_SIZE]
    tag = envelope[NONCE_SIZE:MIN_ENVELOPE_SIZE]
    ciphertext = envelope[MIN_ENVELOPE_SIZE:]
    return nonce, tag, ciphertext


def open_sealed(envelope: bytes, key: bytes) -> bytes:
    """
    Verify and decrypt an envelope produced by `seal`.

    Args:
        envelope: nonce || tag || ciphertext
        key: 32-byte key

    Returns:
        The plaintext. Nothing is returned unless the tag verifies.

    Raises:
        ValueError: on a short envelope, wrong key size or failed authentication
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")

    nonce, tag, ciphertext = split_envelope(envelope)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE)
    return cipher.decrypt_and_verify(ciphertext, tag)


# =============================================================================
# Utility Functions
# =============================================================================


def b64encode(data: bytes) -> str:
    """Standard base64 with padding."""
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """
    Strict base64 decode.

    Raises:
        ValueError: on characters outside the base64 alphabet or bad padding
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64: {e}") from e
