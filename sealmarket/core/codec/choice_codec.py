"""
Choice Codec - Sealed side selections for a single market.

A participant's side choice is hidden from anyone reading the public ledger
until the market closes:

1. Purchase: the operator seals {side, secret, market, encode_timestamp}
   under the market's key and the opaque blob is appended to the ledger.
2. Close: the operator opens every blob to tally the market, then reveals
   the key on the ledger so anyone can re-run the tally.

Trust model:
- The operator holds the key and can always read choices.
- Public observers see only base64(nonce || tag || ciphertext) until finalize.
- The market identifier is bound into the plaintext, so a blob minted for one
  market never counts in another, even if the two share a key.

Wire format:
    base64( nonce[12] || tag[16] || ciphertext )
    plaintext = JSON {"side": 1|2, "secret": str, "market": str,
                      "encode_timestamp": unix-seconds}
"""

import json
import time
from dataclasses import dataclass
from typing import Optional, Union

from sealmarket.core.errors import DecodeError, InvalidKeyError
from sealmarket.core.state.market import Side
from sealmarket.crypto import (
    KEY_SIZE,
    MIN_ENVELOPE_SIZE,
    b64decode,
    b64encode,
    open_sealed,
    seal,
)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class DecodedChoice:
    """Plaintext of an opened choice."""
    side: Side
    binding_secret: str
    market_id: str
    encode_timestamp: Optional[int]


# =============================================================================
# Codec
# =============================================================================


class ChoiceCodec:
    """
    Encodes and decodes a single participant's side choice.

    Stateless: instances hold no keys and may be shared across threads.
    """

    def encode(
        self,
        side: Union[Side, int],
        binding_secret: str,
        market_id: str,
        key: bytes,
        timestamp: Optional[int] = None,
    ) -> str:
        """
        Seal a side choice.

        Args:
            side: Side.A (1) or Side.B (2)
            binding_secret: Caller-supplied string tied to the purchaser
            market_id: Market the choice is valid for
            key: The market's 32-byte key
            timestamp: encode_timestamp to embed (defaults to now)

        Returns:
            base64 envelope
        """
        _check_key(key)
        if isinstance(side, bool) or side not in (Side.A, Side.B):
            raise ValueError(f"side must be 1 or 2, got {side!r}")

        payload = {
            "side": int(side),
            "secret": binding_secret,
            "market": market_id,
            "encode_timestamp": int(time.time()) if timestamp is None else int(timestamp),
        }
        plaintext = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return b64encode(seal(plaintext, key))

    def decode_payload(
        self,
        encoded: Union[str, bytes],
        key: bytes,
        expected_market_id: str,
    ) -> DecodedChoice:
        """
        Open a sealed choice and validate its contents.

        Args:
            encoded: base64 envelope (str) or the raw envelope (bytes)
            key: The market's 32-byte key
            expected_market_id: Market being settled

        Returns:
            DecodedChoice

        Raises:
            DecodeError: short envelope, bad base64, failed authentication,
                malformed plaintext, market mismatch or invalid side
            InvalidKeyError: the key itself is malformed
        """
        _check_key(key)

        if isinstance(encoded, str):
            try:
                envelope = b64decode(encoded)
            except ValueError as e:
                raise DecodeError("Encoded payload is not valid base64") from e
        else:
            envelope = bytes(encoded)

        if len(envelope) < MIN_ENVELOPE_SIZE:
            raise DecodeError("Encoded payload too short")

        try:
            plaintext = open_sealed(envelope, key)
        except ValueError as e:
            raise DecodeError("Authentication failed") from e

        try:
            parsed = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError("Malformed plaintext") from e

        if not isinstance(parsed, dict):
            raise DecodeError("Malformed plaintext")

        if parsed.get("market") != expected_market_id:
            raise DecodeError("Market mismatch in encoded payload")

        side = parsed.get("side")
        if isinstance(side, bool) or side not in (1, 2):
            raise DecodeError("Invalid side in decoded payload")

        secret = parsed.get("secret")
        timestamp = parsed.get("encode_timestamp")
        return DecodedChoice(
            side=Side(side),
            binding_secret=secret if isinstance(secret, str) else "",
            market_id=expected_market_id,
            encode_timestamp=timestamp if isinstance(timestamp, int) else None,
        )

    def decode(
        self,
        encoded: Union[str, bytes],
        key: bytes,
        expected_market_id: str,
    ) -> Side:
        """Open a sealed choice and return only its side."""
        return self.decode_payload(encoded, key, expected_market_id).side


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        size = len(key) if isinstance(key, (bytes, bytearray)) else type(key).__name__
        raise InvalidKeyError(f"Market key must be {KEY_SIZE} bytes, got {size}")


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "ChoiceCodec",
    "DecodedChoice",
]
