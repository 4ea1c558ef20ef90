"""
Market data model.

Records held by the two external collaborators of the engine:

- MarketMeta: the operator's private record (metadata store)
- MarketState / AccountState / Choice: the public settlement ledger

All amounts are integer units. Records serialize to JSON bytes for
persistence; the field names on disk match the attribute names.
"""

import json
import time
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import List

from sealmarket.core.errors import InvalidKeyError
from sealmarket.crypto import KEY_SIZE


# =============================================================================
# Enums
# =============================================================================


class Side(IntEnum):
    """A participant's side selection."""
    A = 1
    B = 2


class WinningSide(IntEnum):
    """Settled outcome recorded at finalize."""
    TIE = 0
    A = 1
    B = 2


# =============================================================================
# Metadata Store Record
# =============================================================================


@dataclass
class MarketMeta:
    """
    Private per-market record.

    Attributes:
        market_id: Identifier of the market's state on the ledger
        ledger_key_id: Secondary identifier used to address the ledger
        encryption_key: 32-byte key, hex-encoded
        created_at: Unix seconds of registration
    """
    market_id: str
    ledger_key_id: str
    encryption_key: str
    created_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def key_bytes(self) -> bytes:
        """Decoded key. Raises InvalidKeyError if the stored value is malformed."""
        try:
            key = bytes.fromhex(self.encryption_key)
        except (TypeError, ValueError) as e:
            raise InvalidKeyError("Invalid encryption key in metadata store") from e
        if len(key) != KEY_SIZE:
            raise InvalidKeyError(
                f"Invalid encryption key in metadata store: expected {KEY_SIZE} bytes, got {len(key)}"
            )
        return key


# =============================================================================
# Ledger Records
# =============================================================================


@dataclass
class Choice:
    """One purchase: a sealed side selection and the tickets bought with it."""
    encrypted_payload: str
    ticket_count: int
    created_at: int = 0


@dataclass
class AccountState:
    """A participant's position in one market."""
    participant_id: str
    market_id: str
    total_tickets_owned: int = 0
    total_amount_units: int = 0
    has_claimed: bool = False
    choices: List[Choice] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        return json.dumps(asdict(self), sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "AccountState":
        raw = json.loads(data.decode("utf-8"))
        raw["choices"] = [Choice(**c) for c in raw.get("choices", [])]
        return cls(**raw)


@dataclass
class MarketState:
    """
    Ledger-owned market aggregate.

    Mutated only by accepted purchase and finalize transitions. Side totals
    and the winning side are zero until finalize; the revealed key is empty
    until finalize.
    """
    market_id: str
    side_a_label: str
    side_b_label: str
    ticket_price_units: int
    creation_time: int
    duration_seconds: int
    title: str = ""
    description: str = ""
    category: str = ""

    total_tickets: int = 0
    total_amount_units: int = 0

    total_tickets_side_a: int = 0
    total_tickets_side_b: int = 0
    total_amount_side_a: int = 0
    total_amount_side_b: int = 0

    is_finalized: bool = False
    winning_side: int = WinningSide.TIE
    revealed_encryption_key: str = ""

    @property
    def end_time(self) -> int:
        return self.creation_time + self.duration_seconds

    def has_ended(self, now: int) -> bool:
        return now >= self.end_time

    @property
    def is_tie(self) -> bool:
        return self.is_finalized and self.winning_side == WinningSide.TIE

    def winning_total_tickets(self) -> int:
        """Ticket total on the winning side (0 for a tie)."""
        if self.winning_side == WinningSide.A:
            return self.total_tickets_side_a
        if self.winning_side == WinningSide.B:
            return self.total_tickets_side_b
        return 0

    def winning_total_amount(self) -> int:
        """Stake total on the winning side (0 for a tie)."""
        if self.winning_side == WinningSide.A:
            return self.total_amount_side_a
        if self.winning_side == WinningSide.B:
            return self.total_amount_side_b
        return 0

    def to_bytes(self) -> bytes:
        data = asdict(self)
        data["winning_side"] = int(self.winning_side)
        return json.dumps(data, sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "MarketState":
        return cls(**json.loads(data.decode("utf-8")))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["winning_side"] = int(self.winning_side)
        return data

