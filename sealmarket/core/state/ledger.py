"""
Ledger - Authoritative settlement state for sealmarket.

Conceptual Background:
---------------------
The ledger is the final arbiter of a market's money and flags:

1. **MarketState**: ticket price, deadline, totals, finalize outcome
2. **AccountState**: one per participant per market, with its sealed choices
3. **Treasury**: the market's escrow; pays claims, routes the fee

The settlement engine never mutates this state directly. It reads records
and *proposes* transitions; the ledger re-validates every proposal against
its own state and either applies it atomically or rejects it with a reason.

Transitions:
-----------
- create_market: open a market
- buy_tickets: append a sealed choice, move price x count into escrow
- submit_finalize: record side totals and winning side, reveal the key,
  flip is_finalized (exactly once)
- submit_claim: deduct the fee, pay the net, flip has_claimed (exactly once
  per participant)

Reads return copies: callers see a snapshot and cannot alter ledger state
except through a transition.

Shared Storage:
--------------
With a storage manager attached, the database is authoritative and the
in-memory maps are a cache of it. Every read refreshes the market's records
first. Every transition holds the database write lock, re-reads the records
it validates against, then writes, so ledgers in separate processes over one
store still flip each flag exactly once.
"""

import copy
import json
import threading
import time
from contextlib import nullcontext
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from sealmarket.core.config import EngineConfig
from sealmarket.core.state.market import AccountState, Choice, MarketState, WinningSide
from sealmarket.core.storage.storage_manager import StorageManager
from sealmarket.core.tokenomics import FeeLedger, FeeSchedule
from sealmarket.utils.logger import get_logger

logger = get_logger("ledger")


# =============================================================================
# Rejections
# =============================================================================


class Rejection(str, Enum):
    """Reason a transition was refused. Values are the user-facing messages."""
    MARKET_EXISTS = "Market already exists"
    MARKET_NOT_FOUND = "Market not found"
    ACCOUNT_NOT_FOUND = "UserTickets account not found"
    INVALID_TICKET_PRICE = "Ticket price must be > 0"
    INVALID_DURATION = "Duration must be > 0"
    FIELD_TOO_LONG = "Market text field is too long"
    MARKET_CLOSED = "Market is closed for ticket purchases"
    INVALID_TICKET_COUNT = "Ticket count must be > 0"
    ENCODED_CHOICE_TOO_LONG = "Encoded side hash is too long"
    TICKET_LIMIT_EXCEEDED = "User ticket limit exceeded"
    TOO_MANY_CHOICES = "Too many choices stored for this user in this market"
    ALREADY_FINALIZED = "Market already finalized"
    NOT_ENDED = "Market has not ended yet"
    INVALID_WINNING_SIDE = "Invalid winning side"
    INCONSISTENT_TOTALS = "Provided totals are inconsistent with stored market totals"
    KEY_TOO_LONG = "Encryptor too long"
    NOT_FINALIZED = "Market is not finalized yet"
    ALREADY_CLAIMED = "User has already claimed reward"
    INVALID_CLAIM_AMOUNT = "Invalid claim amount"
    INSUFFICIENT_FUNDS = "Not enough funds in market treasury"

    def __str__(self) -> str:
        return self.value


# =============================================================================
# Transition Payloads
# =============================================================================


@dataclass(frozen=True)
class FinalizeProposal:
    """Side totals, outcome and key to reveal, as computed by the tally."""
    market_id: str
    total_tickets_side_a: int
    total_tickets_side_b: int
    total_amount_side_a: int
    total_amount_side_b: int
    winning_side: int
    encryption_key: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ClaimProposal:
    """
    A payout request. Valid only while the account's has_claimed is False.

    claim_amount is the gross pro-rata share; the ledger deducts the fee.
    """
    market_id: str
    participant_id: str
    claim_amount: int
    winning_side: int
    expected_has_claimed: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ClaimReceipt:
    """Record of an accepted claim."""
    market_id: str
    participant_id: str
    gross_amount: int
    fee_units: int
    paid_amount: int
    claimed_at: int

    def to_bytes(self) -> bytes:
        return json.dumps(asdict(self), sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "ClaimReceipt":
        return cls(**json.loads(data.decode("utf-8")))

    def to_dict(self) -> dict:
        return asdict(self)


def _utf8_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _market_from_bytes(data: bytes) -> MarketState:
    market = MarketState.from_bytes(data)
    market.winning_side = WinningSide(market.winning_side)
    return market


# =============================================================================
# Ledger
# =============================================================================


class Ledger:
    """
    In-process settlement ledger.

    All transitions run under one lock and, with storage attached, inside one
    database write transaction, so the is_finalized and has_claimed flags
    flip at most once no matter how many engine instances race.

    Attributes:
        markets: market_id -> MarketState
        accounts: market_id -> participant_id -> AccountState
        receipts: (market_id, participant_id) -> ClaimReceipt
        fee_ledger: Running fee totals routed to the project treasury
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        storage_manager: Optional[StorageManager] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize the ledger.

        Args:
            config: Engine configuration (limits, fee)
            storage_manager: Persistence manager. None = in-memory only.
            clock: Returns current unix seconds; defaults to wall clock
        """
        self.config = config or EngineConfig()
        self.fees = FeeSchedule(self.config)
        self.fee_ledger = FeeLedger()
        self.clock = clock or (lambda: int(time.time()))

        self.markets: Dict[str, MarketState] = {}
        self.accounts: Dict[str, Dict[str, AccountState]] = {}
        self.receipts: Dict[Tuple[str, str], ClaimReceipt] = {}

        self._lock = threading.RLock()

        self.storage_manager = storage_manager
        if storage_manager:
            self._load_from_storage()

    # =========================================================================
    # State Access
    # =========================================================================

    def get_market(self, market_id: str) -> Optional[MarketState]:
        with self._lock:
            self._refresh(market_id, write=False)
            market = self.markets.get(market_id)
            return copy.deepcopy(market) if market else None

    def get_account(self, market_id: str, participant_id: str) -> Optional[AccountState]:
        with self._lock:
            self._refresh(market_id, write=False)
            account = self.accounts.get(market_id, {}).get(participant_id)
            return copy.deepcopy(account) if account else None

    def get_accounts(self, market_id: str) -> List[AccountState]:
        """All accounts of a market, ordered by participant id."""
        with self._lock:
            self._refresh(market_id, write=False)
            by_participant = self.accounts.get(market_id, {})
            return [copy.deepcopy(by_participant[p]) for p in sorted(by_participant)]

    def get_receipt(self, market_id: str, participant_id: str) -> Optional[ClaimReceipt]:
        with self._lock:
            self._refresh(market_id, write=False)
            receipt = self.receipts.get((market_id, participant_id))
            return copy.deepcopy(receipt) if receipt else None

    def treasury_balance(self, market_id: str) -> int:
        """Escrow still held for a market: pool minus gross claims paid."""
        with self._lock:
            self._refresh(market_id, write=False)
            return self._treasury_balance(market_id)

    def _treasury_balance(self, market_id: str) -> int:
        market = self.markets.get(market_id)
        if market is None:
            return 0
        paid = sum(r.gross_amount for (m, _), r in self.receipts.items() if m == market_id)
        return market.total_amount_units - paid

    # =========================================================================
    # Market Creation
    # =========================================================================

    def create_market(
        self,
        market_id: str,
        side_a_label: str,
        side_b_label: str,
        ticket_price_units: int,
        duration_seconds: int,
        creation_time: Optional[int] = None,
        title: str = "",
        description: str = "",
        category: str = "",
    ) -> Tuple[Optional[MarketState], str]:
        """
        Open a new market.

        Returns:
            (market, error_message)
        """
        cfg = self.config
        if ticket_price_units <= 0:
            return None, Rejection.INVALID_TICKET_PRICE
        if duration_seconds <= 0:
            return None, Rejection.INVALID_DURATION
        if (
            _utf8_len(title) > cfg.max_title_len
            or _utf8_len(description) > cfg.max_description_len
            or _utf8_len(category) > cfg.max_category_len
            or _utf8_len(side_a_label) > cfg.max_side_label_len
            or _utf8_len(side_b_label) > cfg.max_side_label_len
        ):
            return None, Rejection.FIELD_TOO_LONG

        with self._lock, self._transaction():
            self._refresh(market_id)
            if market_id in self.markets:
                return None, Rejection.MARKET_EXISTS

            market = MarketState(
                market_id=market_id,
                side_a_label=side_a_label,
                side_b_label=side_b_label,
                ticket_price_units=ticket_price_units,
                creation_time=self.clock() if creation_time is None else creation_time,
                duration_seconds=duration_seconds,
                title=title,
                description=description,
                category=category,
            )
            self._persist(markets=[market])
            self.markets[market_id] = market
            self.accounts[market_id] = {}

        logger.info(
            f"Market {market_id} created: price={ticket_price_units} "
            f"duration={duration_seconds}s ends at {market.end_time}"
        )
        return copy.deepcopy(market), ""

    # =========================================================================
    # Purchases
    # =========================================================================

    def buy_tickets(
        self,
        market_id: str,
        participant_id: str,
        encoded_choice: str,
        count: int,
        now: Optional[int] = None,
    ) -> Tuple[bool, str]:
        """
        Append a sealed choice and move its price into escrow.

        Checks:
        1. Market open (now <= end) and not finalized
        2. count > 0, encoded choice within size limit
        3. Per-participant cap: max(absolute cap, market total // divisor)
        4. Choice count below the per-account maximum

        Returns:
            (success, error_message)
        """
        now = self.clock() if now is None else now
        cfg = self.config

        with self._lock, self._transaction():
            self._refresh(market_id)
            market = self.markets.get(market_id)
            if market is None:
                return False, Rejection.MARKET_NOT_FOUND
            if now > market.end_time:
                return False, Rejection.MARKET_CLOSED
            if market.is_finalized:
                return False, Rejection.ALREADY_FINALIZED
            if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
                return False, Rejection.INVALID_TICKET_COUNT
            if len(encoded_choice.encode("utf-8")) > cfg.max_encoded_choice_len:
                return False, Rejection.ENCODED_CHOICE_TOO_LONG

            account = copy.deepcopy(self.accounts[market_id].get(participant_id))
            if account is None:
                account = AccountState(participant_id=participant_id, market_id=market_id)

            new_market_tickets = market.total_tickets + count
            new_user_tickets = account.total_tickets_owned + count
            allowed = max(cfg.user_absolute_ticket_cap, new_market_tickets // cfg.user_pool_share_divisor)
            if new_user_tickets > allowed:
                return False, Rejection.TICKET_LIMIT_EXCEEDED

            if len(account.choices) >= cfg.max_choices_per_account:
                return False, Rejection.TOO_MANY_CHOICES

            price = market.ticket_price_units * count

            market = copy.deepcopy(market)
            market.total_tickets = new_market_tickets
            market.total_amount_units += price
            account.total_tickets_owned = new_user_tickets
            account.total_amount_units += price
            account.choices.append(Choice(encrypted_payload=encoded_choice, ticket_count=count, created_at=now))

            self._persist(markets=[market], accounts=[account])
            self.markets[market_id] = market
            self.accounts[market_id][participant_id] = account

        logger.debug(f"Market {market_id}: {participant_id} bought {count} tickets ({price} units)")
        return True, ""

    # =========================================================================
    # Finalize
    # =========================================================================

    def submit_finalize(self, proposal: FinalizeProposal, now: Optional[int] = None) -> Tuple[bool, str]:
        """
        Apply a finalize proposal.

        The ledger re-checks everything it can verify without the key:
        not finalized, ended, valid winning side, side sums equal to the
        totals it recorded at purchase time.

        Returns:
            (success, error_message)
        """
        now = self.clock() if now is None else now

        with self._lock, self._transaction():
            self._refresh(proposal.market_id)
            market = self.markets.get(proposal.market_id)
            if market is None:
                return False, Rejection.MARKET_NOT_FOUND
            if market.is_finalized:
                return False, Rejection.ALREADY_FINALIZED
            if not market.has_ended(now):
                return False, Rejection.NOT_ENDED
            if proposal.winning_side not in (WinningSide.TIE, WinningSide.A, WinningSide.B):
                return False, Rejection.INVALID_WINNING_SIDE

            sum_tickets = proposal.total_tickets_side_a + proposal.total_tickets_side_b
            sum_amount = proposal.total_amount_side_a + proposal.total_amount_side_b
            if sum_tickets != market.total_tickets or sum_amount != market.total_amount_units:
                return False, Rejection.INCONSISTENT_TOTALS
            if len(proposal.encryption_key) > self.config.max_revealed_key_len:
                return False, Rejection.KEY_TOO_LONG

            market = copy.deepcopy(market)
            market.total_tickets_side_a = proposal.total_tickets_side_a
            market.total_tickets_side_b = proposal.total_tickets_side_b
            market.total_amount_side_a = proposal.total_amount_side_a
            market.total_amount_side_b = proposal.total_amount_side_b
            market.winning_side = WinningSide(proposal.winning_side)
            market.revealed_encryption_key = proposal.encryption_key
            market.is_finalized = True

            self._persist(markets=[market])
            self.markets[proposal.market_id] = market

        logger.info(
            f"Market {proposal.market_id} finalized: winning_side={int(proposal.winning_side)} "
            f"A={proposal.total_tickets_side_a} B={proposal.total_tickets_side_b}"
        )
        return True, ""

    # =========================================================================
    # Claims
    # =========================================================================

    def submit_claim(self, proposal: ClaimProposal) -> Tuple[Optional[ClaimReceipt], str]:
        """
        Pay a claim and flip has_claimed.

        The fee is deducted here (ties excluded); the participant receives
        the net and the fee goes to the project treasury.

        Returns:
            (receipt, error_message)
        """
        with self._lock, self._transaction():
            self._refresh(proposal.market_id)
            market = self.markets.get(proposal.market_id)
            if market is None:
                return None, Rejection.MARKET_NOT_FOUND
            if not market.is_finalized:
                return None, Rejection.NOT_FINALIZED

            account = self.accounts[proposal.market_id].get(proposal.participant_id)
            if account is None:
                return None, Rejection.ACCOUNT_NOT_FOUND
            if account.has_claimed != proposal.expected_has_claimed or account.has_claimed:
                return None, Rejection.ALREADY_CLAIMED
            if proposal.claim_amount <= 0:
                return None, Rejection.INVALID_CLAIM_AMOUNT
            if proposal.claim_amount > self._treasury_balance(proposal.market_id):
                return None, Rejection.INSUFFICIENT_FUNDS

            split = self.fees.split(proposal.claim_amount, market.winning_side)
            receipt = ClaimReceipt(
                market_id=proposal.market_id,
                participant_id=proposal.participant_id,
                gross_amount=split.gross,
                fee_units=split.fee,
                paid_amount=split.net,
                claimed_at=self.clock(),
            )

            account = copy.deepcopy(account)
            account.has_claimed = True
            fee_ledger = copy.copy(self.fee_ledger)
            fee_ledger.record(split)

            self._persist(accounts=[account], receipts=[receipt], counters=fee_ledger.stats())
            self.accounts[proposal.market_id][proposal.participant_id] = account
            self.receipts[(proposal.market_id, proposal.participant_id)] = receipt
            self.fee_ledger = fee_ledger

        logger.info(
            f"Claim paid on {proposal.market_id} to {proposal.participant_id}: "
            f"gross={split.gross} fee={split.fee} net={split.net}"
        )
        return copy.deepcopy(receipt), ""

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_from_storage(self) -> None:
        """Load state from storage manager."""
        markets, accounts, receipts, counters = self.storage_manager.load_ledger_state()

        for data in markets:
            market = _market_from_bytes(data)
            self.markets[market.market_id] = market
            self.accounts.setdefault(market.market_id, {})

        for data in accounts:
            account = AccountState.from_bytes(data)
            self.accounts.setdefault(account.market_id, {})[account.participant_id] = account

        for data in receipts:
            receipt = ClaimReceipt.from_bytes(data)
            self.receipts[(receipt.market_id, receipt.participant_id)] = receipt

        self._set_counters(counters)

        logger.info(
            f"Loaded ledger: {len(self.markets)} markets, "
            f"{sum(len(a) for a in self.accounts.values())} accounts, {len(self.receipts)} claims"
        )

    def _set_counters(self, counters: Dict[str, int]) -> None:
        self.fee_ledger.total_fees_collected = counters.get("total_fees_collected", 0)
        self.fee_ledger.total_paid_out = counters.get("total_paid_out", 0)
        self.fee_ledger.claims_processed = counters.get("claims_processed", 0)

    def _transaction(self):
        """Database write transaction for one transition (no-op in memory)."""
        if not self.storage_manager:
            return nullcontext()
        return self.storage_manager.transaction()

    def _refresh(self, market_id: str, write: bool = True) -> None:
        """
        Replace the cached records of one market with the stored ones
        (caller holds the lock).

        Inside a transition this runs in the open write transaction, so the
        records validated are the records the write will replace.

        Raises:
            LedgerUnavailable: the database could not be read
        """
        if not self.storage_manager:
            return
        with self.storage_manager.transaction(write=write):
            market_data, accounts, receipts = self.storage_manager.load_market_records(market_id)
            counters = self.storage_manager.load_counters()

        if market_data is None:
            self.markets.pop(market_id, None)
            self.accounts.pop(market_id, None)
        else:
            self.markets[market_id] = _market_from_bytes(market_data)
            by_participant = {}
            for data in accounts:
                account = AccountState.from_bytes(data)
                by_participant[account.participant_id] = account
            self.accounts[market_id] = by_participant

        for key in [k for k in self.receipts if k[0] == market_id]:
            del self.receipts[key]
        for data in receipts:
            receipt = ClaimReceipt.from_bytes(data)
            self.receipts[(receipt.market_id, receipt.participant_id)] = receipt

        self._set_counters(counters)

    def _persist(
        self,
        markets: Optional[List[MarketState]] = None,
        accounts: Optional[List[AccountState]] = None,
        receipts: Optional[List[ClaimReceipt]] = None,
        counters: Optional[Dict[str, int]] = None,
    ) -> None:
        """
        Persist the records touched by one transition (caller holds the lock).

        Called before the records are installed in memory, so a storage
        failure leaves the ledger unchanged.

        Raises:
            LedgerUnavailable: the write could not be committed
        """
        if not self.storage_manager:
            return
        self.storage_manager.persist_ledger_update(
            markets={m.market_id: m.to_bytes() for m in markets or []},
            accounts={(a.market_id, a.participant_id): a.to_bytes() for a in accounts or []},
            receipts={(r.market_id, r.participant_id): r.to_bytes() for r in receipts or []},
            counters=counters,
        )

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return f"Ledger(markets={len(self.markets)}, claims={len(self.receipts)})"

    def stats(self) -> dict:
        """Get ledger statistics."""
        with self._lock:
            return {
                "market_count": len(self.markets),
                "finalized_count": sum(1 for m in self.markets.values() if m.is_finalized),
                "account_count": sum(len(a) for a in self.accounts.values()),
                **self.fee_ledger.stats(),
            }
