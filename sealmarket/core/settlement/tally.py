"""
Tally - Finalize-time reconstruction of side totals.

At close the operator opens every sealed choice of a market and rebuilds
the per-side ticket and stake totals. Those totals must match, to the unit,
the aggregate totals the ledger recorded at purchase time:

    sum(decoded tickets)  == market.total_tickets
    sum(decoded amounts)  == market.total_amount_units

A mismatch means corruption, a key mix-up or an invalid choice admitted
upstream. The tally then refuses to propose anything (fail closed).

Winning side:
    tickets_a == tickets_b  ->  TIE (0)
    otherwise               ->  the side with strictly more tickets

plan_finalize is pure: it takes ledger records and returns a proposal. The
engine submits the proposal; the ledger re-validates it.
"""

from dataclasses import dataclass
from typing import Iterable

from sealmarket.core.codec.choice_codec import ChoiceCodec
from sealmarket.core.errors import AlreadyFinalized, PreconditionError, TallyMismatch
from sealmarket.core.settlement.reveal import side_totals
from sealmarket.core.state.ledger import FinalizeProposal
from sealmarket.core.state.market import AccountState, MarketMeta, MarketState, WinningSide
from sealmarket.utils.logger import get_logger

logger = get_logger("tally")


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class TallyResult:
    """Decoded side totals and the resulting outcome."""
    tickets_a: int
    tickets_b: int
    amount_a: int
    amount_b: int
    winning_side: WinningSide

    @property
    def total_tickets(self) -> int:
        return self.tickets_a + self.tickets_b

    @property
    def total_amount(self) -> int:
        return self.amount_a + self.amount_b

    @property
    def is_tie(self) -> bool:
        return self.winning_side == WinningSide.TIE


# =============================================================================
# Decision Functions
# =============================================================================


def determine_winning_side(tickets_a: int, tickets_b: int) -> WinningSide:
    """TIE on equal tickets, otherwise the strictly larger side."""
    if tickets_a == tickets_b:
        return WinningSide.TIE
    return WinningSide.A if tickets_a > tickets_b else WinningSide.B


def check_finalize_preconditions(market: MarketState, now: int) -> None:
    """
    Raise unless the market can be finalized at `now`.

    Raises:
        AlreadyFinalized: market already finalized (409)
        PreconditionError: not ended, no tickets or empty pool (400)
    """
    if market.is_finalized:
        raise AlreadyFinalized("Market already finalized")
    if not market.has_ended(now):
        raise PreconditionError("Market has not ended yet")
    if market.total_tickets <= 0:
        raise PreconditionError("Market has no tickets")
    if market.total_amount_units <= 0:
        raise PreconditionError("Market pool is empty")


def tally_market(
    market: MarketState,
    accounts: Iterable[AccountState],
    meta: MarketMeta,
    codec: ChoiceCodec,
) -> TallyResult:
    """
    Decode all choices of a market and cross-check against ledger totals.

    Raises:
        TallyMismatch: decoded sums differ from the ledger's totals
    """
    tickets_a, tickets_b, amount_a, amount_b = side_totals(
        accounts, codec, meta.key_bytes, meta.market_id, market.ticket_price_units
    )

    sum_tickets = tickets_a + tickets_b
    sum_amount = amount_a + amount_b
    if sum_tickets != market.total_tickets or sum_amount != market.total_amount_units:
        logger.error(
            f"Tally mismatch on {market.market_id}: decoded {sum_tickets} tickets / {sum_amount} units, "
            f"ledger has {market.total_tickets} / {market.total_amount_units}"
        )
        raise TallyMismatch("Decoded totals do not match ledger totals")

    result = TallyResult(
        tickets_a=tickets_a,
        tickets_b=tickets_b,
        amount_a=amount_a,
        amount_b=amount_b,
        winning_side=determine_winning_side(tickets_a, tickets_b),
    )
    logger.debug(f"Tally {market.market_id}: {result}")
    return result


def plan_finalize(
    market: MarketState,
    accounts: Iterable[AccountState],
    meta: MarketMeta,
    codec: ChoiceCodec,
    now: int,
) -> FinalizeProposal:
    """
    Decide the finalize transition for a market.

    Args:
        market: Ledger market state
        accounts: Every account of the market
        meta: Metadata record holding the key to decode with and reveal
        codec: Choice codec
        now: Current unix seconds

    Returns:
        FinalizeProposal ready for Ledger.submit_finalize

    Raises:
        AlreadyFinalized, PreconditionError, TallyMismatch
    """
    check_finalize_preconditions(market, now)
    result = tally_market(market, accounts, meta, codec)

    return FinalizeProposal(
        market_id=market.market_id,
        total_tickets_side_a=result.tickets_a,
        total_tickets_side_b=result.tickets_b,
        total_amount_side_a=result.amount_a,
        total_amount_side_b=result.amount_b,
        winning_side=int(result.winning_side),
        encryption_key=meta.encryption_key,
    )


__all__ = [
    "TallyResult",
    "determine_winning_side",
    "check_finalize_preconditions",
    "tally_market",
    "plan_finalize",
]
