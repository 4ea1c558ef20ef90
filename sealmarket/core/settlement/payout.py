"""
Payout - Pro-rata claim computation for a finalized market.

Claim amount (gross):

    tie:     the participant's own total stake (refund)
    winner:  floor(pool * user_winning_tickets / winning_total_tickets)

Arithmetic is on Python integers, so no precision is lost however large the
pool. The ledger deducts the settlement fee from the gross when it pays
(ties excluded); the quote reports the same fee and net so displayed figures
match what is disbursed.

Idempotency:
    can_claim = not has_claimed and claim_amount > 0
The ledger's has_claimed flag is the only authority. The checks here are
advisory and the ledger re-checks them atomically.
"""

from dataclasses import asdict, dataclass
from typing import Optional

from sealmarket.core.codec.choice_codec import ChoiceCodec
from sealmarket.core.errors import AlreadyClaimed, NotFound, PreconditionError, TallyMismatch
from sealmarket.core.settlement.reveal import tickets_by_side
from sealmarket.core.state.ledger import ClaimProposal
from sealmarket.core.state.market import AccountState, MarketMeta, MarketState, WinningSide
from sealmarket.core.tokenomics import FeeSchedule
from sealmarket.utils.logger import get_logger

logger = get_logger("payout")


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class ClaimQuote:
    """Claim figures for one participant."""
    has_tickets: bool
    has_claimed: bool
    can_claim: bool
    is_tie: bool
    winning_side: int
    claim_amount: int
    user_winning_tickets: int
    winning_total_tickets: int
    total_pool: int
    fee_units: int = 0
    net_amount: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Decision Functions
# =============================================================================


def _check_finalized(market: MarketState) -> None:
    if not market.is_finalized:
        raise PreconditionError("Market is not finalized yet")
    if market.winning_side not in (WinningSide.TIE, WinningSide.A, WinningSide.B):
        raise TallyMismatch(f"Invalid winning side on ledger: {market.winning_side}")
    if market.total_amount_units <= 0:
        raise PreconditionError("Total pool is zero")


def quote_claim(
    market: MarketState,
    account: Optional[AccountState],
    meta: MarketMeta,
    codec: ChoiceCodec,
    fees: FeeSchedule,
) -> ClaimQuote:
    """
    Compute what a participant can claim.

    A missing account is not an error: the quote simply reports nothing
    to claim.

    Args:
        market: Finalized market state
        account: Participant's account, or None if they never bought
        meta: Market metadata (decoding key)
        codec: Choice codec
        fees: Fee schedule applied at payout

    Returns:
        ClaimQuote

    Raises:
        PreconditionError: market not finalized or empty pool
        TallyMismatch: winning side recorded with zero tickets
    """
    _check_finalized(market)

    winning_side = WinningSide(market.winning_side)
    is_tie = winning_side == WinningSide.TIE
    winning_total = market.winning_total_tickets()
    pool = market.total_amount_units

    if account is None:
        return ClaimQuote(
            has_tickets=False,
            has_claimed=False,
            can_claim=False,
            is_tie=is_tie,
            winning_side=int(winning_side),
            claim_amount=0,
            user_winning_tickets=0,
            winning_total_tickets=winning_total,
            total_pool=pool,
        )

    if is_tie:
        claim = account.total_amount_units
        user_winning = 0
    else:
        if winning_total <= 0:
            logger.error(f"Market {market.market_id}: winning side {int(winning_side)} has zero tickets")
            raise TallyMismatch("Winning side has zero tickets")
        counts = tickets_by_side(account, codec, meta.key_bytes, meta.market_id)
        user_winning = counts[winning_side]
        claim = pool * user_winning // winning_total

    split = fees.split(claim, winning_side)
    return ClaimQuote(
        has_tickets=account.total_amount_units > 0,
        has_claimed=account.has_claimed,
        can_claim=not account.has_claimed and claim > 0,
        is_tie=is_tie,
        winning_side=int(winning_side),
        claim_amount=claim,
        user_winning_tickets=user_winning,
        winning_total_tickets=winning_total,
        total_pool=pool,
        fee_units=split.fee,
        net_amount=split.net,
    )


def plan_claim(
    market: MarketState,
    account: Optional[AccountState],
    meta: MarketMeta,
    codec: ChoiceCodec,
    fees: FeeSchedule,
) -> ClaimProposal:
    """
    Decide the payout transition for one participant.

    Returns:
        ClaimProposal conditioned on has_claimed == False

    Raises:
        PreconditionError: not finalized, no winning tickets, zero claim
        NotFound: participant has no account
        AlreadyClaimed: participant already claimed
        TallyMismatch: winning side recorded with zero tickets
    """
    _check_finalized(market)
    if account is None:
        raise NotFound("UserTickets account not found")
    if account.has_claimed:
        raise AlreadyClaimed("User already claimed")

    quote = quote_claim(market, account, meta, codec, fees)

    if quote.is_tie:
        if quote.claim_amount <= 0:
            raise PreconditionError("User has no funds to refund")
    else:
        if quote.user_winning_tickets <= 0:
            raise PreconditionError("User has no winning tickets")
        if quote.claim_amount <= 0:
            raise PreconditionError("Claim amount is zero")

    return ClaimProposal(
        market_id=market.market_id,
        participant_id=account.participant_id,
        claim_amount=quote.claim_amount,
        winning_side=quote.winning_side,
        expected_has_claimed=False,
    )


__all__ = [
    "ClaimQuote",
    "quote_claim",
    "plan_claim",
]
