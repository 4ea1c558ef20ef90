"""
Stats - Post-settlement PnL leaderboard.

For every account of a finalized market:

    stake_a, stake_b  = decoded tickets per side x ticket price
    tie               -> pnl = 0
    no winning stake  -> pnl = -total_stake
    otherwise:
        gross = floor(winning_stake * pool / winning_side_amount)
        fee   = floor(gross * bps / 10000)
        pnl   = gross - fee - total_stake

Outcome: TIE if the market tied, else WIN / LOSE / NEUTRAL by pnl sign.

Ordering is a total order so pages are stable:
    outcome rank (WIN, TIE, NEUTRAL, LOSE), pnl desc, participant id asc
"""

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, List, Optional

from sealmarket.core.codec.choice_codec import ChoiceCodec
from sealmarket.core.config import EngineConfig
from sealmarket.core.errors import PreconditionError
from sealmarket.core.settlement.reveal import tickets_by_side
from sealmarket.core.state.market import AccountState, MarketMeta, MarketState, Side, WinningSide
from sealmarket.core.tokenomics import FeeSchedule
from sealmarket.utils.logger import get_logger

logger = get_logger("stats")


# =============================================================================
# Data Structures
# =============================================================================


class Outcome(str, Enum):
    WIN = "WIN"
    TIE = "TIE"
    NEUTRAL = "NEUTRAL"
    LOSE = "LOSE"

    @property
    def rank(self) -> int:
        return _OUTCOME_RANK[self]


_OUTCOME_RANK = {
    Outcome.WIN: 0,
    Outcome.TIE: 1,
    Outcome.NEUTRAL: 2,
    Outcome.LOSE: 3,
}


@dataclass(frozen=True)
class StatsRow:
    participant_id: str
    tickets_a: int
    tickets_b: int
    stake_a: int
    stake_b: int
    total_stake_units: int
    pnl_units: int
    outcome: Outcome
    has_claimed: bool

    def sort_key(self):
        return (self.outcome.rank, -self.pnl_units, self.participant_id)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


@dataclass(frozen=True)
class StatsPage:
    rows: List[StatsRow]
    page: int
    page_size: int
    total_pages: int
    total_rows: int


# =============================================================================
# PnL
# =============================================================================


def compute_pnl(
    winning_side: int,
    stake_a: int,
    stake_b: int,
    total_stake: int,
    pool: int,
    winning_side_amount: int,
    fees: FeeSchedule,
) -> int:
    """
    Fee-adjusted profit or loss of one participant, in units.

    Args:
        winning_side: 0 (tie), 1 or 2
        stake_a: Decoded stake on side A
        stake_b: Decoded stake on side B
        total_stake: Participant's recorded total stake
        pool: Market pool (total amount)
        winning_side_amount: Market's recorded stake on the winning side
        fees: Fee schedule

    Returns:
        net - total_stake (0 on a tie)
    """
    if winning_side == WinningSide.TIE:
        return 0

    user_stake = stake_a if winning_side == WinningSide.A else stake_b
    if user_stake == 0 or winning_side_amount == 0:
        return -total_stake

    gross = user_stake * pool // winning_side_amount
    return gross - fees.fee_for(gross) - total_stake


def classify(winning_side: int, pnl: int) -> Outcome:
    if winning_side == WinningSide.TIE:
        return Outcome.TIE
    if pnl > 0:
        return Outcome.WIN
    if pnl < 0:
        return Outcome.LOSE
    return Outcome.NEUTRAL


# =============================================================================
# Aggregation
# =============================================================================


def build_rows(
    market: MarketState,
    accounts: Iterable[AccountState],
    meta: MarketMeta,
    codec: ChoiceCodec,
    fees: FeeSchedule,
) -> List[StatsRow]:
    """
    Compute the ranked stats rows of a finalized market.

    Raises:
        PreconditionError: market not finalized
    """
    if not market.is_finalized:
        raise PreconditionError("Market not finalized yet")

    key = meta.key_bytes
    price = market.ticket_price_units
    winning_side = int(market.winning_side)
    winning_amount = market.winning_total_amount()

    rows = []
    for account in accounts:
        counts = tickets_by_side(account, codec, key, meta.market_id)
        stake_a = counts[Side.A] * price
        stake_b = counts[Side.B] * price
        pnl = compute_pnl(
            winning_side,
            stake_a,
            stake_b,
            account.total_amount_units,
            market.total_amount_units,
            winning_amount,
            fees,
        )
        rows.append(StatsRow(
            participant_id=account.participant_id,
            tickets_a=counts[Side.A],
            tickets_b=counts[Side.B],
            stake_a=stake_a,
            stake_b=stake_b,
            total_stake_units=account.total_amount_units,
            pnl_units=pnl,
            outcome=classify(winning_side, pnl),
            has_claimed=account.has_claimed,
        ))

    rows.sort(key=StatsRow.sort_key)
    logger.debug(f"Stats for {market.market_id}: {len(rows)} rows")
    return rows


def paginate(
    rows: List[StatsRow],
    page: int = 1,
    page_size: Optional[int] = None,
    config: Optional[EngineConfig] = None,
) -> StatsPage:
    """
    Slice ranked rows into a page.

    page is raised to 1 and clamped to the last page; page_size is clamped
    to [1, max_page_size].
    """
    config = config or EngineConfig()
    if page_size is None:
        page_size = config.default_page_size
    page_size = min(config.max_page_size, max(1, page_size))
    page = max(1, page)

    total_rows = len(rows)
    total_pages = max(1, math.ceil(total_rows / page_size))
    page = min(page, total_pages)
    start = (page - 1) * page_size

    return StatsPage(
        rows=rows[start:start + page_size],
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        total_rows=total_rows,
    )


__all__ = [
    "Outcome",
    "StatsRow",
    "StatsPage",
    "compute_pnl",
    "classify",
    "build_rows",
    "paginate",
]
