"""
Settlement Module.

Pure decision functions over ledger records:
- Tally: finalize-time side totals and winning side
- Payout: pro-rata claim quote and claim proposal
- Stats: PnL rows, ranking and pagination
"""

from sealmarket.core.settlement.reveal import reveal_choices, side_totals, tickets_by_side
from sealmarket.core.settlement.tally import (
    TallyResult,
    determine_winning_side,
    check_finalize_preconditions,
    tally_market,
    plan_finalize,
)
from sealmarket.core.settlement.payout import ClaimQuote, quote_claim, plan_claim
from sealmarket.core.settlement.stats import (
    Outcome,
    StatsRow,
    StatsPage,
    compute_pnl,
    classify,
    build_rows,
    paginate,
)

__all__ = [
    # Reveal
    "reveal_choices",
    "side_totals",
    "tickets_by_side",
    # Tally
    "TallyResult",
    "determine_winning_side",
    "check_finalize_preconditions",
    "tally_market",
    "plan_finalize",
    # Payout
    "ClaimQuote",
    "quote_claim",
    "plan_claim",
    # Stats
    "Outcome",
    "StatsRow",
    "StatsPage",
    "compute_pnl",
    "classify",
    "build_rows",
    "paginate",
]
