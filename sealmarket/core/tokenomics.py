"""
Tokenomics - Settlement fee schedule for sealmarket.

Manages:
- Basis-point fee calculation on winning claims
- Fee / net split of a gross claim (ties are refunded without a fee)
- Running totals of fees routed to the project treasury

The same schedule is used by the ledger when it pays a claim and by the
statistics path when it reports PnL, so both agree to the unit.
"""

from dataclasses import dataclass
from typing import Optional

from sealmarket.core.config import EngineConfig
from sealmarket.core.state.market import WinningSide
from sealmarket.utils.logger import get_logger

logger = get_logger("tokenomics")

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class FeeSplit:
    """Breakdown of a gross claim."""
    gross: int
    fee: int
    net: int


class FeeSchedule:
    """
    Basis-point settlement fee.

    All arithmetic is integer floor division; no floats are involved.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    @property
    def fee_basis_points(self) -> int:
        return self.config.fee_basis_points

    def fee_for(self, gross: int) -> int:
        """
        Fee owed on a gross amount.

        Args:
            gross: Gross amount in units

        Returns:
            floor(gross * bps / 10000)
        """
        if gross < 0:
            raise ValueError(f"gross must be >= 0, got {gross}")
        return gross * self.config.fee_basis_points // BPS_DENOMINATOR

    def split(self, gross: int, winning_side: int) -> FeeSplit:
        """
        Split a gross claim into (fee, net).

        A tie is a refund: no fee is charged.
        """
        if winning_side == WinningSide.TIE:
            return FeeSplit(gross=gross, fee=0, net=gross)
        fee = self.fee_for(gross)
        return FeeSplit(gross=gross, fee=fee, net=gross - fee)


class FeeLedger:
    """
    Running totals of fees collected per market.

    Owned by the ledger; updated only inside an accepted claim transition.
    """

    def __init__(self):
        self.total_fees_collected: int = 0
        self.total_paid_out: int = 0
        self.claims_processed: int = 0

    def record(self, split: FeeSplit) -> None:
        self.total_fees_collected += split.fee
        self.total_paid_out += split.net
        self.claims_processed += 1
        logger.debug(f"Fee recorded: gross={split.gross} fee={split.fee} net={split.net}")

    def stats(self) -> dict:
        """Get fee statistics."""
        return {
            "total_fees_collected": self.total_fees_collected,
            "total_paid_out": self.total_paid_out,
            "claims_processed": self.claims_processed,
        }
