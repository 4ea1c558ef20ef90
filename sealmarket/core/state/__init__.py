"""Market records and the settlement ledger"""
from sealmarket.core.state.market import (
    Side,
    WinningSide,
    MarketMeta,
    MarketState,
    AccountState,
    Choice,
)
from sealmarket.core.state.ledger import (
    Ledger,
    Rejection,
    FinalizeProposal,
    ClaimProposal,
    ClaimReceipt,
)

__all__ = [
    "Side",
    "WinningSide",
    "MarketMeta",
    "MarketState",
    "AccountState",
    "Choice",
    "Ledger",
    "Rejection",
    "FinalizeProposal",
    "ClaimProposal",
    "ClaimReceipt",
]
