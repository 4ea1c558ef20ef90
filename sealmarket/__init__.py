"""
sealmarket

Sealed-choice settlement engine for two-sided prediction markets:
- AES-GCM sealed side choices bound to their market
- Finalize-time tally cross-checked against ledger totals
- Pro-rata claims with at-most-once payout
- Fee-adjusted PnL leaderboard
"""

__version__ = "0.1.0"
