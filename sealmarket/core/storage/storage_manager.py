import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from sealmarket.core.errors import LedgerUnavailable
from sealmarket.core.storage.sqlite_adapter import SQLiteAdapter
from sealmarket.utils.logger import get_logger

logger = get_logger("storage.manager")

BUCKET_MARKETS = "markets"
BUCKET_ACCOUNTS = "accounts"
BUCKET_RECEIPTS = "receipts"

COUNTER_NAMES = ("total_fees_collected", "total_paid_out", "claims_processed")


def account_key(market_id: str, participant_id: str) -> str:
    return f"{market_id}/{participant_id}"


class StorageManager:
    """
    Manages persistent storage for the engine.

    Coordinates data persistence using SQLite adapter.
    Handles:
    - Ledger records (markets, accounts, claim receipts)
    - Market metadata (private keys, ledger addressing)
    - Settlement counters (fee totals)
    """

    def __init__(self, data_dir: Path, db_name: str = "sealmarket.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[None]:
        """
        Hold one database transaction for the block.

        Raises:
            LedgerUnavailable: the database could not be locked or committed
        """
        try:
            with self.adapter.transaction(write=write):
                yield
        except sqlite3.OperationalError as e:
            logger.error(f"Ledger transaction failed: {e}")
            raise LedgerUnavailable(f"Ledger storage unavailable: {e}") from e

    # =========================================================================
    # Market Metadata
    # =========================================================================

    def insert_market_meta(self, market_id: str, ledger_key_id: str, encryption_key: str, created_at: int) -> bool:
        """Write a metadata row once. Returns False if market_id already has one."""
        return self.adapter.insert_market_meta(market_id, ledger_key_id, encryption_key, created_at)

    def find_market_meta(self, ref: str) -> Optional[Tuple[str, str, str, int]]:
        row = self.adapter.find_market_meta(ref)
        if row is None:
            return None
        return row["market_id"], row["ledger_key_id"], row["encryption_key"], row["created_at"]

    def list_market_meta(self) -> List[Tuple[str, str, str, int]]:
        return [
            (row["market_id"], row["ledger_key_id"], row["encryption_key"], row["created_at"])
            for row in self.adapter.list_market_meta()
        ]

    # =========================================================================
    # Ledger Support
    # =========================================================================

    def persist_ledger_update(
        self,
        markets: Optional[Dict[str, bytes]] = None,
        accounts: Optional[Dict[Tuple[str, str], bytes]] = None,
        receipts: Optional[Dict[Tuple[str, str], bytes]] = None,
        counters: Optional[Dict[str, int]] = None,
    ):
        """
        Atomically persist every record touched by one ledger transition.

        Raises:
            LedgerUnavailable: the database refused the write
        """
        records = []
        for market_id, data in (markets or {}).items():
            records.append((BUCKET_MARKETS, market_id, data))
        for (market_id, participant_id), data in (accounts or {}).items():
            records.append((BUCKET_ACCOUNTS, account_key(market_id, participant_id), data))
        for (market_id, participant_id), data in (receipts or {}).items():
            records.append((BUCKET_RECEIPTS, account_key(market_id, participant_id), data))

        state = [(key, str(value)) for key, value in (counters or {}).items()]
        try:
            self.adapter.persist_transition(records, state)
        except sqlite3.OperationalError as e:
            logger.error(f"Ledger write failed: {e}")
            raise LedgerUnavailable(f"Ledger storage unavailable: {e}") from e

    def load_counters(self) -> Dict[str, int]:
        counters = {}
        for name in COUNTER_NAMES:
            value = self.adapter.get_state(name)
            if value is not None:
                counters[name] = int(value)
        return counters

    def load_market_records(self, market_id: str) -> Tuple[Optional[bytes], List[bytes], List[bytes]]:
        """
        Load the stored records of one market.

        Returns:
            (market or None, accounts, receipts)
        """
        prefix = account_key(market_id, "")
        market = self.adapter.get(market_id, bucket=BUCKET_MARKETS)
        accounts = [value for _, value in self.adapter.get_bucket(BUCKET_ACCOUNTS, prefix)]
        receipts = [value for _, value in self.adapter.get_bucket(BUCKET_RECEIPTS, prefix)]
        return market, accounts, receipts

    def load_ledger_state(self) -> Tuple[List[bytes], List[bytes], List[bytes], Dict[str, int]]:
        """
        Load full ledger state.

        Returns:
            (markets, accounts, receipts, counters)
            markets / accounts / receipts: serialized records
            counters: settlement counters by name
        """
        markets = [value for _, value in self.adapter.get_bucket(BUCKET_MARKETS)]
        accounts = [value for _, value in self.adapter.get_bucket(BUCKET_ACCOUNTS)]
        receipts = [value for _, value in self.adapter.get_bucket(BUCKET_RECEIPTS)]
        return markets, accounts, receipts, self.load_counters()
