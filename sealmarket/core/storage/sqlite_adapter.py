import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from sealmarket.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Bucketed Key-Value store for serialized ledger records
       (markets, accounts, claim receipts).
    2. Market metadata table (operator-private keys, written once).
    3. Settlement counters (fee totals).

    Connections run in autocommit mode; multi-statement work goes through
    `transaction()`, which several processes can share safely.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False,
                isolation_level=None,
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            self._conn_local.depth = 0
            # WAL lets readers proceed while a transition is being written
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one transaction.

        write=True takes the database write lock up front (BEGIN IMMEDIATE),
        so reads made inside the block cannot be invalidated by another
        writer before the block commits. Nested blocks join the outer one.
        """
        conn = self._get_conn()
        depth = self._conn_local.depth
        if depth == 0:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
        self._conn_local.depth = depth + 1
        try:
            yield conn
        except BaseException:
            self._conn_local.depth = depth
            if depth == 0:
                conn.execute("ROLLBACK")
            raise
        self._conn_local.depth = depth
        if depth == 0:
            conn.execute("COMMIT")

    def _init_schema(self):
        """Initialize database schema."""
        with self.transaction() as conn:
            # 1. KV Store
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    bucket TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value BLOB NOT NULL,
                    PRIMARY KEY (bucket, key)
                )
            """)

            # 2. Market metadata (one row per market)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS market_meta (
                    market_id TEXT PRIMARY KEY,
                    ledger_key_id TEXT NOT NULL,
                    encryption_key TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_meta_ledger_key ON market_meta(ledger_key_id);")

            # 3. Settlement counters
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settlement_state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    # =========================================================================
    # Key-Value Operations
    # =========================================================================

    def put(self, key: str, value: bytes, bucket: str = "default"):
        """Save a key-value pair."""
        self._get_conn().execute(
            "INSERT OR REPLACE INTO kv_store (bucket, key, value) VALUES (?, ?, ?)",
            (bucket, key, value)
        )

    def get(self, key: str, bucket: str = "default") -> Optional[bytes]:
        """Get value by key."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT value FROM kv_store WHERE bucket = ? AND key = ?", (bucket, key)
        )
        row = cursor.fetchone()
        return row['value'] if row else None

    def get_bucket(self, bucket: str, prefix: str = "") -> List[Tuple[str, bytes]]:
        """Get all (key, value) in a bucket whose key starts with prefix, ordered by key."""
        conn = self._get_conn()
        cursor = conn.execute(
            """
            SELECT key, value FROM kv_store
            WHERE bucket = ? AND substr(key, 1, ?) = ?
            ORDER BY key ASC
            """,
            (bucket, len(prefix), prefix)
        )
        return [(row['key'], row['value']) for row in cursor]

    # =========================================================================
    # Market Metadata
    # =========================================================================

    def insert_market_meta(self, market_id: str, ledger_key_id: str, encryption_key: str, created_at: int) -> bool:
        """
        Insert a metadata row unless the market already has one.

        Returns:
            True if the row was written, False if market_id was taken
        """
        cursor = self._get_conn().execute(
            """
            INSERT INTO market_meta (market_id, ledger_key_id, encryption_key, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (market_id) DO NOTHING
            """,
            (market_id, ledger_key_id, encryption_key, created_at)
        )
        return cursor.rowcount == 1

    def find_market_meta(self, ref: str) -> Optional[sqlite3.Row]:
        """Find a metadata row by market_id or ledger_key_id (market_id wins)."""
        conn = self._get_conn()
        cursor = conn.execute(
            """
            SELECT market_id, ledger_key_id, encryption_key, created_at
            FROM market_meta
            WHERE market_id = ? OR ledger_key_id = ?
            ORDER BY (market_id = ?) DESC
            LIMIT 1
            """,
            (ref, ref, ref)
        )
        return cursor.fetchone()

    def list_market_meta(self) -> List[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT market_id, ledger_key_id, encryption_key, created_at FROM market_meta ORDER BY created_at ASC, market_id ASC"
        )
        return list(cursor)

    # =========================================================================
    # Settlement State Operations
    # =========================================================================

    def get_state(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT value FROM settlement_state WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    def persist_transition(
        self,
        records: List[Tuple[str, str, bytes]],
        counters: List[Tuple[str, str]],
    ):
        """
        Atomically persist a ledger transition.

        Joins the caller's transaction when one is open.

        Args:
            records: [(bucket, key, value), ...] records written by the transition
            counters: [(key, value), ...] settlement counters updated by it
        """
        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO kv_store (bucket, key, value) VALUES (?, ?, ?)",
                records
            )
            conn.executemany(
                "INSERT OR REPLACE INTO settlement_state (key, value) VALUES (?, ?)",
                counters
            )
