"""
Metadata Store - operator-private market records.

Maps a market to its symmetric encryption key and its ledger address. Rows
are written once at registration and never replaced; they are looked
up by either identifier afterwards.
"""

import time
from typing import List, Optional

from sealmarket.core.errors import InvalidRequest, MarketExists, NotFound
from sealmarket.core.state.market import MarketMeta
from sealmarket.core.storage.storage_manager import StorageManager
from sealmarket.crypto import generate_key_hex, key_fingerprint
from sealmarket.utils.logger import get_logger
from sealmarket.utils.validation import validate_encryption_key_hex, validate_identifier

logger = get_logger("meta_store")


def _normalize_key(encryption_key: str) -> str:
    return encryption_key.lower().removeprefix("0x")


class MetaStore:
    """
    SQLite-backed MarketMeta lookup.

    Attributes:
        storage_manager: Shared persistence manager
    """

    def __init__(self, storage_manager: StorageManager):
        self.storage_manager = storage_manager

    def register(
        self,
        market_id: str,
        ledger_key_id: str,
        encryption_key: Optional[str] = None,
    ) -> MarketMeta:
        """
        Register a market's metadata. Records are immutable once written.

        Registering the same market again is a no-op returning the stored
        record, as long as it names the same ledger key id and either no key
        or the stored key.

        Args:
            market_id: Ledger market identifier
            ledger_key_id: Secondary ledger address
            encryption_key: 64-char hex key; generated when omitted

        Returns:
            The stored MarketMeta

        Raises:
            InvalidRequest: malformed identifier or key
            MarketExists: market_id already registered with other values
        """
        encryption_key = self._check_request(market_id, ledger_key_id, encryption_key)
        self.ensure_registrable(market_id, ledger_key_id, encryption_key)

        meta = MarketMeta(
            market_id=market_id,
            ledger_key_id=ledger_key_id,
            encryption_key=encryption_key or generate_key_hex(),
            created_at=int(time.time()),
        )
        inserted = self.storage_manager.insert_market_meta(
            meta.market_id, meta.ledger_key_id, meta.encryption_key, meta.created_at
        )
        if not inserted:
            # Lost a concurrent registration; the winner's row stands
            self.ensure_registrable(market_id, ledger_key_id, encryption_key)
            return self.resolve(market_id)

        logger.info(
            f"Registered market {market_id} (ledger key {ledger_key_id}, "
            f"key fp {key_fingerprint(meta.key_bytes)})"
        )
        return meta

    def ensure_registrable(
        self,
        market_id: str,
        ledger_key_id: str,
        encryption_key: Optional[str] = None,
    ) -> None:
        """
        Raise MarketExists if registering these values would alter a stored record.
        """
        stored = self.find(market_id)
        if stored is None or stored.market_id != market_id:
            return
        if stored.ledger_key_id != ledger_key_id:
            raise MarketExists(f"Market {market_id} is already registered with another ledger key id")
        if encryption_key is not None and _normalize_key(encryption_key) != stored.encryption_key:
            logger.warning(f"Refused key replacement for market {market_id}")
            raise MarketExists(f"Market {market_id} is already registered; its key cannot be replaced")

    @staticmethod
    def _check_request(market_id: str, ledger_key_id: str, encryption_key: Optional[str]) -> Optional[str]:
        for value, name in ((market_id, "market_id"), (ledger_key_id, "ledger_key_id")):
            valid, err = validate_identifier(value, name)
            if not valid:
                raise InvalidRequest(err)
        if encryption_key is None:
            return None
        valid, err = validate_encryption_key_hex(encryption_key)
        if not valid:
            raise InvalidRequest(err)
        return _normalize_key(encryption_key)

    def find(self, ref: str) -> Optional[MarketMeta]:
        """Look up by market_id or ledger_key_id."""
        row = self.storage_manager.find_market_meta(ref)
        if row is None:
            return None
        market_id, ledger_key_id, encryption_key, created_at = row
        return MarketMeta(
            market_id=market_id,
            ledger_key_id=ledger_key_id,
            encryption_key=encryption_key,
            created_at=created_at,
        )

    def resolve(self, ref: str) -> MarketMeta:
        """
        Look up by market_id or ledger_key_id.

        Raises:
            NotFound: no record for either identifier
        """
        meta = self.find(ref)
        if meta is None:
            logger.error(f"Market meta not found for {ref}")
            raise NotFound("Market meta not found")
        return meta

    def list_markets(self) -> List[MarketMeta]:
        return [
            MarketMeta(market_id=m, ledger_key_id=k, encryption_key=e, created_at=c)
            for m, k, e, c in self.storage_manager.list_market_meta()
        ]
