import pytest

from sealmarket.core.config import EngineConfig
from sealmarket.core.engine import SettlementEngine
from sealmarket.core.errors import AlreadyClaimed, AlreadyFinalized
from sealmarket.core.state import Ledger
from sealmarket.core.storage import MetaStore, StorageManager


PRICE = 10_000_000
START = 1_700_000_000


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def temp_data_dir(tmp_path):
    """Create a temporary directory for engine data."""
    data_dir = tmp_path / "engine_data"
    data_dir.mkdir()
    return data_dir


def start_engine(data_dir, clock):
    config = EngineConfig(data_dir=data_dir)
    storage = StorageManager(data_dir=data_dir)
    ledger = Ledger(config=config, storage_manager=storage, clock=clock)
    return SettlementEngine(config, MetaStore(storage), ledger, clock=clock)


def test_ledger_persistence(temp_data_dir):
    """Markets, accounts, claims and fee counters survive a restart."""
    clock = Clock(START)

    # 1. Start engine A and run a market to settlement
    engine_a = start_engine(temp_data_dir, clock)
    engine_a.open_market("m1", "k1", "Yes", "No", PRICE, 60, title="Persisted")
    engine_a.buy_tickets("m1", "alice", "A", "a", 4)
    engine_a.buy_tickets("m1", "bob", "B", "b", 1)
    clock.now += 60
    engine_a.finalize("m1")
    engine_a.execute_claim("m1", {"participantId": "alice"})

    market_before = engine_a.ledger.get_market("m1")
    accounts_before = engine_a.ledger.get_accounts("m1")
    receipt_before = engine_a.ledger.get_receipt("m1", "alice")
    fees_before = engine_a.ledger.fee_ledger.stats()

    # 2. Stop engine A (drop references)
    del engine_a

    # 3. Start engine B on the same directory
    engine_b = start_engine(temp_data_dir, clock)

    assert engine_b.ledger.get_market("m1") == market_before
    assert engine_b.ledger.get_accounts("m1") == accounts_before
    assert engine_b.ledger.get_receipt("m1", "alice") == receipt_before
    assert engine_b.ledger.fee_ledger.stats() == fees_before
    assert engine_b.meta_store.resolve("k1").market_id == "m1"

    # 4. Settlement flags still hold
    with pytest.raises(AlreadyFinalized):
        engine_b.finalize("m1")
    with pytest.raises(AlreadyClaimed):
        engine_b.execute_claim("m1", {"participantId": "alice"})

    check = engine_b.check_claim("m1", {"participantId": "alice"})
    assert check["hasClaimed"] is True
    assert check["claimAmount"] == 50_000_000


def test_open_market_survives_restart(temp_data_dir):
    """Purchases continue after a restart and the reloaded key still decodes them."""
    clock = Clock(START)

    engine_a = start_engine(temp_data_dir, clock)
    engine_a.open_market("m1", "k1", "Yes", "No", PRICE, 60)
    engine_a.buy_tickets("m1", "alice", "A", "a", 2)
    del engine_a

    engine_b = start_engine(temp_data_dir, clock)
    engine_b.buy_tickets("k1", "alice", "B", "a", 1)
    engine_b.buy_tickets("m1", "bob", "B", "b", 2)

    account = engine_b.ledger.get_account("m1", "alice")
    assert len(account.choices) == 2
    assert account.total_tickets_owned == 3

    clock.now += 60
    result = engine_b.finalize("m1")
    assert result["totals"] == {"ticketsA": 2, "ticketsB": 3, "amountA": 20_000_000, "amountB": 30_000_000}
    assert result["winningSide"] == 2


def test_empty_directory_starts_clean(temp_data_dir):
    engine = start_engine(temp_data_dir, Clock(START))
    assert engine.ledger.markets == {}
    assert engine.meta_store.list_markets() == []
