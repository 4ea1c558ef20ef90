"""
Settlement Flow Tests - Full market lifecycle through the engine.

Tests verify:
1. Clear winner, tie, corrupt choice and fee math scenarios
2. Conservation after finalize
3. Claim idempotency
4. Fee consistency between quote, ledger receipt and stats
5. Wire shapes and error statuses
"""

import pytest

from sealmarket.core.config import EngineConfig
from sealmarket.core.engine import SettlementEngine
from sealmarket.core.errors import (
    AlreadyClaimed,
    AlreadyFinalized,
    InvalidKeyError,
    InvalidRequest,
    MarketExists,
    NotFound,
    PreconditionError,
    SettlementError,
    TallyMismatch,
)
from sealmarket.core.state import Ledger
from sealmarket.core.storage import MetaStore, StorageManager
from sealmarket.crypto import NONCE_SIZE, b64decode, b64encode


PRICE = 10_000_000
START = 1_700_000_000
DURATION = 3_600


class ManualClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def engine(tmp_path, clock):
    config = EngineConfig(data_dir=tmp_path)
    storage = StorageManager(config.data_dir)
    ledger = Ledger(config=config, storage_manager=storage, clock=clock)
    engine = SettlementEngine(config, MetaStore(storage), ledger, clock=clock)
    engine.open_market("m1", "k1", "Yes", "No", PRICE, DURATION, title="Will it rain?")
    return engine


def _close(engine, clock):
    clock.advance(DURATION)
    return engine.finalize("m1")


# =============================================================================
# Scenarios
# =============================================================================


class TestClearWinner:
    """X buys 10 on A, Y buys 5 on B."""

    @pytest.fixture
    def settled(self, engine, clock):
        engine.buy_tickets("m1", "X", "A", "x-secret", 10)
        engine.buy_tickets("k1", "Y", "B", "y-secret", 5)
        return engine, _close(engine, clock)

    def test_finalize(self, settled):
        engine, result = settled
        assert result == {
            "finalized": True,
            "alreadyFinalized": False,
            "winningSide": 1,
            "isTie": False,
            "totals": {"ticketsA": 10, "ticketsB": 5, "amountA": 100_000_000, "amountB": 50_000_000},
        }
        market = engine.ledger.get_market("m1")
        assert market.total_amount_units == 150_000_000
        assert market.revealed_encryption_key == engine.meta_store.resolve("m1").encryption_key

    def test_conservation(self, settled):
        engine, _ = settled
        market = engine.ledger.get_market("m1")
        assert market.total_tickets_side_a + market.total_tickets_side_b == market.total_tickets
        assert market.total_amount_side_a + market.total_amount_side_b == market.total_amount_units

    def test_winner_claim_check(self, settled):
        engine, _ = settled
        check = engine.check_claim("m1", {"participantId": "X"})
        assert check["claimAmount"] == 150_000_000
        assert check["canClaim"] is True
        assert check["userWinningTickets"] == 10
        assert check["winningTotalTickets"] == 10
        assert check["totalPool"] == 150_000_000

    def test_loser_claim_check(self, settled):
        engine, _ = settled
        check = engine.check_claim("m1", {"participantId": "Y"})
        assert check["canClaim"] is False
        assert check["claimAmount"] == 0
        assert check["hasTickets"] is True

    def test_absent_participant_check(self, settled):
        engine, _ = settled
        check = engine.check_claim("m1", {"participantId": "nobody"})
        assert check["hasTickets"] is False
        assert check["canClaim"] is False

    def test_execute_and_idempotency(self, settled):
        engine, _ = settled
        result = engine.execute_claim("m1", {"participantId": "X"})
        assert result["proposal"] == {
            "marketId": "m1",
            "participantId": "X",
            "claimAmount": 150_000_000,
            "winningSide": 1,
            "expectedHasClaimed": False,
        }
        assert result["receipt"]["paidAmount"] == 142_500_000
        assert result["hasClaimed"] is True

        check = engine.check_claim("m1", {"participantId": "X"})
        assert check["hasClaimed"] is True
        assert check["canClaim"] is False

        with pytest.raises(AlreadyClaimed) as exc:
            engine.execute_claim("m1", {"participantId": "X"})
        assert exc.value.status == 409

    def test_loser_execute_rejected(self, settled):
        engine, _ = settled
        with pytest.raises(PreconditionError, match="no winning tickets"):
            engine.execute_claim("m1", {"participantId": "Y"})

    def test_no_account_execute(self, settled):
        engine, _ = settled
        with pytest.raises(NotFound):
            engine.execute_claim("m1", {"participantId": "nobody"})

    def test_second_finalize_conflicts(self, settled):
        engine, _ = settled
        with pytest.raises(AlreadyFinalized) as exc:
            engine.finalize("m1")
        assert exc.value.status == 409


class TestTie:
    """Both sides hold 10 tickets."""

    def test_tie_refunds(self, engine, clock):
        engine.buy_tickets("m1", "P", "a", "p", 10)
        engine.buy_tickets("m1", "Q", 2, "q", 10)
        result = _close(engine, clock)
        assert result["winningSide"] == 0
        assert result["isTie"] is True
        assert result["totals"]["amountA"] == result["totals"]["amountB"] == 100_000_000

        for participant in ("P", "Q"):
            check = engine.check_claim("m1", {"participantId": participant})
            assert check["isTie"] is True
            assert check["claimAmount"] == 100_000_000
            assert check["feeUnits"] == 0
            receipt = engine.execute_claim("m1", {"participantId": participant})["receipt"]
            assert receipt["paidAmount"] == 100_000_000

        assert engine.ledger.treasury_balance("m1") == 0
        rows = engine.market_stats("m1")["rows"]
        assert [r["outcome"] for r in rows] == ["TIE", "TIE"]


class TestCorruptChoice:
    """One of three choices has a flipped authentication tag."""

    def test_finalize_refuses_and_market_stays_open(self, engine, clock):
        engine.buy_tickets("m1", "X", "A", "x", 2)
        engine.buy_tickets("m1", "Y", "B", "y", 1)
        engine.buy_tickets("m1", "Z", "A", "z", 1)

        account = engine.ledger.get_account("m1", "Z")
        raw = bytearray(b64decode(account.choices[0].encrypted_payload))
        raw[NONCE_SIZE] ^= 0x01
        account.choices[0].encrypted_payload = b64encode(bytes(raw))
        engine.ledger.storage_manager.persist_ledger_update(accounts={("m1", "Z"): account.to_bytes()})

        clock.advance(DURATION)
        with pytest.raises(TallyMismatch) as exc:
            engine.finalize("m1")
        assert exc.value.status == 500
        assert not engine.ledger.get_market("m1").is_finalized


class TestFeeMath:
    """Quote, ledger receipt and stats agree on the fee."""

    def test_fee_consistency(self, engine, clock):
        engine.buy_tickets("m1", "W", "A", "w", 10)
        engine.buy_tickets("m1", "W", "B", "w", 5)
        engine.buy_tickets("m1", "V", "A", "v", 10)
        engine.buy_tickets("m1", "L", "B", "l", 10)
        _close(engine, clock)

        check = engine.check_claim("m1", {"participantId": "W"})
        # pool 350M, W holds 10 of 20 winning tickets: gross 175M
        assert check["claimAmount"] == 175_000_000
        assert check["feeUnits"] == 8_750_000
        assert check["netAmount"] == 166_250_000

        stats = {r["participantId"]: r for r in engine.market_stats("m1")["rows"]}
        assert stats["W"]["totalStakeUnits"] == 150_000_000
        assert stats["W"]["pnlUnits"] == 16_250_000
        assert stats["W"]["outcome"] == "WIN"
        assert stats["L"]["pnlUnits"] == -100_000_000

        receipt = engine.execute_claim("m1", {"participantId": "W"})["receipt"]
        assert receipt["paidAmount"] == check["netAmount"]
        assert receipt["paidAmount"] == stats["W"]["pnlUnits"] + stats["W"]["totalStakeUnits"]
        assert engine.ledger.fee_ledger.total_fees_collected == 8_750_000
        assert engine.ledger.treasury_balance("m1") == 175_000_000

    def test_stats_marks_claimed(self, engine, clock):
        engine.buy_tickets("m1", "W", "A", "w", 2)
        engine.buy_tickets("m1", "L", "B", "l", 1)
        _close(engine, clock)
        engine.execute_claim("m1", {"participantId": "W"})
        rows = engine.market_stats("m1", {"page": 1, "pageSize": 1})
        assert rows["totalRows"] == 2
        assert rows["totalPages"] == 2
        assert rows["rows"][0]["participantId"] == "W"
        assert rows["rows"][0]["hasClaimed"] is True


# =============================================================================
# Request Handling
# =============================================================================


class TestEncode:
    """Encode handler behavior."""

    def test_encode_response(self, engine, clock):
        result = engine.encode_choice("m1", {"side": "B", "secret": "s"})
        assert set(result) == {"encodedChoice", "ledgerKeyId", "encodeTimestamp"}
        assert result["ledgerKeyId"] == "k1"
        assert result["encodeTimestamp"] == clock.now

    def test_encode_by_ledger_key_seals_market_id(self, engine):
        encoded = engine.encode_choice("k1", {"side": 1, "bindingSecret": "s"})["encodedChoice"]
        meta = engine.meta_store.resolve("m1")
        decoded = engine.codec.decode_payload(encoded, meta.key_bytes, "m1")
        assert decoded.market_id == "m1"

    @pytest.mark.parametrize("body", [
        {"side": "C", "secret": "s"},
        {"side": "1", "secret": "s"},
        {"side": True, "secret": "s"},
        {"side": "A"},
        {"side": "A", "secret": ""},
        {"secret": "s"},
    ])
    def test_bad_request(self, engine, body):
        with pytest.raises(InvalidRequest) as exc:
            engine.encode_choice("m1", body)
        assert exc.value.status == 400

    def test_unknown_market(self, engine):
        with pytest.raises(NotFound) as exc:
            engine.encode_choice("missing", {"side": "A", "secret": "s"})
        assert exc.value.status == 404

    def test_malformed_stored_key(self, engine):
        engine.meta_store.storage_manager.insert_market_meta("bad", "bad-key", "ab" * 16, 0)
        with pytest.raises(InvalidKeyError) as exc:
            engine.encode_choice("bad", {"side": "A", "secret": "s"})
        assert exc.value.status == 500

    def test_register_market(self, engine):
        result = engine.register_market({"marketId": "m2", "ledgerKeyId": "k2"})
        assert result["ok"] is True
        assert result["marketId"] == "m2"
        assert engine.meta_store.resolve("k2").market_id == "m2"

    def test_register_rejects_bad_key(self, engine):
        with pytest.raises(InvalidRequest):
            engine.register_market({"marketId": "m2", "ledgerKeyId": "k2", "encryptionKey": "abc"})

    def test_secret_at_limit_fits_on_ledger(self, engine):
        result = engine.buy_tickets("m1", "X", "A", "s" * 96, 1)
        assert len(result["encodedChoice"]) <= engine.config.max_encoded_choice_len

    def test_secret_too_large_once_sealed(self, engine):
        # Escaped to six JSON bytes per character
        with pytest.raises(InvalidRequest, match="sealed choice"):
            engine.buy_tickets("m1", "X", "A", "é" * 60, 1)
        assert engine.ledger.get_account("m1", "X") is None


class TestMetadataImmutable:
    """A market's key record is written once."""

    def _stored_key(self, engine):
        return engine.meta_store.resolve("m1").encryption_key

    def test_reregister_keeps_stored_key(self, engine, clock):
        engine.buy_tickets("m1", "X", "A", "x", 3)
        engine.buy_tickets("m1", "Y", "B", "y", 1)
        key = self._stored_key(engine)

        result = engine.register_market({"marketId": "m1", "ledgerKeyId": "k1"})
        assert result["ok"] is True
        assert self._stored_key(engine) == key

        result = _close(engine, clock)
        assert result["winningSide"] == 1
        assert result["totals"]["ticketsA"] == 3

    def test_reregister_with_other_key_refused(self, engine, clock):
        engine.buy_tickets("m1", "X", "A", "x", 1)
        key = self._stored_key(engine)

        with pytest.raises(MarketExists) as exc:
            engine.register_market({"marketId": "m1", "ledgerKeyId": "k1", "encryptionKey": "cd" * 32})
        assert exc.value.status == 409
        assert self._stored_key(engine) == key
        assert _close(engine, clock)["finalized"] is True

    def test_reregister_with_other_ledger_key_refused(self, engine):
        with pytest.raises(MarketExists):
            engine.register_market({"marketId": "m1", "ledgerKeyId": "k9"})
        assert engine.meta_store.find("k9") is None

    def test_same_key_is_idempotent(self, engine):
        key = self._stored_key(engine)
        result = engine.register_market({"marketId": "m1", "ledgerKeyId": "k1", "encryptionKey": "0x" + key.upper()})
        assert result["marketId"] == "m1"
        assert self._stored_key(engine) == key

    def test_open_market_over_conflicting_meta_creates_nothing(self, engine):
        engine.register_market({"marketId": "m2", "ledgerKeyId": "k2"})
        with pytest.raises(MarketExists):
            engine.open_market("m2", "k3", "Yes", "No", PRICE, DURATION)
        assert engine.ledger.get_market("m2") is None

    def test_open_market_uses_preregistered_key(self, engine):
        registered = engine.register_market({"marketId": "m2", "ledgerKeyId": "k2", "encryptionKey": "cd" * 32})
        engine.open_market("m2", "k2", "Yes", "No", PRICE, DURATION)
        assert engine.meta_store.resolve("m2").encryption_key == "cd" * 32
        assert engine.meta_store.resolve("m2").created_at == registered["createdAt"]


class TestPreconditions:
    """Finalize, claim and stats preconditions."""

    def test_finalize_before_end(self, engine):
        engine.buy_tickets("m1", "X", "A", "x", 1)
        with pytest.raises(PreconditionError) as exc:
            engine.finalize("m1")
        assert exc.value.status == 400

    def test_finalize_empty_market(self, engine, clock):
        clock.advance(DURATION)
        with pytest.raises(PreconditionError, match="no tickets"):
            engine.finalize("m1")

    def test_claim_before_finalize(self, engine):
        engine.buy_tickets("m1", "X", "A", "x", 1)
        with pytest.raises(PreconditionError, match="not finalized"):
            engine.check_claim("m1", {"participantId": "X"})
        with pytest.raises(PreconditionError):
            engine.execute_claim("m1", {"participantId": "X"})

    def test_stats_before_finalize(self, engine):
        with pytest.raises(PreconditionError):
            engine.market_stats("m1")

    def test_purchase_after_close(self, engine, clock):
        clock.advance(DURATION + 1)
        with pytest.raises(PreconditionError, match="closed"):
            engine.buy_tickets("m1", "X", "A", "x", 1)

    def test_purchase_over_cap(self, engine):
        with pytest.raises(PreconditionError, match="limit"):
            engine.buy_tickets("m1", "X", "A", "x", 101)

    def test_duplicate_market(self, engine):
        with pytest.raises(SettlementError) as exc:
            engine.open_market("m1", "k1", "Yes", "No", PRICE, DURATION)
        assert exc.value.status == 409

    def test_missing_participant(self, engine):
        with pytest.raises(InvalidRequest):
            engine.check_claim("m1", {})

    def test_bad_identifier_creates_nothing(self, engine):
        with pytest.raises(InvalidRequest):
            engine.open_market("has space", "k2", "Yes", "No", PRICE, DURATION)
        assert engine.ledger.get_market("has space") is None
        assert engine.meta_store.find("k2") is None

    def test_bad_key_creates_nothing(self, engine):
        with pytest.raises(InvalidRequest):
            engine.open_market("m2", "k2", "Yes", "No", PRICE, DURATION, encryption_key="ab" * 8)
        assert engine.ledger.get_market("m2") is None

    @pytest.mark.parametrize("count", [0, -1, True])
    def test_bad_ticket_count(self, engine, count):
        with pytest.raises(InvalidRequest):
            engine.buy_tickets("m1", "X", "A", "x", count)
        assert engine.ledger.get_account("m1", "X") is None

    def test_secret_too_long(self, engine):
        with pytest.raises(InvalidRequest):
            engine.encode_choice("m1", {"side": "A", "secret": "s" * 257})
