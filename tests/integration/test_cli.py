"""
CLI Tests - Commands run against a data directory, one engine per invocation.

Tests verify:
1. Market create / buy / finalize / show through the command line
2. Claim check and execute output
3. Stats pagination flags
4. Error documents and exit codes
"""

import json

import pytest
from click.testing import CliRunner

from sealmarket.cli.main import cli


START = 1_700_000_000


class FakeTime:
    def __init__(self, now):
        self.now = now

    def time(self):
        return float(self.now)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_time(monkeypatch):
    fake = FakeTime(START)
    monkeypatch.setattr("sealmarket.core.engine.time", fake)
    monkeypatch.setattr("sealmarket.core.state.ledger.time", fake)
    return fake


@pytest.fixture
def run(tmp_path, fake_time):
    runner = CliRunner()

    def invoke(*args):
        result = runner.invoke(cli, ["--data-dir", str(tmp_path), *args])
        return result, json.loads(result.stdout)

    return invoke


@pytest.fixture
def market(run):
    result, body = run(
        "market", "create",
        "--market-id", "m1", "--ledger-key-id", "k1",
        "--side-a", "Yes", "--side-b", "No",
        "--price", "10000000", "--duration", "60",
        "--title", "CLI market",
    )
    assert result.exit_code == 0, result.stdout
    return body


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    def test_create(self, market):
        assert market["ok"] is True
        assert market["ledgerKeyId"] == "k1"
        assert market["market"]["market_id"] == "m1"
        assert market["market"]["creation_time"] == START
        assert market["market"]["is_finalized"] is False

    def test_full_flow(self, run, market, fake_time):
        result, body = run("market", "buy", "k1", "--participant", "alice", "--side", "A",
                           "--secret", "s1", "--count", "4")
        assert result.exit_code == 0
        assert body["ticketCount"] == 4
        assert body["ledgerKeyId"] == "k1"
        assert body["encodedChoice"]

        result, _ = run("market", "buy", "m1", "--participant", "bob", "--side", "2",
                        "--secret", "s2", "--count", "1")
        assert result.exit_code == 0

        fake_time.now += 60
        result, body = run("market", "finalize", "m1")
        assert result.exit_code == 0
        assert body["winningSide"] == 1
        assert body["totals"]["ticketsA"] == 4

        _, body = run("market", "show", "k1")
        assert body["market"]["is_finalized"] is True
        assert body["treasuryBalance"] == 50_000_000
        assert body["participants"] == 2

        _, body = run("claim", "check", "m1", "--participant", "alice")
        assert body["canClaim"] is True
        assert body["claimAmount"] == 50_000_000

        result, body = run("claim", "execute", "m1", "--participant", "alice")
        assert result.exit_code == 0
        assert body["receipt"]["paidAmount"] == 47_500_000

        result, body = run("stats", "m1", "--page-size", "1")
        assert result.exit_code == 0
        assert body["totalRows"] == 2
        assert body["pageSize"] == 1
        assert body["rows"][0]["participantId"] == "alice"
        assert body["rows"][0]["hasClaimed"] is True


# =============================================================================
# Errors
# =============================================================================

class TestErrors:

    def test_finalize_before_end(self, run, market):
        run("market", "buy", "m1", "--participant", "alice", "--side", "A",
            "--secret", "s", "--count", "1")
        result, body = run("market", "finalize", "m1")
        assert result.exit_code == 1
        assert body["ok"] is False
        assert body["status"] == 400
        assert body["error"] == "Market has not ended yet"

    def test_double_claim(self, run, market, fake_time):
        run("market", "buy", "m1", "--participant", "alice", "--side", "A",
            "--secret", "s", "--count", "1")
        fake_time.now += 60
        run("market", "finalize", "m1")
        run("claim", "execute", "m1", "--participant", "alice")
        result, body = run("claim", "execute", "m1", "--participant", "alice")
        assert result.exit_code == 1
        assert body["status"] == 409

    def test_bad_side(self, run, market):
        result, body = run("market", "buy", "m1", "--participant", "alice", "--side", "C",
                           "--secret", "s", "--count", "1")
        assert result.exit_code == 1
        assert body["status"] == 400

    def test_duplicate_market(self, run, market):
        result, body = run(
            "market", "create", "--market-id", "m1", "--ledger-key-id", "k9",
            "--price", "1", "--duration", "1",
        )
        assert result.exit_code == 1
        assert body["status"] == 409


def test_demo():
    result = CliRunner().invoke(cli, ["demo"])
    assert result.exit_code == 0
    body = json.loads(result.stdout)
    assert body["finalize"]["winningSide"] == 1
    assert set(body["claims"]) == {"alice", "carol"}
    assert body["stats"]["totalRows"] == 3
