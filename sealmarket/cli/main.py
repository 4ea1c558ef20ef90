"""
sealmarket CLI - Command Line Interface for the settlement engine

Main entry point for all CLI commands. Every command prints one JSON
document on stdout; errors are printed as {"ok": false, ...} with a
non-zero exit code (1 for client errors, 3 for server-side errors).
"""

import dataclasses
import functools
import json
import sys
from pathlib import Path

import click

from sealmarket.core.errors import SettlementError
from sealmarket.utils.logger import get_logger, setup_logging

logger = get_logger("cli")


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=False))


def handle_errors(func):
    """Print SettlementError as JSON and exit non-zero."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SettlementError as e:
            logger.debug(f"{func.__name__} failed: {e.kind} {e.message}")
            _echo_json(e.to_dict())
            sys.exit(1 if e.status < 500 else 3)

    return wrapper


def build_engine(ctx):
    """Assemble config, storage, metadata store, ledger and engine for a command."""
    from sealmarket.core.engine import SettlementEngine
    from sealmarket.core.state import Ledger
    from sealmarket.core.storage import MetaStore, StorageManager

    if "engine" not in ctx.obj:
        config = ctx.obj["config"]
        storage = StorageManager(config.data_dir)
        ledger = Ledger(config=config, storage_manager=storage)
        ctx.obj["engine"] = SettlementEngine(config, MetaStore(storage), ledger)
    return ctx.obj["engine"]


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (overrides SEALMARKET_DATA_DIR)")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Read SEALMARKET_* settings from a .env file")
@click.option("--log-file", is_flag=True, help="Also write logs to <log dir>/sealmarket.log")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir, env_file, log_file):
    """Sealed-choice settlement engine for two-sided prediction markets"""
    import logging

    from sealmarket.core.config import load_config

    config = load_config(env_file)
    if data_dir:
        config = dataclasses.replace(config, data_dir=Path(data_dir).expanduser())

    level = logging.DEBUG if debug else logging.WARNING
    setup_logging(level=level, log_dir=str(config.log_dir), log_to_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Market Commands
# =============================================================================


@cli.group()
def market():
    """Market lifecycle commands"""
    pass


@market.command("create")
@click.option("--market-id", required=True, help="Ledger market identifier")
@click.option("--ledger-key-id", required=True, help="Secondary ledger address")
@click.option("--side-a", default="A", help="Label of side A")
@click.option("--side-b", default="B", help="Label of side B")
@click.option("--price", required=True, type=int, help="Ticket price in units")
@click.option("--duration", required=True, type=int, help="Seconds until the market closes")
@click.option("--title", default="", help="Market title")
@click.option("--description", default="", help="Market description")
@click.option("--category", default="", help="Market category")
@click.option("--key", "encryption_key", default=None, help="64-char hex key (generated if omitted)")
@click.pass_context
@handle_errors
def market_create(ctx, market_id, ledger_key_id, side_a, side_b, price, duration, title, description, category, encryption_key):
    """Create a market and register its key"""
    engine = build_engine(ctx)
    state = engine.open_market(
        market_id,
        ledger_key_id,
        side_a,
        side_b,
        price,
        duration,
        title=title,
        description=description,
        category=category,
        encryption_key=encryption_key,
    )
    _echo_json({"ok": True, "market": state.to_dict(), "ledgerKeyId": ledger_key_id})


@market.command("buy")
@click.argument("market_ref")
@click.option("--participant", required=True, help="Participant identifier")
@click.option("--side", required=True, help="A, B, 1 or 2")
@click.option("--secret", required=True, help="Binding secret sealed with the choice")
@click.option("--count", required=True, type=int, help="Tickets to buy")
@click.pass_context
@handle_errors
def market_buy(ctx, market_ref, participant, side, secret, count):
    """Seal a choice and buy tickets with it"""
    engine = build_engine(ctx)
    if side in ("1", "2"):
        side = int(side)
    result = engine.buy_tickets(market_ref, participant, side, secret, count)
    _echo_json({"ok": True, **result})


@market.command("finalize")
@click.argument("market_ref")
@click.pass_context
@handle_errors
def market_finalize(ctx, market_ref):
    """Tally a closed market and finalize it"""
    engine = build_engine(ctx)
    _echo_json({"ok": True, **engine.finalize(market_ref)})


@market.command("show")
@click.argument("market_ref")
@click.pass_context
@handle_errors
def market_show(ctx, market_ref):
    """Show a market's ledger state"""
    from sealmarket.core.errors import NotFound

    engine = build_engine(ctx)
    meta = engine.meta_store.resolve(market_ref)
    state = engine.ledger.get_market(meta.market_id)
    if state is None:
        raise NotFound("Market not found")

    _echo_json({
        "ok": True,
        "market": state.to_dict(),
        "ledgerKeyId": meta.ledger_key_id,
        "endTime": state.end_time,
        "treasuryBalance": engine.ledger.treasury_balance(meta.market_id),
        "participants": len(engine.ledger.get_accounts(meta.market_id)),
    })


# =============================================================================
# Claim Commands
# =============================================================================


@cli.group()
def claim():
    """Claim commands"""
    pass


@claim.command("check")
@click.argument("market_ref")
@click.option("--participant", required=True, help="Participant identifier")
@click.pass_context
@handle_errors
def claim_check(ctx, market_ref, participant):
    """Show what a participant can claim"""
    engine = build_engine(ctx)
    _echo_json({"ok": True, **engine.check_claim(market_ref, {"participantId": participant})})


@claim.command("execute")
@click.argument("market_ref")
@click.option("--participant", required=True, help="Participant identifier")
@click.pass_context
@handle_errors
def claim_execute(ctx, market_ref, participant):
    """Pay a participant's claim"""
    engine = build_engine(ctx)
    _echo_json({"ok": True, **engine.execute_claim(market_ref, {"participantId": participant})})


# =============================================================================
# Stats Command
# =============================================================================


@cli.command("stats")
@click.argument("market_ref")
@click.option("--page", default=1, type=int, help="Page number")
@click.option("--page-size", default=None, type=int, help="Rows per page (max 100)")
@click.pass_context
@handle_errors
def stats(ctx, market_ref, page, page_size):
    """Show the PnL leaderboard of a finalized market"""
    engine = build_engine(ctx)
    _echo_json(engine.market_stats(market_ref, {"page": page, "pageSize": page_size}))


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run a full market lifecycle in a throwaway data directory"""
    import tempfile

    from sealmarket.core.config import EngineConfig
    from sealmarket.core.engine import SettlementEngine
    from sealmarket.core.state import Ledger
    from sealmarket.core.storage import MetaStore, StorageManager

    click.echo("=" * 60, err=True)
    click.echo("  SEALMARKET - DEMO", err=True)
    click.echo("=" * 60, err=True)

    now = [1_700_000_000]

    def clock():
        return now[0]

    with tempfile.TemporaryDirectory() as tmp:
        config = EngineConfig(data_dir=Path(tmp))
        storage = StorageManager(config.data_dir)
        ledger = Ledger(config=config, storage_manager=storage, clock=clock)
        engine = SettlementEngine(config, MetaStore(storage), ledger, clock=clock)

        engine.open_market("demo-market", "demo-ledger-key", "Yes", "No", 10_000_000, 3600, title="Demo")
        click.echo("  Market created: price=10000000 duration=3600s", err=True)

        for participant, side, count in (("alice", "A", 10), ("bob", "B", 5), ("carol", "A", 2)):
            engine.buy_tickets("demo-ledger-key", participant, side, f"{participant}-secret", count)
            click.echo(f"  {participant} bought {count} sealed tickets", err=True)

        now[0] += 3600
        result = engine.finalize("demo-market")
        click.echo(f"  Finalized: winningSide={result['winningSide']}", err=True)

        claims = {}
        for participant in ("alice", "bob", "carol"):
            quote = engine.check_claim("demo-market", {"participantId": participant})
            if quote["canClaim"]:
                claims[participant] = engine.execute_claim("demo-market", {"participantId": participant})["receipt"]

        _echo_json({
            "finalize": result,
            "claims": claims,
            "stats": engine.market_stats("demo-market"),
            "ledger": ledger.stats(),
        })

    click.echo("Demo complete!", err=True)


if __name__ == "__main__":
    cli()
