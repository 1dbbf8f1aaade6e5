"""CLI entry point for the wagerbot daemon."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import click

from wagerbot.config import load_config, validate_config
from wagerbot.daemon import run_daemon
from wagerbot.errors import ConfigError
from wagerbot.models.records import PaymentIntent
from wagerbot.models.session import Session
from wagerbot.state.persistence import read_snapshot
from wagerbot.storage.sqlite import SQLiteActivityLog
from wagerbot.verification import run_verification


def _mask(secret: str) -> str:
    return "***configured***" if secret else "(not set)"


def _load(ctx: click.Context):
    """Load config or exit with the validation exit code."""
    try:
        return load_config(ctx.obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


def _require_snapshot(cfg) -> dict:
    """Exit with error if there is no readable state snapshot."""
    data = read_snapshot(Path(cfg.storage.state_path))
    if data is None:
        click.echo(f"No state snapshot at {cfg.storage.state_path}", err=True)
        sys.exit(1)
    return data


def _ts(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """wagerbot - chat-channel wagering session engine."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the session daemon (default command)."""
    cfg = _load(ctx)
    problems = validate_config(cfg)
    if problems:
        for problem in problems:
            click.echo(f"Config error: {problem}", err=True)
        sys.exit(2)

    mode = "live" if cfg.payments.enable_live_transfers else "dry run"
    click.echo(f"Starting wagerbot ({cfg.payments.network}, {mode})")
    sys.exit(asyncio.run(run_daemon(cfg)))


@cli.command()
@click.option("--only", multiple=True, help="Run only the named check (repeatable)")
@click.pass_context
def verify(ctx: click.Context, only: tuple[str, ...]) -> None:
    """Run the invariant suite against an in-memory transport."""
    if not ctx.obj["verbose"]:
        logging.getLogger("wagerbot").setLevel(logging.WARNING)

    results = asyncio.run(run_verification(list(only) or None))
    for result in results:
        mark = "PASS" if result.passed else "FAIL"
        click.echo(f"[{mark}] {result.name}: {result.detail}")
    failed = sum(1 for r in results if not r.passed)
    click.echo(f"\n{len(results) - failed}/{len(results)} checks passed")
    sys.exit(1 if failed or not results else 0)


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show effective configuration."""
    cfg = _load(ctx)
    pay = cfg.payments
    click.echo(f"Network:        {pay.network}")
    click.echo(f"Live transfers: {pay.enable_live_transfers}")
    click.echo(f"Verification:   {cfg.verification_mode}")
    click.echo(f"Token:          {_mask(cfg.discord.token)}")
    click.echo(f"Wallet RPC:     {cfg.wallet.rpc_url or '(not set)'}")
    click.echo(f"Wallet auth:    {_mask(cfg.wallet.rpc_password)}")
    click.echo(f"Payout address: {pay.payout_addresses.get(pay.network, '(not set)')}")
    click.echo(f"Tax rate:       {cfg.offers.tax_rate}")
    click.echo(f"Offer range:    ${cfg.offers.offer_min_amount} - ${cfg.offers.offer_max_amount}")
    click.echo(f"Payment limits: ${pay.min_payment_usd} - ${pay.max_payment_per_tx_usd} per tx, "
               f"${pay.max_daily_usd} per day")
    click.echo(f"Sender policy:  {pay.address_sender_policy}")
    click.echo(f"Coordinators:   {', '.join(cfg.channels.coordinator_ids) or '(none)'}")
    click.echo(f"Vouch channel:  {cfg.channels.vouch_channel_id or '(not set)'}")
    click.echo(f"Game:           ft{cfg.game.wins_needed}, bot wins ties: {cfg.game.bot_wins_ties}")
    click.echo(f"State path:     {cfg.storage.state_path}")
    click.echo(f"Activity DB:    {cfg.storage.activity_db_path}")
    click.echo(f"Webhook:        {_mask(cfg.webhook_url)}")

    problems = validate_config(cfg)
    if problems:
        click.echo("")
        for problem in problems:
            click.echo(f"Warning: {problem}")


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include finished sessions")
@click.pass_context
def sessions(ctx: click.Context, show_all: bool) -> None:
    """List sessions in the persisted snapshot."""
    cfg = _load(ctx)
    data = _require_snapshot(cfg)
    rows = [Session.from_dict(raw) for raw in data.get("sessions", [])]
    if not show_all:
        rows = [s for s in rows if not s.is_terminal]
    if not rows:
        click.echo("No sessions.")
        return

    click.echo(f"{'Channel':<20} {'State':<22} {'Participant':<20} {'Offer':>8} {'Ours':>8}  Updated")
    click.echo("-" * 100)
    for s in sorted(rows, key=lambda s: s.updated_at, reverse=True):
        click.echo(
            f"{s.channel_id:<20} {s.state.value:<22} {(s.participant_id or '-'):<20} "
            f"{s.offer_amount:>8} {s.our_amount:>8}  {_ts(s.updated_at)}"
        )
        if s.turn_state is not None:
            click.echo(f"{'':<20} score {s.turn_state.scores['us']}-{s.turn_state.scores['them']}")


@cli.command()
@click.pass_context
def intents(ctx: click.Context) -> None:
    """List payment intents and today's spend from the snapshot."""
    cfg = _load(ctx)
    data = _require_snapshot(cfg)
    records = [PaymentIntent.from_dict(raw) for raw in data.get("payment_intents", [])]

    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    spent = Decimal(str(data.get("daily_spend", {}).get(today, "0")))
    click.echo(f"Spent today: ${spent} of ${cfg.payments.max_daily_usd}")
    if not records:
        click.echo("No payment intents.")
        return

    click.echo("")
    click.echo(f"{'Intent':<18} {'State':<10} {'Amount':>8}  {'Channel':<20} Tx")
    click.echo("-" * 90)
    for intent in sorted(records, key=lambda i: i.created_at):
        flag = " (dry run)" if intent.dry_run else ""
        tx = intent.tx or intent.failure or "-"
        click.echo(
            f"{intent.intent_id:<18} {intent.state.value:<10} {intent.amount:>8}  "
            f"{intent.channel_id:<20} {tx}{flag}"
        )


@cli.command()
@click.option("-n", "--limit", default=20, show_default=True, help="Number of entries")
@click.option("--channel", default=None, help="Only entries for this channel")
@click.pass_context
def activity(ctx: click.Context, limit: int, channel: str | None) -> None:
    """Show recent activity-log entries."""
    cfg = _load(ctx)

    async def _activity():
        log_db = SQLiteActivityLog(cfg.storage.activity_db_path)
        await log_db.initialize()
        try:
            if channel:
                return (await log_db.get_channel_activity(channel))[-limit:]
            return list(reversed(await log_db.get_recent_activity(limit)))
        finally:
            await log_db.close()

    entries = asyncio.run(_activity())
    if not entries:
        click.echo("No activity recorded.")
        return
    for entry in entries:
        where = f" [{entry.channel_id}]" if entry.channel_id else ""
        amount = f" ${entry.amount}" if entry.amount else ""
        click.echo(f"{entry.created_at}  {entry.event_type:<18}{where}{amount} {entry.message}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
