"""
Chit Fund CLI - Command Line Interface for the chit fund engine

Main entry point for all CLI commands. Amounts are integers in the
fund's minor currency unit.
"""

import functools
from datetime import timezone
from pathlib import Path

import click

from chitfund import __version__
from chitfund.core.errors import ChitFundError
from chitfund.utils.logger import configure_from

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


def _aware(value):
    """Treat naive command-line datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def handle_errors(func):
    """Report engine errors as a failed command instead of a traceback."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ChitFundError as e:
            reason = getattr(e, "reason", None)
            suffix = f" [{reason}]" if reason else ""
            raise click.ClickException(f"❌ {e}{suffix}") from None

    return wrapper


def get_service(ctx):
    """Build (once) the service backed by the SQLite store in the data dir."""
    if "service" not in ctx.obj:
        from chitfund.core.service import ChitFundService
        from chitfund.core.sinks import LoggingAuditSink, LoggingNotificationSink
        from chitfund.core.storage import StorageManager

        config = ctx.obj["config"]
        storage = StorageManager(config.data_dir, config.db_name)
        ctx.call_on_close(storage.close)
        ctx.obj["service"] = ChitFundService(
            storage,
            config=config,
            notifier=LoggingNotificationSink(),
            auditor=LoggingAuditSink(),
        )
    return ctx.obj["service"]


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (overrides CHITFUND_DATA_DIR)")
@click.option("--env-file", default=None, help="dotenv file with CHITFUND_* settings")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, debug, data_dir, env_file):
    """Chit fund engine - auctions, settlement and payment ledger"""
    from chitfund.core.config import load_config

    try:
        config = load_config(env_file)
        configure_from(config, debug=debug)
    except ChitFundError as e:
        raise click.ClickException(str(e)) from None

    if data_dir:
        config.data_dir = Path(data_dir).expanduser()

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Group Commands
# =============================================================================


@cli.group()
def group():
    """Group management commands"""
    pass


@group.command("create")
@click.argument("group_id")
@click.option("--name", required=True, help="Display name")
@click.option("--pool", required=True, type=int, help="Pool amount paid out each period")
@click.option("--capacity", required=True, type=int, help="Members (= number of periods)")
@click.option("--commission", required=True, type=int, help="Commission per period")
@click.option("--contribution", required=True, type=int, help="Periodic contribution per member")
@click.option("--grace", default=None, type=int, help="Grace period in days")
@click.option("--model", type=click.Choice(["A", "B"]), default="A", help="Payment model")
@click.pass_context
@handle_errors
def group_create(ctx, group_id, name, pool, capacity, commission, contribution, grace, model):
    """Create a new group"""
    service = get_service(ctx)
    g = service.create_group(
        group_id, name, pool, capacity, commission, contribution,
        grace_period_days=grace, payment_model=model,
    )
    click.echo(f"✓ Group created: {g.group_id} ({g.name})")
    click.echo(f"  Pool: {service.settings.format_amount(g.pool_amount)}, "
               f"{g.capacity} members, model {g.payment_model.value}")


@group.command("add-member")
@click.argument("group_id")
@click.argument("member_id")
@click.option("--name", required=True, help="Member display name")
@click.pass_context
@handle_errors
def group_add_member(ctx, group_id, member_id, name):
    """Add a member to a group"""
    get_service(ctx).add_member(group_id, member_id, name)
    click.echo(f"✓ {member_id} ({name}) joined {group_id}")


@group.command("activate")
@click.argument("group_id")
@click.pass_context
@handle_errors
def group_activate(ctx, group_id):
    """Activate a forming group"""
    g = get_service(ctx).activate_group(group_id)
    click.echo(f"✓ Group {g.group_id} is {g.status.value} with {len(g.members)} members")


@group.command("show")
@click.argument("group_id")
@click.pass_context
@handle_errors
def group_show(ctx, group_id):
    """Show group details"""
    service = get_service(ctx)
    g = service.get_group(group_id)
    fmt = service.settings.format_amount

    click.echo(f"Group {g.group_id}: {g.name}")
    click.echo("-" * 40)
    click.echo(f"  Status: {g.status.value}")
    click.echo(f"  Pool: {fmt(g.pool_amount)}  Commission: {fmt(g.commission_amount)}")
    click.echo(f"  Contribution: {fmt(g.contribution)}  Grace: {g.grace_period_days} days")
    click.echo(f"  Model: {g.payment_model.value}  Progress: {g.completed_periods}/{g.duration} "
               f"({g.progress_percentage}%)")
    click.echo(f"  Members ({len(g.members)}/{g.capacity}):")
    for m in g.members:
        won = f"  won period {m.won_in_period}" if m.has_won else ""
        click.echo(f"    {m.member_id}: {m.name}{won}")


# =============================================================================
# Auction Commands
# =============================================================================


@cli.group()
def auction():
    """Auction commands"""
    pass


@auction.command("schedule")
@click.argument("group_id")
@click.argument("period", type=int)
@click.option("--at", "scheduled_at", type=click.DateTime(DATE_FORMATS), default=None,
              help="Scheduled date/time (UTC)")
@click.option("--exclude", multiple=True, help="MEMBER_ID:REASON to exclude")
@click.option("--id", "auction_id", default=None, help="Explicit auction id")
@click.pass_context
@handle_errors
def auction_schedule(ctx, group_id, period, scheduled_at, exclude, auction_id):
    """Schedule the auction for a period"""
    exclusions = []
    for spec in exclude:
        member_id, _, reason = spec.partition(":")
        exclusions.append((member_id, reason or "excluded"))

    a = get_service(ctx).schedule_auction(
        group_id, period, _aware(scheduled_at),
        manual_exclusions=exclusions, auction_id=auction_id,
    )
    click.echo(f"✓ Auction {a.auction_id} scheduled for period {a.period_number}")
    click.echo(f"  Eligible: {a.eligible_count}  Starting bid: {a.starting_bid}")


@auction.command("start")
@click.argument("auction_id")
@click.pass_context
@handle_errors
def auction_start(ctx, auction_id):
    """Open an auction for bidding"""
    get_service(ctx).start_auction(auction_id)
    click.echo(f"✓ Auction {auction_id} is live")


@auction.command("bid")
@click.argument("auction_id")
@click.argument("member_id")
@click.argument("amount", type=int)
@click.option("--admin", default=None, help="Admin id placing the bid on the member's behalf")
@click.option("--admin-name", default=None, help="Admin display name")
@click.pass_context
@handle_errors
def auction_bid(ctx, auction_id, member_id, amount, admin, admin_name):
    """Place a bid"""
    placed_by = (admin, admin_name or admin) if admin else None
    bid = get_service(ctx).place_bid(auction_id, member_id, amount, placed_by=placed_by)
    proxy = f" (by {bid.placed_by_name})" if bid.placed_by_admin else ""
    click.echo(f"✓ Bid accepted: {member_id} offers {bid.amount}{proxy}")


@auction.command("exclude")
@click.argument("auction_id")
@click.argument("member_id")
@click.option("--reason", default=None, help="Why the member is excluded")
@click.option("--revert", is_flag=True, help="Lift an existing exclusion")
@click.pass_context
@handle_errors
def auction_exclude(ctx, auction_id, member_id, reason, revert):
    """Exclude a member from an auction (or revert)"""
    service = get_service(ctx)
    if revert:
        service.revert_exclusion(auction_id, member_id)
        click.echo(f"✓ Exclusion of {member_id} reverted")
        return
    if not reason:
        raise click.UsageError("--reason is required to exclude a member")
    service.exclude_member(auction_id, member_id, reason)
    click.echo(f"✓ {member_id} excluded: {reason}")


@auction.command("close")
@click.argument("auction_id")
@click.option("--winner", default=None, help="Winner id (default: highest bidder)")
@click.option("--dividend", type=int, default=None, help="Manual dividend per member")
@click.pass_context
@handle_errors
def auction_close(ctx, auction_id, winner, dividend):
    """Close an auction and settle the period"""
    result = get_service(ctx).close_auction(
        auction_id, winner_id=winner, manual_dividend_override=dividend
    )
    plan = result.plan
    click.echo(f"✓ Auction {auction_id} closed, winner {result.winner_id}")
    click.echo(f"  Total dividend: {plan.total_dividend}")
    click.echo(f"  Dividend per member: {plan.dividend_per_member} "
               f"({plan.recipient_count} recipients, {plan.retained} retained)")
    click.echo(f"  Ledger entries: {len(result.created)} created, {len(result.skipped)} skipped")


@auction.command("show")
@click.argument("auction_id")
@click.pass_context
@handle_errors
def auction_show(ctx, auction_id):
    """Show auction details"""
    a = get_service(ctx).get_auction(auction_id)
    click.echo(f"Auction {a.auction_id} (group {a.group_id}, period {a.period_number})")
    click.echo("-" * 40)
    click.echo(f"  Status: {a.status.value}")
    click.echo(f"  Starting bid: {a.starting_bid}  Highest: {a.current_highest_bid}")
    click.echo(f"  Eligible: {a.eligible_count}  Participation: {a.participation_rate}%")
    if a.auto_excluded:
        click.echo(f"  Prior winners: {', '.join(a.auto_excluded)}")
    for e in a.manual_exclusions:
        click.echo(f"  Excluded {e.member_id}: {e.reason}")
    for b in a.bids:
        click.echo(f"    {b.member_id}: {b.amount}{' (proxy)' if b.placed_by_admin else ''}")
    if a.winner_id:
        click.echo(f"  Winner: {a.winner_name} ({a.winner_id}) bid {a.winning_bid}")
        click.echo(f"  Dividend per member: {a.dividend_per_member}")


# =============================================================================
# Payment Commands
# =============================================================================


@cli.group()
def payment():
    """Payment ledger commands"""
    pass


@payment.command("record")
@click.argument("group_id")
@click.argument("member_id")
@click.argument("period", type=int)
@click.argument("amount", type=int)
@click.option("--method", default="Cash", help="Cash, Bank Transfer, UPI or Cheque")
@click.option("--at", "paid_at", type=click.DateTime(DATE_FORMATS), default=None,
              help="Payment date/time (UTC)")
@click.option("--reference", default=None, help="Transaction reference")
@click.pass_context
@handle_errors
def payment_record(ctx, group_id, member_id, period, amount, method, paid_at, reference):
    """Record a payment"""
    outcome = get_service(ctx).record_payment(
        group_id, member_id, period, amount, method,
        paid_at=_aware(paid_at), reference=reference,
    )
    entry = outcome.entry
    if outcome.metadata_only:
        click.echo("✓ Entry already settled; details updated")
        return
    click.echo(f"✓ Payment of {outcome.applied_amount} recorded ({entry.status.value})")
    click.echo(f"  Outstanding: {entry.outstanding_balance}  Delay: {entry.delay_days} days")


@payment.command("extend-grace")
@click.argument("group_id")
@click.argument("member_id")
@click.argument("period", type=int)
@click.argument("days", type=int)
@click.option("--reason", default=None, help="Reason for the extension")
@click.pass_context
@handle_errors
def payment_extend_grace(ctx, group_id, member_id, period, days, reason):
    """Extend the grace period of one entry"""
    entry = get_service(ctx).extend_grace_period(group_id, member_id, period, days, reason)
    click.echo(f"✓ Grace period now {entry.grace_period_days} days "
               f"(ends {entry.grace_end:%Y-%m-%d %H:%M})")


@payment.command("list")
@click.argument("group_id")
@click.option("--period", type=int, default=None, help="Only this period")
@click.option("--refresh", is_flag=True, help="Re-evaluate overdue status first")
@click.pass_context
@handle_errors
def payment_list(ctx, group_id, period, refresh):
    """List ledger entries"""
    service = get_service(ctx)
    if refresh:
        service.refresh_overdue(group_id)

    entries = service.list_entries(group_id, period)
    if not entries:
        click.echo("No ledger entries.")
        return
    for e in entries:
        winner = " (winner)" if e.is_winner else ""
        click.echo(f"  P{e.period_number} {e.member_id}{winner}: due {e.due_amount} "
                   f"paid {e.paid_amount} outstanding {e.outstanding_balance} "
                   f"[{e.status.value}]")


@payment.command("statement")
@click.argument("group_id")
@click.argument("member_id")
@click.pass_context
@handle_errors
def payment_statement(ctx, group_id, member_id):
    """Show a member's passbook"""
    statement = get_service(ctx).member_statement(group_id, member_id)
    click.echo(f"Statement: {statement.member_name} ({statement.member_id}) "
               f"in {statement.group_name}")
    for t in statement.transactions:
        amount = f"+{t.credit}" if t.credit else f"-{t.debit}"
        click.echo(f"  {t.date:%Y-%m-%d} P{t.period_number} {t.type.value:<14} "
                   f"{amount:>9}  balance {t.balance}  {t.description}")

    s = statement.summary
    click.echo(f"Contributions: {s.total_contributions}  Dividends: {s.total_dividends}  "
               f"Net: {s.net_contributions}")
    click.echo(f"Outstanding: {s.outstanding_amount}  Balance: {s.current_balance}")
    if s.auction_won:
        click.echo(f"Won period {s.auction_won.period_number} with bid "
                   f"{s.auction_won.bid_amount}, received {s.auction_won.received_amount}")


# =============================================================================
# Ranking Commands
# =============================================================================


@cli.group()
def ranking():
    """Member ranking commands"""
    pass


@ranking.command("recalc")
@click.argument("group_id")
@click.pass_context
@handle_errors
def ranking_recalc(ctx, group_id):
    """Recalculate and show group rankings"""
    rankings = get_service(ctx).recalculate_group_rankings(group_id)
    for r in rankings:
        click.echo(f"  {r.rank}. {r.member_name} ({r.member_id}): {r.score} "
                   f"{r.category.value}  on-time {r.on_time_payments}/{r.total_due}")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run one auction period end-to-end in memory"""
    from datetime import datetime, timedelta

    from chitfund.core.service import ChitFundService
    from chitfund.core.sinks import MemorySink
    from chitfund.core.storage import InMemoryStorage

    now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def clock():
        return now

    sink = MemorySink()
    service = ChitFundService(InMemoryStorage(), notifier=sink, auditor=sink, clock=clock)

    click.echo("=" * 60)
    click.echo("  CHIT FUND ENGINE - DEMO")
    click.echo("=" * 60)
    click.echo()

    click.echo("📦 Creating group (pool 100,000, 10 members, commission 5,000)...")
    service.create_group("demo", "Demo Fund", 100_000, 10, 5_000, 10_000)
    for i in range(1, 11):
        service.add_member("demo", f"m{i:02d}", f"Member {i}")
    service.activate_group("demo")
    click.echo("  ✓ Group active with 10 members")
    click.echo()

    click.echo("🔨 Period 1 auction...")
    a = service.schedule_auction("demo", 1, auction_id="demo-p1")
    service.start_auction(a.auction_id)
    for member_id, amount in (("m01", 8_000), ("m02", 15_000), ("m03", 12_000)):
        service.place_bid(a.auction_id, member_id, amount)
        click.echo(f"  ✓ {member_id} bids {amount}")
    click.echo()

    click.echo("⚖️  Closing auction...")
    result = service.close_auction(a.auction_id)
    click.echo(f"  ✓ Winner: {result.winner_id}")
    click.echo(f"  ✓ Total dividend: {result.plan.total_dividend}")
    click.echo(f"  ✓ Dividend per member: {result.plan.dividend_per_member}")
    click.echo(f"  ✓ Retained by fund: {result.plan.retained}")
    click.echo()

    click.echo("💸 Payments...")
    service.record_payment("demo", "m01", 1, 8_889, "UPI", paid_at=now)
    service.record_payment("demo", "m03", 1, 4_000, "Cash", paid_at=now + timedelta(days=2))
    service.record_payment("demo", "m02", 1, 10_000, "Bank Transfer", paid_at=now + timedelta(days=6))
    for e in service.list_entries("demo", 1)[:4]:
        click.echo(f"  {e.member_id}: due {e.due_amount} paid {e.paid_amount} "
                   f"[{e.status.value}] delay {e.delay_days}d")
    click.echo()

    click.echo("📊 Rankings:")
    for r in service.recalculate_group_rankings("demo")[:5]:
        click.echo(f"  {r.rank}. {r.member_id} {r.score} {r.category.value}")
    click.echo()
    click.echo(f"  Notifications: {len(sink.notifications)}  Audit records: {len(sink.audit_records)}")
    click.echo()
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
