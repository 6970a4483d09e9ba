"""CLI entrypoint for ledger-sync.

Provides commands to record expenses in the local ledger and to sync
the ledger with its GitHub repository.
"""

from __future__ import annotations

import asyncio
import datetime as _dt
import logging
import sys
import uuid
from collections.abc import Coroutine
from decimal import Decimal, InvalidOperation
from typing import Any

import click

from ledger_sync.config import settings
from ledger_sync.errors import LedgerSyncError, MalformedRecordError, describe_error
from ledger_sync.github_client import GitHubClient
from ledger_sync.models import PaymentMethod, Record, utc_now, visible_records
from ledger_sync.store import LocalRecordStore
from ledger_sync.sync.engine import SyncCallbacks, SyncEngine, SyncOutcome, SyncOutcomeStatus
from ledger_sync.sync.merge import ConflictResolution, MergeResult, Side, TrueConflict
from ledger_sync.sync.remote import CommitResult, RemoteLedger
from ledger_sync.sync.tracker import ChangeTracker


def _build_engine() -> SyncEngine:
    """Construct a SyncEngine from the environment settings."""
    client = GitHubClient(settings.sync_config())
    return SyncEngine.from_settings(settings, RemoteLedger(client))


def _parse_amount(ctx: click.Context, param: click.Parameter, value: str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {value}") from None


def _describe(record: Record) -> str:
    pm = f" [{record.payment_method.type}]" if record.payment_method else ""
    note = f"  {record.note}" if record.note else ""
    currency = f" {record.currency}" if record.currency else ""
    return f"{record.date}  {record.amount}{currency}  {record.category}{pm}{note}"


def _print_conflict(conflict: TrueConflict) -> None:
    click.echo(f"\nConflict on {conflict.record_id} ({conflict.reason}):")
    click.echo(f"  local:  {_describe(conflict.local_version)}")
    click.echo(f"  remote: {_describe(conflict.remote_version)}")


def _callbacks(engine: SyncEngine, prefer: str | None) -> SyncCallbacks:
    def on_conflict(conflicts: list[TrueConflict]) -> None:
        resolutions = []
        for conflict in conflicts:
            _print_conflict(conflict)
            choice = prefer or click.prompt(
                "  keep", type=click.Choice([s.value for s in Side]), default=Side.REMOTE.value
            )
            resolutions.append(ConflictResolution(record_id=conflict.record_id, choice=Side(choice)))
        engine.resolve_conflicts(resolutions)

    def on_success(result: MergeResult, commit: CommitResult) -> None:
        click.echo(
            f"Synced: {result.summary()}; "
            f"{commit.files_uploaded} file(s) uploaded, {commit.files_deleted} deleted"
        )

    def on_in_sync(result: MergeResult) -> None:
        click.echo(f"Already in sync: {result.summary()}")

    def on_error(error: BaseException) -> None:
        click.echo(f"Sync failed: {describe_error(error)}", err=True)

    return SyncCallbacks(
        on_conflict=on_conflict,
        on_success=on_success,
        on_in_sync=on_in_sync,
        on_error=on_error,
    )


def _exit_for(outcome: SyncOutcome) -> None:
    if outcome.status is SyncOutcomeStatus.CANCELLED:
        click.echo("Sync cancelled.")
    elif outcome.status is SyncOutcomeStatus.REJECTED:
        click.echo("A sync is already running.", err=True)
        sys.exit(1)
    elif outcome.status is SyncOutcomeStatus.ERROR:
        sys.exit(1)


def _run(operation: Coroutine[Any, Any, SyncOutcome]) -> None:
    try:
        outcome = asyncio.run(operation)
    except MalformedRecordError:
        sys.exit(2)
    _exit_for(outcome)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """ledger-sync CLI: keep an expense ledger in sync with GitHub."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ------------------------------------------------------------------
# Local ledger commands
# ------------------------------------------------------------------


@cli.command()
@click.option("--amount", required=True, callback=_parse_amount, help="Amount spent.")
@click.option("--category", required=True, help="Expense category.")
@click.option("--date", "date_", default=None, help="ISO date (default: today).")
@click.option("--note", default="", help="Free-form note.")
@click.option("--currency", default="", help="Currency code.")
@click.option("--payment-method", default=None, help="Payment method type, e.g. cash or card.")
def add(
    amount: Decimal,
    category: str,
    date_: str | None,
    note: str,
    currency: str,
    payment_method: str | None,
) -> None:
    """Add an expense to the local ledger."""
    now = utc_now()
    try:
        record = Record(
            id=str(uuid.uuid4()),
            amount=amount,
            currency=currency,
            category=category,
            date=date_ or _dt.date.today().isoformat(),
            note=note,
            payment_method=PaymentMethod(type=payment_method) if payment_method else None,
            created_at=now,
            updated_at=now,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from None

    LocalRecordStore(settings.ledger_file).upsert(record)
    ChangeTracker(settings.pending_file).track_add(record.id)
    click.echo(record.id)


@cli.command()
@click.argument("record_id")
@click.option("--amount", default=None, callback=_parse_amount, help="New amount.")
@click.option("--category", default=None, help="New category.")
@click.option("--date", "date_", default=None, help="New ISO date.")
@click.option("--note", default=None, help="New note.")
def edit(
    record_id: str,
    amount: Decimal | None,
    category: str | None,
    date_: str | None,
    note: str | None,
) -> None:
    """Edit an expense in the local ledger."""
    store = LocalRecordStore(settings.ledger_file)
    record = store.get(record_id)
    if record is None or record.is_deleted:
        click.echo(f"Error: no record {record_id}", err=True)
        sys.exit(1)

    changes = {
        key: value
        for key, value in {
            "amount": amount,
            "category": category,
            "date": date_,
            "note": note,
        }.items()
        if value is not None
    }
    if not changes:
        click.echo("Nothing to change.")
        return

    try:
        updated = record.edited(**changes)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from None
    store.upsert(updated)
    ChangeTracker(settings.pending_file).track_edit(record_id)
    click.echo(f"Updated {record_id}")


@cli.command()
@click.argument("record_id")
def delete(record_id: str) -> None:
    """Soft-delete an expense so the deletion syncs to other devices."""
    store = LocalRecordStore(settings.ledger_file)
    record = store.get(record_id)
    if record is None or record.is_deleted:
        click.echo(f"Error: no record {record_id}", err=True)
        sys.exit(1)

    store.upsert(record.soft_deleted())
    ChangeTracker(settings.pending_file).track_delete(record_id)
    click.echo(f"Deleted {record_id}")


@cli.command(name="list")
@click.option("--all", "show_all", is_flag=True, help="Include deleted records.")
def list_records(show_all: bool) -> None:
    """List expenses, newest first."""
    records = LocalRecordStore(settings.ledger_file).get_all()
    if not show_all:
        records = visible_records(records)
    if not records:
        click.echo("No expenses.")
        return
    for record in sorted(records, key=lambda r: (r.date, r.created_at), reverse=True):
        marker = " (deleted)" if record.is_deleted else ""
        click.echo(f"{record.id}  {_describe(record)}{marker}")


@cli.command()
def status() -> None:
    """Show how many local changes are waiting to be synced."""
    count = ChangeTracker(settings.pending_file).pending_count()
    if count.total == 0:
        click.echo("No pending changes.")
        return
    click.echo(
        f"{count.total} pending change(s): "
        f"{count.added} added, {count.edited} edited, {count.deleted} deleted"
    )


# ------------------------------------------------------------------
# Sync commands
# ------------------------------------------------------------------


@cli.command()
@click.option("--days", type=click.IntRange(min=1), default=None, help="Only fetch the last N days.")
@click.option(
    "--prefer",
    type=click.Choice([s.value for s in Side]),
    default=None,
    help="Settle every conflict in favor of this side instead of prompting.",
)
def sync(days: int | None, prefer: str | None) -> None:
    """Merge the local ledger with the remote repository."""
    try:
        engine = _build_engine()
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    _run(engine.sync(callbacks=_callbacks(engine, prefer), since_days=days))


@cli.command(name="load-more")
@click.argument("days", type=click.IntRange(min=1))
@click.option(
    "--prefer",
    type=click.Choice([s.value for s in Side]),
    default=None,
    help="Settle every conflict in favor of this side instead of prompting.",
)
def load_more(days: int, prefer: str | None) -> None:
    """Extend the synced window DAYS further into the past and sync."""
    try:
        engine = _build_engine()
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    _run(engine.load_more(days, callbacks=_callbacks(engine, prefer)))


@cli.command()
def check() -> None:
    """Verify the token can push to the configured repository."""
    try:
        client = GitHubClient(settings.sync_config())
        info = client.repos.check_access()
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except LedgerSyncError as exc:
        click.echo(f"Error: {describe_error(exc)}", err=True)
        sys.exit(1)
    visibility = "private" if info.private else "public"
    click.echo(f"OK: {info.full_name} ({visibility}), default branch {info.default_branch}")


if __name__ == "__main__":
    cli()
