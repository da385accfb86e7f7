"""
cronfire CLI entry point.

Commands:
    cronfire run      — Evaluate triggers every interval until Ctrl-C
    cronfire tick     — Run a single evaluation pass
    cronfire add      — Create a trigger
    cronfire list     — List triggers with their next match
    cronfire fire     — Fire a trigger now (optionally with a JSON payload)
    cronfire webhook  — Fire a webhook trigger by its token
    cronfire history  — Show a trigger's firing log
    cronfire check    — Validate a CRON expression and preview matches
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cronfire.core.config import CronfireConfig
from cronfire.core.errors import CronfireError
from cronfire.core.events import EventType
from cronfire.scheduler.models import FiringStatus, Trigger, TriggerType
from cronfire.store.base import TriggerStore

app = typer.Typer(
    name="cronfire",
    help="cronfire — turn CRON triggers into agent work items.",
    add_completion=False,
)

console = Console()

DB_HELP = "SQLite database path (overrides config)"


def _load_config(db: Path | None) -> CronfireConfig:
    overrides = {"store": {"db_path": str(db)}} if db else None
    return CronfireConfig.load(overrides=overrides)


def _make_store(config: CronfireConfig) -> TriggerStore:
    if config.store.backend == "memory":
        from cronfire.store.memory import InMemoryTriggerStore
        return InMemoryTriggerStore()
    from cronfire.store.sqlite import SQLiteTriggerStore
    return SQLiteTriggerStore(config.get_db_path())


def _make_scheduler(config: CronfireConfig, store: TriggerStore, emit=None):
    from cronfire.scheduler.engine import TriggerScheduler
    return TriggerScheduler(
        store,
        emit=emit,
        interval=config.scheduler.interval,
        operation_timeout=config.scheduler.operation_timeout,
        idempotency_keys=config.scheduler.idempotency_keys,
    )


def _run_with_store(db: Path | None, work) -> object:
    """Open the configured store, run `work(config, store)`, close the store."""

    async def _main():
        config = _load_config(db)
        store = _make_store(config)
        await store.initialize()
        try:
            return await work(config, store)
        finally:
            await store.close()

    try:
        return asyncio.run(_main())
    except CronfireError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "—"


# ━━━ Scheduler ━━━


@app.command()
def run(
    db: Path = typer.Option(None, "--db", help=DB_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Evaluate triggers on a fixed interval until interrupted."""
    try:
        asyncio.run(_run(db, verbose))
    except KeyboardInterrupt:
        pass
    except CronfireError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


async def _run(db: Path | None, verbose: bool) -> None:
    from cronfire.core.logging import EventLogger, setup_logging

    config = _load_config(db)

    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.WARNING)
    setup_logging(log_dir=config.get_log_dir(), console_level=level)
    logger = logging.getLogger("cronfire")

    store = _make_store(config)
    await store.initialize()

    emit = EventLogger(log_dir=config.get_log_dir()) if config.logging.events else None
    scheduler = _make_scheduler(config, store, emit=emit)

    console.print(
        f"[cyan]cronfire[/cyan] evaluating triggers every {config.scheduler.interval}s "
        f"[dim]({config.store.backend} store, Ctrl-C to stop)[/dim]"
    )
    logger.info(f"Store: {config.store.backend} at {config.store.db_path}")

    await scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        await store.close()


@app.command()
def tick(db: Path = typer.Option(None, "--db", help=DB_HELP)) -> None:
    """Run one evaluation pass and report what fired."""

    async def work(config, store):
        events = []

        async def collect(event):
            events.append(event)

        scheduler = _make_scheduler(config, store, emit=collect)
        await scheduler.evaluate_triggers()
        return events

    for event in _run_with_store(db, work):
        if event.type == EventType.TRIGGER_FIRED:
            console.print(
                f"[green]fired[/green]  {event.data['trigger_id']} → work item {event.data['work_item_id']}"
            )
        elif event.type == EventType.TRIGGER_FAILED:
            console.print(f"[red]failed[/red] {event.data['trigger_id']}: {event.data['error']}")
        elif event.type == EventType.SCHEDULER_FETCH_ERROR:
            console.print(f"[red]Could not fetch triggers: {event.data['error']}[/red]")
            raise typer.Exit(1)
        elif event.type == EventType.SCHEDULER_TICK:
            console.print(
                f"[dim]{event.data['candidates']} candidate(s), "
                f"{event.data['fired']} fired, {event.data['failed']} failed[/dim]"
            )


# ━━━ Trigger management ━━━


@app.command()
def add(
    agent: str = typer.Option(..., "--agent", "-a", help="Agent that receives the work items"),
    workspace: str = typer.Option(..., "--workspace", "-w", help="Workspace (tenant) id"),
    title: str = typer.Option(..., "--title", "-t", help="Task title template"),
    description: str = typer.Option("", "--description", "-d", help="Task description template"),
    cron: str = typer.Option(None, "--cron", "-c", help="5-field CRON expression"),
    trigger_type: str = typer.Option(TriggerType.CRON, "--type", help="cron, webhook or manual"),
    disabled: bool = typer.Option(False, "--disabled", help="Create the trigger disabled"),
    db: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """Create a trigger."""
    from cronfire.scheduler.cron import validate_expression

    if trigger_type not in TriggerType.ALL:
        console.print(f"[red]Unknown trigger type: {trigger_type}[/red]")
        raise typer.Exit(1)
    if trigger_type == TriggerType.CRON:
        if not cron:
            console.print("[red]Cron triggers need --cron[/red]")
            raise typer.Exit(1)
        try:
            validate_expression(cron)
        except CronfireError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(1)

    trigger = Trigger(
        agent_id=agent,
        workspace_id=workspace,
        task_title_template=title,
        task_description_template=description,
        trigger_type=trigger_type,
        cron_expression=cron if trigger_type == TriggerType.CRON else None,
        enabled=not disabled,
    )

    async def work(config, store):
        await store.save_trigger(trigger)

    _run_with_store(db, work)
    if trigger.webhook_token:
        console.print(f"Webhook token: {trigger.webhook_token}")
    console.print(f"[green]Created trigger[/green] {trigger.id}")


@app.command("list")
def list_triggers(
    agent: str = typer.Option(None, "--agent", "-a", help="Only this agent's triggers"),
    db: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """List triggers."""
    from cronfire.scheduler.cron import next_match

    async def work(config, store):
        return await store.list_triggers(agent_id=agent)

    triggers = _run_with_store(db, work)
    if not triggers:
        console.print("[dim]No triggers.[/dim]")
        raise typer.Exit(0)

    now = datetime.now()
    table = Table(title="Triggers", border_style="cyan")
    table.add_column("ID", overflow="fold")
    table.add_column("Agent")
    table.add_column("Type")
    table.add_column("Schedule")
    table.add_column("Enabled")
    table.add_column("Last fired")
    table.add_column("Next match")
    for t in triggers:
        upcoming = (
            next_match(t.cron_expression, now)
            if t.trigger_type == TriggerType.CRON and t.cron_expression and t.enabled
            else None
        )
        table.add_row(
            t.id,
            t.agent_id,
            t.trigger_type,
            t.cron_expression or "—",
            "[green]yes[/green]" if t.enabled else "[dim]no[/dim]",
            _fmt(t.last_fired_at),
            _fmt(upcoming),
        )
    console.print(table)


def _set_enabled(trigger_id: str, enabled: bool, db: Path | None) -> None:
    async def work(config, store):
        return await store.set_trigger_enabled(trigger_id, enabled)

    if not _run_with_store(db, work):
        console.print(f"[red]Trigger {trigger_id} not found[/red]")
        raise typer.Exit(1)
    console.print(f"Trigger {trigger_id} {'enabled' if enabled else 'disabled'}")


@app.command()
def enable(trigger_id: str, db: Path = typer.Option(None, "--db", help=DB_HELP)) -> None:
    """Enable a trigger."""
    _set_enabled(trigger_id, True, db)


@app.command()
def disable(trigger_id: str, db: Path = typer.Option(None, "--db", help=DB_HELP)) -> None:
    """Disable a trigger."""
    _set_enabled(trigger_id, False, db)


@app.command()
def remove(trigger_id: str, db: Path = typer.Option(None, "--db", help=DB_HELP)) -> None:
    """Delete a trigger."""

    async def work(config, store):
        return await store.delete_trigger(trigger_id)

    if not _run_with_store(db, work):
        console.print(f"[red]Trigger {trigger_id} not found[/red]")
        raise typer.Exit(1)
    console.print(f"Trigger {trigger_id} removed")


def _parse_payload(payload: str | None) -> dict | None:
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON payload: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        console.print("[red]Payload must be a JSON object[/red]")
        raise typer.Exit(1)
    return data


@app.command()
def fire(
    trigger_id: str,
    payload: str = typer.Option(None, "--payload", "-p", help="JSON object appended to the description"),
    db: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """Fire a trigger now, ignoring its schedule."""
    data = _parse_payload(payload)

    async def work(config, store):
        return await _make_scheduler(config, store).fire_trigger(trigger_id, payload=data)

    work_item = _run_with_store(db, work)
    console.print(f"[green]Created work item[/green] {work_item.id}: {work_item.title}")


@app.command()
def webhook(
    token: str,
    payload: str = typer.Option(None, "--payload", "-p", help="JSON object appended to the description"),
    db: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """Fire the webhook trigger that owns TOKEN."""
    data = _parse_payload(payload)

    async def work(config, store):
        return await _make_scheduler(config, store).fire_webhook(token, payload=data)

    work_item = _run_with_store(db, work)
    console.print(f"[green]Created work item[/green] {work_item.id}: {work_item.title}")


@app.command()
def history(
    trigger_id: str,
    lines: int = typer.Option(20, "--lines", "-n", help="Number of entries to show"),
    db: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """Show the most recent firing-log entries for a trigger."""

    async def work(config, store):
        return await store.list_firing_log(trigger_id, limit=lines)

    entries = _run_with_store(db, work)
    if not entries:
        console.print("[dim]No firings recorded.[/dim]")
        raise typer.Exit(0)

    table = Table(title=f"Firing log — {trigger_id}", border_style="cyan")
    table.add_column("Fired at")
    table.add_column("Status")
    table.add_column("Work item", overflow="fold")
    table.add_column("Error")
    for entry in entries:
        status = "[green]fired[/green]" if entry.status == FiringStatus.FIRED else "[red]failed[/red]"
        table.add_row(_fmt(entry.fired_at), status, entry.work_item_id or "—", entry.error or "")
    console.print(table)


@app.command()
def check(
    expression: str,
    count: int = typer.Option(5, "--count", "-n", help="Number of upcoming matches"),
) -> None:
    """Validate a CRON expression and preview its next matches."""
    from cronfire.scheduler.cron import next_match, validate_expression

    try:
        validate_expression(expression)
    except CronfireError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Valid:[/green] {expression}")
    after = datetime.now()
    for _ in range(count):
        upcoming = next_match(expression, after)
        if upcoming is None:
            console.print("[dim]No further matches within a year.[/dim]")
            break
        console.print(f"  {_fmt(upcoming)}")
        after = upcoming


@app.command()
def version() -> None:
    """Show cronfire version."""
    from cronfire import __version__
    console.print(f"cronfire v{__version__}")


if __name__ == "__main__":
    app()
