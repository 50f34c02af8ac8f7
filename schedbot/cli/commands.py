"""schedbot CLI: Typer-based command-line interface."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from schedbot import __version__

app = typer.Typer(
    name="schedbot",
    help="schedbot - scheduled prompts and payments for Telegram groups",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"schedbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """schedbot - scheduled prompts and payments for Telegram groups."""


def _store():
    from schedbot.core.config.loader import load_config
    from schedbot.memory.store import BotStore

    config = load_config()
    return config, BotStore(config.database.path)


# ════════════════════════════════════════════════════════════
# run: start API server
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn) with the schedule engine."""
    import uvicorn

    console.print(f"[green]Starting schedbot API on {host}:{port}[/green]")
    uvicorn.run("schedbot.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# status: config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration and schedule totals."""
    config, store = _store()
    counts = store.count_schedules()

    table = Table(title="schedbot status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Model", config.assistant.model)
    table.add_row("DB Path", config.database.path)
    table.add_row("Scheduler", "enabled" if config.scheduler.enabled else "disabled")
    table.add_row("Caps (prompt/payment)", f"{config.scheduler.prompt_cap}/{config.scheduler.payment_cap}")
    table.add_row("Schedules", str(counts["total"]))
    table.add_row("Active", str(counts["active"]))
    table.add_row("Open wizards", str(counts["wizards"]))

    console.print(table)


# ════════════════════════════════════════════════════════════
# schedules: inspect and control records (sub-command group)
# ════════════════════════════════════════════════════════════

schedules_app = typer.Typer(help="Inspect and control schedules")
app.add_typer(schedules_app, name="schedules")


@schedules_app.command("list")
def schedules_list(
    group: int | None = typer.Option(None, "--group", "-g", help="Only this group"),
    all_: bool = typer.Option(False, "--all", "-a", help="Include inactive records"),
) -> None:
    """List scheduled records."""
    _, store = _store()
    records = [
        r
        for r in store.list_schedules()
        if (group is None or r.group_id == group) and (all_ or r.active)
    ]
    if not records:
        console.print("[dim]No schedules found.[/dim]")
        return

    table = Table(title="Schedules")
    table.add_column("ID", style="cyan")
    table.add_column("Group", style="blue")
    table.add_column("Kind", style="magenta")
    table.add_column("Time (UTC)", style="yellow")
    table.add_column("Repeat", style="white")
    table.add_column("Next run", style="green")
    table.add_column("Runs", justify="right")
    table.add_column("Status")

    for r in records:
        status_text = "active" if r.active else "[dim]inactive[/dim]"
        if r.last_attempt_status == "failure":
            status_text += " [red](last failed)[/red]"
        table.add_row(
            r.id,
            str(r.group_id),
            r.kind.value,
            f"{r.hour:02d}:{r.minute:02d}",
            r.repeat.label(r.weeks),
            f"{r.next_run_at:%Y-%m-%d %H:%M}" if r.next_run_at else "-",
            str(r.run_count),
            status_text,
        )
    console.print(table)


def _set_active(schedule_id: str, active: bool) -> None:
    from schedbot.core.schedule.intervals import next_run_for
    from schedbot.core.schedule.types import utcnow

    from schedbot.core.schedule.types import RepeatPolicy

    config, store = _store()
    record = store.get_schedule(schedule_id)
    if record is None or record.deleted:
        console.print(f"[red]Schedule not found:[/red] {schedule_id}")
        raise typer.Exit(code=1)

    if active and not record.active:
        if record.repeat is RepeatPolicy.NONE and record.run_count > 0:
            console.print(f"[red]One-time schedule already ran:[/red] {schedule_id}")
            raise typer.Exit(code=1)
        cap = config.cap_for(record.kind.value)
        if len(store.list_active_for_group(record.group_id, record.kind)) >= cap:
            console.print(f"[red]Group already has {cap} active {record.kind.value} schedules[/red]")
            raise typer.Exit(code=1)

    record.active = active
    if active:
        now = utcnow()
        if record.next_run_at is None or record.next_run_at < now:
            record.next_run_at = next_run_for(record, now)
    store.put_schedule(record)
    verb = "Resumed" if active else "Paused"
    console.print(f"[green]{verb}:[/green] {schedule_id}")
    if active:
        console.print("  [dim]A running server binds its timer on next restart.[/dim]")


@schedules_app.command("pause")
def schedules_pause(schedule_id: str = typer.Argument(help="Schedule ID")) -> None:
    """Deactivate a schedule; its timer becomes a no-op."""
    _set_active(schedule_id, False)


@schedules_app.command("resume")
def schedules_resume(schedule_id: str = typer.Argument(help="Schedule ID")) -> None:
    """Reactivate a paused schedule."""
    _set_active(schedule_id, True)


@schedules_app.command("run-now")
def schedules_run_now(schedule_id: str = typer.Argument(help="Schedule ID")) -> None:
    """Make a schedule due so its next tick executes it."""
    from schedbot.core.schedule.types import utcnow

    _, store = _store()
    record = store.get_schedule(schedule_id)
    if record is None:
        console.print(f"[red]Schedule not found:[/red] {schedule_id}")
        raise typer.Exit(code=1)
    record.next_run_at = utcnow()
    store.put_schedule(record)
    console.print(f"[green]Queued to run:[/green] {schedule_id}")


# ════════════════════════════════════════════════════════════
# wallet / group / prefs: supporting data
# ════════════════════════════════════════════════════════════

wallet_app = typer.Typer(help="Manage the @username → wallet directory")
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("link")
def wallet_link(
    username: str = typer.Argument(help="Telegram username (with or without @)"),
    address: str = typer.Argument(help="Wallet address"),
) -> None:
    """Link a username to the wallet that receives payments."""
    _, store = _store()
    store.link_wallet(username, address)
    console.print(f"[green]Linked[/green] @{username.lstrip('@')} [green]→[/green] {address}")


group_app = typer.Typer(help="Manage group settings")
app.add_typer(group_app, name="group")


@group_app.command("credentials")
def group_credentials(
    group_id: int = typer.Argument(help="Telegram group id"),
    jwt: str = typer.Argument(help="Backend token used for payments and billing"),
) -> None:
    """Store the backend credentials of a group."""
    _, store = _store()
    store.set_group_credentials(group_id, jwt)
    console.print(f"[green]Credentials stored for group[/green] {group_id}")


prefs_app = typer.Typer(help="Manage per-user model preferences")
app.add_typer(prefs_app, name="prefs")


@prefs_app.command("set")
def prefs_set(
    username: str = typer.Argument(help="Telegram username"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model for scheduled prompts"),
    temperature: float | None = typer.Option(None, "--temperature", "-t", help="Sampling temperature"),
) -> None:
    """Set the model and temperature used for a creator's scheduled prompts."""
    data = {k: v for k, v in {"model": model, "temperature": temperature}.items() if v is not None}
    if not data:
        console.print("[yellow]Nothing to set.[/yellow]")
        raise typer.Exit(code=1)
    _, store = _store()
    store.update_preferences(username.lstrip("@"), data)
    console.print(f"[green]Preferences updated for[/green] @{username.lstrip('@')}")
