"""cronbot CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from cronbot import __version__

app = typer.Typer(
    name="cronbot",
    help="cronbot - scheduled AI jobs posting to Discord",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"cronbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """cronbot - scheduled AI jobs posting to Discord."""


# ════════════════════════════════════════════════════════════
# run — start the cron daemon
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Start the cron daemon (runs until Ctrl+C)."""
    from cronbot.core.config.loader import load_config
    from cronbot.core.cron.service import CronService

    config = load_config(config_path)
    if not config.cron.enabled:
        console.print("[yellow]Cron is disabled (cron.enabled = false).[/yellow]")
        raise typer.Exit(code=1)
    if not config.discord.token:
        console.print("[red]discord.token is not set.[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Starting cronbot daemon[/green] — model: {config.cron_model}")
    service = CronService(config)
    try:
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        console.print("\nBye!")


# ════════════════════════════════════════════════════════════
# status — config + run stats info
# ════════════════════════════════════════════════════════════


@app.command()
def status(
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Show configuration and run stats summary."""
    from cronbot.core.config.loader import load_config
    from cronbot.core.cron.run_stats import load_run_stats

    config = load_config(config_path)
    store = load_run_stats(config.stats_path)
    records = store.list_records()

    table = Table(title="cronbot status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Cron Model", config.cron_model)
    table.add_row("Workspace", str(config.workspace_path))
    table.add_row("Stats Path", str(config.stats_path))
    table.add_row("Lock Dir", str(config.lock_path) if config.lock_path else "disabled")
    table.add_row("Jobs", str(len(records)))
    table.add_row("Paused", str(sum(1 for r in records if r.disabled)))
    table.add_row("Running", str(sum(1 for r in records if r.last_run_status == "running")))
    table.add_row("Last Error", str(sum(1 for r in records if r.last_run_status == "error")))

    console.print(table)


# ════════════════════════════════════════════════════════════
# cron — cron job management (sub-command group)
# ════════════════════════════════════════════════════════════

cron_app = typer.Typer(help="Manage cron jobs (edits the run stats file)")
app.add_typer(cron_app, name="cron")


def _open_store(config_path: str | None):
    from cronbot.core.config.loader import load_config
    from cronbot.core.cron.run_stats import load_run_stats

    return load_run_stats(load_config(config_path).stats_path)


@cron_app.command("list")
def cron_list(
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """List all cron jobs."""
    records = _open_store(config_path).list_records()

    if not records:
        console.print("[dim]No cron jobs found.[/dim]")
        return

    table = Table(title="Cron Jobs")
    table.add_column("Cron ID", style="cyan")
    table.add_column("Name", style="blue")
    table.add_column("Schedule", style="yellow")
    table.add_column("Cadence", style="magenta")
    table.add_column("Model", style="white")
    table.add_column("Status", style="green")
    table.add_column("Runs", justify="right")
    table.add_column("Last Run", style="dim")

    for rec in records:
        status_text = "paused" if rec.disabled else rec.last_run_status
        table.add_row(
            rec.cron_id,
            rec.name or "-",
            rec.schedule or rec.trigger_type,
            rec.cadence or "-",
            rec.effective_model or "-",
            status_text,
            str(rec.run_count),
            rec.last_run_at or "-",
        )

    console.print(table)


@cron_app.command("show")
def cron_show(
    cron_id: str = typer.Argument(help="Cron ID (e.g. cron-1a2b3c4d)"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Show one cron job in detail."""
    rec = _open_store(config_path).get_record(cron_id)
    if rec is None:
        console.print(f"[red]Cron not found:[/red] {cron_id}")
        raise typer.Exit(code=1)

    table = Table(title=f"Cron {cron_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key, value in rec.to_json().items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        table.add_row(key, str(value))
    console.print(table)


def _set_disabled(cron_id: str, disabled: bool, config_path: str | None) -> bool:
    store = _open_store(config_path)
    rec = store.get_record(cron_id)
    if rec is None:
        return False
    asyncio.run(store.upsert_record(cron_id, rec.job_key, {"disabled": disabled}))
    return True


@cron_app.command("pause")
def cron_pause(
    cron_id: str = typer.Argument(help="Cron ID to pause"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Mark a cron job paused (takes effect on next daemon start)."""
    if not _set_disabled(cron_id, True, config_path):
        console.print(f"[red]Cron not found:[/red] {cron_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]Paused cron job:[/green] {cron_id}")


@cron_app.command("resume")
def cron_resume(
    cron_id: str = typer.Argument(help="Cron ID to resume"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Mark a cron job active again (takes effect on next daemon start)."""
    if not _set_disabled(cron_id, False, config_path):
        console.print(f"[red]Cron not found:[/red] {cron_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]Resumed cron job:[/green] {cron_id}")


@cron_app.command("remove")
def cron_remove(
    cron_id: str = typer.Argument(help="Cron ID to remove"),
    config_path: str | None = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
) -> None:
    """Remove a cron job by ID."""
    store = _open_store(config_path)
    if asyncio.run(store.remove_record(cron_id)):
        console.print(f"[green]Removed cron job:[/green] {cron_id}")
    else:
        console.print(f"[red]Cron not found:[/red] {cron_id}")
        raise typer.Exit(code=1)


@cron_app.command("cadence")
def cron_cadence(
    schedule: str = typer.Argument(help='5-field cron expression, e.g. "0 9 * * 1-5"'),
) -> None:
    """Classify a cron expression's cadence."""
    from cronbot.core.cron.cadence import detect_cadence

    console.print(detect_cadence(schedule))
