from __future__ import annotations

from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .cleaner import PassResult, build_cleaner
from .errors import ConfigError
from .logging import setup_logging
from .scheduler import CleanerScheduler
from .settings import Settings, load_settings

app = typer.Typer(
    add_completion=False,
    help="media_store: local-disk media server + unreferenced file cleaner",
    rich_markup_mode="rich",
)
console = Console()


def _settings_or_exit() -> Settings:
    try:
        return load_settings()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)


def _print_result(result: PassResult) -> None:
    if not result.ok or result.report is None:
        console.print(f"[red]Pass aborted, nothing deleted:[/red] {result.error}")
        return

    report = result.report
    verb = "Would delete" if report.dry_run else "Deleted"
    t = Table(title=f"[bold]{verb} ({len(report.deleted)})[/bold]", show_header=False)
    t.add_column("Reference", style="cyan")
    for ref in report.deleted:
        t.add_row(ref)
    console.print(t)

    if report.failed:
        f = Table(title="[bold red]Failed[/bold red]")
        f.add_column("Reference", style="bold")
        f.add_column("Error", style="red")
        for item in report.failed:
            f.add_row(item.reference, item.error)
        console.print(f)

    console.print(
        f"[dim]referenced={result.referenced} on_disk={result.on_disk} "
        f"kept={report.kept} ({result.duration_seconds:.2f}s)[/dim]"
    )


@app.command("status", help="Show the active configuration")
def status():
    s = _settings_or_exit()
    backend = str(s.MS_DB or "").lower()
    if backend in {"mongo", "mongodb"}:
        source = f"{s.MS_MONGO_DATABASE} / {', '.join(s.mongo_collections) or '[red](none)[/red]'}"
    else:
        source = f"{s.MS_PG_HOST}:{s.MS_PG_PORT}/{s.MS_PG_DATABASE} {s.MS_PG_FIELD} in {', '.join(s.pg_tables) or '[red](none)[/red]'}"

    console.print(Panel.fit(
        "\n".join([
            f"[bold]Upload root:[/bold]  {s.MS_UPLOAD_ROOT}",
            f"[bold]Prefix:[/bold]       {s.MS_REFERENCE_PREFIX}",
            f"[bold]API Server:[/bold]   http://{s.MS_API_HOST}:{s.MS_API_PORT}",
            "",
            f"[bold]Backend:[/bold]      {s.MS_DB}",
            f"[bold]Source:[/bold]       {source}",
            f"[bold]Cleaner:[/bold]      enabled={s.MS_CLEANER_ENABLED} every {s.MS_CLEANER_INTERVAL_SECONDS:g}s"
            f" dry_run={s.MS_CLEANER_DRY_RUN}",
        ]),
        title="[bold]Configuration[/bold]",
    ))


@app.command("clean", help="Run a single cleaner pass and exit")
def clean(
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Report what would be deleted")] = False,
):
    s = _settings_or_exit()
    setup_logging(s)
    try:
        cleaner = build_cleaner(s)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)
    cleaner.dry_run = cleaner.dry_run or dry_run

    result = cleaner.run_pass()
    _print_result(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("watch", help="Run the cleaner on its schedule in the foreground")
def watch(
    interval: Annotated[
        Optional[float],
        typer.Option(help="Seconds between passes (default: MS_CLEANER_INTERVAL_SECONDS)"),
    ] = None,
):
    s = _settings_or_exit()
    setup_logging(s)
    try:
        scheduler = CleanerScheduler(build_cleaner(s), interval or s.MS_CLEANER_INTERVAL_SECONDS)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)

    console.print("[dim]Press CTRL+C to stop[/dim]")
    scheduler.start()
    try:
        while scheduler.running:
            scheduler.wait(1.0)
    except KeyboardInterrupt:
        console.print("Shutting down gracefully...")
    finally:
        scheduler.stop()


@app.command("run", help="Start the API server (cleaner runs in the background)")
def run(
    host: Annotated[Optional[str], typer.Option(help="Host to bind")] = None,
    port: Annotated[Optional[int], typer.Option(help="Port to bind")] = None,
):
    import uvicorn

    s = _settings_or_exit()
    try:
        # Fail fast on an unknown backend before the server starts.
        build_cleaner(s)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)

    host = host or s.MS_API_HOST
    port = port or s.MS_API_PORT
    log_files = setup_logging(s)

    console.print(Panel.fit(
        f"[bold]API Server starting...[/bold]\n\n"
        f"  URL:  [cyan]http://{host}:{port}[/cyan]\n"
        f"  Logs: [cyan]{log_files.main}[/cyan]\n"
        f"  Cleaner log: [cyan]{log_files.cleaner or '(disabled)'}[/cyan]\n\n"
        f"[dim]Press CTRL+C to stop[/dim]",
        title="[bold green]media_store[/bold green]",
    ))

    uvicorn.run(
        "media_store.app:app",
        host=host,
        port=port,
        reload=False,
        access_log=s.MS_LOG_ACCESS,
        log_config=None,
    )


def main():
    app()
