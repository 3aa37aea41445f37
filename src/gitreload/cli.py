"""gitreload CLI entry point."""

import asyncio
import contextlib
import json
import logging
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gitreload import __version__
from gitreload.config import DEFAULT_CONFIG_DIR, ConfigError, load_settings, read_settings_file
from gitreload.events import Event, EventBus, EventType
from gitreload.git import sanitize_repo_url
from gitreload.reload import CommandReloadTrigger, ReloadState, ReloadTrigger, SignalReloadTrigger
from gitreload.staging import Slot, StagingStore, StoreStatus, revision_from_path, short_revision
from gitreload.supervisor import RevisionSupervisor

logger = logging.getLogger(__name__)

console = Console()

_JSON_SUBSCRIBER = "cli-json"

_EVENT_STYLES: dict[EventType, str] = {
    EventType.REVISION_DETECTED: "cyan",
    EventType.REVISION_STAGED: "cyan",
    EventType.RELOAD_REQUESTED: "yellow",
    EventType.REVISION_COMMITTED: "green",
    EventType.REVISION_ROLLED_BACK: "red",
    EventType.POLL_FAILED: "red",
    EventType.SYNC_FAILED: "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def _open_store(config: str | None, config_dir: str | None) -> StagingStore:
    """Locate the staging store from --config-dir or a settings file."""
    values: dict = {}
    if config:
        try:
            values = read_settings_file(Path(config))
        except ConfigError as e:
            raise click.ClickException(str(e)) from e

    base = Path(config_dir or values.get("config_dir") or DEFAULT_CONFIG_DIR)
    extension = str(values.get("extension", "yaml"))
    return StagingStore(base / "configs", extension=extension)


def _print_event(event: Event) -> None:
    style = _EVENT_STYLES.get(event.type, "white")
    if event.type.is_reconciliation:
        style = f"bold {style}"
    details = " ".join(f"{k}={v}" for k, v in event.data.items() if v is not None and k != "revision")
    revision = f"{short_revision(event.revision)} " if event.revision else ""
    console.print(f"[{style}]{event.type.value}[/{style}] {revision}{details}")


def _echo_json(event: Event) -> None:
    click.echo(json.dumps(event.to_json(), default=str))


async def _stream_json_events(queue: asyncio.Queue[Event]) -> None:
    """Write queued events to stdout, one JSON object per line."""
    while True:
        _echo_json(await queue.get())


async def _close_json_stream(bus: EventBus, queue: asyncio.Queue[Event]) -> None:
    """Flush what is still queued and detach the JSON subscriber."""
    while not queue.empty():
        _echo_json(queue.get_nowait())

    dropped = bus.dropped(_JSON_SUBSCRIBER)
    await bus.unsubscribe(_JSON_SUBSCRIBER)
    if dropped:
        logger.warning(f"JSON event stream fell behind, {dropped} events were dropped")


@click.group()
@click.version_option(__version__, prog_name="gitreload")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """gitreload - stage configuration from git and hot-reload it safely."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@cli.command()
@click.option("--config", "-c", "config", type=click.Path(exists=True, dir_okay=False), help="Settings TOML file")
@click.option("--repo", help="Git repository URL")
@click.option("--ref", help="Git reference (branch, tag, or commit)")
@click.option("--path", "file_path", help="Configuration file path within the repository")
@click.option("--config-dir", type=click.Path(file_okay=False), help="Base directory for clone and artifacts")
@click.option("--poll-interval", type=int, help="Polling interval in seconds")
@click.option("--extension", help="Artifact file extension")
@click.option("--header-source", type=click.Path(exists=True, dir_okay=False), help="Startup config to capture the header from")
@click.option("--keep-current", is_flag=True, default=None, help="Keep the current pointer populated until commit")
@click.option("--reload-command", help="Shell command applying a config; {path} is replaced with the artifact")
@click.option("--pid", type=int, help="Process to signal on reload")
@click.option("--signal", "signal_name", default="SIGHUP", show_default=True, help="Signal sent to --pid")
@click.option("--active-config", type=click.Path(dir_okay=False), help="Config the host is running right now")
@click.option("--json-events", is_flag=True, help="Print events as JSON lines instead of formatted text")
def run(
    config: str | None,
    repo: str | None,
    ref: str | None,
    file_path: str | None,
    config_dir: str | None,
    poll_interval: int | None,
    extension: str | None,
    header_source: str | None,
    keep_current: bool | None,
    reload_command: str | None,
    pid: int | None,
    signal_name: str,
    active_config: str | None,
    json_events: bool,
) -> None:
    """Poll the repository and stage, reload, commit or roll back revisions."""
    try:
        settings = load_settings(
            Path(config) if config else None,
            repo=repo,
            ref=ref,
            path=file_path,
            config_dir=config_dir,
            poll_interval=poll_interval,
            extension=extension,
            header_source=header_source,
            clear_current_on_stage=None if keep_current is None else not keep_current,
            reload_command=reload_command,
        )
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    if not settings.reload_command and pid is None:
        raise click.UsageError("one of --reload-command (or reload_command in settings) or --pid is required")

    try:
        signum = signal.Signals[signal_name.upper()]
    except KeyError as e:
        raise click.BadParameter(f"unknown signal {signal_name}", param_hint="--signal") from e

    store = StagingStore(settings.configs_path, extension=settings.extension)
    # Without --active-config, assume the host is running whatever current points to
    state = ReloadState(active_config or store.deref_slot(Slot.CURRENT))

    trigger: ReloadTrigger
    if settings.reload_command:
        trigger = CommandReloadTrigger(state, settings.reload_command)
    else:
        trigger = SignalReloadTrigger(state, pid=pid, signum=signum, assume_success=True)

    bus = EventBus()
    supervisor = RevisionSupervisor.from_settings(settings, trigger, state, event_bus=bus)

    watching = (
        f"Watching {sanitize_repo_url(settings.repo)} "
        f"(ref: {settings.ref}, path: {settings.path}) every {settings.poll_interval}s"
    )
    if json_events:
        # JSON lines replace the rich event output
        logger.info(watching)
    else:
        bus.add_callback(_print_event)
        console.print(f"[bold green]{watching}[/bold green]")

    async def run_supervisor() -> None:
        printer: asyncio.Task | None = None
        if json_events:
            queue = await bus.subscribe(_JSON_SUBSCRIBER)
            printer = asyncio.create_task(_stream_json_events(queue))

        await supervisor.start()
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            await supervisor.stop()
            if printer is not None:
                printer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await printer
                await _close_json_stream(bus, queue)

    try:
        asyncio.run(run_supervisor())
    except KeyboardInterrupt:
        console.print("\n[yellow]Supervisor stopped[/yellow]")


@cli.command()
@click.option("--config", "-c", "config", type=click.Path(exists=True, dir_okay=False), help="Settings TOML file")
@click.option("--config-dir", type=click.Path(file_okay=False), help="Base directory for clone and artifacts")
def status(config: str | None, config_dir: str | None) -> None:
    """Show the current, candidate and previous slots."""
    store = _open_store(config, config_dir)

    table = Table(title=f"Slots in {store.configs_dir}")
    table.add_column("Slot", style="cyan")
    table.add_column("Revision")
    table.add_column("Artifact")
    table.add_column("Exists")

    for slot, target in store.snapshot().items():
        if target is None:
            table.add_row(slot.value, "-", "[dim]absent[/dim]", "-")
            continue
        exists = "[green]yes[/green]" if target.exists() else "[red]no[/red]"
        table.add_row(slot.value, revision_from_path(target) or "?", str(target), exists)

    console.print(table)


def _report(status: StoreStatus, success: str) -> None:
    if status.ok:
        console.print(f"[green]{success}[/green]")
        return
    if status in (StoreStatus.NOTHING_TO_COMMIT, StoreStatus.NOTHING_TO_ROLL_BACK):
        console.print(f"[yellow]{status.value.replace('_', ' ')}[/yellow]")
        return
    raise click.ClickException(f"operation failed: {status.value}")


@cli.command()
@click.option("--config", "-c", "config", type=click.Path(exists=True, dir_okay=False), help="Settings TOML file")
@click.option("--config-dir", type=click.Path(file_okay=False), help="Base directory for clone and artifacts")
def commit(config: str | None, config_dir: str | None) -> None:
    """Promote the staged candidate to current."""
    store = _open_store(config, config_dir)
    _report(store.commit(), "Candidate committed")


@cli.command()
@click.option("--config", "-c", "config", type=click.Path(exists=True, dir_okay=False), help="Settings TOML file")
@click.option("--config-dir", type=click.Path(file_okay=False), help="Base directory for clone and artifacts")
def rollback(config: str | None, config_dir: str | None) -> None:
    """Discard the staged candidate and restore previous."""
    store = _open_store(config, config_dir)
    _report(store.rollback(), "Rolled back to previous configuration")


@cli.command()
@click.argument("artifact")
def revision(artifact: str) -> None:
    """Print the revision id embedded in an artifact path."""
    revision_id = revision_from_path(artifact)
    if revision_id is None:
        raise click.ClickException(f"no revision id in {artifact}")
    click.echo(revision_id)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
