#!/usr/bin/env python3
"""
cursor-kit CLI

Command-line interface for sharing AI-IDE config directories between
machines.

Usage:
    cursor-kit share                       # Share detected configs on the LAN
    cursor-kit share --mode internet       # Share through a tunnel
    cursor-kit receive URL                 # Receive into the current directory
    cursor-kit receive URL --force         # Overwrite existing configs
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Sequence

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import DownloadColumn, Progress, SpinnerColumn, TextColumn, TransferSpeedColumn
from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import __version__
from .archive import TransferManifest
from .config import TUNNEL_PROVIDERS, load_config
from .configs import KIND_TABLE, ConfigDescriptor, ConfigKind, detect_available_configs
from .errors import ConfigurationError, CursorKitError
from .receive import ConflictStrategy, ReceiveEngine
from .share import SessionEvent, SessionState, ShareServer

console = Console()

EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
        force=True,
    )


def format_size(size: int) -> str:
    """Format byte size to human readable."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def fail(message: str, code: int = EXIT_ERROR):
    console.print(f"[red]✗ {message}[/red]")
    sys.exit(code)


@click.group()
@click.version_option(__version__, prog_name='cursor-kit')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """cursor-kit - Share AI-IDE configs between machines."""
    try:
        config = load_config(config_path)
    except CursorKitError as e:
        setup_logging(verbose)
        fail(str(e))

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


# === Share ===

def select_configs(available: Sequence[ConfigDescriptor],
                   only: Sequence[str]) -> List[ConfigDescriptor]:
    """Pick the configs to share: --only filter, else ask per config."""
    if only:
        wanted = [ConfigKind.parse(kind) for kind in only]
        by_kind = {c.kind: c for c in available}
        missing = [k.value for k in wanted if k not in by_kind]
        if missing:
            raise ConfigurationError(
                f"Not found in this directory: {', '.join(missing)}"
            )
        return [by_kind[k] for k in dict.fromkeys(wanted)]

    if len(available) == 1:
        return list(available)

    return [
        c for c in available
        if Confirm.ask(f"Share [cyan]{c.label}[/cyan] ({c.directory})?",
                       default=True, console=console)
    ]


def print_share_panel(server: ShareServer, configs: Sequence[ConfigDescriptor]):
    lines = [
        "[bold green]Share Session Started[/bold green]\n",
        f"Configs: [cyan]{', '.join(c.label for c in configs)}[/cyan]",
        f"Port: [yellow]{server.port}[/yellow]",
    ]
    if server.tunnel is not None:
        lines.append(f"Tunnel: [yellow]{server.tunnel.provider.value}[/yellow]")
    lines += [
        "",
        "[bold]On the other machine run:[/bold]",
        f"[green]cursor-kit receive {server.url}[/green]",
    ]
    console.print(Panel.fit("\n".join(lines), title="cursor-kit share"))


def print_session_status(old_state: SessionState, event: SessionEvent,
                         new_state: SessionState):
    if new_state is SessionState.SENDING:
        console.print("[dim]Receiver connected, sending archive...[/dim]")
    elif new_state is SessionState.AWAITING_CONFIRMATION:
        console.print("[dim]Archive sent, waiting for the receiver...[/dim]")
    elif new_state is SessionState.CONFIRMED:
        if event is SessionEvent.TIMEOUT_FIRED:
            console.print("[yellow]No confirmation received, assuming the transfer completed[/yellow]")
        else:
            console.print("[green]✓ Receiver confirmed the transfer[/green]")


@cli.command()
@click.option('--port', '-p', type=int, help='Port to listen on (next free port is used if busy)')
@click.option('--host', help='Interface to bind')
@click.option('--mode', type=click.Choice(['lan', 'internet']), default='lan',
              show_default=True, help='Network mode')
@click.option('--tunnel', type=click.Choice(TUNNEL_PROVIDERS),
              help='Tunnel provider for internet mode')
@click.option('--only', multiple=True, metavar='KIND',
              type=click.Choice([k.value for k in KIND_TABLE]),
              help='Share only this config kind (repeatable)')
@click.option('--timeout', type=float, help='Seconds to wait for confirmation after sending')
@click.pass_context
def share(ctx, port, host, mode, tunnel, only, timeout):
    """Share config directories from the current directory."""
    config = ctx.obj['config']
    if port is not None:
        config.port = port
    if host is not None:
        config.host = host
    if timeout is not None:
        config.confirm_timeout = timeout
    if tunnel is not None:
        config.tunnel_provider = tunnel

    try:
        config.validate()
        available = detect_available_configs(Path.cwd())
        if not available:
            fail("No configs found in this directory (.cursor, .agent or .github)")
        configs = select_configs(available, only)
    except CursorKitError as e:
        fail(str(e))

    if not configs:
        fail("Nothing selected to share")

    tunnel_provider = config.tunnel_provider if mode == 'internet' else None

    async def run() -> ShareServer:
        server = ShareServer(configs, config, tunnel_provider=tunnel_provider)
        server.session.on_transition(print_session_status)

        if tunnel_provider:
            with console.status(f"Opening {tunnel_provider} tunnel..."):
                await server.start()
        else:
            await server.start()

        print_share_panel(server, configs)
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        await server.serve()
        return server

    try:
        server = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Share stopped[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except CursorKitError as e:
        fail(str(e))
    except OSError as e:
        fail(f"Could not start the share server: {e}")

    session = server.session
    if session.failed:
        fail(f"Transfer failed: {session.last_error}")
    if session.confirmation is None:
        console.print("\n[yellow]Share stopped[/yellow]")
        sys.exit(EXIT_INTERRUPTED)

    console.print(f"[green]✓ Transfer complete ({format_size(session.bytes_sent)})[/green]")


# === Receive ===

def print_manifest(manifest: TransferManifest, configs: Sequence[ConfigDescriptor]):
    table = Table(title="Incoming Configs")
    table.add_column("Config", style="cyan")
    table.add_column("Directory", style="yellow")
    table.add_column("Status")

    for c in configs:
        status = "[red]exists[/red]" if c.has_conflict else "[green]new[/green]"
        table.add_row(c.label, c.directory, status)

    console.print(table)


def ask_strategy(conflicts: Sequence[ConfigDescriptor]) -> ConflictStrategy:
    names = ', '.join(c.directory for c in conflicts)
    console.print(f"[yellow]Already present: {names}[/yellow]")
    answer = Prompt.ask(
        "How should existing configs be handled?",
        choices=[s.value for s in ConflictStrategy],
        default=ConflictStrategy.CANCEL.value,
        console=console,
    )
    return ConflictStrategy.parse(answer)


@cli.command()
@click.argument('url')
@click.option('--force', '-f', is_flag=True, help='Overwrite existing configs without asking')
@click.option('--dest', type=click.Path(file_okay=False, path_type=Path),
              help='Directory to receive into (default: current directory)')
@click.pass_context
def receive(ctx, url, force, dest):
    """Receive configs from a share URL."""
    config = ctx.obj['config']
    destination: Path = dest or Path.cwd()

    async def run():
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=console,
            transient=True,
        )
        task = progress.add_task("Downloading...", total=None)

        def update_progress(received: int):
            progress.update(task, completed=received)

        def on_manifest(manifest: TransferManifest, configs: Sequence[ConfigDescriptor]):
            # Prompts need the terminal back
            progress.stop()
            print_manifest(manifest, configs)

        engine = ReceiveEngine(
            config,
            choose_strategy=ask_strategy,
            on_manifest=on_manifest,
            progress_callback=update_progress,
        )

        progress.start()
        try:
            return await engine.receive(url, destination, force=force)
        finally:
            progress.stop()

    try:
        outcome = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Receive interrupted[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except CursorKitError as e:
        fail(str(e))

    if outcome.cancelled:
        fail("Receive cancelled, nothing was changed")

    actions = outcome.actions()
    for c in outcome.configs:
        console.print(f"[green]✓ {c.label}[/green] {actions[c.kind]} ({c.directory})")

    summary = f"{outcome.files_written} files written"
    if outcome.files_skipped:
        summary += f", {outcome.files_skipped} existing kept"
    console.print(f"\n[green]✓ Received {format_size(outcome.bytes_received)}: {summary}[/green]")

    if not outcome.confirmed:
        console.print("[yellow]Could not notify the sender; it will stop on its own[/yellow]")


if __name__ == '__main__':
    cli()
