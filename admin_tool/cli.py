"""
Command-line interface for the audio bridge.

Inspects manifests, browses the bucket, runs the HTTP and FTP front ends
and pulls files from a remote FTP source, all using Click.
"""

import json
import logging
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shared.config import BridgeConfig
from shared.exceptions import BridgeError
from shared.formatting import format_file_size
from shared.models import VirtualDirectory
from metainfo import read_manifest, select_audio_files
from ftp_bridge.client import RemoteTransferClient, RemoteTransferConfig
from ftp_bridge.server import FTPServerConfig, ServerRegistry
from storage.cloudflare_r2 import CloudflareR2Provider

console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(version="1.0.0")
@click.pass_context
def cli(ctx):
    """
    Audio bridge admin tool

    Decode torrent manifests and expose an R2 bucket over FTP and HTTP.
    """
    config = BridgeConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


@cli.command()
@click.argument('manifest', type=click.Path(exists=True, dir_okay=False))
@click.option('--all', 'show_all', is_flag=True, help='List every file, not only audio')
@click.option('--json', 'as_json', is_flag=True, help='Print the decoded manifest as JSON')
def inspect(manifest, show_all, as_json):
    """Decode a .torrent manifest and show its audio files."""
    try:
        decoded = read_manifest(manifest)
    except BridgeError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps(decoded.to_dict(), indent=2))
        return

    entries = decoded.files if show_all else select_audio_files(decoded)
    console.print(Panel.fit(
        f"[bold cyan]{decoded.name}[/bold cyan]\n\n"
        f"Info hash: {decoded.info_hash_hex}\n"
        f"Total size: {format_file_size(decoded.total_size)} in {len(decoded.files)} files",
        border_style="cyan"
    ))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Path", style="green")
    table.add_column("Size", justify="right")
    for entry in entries:
        table.add_row(entry.display_path, format_file_size(entry.length))
    console.print(table)
    console.print(f"\nMagnet: [cyan]{decoded.magnet_uri}[/cyan]")


@cli.command()
@click.argument('path', default='/')
@click.pass_obj
def ls(config, path):
    """List one directory level of the bucket."""
    try:
        adapter = CloudflareR2Provider.from_config(config).directory_adapter()
        entries = adapter.list(path)
    except BridgeError as e:
        _fail(str(e))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for entry in entries:
        if isinstance(entry, VirtualDirectory):
            table.add_row(f"[bold]{entry.name}/[/bold]", "", "")
        else:
            modified = entry.modified.strftime("%Y-%m-%d %H:%M") if entry.modified else ""
            table.add_row(entry.name, format_file_size(entry.size), modified)
    console.print(table)


@cli.command()
@click.option('--host', default='0.0.0.0', help='Interface to bind')
@click.option('--port', default=5005, help='Port to run the HTTP API on')
@click.option('--debug/--no-debug', default=False, help='Run in debug mode')
@click.pass_obj
def serve(config, host, port, debug):
    """Run the HTTP API (streaming, listings, admin endpoints)."""
    from shared.api import start_api

    console.print(f"[green]Starting HTTP API at http://{host}:{port}/api/health[/green]")
    console.print("[yellow]Press Ctrl+C to stop[/yellow]")
    start_api(host=host, port=port, debug=debug, config=config)


@cli.command('ftp-serve')
@click.pass_obj
def ftp_serve(config):
    """Expose the bucket read-only over FTP until interrupted."""
    try:
        server_config = FTPServerConfig.from_config(config)
        provider = CloudflareR2Provider.from_config(config)
    except BridgeError as e:
        _fail(str(e))

    registry = ServerRegistry()
    try:
        server = registry.start(server_config, provider.directory_adapter)
    except OSError as e:
        _fail(f"Could not start FTP server: {e}")

    host, port = server.address
    console.print(f"[green]FTP server listening on {host}:{port}[/green]")
    console.print(f"Connect with: [cyan]{server_config.connection_url}[/cyan]")
    console.print("[yellow]Press Ctrl+C to stop[/yellow]")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        registry.stop()


@cli.command('remote-list')
@click.argument('path', required=False)
@click.pass_obj
def remote_list(config, path):
    """List files on the configured remote FTP source."""
    path = path or config.ftp_remote_path
    try:
        with RemoteTransferClient(RemoteTransferConfig.from_config(config)) as client:
            files = client.list(path)
    except BridgeError as e:
        _fail(str(e))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Type")
    for f in files:
        table.add_row(f.name, format_file_size(f.size), f.media_type)
    console.print(table)


@cli.command('remote-fetch')
@click.argument('paths', nargs=-1, required=True)
@click.option('--output', type=click.Path(file_okay=False),
              help='Save into this directory instead of importing into the bucket')
@click.pass_obj
def remote_fetch(config, paths, output):
    """Download files from the remote FTP source into the bucket."""
    from storage.ingest import import_from_remote

    try:
        with RemoteTransferClient(RemoteTransferConfig.from_config(config)) as client:
            if output:
                out_dir = Path(output)
                out_dir.mkdir(parents=True, exist_ok=True)
                for remote_path in paths:
                    local = client.download_to_path(remote_path, out_dir / Path(remote_path).name)
                    console.print(f"[green]✓[/green] {remote_path} -> {local}")
                return
            provider = CloudflareR2Provider.from_config(config)
            keys = import_from_remote(client, provider, paths, config.temp_dir)
    except BridgeError as e:
        _fail(str(e))

    for key in keys:
        console.print(f"[green]✓[/green] {key}")
    console.print(f"\nImported [bold]{len(keys)}[/bold] files")


if __name__ == '__main__':
    cli()
