"""Xavier CLI - Start the server with a single command."""

import os
import socket
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

import typer
import uvicorn

from xavier.config import THREAD_TTL_SECONDS, get_threads_root


def is_port_available(host: str, port: int) -> bool:
    """Check if a port is available for binding."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            return True
        except OSError:
            return False


def find_available_port(host: str, start_port: int, max_attempts: int = 10) -> int:
    """Find an available port starting from start_port."""
    for offset in range(max_attempts):
        port = start_port + offset
        if is_port_available(host, port):
            return port
    raise RuntimeError(f"No available port found in range {start_port}-{start_port + max_attempts - 1}")

app = typer.Typer(
    name="xavier",
    help="Apply AI-driven code edits to cloned repositories and get the diff back.",
    no_args_is_help=False,
)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", "-h", help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind to")] = 2026,
    reload: Annotated[bool, typer.Option("--reload", "-r", help="Enable auto-reload")] = False,
    root: Annotated[
        Optional[str], typer.Option("--root", "-d", help="Directory to store threads in")
    ] = None,
) -> None:
    """Start the Xavier server."""
    from xavier.store import ThreadStore

    # The server reads the thread root from the environment
    if root:
        os.environ["THREAD_WORKDIR"] = str(Path(root).resolve())

    store = ThreadStore(get_threads_root())
    try:
        store.ensure_root()
    except OSError as e:
        typer.echo(f"Error: cannot use thread directory {store.root}: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Threads: {store.root} ({len(store.list_thread_ids())} existing)")

    # Find available port if default is taken
    actual_port = port
    if not is_port_available(host, port):
        try:
            actual_port = find_available_port(host, port)
            typer.echo(f"Port {port} is in use, using {actual_port} instead")
        except RuntimeError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    typer.echo(f"Starting Xavier on http://{host}:{actual_port}")
    typer.echo("Press Ctrl+C to stop")

    uvicorn.run(
        "xavier.server:app",
        host=host,
        port=actual_port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show version information."""
    from xavier import __version__

    typer.echo(f"Xavier v{__version__}")


@app.command()
def stats() -> None:
    """Show statistics about stored threads."""
    from xavier.store import ThreadStore

    store = ThreadStore(get_threads_root())
    if not store.root.exists():
        typer.echo("No thread directory found.")
        return

    thread_ids = store.list_thread_ids()
    readable = store.list_threads()

    typer.echo(f"Root: {store.root}")
    typer.echo(f"Threads: {len(thread_ids)} ({len(readable)} readable, {len(thread_ids) - len(readable)} unreadable)")
    if readable:
        max_step = max(meta.step for meta in readable)
        typer.echo(f"Highest step: {max_step}")


@app.command()
def sweep() -> None:
    """Remove expired threads now."""
    from xavier.store import ThreadStore

    store = ThreadStore(get_threads_root())
    try:
        reaped = store.sweep_expired(timedelta(seconds=THREAD_TTL_SECONDS))
    except OSError as e:
        typer.echo(f"Error sweeping {store.root}: {e}", err=True)
        raise typer.Exit(1)

    for thread_id in reaped:
        typer.echo(f"Removed {thread_id}")
    typer.echo(f"Sweep complete. Removed {len(reaped)} thread(s).")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Xavier - iterative AI code edits with diff output."""
    if ctx.invoked_subcommand is None:
        # Default action: start the server with default options
        serve()


if __name__ == "__main__":
    app()
