"""Typer application and CLI entry point for urlstore.

The ``urlstore`` command exposes the backend registry from a terminal::

    urlstore backends
    urlstore resolve https://github.com/octocat/data/blob/main/todo.json
    urlstore load https://github.com/octocat/data/blob/main/todo.json
    urlstore store local:notes notes.json
    urlstore login https://github.com/octocat/data

:func:`main` is the console-script entry point declared in
``pyproject.toml``. Library errors exit with the code carried by the
:class:`~urlstore.exceptions.UrlstoreError` subclass; anything else is
written to a crash log under the data directory.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Coroutine, Optional, TypeVar

import typer

from urlstore import __version__
from urlstore.exit_codes import EXIT_GENERIC_FAILURE

T = TypeVar("T")

app = typer.Typer(
    name="urlstore",
    help="Read and write data in cloud services addressed by URL.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"urlstore {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Install the terminal and, with ``--verbose``, debug logging."""
    from urlstore.output import Mode, Terminal, install

    mode = Mode.JSON if json_output else Mode.PLAIN if plain_output else Mode.AUTO
    install(Terminal(mode, color=not no_color, quiet=quiet, verbose=verbose))
    if verbose:
        _configure_logging()

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _configure_logging() -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    logger = logging.getLogger("urlstore")
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    logger.setLevel(logging.DEBUG)


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, turning library errors into exit codes."""
    from urlstore.exceptions import UrlstoreError
    from urlstore.output import error

    try:
        return asyncio.run(coro)
    except UrlstoreError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _create(url: str, **options: Any) -> Any:
    """Create the backend for *url* or raise :class:`UnsupportedSourceError`."""
    from urlstore.backend import Backend
    from urlstore.exceptions import UnsupportedSourceError
    from urlstore.output import debug
    from urlstore.registry import create

    backend = create(url, **{key: value for key, value in options.items() if value is not None})
    if backend is None:
        raise UnsupportedSourceError(Backend.phrase("unsupported_source", url))
    debug(f"{url} is handled by {backend.name}")
    return backend


def _read_input(file: Optional[str]) -> str:
    if file is None or file == "-":
        return sys.stdin.read()
    with open(file, encoding="utf-8") as f:
        return f.read()


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("backends")
def backends_command() -> None:
    """List registered backends in the order URLs are matched against them."""
    from urlstore.output import show_table
    from urlstore.registry import registry

    rows = [
        [cls.name, cls.title, ", ".join(sorted(cls.capabilities)) or "-"]
        for cls in registry
    ]
    show_table(["Name", "Title", "Capabilities"], rows, title="Backends")


@app.command("resolve")
def resolve_command(
    url: str = typer.Argument(help="Source URL."),
    backend_type: Optional[str] = typer.Option(None, "--type", "-t", help="Backend name."),
) -> None:
    """Show which backend handles URL and how the URL decomposes."""
    from dataclasses import asdict

    from urlstore.output import show

    async def resolve() -> dict[str, Any]:
        backend = _create(url, type=backend_type)
        async with backend:
            ref = {key: value for key, value in asdict(backend.ref).items() if key != "repo_info"}
            return {"backend": backend.name, "ref": ref}

    show(_run(resolve()))


@app.command("load")
def load_command(
    url: str = typer.Argument(help="Source URL."),
    backend_type: Optional[str] = typer.Option(None, "--type", "-t", help="Backend name."),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="Data format (json, yaml, csv, text)."),
    output_file: Optional[str] = typer.Option(None, "--output", "-o", help="Write the data to this file."),
) -> None:
    """Load and print the data stored at URL."""
    from urlstore.exit_codes import EXIT_NOT_FOUND
    from urlstore.output import current, error, show

    async def load() -> Any:
        backend = _create(url, type=backend_type, format=fmt)
        async with backend:
            return await backend.load()

    data = _run(load())
    if data is None:
        error(f"Nothing stored at {url}")
        raise typer.Exit(code=EXIT_NOT_FOUND)
    if output_file:
        current().output_file = output_file
    show(data)


@app.command("store")
def store_command(
    url: str = typer.Argument(help="Target URL."),
    file: Optional[str] = typer.Argument(None, help="Input file, '-' or omitted for stdin."),
    backend_type: Optional[str] = typer.Option(None, "--type", "-t", help="Backend name."),
    fmt: Optional[str] = typer.Option(
        None, "--format", "-f", help="Parse the input and store it in this format."
    ),
) -> None:
    """Store the contents of FILE at URL, logging in if the backend needs it."""
    from urlstore.output import success

    text = _read_input(file)

    async def store() -> Any:
        backend = _create(url, type=backend_type, format=fmt)
        async with backend:
            if backend.supports("auth"):
                await backend.ready()
                if not backend.is_authenticated:
                    await backend.login()
            data = backend.parse(text) if fmt else text
            return await backend.store(data)

    result = _run(store())
    kind = result.type if result is not None else "update"
    success(f"{kind.capitalize()}d {url}")


@app.command("login")
def login_command(url: str = typer.Argument(help="Any URL handled by the backend.")) -> None:
    """Log in to the service behind URL."""
    from urlstore.exceptions import UnsupportedOperationError
    from urlstore.output import success

    async def login() -> Any:
        backend = _create(url)
        async with backend:
            if not backend.supports("auth"):
                raise UnsupportedOperationError(
                    backend.phrase("unsupported_operation", backend.name, "logging in")
                )
            return await backend.login()

    user = _run(login())
    success(f"Logged in as {user.username}")


@app.command("logout")
def logout_command(url: str = typer.Argument(help="Any URL handled by the backend.")) -> None:
    """Forget the stored login for the service behind URL."""
    from urlstore.output import info, success

    async def logout() -> bool:
        backend = _create(url)
        async with backend:
            if not backend.supports("auth"):
                return False
            await backend.ready()
            return await backend.logout()

    if _run(logout()):
        success("Logged out")
    else:
        info("Not logged in")


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback to the data directory and return its path."""
    from urlstore.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``urlstore`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from urlstore.exceptions import UrlstoreError
        from urlstore.output import error

        if isinstance(exc, UrlstoreError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
