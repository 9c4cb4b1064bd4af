"""Terminal output for the ``urlstore`` command.

Loaded data goes to **stdout** so it can be piped into other tools; status
lines go to **stderr**. On an interactive, coloured terminal data is
pretty-printed with Rich, otherwise it is written as plain text. ``NO_COLOR``,
``TERM=dumb`` and ``--no-color`` turn colour off.

One :class:`Terminal` is installed per invocation by
:func:`~urlstore.app.main_callback`; the module-level helpers (:func:`show`,
:func:`error`, ...) write through it.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table


class Mode(str, Enum):
    """How data is written. ``AUTO`` picks ``PRETTY`` or ``PLAIN``."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    PRETTY = "pretty"


# level -> (rich markup, plain text, shown when quiet)
_LEVELS: dict[str, tuple[str, str, bool]] = {
    "info": ("{}", "{}", False),
    "success": ("[green]{}[/green]", "{}", False),
    "warning": ("[yellow]Warning:[/yellow] {}", "Warning: {}", True),
    "error": ("[bold red]Error:[/bold red] {}", "Error: {}", True),
    "debug": ("[dim]\\[debug] {}[/dim]", "[debug] {}", False),
}


def color_disabled() -> bool:
    """``NO_COLOR`` (any value) or ``TERM=dumb``."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


def stdout_is_terminal() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


class Terminal:
    """Where data and status lines go for one command.

    Args:
        mode: Data mode.
        color: Allow colour; also off when :func:`color_disabled`.
        quiet: Hide info and success lines. Warnings and errors always show.
        verbose: Show debug lines.
        output_file: Write data to this file instead of stdout.
    """

    def __init__(
        self,
        mode: Mode = Mode.AUTO,
        color: bool = True,
        quiet: bool = False,
        verbose: bool = False,
        output_file: Optional[str] = None,
    ) -> None:
        self.color = color and not color_disabled()
        self.quiet = quiet
        self.verbose = verbose
        self.output_file = output_file
        if mode is Mode.AUTO:
            mode = Mode.PRETTY if self.color and stdout_is_terminal() else Mode.PLAIN
        self.mode = mode

        self._out = Console(
            file=sys.stdout, no_color=not self.color, force_terminal=mode is Mode.PRETTY
        )
        self._err = Console(file=sys.stderr, no_color=not self.color, stderr=True)

    # --- data (stdout) ---

    def show(self, data: Any) -> None:
        """Write loaded data.

        Strings are written as they are, except in JSON mode where they are
        encoded like any other value.
        """
        if self.output_file:
            text = data if isinstance(data, str) else dumps(data)
            Path(self.output_file).write_text(text if text.endswith("\n") else text + "\n", encoding="utf-8")
            return

        if self.mode is Mode.JSON:
            self.write(dumps(data))
        elif isinstance(data, str):
            self.write(data)
        elif not isinstance(data, (dict, list)):
            self.write(str(data))
        elif self.mode is Mode.PRETTY:
            self._out.print(Syntax(dumps(data), "json", theme="monokai", word_wrap=True))
        else:
            self.write(dumps(data))

    def show_table(self, columns: Sequence[str], rows: Sequence[Sequence[str]], title: Optional[str] = None) -> None:
        """Rows as JSON records, tab-separated lines or a Rich table."""
        if self.mode is Mode.JSON:
            self.write(dumps([dict(zip(columns, row)) for row in rows]))
            return
        if self.mode is Mode.PLAIN:
            for line in (columns, *rows):
                self.write("\t".join(line))
            return

        table = Table(*columns, title=title, header_style="bold cyan")
        for row in rows:
            table.add_row(*row)
        self._out.print(table)

    def write(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    # --- status lines (stderr) ---

    def say(self, level: str, message: str) -> None:
        markup, plain, always = _LEVELS[level]
        if level == "debug" and not self.verbose:
            return
        if self.quiet and not always:
            return
        if self.color:
            self._err.print(markup.format(message))
        else:
            print(plain.format(message), file=sys.stderr, flush=True)


def dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


_terminal: Optional[Terminal] = None


def current() -> Terminal:
    """The installed :class:`Terminal`; a default one is created on first use."""
    global _terminal
    if _terminal is None:
        _terminal = Terminal()
    return _terminal


def install(terminal: Optional[Terminal]) -> None:
    """Install *terminal* for the module helpers; ``None`` resets to the default."""
    global _terminal
    _terminal = terminal


def show(data: Any) -> None:
    current().show(data)


def show_table(columns: Sequence[str], rows: Sequence[Sequence[str]], title: Optional[str] = None) -> None:
    current().show_table(columns, rows, title)


def info(message: str) -> None:
    current().say("info", message)


def success(message: str) -> None:
    current().say("success", message)


def warning(message: str) -> None:
    current().say("warning", message)


def error(message: str) -> None:
    current().say("error", message)


def debug(message: str) -> None:
    current().say("debug", message)
