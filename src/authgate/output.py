"""Terminal output for authgate.

Two streams, two jobs. stdout carries only data a script might parse
(``authgate --json tokens list``). Everything addressed to the person at
the keyboard goes to stderr: device code instructions, flow progress,
warnings and errors. That split lets ``authgate login`` run with stdout
piped and still show the user code.

Rendering follows the ``--json`` / ``--plain`` flags, or stderr's TTY
state when neither is given. ``NO_COLOR``, ``TERM=dumb`` and
``--no-color`` all turn styling off.

Callers normally use the module functions (:func:`info`, :func:`error`,
...), which write through the manager installed by
:func:`~authgate.app.main_callback`.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, NamedTuple, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormat(str, Enum):
    """How data and diagnostics are rendered. ``AUTO`` is resolved on construction."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class _Style(NamedTuple):
    prefix: str
    markup: str
    quiet_hides: bool
    label_only: bool = False


# Diagnostic kinds; ``debug`` is gated by --verbose instead of --quiet
_STYLES: dict[str, _Style] = {
    "info": _Style("", "", True),
    "success": _Style("", "green", True),
    "warning": _Style("Warning: ", "yellow", False, label_only=True),
    "error": _Style("Error: ", "bold red", False, label_only=True),
    "debug": _Style("[debug] ", "dim", False),
}


class OutputManager:
    """Routes data to stdout and diagnostics to stderr in one resolved format.

    Args:
        format: Requested format. ``AUTO`` becomes ``RICH`` on a colour
            capable stderr TTY and ``PLAIN`` everywhere else.
        no_color: Force colour off regardless of the environment.
        quiet: Hide info and success lines. Warnings and errors still show.
        verbose: Show ``debug`` lines.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_interactive(self) -> bool:
        """True when a live panel may be drawn on stderr."""
        return self._format == OutputFormat.RICH and not self._quiet and _is_tty()

    @property
    def stderr_console(self) -> Console:
        return self._stderr

    # --- stdout ---

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def print_json(self, data: Any) -> None:
        self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print rows as a list of objects (JSON), TSV (plain) or a rich table.

        *title* is only rendered in rich mode.
        """
        if self._format == OutputFormat.JSON:
            self.print_json([dict(zip(headers, row)) for row in rows])
            return
        if self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self.print_data("\t".join(line))
            return

        table = Table(title=title, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*row)
        self._stdout.print(table)

    # --- stderr ---

    def info(self, message: str) -> None:
        self._emit("info", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def warning(self, message: str) -> None:
        self._emit("warning", message)

    def error(self, message: str) -> None:
        self._emit("error", message)

    def debug(self, message: str) -> None:
        if self._verbose:
            self._emit("debug", message)

    def _emit(self, kind: str, message: str) -> None:
        style = _STYLES[kind]
        if style.quiet_hides and self._quiet:
            return
        if self._no_color:
            print(f"{style.prefix}{message}", file=sys.stderr, flush=True)
            return
        if not style.markup:
            self._stderr.print(message, markup=False, highlight=False)
        elif style.label_only:
            label = escape(style.prefix.rstrip())
            self._stderr.print(
                f"[{style.markup}]{label}[/{style.markup}] {escape(message)}", highlight=False
            )
        else:
            text = escape(style.prefix + message)
            self._stderr.print(f"[{style.markup}]{text}[/{style.markup}]", highlight=False)


def _is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def _should_disable_color() -> bool:
    """``NO_COLOR`` set to anything, or ``TERM=dumb``."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating an ``AUTO`` one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Drop the installed manager so the next call builds a fresh one.

    Consoles hold on to the ``sys.stdout``/``sys.stderr`` objects that
    existed when they were created, which go stale under test runners that
    swap the streams.
    """
    global _output
    _output = None


def print_data(text: str) -> None:
    get_output().print_data(text)


def print_json(data: Any) -> None:
    get_output().print_json(data)


def print_table(headers: list[str], rows: list[list[str]], title: Optional[str] = None) -> None:
    get_output().print_table(headers, rows, title)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
