"""The ``authgate`` command line.

Global flags are handled by :func:`main_callback` before any sub-command
runs: they pick the output format and the log level. :func:`main` is the
console script. It turns an escaped :class:`~authgate.exceptions.AuthgateError`
into that error's exit code and anything else into a crash log plus exit
code 1.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

import typer

from authgate import __version__
from authgate.commands.login import login_command
from authgate.commands.tokens import tokens_app
from authgate.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE
from authgate.output import OutputFormat, OutputManager, set_output

_NOISY_LOGGERS = ("httpx", "httpcore")

app = typer.Typer(
    name="authgate",
    help="OAuth 2.0 Device Authorization Grant client for headless terminals.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)
app.command("login")(login_command)
app.add_typer(tokens_app, name="tokens", help="Inspect the shared token file.")


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"authgate {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(levelname)s] [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    # One line per HTTP request is too much even for --verbose
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show version and exit."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print data as JSON."),
    as_plain: bool = typer.Option(False, "--plain", help="Print plain text, no live display."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print warnings and errors."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug output and logs."),
) -> None:
    """Install the output manager and logging for this invocation."""
    if as_json:
        fmt = OutputFormat.JSON
    elif as_plain:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)


def _setup_signal_handlers() -> None:
    """Exit 130 on Ctrl-C before ``login`` installs its own cancel handler."""

    def _on_interrupt(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _on_interrupt)


def _write_crash_log(exc: Exception) -> Path:
    """Save the traceback of *exc* under ``<data dir>/logs`` and return the file."""
    from authgate.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    log_path.write_text("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return log_path


def main() -> None:
    """Console script entry point; always ends in ``SystemExit``."""
    from authgate.exceptions import AuthgateError
    from authgate.output import error

    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except AuthgateError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
