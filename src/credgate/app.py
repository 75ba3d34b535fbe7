"""Typer application and CLI entry point for credgate.

This module wires together the top-level Typer application and registers
the built-in sub-command groups (``target`` and ``auth``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs a SIGINT handler, registers commands and
invokes the Typer app. :class:`~credgate.exceptions.CredgateError` exits
with its ``exit_code``; anything else is written to a crash log under the
data directory.

See Also:
    :mod:`credgate.config`: Target and settings resolution.
    :mod:`credgate.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from credgate import __version__
from credgate.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="credgate",
    help="Acquire access credentials for remote integrations.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"credgate {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send engine logs to stderr: DEBUG with ``--verbose``, WARNING otherwise.

    ``--quiet`` raises the threshold to ERROR.
    """
    level = logging.WARNING
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr, force=True)
    # httpx logs every request at INFO; keep that behind --verbose.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


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
    """Root callback executed before every sub-command.

    Installs the global :class:`~credgate.output.OutputManager` and the
    logging handler from the CLI flags.
    """
    from credgate.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    configure_logging(verbose=verbose, quiet=quiet)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def register_commands() -> None:
    """Attach the built-in sub-command groups to :data:`app` (idempotent)."""
    from credgate.commands.auth import auth_app
    from credgate.commands.target import target_app

    registered = {group.name for group in app.registered_groups}
    if "target" not in registered:
        app.add_typer(target_app, name="target", help="Manage target services.")
    if "auth" not in registered:
        app.add_typer(auth_app, name="auth", help="Acquire and manage credentials.")


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under ``<data_dir>/logs`` and return its path."""
    from credgate.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(f"{type(exc).__name__}: {exc}\n\n{traceback.format_exc()}")
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``credgate`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from credgate.exceptions import CredgateError
        from credgate.output import error

        if isinstance(exc, CredgateError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
