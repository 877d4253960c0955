"""Click CLI for modsec-diag.

Commands:
- exec: Run a command and print the first line of its output
- log: Send one message through the diagnostic logger
- escape: Escape text for a log line
- format-error: Render an error message as a log line
- serve: Run the demo web app
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape as markup_escape
from rich.table import Table

from modsec_diag import __version__
from modsec_diag.diagnostics import (
    DebugLogPool,
    DebugLogSettings,
    DiagnosticLogger,
    DiagnosticsConfig,
    ErrorMessage,
    LogContext,
    RequestInfo,
    format_error_line,
    load_config,
    setup_logging,
)
from modsec_diag.process import CommandRunner
from modsec_diag.utils.errors import ConfigurationError
from modsec_diag.utils.escaping import log_escape

console = Console()
logger = logging.getLogger(__name__)


def _parse_env(pairs: Tuple[str, ...]) -> dict:
    env = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[name] = value
    return env


def _make_context(ctx: click.Context, request: RequestInfo) -> LogContext:
    """Unit-of-work context for one CLI invocation."""
    config: DiagnosticsConfig = ctx.obj["config"]
    pool: DebugLogPool = ctx.obj["pool"]
    log_ctx = LogContext(
        request=request,
        sink=pool.resolve(config.settings_for(request.uri)),
        server=config.server,
    )
    return ctx.with_resource(log_ctx)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="MODSEC_CONFIG",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON configuration file",
)
@click.option(
    "--debug-log",
    envvar="MODSEC_DEBUG_LOG",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Debug log file (overrides config)",
)
@click.option(
    "--debug-level",
    envvar="MODSEC_DEBUG_LEVEL",
    type=click.IntRange(0, 9),
    help="Debug log level 0-9 (overrides config)",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx,
    config_path: Optional[Path],
    debug_log: Optional[Path],
    debug_level: Optional[int],
    debug: bool,
):
    """modsec-diag - diagnostic logging and bounded script execution."""
    ctx.ensure_object(dict)
    setup_logging(level="DEBUG" if debug else "INFO")

    try:
        config = load_config(config_path) if config_path else DiagnosticsConfig()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    config.sink = DebugLogSettings.merge(
        config.sink,
        DebugLogSettings(debug_log=debug_log, debug_level=debug_level),
    )
    ctx.obj["config"] = config
    ctx.obj["pool"] = ctx.with_resource(DebugLogPool())
    ctx.obj["diag"] = DiagnosticLogger()


@cli.command("exec", context_settings={"ignore_unknown_options": True})
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Seconds to wait for output",
)
@click.option("--env", "env_pairs", multiple=True, help="KEY=VALUE for the child environment")
@click.option("--uri", default="/", help="Request path reported in log lines")
@click.pass_context
def exec_cmd(
    ctx,
    command: str,
    args: Tuple[str, ...],
    timeout: Optional[float],
    env_pairs: Tuple[str, ...],
    uri: str,
):
    """Run COMMAND and print the first line of its output."""
    env = _parse_env(env_pairs)
    log_ctx = _make_context(ctx, RequestInfo(uri=uri, remote_ip="127.0.0.1"))

    runner = CommandRunner(ctx=log_ctx, diag=ctx.obj["diag"])
    result = runner.execute(
        command,
        argv=[command, *args] if args else None,
        env=env,
        timeout=timeout,
    )

    table = Table(title="Command Result")
    table.add_column("Field")
    table.add_column("Value")
    style = "green" if result.success else "red"
    table.add_row("Outcome", f"[{style}]{result.outcome.value}[/]")
    table.add_row(
        "First line",
        markup_escape(result.first_line) if result.first_line is not None else "-",
    )
    table.add_row("Exit code", str(result.returncode) if result.returncode is not None else "-")
    for alert in log_ctx.alerts:
        table.add_row("Alert", markup_escape(alert))
    console.print(table)

    if not result.success:
        sys.exit(1)


@cli.command("log")
@click.argument("level", type=click.IntRange(1, 9))
@click.argument("message")
@click.option("--uri", default="/", help="Request path")
@click.option("--hostname", help="Request host name")
@click.option("--client", "remote_ip", default="127.0.0.1", help="Client address")
@click.option("--unique-id", help="Unique request id")
@click.pass_context
def log_cmd(
    ctx,
    level: int,
    message: str,
    uri: str,
    hostname: Optional[str],
    remote_ip: str,
    unique_id: Optional[str],
):
    """Send MESSAGE through the diagnostic logger at LEVEL."""
    request = RequestInfo(uri=uri, hostname=hostname, remote_ip=remote_ip)
    if unique_id:
        request.notes["UNIQUE_ID"] = unique_id
    log_ctx = _make_context(ctx, request)

    ctx.obj["diag"].log(log_ctx, level, "%s", message)

    if log_ctx.is_relevant:
        console.print(f"[yellow]Alert recorded[/] ({log_ctx.relevance_count})")
    elif log_ctx.sink.debug_sink is None or level > log_ctx.sink.debug_level:
        console.print("[dim]Suppressed (no debug log at this level)[/]")
    else:
        console.print(f"Written to {log_ctx.sink.debug_sink.path}")


@cli.command()
@click.argument("text")
@click.option("--allow-quotes", is_flag=True, help="Leave double quotes unescaped")
def escape(text: str, allow_quotes: bool):
    """Escape TEXT for inclusion in a log line."""
    click.echo(log_escape(text, allow_quotes=allow_quotes))


@cli.command("format-error")
@click.argument("message", required=False)
@click.option("--file", "file_", help="Source file")
@click.option("--line", type=int, help="Source line")
@click.option("--level", type=int, required=True, help="Error level")
@click.option("--status", type=int, help="Status code")
def format_error(
    message: Optional[str],
    file_: Optional[str],
    line: Optional[int],
    level: int,
    status: Optional[int],
):
    """Render an error message as a single log line."""
    em = ErrorMessage(level=level, file=file_, line=line, status=status, message=message)
    click.echo(format_error_line(em))


@cli.command()
@click.option("--port", default=8080, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Address to bind")
@click.pass_context
def serve(ctx, port: int, host: str):
    """Run the demo web app."""
    from modsec_diag.web.server import run_server

    console.print(f"[bold green]Starting demo app on http://{host}:{port}[/]")
    run_server(ctx.obj["config"], port=port, host=host)


def main():
    """Entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
