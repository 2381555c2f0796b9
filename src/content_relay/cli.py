"""Command-line interface for Content Relay."""

import re
import sys
from collections.abc import Callable
from email.parser import BytesHeaderParser
from email.policy import compat32
from pathlib import Path

import click
import structlog

from content_relay.config import Settings, get_settings
from content_relay.core import configure_logging
from content_relay.exceptions import ConfigurationError
from content_relay.models import RecordingEditor
from content_relay.scanner import ContentScanner, Verdict
from content_relay.services import HealthChecker, RelaySession

logger = structlog.get_logger(__name__)

HEADER_BODY_BOUNDARY = re.compile(rb"\r?\n\r?\n")


def split_message(raw: bytes) -> tuple[list[tuple[str, str]], bytes]:
    """Split a raw message into header pairs and body bytes, as an MTA would."""
    match = HEADER_BODY_BOUNDARY.search(raw)
    if match:
        head, body = raw[: match.start()], raw[match.end() :]
    else:
        head, body = raw, b""
    msg = BytesHeaderParser(policy=compat32).parsebytes(head + b"\n\n")
    return [(name, str(value)) for name, value in msg.raw_items()], body


def load_settings(ctx: click.Context) -> Settings:
    """Load settings or exit 1; apply logging options from the environment."""
    try:
        settings = get_settings()
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    json_logs = ctx.obj["json_logs"] or settings.log_format == "json"
    debug = ctx.obj["debug"] or settings.debug
    if (json_logs, debug) != (ctx.obj["json_logs"], ctx.obj["debug"]):
        configure_logging(json_format=json_logs, debug=debug)
    return settings


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.option("--json-logs/--no-json-logs", default=False, help="JSON log format")
@click.pass_context
def main(ctx: click.Context, debug: bool, json_logs: bool) -> None:
    """Content Relay - milter bridge to a content-analysis engine."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["json_logs"] = json_logs
    configure_logging(json_format=json_logs, debug=debug)


@main.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the milter service."""
    settings = load_settings(ctx)

    # pymilter is an optional dependency, only needed here
    from content_relay.services.milter import run_milter

    logger.info("starting_milter_service")
    try:
        run_milter(settings)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.error("milter_crashed", error=str(e))
        sys.exit(1)


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Run relay health checks."""
    settings = load_settings(ctx)
    try:
        report = HealthChecker(settings).check_all()
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    status_icon = {"healthy": "OK", "warning": "WARN", "critical": "FAIL"}

    click.echo(f"\n[{status_icon.get(report.status.value, '?')}] Status: {report.status.value.upper()}")
    click.echo(f"   Engine reachable: {'Yes' if report.engine_available else 'No'}")
    click.echo(f"   Work dir writable: {'Yes' if report.work_dir_writable else 'No'}")
    click.echo(f"   Spool directories: {report.spool_count}")

    if report.issues:
        click.echo("\nIssues:")
        for issue in report.issues:
            click.echo(f"   - {issue}")

    if report.warnings:
        click.echo("\nWarnings:")
        for warning in report.warnings:
            click.echo(f"   - {warning}")

    # Exit code based on status
    if report.status.value == "critical":
        sys.exit(2)
    elif report.status.value == "warning":
        sys.exit(1)
    sys.exit(0)


@main.command()
@click.argument("message_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sender", required=True, help="Envelope sender address")
@click.option("--recipient", "recipients", multiple=True, required=True, help="Envelope recipient")
@click.option("--queue-id", default=None, help="Queue id to name the spool after")
@click.option("--client-address", default="127.0.0.1", help="Client IP address")
@click.option("--client-name", default="localhost", help="Client hostname")
@click.option("--helo", default=None, help="HELO name")
@click.pass_context
def scan(
    ctx: click.Context,
    message_file: Path,
    sender: str,
    recipients: tuple[str, ...],
    queue_id: str | None,
    client_address: str,
    client_name: str,
    helo: str | None,
) -> None:
    """Replay MESSAGE_FILE through the engine and show what it asks for."""
    settings = load_settings(ctx)
    try:
        scanner = ContentScanner.from_settings(settings)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    headers, body = split_message(message_file.read_bytes())
    editor = RecordingEditor()
    session = RelaySession(editor, scanner, settings.work_dir, settings.work_dir_prefix)

    steps: list[Callable[[], Verdict]] = [
        lambda: session.connect(client_name, client_address),
        lambda: session.helo(helo),
        lambda: session.envfrom(sender, queue_id),
    ]
    steps += [lambda rcpt=rcpt: session.envrcpt(rcpt) for rcpt in recipients]
    steps += [lambda h=h: session.header(*h) for h in headers]
    steps += [session.eoh, lambda: session.body(body), session.eom]

    verdict = Verdict.CONTINUE
    try:
        for step in steps:
            verdict = step()
            if verdict != Verdict.CONTINUE:
                break
    finally:
        session.close()

    for method, *args in editor.actions:
        click.echo(f"{method} {' '.join(str(a) for a in args)}")
    click.echo(f"verdict: {verdict.value}")
    sys.exit(1 if verdict == Verdict.TEMPFAIL else 0)


if __name__ == "__main__":
    main()
