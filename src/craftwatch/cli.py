"""CLI for craftwatch.

Usage:
    craftwatch run
    craftwatch ask "why does my server lag?" --send
    craftwatch send "Restarting in 5 minutes"
    craftwatch classify logs/latest.log
    craftwatch state show
    craftwatch console "list"
"""

from collections import Counter
from pathlib import Path
from typing import TextIO

import click

from craftwatch.config import DEFAULT_CONFIG_PATH, Config
from craftwatch.errors import CraftwatchError, PermanentConfigError
from craftwatch.logging import configure_logging
from craftwatch.monitor.classifier import classify
from craftwatch.monitor.daemon import (
    BREVITY_INSTRUCTION,
    build_chain,
    build_sink,
    build_supervisor,
    run_relay,
)
from craftwatch.monitor.formatter import format_answer, format_event, format_system
from craftwatch.monitor.models import NotificationMessage
from craftwatch.monitor.state import StateStore
from craftwatch.outbound import DispatchQueue
from craftwatch.remote import EndpointKind

SEND_TIMEOUT = 60.0


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    help="Config file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--log-level", default=None, help="Log level (overrides config)")
@click.pass_context
def main(ctx: click.Context, config_path: Path, verbose: bool, log_level: str | None) -> None:
    """Minecraft server log relay."""
    config = Config.from_file(config_path)
    level = "DEBUG" if verbose else (log_level or config.log_level)
    configure_logging("craftwatch", level)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@main.command("run")
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the relay daemon.

    Tails the configured server logs over SFTP and relays events to
    Telegram (or Discord).
    """
    config: Config = ctx.obj["config"]

    click.echo("Starting relay daemon...")
    click.echo(f"  Sources: {', '.join(s.id for s in config.sources) or 'none'}")
    click.echo(f"  Channel: {'telegram' if config.telegram else 'discord'}")
    click.echo(f"  AI providers: {', '.join(p.name for p in config.providers) or 'none'}")
    click.echo(f"  State file: {config.state_file or 'in memory'}")
    click.echo("")

    try:
        run_relay(config)
    except PermanentConfigError as e:
        raise click.ClickException(str(e)) from e


@main.command("ask")
@click.argument("question")
@click.option("--send", "send_answer", is_flag=True, help="Also deliver the answer to the channel")
@click.option("--max-tokens", default=300, help="Answer length limit")
@click.pass_context
def ask(ctx: click.Context, question: str, send_answer: bool, max_tokens: int) -> None:
    """Ask the AI providers a question."""
    config: Config = ctx.obj["config"]
    chain = build_chain(config)
    if not len(chain):
        raise click.ClickException("No AI providers configured")

    try:
        resolution = chain.resolve(f"{question}\n\n{BREVITY_INSTRUCTION}", max_tokens)
    finally:
        chain.close()

    click.echo(resolution.text)
    if resolution.ok:
        click.echo(f"\n(answered by {resolution.provider})", err=True)
    else:
        click.echo(f"\n(last error: {resolution.error})", err=True)

    if send_answer:
        _deliver(config, format_answer(resolution.text))
    if resolution.exhausted:
        raise SystemExit(1)


@main.command("send")
@click.argument("message")
@click.pass_context
def send(ctx: click.Context, message: str) -> None:
    """Send a custom message to the channel."""
    _deliver(ctx.obj["config"], format_system(message))
    click.echo("Message sent!")


@main.command("test")
@click.pass_context
def send_test(ctx: click.Context) -> None:
    """Send a test notification to verify the channel."""
    config: Config = ctx.obj["config"]
    sources = ", ".join(s.id for s in config.sources) or "none"
    text = f"Test notification, craftwatch is configured.\nSources: {sources}"
    _deliver(config, format_system(text))
    click.echo("Test notification sent successfully!")


@main.command("classify")
@click.argument("file", type=click.File("r", encoding="utf-8", errors="replace"), default="-")
@click.option("--all", "show_all", is_flag=True, help="Also show lines that match nothing")
def classify_cmd(file: TextIO, show_all: bool) -> None:
    """Preview how log lines would be classified and formatted."""
    counts: Counter[str] = Counter()
    for raw in file:
        line = raw.rstrip("\r\n")
        event = classify(line)
        if event is None:
            counts["none"] += 1
            if show_all:
                click.echo(f"{'-':<16} {line}")
            continue
        counts[event.kind.value] += 1
        click.echo(f"{event.kind.value:<16} {format_event(event).text.splitlines()[0]}")

    click.echo("")
    for kind, count in counts.most_common():
        click.echo(f"{kind:<16} {count:>6}")


# --- State Commands ---


@main.group()
def state() -> None:
    """Inspect or reset persisted cursors and the crash ledger."""
    pass


@state.command("show")
@click.pass_context
def state_show(ctx: click.Context) -> None:
    """Show persisted read cursors and crash ledger."""
    store = _state_store(ctx.obj["config"])

    cursors = store.cursors()
    if not cursors:
        click.echo("No cursors recorded.")
    else:
        click.echo(f"{'Source':<16} {'Offset':>12} {'Gen':>5}  Path")
        click.echo("-" * 60)
        for source_id, cursor in sorted(cursors.items()):
            click.echo(
                f"{source_id:<16} {cursor.offset:>12} {cursor.generation:>5}  {cursor.path or '-'}"
            )

    crashes = store.crash_names()
    click.echo("")
    click.echo(f"Crash ledger: {len(crashes)} entries")
    for name in crashes[-5:]:
        click.echo(f"  - {name}")


@state.command("reset")
@click.option("--source", "source_id", default=None, help="Only reset this source's cursor")
@click.option("--crashes", is_flag=True, help="Also clear the crash ledger")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def state_reset(ctx: click.Context, source_id: str | None, crashes: bool, yes: bool) -> None:
    """Forget read cursors (and optionally the crash ledger)."""
    store = _state_store(ctx.obj["config"])
    target = f"cursor for {source_id}" if source_id else "all cursors"
    if crashes:
        target += " and the crash ledger"

    if not yes and not click.confirm(f"Reset {target}?"):
        click.echo("Aborted.")
        return

    store.reset(source_id=source_id, crashes=crashes)
    store.save()
    click.echo(f"Reset {target}.")


# --- Console Commands ---


@main.command("console")
@click.argument("command")
@click.pass_context
def console(ctx: click.Context, command: str) -> None:
    """Send a command to the server console over RCON."""
    supervisor = build_supervisor(ctx.obj["config"])
    try:
        reply = supervisor.acquire(EndpointKind.CONSOLE).send(command)
    except CraftwatchError as e:
        raise click.ClickException(str(e)) from e
    finally:
        supervisor.close_all()
    click.echo(reply or "(no reply)")


# --- Utility Functions ---


def _state_store(config: Config) -> StateStore:
    if config.state_file is None:
        raise click.ClickException("No state file configured (state is kept in memory)")
    return StateStore(config.state_file)


def _deliver(config: Config, msg: NotificationMessage) -> None:
    """Deliver one message through a private dispatch queue or exit with error."""
    try:
        sink = build_sink(config)
    except PermanentConfigError as e:
        raise click.ClickException(str(e)) from e

    queue = DispatchQueue(
        sink,
        min_interval=config.queue.min_interval,
        max_attempts=config.queue.max_attempts,
        backoff_base=config.queue.backoff_base,
        backoff_max=config.queue.backoff_max,
    )
    queue.enqueue(msg)
    queue.flush(SEND_TIMEOUT)
    if queue.dropped or len(queue):
        click.echo("Failed to send message")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
