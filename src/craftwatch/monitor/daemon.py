"""Relay daemon that tails remote server logs and sends notifications."""

import re
import signal
import threading
from collections.abc import Callable
from functools import partial
from typing import Any

import structlog

from craftwatch.config import Config
from craftwatch.errors import PermanentConfigError, TransientIOError
from craftwatch.llm import (
    GeminiProvider,
    OpenAICompatibleProvider,
    ProviderChain,
    Resolution,
)
from craftwatch.llm.providers import OPENAI_API, AnswerProvider
from craftwatch.metrics import (
    EVENTS_CLASSIFIED,
    LINES_READ,
    NOTIFICATIONS,
    ONLINE_PLAYERS,
    SERVICE_INFO,
    start_metrics_server,
)
from craftwatch.outbound import DiscordClient, DispatchQueue, Sink, TelegramClient
from craftwatch.remote import ConnectionSupervisor, EndpointKind, RconConsole, SFTPFileStore

from .classifier import classify
from .crashes import CrashWatcher
from .dedup import CrashLedger, Deduplicator
from .formatter import format_answer, format_event, format_system
from .models import Event, EventKind, LogSource, Priority, ReadCursor
from .scheduler import TaskScheduler
from .state import StateStore
from .tailer import DEGRADED_AFTER_FAILURES, LineBuffer, RemoteLogTailer

log = structlog.get_logger()

BREVITY_INSTRUCTION = "Answer briefly, in a few sentences at most."

STATE_SAVE_INTERVAL = 30.0
DEDUP_SWEEP_INTERVAL = 60.0
SHUTDOWN_FLUSH_TIMEOUT = 10.0

# "There are 3 of a max of 20 players online: ..." (vanilla) or "3/20" (some mods)
_PLAYER_COUNT_RE = re.compile(r"(\d+)\s*(?:of a max(?: of)?|/)\s*\d+")


def parse_player_count(reply: str) -> int | None:
    """Online player count from a ``list`` console reply."""
    m = _PLAYER_COUNT_RE.search(reply)
    return int(m.group(1)) if m else None


def build_sink(config: Config) -> Sink:
    """Telegram when configured, otherwise the Discord webhook."""
    if config.telegram is not None:
        return TelegramClient(
            config.telegram.bot_token,
            config.telegram.chat_id,
            quiet_normal=config.telegram.quiet_normal,
        )
    if config.discord_webhook_url:
        return DiscordClient(config.discord_webhook_url)
    raise PermanentConfigError("No outbound channel configured")


def build_providers(config: Config) -> list[AnswerProvider]:
    """Answer providers in chain order."""
    providers: list[AnswerProvider] = []
    for settings in config.providers:
        if settings.kind == "gemini":
            providers.append(GeminiProvider(settings.name, settings.api_key, settings.model))
        elif settings.kind == "openai":
            providers.append(
                OpenAICompatibleProvider(
                    settings.name,
                    settings.api_key,
                    settings.model,
                    base_url=settings.base_url or OPENAI_API,
                )
            )
        else:
            log.error("Unknown provider kind, skipping", provider=settings.name, kind=settings.kind)
    return providers


def build_chain(config: Config) -> ProviderChain:
    return ProviderChain(
        build_providers(config),
        timeout=config.provider_timeout,
        quota_block_seconds=config.quota_block_seconds,
        max_answer_chars=config.max_answer_chars,
    )


def build_supervisor(config: Config) -> ConnectionSupervisor:
    """Supervisor with a factory for each configured endpoint."""
    supervisor = ConnectionSupervisor()
    if config.sftp is not None and config.sftp.host:
        supervisor.register(EndpointKind.FILE_STORE, partial(SFTPFileStore.connect, config.sftp))
    if config.rcon is not None and config.rcon.password:
        supervisor.register(EndpointKind.CONSOLE, partial(RconConsole.connect, config.rcon))
    return supervisor


class SourceTask:
    """Polls one log source and turns new lines into events.

    The task owns the source's cursor and line buffer. A cursor generation
    change discards any buffered partial line from the previous file.
    """

    def __init__(
        self,
        source: LogSource,
        tailer: RemoteLogTailer,
        state: StateStore,
        on_event: Callable[[Event], Any],
        tail_from_end: bool = True,
    ):
        self.source = source
        self.tailer = tailer
        self.state = state
        self.on_event = on_event
        self.tail_from_end = tail_from_end
        self.buffer = LineBuffer()
        self.cursor: ReadCursor | None = state.get_cursor(source.id)

    def _initial_cursor(self) -> ReadCursor:
        if self.tail_from_end:
            cursor = self.tailer.seek_end(self.source)
            log.info("Starting at end of log", source=self.source.id, offset=cursor.offset)
            return cursor
        return ReadCursor(source_id=self.source.id)

    def run(self) -> list[Event]:
        """One poll. Returns the events produced."""
        try:
            if self.cursor is None:
                self.cursor = self._initial_cursor()
                self.state.put_cursor(self.cursor)
            text, updated = self.tailer.poll(self.source, self.cursor)
        except TransientIOError:
            # Already logged and counted by the tailer; retry next tick
            return []

        if updated.generation != self.cursor.generation:
            self.buffer.reset()
        self.cursor = updated
        self.state.put_cursor(updated)

        lines = self.buffer.feed(text)
        if lines:
            LINES_READ.labels(source=self.source.id).inc(len(lines))

        events = []
        for line in lines:
            event = classify(line)
            if event is None:
                continue
            EVENTS_CLASSIFIED.labels(kind=event.kind.value).inc()
            events.append(event)
            self.on_event(event)
        return events


class RelayDaemon:
    """Main relay daemon: schedules polls and routes notifications."""

    def __init__(
        self,
        config: Config,
        sink: Sink | None = None,
        supervisor: ConnectionSupervisor | None = None,
        chain: ProviderChain | None = None,
        state: StateStore | None = None,
        scheduler: TaskScheduler | None = None,
    ):
        """Initialize the relay daemon.

        Args:
            config: Application configuration
            sink: Outbound channel (default: built from config)
            supervisor: Remote connection owner (default: built from config)
            chain: AI provider chain (default: built from config)
            state: Cursor and ledger persistence (default: config.state_file)
            scheduler: Periodic task runner
        """
        self.config = config
        self.sink = sink if sink is not None else build_sink(config)
        self.supervisor = supervisor if supervisor is not None else build_supervisor(config)
        self.chain = chain if chain is not None else build_chain(config)
        self.state = state if state is not None else StateStore(config.state_file)
        self.scheduler = scheduler or TaskScheduler()

        self.queue = DispatchQueue(
            self.sink,
            min_interval=config.queue.min_interval,
            max_attempts=config.queue.max_attempts,
            backoff_base=config.queue.backoff_base,
            backoff_max=config.queue.backoff_max,
        )
        self.dedup = Deduplicator(config.dedup.cooldowns, config.dedup.default_cooldown)
        self.ledger = CrashLedger(config.crash_ledger_capacity, self.state.crash_names())
        self.tailer = RemoteLogTailer(self.supervisor)
        self.notify_kinds: set[EventKind] = config.notify_kinds

        self.source_tasks: dict[str, SourceTask] = {}
        self.crash_watchers: dict[str, CrashWatcher] = {}
        self.disabled: dict[str, str] = {}
        self._console_failures = 0
        self._stop_event = threading.Event()

    # --- Notification routing ---

    def handle_event(self, event: Event) -> bool:
        """Format, de-flood and enqueue an event. Returns True if enqueued."""
        if event.kind not in self.notify_kinds:
            log.debug("Event kind not notified", kind=event.kind.value)
            return False

        msg = format_event(event)
        if not self.dedup.should_emit(msg):
            NOTIFICATIONS.labels(category=msg.category, status="suppressed").inc()
            log.debug("Notification suppressed", category=msg.category)
            return False

        NOTIFICATIONS.labels(category=msg.category, status="emitted").inc()
        self.queue.enqueue(msg)
        return True

    def notify(self, text: str, priority: Priority = Priority.NORMAL) -> None:
        """Enqueue a system message (never de-flooded)."""
        self.queue.enqueue(format_system(text, priority))

    def answer_question(self, question: str, max_tokens: int = 300) -> Resolution:
        """Resolve a question through the provider chain and relay the answer.

        Always enqueues a message: the answer, or the exhausted-providers notice.
        """
        resolution = self.chain.resolve(f"{question}\n\n{BREVITY_INSTRUCTION}", max_tokens)
        self.queue.enqueue(format_answer(resolution.text))
        log.info(
            "Question answered",
            provider=resolution.provider,
            exhausted=resolution.exhausted,
        )
        return resolution

    # --- Periodic tasks ---

    def check_console(self) -> int | None:
        """Ping the server console and record the online player count."""
        try:
            console = self.supervisor.acquire(EndpointKind.CONSOLE)
            reply = console.send("list")
        except PermanentConfigError as e:
            self._disable("console", str(e))
            self.scheduler.remove("console")
            return None
        except TransientIOError as e:
            self.supervisor.invalidate(EndpointKind.CONSOLE)
            self._console_failures += 1
            log.warning("Console check failed", consecutive=self._console_failures, error=str(e))
            if self._console_failures >= DEGRADED_AFTER_FAILURES:
                self.supervisor.mark_degraded(
                    EndpointKind.CONSOLE, f"{self._console_failures} consecutive failures"
                )
            return None

        if self._console_failures:
            self._console_failures = 0
            self.supervisor.mark_recovered(EndpointKind.CONSOLE)
        count = parse_player_count(reply)
        if count is not None:
            ONLINE_PLAYERS.set(count)
        log.debug("Console check", players=count)
        return count

    def save_state(self) -> None:
        self.state.put_crash_names(self.ledger.names())
        self.state.save()

    def _disable(self, task: str, reason: str) -> None:
        self.disabled[task] = reason
        log.error("Task disabled", task=task, reason=reason)

    def setup(self) -> None:
        """Register every task whose endpoint is configured."""
        for problem in self.config.validate():
            log.warning("Configuration problem", problem=problem)

        file_store_ready = self.supervisor.is_configured(EndpointKind.FILE_STORE)
        for source in self.config.log_sources:
            name = f"tail:{source.id}"
            if not file_store_ready:
                self._disable(name, "file store not configured")
                continue
            task = SourceTask(
                source, self.tailer, self.state, self.handle_event, self.config.tail_from_end
            )
            self.source_tasks[source.id] = task
            self.scheduler.add(name, source.poll_interval, task.run)

        seed = not self.config.crash_notify_existing and not self.state.loaded_from_disk
        for source in self.config.crash_sources:
            name = f"crashes:{source.id}"
            if not file_store_ready:
                self._disable(name, "file store not configured")
                continue
            watcher = CrashWatcher(
                source,
                self.supervisor,
                self.ledger,
                self.handle_event,
                state=self.state,
                seed_existing=seed,
            )
            self.crash_watchers[source.id] = watcher
            self.scheduler.add(name, source.poll_interval, watcher.scan)

        if self.supervisor.is_configured(EndpointKind.CONSOLE):
            self.scheduler.add("console", self.config.ping_interval, self.check_console)
        else:
            self._disable("console", "RCON not configured")

        self.scheduler.add("dedup-sweep", DEDUP_SWEEP_INTERVAL, self.dedup.sweep)
        self.scheduler.add("save-state", STATE_SAVE_INTERVAL, self.save_state)

    # --- Health ---

    def health(self) -> tuple[bool, dict[str, Any]]:
        """Health status for the metrics server."""
        endpoints = self.supervisor.health()
        healthy = not any(e["degraded"] for e in endpoints.values())
        return healthy, {
            "endpoints": endpoints,
            "queue_depth": len(self.queue),
            "disabled_tasks": dict(self.disabled),
        }

    # --- Lifecycle ---

    def run(self, serve_metrics: bool = True) -> None:
        """Start the relay daemon and block until ``stop`` is called."""
        log.info(
            "Starting relay daemon",
            sources=[s.id for s in self.config.sources],
            providers=len(self.chain),
        )
        SERVICE_INFO.info({"sink": type(self.sink).__name__})
        self.setup()
        if serve_metrics:
            start_metrics_server(port=self.config.metrics_port, health_check=self.health)

        self.queue.start()
        self.notify(f"Relay started. Watching {len(self.source_tasks)} logs.")
        self.scheduler.run_all()

        try:
            self.scheduler.run(self._stop_event)
        except KeyboardInterrupt:
            log.info("Received shutdown signal")
        finally:
            self.shutdown()

    def stop(self) -> None:
        """Ask a running daemon to exit. Safe to call from a signal handler."""
        self._stop_event.set()

    def shutdown(self) -> None:
        """Stop tasks, flush queued messages and release connections."""
        log.info("Stopping relay daemon")
        self._stop_event.set()
        self.scheduler.shutdown(wait=False)

        self.queue.stop(timeout=SHUTDOWN_FLUSH_TIMEOUT)
        self.notify("Relay shutting down.")
        if not self.queue.flush(SHUTDOWN_FLUSH_TIMEOUT):
            log.warning("Shutdown with undelivered messages", remaining=len(self.queue))

        self.save_state()
        self.supervisor.close_all()
        self.chain.close()


def run_relay(config: Config) -> None:
    """Run the relay daemon until interrupted.

    Raises:
        PermanentConfigError: No outbound channel is configured
    """
    daemon = RelayDaemon(config)
    signal.signal(signal.SIGTERM, lambda signum, frame: daemon.stop())
    daemon.run()
