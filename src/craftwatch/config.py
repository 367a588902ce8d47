"""Configuration loading for craftwatch."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from craftwatch.monitor.models import EventKind, LogSource, SourceKind

DEFAULT_CONFIG_PATH = Path.home() / ".craftwatch" / "config.yaml"
DEFAULT_STATE_PATH = Path.home() / ".craftwatch" / "state.json"

# Cooldown seconds per notification category; 0 disables suppression
DEFAULT_COOLDOWNS = {
    "join": 30.0,
    "leave": 30.0,
    "chat": 5.0,
    "kill": 10.0,
    "crash_report": 0.0,
    "mod_error": 600.0,
    "generic_warning": 300.0,
    "answer": 0.0,
    "system": 0.0,
}

MIN_PING_INTERVAL = 10.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SFTPConfig:
    """SFTP connection to the server's file system."""

    host: str
    port: int = 22
    user: str = ""
    password: str | None = None
    key_file: str | None = None
    known_hosts: str | None = None
    timeout: float = 15.0


@dataclass
class RconConfig:
    """RCON connection to the server console."""

    host: str
    port: int = 26255
    password: str = ""
    timeout: float = 10.0


@dataclass
class TelegramConfig:
    bot_token: str
    chat_id: str
    quiet_normal: bool = False


@dataclass
class ProviderSettings:
    """One AI answer provider entry, in chain order."""

    name: str
    kind: str  # "gemini" or "openai" (any OpenAI-compatible API)
    api_key: str
    model: str
    base_url: str | None = None


@dataclass
class DedupConfig:
    default_cooldown: float = 60.0
    cooldowns: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_COOLDOWNS))


@dataclass
class QueueConfig:
    """Outbound delivery pacing and retry policy."""

    min_interval: float = 1.0
    max_attempts: int = 5
    backoff_base: float = 2.0
    backoff_max: float = 60.0


@dataclass
class Config:
    """Application configuration."""

    sources: list[LogSource] = field(default_factory=list)
    sftp: SFTPConfig | None = None
    rcon: RconConfig | None = None
    telegram: TelegramConfig | None = None
    discord_webhook_url: str | None = None
    providers: list[ProviderSettings] = field(default_factory=list)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    state_file: Path | None = DEFAULT_STATE_PATH
    tail_from_end: bool = True
    crash_notify_existing: bool = False
    crash_ledger_capacity: int = 200
    notify_warnings: bool = False
    ping_interval: float = 60.0
    provider_timeout: float = 25.0
    quota_block_seconds: float = 3600.0
    max_answer_chars: int = 800
    metrics_port: int = 4000
    log_level: str = "INFO"

    @property
    def notify_kinds(self) -> set[EventKind]:
        """Event kinds that produce notifications."""
        kinds = set(EventKind)
        if not self.notify_warnings:
            kinds.discard(EventKind.GENERIC_WARNING)
        return kinds

    @property
    def log_sources(self) -> list[LogSource]:
        return [s for s in self.sources if s.kind != SourceKind.CRASH_DIRECTORY]

    @property
    def crash_sources(self) -> list[LogSource]:
        return [s for s in self.sources if s.kind == SourceKind.CRASH_DIRECTORY]

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        env = os.environ.get

        sources = []
        if env("MC_KUBEJS_LOG"):
            sources.append(
                LogSource("kubejs", env("MC_KUBEJS_LOG", ""), SourceKind.SERVER_EVENTS, 3.0)
            )
        if env("MC_LOG_DIR"):
            sources.append(
                LogSource(
                    "latest", env("MC_LOG_DIR", ""), SourceKind.AUX_DIAGNOSTICS, 5.0, "*.log"
                )
            )
        if env("MC_CRASH_DIR"):
            sources.append(
                LogSource("crashes", env("MC_CRASH_DIR", ""), SourceKind.CRASH_DIRECTORY, 10.0)
            )

        sftp = None
        if env("SFTP_HOST"):
            sftp = SFTPConfig(
                host=env("SFTP_HOST", ""),
                port=int(env("SFTP_PORT", "22")),
                user=env("SFTP_USER", ""),
                password=env("SFTP_PASSWORD"),
                key_file=env("SFTP_KEY_FILE"),
                known_hosts=env("SFTP_KNOWN_HOSTS"),
            )

        rcon = None
        if env("RCON_HOST"):
            rcon = RconConfig(
                host=env("RCON_HOST", ""),
                port=int(env("RCON_PORT", "26255")),
                password=env("RCON_PASSWORD", ""),
            )

        telegram = None
        if env("TELEGRAM_BOT_TOKEN") and env("TELEGRAM_CHAT_ID"):
            telegram = TelegramConfig(
                bot_token=env("TELEGRAM_BOT_TOKEN", ""),
                chat_id=env("TELEGRAM_CHAT_ID", ""),
                quiet_normal=_env_bool("TELEGRAM_QUIET_NORMAL", False),
            )

        providers = []
        for i in (1, 2):
            key = env(f"GEMINI_API_KEY_{i}")
            if key:
                providers.append(
                    ProviderSettings(
                        f"gemini-{i}", "gemini", key, env("GEMINI_MODEL", "gemini-2.0-flash")
                    )
                )
        if env("OPENAI_API_KEY"):
            providers.append(
                ProviderSettings(
                    "openai",
                    "openai",
                    env("OPENAI_API_KEY", ""),
                    env("OPENAI_MODEL", "gpt-3.5-turbo"),
                    env("OPENAI_BASE_URL"),
                )
            )
        if env("DEEPSEEK_API_KEY"):
            providers.append(
                ProviderSettings(
                    "deepseek",
                    "openai",
                    env("DEEPSEEK_API_KEY", ""),
                    env("DEEPSEEK_MODEL", "deepseek-chat"),
                    env("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1"),
                )
            )

        state_file = env("CRAFTWATCH_STATE_FILE")
        return cls(
            sources=sources,
            sftp=sftp,
            rcon=rcon,
            telegram=telegram,
            discord_webhook_url=env("DISCORD_WEBHOOK_URL"),
            providers=providers,
            state_file=Path(state_file) if state_file else DEFAULT_STATE_PATH,
            tail_from_end=_env_bool("TAIL_FROM_END", True),
            crash_notify_existing=_env_bool("CRASH_NOTIFY_EXISTING", False),
            notify_warnings=_env_bool("NOTIFY_WARNINGS", False),
            ping_interval=max(MIN_PING_INTERVAL, float(env("PING_INTERVAL", "60"))),
            metrics_port=int(env("METRICS_PORT") or env("PORT") or "4000"),
            log_level=env("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from YAML file, layered over env vars."""
        config = cls.from_env()

        if not path.exists():
            return config
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        config._apply(data)
        return config

    def _apply(self, data: dict[str, Any]) -> None:
        if "sources" in data:
            self.sources = [
                LogSource(
                    id=s["id"],
                    remote_path=s["path"],
                    kind=SourceKind(s.get("kind", "server_events")),
                    poll_interval=float(s.get("poll_interval", 3.0)),
                    pattern=s.get("pattern"),
                )
                for s in data["sources"] or []
            ]

        if data.get("sftp"):
            base = self.sftp or SFTPConfig(host="")
            self.sftp = SFTPConfig(**{**base.__dict__, **data["sftp"]})
        if data.get("rcon"):
            base_rcon = self.rcon or RconConfig(host="")
            self.rcon = RconConfig(**{**base_rcon.__dict__, **data["rcon"]})
        if data.get("telegram"):
            base_tg = self.telegram or TelegramConfig(bot_token="", chat_id="")
            tg = {**base_tg.__dict__, **data["telegram"]}
            self.telegram = TelegramConfig(
                bot_token=str(tg["bot_token"]),
                chat_id=str(tg["chat_id"]),
                quiet_normal=bool(tg["quiet_normal"]),
            )

        if "providers" in data:
            self.providers = [
                ProviderSettings(
                    name=p["name"],
                    kind=p.get("kind", "openai"),
                    api_key=p["api_key"],
                    model=p["model"],
                    base_url=p.get("base_url"),
                )
                for p in data["providers"] or []
            ]

        if data.get("dedup"):
            dd = data["dedup"]
            self.dedup = DedupConfig(
                default_cooldown=float(dd.get("default_cooldown", self.dedup.default_cooldown)),
                cooldowns={**self.dedup.cooldowns, **dd.get("cooldowns", {})},
            )
        if data.get("queue"):
            self.queue = QueueConfig(**{**self.queue.__dict__, **data["queue"]})

        if "state_file" in data:
            self.state_file = Path(data["state_file"]) if data["state_file"] else None
        for key in (
            "discord_webhook_url",
            "tail_from_end",
            "crash_notify_existing",
            "crash_ledger_capacity",
            "notify_warnings",
            "provider_timeout",
            "quota_block_seconds",
            "max_answer_chars",
            "metrics_port",
            "log_level",
        ):
            if key in data:
                setattr(self, key, data[key])
        if "ping_interval" in data:
            self.ping_interval = max(MIN_PING_INTERVAL, float(data["ping_interval"]))

    def validate(self) -> list[str]:
        """Describe missing or inconsistent settings.

        Returns one message per problem instead of raising so the daemon can
        disable only the affected tasks.
        """
        problems = []
        if self.telegram is None and not self.discord_webhook_url:
            problems.append(
                "No outbound channel: set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID, "
                "or DISCORD_WEBHOOK_URL"
            )
        if not self.sources:
            problems.append("No log sources: set MC_KUBEJS_LOG, MC_LOG_DIR or MC_CRASH_DIR")
        elif self.sftp is None or not self.sftp.host:
            problems.append("Log sources are configured but SFTP_HOST is not set")
        if self.rcon is not None and not self.rcon.password:
            problems.append("RCON_HOST is set but RCON_PASSWORD is empty")
        if not self.providers:
            problems.append(
                "No AI providers: set GEMINI_API_KEY_1, OPENAI_API_KEY or DEEPSEEK_API_KEY"
            )
        return problems
