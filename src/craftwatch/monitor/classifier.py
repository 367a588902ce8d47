"""Pattern classifier that turns server log lines into events.

Rules are evaluated in table order and the first match wins. Join and leave
come before chat so that "<Alex> Steve joined the game" style lines and real
joins are never confused; chat comes before deaths because chat text can
quote a death message.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from .models import Event, EventKind

log = structlog.get_logger()

_PLAYER = r"[A-Za-z0-9_]{1,16}"


@dataclass(frozen=True)
class Rule:
    """One entry of the classification table."""

    name: str
    kind: EventKind
    pattern: re.Pattern
    build: Callable[[re.Match], dict[str, str]]


def _player(m: re.Match) -> dict[str, str]:
    return {"player": m.group("player")}


def _chat(m: re.Match) -> dict[str, str]:
    return {"player": m.group("player"), "message": m.group("message").strip()}


def _kill(m: re.Match) -> dict[str, str]:
    attrs = {"victim": m.group("victim"), "cause": m.group(0).strip()}
    killer = m.groupdict().get("killer")
    if killer:
        attrs["killer"] = killer.strip()
    return attrs


# Known mod failures: (regex, label)
MOD_ERROR_KEYWORDS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"Mixin apply (?:for mod \S+ )?failed|MixinApplyError|InvalidMixinException"),
     "Mixin apply failed"),
    (re.compile(r"ModLoadingException|LoadingFailedException|Failed to load mod", re.IGNORECASE),
     "Mod failed to load"),
    (re.compile(r"KubeJS.*(?:error|Error|failed)|\[KubeJS\].*Exception"),
     "KubeJS script error"),
    (re.compile(r"Missing or unsupported mandatory dependencies"),
     "Missing mod dependency"),
    (re.compile(r"Duplicate mods? found|DuplicateModsFoundException"),
     "Duplicate mod"),
    (re.compile(r"java\.lang\.OutOfMemoryError"),
     "Out of memory"),
]

_DEATH_VERBS = (
    r"slain|killed|shot|blown up|fireballed|pummeled|impaled|squashed|"
    r"stung|skewered|squished|poked to death|burnt to a crisp whilst fighting"
)
_ENVIRONMENT_DEATHS = (
    r"drowned|died|starved to death|burned to death|suffocated in a wall|"
    r"hit the ground too hard|fell from a high place|fell out of the world|"
    r"froze to death|tried to swim in lava|went up in flames|blew up|"
    r"withered away|was struck by lightning|was killed by magic|"
    r"experienced kinetic energy|discovered the floor was lava"
)

RULES: tuple[Rule, ...] = (
    Rule(
        "join",
        EventKind.JOIN,
        re.compile(rf"(?P<player>{_PLAYER}) joined the game"),
        _player,
    ),
    Rule(
        "leave",
        EventKind.LEAVE,
        re.compile(rf"(?P<player>{_PLAYER}) left the game"),
        _player,
    ),
    Rule(
        "chat",
        EventKind.CHAT,
        re.compile(r"(?:^|\]:?\s)\s*<(?P<player>[^<>\s]{1,32})>\s+(?P<message>\S.*)$"),
        _chat,
    ),
    Rule(
        "kill_by",
        EventKind.KILL,
        re.compile(
            rf"(?P<victim>{_PLAYER}) was (?:{_DEATH_VERBS}) by (?P<killer>.+?)"
            r"(?: using .+)?\s*$"
        ),
        _kill,
    ),
    Rule(
        "killed",
        EventKind.KILL,
        re.compile(rf"(?P<killer>{_PLAYER}) killed (?P<victim>{_PLAYER})\s*$"),
        _kill,
    ),
    Rule(
        "environment_death",
        EventKind.KILL,
        re.compile(rf"(?P<victim>{_PLAYER}) (?:was )?(?:{_ENVIRONMENT_DEATHS})\b"),
        _kill,
    ),
    *(
        Rule(
            f"mod_error:{label}",
            EventKind.MOD_ERROR,
            pattern,
            lambda m, label=label: {"label": label},
        )
        for pattern, label in MOD_ERROR_KEYWORDS
    ),
    Rule(
        "generic_warning",
        EventKind.GENERIC_WARNING,
        re.compile(r"\b(?:ERROR|WARN(?:ING)?|FATAL|SEVERE)\b|Exception\b"),
        lambda m: {},
    ),
)

# A line that is nothing but bracketed prefixes, e.g. "[12:00:01] [Server thread/INFO]: "
_EMPTY_PAYLOAD = re.compile(r"^(?:\[[^\]]*\]\s*)+:?\s*$")


def classify(line: str, observed_at: datetime | None = None) -> Event | None:
    """Classify a log line.

    Args:
        line: Raw log line (trailing newline allowed)
        observed_at: When the line was read; defaults to now

    Returns:
        The event for the first matching rule, or None
    """
    text = line.strip()
    if not text or _EMPTY_PAYLOAD.match(text):
        return None

    for rule in RULES:
        match = rule.pattern.search(text)
        if match:
            return Event(
                kind=rule.kind,
                attributes=rule.build(match),
                raw_line=text,
                observed_at=observed_at or datetime.now(timezone.utc),
            )

    log.debug("Line discarded", line=text[:200])
    return None
