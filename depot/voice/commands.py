"""Voice command definitions and the ordered command matcher."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

LOGGER = logging.getLogger("depot-voice.commands")

CommandCategory = Literal["simulation", "robot", "task", "view"]
COMMAND_CATEGORIES = frozenset({"simulation", "robot", "task", "view"})

PublishFn = Callable[..., None]


@dataclass(frozen=True)
class VoiceCommand:
    """A named set of patterns bound to a zero-argument action.

    Patterns are tried in insertion order with ``re.search`` against the
    normalized (lower-cased, trimmed) transcript, so anchors decide whether a
    pattern is exact or substring tolerant.
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    action: Callable[[], object]
    category: CommandCategory = "simulation"
    description: str = ""

    def __post_init__(self) -> None:
        if not self.patterns:
            raise ValueError(f"Voice command '{self.name}' has no patterns")
        if self.action is None:
            raise ValueError(f"Voice command '{self.name}' has no action")
        compiled = tuple(
            pattern if isinstance(pattern, re.Pattern) else re.compile(pattern) for pattern in self.patterns
        )
        object.__setattr__(self, "patterns", compiled)

    def first_match(self, text: str) -> re.Match[str] | None:
        for pattern in self.patterns:
            found = pattern.search(text)
            if found:
                return found
        return None


@dataclass(frozen=True)
class CommandMatch:
    command: VoiceCommand
    matched_text: str
    transcript: str = field(default="")


def normalize_transcript(text: str) -> str:
    return text.lower().strip()


def match(transcript: str, commands: Iterable[VoiceCommand]) -> CommandMatch | None:
    """Run the action of the first command whose pattern matches ``transcript``.

    Commands are walked in registration order and patterns in insertion order;
    nothing after the first hit is evaluated. Unmatched transcripts are dropped.
    """
    normalized = normalize_transcript(transcript)
    if not normalized:
        return None
    for command in commands:
        found = command.first_match(normalized)
        if found is None:
            continue
        command.action()
        return CommandMatch(command=command, matched_text=found.group(0), transcript=normalized)
    return None


def group_by_category(commands: Iterable[VoiceCommand]) -> dict[str, list[VoiceCommand]]:
    """Group commands for help listings, keeping registration order within each group."""
    grouped: dict[str, list[VoiceCommand]] = {}
    for command in commands:
        grouped.setdefault(command.category, []).append(command)
    return grouped


def load_command_definitions(
    command_file: Path | None,
    inline_json: str | None,
    publish: PublishFn,
) -> list[VoiceCommand]:
    """Build MQTT-publishing commands from a JSON file and/or inline JSON string."""
    candidates: list[dict] = []
    if command_file and command_file.exists():
        try:
            candidates.extend(_ensure_list(json.loads(command_file.read_text(encoding="utf-8"))))
        except (OSError, ValueError) as exc:
            LOGGER.warning("[commands] Ignoring unreadable command file %s: %s", command_file, exc)

    if inline_json:
        try:
            candidates.extend(_ensure_list(json.loads(inline_json)))
        except ValueError as exc:
            LOGGER.warning("[commands] Ignoring malformed inline commands: %s", exc)

    commands: list[VoiceCommand] = []
    seen: set[str] = set()
    for candidate in candidates:
        name = str(candidate.get("name") or "").strip()
        topic = str(candidate.get("topic") or "").strip()
        payload = candidate.get("payload")
        patterns = _compile_patterns(name, candidate.get("patterns"))
        if not name or name in seen or not topic or payload is None or not patterns:
            continue
        category = str(candidate.get("category") or "simulation").lower()
        if category not in COMMAND_CATEGORIES:
            category = "simulation"
        seen.add(name)
        commands.append(
            VoiceCommand(
                name=name,
                patterns=patterns,
                action=_publish_action(
                    publish,
                    topic,
                    json.dumps(payload) if isinstance(payload, (dict, list)) else str(payload),
                    retain=bool(candidate.get("retain", False)),
                    qos=int(candidate.get("qos", 0)),
                ),
                category=category,  # type: ignore[arg-type]
                description=str(candidate.get("description") or name),
            )
        )
    return commands


def merge_commands(primary: Sequence[VoiceCommand], extra: Iterable[VoiceCommand]) -> list[VoiceCommand]:
    """Append ``extra`` after ``primary``, dropping names that are already registered."""
    merged = list(primary)
    names = {command.name for command in merged}
    for command in extra:
        if command.name in names:
            LOGGER.warning("[commands] Duplicate voice command '%s' ignored", command.name)
            continue
        names.add(command.name)
        merged.append(command)
    return merged


def _publish_action(publish: PublishFn, topic: str, payload: str, *, retain: bool, qos: int) -> Callable[[], None]:
    def _action() -> None:
        publish(topic, payload, retain=retain, qos=qos)

    return _action


def _compile_patterns(name: str, raw) -> tuple[re.Pattern[str], ...]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return ()
    compiled: list[re.Pattern[str]] = []
    for item in raw:
        try:
            compiled.append(re.compile(str(item), re.IGNORECASE))
        except re.error as exc:
            LOGGER.warning("[commands] Skipping invalid pattern %r for '%s': %s", item, name, exc)
    return tuple(compiled)


def _ensure_list(value) -> list[dict]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        return [value]
    return []
