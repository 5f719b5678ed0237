"""Serialized speech output with voice selection."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from .config import DEFAULT_PREFERRED_VOICES, DEFAULT_QUALITY_MARKERS, SpeechOutputConfig

LOGGER = logging.getLogger("depot-voice.speech")

UNSUPPORTED_MESSAGE = "Speech synthesis is not supported on this host."

# Cooldown between back-to-back utterances; some engines clip the next
# utterance's first syllable without it.
SETTLE_DELAY_SECONDS = 0.1

Scheduler = Callable[[float, Callable[[], None]], object]


@dataclass(frozen=True)
class Voice:
    name: str
    language: str = ""
    default: bool = False
    description: str | None = None


@dataclass(eq=False)
class Utterance:
    text: str
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    voice: Voice | None = None
    on_start: Callable[[], None] | None = None
    on_end: Callable[[], None] | None = None
    on_error: Callable[[str], None] | None = None


class SynthesisEngine(Protocol):
    """Host speech synthesizer. ``on_voices_changed`` is assigned by the queue."""

    on_voices_changed: Callable[[], None] | None

    def get_voices(self) -> list[Voice]: ...

    def speak(self, utterance: Utterance) -> None: ...

    def cancel(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...


def select_voice(
    voices: Sequence[Voice],
    *,
    language_prefix: str,
    requested: str | None = None,
    preferred_names: Sequence[str] = DEFAULT_PREFERRED_VOICES,
    quality_markers: Sequence[str] = DEFAULT_QUALITY_MARKERS,
) -> Voice | None:
    """Pick a voice by preference order; only the last resort ignores the locale.

    Order: requested substring, each preferred name in turn, any name carrying a
    quality marker, the engine default, the first locale voice, the first voice.
    """
    if not voices:
        return None
    prefix = language_prefix.lower()
    local = [voice for voice in voices if voice.language.lower().startswith(prefix)]

    def _find(predicate: Callable[[Voice], bool]) -> Voice | None:
        return next((voice for voice in local if predicate(voice)), None)

    candidates: list[Voice | None] = []
    if requested:
        candidates.append(_find(lambda voice: requested in voice.name))
    candidates.extend(_find(lambda voice, name=name: name in voice.name) for name in preferred_names)
    candidates.append(_find(lambda voice: any(marker in voice.name for marker in quality_markers)))
    candidates.append(_find(lambda voice: voice.default))
    candidates.append(local[0] if local else None)
    candidates.append(voices[0])
    return next(voice for voice in candidates if voice is not None)


def _loop_call_later(delay: float, callback: Callable[[], None]) -> object:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
        return None
    return loop.call_later(delay, callback)


class SpeechOutputQueue:
    """FIFO of text fragments played through at most one active utterance."""

    def __init__(
        self,
        engine: SynthesisEngine | None,
        config: SpeechOutputConfig,
        *,
        call_later: Scheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self.config = config
        self._call_later = call_later or _loop_call_later
        self.logger = logger or LOGGER

        self._enabled = config.enabled
        self._queue: deque[str] = deque()
        self._active: Utterance | None = None
        self._processing = False
        self._settling = False
        self._settle_generation = 0
        self._is_speaking = False
        self._voices: list[Voice] = []
        self._selected_voice: Voice | None = None
        self._on_speaking_changed: Callable[[bool], None] | None = None

        if engine is None:
            self.logger.warning("[speech] %s", UNSUPPORTED_MESSAGE)
            return
        engine.on_voices_changed = self._load_voices
        self._load_voices()

    @property
    def is_supported(self) -> bool:
        return self._engine is not None

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def voices(self) -> list[Voice]:
        return list(self._voices)

    @property
    def selected_voice(self) -> Voice | None:
        return self._selected_voice

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._queue)

    def set_speaking_callback(self, callback: Callable[[bool], None]) -> None:
        self._on_speaking_changed = callback

    def select_voice(self, voice: Voice | None) -> None:
        self._selected_voice = voice

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self.cancel()

    def speak(self, text: str, immediate: bool = False) -> None:
        if self._engine is None or not self._enabled or not text.strip():
            return
        if immediate:
            self._hard_cancel()
        self._queue.append(text)
        self._process_queue()

    def cancel(self) -> None:
        if self._engine is None:
            return
        self._hard_cancel()

    def pause(self) -> None:
        if self._engine is not None:
            self._engine.pause()

    def resume(self) -> None:
        if self._engine is not None:
            self._engine.resume()

    def _load_voices(self) -> None:
        assert self._engine is not None
        try:
            voices = list(self._engine.get_voices())
        except Exception as exc:
            self.logger.warning("[speech] Unable to list synthesis voices: %s", exc)
            return
        self._voices = voices
        if voices and self._selected_voice is None:
            self._selected_voice = select_voice(
                voices,
                language_prefix=self.config.language_prefix,
                requested=self.config.voice,
                preferred_names=self.config.preferred_voices,
                quality_markers=self.config.quality_markers,
            )
            if self._selected_voice:
                self.logger.info("[speech] Using voice %s", self._selected_voice.name)

    def _hard_cancel(self) -> None:
        assert self._engine is not None
        self._queue.clear()
        self._active = None
        self._processing = False
        self._settling = False
        self._settle_generation += 1
        try:
            self._engine.cancel()
        except Exception as exc:
            self.logger.error("[speech] Error cancelling speech: %s", exc)
        self._set_speaking(False)

    def _process_queue(self) -> None:
        if self._processing or self._settling or not self._queue or self._engine is None:
            return
        self._processing = True
        text = self._queue.popleft()

        utterance = Utterance(
            text=text,
            rate=self.config.rate,
            pitch=self.config.pitch,
            volume=self.config.volume,
            voice=self._selected_voice,
        )
        utterance.on_start = lambda: self._handle_start(utterance)
        utterance.on_end = lambda: self._handle_done(utterance, None)
        utterance.on_error = lambda error: self._handle_done(utterance, error)
        self._active = utterance
        try:
            self._engine.speak(utterance)
        except Exception as exc:
            self._handle_done(utterance, str(exc))

    def _handle_start(self, utterance: Utterance) -> None:
        if utterance is self._active:
            self._set_speaking(True)

    def _handle_done(self, utterance: Utterance, error: str | None) -> None:
        # Completions from cancelled utterances must not release the successor's guard.
        if utterance is not self._active:
            return
        if error:
            self.logger.warning("[speech] Speech synthesis error: %s", error)
        self._active = None
        self._processing = False
        self._settle_generation += 1
        generation = self._settle_generation
        self._settling = True
        self._set_speaking(False)
        self._call_later(SETTLE_DELAY_SECONDS, lambda: self._finish_settle(generation))

    def _finish_settle(self, generation: int) -> None:
        # A cancel or a later completion owns the settle window now.
        if generation != self._settle_generation:
            return
        self._settling = False
        self._process_queue()

    def _set_speaking(self, speaking: bool) -> None:
        if speaking == self._is_speaking:
            return
        self._is_speaking = speaking
        if self._on_speaking_changed:
            try:
                self._on_speaking_changed(speaking)
            except Exception as exc:
                self.logger.error("[speech] Speaking callback failed: %s", exc, exc_info=True)
