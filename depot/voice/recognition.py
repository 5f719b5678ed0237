"""Continuous speech recognition controller.

The controller owns one recognition session at a time and keeps listening
across engine-imposed session limits by re-opening the stream when it ends
unexpectedly. Whether an ended stream is re-opened is decided by
``RESTART_TRANSITIONS`` from two inputs only: the session's ``should_restart``
flag and the class of the last engine error it saw.

Final transcripts are handed to :func:`depot.voice.commands.match` exactly
once per result batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from .commands import VoiceCommand, match

LOGGER = logging.getLogger("depot-voice.recognition")

UNSUPPORTED_MESSAGE = "Speech recognition is not supported on this host."

SessionState = Literal["idle", "listening", "error"]
ErrorClass = Literal["transient", "fault"]
EndDecision = Literal["restart", "idle", "error"]

TRANSIENT_ERROR_CODES = frozenset({"no-speech", "aborted"})

# (should_restart, last error class) -> what happens when the stream ends
RESTART_TRANSITIONS: dict[tuple[bool, ErrorClass | None], EndDecision] = {
    (True, None): "restart",
    (True, "transient"): "restart",
    (True, "fault"): "error",
    (False, None): "idle",
    (False, "transient"): "idle",
    (False, "fault"): "error",
}


@dataclass(frozen=True)
class RecognitionSegment:
    transcript: str
    is_final: bool = False


@dataclass(frozen=True)
class RecognitionResultBatch:
    """One engine result event; segments before ``result_index`` were already reported."""

    segments: tuple[RecognitionSegment, ...]
    result_index: int = 0


@dataclass
class RecognitionSession:
    state: SessionState = "idle"
    should_restart: bool = False
    interim_transcript: str = ""
    final_transcript: str = ""
    last_error: ErrorClass | None = None
    started: bool = False
    is_restart: bool = False
    error_codes: list[str] = field(default_factory=list)


class RecognitionEngine(Protocol):
    """Host speech recognizer. Callbacks are assigned by the controller."""

    on_start: Callable[[], None] | None
    on_end: Callable[[], None] | None
    on_error: Callable[[str], None] | None
    on_result: Callable[[RecognitionResultBatch], None] | None

    def start(self) -> None: ...

    def stop(self) -> None: ...


def classify_error(code: str) -> ErrorClass:
    return "transient" if code in TRANSIENT_ERROR_CODES else "fault"


def decide_on_end(should_restart: bool, last_error: ErrorClass | None) -> EndDecision:
    return RESTART_TRANSITIONS[(should_restart, last_error)]


class RecognitionController:
    """Owns the recognition stream and turns its events into transcripts and commands."""

    def __init__(
        self,
        engine: RecognitionEngine | None,
        commands: Sequence[VoiceCommand] = (),
        *,
        on_command_recognized: Callable[[str, str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._commands: list[VoiceCommand] = list(commands)
        self._on_command_recognized = on_command_recognized
        self._on_error = on_error
        self.logger = logger or LOGGER

        self._session = RecognitionSession()
        self._binding = 0
        self._is_listening = False
        self.transcript = ""
        self.interim_transcript = ""

        self._on_listening_changed: Callable[[bool], None] | None = None
        self._on_transcript: Callable[[str], None] | None = None

        if engine is None:
            self._report_error(UNSUPPORTED_MESSAGE)
        else:
            self._bind()

    # ------------------------------------------------------------------
    # Host surface
    # ------------------------------------------------------------------

    @property
    def is_supported(self) -> bool:
        return self._engine is not None

    @property
    def is_listening(self) -> bool:
        return self._is_listening

    @property
    def session(self) -> RecognitionSession:
        return self._session

    @property
    def commands(self) -> list[VoiceCommand]:
        return list(self._commands)

    def set_listening_callback(self, callback: Callable[[bool], None]) -> None:
        self._on_listening_changed = callback

    def set_transcript_callback(self, callback: Callable[[str], None]) -> None:
        self._on_transcript = callback

    def start_listening(self) -> None:
        if self._engine is None:
            return
        if self._is_listening or self._session.state == "listening":
            return
        self._session = RecognitionSession(state="listening", should_restart=True)
        try:
            self._engine.start()
        except Exception as exc:
            self.logger.error("[recognition] Error starting recognition: %s", exc)
            self._session.state = "idle"

    def stop_listening(self) -> None:
        if self._engine is None:
            return
        self._session.should_restart = False
        self._session.state = "idle"
        try:
            self._engine.stop()
        except Exception as exc:
            self.logger.error("[recognition] Error stopping recognition: %s", exc)
        self._set_listening(False)

    def toggle_listening(self) -> None:
        if self._is_listening:
            self.stop_listening()
        else:
            self.start_listening()

    def set_commands(self, commands: Sequence[VoiceCommand]) -> None:
        """Replace the registered commands and rebuild the recognition binding."""
        self._commands = list(commands)
        if self._engine is None:
            return
        self._teardown()
        self._bind()

    def shutdown(self) -> None:
        if self._engine is None:
            return
        self._teardown()
        self._engine.on_start = None
        self._engine.on_end = None
        self._engine.on_error = None
        self._engine.on_result = None

    # ------------------------------------------------------------------
    # Engine binding
    # ------------------------------------------------------------------

    def _bind(self) -> None:
        assert self._engine is not None
        self._binding += 1
        binding = self._binding
        self._session = RecognitionSession()
        self._engine.on_start = lambda: self._handle_start(binding)
        self._engine.on_end = lambda: self._handle_end(binding)
        self._engine.on_error = lambda code: self._handle_error(binding, code)
        self._engine.on_result = lambda batch: self._handle_result(binding, batch)

    def _teardown(self) -> None:
        self.stop_listening()
        self._binding += 1

    def _is_current(self, binding: int) -> bool:
        return binding == self._binding

    def _handle_start(self, binding: int) -> None:
        if not self._is_current(binding):
            return
        self._session.started = True
        self._set_listening(True)

    def _handle_end(self, binding: int) -> None:
        if not self._is_current(binding):
            return
        session = self._session
        self._set_listening(False)
        if session.is_restart and not session.started and session.should_restart:
            self.logger.error("[recognition] Recognition restart failed; not retrying")
            session.last_error = "fault"
        decision = decide_on_end(session.should_restart, session.last_error)
        if decision == "restart":
            self._restart()
        elif decision == "error":
            session.state = "error"
        else:
            session.state = "idle"

    def _restart(self) -> None:
        assert self._engine is not None
        self._session = RecognitionSession(state="listening", should_restart=True, is_restart=True)
        self.logger.debug("[recognition] Stream ended; restarting")
        try:
            self._engine.start()
        except Exception as exc:
            self.logger.error("[recognition] Error restarting recognition: %s", exc)
            self._session.state = "error"
            self._session.last_error = "fault"

    def _handle_error(self, binding: int, code: str) -> None:
        if not self._is_current(binding):
            return
        session = self._session
        session.error_codes.append(code)
        error_class = classify_error(code)
        if error_class == "transient":
            self.logger.debug("[recognition] Ignoring transient recognition error: %s", code)
            if session.last_error is None:
                session.last_error = "transient"
            return
        session.last_error = "fault"
        session.state = "error"
        self._set_listening(False)
        self._report_error(f"Speech recognition error: {code}")

    def _handle_result(self, binding: int, batch: RecognitionResultBatch) -> None:
        if not self._is_current(binding):
            return
        interim_parts: list[str] = []
        final_parts: list[str] = []
        for segment in batch.segments[batch.result_index :]:
            text = segment.transcript.lower().strip()
            if not text:
                continue
            if segment.is_final:
                final_parts.append(text)
            else:
                interim_parts.append(text)

        self.interim_transcript = " ".join(interim_parts)
        self._session.interim_transcript = self.interim_transcript
        if not final_parts:
            return

        final = " ".join(final_parts)
        self.transcript = final
        self._session.final_transcript = final
        if self._on_transcript:
            self._safe_call(self._on_transcript, final)
        self._process_command(final)

    def _process_command(self, text: str) -> None:
        try:
            result = match(text, self._commands)
        except Exception as exc:
            self.logger.error("[recognition] Voice command action failed for '%s': %s", text, exc, exc_info=True)
            return
        if result is None:
            self.logger.debug("[recognition] No voice command matched '%s'", text)
            return
        self.logger.info("[recognition] Voice command '%s' recognized from '%s'", result.command.name, text)
        if self._on_command_recognized:
            self._safe_call(self._on_command_recognized, result.command.name, result.transcript)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _set_listening(self, listening: bool) -> None:
        if listening == self._is_listening:
            return
        self._is_listening = listening
        if self._on_listening_changed:
            self._safe_call(self._on_listening_changed, listening)

    def _report_error(self, message: str) -> None:
        self.logger.warning("[recognition] %s", message)
        if self._on_error:
            self._safe_call(self._on_error, message)

    def _safe_call(self, callback: Callable[..., object], *args: object) -> None:
        try:
            callback(*args)
        except Exception as exc:
            self.logger.error("[recognition] Recognition callback failed: %s", exc, exc_info=True)
