"""Host-facing composition of recognition, command matching and speech output."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from .commands import VoiceCommand, load_command_definitions, merge_commands
from .recognition import RecognitionController, RecognitionEngine
from .simulation import MqttSimulationControls, SimulationControls, build_default_commands
from .speech import Scheduler, SpeechOutputQueue, SynthesisEngine

if TYPE_CHECKING:
    from .config import VoiceConfig
    from .mqtt import VoiceMqtt

LOGGER = logging.getLogger("depot-voice")

ENABLE_VALUES = {"on", "true", "1", "yes", "enable", "enabled", "start"}


class VoiceSession:
    """Wires the recognition controller and speech queue to the simulation and MQTT.

    Remote control arrives on MQTT callback threads and is handed to the event
    loop with ``call_soon_threadsafe``; everything else runs on the loop.
    """

    def __init__(
        self,
        config: VoiceConfig,
        *,
        recognition_engine: RecognitionEngine | None,
        synthesis_engine: SynthesisEngine | None,
        mqtt: VoiceMqtt | None = None,
        simulation: SimulationControls | None = None,
        call_later: Scheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.mqtt = mqtt
        self.logger = logger or LOGGER
        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_error: str | None = None
        # The controller reports an unsupported engine while it is being built.
        self._wired = False

        self.speech = SpeechOutputQueue(synthesis_engine, config.speech, call_later=call_later, logger=self.logger)
        if simulation is None and mqtt is not None:
            simulation = MqttSimulationControls(mqtt, config.simulation_topic, logger=self.logger)
        self.simulation = simulation

        self.controller = RecognitionController(
            recognition_engine,
            self._build_commands(),
            on_command_recognized=self._handle_command,
            on_error=self._handle_error,
            logger=self.logger,
        )
        self.controller.set_listening_callback(self._handle_listening_changed)
        self.controller.set_transcript_callback(self._handle_transcript)
        self.speech.set_speaking_callback(lambda _speaking: self._publish_state())
        self._wired = True

    @property
    def commands(self) -> list[VoiceCommand]:
        return self.controller.commands

    def set_commands(self, commands: Sequence[VoiceCommand]) -> None:
        self.controller.set_commands(commands)

    def speak(self, text: str, immediate: bool = False) -> None:
        self.speech.speak(text, immediate=immediate)

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        if self.mqtt is not None:
            base = self.config.mqtt.topic_base
            try:
                self.mqtt.subscribe(f"{base}/voice/listen/set", self._handle_listen_command)
                self.mqtt.subscribe(f"{base}/voice/say", self._handle_say_command)
            except RuntimeError as exc:
                self.logger.debug("[session] MQTT client not ready for subscription: %s", exc)
        if self.config.recognition.autostart:
            self.controller.start_listening()
        self._publish_state()

    def shutdown(self) -> None:
        self.controller.shutdown()
        self.speech.cancel()
        self._publish_state()

    def _build_commands(self) -> list[VoiceCommand]:
        commands: list[VoiceCommand] = []
        if self.simulation is not None:
            commands = build_default_commands(self.simulation, self.speech.speak)
        if self.mqtt is not None:
            extra = load_command_definitions(
                self.config.command_file,
                self.config.inline_commands,
                self.mqtt.publish,
            )
            commands = merge_commands(commands, extra)
        return commands

    # ------------------------------------------------------------------
    # Controller callbacks (event loop)
    # ------------------------------------------------------------------

    def _handle_command(self, name: str, transcript: str) -> None:
        if self.mqtt is not None:
            self.mqtt.publish_json(self.config.command_topic, {"command": name, "transcript": transcript})

    def _handle_transcript(self, transcript: str) -> None:
        if self.mqtt is not None:
            self.mqtt.publish(self.config.transcript_topic, transcript)

    def _handle_error(self, message: str) -> None:
        self._last_error = message
        self._publish_state()

    def _handle_listening_changed(self, listening: bool) -> None:
        if listening:
            self._last_error = None
        self._publish_state()

    def _publish_state(self) -> None:
        if self.mqtt is None or not self._wired:
            return
        self.mqtt.publish_json(
            self.config.state_topic,
            {
                "listening": self.controller.is_listening,
                "speaking": self.speech.is_speaking,
                "recognition_supported": self.controller.is_supported,
                "speech_supported": self.speech.is_supported,
                "error": self._last_error,
            },
            retain=True,
        )

    # ------------------------------------------------------------------
    # MQTT remote control (paho thread)
    # ------------------------------------------------------------------

    def _call_on_loop(self, callback: Callable[[], None]) -> None:
        if self._loop is None:
            self.logger.debug("[session] Ignoring remote command before start()")
            return
        self._loop.call_soon_threadsafe(callback)

    def _handle_listen_command(self, payload: str) -> None:
        value = payload.strip().lower()
        if value == "toggle":
            self._call_on_loop(self.controller.toggle_listening)
        elif value in ENABLE_VALUES:
            self._call_on_loop(self.controller.start_listening)
        else:
            self._call_on_loop(self.controller.stop_listening)

    def _handle_say_command(self, payload: str) -> None:
        text = payload.strip()
        immediate = False
        if text.startswith("{"):
            try:
                data = json.loads(text)
            except ValueError:
                self.logger.warning("[session] Ignoring malformed say payload: %s", payload)
                return
            if not isinstance(data, dict):
                return
            text = str(data.get("text") or "")
            immediate = bool(data.get("immediate", False))
        if text.lower() == "cancel":
            self._call_on_loop(self.speech.cancel)
            return
        self._call_on_loop(lambda: self.speech.speak(text, immediate=immediate))
