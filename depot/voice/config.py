"""Configuration helpers for the Depot voice subsystem."""

from __future__ import annotations

import os
import shlex
import socket
from dataclasses import dataclass
from pathlib import Path

from depot.utils import clamp, parse_bool, parse_float, parse_int, split_csv

DEFAULT_LANGUAGE = "en-US"
DEFAULT_PREFERRED_VOICES = ("Samantha", "Karen")
DEFAULT_QUALITY_MARKERS = ("Natural", "Enhanced")


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def language_prefix(language: str) -> str:
    """Return the primary subtag of a locale (``en-US`` -> ``en``)."""
    cleaned = language.strip().replace("_", "-")
    return cleaned.split("-", 1)[0].lower()


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class PhraseConfig:
    min_seconds: float
    max_seconds: float
    silence_ms: int
    rms_floor: int


@dataclass(frozen=True)
class RecognitionConfig:
    language: str
    session_seconds: float
    no_speech_seconds: float
    autostart: bool


@dataclass(frozen=True)
class SpeechOutputConfig:
    enabled: bool
    language: str
    rate: float
    pitch: float
    volume: float
    voice: str | None
    preferred_voices: tuple[str, ...]
    quality_markers: tuple[str, ...]

    @property
    def language_prefix(self) -> str:
        return language_prefix(self.language)


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class VoiceConfig:
    hostname: str
    recognition: RecognitionConfig
    speech: SpeechOutputConfig
    mic: MicConfig
    phrase: PhraseConfig
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint
    timeout: float | None
    mqtt: MqttConfig
    command_file: Path | None
    inline_commands: str | None
    simulation_topic: str
    state_topic: str
    transcript_topic: str
    command_topic: str

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> VoiceConfig:
        source = env if env is not None else os.environ
        hostname = source.get("DEPOT_HOSTNAME") or socket.gethostname()
        language = _strip_or_none(source.get("DEPOT_VOICE_LANGUAGE")) or DEFAULT_LANGUAGE

        recognition = RecognitionConfig(
            language=language,
            session_seconds=max(1.0, parse_float(source.get("DEPOT_VOICE_SESSION_SECONDS"), 60.0)),
            no_speech_seconds=max(1.0, parse_float(source.get("DEPOT_VOICE_NO_SPEECH_SECONDS"), 8.0)),
            autostart=parse_bool(source.get("DEPOT_VOICE_AUTOSTART"), False),
        )

        speech = SpeechOutputConfig(
            enabled=parse_bool(source.get("DEPOT_VOICE_TTS_ENABLED"), True),
            language=language,
            rate=clamp(parse_float(source.get("DEPOT_VOICE_TTS_RATE"), 1.1), 0.1, 10.0),
            pitch=clamp(parse_float(source.get("DEPOT_VOICE_TTS_PITCH"), 1.0), 0.0, 2.0),
            volume=clamp(parse_float(source.get("DEPOT_VOICE_TTS_VOLUME"), 0.9), 0.0, 1.0),
            voice=_strip_or_none(source.get("DEPOT_VOICE_TTS_VOICE")),
            preferred_voices=tuple(split_csv(source.get("DEPOT_VOICE_TTS_PREFERRED_VOICES")))
            or DEFAULT_PREFERRED_VOICES,
            quality_markers=DEFAULT_QUALITY_MARKERS,
        )

        mic = MicConfig(
            command=shlex.split(
                source.get(
                    "DEPOT_VOICE_MIC_CMD",
                    "arecord -q -t raw -f S16_LE -c 1 -r 16000 -",
                )
            ),
            rate=parse_int(source.get("DEPOT_VOICE_MIC_RATE"), 16000),
            width=parse_int(source.get("DEPOT_VOICE_MIC_WIDTH"), 2),
            channels=parse_int(source.get("DEPOT_VOICE_MIC_CHANNELS"), 1),
            chunk_ms=max(10, parse_int(source.get("DEPOT_VOICE_MIC_CHUNK_MS"), 30)),
        )

        phrase = PhraseConfig(
            min_seconds=parse_float(source.get("DEPOT_VOICE_MIN_PHRASE_SECONDS"), 0.4),
            max_seconds=parse_float(source.get("DEPOT_VOICE_MAX_PHRASE_SECONDS"), 6.0),
            silence_ms=parse_int(source.get("DEPOT_VOICE_SILENCE_MS"), 900),
            rms_floor=parse_int(source.get("DEPOT_VOICE_RMS_THRESHOLD"), 120),
        )

        stt_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
            model=_strip_or_none(source.get("DEPOT_VOICE_STT_MODEL")),
        )
        tts_endpoint = WyomingEndpoint(
            host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
            port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
        )

        timeout_seconds = parse_float(source.get("DEPOT_VOICE_TIMEOUT_SECONDS"), 15.0)
        timeout = timeout_seconds if timeout_seconds > 0 else None

        topic_base = source.get("DEPOT_VOICE_TOPIC_BASE") or f"depot/{hostname}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        command_file = None
        if path := source.get("DEPOT_VOICE_COMMANDS_FILE"):
            candidate = Path(path)
            if candidate.exists():
                command_file = candidate

        return VoiceConfig(
            hostname=hostname,
            recognition=recognition,
            speech=speech,
            mic=mic,
            phrase=phrase,
            stt_endpoint=stt_endpoint,
            tts_endpoint=tts_endpoint,
            timeout=timeout,
            mqtt=mqtt,
            command_file=command_file,
            inline_commands=source.get("DEPOT_VOICE_COMMANDS"),
            simulation_topic=f"{mqtt.topic_base}/simulation/set",
            state_topic=f"{mqtt.topic_base}/voice/state",
            transcript_topic=f"{mqtt.topic_base}/voice/transcript",
            command_topic=f"{mqtt.topic_base}/voice/command",
        )
