"""Shared test fixtures for the Depot voice test suite.

This module provides reusable fixtures for common test scenarios including:
- Fake recognition and synthesis engines driven by the test
- A manual scheduler standing in for the event loop's call_later
- Configuration objects
- MQTT client mocking
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from unittest.mock import Mock

import pytest
from depot.voice.config import SpeechOutputConfig, VoiceConfig
from depot.voice.recognition import RecognitionResultBatch, RecognitionSegment
from depot.voice.speech import Utterance, Voice

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def mock_logger():
    """Mock logger with spec=logging.Logger."""
    return Mock(spec=logging.Logger)


# ============================================================================
# Fake engines
# ============================================================================


class FakeRecognitionEngine:
    """Recognition engine whose events are fired explicitly by the test."""

    def __init__(self) -> None:
        self.on_start = None
        self.on_end = None
        self.on_error = None
        self.on_result = None
        self.start_calls = 0
        self.stop_calls = 0
        self.start_error: Exception | None = None

    def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error

    def stop(self) -> None:
        self.stop_calls += 1

    def emit_start(self) -> None:
        self.on_start()

    def emit_end(self) -> None:
        self.on_end()

    def emit_error(self, code: str) -> None:
        self.on_error(code)

    def emit_result(self, *segments: tuple[str, bool], result_index: int = 0) -> None:
        batch = RecognitionResultBatch(
            segments=tuple(RecognitionSegment(transcript=text, is_final=final) for text, final in segments),
            result_index=result_index,
        )
        self.on_result(batch)


class FakeSynthesisEngine:
    """Synthesis engine that records utterances; the test decides when they finish."""

    def __init__(self, voices: list[Voice] | None = None) -> None:
        self.voices = list(voices or [])
        self.on_voices_changed = None
        self.spoken: list[Utterance] = []
        self.current: Utterance | None = None
        self.cancel_calls = 0
        self.pause_calls = 0
        self.resume_calls = 0
        self.speak_error: Exception | None = None

    def get_voices(self) -> list[Voice]:
        return list(self.voices)

    def announce_voices(self, voices: list[Voice]) -> None:
        self.voices = list(voices)
        self.on_voices_changed()

    def speak(self, utterance: Utterance) -> None:
        if self.speak_error is not None:
            raise self.speak_error
        self.spoken.append(utterance)
        self.current = utterance

    def start_current(self) -> None:
        self.current.on_start()

    def finish_current(self, error: str | None = None) -> None:
        utterance = self.current
        self.current = None
        if error is None:
            utterance.on_end()
        else:
            utterance.on_error(error)

    def cancel(self) -> None:
        self.cancel_calls += 1
        utterance = self.current
        self.current = None
        if utterance is not None:
            # Browsers and Wyoming both report the cut-off utterance as an error.
            utterance.on_error("interrupted")

    def pause(self) -> None:
        self.pause_calls += 1

    def resume(self) -> None:
        self.resume_calls += 1

    @property
    def spoken_texts(self) -> list[str]:
        return [utterance.text for utterance in self.spoken]


class ManualScheduler:
    """Collects call_later requests so tests can run them deterministically."""

    def __init__(self) -> None:
        self.pending: list[tuple[float, Callable[[], None]]] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> None:
        self.pending.append((delay, callback))

    def run_all(self) -> None:
        while self.pending:
            _delay, callback = self.pending.pop(0)
            callback()


@pytest.fixture
def recognition_engine():
    return FakeRecognitionEngine()


@pytest.fixture
def make_synthesis_engine():
    return FakeSynthesisEngine


@pytest.fixture
def synthesis_engine():
    return FakeSynthesisEngine()


@pytest.fixture
def scheduler():
    return ManualScheduler()


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def make_speech_config():
    """Factory fixture for speech output configs with overrides."""

    def _create(**overrides) -> SpeechOutputConfig:
        defaults = {
            "enabled": True,
            "language": "en-US",
            "rate": 1.1,
            "pitch": 1.0,
            "volume": 0.9,
            "voice": None,
            "preferred_voices": ("Samantha", "Karen"),
            "quality_markers": ("Natural", "Enhanced"),
        }
        defaults.update(overrides)
        return SpeechOutputConfig(**defaults)

    return _create


@pytest.fixture
def speech_config(make_speech_config):
    return make_speech_config()


@pytest.fixture
def voice_config():
    """Config built from a minimal environment."""
    return VoiceConfig.from_env({"DEPOT_HOSTNAME": "dock-1", "MQTT_HOST": "broker.local"})


@pytest.fixture
def mock_mqtt():
    """Mock VoiceMqtt exposing publish/publish_json/subscribe."""
    mqtt = Mock()
    mqtt.publish = Mock()
    mqtt.publish_json = Mock()
    mqtt.subscribe = Mock()
    return mqtt
