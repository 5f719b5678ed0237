"""
Voice interaction for the warehouse simulation dashboard

This package provides continuous speech-to-command recognition paired with a
serialized speech-output queue:

- Recognition: continuous listening with transparent restarts across engine session limits
- Command matching: ordered regular-expression commands, first match wins
- Speech output: FIFO utterance queue with immediate interruption and voice selection
- Engines: Wyoming protocol (faster-whisper / Piper) backends with ALSA capture and playback
- Simulation bridge: MQTT publisher for simulation mutators plus the default command set

Key modules:
- config: Configuration management from environment variables
- recognition: Recognition controller and its restart state machine
- commands: Voice command definitions and the matcher
- speech: Speech output queue and voice selection
- session: Host-facing composition of the controller and queue
"""

from __future__ import annotations

__all__ = [
    "config",
    "commands",
    "recognition",
    "speech",
    "session",
    "engines",
    "simulation",
    "mqtt",
]
