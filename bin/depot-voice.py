#!/usr/bin/env python3
"""Depot voice control daemon."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from depot.voice.commands import group_by_category
from depot.voice.config import VoiceConfig
from depot.voice.engines import WyomingRecognitionEngine, WyomingSynthesisEngine
from depot.voice.mqtt import VoiceMqtt
from depot.voice.session import VoiceSession

LOGGER = logging.getLogger("depot-voice")


def build_session(config: VoiceConfig) -> tuple[VoiceSession, WyomingSynthesisEngine, VoiceMqtt]:
    mqtt = VoiceMqtt(config.mqtt, logger=logging.getLogger("depot-voice.mqtt"))
    recognizer = WyomingRecognitionEngine(
        endpoint=config.stt_endpoint,
        mic=config.mic,
        phrase=config.phrase,
        language=config.recognition.language,
        session_seconds=config.recognition.session_seconds,
        no_speech_seconds=config.recognition.no_speech_seconds,
        timeout=config.timeout,
    )
    synthesizer = WyomingSynthesisEngine(endpoint=config.tts_endpoint, timeout=config.timeout)
    session = VoiceSession(
        config,
        recognition_engine=recognizer,
        synthesis_engine=synthesizer,
        mqtt=mqtt,
    )
    return session, synthesizer, mqtt


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--listen", action="store_true", help="start listening immediately")
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - [%(levelname)s] - (%(name)s) - %(message)s",
    )

    config = VoiceConfig.from_env()
    session, synthesizer, mqtt = build_session(config)
    mqtt.connect()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    await synthesizer.refresh_voices()
    session.start(loop)
    if args.listen:
        session.controller.start_listening()
    LOGGER.info("Depot voice ready with %d commands", len(session.commands))
    for category, commands in group_by_category(session.commands).items():
        LOGGER.debug("[%s] %s", category, ", ".join(command.name for command in commands))

    await stop_event.wait()
    session.shutdown()
    # Let cancelled engine tasks reap their audio processes.
    await asyncio.sleep(0.5)
    mqtt.disconnect()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
