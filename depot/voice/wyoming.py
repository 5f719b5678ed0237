"""Shared helpers for talking to Wyoming STT/TTS services."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.info import Describe, Info
from wyoming.tts import Synthesize, SynthesizeVoice

from depot.utils import await_with_timeout, chunk_bytes

from .audio import AplaySink
from .config import MicConfig, WyomingEndpoint
from .speech import Voice

LoggerLike = logging.Logger | None


async def transcribe_audio(
    audio_bytes: bytes,
    *,
    endpoint: WyomingEndpoint,
    mic: MicConfig,
    language: str | None = None,
    timeout: float | None = None,
    logger: LoggerLike = None,
) -> str | None:
    """Send PCM audio to a Wyoming STT endpoint and return the transcript text."""

    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    try:
        await await_with_timeout(
            client.write_event(Transcribe(name=endpoint.model, language=language).event()),
            timeout,
        )
        await await_with_timeout(
            client.write_event(AudioStart(rate=mic.rate, width=mic.width, channels=mic.channels).event()),
            timeout,
        )
        for chunk in chunk_bytes(audio_bytes, mic.bytes_per_chunk):
            await await_with_timeout(
                client.write_event(
                    AudioChunk(rate=mic.rate, width=mic.width, channels=mic.channels, audio=chunk).event()
                ),
                timeout,
            )
        await await_with_timeout(client.write_event(AudioStop().event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                if logger:
                    logger.debug("Wyoming STT connection closed before transcript returned")
                return None
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text
    finally:
        await client.disconnect()


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: AplaySink,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> None:
    """Synthesize speech via Wyoming TTS and stream it directly to the provided sink."""

    started = False
    try:
        async for event in _tts_event_stream(text, endpoint=endpoint, voice_name=voice_name, timeout=timeout):
            if AudioStart.is_type(event.type):
                audio_start = AudioStart.from_event(event)
                await sink.start(audio_start.rate, audio_start.width, audio_start.channels)
                started = True
            elif AudioChunk.is_type(event.type):
                await sink.write(AudioChunk.from_event(event).audio)
            elif AudioStop.is_type(event.type):
                break
    finally:
        if started:
            await sink.stop()


async def list_voices(*, endpoint: WyomingEndpoint, timeout: float | None = None) -> list[Voice]:
    """Ask a Wyoming TTS service to describe itself and flatten its installed voices."""

    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    try:
        await await_with_timeout(client.write_event(Describe().event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                return []
            if Info.is_type(event.type):
                info = Info.from_event(event)
                break
    finally:
        await client.disconnect()

    voices: list[Voice] = []
    for program in info.tts or []:
        for tts_voice in program.voices or []:
            if not tts_voice.installed:
                continue
            languages = tts_voice.languages or [""]
            voices.append(
                Voice(
                    name=tts_voice.name,
                    language=languages[0],
                    default=False,
                    description=tts_voice.description,
                )
            )
    return voices


async def _tts_event_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> AsyncIterator[object]:
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    voice = SynthesizeVoice(name=voice_name) if voice_name else None
    await await_with_timeout(client.write_event(Synthesize(text=text, voice=voice).event()), timeout)
    try:
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                break
            yield event
            if AudioStop.is_type(event.type):
                break
    finally:
        await client.disconnect()
