"""Wyoming-backed recognition and synthesis engines.

Both engines deliver their callbacks on the asyncio loop that started them, so
the controller and queue never see concurrent events. Each engine class holds a
liveness owner for its device (one microphone, one speaker): a second instance
cannot open the device while another one is live.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import ClassVar

from .audio import AplaySink, ArecordStream, compute_rms
from .config import MicConfig, PhraseConfig, WyomingEndpoint
from .recognition import RecognitionResultBatch, RecognitionSegment
from .speech import Utterance, Voice
from .wyoming import list_voices, play_tts_stream, transcribe_audio

LOGGER = logging.getLogger("depot-voice.engines")

StreamFactory = Callable[..., ArecordStream]
SinkFactory = Callable[..., AplaySink]


def _emit(logger: logging.Logger, callback: Callable[..., object] | None, *args: object) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception as exc:
        logger.error("[engine] Engine callback failed: %s", exc, exc_info=True)


class WyomingRecognitionEngine:
    """Phrase-at-a-time recognition over a Wyoming ASR service.

    Each session captures microphone audio until ``session_seconds`` of audio
    have been read, then ends; the controller re-opens it. Quiet stretches of
    ``no_speech_seconds`` are reported as ``no-speech``.
    """

    _live: ClassVar[WyomingRecognitionEngine | None] = None

    def __init__(
        self,
        *,
        endpoint: WyomingEndpoint,
        mic: MicConfig,
        phrase: PhraseConfig,
        language: str | None,
        session_seconds: float,
        no_speech_seconds: float,
        timeout: float | None = None,
        stream_factory: StreamFactory = ArecordStream,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.mic = mic
        self.phrase = phrase
        self.language = language
        self.session_seconds = session_seconds
        self.no_speech_seconds = no_speech_seconds
        self.timeout = timeout
        self._stream_factory = stream_factory
        self._logger = logger or LOGGER
        self._task: asyncio.Task[None] | None = None
        self._running = False

        self.on_start: Callable[[], None] | None = None
        self.on_end: Callable[[], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self.on_result: Callable[[RecognitionResultBatch], None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            raise RuntimeError("Recognition has already started")
        owner = WyomingRecognitionEngine._live
        if owner is not None and owner is not self:
            raise RuntimeError("Microphone is owned by another recognition engine")
        loop = asyncio.get_running_loop()
        WyomingRecognitionEngine._live = self
        self._running = True
        self._task = loop.create_task(self._run())
        self._task.add_done_callback(self._handle_task_done)

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()

    def _handle_task_done(self, task: asyncio.Task[None]) -> None:
        # A task cancelled before its first step never enters _run.
        if task is not self._task or not self._running:
            return
        self._release()
        _emit(self._logger, self.on_error, "aborted")
        _emit(self._logger, self.on_end)

    def _release(self) -> None:
        self._running = False
        if WyomingRecognitionEngine._live is self:
            WyomingRecognitionEngine._live = None

    async def _run(self) -> None:
        mic = self._stream_factory(self.mic.command, self.mic.bytes_per_chunk, logger=self._logger)
        try:
            try:
                await mic.start()
            except OSError as exc:
                raise RuntimeError(f"Unable to open microphone: {exc}") from exc
            _emit(self._logger, self.on_start)
            await self._listen(mic)
        except asyncio.CancelledError:
            _emit(self._logger, self.on_error, "aborted")
            raise
        except RuntimeError as exc:
            self._logger.warning("[engine] Microphone failure: %s", exc)
            _emit(self._logger, self.on_error, "audio-capture")
        except OSError as exc:
            self._logger.warning("[engine] Wyoming STT unavailable at %s:%s: %s", self.endpoint.host, self.endpoint.port, exc)
            _emit(self._logger, self.on_error, "network")
        except Exception as exc:
            self._logger.error("[engine] Recognition failed: %s", exc, exc_info=True)
            _emit(self._logger, self.on_error, "recognition-failed")
        finally:
            await mic.stop()
            self._release()
            _emit(self._logger, self.on_end)

    async def _listen(self, mic: ArecordStream) -> None:
        min_bytes = (round(self.phrase.min_seconds * 1000) // self.mic.chunk_ms) * self.mic.bytes_per_chunk
        remaining_ms = round(self.session_seconds * 1000)
        while remaining_ms > 0:
            audio, consumed_ms = await self._capture_phrase(mic, remaining_ms)
            remaining_ms -= consumed_ms
            if audio is None:
                _emit(self._logger, self.on_error, "no-speech")
                continue
            if not audio or len(audio) < min_bytes:
                continue
            text = await transcribe_audio(
                audio,
                endpoint=self.endpoint,
                mic=self.mic,
                language=self.language,
                timeout=self.timeout,
                logger=self._logger,
            )
            if text and text.strip():
                batch = RecognitionResultBatch(segments=(RecognitionSegment(transcript=text, is_final=True),))
                _emit(self._logger, self.on_result, batch)

    async def _capture_phrase(self, mic: ArecordStream, budget_ms: int) -> tuple[bytes | None, int]:
        """Read one phrase; returns (audio or None when nothing was said, milliseconds of audio read).

        Time is measured in captured audio, so the result does not depend on
        how quickly chunks arrive.
        """
        chunk_ms = self.mic.chunk_ms
        no_speech_ms = round(self.no_speech_seconds * 1000)
        elapsed_ms = 0
        waited_ms = 0
        chunk = b""
        while True:
            if elapsed_ms >= budget_ms:
                return (None if waited_ms >= no_speech_ms else b""), elapsed_ms
            if waited_ms >= no_speech_ms:
                return None, elapsed_ms
            chunk = await mic.read_chunk()
            elapsed_ms += chunk_ms
            waited_ms += chunk_ms
            if compute_rms(chunk, self.mic.width) >= self.phrase.rms_floor:
                break

        frames = [chunk]
        phrase_ms = chunk_ms
        silence_ms = 0
        min_ms = round(self.phrase.min_seconds * 1000)
        max_ms = round(self.phrase.max_seconds * 1000)
        while phrase_ms < max_ms:
            chunk = await mic.read_chunk()
            frames.append(chunk)
            elapsed_ms += chunk_ms
            phrase_ms += chunk_ms
            if compute_rms(chunk, self.mic.width) >= self.phrase.rms_floor:
                silence_ms = 0
            else:
                silence_ms += chunk_ms
            if silence_ms >= self.phrase.silence_ms and phrase_ms >= min_ms:
                break
        return b"".join(frames), elapsed_ms


class WyomingSynthesisEngine:
    """Speech output over a Wyoming TTS service played through ``AplaySink``.

    Wyoming exposes no rate or pitch control; utterance volume is applied to
    the PCM stream before playback.
    """

    _live: ClassVar[WyomingSynthesisEngine | None] = None

    def __init__(
        self,
        *,
        endpoint: WyomingEndpoint,
        timeout: float | None = None,
        sink_factory: SinkFactory = AplaySink,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._sink_factory = sink_factory
        self._logger = logger or LOGGER
        self._voices: list[Voice] = []
        self._task: asyncio.Task[None] | None = None
        self._sink: AplaySink | None = None
        self.on_voices_changed: Callable[[], None] | None = None

    def get_voices(self) -> list[Voice]:
        return list(self._voices)

    async def refresh_voices(self) -> list[Voice]:
        try:
            voices = await list_voices(endpoint=self.endpoint, timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            self._logger.warning(
                "[engine] Unable to list voices from %s:%s: %s", self.endpoint.host, self.endpoint.port, exc
            )
            return self.get_voices()
        self._voices = voices
        _emit(self._logger, self.on_voices_changed)
        return self.get_voices()

    def speak(self, utterance: Utterance) -> None:
        owner = WyomingSynthesisEngine._live
        if owner is not None and owner is not self:
            raise RuntimeError("Speaker is owned by another synthesis engine")
        WyomingSynthesisEngine._live = self
        previous = self._task
        self._task = asyncio.get_running_loop().create_task(self._play(utterance, previous))

    def cancel(self) -> None:
        if self._sink:
            self._sink.kill()
        if self._task and not self._task.done():
            self._task.cancel()

    def pause(self) -> None:
        if self._sink:
            self._sink.pause()

    def resume(self) -> None:
        if self._sink:
            self._sink.resume()

    async def _play(self, utterance: Utterance, previous: asyncio.Task[None] | None) -> None:
        if previous is not None and not previous.done():
            # A cancelled predecessor still owns the sink until it has reaped its player.
            await asyncio.wait({previous})
        sink = self._sink_factory(volume=utterance.volume, logger=self._logger)
        self._sink = sink
        _emit(self._logger, utterance.on_start)
        try:
            await play_tts_stream(
                utterance.text,
                endpoint=self.endpoint,
                sink=sink,
                voice_name=utterance.voice.name if utterance.voice else None,
                timeout=self.timeout,
            )
        except asyncio.CancelledError:
            _emit(self._logger, utterance.on_error, "interrupted")
            raise
        except Exception as exc:
            sink.kill()
            _emit(self._logger, utterance.on_error, str(exc) or exc.__class__.__name__)
        else:
            _emit(self._logger, utterance.on_end)
        finally:
            if self._sink is sink:
                self._sink = None
            if self._task is asyncio.current_task() and WyomingSynthesisEngine._live is self:
                WyomingSynthesisEngine._live = None
