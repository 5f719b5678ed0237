"""Audio capture/playback helpers for the voice engines."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import os
import shutil
import signal
import sys
from array import array
from asyncio.subprocess import Process

_TYPECODES = {1: "b", 2: "h", 4: "i"}


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Compute RMS (Root Mean Square) for an audio chunk."""
    if not chunk or sample_width <= 0:
        return 0
    frames = len(chunk) // sample_width
    if frames <= 0:
        return 0
    typecode = _TYPECODES.get(sample_width)
    if not typecode:
        return 0
    samples = array(typecode)
    samples.frombytes(chunk[: frames * sample_width])
    if sample_width > 1 and sys.byteorder != "little":
        samples.byteswap()
    total = math.fsum(value * value for value in samples)
    return int(math.sqrt(total / frames))


def scale_volume(chunk: bytes, sample_width: int, volume: float) -> bytes:
    """Scale signed PCM samples by ``volume`` (0.0-1.0), clipping at full scale."""
    if volume >= 1.0 or not chunk:
        return chunk
    typecode = _TYPECODES.get(sample_width)
    if not typecode:
        return chunk
    frames = len(chunk) // sample_width
    samples = array(typecode)
    samples.frombytes(chunk[: frames * sample_width])
    if sample_width > 1 and sys.byteorder != "little":
        samples.byteswap()
    limit = (1 << (8 * sample_width - 1)) - 1
    factor = max(0.0, volume)
    scaled = array(typecode, (max(-limit - 1, min(limit, int(value * factor))) for value in samples))
    if sample_width > 1 and sys.byteorder != "little":
        scaled.byteswap()
    return scaled.tobytes() + chunk[frames * sample_width :]


class ArecordStream:
    """Capture PCM audio by shelling out to ``arecord`` (ALSA)."""

    def __init__(
        self,
        command: list[str],
        bytes_per_chunk: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self._proc: Process | None = None
        self._logger = logger or logging.getLogger(__name__)

    async def start(self) -> None:
        if self._proc:
            return
        self._logger.debug("Starting microphone capture: %s", " ".join(self.command))
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def read_chunk(self) -> bytes:
        if not self._proc or not self._proc.stdout:
            raise RuntimeError("Microphone stream is not running")
        try:
            return await self._proc.stdout.readexactly(self.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            stderr = ""
            if self._proc.stderr:
                with contextlib.suppress(Exception):
                    stderr = (await self._proc.stderr.read()).decode("utf-8", errors="ignore").strip()
            message = "Microphone stream ended unexpectedly"
            if stderr:
                message = f"{message} ({stderr})"
            raise RuntimeError(message) from exc

    async def stop(self) -> None:
        if not self._proc:
            return
        self._logger.debug("Stopping microphone capture")
        proc = self._proc
        self._proc = None
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)


class AplaySink:
    """Play PCM audio via ``aplay``/``pw-play``/``paplay`` with volume and pause control."""

    def __init__(
        self,
        binary: str | None = None,
        *,
        volume: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        env_override = os.environ.get("DEPOT_VOICE_AUDIO_PLAYER")
        if binary is None and env_override:
            binary = env_override
        self.binary = binary or "auto"
        self.volume = volume
        self._width = 2
        self._proc: Process | None = None
        self._paused = False
        self._logger = logger or logging.getLogger(__name__)

    @property
    def paused(self) -> bool:
        return self._paused

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        player = _determine_player(self.binary, self._logger)
        try:
            cmd = _build_command_for_player(player, rate, width, channels)
        except ValueError as exc:
            self._logger.warning("Player %s cannot handle width=%s (%s); falling back to aplay", player, width, exc)
            cmd = _build_aplay_command(rate, width, channels)
        self._width = width
        self._logger.debug("Starting playback: %s", " ".join(cmd))
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        if not self._proc or not self._proc.stdin:
            raise RuntimeError("Playback is not active")
        try:
            self._proc.stdin.write(scale_volume(chunk, self._width, self.volume))
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.stop()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    def pause(self) -> None:
        if self._proc and not self._paused:
            with contextlib.suppress(ProcessLookupError):
                self._proc.send_signal(signal.SIGSTOP)
            self._paused = True

    def resume(self) -> None:
        if self._proc and self._paused:
            with contextlib.suppress(ProcessLookupError):
                self._proc.send_signal(signal.SIGCONT)
        self._paused = False

    async def stop(self) -> None:
        if not self._proc:
            return
        self._logger.debug("Stopping playback")
        self.resume()
        proc = self._proc
        self._proc = None
        if proc.stdin:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)

    def kill(self) -> None:
        """Kill playback immediately, dropping buffered audio; a later ``stop`` reaps it."""
        if not self._proc:
            return
        self.resume()
        with contextlib.suppress(ProcessLookupError):
            self._proc.kill()


def _alsa_format(width: int) -> str:
    return {
        1: "U8",
        2: "S16_LE",
        3: "S24_LE",
        4: "S32_LE",
    }.get(width, "S16_LE")


def _pw_format(width: int) -> str | None:
    return {
        1: "s8",
        2: "s16",
        4: "s32",
    }.get(width)


def _paplay_format(width: int) -> str:
    return {
        1: "s8",
        2: "s16le",
        3: "s24le",
        4: "s32le",
    }.get(width, "s16le")


def _supported_player(binary: str) -> bool:
    if os.path.isabs(binary):
        return os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


def _build_pw_play_command(rate: int, width: int, channels: int) -> list[str]:
    fmt = _pw_format(width)
    if not fmt:
        raise ValueError(f"pw-play has no format for width={width}")
    return ["pw-play", "--raw", "--rate", str(rate), "--channels", str(channels), "--format", fmt, "-"]


def _build_paplay_command(rate: int, width: int, channels: int) -> list[str]:
    fmt = _paplay_format(width)
    return ["paplay", "--raw", "--rate", str(rate), "--channels", str(channels), f"--format={fmt}", "-"]


def _build_aplay_command(rate: int, width: int, channels: int) -> list[str]:
    fmt = _alsa_format(width)
    return ["aplay", "-q", "-t", "raw", "-f", fmt, "-c", str(channels), "-r", str(rate), "-"]


def _build_command_for_player(player: str, rate: int, width: int, channels: int) -> list[str]:
    if player == "pw-play":
        return _build_pw_play_command(rate, width, channels)
    if player == "paplay":
        return _build_paplay_command(rate, width, channels)
    return _build_aplay_command(rate, width, channels)


def _determine_player(preferred: str, logger: logging.Logger) -> str:
    if preferred != "auto":
        if _supported_player(preferred):
            return preferred
        logger.warning("Requested audio player '%s' not found; falling back to auto-detection", preferred)
    for candidate in ("pw-play", "paplay", "aplay"):
        if _supported_player(candidate):
            return candidate
    return "aplay"
