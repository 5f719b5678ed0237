"""Tests for PCM helpers and player selection (depot/voice/audio.py)."""

from __future__ import annotations

from array import array
from unittest.mock import Mock, patch

import pytest
from depot.voice.audio import (
    AplaySink,
    _build_command_for_player,
    _determine_player,
    compute_rms,
    scale_volume,
)


def _pcm(values):
    return array("h", values).tobytes()


class TestComputeRms:
    def test_silence(self):
        assert compute_rms(_pcm([0] * 160), 2) == 0

    def test_constant_amplitude(self):
        assert compute_rms(_pcm([1000, -1000] * 80), 2) == 1000

    def test_empty_or_unknown_width(self):
        assert compute_rms(b"", 2) == 0
        assert compute_rms(b"\x00\x01\x02", 3) == 0


class TestScaleVolume:
    def test_full_volume_unchanged(self):
        chunk = _pcm([1000, -1000])
        assert scale_volume(chunk, 2, 1.0) is chunk

    def test_half_volume(self):
        assert scale_volume(_pcm([1000, -1000]), 2, 0.5) == _pcm([500, -500])

    def test_mute(self):
        assert scale_volume(_pcm([32767, -32768]), 2, 0.0) == _pcm([0, 0])

    def test_trailing_partial_sample_kept(self):
        chunk = _pcm([1000]) + b"\x01"
        assert scale_volume(chunk, 2, 0.5) == _pcm([500]) + b"\x01"


class TestPlayerCommands:
    def test_aplay(self):
        expected = ["aplay", "-q", "-t", "raw", "-f", "S16_LE", "-c", "1", "-r", "22050", "-"]
        assert _build_command_for_player("aplay", 22050, 2, 1) == expected

    def test_pw_play(self):
        cmd = _build_command_for_player("pw-play", 22050, 2, 1)
        assert cmd[0] == "pw-play"
        assert "s16" in cmd

    def test_pw_play_rejects_24_bit(self):
        with pytest.raises(ValueError):
            _build_command_for_player("pw-play", 22050, 3, 1)

    def test_auto_detection_prefers_pipewire(self):
        with patch("depot.voice.audio.shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
            assert _determine_player("auto", Mock()) == "pw-play"

    def test_missing_requested_player_falls_back(self):
        logger = Mock()
        only_aplay = {"aplay": "/usr/bin/aplay"}
        with patch("depot.voice.audio.shutil.which", side_effect=only_aplay.get):
            assert _determine_player("mpv", logger) == "aplay"
        logger.warning.assert_called_once()


class TestAplaySink:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DEPOT_VOICE_AUDIO_PLAYER", "paplay")
        assert AplaySink().binary == "paplay"

    def test_controls_without_process_are_noops(self):
        sink = AplaySink("aplay", volume=0.5)

        sink.pause()
        sink.resume()
        sink.kill()

        assert sink.paused is False
        assert sink.volume == 0.5

    def test_pause_and_resume_signal_player(self):
        sink = AplaySink("aplay")
        proc = Mock()
        sink._proc = proc

        sink.pause()
        assert sink.paused is True
        sink.resume()

        assert sink.paused is False
        assert proc.send_signal.call_count == 2

    def test_kill_resumes_before_killing(self):
        sink = AplaySink("aplay")
        proc = Mock()
        sink._proc = proc
        sink.pause()

        sink.kill()

        assert sink.paused is False
        proc.kill.assert_called_once()
