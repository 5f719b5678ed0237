"""Tests for the serialized speech output queue (depot/voice/speech.py)."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
from depot.voice.speech import SETTLE_DELAY_SECONDS, SpeechOutputQueue, Voice, select_voice


@pytest.fixture
def queue(synthesis_engine, speech_config, scheduler, mock_logger):
    return SpeechOutputQueue(synthesis_engine, speech_config, call_later=scheduler, logger=mock_logger)


# ============================================================================
# select_voice
# ============================================================================


class TestSelectVoice:
    @pytest.fixture
    def voices(self):
        return [
            Voice("Alex", "en-US"),
            Voice("Karen", "en-AU"),
            Voice("Samantha", "en-US"),
            Voice("Thomas", "fr-FR", default=True),
        ]

    def test_preferred_names_in_order(self, voices):
        assert select_voice(voices, language_prefix="en").name == "Samantha"

    def test_requested_substring_wins(self, voices):
        assert select_voice(voices, language_prefix="en", requested="Kar").name == "Karen"

    def test_unknown_request_falls_through(self, voices):
        assert select_voice(voices, language_prefix="en", requested="Zoe").name == "Samantha"

    def test_quality_marker(self):
        voices = [Voice("Alex", "en-US"), Voice("Ava (Enhanced)", "en-US")]
        assert select_voice(voices, language_prefix="en").name == "Ava (Enhanced)"

    def test_engine_default(self):
        voices = [Voice("Alex", "en-US"), Voice("Fred", "en-US", default=True)]
        assert select_voice(voices, language_prefix="en").name == "Fred"

    def test_default_outside_locale_ignored(self):
        voices = [Voice("Alex", "en-US"), Voice("Thomas", "fr-FR", default=True)]
        assert select_voice(voices, language_prefix="en").name == "Alex"

    def test_preferred_name_outside_locale_ignored(self):
        voices = [Voice("Amelie", "fr-CA"), Voice("Samantha", "en-US")]
        assert select_voice(voices, language_prefix="fr").name == "Amelie"

    def test_locale_prefix_is_case_insensitive(self):
        voices = [Voice("Thomas", "fr-FR"), Voice("en_US-lessac-medium", "en_US")]
        assert select_voice(voices, language_prefix="EN").name == "en_US-lessac-medium"

    def test_first_voice_as_last_resort(self):
        voices = [Voice("Thomas", "fr-FR"), Voice("Anna", "de-DE")]
        assert select_voice(voices, language_prefix="en").name == "Thomas"

    def test_no_voices(self):
        assert select_voice([], language_prefix="en") is None


# ============================================================================
# Ordering
# ============================================================================


class TestOrdering:
    def test_fifo_after_completion_and_settle(self, queue, synthesis_engine, scheduler):
        queue.speak("x")
        queue.speak("y")

        assert synthesis_engine.spoken_texts == ["x"]
        assert queue.pending == ("y",)

        synthesis_engine.start_current()
        synthesis_engine.finish_current()
        assert synthesis_engine.spoken_texts == ["x"]
        assert scheduler.pending[0][0] == SETTLE_DELAY_SECONDS

        scheduler.run_all()
        assert synthesis_engine.spoken_texts == ["x", "y"]

    def test_error_counts_as_completion(self, queue, synthesis_engine, scheduler, mock_logger):
        queue.speak("x")
        queue.speak("y")

        synthesis_engine.finish_current(error="synthesis-failed")
        scheduler.run_all()

        assert synthesis_engine.spoken_texts == ["x", "y"]
        mock_logger.warning.assert_called_once()

    def test_engine_speak_failure_releases_guard(self, queue, synthesis_engine, scheduler, mock_logger):
        synthesis_engine.speak_error = RuntimeError("no device")
        queue.speak("x")

        assert len(scheduler.pending) == 1
        mock_logger.warning.assert_called_once()

        synthesis_engine.speak_error = None
        queue.speak("y")
        assert synthesis_engine.spoken_texts == []

        scheduler.run_all()
        assert synthesis_engine.spoken_texts == ["y"]

    def test_speak_during_settle_waits_for_it(self, queue, synthesis_engine, scheduler):
        queue.speak("a")
        queue.speak("b")
        synthesis_engine.finish_current()

        queue.speak("c")
        assert synthesis_engine.spoken_texts == ["a"]
        assert queue.pending == ("b", "c")

        scheduler.run_all()
        assert synthesis_engine.spoken_texts == ["a", "b"]
        assert queue.pending == ("c",)

    def test_stale_settle_does_not_cut_later_one_short(self, queue, synthesis_engine, scheduler):
        queue.speak("a")
        synthesis_engine.finish_current()
        queue.cancel()
        queue.speak("b")
        synthesis_engine.finish_current()
        queue.speak("c")
        assert len(scheduler.pending) == 2

        _delay, stale = scheduler.pending.pop(0)
        stale()
        assert synthesis_engine.spoken_texts == ["a", "b"]

        scheduler.run_all()
        assert synthesis_engine.spoken_texts == ["a", "b", "c"]

    def test_speak_from_speaking_callback_does_not_overlap(self, queue, synthesis_engine, scheduler):
        overlaps = []
        original_speak = synthesis_engine.speak

        def _speak(utterance):
            overlaps.append(synthesis_engine.current is not None)
            original_speak(utterance)

        synthesis_engine.speak = _speak
        follow_ups = ["follow up"]

        def _on_speaking(speaking):
            if not speaking and follow_ups:
                queue.speak(follow_ups.pop())

        queue.set_speaking_callback(_on_speaking)
        queue.speak("x")
        synthesis_engine.start_current()
        synthesis_engine.finish_current()
        scheduler.run_all()

        assert synthesis_engine.spoken_texts == ["x", "follow up"]
        assert not any(overlaps)


# ============================================================================
# Immediate and cancel
# ============================================================================


class TestCancel:
    def test_immediate_preempts_current_and_pending(self, queue, synthesis_engine, scheduler):
        queue.speak("x")
        queue.speak("z")

        queue.speak("y", immediate=True)

        assert synthesis_engine.cancel_calls == 1
        assert synthesis_engine.spoken_texts == ["x", "y"]
        assert queue.pending == ()
        # The interrupted utterance's error must not release the guard.
        assert scheduler.pending == []

        synthesis_engine.finish_current()
        scheduler.run_all()
        assert synthesis_engine.spoken_texts == ["x", "y"]

    def test_cancel_mid_utterance(self, queue, synthesis_engine, scheduler):
        queue.speak("x")
        synthesis_engine.start_current()
        queue.speak("y")
        assert queue.is_speaking is True

        queue.cancel()
        scheduler.run_all()

        assert queue.is_speaking is False
        assert queue.pending == ()
        assert synthesis_engine.spoken_texts == ["x"]

    def test_speak_after_cancel_starts_right_away(self, queue, synthesis_engine):
        queue.speak("x")
        queue.cancel()

        queue.speak("y")

        assert synthesis_engine.spoken_texts == ["x", "y"]

    def test_immediate_during_settle_starts_right_away(self, queue, synthesis_engine, scheduler):
        queue.speak("x")
        queue.speak("z")
        synthesis_engine.finish_current()

        queue.speak("y", immediate=True)

        assert synthesis_engine.spoken_texts == ["x", "y"]
        assert queue.pending == ()
        scheduler.run_all()
        assert synthesis_engine.spoken_texts == ["x", "y"]

    def test_late_completion_of_cancelled_utterance_ignored(self, queue, synthesis_engine, scheduler):
        queue.speak("x")
        cancelled = synthesis_engine.current
        queue.cancel()
        queue.speak("y")
        queue.speak("z")

        cancelled.on_end()
        scheduler.run_all()

        assert synthesis_engine.spoken_texts == ["x", "y"]
        assert queue.pending == ("z",)

    def test_disable_cancels(self, queue, synthesis_engine):
        queue.speak("x")
        queue.speak("y")

        queue.set_enabled(False)
        queue.speak("z")

        assert queue.enabled is False
        assert synthesis_engine.cancel_calls == 1
        assert synthesis_engine.spoken_texts == ["x"]


# ============================================================================
# Gating and parameters
# ============================================================================


class TestSpeak:
    def test_blank_text_ignored(self, queue, synthesis_engine):
        queue.speak("   ")
        assert synthesis_engine.spoken == []

    def test_disabled_ignores_speech(self, synthesis_engine, make_speech_config, scheduler):
        queue = SpeechOutputQueue(synthesis_engine, make_speech_config(enabled=False), call_later=scheduler)

        queue.speak("hello")

        assert synthesis_engine.spoken == []

    def test_unsupported_engine(self, speech_config, mock_logger):
        queue = SpeechOutputQueue(None, speech_config, logger=mock_logger)

        queue.speak("hello")
        queue.cancel()
        queue.pause()

        assert queue.is_supported is False
        mock_logger.warning.assert_called_once()

    def test_utterance_parameters(self, queue, synthesis_engine):
        queue.speak("status report")

        utterance = synthesis_engine.spoken[0]
        assert utterance.rate == 1.1
        assert utterance.pitch == 1.0
        assert utterance.volume == 0.9

    def test_speaking_flag_follows_engine(self, queue, synthesis_engine):
        changes = []
        queue.set_speaking_callback(changes.append)

        queue.speak("x")
        assert queue.is_speaking is False
        synthesis_engine.start_current()
        synthesis_engine.finish_current()

        assert changes == [True, False]

    def test_pause_and_resume_delegate(self, queue, synthesis_engine):
        queue.pause()
        queue.resume()

        assert synthesis_engine.pause_calls == 1
        assert synthesis_engine.resume_calls == 1


# ============================================================================
# Voices
# ============================================================================


class TestVoices:
    def test_speaks_without_voices(self, queue, synthesis_engine):
        queue.speak("hello")

        assert queue.selected_voice is None
        assert synthesis_engine.spoken[0].voice is None

    def test_voice_selected_at_construction(self, make_synthesis_engine, speech_config, scheduler):
        engine = make_synthesis_engine([Voice("Alex", "en-US"), Voice("Samantha", "en-US")])

        queue = SpeechOutputQueue(engine, speech_config, call_later=scheduler)
        queue.speak("hello")

        assert queue.selected_voice.name == "Samantha"
        assert engine.spoken[0].voice.name == "Samantha"

    def test_voice_selected_once_voices_arrive(self, queue, synthesis_engine):
        synthesis_engine.announce_voices([Voice("Alex", "en-US")])
        synthesis_engine.announce_voices([Voice("Samantha", "en-US"), Voice("Alex", "en-US")])

        assert [voice.name for voice in queue.voices] == ["Samantha", "Alex"]
        assert queue.selected_voice.name == "Alex"

    def test_requested_voice(self, make_synthesis_engine, make_speech_config, scheduler):
        engine = make_synthesis_engine([Voice("Samantha", "en-US"), Voice("en_US-ryan-high", "en_US")])

        queue = SpeechOutputQueue(engine, make_speech_config(voice="ryan"), call_later=scheduler)

        assert queue.selected_voice.name == "en_US-ryan-high"

    def test_explicit_selection(self, queue):
        voice = Voice("Daniel", "en-GB")

        queue.select_voice(voice)

        assert queue.selected_voice is voice

    def test_voice_listing_failure_logged(self, make_synthesis_engine, speech_config, mock_logger):
        engine = make_synthesis_engine()
        engine.get_voices = Mock(side_effect=RuntimeError("not ready"))

        queue = SpeechOutputQueue(engine, speech_config, logger=mock_logger)

        assert queue.voices == []
        mock_logger.warning.assert_called_once()
