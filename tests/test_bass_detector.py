import tempfile
import unittest
import weakref
from pathlib import Path
from unittest import mock

import numpy as np
import soundfile as sf

from audio_element import AudioElement
from bass_detector import BassDetector, DetectorState
from errors import UnavailableSourceError
from session_registry import AnalysisSession, SessionRegistry
from spectrum_analyser import AnalysisContext, ContextState
from tick_scheduler import ManualTickScheduler


def make_frame(sub: float = 0, rest: float = 0, bins: int = 128) -> np.ndarray:
    frame = np.zeros(bins, dtype=np.uint8)
    frame[0:6] = sub
    frame[10:51] = rest
    return frame


class FrameFeed:
    """Stands in for the analyser: serves whatever frame the test sets."""
    frequency_bin_count = 128

    def __init__(self):
        self.frame = None

    def get_byte_frequency_data(self, out):
        if self.frame is None:
            return False
        out[:] = self.frame
        return True


class NonCancellingScheduler(ManualTickScheduler):
    """A scheduler whose cancel arrives too late: the tick has already fired."""

    def cancel_tick(self, handle):
        pass


class DetectorTestCase(unittest.TestCase):
    def setUp(self):
        self.now = 1000.0
        self.scheduler = ManualTickScheduler()
        self.registry = SessionRegistry()
        self.element = AudioElement()
        self.feed = FrameFeed()
        self.session = self._register(self.element, self.feed)
        self.detector = BassDetector(self.scheduler, registry=self.registry, clock=lambda: self.now)
        self.events = []

    def _register(self, element, feed):
        session = AnalysisSession(context=AnalysisContext(), analyser=feed,
                                  element_ref=weakref.ref(element))
        self.registry.register(element, session)
        return session

    def connect(self):
        self.detector.connect(self.element, self.events.append)

    def feed_ticks(self, frame, count=1):
        self.feed.frame = frame
        self.scheduler.run(count)


class TestBassDetectorScenarios(DetectorTestCase):
    def test_full_sub_bass_after_silence_is_a_peak(self):
        self.connect()
        self.feed_ticks(make_frame(), 8)
        self.feed_ticks(make_frame(sub=255))

        event = self.events[-1]
        self.assertEqual(len(self.events), 9)
        self.assertEqual(event.energy, 255.0)
        self.assertTrue(event.peak)
        self.assertEqual(event.normalized, 1.0)
        self.assertEqual(event.sub_normalized, 1.0)
        self.assertTrue(event.sub_peak)

    def test_loud_broadband_rejects_sustained_sub(self):
        self.connect()
        self.feed_ticks(make_frame(sub=30, rest=100), 15)

        self.assertEqual(len(self.events), 15)
        self.assertTrue(all(not e.peak for e in self.events))
        self.assertTrue(all(not e.sub_peak for e in self.events))
        self.assertTrue(all(e.energy == 30.0 for e in self.events))

    def test_disconnect_with_pending_tick_stops_callbacks(self):
        self.connect()
        self.feed_ticks(make_frame(sub=100), 3)
        self.assertEqual(self.scheduler.pending_count, 1)

        self.detector.disconnect()

        self.assertEqual(self.scheduler.pending_count, 0)
        self.feed_ticks(make_frame(sub=100), 5)
        self.assertEqual(len(self.events), 3)
        self.assertEqual(self.detector.state, DetectorState.DISCONNECTED)

    def test_disconnect_drops_already_fired_tick(self):
        scheduler = NonCancellingScheduler()
        detector = BassDetector(scheduler, registry=self.registry, clock=lambda: self.now)
        detector.connect(self.element, self.events.append)
        self.feed.frame = make_frame(sub=100)

        detector.disconnect()
        scheduler.tick()

        self.assertEqual(self.events, [])

    def test_connect_twice_reuses_session(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tone.wav"
            sf.write(str(path), np.zeros(4410, dtype=np.float32), 44100)
            element = AudioElement(path)
            registry = SessionRegistry()
            detector = BassDetector(self.scheduler, registry=registry)

            detector.connect(element, self.events.append)
            first = detector.session
            detector.disconnect()
            detector.connect(element, self.events.append)

            self.assertIs(detector.session, first)
            self.assertIs(registry.lookup(element), first)
            self.assertEqual(len(registry), 1)
            detector.disconnect()


class TestBassDetectorStateMachine(DetectorTestCase):
    def test_no_peaks_during_warmup(self):
        self.connect()
        self.assertEqual(self.detector.state, DetectorState.WARMUP)

        self.feed_ticks(make_frame(sub=255), 8)
        self.assertEqual(len(self.events), 8)
        self.assertTrue(all(not e.peak and not e.sub_peak for e in self.events))
        self.assertEqual(self.detector.state, DetectorState.WARMUP)

        # Tick 9: sustained full-scale sub energy
        self.feed_ticks(make_frame(sub=255))
        self.assertTrue(self.events[-1].peak)
        self.assertEqual(self.detector.state, DetectorState.ACTIVE)

    def test_warmup_events_are_fully_populated(self):
        self.connect()
        self.feed_ticks(make_frame(sub=60, rest=10))
        event = self.events[0]
        self.assertAlmostEqual(event.energy, 60.0)
        self.assertAlmostEqual(event.normalized, 60.0 / 255.0)
        self.assertAlmostEqual(event.sub_normalized, 0.6)
        self.assertEqual(len(event.frequency_data), 128)

    def test_no_frame_yet_is_a_silent_noop(self):
        self.connect()
        self.scheduler.run(5)

        self.assertEqual(self.events, [])
        self.assertEqual(self.detector.frame_count, 0)
        self.assertEqual(self.scheduler.pending_count, 1)

        self.feed_ticks(make_frame(sub=10))
        self.assertEqual(len(self.events), 1)
        self.assertEqual(self.detector.frame_count, 1)

    def test_reconnect_resets_counters_and_history(self):
        self.connect()
        self.feed_ticks(make_frame(sub=200), 12)
        self.assertEqual(self.detector.frame_count, 12)

        self.connect()
        self.assertEqual(self.detector.frame_count, 0)
        self.assertEqual(self.detector.history, ())
        self.assertEqual(self.detector.last_peak_time, 0.0)
        self.assertEqual(self.detector.state, DetectorState.WARMUP)

    def test_connect_supersedes_previous_attachment(self):
        other_element = AudioElement()
        other_feed = FrameFeed()
        self._register(other_element, other_feed)
        first_events, second_events = [], []

        self.detector.connect(self.element, first_events.append)
        self.feed_ticks(make_frame(sub=50), 2)
        self.detector.connect(other_element, second_events.append)
        other_feed.frame = make_frame(sub=80)
        self.scheduler.run(3)

        self.assertEqual(len(first_events), 2)
        self.assertEqual(len(second_events), 3)
        self.assertEqual(self.scheduler.pending_count, 1)
        self.assertEqual(second_events[-1].energy, 80.0)

    def test_callback_may_disconnect(self):
        def on_event(event):
            self.events.append(event)
            self.detector.disconnect()

        self.detector.connect(self.element, on_event)
        self.feed_ticks(make_frame(sub=50), 3)

        self.assertEqual(len(self.events), 1)
        self.assertEqual(self.scheduler.pending_count, 0)

    def test_history_stays_bounded(self):
        self.connect()
        rng = np.random.default_rng(7)
        for _ in range(1000):
            self.feed_ticks(rng.integers(0, 256, 128, dtype=np.uint8))
            self.assertLessEqual(len(self.detector.history), 10)
        self.assertEqual(len(self.detector.history), 10)


class TestBassDetectorClassification(DetectorTestCase):
    def warm_up(self, frame=None):
        self.connect()
        self.feed_ticks(make_frame() if frame is None else frame, 8)
        self.events.clear()

    def test_cooldown_suppresses_second_peak(self):
        self.warm_up()
        self.feed_ticks(make_frame(sub=100))
        self.assertTrue(self.events[-1].peak)

        self.now += 10.0
        self.feed_ticks(make_frame(sub=200))
        self.assertFalse(self.events[-1].peak)
        self.assertFalse(self.events[-1].sub_peak)

        self.now += 15.0
        self.feed_ticks(make_frame(sub=250))
        self.assertTrue(self.events[-1].peak)

    def test_cooldown_boundary_is_exclusive(self):
        self.warm_up()
        self.feed_ticks(make_frame(sub=100))
        self.assertTrue(self.events[-1].peak)

        self.now += 20.0
        self.feed_ticks(make_frame(sub=200))
        self.assertFalse(self.events[-1].peak)

    def test_sub_peak_does_not_restart_cooldown(self):
        self.warm_up()
        # Not dominant (30 <= 30.5) but sub ratio 30/61 > 0.4
        self.feed_ticks(make_frame(sub=30, rest=60))
        event = self.events[-1]
        self.assertFalse(event.peak)
        self.assertTrue(event.sub_peak)
        self.assertEqual(self.detector.last_peak_time, 0.0)

        self.feed_ticks(make_frame(sub=120))
        self.assertTrue(self.events[-1].peak)
        self.assertEqual(self.detector.last_peak_time, self.now)

    def test_falling_energy_is_not_a_peak(self):
        self.warm_up(make_frame(sub=200))
        self.now += 100.0
        self.feed_ticks(make_frame(sub=100))
        self.assertFalse(self.events[-1].peak)

    def test_normalized_values_stay_in_unit_range(self):
        self.connect()
        rng = np.random.default_rng(3)
        for _ in range(200):
            self.now += rng.uniform(0, 40)
            self.feed_ticks(rng.integers(0, 256, 128, dtype=np.uint8))
        for event in self.events:
            self.assertGreaterEqual(event.normalized, 0.0)
            self.assertLessEqual(event.normalized, 1.0)
            self.assertGreaterEqual(event.sub_normalized, 0.0)
            self.assertLessEqual(event.sub_normalized, 1.0)

    def test_frequency_data_is_a_snapshot(self):
        self.connect()
        self.feed_ticks(make_frame(sub=40))
        self.feed_ticks(make_frame(sub=90))

        first, second = self.events
        self.assertEqual(int(first.frequency_data[0]), 40)
        self.assertEqual(int(second.frequency_data[0]), 90)
        first.frequency_data[0] = 1
        self.assertEqual(int(second.frequency_data[0]), 90)


class TestBassDetectorControls(DetectorTestCase):
    def test_set_threshold_clamps_and_persists(self):
        self.detector.set_threshold(0.2)
        self.assertEqual(self.detector.threshold, 1.0)
        self.detector.set_threshold(9)
        self.assertEqual(self.detector.threshold, 3.0)
        self.detector.set_threshold(1.7)

        self.connect()
        self.detector.disconnect()
        self.assertEqual(self.detector.threshold, 1.7)

    def test_threshold_does_not_change_classification(self):
        self.detector.set_threshold(3.0)
        self.connect()
        self.feed_ticks(make_frame(), 8)
        self.feed_ticks(make_frame(sub=255))
        self.assertTrue(self.events[-1].peak)

    def test_connect_resumes_suspended_context(self):
        self.assertEqual(self.session.context.state, ContextState.SUSPENDED)
        self.connect()
        self.assertEqual(self.session.context.state, ContextState.RUNNING)

    def test_resume_is_idempotent(self):
        self.assertFalse(self.detector.resume())
        self.connect()
        self.session.context.suspend()

        self.assertTrue(self.detector.resume())
        self.assertFalse(self.detector.resume())
        self.assertEqual(self.session.context.state, ContextState.RUNNING)

    def test_resume_closed_context_logs_and_returns_false(self):
        self.connect()
        self.session.context.close()
        with mock.patch("bass_detector.log_event") as log_event_mock:
            self.assertFalse(self.detector.resume())
        self.assertEqual(log_event_mock.call_args[0][0], "WARNING")

    def test_unavailable_source_raises_and_stays_disconnected(self):
        detector = BassDetector(self.scheduler, registry=SessionRegistry())
        with self.assertRaises(UnavailableSourceError):
            detector.connect(AudioElement(), self.events.append)
        self.assertEqual(detector.state, DetectorState.DISCONNECTED)
        self.assertEqual(self.scheduler.pending_count, 0)

    def test_disconnect_when_idle_is_safe(self):
        self.detector.disconnect()
        self.detector.disconnect()
        self.assertFalse(self.detector.is_connected)

    def test_disconnect_leaves_session_cached(self):
        self.connect()
        self.detector.disconnect()
        self.assertIs(self.registry.lookup(self.element), self.session)


class TestStoppedPlayback(unittest.TestCase):
    """A real element and analysis graph: stopped output must read as silence."""

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self._tmpdir.name) / "808.wav"
        t = np.arange(2 * 44100) / 44100
        sf.write(str(self.path), (0.8 * np.sin(2 * np.pi * 45 * t)).astype(np.float32), 44100)

        self.now = 1000.0
        self.scheduler = ManualTickScheduler()
        self.detector = BassDetector(self.scheduler, registry=SessionRegistry(), clock=lambda: self.now)
        self.element = AudioElement(self.path)
        self.events = []
        self.detector.connect(self.element, self.events.append)

    def tearDown(self):
        self.detector.disconnect()
        self._tmpdir.cleanup()

    def play_blocks(self, count):
        self.element.paused = False
        for _ in range(count):
            self.element.render(512)
            self.now += 17.0
            self.scheduler.tick()

    def tick(self, count):
        for _ in range(count):
            self.now += 17.0
            self.scheduler.tick()

    def test_playing_tone_reaches_the_detector(self):
        self.play_blocks(20)
        self.assertEqual(len(self.events), 20)
        self.assertGreater(self.events[-1].energy, 25.0)

    def test_no_peaks_while_paused(self):
        self.play_blocks(20)
        self.element.pause()
        self.events.clear()

        self.tick(120)

        self.assertEqual(len(self.events), 120)
        self.assertEqual(sum(e.peak for e in self.events), 0)
        self.assertEqual(sum(e.sub_peak for e in self.events), 0)
        self.assertTrue(all(e.energy == 0.0 for e in self.events))

    def test_no_peaks_after_track_ends(self):
        self.element.seek(self.element.duration - 0.2)
        self.play_blocks(40)
        self.assertTrue(self.element.ended)
        self.events.clear()

        self.tick(60)

        self.assertEqual(sum(e.peak for e in self.events), 0)
        self.assertTrue(all(e.energy == 0.0 for e in self.events))


class TestAttachmentSummary(DetectorTestCase):
    def test_summary_logged_on_disconnect(self):
        self.connect()
        self.feed_ticks(make_frame(), 8)
        self.feed_ticks(make_frame(sub=100))
        self.feed_ticks(make_frame(sub=50))

        with mock.patch("bass_detector.log_event") as log_event_mock:
            self.detector.disconnect()

        summary = [c for c in log_event_mock.call_args_list if c[0][2] == "Attachment summary"]
        self.assertEqual(len(summary), 1)
        kwargs = summary[0][1]
        self.assertEqual(kwargs["frames"], 10)
        self.assertEqual(kwargs["peaks"], 1)
        self.assertEqual(kwargs["energy_min"], "0.00")
        self.assertEqual(kwargs["energy_max"], "100.00")
        self.assertEqual(kwargs["energy_mean"], "15.00")

    def test_no_summary_without_frames(self):
        self.connect()
        with mock.patch("bass_detector.log_event") as log_event_mock:
            self.detector.disconnect()
        messages = [c[0][2] for c in log_event_mock.call_args_list]
        self.assertNotIn("Attachment summary", messages)


if __name__ == "__main__":
    unittest.main()
