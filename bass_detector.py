"""
muscly808 - Bass Detector
Classifies the low end of each spectrum frame into bass hits ("peak") and
deep sub-bass hits ("sub_peak") once per display refresh.

Band measures per frame (bins of a 256-point transform):
  sub_bass  mean of bins 0-5
  pure_sub  bins 0-5 weighted towards the deepest bin
  rest      mean of bins 10-50, the broadband baseline

A peak is a transient (sharp rise) or a sustain (loud, slowly decaying held
note) while the sub band dominates the baseline and the 20 ms cooldown has
expired. sub_peak is a narrower test on pure_sub that shares the cooldown gate
but never restarts it.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Deque, Optional, Tuple

import numpy as np

from audio_element import AudioElement
from config import AnalyserConfig, DetectorConfig, clamp_threshold
from errors import SuspendedContextError
from logging_utils import log_event
from session_registry import DEFAULT_REGISTRY, AnalysisSession, SessionRegistry, create_session
from tick_scheduler import TickScheduler


@dataclass
class BassEvent:
    """One classified frame, delivered to the connect() callback"""
    energy: float             # Mean sub-bass magnitude (0-255)
    peak: bool                # Bass hit
    normalized: float         # energy / 255, clipped to 0.0-1.0
    frequency_data: np.ndarray = field(repr=False)  # Copy of the full byte frame
    sub_peak: bool = False    # Deep sub-bass hit
    sub_normalized: float = 0.0  # Weighted sub energy / 100, clipped to 0.0-1.0

    @classmethod
    def silent(cls) -> "BassEvent":
        return cls(energy=0.0, peak=False, normalized=0.0,
                   frequency_data=np.zeros(0, dtype=np.uint8),
                   sub_peak=False, sub_normalized=0.0)


@dataclass(frozen=True)
class BandEnergies:
    sub_bass: float
    pure_sub: float
    rest: float


class DetectorState(IntEnum):
    DISCONNECTED = 0
    WARMUP = 1
    ACTIVE = 2


BassCallback = Callable[[BassEvent], None]


# ----------------------------------------------------------------------
# Classification (pure functions)
# ----------------------------------------------------------------------

def _band_mean(frame: np.ndarray, start: int, end: int) -> float:
    """Mean of bins start..end inclusive; bins missing from a short frame count as 0."""
    width = end - start + 1
    band = frame[start:end + 1]
    if width <= 0 or len(band) == 0:
        return 0.0
    return float(np.sum(band, dtype=np.float64)) / width


def measure_bands(frame: np.ndarray, cfg: Optional[DetectorConfig] = None) -> BandEnergies:
    cfg = cfg or DetectorConfig()
    frame = np.asarray(frame)

    sub = frame[cfg.sub_bass_start:cfg.sub_bass_end + 1].astype(np.float64)
    weights = np.asarray(cfg.sub_weights[:len(sub)], dtype=np.float64)
    pure_sub = float(np.dot(sub, weights)) if len(sub) else 0.0

    return BandEnergies(
        sub_bass=_band_mean(frame, cfg.sub_bass_start, cfg.sub_bass_end),
        pure_sub=pure_sub,
        rest=_band_mean(frame, cfg.rest_start, cfg.rest_end),
    )


def is_transient(current: float, prev: float, delta: float = 2.0) -> bool:
    return (current - prev) > delta


def is_sustain(current: float, prev: float, floor: float = 25.0, decay: float = 0.8) -> bool:
    return current > floor and current > prev * decay


def is_sub_dominant(sub_energy: float, rest_energy: float, ratio: float = 0.5) -> bool:
    return sub_energy > (rest_energy + 1.0) * ratio


def classify_bands(bands: BandEnergies, prev_energy: float, can_peak: bool,
                   cfg: Optional[DetectorConfig] = None) -> Tuple[bool, bool]:
    """Return (peak, sub_peak) for one post-warmup frame."""
    cfg = cfg or DetectorConfig()
    energy = bands.sub_bass

    hit = is_transient(energy, prev_energy, cfg.transient_delta)
    held = is_sustain(energy, prev_energy, cfg.sustain_floor, cfg.sustain_decay)
    dominant = is_sub_dominant(energy, bands.rest, cfg.dominance_ratio)
    peak = (hit or held) and can_peak and dominant

    sub_ratio = bands.pure_sub / (bands.rest + 1.0)
    sub_peak = bands.pure_sub > cfg.sub_floor and sub_ratio > cfg.sub_ratio and can_peak
    return peak, sub_peak


def _unit(value: float, scale: float) -> float:
    return max(0.0, min(value / scale, 1.0))


def _now_ms() -> float:
    return time.perf_counter() * 1000.0


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------

class BassDetector:
    """
    Binds to one AudioElement at a time and emits a BassEvent per tick.

    The application owns a detector and passes it to whatever needs it;
    connecting again supersedes the previous attachment.
    """

    def __init__(
        self,
        scheduler: TickScheduler,
        config: Optional[DetectorConfig] = None,
        analyser_config: Optional[AnalyserConfig] = None,
        registry: Optional[SessionRegistry] = None,
        clock: Callable[[], float] = _now_ms,
    ):
        self.config = config or DetectorConfig()
        self.analyser_config = analyser_config or AnalyserConfig()
        self.scheduler = scheduler
        self.registry = registry if registry is not None else DEFAULT_REGISTRY
        self._clock = clock  # milliseconds

        self._threshold: float = clamp_threshold(self.config.threshold, self.config)

        # Attachment state
        self._session: Optional[AnalysisSession] = None
        self._callback: Optional[BassCallback] = None
        self._frame: Optional[np.ndarray] = None
        self._history: Deque[float] = deque(maxlen=self.config.history_size)
        self._frame_count: int = 0
        self._last_peak_time: float = 0.0
        self._tick_handle: Optional[int] = None
        # Bumped on every connect/disconnect; ticks from older attachments are dropped
        self._generation: int = 0

        self._reset_attachment_stats()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> DetectorState:
        if self._callback is None or self._session is None:
            return DetectorState.DISCONNECTED
        if self._frame_count > self.config.warmup_frames:
            return DetectorState.ACTIVE
        return DetectorState.WARMUP

    @property
    def is_connected(self) -> bool:
        return self.state is not DetectorState.DISCONNECTED

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def last_peak_time(self) -> float:
        return self._last_peak_time

    @property
    def history(self) -> Tuple[float, ...]:
        return tuple(self._history)

    @property
    def session(self) -> Optional[AnalysisSession]:
        return self._session

    def connect(self, element: AudioElement, callback: BassCallback) -> None:
        """Start emitting events for *element*. Raises UnavailableSourceError
        if no analysis graph can be bound to it."""
        self._detach()

        session = self.registry.resolve(
            element, lambda el: create_session(el, self.analyser_config))

        self._session = session
        self._callback = callback
        self._frame = np.zeros(session.analyser.frequency_bin_count, dtype=np.uint8)
        self._history.clear()
        self._frame_count = 0
        self._last_peak_time = 0.0
        self._reset_attachment_stats()

        self._resume_context(session)
        log_event("INFO", "808", "Bass detector connected",
                  source=getattr(getattr(element, 'src', None), 'name', None),
                  threshold=f"{self._threshold:.2f}")
        self._schedule_next()

    def disconnect(self) -> None:
        """Stop emitting; no callback runs after this returns."""
        was_connected = self._session is not None
        self._detach()
        if was_connected:
            log_event("INFO", "808", "Bass detector disconnected")

    def set_threshold(self, value: float) -> None:
        self._threshold = clamp_threshold(value, self.config)
        log_event("DEBUG", "808", "Threshold set", threshold=f"{self._threshold:.2f}")

    def resume(self) -> bool:
        """Best-effort recovery of a suspended analysis context. Safe to call
        any time; returns True only if the context was actually resumed."""
        session = self._session
        if session is None:
            return False
        return self._resume_context(session)

    # ------------------------------------------------------------------
    # Lifecycle internals
    # ------------------------------------------------------------------
    def _detach(self) -> None:
        self._generation += 1
        if self._tick_handle is not None:
            self.scheduler.cancel_tick(self._tick_handle)
            self._tick_handle = None

        if self._session is not None:
            self._log_attachment_summary()

        self._callback = None
        self._session = None
        self._frame = None
        self._history.clear()
        self._frame_count = 0

    def _resume_context(self, session: AnalysisSession) -> bool:
        try:
            resumed = session.context.resume()
        except SuspendedContextError as e:
            log_event("WARNING", "808", "Analysis context cannot resume", error=e)
            return False
        if resumed:
            log_event("INFO", "808", "Analysis context resumed")
        return resumed

    def _schedule_next(self) -> None:
        generation = self._generation
        self._tick_handle = self.scheduler.request_tick(lambda: self._tick(generation))

    def _tick(self, generation: int) -> None:
        if generation != self._generation or self._callback is None:
            return
        self._tick_handle = None

        event = self._process_frame()
        if event is not None:
            self._callback(event)

        # The callback may have disconnected or reconnected
        if generation == self._generation:
            self._schedule_next()

    def _process_frame(self) -> Optional[BassEvent]:
        cfg = self.config
        frame = self._frame
        if self._session is None or frame is None or not self._session.read_frame(frame):
            return None

        self._frame_count += 1
        bands = measure_bands(frame, cfg)
        self._history.append(bands.sub_bass)

        peak = False
        sub_peak = False
        if self._frame_count > cfg.warmup_frames:
            prev_energy = self._history[-2] if len(self._history) > 1 else 0.0
            now = self._clock()
            can_peak = now - self._last_peak_time > cfg.peak_cooldown_ms
            peak, sub_peak = classify_bands(bands, prev_energy, can_peak, cfg)
            if peak:
                self._last_peak_time = now

        self._update_attachment_stats(bands.sub_bass, peak, sub_peak)

        return BassEvent(
            energy=bands.sub_bass,
            peak=peak,
            normalized=_unit(bands.sub_bass, cfg.energy_scale),
            frequency_data=frame.copy(),
            sub_peak=sub_peak,
            sub_normalized=_unit(bands.pure_sub, cfg.sub_scale),
        )

    # ------------------------------------------------------------------
    # Attachment statistics
    # ------------------------------------------------------------------
    def _reset_attachment_stats(self) -> None:
        self._stats_started_at = time.time()
        self._stats_frames = 0
        self._stats_peaks = 0
        self._stats_sub_peaks = 0
        self._stats_energy_min: float | None = None
        self._stats_energy_max: float | None = None
        self._stats_energy_sum = 0.0

    def _update_attachment_stats(self, energy: float, peak: bool, sub_peak: bool) -> None:
        self._stats_frames += 1
        self._stats_peaks += int(peak)
        self._stats_sub_peaks += int(sub_peak)
        self._stats_energy_sum += energy
        if self._stats_energy_min is None or energy < self._stats_energy_min:
            self._stats_energy_min = energy
        if self._stats_energy_max is None or energy > self._stats_energy_max:
            self._stats_energy_max = energy

    def _log_attachment_summary(self) -> None:
        if self._stats_frames <= 0:
            return

        elapsed_s = max(0.0, time.time() - self._stats_started_at)
        energy_min = float(self._stats_energy_min or 0.0)
        energy_max = float(self._stats_energy_max or 0.0)
        energy_mean = self._stats_energy_sum / self._stats_frames

        log_event(
            "INFO",
            "808",
            "Attachment summary",
            frames=self._stats_frames,
            seconds=f"{elapsed_s:.1f}",
            peaks=self._stats_peaks,
            sub_peaks=self._stats_sub_peaks,
            energy_min=f"{energy_min:.2f}",
            energy_max=f"{energy_max:.2f}",
            energy_mean=f"{energy_mean:.2f}",
        )
