"""
muscly808 - Spectrum Analyser
Turns the samples rendered by a playing track into the 8-bit magnitude frame
the bass detector reads once per tick.

The readout matches a browser AnalyserNode: periodic Blackman window, FFT,
magnitude / fft_size, exponential smoothing over successive reads, then the
[min_decibels, max_decibels] range mapped linearly onto 0..255.
"""

import threading
from enum import Enum
from typing import Optional

import numpy as np
from scipy.signal import get_window

from config import AnalyserConfig
from errors import SuspendedContextError


class ContextState(Enum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    CLOSED = "closed"


class AnalysisContext:
    """Processing state of an analysis graph.

    A context starts SUSPENDED (nothing reaches the analyser until someone
    resumes it). The host may suspend it again at any time, e.g. when the
    output device goes away.
    """

    def __init__(self, state: ContextState = ContextState.SUSPENDED):
        self._state = state
        self._lock = threading.Lock()

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ContextState.RUNNING

    def resume(self) -> bool:
        """Move to RUNNING. Returns True if the state changed."""
        with self._lock:
            if self._state is ContextState.CLOSED:
                raise SuspendedContextError("analysis context is closed")
            if self._state is ContextState.RUNNING:
                return False
            self._state = ContextState.RUNNING
            return True

    def suspend(self) -> bool:
        with self._lock:
            if self._state is not ContextState.RUNNING:
                return False
            self._state = ContextState.SUSPENDED
            return True

    def close(self) -> None:
        with self._lock:
            self._state = ContextState.CLOSED


class SpectrumAnalyser:
    """Rolling-window FFT producing byte magnitudes per frequency bin.

    push() is called from the audio output thread; the read methods are called
    from the tick thread.
    """

    def __init__(self, config: Optional[AnalyserConfig] = None):
        cfg = config or AnalyserConfig()
        self.fft_size = int(cfg.fft_size)
        self.frequency_bin_count = self.fft_size // 2
        self.smoothing_time_constant = float(cfg.smoothing_time_constant)
        self.min_decibels = float(cfg.min_decibels)
        self.max_decibels = float(cfg.max_decibels)

        # get_window() is periodic by default, matching the analyser's window
        self._window = get_window('blackman', self.fft_size).astype(np.float32)
        self._time_data = np.zeros(self.fft_size, dtype=np.float32)
        self._smoothed = np.zeros(self.frequency_bin_count, dtype=np.float64)
        self._has_data = False
        self._lock = threading.Lock()

    @property
    def has_data(self) -> bool:
        return self._has_data

    def push(self, samples: np.ndarray) -> None:
        """Append mono samples to the rolling time-domain window."""
        block = np.asarray(samples, dtype=np.float32).ravel()
        n = block.size
        if n == 0:
            return
        with self._lock:
            if n >= self.fft_size:
                self._time_data[:] = block[-self.fft_size:]
            else:
                self._time_data[:-n] = self._time_data[n:]
                self._time_data[-n:] = block
            self._has_data = True

    def reset(self) -> None:
        with self._lock:
            self._time_data.fill(0.0)
            self._smoothed.fill(0.0)
            self._has_data = False

    def silence(self) -> None:
        """Drop buffered samples and smoothing history when the source stops.
        Frames read afterwards are all zero until new samples arrive."""
        with self._lock:
            self._time_data.fill(0.0)
            self._smoothed.fill(0.0)

    def _update_smoothed(self) -> None:
        # Caller holds the lock
        windowed = self._time_data * self._window
        magnitude = np.abs(np.fft.rfft(windowed)[:self.frequency_bin_count]) / self.fft_size
        tau = self.smoothing_time_constant
        self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitude

    def get_float_frequency_data(self) -> Optional[np.ndarray]:
        """Current smoothed spectrum in dB, or None before any samples arrived."""
        with self._lock:
            if not self._has_data:
                return None
            self._update_smoothed()
            with np.errstate(divide='ignore'):
                return 20.0 * np.log10(self._smoothed)

    def get_byte_frequency_data(self, out: np.ndarray) -> bool:
        """Fill *out* (uint8) with the current frame. Returns False if no frame yet."""
        db = self.get_float_frequency_data()
        if db is None:
            return False
        span = self.max_decibels - self.min_decibels
        scaled = np.floor((255.0 / span) * (db - self.min_decibels))
        frame = np.clip(np.nan_to_num(scaled, nan=0.0, neginf=0.0), 0, 255).astype(np.uint8)
        count = min(len(out), frame.size)
        out[:count] = frame[:count]
        return True
