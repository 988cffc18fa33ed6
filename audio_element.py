"""
muscly808 - Audio Element
A playable track: decoded with soundfile, rendered through a sounddevice
output stream. Every rendered block is also handed, as mono, to the single
decode tap an analysis graph installs with set_tap().

Elements compare by identity so they can key the weak session registry.
"""

import threading
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from config import PlaybackConfig
from logging_utils import log_event

Tap = Callable[[np.ndarray], None]
StopHook = Callable[[], None]


class TapAlreadyAttachedError(RuntimeError):
    """An element accepts exactly one decode tap for its whole lifetime."""


class AudioElement:
    def __init__(self, path: Optional[str | Path] = None, config: Optional[PlaybackConfig] = None):
        self.config = config or PlaybackConfig()
        self.src: Optional[Path] = None
        self.sample_rate: int = 0
        self._audio: Optional[np.ndarray] = None   # (frames, channels) float32
        self._position: int = 0                    # next frame to render
        self._tap: Optional[Tap] = None
        self._on_stop: Optional[StopHook] = None
        self._stream = None
        self._lock = threading.Lock()
        self.paused = True
        self.ended = False
        if path is not None:
            self.load(path)

    # ------------------------------------------------------------------
    # Source
    # ------------------------------------------------------------------
    def load(self, path: str | Path) -> None:
        """Decode *path* fully into memory and rewind. The element stays paused."""
        audio, sr = sf.read(str(path), dtype='float32', always_2d=True)
        # Rate and channel count may differ from the previous source
        self.close()
        with self._lock:
            self.src = Path(path)
            self._audio = audio
            self.sample_rate = int(sr)
            self._position = 0
            self.ended = False
        log_event("INFO", "Player", "Loaded", file=self.src.name,
                  sample_rate=self.sample_rate, channels=audio.shape[1],
                  seconds=f"{self.duration:.1f}")

    @property
    def has_audio(self) -> bool:
        return self._audio is not None and self.sample_rate > 0

    @property
    def channels(self) -> int:
        return self._audio.shape[1] if self._audio is not None else 0

    @property
    def duration(self) -> float:
        if not self.has_audio:
            return 0.0
        return len(self._audio) / self.sample_rate

    @property
    def current_time(self) -> float:
        if not self.has_audio:
            return 0.0
        return self._position / self.sample_rate

    def seek(self, seconds: float) -> None:
        if not self.has_audio:
            return
        with self._lock:
            frame = int(max(0.0, seconds) * self.sample_rate)
            self._position = min(frame, len(self._audio))
            self.ended = self._position >= len(self._audio)

    # ------------------------------------------------------------------
    # Decode tap
    # ------------------------------------------------------------------
    @property
    def tap(self) -> Optional[Tap]:
        return self._tap

    def set_tap(self, tap: Tap, on_stop: Optional[StopHook] = None) -> None:
        """Install the decode tap. *on_stop* runs whenever output stops (pause,
        end of track, load, close) so the listener can drop stale samples."""
        if self._tap is not None:
            raise TapAlreadyAttachedError("element already feeds an analysis graph")
        self._tap = tap
        self._on_stop = on_stop

    def _notify_stopped(self) -> None:
        if self._on_stop is not None:
            self._on_stop()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render(self, frames: int) -> np.ndarray:
        """Produce the next *frames* output frames (zero-padded at the end)
        and feed their mono mix to the tap."""
        channels = max(1, self.channels)
        out = np.zeros((frames, channels), dtype=np.float32)
        with self._lock:
            if self._audio is None or self.paused or self.ended:
                return out
            start = self._position
            end = min(start + frames, len(self._audio))
            out[:end - start] = self._audio[start:end]
            self._position = end
            finished = end >= len(self._audio)
            if finished:
                self.ended = True

        out *= self.config.volume
        if self._tap is not None:
            self._tap(out.mean(axis=1))
        if finished:
            log_event("INFO", "Player", "Ended", file=self.src.name if self.src else None)
            self._notify_stopped()
        return out

    def _stream_callback(self, outdata, frames, time_info, status):
        if status:
            log_event("DEBUG", "Player", "Stream status", status=status)
        outdata[:] = self.render(frames)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def play(self) -> None:
        if not self.has_audio:
            log_event("WARNING", "Player", "Nothing loaded")
            return
        if self.ended:
            self.seek(0.0)
        if self._stream is None:
            import sounddevice as sd
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.config.block_size,
                device=self.config.device_index,
                dtype='float32',
                callback=self._stream_callback,
            )
        self.paused = False
        self._stream.start()
        log_event("INFO", "Player", "Playing", file=self.src.name if self.src else None,
                  at=f"{self.current_time:.2f}")

    def pause(self) -> None:
        self.paused = True
        if self._stream is not None:
            self._stream.stop()
        self._notify_stopped()

    def close(self) -> None:
        self.paused = True
        self._close_stream()
        self._notify_stopped()

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
