from pathlib import Path
from typing import Callable, Optional

from audio_element import AudioElement
from bass_detector import BassDetector, BassEvent
from config import PlaybackConfig
from logging_utils import log_event
from track_library import Track, resolve_media


class BassDetectorBinding:
    """Keeps the latest BassEvent for a UI and forwards connect/disconnect to
    the application's detector.

    Events are stored and then passed to *listener* (if any), so a view can
    either poll ``latest`` on its own timer or react to each event.
    """

    def __init__(
        self,
        detector: BassDetector,
        *,
        enabled: bool = True,
        threshold: Optional[float] = 1.3,
        listener: Optional[Callable[[BassEvent], None]] = None,
    ):
        self.detector = detector
        self.enabled = enabled
        self.listener = listener
        self.latest: BassEvent = BassEvent.silent()
        if threshold:
            detector.set_threshold(threshold)

    def _on_event(self, event: BassEvent) -> None:
        self.latest = event
        if self.listener is not None:
            self.listener(event)

    def connect(self, element: AudioElement) -> bool:
        """Attach the detector to *element*. Returns False when disabled."""
        if not self.enabled:
            return False
        self.detector.connect(element, self._on_event)
        return True

    def disconnect(self) -> None:
        self.detector.disconnect()
        self.latest = BassEvent.silent()

    def set_threshold(self, value: float) -> None:
        self.detector.set_threshold(value)

    def close(self) -> None:
        """Release the detector when the owning view goes away."""
        self.disconnect()


class TrackPlayback:
    """One player element shared by every track the user picks.

    Switching tracks reloads the same element, so the detector reconnects to
    the analysis graph it already built for that element.
    """

    def __init__(self, binding: BassDetectorBinding, element: Optional[AudioElement] = None,
                 playback_config: Optional[PlaybackConfig] = None):
        self.binding = binding
        self.element = element if element is not None else AudioElement(config=playback_config)
        self.track: Optional[Track] = None

    @property
    def title(self) -> str:
        if self.track is not None:
            return self.track.title
        return self.element.src.stem if self.element.src else ""

    @property
    def is_playing(self) -> bool:
        return not (self.element.paused or self.element.ended)

    def open(self, path: str | Path, track: Optional[Track] = None, autoplay: bool = True) -> bool:
        """Load *path* into the element and reattach the detector.
        Returns False (and keeps the previous source) if it cannot be decoded."""
        self.binding.disconnect()
        try:
            self.element.load(path)
        except (RuntimeError, OSError) as e:
            log_event("WARNING", "Player", "Cannot open audio file", path=path, error=e)
            if self.element.has_audio:
                self.binding.connect(self.element)
            return False

        self.track = track
        self.binding.connect(self.element)
        if autoplay:
            self.element.play()
        return True

    def play_track(self, assets_dir: str | Path, track: Track) -> bool:
        media = resolve_media(assets_dir, track.file_name)
        if media is None:
            log_event("WARNING", "Player", "Track file missing", track=track.id, assets_dir=assets_dir)
            return False
        return self.open(media[0], track)

    def open_file(self, path: str | Path) -> bool:
        """A file picked by the user loads paused, waiting for play."""
        return self.open(path, None, autoplay=False)

    def toggle(self) -> bool:
        """Play or pause; returns True if now playing."""
        if self.is_playing:
            self.element.pause()
            return False
        self.element.play()
        self.binding.detector.resume()
        return self.is_playing

    def close(self) -> None:
        self.binding.close()
        self.element.close()
