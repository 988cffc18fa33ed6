# muscly808 Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from typing import Dict, List
from enum import IntEnum

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1


@dataclass
class DetectorConfig:
    """Bass detection parameters (bin indices refer to a 256-point transform)"""
    warmup_frames: int = 8            # Ticks with classification suppressed after connect
    history_size: int = 10            # Sub-bass energy lookback capacity (2-10)
    peak_cooldown_ms: float = 20.0    # Minimum spacing between accepted peaks (ms)

    # Band layout (inclusive bin ranges)
    sub_bass_start: int = 0
    sub_bass_end: int = 5             # 6 deepest bins, ~0-1 kHz at 44.1 kHz
    rest_start: int = 10
    rest_end: int = 50                # Broadband baseline used to reject non-bass loudness
    sub_weights: List[float] = field(default_factory=lambda: [0.25, 0.22, 0.18, 0.15, 0.12, 0.08])

    # Primary peak classification
    dominance_ratio: float = 0.5      # Sub band must beat (rest + 1) * this
    transient_delta: float = 2.0      # Absolute frame-to-frame rise for a hit
    sustain_floor: float = 25.0       # Minimum energy for a held note
    sustain_decay: float = 0.8        # Held note may decay at most 20% per tick

    # Narrow sub-bass classification
    sub_floor: float = 20.0           # Minimum weighted sub energy
    sub_ratio: float = 0.4            # Weighted sub energy / (rest + 1)

    # Output scaling
    energy_scale: float = 255.0       # energy -> normalized
    sub_scale: float = 100.0          # weighted sub energy -> sub_normalized

    # Sensitivity knob (stored, not consumed by the fixed constants above)
    threshold: float = 1.05
    threshold_min: float = 1.0
    threshold_max: float = 3.0


@dataclass
class AnalyserConfig:
    """Frequency analysis node settings"""
    fft_size: int = 256               # 128 output bins
    smoothing_time_constant: float = 0.7
    min_decibels: float = -100.0
    max_decibels: float = -30.0


@dataclass
class PlaybackConfig:
    """Audio output settings"""
    # Device index - None means use system default
    device_index: int | None = None
    block_size: int = 512
    volume: float = 1.0


@dataclass
class TickConfig:
    """Tick driver cadence"""
    fps: int = 60


class TrackSort(IntEnum):
    CONFIGURED = 1                    # track_order first, unknown tracks last
    NAME = 2


@dataclass
class LibraryConfig:
    """Track listing settings"""
    assets_dir: str = "assets/temas"
    sort: TrackSort = TrackSort.CONFIGURED
    track_order: Dict[str, int] = field(default_factory=lambda: {
        "и1cio": 1,
        "FRƎE": 2,
        "∀DO": 3,
        "W∀X": 4,
        "∀yBrda feat.(Gonza)": 5,
        "∀SSP": 6,
    })
    # Track id -> public video URL; listed ids are flagged as released
    released: Dict[str, str] = field(default_factory=lambda: {
        "и1cio": "https://www.youtube.com/watch?v=Jwwubg3sFeY",
    })
    # Basename -> cover basename, for covers that do not share the track name
    cover_aliases: Dict[str, str] = field(default_factory=lambda: {
        "∀yBrda": "AyBrda",
    })


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    analyser: AnalyserConfig = field(default_factory=AnalyserConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    tick: TickConfig = field(default_factory=TickConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except (TypeError, ValueError):
                log_event("WARNING", "Config", "Could not convert, keeping default",
                          key=key, type=current.__class__.__name__, value=value)
            continue

        setattr(target, key, value)


def clamp_threshold(value: float, cfg: DetectorConfig | None = None) -> float:
    """Clamp a sensitivity value into the configured [min, max] range."""
    cfg = cfg or DetectorConfig()
    return max(cfg.threshold_min, min(cfg.threshold_max, float(value)))


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Restores defaults for missing/None fields and bumps version."""
    defaults = DetectorConfig()
    det = config.detector

    for name in ('warmup_frames', 'history_size', 'peak_cooldown_ms', 'threshold',
                 'sub_bass_start', 'sub_bass_end', 'rest_start', 'rest_end'):
        if getattr(det, name, None) is None:
            setattr(det, name, getattr(defaults, name))

    weights = getattr(det, 'sub_weights', None)
    if not isinstance(weights, list) or len(weights) != det.sub_bass_end - det.sub_bass_start + 1:
        det.sub_weights = list(defaults.sub_weights)

    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"

    # Always clamp safety ranges
    det.history_size = max(2, min(10, int(det.history_size)))
    det.warmup_frames = max(0, int(det.warmup_frames))
    det.threshold = clamp_threshold(det.threshold, det)

    try:
        smoothing = float(getattr(config.analyser, 'smoothing_time_constant', 0.7))
    except (TypeError, ValueError):
        smoothing = 0.7
    config.analyser.smoothing_time_constant = max(0.0, min(1.0, smoothing))

    fft_size = getattr(config.analyser, 'fft_size', 256)
    if not isinstance(fft_size, int) or fft_size < 32 or fft_size & (fft_size - 1):
        config.analyser.fft_size = 256

    try:
        fps = int(getattr(config.tick, 'fps', 60))
    except (TypeError, ValueError):
        fps = 60
    config.tick.fps = max(1, min(240, fps))

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
