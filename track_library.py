"""Track listing and media lookup for the assets directory."""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import soundfile as sf

from config import LibraryConfig, TrackSort
from logging_utils import log_event

COVER_SUFFIXES = ('.png', '.jpg', '.jpeg')

CONTENT_TYPES = {
    '.wav': 'audio/wav',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
}


@dataclass(frozen=True)
class Track:
    id: str
    title: str
    file_name: str
    cover_name: Optional[str]
    duration: Optional[str]   # "m:ss"
    released: bool
    video_url: Optional[str] = None


def format_duration(seconds: float) -> str:
    """Format seconds as m:ss (truncating)."""
    total = max(0, int(seconds))
    return f"{total // 60}:{total % 60:02d}"


def read_wav_duration(path: Path) -> Optional[str]:
    """Duration of a WAV file as m:ss, or None if it cannot be read."""
    try:
        info = sf.info(str(path))
    except (RuntimeError, OSError) as e:
        log_event("WARNING", "Library", "Unreadable audio file", file=path.name, error=e)
        return None
    if not info.samplerate or info.frames <= 0:
        return None
    return format_duration(info.frames / info.samplerate)


def _find_cover(base_name: str, image_files: List[str], config: LibraryConfig) -> Optional[str]:
    for name in image_files:
        if name.startswith(base_name + '.'):
            return name
    alias = config.cover_aliases.get(base_name)
    if alias:
        for name in image_files:
            if name.startswith(alias):
                return name
    return None


def get_tracks(assets_dir: Path | str, config: Optional[LibraryConfig] = None) -> List[Track]:
    """List the .wav tracks in *assets_dir*, ordered per config."""
    config = config or LibraryConfig()
    assets_dir = Path(assets_dir)
    if not assets_dir.is_dir():
        return []

    files = sorted(p.name for p in assets_dir.iterdir() if p.is_file())
    wav_files = [f for f in files if f.lower().endswith('.wav')]
    image_files = [f for f in files if f.lower().endswith(COVER_SUFFIXES)]

    tracks = []
    for wav in wav_files:
        base_name = wav[:-len('.wav')]
        video_url = config.released.get(base_name)
        tracks.append(Track(
            id=base_name,
            title=base_name,
            file_name=wav,
            cover_name=_find_cover(base_name, image_files, config),
            duration=read_wav_duration(assets_dir / wav),
            released=video_url is not None,
            video_url=video_url,
        ))

    if config.sort == TrackSort.NAME:
        return sorted(tracks, key=lambda t: t.title.lower())
    return sorted(tracks, key=lambda t: config.track_order.get(t.id, 999))


def find_track(tracks: List[Track], name: str) -> Optional[Track]:
    """Match a track by id or file name (case-insensitive)."""
    wanted = name.strip().lower()
    for track in tracks:
        if track.id.lower() == wanted or track.file_name.lower() == wanted:
            return track
    return None


def resolve_media(assets_dir: Path | str, filename: Optional[str]) -> Optional[Tuple[Path, str]]:
    """Resolve a requested media file to (path, content_type).

    Only the basename of *filename* is used, so requests cannot leave the
    assets directory. Returns None when nothing matches.
    """
    if not filename:
        return None
    safe_name = Path(filename.replace('\\', '/')).name
    if not safe_name or safe_name in ('.', '..'):
        return None
    path = Path(assets_dir) / safe_name
    if not path.is_file():
        return None
    suffix = path.suffix.lower()
    content_type = CONTENT_TYPES.get(suffix) or mimetypes.guess_type(safe_name)[0] or 'application/octet-stream'
    return path, content_type
