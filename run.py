#!/usr/bin/env python3
"""
muscly808 - 808 hit detection for track playback

Plays a track and flashes a cue on every bass hit, either in a PyQt6
window or as a console meter (--headless).
"""

import argparse
import cProfile
import sys
from pathlib import Path
from typing import Optional

from audio_element import AudioElement
from bass_detector import BassDetector, BassEvent
from config import Config
from config_persistence import load_config
from errors import BassDetectorError
from logging_utils import add_log_file, log_event, set_log_level
from tick_scheduler import PacedTickScheduler
from track_library import Track, find_track, get_tracks, resolve_media


def list_tracks(config: Config, assets_dir: Path) -> int:
    tracks = get_tracks(assets_dir, config.library)
    if not tracks:
        print(f"No tracks found in {assets_dir}")
        return 1
    for track in tracks:
        flags = " [released]" if track.released else ""
        print(f"{track.title:<28} {track.duration or '-:--':>6}{flags}")
    return 0


def resolve_source(name: str, config: Config, assets_dir: Path) -> tuple[Optional[Path], Optional[Track]]:
    """A CLI argument is either a path to an audio file or a track in the library."""
    candidate = Path(name)
    if candidate.is_file():
        return candidate, None
    track = find_track(get_tracks(assets_dir, config.library), name)
    if track is None:
        return None, None
    media = resolve_media(assets_dir, track.file_name)
    return (media[0] if media else None), track


def format_event(event: BassEvent, width: int = 40) -> str:
    filled = int(event.normalized * width)
    meter = '█' * filled + ' ' * (width - filled)
    hit = "HIT" if event.peak else "   "
    sub = "SUB" if event.sub_peak else "   "
    return f"|{meter}| {event.energy:6.1f} {hit} {sub} sub:{event.sub_normalized:.2f}"


def run_headless(config: Config, path: Path, seconds: Optional[float]) -> int:
    element = AudioElement(path, config.playback)
    scheduler = PacedTickScheduler(fps=config.tick.fps)
    detector = BassDetector(scheduler, config.detector, config.analyser)
    hits = 0

    def on_bass(event: BassEvent):
        nonlocal hits
        hits += int(event.peak)
        sys.stdout.write('\r' + format_event(event) + '   ')
        sys.stdout.flush()

    try:
        element.play()
        detector.connect(element, on_bass)
        scheduler.run_for(seconds, should_continue=lambda: not element.ended)
    except KeyboardInterrupt:
        print("\n\n  Stopping...")
    finally:
        detector.disconnect()
        element.close()

    print(f"\n  Finished. {hits} hits.")
    return 0


def run_app(config: Config, assets_dir: Path, path: Optional[Path], track: Optional[Track],
            app_argv: list[str]) -> int:
    from PyQt6.QtWidgets import QApplication

    from tick_scheduler import QtTickScheduler
    from visualizer import SpectrumWindow

    app = QApplication(app_argv)
    app.setStyle("Fusion")

    scheduler = QtTickScheduler(fps=config.tick.fps)
    detector = BassDetector(scheduler, config.detector, config.analyser)

    window = SpectrumWindow(detector, config, assets_dir)
    window.show()
    if track is not None:
        window.play_track(track)
    elif path is not None:
        window.open_path(path)
    return app.exec()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run muscly808")
    parser.add_argument("track", nargs="?", help="Track title from the library, or a path to an audio file")
    parser.add_argument("--assets-dir", default=None, help="Track directory (default: from config)")
    parser.add_argument("--list", action="store_true", help="List library tracks and exit")
    parser.add_argument("--headless", action="store_true", help="Console meter instead of the window")
    parser.add_argument("--seconds", type=float, default=None, help="Stop after this many seconds (headless)")
    parser.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    parser.add_argument("--log-file", default=None, help="Also write log records to this file")
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    config = load_config()
    set_log_level(args.log_level or config.log_level)
    if args.log_file:
        add_log_file(args.log_file)
    assets_dir = Path(args.assets_dir or config.library.assets_dir)

    if args.list:
        sys.exit(list_tracks(config, assets_dir))
    if args.headless and not args.track:
        parser.error("--headless needs a track name or file path (see --list)")

    path, track = None, None
    if args.track:
        path, track = resolve_source(args.track, config, assets_dir)
        if path is None:
            log_event("ERROR", "App", "Track not found", track=args.track, assets_dir=assets_dir)
            sys.exit(1)

    # Keep Qt argument list clean; avoid passing our flags downstream
    app_argv = [sys.argv[0]]

    def run() -> int:
        if args.headless:
            return run_headless(config, path, args.seconds)
        return run_app(config, assets_dir, path, track, app_argv)

    try:
        if args.profile:
            profiler = cProfile.Profile()
            profiler.enable()
            exit_code = run()
            profiler.disable()
            profiler.dump_stats(args.profile_out)
        else:
            exit_code = run()
    except BassDetectorError as e:
        log_event("ERROR", "App", "Cannot analyse track", error=e)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
