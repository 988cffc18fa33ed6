"""
muscly808 - Visualizer
Spectrum bars plus a hit indicator driven by BassEvents. Ticks run on the Qt
event loop (QtTickScheduler), so events arrive in the GUI thread and widgets
are updated directly.
"""

from pathlib import Path
from typing import List, Tuple

import numpy as np
from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtWidgets import (
    QDoubleSpinBox, QFileDialog, QHBoxLayout, QLabel, QListWidget, QListWidgetItem,
    QMainWindow, QMessageBox, QPushButton, QVBoxLayout, QWidget,
)
import pyqtgraph as pg

from bass_detector import BassDetector, BassEvent
from config import Config
from detector_wiring import BassDetectorBinding, TrackPlayback
from track_library import Track, format_duration, get_tracks

pg.setConfigOptions(antialias=False, useOpenGL=False)

SUB_BASS_COLOR = (168, 85, 247)   # bins 0-5, what the detector listens to
BASS_COLOR = (59, 130, 246)       # bins 6-19, kick/bass
REST_COLOR = (156, 163, 175)      # mids/highs

HIT_ON_STYLE = "color: #FFFFFF; background: #A855F7; border-radius: 8px; padding: 6px;"
SUB_ON_STYLE = "color: #FFFFFF; background: #3B82F6; border-radius: 8px; padding: 6px;"
HIT_OFF_STYLE = "color: #555555; background: #1A1A1A; border-radius: 8px; padding: 6px;"


def bin_colors(count: int) -> List[Tuple[int, int, int]]:
    """Bar colour per frequency bin."""
    colors = []
    for i in range(count):
        if i < 6:
            colors.append(SUB_BASS_COLOR)
        elif i < 20:
            colors.append(BASS_COLOR)
        else:
            colors.append(REST_COLOR)
    return colors


class SpectrumCanvas(pg.PlotWidget):
    """Byte spectrum as coloured bars with 50%/75% guide lines and an energy meter"""

    def __init__(self, parent=None, num_bins: int = 128):
        super().__init__(parent)
        self.setBackground('#171717')
        self.setMouseEnabled(x=False, y=False)
        self.setMenuEnabled(False)
        self.hideAxis('left')
        self.hideAxis('bottom')
        self.num_bins = num_bins
        self.setXRange(-6, num_bins, padding=0)
        self.setYRange(0, 255, padding=0)

        brushes = [pg.mkBrush(*rgb) for rgb in bin_colors(num_bins)]
        self.bars = pg.BarGraphItem(
            x=np.arange(num_bins), height=np.zeros(num_bins), width=0.8,
            brushes=brushes, pen=pg.mkPen(None),
        )
        self.addItem(self.bars)

        for level in (0.5, 0.75):
            line = pg.InfiniteLine(pos=255 * level, angle=0,
                                   pen=pg.mkPen(255, 255, 255, 25, width=1))
            self.addItem(line)

        # Sub-bass energy meter left of bin 0
        self.energy_bar = pg.BarGraphItem(x=[-3.5], height=[0], width=3, brush='#A855F7')
        self.addItem(self.energy_bar)

    def set_frame(self, frame: np.ndarray) -> None:
        heights = np.zeros(self.num_bins)
        count = min(self.num_bins, len(frame))
        heights[:count] = frame[:count]
        self.bars.setOpts(height=heights)

    def set_energy(self, normalized: float) -> None:
        self.energy_bar.setOpts(height=[min(1.0, max(0.0, normalized)) * 255])


class SpectrumWindow(QMainWindow):
    def __init__(self, detector: BassDetector, config: Config, assets_dir: str | Path,
                 threshold: float = 1.3):
        super().__init__()
        self.assets_dir = Path(assets_dir)
        self.binding = BassDetectorBinding(detector, threshold=threshold, listener=self._on_bass)
        self.playback = TrackPlayback(self.binding, playback_config=config.playback)
        self.tracks: List[Track] = get_tracks(self.assets_dir, config.library)
        self.setWindowTitle("MUSCLY")

        central = QWidget()
        outer = QHBoxLayout(central)

        # Library
        side = QVBoxLayout()
        self.track_list = QListWidget()
        self.track_list.setMinimumWidth(200)
        for track in self.tracks:
            label = f"{track.title}  {track.duration or ''}"
            if track.released:
                label += "  ●"
            self.track_list.addItem(label)
        self.track_list.itemActivated.connect(self._on_track_activated)
        side.addWidget(self.track_list)

        self.open_btn = QPushButton("Open WAV…")
        self.open_btn.clicked.connect(self._on_open_file)
        side.addWidget(self.open_btn)
        outer.addLayout(side)

        # Player
        layout = QVBoxLayout()
        self.title_label = QLabel("")
        self.title_label.setStyleSheet("font-size: 18px; font-weight: bold;")
        layout.addWidget(self.title_label)

        self.canvas = SpectrumCanvas(num_bins=detector.analyser_config.fft_size // 2)
        self.canvas.setMinimumHeight(160)
        layout.addWidget(self.canvas)

        row = QHBoxLayout()
        self.hit_label = QLabel("808")
        self.hit_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.hit_label.setStyleSheet(HIT_OFF_STYLE)
        row.addWidget(self.hit_label)

        self.sub_label = QLabel("SUB")
        self.sub_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.sub_label.setStyleSheet(HIT_OFF_STYLE)
        row.addWidget(self.sub_label)

        self.play_btn = QPushButton("▶ Play")
        self.play_btn.clicked.connect(lambda: self.playback.toggle())
        row.addWidget(self.play_btn)

        self.threshold_spin = QDoubleSpinBox()
        self.threshold_spin.setRange(1.0, 3.0)
        self.threshold_spin.setSingleStep(0.05)
        self.threshold_spin.setValue(detector.threshold)
        self.threshold_spin.setPrefix("Threshold ")
        self.threshold_spin.valueChanged.connect(self.binding.set_threshold)
        row.addWidget(self.threshold_spin)

        self.time_label = QLabel("0:00 / 0:00")
        row.addWidget(self.time_label)
        layout.addLayout(row)
        outer.addLayout(layout, 1)
        self.setCentralWidget(central)

        # Flash timers: indicators drop back after a short hold
        self._hit_timer = QTimer(self)
        self._hit_timer.setSingleShot(True)
        self._hit_timer.timeout.connect(lambda: self.hit_label.setStyleSheet(HIT_OFF_STYLE))
        self._sub_timer = QTimer(self)
        self._sub_timer.setSingleShot(True)
        self._sub_timer.timeout.connect(lambda: self.sub_label.setStyleSheet(HIT_OFF_STYLE))

        # Position display (~30 FPS)
        self.update_timer = QTimer(self)
        self.update_timer.timeout.connect(self._update_display)
        self.update_timer.start(33)

    # ------------------------------------------------------------------
    # Track selection
    # ------------------------------------------------------------------
    def play_track(self, track: Track) -> None:
        if self.playback.play_track(self.assets_dir, track):
            if track in self.tracks:
                self.track_list.setCurrentRow(self.tracks.index(track))
            self._show_title()
        else:
            QMessageBox.warning(self, "Track Missing", f"Cannot find {track.file_name} in {self.assets_dir}")

    def open_path(self, path: str | Path, autoplay: bool = True) -> None:
        if self.playback.open(path, autoplay=autoplay):
            self.track_list.clearSelection()
            self._show_title()
        else:
            QMessageBox.warning(self, "Load Error", f"Failed to open audio file:\n{path}")

    def _on_track_activated(self, item: QListWidgetItem) -> None:
        row = self.track_list.row(item)
        if 0 <= row < len(self.tracks):
            self.play_track(self.tracks[row])

    def _on_open_file(self) -> None:
        file_path, _ = QFileDialog.getOpenFileName(
            self,
            "Open Audio",
            "",
            "WAV Files (*.wav);;Audio Files (*.wav *.flac *.ogg);;All Files (*)"
        )
        if file_path:
            self.open_path(file_path, autoplay=False)

    def _show_title(self) -> None:
        title = self.playback.title
        self.title_label.setText(title)
        self.setWindowTitle(f"MUSCLY - {title}" if title else "MUSCLY")

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------
    def _on_bass(self, event: BassEvent) -> None:
        self.canvas.set_frame(event.frequency_data)
        self.canvas.set_energy(event.normalized)
        if event.peak:
            self.hit_label.setStyleSheet(HIT_ON_STYLE)
            self._hit_timer.start(90)
        if event.sub_peak:
            self.sub_label.setStyleSheet(SUB_ON_STYLE)
            self._sub_timer.start(90)

    def _update_display(self) -> None:
        element = self.playback.element
        self.play_btn.setText("⏸ Pause" if self.playback.is_playing else "▶ Play")
        self.time_label.setText(
            f"{format_duration(element.current_time)} / {format_duration(element.duration)}")

    def closeEvent(self, event):
        self.update_timer.stop()
        self.playback.close()
        super().closeEvent(event)
