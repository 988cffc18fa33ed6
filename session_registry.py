"""
muscly808 - Session Registry
Caches the analysis graph built for each audio element so reconnecting to a
track reuses it. An element accepts only one decode tap, so rebuilding the
graph is not even possible; the cache is what makes replays work.

Entries are keyed weakly by element identity and sessions only hold a weak
reference back, so dropping an element releases its session too.
"""

import weakref
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from audio_element import AudioElement, TapAlreadyAttachedError
from config import AnalyserConfig
from errors import UnavailableSourceError
from logging_utils import log_event
from spectrum_analyser import AnalysisContext, SpectrumAnalyser


@dataclass
class AnalysisSession:
    """One element's analysis graph: context + decode tap + analyser."""
    context: AnalysisContext
    analyser: SpectrumAnalyser
    element_ref: weakref.ref = field(repr=False)

    @property
    def element(self) -> Optional[AudioElement]:
        return self.element_ref()

    def read_frame(self, out: np.ndarray) -> bool:
        """Copy the current byte frame into *out*; False if none is available yet."""
        return self.analyser.get_byte_frequency_data(out)


SessionFactory = Callable[[AudioElement], AnalysisSession]


def create_session(element: AudioElement, config: Optional[AnalyserConfig] = None) -> AnalysisSession:
    """Build the graph for *element* and install its decode tap."""
    if element is None or not getattr(element, 'has_audio', False):
        raise UnavailableSourceError("audio element has no decoded source")

    context = AnalysisContext()
    analyser = SpectrumAnalyser(config)

    def tap(block: np.ndarray) -> None:
        if context.is_running:
            analyser.push(block)

    try:
        element.set_tap(tap, on_stop=analyser.silence)
    except TapAlreadyAttachedError as e:
        raise UnavailableSourceError(str(e)) from e

    log_event("INFO", "Session", "Analysis graph created",
              fft_size=analyser.fft_size, bins=analyser.frequency_bin_count)
    return AnalysisSession(context=context, analyser=analyser, element_ref=weakref.ref(element))


class SessionRegistry:
    def __init__(self):
        self._sessions: "weakref.WeakKeyDictionary[AudioElement, AnalysisSession]" = weakref.WeakKeyDictionary()

    def lookup(self, element: AudioElement) -> Optional[AnalysisSession]:
        return self._sessions.get(element)

    def register(self, element: AudioElement, session: AnalysisSession) -> None:
        self._sessions[element] = session

    def resolve(self, element: AudioElement, factory: Optional[SessionFactory] = None) -> AnalysisSession:
        """Return the cached session for *element*, creating it on first use."""
        session = self.lookup(element)
        if session is None:
            session = (factory or create_session)(element)
            self.register(element, session)
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, element) -> bool:
        return element in self._sessions


# Shared by every detector: one tap per element means one graph per element
DEFAULT_REGISTRY = SessionRegistry()
