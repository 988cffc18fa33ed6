"""Exceptions raised by the bass detector and its analysis graph."""


class BassDetectorError(Exception):
    """Base class for detector failures surfaced to callers."""


class UnavailableSourceError(BassDetectorError):
    """The analysis graph cannot be bound to the given audio endpoint."""


class SuspendedContextError(BassDetectorError):
    """The analysis context cannot be resumed (it has been closed)."""
