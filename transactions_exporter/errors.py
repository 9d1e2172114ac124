"""Exception types raised across the capture engine."""

from __future__ import annotations


class ExporterError(Exception):
    """Base class for errors raised by ``transactions_exporter``."""


class ExtractionError(ExporterError):
    """A single line item could not be turned into a record.

    Raised by the extractor and absorbed by the page capture coordinator,
    which counts the item as failed and moves on.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NavigationError(ExporterError):
    """No next-page control could be located on the current document."""


class CaptureInProgressError(ExporterError):
    """A capture or page transition is already running for this session."""


class SessionStateError(ExporterError):
    """The persisted session slot exists but cannot be decoded."""


__all__ = [
    "ExporterError",
    "ExtractionError",
    "NavigationError",
    "CaptureInProgressError",
    "SessionStateError",
]
