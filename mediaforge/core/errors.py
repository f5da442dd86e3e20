"""Error taxonomy for derived-file generation."""

from __future__ import annotations

from typing import Sequence


class DerivedFileError(Exception):
    """Base exception for derived-file generation errors."""


class CapabilityMissing(DerivedFileError):
    """Raised when a required rasterization capability is absent."""


class ConversionFailed(DerivedFileError):
    """Raised when a staging conversion produced no usable output."""


class CommandTimedOut(ConversionFailed):
    """Raised when an external process exceeds its deadline."""

    def __init__(self, message: str, argv: Sequence[str] | None = None, timeout: float | None = None):
        super().__init__(message)
        self.argv = list(argv or [])
        self.timeout = timeout


class LockTimeout(ConversionFailed):
    """Raised when the exclusive lock could not be acquired in time."""


class ConversionCancelled(DerivedFileError):
    """Raised when a run is cancelled through its cancellation token."""


class ManipulationFailed(DerivedFileError):
    """Raised when an image manipulation errors."""

    def __init__(self, message: str, conversions: Sequence[str] | None = None):
        super().__init__(message)
        self.conversions = list(conversions or [])


__all__ = [
    "DerivedFileError",
    "CapabilityMissing",
    "ConversionFailed",
    "CommandTimedOut",
    "LockTimeout",
    "ConversionCancelled",
    "ManipulationFailed",
]
