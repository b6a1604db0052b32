"""Error hierarchy for the effects core.

Out-of-range parameter values are never an error (they are clamped), so
there is no parameter exception here.
"""

from __future__ import annotations


class AuroraError(Exception):
    """Base class for effects-core errors."""


class DecodeError(AuroraError):
    """Source audio is malformed or uses an unsupported codec."""


class DeviceError(AuroraError):
    """The live output device could not be opened or written."""


class GraphError(AuroraError, ValueError):
    """A graph was requested with an invalid sample rate, channel count or destination."""


class RenderError(AuroraError):
    """A render could not complete. `stage` names where it failed."""

    def __init__(self, message: str, stage: str | None = None, cause: BaseException | None = None):
        self.stage = stage
        self.cause = cause
        if stage:
            message = f"{stage}: {message}"
        super().__init__(message)
