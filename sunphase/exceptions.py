"""Exceptions raised by the sunphase package."""


class SunPhaseError(Exception):
    """Base class for all sunphase errors."""


class ConfigError(SunPhaseError):
    """A location configuration is missing, malformed, or inconsistent."""

    def __init__(self, message: str, location: str = None):
        self.location = location
        if location:
            message = f"[{location}] {message}"
        super().__init__(message)


class MonitorStoppedError(SunPhaseError):
    """A phase monitor was used after it was torn down."""
