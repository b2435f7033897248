from __future__ import annotations


class TrackerEngineError(Exception):
    """Base class for tracker engine failures."""


class TrackerConfigurationError(TrackerEngineError):
    """Raised before any network call when required settings are missing."""


class ExternalApiError(TrackerEngineError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TrackerUpdateInProgress(TrackerEngineError):
    """A tracker generation is already in flight for this session."""
