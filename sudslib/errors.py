"""
Staging Errors

Exception hierarchy for the staging engine.

Lower layers (feature extraction, projection, classification) report problems
through validity flags on their results. Only the per-recording entry points
raise the exceptions defined here.
"""

from typing import Optional


class StagingError(Exception):
    """Base class for all staging engine errors."""


class ConfigurationError(StagingError):
    """Invalid settings, or a target / corpus whose dimensions do not match."""


class LibraryFormatError(ConfigurationError):
    """A trainer library stream is malformed, truncated or of an unknown version."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class InsufficientDataError(StagingError):
    """
    A recording cannot be used: too few epochs, too few classes or a
    degenerate model fit.

    Recoverable at the recording level; batch callers skip the recording.
    """

    def __init__(self, reason: str, recording_id: Optional[str] = None):
        self.reason = reason
        self.recording_id = recording_id
        if recording_id:
            super().__init__(f"{recording_id}: {reason}")
        else:
            super().__init__(reason)


class NoValidTrainersError(StagingError):
    """Every trainer was excluded, so the target cannot be scored."""

    def __init__(self, target_id: Optional[str] = None, detail: str = ""):
        self.target_id = target_id
        message = "no valid trainers"
        if target_id:
            message += f" for {target_id}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ScoringCancelled(StagingError):
    """Ensemble prediction was cancelled between trainers."""
