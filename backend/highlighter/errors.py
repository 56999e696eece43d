"""Domain exceptions."""
from typing import Optional


class HighlighterError(Exception):
    """Base error for highlighter operations."""
    pass


class FFmpegError(HighlighterError):
    """FFmpeg related error."""
    pass


class DetectionCanceledError(HighlighterError):
    """Raised by the detection engine when the run was canceled by the user."""

    def __init__(self, message: str = "Highlight generation canceled"):
        super().__init__(message)


class DetectionError(HighlighterError):
    """Detection engine failure, optionally carrying the engine's exit code."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class EngineUpdateError(HighlighterError):
    """Downloading or installing a new engine version failed."""
    pass


class UploadError(HighlighterError):
    """Upload could not be started or failed."""
    pass


class UploadInProgressError(UploadError):
    """An upload for the platform is already running."""
    pass


class UploadCanceledError(UploadError):
    """The transfer stopped because cancel was requested."""
    pass
