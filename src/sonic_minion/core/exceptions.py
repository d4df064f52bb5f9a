"""Exceptions shared by the library, playlist and playback domains."""

from typing import Optional


class SonicMinionError(Exception):
    """Base exception for Sonic Minion operations."""

    pass


class ConfigError(SonicMinionError):
    """Raised when the configuration file holds invalid values."""

    pass


class StorageError(SonicMinionError):
    """Raised when the feature cache cannot be read or written."""

    pass


class AnalysisError(SonicMinionError):
    """Raised by an analyzer when a single song cannot be analyzed."""

    def __init__(self, path: str, message: str = None):
        self.path = path
        super().__init__(message or f"Analysis of '{path}' failed")


class NotAnalyzedError(SonicMinionError):
    """Raised when a song has no usable feature vector."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Song '{path}' has not been analyzed.")


class NoAnchorError(SonicMinionError):
    """Raised when there is no current song to build a playlist from."""

    def __init__(self, message: str = None):
        super().__init__(
            message
            or "No song is currently playing. Add a song to start the playlist from, and try again."
        )


class PathNormalizationError(SonicMinionError):
    """Raised when a cache key cannot be mapped back to a remote path."""

    pass


class RemoteError(SonicMinionError):
    """Raised when the remote server cannot be reached or answers with an error."""

    pass


class RemoteMutationError(SonicMinionError):
    """Raised when a queue mutation fails part way through a reconciliation.

    The queue is left in whatever state the failed step found it in.
    """

    def __init__(
        self,
        stage: str,
        step: int,
        applied: Optional[list] = None,
        cause: Optional[Exception] = None,
    ):
        self.stage = stage
        self.step = step
        self.applied = list(applied or [])
        self.cause = cause
        message = f"Queue mutation failed at step {step} ({stage})"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class PlaylistError(SonicMinionError):
    """Raised when a playlist cannot be built from the given songs."""

    pass
