"""Error taxonomy for a render run.

Every failure surfaces as a ``RenderError`` subclass whose ``category`` tells
the caller whether to fix the input, the runtime, or report a bug.
"""


class RenderError(Exception):
    """Base class for all render failures."""

    category = "internal"


class InvalidRangeError(RenderError, ValueError):
    """Trim bounds are invalid or the source is too short to process."""

    category = "input"


class InvalidSourceError(RenderError, ValueError):
    """The source file cannot be probed or has no video stream."""

    category = "input"


class ConfigError(RenderError, ValueError):
    """A TransformConfig field is out of range or unknown."""

    category = "input"


class UnsupportedEnvironmentError(RenderError):
    """A required encode capability (ffmpeg, an encoder) is missing."""

    category = "environment"


class SurfaceUnavailableError(RenderError):
    """The compositing surface could not be allocated."""


class EncoderError(RenderError):
    """An encoder failed to configure or to encode."""

    def __init__(self, message: str, cause: BaseException | None = None, stderr: str = ""):
        super().__init__(message)
        self.cause = cause
        self.stderr = stderr

    def __str__(self) -> str:
        msg = super().__str__()
        if self.stderr:
            msg += f": {self.stderr[-500:]}"
        return msg


class MuxError(EncoderError):
    """The container muxer failed."""


class RenderCancelled(RenderError):
    """The run was aborted through its cancellation flag."""

    category = "cancelled"
