"""Error taxonomy shared by the interactive context and the export worker."""


class RangeClipError(Exception):
    pass


class RangeError(RangeClipError, ValueError):
    """A range that cannot be exported as it stands."""

    def __init__(self, message: str, range_id: int | None = None):
        super().__init__(message)
        self.range_id = range_id


class OutOfBoundsError(RangeError):
    """Range start/end lies outside [0, duration]."""


class InvalidCropError(RangeError):
    """Crop rectangle leaves the unit square."""


class NotFoundError(RangeClipError, LookupError):
    """Unknown range or video id."""


class AlreadyRunningError(RangeClipError):
    """An export batch is already in progress."""


class NotConfiguredError(RangeClipError):
    """Input or output folder has not been chosen."""


class UnreadableError(RangeClipError):
    """ffprobe could not read usable metadata from a source."""


class TranscodeFailedError(RangeClipError):
    """ffmpeg exited non-zero or produced no output."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class TranscodeCancelledError(RangeClipError):
    """The running ffmpeg process was stopped on request."""


class FFmpegNotFoundError(RangeClipError, RuntimeError):
    pass
