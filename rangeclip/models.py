"""Shared data types used across RangeClip."""

import enum
import math
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path

DEFAULT_FPS = Fraction(30)
STILL_FPS = Fraction(1)

# Anything above this is a broken container header, not a real frame rate.
MAX_SANE_FPS = 1000

# Float slack for x + width <= 1 style checks.
CROP_EPSILON = 1e-9


@dataclass(frozen=True)
class ProbeResult:
    """Metadata extracted from a media file via ffprobe."""

    duration: float
    width: int
    height: int
    fps: Fraction
    codec_video: str = ""


class MediaKind(str, enum.Enum):
    VIDEO = "video"
    IMAGE = "image"


@dataclass(frozen=True)
class VideoRef:
    """A source video and the metadata discovered once when it is loaded.

    Still images are loaded as single-frame media: duration 0 at 1 fps.
    """

    path: Path
    duration: float
    fps: Fraction
    width: int
    height: int
    kind: MediaKind = MediaKind.VIDEO

    @property
    def id(self) -> str:
        return str(self.path)

    @property
    def stem(self) -> str:
        return self.path.stem

    @property
    def is_image(self) -> bool:
        return self.kind is MediaKind.IMAGE

    @property
    def frame_count(self) -> int:
        if self.is_image:
            return 1
        return round(self.duration * self.fps)

    @classmethod
    def from_probe(
        cls, path: Path, probe: ProbeResult, kind: MediaKind = MediaKind.VIDEO
    ) -> "VideoRef":
        if kind is MediaKind.IMAGE:
            return cls(Path(path), 0.0, STILL_FPS, probe.width, probe.height, kind)
        return cls(
            path=Path(path),
            duration=probe.duration,
            fps=normalize_fps(probe.fps),
            width=probe.width,
            height=probe.height,
        )


def normalize_fps(fps) -> Fraction:
    """Return a usable frame rate, falling back to DEFAULT_FPS.

    Missing, zero, negative, non-finite and absurdly large values (some
    containers report 90000/1 or 0/0) all fall back.
    """
    if fps is None:
        return DEFAULT_FPS
    try:
        value = Fraction(fps)
    except (TypeError, ValueError, ZeroDivisionError, OverflowError):
        return DEFAULT_FPS
    if value <= 0 or value > MAX_SANE_FPS:
        return DEFAULT_FPS
    return value


@dataclass(frozen=True)
class CropRect:
    """Fractional crop region; every field is relative to the frame size."""

    x: float
    y: float
    width: float
    height: float

    def problems(self) -> list[str]:
        """Describe every way this rectangle breaks the [0, 1] bounds."""
        found: list[str] = []
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0.0 or value > 1.0:
                found.append(f"{name}={value} outside [0, 1]")
        if self.x + self.width > 1.0 + CROP_EPSILON:
            found.append(f"x + width = {self.x + self.width:.6f} exceeds 1")
        if self.y + self.height > 1.0 + CROP_EPSILON:
            found.append(f"y + height = {self.y + self.height:.6f} exceeds 1")
        return found

    @property
    def is_valid(self) -> bool:
        return not self.problems()

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict) -> "CropRect":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass
class Range:
    """A labeled [start, end] interval on one video, optionally cropped."""

    id: int
    start: float
    end: float
    label: str = ""
    crop: CropRect | None = None

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def is_zero_length(self) -> bool:
        return self.end <= self.start

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "label": self.label,
            "crop": self.crop.to_dict() if self.crop else None,
        }


@dataclass(frozen=True)
class ExportJob:
    """Read-only snapshot of one range, ready for the transcoder."""

    job_id: int
    range_id: int
    video_path: Path
    start: float
    end: float
    label: str
    output_folder: Path
    output_stem: str
    crop: CropRect | None = None
    still: bool = False

    @property
    def duration(self) -> float:
        return self.end - self.start


class FailureReason(str, enum.Enum):
    MISSING_SOURCE = "missing_source"
    UNREADABLE = "unreadable"
    TRANSCODE_FAILED = "transcode_failed"
    INVALID_CROP = "invalid_crop"
    IO_ERROR = "io_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobOutcome:
    """What happened to one export job. Exactly one per submitted job."""

    job_id: int
    success: bool
    output_path: Path | None = None
    sidecar_path: Path | None = None
    reason: FailureReason | None = None
    detail: str = ""

    @classmethod
    def ok(cls, job_id: int, output_path: Path, sidecar_path: Path) -> "JobOutcome":
        return cls(job_id=job_id, success=True, output_path=output_path, sidecar_path=sidecar_path)

    @classmethod
    def failed(cls, job_id: int, reason: FailureReason, detail: str = "") -> "JobOutcome":
        return cls(job_id=job_id, success=False, reason=reason, detail=detail)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "output_path": str(self.output_path) if self.output_path else None,
            "sidecar_path": str(self.sidecar_path) if self.sidecar_path else None,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


class EngineState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (
            EngineState.COMPLETED,
            EngineState.PARTIALLY_FAILED,
            EngineState.CANCELLED,
        )


@dataclass
class BatchResult:
    """Aggregate outcome of one submitted batch."""

    state: EngineState
    outcomes: list[JobOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[tuple[int, FailureReason]]:
        return [(o.job_id, o.reason) for o in self.outcomes if not o.success]

    @property
    def written(self) -> list[Path]:
        return [o.output_path for o in self.outcomes if o.success]

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "written": [str(p) for p in self.written],
            "failures": [
                {"job_id": job_id, "reason": reason.value if reason else None}
                for job_id, reason in self.failures
            ],
        }
