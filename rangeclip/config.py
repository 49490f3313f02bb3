"""Settings and range manifests — the JSON contract between CLI/API and core."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path

from rangeclip.models import CropRect, Range

VIDEO_EXTENSIONS = (".mp4", ".mkv", ".avi", ".mov", ".webm")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".webp")


@dataclass
class ExportConfig:
    """How clips are encoded and how many run at once."""

    video_codec: str = "libx264"
    preset: str = "ultrafast"
    output_fps: float | None = None
    container: str = "mp4"
    max_workers: int = 1
    min_crop_fraction: float = 0.01
    even_crop: bool = True

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if not 0.0 <= self.min_crop_fraction < 1.0:
            raise ValueError(f"min_crop_fraction must be in [0, 1), got {self.min_crop_fraction}")
        if self.output_fps is not None and self.output_fps <= 0:
            raise ValueError(f"output_fps must be positive, got {self.output_fps}")

    @property
    def suffix(self) -> str:
        return "." + self.container.lstrip(".")


@dataclass
class Settings:
    """Top-level settings; folders stay None until the operator picks them."""

    input_folder: Path | None = None
    output_folder: Path | None = None
    video_extensions: tuple[str, ...] = VIDEO_EXTENSIONS
    image_extensions: tuple[str, ...] = IMAGE_EXTENSIONS
    export: ExportConfig = field(default_factory=ExportConfig)


def _optional_path(value) -> Path | None:
    return Path(value) if value else None


def _extensions(values) -> tuple[str, ...]:
    return tuple(e.lower() if e.startswith(".") else f".{e.lower()}" for e in values)


def load_settings(path: str | Path) -> Settings:
    """Load settings from a JSON file. Every key is optional."""
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Settings file must contain a JSON object")

    export_data = data.get("export", {})
    unknown = set(export_data) - {f.name for f in fields(ExportConfig)}
    if unknown:
        raise ValueError(f"Unknown export settings: {sorted(unknown)}")
    export = ExportConfig(**export_data)
    extensions = _extensions(data.get("video_extensions", VIDEO_EXTENSIONS))
    images = _extensions(data.get("image_extensions", IMAGE_EXTENSIONS))
    return Settings(
        input_folder=_optional_path(data.get("input_folder")),
        output_folder=_optional_path(data.get("output_folder")),
        video_extensions=extensions,
        image_extensions=images,
        export=export,
    )


@dataclass
class RangeManifest:
    """One video and the ranges to export from it."""

    video: Path
    ranges: list[Range] = field(default_factory=list)
    output_folder: Path | None = None
    version: str = "1"


def load_range_manifest(path: str | Path) -> RangeManifest:
    """Load and validate a range manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))

    if "video" not in data or "ranges" not in data:
        raise ValueError("Manifest must contain 'video' and 'ranges' fields")

    ranges: list[Range] = []
    for i, item in enumerate(data["ranges"]):
        if "start" not in item or "end" not in item:
            raise ValueError(f"Range #{i} must contain 'start' and 'end'")
        crop = item.get("crop")
        try:
            ranges.append(Range(
                id=int(item.get("id", i)),
                start=float(item["start"]),
                end=float(item["end"]),
                label=str(item.get("label", "")),
                crop=CropRect.from_dict(crop) if crop else None,
            ))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Range #{i} is malformed: {e}") from e

    return RangeManifest(
        version=data.get("version", "1"),
        video=Path(data["video"]),
        ranges=ranges,
        output_folder=_optional_path(data.get("output_folder")),
    )


def save_range_manifest(manifest: RangeManifest, path: str | Path) -> Path:
    path = Path(path)
    data = {
        "version": manifest.version,
        "video": str(manifest.video),
        "output_folder": str(manifest.output_folder) if manifest.output_folder else None,
        "ranges": [r.to_dict() for r in manifest.ranges],
    }
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    return path
