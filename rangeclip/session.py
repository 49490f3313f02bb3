"""The interactive context: folders, active video, timeline, ranges, export.

A Session is driven from one thread (the UI or the request handlers). It owns
the RangeStore; the ExportEngine only receives job snapshots from it.
"""

import logging
import math
from pathlib import Path

from rangeclip import ffutil
from rangeclip.config import RangeManifest, Settings, load_range_manifest, save_range_manifest
from rangeclip.crop import crop_from_drag
from rangeclip.engine import ExportEngine
from rangeclip.errors import (
    AlreadyRunningError,
    InvalidCropError,
    NotConfiguredError,
    NotFoundError,
    OutOfBoundsError,
    RangeError,
)
from rangeclip.jobs import build_jobs
from rangeclip.library import existing_label, media_kind, scan_folder
from rangeclip.models import CropRect, EngineState, ExportJob, MediaKind, Range, VideoRef
from rangeclip.ranges import RangeStore
from rangeclip.timeline import Timeline

logger = logging.getLogger(__name__)


def _check_importable(ranges: list[Range]) -> None:
    for rng in ranges:
        for value in (rng.start, rng.end):
            if not math.isfinite(value) or value < 0.0:
                raise OutOfBoundsError(f"range {rng.id} time {value} is not >= 0", rng.id)
        if rng.crop is not None and not rng.crop.is_valid:
            raise InvalidCropError("; ".join(rng.crop.problems()), rng.id)


class Session:
    def __init__(self, settings: Settings | None = None, engine: ExportEngine | None = None):
        self.settings = settings or Settings()
        self.store = RangeStore()
        self.timeline = Timeline()
        self.engine = engine or ExportEngine(self.settings.export)
        self._videos: dict[str, VideoRef] = {}
        self._seed_labels: dict[str, str] = {}
        self.active: VideoRef | None = None

    # --- folders -----------------------------------------------------------

    def set_input_folder(self, folder: str | Path) -> list[Path]:
        """Point at a new input folder; forgets every loaded video and range."""
        folder = Path(folder)
        if folder != self.settings.input_folder:
            for video_id in list(self._videos):
                self.store.clear(video_id)
            self._videos.clear()
            self._seed_labels.clear()
            self.active = None
            self.timeline.load(None)
        self.settings.input_folder = folder
        return self.list_videos()

    def set_output_folder(self, folder: str | Path) -> None:
        self.settings.output_folder = Path(folder)

    def list_videos(self) -> list[Path]:
        extensions = tuple(self.settings.video_extensions) + tuple(self.settings.image_extensions)
        return scan_folder(self.settings.input_folder, extensions)

    # --- videos ------------------------------------------------------------

    def load_video(self, path: str | Path) -> VideoRef:
        """Make *path* the active video, probing it the first time it is seen.

        Files with an image extension load as single-frame stills.

        Raises UnreadableError if ffprobe cannot read it; the previous active
        video stays active in that case.
        """
        path = Path(path)
        if self.settings.input_folder is not None and not path.is_absolute():
            path = self.settings.input_folder / path

        video = self._videos.get(str(path))
        if video is None:
            kind = media_kind(path, self.settings.image_extensions)
            meta = ffutil.probe(path, still=kind is MediaKind.IMAGE)
            video = VideoRef.from_probe(path, meta, kind)
            self._videos[video.id] = video
            self._seed_labels[video.id] = existing_label(path)
            logger.info(
                "Loaded %s %s: %.3fs @ %s fps, %dx%d",
                video.kind.value, path.name, video.duration, video.fps, video.width, video.height,
            )
        self.active = video
        self.timeline.load(video)
        return video

    def video(self, video_id: str) -> VideoRef:
        try:
            return self._videos[video_id]
        except KeyError:
            raise NotFoundError(f"unknown video {video_id}") from None

    def _require_active(self) -> VideoRef:
        if self.active is None:
            raise NotFoundError("no video selected")
        return self.active

    # --- ranges ------------------------------------------------------------

    def new_range(self, label: str | None = None) -> int:
        """Create a zero-length range at the current position and select it."""
        video = self._require_active()
        if label is None:
            label = self._seed_labels.pop(video.id, "")
        return self.store.create(video.id, at=self.timeline.time, label=label)

    def _ensure_selected(self) -> None:
        video = self._require_active()
        if self.store.selected(video.id) is None:
            self.new_range()

    def mark_in(self) -> int:
        self._ensure_selected()
        return self.timeline.mark_in(self.store)

    def mark_out(self) -> int:
        self._ensure_selected()
        return self.timeline.mark_out(self.store)

    def preview(self, range_id: int | None = None) -> None:
        video = self._require_active()
        if range_id is None:
            range_id = self.store.selected(video.id)
            if range_id is None:
                raise NotFoundError("no range selected")
        self.timeline.preview(self.store.get(video.id, range_id))

    def set_crop_from_drag(
        self,
        start: tuple[float, float],
        end: tuple[float, float],
        rendered_size: tuple[float, float],
        origin: tuple[float, float] = (0.0, 0.0),
        range_id: int | None = None,
    ) -> CropRect | None:
        """Apply a drag over the preview as the crop of a range.

        Degenerate drags clear the crop.
        """
        video = self._require_active()
        if range_id is None:
            range_id = self.store.selected(video.id)
            if range_id is None:
                raise NotFoundError("no range selected")
        rect = crop_from_drag(
            start, end, rendered_size, origin,
            min_fraction=self.settings.export.min_crop_fraction,
        )
        self.store.update(video.id, range_id, "crop", rect)
        return rect

    def import_ranges(self, ranges: list[Range]) -> list[int]:
        """Append copies of *ranges* to the active video; returns the new ids."""
        video = self._require_active()
        _check_importable(ranges)
        created = []
        for rng in ranges:
            range_id = self.store.create(video.id, at=rng.start, label=rng.label)
            self.store.update_many(video.id, range_id, {"end": rng.end, "crop": rng.crop})
            created.append(range_id)
        return created

    def save_ranges(self, path: str | Path | None = None) -> Path:
        """Write the active video's ranges as a manifest.

        Defaults to ``<output folder>/<video stem>.ranges.json``.
        """
        video = self._require_active()
        if path is None:
            if self.settings.output_folder is None:
                raise NotConfiguredError("output folder is not configured")
            path = self.settings.output_folder / f"{video.stem}.ranges.json"
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        manifest = RangeManifest(
            video=video.path,
            ranges=self.store.list(video.id),
            output_folder=self.settings.output_folder,
        )
        save_range_manifest(manifest, path)
        logger.info("Saved %d range(s) of %s to %s", len(manifest.ranges), video.path.name, path)
        return path

    def load_ranges(self, path: str | Path) -> list[int]:
        """Load a manifest: select its video and replace that video's ranges."""
        path = Path(path)
        if not path.is_file():
            raise NotFoundError(f"manifest not found: {path}")
        manifest = load_range_manifest(path)
        video_path = manifest.video
        if not video_path.is_absolute():
            video_path = path.parent / video_path
        video = self.load_video(video_path)
        _check_importable(manifest.ranges)
        self.store.clear(video.id)
        self._seed_labels.pop(video.id, None)
        return self.import_ranges(manifest.ranges)

    def issues(self, video_id: str | None = None) -> dict[int, list[RangeError]]:
        """Advisory validation of every range of a video, keyed by range id."""
        video = self.video(video_id) if video_id else self._require_active()
        found = {}
        for rng in self.store.list(video.id):
            problems = RangeStore.validate(rng, video)
            if problems:
                found[rng.id] = problems
        return found

    # --- export ------------------------------------------------------------

    def prepare_jobs(self, all_videos: bool = False) -> list[ExportJob]:
        """Snapshot ranges into export jobs for the active (or every loaded) video."""
        if self.settings.input_folder is None:
            raise NotConfiguredError("input folder is not configured")
        if self.settings.output_folder is None:
            raise NotConfiguredError("output folder is not configured")

        videos = list(self._videos.values()) if all_videos else [self._require_active()]
        jobs: list[ExportJob] = []
        for video in videos:
            jobs.extend(build_jobs(
                video,
                self.store.list(video.id),
                self.settings.output_folder,
                first_job_id=len(jobs),
            ))
        return jobs

    def run_export(self, all_videos: bool = False) -> list[ExportJob]:
        """Submit the current ranges for export; returns the submitted jobs."""
        if self.engine.state is EngineState.RUNNING:
            raise AlreadyRunningError("an export batch is already running")
        jobs = self.prepare_jobs(all_videos=all_videos)
        self.engine.submit(jobs)
        return jobs

    def cancel_export(self) -> bool:
        return self.engine.cancel()

    def poll_events(self) -> list[object]:
        return self.engine.poll_events()
