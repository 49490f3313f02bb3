"""Snapshot ranges into immutable export jobs and name their outputs."""

import logging
import re
from pathlib import Path
from typing import Iterable

from rangeclip.errors import NotConfiguredError
from rangeclip.models import ExportJob, Range, VideoRef
from rangeclip.ranges import RangeStore

logger = logging.getLogger(__name__)

MAX_LABEL_CHARS = 80

_UNSAFE = re.compile(r"[^\w\-]+")


def safe_label(label: str) -> str:
    """Squash a free-text label into something usable inside a filename."""
    cleaned = _UNSAFE.sub("_", label.strip()).strip("_")
    return cleaned[:MAX_LABEL_CHARS].rstrip("_")


def output_stem(video: VideoRef, rng: Range, index: int) -> str:
    """``<video_stem>_<label>``, or ``<video_stem>_range<index>`` when unlabeled."""
    label = safe_label(rng.label)
    return f"{video.stem}_{label or f'range{index}'}"


def build_jobs(
    video: VideoRef,
    ranges: Iterable[Range],
    output_folder: Path | None,
    first_job_id: int = 0,
) -> list[ExportJob]:
    """Turn a point-in-time range list into export jobs.

    Zero-length ranges of a video are skipped. On a still image every range
    is zero-length and each one exports the (cropped) image. Any range that
    fails validation aborts construction with the first problem found, so
    nothing is half submitted.
    """
    if output_folder is None or str(output_folder) == "":
        raise NotConfiguredError("output folder is not configured")
    output_folder = Path(output_folder)

    jobs: list[ExportJob] = []
    for index, rng in enumerate(ranges):
        if rng.is_zero_length and not video.is_image:
            logger.debug("Skipping zero-length range %d of %s", rng.id, video.id)
            continue
        problems = RangeStore.validate(rng, video)
        if problems:
            raise problems[0]
        jobs.append(ExportJob(
            job_id=first_job_id + len(jobs),
            range_id=rng.id,
            video_path=video.path,
            start=rng.start,
            end=rng.end,
            label=rng.label,
            output_folder=output_folder,
            output_stem=output_stem(video, rng, index),
            crop=rng.crop,
            still=video.is_image,
        ))
    return jobs


def claim_output(
    folder: Path,
    stem: str,
    suffix: str,
    reserved: set[Path],
) -> Path:
    """Pick ``<folder>/<stem><suffix>``, adding _1, _2, ... if it is taken.

    A path is taken when it exists on disk or is already in *reserved*
    (claimed by another job of the same batch). The chosen path is added to
    *reserved*; callers serialise access to it.
    """
    candidate = folder / f"{stem}{suffix}"
    n = 0
    while candidate.exists() or candidate in reserved:
        n += 1
        candidate = folder / f"{stem}_{n}{suffix}"
    reserved.add(candidate)
    return candidate


def temp_sibling(path: Path) -> Path:
    """Hidden in-progress name next to *path*, keeping its extension."""
    return path.with_name(f".{path.stem}.partial{path.suffix}")
