"""Input-folder listing, media kind detection and pre-existing sidecar lookup."""

import logging
from pathlib import Path
from typing import Iterable

from rangeclip.config import IMAGE_EXTENSIONS, VIDEO_EXTENSIONS
from rangeclip.errors import NotConfiguredError, NotFoundError
from rangeclip.models import MediaKind

logger = logging.getLogger(__name__)


def scan_folder(folder: Path | None, extensions: Iterable[str] = VIDEO_EXTENSIONS) -> list[Path]:
    """List media files directly inside *folder*, sorted by name."""
    if folder is None:
        raise NotConfiguredError("input folder is not configured")
    folder = Path(folder)
    if not folder.is_dir():
        raise NotFoundError(f"input folder does not exist: {folder}")

    wanted = {e.lower() for e in extensions}
    videos = sorted(
        (p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in wanted),
        key=lambda p: p.name.lower(),
    )
    logger.debug("Found %d media file(s) in %s", len(videos), folder)
    return videos


def media_kind(path: Path, image_extensions: Iterable[str] = IMAGE_EXTENSIONS) -> MediaKind:
    """Still images are recognised by extension; everything else is video."""
    wanted = {e.lower() for e in image_extensions}
    return MediaKind.IMAGE if Path(path).suffix.lower() in wanted else MediaKind.VIDEO


def existing_label(video_path: Path) -> str:
    """Text of a sidecar already sitting next to the source video, if any."""
    sidecar = Path(video_path).with_suffix(".txt")
    if not sidecar.is_file():
        return ""
    try:
        return sidecar.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read %s: %s", sidecar, e)
        return ""
