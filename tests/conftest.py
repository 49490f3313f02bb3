"""Shared test fixtures."""

from fractions import Fraction
from pathlib import Path

import pytest

from rangeclip.models import VideoRef

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_ranges.json"


@pytest.fixture
def video() -> VideoRef:
    """10 s at 25 fps, 1920x1080."""
    return VideoRef(
        path=Path("/videos/dog.mp4"),
        duration=10.0,
        fps=Fraction(25),
        width=1920,
        height=1080,
    )


@pytest.fixture
def source_video(tmp_path: Path) -> Path:
    """A placeholder source file; ffprobe/ffmpeg are mocked around it."""
    src = tmp_path / "in" / "dog.mp4"
    src.parent.mkdir()
    src.write_bytes(b"not really a video")
    return src
