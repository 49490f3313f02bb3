#!/usr/bin/env python3
"""Generate a synthetic source video for RangeClip export testing.

Produces a 10-second, 25 fps, 320x240 clip from ffmpeg's testsrc2 pattern
(which burns a running frame counter into the picture) with a 440 Hz tone.
Useful for checking cut points by eye: frame 50 is 2.000s.
"""

import subprocess
import sys
from pathlib import Path

DURATION = 10
FPS = 25
SIZE = "320x240"


def generate_test_video(output: Path, duration: float = DURATION, fps: int = FPS) -> Path:
    output.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", f"testsrc2=s={SIZE}:r={fps}:d={duration}",
        "-f", "lavfi", "-i", f"sine=f=440:d={duration}",
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-shortest",
        str(output),
    ]
    subprocess.run(cmd, check=True, capture_output=True)
    return output


def generate_test_image(output: Path) -> Path:
    """A single 320x240 testsrc2 frame; the format follows the extension."""
    output.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", f"testsrc2=s={SIZE}",
        "-frames:v", "1",
        str(output),
    ]
    subprocess.run(cmd, check=True, capture_output=True)
    return output


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("tests/fixtures/synthetic.mp4")
    generate_test_video(out)
    print(f"Generated: {out}")
