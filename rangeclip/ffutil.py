"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import shutil
import subprocess
import threading
from collections import deque
from fractions import Fraction
from pathlib import Path
from typing import Callable, IO

from rangeclip.errors import (
    FFmpegNotFoundError,
    TranscodeCancelledError,
    TranscodeFailedError,
    UnreadableError,
)
from rangeclip.models import MAX_SANE_FPS, ProbeResult, normalize_fps

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500


def check_ffmpeg() -> None:
    """Raise FFmpegNotFoundError if ffmpeg/ffprobe are not on PATH."""
    for cmd in ("ffmpeg", "ffprobe"):
        if shutil.which(cmd) is None:
            raise FFmpegNotFoundError(f"{cmd} not found on PATH")


def parse_frame_rate(value: str | None):
    """Parse ffprobe's "30000/1001" style rate; None when unusable."""
    if not value:
        return None
    num, _, den = value.partition("/")
    try:
        num_i = int(num)
        den_i = int(den) if den else 1
    except ValueError:
        return None
    if num_i <= 0 or den_i <= 0:
        return None
    rate = Fraction(num_i, den_i)
    if rate > MAX_SANE_FPS:
        return None
    return rate


def probe(input_path: Path, still: bool = False) -> ProbeResult:
    """Extract video metadata via ffprobe.

    Raises UnreadableError when ffprobe fails or reports no usable video
    stream. A missing or broken frame rate is not an error: it falls back to
    the default rate. With *still* set (image sources) only the frame size is
    required and the duration is reported as 0.
    """
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(input_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        data = json.loads(result.stdout)
    except FileNotFoundError as e:
        raise UnreadableError(f"ffprobe not available: {e}") from e
    except subprocess.CalledProcessError as e:
        raise UnreadableError(
            f"ffprobe failed on {input_path} (rc={e.returncode})"
        ) from e
    except json.JSONDecodeError as e:
        raise UnreadableError(f"ffprobe returned invalid JSON for {input_path}") from e

    video_stream = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "video"), None
    )
    if video_stream is None:
        raise UnreadableError(f"No video stream found in {input_path}")

    duration_raw = data.get("format", {}).get("duration") or video_stream.get("duration")
    try:
        duration = 0.0 if still else float(duration_raw)
        width = int(video_stream["width"])
        height = int(video_stream["height"])
    except (TypeError, ValueError, KeyError) as e:
        raise UnreadableError(f"Incomplete metadata for {input_path}: {e}") from e
    if duration < 0 or width <= 0 or height <= 0:
        raise UnreadableError(f"Nonsensical metadata for {input_path}")

    fps = parse_frame_rate(video_stream.get("r_frame_rate"))
    if fps is None:
        fps = parse_frame_rate(video_stream.get("avg_frame_rate"))
    if fps is None:
        logger.warning("No usable frame rate in %s, using default", input_path)

    return ProbeResult(
        duration=duration,
        width=width,
        height=height,
        fps=normalize_fps(fps),
        codec_video=video_stream.get("codec_name", ""),
    )


def format_seconds(value: float) -> str:
    return f"{value:.6f}"


def clip_command(
    input_path: Path,
    start: float,
    duration: float,
    output_path: Path,
    crop: tuple[int, int, int, int] | None = None,
    video_codec: str = "libx264",
    preset: str = "ultrafast",
    output_fps: float | None = None,
    still: bool = False,
) -> list[str]:
    """Build the ffmpeg argv that cuts [start, start + duration) out of a source.

    *crop* is a pixel-space ``(x, y, w, h)``. Seeking happens before ``-i``
    so the re-encode starts exactly at *start*.

    With *still* set the source is a single image: there is no time window,
    no frame-rate filter and no video codec, and ffmpeg picks the encoder
    from the extension of *output_path*.
    """
    if still:
        cmd = ["ffmpeg", "-y", "-i", str(input_path)]
        if crop is not None:
            x, y, w, h = crop
            cmd.extend(["-vf", f"crop={w}:{h}:{x}:{y}"])
        cmd.extend(["-frames:v", "1", "-progress", "pipe:1", "-nostats", str(output_path)])
        return cmd

    if duration <= 0:
        raise ValueError(f"clip duration must be positive, got {duration}")

    cmd = [
        "ffmpeg", "-y",
        "-ss", format_seconds(start),
        "-i", str(input_path),
        "-t", format_seconds(duration),
    ]

    filters: list[str] = []
    if crop is not None:
        x, y, w, h = crop
        filters.append(f"crop={w}:{h}:{x}:{y}")
    if output_fps:
        filters.append(f"fps={output_fps:g}")
    if filters:
        cmd.extend(["-vf", ",".join(filters)])

    cmd.extend(["-c:v", video_codec])
    if preset:
        cmd.extend(["-preset", preset])
    cmd.extend([
        "-progress", "pipe:1",
        "-nostats",
        str(output_path),
    ])
    return cmd


def parse_progress_line(line: str) -> float | None:
    """Return encoded seconds from an ``-progress`` key=value line, if any.

    ffmpeg reports both out_time_us and out_time_ms; both are microseconds.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    if micros < 0:
        return None
    return micros / 1_000_000


def _pump_progress(
    stream: IO[str],
    duration: float | None,
    on_progress: Callable[[float], None] | None,
) -> None:
    for line in stream:
        if on_progress is None or not duration:
            continue
        seconds = parse_progress_line(line)
        if seconds is not None:
            on_progress(min(seconds / duration, 1.0))


def _pump_lines(stream: IO[str], sink: deque) -> None:
    for line in stream:
        sink.append(line)


def _stop(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def run_clip(
    cmd: list[str],
    output_path: Path,
    duration: float | None = None,
    cancel_event: threading.Event | None = None,
    on_progress: Callable[[float], None] | None = None,
    poll_interval: float = 0.2,
) -> None:
    """Run an ffmpeg clip command to completion.

    Raises TranscodeFailedError on a non-zero exit or when *output_path* is
    missing afterwards, and TranscodeCancelledError when *cancel_event* is set
    while ffmpeg is still running (the process is terminated first). Cleaning
    up *output_path* is left to the caller.
    """
    logger.debug("Running: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except OSError as e:
        raise TranscodeFailedError(f"could not start ffmpeg: {e}") from e

    stderr_lines: deque = deque(maxlen=40)
    readers = [
        threading.Thread(
            target=_pump_progress, args=(proc.stdout, duration, on_progress), daemon=True
        ),
        threading.Thread(target=_pump_lines, args=(proc.stderr, stderr_lines), daemon=True),
    ]
    for t in readers:
        t.start()

    try:
        while True:
            try:
                proc.wait(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Cancelling ffmpeg (pid %s)", proc.pid)
                    _stop(proc)
                    raise TranscodeCancelledError("ffmpeg stopped on request")
    finally:
        for t in readers:
            t.join(timeout=1)

    stderr = "".join(stderr_lines)[-STDERR_TAIL_CHARS:]
    if proc.returncode != 0:
        raise TranscodeFailedError(
            f"ffmpeg failed (rc={proc.returncode})",
            returncode=proc.returncode,
            stderr=stderr,
        )
    if not Path(output_path).exists():
        raise TranscodeFailedError(
            "ffmpeg exited cleanly but produced no output",
            returncode=proc.returncode,
            stderr=stderr,
        )
