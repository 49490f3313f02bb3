"""Unit tests for ffutil — probe parsing, clip commands and the ffmpeg runner."""

import io
import json
import subprocess
import threading
from fractions import Fraction
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from rangeclip.errors import TranscodeCancelledError, TranscodeFailedError, UnreadableError
from rangeclip.ffutil import (
    clip_command,
    parse_frame_rate,
    parse_progress_line,
    probe,
    run_clip,
)
from rangeclip.models import DEFAULT_FPS


# ---------------------------------------------------------------------------
# probe (mocked subprocess)
# ---------------------------------------------------------------------------

PROBE_JSON = {
    "format": {"duration": "10.000000"},
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 3840,
            "height": 2160,
            "r_frame_rate": "30000/1001",
            "avg_frame_rate": "30000/1001",
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "sample_rate": "48000",
        },
    ],
}


def _probe_output(data: dict) -> MagicMock:
    return MagicMock(returncode=0, stdout=json.dumps(data))


class TestProbe:
    @patch("rangeclip.ffutil.subprocess.run")
    def test_basic(self, mock_run):
        mock_run.return_value = _probe_output(PROBE_JSON)
        result = probe(Path("video.mp4"))
        assert result.duration == 10.0
        assert (result.width, result.height) == (3840, 2160)
        assert result.fps == Fraction(30000, 1001)
        assert result.codec_video == "h264"

    @patch("rangeclip.ffutil.subprocess.run")
    def test_video_without_audio_is_fine(self, mock_run):
        data = {"format": PROBE_JSON["format"], "streams": [PROBE_JSON["streams"][0]]}
        mock_run.return_value = _probe_output(data)
        assert probe(Path("video.mp4")).width == 3840

    @patch("rangeclip.ffutil.subprocess.run")
    def test_no_video_stream(self, mock_run):
        data = {"format": PROBE_JSON["format"], "streams": [PROBE_JSON["streams"][1]]}
        mock_run.return_value = _probe_output(data)
        with pytest.raises(UnreadableError, match="No video stream"):
            probe(Path("video.mp4"))

    @patch("rangeclip.ffutil.subprocess.run")
    def test_ffprobe_failure(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(1, ["ffprobe"])
        with pytest.raises(UnreadableError, match="ffprobe failed"):
            probe(Path("broken.mp4"))

    @patch("rangeclip.ffutil.subprocess.run")
    def test_garbage_output(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="not json")
        with pytest.raises(UnreadableError):
            probe(Path("video.mp4"))

    @patch("rangeclip.ffutil.subprocess.run")
    def test_missing_duration(self, mock_run):
        stream = dict(PROBE_JSON["streams"][0])
        mock_run.return_value = _probe_output({"format": {}, "streams": [stream]})
        with pytest.raises(UnreadableError, match="Incomplete metadata"):
            probe(Path("video.mp4"))

    @patch("rangeclip.ffutil.subprocess.run")
    def test_still_image_has_no_duration(self, mock_run):
        data = {
            "format": {"format_name": "png_pipe"},
            "streams": [{"codec_type": "video", "codec_name": "png", "width": 640, "height": 480}],
        }
        mock_run.return_value = _probe_output(data)
        result = probe(Path("cat.png"), still=True)
        assert result.duration == 0.0
        assert (result.width, result.height) == (640, 480)

    @patch("rangeclip.ffutil.subprocess.run")
    def test_missing_duration_on_video_is_unreadable(self, mock_run):
        data = {"format": {}, "streams": [{"codec_type": "video", "width": 640, "height": 480}]}
        mock_run.return_value = _probe_output(data)
        with pytest.raises(UnreadableError, match="Incomplete"):
            probe(Path("cat.mp4"))

    @patch("rangeclip.ffutil.subprocess.run")
    def test_broken_frame_rate_uses_average(self, mock_run):
        stream = dict(PROBE_JSON["streams"][0], r_frame_rate="90000/1", avg_frame_rate="25/1")
        mock_run.return_value = _probe_output({"format": PROBE_JSON["format"], "streams": [stream]})
        assert probe(Path("video.mp4")).fps == Fraction(25)

    @patch("rangeclip.ffutil.subprocess.run")
    def test_no_frame_rate_falls_back_to_default(self, mock_run):
        stream = dict(PROBE_JSON["streams"][0], r_frame_rate="0/0", avg_frame_rate="0/0")
        mock_run.return_value = _probe_output({"format": PROBE_JSON["format"], "streams": [stream]})
        assert probe(Path("video.mp4")).fps == DEFAULT_FPS


class TestParseFrameRate:
    def test_fraction(self):
        assert parse_frame_rate("30000/1001") == Fraction(30000, 1001)

    def test_integer(self):
        assert parse_frame_rate("25") == Fraction(25)

    def test_unusable(self):
        assert parse_frame_rate("0/0") is None
        assert parse_frame_rate("") is None
        assert parse_frame_rate("abc") is None
        assert parse_frame_rate(None) is None


# ---------------------------------------------------------------------------
# clip_command (pure)
# ---------------------------------------------------------------------------

class TestClipCommand:
    def test_uncropped(self):
        cmd = clip_command(Path("in.mp4"), start=2.0, duration=3.0, output_path=Path("out.mp4"))
        assert cmd[:2] == ["ffmpeg", "-y"]
        assert cmd[cmd.index("-ss") + 1] == "2.000000"
        assert cmd[cmd.index("-t") + 1] == "3.000000"
        assert cmd.index("-ss") < cmd.index("-i") < cmd.index("-t")
        assert "-vf" not in cmd
        assert cmd[-1] == "out.mp4"

    def test_crop_filter_is_w_h_x_y(self):
        cmd = clip_command(
            Path("in.mp4"), 0.0, 1.0, Path("out.mp4"), crop=(384, 216, 3072, 1728)
        )
        assert cmd[cmd.index("-vf") + 1] == "crop=3072:1728:384:216"

    def test_crop_and_fps(self):
        cmd = clip_command(
            Path("in.mp4"), 0.0, 1.0, Path("out.mp4"), crop=(0, 0, 100, 50), output_fps=16
        )
        assert cmd[cmd.index("-vf") + 1] == "crop=100:50:0:0,fps=16"

    def test_codec_and_progress(self):
        cmd = clip_command(Path("in.mp4"), 0.0, 1.0, Path("out.mp4"), video_codec="libx265", preset="fast")
        assert cmd[cmd.index("-c:v") + 1] == "libx265"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"

    def test_still_is_crop_only(self):
        cmd = clip_command(
            Path("cat.png"), 0.0, 0.0, Path("out.png"),
            crop=(160, 120, 320, 240), output_fps=16, still=True,
        )
        assert cmd == [
            "ffmpeg", "-y", "-i", "cat.png",
            "-vf", "crop=320:240:160:120",
            "-frames:v", "1",
            "-progress", "pipe:1", "-nostats",
            "out.png",
        ]

    def test_still_without_crop(self):
        cmd = clip_command(Path("cat.png"), 0.0, 0.0, Path("out.png"), still=True)
        assert "-vf" not in cmd
        assert "-c:v" not in cmd
        assert "-ss" not in cmd

    def test_zero_duration_rejected(self):
        with pytest.raises(ValueError, match="positive"):
            clip_command(Path("in.mp4"), 1.0, 0.0, Path("out.mp4"))


class TestParseProgressLine:
    def test_out_time_us(self):
        assert parse_progress_line("out_time_us=1500000\n") == 1.5

    def test_out_time_ms_is_micro_too(self):
        assert parse_progress_line("out_time_ms=2000000") == 2.0

    def test_other_keys_ignored(self):
        assert parse_progress_line("frame=12") is None
        assert parse_progress_line("progress=continue") is None

    def test_na_value(self):
        assert parse_progress_line("out_time_us=N/A") is None


# ---------------------------------------------------------------------------
# run_clip (mocked Popen)
# ---------------------------------------------------------------------------

class FakeProc:
    """Stands in for subprocess.Popen; finishes immediately unless told to hang."""

    def __init__(self, returncode=0, stdout="", stderr="", hang=False):
        self.stdout = io.StringIO(stdout)
        self.stderr = io.StringIO(stderr)
        self.pid = 4242
        self._final = returncode
        self._hang = hang
        self.returncode = None
        self.terminated = False

    def wait(self, timeout=None):
        if self._hang and not self.terminated:
            raise subprocess.TimeoutExpired("ffmpeg", timeout)
        self.returncode = -15 if self.terminated else self._final
        return self.returncode

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.terminated = True


class TestRunClip:
    def test_success_reports_progress(self, tmp_path):
        out = tmp_path / "clip.mp4"
        out.write_bytes(b"x")
        progress = []
        fake = FakeProc(stdout="out_time_us=1000000\nout_time_us=2000000\nprogress=end\n")
        with patch("rangeclip.ffutil.subprocess.Popen", return_value=fake):
            run_clip(["ffmpeg"], out, duration=2.0, on_progress=progress.append)
        assert progress == [0.5, 1.0]

    def test_nonzero_exit(self, tmp_path):
        out = tmp_path / "clip.mp4"
        fake = FakeProc(returncode=1, stderr="Invalid data found\n")
        with patch("rangeclip.ffutil.subprocess.Popen", return_value=fake):
            with pytest.raises(TranscodeFailedError) as exc:
                run_clip(["ffmpeg"], out, duration=2.0)
        assert exc.value.returncode == 1
        assert "Invalid data" in exc.value.stderr

    def test_missing_output(self, tmp_path):
        fake = FakeProc(returncode=0)
        with patch("rangeclip.ffutil.subprocess.Popen", return_value=fake):
            with pytest.raises(TranscodeFailedError, match="no output"):
                run_clip(["ffmpeg"], tmp_path / "never.mp4")

    def test_cancel_terminates_process(self, tmp_path):
        fake = FakeProc(hang=True)
        cancel = threading.Event()
        cancel.set()
        with patch("rangeclip.ffutil.subprocess.Popen", return_value=fake):
            with pytest.raises(TranscodeCancelledError):
                run_clip(["ffmpeg"], tmp_path / "clip.mp4", cancel_event=cancel, poll_interval=0.01)
        assert fake.terminated

    def test_ffmpeg_missing(self, tmp_path):
        with patch("rangeclip.ffutil.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(TranscodeFailedError, match="could not start"):
                run_clip(["ffmpeg"], tmp_path / "clip.mp4")
