"""Builders shared by several test modules."""

from fractions import Fraction

from rangeclip.models import ProbeResult


def make_probe(
    duration: float = 10.0,
    width: int = 1920,
    height: int = 1080,
    fps: Fraction = Fraction(25),
) -> ProbeResult:
    return ProbeResult(
        duration=duration,
        width=width,
        height=height,
        fps=fps,
        codec_video="h264",
    )
