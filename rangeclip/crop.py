"""Crop rectangles: pointer drags in, ffmpeg pixel crops out."""

from rangeclip.errors import InvalidCropError
from rangeclip.models import CropRect

DEFAULT_MIN_FRACTION = 0.01


def _clamp01(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def crop_from_drag(
    start: tuple[float, float],
    end: tuple[float, float],
    rendered_size: tuple[float, float],
    origin: tuple[float, float] = (0.0, 0.0),
    min_fraction: float = DEFAULT_MIN_FRACTION,
) -> CropRect | None:
    """Turn a drag gesture over the rendered preview into a fractional crop.

    *start* and *end* are pointer positions in screen pixels; *origin* is the
    top-left corner of the rendered video inside the widget (non-zero when the
    preview is letterboxed). The drag may go in any direction and may leave
    the video; the result is clamped to the frame.

    Returns None for a drag thinner than *min_fraction* of the frame in
    either direction, which callers treat as "no crop".
    """
    rw, rh = rendered_size
    if rw <= 0 or rh <= 0:
        raise ValueError(f"rendered size must be positive, got {rendered_size}")
    ox, oy = origin

    xs = sorted(_clamp01((p[0] - ox) / rw) for p in (start, end))
    ys = sorted(_clamp01((p[1] - oy) / rh) for p in (start, end))
    width = xs[1] - xs[0]
    height = ys[1] - ys[0]

    if width < min_fraction or height < min_fraction:
        return None

    return CropRect(
        x=xs[0],
        y=ys[0],
        width=min(width, 1.0 - xs[0]),
        height=min(height, 1.0 - ys[0]),
    )


def _axis_to_pixels(offset: float, size: float, total: int, even: bool) -> tuple[int, int]:
    start = min(max(round(offset * total), 0), total)
    length = min(round(size * total), total - start)
    if even:
        length -= length % 2
    return start, length


def to_pixels(
    crop: CropRect,
    width: int,
    height: int,
    even: bool = False,
) -> tuple[int, int, int, int]:
    """Convert a fractional crop to ``(x, y, w, h)`` against a native size.

    With *even* set, w and h are rounded down to even numbers (yuv420
    encoders reject odd dimensions).
    """
    problems = crop.problems()
    if problems:
        raise InvalidCropError("; ".join(problems))

    x, w = _axis_to_pixels(crop.x, crop.width, width, even)
    y, h = _axis_to_pixels(crop.y, crop.height, height, even)
    if w <= 0 or h <= 0:
        raise InvalidCropError(
            f"crop {crop} is empty at {width}x{height}"
        )
    return x, y, w, h
