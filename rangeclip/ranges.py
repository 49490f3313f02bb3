"""Per-video range bookkeeping.

The store is owned by the interactive context. Nothing here is locked; the
export worker only ever sees the frozen ExportJob snapshots built from
``RangeStore.list``.
"""

import logging
import math
from dataclasses import replace

from rangeclip.errors import InvalidCropError, NotFoundError, OutOfBoundsError, RangeError
from rangeclip.models import CropRect, Range, VideoRef

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("start", "end", "label", "crop")

# Slack when comparing range ends against a float duration.
BOUNDS_EPSILON = 1e-6


def _coerce_time(value, range_id: int) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise OutOfBoundsError(f"not a time value: {value!r}", range_id) from e
    if not math.isfinite(seconds) or seconds < 0.0:
        raise OutOfBoundsError(f"time must be a finite value >= 0, got {value!r}", range_id)
    return seconds


def _coerce_crop(value, range_id: int) -> CropRect | None:
    if value is None:
        return None
    if isinstance(value, dict):
        try:
            value = CropRect.from_dict(value)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidCropError(f"malformed crop {value!r}", range_id) from e
    if not isinstance(value, CropRect):
        raise InvalidCropError(f"malformed crop {value!r}", range_id)
    problems = value.problems()
    if problems:
        raise InvalidCropError("; ".join(problems), range_id)
    return value


class RangeStore:
    """Ordered, labeled ranges for every loaded video."""

    def __init__(self) -> None:
        self._ranges: dict[str, list[Range]] = {}
        self._next_id: dict[str, int] = {}
        self._selected: dict[str, int | None] = {}

    def _items(self, video_id: str) -> list[Range]:
        return self._ranges.setdefault(video_id, [])

    def _find(self, video_id: str, range_id: int) -> tuple[int, Range]:
        for index, rng in enumerate(self._ranges.get(video_id, [])):
            if rng.id == range_id:
                return index, rng
        raise NotFoundError(f"no range {range_id} for video {video_id}")

    def create(self, video_id: str, at: float = 0.0, label: str = "") -> int:
        """Append a zero-length range at *at*, select it, and return its id."""
        at = _coerce_time(at, -1)
        range_id = self._next_id.get(video_id, 0)
        self._next_id[video_id] = range_id + 1
        self._items(video_id).append(Range(id=range_id, start=at, end=at, label=label))
        self._selected[video_id] = range_id
        logger.debug("Created range %d on %s at %.3fs", range_id, video_id, at)
        return range_id

    def get(self, video_id: str, range_id: int) -> Range:
        return replace(self._find(video_id, range_id)[1])

    def update(self, video_id: str, range_id: int, field: str, value) -> Range:
        """Set one field of a range and return the updated copy.

        If the edit leaves start > end the two are swapped; every other
        violation raises and leaves the range untouched.
        """
        return self.update_many(video_id, range_id, {field: value})

    def update_many(self, video_id: str, range_id: int, changes: dict) -> Range:
        """Set several fields at once; all of them apply or none do."""
        _, rng = self._find(video_id, range_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(
                f"unknown range field(s) {sorted(unknown)}; expected one of {EDITABLE_FIELDS}"
            )

        coerced = {}
        for field, value in changes.items():
            if field in ("start", "end"):
                coerced[field] = _coerce_time(value, range_id)
            elif field == "label":
                coerced[field] = "" if value is None else str(value)
            else:
                coerced[field] = _coerce_crop(value, range_id)

        for field, value in coerced.items():
            setattr(rng, field, value)
        if rng.start > rng.end:
            rng.start, rng.end = rng.end, rng.start
        return replace(rng)

    def delete(self, video_id: str, range_id: int) -> None:
        index, _ = self._find(video_id, range_id)
        items = self._ranges[video_id]
        del items[index]
        if self._selected.get(video_id) == range_id:
            if items:
                self._selected[video_id] = items[min(index, len(items) - 1)].id
            else:
                self._selected[video_id] = None
        logger.debug("Deleted range %d on %s", range_id, video_id)

    def select(self, video_id: str, range_id: int) -> None:
        self._find(video_id, range_id)
        self._selected[video_id] = range_id

    def selected(self, video_id: str) -> int | None:
        return self._selected.get(video_id)

    def move(self, video_id: str, range_id: int, new_index: int) -> None:
        """Reorder: place the range at *new_index* (clamped to the list)."""
        index, rng = self._find(video_id, range_id)
        items = self._ranges[video_id]
        del items[index]
        new_index = min(max(new_index, 0), len(items))
        items.insert(new_index, rng)

    def clear(self, video_id: str) -> None:
        self._ranges.pop(video_id, None)
        self._selected.pop(video_id, None)

    @staticmethod
    def validate(rng: Range, video: VideoRef) -> list[RangeError]:
        """Return every reason *rng* cannot be exported; empty means ok."""
        problems: list[RangeError] = []
        limit = video.duration + BOUNDS_EPSILON
        for name in ("start", "end"):
            value = getattr(rng, name)
            if not math.isfinite(value) or value < 0.0 or value > limit:
                problems.append(OutOfBoundsError(
                    f"range {rng.id} {name}={value} outside [0, {video.duration}]",
                    rng.id,
                ))
        if rng.crop is not None:
            crop_problems = rng.crop.problems()
            if crop_problems:
                problems.append(InvalidCropError(
                    f"range {rng.id}: " + "; ".join(crop_problems), rng.id
                ))
        return problems

    def list(self, video_id: str) -> list[Range]:
        """Snapshot of the ranges of *video_id* in their current order."""
        return [replace(r) for r in self._ranges.get(video_id, [])]
