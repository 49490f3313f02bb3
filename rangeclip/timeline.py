"""Playback position for the active video, in seconds and frame index."""

import enum
import logging
import math
from fractions import Fraction

from rangeclip.errors import NotFoundError
from rangeclip.models import DEFAULT_FPS, Range, VideoRef
from rangeclip.ranges import RangeStore

logger = logging.getLogger(__name__)

# Keeps n / fps * fps from flooring to n - 1.
FRAME_EPSILON = 1e-9


class PlayState(enum.Enum):
    NOT_PLAYING = "not_playing"
    PLAYING = "playing"
    PLAYING_UNTIL = "playing_until"


class Timeline:
    """Current position on the loaded video.

    Stepping is computed from the frame rate, never from a fixed time
    increment. All moves clamp to [0, duration].
    """

    def __init__(self, video: VideoRef | None = None) -> None:
        self.load(video)

    def load(self, video: VideoRef | None) -> None:
        """Switch to *video* and reset to the start, paused."""
        self.video = video
        self._time = 0.0
        self._state = PlayState.NOT_PLAYING
        self._stop_at: float | None = None

    @property
    def duration(self) -> float:
        return self.video.duration if self.video else 0.0

    @property
    def fps(self) -> Fraction:
        return self.video.fps if self.video else DEFAULT_FPS

    @property
    def time(self) -> float:
        return self._time

    @property
    def frame_index(self) -> int:
        return math.floor(self._time * self.fps + FRAME_EPSILON)

    @property
    def state(self) -> PlayState:
        return self._state

    @property
    def stop_at(self) -> float | None:
        return self._stop_at

    @property
    def is_playing(self) -> bool:
        return self._state is not PlayState.NOT_PLAYING

    def _frame_time(self, index: int) -> float:
        return float(Fraction(index) / self.fps)

    def seek(self, time: float) -> float:
        try:
            time = float(time)
        except (TypeError, ValueError):
            time = 0.0
        if not math.isfinite(time):
            time = 0.0
        self._time = min(max(time, 0.0), self.duration)
        return self._time

    def seek_frame(self, index: int) -> float:
        return self.seek(self._frame_time(index))

    def step(self, direction: int) -> float:
        """Move exactly one frame forward (direction > 0) or backward (< 0)."""
        if direction == 0:
            return self._time
        index = self.frame_index
        if direction > 0:
            target = self._frame_time(index + 1)
            if target > self.duration + FRAME_EPSILON:
                return self._time
        else:
            if self._time <= 0.0:
                return self._time
            target = self._frame_time(max(index - 1, 0))
        return self.seek(target)

    def play(self) -> None:
        if self._time >= self.duration:
            return
        self._state = PlayState.PLAYING
        self._stop_at = None

    def pause(self) -> None:
        self._state = PlayState.NOT_PLAYING
        self._stop_at = None

    def toggle_play(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def advance(self, dt: float) -> float:
        """Move playback forward by *dt* seconds of wall clock.

        Called from the UI's frame clock. Stops at the preview end point and
        at the end of the video.
        """
        if not self.is_playing:
            return self._time
        self.seek(self._time + dt)
        if self._state is PlayState.PLAYING_UNTIL and self._time >= self._stop_at:
            self.seek(self._stop_at)
            self.pause()
        elif self._time >= self.duration:
            self.pause()
        return self._time

    def preview(self, rng: Range) -> None:
        """Request playback of *rng*: jump to its start, play until its end."""
        self.seek(rng.start)
        if rng.end > rng.start:
            self._state = PlayState.PLAYING_UNTIL
            self._stop_at = min(rng.end, self.duration)
        else:
            self.pause()

    def _active_range(self, store: RangeStore) -> int:
        if self.video is None:
            raise NotFoundError("no video loaded")
        range_id = store.selected(self.video.id)
        if range_id is None:
            range_id = store.create(self.video.id, at=self._time)
        return range_id

    def mark_in(self, store: RangeStore) -> int:
        """Write the current time into the selected range's start."""
        range_id = self._active_range(store)
        store.update(self.video.id, range_id, "start", self._time)
        return range_id

    def mark_out(self, store: RangeStore) -> int:
        """Write the current time into the selected range's end."""
        range_id = self._active_range(store)
        store.update(self.video.id, range_id, "end", self._time)
        return range_id
