"""A frame clock producing TimeInfo records for the compositor."""

import statistics
import time
from collections import deque

from tilefx.types import DeltaTime, TimeInfo

# Number of frame time samples to track.
_FPS_SAMPLE_SIZE = 256


class FrameClock:
    """Measure frame timing and hand out ``TimeInfo`` for each rendered frame.

    ``elapsed`` is measured from construction (or the last ``reset``) with
    ``perf_counter`` and never goes backwards.
    """

    def __init__(self) -> None:
        self.start_time = time.perf_counter()
        self.last_time = self.start_time
        self.last_delta_time: DeltaTime = DeltaTime(0.0)
        self.frame = 0
        self.time_samples: deque[float] = deque(maxlen=_FPS_SAMPLE_SIZE)

    def tick(self) -> TimeInfo:
        """Measure the time since the last tick and return this frame's timing."""
        current_time = time.perf_counter()
        delta_time = DeltaTime(max(0, current_time - self.last_time))
        self.last_time = current_time
        self.last_delta_time = delta_time
        self.time_samples.append(delta_time)
        self.frame += 1
        return TimeInfo(
            elapsed=current_time - self.start_time,
            delta=delta_time,
            frame=self.frame,
        )

    def reset(self) -> None:
        """Restart elapsed time and the frame counter."""
        self.start_time = time.perf_counter()
        self.last_time = self.start_time
        self.last_delta_time = DeltaTime(0.0)
        self.frame = 0
        self.time_samples.clear()

    @property
    def last_fps(self) -> float:
        """The FPS of the most recent frame."""
        if not self.time_samples or self.time_samples[-1] == 0:
            return 0
        return 1 / self.time_samples[-1]

    @property
    def mean_fps(self) -> float:
        """The FPS of the sampled frames overall."""
        if not self.time_samples:
            return 0
        try:
            return 1 / statistics.fmean(self.time_samples)
        except ZeroDivisionError:
            return 0
