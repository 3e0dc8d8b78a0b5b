"""Wind-advection integrator shared by surface effects.

Produces a smoothed wind direction, an accumulated UV drift for pattern
advection, and a monotonic "wind time" phase clock. Gusts change how fast
wind time advances but never run it backwards, so procedural patterns keyed
on it never reverse.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from tilefx import config
from tilefx.providers import SceneDimensions, WeatherSource, normalize_heading
from tilefx.types import Heading, TimeInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindState:
    """Snapshot published after each integrator update.

    Attributes:
        direction: Smoothed unit vector patterns translate toward.
        speed: Current gust strength in [0, 1].
        offset_uv: Accumulated translation in scene-UV units (Y down).
        wind_time: Non-decreasing phase clock.
    """

    direction: Heading = (1.0, 0.0)
    speed: float = 0.0
    offset_uv: tuple[float, float] = (0.0, 0.0)
    wind_time: float = 0.0


class WindAdvection:
    """Per-consumer wind integrator.

    Args:
        weather: Source of wind direction and speed.
        dimensions: Scene size used to convert pixel drift into UV drift.
        responsiveness: Rate of the exponential approach toward the target
            direction (time constant ``1 / responsiveness``).
        advection_mul: Scales the pixel drift speed.
        use_target_direction: Steer toward ``weather.target_state`` when the
            source provides one.
    """

    def __init__(
        self,
        weather: WeatherSource,
        dimensions: SceneDimensions,
        *,
        responsiveness: float = config.WIND_DEFAULT_RESPONSIVENESS,
        advection_mul: float = 1.0,
        use_target_direction: bool = False,
    ) -> None:
        self.weather = weather
        self.dimensions = dimensions
        self.responsiveness = max(config.WIND_MIN_RESPONSIVENESS, responsiveness)
        self.advection_mul = advection_mul
        self.use_target_direction = use_target_direction

        self.direction: Heading = (1.0, 0.0)
        self.speed = 0.0
        self.offset_uv = (0.0, 0.0)
        self.wind_time = 0.0
        self.last_time: float | None = None
        self._stalled_frames = 0
        self._stall_warned = False

    def configure(
        self,
        *,
        responsiveness: float | None = None,
        advection_mul: float | None = None,
        use_target_direction: bool | None = None,
    ) -> None:
        """Change tuning in place; integrated state is kept."""
        if responsiveness is not None:
            self.responsiveness = max(config.WIND_MIN_RESPONSIVENESS, responsiveness)
        if advection_mul is not None:
            self.advection_mul = advection_mul
        if use_target_direction is not None:
            self.use_target_direction = use_target_direction

    @property
    def state(self) -> WindState:
        return WindState(self.direction, self.speed, self.offset_uv, self.wind_time)

    def reset(self) -> None:
        self.direction = (1.0, 0.0)
        self.speed = 0.0
        self.offset_uv = (0.0, 0.0)
        self.wind_time = 0.0
        self.last_time = None
        self._stalled_frames = 0
        self._stall_warned = False

    def _target_direction(self) -> tuple[Heading, float]:
        current = self.weather.get_current_state()
        heading = current.wind_direction
        if self.use_target_direction:
            target = getattr(self.weather, "target_state", None)
            if target is not None:
                heading = target.wind_direction
        speed = min(1.0, max(0.0, float(current.wind_speed)))
        return normalize_heading(heading), speed

    def update(self, time_info: TimeInfo) -> WindState:
        """Advance the integrator to ``time_info.elapsed``.

        Time going backwards contributes nothing; the phase clock only waits.
        """
        elapsed = float(time_info.elapsed)
        if self.last_time is None:
            dt = 0.0
        else:
            dt = max(0.0, elapsed - self.last_time)
        self.last_time = elapsed

        target, speed = self._target_direction()
        self.speed = speed

        # Exponential approach toward the target heading
        blend = 1.0 - math.exp(-dt * self.responsiveness)
        dx = self.direction[0] + (target[0] - self.direction[0]) * blend
        dy = self.direction[1] + (target[1] - self.direction[1]) * blend
        self.direction = normalize_heading((dx, dy), fallback=target)

        px_per_sec = (
            config.WIND_BASE_PX_PER_SEC + config.WIND_GAIN_PX_PER_SEC * speed
        ) * self.advection_mul
        scene_w = max(1.0, float(self.dimensions.width))
        scene_h = max(1.0, float(self.dimensions.height))
        self.offset_uv = (
            self.offset_uv[0] + self.direction[0] * px_per_sec * dt / scene_w,
            self.offset_uv[1] + self.direction[1] * px_per_sec * dt / scene_h,
        )

        rate = config.WIND_BASE_RATE * (
            config.WIND_RATE_MIN + config.WIND_RATE_GAIN * speed
        )
        self.wind_time += dt * rate

        self._track_stall(dt)
        return self.state

    def _track_stall(self, dt: float) -> None:
        if dt > config.WIND_STALL_EPSILON:
            if self._stall_warned:
                logger.debug("Wind time advancing again after a stall")
            self._stalled_frames = 0
            self._stall_warned = False
            return

        self._stalled_frames += 1
        if self._stalled_frames > config.WIND_STALL_FRAMES and not self._stall_warned:
            self._stall_warned = True
            logger.warning(
                f"Wind time has not advanced for {self._stalled_frames} frames; "
                "is the host passing a frozen elapsed time?"
            )

    @property
    def stalled(self) -> bool:
        return self._stall_warned
