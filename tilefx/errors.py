"""Error taxonomy for the effect compositor.

Every error is localized: producers raise these, the coordinator and effects
catch them at their boundary, log them and degrade instead of propagating.
"""

from enum import Enum


class TileFxError(Exception):
    """Base class for all compositor errors."""


class InvalidConfigError(TileFxError, ValueError):
    """A parameter was outside its declared range or had the wrong type.

    Usually coerced (clamped) and logged once instead of raised.
    """


class NoImageDataError(TileFxError):
    """A mask raster has no pixels to derive a surface field from."""


class ResourceExhaustedError(TileFxError):
    """A render target could not be allocated at the requested size.

    Attributes:
        names: Targets that could not be allocated at the requested size.
        stranded: Targets that grew and then could not be returned to the
            previous size.
    """

    def __init__(
        self,
        message: str,
        names: tuple[str, ...] = (),
        stranded: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.names = names
        self.stranded = stranded


class EffectCrashError(TileFxError):
    """An effect raised inside one of its lifecycle hooks."""

    def __init__(self, effect_name: str, phase: str, cause: BaseException) -> None:
        super().__init__(f"Effect '{effect_name}' crashed during {phase}: {cause}")
        self.effect_name = effect_name
        self.phase = phase
        self.cause = cause


class EffectStatus(Enum):
    """Health flag the coordinator exposes per effect."""

    OK = "ok"
    DEGRADED = "degraded"
