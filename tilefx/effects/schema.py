"""Control schemas and typed parameter bags for effects.

A ``ControlSchema`` is the machine-readable description of an effect's tunable
parameters: groups of named parameters (slider, boolean, color, enum) with
their ranges and defaults, plus named presets. A ``ParameterBag`` holds the
live values and coerces every assignment to the declared type.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tilefx.errors import InvalidConfigError

logger = logging.getLogger(__name__)


class ParamType(Enum):
    SLIDER = "slider"
    BOOLEAN = "boolean"
    COLOR = "color"
    ENUM = "enum"


@dataclass(frozen=True)
class ParamSpec:
    """One tunable parameter.

    Attributes:
        options: Allowed values of an ``ENUM`` parameter.
    """

    name: str
    type: ParamType
    label: str = ""
    default: Any = None
    min: float | None = None
    max: float | None = None
    step: float | None = None
    options: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "label": self.label or self.name,
            "default": self.default,
        }
        if self.type is ParamType.SLIDER:
            data.update(min=self.min, max=self.max, step=self.step)
        if self.type is ParamType.ENUM:
            data["options"] = list(self.options)
        return data


@dataclass(frozen=True)
class ParamGroup:
    name: str
    label: str
    parameters: tuple[str, ...]


@dataclass(frozen=True)
class ControlSchema:
    """Parameters, their grouping and presets for one effect type."""

    effect: str
    parameters: tuple[ParamSpec, ...] = ()
    groups: tuple[ParamGroup, ...] = ()
    presets: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def parameter(self, name: str) -> ParamSpec | None:
        return next((p for p in self.parameters if p.name == name), None)

    def defaults(self) -> dict[str, Any]:
        return {p.name: p.default for p in self.parameters}

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready description for host UIs."""
        return {
            "effect": self.effect,
            "groups": [
                {"name": g.name, "label": g.label, "parameters": list(g.parameters)}
                for g in self.groups
            ],
            "parameters": [p.to_dict() for p in self.parameters],
            "presets": {name: dict(values) for name, values in self.presets.items()},
        }


def slider(
    name: str, default: float, lo: float, hi: float, step: float = 0.01, label: str = ""
) -> ParamSpec:
    return ParamSpec(name, ParamType.SLIDER, label, default, lo, hi, step)


def boolean(name: str, default: bool, label: str = "") -> ParamSpec:
    return ParamSpec(name, ParamType.BOOLEAN, label, default)


def color(name: str, default: tuple[float, float, float], label: str = "") -> ParamSpec:
    return ParamSpec(name, ParamType.COLOR, label, default)


def enum(name: str, default: str, options: tuple[str, ...], label: str = "") -> ParamSpec:
    return ParamSpec(name, ParamType.ENUM, label, default, options=options)


def _parse_hex(value: str) -> tuple[float, float, float]:
    text = value.lstrip("#")
    if len(text) != 6:
        raise ValueError(f"Expected #rrggbb, got {value!r}")
    return tuple(int(text[i : i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]


class ParameterBag:
    """Live parameter values of one effect instance.

    Assignments are coerced to the declared type. Out-of-range sliders are
    clamped, unparseable values fall back to the default, and each offending
    parameter is reported once.
    """

    def __init__(
        self,
        schema: ControlSchema,
        owner: str,
        values: Mapping[str, Any] | None = None,
    ) -> None:
        self.schema = schema
        self.owner = owner
        self._values = schema.defaults()
        self._warned: set[str] = set()
        if values:
            self.update(values)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def set(self, name: str, value: Any) -> Any:
        """Coerce and store ``value``; returns the stored value.

        Unknown names are reported and ignored.
        """
        spec = self.schema.parameter(name)
        if spec is None:
            self._warn(name, InvalidConfigError(f"unknown parameter '{name}'"))
            return None
        stored = self._coerce(spec, value)
        self._values[name] = stored
        return stored

    def update(self, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def apply_preset(self, preset: str) -> None:
        values = self.schema.presets.get(preset)
        if values is None:
            raise KeyError(f"{self.owner}: no preset named '{preset}'")
        self.update(values)

    def _warn(self, name: str, error: InvalidConfigError) -> None:
        if name in self._warned:
            return
        self._warned.add(name)
        logger.warning(f"{self.owner}: {error}")

    def _coerce(self, spec: ParamSpec, value: Any) -> Any:
        match spec.type:
            case ParamType.SLIDER:
                try:
                    number = float(value)
                except (TypeError, ValueError):
                    self._warn(
                        spec.name,
                        InvalidConfigError(f"'{spec.name}' expects a number, got {value!r}"),
                    )
                    return spec.default
                lo = spec.min if spec.min is not None else number
                hi = spec.max if spec.max is not None else number
                clamped = min(hi, max(lo, number))
                if clamped != number:
                    self._warn(
                        spec.name,
                        InvalidConfigError(
                            f"'{spec.name}'={number} outside [{spec.min}, {spec.max}], "
                            f"clamped to {clamped}"
                        ),
                    )
                return clamped
            case ParamType.BOOLEAN:
                return bool(value)
            case ParamType.COLOR:
                try:
                    rgb = _parse_hex(value) if isinstance(value, str) else tuple(value)
                    if len(rgb) != 3:
                        raise ValueError(f"expected 3 components, got {len(rgb)}")
                    return tuple(min(1.0, max(0.0, float(c))) for c in rgb)
                except (TypeError, ValueError) as e:
                    self._warn(
                        spec.name, InvalidConfigError(f"'{spec.name}' is not a color: {e}")
                    )
                    return spec.default
            case ParamType.ENUM:
                if value in spec.options:
                    return value
                self._warn(
                    spec.name,
                    InvalidConfigError(
                        f"'{spec.name}'={value!r} not one of {list(spec.options)}"
                    ),
                )
                return spec.default
