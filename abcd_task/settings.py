from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from .grid import GridSettings


@dataclass(frozen=True, slots=True)
class MemorizationSettings:
    repetitions: int = 2
    reward_display_s: float = 1.5
    pause_between_rewards_s: float = 0.5
    pause_between_sequences_s: float = 1.0
    pause_before_drop_s: float = 0.8
    transition_s: float = 2.0


@dataclass(frozen=True, slots=True)
class InstructionSettings:
    required_streak: int = 3
    display_s: float = 3.0
    pause_after_hide_s: float = 0.15
    # Camera drop plus a short margin before the participant takes control.
    transition_s: float = 2.1
    response_timeout_s: float = 30.0
    feedback_s: float = 2.0
    pause_between_trials_s: float = 0.5
    exit_hold_s: float = 0.8


@dataclass(frozen=True, slots=True)
class TaskSettings:
    grid: GridSettings = field(default_factory=GridSettings)
    memorization: MemorizationSettings = field(default_factory=MemorizationSettings)
    instruction: InstructionSettings = field(default_factory=InstructionSettings)
    debounce_s: float = 0.25
    settle_delay_s: float = 2.0
    move_speed: float = 5.0  # units per second
    movement_log_step: float = 1.0  # distance walked between movement events

    @classmethod
    def from_dict(cls, data: Mapping[str, object] | None) -> "TaskSettings":
        """Build settings from a JSON ``settings`` object.

        Unknown keys are ignored. Known keys must hold finite numbers, and
        integer fields reject fractional values; anything else raises
        ValueError. Nested sections are ``grid``, ``memorization`` and
        ``instruction``.
        """

        base = cls()
        if not data:
            return base

        top = _overrides(base, data, skip=("grid", "memorization", "instruction"))
        return replace(
            base,
            grid=replace(base.grid, **_overrides(base.grid, data.get("grid"))),
            memorization=replace(base.memorization, **_overrides(base.memorization, data.get("memorization"))),
            instruction=replace(base.instruction, **_overrides(base.instruction, data.get("instruction"))),
            **top,
        )

    def validate(self) -> None:
        for section in (self, self.grid, self.memorization, self.instruction):
            for f in fields(section):
                value = getattr(section, f.name)
                if isinstance(value, float) and not math.isfinite(value):
                    raise ValueError(f"{f.name} must be a finite number")
        if self.debounce_s < 0.0:
            raise ValueError("debounce_s must be >= 0")
        if self.settle_delay_s < 0.0:
            raise ValueError("settle_delay_s must be >= 0")
        if self.move_speed <= 0.0:
            raise ValueError("move_speed must be > 0")
        if self.movement_log_step < 0.0:
            raise ValueError("movement_log_step must be >= 0")
        if self.grid.tolerance_fraction <= 0.0:
            raise ValueError("tolerance_fraction must be > 0")
        if self.grid.fallback_cell_size <= 0.0:
            raise ValueError("fallback_cell_size must be > 0")
        if self.memorization.repetitions < 0:
            raise ValueError("memorization repetitions must be >= 0")
        if self.instruction.required_streak < 1:
            raise ValueError("required_streak must be >= 1")
        if self.instruction.response_timeout_s <= 0.0:
            raise ValueError("response_timeout_s must be > 0")
        for section in (self.memorization, self.instruction):
            for f in fields(section):
                if f.name.endswith("_s") and float(getattr(section, f.name)) < 0.0:
                    raise ValueError(f"{f.name} must be >= 0")


def _overrides(default: Any, raw: object, *, skip: tuple[str, ...] = ()) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"settings section for {type(default).__name__} must be an object")
    out: dict[str, Any] = {}
    for f in fields(default):
        if f.name in skip or f.name not in raw:
            continue
        value = raw[f.name]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{f.name} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise ValueError(f"{f.name} must be a finite number")
        if isinstance(getattr(default, f.name), int):
            if value != int(value):
                raise ValueError(f"{f.name} must be a whole number, got {value!r}")
            out[f.name] = int(value)
        else:
            out[f.name] = float(value)
    return out
