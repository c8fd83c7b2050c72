from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .choreographer import CadenceStep
from .grid import Position3D
from .sequence_gate import EvaluationResult


class TaskPhase(StrEnum):
    NOT_STARTED = "not_started"
    OVERVIEW = "overview"  # participant watches from above, no control
    RESPONDING = "responding"
    FEEDBACK = "feedback"
    SETTLING = "settling"  # repetition finished, next one scheduled
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class TaskSnapshot:
    """View model for the UI (pure data)."""

    title: str
    phase: TaskPhase
    step: CadenceStep
    prompt: str
    config_index: int
    config_name: str
    repetition: int
    repetitions_per_configuration: int
    reward_positions: tuple[Position3D, ...]
    visible_rewards: frozenset[int]
    participant: Position3D
    controls_enabled: bool
    half_x: float
    half_z: float
    time_remaining_s: float | None = None
    streak: int | None = None
    required_streak: int | None = None
    last_outcome: bool | None = None
    last_result: EvaluationResult | None = None


@dataclass(frozen=True, slots=True)
class TaskSummary:
    configurations_completed: int
    repetitions_completed: int
    rewards_found: int
    commits: int
    misses: int
    accuracy: float
    mean_find_time_s: float | None


def step_towards(position: Position3D, *, dx: float, dz: float) -> Position3D:
    return Position3D(position.x + dx, position.y, position.z + dz)
