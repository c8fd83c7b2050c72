from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

logger = logging.getLogger(__name__)


class Stage(StrEnum):
    WELCOME = "welcome"
    INSTRUCTION = "instruction"
    FREE_MOVEMENT = "free_movement"
    ENDING = "ending"


_NEXT: dict[Stage, Stage] = {
    Stage.WELCOME: Stage.INSTRUCTION,
    Stage.INSTRUCTION: Stage.FREE_MOVEMENT,
    Stage.FREE_MOVEMENT: Stage.ENDING,
}


class ExperimentFlow:
    """Stage sequence of one session: welcome, instruction, task, ending.

    Owned by whoever builds the session and handed to the engines as their
    transition sink, so streak and completion signals move the session on.
    Points (``points_per_reward`` for every reward found in the main task)
    and the instruction streak are pushed here by the engines.
    """

    def __init__(self, *, on_stage_changed: Callable[[Stage], None] | None = None) -> None:
        self._stage = Stage.WELCOME
        self._points = 0
        self._instruction_streak = 0
        self._instruction_probes = 0
        self._repetitions_advanced = 0
        self._configurations_advanced = 0
        self._on_stage_changed = on_stage_changed

    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def points(self) -> int:
        return self._points

    @property
    def instruction_streak(self) -> int:
        return self._instruction_streak

    @property
    def instruction_probes(self) -> int:
        return self._instruction_probes

    @property
    def repetitions_advanced(self) -> int:
        return self._repetitions_advanced

    @property
    def configurations_advanced(self) -> int:
        return self._configurations_advanced

    def add_points(self, value: int) -> None:
        self._points += int(value)

    def go_to(self, stage: Stage) -> None:
        if stage is self._stage:
            return
        logger.info("Stage %s -> %s", self._stage, stage)
        self._stage = stage
        if self._on_stage_changed is not None:
            self._on_stage_changed(stage)

    def advance(self) -> Stage:
        nxt = _NEXT.get(self._stage)
        if nxt is not None:
            self.go_to(nxt)
        return self._stage

    def on_repetition_advance(self, config_index: int, repetition: int) -> None:
        _ = (config_index, repetition)
        self._repetitions_advanced += 1

    def on_configuration_advance(self, config_index: int) -> None:
        _ = config_index
        self._configurations_advanced += 1

    def on_experiment_complete(self) -> None:
        self.go_to(Stage.ENDING)

    def on_instruction_streak_satisfied(self) -> None:
        if self._stage in (Stage.WELCOME, Stage.INSTRUCTION):
            self.go_to(Stage.FREE_MOVEMENT)

    def on_reward_found(self, points: int) -> None:
        self.add_points(points)

    def on_instruction_outcome(self, correct: bool, streak: int) -> None:
        _ = correct
        self._instruction_probes += 1
        self._instruction_streak = int(streak)
