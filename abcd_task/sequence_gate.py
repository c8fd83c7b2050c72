from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .configuration import reward_letter
from .context import ExperimentContext
from .events import TaskEventKind
from .grid import Position3D

logger = logging.getLogger(__name__)


class GateMode(StrEnum):
    STRICT_SEQUENCE = "strict_sequence"
    SINGLE_PROBE = "single_probe"


class GateState(StrEnum):
    IDLE = "idle"
    AWAITING_COMMIT = "awaiting_commit"
    RESOLVED = "resolved"


class EvaluationOutcome(StrEnum):
    HIT = "hit"
    MISS = "miss"
    DEBOUNCED = "debounced"
    REJECTED_TERMINAL = "rejected_terminal"
    REJECTED_INVALID_TARGET = "rejected_invalid_target"


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    outcome: EvaluationOutcome
    mode: GateMode | None = None
    target_index: int | None = None
    target_label: str | None = None
    dx: float | None = None
    dz: float | None = None
    half_x: float | None = None
    half_z: float | None = None
    repetition_complete: bool = False

    @property
    def hit(self) -> bool:
        return self.outcome is EvaluationOutcome.HIT

    @property
    def resolved(self) -> bool:
        """True when the commit was actually judged (hit or miss)."""

        return self.outcome in (EvaluationOutcome.HIT, EvaluationOutcome.MISS)

    @property
    def distance(self) -> float | None:
        if self.dx is None or self.dz is None:
            return None
        return math.hypot(self.dx, self.dz)


class SequenceGate:
    """Judges commit actions against the reward that is currently due.

    In strict-sequence mode the due reward is the next one in uncover order
    and only a hit moves the sequence forward. In single-probe mode one ad hoc
    target is armed with ``arm_probe``; the next judged commit consumes it
    whatever the outcome.
    """

    def __init__(
        self,
        context: ExperimentContext,
        *,
        on_repetition_complete: Callable[[], None] | None = None,
    ) -> None:
        self._ctx = context
        self._on_repetition_complete = on_repetition_complete
        self._last_result: EvaluationResult | None = None

    @property
    def mode(self) -> GateMode:
        if self._ctx.state.instruction_target_index is not None:
            return GateMode.SINGLE_PROBE
        return GateMode.STRICT_SEQUENCE

    @property
    def state(self) -> GateState:
        st = self._ctx.state
        if st.experiment_complete or st.trial_complete:
            return GateState.RESOLVED if self._last_result is not None else GateState.IDLE
        if st.instruction_target_index is not None or st.reward_count > 0:
            return GateState.AWAITING_COMMIT
        return GateState.IDLE

    @property
    def last_result(self) -> EvaluationResult | None:
        return self._last_result

    def due_index(self) -> int | None:
        """Reward index the next commit is judged against, if any."""

        st = self._ctx.state
        if st.instruction_target_index is not None:
            return st.instruction_target_index
        if 0 <= st.next_expected_index < len(st.uncover_order):
            return st.uncover_order[st.next_expected_index]
        return None

    def arm_probe(self, index: int) -> None:
        self._ctx.state.instruction_target_index = int(index)

    def disarm_probe(self) -> None:
        self._ctx.state.instruction_target_index = None

    def evaluate(self, candidate: Position3D, now: float) -> EvaluationResult:
        ctx = self._ctx
        st = ctx.state

        if st.last_commit_at_s is not None and now - st.last_commit_at_s < ctx.settings.debounce_s:
            logger.debug("Commit at t=%.3f debounced", now)
            return EvaluationResult(outcome=EvaluationOutcome.DEBOUNCED)
        st.last_commit_at_s = now
        st.key_press_index += 1
        ctx.emit(TaskEventKind.KEY_PRESS, position=candidate, key_pressed="space", key_index=st.key_press_index)

        if st.experiment_complete or st.trial_complete or st.acceptance is None:
            return self._finish(EvaluationResult(outcome=EvaluationOutcome.REJECTED_TERMINAL))

        probe = st.instruction_target_index is not None
        mode = GateMode.SINGLE_PROBE if probe else GateMode.STRICT_SEQUENCE
        target = self.due_index()
        if target is None or not (0 <= target < st.reward_count):
            if probe:
                st.instruction_target_index = None
            return self._finish(
                EvaluationResult(outcome=EvaluationOutcome.REJECTED_INVALID_TARGET, mode=mode, target_index=target)
            )

        center = st.reward_positions[target]
        box = st.acceptance
        dx, dz = box.offsets(center=center, candidate=candidate)
        inside = box.contains(center=center, candidate=candidate)
        label = reward_letter(target)
        logger.debug(
            "Target=%s centre=(%.2f,%.2f) dx=%.2f dz=%.2f half=(%.2f,%.2f) inside=%s",
            label,
            center.x,
            center.z,
            dx,
            dz,
            box.half_x,
            box.half_z,
            inside,
        )

        if not inside:
            if probe:
                st.instruction_target_index = None
            ctx.emit(
                TaskEventKind.SPACE_MISS,
                position=candidate,
                distance=math.hypot(dx, dz),
                expected_letter=label,
            )
            return self._finish(
                EvaluationResult(
                    outcome=EvaluationOutcome.MISS,
                    mode=mode,
                    target_index=target,
                    target_label=label,
                    dx=dx,
                    dz=dz,
                    half_x=box.half_x,
                    half_z=box.half_z,
                )
            )

        ctx.reveal.show_reward(target)
        st.last_revealed_index = target
        logger.info("Correct uncover for reward %s", label)

        repetition_complete = False
        if probe:
            st.instruction_target_index = None
        else:
            st.next_expected_index += 1
            ctx.emit(
                TaskEventKind.REWARD,
                reward=center,
                reward_letter=label,
                reward_index=target,
                state=label,
                moves_to_find=st.moves_since_reward,
            )
            st.moves_since_reward = 0
            if st.next_expected_index >= st.reward_count:
                st.trial_complete = True
                st.repetitions_completed += 1
                repetition_complete = True

        result = self._finish(
            EvaluationResult(
                outcome=EvaluationOutcome.HIT,
                mode=mode,
                target_index=target,
                target_label=label,
                dx=dx,
                dz=dz,
                half_x=box.half_x,
                half_z=box.half_z,
                repetition_complete=repetition_complete,
            )
        )
        if repetition_complete and self._on_repetition_complete is not None:
            self._on_repetition_complete()
        return result

    def on_position_changed(self, position: Position3D) -> bool:
        """Hide the last uncovered reward once the participant leaves its square.

        Returns True when a reward was hidden.
        """

        st = self._ctx.state
        idx = st.last_revealed_index
        if idx is None or st.acceptance is None:
            return False
        if idx >= st.reward_count:
            st.last_revealed_index = None
            return False
        if st.acceptance.contains(center=st.reward_positions[idx], candidate=position):
            return False
        self._ctx.reveal.hide_reward(idx)
        st.last_revealed_index = None
        logger.debug("Participant left square for reward %s", reward_letter(idx))
        return True

    def _finish(self, result: EvaluationResult) -> EvaluationResult:
        self._last_result = result
        return result
