from __future__ import annotations

import logging
import random

from .choreographer import CadenceStep, PhaseChoreographer
from .context import ExperimentContext, RewardVisibility
from .events import TaskEventKind
from .grid import Position3D
from .lifecycle import TrialLifecycle
from .sequence_gate import EvaluationOutcome, EvaluationResult
from .streak import StreakGate
from .task_core import TaskPhase, TaskSnapshot

logger = logging.getLogger(__name__)


class InstructionPhaseEngine:
    """Pre-training probes gating entry to the main task.

    Every probe shows one randomly chosen reward of the first configuration,
    hides it, and gives the participant one commit (or a timeout) to find it
    again. The phase ends after ``required_streak`` consecutive correct
    probes.
    """

    def __init__(self, context: ExperimentContext, *, seed: int) -> None:
        self._ctx = context
        self._lifecycle = TrialLifecycle(context)
        self._gate = self._lifecycle.gate
        self._cadence = PhaseChoreographer(context, self._gate)
        self._streak = StreakGate(context.settings.instruction.required_streak)
        self._rng = random.Random(int(seed))
        self._seed = int(seed)

        self._started = False
        self._finished = False
        self._controls_enabled = False
        self._participant = context.configurations.start_position
        self._target: int | None = None
        self._probes = 0
        self._correct = 0

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def streak(self) -> StreakGate:
        return self._streak

    @property
    def choreographer(self) -> PhaseChoreographer:
        return self._cadence

    @property
    def target_index(self) -> int | None:
        return self._target

    @property
    def participant(self) -> Position3D:
        return self._participant

    @property
    def controls_enabled(self) -> bool:
        return self._controls_enabled

    @property
    def probes(self) -> int:
        return self._probes

    @property
    def correct(self) -> int:
        return self._correct

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def phase(self) -> TaskPhase:
        if not self._started:
            return TaskPhase.NOT_STARTED
        if self._finished:
            return TaskPhase.COMPLETE
        step = self._cadence.step
        if step is CadenceStep.AWAIT_COMMIT:
            return TaskPhase.RESPONDING
        if step in (CadenceStep.FEEDBACK, CadenceStep.EXIT_HOLD):
            return TaskPhase.FEEDBACK
        return TaskPhase.OVERVIEW

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._lifecycle.load_configuration(0)
        self._begin_probe()

    def update(self) -> None:
        if not self._started or self._finished:
            return

        for done in self._cadence.update():
            if done.kind is CadenceStep.TRANSITION:
                self._controls_enabled = True
            elif done.kind is CadenceStep.AWAIT_COMMIT and done.timed_out:
                self._record_outcome(False, timed_out=True)
            elif done.kind is CadenceStep.FEEDBACK:
                self._after_feedback(done.ended_at_s)
            elif done.kind is CadenceStep.EXIT_HOLD:
                self._finished = True
                logger.info("Required streak reached (%d)", self._streak.required_streak)
                self._ctx.transitions.on_instruction_streak_satisfied()
                return
            elif done.kind is CadenceStep.INTER_TRIAL:
                self._begin_probe(done.ended_at_s)

    def move_to(self, position: Position3D) -> None:
        if not self._controls_enabled:
            return
        self._participant = position
        self._gate.on_position_changed(position)

    def commit(self) -> EvaluationResult | None:
        """Single commit for the current probe; later presses are ignored."""

        if not self._controls_enabled or not self._cadence.awaiting_commit:
            return None
        result = self._gate.evaluate(self._participant, self._ctx.clock.now())
        if result.outcome is EvaluationOutcome.DEBOUNCED:
            return result
        self._record_outcome(result.hit, timed_out=False)
        return result

    def snapshot(self) -> TaskSnapshot:
        st = self._ctx.state
        cfg = self._lifecycle.configuration
        box = st.acceptance
        visible = self._ctx.reveal.visible if isinstance(self._ctx.reveal, RewardVisibility) else frozenset()
        return TaskSnapshot(
            title="Instruction Phase",
            phase=self.phase,
            step=self._cadence.step,
            prompt=self.current_prompt(),
            config_index=st.active_config_index,
            config_name="" if cfg is None else cfg.name,
            repetition=self._probes,
            repetitions_per_configuration=self._streak.required_streak,
            reward_positions=st.reward_positions,
            visible_rewards=visible,
            participant=self._participant,
            controls_enabled=self._controls_enabled,
            half_x=0.0 if box is None else box.half_x,
            half_z=0.0 if box is None else box.half_z,
            time_remaining_s=self._cadence.time_remaining_s(),
            streak=self._streak.consecutive_correct,
            required_streak=self._streak.required_streak,
            last_outcome=self._cadence.last_outcome,
            last_result=self._gate.last_result,
        )

    def current_prompt(self) -> str:
        phase = self.phase
        if phase is TaskPhase.NOT_STARTED:
            return "Press Space to begin the practice."
        if phase is TaskPhase.COMPLETE:
            return "Practice complete."
        if phase is TaskPhase.FEEDBACK:
            return "Correct!" if self._cadence.last_outcome else "Incorrect."
        if phase is TaskPhase.RESPONDING:
            return "Walk to the reward you saw and press Space."
        return "Remember where the reward appears."

    def _begin_probe(self, start_s: float | None = None) -> None:
        count = self._ctx.state.reward_count
        idx = self._rng.randrange(count)
        self._target = idx
        self._controls_enabled = False
        self._participant = self._ctx.configurations.start_position
        self._cadence.start_probe(idx, start_s=start_s)

    def _record_outcome(self, hit: bool, *, timed_out: bool) -> None:
        self._probes += 1
        if hit:
            self._correct += 1
        self._controls_enabled = False
        self._streak.on_outcome(hit)
        self._ctx.emit(
            TaskEventKind.PROBE_OUTCOME,
            position=self._participant,
            target_index=self._target,
            correct=bool(hit),
            timed_out=bool(timed_out),
            streak=self._streak.consecutive_correct,
        )
        self._ctx.transitions.on_instruction_outcome(bool(hit), self._streak.consecutive_correct)
        if not timed_out:
            self._cadence.resolve_commit(hit)

    def _after_feedback(self, ended_at_s: float | None) -> None:
        self._ctx.reveal.hide_all()
        ins = self._ctx.settings.instruction
        if self._streak.is_satisfied():
            self._cadence.hold(CadenceStep.EXIT_HOLD, ins.exit_hold_s, start_s=ended_at_s)
        else:
            self._cadence.hold(CadenceStep.INTER_TRIAL, ins.pause_between_trials_s, start_s=ended_at_s)
