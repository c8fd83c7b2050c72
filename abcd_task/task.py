from __future__ import annotations

import logging

from .choreographer import CadenceStep, PhaseChoreographer
from .context import ExperimentContext, RewardVisibility
from .grid import Position3D
from .lifecycle import LifecycleState, PendingTransition, TrialLifecycle
from .sequence_gate import EvaluationOutcome, EvaluationResult
from .task_core import TaskPhase, TaskSnapshot, TaskSummary

logger = logging.getLogger(__name__)


class AbcdTaskEngine:
    """Main free-movement ABCD task.

    Each configuration opens with the memorization cadence seen from above;
    the participant then walks to the rewards and commits (Space) on each one
    in the configured order. Repetitions and configurations advance through
    the TrialLifecycle until the experiment is complete.
    """

    def __init__(self, context: ExperimentContext, *, points_per_reward: int = 1) -> None:
        self._ctx = context
        self._lifecycle = TrialLifecycle(context)
        self._gate = self._lifecycle.gate
        self._cadence = PhaseChoreographer(context, self._gate)
        self._points_per_reward = int(points_per_reward)

        self._started = False
        self._controls_enabled = False
        self._participant = context.configurations.start_position
        self._last_logged_position = self._participant

        self._commits = 0
        self._misses = 0
        self._rewards_found = 0
        self._find_times_s: list[float] = []
        self._last_find_at_s: float | None = None

    @property
    def lifecycle(self) -> TrialLifecycle:
        return self._lifecycle

    @property
    def choreographer(self) -> PhaseChoreographer:
        return self._cadence

    @property
    def participant(self) -> Position3D:
        return self._participant

    @property
    def controls_enabled(self) -> bool:
        return self._controls_enabled

    @property
    def phase(self) -> TaskPhase:
        if not self._started:
            return TaskPhase.NOT_STARTED
        if self._lifecycle.state is LifecycleState.EXPERIMENT_COMPLETE:
            return TaskPhase.COMPLETE
        if self._lifecycle.pending is not None:
            return TaskPhase.SETTLING
        if self._controls_enabled:
            return TaskPhase.RESPONDING
        return TaskPhase.OVERVIEW

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._begin_configuration(self._lifecycle.load_configuration(0).name)

    def update(self) -> None:
        if not self._started:
            return

        fired = self._lifecycle.update()
        if fired is PendingTransition.LOAD_CONFIGURATION:
            cfg = self._lifecycle.configuration
            self._begin_configuration("" if cfg is None else cfg.name)
        elif fired is PendingTransition.RESET_TRIAL:
            self._lifecycle.start_trial(self._participant)
            self._last_find_at_s = self._ctx.clock.now()

        for done in self._cadence.update():
            if done.kind is CadenceStep.TRANSITION:
                self._controls_enabled = True
                self._lifecycle.start_trial(self._participant)
                self._last_find_at_s = self._ctx.clock.now()
                logger.info("Find the rewards in order: %s", self._sequence_label())

    def move_to(self, position: Position3D) -> None:
        if not self._controls_enabled:
            return
        previous = self._participant
        self._participant = position
        if position == previous:
            return

        step = self._ctx.settings.movement_log_step
        if self._last_logged_position.horizontal_distance(position) >= step:
            self._lifecycle.record_movement(self._last_logged_position, position)
            self._last_logged_position = position
        self._gate.on_position_changed(position)

    def commit(self) -> EvaluationResult | None:
        """Space press at the participant's current position.

        Returns None while the participant has no control (overview, camera
        drop, experiment over).
        """

        if not self._controls_enabled:
            return None
        now = self._ctx.clock.now()
        result = self._gate.evaluate(self._participant, now)
        if result.outcome is EvaluationOutcome.DEBOUNCED:
            return result

        self._commits += 1
        if result.hit:
            self._rewards_found += 1
            self._ctx.transitions.on_reward_found(self._points_per_reward)
            if self._last_find_at_s is not None:
                self._find_times_s.append(max(0.0, now - self._last_find_at_s))
            self._last_find_at_s = now
        elif result.outcome is EvaluationOutcome.MISS:
            self._misses += 1

        if self._lifecycle.state is LifecycleState.EXPERIMENT_COMPLETE:
            self._controls_enabled = False
            self._cadence.stop()
        return result

    def summary(self) -> TaskSummary:
        st = self._ctx.state
        reps_per_cfg = self._lifecycle.repetitions_per_configuration
        # The active index moves on as soon as a configuration is finished.
        configs_done = self._lifecycle.configuration_count if st.experiment_complete else st.active_config_index
        judged = self._rewards_found + self._misses
        return TaskSummary(
            configurations_completed=configs_done,
            repetitions_completed=configs_done * reps_per_cfg
            + (0 if st.experiment_complete else st.repetitions_completed),
            rewards_found=self._rewards_found,
            commits=self._commits,
            misses=self._misses,
            accuracy=0.0 if judged == 0 else self._rewards_found / judged,
            mean_find_time_s=None if not self._find_times_s else sum(self._find_times_s) / len(self._find_times_s),
        )

    def snapshot(self) -> TaskSnapshot:
        st = self._ctx.state
        cfg = self._lifecycle.configuration
        box = st.acceptance
        visible = self._ctx.reveal.visible if isinstance(self._ctx.reveal, RewardVisibility) else frozenset()
        return TaskSnapshot(
            title="ABCD Task",
            phase=self.phase,
            step=self._cadence.step,
            prompt=self.current_prompt(),
            config_index=st.active_config_index,
            config_name="" if cfg is None else cfg.name,
            repetition=st.repetitions_completed,
            repetitions_per_configuration=self._lifecycle.repetitions_per_configuration,
            reward_positions=st.reward_positions,
            visible_rewards=visible,
            participant=self._participant,
            controls_enabled=self._controls_enabled,
            half_x=0.0 if box is None else box.half_x,
            half_z=0.0 if box is None else box.half_z,
            time_remaining_s=self._cadence.time_remaining_s(),
            last_result=self._gate.last_result,
        )

    def current_prompt(self) -> str:
        phase = self.phase
        if phase is TaskPhase.NOT_STARTED:
            return "Press Space to begin."
        if phase is TaskPhase.COMPLETE:
            s = self.summary()
            points = s.rewards_found * self._points_per_reward
            return f"All configurations complete. Rewards found: {s.rewards_found}. Points: {points}."
        if phase is TaskPhase.SETTLING:
            return "Well done! Get ready for the next round."
        if phase is TaskPhase.OVERVIEW:
            return "Memorize the reward sequence."
        return f"Find the rewards in order: {self._sequence_label()}"

    def _sequence_label(self) -> str:
        cfg = self._lifecycle.configuration
        return "" if cfg is None else cfg.sequence_label().replace("-", " -> ")

    def _begin_configuration(self, name: str) -> None:
        cfg = self._lifecycle.configuration
        if cfg is None:
            return
        logger.info("Starting %s", name)
        self._controls_enabled = False
        self._participant = self._ctx.configurations.start_position
        self._last_logged_position = self._participant
        self._cadence.start_memorization(cfg)
