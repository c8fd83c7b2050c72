from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from .configuration import Configuration, ConfigurationIndexError, reward_letter
from .context import ExperimentContext
from .events import TaskEventKind
from .grid import GridToleranceResolver, Position3D
from .sequence_gate import SequenceGate

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    RUNNING = "running"
    REPETITION_COMPLETE = "repetition_complete"
    CONFIGURATION_COMPLETE = "configuration_complete"
    EXPERIMENT_COMPLETE = "experiment_complete"


class PendingTransition(StrEnum):
    RESET_TRIAL = "reset_trial"
    LOAD_CONFIGURATION = "load_configuration"


@dataclass(frozen=True, slots=True)
class _Scheduled:
    action: PendingTransition
    due_at_s: float


def compass_direction(start: Position3D, end: Position3D) -> str:
    dx = end.x - start.x
    dz = end.z - start.z
    if dx == 0.0 and dz == 0.0:
        return "none"
    if abs(dz) >= abs(dx):
        return "north" if dz > 0.0 else "south"
    return "east" if dx > 0.0 else "west"


class TrialLifecycle:
    """Configuration -> repetition -> trial bookkeeping for one experiment.

    Completion of a repetition is handed over by the SequenceGate. The
    follow-up (reset the trial or load the next configuration) is scheduled
    ``settle_delay_s`` later and fired from ``update()``. At most one
    transition is pending; loading a configuration or finishing the
    experiment cancels it.
    """

    def __init__(self, context: ExperimentContext, *, resolver: GridToleranceResolver | None = None) -> None:
        self._ctx = context
        self._resolver = resolver or GridToleranceResolver(context.settings.grid)
        self._gate = SequenceGate(context, on_repetition_complete=self._handle_repetition_complete)
        self._state = LifecycleState.RUNNING
        self._pending: _Scheduled | None = None
        self._configuration: Configuration | None = None

    @property
    def gate(self) -> SequenceGate:
        return self._gate

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def pending(self) -> PendingTransition | None:
        return None if self._pending is None else self._pending.action

    @property
    def configuration(self) -> Configuration | None:
        return self._configuration

    @property
    def configuration_count(self) -> int:
        return len(self._ctx.configurations.configurations)

    @property
    def repetitions_per_configuration(self) -> int:
        return int(self._ctx.configurations.repetitions_per_configuration)

    def load_configuration(self, index: int) -> Configuration:
        """Make configuration ``index`` active and reset every counter.

        Raises ConfigurationIndexError for an index outside the loaded set.
        """

        configs = self._ctx.configurations.configurations
        if index < 0 or index >= len(configs):
            raise ConfigurationIndexError(f"configuration index {index} out of range (0..{len(configs) - 1})")

        self.cancel_pending()
        cfg = configs[index]
        st = self._ctx.state
        st.active_config_index = index
        st.loaded_config_index = index
        st.repetitions_completed = 0
        st.reward_positions = cfg.reward_positions
        st.uncover_order = cfg.uncover_order()
        st.acceptance = self._resolver.resolve(cfg.reward_positions)
        st.reset_trial()
        self._ctx.reveal.hide_all()
        self._configuration = cfg
        if not st.experiment_complete:
            self._state = LifecycleState.RUNNING

        logger.info(
            "Loaded %s with %d rewards (%s), half extents %.2f x %.2f",
            cfg.name,
            cfg.reward_count,
            cfg.sequence_label(),
            st.acceptance.half_x,
            st.acceptance.half_z,
        )
        return cfg

    def start_trial(self, start_position: Position3D) -> None:
        st = self._ctx.state
        cfg = self._configuration
        st.trial_started_at_s = self._ctx.clock.now()
        st.start_position = start_position
        st.key_press_index = 0
        st.movement_index = 0
        st.moves_since_reward = 0
        self._ctx.emit(
            TaskEventKind.TRIAL_START,
            position=start_position,
            trial_type="" if cfg is None else str(cfg.sequence_direction),
            sequence="" if cfg is None else cfg.sequence_label(),
        )
        logger.info(
            "Trial started cfg=%d rep=%d/%d",
            st.active_config_index,
            st.repetitions_completed + 1,
            self.repetitions_per_configuration,
        )

    def record_movement(self, start: Position3D, end: Position3D) -> None:
        st = self._ctx.state
        if st.trial_started_at_s is None or st.trial_complete or st.experiment_complete:
            return
        st.movement_index += 1
        st.moves_since_reward += 1
        due = self._gate.due_index()
        details: dict[str, object] = {
            "from": start,
            "direction": compass_direction(start, end),
            "type": "" if self._configuration is None else str(self._configuration.sequence_direction),
            "state": "" if due is None else reward_letter(due),
            "found_reward": False,
            "movement_index": st.movement_index,
        }
        if due is not None and due < st.reward_count:
            details["curr_rew"] = st.reward_positions[due]
        self._ctx.emit(TaskEventKind.MOVEMENT, position=end, **details)

    def update(self) -> PendingTransition | None:
        """Fire the pending transition if its deadline has passed.

        Returns the transition that fired, if any. A transition fires once:
        it is cleared before it runs.
        """

        scheduled = self._pending
        if scheduled is None or self._ctx.clock.now() < scheduled.due_at_s:
            return None
        self._pending = None

        if scheduled.action is PendingTransition.RESET_TRIAL:
            self._reset_trial()
        else:
            self.load_configuration(self._ctx.state.active_config_index)
            self._ctx.transitions.on_configuration_advance(self._ctx.state.active_config_index)
        return scheduled.action

    def cancel_pending(self) -> None:
        if self._pending is not None:
            logger.debug("Cancelled pending %s", self._pending.action)
        self._pending = None

    def _schedule(self, action: PendingTransition) -> None:
        self._pending = _Scheduled(
            action=action,
            due_at_s=self._ctx.clock.now() + self._ctx.settings.settle_delay_s,
        )

    def _reset_trial(self) -> None:
        st = self._ctx.state
        self._ctx.reveal.hide_all()
        st.reset_trial()
        self._state = LifecycleState.RUNNING
        logger.info(
            "Starting repetition %d/%d of configuration %d",
            st.repetitions_completed + 1,
            self.repetitions_per_configuration,
            st.active_config_index,
        )
        self._ctx.transitions.on_repetition_advance(st.active_config_index, st.repetitions_completed)

    def _handle_repetition_complete(self) -> None:
        st = self._ctx.state
        reps = st.repetitions_completed
        required = self.repetitions_per_configuration
        logger.info("Repetition %d/%d of configuration %d complete", reps, required, st.active_config_index)

        if reps < required:
            self._state = LifecycleState.REPETITION_COMPLETE
            self._schedule(PendingTransition.RESET_TRIAL)
            return

        if st.active_config_index < self.configuration_count - 1:
            self._state = LifecycleState.CONFIGURATION_COMPLETE
            st.active_config_index += 1
            st.repetitions_completed = 0
            self._schedule(PendingTransition.LOAD_CONFIGURATION)
            return

        self._state = LifecycleState.EXPERIMENT_COMPLETE
        st.experiment_complete = True
        self.cancel_pending()
        logger.info("All configurations completed")
        self._ctx.emit(TaskEventKind.EXPERIMENT_COMPLETE)
        self._ctx.transitions.on_experiment_complete()
