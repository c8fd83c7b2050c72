from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .clock import Clock, unix_timestamp, utc_date
from .configuration import ConfigurationSet
from .events import EventLogSink, GuardedEventLog, NullEventLog, ParticipantInfo, TaskEvent, TaskEventKind
from .grid import AcceptanceBox, Position3D
from .settings import TaskSettings


class RevealSink(Protocol):
    """Render side of the reward objects. Calls are fire-and-forget and idempotent."""

    def show_reward(self, index: int) -> None: ...
    def hide_reward(self, index: int) -> None: ...
    def hide_all(self) -> None: ...


class TransitionSink(Protocol):
    def on_repetition_advance(self, config_index: int, repetition: int) -> None: ...
    def on_configuration_advance(self, config_index: int) -> None: ...
    def on_experiment_complete(self) -> None: ...
    def on_instruction_streak_satisfied(self) -> None: ...
    def on_reward_found(self, points: int) -> None: ...
    def on_instruction_outcome(self, correct: bool, streak: int) -> None: ...


class RewardVisibility:
    """In-process reveal sink that remembers which rewards are showing."""

    def __init__(self) -> None:
        self._visible: set[int] = set()

    @property
    def visible(self) -> frozenset[int]:
        return frozenset(self._visible)

    def is_visible(self, index: int) -> bool:
        return index in self._visible

    def show_reward(self, index: int) -> None:
        self._visible.add(int(index))

    def hide_reward(self, index: int) -> None:
        self._visible.discard(int(index))

    def hide_all(self) -> None:
        self._visible.clear()


class NullTransitionSink:
    def on_repetition_advance(self, config_index: int, repetition: int) -> None:
        _ = (config_index, repetition)

    def on_configuration_advance(self, config_index: int) -> None:
        _ = config_index

    def on_experiment_complete(self) -> None:
        return None

    def on_instruction_streak_satisfied(self) -> None:
        return None

    def on_reward_found(self, points: int) -> None:
        _ = points

    def on_instruction_outcome(self, correct: bool, streak: int) -> None:
        _ = (correct, streak)


@dataclass(slots=True)
class TrialState:
    active_config_index: int = 0
    # Configuration whose rewards are on screen; trails active_config_index
    # through the settle delay before the next configuration loads.
    loaded_config_index: int = 0
    repetitions_completed: int = 0
    next_expected_index: int = 0
    last_revealed_index: int | None = None
    trial_complete: bool = False
    experiment_complete: bool = False
    instruction_target_index: int | None = None

    # Per-trial bookkeeping for the event log.
    key_press_index: int = 0
    movement_index: int = 0
    moves_since_reward: int = 0
    trial_started_at_s: float | None = None
    start_position: Position3D | None = None
    last_commit_at_s: float | None = None

    # Configuration-scoped, recomputed on every configuration load.
    reward_positions: tuple[Position3D, ...] = ()
    uncover_order: tuple[int, ...] = ()
    acceptance: AcceptanceBox | None = None

    @property
    def reward_count(self) -> int:
        return len(self.reward_positions)

    def reset_trial(self) -> None:
        self.next_expected_index = 0
        self.last_revealed_index = None
        self.trial_complete = False
        self.instruction_target_index = None
        self.key_press_index = 0
        self.movement_index = 0
        self.moves_since_reward = 0
        self.trial_started_at_s = None


@dataclass(slots=True)
class ExperimentContext:
    """Everything one experiment session shares, created once and passed by reference."""

    clock: Clock
    configurations: ConfigurationSet
    settings: TaskSettings
    participant: ParticipantInfo
    reveal: RevealSink
    event_log: EventLogSink
    transitions: TransitionSink
    state: TrialState = field(default_factory=TrialState)
    wall_time: Callable[[], float] = unix_timestamp

    def emit(
        self,
        kind: TaskEventKind,
        *,
        position: Position3D | None = None,
        **details: Any,
    ) -> None:
        st = self.state
        started = st.trial_started_at_s
        rep = st.repetitions_completed
        if st.loaded_config_index != st.active_config_index:
            # Settling after the loaded configuration's last repetition.
            rep = self.configurations.repetitions_per_configuration
        t_trial = None if started is None else max(0.0, self.clock.now() - started)
        self.event_log.record(
            TaskEvent(
                kind=kind,
                participant=self.participant,
                date=utc_date(),
                round=st.loaded_config_index,
                rep=rep,
                t_global=self.wall_time(),
                t_trial=t_trial,
                position=position,
                details=dict(details),
            )
        )


def build_context(
    *,
    clock: Clock,
    configurations: ConfigurationSet,
    settings: TaskSettings | None = None,
    participant: ParticipantInfo | None = None,
    reveal: RevealSink | None = None,
    event_log: EventLogSink | None = None,
    transitions: TransitionSink | None = None,
    wall_time: Callable[[], float] | None = None,
) -> ExperimentContext:
    cfg = settings or TaskSettings.from_dict(configurations.settings)
    cfg.validate()
    return ExperimentContext(
        clock=clock,
        configurations=configurations,
        settings=cfg,
        participant=participant or ParticipantInfo.unknown(),
        reveal=reveal or RewardVisibility(),
        event_log=GuardedEventLog(event_log or NullEventLog()),
        transitions=transitions or NullTransitionSink(),
        wall_time=wall_time or unix_timestamp,
    )
