from __future__ import annotations

from dataclasses import dataclass

import pytest

from abcd_task.configuration import ConfigurationStore
from abcd_task.context import ExperimentContext, RewardVisibility, build_context
from abcd_task.events import MemoryEventLog, TaskEventKind
from abcd_task.grid import Position3D
from abcd_task.lifecycle import TrialLifecycle
from abcd_task.sequence_gate import EvaluationOutcome, GateMode, GateState, SequenceGate


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


A = Position3D(0.0, 0.5, 0.0)
B = Position3D(10.0, 0.5, 0.0)
C = Position3D(10.0, 0.5, 10.0)
D = Position3D(0.0, 0.5, 10.0)


def _setup(
    *, direction: str = "forw", reps: int = 2
) -> tuple[FakeClock, ExperimentContext, SequenceGate, MemoryEventLog, RewardVisibility]:
    clock = FakeClock()
    log = MemoryEventLog()
    reveal = RewardVisibility()
    data = ConfigurationStore().load(
        {
            "configurations": [
                {"configName": "Square", "trialType": direction, "rewardPositions": [p.to_dict() for p in (A, B, C, D)]}
            ],
            "trialsPerConfig": reps,
        }
    )
    ctx = build_context(clock=clock, configurations=data, reveal=reveal, event_log=log, wall_time=clock.now)
    lifecycle = TrialLifecycle(ctx)
    lifecycle.load_configuration(0)
    lifecycle.start_trial(Position3D(0.0, 0.0, -10.0))
    return clock, ctx, lifecycle.gate, log, reveal


def _commit(gate: SequenceGate, clock: FakeClock, position: Position3D):
    clock.advance(0.5)
    return gate.evaluate(position, clock.now())


def test_strict_sequence_only_advances_on_the_due_reward() -> None:
    clock, ctx, gate, _log, reveal = _setup()
    assert gate.mode is GateMode.STRICT_SEQUENCE
    assert gate.state is GateState.AWAITING_COMMIT

    miss = _commit(gate, clock, B)
    assert miss.outcome is EvaluationOutcome.MISS
    assert miss.target_label == "A"
    assert miss.distance == pytest.approx(10.0)
    assert ctx.state.next_expected_index == 0
    assert reveal.visible == frozenset()

    expected = 0
    for pos, label in ((A, "A"), (B, "B"), (C, "C")):
        res = _commit(gate, clock, pos)
        expected += 1
        assert res.hit
        assert res.target_label == label
        assert ctx.state.next_expected_index == expected
        assert ctx.state.last_revealed_index == expected - 1

    assert reveal.visible == frozenset({0, 1, 2})


def test_fourth_hit_completes_the_trial_and_later_commits_are_terminal() -> None:
    clock, ctx, gate, _log, _reveal = _setup(reps=2)

    results = [_commit(gate, clock, p) for p in (A, B, C, D)]

    assert [r.repetition_complete for r in results] == [False, False, False, True]
    assert ctx.state.trial_complete
    assert ctx.state.repetitions_completed == 1
    assert gate.state is GateState.RESOLVED

    after = _commit(gate, clock, A)
    assert after.outcome is EvaluationOutcome.REJECTED_TERMINAL
    assert ctx.state.next_expected_index == 4


def test_backward_configuration_expects_the_last_reward_first() -> None:
    clock, ctx, gate, _log, _reveal = _setup(direction="backw")

    assert gate.due_index() == 3
    assert _commit(gate, clock, A).outcome is EvaluationOutcome.MISS
    res = _commit(gate, clock, D)
    assert res.hit
    assert res.target_label == "D"
    assert gate.due_index() == 2
    assert ctx.state.next_expected_index == 1


def test_acceptance_box_boundary_counts_as_a_hit() -> None:
    clock, ctx, gate, _log, _reveal = _setup()
    box = ctx.state.acceptance
    assert box is not None
    assert box.half_x == pytest.approx(4.5)

    outside = _commit(gate, clock, Position3D(A.x + box.half_x + 1e-6, 0.0, A.z))
    assert outside.outcome is EvaluationOutcome.MISS

    edge = _commit(gate, clock, Position3D(A.x + box.half_x, 0.0, A.z - box.half_z))
    assert edge.hit
    assert edge.dx == pytest.approx(box.half_x)


def test_probe_consumes_target_and_never_moves_the_sequence() -> None:
    clock, ctx, gate, log, reveal = _setup()

    gate.arm_probe(2)
    assert gate.mode is GateMode.SINGLE_PROBE
    hit = _commit(gate, clock, C)
    assert hit.hit
    assert hit.mode is GateMode.SINGLE_PROBE
    assert ctx.state.instruction_target_index is None
    assert ctx.state.next_expected_index == 0
    assert reveal.is_visible(2)
    assert log.events(TaskEventKind.REWARD) == []

    gate.arm_probe(1)
    miss = _commit(gate, clock, C)
    assert miss.outcome is EvaluationOutcome.MISS
    assert ctx.state.instruction_target_index is None
    assert ctx.state.next_expected_index == 0

    # Target consumed: the next commit is judged in strict-sequence mode again.
    back = _commit(gate, clock, A)
    assert back.mode is GateMode.STRICT_SEQUENCE
    assert back.hit


def test_invalid_probe_target_is_rejected_without_state_change() -> None:
    clock, ctx, gate, _log, reveal = _setup()

    gate.arm_probe(9)
    res = _commit(gate, clock, A)

    assert res.outcome is EvaluationOutcome.REJECTED_INVALID_TARGET
    assert ctx.state.instruction_target_index is None
    assert ctx.state.next_expected_index == 0
    assert reveal.visible == frozenset()


def test_debounce_allows_a_single_mutation_per_window() -> None:
    clock, ctx, gate, log, _reveal = _setup()
    clock.t = 1.0

    first = gate.evaluate(A, 1.0)
    second = gate.evaluate(B, 1.1)
    third = gate.evaluate(B, 1.25)

    assert first.hit
    assert second.outcome is EvaluationOutcome.DEBOUNCED
    assert third.hit
    assert ctx.state.next_expected_index == 2
    # Debounced presses are not logged.
    assert len(log.events(TaskEventKind.KEY_PRESS)) == 2


def test_commit_before_any_configuration_is_terminal() -> None:
    clock = FakeClock()
    data = ConfigurationStore().load(
        {"configurations": [{"rewardPositions": [A.to_dict()]}], "trialsPerConfig": 1}
    )
    ctx = build_context(clock=clock, configurations=data)
    gate = SequenceGate(ctx)

    assert gate.state is GateState.IDLE
    assert gate.evaluate(A, 0.0).outcome is EvaluationOutcome.REJECTED_TERMINAL


def test_events_follow_the_press_then_outcome_order() -> None:
    clock, _ctx, gate, log, _reveal = _setup()

    _commit(gate, clock, C)
    _commit(gate, clock, A)

    kinds = [e.kind for e in log.events()]
    assert kinds == [
        TaskEventKind.TRIAL_START,
        TaskEventKind.KEY_PRESS,
        TaskEventKind.SPACE_MISS,
        TaskEventKind.KEY_PRESS,
        TaskEventKind.REWARD,
    ]
    miss = log.events(TaskEventKind.SPACE_MISS)[0].to_dict()
    assert miss["expected_letter"] == "A"
    reward = log.events(TaskEventKind.REWARD)[0].to_dict()
    assert reward["reward_letter"] == "A"
    assert reward["reward_x"] == pytest.approx(0.0)
    assert reward["t_trial"] == pytest.approx(1.0)


def test_leaving_the_square_hides_the_last_uncovered_reward() -> None:
    clock, ctx, gate, _log, reveal = _setup()
    _commit(gate, clock, A)
    assert reveal.is_visible(0)

    assert gate.on_position_changed(Position3D(2.0, 0.0, 2.0)) is False
    assert reveal.is_visible(0)

    assert gate.on_position_changed(Position3D(6.0, 0.0, 0.0)) is True
    assert not reveal.is_visible(0)
    assert ctx.state.last_revealed_index is None
    assert gate.on_position_changed(Position3D(20.0, 0.0, 0.0)) is False
