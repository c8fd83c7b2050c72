from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import pytest

from abcd_task.choreographer import CadenceStep
from abcd_task.configuration import ConfigurationStore
from abcd_task.context import ExperimentContext, build_context
from abcd_task.events import JsonLinesEventLog, MemoryEventLog, ParticipantInfo, TaskEventKind
from abcd_task.flow import ExperimentFlow, Stage
from abcd_task.grid import Position3D
from abcd_task.sequence_gate import EvaluationOutcome
from abcd_task.task import AbcdTaskEngine
from abcd_task.task_core import TaskPhase


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


SQUARE = [
    Position3D(0.0, 0.5, 0.0),
    Position3D(10.0, 0.5, 0.0),
    Position3D(10.0, 0.5, 10.0),
    Position3D(0.0, 0.5, 10.0),
]


def _build(
    *,
    reps: int,
    directions: tuple[str, ...] = ("forw",),
    event_log: object | None = None,
) -> tuple[FakeClock, ExperimentContext, AbcdTaskEngine, ExperimentFlow]:
    clock = FakeClock()
    flow = ExperimentFlow()
    flow.go_to(Stage.FREE_MOVEMENT)
    data = ConfigurationStore().load(
        {
            "configurations": [
                {
                    "configName": f"Config {i + 1}",
                    "trialType": direction,
                    "rewardPositions": [p.to_dict() for p in SQUARE],
                }
                for i, direction in enumerate(directions)
            ],
            "trialsPerConfig": reps,
            "startPosition": {"x": 5, "z": -10},
        }
    )
    ctx = build_context(
        clock=clock,
        configurations=data,
        participant=ParticipantInfo.parse("P01|STUDY|S1"),
        event_log=event_log,  # type: ignore[arg-type]
        transitions=flow,
        wall_time=clock.now,
    )
    return clock, ctx, AbcdTaskEngine(ctx), flow


def _skip_overview(engine: AbcdTaskEngine, clock: FakeClock) -> None:
    clock.advance(60.0)
    engine.update()
    assert engine.controls_enabled
    assert engine.phase is TaskPhase.RESPONDING


def _walk_and_commit(engine: AbcdTaskEngine, clock: FakeClock, target: Position3D):
    clock.advance(1.0)
    engine.move_to(target)
    return engine.commit()


def test_single_repetition_completes_after_the_fourth_reward() -> None:
    log = MemoryEventLog()
    clock, ctx, engine, flow = _build(reps=1, event_log=log)

    assert engine.phase is TaskPhase.NOT_STARTED
    engine.start()
    assert engine.phase is TaskPhase.OVERVIEW
    assert engine.choreographer.step is CadenceStep.MEMORIZE_SHOW
    assert engine.participant == Position3D(5.0, 0.0, -10.0)

    # No control during the overview.
    engine.move_to(SQUARE[0])
    assert engine.commit() is None
    assert engine.participant == Position3D(5.0, 0.0, -10.0)

    _skip_overview(engine, clock)

    results = [_walk_and_commit(engine, clock, p) for p in SQUARE]
    assert all(r is not None and r.hit for r in results)
    assert [r.repetition_complete for r in results if r is not None] == [False, False, False, True]

    assert ctx.state.trial_complete
    assert ctx.state.experiment_complete
    assert engine.phase is TaskPhase.COMPLETE
    assert not engine.controls_enabled
    assert flow.stage is Stage.ENDING

    summary = engine.summary()
    assert summary.configurations_completed == 1
    assert summary.repetitions_completed == 1
    assert summary.rewards_found == 4
    assert summary.misses == 0
    assert summary.accuracy == pytest.approx(1.0)
    assert summary.mean_find_time_s == pytest.approx(1.0)
    assert flow.points == 4

    assert len(log.events(TaskEventKind.TRIAL_START)) == 1
    assert len(log.events(TaskEventKind.REWARD)) == 4
    assert len(log.events(TaskEventKind.EXPERIMENT_COMPLETE)) == 1
    # Start -> A, A -> B, B -> C, C -> D.
    assert len(log.events(TaskEventKind.MOVEMENT)) == 4


def test_misses_and_debounce_do_not_advance_the_sequence() -> None:
    clock, ctx, engine, _flow = _build(reps=2)
    engine.start()
    _skip_overview(engine, clock)

    miss = _walk_and_commit(engine, clock, SQUARE[2])
    assert miss is not None and miss.outcome is EvaluationOutcome.MISS

    hit = _walk_and_commit(engine, clock, SQUARE[0])
    assert hit is not None and hit.hit
    bounced = engine.commit()
    assert bounced is not None and bounced.outcome is EvaluationOutcome.DEBOUNCED

    assert ctx.state.next_expected_index == 1
    summary = engine.summary()
    assert summary.commits == 2
    assert summary.misses == 1
    assert summary.accuracy == pytest.approx(0.5)


def test_multi_configuration_run_with_backward_second_configuration() -> None:
    log = MemoryEventLog()
    clock, ctx, engine, flow = _build(reps=2, directions=("forw", "backw"), event_log=log)
    engine.start()
    _skip_overview(engine, clock)

    for p in SQUARE:
        _walk_and_commit(engine, clock, p)
    assert engine.phase is TaskPhase.SETTLING
    assert ctx.state.repetitions_completed == 1

    clock.advance(2.0)
    engine.update()
    assert engine.phase is TaskPhase.RESPONDING
    assert ctx.state.next_expected_index == 0
    assert flow.repetitions_advanced == 1

    for p in SQUARE:
        _walk_and_commit(engine, clock, p)
    assert engine.lifecycle.pending is not None
    assert ctx.state.active_config_index == 1

    # A press while the finished configuration settles belongs to that configuration.
    clock.advance(0.5)
    late = engine.commit()
    assert late is not None and late.outcome is EvaluationOutcome.REJECTED_TERMINAL
    press = log.events(TaskEventKind.KEY_PRESS)[-1]
    assert (press.round, press.rep) == (0, 2)

    clock.advance(2.0)
    engine.update()
    # The next configuration opens with its own overview.
    assert engine.phase is TaskPhase.OVERVIEW
    assert engine.participant == Position3D(5.0, 0.0, -10.0)
    assert flow.configurations_advanced == 1

    _skip_overview(engine, clock)
    assert engine.current_prompt() == "Find the rewards in order: D -> C -> B -> A"

    wrong = _walk_and_commit(engine, clock, SQUARE[0])
    assert wrong is not None and wrong.outcome is EvaluationOutcome.MISS
    for _ in range(2):
        for p in reversed(SQUARE):
            res = _walk_and_commit(engine, clock, p)
            assert res is not None and res.hit
        clock.advance(2.0)
        engine.update()

    assert engine.phase is TaskPhase.COMPLETE
    assert flow.stage is Stage.ENDING
    summary = engine.summary()
    assert summary.configurations_completed == 2
    assert summary.repetitions_completed == 4
    assert summary.rewards_found == 16
    assert summary.misses == 1
    assert len(log.events(TaskEventKind.TRIAL_START)) == 4
    assert flow.points == 16

    rounds = {(e.round, e.rep) for e in log.events(TaskEventKind.REWARD)}
    assert rounds == {(0, 0), (0, 1), (1, 0), (1, 1)}


def test_event_log_export_as_json_lines(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    clock, _ctx, engine, _flow = _build(reps=1, event_log=JsonLinesEventLog(path))
    engine.start()
    _skip_overview(engine, clock)
    for p in SQUARE:
        _walk_and_commit(engine, clock, p)

    rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert rows[0]["event_type"] == "trial_start"
    assert rows[0]["participant"] == "P01"
    assert rows[0]["sequence"] == "A-B-C-D"
    assert rows[-1]["event_type"] == "experiment_complete"

    rewards = [r for r in rows if r["event_type"] == "reward"]
    assert [r["reward_letter"] for r in rewards] == ["A", "B", "C", "D"]
    assert rewards[1]["reward_x"] == pytest.approx(10.0)
    assert rewards[1]["t_trial"] == pytest.approx(2.0)
    assert all(r["moves_to_find"] == 1 for r in rewards)


def test_snapshot_reports_progress_for_the_ui() -> None:
    clock, _ctx, engine, _flow = _build(reps=3)
    engine.start()
    snap = engine.snapshot()
    assert snap.title == "ABCD Task"
    assert snap.visible_rewards == frozenset({0})
    assert snap.controls_enabled is False
    assert snap.half_x == pytest.approx(4.5)

    _skip_overview(engine, clock)
    _walk_and_commit(engine, clock, SQUARE[0])
    snap = engine.snapshot()
    assert snap.phase is TaskPhase.RESPONDING
    assert snap.visible_rewards == frozenset({0})
    assert snap.repetitions_per_configuration == 3
    assert snap.last_result is not None and snap.last_result.hit
