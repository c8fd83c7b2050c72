from __future__ import annotations

import json
from pathlib import Path

import pytest

from abcd_task.configuration import (
    ConfigurationError,
    ConfigurationIndexError,
    ConfigurationStore,
    SequenceDirection,
)
from abcd_task.grid import Position3D
from abcd_task.settings import TaskSettings

SQUARE = [
    {"x": 0, "y": 0.5, "z": 0},
    {"x": 10, "y": 0.5, "z": 0},
    {"x": 10, "y": 0.5, "z": 10},
    {"x": 0, "y": 0.5, "z": 10},
]


def _source(**overrides: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "configurations": [
            {"configName": "Config 1", "trialType": "forw", "rewardPositions": SQUARE},
            {"configName": "Config 2", "trialType": "backw", "rewardPositions": SQUARE[:3]},
        ],
        "trialsPerConfig": 3,
    }
    raw.update(overrides)
    return raw


def test_load_json_text_in_experiment_layout() -> None:
    store = ConfigurationStore()
    data = store.load(json.dumps(_source()))

    assert store.loaded
    assert len(store) == 2
    assert data.repetitions_per_configuration == 3
    assert data.start_position == Position3D(0.0, 0.0, 0.0)

    first = store.get(0)
    assert first.name == "Config 1"
    assert first.sequence_direction is SequenceDirection.FORWARD
    assert first.reward_positions[2] == Position3D(10.0, 0.5, 10.0)
    assert first.labels() == ("A", "B", "C", "D")
    assert first.uncover_order() == (0, 1, 2, 3)
    assert first.sequence_label() == "A-B-C-D"


def test_backward_configuration_reverses_uncover_order() -> None:
    store = ConfigurationStore()
    store.load(_source())

    second = store.get(1)
    assert second.sequence_direction is SequenceDirection.BACKWARD
    assert second.reward_count == 3
    assert second.uncover_order() == (2, 1, 0)
    assert second.sequence_label() == "C-B-A"


def test_snake_case_aliases_and_default_name() -> None:
    store = ConfigurationStore()
    store.load(
        {
            "configurations": [{"direction": "backward", "positions": SQUARE}],
            "repetitions_per_configuration": 1,
            "start_position": {"x": 5, "z": -5},
        }
    )

    cfg = store.get(0)
    assert cfg.name == "Config 0"
    assert cfg.sequence_direction is SequenceDirection.BACKWARD
    assert store.data.start_position == Position3D(5.0, 0.0, -5.0)


def test_missing_direction_defaults_to_forward() -> None:
    assert SequenceDirection.parse(None) is SequenceDirection.FORWARD
    assert SequenceDirection.parse(" FWD ") is SequenceDirection.FORWARD
    assert SequenceDirection.parse("bwd") is SequenceDirection.BACKWARD
    with pytest.raises(ConfigurationError):
        SequenceDirection.parse("sideways")


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2]",
        {"trialsPerConfig": 1},
        {"configurations": [], "trialsPerConfig": 1},
        _source(trialsPerConfig=0),
        _source(trialsPerConfig=True),
        _source(trialsPerConfig=1.5),
        _source(trialsPerConfig="3"),
        {"configurations": [{"configName": "x", "rewardPositions": SQUARE}]},
        {"configurations": [{"configName": "x"}], "trialsPerConfig": 1},
        {"configurations": [{"configName": "x", "rewardPositions": []}], "trialsPerConfig": 1},
        {"configurations": [{"configName": "x", "rewardPositions": {"x": 0}}], "trialsPerConfig": 1},
        {"configurations": [{"rewardPositions": [{"x": "a", "z": 0}]}], "trialsPerConfig": 1},
        {"configurations": [{"rewardPositions": SQUARE, "trialType": "up"}], "trialsPerConfig": 1},
        {"configurations": ["Config 1"], "trialsPerConfig": 1},
        _source(settings=[1, 2]),
        _source(startPosition={"x": 1}),
        '{"configurations": [{"rewardPositions": [{"x": 0, "z": 0}, {"x": Infinity, "z": 0}]}], "trialsPerConfig": 1}',
        {"configurations": [{"rewardPositions": [{"x": 0, "z": 0}, {"x": float("nan"), "z": 10}]}], "trialsPerConfig": 1},
        _source(startPosition={"x": 0, "y": float("-inf"), "z": 0}),
        _source(trialsPerConfig=float("inf")),
        _source(settings={"settle_delay_s": "soon"}),
        _source(settings={"debounce_s": float("nan")}),
        _source(settings={"instruction": {"required_streak": 2.5}}),
        _source(settings={"grid": 3}),
    ],
)
def test_malformed_sources_raise_configuration_error(raw: object) -> None:
    with pytest.raises(ConfigurationError):
        ConfigurationStore().load(raw)  # type: ignore[arg-type]


def test_failed_load_keeps_previous_set() -> None:
    store = ConfigurationStore()
    store.load(_source())

    with pytest.raises(ConfigurationError):
        store.load({"configurations": []})

    assert len(store) == 2
    assert store.get(0).name == "Config 1"


def test_index_errors_and_unloaded_store() -> None:
    store = ConfigurationStore()
    assert not store.loaded
    assert len(store) == 0
    with pytest.raises(ConfigurationError):
        store.get(0)

    store.load(_source())
    with pytest.raises(ConfigurationIndexError):
        store.get(2)
    with pytest.raises(IndexError):
        store.get(-1)


def test_load_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(_source(trialsPerConfig=2)), encoding="utf-8")

    data = ConfigurationStore().load_file(path)
    assert data.repetitions_per_configuration == 2

    with pytest.raises(ConfigurationError):
        ConfigurationStore().load_file(tmp_path / "missing.json")


def test_settings_block_overrides_defaults() -> None:
    data = ConfigurationStore().load(
        _source(
            settings={
                "debounce_s": 0.5,
                "unknown": 1,
                "grid": {"tolerance_fraction": 0.3},
                "instruction": {"required_streak": 5.0, "response_timeout_s": 10},
                "memorization": {"repetitions": 1},
            }
        )
    )

    settings = TaskSettings.from_dict(data.settings)
    settings.validate()

    assert settings.debounce_s == pytest.approx(0.5)
    assert settings.settle_delay_s == pytest.approx(2.0)
    assert settings.grid.tolerance_fraction == pytest.approx(0.3)
    assert settings.instruction.required_streak == 5
    assert isinstance(settings.instruction.required_streak, int)
    assert settings.instruction.response_timeout_s == pytest.approx(10.0)
    assert settings.memorization.repetitions == 1


def test_settings_validation_rejects_bad_values() -> None:
    with pytest.raises(ValueError):
        TaskSettings.from_dict({"instruction": {"required_streak": 0}}).validate()
    with pytest.raises(ValueError):
        TaskSettings.from_dict({"debounce_s": -1}).validate()
    with pytest.raises(ValueError):
        TaskSettings.from_dict({"memorization": {"reward_display_s": -0.5}}).validate()


def test_settings_reject_wrong_types_instead_of_keeping_defaults() -> None:
    with pytest.raises(ValueError, match="settle_delay_s"):
        TaskSettings.from_dict({"settle_delay_s": "soon"})
    with pytest.raises(ValueError, match="move_speed"):
        TaskSettings.from_dict({"move_speed": True})
    with pytest.raises(ValueError, match="whole number"):
        TaskSettings.from_dict({"instruction": {"required_streak": 2.5}})
    with pytest.raises(ValueError):
        TaskSettings.from_dict({"memorization": [1]})


def test_settings_reject_non_finite_timings() -> None:
    with pytest.raises(ValueError, match="finite"):
        TaskSettings.from_dict({"debounce_s": float("nan")})
    with pytest.raises(ValueError, match="finite"):
        TaskSettings.from_dict({"instruction": {"response_timeout_s": float("inf")}})
    with pytest.raises(ValueError, match="finite"):
        TaskSettings(debounce_s=float("nan")).validate()
    with pytest.raises(ValueError, match="finite"):
        TaskSettings(settle_delay_s=float("inf")).validate()


def test_position_rejects_non_finite_coordinates() -> None:
    with pytest.raises(TypeError, match="finite"):
        Position3D.from_dict({"x": float("inf"), "z": 0})
    with pytest.raises(TypeError, match="finite"):
        Position3D.from_dict({"x": 0, "y": float("nan"), "z": 0})
    assert Position3D.from_dict({"x": 1, "z": 2}) == Position3D(1.0, 0.0, 2.0)
