from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from .grid import Position3D
from .settings import TaskSettings

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """The configuration source cannot produce a usable configuration set."""


class ConfigurationIndexError(ConfigurationError, IndexError):
    pass


class SequenceDirection(StrEnum):
    FORWARD = "forward"
    BACKWARD = "backward"

    @classmethod
    def parse(cls, raw: object) -> "SequenceDirection":
        token = "" if raw is None else str(raw).strip().lower()
        if token in ("", "forw", "forward", "fwd"):
            return cls.FORWARD
        if token in ("backw", "backward", "bwd"):
            return cls.BACKWARD
        raise ConfigurationError(f"unknown sequence direction {raw!r}")


def reward_letter(index: int) -> str:
    return chr(ord("A") + int(index))


@dataclass(frozen=True, slots=True)
class Configuration:
    name: str
    sequence_direction: SequenceDirection
    reward_positions: tuple[Position3D, ...]

    @property
    def reward_count(self) -> int:
        return len(self.reward_positions)

    def labels(self) -> tuple[str, ...]:
        return tuple(reward_letter(i) for i in range(self.reward_count))

    def uncover_order(self) -> tuple[int, ...]:
        """Reward indices in the order they are shown and must be uncovered."""

        forward = tuple(range(self.reward_count))
        if self.sequence_direction is SequenceDirection.BACKWARD:
            return tuple(reversed(forward))
        return forward

    def sequence_label(self) -> str:
        return "-".join(reward_letter(i) for i in self.uncover_order())


@dataclass(frozen=True, slots=True)
class ConfigurationSet:
    configurations: tuple[Configuration, ...]
    repetitions_per_configuration: int
    settings: Mapping[str, object] | None = None  # raw overrides, see TaskSettings.from_dict
    start_position: Position3D = Position3D(0.0, 0.0, 0.0)

    def __len__(self) -> int:
        return len(self.configurations)


def _first_present(item: Mapping[str, object], *keys: str) -> object | None:
    for key in keys:
        if key in item:
            return item[key]
    return None


def _parse_configuration(index: int, item: object) -> Configuration:
    if not isinstance(item, Mapping):
        raise ConfigurationError(f"configuration {index} must be an object")

    name_raw = _first_present(item, "configName", "name")
    name = str(name_raw).strip() if name_raw is not None else ""
    if name == "":
        name = f"Config {index}"

    direction = SequenceDirection.parse(_first_present(item, "trialType", "direction", "sequenceDirection"))

    raw_positions = _first_present(item, "rewardPositions", "positions")
    if raw_positions is None:
        raise ConfigurationError(f"configuration {index} ({name}) has no rewardPositions")
    if not isinstance(raw_positions, list):
        raise ConfigurationError(f"configuration {index} ({name}): rewardPositions must be a list")
    if not raw_positions:
        raise ConfigurationError(f"configuration {index} ({name}): rewardPositions is empty")
    if len(raw_positions) > 26:
        raise ConfigurationError(f"configuration {index} ({name}): at most 26 rewards can be labelled")

    positions: list[Position3D] = []
    for pos_idx, raw in enumerate(raw_positions):
        try:
            positions.append(Position3D.from_dict(raw))
        except TypeError as exc:
            raise ConfigurationError(
                f"configuration {index} ({name}), reward {reward_letter(pos_idx)}: {exc}"
            ) from None

    return Configuration(name=name, sequence_direction=direction, reward_positions=tuple(positions))


class ConfigurationStore:
    """Parses the task configuration source and hands out configurations by index.

    Accepts the experiment's JSON layout::

        {"configurations": [{"configName": "Config 1", "trialType": "forw",
                             "rewardPositions": [{"x": 0, "y": 0.5, "z": 0}, ...]}],
         "trialsPerConfig": 3}

    as well as the snake_case aliases ``name``, ``direction``, ``positions`` and
    ``repetitions_per_configuration``.
    """

    def __init__(self) -> None:
        self._data: ConfigurationSet | None = None

    @property
    def loaded(self) -> bool:
        return self._data is not None

    @property
    def data(self) -> ConfigurationSet:
        if self._data is None:
            raise ConfigurationError("no configuration set has been loaded")
        return self._data

    def load(self, raw: str | bytes | Mapping[str, object]) -> ConfigurationSet:
        """Parse ``raw`` (JSON text or an already decoded mapping).

        Raises ConfigurationError on any defect; a failed load leaves the
        previously loaded set untouched.
        """

        payload: object
        if isinstance(raw, (str, bytes)):
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"configuration source is not valid JSON: {exc}") from None
        else:
            payload = raw

        if not isinstance(payload, Mapping):
            raise ConfigurationError("configuration source must be a JSON object")

        raw_configs = payload.get("configurations")
        if not isinstance(raw_configs, list) or not raw_configs:
            raise ConfigurationError("configuration source has no configurations")

        reps_raw = _first_present(payload, "trialsPerConfig", "repetitions_per_configuration", "repetitionsPerConfiguration")
        if reps_raw is None:
            raise ConfigurationError("configuration source is missing trialsPerConfig")
        if isinstance(reps_raw, bool):
            raise ConfigurationError("trialsPerConfig must be an integer")
        try:
            reps = int(reps_raw)
        except (TypeError, ValueError, OverflowError):
            raise ConfigurationError("trialsPerConfig must be an integer") from None
        if reps < 1 or reps != reps_raw:
            raise ConfigurationError("trialsPerConfig must be an integer >= 1")

        configs = tuple(_parse_configuration(i, item) for i, item in enumerate(raw_configs))

        settings = payload.get("settings")
        if settings is not None and not isinstance(settings, Mapping):
            raise ConfigurationError("settings must be an object")
        if settings is not None:
            try:
                TaskSettings.from_dict(settings).validate()
            except ValueError as exc:
                raise ConfigurationError(f"settings: {exc}") from None

        start_raw = _first_present(payload, "startPosition", "start_position")
        start = Position3D(0.0, 0.0, 0.0)
        if start_raw is not None:
            try:
                start = Position3D.from_dict(start_raw)
            except TypeError as exc:
                raise ConfigurationError(f"startPosition: {exc}") from None

        data = ConfigurationSet(
            configurations=configs,
            repetitions_per_configuration=reps,
            settings=settings,
            start_position=start,
        )
        self._data = data
        logger.info("Loaded %d configurations (%d repetitions each)", len(configs), reps)
        return data

    def load_file(self, path: Path) -> ConfigurationSet:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"cannot read configuration file {path}: {exc}") from None
        return self.load(text)

    def get(self, index: int) -> Configuration:
        data = self.data
        if index < 0 or index >= len(data.configurations):
            raise ConfigurationIndexError(
                f"configuration index {index} out of range (0..{len(data.configurations) - 1})"
            )
        return data.configurations[index]

    def __len__(self) -> int:
        return 0 if self._data is None else len(self._data.configurations)
