from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from .grid import Position3D

logger = logging.getLogger(__name__)


class TaskEventKind(StrEnum):
    TRIAL_START = "trial_start"
    KEY_PRESS = "key_press"
    MOVEMENT = "movement"
    REWARD = "reward"
    SPACE_MISS = "space_miss"
    PROBE_OUTCOME = "probe_outcome"
    EXPERIMENT_COMPLETE = "experiment_complete"


@dataclass(frozen=True, slots=True)
class ParticipantInfo:
    participant_id: str
    study_id: str
    session_id: str
    session: str = "001"

    @classmethod
    def unknown(cls) -> "ParticipantInfo":
        return cls("UNKNOWN_PARTICIPANT", "UNKNOWN_STUDY", "UNKNOWN_SESSION")

    @classmethod
    def parse(cls, raw: str | None) -> "ParticipantInfo":
        """Parse the ``PID|STUDY|SESSION`` string handed over by the host page."""

        if raw is None:
            return cls.unknown()
        parts = [p.strip() for p in str(raw).split("|")]
        if len(parts) < 3:
            return cls.unknown()
        fallback = cls.unknown()
        return cls(
            participant_id=parts[0] or fallback.participant_id,
            study_id=parts[1] or fallback.study_id,
            session_id=parts[2] or fallback.session_id,
        )


@dataclass(frozen=True, slots=True)
class TaskEvent:
    """One row of the exported trial log.

    ``round`` is the configuration index and ``rep`` the repetition within it,
    matching the column names the analysis scripts expect.
    """

    kind: TaskEventKind
    participant: ParticipantInfo
    date: str
    round: int
    rep: int
    t_global: float
    t_trial: float | None
    position: Position3D | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "event_type": str(self.kind),
            "participant": self.participant.participant_id,
            "study_id": self.participant.study_id,
            "session_id": self.participant.session_id,
            "session": self.participant.session,
            "date": self.date,
            "round": int(self.round),
            "rep": int(self.rep),
            "t_global": float(self.t_global),
            "t_trial": None if self.t_trial is None else float(self.t_trial),
        }
        if self.position is not None:
            out["loc_x"] = self.position.x
            out["loc_y"] = self.position.y
            out["loc_z"] = self.position.z
        for key, value in self.details.items():
            if isinstance(value, Position3D):
                out[f"{key}_x"] = value.x
                out[f"{key}_y"] = value.y
                out[f"{key}_z"] = value.z
            else:
                out[key] = value
        return out


class EventLogSink(Protocol):
    def record(self, event: TaskEvent) -> None: ...


class NullEventLog:
    """Used when no event log is attached."""

    def record(self, event: TaskEvent) -> None:
        _ = event


class MemoryEventLog:
    def __init__(self) -> None:
        self._events: list[TaskEvent] = []

    def record(self, event: TaskEvent) -> None:
        self._events.append(event)

    def events(self, kind: TaskEventKind | None = None) -> list[TaskEvent]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind is kind]

    def __len__(self) -> int:
        return len(self._events)


class JsonLinesEventLog:
    """Appends one JSON object per event; the export handed to the data host."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: TaskEvent) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(event.to_dict(), sort_keys=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")


class FanoutEventLog:
    def __init__(self, *sinks: EventLogSink) -> None:
        self._sinks = tuple(sinks)

    def record(self, event: TaskEvent) -> None:
        for sink in self._sinks:
            sink.record(event)


class GuardedEventLog:
    """Best-effort delivery: sink failures are reported, never propagated.

    The trial state machine is the source of truth; a broken log must not
    abort or roll back a state change that already happened.
    """

    def __init__(self, sink: EventLogSink) -> None:
        self._sink = sink
        self._failures = 0

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def sink(self) -> EventLogSink:
        return self._sink

    def record(self, event: TaskEvent) -> None:
        try:
            self._sink.record(event)
        except Exception:
            self._failures += 1
            logger.warning("Event log rejected %s event", event.kind, exc_info=True)
