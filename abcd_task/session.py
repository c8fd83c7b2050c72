from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .clock import Clock
from .configuration import ConfigurationSet, ConfigurationStore
from .context import ExperimentContext, RevealSink, build_context
from .events import EventLogSink, JsonLinesEventLog, ParticipantInfo
from .flow import ExperimentFlow
from .instruction import InstructionPhaseEngine
from .persistence import SqliteEventLog
from .task import AbcdTaskEngine

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "ABCD_CONFIG_PATH"
EVENT_LOG_PATH_ENV = "ABCD_EVENT_LOG_PATH"
PARTICIPANT_INFO_ENV = "ABCD_PARTICIPANT_INFO"

_SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")

# Four rewards on one row of the 10.3 arena grid, walked A-B-C-D then D-C-B-A.
DEFAULT_CONFIGURATION: dict[str, Any] = {
    "trialsPerConfig": 2,
    "startPosition": {"x": 0.0, "y": 0.0, "z": -20.6},
    "configurations": [
        {
            "configName": "Config 1",
            "trialType": "forw",
            "rewardPositions": [
                {"x": -10.3, "y": 0.5, "z": 0.0},
                {"x": 0.0, "y": 0.5, "z": 10.3},
                {"x": 10.3, "y": 0.5, "z": 0.0},
                {"x": 0.0, "y": 0.5, "z": -10.3},
            ],
        },
        {
            "configName": "Config 2",
            "trialType": "backw",
            "rewardPositions": [
                {"x": -20.6, "y": 0.5, "z": 10.3},
                {"x": 10.3, "y": 0.5, "z": 20.6},
                {"x": 20.6, "y": 0.5, "z": -10.3},
                {"x": -10.3, "y": 0.5, "z": -20.6},
            ],
        },
    ],
}


def default_config_path() -> Path | None:
    explicit = os.environ.get(CONFIG_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return None


def default_event_log_path() -> Path | None:
    explicit = os.environ.get(EVENT_LOG_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return None


def participant_from_env() -> ParticipantInfo:
    return ParticipantInfo.parse(os.environ.get(PARTICIPANT_INFO_ENV))


def load_configurations(path: Path | None = None) -> ConfigurationSet:
    """Load the configuration file, or the built-in layout when no path is given."""

    store = ConfigurationStore()
    if path is None:
        return store.load(DEFAULT_CONFIGURATION)
    return store.load_file(path)


def open_event_log(path: Path | None, *, participant: ParticipantInfo) -> EventLogSink | None:
    if path is None:
        return None
    if path.suffix.lower() in _SQLITE_SUFFIXES:
        logger.info("Writing events to sqlite database %s", path)
        return SqliteEventLog(path, participant=participant)
    logger.info("Writing events to %s", path)
    return JsonLinesEventLog(path)


@dataclass(slots=True)
class Session:
    context: ExperimentContext
    flow: ExperimentFlow
    instruction: InstructionPhaseEngine
    task: AbcdTaskEngine
    event_log: EventLogSink | None = None

    def close(self) -> None:
        if isinstance(self.event_log, SqliteEventLog):
            self.event_log.close()


def build_session(
    *,
    clock: Clock,
    configurations: ConfigurationSet | None = None,
    config_path: Path | None = None,
    event_log_path: Path | None = None,
    participant: ParticipantInfo | None = None,
    reveal: RevealSink | None = None,
    seed: int | None = None,
) -> Session:
    """Wire up one experiment session.

    Explicit arguments win over the ``ABCD_*`` environment variables.
    """

    data = configurations or load_configurations(config_path or default_config_path())
    who = participant or participant_from_env()
    sink = open_event_log(event_log_path or default_event_log_path(), participant=who)
    flow = ExperimentFlow()
    ctx = build_context(
        clock=clock,
        configurations=data,
        participant=who,
        reveal=reveal,
        event_log=sink,
        transitions=flow,
    )
    probe_seed = random.SystemRandom().randint(1, 2**31 - 1) if seed is None else int(seed)
    logger.info("Session for participant %s (study %s)", who.participant_id, who.study_id)
    return Session(
        context=ctx,
        flow=flow,
        instruction=InstructionPhaseEngine(ctx, seed=probe_seed),
        task=AbcdTaskEngine(ctx),
        event_log=sink,
    )
