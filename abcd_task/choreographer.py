from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from .configuration import Configuration, reward_letter
from .context import ExperimentContext
from .sequence_gate import SequenceGate

logger = logging.getLogger(__name__)


class CadenceStep(StrEnum):
    IDLE = "idle"
    MEMORIZE_SHOW = "memorize_show"
    MEMORIZE_GAP = "memorize_gap"
    SEQUENCE_GAP = "sequence_gap"
    PRE_DROP = "pre_drop"
    PROBE_SHOW = "probe_show"
    PROBE_PAUSE = "probe_pause"
    TRANSITION = "transition"
    AWAIT_COMMIT = "await_commit"
    FEEDBACK = "feedback"
    EXIT_HOLD = "exit_hold"
    INTER_TRIAL = "inter_trial"


@dataclass(frozen=True, slots=True)
class _Step:
    kind: CadenceStep
    duration_s: float | None  # None: open ended, only left by an explicit call
    reward_index: int | None = None


@dataclass(frozen=True, slots=True)
class CompletedStep:
    kind: CadenceStep
    reward_index: int | None
    timed_out: bool = False
    ended_at_s: float | None = None  # the deadline that closed the step


class PhaseChoreographer:
    """Timed reveal/hide cadence driven by ``update()`` ticks.

    A plan is a list of steps, each with its own duration. Deadlines chain
    from the previous deadline rather than from the tick that noticed it, so
    coarse or irregular ticks still produce the exact cadence, and a repeated
    tick at the same instant never completes a step twice. Follow-up plans
    started from a completed step (``start_probe`` and ``hold``) take the
    step's ``ended_at_s`` as ``start_s`` to keep the chain.
    """

    def __init__(self, context: ExperimentContext, gate: SequenceGate) -> None:
        self._ctx = context
        self._gate = gate
        self._plan: list[_Step] = []
        self._current: _Step = _Step(CadenceStep.IDLE, None)
        self._deadline_s: float | None = None
        self._last_outcome: bool | None = None

    @property
    def step(self) -> CadenceStep:
        return self._current.kind

    @property
    def reward_index(self) -> int | None:
        return self._current.reward_index

    @property
    def last_outcome(self) -> bool | None:
        return self._last_outcome

    @property
    def awaiting_commit(self) -> bool:
        return self._current.kind is CadenceStep.AWAIT_COMMIT

    def time_remaining_s(self) -> float | None:
        if self._deadline_s is None:
            return None
        return max(0.0, self._deadline_s - self._ctx.clock.now())

    def start_memorization(self, configuration: Configuration) -> None:
        """Show the whole sequence, then hand control to the participant.

        Ends in an open AWAIT_COMMIT step; the sequence gate decides when the
        repetition is over.
        """

        mem = self._ctx.settings.memorization
        order = configuration.uncover_order()
        plan: list[_Step] = []
        for rep in range(mem.repetitions):
            for idx in order:
                plan.append(_Step(CadenceStep.MEMORIZE_SHOW, mem.reward_display_s, idx))
                plan.append(_Step(CadenceStep.MEMORIZE_GAP, mem.pause_between_rewards_s, idx))
            if rep < mem.repetitions - 1:
                plan.append(_Step(CadenceStep.SEQUENCE_GAP, mem.pause_between_sequences_s))
        plan.append(_Step(CadenceStep.PRE_DROP, mem.pause_before_drop_s))
        plan.append(_Step(CadenceStep.TRANSITION, mem.transition_s))
        plan.append(_Step(CadenceStep.AWAIT_COMMIT, None))

        self._ctx.reveal.hide_all()
        logger.info("Memorizing %s: %s x%d", configuration.name, configuration.sequence_label(), mem.repetitions)
        self._run_plan(plan)

    def start_probe(self, index: int, *, start_s: float | None = None) -> None:
        """Show one reward from the overview, hide it, then wait for a single commit."""

        ins = self._ctx.settings.instruction
        plan = [
            _Step(CadenceStep.PROBE_SHOW, ins.display_s, index),
            _Step(CadenceStep.PROBE_PAUSE, ins.pause_after_hide_s, index),
            _Step(CadenceStep.TRANSITION, ins.transition_s, index),
            _Step(CadenceStep.AWAIT_COMMIT, ins.response_timeout_s, index),
        ]
        self._ctx.reveal.hide_all()
        self._last_outcome = None
        logger.info("Probe trial start - target reward %s", reward_letter(index))
        self._run_plan(plan, start_s)

    def resolve_commit(self, hit: bool) -> bool:
        """Leave AWAIT_COMMIT with an outcome and hold it for feedback.

        Returns False (and does nothing) when no commit is being awaited.
        """

        if not self.awaiting_commit:
            return False
        idx = self._current.reward_index
        self._last_outcome = bool(hit)
        self._run_plan([_Step(CadenceStep.FEEDBACK, self._ctx.settings.instruction.feedback_s, idx)])
        return True

    def hold(self, kind: CadenceStep, duration_s: float, *, start_s: float | None = None) -> None:
        if kind not in (CadenceStep.EXIT_HOLD, CadenceStep.INTER_TRIAL):
            raise ValueError(f"{kind} is not a hold step")
        self._run_plan([_Step(kind, duration_s)], start_s)

    def stop(self) -> None:
        self._plan = []
        self._current = _Step(CadenceStep.IDLE, None)
        self._deadline_s = None

    def update(self) -> list[CompletedStep]:
        """Complete every step whose deadline has passed, in order."""

        now = self._ctx.clock.now()
        done: list[CompletedStep] = []
        while self._deadline_s is not None and now >= self._deadline_s:
            finished = self._current
            timed_out = finished.kind is CadenceStep.AWAIT_COMMIT
            self._exit(finished)
            done.append(
                CompletedStep(
                    kind=finished.kind,
                    reward_index=finished.reward_index,
                    timed_out=timed_out,
                    ended_at_s=self._deadline_s,
                )
            )
            if timed_out:
                logger.info("Timeout - treating as incorrect")
                self._last_outcome = False
                self._plan.insert(
                    0,
                    _Step(CadenceStep.FEEDBACK, self._ctx.settings.instruction.feedback_s, finished.reward_index),
                )
            self._advance(self._deadline_s)
        return done

    def _run_plan(self, plan: list[_Step], start_s: float | None = None) -> None:
        self._exit(self._current)
        self._plan = list(plan)
        self._advance(self._ctx.clock.now() if start_s is None else start_s)

    def _advance(self, start_s: float) -> None:
        if not self._plan:
            self._current = _Step(CadenceStep.IDLE, None)
            self._deadline_s = None
            return
        step = self._plan.pop(0)
        self._current = step
        self._deadline_s = None if step.duration_s is None else start_s + step.duration_s
        self._enter(step)

    def _enter(self, step: _Step) -> None:
        reveal = self._ctx.reveal
        if step.kind in (CadenceStep.MEMORIZE_SHOW, CadenceStep.PROBE_SHOW) and step.reward_index is not None:
            reveal.show_reward(step.reward_index)
        elif step.kind is CadenceStep.PROBE_PAUSE and step.reward_index is not None:
            self._gate.arm_probe(step.reward_index)

    def _exit(self, step: _Step) -> None:
        if step.kind in (CadenceStep.MEMORIZE_SHOW, CadenceStep.PROBE_SHOW) and step.reward_index is not None:
            self._ctx.reveal.hide_reward(step.reward_index)
        elif step.kind is CadenceStep.AWAIT_COMMIT and step.duration_s is not None:
            # A probe left unanswered must not stay armed for a later commit.
            self._gate.disarm_probe()
