"""Pygame UI shell for the ABCD spatial sequence task.

The session runs through four screens:
- Welcome
- Instruction phase (single-reward probes until the streak is reached)
- Free movement task (memorize, then uncover every reward in order)
- Ending

Deterministic timing/verification/state lives in abcd_task/* (core modules);
this module only reads input, ticks the engines and draws snapshots.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import pygame

from .choreographer import CadenceStep
from .clock import Clock, RealClock
from .configuration import reward_letter
from .events import ParticipantInfo
from .flow import Stage
from .grid import Position3D
from .sequence_gate import EvaluationResult
from .session import Session, build_session
from .task_core import TaskPhase, TaskSnapshot, step_towards

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

_BG = (10, 10, 14)
_TEXT = (235, 235, 245)
_MUTED = (180, 180, 190)
_GRID = (40, 40, 52)
_CELL = (70, 70, 90)
_REWARD = (240, 200, 60)
_PLAYER = (90, 170, 255)
_OK = (110, 220, 120)
_BAD = (235, 95, 95)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class ArenaEngine(Protocol):
    @property
    def participant(self) -> Position3D: ...
    @property
    def controls_enabled(self) -> bool: ...
    def start(self) -> None: ...
    def update(self) -> None: ...
    def move_to(self, position: Position3D) -> None: ...
    def commit(self) -> EvaluationResult | None: ...
    def snapshot(self) -> TaskSnapshot: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class MessageScreen:
    """Full-screen text card; Space or Enter continues."""

    def __init__(self, app: App, title: str, lines: list[str], *, on_continue: Callable[[], None]) -> None:
        self._app = app
        self._title = title
        self._lines = lines
        self._on_continue = on_continue
        self._small_font = pygame.font.Font(None, 28)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_SPACE, pygame.K_RETURN, pygame.K_KP_ENTER):
            self._on_continue()
        elif event.key == pygame.K_ESCAPE:
            self._app.quit()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(_BG)
        title = self._app.font.render(self._title, True, _TEXT)
        surface.blit(title, (40, 40))
        y = 110
        for line in self._lines:
            surface.blit(self._small_font.render(line, True, _MUTED), (40, y))
            y += 34


class ArenaScreen:
    """Top-down view of the arena for one engine (instruction or task).

    Arrow keys or WASD walk the participant at ``move_speed`` units/s and Space
    commits. ``on_finished`` is called once ``is_finished`` reports True.
    """

    def __init__(
        self,
        app: App,
        *,
        session: Session,
        engine: ArenaEngine,
        is_finished: Callable[[], bool],
        on_finished: Callable[[], None],
    ) -> None:
        self._app = app
        self._session = session
        self._engine = engine
        self._is_finished = is_finished
        self._on_finished = on_finished
        self._finished = False
        self._last_tick_s: float | None = None
        self._small_font = pygame.font.Font(None, 24)
        self._label_font = pygame.font.Font(None, 30)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_ESCAPE:
            self._app.quit()
            return
        if event.key != pygame.K_SPACE:
            return
        if self._engine.snapshot().phase is TaskPhase.NOT_STARTED:
            self._engine.start()
            return
        self._engine.commit()

    def render(self, surface: pygame.Surface) -> None:
        self._walk()
        self._engine.update()
        snap = self._engine.snapshot()

        surface.fill(_BG)
        self._draw_arena(surface, snap)
        self._draw_hud(surface, snap)

        if not self._finished and self._is_finished():
            self._finished = True
            self._on_finished()

    def _walk(self) -> None:
        now = self._session.context.clock.now()
        last = self._last_tick_s
        self._last_tick_s = now
        if last is None or not self._engine.controls_enabled:
            return

        pressed = pygame.key.get_pressed()
        dx = float(pressed[pygame.K_RIGHT] or pressed[pygame.K_d]) - float(pressed[pygame.K_LEFT] or pressed[pygame.K_a])
        dz = float(pressed[pygame.K_UP] or pressed[pygame.K_w]) - float(pressed[pygame.K_DOWN] or pressed[pygame.K_s])
        if dx == 0.0 and dz == 0.0:
            return
        step = self._session.context.settings.move_speed * max(0.0, now - last)
        norm = (dx * dx + dz * dz) ** 0.5
        self._engine.move_to(step_towards(self._engine.participant, dx=dx / norm * step, dz=dz / norm * step))

    @staticmethod
    def _viewport(snap: TaskSnapshot, rect: pygame.Rect) -> tuple[float, float, float]:
        """Scale and world centre that fit every reward and the participant into ``rect``."""

        points = list(snap.reward_positions) + [snap.participant]
        margin_x = 2.0 * max(snap.half_x, 1.0)
        margin_z = 2.0 * max(snap.half_z, 1.0)
        min_x = min(p.x for p in points) - margin_x
        max_x = max(p.x for p in points) + margin_x
        min_z = min(p.z for p in points) - margin_z
        max_z = max(p.z for p in points) + margin_z
        scale = min(rect.w / max(max_x - min_x, 1e-6), rect.h / max(max_z - min_z, 1e-6))
        return scale, (min_x + max_x) / 2.0, (min_z + max_z) / 2.0

    def _draw_arena(self, surface: pygame.Surface, snap: TaskSnapshot) -> None:
        w, h = surface.get_size()
        rect = pygame.Rect(20, 90, w - 40, h - 130)
        pygame.draw.rect(surface, _GRID, rect, 1)
        if not snap.reward_positions:
            return

        scale, cx, cz = self._viewport(snap, rect)

        def project(p: Position3D) -> tuple[int, int]:
            # World +z is screen up.
            return (int(rect.centerx + (p.x - cx) * scale), int(rect.centery - (p.z - cz) * scale))

        hx = max(2, int(snap.half_x * scale))
        hz = max(2, int(snap.half_z * scale))

        for idx, pos in enumerate(snap.reward_positions):
            sx, sy = project(pos)
            cell = pygame.Rect(sx - hx, sy - hz, hx * 2, hz * 2)
            if idx in snap.visible_rewards:
                pygame.draw.rect(surface, _REWARD, cell)
                label = self._label_font.render(reward_letter(idx), True, _BG)
                surface.blit(label, label.get_rect(center=cell.center))
            else:
                pygame.draw.rect(surface, _CELL, cell, 1)

        px, py = project(snap.participant)
        color = _PLAYER if snap.controls_enabled else _MUTED
        pygame.draw.circle(surface, color, (px, py), max(4, hx // 3))

    def _draw_hud(self, surface: pygame.Surface, snap: TaskSnapshot) -> None:
        title = self._app.font.render(snap.title, True, _TEXT)
        surface.blit(title, (20, 14))

        info = f"{snap.config_name}"
        if snap.required_streak is not None:
            info += f"  |  Streak {snap.streak or 0}/{snap.required_streak}"
        else:
            info += f"  |  Repetition {min(snap.repetition + 1, snap.repetitions_per_configuration)}"
            info += f"/{snap.repetitions_per_configuration}"
            info += f"  |  Points {self._session.flow.points}"
        if snap.time_remaining_s is not None and snap.step is CadenceStep.AWAIT_COMMIT:
            info += f"  |  {snap.time_remaining_s:0.0f}s"
        surface.blit(self._small_font.render(info, True, _MUTED), (20, 56))

        color = _TEXT
        if snap.phase is TaskPhase.FEEDBACK:
            color = _OK if snap.last_outcome else _BAD
        prompt = self._small_font.render(snap.prompt, True, color)
        surface.blit(prompt, (20, surface.get_height() - 32))


def _open_stage(app: App, session: Session) -> None:
    """Push the screen for the flow's current stage."""

    flow = session.flow
    stage = flow.stage

    if stage is Stage.WELCOME:
        app.push(
            MessageScreen(
                app,
                "Welcome",
                [
                    "You will see rewards appear one after another on the floor.",
                    "Remember where they are and in which order they appear.",
                    "Use the arrow keys to walk and Space to uncover a reward.",
                    "Press Space to continue.",
                ],
                on_continue=lambda: _advance(app, session),
            )
        )
    elif stage is Stage.INSTRUCTION:
        engine = session.instruction
        app.push(
            ArenaScreen(
                app,
                session=session,
                engine=engine,
                is_finished=lambda: engine.finished,
                on_finished=lambda: _open_stage(app, session),
            )
        )
    elif stage is Stage.FREE_MOVEMENT:
        task = session.task
        app.push(
            ArenaScreen(
                app,
                session=session,
                engine=task,
                is_finished=lambda: flow.stage is Stage.ENDING,
                on_finished=lambda: _open_stage(app, session),
            )
        )
    else:
        summary = session.task.summary()
        lines = [
            f"Rewards found: {summary.rewards_found}",
            f"Accuracy: {summary.accuracy * 100.0:0.0f}%",
            f"Points: {flow.points}",
            "Thank you for taking part. Press Space to close.",
        ]
        app.push(MessageScreen(app, "All done", lines, on_continue=app.quit))


def _advance(app: App, session: Session) -> None:
    session.flow.advance()
    _open_stage(app, session)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    config_path: Path | None = None,
    event_log_path: Path | None = None,
    participant: ParticipantInfo | None = None,
    clock: Clock | None = None,
) -> int:
    session = build_session(
        clock=clock or RealClock(),
        config_path=config_path,
        event_log_path=event_log_path,
        participant=participant,
    )

    pygame.init()
    pygame.display.set_caption("ABCD Task")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    frame_clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    _open_stage(app, session)

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        session.close()
        pygame.quit()

    return 0
