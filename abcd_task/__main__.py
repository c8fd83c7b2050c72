from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    If this module is executed as a script (``python abcd_task/__main__.py``),
    the package may not be discoverable by Python.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


if __package__:
    # python -m abcd_task, or the installed console script
    from .configuration import ConfigurationError
    from .events import ParticipantInfo
else:
    # Executed as a script (IDE "Run Python File", absolute path, etc.)
    _ensure_repo_root_on_path()
    from abcd_task.configuration import ConfigurationError
    from abcd_task.events import ParticipantInfo


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="abcd-task", description="ABCD spatial sequence task")
    parser.add_argument("--config", type=Path, default=None, help="configuration JSON (default: $ABCD_CONFIG_PATH or built-in)")
    parser.add_argument("--participant", default=None, help='participant string "PID|STUDY|SESSION"')
    parser.add_argument("--event-log", type=Path, default=None, help="JSON lines file, or .db for sqlite")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--headless-frames", type=int, default=None, help="run N frames with the SDL dummy driver")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point for running the task from the command line."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.headless_frames is not None:
        # Must be set before pygame initialises its display.
        os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
        os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

    if __package__:
        from .app import run
    else:
        from abcd_task.app import run

    participant = None if args.participant is None else ParticipantInfo.parse(args.participant)
    try:
        return run(
            max_frames=args.headless_frames,
            config_path=args.config,
            event_log_path=args.event_log,
            participant=participant,
        )
    except ConfigurationError as exc:
        print(f"abcd-task: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
