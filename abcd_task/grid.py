from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

# Known pitch of the experiment arena; used when spacing cannot be inferred.
DEFAULT_CELL_SIZE = 10.3


@dataclass(frozen=True, slots=True)
class Position3D:
    x: float
    y: float
    z: float

    @classmethod
    def from_dict(cls, data: object) -> "Position3D":
        if not isinstance(data, dict):
            raise TypeError("position must be an object with x, y, z")
        try:
            pos = cls(
                x=float(data["x"]),
                y=float(data.get("y", 0.0)),
                z=float(data["z"]),
            )
        except KeyError as exc:
            raise TypeError(f"position is missing coordinate {exc.args[0]!r}") from None
        except (TypeError, ValueError):
            raise TypeError("position coordinates must be numbers") from None
        if not all(math.isfinite(c) for c in (pos.x, pos.y, pos.z)):
            raise TypeError("position coordinates must be finite numbers")
        return pos

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    def horizontal_distance(self, other: "Position3D") -> float:
        return math.hypot(self.x - other.x, self.z - other.z)


@dataclass(frozen=True, slots=True)
class GridSettings:
    tolerance_fraction: float = 0.45  # just under half a cell so neighbours never overlap
    fallback_cell_size: float = DEFAULT_CELL_SIZE
    min_spacing: float = 0.01  # coordinate differences at or below this are float noise


@dataclass(frozen=True, slots=True)
class GridExtents:
    cell_width: float
    cell_depth: float


@dataclass(frozen=True, slots=True)
class AcceptanceBox:
    """Axis-aligned half extents of the hit region around a reward centre."""

    half_x: float
    half_z: float

    def offsets(self, *, center: Position3D, candidate: Position3D) -> tuple[float, float]:
        return abs(candidate.x - center.x), abs(candidate.z - center.z)

    def contains(self, *, center: Position3D, candidate: Position3D) -> bool:
        dx, dz = self.offsets(center=center, candidate=candidate)
        # Closed box: the boundary itself counts as inside.
        return dx <= self.half_x and dz <= self.half_z


def _min_adjacent_spacing(values: Iterable[float], *, min_spacing: float) -> float | None:
    ordered = sorted(values)
    best: float | None = None
    for prev, cur in zip(ordered, ordered[1:]):
        d = abs(cur - prev)
        if d <= min_spacing:
            continue
        if best is None or d < best:
            best = d
    return best


def infer_grid_extents(
    positions: Sequence[Position3D],
    *,
    fallback_cell_size: float = DEFAULT_CELL_SIZE,
    min_spacing: float = 0.01,
) -> GridExtents:
    """Infer the arena cell size from the reward layout.

    Each horizontal axis is handled on its own: the smallest gap between
    neighbouring distinct coordinates is the cell size on that axis. An axis
    with fewer than two distinct coordinates falls back to
    ``fallback_cell_size``.
    """

    if fallback_cell_size <= 0.0:
        raise ValueError("fallback_cell_size must be > 0")

    width = _min_adjacent_spacing((p.x for p in positions), min_spacing=min_spacing)
    depth = _min_adjacent_spacing((p.z for p in positions), min_spacing=min_spacing)
    return GridExtents(
        cell_width=fallback_cell_size if width is None else width,
        cell_depth=fallback_cell_size if depth is None else depth,
    )


class GridToleranceResolver:
    """Turns a configuration's reward layout into an acceptance box."""

    def __init__(self, settings: GridSettings | None = None) -> None:
        cfg = settings or GridSettings()
        if cfg.tolerance_fraction <= 0.0:
            raise ValueError("tolerance_fraction must be > 0")
        if cfg.min_spacing < 0.0:
            raise ValueError("min_spacing must be >= 0")
        self._settings = cfg

    @property
    def settings(self) -> GridSettings:
        return self._settings

    def extents(self, positions: Sequence[Position3D]) -> GridExtents:
        return infer_grid_extents(
            positions,
            fallback_cell_size=self._settings.fallback_cell_size,
            min_spacing=self._settings.min_spacing,
        )

    def resolve(
        self,
        positions: Sequence[Position3D],
        tolerance_fraction: float | None = None,
    ) -> AcceptanceBox:
        fraction = self._settings.tolerance_fraction if tolerance_fraction is None else float(tolerance_fraction)
        if fraction <= 0.0:
            raise ValueError("tolerance_fraction must be > 0")
        ext = self.extents(positions)
        return AcceptanceBox(half_x=ext.cell_width * fraction, half_z=ext.cell_depth * fraction)
