"""
Tile bounds in Centered space.

- motor reach: where a tile's reflection can travel within the motor range
- footprint: the tile's cell in the grid blueprint
"""

from __future__ import annotations

import math

from ..types import (
    MOTOR_MAX_POSITION_STEPS,
    MOTOR_MIN_POSITION_STEPS,
    Bounds,
    CalibrationGridBlueprint,
    Centered,
    StepScale,
    TileAddress,
)

# Step scales smaller than this are treated as "no scale"
STEP_EPSILON = 1e-9


def clamp_normalized(value: float) -> float:
    return min(1.0, max(-1.0, value))


def compute_axis_bounds(
    center: float | None,
    center_steps: float | None,
    per_step: float | None,
) -> tuple[float, float] | None:
    """
    Reach of one axis across the full motor range.

    Args:
        center: Position (Centered units) when the motor is at center_steps
        center_steps: Motor position at which center was observed
        per_step: Displacement per step (Centered units)

    Returns:
        (min, max) clamped to [-1, 1], or None when data is insufficient
    """
    if center is None or center_steps is None or per_step is None:
        return None
    if not math.isfinite(per_step) or abs(per_step) < STEP_EPSILON:
        return None
    a = clamp_normalized(center + (MOTOR_MIN_POSITION_STEPS - center_steps) * per_step)
    b = clamp_normalized(center + (MOTOR_MAX_POSITION_STEPS - center_steps) * per_step)
    return min(a, b), max(a, b)


def compute_motor_reach_bounds(
    home: Centered,
    step_scale: StepScale | None,
    home_steps: tuple[float, float] = (0.0, 0.0),
) -> Bounds | None:
    """Reach bounds of a tile measured at home_steps. None unless both axes have a scale."""
    if step_scale is None:
        return None
    x = compute_axis_bounds(home.x, home_steps[0], step_scale.x)
    y = compute_axis_bounds(home.y, home_steps[1], step_scale.y)
    if x is None or y is None:
        return None
    return Bounds(x_min=x[0], x_max=x[1], y_min=y[0], y_max=y[1])


def compute_footprint_bounds(blueprint: CalibrationGridBlueprint, tile: TileAddress) -> Bounds:
    """Cell of a tile in the blueprint (recentered frame)."""
    footprint = blueprint.adjusted_tile_footprint
    spacing_x = footprint.width + blueprint.tile_gap.width
    spacing_y = footprint.height + blueprint.tile_gap.height
    x_min = blueprint.grid_origin.x + tile.col * spacing_x
    y_min = blueprint.grid_origin.y + tile.row * spacing_y
    return Bounds(
        x_min=x_min,
        x_max=x_min + footprint.width,
        y_min=y_min,
        y_max=y_min + footprint.height,
    )


def merge_bounds_union(current: Bounds | None, candidate: Bounds) -> Bounds:
    """Smallest rectangle containing both."""
    if current is None:
        return candidate
    return Bounds(
        x_min=min(current.x_min, candidate.x_min),
        x_max=max(current.x_max, candidate.x_max),
        y_min=min(current.y_min, candidate.y_min),
        y_max=max(current.y_max, candidate.y_max),
    )


def merge_bounds_intersection(current: Bounds | None, candidate: Bounds) -> Bounds | None:
    """Overlap of both, or None when they do not overlap."""
    if current is None:
        return candidate
    x_min = max(current.x_min, candidate.x_min)
    x_max = min(current.x_max, candidate.x_max)
    y_min = max(current.y_min, candidate.y_min)
    y_max = min(current.y_max, candidate.y_max)
    if x_min > x_max or y_min > y_max:
        return None
    return Bounds(x_min=x_min, x_max=x_max, y_min=y_min, y_max=y_max)
