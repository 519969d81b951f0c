"""
Staging pose targets.

"home" is the homed motor position (0, 0). "aside" parks a tile's reflection
away from the measurement area so only the tile under test is in frame.
Baseline orientation: +X moves the spot left and +Y moves it up.
"""

from __future__ import annotations

import math
from typing import Literal

from ..types import (
    MOTOR_MAX_POSITION_STEPS,
    MOTOR_MIN_POSITION_STEPS,
    GridSize,
    StagingStrategy,
    TileAddress,
)

Pose = Literal["home", "aside"]

STAGING_STRATEGIES: tuple[StagingStrategy, ...] = ("nearest-corner", "corner", "bottom", "left")


def clamp_steps(value: float) -> int:
    return int(min(MOTOR_MAX_POSITION_STEPS, max(MOTOR_MIN_POSITION_STEPS, value)))


def round_steps(value: float) -> int:
    """Round to an integer step; non-finite values become 0."""
    if not math.isfinite(value):
        return 0
    return int(round(value))


def _upright(array_rotation: int) -> bool:
    """At 0 and 90 degrees MAX steps move left/down; at 180 and 270 it is inverted."""
    rotation = array_rotation % 360
    if rotation not in (0, 90, 180, 270):
        raise ValueError(f"Array rotation must be a multiple of 90, got {array_rotation}")
    return rotation in (0, 90)


def compute_distributed_axis_target(column: int, total_cols: int) -> int:
    """Spread tiles evenly across the motor range by column."""
    cols = max(1, total_cols)
    if cols == 1:
        return clamp_steps((MOTOR_MAX_POSITION_STEPS + MOTOR_MIN_POSITION_STEPS) / 2)
    fraction = column / (cols - 1)
    span = MOTOR_MAX_POSITION_STEPS - MOTOR_MIN_POSITION_STEPS
    return clamp_steps(round_steps(MOTOR_MIN_POSITION_STEPS + fraction * span))


def compute_nearest_corner_target(
    tile: TileAddress,
    grid: GridSize,
    array_rotation: int = 0,
) -> tuple[int, int]:
    """Park each tile in the corner of its grid quadrant."""
    upright = _upright(array_rotation)
    center_row = (grid.rows - 1) / 2
    center_col = (grid.cols - 1) / 2
    is_top = tile.row < center_row
    is_left = tile.col < center_col

    left_x = MOTOR_MAX_POSITION_STEPS if upright else MOTOR_MIN_POSITION_STEPS
    right_x = MOTOR_MIN_POSITION_STEPS if upright else MOTOR_MAX_POSITION_STEPS
    top_y = MOTOR_MAX_POSITION_STEPS if upright else MOTOR_MIN_POSITION_STEPS
    bottom_y = MOTOR_MIN_POSITION_STEPS if upright else MOTOR_MAX_POSITION_STEPS

    return (left_x if is_left else right_x, top_y if is_top else bottom_y)


def compute_pose_targets(
    tile: TileAddress,
    pose: Pose,
    grid: GridSize,
    strategy: StagingStrategy = "nearest-corner",
    array_rotation: int = 0,
) -> tuple[int, int]:
    """
    Motor targets (x_steps, y_steps) for a tile pose.

    Args:
        tile: Tile to position
        pose: "home" or "aside"
        grid: Grid dimensions
        strategy: Where "aside" parks the tile
        array_rotation: Physical rotation of the array (0/90/180/270)

    Returns:
        (x, y) step targets within the motor range
    """
    if pose == "home":
        return (0, 0)

    upright = _upright(array_rotation)
    aside_x = MOTOR_MAX_POSITION_STEPS if upright else MOTOR_MIN_POSITION_STEPS
    aside_y = MOTOR_MIN_POSITION_STEPS if upright else MOTOR_MAX_POSITION_STEPS

    if strategy == "nearest-corner":
        return compute_nearest_corner_target(tile, grid, array_rotation)
    if strategy == "corner":
        return (aside_x, aside_y)
    if strategy == "bottom":
        return (compute_distributed_axis_target(tile.col, grid.cols), aside_y)
    if strategy == "left":
        return (aside_x, compute_distributed_axis_target(tile.col, grid.cols))
    raise ValueError(f"Unknown staging strategy: {strategy}")


def compute_alignment_target_steps(displacement: float, per_step: float | None) -> int | None:
    """
    Steps that move a tile's reflection by displacement.

    Returns:
        Clamped integer steps, or None when the step scale is unusable or the
        move would exceed the motor range
    """
    if per_step is None or not math.isfinite(per_step) or abs(per_step) < 1e-6:
        return None
    raw = displacement / per_step
    if not math.isfinite(raw) or abs(raw) > MOTOR_MAX_POSITION_STEPS:
        return None
    return clamp_steps(round_steps(raw))
