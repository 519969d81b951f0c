"""
Tests for mirrorcal.calibration.bounds and mirrorcal.calibration.staging.
"""

import math

import pytest

from mirrorcal.calibration.bounds import (
    compute_axis_bounds,
    compute_footprint_bounds,
    compute_motor_reach_bounds,
    merge_bounds_intersection,
    merge_bounds_union,
)
from mirrorcal.calibration.staging import (
    clamp_steps,
    compute_alignment_target_steps,
    compute_distributed_axis_target,
    compute_pose_targets,
    round_steps,
)
from mirrorcal.types import (
    MOTOR_MAX_POSITION_STEPS as MAX,
    MOTOR_MIN_POSITION_STEPS as MIN,
    Bounds,
    CalibrationGridBlueprint,
    Centered,
    GridSize,
    Size2D,
    StepScale,
    TileAddress,
)


class TestAxisBounds:
    def test_symmetric_reach(self):
        assert compute_axis_bounds(0.0, 0, 0.0005) == pytest.approx((-0.6, 0.6))

    def test_clamped_to_frame(self):
        low, high = compute_axis_bounds(0.8, 0, 0.0005)
        assert low == pytest.approx(0.2)
        assert high == 1.0

    def test_negative_scale_is_ordered(self):
        low, high = compute_axis_bounds(0.0, 0, -0.0005)
        assert low < high

    def test_offset_center_steps(self):
        low, high = compute_axis_bounds(0.0, 600, 0.0005)
        assert low == pytest.approx(-0.9)
        assert high == pytest.approx(0.3)

    def test_missing_data(self):
        assert compute_axis_bounds(0.0, 0, None) is None
        assert compute_axis_bounds(None, 0, 0.0005) is None
        assert compute_axis_bounds(0.0, 0, 1e-12) is None


class TestTileBounds:
    def test_reach_needs_both_axes(self):
        assert compute_motor_reach_bounds(Centered(0, 0), StepScale(x=0.0005)) is None
        assert compute_motor_reach_bounds(Centered(0, 0), None) is None

    def test_reach(self):
        bounds = compute_motor_reach_bounds(Centered(0.1, -0.1), StepScale(x=0.0001, y=0.0001))
        assert bounds.x_min == pytest.approx(-0.02)
        assert bounds.x_max == pytest.approx(0.22)
        assert bounds.y_min == pytest.approx(-0.22)

    def test_footprint(self):
        blueprint = CalibrationGridBlueprint(
            camera_origin_offset=Centered(0.0, 0.0, delta=True),
            grid_origin=Centered(-0.2, -0.2),
            adjusted_tile_footprint=Size2D(0.15, 0.15),
            tile_gap=Size2D(0.05, 0.05),
            grid_size=GridSize(2, 2),
        )
        bounds = compute_footprint_bounds(blueprint, TileAddress(1, 1))
        assert bounds.x_min == pytest.approx(0.0)
        assert bounds.x_max == pytest.approx(0.15)
        assert bounds.y_min == pytest.approx(0.0)

    def test_union(self):
        merged = merge_bounds_union(Bounds(0, 1, 0, 1), Bounds(-1, 0.5, 0.5, 2))
        assert merged == Bounds(-1, 1, 0, 2)
        assert merge_bounds_union(None, Bounds(0, 1, 0, 1)) == Bounds(0, 1, 0, 1)

    def test_intersection(self):
        assert merge_bounds_intersection(Bounds(0, 1, 0, 1), Bounds(0.5, 2, -1, 0.5)) == Bounds(0.5, 1, 0, 0.5)
        assert merge_bounds_intersection(Bounds(0, 1, 0, 1), Bounds(2, 3, 2, 3)) is None


class TestStepHelpers:
    def test_clamp(self):
        assert clamp_steps(5000) == MAX
        assert clamp_steps(-5000) == MIN
        assert clamp_steps(12) == 12

    def test_round(self):
        assert round_steps(2.6) == 3
        assert round_steps(math.nan) == 0
        assert round_steps(math.inf) == 0

    def test_alignment_target(self):
        assert compute_alignment_target_steps(-0.01, 0.0005) == -20

    def test_alignment_target_unusable(self):
        assert compute_alignment_target_steps(0.1, None) is None
        assert compute_alignment_target_steps(0.1, 1e-9) is None
        # 2000 steps is beyond the motor range
        assert compute_alignment_target_steps(1.0, 0.0005) is None


class TestPoseTargets:
    grid = GridSize(3, 3)

    def test_home(self):
        assert compute_pose_targets(TileAddress(2, 2), "home", self.grid) == (0, 0)

    def test_nearest_corner(self):
        assert compute_pose_targets(TileAddress(0, 0), "aside", self.grid) == (MAX, MAX)
        assert compute_pose_targets(TileAddress(0, 2), "aside", self.grid) == (MIN, MAX)
        assert compute_pose_targets(TileAddress(2, 0), "aside", self.grid) == (MAX, MIN)
        assert compute_pose_targets(TileAddress(2, 2), "aside", self.grid) == (MIN, MIN)

    def test_nearest_corner_rotated(self):
        assert compute_pose_targets(TileAddress(0, 0), "aside", self.grid, array_rotation=180) == (MIN, MIN)
        assert compute_pose_targets(TileAddress(0, 0), "aside", self.grid, array_rotation=90) == (MAX, MAX)

    def test_invalid_rotation(self):
        with pytest.raises(ValueError):
            compute_pose_targets(TileAddress(0, 0), "aside", self.grid, array_rotation=45)

    def test_corner(self):
        for tile in (TileAddress(0, 0), TileAddress(2, 1)):
            assert compute_pose_targets(tile, "aside", self.grid, "corner") == (MAX, MIN)

    def test_bottom_distributes_by_column(self):
        xs = [compute_pose_targets(TileAddress(0, c), "aside", self.grid, "bottom")[0] for c in range(3)]
        assert xs == [MIN, 0, MAX]

    def test_left(self):
        assert compute_pose_targets(TileAddress(1, 2), "aside", self.grid, "left") == (MAX, MAX)

    def test_distributed_single_column(self):
        assert compute_distributed_axis_target(0, 1) == 0

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            compute_pose_targets(TileAddress(0, 0), "aside", self.grid, "sideways")
