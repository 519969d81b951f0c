"""
Tests for mirrorcal.grid (tile arena).
"""

import pytest

from mirrorcal.grid import TileGrid, assigned_axes, camera_tile, parse_motor_key, parse_tile_key
from mirrorcal.types import AxisAssignment, GridSize, MotorRef, TileAddress


class TestKeys:
    def test_parse_tile_key(self):
        assert parse_tile_key("3-4") == TileAddress(3, 4)

    def test_parse_tile_key_invalid(self):
        with pytest.raises(ValueError):
            parse_tile_key("3:4")

    def test_parse_motor_key(self):
        assert parse_motor_key("ctrl-a:3") == MotorRef("ctrl-a", 3)

    def test_parse_motor_key_keeps_colons_in_controller(self):
        assert parse_motor_key("192.168.0.5:80:1") == MotorRef("192.168.0.5:80", 1)

    def test_parse_motor_key_invalid(self):
        with pytest.raises(ValueError):
            parse_motor_key("no-index")
        with pytest.raises(ValueError):
            parse_motor_key("ctrl:x")


class TestAssignedAxes:
    def test_skips_unassigned(self):
        motor = MotorRef("a", 0)
        assert assigned_axes(AxisAssignment(x=motor)) == [("x", motor)]
        assert assigned_axes(AxisAssignment()) == []


class TestCameraTile:
    @pytest.mark.parametrize("rotation, expected", [
        (0, TileAddress(0, 1)),
        (90, TileAddress(1, 1)),
        (180, TileAddress(1, 1)),
        (270, TileAddress(1, 0)),
    ])
    def test_rotations(self, rotation, expected):
        assert camera_tile(TileAddress(0, 1), GridSize(2, 3), rotation) == expected

    def test_invalid_rotation(self):
        with pytest.raises(ValueError):
            camera_tile(TileAddress(0, 0), GridSize(2, 2), 45)


class TestTileGrid:
    def test_tiles_row_major(self):
        grid = TileGrid(GridSize(2, 3))
        assert len(grid) == 6
        assert grid.tiles()[:4] == [TileAddress(0, 0), TileAddress(0, 1), TileAddress(0, 2), TileAddress(1, 0)]

    def test_empty_grid_rejected(self):
        with pytest.raises(ValueError):
            TileGrid(GridSize(0, 3))

    def test_tile_lookup(self):
        grid = TileGrid(GridSize(2, 2))
        assert grid.by_key("1-1") == TileAddress(1, 1)
        with pytest.raises(KeyError):
            grid.tile(2, 0)

    def test_assign_and_owner(self):
        grid = TileGrid(GridSize(2, 2))
        motor = MotorRef("a", 0)
        grid.assign(TileAddress(0, 1), "x", motor)
        assert grid.assignment(TileAddress(0, 1)).x == motor
        assert grid.motor_owner(motor) == (TileAddress(0, 1), "x")

    def test_reassign_releases_previous_owner(self):
        grid = TileGrid(GridSize(2, 2))
        motor = MotorRef("a", 0)
        grid.assign(TileAddress(0, 0), "x", motor)
        grid.assign(TileAddress(1, 1), "y", motor)
        assert grid.assignment(TileAddress(0, 0)).x is None
        assert grid.motor_owner(motor) == (TileAddress(1, 1), "y")

    def test_unassign(self):
        grid = TileGrid(GridSize(1, 1))
        grid.assign(TileAddress(0, 0), "y", MotorRef("a", 1))
        grid.assign(TileAddress(0, 0), "y", None)
        assert grid.assignment(TileAddress(0, 0)) == AxisAssignment()

    def test_assign_unknown_tile(self):
        grid = TileGrid(GridSize(1, 1))
        with pytest.raises(KeyError):
            grid.assign(TileAddress(5, 5), "x", MotorRef("a", 0))

    def test_shrink_clears_removed_assignments(self, sample_grid):
        motor = sample_grid.assignment(TileAddress(1, 1)).x
        removed = sample_grid.resize(GridSize(1, 2))
        assert set(removed) == {TileAddress(1, 0), TileAddress(1, 1)}
        assert TileAddress(1, 1) not in sample_grid
        assert sample_grid.motor_owner(motor) is None
        # Surviving tiles keep their motors
        assert sample_grid.assignment(TileAddress(0, 1)).x == MotorRef("row0", 2)

    def test_grow_adds_unassigned_tiles(self, sample_grid):
        removed = sample_grid.resize(GridSize(3, 2))
        assert removed == []
        assert sample_grid.assignment(TileAddress(2, 0)) == AxisAssignment()
        assert sample_grid.size == GridSize(3, 2)

    def test_assignments_is_a_copy(self, sample_grid):
        snapshot = sample_grid.assignments()
        sample_grid.assign(TileAddress(0, 0), "x", None)
        assert snapshot[TileAddress(0, 0)].x is not None
