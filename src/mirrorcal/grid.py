"""
Tile arena.

Tiles are indexed by (row, col). The string key is kept only as a stable
serialization identifier.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from .types import AXES, Axis, AxisAssignment, GridSize, MotorRef, TileAddress

logger = logging.getLogger(__name__)


def parse_tile_key(key: str) -> TileAddress:
    """Inverse of TileAddress.key ("row-col")."""
    try:
        row, col = key.split("-")
        return TileAddress(int(row), int(col))
    except ValueError as exc:
        raise ValueError(f"Invalid tile key: {key!r}") from exc


def parse_motor_key(key: str) -> MotorRef:
    """Inverse of MotorRef.key ("controller:index")."""
    controller, sep, index = key.rpartition(":")
    if not sep or not controller:
        raise ValueError(f"Invalid motor key: {key!r}")
    try:
        return MotorRef(controller, int(index))
    except ValueError as exc:
        raise ValueError(f"Invalid motor key: {key!r}") from exc


def camera_tile(tile: TileAddress, grid: GridSize, array_rotation: int = 0) -> TileAddress:
    """
    Where a logical tile appears in the camera view for a rotated array.

    Rotation is clockwise in 90 degree steps; at 90 and 270 degrees the camera
    sees the grid with rows and columns swapped.
    """
    rotation = array_rotation % 360
    if rotation == 0:
        return tile
    if rotation == 90:
        return TileAddress(tile.col, grid.rows - 1 - tile.row)
    if rotation == 180:
        return TileAddress(grid.rows - 1 - tile.row, grid.cols - 1 - tile.col)
    if rotation == 270:
        return TileAddress(grid.cols - 1 - tile.col, tile.row)
    raise ValueError(f"Array rotation must be a multiple of 90, got {array_rotation}")


def assigned_axes(assignment: AxisAssignment) -> list[tuple[Axis, MotorRef]]:
    """(axis, motor) pairs for the axes that have a motor."""
    return [
        (axis, motor)
        for axis in AXES
        if (motor := getattr(assignment, axis)) is not None
    ]


class TileGrid:
    """
    Grid of tiles with their per-axis motor assignments.

    A motor drives at most one tile axis: assigning it elsewhere releases it
    from its previous owner.
    """

    def __init__(self, size: GridSize):
        if size.rows <= 0 or size.cols <= 0:
            raise ValueError(f"Grid must have at least one tile, got {size.rows}x{size.cols}")
        self._size = size
        self._assignments: dict[TileAddress, AxisAssignment] = {
            tile: AxisAssignment() for tile in self._iter_addresses(size)
        }

    @staticmethod
    def _iter_addresses(size: GridSize):
        for row in range(size.rows):
            for col in range(size.cols):
                yield TileAddress(row, col)

    @property
    def size(self) -> GridSize:
        return self._size

    def __contains__(self, tile: TileAddress) -> bool:
        return tile in self._assignments

    def __len__(self) -> int:
        return len(self._assignments)

    def tiles(self) -> list[TileAddress]:
        """All tiles in row-major order."""
        return list(self._iter_addresses(self._size))

    def tile(self, row: int, col: int) -> TileAddress:
        address = TileAddress(row, col)
        if address not in self._assignments:
            raise KeyError(f"Tile {address.key} is outside the {self._size.rows}x{self._size.cols} grid")
        return address

    def by_key(self, key: str) -> TileAddress:
        address = parse_tile_key(key)
        return self.tile(address.row, address.col)

    def assignment(self, tile: TileAddress) -> AxisAssignment:
        return self._assignments[tile]

    def assignments(self) -> dict[TileAddress, AxisAssignment]:
        return dict(self._assignments)

    def assign(self, tile: TileAddress, axis: Axis, motor: MotorRef | None) -> None:
        """Bind (or with None, unbind) a motor to a tile axis."""
        if tile not in self._assignments:
            raise KeyError(f"Unknown tile {tile.key}")
        if motor is not None:
            self._release(motor)
        self._assignments[tile] = replace(self._assignments[tile], **{axis: motor})

    def _release(self, motor: MotorRef) -> None:
        for tile, assignment in self._assignments.items():
            for axis, bound in assigned_axes(assignment):
                if bound == motor:
                    self._assignments[tile] = replace(assignment, **{axis: None})
                    logger.debug("Released motor %s from tile %s axis %s", motor.key, tile.key, axis)

    def motor_owner(self, motor: MotorRef) -> tuple[TileAddress, Axis] | None:
        for tile, assignment in self._assignments.items():
            for axis, bound in assigned_axes(assignment):
                if bound == motor:
                    return tile, axis
        return None

    def resize(self, size: GridSize) -> list[TileAddress]:
        """
        Change grid dimensions.

        Tiles outside the new bounds are invalidated and their assignments
        cleared; surviving tiles keep theirs.

        Returns:
            Tiles that were removed
        """
        if size.rows <= 0 or size.cols <= 0:
            raise ValueError(f"Grid must have at least one tile, got {size.rows}x{size.cols}")
        removed = [
            tile for tile in self._assignments
            if tile.row >= size.rows or tile.col >= size.cols
        ]
        for tile in removed:
            if assigned_axes(self._assignments[tile]):
                logger.info("Clearing assignments of removed tile %s", tile.key)
            del self._assignments[tile]
        for tile in self._iter_addresses(size):
            self._assignments.setdefault(tile, AxisAssignment())
        self._size = size
        return removed
