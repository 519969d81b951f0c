"""
Simulated mirror rig.

A software stand-in for the motor controllers and the camera: every tile
reflects an elliptical spot whose position follows its motor steps linearly
and whose shape degrades as the tile moves away from its optimal pose.
Implements both MotorCommandApi and DetectionBackend, so the calibration
runner and the alignment controller can run end to end without hardware.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np

from .collaborators import DetectionRequest, DetectionResponse
from .coords import centered_to_camera
from .detection import analyze_dominant_shape, find_blobs
from .errors import CommandError, DeviceError
from .grid import TileGrid
from .types import (
    AXES,
    MOTOR_MAX_POSITION_STEPS,
    MOTOR_MIN_POSITION_STEPS,
    Axis,
    Centered,
    GridSize,
    MotorRef,
    Resolution,
    TileAddress,
)

logger = logging.getLogger(__name__)

SUBPIXEL_SHIFT = 4  # cv2 drawing fixed-point bits


@dataclass
class SimulatedTile:
    """
    One mirror tile.

    per_step is the spot displacement (Centered units) per motor step on
    each axis. The spot is round at optimal_steps; every step away adds
    distortion to its eccentricity.
    """

    address: TileAddress
    home: Centered
    per_step: tuple[float, float] = (-0.0002, -0.0002)
    optimal_steps: tuple[int, int] = (0, 0)
    distortion: float = 0.002
    steps: tuple[int, int] = (0, 0)


class SimulatedRig:
    """
    Motors and camera of a simulated mirror array.

    Args:
        resolution: Camera resolution of rendered frames
        spot_radius_px: Radius of a perfectly aligned spot
        noise_px: Standard deviation of the spot position jitter
        dropout: Probability that a frame misses every spot
        latency_s: Simulated command / frame latency
        max_visible_tilt_steps: Combined tilt (steps, both axes) beyond which a
            tile throws its reflection off the projection surface
        seed: Seed for the noise generator
    """

    def __init__(
        self,
        resolution: Resolution = Resolution(1280, 720),
        spot_radius_px: float = 24.0,
        noise_px: float = 0.3,
        dropout: float = 0.0,
        latency_s: float = 0.0,
        max_visible_tilt_steps: float = 1500.0,
        seed: int | None = None,
    ):
        self.resolution = resolution
        self.spot_radius_px = spot_radius_px
        self.noise_px = noise_px
        self.dropout = dropout
        self.latency_s = latency_s
        self.max_visible_tilt_steps = max_visible_tilt_steps
        self._rng = np.random.default_rng(seed)
        self._tiles: dict[str, SimulatedTile] = {}
        self._motors: dict[MotorRef, tuple[str, Axis]] = {}
        self._failures: dict[MotorRef, list[type[CommandError]]] = {}
        self.move_count = 0

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_tile(
        self,
        tile: SimulatedTile,
        x_motor: MotorRef | None = None,
        y_motor: MotorRef | None = None,
    ) -> None:
        self._tiles[tile.address.key] = tile
        for axis, motor in (("x", x_motor), ("y", y_motor)):
            if motor is not None:
                self._motors[motor] = (tile.address.key, axis)

    def tile(self, address: TileAddress) -> SimulatedTile:
        return self._tiles[address.key]

    def inject_failure(self, motor: MotorRef, error_cls: type[CommandError] = DeviceError, count: int = 1) -> None:
        """Make the next count moves of a motor fail with error_cls."""
        self._failures.setdefault(motor, []).extend([error_cls] * count)

    # ------------------------------------------------------------------
    # MotorCommandApi
    # ------------------------------------------------------------------

    async def home_all(self, controllers) -> None:
        known = {motor.controller for motor in self._motors}
        unknown = [c for c in controllers if c not in known]
        if unknown:
            raise DeviceError(f"Unknown controller(s): {', '.join(unknown)}")
        await asyncio.sleep(self.latency_s)
        for motor, (key, axis) in self._motors.items():
            if motor.controller in controllers:
                self._set_axis(key, axis, 0)

    async def move_motor(self, motor: MotorRef, position_steps: int) -> None:
        if motor not in self._motors:
            raise DeviceError(f"Unknown motor {motor.key}", motor=motor)
        pending = self._failures.get(motor)
        if pending:
            error_cls = pending.pop(0)
            raise error_cls(f"Simulated failure on {motor.key}", motor=motor)
        if not MOTOR_MIN_POSITION_STEPS <= position_steps <= MOTOR_MAX_POSITION_STEPS:
            raise DeviceError(f"Position {position_steps} out of range", motor=motor)
        await asyncio.sleep(self.latency_s)
        key, axis = self._motors[motor]
        self._set_axis(key, axis, int(position_steps))
        self.move_count += 1

    def _set_axis(self, key: str, axis: Axis, position: int) -> None:
        tile = self._tiles[key]
        x, y = tile.steps
        tile.steps = (position, y) if axis == "x" else (x, position)

    # ------------------------------------------------------------------
    # Optics
    # ------------------------------------------------------------------

    def spot_position(self, address: TileAddress) -> Centered:
        tile = self._tiles[address.key]
        return Centered(
            tile.home.x + tile.steps[0] * tile.per_step[0],
            tile.home.y + tile.steps[1] * tile.per_step[1],
        )

    def spot_eccentricity(self, address: TileAddress) -> float:
        tile = self._tiles[address.key]
        error = sum(abs(s - o) for s, o in zip(tile.steps, tile.optimal_steps))
        return 1.0 + tile.distortion * error

    def render(self) -> np.ndarray:
        """Grayscale frame with every tile's spot drawn in."""
        frame = np.zeros((self.resolution.height, self.resolution.width), dtype=np.uint8)
        if self.dropout > 0 and self._rng.random() < self.dropout:
            return frame
        scale = 1 << SUBPIXEL_SHIFT
        for tile in self._tiles.values():
            if math.hypot(*tile.steps) > self.max_visible_tilt_steps:
                continue
            pixel = centered_to_camera(self.spot_position(tile.address), self.resolution)
            x = pixel.x + self._rng.normal(0.0, self.noise_px)
            y = pixel.y + self._rng.normal(0.0, self.noise_px)
            eccentricity = self.spot_eccentricity(tile.address)
            major = self.spot_radius_px * eccentricity
            minor = self.spot_radius_px
            # Reflections whose center leaves the frame are not captured
            if not (0.0 <= x < self.resolution.width and 0.0 <= y < self.resolution.height):
                continue
            # Skew direction follows whichever axis is further off
            dx = abs(tile.steps[0] - tile.optimal_steps[0])
            dy = abs(tile.steps[1] - tile.optimal_steps[1])
            angle = 0.0 if dx >= dy else 90.0
            cv2.ellipse(
                frame,
                (int(round(x * scale)), int(round(y * scale))),
                (int(round(major * scale)), int(round(minor * scale))),
                angle, 0, 360, 255, -1, cv2.LINE_AA, SUBPIXEL_SHIFT,
            )
        return frame

    # ------------------------------------------------------------------
    # DetectionBackend
    # ------------------------------------------------------------------

    async def analyze(self, request: DetectionRequest) -> DetectionResponse:
        await asyncio.sleep(self.latency_s)
        frame = self.render()
        if request.kind == "shape":
            shape = analyze_dominant_shape(frame, request.params, request.region)
            return DetectionResponse(request.request_id, self.resolution, shape=shape)
        blobs = find_blobs(frame, request.params, request.region)
        return DetectionResponse(request.request_id, self.resolution, blobs=tuple(blobs))


def build_demo_rig(
    rows: int = 3,
    cols: int = 3,
    seed: int | None = 0,
    spacing: float = 0.2,
    jitter: float = 0.01,
    max_misalignment: int = 60,
    **rig_kwargs,
) -> tuple[SimulatedRig, TileGrid]:
    """
    A rows x cols rig with one controller per row and two motors per tile.

    Tile homes sit on a slightly shifted grid with per-tile jitter; each tile
    is optimal at a random pose within max_misalignment steps.

    Returns:
        (rig, grid) with every tile's axes assigned
    """
    rng = np.random.default_rng(seed)
    rig = SimulatedRig(seed=seed, **rig_kwargs)
    grid = TileGrid(GridSize(rows, cols))
    shift = rng.uniform(-0.03, 0.03, size=2)

    for tile in grid.tiles():
        home = Centered(
            float(shift[0] + (tile.col - (cols - 1) / 2) * spacing + rng.uniform(-jitter, jitter)),
            float(shift[1] + (tile.row - (rows - 1) / 2) * spacing + rng.uniform(-jitter, jitter)),
        )
        optimal = tuple(int(v) for v in rng.integers(-max_misalignment, max_misalignment + 1, size=2))
        motors = {
            axis: MotorRef(f"row{tile.row}", tile.col * len(AXES) + index)
            for index, axis in enumerate(AXES)
        }
        rig.add_tile(
            SimulatedTile(address=tile, home=home, optimal_steps=optimal),
            x_motor=motors["x"],
            y_motor=motors["y"],
        )
        for axis, motor in motors.items():
            grid.assign(tile, axis, motor)

    logger.debug("Built %dx%d demo rig (seed=%s)", rows, cols, seed)
    return rig, grid
