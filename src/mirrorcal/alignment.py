"""
Alignment convergence controller.

Nudges each assigned axis of a tile so the detected reflection becomes round
and compact. Per axis: try a step, re-measure, keep it if the shape improved,
otherwise undo it and try the other direction; two consecutive rejections
shrink the step.

Phases: idle -> staging -> measuring-baseline -> converging -> complete
        (paused while a pause is held; aborted is terminal)
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Callable, Literal, Protocol, Sequence

import numpy as np

from .calibration.blueprint import compute_ideal_center
from .calibration.staging import compute_alignment_target_steps, compute_pose_targets
from .collaborators import MotorCommandApi, RetryPolicy, call_with_retry, scatter_gather
from .coords import centered_to_viewport
from .detection import FULL_FRAME, Region
from .errors import CommandError, DetectionTimeoutError, RunnerStateError
from .grid import TileGrid, assigned_axes
from .stats import filter_samples
from .types import (
    AXES,
    MOTOR_MAX_POSITION_STEPS,
    MOTOR_MIN_POSITION_STEPS,
    AlignmentAxisState,
    AlignmentRunSummary,
    AlignmentRunTileState,
    AlignmentSettings,
    Axis,
    AxisAssignment,
    CalibrationRunSummary,
    CameraPixels,
    Centered,
    GridSize,
    MotorRef,
    ShapeMetrics,
    StagingStrategy,
    TileAddress,
    TileAlignmentStatus,
)

logger = logging.getLogger(__name__)


AlignmentPhase = Literal[
    "idle", "staging", "measuring-baseline", "converging", "paused", "complete", "aborted",
]


class ShapeSensor(Protocol):
    """Anything that can report the current reflection shape (DetectionSession does)."""

    async def measure_shape(self, region: Region = FULL_FRAME) -> ShapeMetrics | None: ...


@dataclass(frozen=True, slots=True)
class AlignmentTarget:
    """A tile to align, with the motor positions it starts from."""

    tile: TileAddress
    assignment: AxisAssignment
    initial_steps: tuple[int, int] = (0, 0)  # (x, y)
    region: Region = FULL_FRAME  # Where to look for this tile's reflection


@dataclass(frozen=True, slots=True)
class ShapeMeasurement:
    metrics: ShapeMetrics | None  # None when nothing was detected
    reliable: bool
    samples: int = 0
    discarded: int = 0


@dataclass(frozen=True)
class AlignmentState:
    """
    Snapshot of an alignment run.

    Immutable - all updates create new instances via dataclasses.replace().
    """

    phase: AlignmentPhase = "idle"
    tiles: dict[str, AlignmentRunTileState] = field(default_factory=dict)
    active_tile: TileAddress | None = None
    active_axis: Axis | None = None
    current_metrics: ShapeMetrics | None = None


class _AlignmentAborted(Exception):
    pass


# ============================================================================
# Pure helpers
# ============================================================================


def shape_score(metrics: ShapeMetrics, settings: AlignmentSettings) -> float:
    """Weighted combination of area and eccentricity (lower is better)."""
    return settings.area_weight * metrics.area + settings.eccentricity_weight * metrics.eccentricity


def improved(trial: ShapeMetrics, best: ShapeMetrics, settings: AlignmentSettings) -> bool:
    """
    Whether a trial measurement should be accepted over the best so far.

    any:      strict improvement of area or eccentricity
    weighted: the weighted score drops by more than area_threshold (relative)
    """
    if settings.improvement_strategy == "weighted":
        return shape_score(trial, settings) < shape_score(best, settings) * (1.0 - settings.area_threshold)
    return trial.area < best.area or trial.eccentricity < best.eccentricity


def aggregate_shape_samples(
    samples: Sequence[ShapeMetrics | None],
    threshold: float = 3.0,
) -> ShapeMeasurement:
    """
    MAD-filter repeated shape samples and average the survivors.

    Filtering is on area and centroid. Missed detections count as discarded.
    The result is unreliable when more than half of the samples are
    discarded.
    """
    detected = [s for s in samples if s is not None]
    total = len(samples)
    if not detected:
        return ShapeMeasurement(metrics=None, reliable=False, samples=total, discarded=total)

    data = np.array(
        [[s.area, s.centroid.x, s.centroid.y] for s in detected],
        dtype=np.float64,
    )
    # Identical samples have zero MAD; fall back to 10% of the area and a pixel
    floor = np.array([0.1 * float(np.median(data[:, 0])), 1.0, 1.0])
    result = filter_samples(data, threshold=threshold, scale_floor=floor)
    kept = [s for s, keep in zip(detected, result.inliers) if keep]
    discarded = total - len(kept)

    if not kept:
        return ShapeMeasurement(metrics=None, reliable=False, samples=total, discarded=discarded)

    first = kept[0]
    metrics = ShapeMetrics(
        area=float(np.mean([s.area for s in kept])),
        eccentricity=float(np.mean([s.eccentricity for s in kept])),
        principal_angle=float(np.mean([s.principal_angle for s in kept])),
        centroid=CameraPixels(
            float(np.mean([s.centroid.x for s in kept])),
            float(np.mean([s.centroid.y for s in kept])),
            first.centroid.resolution,
        ),
        eigenvalues=first.eigenvalues,
        bounding_rect=first.bounding_rect,
    )
    return ShapeMeasurement(
        metrics=metrics,
        reliable=discarded * 2 <= total,
        samples=total,
        discarded=discarded,
    )


def summarize_alignment(
    tiles: dict[str, AlignmentRunTileState],
    settings: AlignmentSettings,
) -> AlignmentRunSummary:
    """Totals and average improvement over all tiles."""
    counts = {"converged": 0, "partial": 0, "skipped": 0, "error": 0}
    area_reductions = []
    eccentricity_gains = []
    for state in tiles.values():
        if state.status in counts:
            counts[state.status] += 1
        if state.baseline is not None and state.final is not None:
            if state.baseline.area > 0:
                area_reductions.append(
                    (state.baseline.area - state.final.area) / state.baseline.area * 100.0
                )
            eccentricity_gains.append(state.baseline.eccentricity - state.final.eccentricity)
    return AlignmentRunSummary(
        settings=settings,
        tiles=dict(tiles),
        tiles_converged=counts["converged"],
        tiles_partial=counts["partial"],
        tiles_skipped=counts["skipped"],
        tiles_errored=counts["error"],
        average_area_reduction_percent=float(np.mean(area_reductions)) if area_reductions else None,
        average_eccentricity_improvement=float(np.mean(eccentricity_gains)) if eccentricity_gains else None,
    )


def region_for_tile(
    summary: CalibrationRunSummary,
    tile: TileAddress,
    scale: float = 1.5,
) -> Region:
    """
    Viewport search region around a tile's ideal grid position.

    The region is scale times the tile pitch on each side, clipped to the
    frame. Falls back to the full frame when the summary has no blueprint.
    """
    blueprint = summary.blueprint
    if blueprint is None:
        return FULL_FRAME
    resolution = summary.camera.resolution
    local = compute_ideal_center(blueprint, tile)
    offset = blueprint.camera_origin_offset
    center = centered_to_viewport(Centered(local.x + offset.x, local.y + offset.y), resolution)

    footprint = blueprint.adjusted_tile_footprint
    half = centered_to_viewport(
        Centered(
            (footprint.width + blueprint.tile_gap.width) * scale / 2.0,
            (footprint.height + blueprint.tile_gap.height) * scale / 2.0,
            delta=True,
        ),
        resolution,
    )
    x0 = max(0.0, center.x - half.x)
    y0 = max(0.0, center.y - half.y)
    x1 = min(1.0, center.x + half.x)
    y1 = min(1.0, center.y + half.y)
    return Region(x0, y0, max(0.0, x1 - x0), max(0.0, y1 - y0))


def targets_from_summary(
    summary: CalibrationRunSummary,
    grid: TileGrid,
    region_scale: float = 1.5,
) -> list[AlignmentTarget]:
    """
    Alignment targets for every tile of a grid.

    Completed tiles start from their calibrated home (the steps that cancel
    the home offset); other tiles start from the homed position.
    """
    targets = []
    for tile in grid.tiles():
        result = summary.tiles.get(tile.key)
        steps = [0, 0]
        if result is not None and result.home_offset is not None and result.step_scale is not None:
            for index, (offset, per_step) in enumerate((
                (result.home_offset.x, result.step_scale.x),
                (result.home_offset.y, result.step_scale.y),
            )):
                target = compute_alignment_target_steps(-offset, per_step)
                if target is not None:
                    steps[index] = target
        targets.append(AlignmentTarget(
            tile=tile,
            assignment=grid.assignment(tile),
            initial_steps=(steps[0], steps[1]),
            region=region_for_tile(summary, tile, region_scale),
        ))
    return targets


def tile_alignment_status(x: AlignmentAxisState, y: AlignmentAxisState) -> TileAlignmentStatus:
    statuses = (x.status, y.status)
    if "error" in statuses:
        return "error"
    if all(status == "skipped" for status in statuses):
        return "skipped"
    if "converged" in statuses:
        return "converged"
    return "partial"


# ============================================================================
# Controller
# ============================================================================


class AlignmentController:
    """
    Runs the convergence loop over a set of tiles, one tile at a time.

    Axis failures are isolated: an axis that errors stops, the other axis and
    the remaining tiles carry on.
    """

    def __init__(
        self,
        targets: Sequence[AlignmentTarget],
        motors: MotorCommandApi,
        sensor: ShapeSensor,
        grid_size: GridSize,
        *,
        settings: AlignmentSettings = AlignmentSettings(),
        retry_policy: RetryPolicy = RetryPolicy(),
        staging_strategy: StagingStrategy = "nearest-corner",
        array_rotation: int = 0,
        on_state_change: Callable[[AlignmentState], None] | None = None,
    ):
        self._targets = list(targets)
        self._motors = motors
        self._sensor = sensor
        self._grid_size = grid_size
        self._settings = settings
        self._retry = retry_policy
        self._staging_strategy = staging_strategy
        self._array_rotation = array_rotation
        self._on_state_change = on_state_change

        self._aborted = False
        self._paused = False
        self._phase_before_pause: AlignmentPhase | None = None
        self._wake = asyncio.Event()
        self._region = FULL_FRAME

        tiles = {}
        for target in self._targets:
            tiles[target.tile.key] = AlignmentRunTileState(
                tile=target.tile,
                x=AlignmentAxisState(motor=target.assignment.x),
                y=AlignmentAxisState(motor=target.assignment.y),
            )
        self._state = AlignmentState(tiles=tiles)

    @property
    def state(self) -> AlignmentState:
        return self._state

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def pause(self) -> None:
        if self._state.phase in ("idle", "complete", "aborted"):
            raise RunnerStateError(f"Cannot pause alignment from phase '{self._state.phase}'")
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        self._wake.set()

    def abort(self) -> None:
        if self._state.phase in ("complete", "aborted"):
            raise RunnerStateError(f"Cannot abort alignment from phase '{self._state.phase}'")
        self._aborted = True
        close = getattr(self._sensor, "close", None)
        if close is not None:
            close()
        self._wake.set()

    async def _check_continue(self) -> None:
        if self._aborted:
            raise _AlignmentAborted()
        if not self._paused:
            return
        if self._state.phase != "paused":
            self._phase_before_pause = self._state.phase
            self._update(phase="paused")
        while self._paused and not self._aborted:
            self._wake.clear()
            await self._wake.wait()
        if self._aborted:
            raise _AlignmentAborted()
        if self._state.phase == "paused" and self._phase_before_pause is not None:
            self._update(phase=self._phase_before_pause)
            self._phase_before_pause = None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> AlignmentRunSummary:
        """
        Align every target tile.

        Returns:
            AlignmentRunSummary (partial if the run was aborted)
        """
        if self._state.phase != "idle":
            raise RunnerStateError(f"Alignment cannot start from phase '{self._state.phase}'")
        try:
            if self._settings.isolate_tiles:
                self._update(phase="staging")
                await self._stage_all()
            for target in self._targets:
                await self._check_continue()
                await self._align_tile(target)
            self._update(phase="complete", active_tile=None, active_axis=None)
        except _AlignmentAborted:
            self._update(phase="aborted", active_tile=None, active_axis=None)
            logger.info("Alignment aborted")

        summary = summarize_alignment(self._state.tiles, self._settings)
        logger.info(
            "Alignment finished: %d converged, %d partial, %d skipped, %d errored",
            summary.tiles_converged, summary.tiles_partial,
            summary.tiles_skipped, summary.tiles_errored,
        )
        return summary

    async def _stage_all(self) -> None:
        staged = [t for t in self._targets if assigned_axes(t.assignment)]
        outcome = await scatter_gather(staged, self._park)
        for target, exc in outcome.failed:
            if not isinstance(exc, CommandError):
                raise exc
            message = f"Staging failed: {exc.describe()}"
            self._set_axis(target.tile, "x", status="error", error=message)
            self._set_axis(target.tile, "y", status="error", error=message)

    async def _park(self, target: AlignmentTarget) -> None:
        x, y = compute_pose_targets(
            target.tile, "aside", self._grid_size, self._staging_strategy, self._array_rotation,
        )
        await self._move_tile(target, (x, y))

    async def _move_tile(self, target: AlignmentTarget, steps: tuple[int, int]) -> None:
        positions = {"x": steps[0], "y": steps[1]}
        outcome = await scatter_gather(
            assigned_axes(target.assignment),
            lambda pair: self._move(pair[1], positions[pair[0]]),
        )
        if outcome.failed:
            raise outcome.failed[0][1]

    async def _move(self, motor: MotorRef, position: int) -> None:
        await call_with_retry(
            self._retry,
            lambda: self._motors.move_motor(motor, position),
            f"move {motor.key}",
        )

    async def _align_tile(self, target: AlignmentTarget) -> None:
        tile = target.tile
        key = tile.key
        self._update(active_tile=tile)
        self._region = target.region

        axes = assigned_axes(target.assignment)
        for axis in AXES:
            if getattr(target.assignment, axis) is None:
                self._set_axis(tile, axis, status="skipped")
        if not axes:
            self._set_tile(tile, status="skipped")
            return
        if any(getattr(self._state.tiles[key], axis).status == "error" for axis, _ in axes):
            self._set_tile(tile, status="error")
            return

        self._set_tile(tile, status="in-progress")
        try:
            await self._move_tile(target, target.initial_steps)
        except CommandError as exc:
            for axis, _ in axes:
                self._set_axis(tile, axis, status="error", error=exc.describe())
            self._set_tile(tile, status="error")
            return
        await asyncio.sleep(self._settings.settling_delay_s)

        self._update(phase="measuring-baseline")
        baseline = await self._measure_with_retries()
        if baseline is None:
            for axis, _ in axes:
                self._set_axis(tile, axis, status="error", error="No shape detected at baseline")
            self._set_tile(tile, status="error")
            await self._return_to_staging(target)
            return
        self._set_tile(tile, baseline=baseline)
        self._update(current_metrics=baseline)

        self._update(phase="converging")
        best = baseline
        initial = dict(zip(AXES, target.initial_steps))
        for axis, motor in axes:
            await self._check_continue()
            best = await self._converge_axis(tile, axis, motor, initial[axis], best)

        final = await self._measure_with_retries()
        state = self._state.tiles[key]
        self._set_tile(
            tile,
            final=final if final is not None else best,
            status=tile_alignment_status(state.x, state.y),
        )
        logger.info("Tile %s alignment: %s", key, self._state.tiles[key].status)
        await self._return_to_staging(target)

    async def _return_to_staging(self, target: AlignmentTarget) -> None:
        if not self._settings.isolate_tiles:
            return
        try:
            await self._park(target)
        except CommandError as exc:
            logger.warning("Return to staging failed for %s: %s", target.tile.key, exc.describe())

    async def _converge_axis(
        self,
        tile: TileAddress,
        axis: Axis,
        motor: MotorRef,
        start: int,
        best: ShapeMetrics,
    ) -> ShapeMetrics:
        """
        Iterate one axis. Returns the best metrics reached.

        The final axis state is written to the controller state.
        """
        s = self._settings
        self._update(active_axis=axis)
        self._set_axis(tile, axis, status="in-progress")

        if best.eccentricity <= s.eccentricity_tolerance:
            self._set_axis(tile, axis, status="converged")
            return best

        position = start
        step = s.step_size
        direction = 1
        failures = 0
        iterations = 0
        remeasure = False
        status = "max-iterations"
        error = None

        while iterations < s.max_iterations:
            await self._check_continue()
            iterations += 1
            trial = position + direction * step

            if not remeasure:
                if not MOTOR_MIN_POSITION_STEPS <= trial <= MOTOR_MAX_POSITION_STEPS:
                    direction, step, failures = self._reject(direction, step, failures)
                    continue
                try:
                    await self._move(motor, trial)
                except CommandError as exc:
                    status, error = "error", exc.describe()
                    break
                await asyncio.sleep(s.settling_delay_s)

            measurement = await self._measure()
            if measurement.metrics is None:
                await self._undo(motor, position)
                status, error = "error", "No shape detected during convergence"
                break
            if not measurement.reliable:
                # Retry at the same position instead of accepting noise
                remeasure = True
                continue
            remeasure = False
            self._update(current_metrics=measurement.metrics)

            if improved(measurement.metrics, best, s):
                best = measurement.metrics
                position = trial
                failures = 0
                self._set_axis(tile, axis, correction_steps=position - start, iterations=iterations)
                if best.eccentricity <= s.eccentricity_tolerance:
                    status = "converged"
                    break
            else:
                try:
                    await self._move(motor, position)
                except CommandError as exc:
                    status, error = "error", exc.describe()
                    break
                await asyncio.sleep(s.settling_delay_s)
                direction, step, failures = self._reject(direction, step, failures)

        if remeasure:
            await self._undo(motor, position)

        self._set_axis(
            tile, axis,
            status=status,
            correction_steps=position - start,
            iterations=iterations,
            error=error,
        )
        if error:
            logger.warning("Tile %s axis %s: %s", tile.key, axis, error)
        return best

    def _reject(self, direction: int, step: int, failures: int) -> tuple[int, int, int]:
        """Flip direction; after two rejections in a row shrink the step."""
        failures += 1
        direction = -direction
        if failures >= 2:
            decayed = math.floor(step * (1.0 - self._settings.step_reduction_percent / 100.0))
            step = max(self._settings.min_step_size, decayed)
            failures = 0
        return direction, step, failures

    async def _undo(self, motor: MotorRef, position: int) -> None:
        try:
            await self._move(motor, position)
        except CommandError as exc:
            logger.warning("Undo move failed for %s: %s", motor.key, exc.describe())
        await asyncio.sleep(self._settings.settling_delay_s)

    async def _measure(self) -> ShapeMeasurement:
        """Take samples_per_measurement shape samples and MAD-filter them."""
        samples = []
        for _ in range(max(1, self._settings.samples_per_measurement)):
            try:
                samples.append(await self._sensor.measure_shape(self._region))
            except DetectionTimeoutError:
                samples.append(None)
        if self._aborted:
            raise _AlignmentAborted()
        return aggregate_shape_samples(samples, self._settings.mad_threshold)

    async def _measure_with_retries(self) -> ShapeMetrics | None:
        for _ in range(self._retry.max_attempts):
            measurement = await self._measure()
            if measurement.metrics is not None and measurement.reliable:
                return measurement.metrics
            await self._check_continue()
        return None

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _update(self, **changes) -> None:
        previous = self._state.phase
        self._state = replace(self._state, **changes)
        if self._state.phase != previous:
            logger.info("Alignment phase: %s -> %s", previous, self._state.phase)
        if self._on_state_change is not None:
            self._on_state_change(self._state)

    def _set_tile(self, tile: TileAddress, **changes) -> None:
        tiles = dict(self._state.tiles)
        tiles[tile.key] = replace(tiles[tile.key], **changes)
        self._update(tiles=tiles)

    def _set_axis(self, tile: TileAddress, axis: Axis, **changes) -> None:
        current = getattr(self._state.tiles[tile.key], axis)
        self._set_tile(tile, **{axis: replace(current, **changes)})
