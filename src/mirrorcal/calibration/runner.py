"""
Calibration run state machine.

Run phases:  idle -> homing -> staging -> measuring -> aligning -> completed
             (paused while a pause is held; error / aborted are terminal)
Tile status: pending -> staged -> measuring -> completed | failed | skipped

In "auto" mode the run advances by itself and can be paused. In "step" mode
it halts before each sub-step until advance() is called. Pause and abort are
observed at scheduling points only; an in-flight device command always runs
to completion.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Literal

from ..collaborators import (
    DetectionChannel,
    DetectionSession,
    MotorCommandApi,
    RetryPolicy,
    call_with_retry,
    scatter_gather,
)
from ..detection import FULL_FRAME, DetectorParams, Region
from ..errors import CommandError, DetectionTimeoutError, MirrorCalError, RunnerStateError
from ..grid import TileGrid, assigned_axes
from ..types import (
    Axis,
    AxisAssignment,
    BlobMeasurement,
    BlueprintSettings,
    CalibrationRunSummary,
    CameraMetadata,
    Centered,
    MotorRef,
    RunMode,
    RunnerSettings,
    StepScale,
    StepTestResult,
    StepTestSettings,
    TileAddress,
    TileCalibrationResult,
    TileStatus,
)
from .blueprint import (
    build_step_scale,
    compute_step_scale,
    estimate_home_position,
    nominal_home_position,
)
from .measurement import combine_samples, select_blob
from .staging import (
    Pose,
    clamp_steps,
    compute_alignment_target_steps,
    compute_pose_targets,
    round_steps,
)
from .summary import compute_run_summary

logger = logging.getLogger(__name__)


RunPhase = Literal[
    "idle", "homing", "staging", "measuring", "aligning", "paused",
    "completed", "error", "aborted",
]
StepKind = Literal["home-all", "stage-all", "measure-home", "step-test-x", "step-test-y", "align-grid"]

TERMINAL_PHASES = frozenset({"completed", "error", "aborted"})


# ============================================================================
# State
# ============================================================================


@dataclass(frozen=True)
class RunProgress:
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class TileRunState:
    tile: TileAddress
    assignment: AxisAssignment
    status: TileStatus = "pending"
    home_measurement: BlobMeasurement | None = None
    step_scale: StepScale | None = None
    warnings: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class CommandLogEntry:
    """One device command or detection request issued by the run."""

    sequence: int
    timestamp: float
    kind: str  # "home-all", "move", "detect"
    target: str
    outcome: str  # "ok", "failed", "timeout", "not-detected"
    detail: str | None = None
    tile_key: str | None = None


@dataclass(frozen=True)
class RunnerState:
    """
    Snapshot of a calibration run.

    Immutable - all updates create new instances via dataclasses.replace().
    """

    phase: RunPhase = "idle"
    mode: RunMode = "auto"
    tiles: dict[str, TileRunState] = field(default_factory=dict)
    progress: RunProgress = field(default_factory=RunProgress)
    active_tile: TileAddress | None = None
    pending_step: StepKind | None = None  # Step mode: what advance() runs next
    summary: CalibrationRunSummary | None = None
    error: str | None = None


class _RunAborted(Exception):
    """Raised at a scheduling point once abort() was requested."""


# ============================================================================
# Runner
# ============================================================================


class CalibrationRunner:
    """
    Stages and measures every tile of a grid, then infers the blueprint.

    Tiles are measured one at a time unless settings.max_concurrent_tiles
    allows more (auto mode only). A tile failure never aborts the run.
    """

    def __init__(
        self,
        grid: TileGrid,
        motors: MotorCommandApi,
        detection: DetectionChannel,
        camera: CameraMetadata,
        *,
        settings: RunnerSettings = RunnerSettings(),
        blueprint_settings: BlueprintSettings = BlueprintSettings(),
        retry_policy: RetryPolicy = RetryPolicy(),
        mode: RunMode = "auto",
        detector_params: DetectorParams = DetectorParams(),
        region: Region = FULL_FRAME,
        on_state_change: Callable[[RunnerState], None] | None = None,
    ):
        if mode not in ("auto", "step"):
            raise ValueError(f"Unknown run mode: {mode}")
        self._grid_size = grid.size
        self._assignments = grid.assignments()  # Snapshot, fixed for the run
        self._motors = motors
        self._detection = detection
        self._camera = camera
        self._settings = settings
        self._blueprint_settings = blueprint_settings
        self._retry = retry_policy
        self._detector_params = detector_params
        self._region = region
        self._on_state_change = on_state_change

        self._session: DetectionSession | None = None
        self._aborted = False
        self._paused = False
        self._phase_before_pause: RunPhase | None = None
        self._advance_credits = 0
        self._wake = asyncio.Event()
        self._axis_positions: dict[MotorRef, int] = {}
        self._results: dict[TileAddress, TileCalibrationResult] = {}
        self._tile_warnings: dict[TileAddress, list[str]] = {}
        self._reference_scale: StepScale | None = None  # First measured per-step, per axis
        self._command_log: list[CommandLogEntry] = []

        tiles = {
            tile.key: TileRunState(tile=tile, assignment=assignment)
            for tile, assignment in sorted(self._assignments.items(), key=lambda kv: (kv[0].row, kv[0].col))
        }
        self._state = RunnerState(
            mode=mode,
            tiles=tiles,
            progress=RunProgress(total=len(tiles)),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def command_log(self) -> tuple[CommandLogEntry, ...]:
        return tuple(self._command_log)

    async def run(self) -> CalibrationRunSummary | None:
        """
        Execute the run to a terminal phase.

        Returns:
            The run summary (None if the run aborted or failed before one
            could be computed)

        Raises:
            RunnerStateError: If the runner was already started
        """
        if self._state.phase != "idle":
            raise RunnerStateError(f"Runner cannot start from phase '{self._state.phase}'")
        self._session = self._detection.session()
        try:
            await self._run_internal()
        except _RunAborted:
            self._update(phase="aborted", active_tile=None, pending_step=None)
            logger.info("Calibration run aborted")
        except MirrorCalError as exc:
            message = exc.describe() if isinstance(exc, CommandError) else str(exc)
            logger.error("Calibration run failed: %s", message)
            self._update(phase="error", active_tile=None, pending_step=None, error=message)
        except Exception as exc:
            self._update(phase="error", active_tile=None, pending_step=None, error=str(exc))
            raise
        finally:
            self._session.close()
        return self._state.summary

    def pause(self) -> None:
        """Hold the run at its next scheduling point (auto mode only)."""
        if self._state.mode != "auto":
            raise RunnerStateError("Pause is only available in auto mode")
        if self._state.phase in TERMINAL_PHASES or self._state.phase == "idle":
            raise RunnerStateError(f"Cannot pause from phase '{self._state.phase}'")
        self._paused = True
        logger.info("Pause requested")

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        self._wake.set()
        logger.info("Resumed")

    def abort(self) -> None:
        """
        Stop scheduling further work.

        In-flight device commands finish; pending detection requests are
        discarded when their responses arrive.
        """
        if self._state.phase in TERMINAL_PHASES:
            raise RunnerStateError(f"Cannot abort from terminal phase '{self._state.phase}'")
        self._aborted = True
        if self._session is not None:
            self._session.close()
        if self._state.phase == "idle":
            self._update(phase="aborted")
        self._wake.set()
        logger.info("Abort requested")

    def advance(self) -> None:
        """Allow the next sub-step to run (step mode only)."""
        if self._state.mode != "step":
            raise RunnerStateError("advance() is only available in step mode")
        if self._state.phase in TERMINAL_PHASES:
            raise RunnerStateError(f"Cannot advance from terminal phase '{self._state.phase}'")
        self._advance_credits += 1
        self._wake.set()

    # ------------------------------------------------------------------
    # Scheduling points
    # ------------------------------------------------------------------

    async def _check_continue(self) -> None:
        if self._aborted:
            raise _RunAborted()
        if not self._paused:
            return
        if self._state.phase != "paused":
            self._phase_before_pause = self._state.phase
            self._update(phase="paused")
        while self._paused and not self._aborted:
            self._wake.clear()
            await self._wake.wait()
        if self._aborted:
            raise _RunAborted()
        if self._state.phase == "paused" and self._phase_before_pause is not None:
            self._update(phase=self._phase_before_pause)
            self._phase_before_pause = None

    async def _step_gate(self, kind: StepKind, tile: TileAddress | None = None) -> None:
        """In step mode, wait for advance() before running the sub-step."""
        await self._check_continue()
        if self._state.mode != "step":
            return
        self._update(pending_step=kind, active_tile=tile or self._state.active_tile)
        while self._advance_credits == 0 and not self._aborted:
            self._wake.clear()
            await self._wake.wait()
        if self._aborted:
            raise _RunAborted()
        self._advance_credits -= 1
        self._update(pending_step=None)

    # ------------------------------------------------------------------
    # Run body
    # ------------------------------------------------------------------

    def _calibratable_tiles(self) -> list[TileAddress]:
        return [
            tile_state.tile for tile_state in self._state.tiles.values()
            if assigned_axes(tile_state.assignment)
        ]

    async def _run_internal(self) -> None:
        for tile_state in self._state.tiles.values():
            if not assigned_axes(tile_state.assignment):
                self._finish_tile(TileCalibrationResult(tile=tile_state.tile, status="skipped"))

        tiles = self._calibratable_tiles()
        if not tiles:
            raise MirrorCalError("No motors assigned to any tile")

        self._update(phase="homing", error=None)
        await self._step_gate("home-all")
        await self._home_all(tiles)

        self._update(phase="staging")
        await self._step_gate("stage-all")
        staged = await self._stage_all(tiles)

        self._update(phase="measuring")
        await self._measure_all(staged)

        summary = compute_run_summary(
            [self._results[t] for t in sorted(self._results, key=lambda t: (t.row, t.col))],
            self._grid_size,
            self._camera,
            StepTestSettings(delta_steps=self._settings.delta_steps),
            self._blueprint_settings,
        )
        self._update(active_tile=None, summary=summary)
        if summary.blueprint is None:
            raise MirrorCalError("No valid home measurements; blueprint unavailable")
        logger.info(
            "Blueprint inferred: origin (%.4f, %.4f), footprint %.4f x %.4f, %d outlier(s)",
            summary.blueprint.grid_origin.x,
            summary.blueprint.grid_origin.y,
            summary.blueprint.adjusted_tile_footprint.width,
            summary.blueprint.adjusted_tile_footprint.height,
            summary.outliers.outlier_count if summary.outliers else 0,
        )

        if self._settings.align_to_grid:
            self._update(phase="aligning")
            await self._step_gate("align-grid")
            await self._align_to_grid(summary)

        self._update(phase="completed", active_tile=None)
        progress = self._state.progress
        logger.info("Calibration completed: %d completed, %d failed, %d skipped",
                    progress.completed, progress.failed, progress.skipped)

    async def _home_all(self, tiles: list[TileAddress]) -> None:
        controllers = sorted({
            motor.controller
            for tile in tiles
            for _, motor in assigned_axes(self._assignments[tile])
        })
        try:
            await call_with_retry(self._retry, lambda: self._motors.home_all(controllers), "home-all")
        except CommandError as exc:
            self._log("home-all", ",".join(controllers), "failed", exc.describe())
            raise
        self._log("home-all", ",".join(controllers), "ok")
        self._axis_positions = {
            motor: 0
            for tile in tiles
            for _, motor in assigned_axes(self._assignments[tile])
        }

    async def _stage_all(self, tiles: list[TileAddress]) -> list[TileAddress]:
        """Park every tile aside concurrently. Returns the tiles that staged."""
        outcome = await scatter_gather(tiles, lambda tile: self._move_tile(tile, "aside"))
        for tile, exc in outcome.failed:
            if isinstance(exc, CommandError):
                self._fail_tile(tile, f"Staging failed: {exc.describe()}")
            else:
                raise exc
        staged = [tile for tile, _ in outcome.succeeded]
        for tile in staged:
            self._set_tile(tile, status="staged")
        return staged

    async def _measure_all(self, tiles: list[TileAddress]) -> None:
        limit = self._settings.max_concurrent_tiles
        if self._state.mode == "step" or limit <= 1:
            for tile in tiles:
                await self._check_continue()
                await self._measure_tile(tile)
            return

        semaphore = asyncio.Semaphore(limit)

        async def worker(tile: TileAddress) -> None:
            async with semaphore:
                await self._check_continue()
                await self._measure_tile(tile)

        outcome = await scatter_gather(tiles, worker)
        for _, exc in outcome.failed:
            raise exc

    async def _measure_tile(self, tile: TileAddress) -> None:
        assignment = self._assignments[tile]
        self._set_tile(tile, status="measuring")
        self._update(active_tile=tile)
        logger.info("Measuring tile %s", tile.key)

        try:
            await self._move_tile(tile, "home")
        except CommandError as exc:
            self._fail_tile(tile, f"Move to home failed: {exc.describe()}")
            await self._park(tile)
            return

        await self._step_gate("measure-home", tile)
        home = await self._capture(tile, *self._home_expectation(tile), label="Home measurement")
        if home is None:
            self._fail_tile(tile, "Unable to detect blob at home position")
            await self._park(tile)
            return
        self._set_tile(tile, home_measurement=home)

        tests: dict[Axis, StepTestResult] = {}
        last_problem = None
        for axis, motor in assigned_axes(assignment):
            await self._step_gate(f"step-test-{axis}", tile)
            try:
                result = await self._step_test(tile, axis, motor, home)
            except CommandError as exc:
                last_problem = f"Step test {axis}: {exc.describe()}"
                self._warn(tile, last_problem)
                continue
            if result is None:
                last_problem = f"Step test {axis}: blob not detected"
                self._warn(tile, last_problem)
            else:
                tests[axis] = result

        scale = build_step_scale(tests.get("x"), tests.get("y"))
        if scale is None:
            error = last_problem or "Step test produced no usable displacement"
            self._fail_tile(tile, error, home_measurement=home)
        else:
            self._remember_scale(scale)
            size_deltas = [t.size_delta for t in tests.values() if t.size_delta is not None]
            self._finish_tile(TileCalibrationResult(
                tile=tile,
                status="completed",
                home_measurement=home,
                step_scale=scale,
                size_delta=sum(size_deltas) / len(size_deltas) if size_deltas else None,
                warnings=self._warnings_for(tile),
            ))
        await self._park(tile)

    def _home_expectation(self, tile: TileAddress) -> tuple[Centered, float | None]:
        """
        Where the tile's blob should appear at home, and how far from it a
        blob may be accepted.

        Estimated from every home measured so far (spacing from measured
        pairs, origin averaged over them). Before the first measurement the
        nominal centered layout only ranks candidates and nothing is rejected.
        """
        measured = {
            tile_state.tile: tile_state.home_measurement.position
            for tile_state in self._state.tiles.values()
            if tile_state.home_measurement is not None and tile_state.tile != tile
        }
        rotation = self._settings.array_rotation
        expected = estimate_home_position(tile, measured, self._grid_size, self._blueprint_settings, rotation)
        if expected is None:
            return nominal_home_position(tile, self._grid_size, self._blueprint_settings, rotation), None
        return expected, self._settings.first_tile_tolerance

    def _remember_scale(self, scale: StepScale) -> None:
        """Keep the first measured per-step of each axis to predict later step tests."""
        reference = self._reference_scale or StepScale()
        self._reference_scale = StepScale(
            x=reference.x if reference.x is not None else scale.x,
            y=reference.y if reference.y is not None else scale.y,
        )

    async def _step_test(
        self,
        tile: TileAddress,
        axis: Axis,
        motor: MotorRef,
        home: BlobMeasurement,
    ) -> StepTestResult | None:
        """
        Move one axis by delta_steps and measure the displacement.

        The blob is looked for where the move should put it: home plus the
        delta times the known per-step. Until a tile has completed, a small
        interim move on this tile supplies that per-step.
        """
        delta = clamp_steps(self._settings.delta_steps)
        if delta == 0:
            return None
        per_step = getattr(self._reference_scale, axis) if self._reference_scale is not None else None
        if per_step is None:
            per_step = await self._interim_step_test(tile, axis, motor, home)

        shift = delta * per_step if per_step is not None else 0.0
        if axis == "x":
            expected = Centered(home.position.x + shift, home.position.y)
        else:
            expected = Centered(home.position.x, home.position.y + shift)

        await self._move_axis(tile, axis, motor, delta)
        measurement = await self._capture(
            tile, expected, self._settings.max_blob_distance, label=f"Step test {axis}",
        )
        await self._move_axis(tile, axis, motor, 0)
        if measurement is None:
            return None
        if axis == "x":
            displacement = measurement.position.x - home.position.x
        else:
            displacement = measurement.position.y - home.position.y
        return StepTestResult(
            axis=axis,
            delta_steps=delta,
            displacement=displacement,
            size_delta=measurement.size - home.size,
        )

    async def _interim_step_test(
        self,
        tile: TileAddress,
        axis: Axis,
        motor: MotorRef,
        home: BlobMeasurement,
    ) -> float | None:
        """Per-step from a small move, looked for around home with the wide tolerance."""
        delta = clamp_steps(self._settings.first_tile_interim_step_delta)
        if delta == 0:
            return None
        await self._move_axis(tile, axis, motor, delta)
        measurement = await self._capture(
            tile, home.position, self._settings.first_tile_tolerance, label=f"Interim step test {axis}",
        )
        if measurement is None:
            return None
        if axis == "x":
            displacement = measurement.position.x - home.position.x
        else:
            displacement = measurement.position.y - home.position.y
        per_step = compute_step_scale(delta, displacement)
        logger.debug("Tile %s interim %s: %d steps -> %.5f (per step %s)",
                     tile.key, axis, delta, displacement, per_step)
        return per_step

    async def _align_to_grid(self, summary: CalibrationRunSummary) -> None:
        """Move every completed tile so its reflection lands on its ideal grid position."""
        for tile in self._calibratable_tiles():
            await self._check_continue()
            result = summary.tiles.get(tile.key)
            if result is None or result.status != "completed" or result.home_offset is None:
                continue
            scale = result.step_scale or StepScale()
            targets = {
                "x": compute_alignment_target_steps(-result.home_offset.x, scale.x),
                "y": compute_alignment_target_steps(-result.home_offset.y, scale.y),
            }
            for axis, motor in assigned_axes(self._assignments[tile]):
                target = targets[axis]
                if target is None:
                    continue
                try:
                    await self._move_axis(tile, axis, motor, target)
                except CommandError as exc:
                    logger.warning("Align-to-grid move failed for %s: %s", tile.key, exc.describe())

    # ------------------------------------------------------------------
    # Device and detection helpers
    # ------------------------------------------------------------------

    async def _move_axis(self, tile: TileAddress, axis: Axis, motor: MotorRef, target: float) -> None:
        position = clamp_steps(round_steps(target))
        if self._axis_positions.get(motor) == position:
            return
        try:
            await call_with_retry(
                self._retry,
                lambda: self._motors.move_motor(motor, position),
                f"move {motor.key}",
            )
        except CommandError as exc:
            exc.tile = exc.tile or tile
            exc.axis = exc.axis or axis
            exc.motor = exc.motor or motor
            self._axis_positions.pop(motor, None)
            self._log("move", motor.key, "failed", exc.describe(), tile)
            raise
        self._axis_positions[motor] = position
        self._log("move", motor.key, "ok", f"{axis} -> {position}", tile)

    async def _move_tile(self, tile: TileAddress, pose: Pose) -> None:
        """Move both assigned axes to a pose concurrently; raises the first failure."""
        x, y = compute_pose_targets(
            tile,
            pose,
            self._grid_size,
            self._settings.staging_strategy,
            self._settings.array_rotation,
        )
        targets = {"x": x, "y": y}
        outcome = await scatter_gather(
            assigned_axes(self._assignments[tile]),
            lambda pair: self._move_axis(tile, pair[0], pair[1], targets[pair[0]]),
        )
        if outcome.failed:
            raise outcome.failed[0][1]

    async def _park(self, tile: TileAddress) -> None:
        try:
            await self._move_tile(tile, "aside")
        except CommandError as exc:
            logger.warning("Could not park tile %s: %s", tile.key, exc.describe())

    async def _capture(
        self,
        tile: TileAddress,
        expected: Centered | None,
        tolerance: float | None,
        label: str = "Detection",
    ) -> BlobMeasurement | None:
        """
        Detect the tile's blob, retrying per the retry policy.

        Each attempt takes samples_per_measurement detections and merges them
        with a MAD filter; an unreliable merge counts as a failed attempt.
        Every retry and the final miss are recorded as tile warnings.
        """
        for attempt in range(self._retry.max_attempts):
            await self._check_continue()
            samples = []
            for _ in range(max(1, self._settings.samples_per_measurement)):
                sample = await self._detect_once(tile, expected, tolerance)
                if sample is not None:
                    samples.append(sample)
            measurement = combine_samples(
                samples,
                threshold=self._settings.sample_mad_threshold,
                jitter_floor=self._settings.sample_jitter_floor,
            )
            # Missed detections count against the sample budget too
            required = max(1, self._settings.samples_per_measurement)
            if measurement is not None and measurement.stats.sample_count * 2 > required:
                return measurement
            if attempt + 1 < self._retry.max_attempts:
                self._warn(tile, f"{label}: attempt {attempt + 1} found no reliable blob, retrying")
                await asyncio.sleep(self._retry.delay_for(attempt))
        self._warn(tile, f"{label}: no blob after {self._retry.max_attempts} attempt(s)")
        return None

    async def _detect_once(
        self,
        tile: TileAddress,
        expected: Centered | None,
        tolerance: float | None,
    ) -> BlobMeasurement | None:
        await self._check_continue()
        try:
            response = await self._session.detect_blobs(
                self._region,
                self._detector_params,
                self._settings.sample_timeout_s,
            )
        except DetectionTimeoutError as exc:
            self._log("detect", tile.key, "timeout", str(exc), tile)
            return None
        if response is None:
            # Session closed under us
            await self._check_continue()
            return None
        measurement = select_blob(response.blobs, expected, tolerance)
        if measurement is None:
            self._log("detect", tile.key, "not-detected", f"request {response.request_id}", tile)
        return measurement

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _update(self, **changes) -> None:
        previous = self._state.phase
        self._state = replace(self._state, **changes)
        if self._state.phase != previous:
            logger.info("Calibration phase: %s -> %s", previous, self._state.phase)
        if self._on_state_change is not None:
            self._on_state_change(self._state)

    def _set_tile(self, tile: TileAddress, **changes) -> None:
        tiles = dict(self._state.tiles)
        tiles[tile.key] = replace(tiles[tile.key], **changes)
        self._update(tiles=tiles)

    def _finish_tile(self, result: TileCalibrationResult) -> None:
        self._results[result.tile] = result
        progress = self._state.progress
        if result.status == "completed":
            progress = replace(progress, completed=progress.completed + 1)
        elif result.status == "failed":
            progress = replace(progress, failed=progress.failed + 1)
        elif result.status == "skipped":
            progress = replace(progress, skipped=progress.skipped + 1)
        self._update(progress=progress)
        self._set_tile(
            result.tile,
            status=result.status,
            home_measurement=result.home_measurement,
            step_scale=result.step_scale,
            warnings=result.warnings,
            error=result.error,
        )

    def _fail_tile(self, tile: TileAddress, message: str, **fields) -> None:
        logger.warning("Tile %s failed: %s", tile.key, message)
        self._finish_tile(TileCalibrationResult(
            tile=tile, status="failed", error=message, warnings=self._warnings_for(tile), **fields,
        ))

    def _warn(self, tile: TileAddress, message: str) -> None:
        logger.warning("Tile %s: %s", tile.key, message)
        warnings = self._tile_warnings.setdefault(tile, [])
        warnings.append(message)
        self._set_tile(tile, warnings=tuple(warnings))

    def _warnings_for(self, tile: TileAddress) -> tuple[str, ...]:
        return tuple(self._tile_warnings.get(tile, ()))

    def _log(
        self,
        kind: str,
        target: str,
        outcome: str,
        detail: str | None = None,
        tile: TileAddress | None = None,
    ) -> None:
        self._command_log.append(CommandLogEntry(
            sequence=len(self._command_log) + 1,
            timestamp=time.time(),
            kind=kind,
            target=target,
            outcome=outcome,
            detail=detail,
            tile_key=tile.key if tile is not None else None,
        ))
