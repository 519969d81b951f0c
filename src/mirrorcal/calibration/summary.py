"""
Run summary computation.

Combines per-tile results of a calibration run with the inferred blueprint.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from ..coords import rebase_measurement
from ..types import (
    BlueprintSettings,
    CalibrationGridBlueprint,
    CalibrationRunSummary,
    CameraMetadata,
    GridSize,
    Resolution,
    StepTestSettings,
    TileCalibrationResult,
)
from .blueprint import BlueprintInference, compute_home_offset, infer_blueprint, recenter
from .bounds import compute_footprint_bounds, compute_motor_reach_bounds


def derive_tile_result(
    result: TileCalibrationResult,
    blueprint: CalibrationGridBlueprint | None,
    resolution: Resolution | None = None,
) -> TileCalibrationResult:
    """
    Attach blueprint-derived values to a tile result.

    Footprint bounds need only the blueprint; reach bounds need a home
    measurement and step scale; the home offset is only set for completed
    tiles.

    Args:
        result: Tile result carrying a raw home measurement
        blueprint: Fixed blueprint, or None
        resolution: Capture resolution the blueprint was computed at

    Returns:
        New TileCalibrationResult (the input is never mutated)
    """
    if blueprint is None:
        return replace(result, home_offset=None, motor_reach_bounds=None, footprint_bounds=None)

    footprint = compute_footprint_bounds(blueprint, result.tile)
    home = result.home_measurement
    if home is None:
        return replace(result, home_offset=None, motor_reach_bounds=None, footprint_bounds=footprint)

    if resolution is not None:
        home = rebase_measurement(home, resolution)
    local = recenter(home.position, blueprint)
    reach = compute_motor_reach_bounds(local, result.step_scale)
    offset = (
        compute_home_offset(home.position, blueprint, result.tile)
        if result.status == "completed"
        else None
    )
    return replace(
        result,
        home_offset=offset,
        motor_reach_bounds=reach,
        footprint_bounds=footprint,
    )


def infer_from_results(
    results: Iterable[TileCalibrationResult],
    grid: GridSize,
    settings: BlueprintSettings,
    resolution: Resolution | None = None,
) -> BlueprintInference:
    """Blueprint inference over the completed tiles of a result set."""
    measurements = {
        result.tile: result.home_measurement
        for result in results
        if result.status == "completed" and result.home_measurement is not None
    }
    return infer_blueprint(measurements, grid, settings, resolution)


def compute_run_summary(
    results: Iterable[TileCalibrationResult],
    grid: GridSize,
    camera: CameraMetadata,
    step_test: StepTestSettings,
    settings: BlueprintSettings,
) -> CalibrationRunSummary:
    """
    Full recomputation: infer a blueprint and derive every tile against it.

    Returns:
        CalibrationRunSummary; blueprint is None when no tile completed
    """
    results = list(results)
    inference = infer_from_results(results, grid, settings, camera.resolution)
    tiles = {
        result.tile.key: derive_tile_result(result, inference.blueprint, camera.resolution)
        for result in results
    }
    return CalibrationRunSummary(
        blueprint=inference.blueprint,
        camera=camera,
        step_test=step_test,
        tiles=tiles,
        outliers=inference.outliers,
    )
