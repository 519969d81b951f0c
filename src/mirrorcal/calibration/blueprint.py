"""
Grid blueprint inference.

Turns per-tile home measurements into a shared grid geometry. Each tile's
ideal center is

    grid_origin + (col * spacing_x + width / 2, row * spacing_y + height / 2)

with spacing = footprint + gap. Pure functions - no threading, no state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from itertools import combinations
from typing import Mapping

import numpy as np

from ..coords import rebase_measurement
from ..grid import camera_tile
from ..stats import detect_outliers
from ..types import (
    BlobMeasurement,
    BlueprintSettings,
    CalibrationGridBlueprint,
    Centered,
    GridSize,
    OutlierAnalysis,
    Resolution,
    Size2D,
    StepScale,
    StepTestResult,
    TileAddress,
)
from .bounds import STEP_EPSILON


@dataclass(frozen=True, slots=True)
class BlueprintInference:
    """Blueprint plus the diagnostics that produced it."""

    blueprint: CalibrationGridBlueprint | None
    outliers: OutlierAnalysis
    implied_origins: dict[str, Centered] = field(default_factory=dict)
    footprint_refined: bool = False


# ============================================================================
# Step scale
# ============================================================================


def compute_step_scale(delta_steps: float, displacement: float) -> float | None:
    """
    Displacement per step, or None when the test is degenerate.

    Zero steps, zero displacement and non-finite values yield None rather than
    zero or infinity.
    """
    if not math.isfinite(delta_steps) or not math.isfinite(displacement):
        return None
    if abs(delta_steps) < STEP_EPSILON or abs(displacement) < STEP_EPSILON:
        return None
    per_step = displacement / delta_steps
    if not math.isfinite(per_step) or abs(per_step) < STEP_EPSILON:
        return None
    return per_step


def build_step_scale(
    x: StepTestResult | None,
    y: StepTestResult | None,
) -> StepScale | None:
    """StepScale from per-axis step tests. None when neither axis is usable."""
    scale_x = compute_step_scale(x.delta_steps, x.displacement) if x is not None else None
    scale_y = compute_step_scale(y.delta_steps, y.displacement) if y is not None else None
    if scale_x is None and scale_y is None:
        return None
    return StepScale(x=scale_x, y=scale_y)


# ============================================================================
# Grid geometry
# ============================================================================


def tile_spacing(footprint: Size2D, gap: Size2D) -> tuple[float, float]:
    return footprint.width + gap.width, footprint.height + gap.height


def compute_implied_origin(
    center: Centered,
    tile: TileAddress,
    footprint: Size2D,
    gap: Size2D,
) -> Centered:
    """Grid origin that would put this tile's ideal center exactly at center."""
    spacing_x, spacing_y = tile_spacing(footprint, gap)
    return Centered(
        center.x - (tile.col * spacing_x + footprint.width / 2.0),
        center.y - (tile.row * spacing_y + footprint.height / 2.0),
    )


def compute_grid_origin(implied_origins: list[Centered]) -> Centered | None:
    """Mean of the implied origins, or None when there are none."""
    if not implied_origins:
        return None
    xs = np.array([origin.x for origin in implied_origins], dtype=np.float64)
    ys = np.array([origin.y for origin in implied_origins], dtype=np.float64)
    return Centered(float(xs.mean()), float(ys.mean()))


def compute_axis_pitch(samples: list[float]) -> float | None:
    """Median of per-index spacing samples."""
    finite = [s for s in samples if math.isfinite(s)]
    if not finite:
        return None
    return float(np.median(finite))


def collect_pitch_samples(
    positions: Mapping[TileAddress, Centered],
) -> tuple[list[float], list[float]]:
    """
    Spacing samples from every pair of measured tiles.

    A pair separated by n columns contributes dx / n to the x samples; rows
    likewise contribute to y.
    """
    samples_x: list[float] = []
    samples_y: list[float] = []
    for (tile_a, pos_a), (tile_b, pos_b) in combinations(positions.items(), 2):
        if tile_a.col != tile_b.col:
            samples_x.append((pos_b.x - pos_a.x) / (tile_b.col - tile_a.col))
        if tile_a.row != tile_b.row:
            samples_y.append((pos_b.y - pos_a.y) / (tile_b.row - tile_a.row))
    return samples_x, samples_y


def refine_footprint(
    positions: Mapping[TileAddress, Centered],
    nominal: Size2D,
    gap: Size2D,
) -> tuple[Size2D, bool]:
    """
    Best-effort footprint from measured spacing.

    Each axis falls back to the nominal footprint unless at least two
    measured tiles are separated along it and the measured pitch exceeds
    the gap.

    Returns:
        (footprint, refined) where refined is True if any axis changed
    """
    samples_x, samples_y = collect_pitch_samples(positions)
    pitch_x = compute_axis_pitch(samples_x)
    pitch_y = compute_axis_pitch(samples_y)

    width = nominal.width
    height = nominal.height
    refined = False
    if pitch_x is not None and pitch_x - gap.width > STEP_EPSILON:
        width = pitch_x - gap.width
        refined = True
    if pitch_y is not None and pitch_y - gap.height > STEP_EPSILON:
        height = pitch_y - gap.height
        refined = True
    return Size2D(width, height), refined


def nominal_home_position(
    tile: TileAddress,
    grid: GridSize,
    settings: BlueprintSettings,
    array_rotation: int = 0,
) -> Centered:
    """Home position of a tile if the grid sat centered in the frame at nominal spacing."""
    pitch = settings.tile_size + settings.gap
    rows, cols = (grid.cols, grid.rows) if array_rotation % 180 == 90 else (grid.rows, grid.cols)
    placed = camera_tile(tile, grid, array_rotation)
    return Centered(
        (placed.col - (cols - 1) / 2.0) * pitch,
        (placed.row - (rows - 1) / 2.0) * pitch,
    )


def estimate_home_position(
    tile: TileAddress,
    measured: Mapping[TileAddress, Centered],
    grid: GridSize,
    settings: BlueprintSettings,
    array_rotation: int = 0,
) -> Centered | None:
    """
    Predicted home position of a tile from the tiles measured so far.

    Tiles are placed in camera order (array rotation applied). Spacing comes
    from measured pairs, falling back to tile_size + gap on an axis with no
    separated pair; the origin is the mean of the origins the measured tiles
    back-calculate to.

    Returns:
        Predicted position, or None before any tile has been measured
    """
    if not measured:
        return None
    placed = {
        camera_tile(address, grid, array_rotation): position
        for address, position in measured.items()
    }
    nominal = settings.tile_size + settings.gap
    samples_x, samples_y = collect_pitch_samples(placed)
    pitch_x = compute_axis_pitch(samples_x)
    pitch_y = compute_axis_pitch(samples_y)
    if pitch_x is None or abs(pitch_x) < STEP_EPSILON:
        pitch_x = nominal
    if pitch_y is None or abs(pitch_y) < STEP_EPSILON:
        pitch_y = nominal

    origin = compute_grid_origin([
        Centered(position.x - address.col * pitch_x, position.y - address.row * pitch_y)
        for address, position in placed.items()
    ])
    target = camera_tile(tile, grid, array_rotation)
    return Centered(origin.x + target.col * pitch_x, origin.y + target.row * pitch_y)


def compute_grid_extent(grid: GridSize, footprint: Size2D, gap: Size2D) -> Size2D:
    """Overall size of the grid, outer tile edge to outer tile edge."""
    spacing_x, spacing_y = tile_spacing(footprint, gap)
    return Size2D(
        grid.cols * spacing_x - gap.width,
        grid.rows * spacing_y - gap.height,
    )


def compute_camera_origin_offset(origin: Centered, extent: Size2D) -> Centered:
    """Raw position of the grid center; subtracting it centers the grid on (0, 0)."""
    return Centered(origin.x + extent.width / 2.0, origin.y + extent.height / 2.0, delta=True)


def recenter(position: Centered, blueprint: CalibrationGridBlueprint) -> Centered:
    """Raw measurement position expressed in the blueprint's recentered frame."""
    offset = blueprint.camera_origin_offset
    return Centered(position.x - offset.x, position.y - offset.y)


def compute_ideal_center(blueprint: CalibrationGridBlueprint, tile: TileAddress) -> Centered:
    """Ideal center of a tile in the recentered frame."""
    footprint = blueprint.adjusted_tile_footprint
    spacing_x, spacing_y = tile_spacing(footprint, blueprint.tile_gap)
    return Centered(
        blueprint.grid_origin.x + tile.col * spacing_x + footprint.width / 2.0,
        blueprint.grid_origin.y + tile.row * spacing_y + footprint.height / 2.0,
    )


def compute_home_offset(
    measured: Centered,
    blueprint: CalibrationGridBlueprint,
    tile: TileAddress,
) -> Centered:
    """
    Measured (raw) position minus the tile's ideal position.

    Returns:
        Centered delta; moving the tile by its negation puts it on the grid
    """
    local = recenter(measured, blueprint)
    ideal = compute_ideal_center(blueprint, tile)
    return Centered(local.x - ideal.x, local.y - ideal.y, delta=True)


# ============================================================================
# Outliers
# ============================================================================


def analyze_outliers(
    implied_origins: Mapping[TileAddress, Centered],
    threshold: float,
    enabled: bool = True,
) -> OutlierAnalysis:
    """
    Flag tiles whose implied origin disagrees with the rest.

    A tile is an outlier when either axis is beyond threshold * nMAD from the
    median implied origin.
    """
    if not enabled or not implied_origins:
        return OutlierAnalysis(enabled=enabled, threshold=threshold)

    tiles = list(implied_origins)
    xs = [implied_origins[t].x for t in tiles]
    ys = [implied_origins[t].y for t in tiles]
    result_x = detect_outliers(xs, threshold)
    result_y = detect_outliers(ys, threshold)
    mask = result_x.mask | result_y.mask

    return OutlierAnalysis(
        enabled=True,
        outlier_tile_keys=tuple(t.key for t, flagged in zip(tiles, mask) if flagged),
        median=Centered(result_x.median, result_y.median),
        nmad_x=result_x.nmad,
        nmad_y=result_y.nmad,
        threshold=threshold,
    )


# ============================================================================
# Inference
# ============================================================================


def _valid_positions(
    measurements: Mapping[TileAddress, BlobMeasurement],
    resolution: Resolution | None,
) -> dict[TileAddress, Centered]:
    positions = {}
    for tile, measurement in measurements.items():
        if measurement is None:
            continue
        if resolution is not None:
            measurement = rebase_measurement(measurement, resolution)
        pos = measurement.position
        if math.isfinite(pos.x) and math.isfinite(pos.y):
            positions[tile] = pos
    return positions


def infer_blueprint(
    measurements: Mapping[TileAddress, BlobMeasurement],
    grid: GridSize,
    settings: BlueprintSettings,
    resolution: Resolution | None = None,
) -> BlueprintInference:
    """
    Infer the shared grid geometry from per-tile home measurements.

    Spacing starts from the nominal footprint (settings.tile_size + gap) and is
    refined from measured spacing when at least two tiles are separated along
    an axis. Outlier tiles are excluded from spacing and origin but remain in
    the caller's results.

    Args:
        measurements: Tile -> home measurement (any subset of the grid)
        grid: Grid dimensions
        settings: Nominal geometry and outlier settings
        resolution: If given, measurements are first rebased onto it

    Returns:
        BlueprintInference; blueprint is None with zero valid measurements
    """
    positions = _valid_positions(measurements, resolution)
    gap = Size2D(settings.gap, settings.gap)
    nominal = Size2D(settings.tile_size, settings.tile_size)

    if not positions:
        return BlueprintInference(
            blueprint=None,
            outliers=OutlierAnalysis(enabled=settings.outlier_filter, threshold=settings.outlier_threshold),
        )

    def footprint_for(subset: Mapping[TileAddress, Centered]) -> tuple[Size2D, bool]:
        if settings.refine_footprint:
            return refine_footprint(subset, nominal, gap)
        return nominal, False

    # Pair-median spacing tolerates a minority of bad tiles, so it is good
    # enough to screen implied origins before the final pass.
    footprint, _ = footprint_for(positions)
    implied = {
        tile: compute_implied_origin(pos, tile, footprint, gap)
        for tile, pos in positions.items()
    }
    outliers = analyze_outliers(implied, settings.outlier_threshold, settings.outlier_filter)

    inliers = {
        tile: pos for tile, pos in positions.items()
        if tile.key not in outliers.outlier_tile_keys
    } or positions
    footprint, refined = footprint_for(inliers)
    implied = {
        tile: compute_implied_origin(pos, tile, footprint, gap)
        for tile, pos in positions.items()
    }
    raw_origin = compute_grid_origin([implied[tile] for tile in inliers])

    extent = compute_grid_extent(grid, footprint, gap)
    offset = compute_camera_origin_offset(raw_origin, extent)
    blueprint = CalibrationGridBlueprint(
        camera_origin_offset=offset,
        grid_origin=Centered(raw_origin.x - offset.x, raw_origin.y - offset.y),
        adjusted_tile_footprint=footprint,
        tile_gap=gap,
        grid_size=grid,
    )
    return BlueprintInference(
        blueprint=blueprint,
        outliers=outliers,
        implied_origins={tile.key: origin for tile, origin in implied.items()},
        footprint_refined=refined,
    )
