"""
Profile merge engine.

Folds freshly recalibrated tiles into an existing run summary. The existing
blueprint is reused verbatim so untouched tiles do not drift; only merged
tiles are derived again against it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from ..types import (
    BlobMeasurement,
    BlueprintSettings,
    CalibrationRunSummary,
    GridSize,
    StepScale,
    TileAddress,
    TileCalibrationResult,
)
from .summary import compute_run_summary, derive_tile_result

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MergeResult:
    updated_tiles: tuple[str, ...]  # Keys of tiles whose result changed
    summary: CalibrationRunSummary
    recomputed: bool = False  # True when the blueprint was rebuilt from scratch


# ============================================================================
# Extraction helpers
# ============================================================================


def extract_tile_addresses(summary: CalibrationRunSummary) -> list[TileAddress]:
    """Tiles present in a summary, row-major."""
    return sorted(
        (result.tile for result in summary.tiles.values()),
        key=lambda tile: (tile.row, tile.col),
    )


def extract_existing_measurements(
    summary: CalibrationRunSummary,
) -> dict[TileAddress, BlobMeasurement]:
    """Raw home measurements of the summary's completed tiles."""
    return {
        result.tile: result.home_measurement
        for result in summary.tiles.values()
        if result.status == "completed" and result.home_measurement is not None
    }


def extract_first_tile_step_scale(summary: CalibrationRunSummary) -> StepScale | None:
    """
    Step scale of the first completed tile (row-major).

    Useful as a prior for tiles whose own step test failed.
    """
    for tile in extract_tile_addresses(summary):
        result = summary.tiles[tile.key]
        if result.status == "completed" and result.step_scale is not None:
            return result.step_scale
    return None


# ============================================================================
# Merge
# ============================================================================


def merge_tile_results(
    existing: CalibrationRunSummary,
    new_results: Iterable[TileCalibrationResult],
    grid: GridSize,
    settings: BlueprintSettings,
) -> MergeResult:
    """
    Merge several recalibrated tiles in one pass.

    With an existing blueprint, tiles not in new_results are returned as the
    very same objects and the blueprint is carried over unchanged. Without one,
    falls back to full recomputation over existing plus new tiles.

    Args:
        existing: Current run summary
        new_results: Fresh per-tile results (raw home measurements)
        grid: Grid dimensions
        settings: Blueprint settings, used only for the fallback

    Returns:
        MergeResult with the keys of the merged tiles and the new summary
    """
    incoming = {result.tile.key: result for result in new_results}
    if not incoming:
        return MergeResult(updated_tiles=(), summary=existing)

    if existing.blueprint is None:
        logger.info("No blueprint in existing profile; recomputing from %d tiles",
                    len(existing.tiles) + len(incoming))
        combined = {**existing.tiles, **incoming}
        summary = compute_run_summary(
            combined.values(),
            grid,
            existing.camera,
            existing.step_test,
            settings,
        )
        return MergeResult(updated_tiles=tuple(incoming), summary=summary, recomputed=True)

    tiles = dict(existing.tiles)
    for key, result in incoming.items():
        tiles[key] = derive_tile_result(result, existing.blueprint, existing.camera.resolution)
        logger.debug("Merged tile %s (%s)", key, result.status)

    return MergeResult(
        updated_tiles=tuple(incoming),
        summary=replace(existing, tiles=tiles),
    )


def merge_tile_result(
    existing: CalibrationRunSummary,
    new_result: TileCalibrationResult,
    grid: GridSize,
    settings: BlueprintSettings,
) -> MergeResult:
    """Merge a single recalibrated tile. See merge_tile_results."""
    return merge_tile_results(existing, [new_result], grid, settings)
