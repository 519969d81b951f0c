"""
Tests for mirrorcal.calibration.merge and run summaries.
"""

import pytest

from mirrorcal.calibration.merge import (
    extract_existing_measurements,
    extract_first_tile_step_scale,
    extract_tile_addresses,
    merge_tile_result,
    merge_tile_results,
)
from mirrorcal.calibration.summary import compute_run_summary
from mirrorcal.types import (
    BlobMeasurement,
    BlueprintSettings,
    CameraMetadata,
    Centered,
    GridSize,
    StepScale,
    StepTestSettings,
    TileAddress,
    TileCalibrationResult,
)


def completed(tile, x, y, resolution, scale=StepScale(x=0.0005, y=0.0005)):
    return TileCalibrationResult(
        tile=tile,
        status="completed",
        home_measurement=BlobMeasurement(position=Centered(x, y), size=0.05, resolution=resolution),
        step_scale=scale,
    )


class TestRunSummary:
    def test_completed_tiles_get_derived_fields(self, sample_summary):
        assert sample_summary.blueprint is not None
        for result in sample_summary.tiles.values():
            assert result.home_offset is not None
            assert result.home_offset.x == pytest.approx(0.0, abs=1e-9)
            assert result.footprint_bounds is not None
            assert result.motor_reach_bounds is not None

    def test_failed_tile_has_no_offset(self, resolution, sample_blueprint_settings):
        results = [
            completed(TileAddress(0, 0), -0.1, 0.0, resolution),
            TileCalibrationResult(
                tile=TileAddress(0, 1),
                status="failed",
                home_measurement=BlobMeasurement(position=Centered(0.1, 0.0), resolution=resolution),
                error="Step test x: blob not detected",
            ),
        ]
        summary = compute_run_summary(
            results, GridSize(1, 2), CameraMetadata(resolution), StepTestSettings(), sample_blueprint_settings
        )
        failed = summary.tiles["0-1"]
        assert failed.home_offset is None
        assert failed.footprint_bounds is not None
        assert failed.error == "Step test x: blob not detected"

    def test_no_completed_tiles_has_no_blueprint(self, resolution, sample_blueprint_settings):
        summary = compute_run_summary(
            [TileCalibrationResult(tile=TileAddress(0, 0), status="failed", error="boom")],
            GridSize(1, 1),
            CameraMetadata(resolution),
            StepTestSettings(),
            sample_blueprint_settings,
        )
        assert summary.blueprint is None
        assert summary.tiles["0-0"].footprint_bounds is None


class TestExtraction:
    def test_tile_addresses_row_major(self, sample_summary):
        assert extract_tile_addresses(sample_summary) == [
            TileAddress(0, 0), TileAddress(0, 1), TileAddress(1, 0), TileAddress(1, 1),
        ]

    def test_existing_measurements(self, sample_summary):
        existing = extract_existing_measurements(sample_summary)
        assert set(existing) == set(extract_tile_addresses(sample_summary))

    def test_first_step_scale(self, sample_summary):
        assert extract_first_tile_step_scale(sample_summary) == StepScale(x=0.0005, y=0.0005)


class TestMerge:
    def test_untouched_tiles_are_identical(self, sample_summary, resolution, sample_blueprint_settings):
        fresh = completed(TileAddress(0, 0), -0.04, -0.1, resolution, StepScale(x=0.0004, y=0.0006))
        merged = merge_tile_result(sample_summary, fresh, GridSize(2, 2), sample_blueprint_settings)

        assert merged.updated_tiles == ("0-0",)
        assert merged.recomputed is False
        for key in ("0-1", "1-0", "1-1"):
            assert merged.summary.tiles[key] is sample_summary.tiles[key]
        assert merged.summary.blueprint is sample_summary.blueprint
        assert merged.summary.blueprint.grid_origin == sample_summary.blueprint.grid_origin
        assert (merged.summary.blueprint.adjusted_tile_footprint
                == sample_summary.blueprint.adjusted_tile_footprint)

    def test_merged_tile_derived_against_existing_blueprint(
        self, sample_summary, resolution, sample_blueprint_settings
    ):
        # Tile (0,0) sat at (-0.05, -0.12); move it by (+0.01, +0.02)
        fresh = completed(TileAddress(0, 0), -0.04, -0.10, resolution)
        merged = merge_tile_results(sample_summary, [fresh], GridSize(2, 2), sample_blueprint_settings)
        result = merged.summary.tiles["0-0"]
        assert result.home_offset.x == pytest.approx(0.01)
        assert result.home_offset.y == pytest.approx(0.02)
        assert result.step_scale == StepScale(x=0.0005, y=0.0005)

    def test_input_summary_not_mutated(self, sample_summary, resolution, sample_blueprint_settings):
        before = dict(sample_summary.tiles)
        merge_tile_result(
            sample_summary,
            completed(TileAddress(1, 1), 0.2, 0.2, resolution),
            GridSize(2, 2),
            sample_blueprint_settings,
        )
        assert sample_summary.tiles == before

    def test_empty_merge(self, sample_summary, sample_blueprint_settings):
        merged = merge_tile_results(sample_summary, [], GridSize(2, 2), sample_blueprint_settings)
        assert merged.summary is sample_summary
        assert merged.updated_tiles == ()

    def test_without_blueprint_recomputes(self, resolution, sample_blueprint_settings):
        empty = compute_run_summary(
            [TileCalibrationResult(tile=TileAddress(0, 0), status="failed", error="lost")],
            GridSize(1, 2),
            CameraMetadata(resolution),
            StepTestSettings(),
            sample_blueprint_settings,
        )
        merged = merge_tile_results(
            empty,
            [completed(TileAddress(0, 0), -0.1, 0.0, resolution), completed(TileAddress(0, 1), 0.1, 0.0, resolution)],
            GridSize(1, 2),
            BlueprintSettings(tile_size=0.2),
        )
        assert merged.recomputed is True
        assert merged.summary.blueprint is not None
        assert merged.summary.tiles["0-0"].status == "completed"
