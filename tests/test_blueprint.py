"""
Tests for mirrorcal.calibration.blueprint (grid inference).
"""

import math

import pytest

from mirrorcal.calibration.blueprint import (
    build_step_scale,
    compute_grid_origin,
    compute_home_offset,
    compute_ideal_center,
    compute_implied_origin,
    compute_step_scale,
    estimate_home_position,
    infer_blueprint,
    nominal_home_position,
    refine_footprint,
)
from mirrorcal.types import (
    BlobMeasurement,
    BlueprintSettings,
    CalibrationGridBlueprint,
    Centered,
    GridSize,
    Resolution,
    Size2D,
    StepTestResult,
    TileAddress,
)


def measurements(positions: dict, resolution=None) -> dict:
    return {
        tile: BlobMeasurement(position=Centered(x, y), size=0.05, resolution=resolution)
        for tile, (x, y) in positions.items()
    }


def ideal_raw(blueprint: CalibrationGridBlueprint, tile: TileAddress) -> tuple[float, float]:
    """Ideal tile center in raw camera Centered coordinates."""
    local = compute_ideal_center(blueprint, tile)
    offset = blueprint.camera_origin_offset
    return local.x + offset.x, local.y + offset.y


@pytest.fixture
def simple_blueprint():
    return CalibrationGridBlueprint(
        camera_origin_offset=Centered(0.1, 0.0, delta=True),
        grid_origin=Centered(-0.2, -0.2),
        adjusted_tile_footprint=Size2D(0.2, 0.2),
        tile_gap=Size2D(0.0, 0.0),
        grid_size=GridSize(2, 2),
    )


class TestStepScale:
    def test_known_displacement(self):
        assert compute_step_scale(200, 0.1) == pytest.approx(0.0005)

    def test_negative_direction(self):
        assert compute_step_scale(200, -0.1) == pytest.approx(-0.0005)

    def test_zero_displacement_yields_none(self):
        assert compute_step_scale(200, 0.0) is None

    def test_zero_steps_yields_none(self):
        assert compute_step_scale(0, 0.1) is None

    def test_non_finite_yields_none(self):
        assert compute_step_scale(200, math.nan) is None
        assert compute_step_scale(math.inf, 0.1) is None

    def test_build_from_one_axis(self):
        scale = build_step_scale(StepTestResult("x", 200, 0.1), None)
        assert scale.x == pytest.approx(0.0005)
        assert scale.y is None

    def test_build_degenerate(self):
        assert build_step_scale(StepTestResult("x", 200, 0.0), None) is None
        assert build_step_scale(None, None) is None


class TestGeometry:
    def test_implied_origin(self):
        origin = compute_implied_origin(
            Centered(0.3, 0.1), TileAddress(1, 2), Size2D(0.2, 0.2), Size2D(0.0, 0.0)
        )
        assert origin.x == pytest.approx(0.3 - (2 * 0.2 + 0.1))
        assert origin.y == pytest.approx(0.1 - (0.2 + 0.1))

    def test_grid_origin_is_mean(self):
        origin = compute_grid_origin([Centered(0.0, 0.0), Centered(0.2, -0.2)])
        assert origin == Centered(0.1, -0.1)
        assert compute_grid_origin([]) is None

    def test_ideal_center(self, simple_blueprint):
        center = compute_ideal_center(simple_blueprint, TileAddress(1, 0))
        assert center.x == pytest.approx(-0.1)
        assert center.y == pytest.approx(0.1)

    def test_home_offset_uses_camera_offset(self, simple_blueprint):
        offset = compute_home_offset(Centered(0.05, 0.12), simple_blueprint, TileAddress(1, 0))
        assert offset.delta is True
        assert offset.x == pytest.approx(0.05)
        assert offset.y == pytest.approx(0.02)

    def test_refine_needs_separated_tiles(self):
        nominal = Size2D(0.2, 0.2)
        footprint, refined = refine_footprint(
            {TileAddress(0, 0): Centered(0.0, 0.0)}, nominal, Size2D(0.0, 0.0)
        )
        assert footprint == nominal
        assert refined is False

    def test_refine_per_axis(self):
        """Tiles sharing a row refine the width only."""
        footprint, refined = refine_footprint(
            {TileAddress(0, 0): Centered(0.0, 0.0), TileAddress(0, 2): Centered(0.5, 0.0)},
            Size2D(0.2, 0.2),
            Size2D(0.0, 0.0),
        )
        assert refined is True
        assert footprint.width == pytest.approx(0.25)
        assert footprint.height == 0.2


class TestExpectedHome:
    def test_nothing_measured(self, sample_blueprint_settings):
        assert estimate_home_position(TileAddress(0, 1), {}, GridSize(1, 4), sample_blueprint_settings) is None

    def test_nominal_layout_is_centered(self, sample_blueprint_settings):
        position = nominal_home_position(TileAddress(0, 0), GridSize(2, 2), sample_blueprint_settings)
        assert position.x == pytest.approx(-0.1)
        assert position.y == pytest.approx(-0.1)

    def test_nominal_layout_rotated(self, sample_blueprint_settings):
        """At 90 degrees a 2x3 grid is seen as 3 rows of 2."""
        position = nominal_home_position(TileAddress(0, 0), GridSize(2, 3), sample_blueprint_settings, 90)
        assert position.x == pytest.approx(0.1)
        assert position.y == pytest.approx(-0.2)

    def test_single_tile_uses_nominal_spacing(self, sample_blueprint_settings):
        measured = {TileAddress(0, 0): Centered(-0.5, 0.05)}
        position = estimate_home_position(TileAddress(1, 2), measured, GridSize(2, 4), sample_blueprint_settings)
        assert position.x == pytest.approx(-0.1)
        assert position.y == pytest.approx(0.25)

    def test_measured_spacing_replaces_nominal(self, sample_blueprint_settings):
        """A 0.35 pitch row predicts the far tile where it really is."""
        measured = {
            TileAddress(0, 0): Centered(-0.52, 0.0),
            TileAddress(0, 1): Centered(-0.18, 0.01),
        }
        position = estimate_home_position(TileAddress(0, 3), measured, GridSize(1, 4), sample_blueprint_settings)
        assert position.x == pytest.approx(-0.52 + 3 * 0.34)
        assert position.y == pytest.approx(0.005)

    def test_rotation_reverses_camera_order(self, sample_blueprint_settings):
        measured = {
            TileAddress(0, 0): Centered(0.5, 0.0),
            TileAddress(0, 1): Centered(0.15, 0.0),
        }
        position = estimate_home_position(
            TileAddress(0, 3), measured, GridSize(1, 4), sample_blueprint_settings, array_rotation=180,
        )
        assert position.x == pytest.approx(-0.55)


class TestInferBlueprint:
    def test_no_measurements(self, sample_blueprint_settings):
        inference = infer_blueprint({}, GridSize(2, 2), sample_blueprint_settings)
        assert inference.blueprint is None

    def test_diagonal_tiles_agree(self, sample_blueprint_settings):
        """(0,0) at (-0.3,-0.3) and (1,1) at (0.3,0.3) are both placed exactly."""
        data = measurements({TileAddress(0, 0): (-0.3, -0.3), TileAddress(1, 1): (0.3, 0.3)})
        inference = infer_blueprint(data, GridSize(2, 2), sample_blueprint_settings)
        blueprint = inference.blueprint

        origins = list(inference.implied_origins.values())
        assert origins[0].x == pytest.approx(origins[1].x, abs=1e-12)
        assert origins[0].y == pytest.approx(origins[1].y, abs=1e-12)

        for tile, expected in ((TileAddress(0, 0), -0.3), (TileAddress(1, 1), 0.3)):
            x, y = ideal_raw(blueprint, tile)
            assert x == pytest.approx(expected, abs=1e-12)
            assert y == pytest.approx(expected, abs=1e-12)
            offset = compute_home_offset(Centered(expected, expected), blueprint, tile)
            assert offset.x == pytest.approx(0.0, abs=1e-12)
            assert offset.y == pytest.approx(0.0, abs=1e-12)

    def test_single_tile_anchors_origin(self, sample_blueprint_settings):
        data = measurements({TileAddress(1, 0): (0.05, 0.1)})
        inference = infer_blueprint(data, GridSize(2, 2), sample_blueprint_settings)
        blueprint = inference.blueprint
        assert inference.footprint_refined is False
        assert blueprint.adjusted_tile_footprint == Size2D(0.2, 0.2)
        x, y = ideal_raw(blueprint, TileAddress(1, 0))
        assert x == pytest.approx(0.05)
        assert y == pytest.approx(0.1)

    def test_grid_is_recentered(self, sample_blueprint_settings):
        """The recentered grid is symmetric about (0, 0)."""
        positions = {
            TileAddress(r, c): (0.1 + c * 0.25, -0.05 + r * 0.25)
            for r in range(3) for c in range(3)
        }
        inference = infer_blueprint(measurements(positions), GridSize(3, 3), sample_blueprint_settings)
        blueprint = inference.blueprint
        assert inference.footprint_refined is True
        assert blueprint.adjusted_tile_footprint.width == pytest.approx(0.25)
        assert blueprint.grid_origin.x == pytest.approx(-0.375)
        assert blueprint.grid_origin.y == pytest.approx(-0.375)
        center = compute_ideal_center(blueprint, TileAddress(1, 1))
        assert center.x == pytest.approx(0.0, abs=1e-12)
        assert center.y == pytest.approx(0.0, abs=1e-12)

    def test_gap_is_subtracted_from_pitch(self):
        settings = BlueprintSettings(tile_size=0.2, gap=0.05)
        positions = {TileAddress(0, c): (c * 0.25, 0.0) for c in range(3)}
        inference = infer_blueprint(measurements(positions), GridSize(1, 3), settings)
        assert inference.blueprint.adjusted_tile_footprint.width == pytest.approx(0.2)
        assert inference.blueprint.tile_gap == Size2D(0.05, 0.05)

    def test_refinement_disabled_keeps_nominal(self):
        settings = BlueprintSettings(tile_size=0.2, refine_footprint=False)
        positions = {TileAddress(0, c): (c * 0.3, 0.0) for c in range(3)}
        inference = infer_blueprint(measurements(positions), GridSize(1, 3), settings)
        assert inference.blueprint.adjusted_tile_footprint == Size2D(0.2, 0.2)

    def test_outlier_excluded_but_retained(self, sample_blueprint_settings):
        """One misplaced tile among ten: flagged, kept in the map, and ignored for spacing."""
        positions = {}
        for r in range(2):
            for c in range(5):
                noise = 0.0005 * (((c * 7 + r * 3) % 5) - 2)
                positions[TileAddress(r, c)] = (-0.4 + c * 0.2 + noise, -0.1 + r * 0.2 - noise)
        x, y = positions[TileAddress(1, 4)]
        positions[TileAddress(1, 4)] = (x + 0.5, y + 0.5)

        inference = infer_blueprint(measurements(positions), GridSize(2, 5), sample_blueprint_settings)
        blueprint = inference.blueprint
        assert "1-4" in inference.outliers.outlier_tile_keys
        assert "1-4" in inference.implied_origins
        assert blueprint.adjusted_tile_footprint.width == pytest.approx(0.2, abs=0.002)
        assert blueprint.adjusted_tile_footprint.height == pytest.approx(0.2, abs=0.002)
        raw_origin_x = blueprint.grid_origin.x + blueprint.camera_origin_offset.x
        raw_origin_y = blueprint.grid_origin.y + blueprint.camera_origin_offset.y
        assert raw_origin_x == pytest.approx(-0.5, abs=0.003)
        assert raw_origin_y == pytest.approx(-0.2, abs=0.003)

    def test_outlier_filter_disabled(self):
        settings = BlueprintSettings(tile_size=0.2, outlier_filter=False)
        positions = {TileAddress(0, c): (c * 0.2, 0.0) for c in range(4)}
        positions[TileAddress(0, 3)] = (0.6, 0.4)
        inference = infer_blueprint(measurements(positions), GridSize(1, 4), settings)
        assert inference.outliers.enabled is False
        assert inference.outliers.outlier_count == 0

    def test_measurements_rebased_to_run_resolution(self, sample_blueprint_settings):
        positions = {TileAddress(0, 0): (-0.1, 0.0), TileAddress(0, 1): (0.1, 0.0)}
        low = infer_blueprint(
            measurements(positions, Resolution(640, 360)),
            GridSize(1, 2),
            sample_blueprint_settings,
            Resolution(1280, 720),
        )
        same = infer_blueprint(measurements(positions), GridSize(1, 2), sample_blueprint_settings)
        assert low.blueprint.camera_origin_offset.x == pytest.approx(same.blueprint.camera_origin_offset.x)
        assert low.blueprint.adjusted_tile_footprint.width == pytest.approx(0.2)
