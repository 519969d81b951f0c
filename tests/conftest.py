"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import pytest


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def resolution():
    from mirrorcal.types import Resolution
    return Resolution(1280, 720)


@pytest.fixture
def sample_blueprint_settings():
    """Nominal 0.2 tiles, no gap."""
    from mirrorcal.types import BlueprintSettings
    return BlueprintSettings(tile_size=0.2, gap=0.0)


@pytest.fixture
def sample_grid():
    """2x2 grid with both axes of every tile assigned (one controller per row)."""
    from mirrorcal.grid import TileGrid
    from mirrorcal.types import GridSize, MotorRef

    grid = TileGrid(GridSize(2, 2))
    for tile in grid.tiles():
        grid.assign(tile, "x", MotorRef(f"row{tile.row}", tile.col * 2))
        grid.assign(tile, "y", MotorRef(f"row{tile.row}", tile.col * 2 + 1))
    return grid


@pytest.fixture
def sample_summary(resolution, sample_blueprint_settings):
    """
    Completed 2x2 run: tiles on a 0.2 pitch grid centered at (0.05, -0.02),
    step scale 0.0005 on both axes.
    """
    from mirrorcal.calibration.summary import compute_run_summary
    from mirrorcal.types import (
        BlobMeasurement,
        CameraMetadata,
        Centered,
        GridSize,
        StepScale,
        StepTestSettings,
        TileAddress,
        TileCalibrationResult,
    )

    results = []
    for row in range(2):
        for col in range(2):
            tile = TileAddress(row, col)
            position = Centered(0.05 + (col - 0.5) * 0.2, -0.02 + (row - 0.5) * 0.2)
            results.append(TileCalibrationResult(
                tile=tile,
                status="completed",
                home_measurement=BlobMeasurement(position=position, size=0.05, resolution=resolution),
                step_scale=StepScale(x=0.0005, y=0.0005),
            ))
    return compute_run_summary(
        results,
        GridSize(2, 2),
        CameraMetadata(resolution=resolution, label="test"),
        StepTestSettings(delta_steps=200),
        sample_blueprint_settings,
    )


@pytest.fixture
def fast_retry():
    """Retry policy without backoff delays."""
    from mirrorcal.collaborators import RetryPolicy
    return RetryPolicy(max_attempts=3, backoff_s=0.0)

