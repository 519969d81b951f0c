"""
Configuration loading/saving.

Pure functions operating on dataclasses.
- TOML project configuration (grid, camera, settings, motor assignments)
- TOML calibration run summaries
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path

import rtoml

from .calibration.staging import STAGING_STRATEGIES
from .collaborators import RetryPolicy
from .errors import ConfigError
from .grid import TileGrid, parse_motor_key, parse_tile_key
from .types import (
    AlignmentSettings,
    AxisAssignment,
    BlobMeasurement,
    BlueprintSettings,
    Bounds,
    CalibrationGridBlueprint,
    CalibrationRunSummary,
    CameraMetadata,
    Centered,
    GridSize,
    MeasurementStats,
    OutlierAnalysis,
    Resolution,
    RunnerSettings,
    Size2D,
    StepScale,
    StepTestSettings,
    TileCalibrationResult,
)

IMPROVEMENT_STRATEGIES = ("any", "weighted")


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    grid: GridSize
    camera: CameraMetadata
    blueprint: BlueprintSettings = BlueprintSettings()
    runner: RunnerSettings = RunnerSettings()
    alignment: AlignmentSettings = AlignmentSettings()
    retry: RetryPolicy = RetryPolicy()
    assignments: dict[str, AxisAssignment] = field(default_factory=dict)  # tile key -> motors


# ============================================================================
# TOML Project Configuration
# ============================================================================


def _parse_section(cls, data: dict, section: str):
    """Build a settings dataclass from a TOML table, defaults for missing keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"[{section}] must be a table")
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ConfigError(f"Unknown key(s) in [{section}]: {', '.join(unknown)}")
    try:
        return cls(**data)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid [{section}]: {exc}") from exc


def _parse_assignments(data: dict, grid: GridSize) -> dict[str, AxisAssignment]:
    assignments = {}
    for key, axes in data.items():
        try:
            tile = parse_tile_key(key)
            motors = {axis: parse_motor_key(axes[axis]) for axis in ("x", "y") if axis in axes}
        except (ValueError, TypeError) as exc:
            raise ConfigError(f"Invalid assignment for tile {key!r}: {exc}") from exc
        if not (0 <= tile.row < grid.rows and 0 <= tile.col < grid.cols):
            raise ConfigError(f"Assignment for tile {key} is outside the {grid.rows}x{grid.cols} grid")
        assignments[tile.key] = AxisAssignment(**motors)
    return assignments


def _validate(config: ProjectConfig) -> None:
    if config.grid.rows <= 0 or config.grid.cols <= 0:
        raise ConfigError(f"Grid must have at least one tile, got {config.grid.rows}x{config.grid.cols}")
    if config.runner.staging_strategy not in STAGING_STRATEGIES:
        raise ConfigError(f"Unknown staging strategy: {config.runner.staging_strategy}")
    if config.runner.array_rotation % 90 != 0:
        raise ConfigError(f"Array rotation must be a multiple of 90, got {config.runner.array_rotation}")
    if config.runner.delta_steps <= 0 or config.runner.first_tile_interim_step_delta < 0:
        raise ConfigError("Runner delta_steps must be > 0 and first_tile_interim_step_delta >= 0")
    if config.alignment.improvement_strategy not in IMPROVEMENT_STRATEGIES:
        raise ConfigError(f"Unknown improvement strategy: {config.alignment.improvement_strategy}")
    if config.alignment.min_step_size <= 0 or config.alignment.step_size < config.alignment.min_step_size:
        raise ConfigError("Alignment step_size must be >= min_step_size > 0")

    owners = {}
    for key, assignment in config.assignments.items():
        for axis in ("x", "y"):
            motor = getattr(assignment, axis)
            if motor is None:
                continue
            if motor in owners:
                raise ConfigError(f"Motor {motor.key} assigned to both {owners[motor]} and {key}.{axis}")
            owners[motor] = f"{key}.{axis}"


def load_project_config(path: Path) -> ProjectConfig:
    """
    Load project configuration from TOML file.

    Args:
        path: Path to config.toml file

    Returns:
        ProjectConfig dataclass

    Raises:
        ConfigError: If the file is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = rtoml.load(path)
    except rtoml.TomlParsingError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc

    grid_data = data.get("grid", {})
    grid = GridSize(rows=grid_data.get("rows", 3), cols=grid_data.get("cols", 3))

    camera_data = data.get("camera", {})
    try:
        resolution = Resolution(*camera_data.get("resolution", [1280, 720]))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid camera resolution: {exc}") from exc
    camera = CameraMetadata(resolution=resolution, label=camera_data.get("label", ""))

    retry_data = dict(data.get("retry", {}))
    if "retryable_reasons" in retry_data:
        retry_data["retryable_reasons"] = frozenset(retry_data["retryable_reasons"])

    config = ProjectConfig(
        grid=grid,
        camera=camera,
        blueprint=_parse_section(BlueprintSettings, data.get("blueprint", {}), "blueprint"),
        runner=_parse_section(RunnerSettings, data.get("runner", {}), "runner"),
        alignment=_parse_section(AlignmentSettings, data.get("alignment", {}), "alignment"),
        retry=_parse_section(RetryPolicy, retry_data, "retry"),
        assignments=_parse_assignments(data.get("assignments", {}), grid),
    )
    _validate(config)
    return config


def save_project_config(config: ProjectConfig, path: Path) -> None:
    """
    Save project configuration to TOML file.

    Args:
        config: ProjectConfig dataclass
        path: Path to save config.toml
    """
    retry = dataclasses.asdict(config.retry)
    retry["retryable_reasons"] = sorted(config.retry.retryable_reasons)

    data = {
        "grid": {"rows": config.grid.rows, "cols": config.grid.cols},
        "camera": {
            "resolution": [config.camera.resolution.width, config.camera.resolution.height],
            "label": config.camera.label,
        },
        "blueprint": dataclasses.asdict(config.blueprint),
        "runner": dataclasses.asdict(config.runner),
        "alignment": dataclasses.asdict(config.alignment),
        "retry": retry,
        "assignments": {},
    }

    for key, assignment in config.assignments.items():
        axes = {}
        if assignment.x is not None:
            axes["x"] = assignment.x.key
        if assignment.y is not None:
            axes["y"] = assignment.y.key
        data["assignments"][key] = axes

    # Ensure parent directory exists
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        rtoml.dump(data, f)


def create_default_project_config(
    rows: int = 3,
    cols: int = 3,
    resolution: Resolution = Resolution(1280, 720),
) -> ProjectConfig:
    """
    Create a default project configuration.

    Motors are laid out one controller per row, two motors per tile
    (x on even, y on odd indices).

    Returns:
        ProjectConfig with sensible defaults
    """
    grid = GridSize(rows, cols)
    assignments = {}
    for row in range(rows):
        for col in range(cols):
            key = f"{row}-{col}"
            assignments[key] = AxisAssignment(
                x=parse_motor_key(f"row{row}:{col * 2}"),
                y=parse_motor_key(f"row{row}:{col * 2 + 1}"),
            )
    return ProjectConfig(
        grid=grid,
        camera=CameraMetadata(resolution=resolution),
        assignments=assignments,
    )


def build_tile_grid(config: ProjectConfig) -> TileGrid:
    """TileGrid with the configured motor assignments applied."""
    grid = TileGrid(config.grid)
    for key, assignment in config.assignments.items():
        tile = parse_tile_key(key)
        for axis in ("x", "y"):
            motor = getattr(assignment, axis)
            if motor is not None:
                grid.assign(tile, axis, motor)
    return grid


# ============================================================================
# Run Summary Storage
# ============================================================================


def _pair(value: Centered) -> list[float]:
    return [value.x, value.y]


def _bounds(value: Bounds) -> list[float]:
    return [value.x_min, value.x_max, value.y_min, value.y_max]


def _drop_none(data: dict) -> dict:
    """TOML has no null; absent keys mean None."""
    return {k: v for k, v in data.items() if v is not None}


def _measurement_to_dict(measurement: BlobMeasurement) -> dict:
    data = {"position": _pair(measurement.position), "size": measurement.size}
    if measurement.resolution is not None:
        data["resolution"] = [measurement.resolution.width, measurement.resolution.height]
    if measurement.stats is not None:
        data["stats"] = dataclasses.asdict(measurement.stats)
    return data


def _measurement_from_dict(data: dict) -> BlobMeasurement:
    resolution = data.get("resolution")
    stats = data.get("stats")
    return BlobMeasurement(
        position=Centered(*data["position"]),
        size=data.get("size", 0.0),
        resolution=Resolution(*resolution) if resolution else None,
        stats=MeasurementStats(**stats) if stats else None,
    )


def _tile_to_dict(result: TileCalibrationResult) -> dict:
    data = {
        "status": result.status,
        "home_measurement": (
            _measurement_to_dict(result.home_measurement) if result.home_measurement else None
        ),
        "home_offset": _pair(result.home_offset) if result.home_offset else None,
        "step_scale": (
            _drop_none({"x": result.step_scale.x, "y": result.step_scale.y})
            if result.step_scale else None
        ),
        "motor_reach_bounds": _bounds(result.motor_reach_bounds) if result.motor_reach_bounds else None,
        "footprint_bounds": _bounds(result.footprint_bounds) if result.footprint_bounds else None,
        "size_delta": result.size_delta,
        "warnings": list(result.warnings),
        "error": result.error,
    }
    return _drop_none(data)


def _tile_from_dict(key: str, data: dict) -> TileCalibrationResult:
    home = data.get("home_measurement")
    offset = data.get("home_offset")
    scale = data.get("step_scale")
    reach = data.get("motor_reach_bounds")
    footprint = data.get("footprint_bounds")
    return TileCalibrationResult(
        tile=parse_tile_key(key),
        status=data["status"],
        home_measurement=_measurement_from_dict(home) if home else None,
        home_offset=Centered(*offset, delta=True) if offset else None,
        step_scale=StepScale(x=scale.get("x"), y=scale.get("y")) if scale is not None else None,
        motor_reach_bounds=Bounds(*reach) if reach else None,
        footprint_bounds=Bounds(*footprint) if footprint else None,
        size_delta=data.get("size_delta"),
        warnings=tuple(data.get("warnings", ())),
        error=data.get("error"),
    )


def summary_to_dict(summary: CalibrationRunSummary) -> dict:
    """Serializable dict of a run summary; None values are omitted."""
    data = {
        "camera": {
            "resolution": [summary.camera.resolution.width, summary.camera.resolution.height],
            "label": summary.camera.label,
        },
        "step_test": {"delta_steps": summary.step_test.delta_steps},
        "tiles": {key: _tile_to_dict(result) for key, result in summary.tiles.items()},
    }
    blueprint = summary.blueprint
    if blueprint is not None:
        data["blueprint"] = {
            "camera_origin_offset": _pair(blueprint.camera_origin_offset),
            "grid_origin": _pair(blueprint.grid_origin),
            "adjusted_tile_footprint": [
                blueprint.adjusted_tile_footprint.width,
                blueprint.adjusted_tile_footprint.height,
            ],
            "tile_gap": [blueprint.tile_gap.width, blueprint.tile_gap.height],
            "grid_size": [blueprint.grid_size.rows, blueprint.grid_size.cols],
        }
    outliers = summary.outliers
    if outliers is not None:
        data["outliers"] = _drop_none({
            "enabled": outliers.enabled,
            "outlier_tile_keys": list(outliers.outlier_tile_keys),
            "median": _pair(outliers.median) if outliers.median else None,
            "nmad_x": outliers.nmad_x,
            "nmad_y": outliers.nmad_y,
            "threshold": outliers.threshold,
        })
    return data


def summary_from_dict(data: dict) -> CalibrationRunSummary:
    """
    Inverse of summary_to_dict.

    Raises:
        ConfigError: If required fields are missing or malformed
    """
    try:
        camera_data = data["camera"]
        camera = CameraMetadata(
            resolution=Resolution(*camera_data["resolution"]),
            label=camera_data.get("label", ""),
        )
        step_test = StepTestSettings(**data.get("step_test", {}))

        blueprint = None
        if "blueprint" in data:
            bp = data["blueprint"]
            blueprint = CalibrationGridBlueprint(
                camera_origin_offset=Centered(*bp["camera_origin_offset"], delta=True),
                grid_origin=Centered(*bp["grid_origin"]),
                adjusted_tile_footprint=Size2D(*bp["adjusted_tile_footprint"]),
                tile_gap=Size2D(*bp["tile_gap"]),
                grid_size=GridSize(*bp["grid_size"]),
            )

        outliers = None
        if "outliers" in data:
            od = data["outliers"]
            median = od.get("median")
            outliers = OutlierAnalysis(
                enabled=od.get("enabled", True),
                outlier_tile_keys=tuple(od.get("outlier_tile_keys", ())),
                median=Centered(*median) if median else None,
                nmad_x=od.get("nmad_x", 0.0),
                nmad_y=od.get("nmad_y", 0.0),
                threshold=od.get("threshold", 3.0),
            )

        tiles = {key: _tile_from_dict(key, tile) for key, tile in data.get("tiles", {}).items()}
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid run summary: {exc}") from exc

    return CalibrationRunSummary(
        blueprint=blueprint,
        camera=camera,
        step_test=step_test,
        tiles=tiles,
        outliers=outliers,
    )


def save_run_summary(summary: CalibrationRunSummary, path: Path) -> None:
    """
    Save a calibration run summary to a TOML file.

    Args:
        summary: CalibrationRunSummary to persist
        path: Path to summary.toml
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        rtoml.dump(summary_to_dict(summary), f)


def load_run_summary(path: Path) -> CalibrationRunSummary | None:
    """
    Load a calibration run summary.

    Returns:
        CalibrationRunSummary, or None if the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        data = rtoml.load(path)
    except rtoml.TomlParsingError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    return summary_from_dict(data)
