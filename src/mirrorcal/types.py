"""
Core data structures for mirrorcal.

All types are frozen dataclasses with slots for immutability and performance.
Logic is in separate pure functions - these are data containers only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


Axis = Literal["x", "y"]
AXES: tuple[Axis, Axis] = ("x", "y")

# Physical motor travel, in steps relative to the homed position
MOTOR_MIN_POSITION_STEPS = -1200
MOTOR_MAX_POSITION_STEPS = 1200


# ============================================================================
# Coordinate Spaces
# ============================================================================


@dataclass(frozen=True, slots=True)
class Resolution:
    """Capture resolution of the camera frames a value was measured in."""

    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Resolution must be positive, got {self.width}x{self.height}")


@dataclass(frozen=True, slots=True)
class CameraPixels:
    """
    Point or delta in raw camera pixels.
    Always bound to the resolution of the frame it came from.
    """

    x: float
    y: float
    resolution: Resolution
    delta: bool = False


@dataclass(frozen=True, slots=True)
class Viewport:
    """Frame-relative [0,1] x [0,1], top-left origin. Ignores aspect ratio."""

    x: float
    y: float
    delta: bool = False


@dataclass(frozen=True, slots=True)
class Isotropic:
    """
    Aspect-normalized [0,1] x [0,1].
    The shorter frame axis is letterboxed so distances compare on both axes.
    """

    x: float
    y: float
    delta: bool = False


@dataclass(frozen=True, slots=True)
class Centered:
    """
    Isotropic space mapped to [-1,1] x [-1,1] with the origin at frame center.
    All grid geometry is expressed in this space.
    """

    x: float
    y: float
    delta: bool = False


Coordinate = CameraPixels | Viewport | Isotropic | Centered


@dataclass(frozen=True, slots=True)
class Bounds:
    """Axis-aligned rectangle in Centered space."""

    x_min: float
    x_max: float
    y_min: float
    y_max: float


@dataclass(frozen=True, slots=True)
class Size2D:
    """Width/height pair in Centered units."""

    width: float
    height: float


# ============================================================================
# Grid and Motors
# ============================================================================


@dataclass(frozen=True, slots=True)
class GridSize:
    rows: int
    cols: int


@dataclass(frozen=True)  # No slots - need properties
class TileAddress:
    """
    Grid cell identified by (row, col).
    The string key is only used as a stable serialization identifier.
    """

    row: int
    col: int

    @property
    def key(self) -> str:
        return f"{self.row}-{self.col}"


@dataclass(frozen=True)  # No slots - need properties
class MotorRef:
    """Physical motor: controller address + motor index on that controller."""

    controller: str
    motor_index: int

    @property
    def key(self) -> str:
        return f"{self.controller}:{self.motor_index}"


@dataclass(frozen=True, slots=True)
class AxisAssignment:
    """Motors driving a tile. Unassigned axes are None and always skippable."""

    x: MotorRef | None = None
    y: MotorRef | None = None


# ============================================================================
# Measurements
# ============================================================================


@dataclass(frozen=True, slots=True)
class MeasurementStats:
    """Statistics over the camera samples that produced one measurement."""

    sample_count: int
    median_x: float
    median_y: float
    nmad_x: float
    nmad_y: float


@dataclass(frozen=True, slots=True)
class BlobMeasurement:
    """
    Detected reflection position in Centered space.

    Positions taken at different resolutions must be reconciled through
    pixel space (coords.rebase_measurement) before comparison.
    """

    position: Centered
    size: float = 0.0  # Blob diameter in Centered units
    resolution: Resolution | None = None
    stats: MeasurementStats | None = None


@dataclass(frozen=True, slots=True)
class StepScale:
    """Centered units of displacement per motor step, per axis."""

    x: float | None = None
    y: float | None = None


@dataclass(frozen=True, slots=True)
class StepTestResult:
    """Outcome of moving one axis by a known step delta."""

    axis: Axis
    delta_steps: int
    displacement: float  # Centered units along the tested axis
    size_delta: float | None = None


@dataclass(frozen=True, slots=True)
class BlobKeypoint:
    """Single blob reported by the detection collaborator."""

    position: CameraPixels
    size: float  # Diameter in pixels
    confidence: float = 1.0


@dataclass(frozen=True, slots=True)
class ShapeMetrics:
    """
    Shape of the dominant reflection contour.
    Eccentricity is sqrt(major/minor eigenvalue), so 1.0 is a perfect circle.
    """

    area: float
    eccentricity: float
    principal_angle: float  # Radians
    centroid: CameraPixels
    eigenvalues: tuple[float, float] = (0.0, 0.0)
    bounding_rect: tuple[int, int, int, int] = (0, 0, 0, 0)  # x, y, w, h


# ============================================================================
# Calibration Results
# ============================================================================


TileStatus = Literal["pending", "staged", "measuring", "completed", "failed", "skipped"]


@dataclass(frozen=True, slots=True)
class CalibrationGridBlueprint:
    """
    Shared grid geometry inferred from a calibration run.

    Stable once computed: re-measuring a subset of tiles reuses it.
    """

    camera_origin_offset: Centered  # Subtracted from raw measurements
    grid_origin: Centered  # Top-left anchor of tile (0, 0)
    adjusted_tile_footprint: Size2D
    tile_gap: Size2D
    grid_size: GridSize


@dataclass(frozen=True, slots=True)
class TileCalibrationResult:
    tile: TileAddress
    status: TileStatus
    home_measurement: BlobMeasurement | None = None  # Raw, before origin offset
    home_offset: Centered | None = None  # measured - ideal, delta
    step_scale: StepScale | None = None
    motor_reach_bounds: Bounds | None = None
    footprint_bounds: Bounds | None = None
    size_delta: float | None = None  # Blob size change during the step test
    warnings: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)  # No slots - need properties
class OutlierAnalysis:
    """MAD outlier screening of per-tile implied grid origins."""

    enabled: bool
    outlier_tile_keys: tuple[str, ...] = ()
    median: Centered | None = None
    nmad_x: float = 0.0
    nmad_y: float = 0.0
    threshold: float = 3.0

    @property
    def outlier_count(self) -> int:
        return len(self.outlier_tile_keys)


@dataclass(frozen=True, slots=True)
class CameraMetadata:
    resolution: Resolution
    label: str = ""


@dataclass(frozen=True, slots=True)
class StepTestSettings:
    delta_steps: int = 1200


@dataclass(frozen=True, slots=True)
class CalibrationRunSummary:
    """
    Persisted artifact of a calibration run, consumed by playback.
    tiles maps tile key -> TileCalibrationResult.
    """

    blueprint: CalibrationGridBlueprint | None
    camera: CameraMetadata
    step_test: StepTestSettings
    tiles: dict[str, TileCalibrationResult]
    outliers: OutlierAnalysis | None = None


# ============================================================================
# Alignment Results
# ============================================================================


AxisAlignmentStatus = Literal[
    "pending", "in-progress", "converged", "max-iterations", "skipped", "error"
]
TileAlignmentStatus = Literal[
    "pending", "in-progress", "converged", "partial", "skipped", "error"
]
ImprovementStrategy = Literal["any", "weighted"]


@dataclass(frozen=True, slots=True)
class AlignmentAxisState:
    status: AxisAlignmentStatus = "pending"
    correction_steps: int = 0
    iterations: int = 0
    motor: MotorRef | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class AlignmentRunTileState:
    tile: TileAddress
    status: TileAlignmentStatus = "pending"
    x: AlignmentAxisState = field(default_factory=AlignmentAxisState)
    y: AlignmentAxisState = field(default_factory=AlignmentAxisState)
    baseline: ShapeMetrics | None = None
    final: ShapeMetrics | None = None


# ============================================================================
# Settings
# ============================================================================


StagingStrategy = Literal["nearest-corner", "corner", "bottom", "left"]
RunMode = Literal["auto", "step"]


@dataclass(frozen=True, slots=True)
class BlueprintSettings:
    """
    Nominal grid geometry used as the spacing prior.
    Spacing = tile_size + gap; measured spacing refines it when possible.
    """

    tile_size: float = 0.2  # Target tile footprint (Centered units)
    gap: float = 0.0
    refine_footprint: bool = True
    outlier_threshold: float = 3.0  # Multiples of nMAD
    outlier_filter: bool = True


@dataclass(frozen=True, slots=True)
class RunnerSettings:
    delta_steps: int = 1200
    first_tile_interim_step_delta: int = 100  # Short move that sizes the first full step test
    sample_timeout_s: float = 1.5
    max_blob_distance: float = 0.15  # Centered units from expected position
    first_tile_tolerance: float = 0.25
    samples_per_measurement: int = 3
    sample_mad_threshold: float = 3.0
    sample_jitter_floor: float = 0.002  # Centered units
    max_concurrent_tiles: int = 1
    staging_strategy: StagingStrategy = "nearest-corner"
    array_rotation: int = 0  # 0, 90, 180, 270 degrees
    align_to_grid: bool = True


@dataclass(frozen=True, slots=True)
class AlignmentSettings:
    step_size: int = 100
    step_reduction_percent: float = 30.0
    min_step_size: int = 10
    max_iterations: int = 50
    area_threshold: float = 0.01
    improvement_strategy: ImprovementStrategy = "any"
    area_weight: float = 0.6
    eccentricity_weight: float = 0.4
    eccentricity_tolerance: float = 1.05
    samples_per_measurement: int = 3
    mad_threshold: float = 3.0
    settling_delay_s: float = 0.2
    isolate_tiles: bool = True


@dataclass(frozen=True, slots=True)
class AlignmentRunSummary:
    """Read-only snapshot of an alignment run for reporting."""

    settings: AlignmentSettings
    tiles: dict[str, AlignmentRunTileState]
    tiles_converged: int = 0
    tiles_partial: int = 0
    tiles_skipped: int = 0
    tiles_errored: int = 0
    average_area_reduction_percent: float | None = None
    average_eccentricity_improvement: float | None = None
