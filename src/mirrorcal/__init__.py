# mirrorcal - Calibration and alignment for motorized mirror arrays

__version__ = "0.1.0"

# Core types
from mirrorcal.types import (
    AxisAssignment,
    BlobMeasurement,
    CalibrationGridBlueprint,
    CalibrationRunSummary,
    CameraMetadata,
    Centered,
    GridSize,
    MotorRef,
    Resolution,
    TileAddress,
    TileCalibrationResult,
)

# Errors
from mirrorcal.errors import (
    CommandError,
    ConfigError,
    DetectionTimeoutError,
    MirrorCalError,
    RunnerStateError,
)

# Grid
from mirrorcal.grid import TileGrid

# Collaborators
from mirrorcal.collaborators import (
    DetectionChannel,
    MotorCommandApi,
    RetryPolicy,
)

# Calibration
from mirrorcal.calibration import (
    CalibrationRunner,
    infer_blueprint,
    merge_tile_results,
)

# Alignment
from mirrorcal.alignment import (
    AlignmentController,
    targets_from_summary,
)

# Configuration
from mirrorcal.config import (
    ProjectConfig,
    load_project_config,
    save_project_config,
    load_run_summary,
    save_run_summary,
)

__all__ = [
    # Core types
    "AxisAssignment",
    "BlobMeasurement",
    "CalibrationGridBlueprint",
    "CalibrationRunSummary",
    "CameraMetadata",
    "Centered",
    "GridSize",
    "MotorRef",
    "Resolution",
    "TileAddress",
    "TileCalibrationResult",
    # Errors
    "CommandError",
    "ConfigError",
    "DetectionTimeoutError",
    "MirrorCalError",
    "RunnerStateError",
    # Grid
    "TileGrid",
    # Collaborators
    "DetectionChannel",
    "MotorCommandApi",
    "RetryPolicy",
    # Calibration
    "CalibrationRunner",
    "infer_blueprint",
    "merge_tile_results",
    # Alignment
    "AlignmentController",
    "targets_from_summary",
    # Configuration
    "ProjectConfig",
    "load_project_config",
    "save_project_config",
    "load_run_summary",
    "save_run_summary",
]
