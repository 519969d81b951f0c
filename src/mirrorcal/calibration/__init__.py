"""
Calibration module for mirrorcal.

Blueprint inference, bounds, staging and merge are pure functions - they take
dataclasses and return dataclasses. CalibrationRunner is the only stateful
piece: it drives the motors and the detection channel through a run.
"""

from .blueprint import (
    BlueprintInference,
    build_step_scale,
    compute_home_offset,
    compute_ideal_center,
    compute_step_scale,
    infer_blueprint,
)

from .bounds import (
    compute_footprint_bounds,
    compute_motor_reach_bounds,
    merge_bounds_intersection,
    merge_bounds_union,
)

from .staging import (
    STAGING_STRATEGIES,
    compute_alignment_target_steps,
    compute_pose_targets,
)

from .summary import (
    compute_run_summary,
    derive_tile_result,
)

from .merge import (
    MergeResult,
    merge_tile_result,
    merge_tile_results,
)

from .runner import (
    CalibrationRunner,
    RunnerState,
    RunProgress,
)

__all__ = [
    # Blueprint
    "BlueprintInference",
    "build_step_scale",
    "compute_home_offset",
    "compute_ideal_center",
    "compute_step_scale",
    "infer_blueprint",
    # Bounds
    "compute_footprint_bounds",
    "compute_motor_reach_bounds",
    "merge_bounds_intersection",
    "merge_bounds_union",
    # Staging
    "STAGING_STRATEGIES",
    "compute_alignment_target_steps",
    "compute_pose_targets",
    # Summary
    "compute_run_summary",
    "derive_tile_result",
    # Merge
    "MergeResult",
    "merge_tile_result",
    "merge_tile_results",
    # Runner
    "CalibrationRunner",
    "RunnerState",
    "RunProgress",
]
