"""
Coordinate kernel.

Pure functions - no threading, no state.

Spaces:
- CameraPixels: raw frame pixels, bound to a capture resolution
- Viewport: [0,1] frame-relative, ignores aspect ratio
- Isotropic: [0,1] aspect-normalized, shorter axis letterboxed
- Centered: [-1,1], origin at frame center, built on Isotropic

Deltas scale like points but never receive the offset/centering translation.
"""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np

from .types import (
    BlobMeasurement,
    Bounds,
    CameraPixels,
    Centered,
    Coordinate,
    Isotropic,
    Resolution,
    Viewport,
)


# ============================================================================
# Pixel <-> Viewport
# ============================================================================


def to_viewport(value: CameraPixels) -> Viewport:
    """Camera pixels to frame-relative [0,1] coordinates."""
    res = value.resolution
    return Viewport(value.x / res.width, value.y / res.height, delta=value.delta)


def from_viewport(value: Viewport, resolution: Resolution) -> CameraPixels:
    """Frame-relative [0,1] coordinates to camera pixels."""
    return CameraPixels(
        value.x * resolution.width,
        value.y * resolution.height,
        resolution,
        delta=value.delta,
    )


# ============================================================================
# Pixel <-> Isotropic
# ============================================================================


def _letterbox(resolution: Resolution) -> tuple[float, float, float]:
    """Returns (max_dim, offset_x, offset_y) in pixels."""
    max_dim = float(max(resolution.width, resolution.height))
    offset_x = (max_dim - resolution.width) / 2.0
    offset_y = (max_dim - resolution.height) / 2.0
    return max_dim, offset_x, offset_y


def to_isotropic(
    value: CameraPixels | Viewport,
    resolution: Resolution | None = None,
) -> Isotropic:
    """
    Convert camera pixels (or viewport coordinates) to isotropic space.

    Args:
        value: CameraPixels, or Viewport together with resolution
        resolution: Capture resolution, required for Viewport input

    Returns:
        Isotropic value (delta flag preserved)
    """
    if isinstance(value, Viewport):
        if resolution is None:
            raise ValueError("Viewport to isotropic conversion requires a resolution")
        value = from_viewport(value, resolution)
    elif not isinstance(value, CameraPixels):
        raise TypeError(f"Cannot convert {type(value).__name__} to Isotropic")

    max_dim, offset_x, offset_y = _letterbox(value.resolution)
    if value.delta:
        return Isotropic(value.x / max_dim, value.y / max_dim, delta=True)
    return Isotropic((value.x + offset_x) / max_dim, (value.y + offset_y) / max_dim)


def from_isotropic(value: Isotropic, resolution: Resolution) -> CameraPixels:
    """Convert isotropic space back to camera pixels at the given resolution."""
    max_dim, offset_x, offset_y = _letterbox(resolution)
    if value.delta:
        return CameraPixels(value.x * max_dim, value.y * max_dim, resolution, delta=True)
    return CameraPixels(
        value.x * max_dim - offset_x,
        value.y * max_dim - offset_y,
        resolution,
    )


# ============================================================================
# Isotropic <-> Centered
# ============================================================================


def to_centered(value: Isotropic) -> Centered:
    if value.delta:
        return Centered(value.x * 2.0, value.y * 2.0, delta=True)
    return Centered(value.x * 2.0 - 1.0, value.y * 2.0 - 1.0)


def from_centered(value: Centered) -> Isotropic:
    if value.delta:
        return Isotropic(value.x / 2.0, value.y / 2.0, delta=True)
    return Isotropic((value.x + 1.0) / 2.0, (value.y + 1.0) / 2.0)


# ============================================================================
# Compositions
# ============================================================================


def viewport_to_centered(value: Viewport, resolution: Resolution) -> Centered:
    """Aspect-correct viewport to centered conversion (through isotropic)."""
    return to_centered(to_isotropic(value, resolution))


def centered_to_viewport(value: Centered, resolution: Resolution) -> Viewport:
    return to_viewport(from_isotropic(from_centered(value), resolution))


def camera_to_centered(value: CameraPixels) -> Centered:
    return to_centered(to_isotropic(value))


def centered_to_camera(value: Centered, resolution: Resolution) -> CameraPixels:
    return from_isotropic(from_centered(value), resolution)


def roi_viewport_to_centered(value: Viewport) -> Centered:
    """
    Aspect-ignorant mapping (viewport * 2 - 1).

    Only valid for raw ROI authoring. Never use it for grid geometry.
    """
    if value.delta:
        return Centered(value.x * 2.0, value.y * 2.0, delta=True)
    return Centered(value.x * 2.0 - 1.0, value.y * 2.0 - 1.0)


def roi_centered_to_viewport(value: Centered) -> Viewport:
    """Inverse of roi_viewport_to_centered."""
    if value.delta:
        return Viewport(value.x / 2.0, value.y / 2.0, delta=True)
    return Viewport((value.x + 1.0) / 2.0, (value.y + 1.0) / 2.0)


# ============================================================================
# Arithmetic (same-space only)
# ============================================================================


def _check_same_space(a: Coordinate, b: Coordinate) -> None:
    if type(a) is not type(b):
        raise TypeError(
            f"Cannot combine {type(a).__name__} with {type(b).__name__}; convert first"
        )
    if isinstance(a, CameraPixels) and a.resolution != b.resolution:
        raise ValueError("Cannot combine camera pixels from different resolutions")


def difference(a: Coordinate, b: Coordinate) -> Coordinate:
    """Delta a - b, in the shared space of a and b."""
    _check_same_space(a, b)
    return replace(a, x=a.x - b.x, y=a.y - b.y, delta=True)


def translate(point: Coordinate, delta: Coordinate) -> Coordinate:
    """Point moved by a delta of the same space."""
    _check_same_space(point, delta)
    if not delta.delta:
        raise ValueError("translate() expects a delta as its second argument")
    return replace(point, x=point.x + delta.x, y=point.y + delta.y)


def distance(a: Coordinate, b: Coordinate) -> float:
    _check_same_space(a, b)
    return math.hypot(a.x - b.x, a.y - b.y)


# ============================================================================
# Rotation
# ============================================================================


def _cos_sin(degrees: float) -> tuple[float, float]:
    """Exact values for right angles so 90-degree rotations are lossless."""
    quarter, remainder = divmod(degrees, 90.0)
    if remainder == 0.0:
        return [(1.0, 0.0), (0.0, 1.0), (-1.0, 0.0), (0.0, -1.0)][int(quarter) % 4]
    radians = math.radians(degrees)
    return math.cos(radians), math.sin(radians)


def _space_center(value: Coordinate) -> tuple[float, float]:
    if value.delta or isinstance(value, Centered):
        return 0.0, 0.0
    if isinstance(value, CameraPixels):
        return value.resolution.width / 2.0, value.resolution.height / 2.0
    return 0.5, 0.5


def rotate_point(value: Coordinate, degrees: float) -> Coordinate:
    """
    Rotate a point about the center of its space (deltas about the origin).

    Positive angles rotate clockwise on screen (y axis points down).

    Args:
        value: Any tagged coordinate
        degrees: Rotation angle

    Returns:
        Rotated value in the same space
    """
    cx, cy = _space_center(value)
    cos_t, sin_t = _cos_sin(degrees)
    dx = value.x - cx
    dy = value.y - cy
    return replace(
        value,
        x=cx + dx * cos_t - dy * sin_t,
        y=cy + dx * sin_t + dy * cos_t,
    )


def rotate_bounds(bounds: Bounds, degrees: float) -> Bounds:
    """
    Rotate a Centered-space rectangle about the origin.

    Returns the axis-aligned bounding box of the rotated rectangle, which is a
    conservative bound for anything inside the original rectangle.
    """
    cos_t, sin_t = _cos_sin(degrees)
    corners = np.array([
        [bounds.x_min, bounds.y_min],
        [bounds.x_max, bounds.y_min],
        [bounds.x_max, bounds.y_max],
        [bounds.x_min, bounds.y_max],
    ], dtype=np.float64)
    rotation = np.array([[cos_t, -sin_t], [sin_t, cos_t]], dtype=np.float64)
    rotated = corners @ rotation.T
    return Bounds(
        x_min=float(rotated[:, 0].min()),
        x_max=float(rotated[:, 0].max()),
        y_min=float(rotated[:, 1].min()),
        y_max=float(rotated[:, 1].max()),
    )


# ============================================================================
# Resolution reconciliation
# ============================================================================


def rebase_measurement(
    measurement: BlobMeasurement,
    resolution: Resolution,
) -> BlobMeasurement:
    """
    Re-express a measurement taken at one capture resolution at another.

    Goes through pixel space: Centered -> source pixels -> target pixels ->
    Centered. Measurements without a recorded resolution are returned as-is.
    """
    source = measurement.resolution
    if source is None or source == resolution:
        return measurement

    scale_x = resolution.width / source.width
    scale_y = resolution.height / source.height

    pixels = centered_to_camera(measurement.position, source)
    rescaled = CameraPixels(pixels.x * scale_x, pixels.y * scale_y, resolution)

    size_pixels = centered_to_camera(Centered(measurement.size, 0.0, delta=True), source)
    size = camera_to_centered(
        CameraPixels(size_pixels.x * scale_x, 0.0, resolution, delta=True)
    ).x

    return replace(
        measurement,
        position=camera_to_centered(rescaled),
        size=size,
        resolution=resolution,
    )
