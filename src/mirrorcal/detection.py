"""
Reflection detection on camera frames.

Pure functions - no threading, no state. This is the image-side backend of the
detection collaborator: bright-spot blobs and shape metrics of the dominant
contour.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import cv2
import numpy as np

from .types import BlobKeypoint, CameraPixels, Resolution, ShapeMetrics


@dataclass(frozen=True, slots=True)
class Region:
    """Frame region in Viewport fractions (x, y = top-left)."""

    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0


FULL_FRAME = Region()


@dataclass(frozen=True, slots=True)
class DetectorParams:
    threshold: int = 200  # Binary threshold on 8-bit intensity
    blur_kernel: int = 5  # Gaussian kernel size, 0 disables
    min_area: float = 4.0  # Pixels
    max_area: float | None = None


# ============================================================================
# Preprocessing
# ============================================================================


def frame_resolution(frame: np.ndarray) -> Resolution:
    height, width = frame.shape[:2]
    return Resolution(int(width), int(height))


def _crop(frame: np.ndarray, region: Region) -> tuple[np.ndarray, int, int]:
    """Crop to region. Returns (crop, x0, y0) with the pixel offset of the crop."""
    height, width = frame.shape[:2]
    x0 = int(round(max(0.0, min(1.0, region.x)) * width))
    y0 = int(round(max(0.0, min(1.0, region.y)) * height))
    x1 = int(round(max(0.0, min(1.0, region.x + region.width)) * width))
    y1 = int(round(max(0.0, min(1.0, region.y + region.height)) * height))
    return frame[y0:y1, x0:x1], x0, y0


def _binarize(frame: np.ndarray, params: DetectorParams) -> np.ndarray:
    if frame.ndim == 3:
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    else:
        gray = frame
    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    if params.blur_kernel > 0:
        k = params.blur_kernel | 1  # Kernel must be odd
        gray = cv2.GaussianBlur(gray, (k, k), 0)
    _, mask = cv2.threshold(gray, params.threshold, 255, cv2.THRESH_BINARY)
    return mask


def _find_contours(mask: np.ndarray, params: DetectorParams) -> list[np.ndarray]:
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    kept = []
    for contour in contours:
        area = cv2.contourArea(contour)
        if area < params.min_area:
            continue
        if params.max_area is not None and area > params.max_area:
            continue
        kept.append(contour)
    return kept


# ============================================================================
# Shape metrics
# ============================================================================


def shape_metrics_from_contour(
    contour: np.ndarray,
    resolution: Resolution,
    offset: tuple[int, int] = (0, 0),
) -> ShapeMetrics | None:
    """
    Area, eccentricity and principal angle from contour moments.

    Eccentricity is sqrt(lambda_max / lambda_min) of the second-moment
    covariance, so 1.0 for a circle. Degenerate moments return None.

    Args:
        contour: OpenCV contour (n, 1, 2)
        resolution: Resolution of the full frame
        offset: Pixel offset of the contour's coordinate system in the frame

    Returns:
        ShapeMetrics or None
    """
    moments = cv2.moments(contour)
    m00 = moments["m00"]
    if m00 <= 0:
        return None

    cx = moments["m10"] / m00
    cy = moments["m01"] / m00
    mu20 = moments["mu20"] / m00
    mu02 = moments["mu02"] / m00
    mu11 = moments["mu11"] / m00

    covariance = np.array([[mu20, mu11], [mu11, mu02]], dtype=np.float64)
    eigenvalues = np.linalg.eigvalsh(covariance)  # Ascending
    minor, major = float(eigenvalues[0]), float(eigenvalues[1])
    if minor <= 0 or not math.isfinite(major):
        return None

    x, y, w, h = cv2.boundingRect(contour)
    return ShapeMetrics(
        area=float(m00),
        eccentricity=math.sqrt(major / minor),
        principal_angle=0.5 * math.atan2(2.0 * mu11, mu20 - mu02),
        centroid=CameraPixels(cx + offset[0], cy + offset[1], resolution),
        eigenvalues=(major, minor),
        bounding_rect=(x + offset[0], y + offset[1], w, h),
    )


def analyze_dominant_shape(
    frame: np.ndarray,
    params: DetectorParams = DetectorParams(),
    region: Region = FULL_FRAME,
) -> ShapeMetrics | None:
    """
    Shape metrics of the largest bright contour in a region.

    When several contours are present the largest one wins; None when nothing
    passes the area filter or the dominant contour is degenerate.
    """
    resolution = frame_resolution(frame)
    crop, x0, y0 = _crop(frame, region)
    if crop.size == 0:
        return None
    contours = _find_contours(_binarize(crop, params), params)
    if not contours:
        return None
    dominant = max(contours, key=cv2.contourArea)
    return shape_metrics_from_contour(dominant, resolution, offset=(x0, y0))


# ============================================================================
# Blobs
# ============================================================================


def find_blobs(
    frame: np.ndarray,
    params: DetectorParams = DetectorParams(),
    region: Region = FULL_FRAME,
) -> list[BlobKeypoint]:
    """
    Bright blobs in a region, largest first.

    Args:
        frame: BGR (h, w, 3) or grayscale (h, w) image
        params: Threshold and area filter
        region: Viewport region to search

    Returns:
        List of BlobKeypoint in full-frame pixel coordinates
    """
    resolution = frame_resolution(frame)
    crop, x0, y0 = _crop(frame, region)
    if crop.size == 0:
        return []

    blobs = []
    for contour in _find_contours(_binarize(crop, params), params):
        moments = cv2.moments(contour)
        if moments["m00"] <= 0:
            continue
        area = moments["m00"]
        (_, _), radius = cv2.minEnclosingCircle(contour)
        circularity = area / (math.pi * radius * radius) if radius > 0 else 0.0
        blobs.append(BlobKeypoint(
            position=CameraPixels(
                moments["m10"] / area + x0,
                moments["m01"] / area + y0,
                resolution,
            ),
            size=2.0 * math.sqrt(area / math.pi),
            confidence=float(min(1.0, circularity)),
        ))
    blobs.sort(key=lambda blob: blob.size, reverse=True)
    return blobs
