"""
Blob measurement helpers for the calibration run.

Turns raw detector keypoints into Centered-space BlobMeasurements and merges
repeated samples with a MAD filter.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..coords import camera_to_centered, distance
from ..stats import filter_samples, normalized_mad
from ..types import BlobKeypoint, BlobMeasurement, CameraPixels, Centered, MeasurementStats

FRAME_CENTER = Centered(0.0, 0.0)


def blob_to_measurement(blob: BlobKeypoint) -> BlobMeasurement:
    """Detector keypoint (pixels) to a single-sample BlobMeasurement."""
    resolution = blob.position.resolution
    size = camera_to_centered(CameraPixels(blob.size, 0.0, resolution, delta=True)).x
    return BlobMeasurement(
        position=camera_to_centered(blob.position),
        size=size,
        resolution=resolution,
    )


def select_blob(
    blobs: Sequence[BlobKeypoint],
    expected: Centered | None = None,
    tolerance: float | None = None,
) -> BlobMeasurement | None:
    """
    Pick the blob belonging to the tile under test.

    With an expected position, the nearest blob within tolerance wins.
    Without one, the blob nearest the frame center wins.
    """
    candidates = [blob_to_measurement(blob) for blob in blobs]
    if not candidates:
        return None
    anchor = expected if expected is not None else FRAME_CENTER
    ranked = sorted(candidates, key=lambda m: distance(m.position, anchor))
    best = ranked[0]
    if expected is not None and tolerance is not None:
        if distance(best.position, expected) > tolerance:
            return None
    return best


def combine_samples(
    samples: Sequence[BlobMeasurement],
    threshold: float = 3.0,
    jitter_floor: float = 0.002,
) -> BlobMeasurement | None:
    """
    Merge repeated samples of the same blob.

    Samples beyond threshold * nMAD (floored at jitter_floor) from the median
    on x, y or size are discarded. Returns None when more than half are
    discarded.
    """
    if not samples:
        return None
    data = np.array(
        [[s.position.x, s.position.y, s.size] for s in samples],
        dtype=np.float64,
    )
    result = filter_samples(data, threshold=threshold, scale_floor=jitter_floor)
    if not result.reliable:
        return None

    inliers = data[result.inliers]
    x, y, size = (float(v) for v in result.representative)
    return BlobMeasurement(
        position=Centered(x, y),
        size=size,
        resolution=samples[0].resolution,
        stats=MeasurementStats(
            sample_count=int(result.inliers.sum()),
            median_x=float(np.median(inliers[:, 0])),
            median_y=float(np.median(inliers[:, 1])),
            nmad_x=normalized_mad(inliers[:, 0]),
            nmad_y=normalized_mad(inliers[:, 1]),
        ),
    )
