"""
Robust statistics.

Median / MAD based helpers used for outlier screening of tile measurements
and for filtering repeated camera samples.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np
from scipy.stats import median_abs_deviation


# Scales MAD to a standard deviation estimate for normally distributed data
NORMALIZED_MAD_FACTOR = 1.4826
DEFAULT_OUTLIER_MAD_THRESHOLD = 3.0

OutlierDirection = Literal["both", "high", "low"]


@dataclass(frozen=True, slots=True)
class OutlierResult:
    """Result of MAD outlier detection over a 1D sample."""

    mask: np.ndarray  # (n,) True where the value is an outlier
    median: float
    mad: float
    nmad: float
    lower_threshold: float
    upper_threshold: float


@dataclass(frozen=True, slots=True)
class SampleFilterResult:
    """Result of filtering repeated samples."""

    inliers: np.ndarray  # (n,) boolean mask
    representative: np.ndarray  # (k,) mean of inlier samples
    discarded: int
    reliable: bool  # False when more than half the samples were discarded


def median(values) -> float:
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise ValueError("median() of empty sequence")
    return float(np.median(arr))


def mad(values) -> float:
    """Median absolute deviation from the median."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise ValueError("mad() of empty sequence")
    return float(median_abs_deviation(arr, scale=1.0))


def normalized_mad(values) -> float:
    """MAD scaled to be comparable with a standard deviation."""
    return mad(values) * NORMALIZED_MAD_FACTOR


def detect_outliers(
    values,
    threshold: float = DEFAULT_OUTLIER_MAD_THRESHOLD,
    direction: OutlierDirection = "both",
) -> OutlierResult:
    """
    Flag values further than threshold * nMAD from the median.

    A single value, or a sample whose MAD is zero, never yields outliers.

    Args:
        values: 1D sequence of floats
        threshold: Multiples of the normalized MAD
        direction: Which side(s) of the median count as outliers

    Returns:
        OutlierResult with a boolean mask aligned to values
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise ValueError("detect_outliers() of empty sequence")

    med = float(np.median(arr))
    mad_value = float(median_abs_deviation(arr, scale=1.0))
    nmad = mad_value * NORMALIZED_MAD_FACTOR
    lower = med - threshold * nmad
    upper = med + threshold * nmad

    if arr.size < 2 or nmad == 0.0:
        mask = np.zeros(arr.shape, dtype=bool)
    elif direction == "high":
        mask = arr > upper
    elif direction == "low":
        mask = arr < lower
    else:
        mask = (arr > upper) | (arr < lower)

    return OutlierResult(
        mask=mask,
        median=med,
        mad=mad_value,
        nmad=nmad,
        lower_threshold=lower,
        upper_threshold=upper,
    )


def robust_max(values, threshold: float = DEFAULT_OUTLIER_MAD_THRESHOLD) -> float:
    """Maximum after discarding high outliers."""
    arr = np.asarray(values, dtype=np.float64)
    result = detect_outliers(arr, threshold, direction="high")
    return float(arr[~result.mask].max())


def robust_min(values, threshold: float = DEFAULT_OUTLIER_MAD_THRESHOLD) -> float:
    """Minimum after discarding low outliers."""
    arr = np.asarray(values, dtype=np.float64)
    result = detect_outliers(arr, threshold, direction="low")
    return float(arr[~result.mask].min())


def filter_samples(
    samples,
    threshold: float = DEFAULT_OUTLIER_MAD_THRESHOLD,
    scale_floor=None,
) -> SampleFilterResult:
    """
    MAD filter over repeated multi-column samples (e.g. x, y, area).

    A sample is discarded when any column lies beyond threshold * scale from
    that column's median, where scale is the column's nMAD or scale_floor when
    the nMAD is smaller (identical samples would otherwise reject all spread).

    Args:
        samples: (n, k) array-like
        threshold: Multiples of the per-column scale
        scale_floor: Scalar or (k,) minimum scale per column

    Returns:
        SampleFilterResult; reliable is False when more than half are discarded
    """
    arr = np.atleast_2d(np.asarray(samples, dtype=np.float64))
    if arr.shape[0] == 0:
        raise ValueError("filter_samples() of empty sequence")

    med = np.median(arr, axis=0)
    scale = median_abs_deviation(arr, axis=0, scale=1.0) * NORMALIZED_MAD_FACTOR
    if scale_floor is not None:
        scale = np.maximum(scale, np.broadcast_to(scale_floor, scale.shape))

    if arr.shape[0] < 2:
        inliers = np.ones(arr.shape[0], dtype=bool)
    else:
        deviation = np.abs(arr - med)
        limit = threshold * scale
        # Columns with zero scale accept only exact matches
        inliers = np.all(deviation <= limit, axis=1)

    discarded = int((~inliers).sum())
    reliable = discarded * 2 <= arr.shape[0] and inliers.any()
    representative = arr[inliers].mean(axis=0) if inliers.any() else med
    return SampleFilterResult(
        inliers=inliers,
        representative=representative,
        discarded=discarded,
        reliable=bool(reliable),
    )
