"""Pick the quality expected to hit a byte target.

Pure functions over an EstimationCurve: no I/O, no logging side effects
beyond debug output.
"""

from typing import Optional

from pdf_size_chooser.core.utils import round_half_up
from pdf_size_chooser.engine.models import EstimationCurve, QualityResolution

MIN_QUALITY = 1
MAX_QUALITY = 100


def _clamp_quality(quality: int) -> int:
    return max(MIN_QUALITY, min(MAX_QUALITY, quality))


def resolve_quality(curve: EstimationCurve, target_bytes: int) -> QualityResolution:
    """Interpolate the quality whose predicted size meets ``target_bytes``.

    - target at or above the top estimate: top quality, achievable
    - target below the bottom estimate: bottom quality, not achievable
    - otherwise: linear interpolation between the bracketing pair

    Raises:
        ValueError: The curve has no estimates.
    """
    if not curve.estimates:
        raise ValueError("Cannot resolve a quality from an empty estimation curve")

    highest = curve.highest
    lowest = curve.lowest

    if target_bytes >= highest.estimated_bytes:
        return QualityResolution(highest.quality, highest.estimated_bytes, True)

    if target_bytes < lowest.estimated_bytes:
        return QualityResolution(lowest.quality, lowest.estimated_bytes, False)

    for lower, higher in zip(curve.estimates, curve.estimates[1:]):
        if not lower.estimated_bytes <= target_bytes <= higher.estimated_bytes:
            continue

        span = higher.estimated_bytes - lower.estimated_bytes
        if span == 0:
            return QualityResolution(lower.quality, lower.estimated_bytes, True)

        ratio = (target_bytes - lower.estimated_bytes) / span
        quality = _clamp_quality(
            round_half_up(lower.quality + ratio * (higher.quality - lower.quality))
        )
        return QualityResolution(quality, round_half_up(target_bytes), True)

    # Unreachable for a monotonic curve
    return QualityResolution(lowest.quality, lowest.estimated_bytes, False)


def choose_start_quality(
    curve: Optional[EstimationCurve],
    target_bytes: Optional[int],
    requested_quality: Optional[int],
    default_quality: int,
) -> QualityResolution:
    """Starting quality for a compression request.

    A target drives the choice when a curve exists; a requested quality
    then acts as an upper bound. Without a curve the requested quality
    (or the default) is used and achievability is assumed.
    """
    if target_bytes is not None and curve is not None and curve.estimates:
        resolution = resolve_quality(curve, target_bytes)
        if requested_quality is not None and requested_quality < resolution.quality:
            return QualityResolution(requested_quality, resolution.estimated_bytes, resolution.achievable)
        return resolution

    quality = requested_quality if requested_quality is not None else default_quality
    estimated = 0
    if curve is not None and curve.estimates:
        estimated = _estimate_at(curve, quality)
    return QualityResolution(_clamp_quality(quality), estimated, True)


def _estimate_at(curve: EstimationCurve, quality: int) -> int:
    """Predicted size at an arbitrary quality, interpolated on the curve."""
    estimates = curve.estimates
    if quality >= estimates[-1].quality:
        return estimates[-1].estimated_bytes
    if quality <= estimates[0].quality:
        return estimates[0].estimated_bytes
    for lower, higher in zip(estimates, estimates[1:]):
        if lower.quality <= quality <= higher.quality:
            ratio = (quality - lower.quality) / (higher.quality - lower.quality)
            return round_half_up(
                lower.estimated_bytes + ratio * (higher.estimated_bytes - lower.estimated_bytes)
            )
    return estimates[-1].estimated_bytes
