"""
XmR Limits Module
=================
Individual-X and Moving Range (XmR) limit calculations.

Key Features:
- Moving ranges and natural process limits (UNPL/LNPL)
- Upper range limit (URL) for the moving range chart
- Quartile bands used by the special-cause rules
- Mean- or median-based centre lines
- Iterative outlier removal and the auto-lock decision
- Manual lock construction with validation

All zones derive from the average moving range; no standard deviation
is computed anywhere.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple, Iterable

import numpy as np

from .config import XMRConfig, resolve_config
from .normalization import NormalizedSeries

logger = logging.getLogger(__name__)


class XMRStatus(Enum):
    """Outcome of an engine computation."""
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class XMRLimits:
    """Scalar limits derived from one series snapshot."""
    avg_x: float
    avg_movement: float
    unpl: float  # Upper Natural Process Limit
    lnpl: float  # Lower Natural Process Limit
    upper_quartile: float
    lower_quartile: float
    url: float  # Upper Range Limit

    @property
    def spread(self) -> float:
        return self.unpl - self.lnpl

    def to_dict(self) -> Dict[str, float]:
        return {
            'avgX': self.avg_x,
            'avgMovement': self.avg_movement,
            'UNPL': self.unpl,
            'LNPL': self.lnpl,
            'upperQuartile': self.upper_quartile,
            'lowerQuartile': self.lower_quartile,
            'URL': self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> 'XMRLimits':
        return cls(
            avg_x=float(data['avgX']),
            avg_movement=float(data['avgMovement']),
            unpl=float(data['UNPL']),
            lnpl=float(data['LNPL']),
            upper_quartile=float(data['upperQuartile']),
            lower_quartile=float(data['lowerQuartile']),
            url=float(data['URL']),
        )


@dataclass(frozen=True)
class XMRDataPoint:
    """A series point with its moving range (None for the first point)."""
    index: int
    timestamp: str
    value: float
    moving_range: Optional[float] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'value': self.value,
            'range': self.moving_range,
            'confidence': self.confidence,
        }


@dataclass
class XMRData:
    """Base calculator output."""
    status: XMRStatus
    data_points: List[XMRDataPoint] = field(default_factory=list)
    limits: Optional[XMRLimits] = None
    use_median: bool = False

    @property
    def is_chartable(self) -> bool:
        return self.status == XMRStatus.OK

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.data_points], dtype=float)

    @property
    def moving_ranges(self) -> np.ndarray:
        return np.array([p.moving_range for p in self.data_points[1:]], dtype=float)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'use_median': self.use_median,
            'limits': self.limits.to_dict() if self.limits else None,
            'data_points': [p.to_dict() for p in self.data_points],
        }


# =============================================================================
# BASE XMR CALCULATION
# =============================================================================

def calculate_moving_ranges(values: np.ndarray) -> np.ndarray:
    """Absolute differences of consecutive values (length n-1)."""
    values = np.asarray(values, dtype=float)
    if len(values) < 2:
        return np.array([], dtype=float)
    return np.abs(np.diff(values))


def limits_from_centre(
    centre: float,
    movement: float,
    limit_constant: float,
    range_constant: float,
    quartile_fraction: float,
) -> XMRLimits:
    """Build limits from a centre line and a moving range statistic."""
    offset = limit_constant * movement
    band = quartile_fraction * offset
    return XMRLimits(
        avg_x=float(centre),
        avg_movement=float(movement),
        unpl=float(centre + offset),
        lnpl=float(centre - offset),
        upper_quartile=float(centre + band),
        lower_quartile=float(centre - band),
        url=float(range_constant * movement),
    )


def calculate_xmr_limits(
    values: np.ndarray,
    config: Optional[XMRConfig] = None,
    use_median: bool = False,
) -> XMRLimits:
    """
    Calculate natural process limits for individual values.

    Args:
        values: Array of individual measurements, in series order
        config: Engine constants (defaults if None)
        use_median: Use median value and median moving range

    Returns:
        XMRLimits

    Raises:
        ValueError: If fewer than 2 values are given
    """
    config = resolve_config(config)
    values = np.asarray(values, dtype=float)

    if len(values) < 2:
        raise ValueError("Need at least 2 points for XmR limits")

    mr = calculate_moving_ranges(values)

    if use_median:
        return limits_from_centre(
            np.median(values), np.median(mr),
            config.median_limit_constant, config.median_range_constant,
            config.quartile_fraction,
        )

    return limits_from_centre(
        np.mean(values), np.mean(mr),
        config.limit_constant, config.range_constant,
        config.quartile_fraction,
    )


def generate_xmr_data(
    series: NormalizedSeries,
    config: Optional[XMRConfig] = None,
    use_median: bool = False,
) -> XMRData:
    """
    Compute moving ranges and limits for a normalized series.

    Series shorter than ``config.minimum_points`` are reported as
    INSUFFICIENT_DATA. Limits are still filled in when at least two
    points exist, since the trend engine needs avgMovement.
    """
    config = resolve_config(config)
    values = series.values
    mr = calculate_moving_ranges(values)

    data_points = [
        XMRDataPoint(
            index=i,
            timestamp=point.timestamp,
            value=point.value,
            moving_range=float(mr[i - 1]) if i > 0 else None,
            confidence=point.confidence,
        )
        for i, point in enumerate(series.points)
    ]

    limits = calculate_xmr_limits(values, config, use_median) if len(values) >= 2 else None
    status = XMRStatus.OK if len(values) >= config.minimum_points else XMRStatus.INSUFFICIENT_DATA

    return XMRData(status=status, data_points=data_points, limits=limits, use_median=use_median)


# =============================================================================
# OUTLIER REMOVAL AND AUTO-LOCK
# =============================================================================

@dataclass
class OutlierResult:
    """Limits recomputed without outliers."""
    status: XMRStatus
    limits: Optional[XMRLimits] = None
    original_limits: Optional[XMRLimits] = None
    outlier_indices: List[int] = field(default_factory=list)
    iterations: int = 0

    @property
    def has_outliers(self) -> bool:
        return len(self.outlier_indices) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'limits': self.limits.to_dict() if self.limits else None,
            'original_limits': self.original_limits.to_dict() if self.original_limits else None,
            'outlier_indices': list(self.outlier_indices),
            'iterations': self.iterations,
        }


def _screening_limits(values: np.ndarray, config: XMRConfig) -> XMRLimits:
    if config.outlier_screening == 'median':
        limits = calculate_xmr_limits(values, config, use_median=True)
        # A zero median range would flag every point off the median
        if limits.avg_movement > 0:
            return limits
    return calculate_xmr_limits(values, config)


def calculate_limits_with_outlier_removal(
    series: NormalizedSeries,
    config: Optional[XMRConfig] = None,
) -> OutlierResult:
    """
    Exclude extreme points and recompute limits until the set settles.

    Each pass screens every point against limits computed from the points
    retained so far. Final limits are mean-based over the retained points.
    A pass is rejected if it would exclude too many points, leave fewer
    than ``minimum_points``, or raise avgMovement above the unfiltered value.

    Args:
        series: Normalized series
        config: Engine constants

    Returns:
        OutlierResult (outlier_indices sorted ascending)
    """
    config = resolve_config(config)
    values = series.values
    n = len(values)

    if n < config.minimum_points:
        return OutlierResult(status=XMRStatus.INSUFFICIENT_DATA)

    original = calculate_xmr_limits(values, config)
    outliers: List[int] = []
    limits = original
    iterations = 0

    for iterations in range(1, config.outlier_iteration_cap + 1):
        retained = np.delete(values, outliers)
        screen = _screening_limits(retained, config)

        candidates = [
            i for i, v in enumerate(values)
            if v > screen.unpl or v < screen.lnpl
        ]
        logger.debug(f"Outlier pass {iterations}: candidates {candidates}")

        if candidates == outliers:
            break

        n_retained = n - len(candidates)
        if len(candidates) > config.max_outlier_fraction * n or n_retained < config.minimum_points:
            logger.debug("Outlier pass rejected: too few points would remain")
            break

        candidate_limits = calculate_xmr_limits(np.delete(values, candidates), config)
        if candidate_limits.avg_movement > original.avg_movement:
            logger.debug("Outlier pass rejected: avgMovement would increase")
            break

        outliers = candidates
        limits = candidate_limits

    return OutlierResult(
        status=XMRStatus.OK,
        limits=limits,
        original_limits=original,
        outlier_indices=list(outliers),
        iterations=iterations,
    )


def should_auto_lock_limits(
    series: NormalizedSeries,
    config: Optional[XMRConfig] = None,
    outlier_result: Optional[OutlierResult] = None,
) -> bool:
    """
    Decide whether outlier-excluded limits should be shown by default.

    True when outliers were found and the naive limits are at least
    ``auto_lock_spread_ratio`` times wider than the filtered ones.
    """
    config = resolve_config(config)
    result = outlier_result or calculate_limits_with_outlier_removal(series, config)

    if result.status != XMRStatus.OK or not result.has_outliers:
        return False

    original_spread = result.original_limits.spread
    filtered_spread = result.limits.spread

    if filtered_spread <= 0:
        return original_spread > 0

    return original_spread >= config.auto_lock_spread_ratio * filtered_spread


# =============================================================================
# MANUAL LOCK
# =============================================================================

def validate_limits(limits: XMRLimits) -> List[str]:
    """Return validation errors for a proposed set of locked limits."""
    errors = []
    if limits.avg_x < limits.lnpl or limits.avg_x > limits.unpl:
        errors.append(
            f"Average X must be between LNPL and UNPL "
            f"(avgX={limits.avg_x:.2f}, LNPL={limits.lnpl:.2f}, UNPL={limits.unpl:.2f})"
        )
    if limits.avg_movement > limits.url:
        errors.append(
            f"Average movement must not exceed URL "
            f"(avgMovement={limits.avg_movement:.2f}, URL={limits.url:.2f})"
        )
    if limits.unpl <= limits.lnpl:
        errors.append(
            f"UNPL must be greater than LNPL (UNPL={limits.unpl:.2f}, LNPL={limits.lnpl:.2f})"
        )
    return errors


def _round(value: float, decimals: Optional[int]) -> float:
    return float(value) if decimals is None else round(float(value), decimals)


def build_manual_limits(
    series: NormalizedSeries,
    excluded_indices: Iterable[int] = (),
    avg_x: Optional[float] = None,
    unpl: Optional[float] = None,
    lnpl: Optional[float] = None,
    avg_movement: Optional[float] = None,
    url: Optional[float] = None,
    use_median: bool = False,
    config: Optional[XMRConfig] = None,
) -> Tuple[Optional[XMRLimits], List[str]]:
    """
    Build limits for a manual lock.

    Limits are recomputed from the series without the excluded points
    (all points are used if fewer than 3 would remain), then any explicit
    value overrides the recomputed one. Quartiles follow the final values.

    Returns:
        (limits, errors). limits is None when errors is non-empty.
    """
    config = resolve_config(config)
    excluded = sorted(set(i for i in excluded_indices if 0 <= i < len(series)))

    values = series.values
    filtered = np.delete(values, excluded)
    basis = filtered if len(filtered) >= 3 else values

    if len(basis) < 2:
        return None, ["Need at least 2 points to lock limits"]

    recalculated = calculate_xmr_limits(basis, config, use_median)

    centre = avg_x if avg_x is not None else recalculated.avg_x
    upper = unpl if unpl is not None else recalculated.unpl
    lower = lnpl if lnpl is not None else recalculated.lnpl
    movement = avg_movement if avg_movement is not None else recalculated.avg_movement
    range_limit = url if url is not None else recalculated.url

    fraction = config.quartile_fraction
    decimals = config.locked_limit_decimals
    limits = XMRLimits(
        avg_x=_round(centre, decimals),
        avg_movement=_round(movement, decimals),
        unpl=_round(upper, decimals),
        lnpl=_round(lower, decimals),
        upper_quartile=_round(centre + fraction * (upper - centre), decimals),
        lower_quartile=_round(centre - fraction * (centre - lower), decimals),
        url=_round(range_limit, decimals),
    )

    errors = validate_limits(limits)
    if errors:
        return None, errors
    return limits, []
