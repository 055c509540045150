"""
Trend Engine
============
Linear regression baselines and trend-relative control bands.

The regression runs against point index, not wall-clock time, so
irregular spacing does not bend the line. Bands are the flat-limit
offsets (limit constant x avgMovement, quartile fraction) laid parallel
to the regression line.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List

import numpy as np

from .config import XMRConfig, resolve_config
from .limits import XMRStatus, calculate_xmr_limits
from .normalization import NormalizedSeries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegressionStats:
    """Least-squares fit of value against index."""
    gradient: float
    intercept: float
    r_squared: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'m': self.gradient, 'c': self.intercept, 'r_squared': self.r_squared}


@dataclass
class TrendLimits:
    """Per-index bands around a regression line."""
    centre_line: List[float] = field(default_factory=list)
    unpl: List[float] = field(default_factory=list)
    lnpl: List[float] = field(default_factory=list)
    upper_quartile: List[float] = field(default_factory=list)
    lower_quartile: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.centre_line)

    def to_dict(self) -> Dict[str, List[float]]:
        return {
            'centreLine': list(self.centre_line),
            'unpl': list(self.unpl),
            'lnpl': list(self.lnpl),
            'upperQuartile': list(self.upper_quartile),
            'lowerQuartile': list(self.lower_quartile),
        }


@dataclass
class TrendResult:
    """Trend engine output."""
    status: XMRStatus
    stats: Optional[RegressionStats] = None
    avg_movement: Optional[float] = None
    limits: Optional[TrendLimits] = None

    # Significance of the fit
    has_trend: bool = False
    direction: Optional[str] = None  # 'increasing', 'decreasing'

    @property
    def gradient(self) -> Optional[float]:
        return self.stats.gradient if self.stats else None

    @property
    def intercept(self) -> Optional[float]:
        return self.stats.intercept if self.stats else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'gradient': self.gradient,
            'intercept': self.intercept,
            'r_squared': self.stats.r_squared if self.stats else None,
            'avg_movement': self.avg_movement,
            'has_trend': self.has_trend,
            'direction': self.direction,
            'limits': self.limits.to_dict() if self.limits else None,
        }


def calculate_regression_stats(
    series: NormalizedSeries,
    config: Optional[XMRConfig] = None,
) -> Optional[RegressionStats]:
    """
    Fit ``value = m * index + c`` by ordinary least squares.

    Returns:
        RegressionStats, or None with fewer than ``trend_min_points`` points
    """
    config = resolve_config(config)
    values = series.values
    n = len(values)

    if n < config.trend_min_points:
        return None

    x = np.arange(n, dtype=float)
    x_mean = np.mean(x)
    y_mean = np.mean(values)

    numerator = np.sum((x - x_mean) * (values - y_mean))
    denominator = np.sum((x - x_mean) ** 2)

    slope = numerator / denominator
    intercept = y_mean - slope * x_mean

    y_pred = slope * x + intercept
    ss_res = np.sum((values - y_pred) ** 2)
    ss_tot = np.sum((values - y_mean) ** 2)
    r_squared = float(1 - ss_res / ss_tot) if ss_tot > 0 else None

    return RegressionStats(gradient=float(slope), intercept=float(intercept), r_squared=r_squared)


def create_trend_lines(
    gradient: float,
    intercept: float,
    avg_movement: float,
    n_points: int,
    config: Optional[XMRConfig] = None,
) -> TrendLimits:
    """Lay the flat-limit offsets parallel to ``m * i + c`` for i in 0..n-1."""
    config = resolve_config(config)

    offset = config.limit_constant * avg_movement
    band = config.quartile_fraction * offset
    centre = gradient * np.arange(n_points, dtype=float) + intercept

    return TrendLimits(
        centre_line=[float(v) for v in centre],
        unpl=[float(v) for v in centre + offset],
        lnpl=[float(v) for v in centre - offset],
        upper_quartile=[float(v) for v in centre + band],
        lower_quartile=[float(v) for v in centre - band],
    )


def _trend_significance(values: np.ndarray, stats: RegressionStats):
    if stats.r_squared is None:
        return False, None

    data_range = np.max(values) - np.min(values)
    relative_slope = abs(stats.gradient * len(values)) / data_range if data_range > 0 else 0

    has_trend = stats.r_squared > 0.5 and relative_slope > 0.1
    direction = None
    if has_trend:
        direction = 'increasing' if stats.gradient > 0 else 'decreasing'
    return has_trend, direction


def calculate_trend(
    series: NormalizedSeries,
    config: Optional[XMRConfig] = None,
    gradient: Optional[float] = None,
    intercept: Optional[float] = None,
) -> TrendResult:
    """
    Compute a trend baseline and its bands.

    Args:
        series: Normalized series (at least ``trend_min_points`` points)
        config: Engine constants
        gradient, intercept: Use this line instead of fitting one

    Returns:
        TrendResult; INSUFFICIENT_DATA when too few points
    """
    config = resolve_config(config)
    values = series.values

    if len(values) < config.trend_min_points:
        return TrendResult(status=XMRStatus.INSUFFICIENT_DATA)

    if gradient is not None and intercept is not None:
        # Fit quality is unknown for a supplied line
        stats = RegressionStats(gradient=float(gradient), intercept=float(intercept))
    else:
        stats = calculate_regression_stats(series, config)

    avg_movement = calculate_xmr_limits(values, config).avg_movement
    limits = create_trend_lines(stats.gradient, stats.intercept, avg_movement, len(values), config)
    has_trend, direction = _trend_significance(values, stats)

    logger.debug(f"Trend m={stats.gradient:.6f} c={stats.intercept:.6f} over {len(values)} points")

    return TrendResult(
        status=XMRStatus.OK,
        stats=stats,
        avg_movement=avg_movement,
        limits=limits,
        has_trend=has_trend,
        direction=direction,
    )
