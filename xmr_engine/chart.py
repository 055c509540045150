"""
XmR Chart Assembly
==================
Runs the full pipeline and returns chart-ready plain data.

Pipeline:
    normalize -> (deseasonalize) -> base limits -> (trend | lock) -> rules

Key Features:
- One row per point with moving range, rule flags and overlays
- Explicit INSUFFICIENT_DATA result for short series
- Markdown summary and pandas export
- Batch analysis over many named series

Use Cases:
- Render the X and MR charts of a metric card
- Traffic-light status across a slide of metrics
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Iterable, Union

import pandas as pd

from .config import XMRConfig, resolve_config
from .limits import XMRLimits, XMRStatus, generate_xmr_data
from .lock_state import LimitLockState, LockStatus
from .normalization import DataPoint, NormalizedSeries, normalize_points
from .seasonality import SeasonalFactors, apply_seasonal_factors
from .transform import Transform, TransformKind
from .trend import TrendResult, calculate_trend
from .violations import Violations, ViolationRule, detect_violations

logger = logging.getLogger(__name__)

RawPoints = Union[NormalizedSeries, Iterable[Union[DataPoint, Dict[str, Any]]]]


@dataclass
class ChartPoint:
    """A single point on the X and MR charts."""
    index: int
    timestamp: str
    value: float
    raw_value: float
    moving_range: Optional[float] = None
    confidence: Optional[float] = None

    # Rule flags
    is_outside_limits: bool = False
    is_two_of_three_beyond_two_sigma: bool = False
    is_four_near_limit: bool = False
    is_running_point: bool = False
    is_fifteen_within_one_sigma: bool = False
    is_range_violation: bool = False
    highest_priority_violation: Optional[ViolationRule] = None
    is_excluded: bool = False

    # Overlays
    trend_centre: Optional[float] = None
    trend_unpl: Optional[float] = None
    trend_lnpl: Optional[float] = None
    trend_upper_quartile: Optional[float] = None
    trend_lower_quartile: Optional[float] = None
    seasonal_factor: Optional[float] = None

    @property
    def in_control(self) -> bool:
        return self.highest_priority_violation is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'timestamp': self.timestamp,
            'value': self.value,
            'rawValue': self.raw_value,
            'range': self.moving_range,
            'confidence': self.confidence,
            'isViolation': self.is_outside_limits,
            'isTwoOfThreeBeyondTwoSigma': self.is_two_of_three_beyond_two_sigma,
            'isFourNearLimit': self.is_four_near_limit,
            'isRunningPoint': self.is_running_point,
            'isFifteenWithinOneSigma': self.is_fifteen_within_one_sigma,
            'isRangeViolation': self.is_range_violation,
            'highestPriorityViolation': (
                self.highest_priority_violation.value if self.highest_priority_violation else None
            ),
            'isExcluded': self.is_excluded,
            'trendCentre': self.trend_centre,
            'trendUNPL': self.trend_unpl,
            'trendLNPL': self.trend_lnpl,
            'trendUpperQuartile': self.trend_upper_quartile,
            'trendLowerQuartile': self.trend_lower_quartile,
            'seasonalFactor': self.seasonal_factor,
        }


@dataclass
class XMRChart:
    """Complete chart result."""
    status: XMRStatus
    transform: Transform
    lock_status: LockStatus = LockStatus.FLOATING
    limits: Optional[XMRLimits] = None
    violations: Violations = field(default_factory=Violations)
    points: List[ChartPoint] = field(default_factory=list)
    trend: Optional[TrendResult] = None
    seasonal_factors: Optional[SeasonalFactors] = None
    name: str = ''

    @property
    def is_chartable(self) -> bool:
        return self.status == XMRStatus.OK

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def n_violations(self) -> int:
        return sum(1 for p in self.points if not p.in_control)

    def get_out_of_control_points(self) -> List[ChartPoint]:
        return [p for p in self.points if not p.in_control]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'status': self.status.value,
            'transform': self.transform.to_dict(),
            'lock_status': self.lock_status.value,
            'limits': self.limits.to_dict() if self.limits else None,
            'violations': self.violations.to_dict(),
            'trend': self.trend.to_dict() if self.trend else None,
            'seasonal_factors': self.seasonal_factors.to_dict() if self.seasonal_factors else None,
            'points': [p.to_dict() for p in self.points],
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([p.to_dict() for p in self.points])


# =============================================================================
# MAIN CHART FUNCTIONS
# =============================================================================

def _as_series(points: RawPoints) -> NormalizedSeries:
    if isinstance(points, NormalizedSeries):
        return points
    return normalize_points(points)


def build_xmr_chart(
    points: RawPoints,
    transform: Optional[Transform] = None,
    lock_state: Optional[LimitLockState] = None,
    config: Optional[XMRConfig] = None,
    use_median: bool = False,
    name: str = '',
) -> XMRChart:
    """
    Build an XmR chart from raw or normalized points.

    Locked limits are honoured only while the transform is flat; the
    caller keeps ``lock_state`` in step via ``on_transform_changed``.

    Args:
        points: Raw rows, DataPoints, or a NormalizedSeries
        transform: Active transform (flat if None)
        lock_state: Caller-owned lock state, if any
        config: Engine constants
        use_median: Median-based centre line and moving range
        name: Label carried into summaries

    Returns:
        XMRChart; status INSUFFICIENT_DATA with no points for short series
    """
    config = resolve_config(config)
    transform = transform or Transform.flat()
    raw_series = _as_series(points)

    series = raw_series
    seasonal = None
    if transform.kind == TransformKind.DESEASONALIZED and transform.seasonal_factors is not None:
        seasonal = transform.seasonal_factors
        series = apply_seasonal_factors(raw_series, seasonal)

    base = generate_xmr_data(series, config, use_median)
    if not base.is_chartable:
        logger.debug(f"Series '{name}' has {len(series)} points, below {config.minimum_points}")
        return XMRChart(status=XMRStatus.INSUFFICIENT_DATA, transform=transform, name=name)

    limits = base.limits
    lock_status = LockStatus.FLOATING
    excluded: List[int] = []
    trend = None

    if transform.kind == TransformKind.TRENDED:
        trend = calculate_trend(series, config, transform.gradient, transform.intercept)
        violations = detect_violations(base.data_points, limits, trend.limits, config=config)
    elif lock_state is not None and lock_state.is_locked and transform.is_flat:
        limits = lock_state.active_limits(limits)
        lock_status = lock_state.status
        excluded = [i for i in lock_state.excluded_indices if 0 <= i < len(series)]
        violations = detect_violations(base.data_points, limits, excluded_indices=excluded,
                                       config=config)
    else:
        violations = detect_violations(base.data_points, limits, config=config)

    flag_sets = {rule: set(violations.indices_for(rule)) for rule in ViolationRule}
    excluded_set = set(excluded)
    chart_points = []

    for point, raw_point, moment in zip(base.data_points, raw_series.points, series.moments):
        i = point.index
        rules = [rule for rule in ViolationRule if i in flag_sets[rule]]
        row = ChartPoint(
            index=i,
            timestamp=point.timestamp,
            value=point.value,
            raw_value=raw_point.value,
            moving_range=point.moving_range,
            confidence=point.confidence,
            is_outside_limits=ViolationRule.OUTSIDE_LIMITS in rules,
            is_two_of_three_beyond_two_sigma=ViolationRule.TWO_OF_THREE_BEYOND_TWO_SIGMA in rules,
            is_four_near_limit=ViolationRule.FOUR_NEAR_LIMIT in rules,
            is_running_point=ViolationRule.RUNNING_POINTS in rules,
            is_fifteen_within_one_sigma=ViolationRule.FIFTEEN_WITHIN_ONE_SIGMA in rules,
            is_range_violation=point.moving_range is not None and point.moving_range > limits.url,
            highest_priority_violation=rules[0] if rules else None,
            is_excluded=i in excluded_set,
        )
        if trend is not None and trend.limits is not None:
            row.trend_centre = trend.limits.centre_line[i]
            row.trend_unpl = trend.limits.unpl[i]
            row.trend_lnpl = trend.limits.lnpl[i]
            row.trend_upper_quartile = trend.limits.upper_quartile[i]
            row.trend_lower_quartile = trend.limits.lower_quartile[i]
        if seasonal is not None and seasonal.is_applicable:
            row.seasonal_factor = seasonal.factor_for(moment)
        chart_points.append(row)

    return XMRChart(
        status=XMRStatus.OK,
        transform=transform,
        lock_status=lock_status,
        limits=limits,
        violations=violations,
        points=chart_points,
        trend=trend,
        seasonal_factors=seasonal,
        name=name,
    )


def analyze_series_batch(
    series_by_name: Dict[str, RawPoints],
    transforms: Optional[Dict[str, Transform]] = None,
    config: Optional[XMRConfig] = None,
) -> Dict[str, XMRChart]:
    """
    Build charts for many named series.

    Args:
        series_by_name: Name -> raw points
        transforms: Optional name -> transform
        config: Engine constants

    Returns:
        Name -> XMRChart (series that fail are skipped with a warning)
    """
    results = {}
    transforms = transforms or {}

    for name, points in series_by_name.items():
        try:
            results[name] = build_xmr_chart(points, transforms.get(name), config=config, name=name)
        except Exception as e:
            logger.warning(f"XmR analysis failed for {name}: {e}")

    return results


def format_xmr_summary(chart: XMRChart) -> str:
    """Format an XmR chart as a markdown summary."""
    title = chart.name or 'series'
    lines = [f"## XmR Analysis: {title}", ""]

    if not chart.is_chartable:
        lines.append("Insufficient data for an XmR chart")
        return "\n".join(lines)

    lines.extend([
        f"**Transform:** {chart.transform.kind.value}",
        f"**Limits:** {chart.lock_status.value}",
        f"**Points Analyzed:** {chart.n_points}",
        "",
        "### Natural Process Limits",
        f"- Average X: {chart.limits.avg_x:.4f}",
        f"- UNPL: {chart.limits.unpl:.4f}",
        f"- LNPL: {chart.limits.lnpl:.4f}",
        f"- Average Movement: {chart.limits.avg_movement:.4f}",
        f"- URL: {chart.limits.url:.4f}",
        "",
        "### Signals",
        f"- Points with signals: {chart.n_violations}",
    ])

    for point in chart.get_out_of_control_points():
        lines.append(f"  - {point.timestamp}: {point.highest_priority_violation.description}")

    if chart.trend is not None and chart.trend.stats is not None:
        lines.extend([
            "",
            "### Trend",
            f"- Gradient: {chart.trend.gradient:.6f} per point",
            f"- Intercept: {chart.trend.intercept:.4f}",
        ])
        if chart.trend.direction:
            lines.append(f"- Direction: {chart.trend.direction}")

    if chart.seasonal_factors is not None and chart.seasonal_factors.is_applicable:
        factors = ', '.join(f"{f:.3f}" for f in chart.seasonal_factors.factors)
        lines.extend([
            "",
            "### Seasonality",
            f"- Period: {chart.seasonal_factors.period.value}",
            f"- Factors: {factors}",
        ])

    return "\n".join(lines)
