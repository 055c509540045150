"""
Seasonality Engine
==================
Periodicity detection, seasonal factors, and the deseasonalizing transform.

A point's phase is its position within the calendar year, measured in the
series cadence (``period``) or, when a coarser ``grouping`` is chosen, in
that grouping's unit:

    period WEEK               -> ISO week of year (52 phases, week 53 folds into 52)
    period MONTH              -> month of year (12 phases)
    period QUARTER            -> quarter of year (4 phases)
    period WEEK, grouping MONTH -> weekly points grouped by month (12 phases)

Daily and yearly cadences carry no usable within-year phase, so seasonality
is skipped for them. ``SeasonalityPeriod.YEAR`` is still accepted as a
period so any detected cadence can be passed straight through, but its
factors are always NOT_APPLICABLE and applying them returns the series
unchanged.

Factors are phase mean / overall mean (multiplicative) or phase mean -
overall mean (additive). ``apply`` divides or subtracts them out,
``remove`` puts them back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple

import numpy as np
import pandas as pd

from .config import XMRConfig, resolve_config
from .limits import XMRStatus
from .normalization import NormalizedSeries, TimeBucket, detect_bucket_type

logger = logging.getLogger(__name__)

SeasonalityPeriod = TimeBucket


class SeasonalityGrouping(Enum):
    """Optional coarser phase unit."""
    NONE = "none"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


class SeasonalAdjustment(Enum):
    """How a factor is applied."""
    MULTIPLICATIVE = "multiplicative"
    ADDITIVE = "additive"


_PHASE_COUNTS = {
    TimeBucket.WEEK: 52,
    TimeBucket.MONTH: 12,
    TimeBucket.QUARTER: 4,
}


@dataclass(frozen=True)
class SeasonalFactors:
    """One factor per phase, plus how they were computed."""
    period: SeasonalityPeriod
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE
    adjustment: SeasonalAdjustment = SeasonalAdjustment.MULTIPLICATIVE
    factors: Tuple[float, ...] = field(default_factory=tuple)
    status: XMRStatus = XMRStatus.OK

    @property
    def is_applicable(self) -> bool:
        return self.status == XMRStatus.OK and len(self.factors) > 0

    @property
    def neutral(self) -> float:
        return 1.0 if self.adjustment == SeasonalAdjustment.MULTIPLICATIVE else 0.0

    def factor_for(self, moment: pd.Timestamp) -> float:
        """Factor for a timestamp (neutral if not applicable)."""
        if not self.is_applicable:
            return self.neutral
        phase = seasonal_phase(moment, self.period, self.grouping)
        if phase is None or phase >= len(self.factors):
            return self.neutral
        return self.factors[phase]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period.value,
            'grouping': self.grouping.value,
            'adjustment': self.adjustment.value,
            'factors': list(self.factors),
            'status': self.status.value,
        }


# =============================================================================
# PERIODICITY
# =============================================================================

def determine_periodicity(series: NormalizedSeries) -> SeasonalityPeriod:
    """Most plausible cadence of a series, from its most common spacing."""
    return detect_bucket_type(series.timestamps)


def is_seasonality_applicable(period: SeasonalityPeriod,
                              grouping: SeasonalityGrouping = SeasonalityGrouping.NONE) -> bool:
    return phase_unit(period, grouping) is not None


def phase_unit(period: SeasonalityPeriod,
               grouping: SeasonalityGrouping = SeasonalityGrouping.NONE) -> Optional[TimeBucket]:
    """Unit the year is divided into, or None if seasonality does not apply."""
    if period == TimeBucket.DAY:
        return None

    unit = period
    if grouping != SeasonalityGrouping.NONE:
        grouped = TimeBucket(grouping.value)
        if grouped.rank > unit.rank:
            unit = grouped

    return unit if unit in _PHASE_COUNTS else None


def seasonal_phase(moment: pd.Timestamp,
                   period: SeasonalityPeriod,
                   grouping: SeasonalityGrouping = SeasonalityGrouping.NONE) -> Optional[int]:
    """Zero-based phase of a timestamp within its year."""
    unit = phase_unit(period, grouping)
    if unit == TimeBucket.WEEK:
        return min(moment.isocalendar()[1], 52) - 1
    if unit == TimeBucket.MONTH:
        return moment.month - 1
    if unit == TimeBucket.QUARTER:
        return (moment.month - 1) // 3
    return None


# =============================================================================
# FACTORS
# =============================================================================

def calculate_seasonal_factors(
    series: NormalizedSeries,
    period: SeasonalityPeriod,
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE,
    adjustment: SeasonalAdjustment = SeasonalAdjustment.MULTIPLICATIVE,
    config: Optional[XMRConfig] = None,
) -> SeasonalFactors:
    """
    Compute one factor per phase.

    Phases with no data get the neutral factor. The result is
    NOT_APPLICABLE when the cadence has no usable phase, fewer than two
    phases hold data, or a multiplicative factor would be zero.

    Args:
        series: Normalized series
        period: Series cadence, usually from ``determine_periodicity``
        grouping: Optional coarser phase unit
        adjustment: Ratio or difference factors
        config: Engine constants

    Returns:
        SeasonalFactors
    """
    config = resolve_config(config)

    def empty(status: XMRStatus) -> SeasonalFactors:
        return SeasonalFactors(period=period, grouping=grouping,
                               adjustment=adjustment, status=status)

    if len(series) < config.minimum_points:
        return empty(XMRStatus.INSUFFICIENT_DATA)

    unit = phase_unit(period, grouping)
    if unit is None:
        logger.debug(f"Seasonality not applicable for period '{period.value}'")
        return empty(XMRStatus.NOT_APPLICABLE)

    values = series.values
    phases = [seasonal_phase(m, period, grouping) for m in series.moments]
    overall = float(np.mean(values))

    by_phase: Dict[int, List[float]] = {}
    for phase, value in zip(phases, values):
        by_phase.setdefault(phase, []).append(value)

    if len(by_phase) < 2:
        return empty(XMRStatus.NOT_APPLICABLE)

    multiplicative = adjustment == SeasonalAdjustment.MULTIPLICATIVE
    if multiplicative and overall == 0:
        return empty(XMRStatus.NOT_APPLICABLE)

    neutral = 1.0 if multiplicative else 0.0
    factors = []
    for phase in range(_PHASE_COUNTS[unit]):
        if phase not in by_phase:
            factors.append(neutral)
            continue
        phase_mean = float(np.mean(by_phase[phase]))
        factors.append(phase_mean / overall if multiplicative else phase_mean - overall)

    if multiplicative and any(f == 0 for f in factors):
        return empty(XMRStatus.NOT_APPLICABLE)

    return SeasonalFactors(period=period, grouping=grouping, adjustment=adjustment,
                           factors=tuple(factors))


def apply_seasonal_factors(series: NormalizedSeries, factors: SeasonalFactors) -> NormalizedSeries:
    """Deseasonalize: divide (or subtract) each point's phase factor."""
    if not factors.is_applicable:
        return series

    multiplicative = factors.adjustment == SeasonalAdjustment.MULTIPLICATIVE
    adjusted = []
    for point, moment in zip(series.points, series.moments):
        f = factors.factor_for(moment)
        adjusted.append(point.value / f if multiplicative else point.value - f)
    return series.with_values(adjusted)


def remove_seasonal_factors(series: NormalizedSeries, factors: SeasonalFactors) -> NormalizedSeries:
    """Inverse of ``apply_seasonal_factors``: multiply (or add) factors back."""
    if not factors.is_applicable:
        return series

    multiplicative = factors.adjustment == SeasonalAdjustment.MULTIPLICATIVE
    restored = []
    for point, moment in zip(series.points, series.moments):
        f = factors.factor_for(moment)
        restored.append(point.value * f if multiplicative else point.value + f)
    return series.with_values(restored)
