"""
Test Suite for the Seasonality Engine
=====================================
Tests for periodicity, seasonal factors and deseasonalizing.

Run with: python -m pytest tests/test_seasonality.py
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from xmr_engine.chart import build_xmr_chart
from xmr_engine.limits import XMRStatus
from xmr_engine.normalization import TimeBucket, normalize_points
from xmr_engine.transform import Transform, TransformKind
from xmr_engine.seasonality import (
    SeasonalityGrouping,
    SeasonalAdjustment,
    SeasonalFactors,
    determine_periodicity,
    is_seasonality_applicable,
    calculate_seasonal_factors,
    apply_seasonal_factors,
    remove_seasonal_factors,
)

MONTHLY_PATTERN = [90, 95, 100, 105, 110, 115, 110, 105, 100, 95, 90, 85]


def create_seasonal_series(years=2):
    """Monthly series repeating the same within-year pattern (mean 100)."""
    rows = []
    for y in range(years):
        for m, v in enumerate(MONTHLY_PATTERN):
            rows.append({'timestamp': f'{2022 + y}{m + 1:02d}', 'value': float(v)})
    return normalize_points(rows)


def create_weekly_series(n=52):
    """Weekly series starting on a Monday."""
    start = pd.Timestamp('2023-01-02')
    return normalize_points([
        {'timestamp': (start + pd.Timedelta(weeks=i)).strftime('%Y-%m-%d'),
         'value': 50.0 + 10.0 * np.sin(2 * np.pi * i / 52)}
        for i in range(n)
    ])


class TestPeriodicity:
    """Test period detection and applicability."""

    def test_determine_periodicity(self):
        """Monthly stamps give a monthly period."""
        assert determine_periodicity(create_seasonal_series()) == TimeBucket.MONTH
        assert determine_periodicity(create_weekly_series()) == TimeBucket.WEEK

    def test_applicability(self):
        """Daily and yearly cadences have no within-year phase."""
        assert not is_seasonality_applicable(TimeBucket.DAY)
        assert not is_seasonality_applicable(TimeBucket.YEAR)
        assert is_seasonality_applicable(TimeBucket.WEEK)
        assert is_seasonality_applicable(TimeBucket.MONTH)
        assert is_seasonality_applicable(TimeBucket.QUARTER)


class TestSeasonalFactors:
    """Test factor calculation."""

    def test_multiplicative_factors(self):
        """Factors are phase mean over overall mean."""
        factors = calculate_seasonal_factors(create_seasonal_series(), TimeBucket.MONTH)

        assert factors.is_applicable
        assert len(factors.factors) == 12
        assert list(factors.factors) == pytest.approx([v / 100.0 for v in MONTHLY_PATTERN])
        print(f"✓ Seasonal factors: {[round(f, 3) for f in factors.factors]}")

    def test_additive_factors(self):
        """Additive factors are phase mean minus overall mean."""
        factors = calculate_seasonal_factors(
            create_seasonal_series(), TimeBucket.MONTH,
            adjustment=SeasonalAdjustment.ADDITIVE)

        assert list(factors.factors) == pytest.approx([v - 100.0 for v in MONTHLY_PATTERN])

    def test_weekly_phases(self):
        """Weekly data has one phase per ISO week."""
        factors = calculate_seasonal_factors(create_weekly_series(), TimeBucket.WEEK)
        assert len(factors.factors) == 52

    def test_coarser_grouping(self):
        """Weekly points grouped by quarter give four factors."""
        factors = calculate_seasonal_factors(
            create_weekly_series(), TimeBucket.WEEK, SeasonalityGrouping.QUARTER)

        assert factors.is_applicable
        assert len(factors.factors) == 4

    def test_daily_not_applicable(self):
        """Daily data is left alone."""
        series = normalize_points([
            {'timestamp': f'202301{d:02d}', 'value': float(d)} for d in range(1, 21)
        ])
        factors = calculate_seasonal_factors(series, TimeBucket.DAY)

        assert factors.status == XMRStatus.NOT_APPLICABLE
        assert apply_seasonal_factors(series, factors) is series

    def test_yearly_period_not_applicable(self):
        """A yearly period is accepted but never produces factors."""
        series = create_seasonal_series()
        factors = calculate_seasonal_factors(series, TimeBucket.YEAR)

        assert not is_seasonality_applicable(TimeBucket.YEAR)
        assert factors.status == XMRStatus.NOT_APPLICABLE
        assert factors.factors == ()
        assert apply_seasonal_factors(series, factors) is series
        assert remove_seasonal_factors(series, factors) is series

    def test_single_phase_not_applicable(self):
        """Data inside one month has nothing to compare against."""
        series = normalize_points([
            {'timestamp': f'202301{d:02d}', 'value': float(d)} for d in range(1, 11)
        ])
        factors = calculate_seasonal_factors(series, TimeBucket.MONTH)
        assert factors.status == XMRStatus.NOT_APPLICABLE

    def test_zero_mean_multiplicative_not_applicable(self):
        """A zero overall mean cannot produce ratios."""
        series = normalize_points([
            {'timestamp': f'2023{m:02d}', 'value': (-1.0) ** m} for m in range(1, 7)
        ])
        factors = calculate_seasonal_factors(series, TimeBucket.MONTH)
        assert factors.status == XMRStatus.NOT_APPLICABLE

    def test_insufficient_data(self):
        """Too few points report INSUFFICIENT_DATA."""
        series = normalize_points([{'timestamp': '202301', 'value': 1.0}])
        factors = calculate_seasonal_factors(series, TimeBucket.MONTH)
        assert factors.status == XMRStatus.INSUFFICIENT_DATA


class TestDeseasonalize:
    """Test applying and removing factors."""

    def test_apply_flattens_pattern(self):
        """Dividing out the factors leaves the overall mean."""
        series = create_seasonal_series()
        factors = calculate_seasonal_factors(series, TimeBucket.MONTH)
        adjusted = apply_seasonal_factors(series, factors)

        assert list(adjusted.values) == pytest.approx([100.0] * len(series))

    def test_round_trip(self):
        """Removing applied factors restores the original values."""
        series = create_seasonal_series()
        for adjustment in SeasonalAdjustment:
            factors = calculate_seasonal_factors(series, TimeBucket.MONTH, adjustment=adjustment)
            restored = remove_seasonal_factors(apply_seasonal_factors(series, factors), factors)
            reseasoned = apply_seasonal_factors(remove_seasonal_factors(series, factors), factors)

            assert restored.values == pytest.approx(series.values, rel=1e-9)
            assert reseasoned.values == pytest.approx(series.values, rel=1e-9)
            assert restored.timestamps == series.timestamps

    def test_neutral_when_not_applicable(self):
        """Non-applicable factors return the neutral factor."""
        factors = SeasonalFactors(period=TimeBucket.DAY, status=XMRStatus.NOT_APPLICABLE)
        assert factors.factor_for(pd.Timestamp('2023-03-01', tz='UTC')) == 1.0


class TestDeseasonalizedChart:
    """Deseasonalized chart rows."""

    def test_rows_carry_factor_and_raw_value(self):
        """Rows show the adjusted value, the raw value and the factor."""
        series = create_seasonal_series()
        factors = calculate_seasonal_factors(series, TimeBucket.MONTH)
        chart = build_xmr_chart(series, Transform.deseasonalized(factors))

        assert chart.transform.kind == TransformKind.DESEASONALIZED
        row = chart.points[5]
        assert row.raw_value == 115.0
        assert row.seasonal_factor == pytest.approx(1.15)
        assert row.value == pytest.approx(100.0)
