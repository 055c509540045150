"""
XmR Engine
==========
Individual-X and Moving Range process behaviour charts for metric series.

Components:
- normalization: Timestamp parsing, ordering, de-duplication, time buckets
- limits: Natural process limits, outlier removal, auto-lock, manual locks
- violations: The five special-cause rules and their priority
- trend: Regression baselines and trend-relative bands
- seasonality: Periodicity, seasonal factors, deseasonalizing
- transform: Flat / trended / deseasonalized chart transform
- lock_state: Floating, auto-locked and manually locked limits
- chart: End-to-end chart assembly, summaries, batch analysis
- traceability: Deterministic fingerprints for caching
- config: Pydantic-validated engine constants

Usage:
    from xmr_engine import normalize_points, build_xmr_chart, Transform
    from xmr_engine import LimitLockState, format_xmr_summary

    series = normalize_points(rows)
    state = LimitLockState()
    state.attempt_auto_lock(series)
    chart = build_xmr_chart(series, Transform.flat(), lock_state=state)
"""

from .config import (
    XMRConfig,
    DEFAULT_CONFIG,
    load_config,
    MINIMUM_XMR_DATA_POINTS,
    NATURAL_PROCESS_LIMIT_CONSTANT,
    UPPER_RANGE_LIMIT_CONSTANT,
    MEDIAN_LIMIT_CONSTANT,
    MEDIAN_RANGE_CONSTANT,
)

from .normalization import (
    DataPoint,
    NormalizedSeries,
    TimeBucket,
    parse_timestamp,
    normalize_points,
    detect_bucket_type,
    normalize_to_bucket,
)

from .limits import (
    XMRStatus,
    XMRLimits,
    XMRDataPoint,
    XMRData,
    OutlierResult,
    calculate_moving_ranges,
    calculate_xmr_limits,
    generate_xmr_data,
    calculate_limits_with_outlier_removal,
    should_auto_lock_limits,
    validate_limits,
    build_manual_limits,
)

from .violations import (
    ViolationRule,
    Violations,
    RULE_PRIORITY,
    detect_violations,
)

from .trend import (
    RegressionStats,
    TrendLimits,
    TrendResult,
    calculate_regression_stats,
    create_trend_lines,
    calculate_trend,
)

from .seasonality import (
    SeasonalityPeriod,
    SeasonalityGrouping,
    SeasonalAdjustment,
    SeasonalFactors,
    determine_periodicity,
    is_seasonality_applicable,
    calculate_seasonal_factors,
    apply_seasonal_factors,
    remove_seasonal_factors,
)

from .transform import (
    Transform,
    TransformKind,
)

from .lock_state import (
    LockStatus,
    LimitLockState,
)

from .chart import (
    ChartPoint,
    XMRChart,
    build_xmr_chart,
    analyze_series_batch,
    format_xmr_summary,
)

from .traceability import (
    compute_series_hash,
    compute_config_hash,
    chart_cache_key,
    ENGINE_VERSION,
)

__version__ = "1.0.0"
