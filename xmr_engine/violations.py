"""
Special-Cause Rules Module
==========================
Five independent rules evaluated against the active limits.

Rules (in display priority order):
1. Outside limits - value above UNPL or below LNPL
2. 2 of 3 beyond 2 sigma - 2 of 3 consecutive beyond a quartile, same side
3. 4 near limit - 3 of 4 consecutive in the outer band, same side
4. Running points - 8+ consecutive on one side of the centre line
5. Low variation - 15+ consecutive inside the quartile band

Limits may be flat (base or locked) or trend-relative, in which case every
threshold is a per-index array. Evaluation is positional only.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Iterable, Sequence, Union

import numpy as np

from .config import XMRConfig, resolve_config
from .limits import XMRLimits, XMRDataPoint
from .trend import TrendLimits

logger = logging.getLogger(__name__)


class ViolationRule(Enum):
    """Special-cause rules, declared in display priority order."""
    OUTSIDE_LIMITS = "rule1"
    TWO_OF_THREE_BEYOND_TWO_SIGMA = "rule2"
    FOUR_NEAR_LIMIT = "rule3"
    RUNNING_POINTS = "rule4"
    FIFTEEN_WITHIN_ONE_SIGMA = "rule5"

    @property
    def description(self) -> str:
        return _RULE_DESCRIPTIONS[self]


_RULE_DESCRIPTIONS = {
    ViolationRule.OUTSIDE_LIMITS: "Outside natural process limits",
    ViolationRule.TWO_OF_THREE_BEYOND_TWO_SIGMA: "2 of 3 beyond 2 sigma",
    ViolationRule.FOUR_NEAR_LIMIT: "4 near limit pattern",
    ViolationRule.RUNNING_POINTS: "Running point pattern",
    ViolationRule.FIFTEEN_WITHIN_ONE_SIGMA: "Low variation",
}

RULE_PRIORITY = list(ViolationRule)


@dataclass
class Violations:
    """Index sets, one per rule. An index may appear in several sets."""
    outside_limits: List[int] = field(default_factory=list)
    running_points: List[int] = field(default_factory=list)
    four_near_limit: List[int] = field(default_factory=list)
    two_of_three_beyond_two_sigma: List[int] = field(default_factory=list)
    fifteen_within_one_sigma: List[int] = field(default_factory=list)

    def indices_for(self, rule: ViolationRule) -> List[int]:
        return {
            ViolationRule.OUTSIDE_LIMITS: self.outside_limits,
            ViolationRule.RUNNING_POINTS: self.running_points,
            ViolationRule.FOUR_NEAR_LIMIT: self.four_near_limit,
            ViolationRule.TWO_OF_THREE_BEYOND_TWO_SIGMA: self.two_of_three_beyond_two_sigma,
            ViolationRule.FIFTEEN_WITHIN_ONE_SIGMA: self.fifteen_within_one_sigma,
        }[rule]

    def rules_at(self, index: int) -> List[ViolationRule]:
        """Rules firing at an index, highest priority first."""
        return [rule for rule in RULE_PRIORITY if index in self.indices_for(rule)]

    def highest_priority(self, index: int) -> Optional[ViolationRule]:
        rules = self.rules_at(index)
        return rules[0] if rules else None

    @property
    def total(self) -> int:
        flagged = set()
        for rule in RULE_PRIORITY:
            flagged.update(self.indices_for(rule))
        return len(flagged)

    def to_dict(self) -> Dict[str, List[int]]:
        return {
            'outsideLimits': list(self.outside_limits),
            'runningPoints': list(self.running_points),
            'fourNearLimit': list(self.four_near_limit),
            'twoOfThreeBeyondTwoSigma': list(self.two_of_three_beyond_two_sigma),
            'fifteenWithinOneSigma': list(self.fifteen_within_one_sigma),
        }


def _as_values(points: Sequence[Union[float, XMRDataPoint]]) -> np.ndarray:
    return np.array(
        [p.value if isinstance(p, XMRDataPoint) else p for p in points],
        dtype=float,
    )


def _band(limit_value: Union[float, Sequence[float]], n: int) -> np.ndarray:
    if np.ndim(limit_value) == 0:
        return np.full(n, float(limit_value))
    return np.asarray(limit_value, dtype=float)


def _window_hits(mask: np.ndarray, window: int, required: int) -> List[int]:
    """Positions counted in any window holding at least ``required`` hits."""
    hits = set()
    for start in range(0, len(mask) - window + 1):
        positions = [start + j for j in range(window) if mask[start + j]]
        if len(positions) >= required:
            hits.update(positions)
    return sorted(hits)


def _runs(mask: np.ndarray, min_length: int, require: Optional[np.ndarray] = None) -> List[int]:
    """Positions inside runs of True at least ``min_length`` long."""
    hits = []
    start = None
    for i in range(len(mask) + 1):
        inside = i < len(mask) and bool(mask[i])
        if inside and start is None:
            start = i
        elif not inside and start is not None:
            run = range(start, i)
            if len(run) >= min_length and (require is None or require[start:i].any()):
                hits.extend(run)
            start = None
    return hits


def detect_violations(
    data_points: Sequence[Union[float, XMRDataPoint]],
    limits: XMRLimits,
    trend_limits: Optional[TrendLimits] = None,
    excluded_indices: Iterable[int] = (),
    config: Optional[XMRConfig] = None,
) -> Violations:
    """
    Evaluate all five rules over a series.

    Args:
        data_points: Values or XMRDataPoints, in series order
        limits: Active flat limits (base or locked)
        trend_limits: Per-index bands; when given they replace ``limits``
        excluded_indices: Points left out of evaluation entirely
        config: Engine constants

    Returns:
        Violations with indices into ``data_points``
    """
    config = resolve_config(config)
    all_values = _as_values(data_points)
    n_all = len(all_values)

    excluded = set(i for i in excluded_indices if 0 <= i < n_all)
    positions = [i for i in range(n_all) if i not in excluded]
    values = all_values[positions]
    n = len(values)

    if n == 0:
        return Violations()

    if trend_limits is not None:
        centre = np.asarray(trend_limits.centre_line, dtype=float)[positions]
        upper = np.asarray(trend_limits.unpl, dtype=float)[positions]
        lower = np.asarray(trend_limits.lnpl, dtype=float)[positions]
        upper_q = np.asarray(trend_limits.upper_quartile, dtype=float)[positions]
        lower_q = np.asarray(trend_limits.lower_quartile, dtype=float)[positions]
    else:
        centre = _band(limits.avg_x, n)
        upper = _band(limits.unpl, n)
        lower = _band(limits.lnpl, n)
        upper_q = _band(limits.upper_quartile, n)
        lower_q = _band(limits.lower_quartile, n)

    # Absolute tolerance follows the series' own movement so the rules stay scale-free
    tol = config.centre_line_tolerance
    abs_tol = tol * abs(limits.avg_movement)
    on_centre = np.array([
        math.isclose(v, c, rel_tol=tol, abs_tol=abs_tol) for v, c in zip(values, centre)
    ], dtype=bool)
    above_centre = (values > centre) & ~on_centre
    below_centre = (values < centre) & ~on_centre
    above_q = values > upper_q
    below_q = values < lower_q

    outside = np.where((values > upper) | (values < lower))[0].tolist()

    two_of_three = sorted(set(
        _window_hits(above_q, config.two_of_three_window, config.two_of_three_required)
        + _window_hits(below_q, config.two_of_three_window, config.two_of_three_required)
    ))

    near_limit = sorted(set(
        _window_hits(above_q, config.near_limit_window, config.near_limit_required)
        + _window_hits(below_q, config.near_limit_window, config.near_limit_required)
    ))

    running = sorted(
        _runs(above_centre, config.running_point_length)
        + _runs(below_centre, config.running_point_length)
    )

    # A run sitting exactly on the centre line carries no variation to judge
    inside_band = (values < upper_q) & (values > lower_q)
    low_variation = _runs(inside_band, config.low_variation_length, require=~on_centre)

    def to_series_indices(found: List[int]) -> List[int]:
        return [positions[i] for i in found]

    violations = Violations(
        outside_limits=to_series_indices(outside),
        running_points=to_series_indices(running),
        four_near_limit=to_series_indices(near_limit),
        two_of_three_beyond_two_sigma=to_series_indices(two_of_three),
        fifteen_within_one_sigma=to_series_indices(low_variation),
    )
    logger.debug(f"Detected violations at {violations.total} of {n} points")
    return violations
