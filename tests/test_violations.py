"""
Test Suite for Special-Cause Rules
==================================
Tests for the five rules, their priority and exclusion handling.

Run with: python -m pytest tests/test_violations.py
"""

import sys
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from xmr_engine.config import XMRConfig
from xmr_engine.limits import XMRLimits, calculate_xmr_limits
from xmr_engine.trend import TrendLimits
from xmr_engine.violations import (
    ViolationRule,
    Violations,
    RULE_PRIORITY,
    detect_violations,
)


def create_limits():
    """Flat limits centred on 10 with quartiles at 8 and 12."""
    return XMRLimits(
        avg_x=10.0,
        avg_movement=1.5,
        unpl=13.0,
        lnpl=7.0,
        upper_quartile=12.0,
        lower_quartile=8.0,
        url=4.9,
    )


class TestOutsideLimits:
    """Rule 1."""

    def test_strictly_outside_only(self):
        """Points exactly on a limit are not violations."""
        values = [10.0, 13.0, 13.0001, 7.0, 6.9]
        violations = detect_violations(values, create_limits())

        assert violations.outside_limits == [2, 4]
        print(f"✓ Outside limits: {violations.outside_limits}")


class TestTwoOfThree:
    """Rule 2."""

    def test_two_of_three_same_side(self):
        """Two of three beyond the upper quartile fire."""
        violations = detect_violations([10.0, 12.5, 10.0, 12.5, 10.0], create_limits())

        assert violations.two_of_three_beyond_two_sigma == [1, 3]
        assert violations.four_near_limit == []

    def test_opposite_sides_do_not_count(self):
        """One high and one low point in a window are not a signal."""
        violations = detect_violations([12.5, 7.5, 10.0, 10.0], create_limits())
        assert violations.two_of_three_beyond_two_sigma == []


class TestFourNearLimit:
    """Rule 3."""

    def test_three_of_four_same_side(self):
        """Three of four beyond the lower quartile fire."""
        violations = detect_violations([10.0, 7.5, 7.5, 10.0, 7.5, 10.0], create_limits())

        assert violations.four_near_limit == [1, 2, 4]
        assert violations.outside_limits == []


class TestRunningPoints:
    """Rule 4."""

    def test_eight_on_one_side(self):
        """Eight consecutive points above the centre fire."""
        violations = detect_violations([11.0] * 8, create_limits())
        assert violations.running_points == list(range(8))

    def test_seven_is_not_enough(self):
        """Seven points are not a run."""
        violations = detect_violations([9.0] * 7 + [11.0], create_limits())
        assert violations.running_points == []

    def test_centre_line_breaks_run(self):
        """A point on the centre line ends a run."""
        values = [11.0] * 4 + [10.0] + [11.0] * 4
        violations = detect_violations(values, create_limits())
        assert violations.running_points == []

    def test_rules_independent_of_scale(self):
        """A level shift is flagged the same at any measurement scale."""
        shift = np.array([1.0, 1.1] * 4 + [2.0, 2.1] * 4)
        results = []
        for scale in (1.0, 1e-10):
            values = shift * scale
            violations = detect_violations(values, calculate_xmr_limits(values))
            results.append(violations.to_dict())

        assert results[0]['runningPoints'] == list(range(16))
        assert results[1] == results[0]


class TestLowVariation:
    """Rule 5."""

    def test_fifteen_inside_quartiles(self):
        """Fifteen points hugging the centre fire."""
        values = [10.5, 9.5] * 7 + [10.5]
        violations = detect_violations(values, create_limits())

        assert violations.fifteen_within_one_sigma == list(range(15))
        assert violations.running_points == []

    def test_fourteen_is_not_enough(self):
        """Fourteen points are not a low-variation run."""
        violations = detect_violations([10.5, 9.5] * 7, create_limits())
        assert violations.fifteen_within_one_sigma == []

    def test_points_exactly_on_centre_carry_no_signal(self):
        """A flat line on the centre is not flagged."""
        violations = detect_violations([10.0] * 20, create_limits())
        assert violations.total == 0


class TestPriorityAndExclusions:
    """Priority ordering, exclusions and trend bands."""

    def test_priority_order(self):
        """Rules are declared from highest to lowest priority."""
        assert RULE_PRIORITY == [
            ViolationRule.OUTSIDE_LIMITS,
            ViolationRule.TWO_OF_THREE_BEYOND_TWO_SIGMA,
            ViolationRule.FOUR_NEAR_LIMIT,
            ViolationRule.RUNNING_POINTS,
            ViolationRule.FIFTEEN_WITHIN_ONE_SIGMA,
        ]
        assert [r.value for r in RULE_PRIORITY] == ['rule1', 'rule2', 'rule3', 'rule4', 'rule5']

    def test_highest_priority_wins(self):
        """A point in several sets reports the highest-priority rule."""
        values = [11.0] * 7 + [14.0]
        violations = detect_violations(values, create_limits())

        assert violations.rules_at(7) == [ViolationRule.OUTSIDE_LIMITS,
                                          ViolationRule.RUNNING_POINTS]
        assert violations.highest_priority(7) == ViolationRule.OUTSIDE_LIMITS
        assert violations.highest_priority(0) == ViolationRule.RUNNING_POINTS
        assert violations.total == 8

    def test_excluded_points_removed_before_evaluation(self):
        """Exclusions are skipped and indices map back to the full series."""
        values = [11.0] * 4 + [20.0] + [11.0] * 4
        violations = detect_violations(values, create_limits(), excluded_indices=[4])

        assert violations.outside_limits == []
        assert violations.running_points == [0, 1, 2, 3, 5, 6, 7, 8]

    def test_trend_bands_replace_flat_limits(self):
        """With per-index bands, a rising line of values is in control."""
        n = 10
        centre = [float(i) for i in range(n)]
        trend = TrendLimits(
            centre_line=centre,
            unpl=[c + 3 for c in centre],
            lnpl=[c - 3 for c in centre],
            upper_quartile=[c + 2 for c in centre],
            lower_quartile=[c - 2 for c in centre],
        )
        values = [c + (0.5 if i % 2 else -0.5) for i, c in enumerate(centre)]
        violations = detect_violations(values, create_limits(), trend_limits=trend)

        assert violations.total == 0

    def test_custom_run_length(self):
        """Rule parameters come from config."""
        config = XMRConfig(running_point_length=5)
        violations = detect_violations([11.0] * 5, create_limits(), config=config)
        assert violations.running_points == list(range(5))

    def test_empty_input(self):
        """No points, no violations."""
        assert detect_violations([], create_limits()) == Violations()

    def test_to_dict_keys(self):
        """Plain-data keys for the UI."""
        keys = set(detect_violations([10.0], create_limits()).to_dict())
        assert keys == {'outsideLimits', 'runningPoints', 'fourNearLimit',
                        'twoOfThreeBeyondTwoSigma', 'fifteenWithinOneSigma'}
