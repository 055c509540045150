"""
Test Suite for the Limit Lock State Machine
===========================================
Tests for auto-lock, manual locks, unlocking and transform interaction.

Run with: python -m pytest tests/test_lock_state.py
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from xmr_engine.limits import XMRLimits, calculate_xmr_limits
from xmr_engine.lock_state import LimitLockState, LockStatus
from xmr_engine.normalization import normalize_points
from xmr_engine.transform import Transform


def monthly_series(values):
    """Monthly series starting January 2023."""
    return normalize_points([
        {'timestamp': f'2023{i + 1:02d}', 'value': float(v)} for i, v in enumerate(values)
    ])


def create_spike_series():
    """Stable values with one spike at index 3."""
    return monthly_series([10, 12, 11, 50, 13, 12])


def create_stable_series():
    """Alternating values with no outliers."""
    return monthly_series([10, 11, 10, 11, 10, 11, 10, 11])


class TestAutoLock:
    """Test automatic locking on first load."""

    def test_fresh_state_is_floating(self):
        """New sessions start floating."""
        state = LimitLockState()

        assert state.status == LockStatus.FLOATING
        assert not state.is_locked
        assert state.excluded_indices == []

    def test_auto_lock_on_spike(self):
        """Outliers that widen the limits trigger an auto-lock."""
        state = LimitLockState()

        assert state.attempt_auto_lock(create_spike_series())
        assert state.status == LockStatus.AUTO_LOCKED
        assert state.is_auto_locked
        assert state.excluded_indices == [3]
        assert state.original_auto_outliers == [3]
        assert state.locked_limits.unpl == pytest.approx(15.59)
        print(f"✓ Auto-locked excluding {state.excluded_indices}")

    def test_auto_lock_runs_once(self):
        """A second attempt is a no-op."""
        state = LimitLockState()
        state.attempt_auto_lock(create_stable_series())

        assert state.auto_lock_attempted
        assert not state.attempt_auto_lock(create_spike_series())
        assert state.status == LockStatus.FLOATING

    def test_stable_series_stays_floating(self):
        """No outliers, no lock."""
        state = LimitLockState()

        assert not state.attempt_auto_lock(create_stable_series())
        assert state.status == LockStatus.FLOATING

    def test_short_series_does_not_spend_attempt(self):
        """Too few points leave auto-lock available."""
        state = LimitLockState()

        assert not state.attempt_auto_lock(monthly_series([1, 2, 3]))
        assert not state.auto_lock_attempted

    def test_new_series_allows_auto_lock_again(self):
        """Resetting for a new series re-arms auto-lock."""
        state = LimitLockState()
        state.attempt_auto_lock(create_stable_series())
        state.reset_for_new_series()

        assert not state.auto_lock_attempted
        assert state.attempt_auto_lock(create_spike_series())


class TestManualLock:
    """Test manual locking and the modification flag."""

    def test_lock_manual(self):
        """Manual exclusions produce a manual lock."""
        state = LimitLockState()
        errors = state.lock_manual(create_spike_series(), excluded_indices=[3])

        assert errors == []
        assert state.status == LockStatus.MANUALLY_LOCKED
        assert state.has_ever_been_manually_modified
        assert state.excluded_indices == [3]
        assert state.locked_limits.avg_x == pytest.approx(11.6)

    def test_lock_manual_rejects_invalid(self):
        """Invalid values leave the state untouched."""
        state = LimitLockState()
        errors = state.lock_manual(create_spike_series(), unpl=1.0)

        assert errors
        assert state.status == LockStatus.FLOATING

    def test_confirming_auto_lock_keeps_it_auto(self):
        """Locking the auto limits without changes stays AUTO_LOCKED."""
        state = LimitLockState()
        state.attempt_auto_lock(create_spike_series())
        state.lock(state.locked_limits, is_manually_modified=False)

        assert state.status == LockStatus.AUTO_LOCKED
        assert state.excluded_indices == [3]

    def test_modification_flag_sticks(self):
        """Once modified, later unmodified locks are still manual."""
        series = create_spike_series()
        limits = calculate_xmr_limits(series.values)
        state = LimitLockState()
        state.lock(limits, is_manually_modified=True, excluded_indices=[3])
        state.unlock()
        state.lock(limits, is_manually_modified=False)

        assert state.status == LockStatus.MANUALLY_LOCKED
        assert state.has_ever_been_manually_modified

    def test_lock_rejects_inconsistent_limits(self):
        """Limits with avgMovement above URL are refused by lock itself."""
        limits = XMRLimits(avg_x=10.0, avg_movement=5.0, unpl=12.0, lnpl=8.0,
                           upper_quartile=11.0, lower_quartile=9.0, url=4.0)
        state = LimitLockState()
        errors = state.lock(limits, is_manually_modified=True)

        assert errors
        assert state.status == LockStatus.FLOATING
        assert state.locked_limits is None
        assert not state.has_ever_been_manually_modified

    def test_lock_from_floating(self):
        """Locking floating limits is a manual lock."""
        state = LimitLockState()
        state.lock(calculate_xmr_limits(create_stable_series().values), False)

        assert state.status == LockStatus.MANUALLY_LOCKED


class TestUnlockAndReset:
    """Test unlock and reset-to-auto."""

    def test_unlock_does_not_rearm_auto_lock(self):
        """After unlocking, auto-lock does not fire again."""
        state = LimitLockState()
        series = create_spike_series()
        state.attempt_auto_lock(series)
        state.unlock()

        assert state.status == LockStatus.FLOATING
        assert state.locked_limits is None
        assert not state.attempt_auto_lock(series)

    def test_reset_to_auto_lock(self):
        """Reset recomputes the auto limits and clears manual history."""
        state = LimitLockState()
        series = create_spike_series()
        state.lock_manual(series, excluded_indices=[0])
        assert state.reset_to_auto_lock(series)

        assert state.status == LockStatus.AUTO_LOCKED
        assert not state.has_ever_been_manually_modified
        assert state.excluded_indices == [3]

    def test_active_limits(self):
        """Locked limits replace the base limits only while locked."""
        state = LimitLockState()
        series = create_spike_series()
        base = calculate_xmr_limits(series.values)

        assert state.active_limits(base) is base
        state.attempt_auto_lock(series)
        assert state.active_limits(base) is state.locked_limits


class TestTransformInteraction:
    """Trends and seasonality force floating limits."""

    def test_trend_clears_lock(self):
        """Activating a trend unlocks."""
        state = LimitLockState()
        state.attempt_auto_lock(create_spike_series())
        state.on_transform_changed(Transform.trended())

        assert state.status == LockStatus.FLOATING

    def test_cannot_lock_while_trended(self):
        """Locking is refused under a trend."""
        state = LimitLockState()
        state.on_transform_changed(Transform.trended())
        errors = state.lock(calculate_xmr_limits(create_stable_series().values), True)

        assert errors
        assert state.status == LockStatus.FLOATING
        assert not state.attempt_auto_lock(create_spike_series())
        assert not state.reset_to_auto_lock(create_spike_series())

    def test_flat_transform_keeps_lock(self):
        """Returning to flat does not disturb an existing lock."""
        state = LimitLockState()
        state.attempt_auto_lock(create_spike_series())
        state.on_transform_changed(Transform.flat())

        assert state.status == LockStatus.AUTO_LOCKED

    def test_to_dict(self):
        """Plain-data view of the state."""
        state = LimitLockState()
        state.attempt_auto_lock(create_spike_series())
        data = state.to_dict()

        assert data['status'] == 'auto_locked'
        assert data['excludedIndices'] == [3]
        assert data['lockedLimits']['avgX'] == pytest.approx(11.6)
