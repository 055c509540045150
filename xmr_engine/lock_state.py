"""
Limit Lock State Machine
========================
Tracks whether a chart shows floating, auto-locked, or manually locked limits.

States:
- FLOATING: limits follow the base calculator
- AUTO_LOCKED: outlier-excluded limits adopted automatically
- MANUALLY_LOCKED: limits and/or exclusions supplied by a person

Rules:
- Auto-lock fires at most once per fresh series, or on explicit reset
- Once a lock has been manually modified the flag sticks until reset
- Unlocking returns to FLOATING and never re-triggers auto-lock
- A trended or deseasonalized transform forces FLOATING and blocks locking

The state object is owned by the caller, one per chart session. The
engine never persists it.
"""

import logging
from enum import Enum
from typing import Dict, Any, Optional, List, Iterable

from .config import XMRConfig, resolve_config
from .limits import (
    XMRLimits,
    XMRStatus,
    build_manual_limits,
    calculate_limits_with_outlier_removal,
    should_auto_lock_limits,
    validate_limits,
)
from .normalization import NormalizedSeries
from .transform import Transform

logger = logging.getLogger(__name__)


class LockStatus(Enum):
    FLOATING = "floating"
    AUTO_LOCKED = "auto_locked"
    MANUALLY_LOCKED = "manually_locked"


class LimitLockState:
    """
    Lock state for one chart session.

    Usage:
        state = LimitLockState()
        state.attempt_auto_lock(series)
        limits = state.active_limits(base.limits)
    """

    def __init__(self):
        self.status = LockStatus.FLOATING
        self.locked_limits: Optional[XMRLimits] = None
        self.outlier_indices: List[int] = []
        self.original_auto_outliers: List[int] = []
        self.manually_excluded_indices: List[int] = []
        self.has_ever_been_manually_modified = False
        self.auto_lock_attempted = False
        self.transform = Transform.flat()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def is_locked(self) -> bool:
        return self.status != LockStatus.FLOATING

    @property
    def is_auto_locked(self) -> bool:
        return self.status == LockStatus.AUTO_LOCKED

    @property
    def excluded_indices(self) -> List[int]:
        """Points left out of the locked limits."""
        if self.status == LockStatus.AUTO_LOCKED:
            return list(self.outlier_indices)
        if self.status == LockStatus.MANUALLY_LOCKED:
            return list(self.manually_excluded_indices)
        return []

    def active_limits(self, base_limits: Optional[XMRLimits]) -> Optional[XMRLimits]:
        if self.is_locked and self.locked_limits is not None:
            return self.locked_limits
        return base_limits

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def attempt_auto_lock(
        self,
        series: NormalizedSeries,
        config: Optional[XMRConfig] = None,
    ) -> bool:
        """
        Auto-lock on first load if outliers inflate the limits.

        Runs once per fresh series; later calls are no-ops until
        ``reset_for_new_series``.

        Returns:
            True if the state moved to AUTO_LOCKED
        """
        config = resolve_config(config)

        if (self.auto_lock_attempted
                or not self.transform.is_flat
                or self.is_locked
                or len(series) < config.minimum_points):
            return False

        self.auto_lock_attempted = True
        result = calculate_limits_with_outlier_removal(series, config)
        if not should_auto_lock_limits(series, config, outlier_result=result):
            logger.debug("Auto-lock skipped: outliers do not widen limits enough")
            return False

        self.status = LockStatus.AUTO_LOCKED
        self.locked_limits = result.limits
        self.outlier_indices = list(result.outlier_indices)
        self.original_auto_outliers = list(result.outlier_indices)
        self.manually_excluded_indices = []
        logger.info(f"Auto-locked limits excluding outliers {self.outlier_indices}")
        return True

    def lock(
        self,
        limits: XMRLimits,
        is_manually_modified: bool,
        excluded_indices: Iterable[int] = (),
    ) -> List[str]:
        """
        Lock the given limits.

        Confirming an auto-lock without changes keeps it AUTO_LOCKED; any
        modification, or a lock on a session that was ever modified,
        becomes MANUALLY_LOCKED.

        Returns:
            Error messages; empty if the lock was applied. Limits that fail
            validation leave the state unchanged.
        """
        if not self.transform.is_flat:
            return [f"Cannot lock limits while the chart is {self.transform.kind.value}"]

        errors = validate_limits(limits)
        if errors:
            logger.debug(f"Lock rejected: {errors}")
            return errors

        excluded = sorted(set(excluded_indices))
        self.locked_limits = limits

        if is_manually_modified:
            self.status = LockStatus.MANUALLY_LOCKED
            self.has_ever_been_manually_modified = True
            self.manually_excluded_indices = excluded
            self.outlier_indices = []
        elif self.has_ever_been_manually_modified:
            self.status = LockStatus.MANUALLY_LOCKED
            self.manually_excluded_indices = excluded
        elif self.status == LockStatus.AUTO_LOCKED:
            self.manually_excluded_indices = []
        else:
            self.status = LockStatus.MANUALLY_LOCKED
            self.has_ever_been_manually_modified = True
            self.manually_excluded_indices = excluded

        logger.info(f"Limits locked ({self.status.value})")
        return []

    def lock_manual(
        self,
        series: NormalizedSeries,
        excluded_indices: Iterable[int] = (),
        avg_x: Optional[float] = None,
        unpl: Optional[float] = None,
        lnpl: Optional[float] = None,
        avg_movement: Optional[float] = None,
        url: Optional[float] = None,
        use_median: bool = False,
        config: Optional[XMRConfig] = None,
    ) -> List[str]:
        """Build, validate and lock limits from explicit values and exclusions."""
        excluded = list(excluded_indices)
        limits, errors = build_manual_limits(
            series, excluded, avg_x=avg_x, unpl=unpl, lnpl=lnpl,
            avg_movement=avg_movement, url=url, use_median=use_median, config=config,
        )
        if errors:
            logger.debug(f"Manual lock rejected: {errors}")
            return errors
        return self.lock(limits, True, excluded)

    def unlock(self) -> None:
        """Back to FLOATING. Auto-lock stays spent until an explicit reset."""
        self.status = LockStatus.FLOATING
        self.locked_limits = None
        self.outlier_indices = []
        self.manually_excluded_indices = []
        logger.info("Limits unlocked")

    def reset_to_auto_lock(
        self,
        series: NormalizedSeries,
        config: Optional[XMRConfig] = None,
    ) -> bool:
        """
        Recompute outlier-excluded limits from scratch and lock them.

        Clears the manual-modification flag. Returns False (state
        unchanged) if the series is too short or a transform is active.
        """
        if not self.transform.is_flat:
            return False

        result = calculate_limits_with_outlier_removal(series, config)
        if result.status != XMRStatus.OK:
            return False

        self.status = LockStatus.AUTO_LOCKED
        self.locked_limits = result.limits
        self.outlier_indices = list(result.outlier_indices)
        self.original_auto_outliers = list(result.outlier_indices)
        self.manually_excluded_indices = []
        self.has_ever_been_manually_modified = False
        self.auto_lock_attempted = True
        logger.info(f"Reset to auto-lock, outliers {self.outlier_indices}")
        return True

    def on_transform_changed(self, transform: Transform) -> None:
        """Record the active transform; a trend or seasonality forces FLOATING."""
        self.transform = transform
        if transform.changes_series and self.is_locked:
            logger.info(f"Clearing lock: {transform.kind.value} transform activated")
            self.unlock()

    def reset_for_new_series(self) -> None:
        """Forget everything; the next load may auto-lock again."""
        self.__init__()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'isLocked': self.is_locked,
            'isAutoLocked': self.is_auto_locked,
            'lockedLimits': self.locked_limits.to_dict() if self.locked_limits else None,
            'excludedIndices': self.excluded_indices,
            'originalAutoOutliers': list(self.original_auto_outliers),
            'hasEverBeenManuallyModified': self.has_ever_been_manually_modified,
            'autoLockAttempted': self.auto_lock_attempted,
            'transform': self.transform.kind.value,
        }
