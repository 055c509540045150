"""
Series transforms: flat, trended, or deseasonalized. Only one is active.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional

from .seasonality import SeasonalFactors


class TransformKind(Enum):
    FLAT = "flat"
    TRENDED = "trended"
    DESEASONALIZED = "deseasonalized"


@dataclass(frozen=True)
class Transform:
    """
    Active transform of a chart.

    A trended transform may carry an explicit line; without one the
    line is fitted to the data.
    """
    kind: TransformKind = TransformKind.FLAT
    gradient: Optional[float] = None
    intercept: Optional[float] = None
    seasonal_factors: Optional[SeasonalFactors] = None

    @classmethod
    def flat(cls) -> 'Transform':
        return cls()

    @classmethod
    def trended(cls, gradient: Optional[float] = None,
                intercept: Optional[float] = None) -> 'Transform':
        if (gradient is None) != (intercept is None):
            raise ValueError("gradient and intercept must be given together")
        return cls(kind=TransformKind.TRENDED, gradient=gradient, intercept=intercept)

    @classmethod
    def deseasonalized(cls, factors: SeasonalFactors) -> 'Transform':
        return cls(kind=TransformKind.DESEASONALIZED, seasonal_factors=factors)

    @property
    def is_flat(self) -> bool:
        return self.kind == TransformKind.FLAT

    @property
    def changes_series(self) -> bool:
        """Trended and deseasonalized transforms invalidate locked limits."""
        return self.kind != TransformKind.FLAT

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'gradient': self.gradient,
            'intercept': self.intercept,
            'seasonal_factors': self.seasonal_factors.to_dict() if self.seasonal_factors else None,
        }
