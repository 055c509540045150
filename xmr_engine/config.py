"""
Engine Configuration Module
===========================
Tunable constants for the XmR engine, validated with pydantic.

Key Principle: Constants are passed in, never patched globally. Every entry
point takes an optional ``config`` and falls back to ``DEFAULT_CONFIG``, so
tests can override any threshold deterministically.

Groups:
- Chartability (minimum point count)
- Individual-X constants (2.66 / 3.27, median variants)
- Zone placement (quartile fraction)
- Outlier removal and auto-lock tuning
- Special-cause rule parameters
"""

from typing import Dict, Any, Optional, Union
from pathlib import Path
import json

from pydantic import BaseModel, Field, validator, root_validator


# Minimum number of normalized points required before a chart is drawn
MINIMUM_XMR_DATA_POINTS = 5

# Individual-X constants for moving ranges of two points
NATURAL_PROCESS_LIMIT_CONSTANT = 2.66   # 3 / d2, d2 = 1.128
UPPER_RANGE_LIMIT_CONSTANT = 3.27       # D4
MEDIAN_LIMIT_CONSTANT = 3.145
MEDIAN_RANGE_CONSTANT = 3.865


class XMRConfig(BaseModel):
    """
    XmR Engine Configuration
    ========================
    Immutable value object holding every tunable constant.

    Use ``with_overrides`` to derive a modified copy; the copy is
    validated again.
    """
    minimum_points: int = Field(
        MINIMUM_XMR_DATA_POINTS, ge=2,
        description="Minimum normalized points for a chartable result"
    )

    # Limit constants
    limit_constant: float = Field(
        NATURAL_PROCESS_LIMIT_CONSTANT, gt=0,
        description="Multiplier of avgMovement for UNPL/LNPL"
    )
    range_constant: float = Field(
        UPPER_RANGE_LIMIT_CONSTANT, gt=0,
        description="Multiplier of avgMovement for URL"
    )
    median_limit_constant: float = Field(
        MEDIAN_LIMIT_CONSTANT, gt=0,
        description="Multiplier of median moving range for UNPL/LNPL"
    )
    median_range_constant: float = Field(
        MEDIAN_RANGE_CONSTANT, gt=0,
        description="Multiplier of median moving range for URL"
    )
    quartile_fraction: float = Field(
        2.0 / 3.0, gt=0, lt=1,
        description="Fraction of the centre-to-limit distance for quartile bands"
    )

    # Outlier removal / auto-lock
    outlier_iteration_cap: int = Field(5, ge=1, description="Max exclusion passes")
    outlier_screening: str = Field(
        "median", description="Limits used to screen outliers: median or mean"
    )
    max_outlier_fraction: float = Field(
        0.25, gt=0, lt=1,
        description="Largest share of points that may be excluded as outliers"
    )
    auto_lock_spread_ratio: float = Field(
        1.2, ge=1,
        description="Auto-lock when original spread >= ratio x filtered spread"
    )

    # Special-cause rules
    two_of_three_window: int = Field(3, ge=2)
    two_of_three_required: int = Field(2, ge=1)
    near_limit_window: int = Field(4, ge=2)
    near_limit_required: int = Field(3, ge=1)
    running_point_length: int = Field(8, ge=2)
    low_variation_length: int = Field(15, ge=2)
    centre_line_tolerance: float = Field(
        1e-9, ge=0,
        description="Relative tolerance (of value and of avgMovement) for sitting on the centre line"
    )

    # Trend
    trend_min_points: int = Field(2, ge=2, description="Minimum points for regression")

    # Manual locks are stored rounded, as displayed
    locked_limit_decimals: Optional[int] = Field(2, ge=0)

    class Config:
        frozen = True
        extra = 'forbid'

    @validator('outlier_screening')
    def validate_outlier_screening(cls, v):
        allowed = ['median', 'mean']
        if v not in allowed:
            raise ValueError(f"outlier_screening must be one of {allowed}, got '{v}'")
        return v

    @root_validator(skip_on_failure=True)
    def check_rule_windows(cls, values):
        pairs = [
            ('two_of_three_required', 'two_of_three_window'),
            ('near_limit_required', 'near_limit_window'),
        ]
        for required_key, window_key in pairs:
            required = values.get(required_key)
            window = values.get(window_key)
            if required is not None and window is not None and required > window:
                raise ValueError(
                    f"{required_key} ({required}) cannot exceed {window_key} ({window})"
                )
        return values

    def with_overrides(self, **overrides: Any) -> 'XMRConfig':
        """Return a validated copy with some fields replaced."""
        data = self.dict()
        data.update(overrides)
        return XMRConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        return self.dict()


DEFAULT_CONFIG = XMRConfig()


def resolve_config(config: Optional[XMRConfig]) -> XMRConfig:
    """Fall back to the default configuration."""
    return config if config is not None else DEFAULT_CONFIG


def load_config(source: Union[Dict[str, Any], str, Path, None] = None) -> XMRConfig:
    """
    Build a configuration from a dict or a JSON file.

    Args:
        source: Mapping of overrides, path to a JSON file, or None for defaults

    Returns:
        Validated XMRConfig

    Raises:
        ValueError: If validation fails, with the pydantic message attached
    """
    if source is None:
        return DEFAULT_CONFIG

    if isinstance(source, (str, Path)):
        with open(source, 'r') as f:
            data = json.load(f)
    else:
        data = dict(source)

    try:
        return XMRConfig(**data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed:\n{str(e)}")
