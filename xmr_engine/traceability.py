"""
Result Fingerprints
===================
Deterministic hashes of engine inputs.

The engine is a pure function, so identical fingerprints mean identical
output. Callers use ``chart_cache_key`` to memoize chart results across
renders.
"""

import hashlib
import json
from typing import Dict, Any, Optional

from .config import XMRConfig, resolve_config
from .normalization import NormalizedSeries
from .transform import Transform


# Increment when calculation methods change
ENGINE_VERSION = "1.0.0"


def _sha256(text: str) -> str:
    return f"sha256:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"


def compute_series_hash(series: NormalizedSeries) -> str:
    """Hash of a normalized series (timestamps, values, confidences)."""
    payload = [
        [p.timestamp, repr(p.value), None if p.confidence is None else repr(p.confidence)]
        for p in series.points
    ]
    return _sha256(json.dumps(payload, separators=(',', ':')))


def compute_config_hash(config: Optional[XMRConfig] = None) -> str:
    """Hash of the configuration; keys sorted for stable output."""
    config_str = json.dumps(resolve_config(config).to_dict(), sort_keys=True, default=str)
    return _sha256(config_str)


def chart_cache_key(
    series: NormalizedSeries,
    transform: Optional[Transform] = None,
    lock_state: Optional[Dict[str, Any]] = None,
    config: Optional[XMRConfig] = None,
) -> str:
    """
    Memoization key for a chart computation.

    Args:
        series: Normalized input series
        transform: Active transform (flat if None)
        lock_state: ``LimitLockState.to_dict()`` output, if any
        config: Engine constants
    """
    transform = transform or Transform.flat()
    parts = {
        'engine_version': ENGINE_VERSION,
        'series': compute_series_hash(series),
        'transform': transform.to_dict(),
        'lock_state': lock_state,
        'config': compute_config_hash(config),
    }
    return _sha256(json.dumps(parts, sort_keys=True, default=str))
