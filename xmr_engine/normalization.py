"""
Point Normalization Module
==========================
Turns raw ingested rows into an ordered, de-duplicated series.

Key Principle: Partial ingestion is expected. Rows with an unparsable
timestamp or a non-finite value are dropped quietly, never raised.

Supported timestamp encodings:
- YYYYMM (e.g. "202301")
- YYYYMMDD (e.g. "20230115")
- Anything pandas can parse (ISO-8601 and friends)

Duplicate timestamps resolve deterministically:
1. A point carrying a confidence beats one without
2. Higher confidence beats lower
3. Otherwise the later occurrence in the input wins
"""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple, Iterable, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

_YYYYMM = re.compile(r'^\d{6}$')
_YYYYMMDD = re.compile(r'^\d{8}$')

# pandas resolves these to the wall clock; a stored series needs a fixed instant
_RELATIVE_KEYWORDS = {'now', 'today', 'tomorrow', 'yesterday'}


class TimeBucket(Enum):
    """Granularity of a series, ordered from finest to coarsest."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    @property
    def rank(self) -> int:
        return _BUCKET_ORDER.index(self)


_BUCKET_ORDER = [TimeBucket.DAY, TimeBucket.WEEK, TimeBucket.MONTH,
                 TimeBucket.QUARTER, TimeBucket.YEAR]


@dataclass(frozen=True)
class DataPoint:
    """A single timestamped observation."""
    timestamp: str
    value: float
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'timestamp': self.timestamp, 'value': self.value}
        if self.confidence is not None:
            data['confidence'] = self.confidence
        return data


@dataclass(frozen=True)
class NormalizedSeries:
    """
    Ordered series, strictly increasing by parsed timestamp.

    ``moments`` holds the parsed UTC timestamp of each point.
    """
    points: Tuple[DataPoint, ...] = field(default_factory=tuple)
    moments: Tuple[pd.Timestamp, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index: int) -> DataPoint:
        return self.points[index]

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.points], dtype=float)

    @property
    def timestamps(self) -> List[str]:
        return [p.timestamp for p in self.points]

    def with_values(self, values: Iterable[float]) -> 'NormalizedSeries':
        """Same timestamps, new values."""
        new_points = tuple(
            DataPoint(timestamp=p.timestamp, value=float(v), confidence=p.confidence)
            for p, v in zip(self.points, values)
        )
        return NormalizedSeries(points=new_points, moments=self.moments)

    def without(self, indices: Iterable[int]) -> 'NormalizedSeries':
        """Copy of the series with the given positions removed."""
        drop = set(indices)
        kept = [i for i in range(len(self.points)) if i not in drop]
        return NormalizedSeries(
            points=tuple(self.points[i] for i in kept),
            moments=tuple(self.moments[i] for i in kept),
        )

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            'timestamp': self.timestamps,
            'moment': list(self.moments),
            'value': self.values,
            'confidence': [p.confidence for p in self.points],
        })


# =============================================================================
# TIMESTAMP PARSING
# =============================================================================

def parse_timestamp(timestamp: Any) -> Optional[pd.Timestamp]:
    """
    Parse a timestamp in any supported encoding.

    Args:
        timestamp: YYYYMM, YYYYMMDD or a pandas-parsable string

    Returns:
        UTC pandas Timestamp, or None if the value cannot be parsed
    """
    if timestamp is None:
        return None

    text = str(timestamp).strip()
    if not text or text.lower() in _RELATIVE_KEYWORDS:
        return None

    try:
        if _YYYYMM.match(text):
            parsed = pd.Timestamp(year=int(text[:4]), month=int(text[4:6]), day=1)
        elif _YYYYMMDD.match(text):
            parsed = pd.Timestamp(year=int(text[:4]), month=int(text[4:6]), day=int(text[6:8]))
        else:
            parsed = pd.Timestamp(text)
    except (ValueError, TypeError, OverflowError):
        return None

    if parsed is pd.NaT or pd.isna(parsed):
        return None

    if parsed.tzinfo is None:
        return parsed.tz_localize('UTC')
    return parsed.tz_convert('UTC')


def _coerce_value(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce_confidence(confidence: Any) -> Optional[float]:
    number = _coerce_value(confidence)
    if number is None or number < 0 or number > 1:
        return None
    return number


def _read_raw(raw: Union[DataPoint, Dict[str, Any]]) -> Tuple[Any, Any, Any]:
    if isinstance(raw, DataPoint):
        return raw.timestamp, raw.value, raw.confidence
    if isinstance(raw, dict):
        return raw.get('timestamp'), raw.get('value'), raw.get('confidence')
    return (getattr(raw, 'timestamp', None), getattr(raw, 'value', None),
            getattr(raw, 'confidence', None))


# =============================================================================
# NORMALIZATION
# =============================================================================

def _prefer_incoming(existing: DataPoint, incoming: DataPoint) -> bool:
    """True if a later duplicate should replace the one already kept."""
    if existing.confidence is not None and incoming.confidence is not None:
        if incoming.confidence != existing.confidence:
            return incoming.confidence > existing.confidence
        return True
    if existing.confidence is not None:
        return False
    return True


def normalize_points(
    raw_points: Optional[Iterable[Union[DataPoint, Dict[str, Any]]]]
) -> NormalizedSeries:
    """
    Validate, sort and de-duplicate raw points.

    Args:
        raw_points: Dicts with timestamp/value/confidence keys, or DataPoints

    Returns:
        NormalizedSeries (possibly empty)
    """
    if raw_points is None:
        return NormalizedSeries()

    valid = []
    n_dropped = 0

    for position, raw in enumerate(raw_points):
        timestamp, value, confidence = _read_raw(raw)
        moment = parse_timestamp(timestamp)
        number = _coerce_value(value)
        if moment is None or number is None:
            n_dropped += 1
            continue
        point = DataPoint(
            timestamp=str(timestamp).strip(),
            value=number,
            confidence=_coerce_confidence(confidence),
        )
        valid.append((moment, position, point))

    if n_dropped:
        logger.debug(f"Dropped {n_dropped} malformed points during normalization")

    # Input position breaks ties so "later occurrence" is well defined
    valid.sort(key=lambda item: (item[0].value, item[1]))

    kept: Dict[int, Tuple[pd.Timestamp, DataPoint]] = {}
    for moment, _, point in valid:
        key = moment.value
        existing = kept.get(key)
        if existing is None or _prefer_incoming(existing[1], point):
            kept[key] = (moment, point)

    ordered = [kept[key] for key in sorted(kept)]
    return NormalizedSeries(
        points=tuple(point for _, point in ordered),
        moments=tuple(moment for moment, _ in ordered),
    )


# =============================================================================
# TIME BUCKETS
# =============================================================================

def detect_bucket_type(timestamps: Iterable[Any]) -> TimeBucket:
    """
    Detect the granularity of a series from its most common spacing.

    Gaps are measured in whole days (rounded up). The most frequent gap
    decides; ties go to the larger gap.
    """
    moments = [m for m in (parse_timestamp(t) for t in timestamps) if m is not None]
    if len(moments) < 2:
        return TimeBucket.DAY

    counts: Dict[int, int] = {}
    for earlier, later in zip(moments[:-1], moments[1:]):
        seconds = abs((later - earlier).total_seconds())
        days = int(math.ceil(seconds / 86400.0))
        counts[days] = counts.get(days, 0) + 1

    interval = max(counts, key=lambda d: (counts[d], d))

    if interval < 7:
        return TimeBucket.DAY
    elif interval < 28:
        return TimeBucket.WEEK
    elif interval < 90:
        return TimeBucket.MONTH
    elif interval < 365:
        return TimeBucket.QUARTER
    return TimeBucket.YEAR


def normalize_to_bucket(timestamp: Any, bucket: TimeBucket) -> Optional[str]:
    """
    Map a timestamp to a stable YYYY-MM-DD bucket key.

    Weeks start on Monday (ISO); months, quarters and years on their
    first day.
    """
    moment = parse_timestamp(timestamp)
    if moment is None:
        return None

    day = moment.normalize()
    if bucket == TimeBucket.DAY:
        start = day
    elif bucket == TimeBucket.WEEK:
        start = day - pd.Timedelta(days=day.weekday())
    elif bucket == TimeBucket.MONTH:
        start = day.replace(day=1)
    elif bucket == TimeBucket.QUARTER:
        start = day.replace(month=((day.month - 1) // 3) * 3 + 1, day=1)
    else:
        start = day.replace(month=1, day=1)

    return start.strftime('%Y-%m-%d')
