"""
Numeric helpers shared by the metrics computers.

Trend classification, percentage change, percentiles, rounding and
display formatting.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from enum import Enum
from typing import Sequence, Union

Number = Union[int, float]

# Changes smaller than this (in percent) are reported as flat
TREND_THRESHOLD_PERCENT = 5.0


class TrendDirection(str, Enum):
    """Coarse direction of a metric between two periods."""
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


def round_half_up(value: Number, places: int = 0) -> float:
    """Round half away from zero for positives, matching display conventions.

    Args:
        value: Number to round
        places: Decimal places to keep

    Returns:
        Rounded value as float
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _raw_change(current: Number, previous: Number) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def percent_change(current: Number, previous: Number) -> int:
    """Percentage change from previous to current, rounded to an integer.

    A zero previous value yields 100 when current is positive, else 0.
    """
    return int(round_half_up(_raw_change(current, previous)))


def trend(current: Number, previous: Number, higher_is_better: bool = True) -> TrendDirection:
    """Classify movement between two periods.

    Args:
        current: Value for the current period
        previous: Value for the previous period
        higher_is_better: When False (e.g. duration, tokens) the direction is inverted

    Returns:
        FLAT when the absolute change is under 5%, otherwise UP or DOWN
    """
    change = _raw_change(current, previous)
    if abs(change) < TREND_THRESHOLD_PERCENT:
        return TrendDirection.FLAT
    is_up = change > 0
    if not higher_is_better:
        is_up = not is_up
    return TrendDirection.UP if is_up else TrendDirection.DOWN


def percentile(sorted_values: Sequence[Number], p: float) -> Number:
    """Nearest-rank percentile of an ascending sequence.

    Args:
        sorted_values: Values sorted ascending
        p: Percentile (0-100)

    Returns:
        Value at rank ceil(p/100 * n), or 0 for an empty sequence
    """
    n = len(sorted_values)
    if n == 0:
        return 0
    rank = Decimal(str(p)) / Decimal(100) * n
    index = int(rank.to_integral_value(rounding=ROUND_CEILING)) - 1
    index = max(0, min(index, n - 1))
    return sorted_values[index]


def mean(values: Sequence[Number]) -> float:
    """Arithmetic mean, 0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def safe_ratio(numerator: Number, denominator: Number) -> float:
    """numerator / denominator, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


def format_duration(ms: Number) -> str:
    """Format a duration in milliseconds as 42s, 7m or 1.5h."""
    if ms < 60_000:
        return f"{int(round_half_up(ms / 1000))}s"
    if ms < 3_600_000:
        return f"{int(round_half_up(ms / 60_000))}m"
    return f"{ms / 3_600_000:.1f}h"


def format_tokens(tokens: Number) -> str:
    """Format a token count as 950, 12.5K or 1.25M."""
    if tokens < 1000:
        return f"{tokens}"
    if tokens < 1_000_000:
        return f"{tokens / 1000:.1f}K"
    return f"{tokens / 1_000_000:.2f}M"
