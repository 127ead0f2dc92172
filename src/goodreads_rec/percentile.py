"""
Percentile ranking over collections.

Two different notions of "percentile" live here and are kept
apart:

* partition() ranks every item with a cumulative distribution over the
  *distinct* values in the collection, so a value shared by many items is not
  weighted more heavily than a value held by one item.
* extract_percentile() trims a collection to the items at or above an order
  statistic of the *raw* values.
"""
import math
import logging
from typing import Callable, Sequence, TypeVar

import numpy as np

from .models import Ranked

logger = logging.getLogger(__name__)

T = TypeVar('T')


def round_percent(ratio: float) -> int:
    """Scale a 0-1 ratio to 0-100, rounding halves up."""
    return int(math.floor(ratio * 100 + 0.5))


def partition(items: Sequence[T], value_of: Callable[[T], float]) -> list[Ranked[T]]:
    """
    Give every item the CDF percentile of its value among the distinct values.

    For a distinct value v the percentile is
    round(100 * |{distinct values <= v}| / |distinct values|), so the largest
    value always gets 100 and items with equal values share a percentile.

    Example:
        >>> [r.percentile for r in partition([10, 20, 20, 30], lambda v: v)]
        [33, 67, 67, 100]
    """
    if not items:
        return []

    values = np.asarray([value_of(item) for item in items])
    distinct = np.unique(values)
    below = np.searchsorted(distinct, values, side="right")

    # Same operation order as the scalar formula: ratio first, then scale
    percentiles = np.floor(below / len(distinct) * 100 + 0.5).astype(int)

    return [Ranked(item, int(p)) for item, p in zip(items, percentiles)]


def extract_percentile(
    items: Sequence[T],
    percentile: float,
    value_of: Callable[[T], float],
) -> Sequence[T]:
    """
    Keep the items whose value is at or above the given order statistic.

    The threshold is the raw value at index ceil(percentile / 100 * (n - 1))
    of the ascending values. A percentile of 0 keeps everything, and one of
    100 or more keeps nothing.
    """
    if not items or percentile <= 0:
        return items
    if percentile >= 100:
        return []

    values = [value_of(item) for item in items]
    ordered = np.sort(np.asarray(values))
    threshold = ordered[math.ceil(percentile / 100 * (len(values) - 1))]

    kept = [item for item, value in zip(items, values) if value >= threshold]
    logger.debug(f"p{percentile} threshold {threshold}: kept {len(kept)}/{len(values)} items")
    return kept
