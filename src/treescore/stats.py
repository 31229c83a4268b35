"""Statistics over `(value, count)` distribution tables.

Every function here is pure. Distributions are sequences of `(value, count)`
pairs; numeric helpers require numeric values and fail fast otherwise. The
chi-squared and error-function approximations are closed-form formulas that
reproduce the confidence values computed by the remote service.
"""

from __future__ import annotations

import math
from collections.abc import Hashable, Sequence

import numpy as np

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

DEFAULT_Z: float = 1.96  # z-score of the 95% two-sided interval.
BINS_LIMIT: int = 32  # Maximum number of bins kept in a regression distribution.

_CHI2_TOLERANCE: float = 1e-15
_CHI2_SERIES_LIMIT: float = 1000.0  # Above this (x or n) the normal approximation is used.
_NORM_TAIL_LIMIT: float = 7.0

# ---------------------------------------------------------------------------
# Public interface -- Distribution algebra
# ---------------------------------------------------------------------------


def merge_distributions(
    first: Sequence[tuple[float, int]],
    second: Sequence[tuple[float, int]],
) -> list[tuple[float, int]]:
    """Merge two numeric distributions into one value-sorted table.

    Counts of exactly equal values are summed. When one side is empty the
    other side is returned as a new list, unchanged.

    Args:
        first (Sequence[tuple[float, int]]): First numeric distribution.
        second (Sequence[tuple[float, int]]): Second numeric distribution.

    Returns:
        list[tuple[float, int]]: The value-sorted union of both tables.

    Raises:
        TypeError: If any value in either distribution is not numeric.

    Examples:
        >>> merge_distributions([(1.0, 2), (3.0, 1)], [(3.0, 4), (2.0, 1)])
        [(1.0, 2), (2.0, 1), (3.0, 5)]
    """
    for value, _ in (*first, *second):
        if not is_number(value):
            raise TypeError(f"Only numeric distributions can be merged, found value {value!r}")
    if not second:
        return list(first)
    if not first:
        return list(second)
    merged: dict[float, int] = {}
    for value, count in (*first, *second):
        merged[value] = merged.get(value, 0) + count
    return sorted(merged.items())


def merge_category_counts(
    first: Sequence[tuple[Hashable, int]],
    second: Sequence[tuple[Hashable, int]],
) -> list[tuple[Hashable, int]]:
    """Merge two categorical distributions, summing counts per category.

    Categories keep the order in which they are first seen.

    Args:
        first (Sequence[tuple[Hashable, int]]): First categorical distribution.
        second (Sequence[tuple[Hashable, int]]): Second categorical distribution.

    Returns:
        list[tuple[Hashable, int]]: The merged distribution.

    Examples:
        >>> merge_category_counts([("a", 2), ("b", 1)], [("b", 3), ("c", 1)])
        [('a', 2), ('b', 4), ('c', 1)]
    """
    merged: dict[Hashable, int] = {}
    for category, count in (*first, *second):
        merged[category] = merged.get(category, 0) + count
    return list(merged.items())


def merge_bins(distribution: Sequence[tuple[float, int]], limit: int) -> list[tuple[float, int]]:
    """Collapse a numeric distribution to at most `limit` bins.

    The table is sorted by value; then, while it is too long, the adjacent
    pair with the smallest value gap (lowest index on ties) is replaced by a
    single bin at their count-weighted mean value holding their summed count.

    Args:
        distribution (Sequence[tuple[float, int]]): Numeric distribution.
        limit (int): Maximum number of bins to keep.

    Returns:
        list[tuple[float, int]]: The collapsed, value-sorted distribution. If
            `limit < 1` or the table is already short enough, the input
            entries are returned unchanged.

    Examples:
        >>> merge_bins([(1.0, 1), (2.0, 1), (10.0, 2)], 2)
        [(1.5, 2), (10.0, 2)]
    """
    if limit < 1 or len(distribution) <= limit:
        return list(distribution)
    bins = sorted(distribution, key=lambda item: item[0])
    while len(bins) > limit:
        index = min(range(1, len(bins)), key=lambda i: bins[i][0] - bins[i - 1][0])
        (left_value, left_count), (right_value, right_count) = bins[index - 1], bins[index]
        total = left_count + right_count
        if total > 0:
            value = (left_value * left_count + right_value * right_count) / total
        else:
            value = (left_value + right_value) / 2
        bins[index - 1 : index + 1] = [(value, total)]
    return bins


def instance_count(distribution: Sequence[tuple[object, int]]) -> int:
    """Return the total count of a distribution.

    Args:
        distribution (Sequence[tuple[object, int]]): Any distribution.

    Returns:
        int: Sum of the counts.
    """
    return sum(count for _, count in distribution)


# ---------------------------------------------------------------------------
# Public interface -- Count-weighted moments
# ---------------------------------------------------------------------------


def mean(distribution: Sequence[tuple[float, int]]) -> float:
    """Return the count-weighted mean of a numeric distribution.

    Args:
        distribution (Sequence[tuple[float, int]]): Numeric distribution.

    Returns:
        float: The weighted mean, or NaN when the total count is zero.
    """
    values, counts = _as_arrays(distribution)
    if counts.sum() <= 0:
        return math.nan
    return float(np.average(values, weights=counts))


def variance(
    distribution: Sequence[tuple[float, int]],
    distribution_mean: float | None = None,
    *,
    unbiased: bool = False,
) -> float:
    """Return the count-weighted variance of a numeric distribution.

    Args:
        distribution (Sequence[tuple[float, int]]): Numeric distribution.
        distribution_mean (float | None): Precomputed mean; computed when `None`.
        unbiased (bool): Divide by `total - 1` instead of `total`.

    Returns:
        float: The variance, or NaN when there are not enough instances.
    """
    values, counts = _as_arrays(distribution)
    total = counts.sum()
    denominator = total - 1 if unbiased else total
    if denominator <= 0:
        return math.nan
    center = mean(distribution) if distribution_mean is None else distribution_mean
    return float(np.sum(counts * (values - center) ** 2) / denominator)


def median(distribution: Sequence[tuple[float, int]], instances: int | None = None) -> float:
    """Return the median of a value-sorted numeric distribution.

    Walks the cumulative count. When the total is even and the cumulative
    count before the current bin is exactly half of it, the median is the
    midpoint between the previous and the current value.

    Args:
        distribution (Sequence[tuple[float, int]]): Value-sorted numeric distribution.
        instances (int | None): Total count; computed from the table when `None`.

    Returns:
        float: The median, or NaN for an empty table.

    Examples:
        >>> median([(1.0, 1), (2.0, 1), (3.0, 1), (4.0, 1)])
        2.5
    """
    total = instance_count(distribution) if instances is None else instances
    cumulative = 0
    previous_value: float | None = None
    for value, count in distribution:
        before = cumulative
        cumulative += count
        if cumulative > total / 2:
            if total % 2 == 0 and before == total // 2 and previous_value is not None:
                return (value + previous_value) / 2
            return float(value)
        previous_value = value
    return math.nan


# ---------------------------------------------------------------------------
# Public interface -- Confidence estimators
# ---------------------------------------------------------------------------


def ws_confidence(
    count: float,
    total: float,
    *,
    z: float = DEFAULT_Z,
    sample_size: float | None = None,
) -> float:
    """Return the Wilson score lower bound of a binomial proportion.

    Args:
        count (float): Instances (or accumulated weight) of the winning category.
        total (float): Total instances (or weight) used to compute the proportion.
        z (float): z-score of the interval. Defaults to 1.96.
        sample_size (float | None): Number of trials `n`; defaults to `total`.
            Differs from `total` when the proportion comes from weights.

    Returns:
        float: The lower bound in `[0, 1]`, or NaN when `total` or the sample
            size is not positive.

    Raises:
        ValueError: If `count` is negative or larger than `total`.

    Examples:
        >>> round(ws_confidence(9, 10), 4)
        0.5958
    """
    if total <= 0:
        return math.nan
    if count < 0 or count > total:
        raise ValueError(f"count must lie in [0, {total}], got {count}")
    n = float(total if sample_size is None else sample_size)
    if n <= 0:
        return math.nan
    p = count / total
    z2 = z * z
    factor = z2 / n
    spread = math.sqrt((p * (1 - p) + factor / 4) / n)
    score = (p + factor / 2 - z * spread) / (1 + factor)
    return min(1.0, max(0.0, score))


def regression_error(variance_value: float, instances: int, z: float = DEFAULT_Z) -> float:
    """Scale a variance into the error bound reported for regression predictions.

    Args:
        variance_value (float): Variance of the predicted distribution.
        instances (int): Number of instances the variance was computed on.
        z (float): z-score of the interval. Defaults to 1.96.

    Returns:
        float: The error bound, or NaN when `instances <= 0` or the inverse
            chi-squared value is zero.
    """
    if instances > 0:
        ppf = chi2_ppf(erf(z), instances)
        if ppf != 0:
            error = variance_value * (instances - 1) / ppf * (math.sqrt(instances) + z) ** 2
            return math.sqrt(error / instances)
    return math.nan


# ---------------------------------------------------------------------------
# Public interface -- Special functions
# ---------------------------------------------------------------------------


def erf(x: float) -> float:
    """Return the error function via the Abramowitz and Stegun 7.1.26 formula.

    Maximum absolute error is 1.5e-7.

    Args:
        x (float): Argument.

    Returns:
        float: A value in `[-1, 1]`.
    """
    if x < 0:
        return -erf(-x)
    t = 1 / (1 + 0.3275911 * x)
    poly = (
        0.254829592 * t
        - 0.284496736 * t**2
        + 1.421413741 * t**3
        - 1.453152027 * t**4
        + 1.061405429 * t**5
    )
    return 1 - poly * math.exp(-(x**2))


def norm(z: float) -> float:
    """Return the two-sided tail probability `P(|Z| > |z|)` of a standard normal.

    Args:
        z (float): Standard score.

    Returns:
        float: Two-sided tail probability.
    """
    q = z * z
    if abs(z) > _NORM_TAIL_LIMIT:
        correction = 1.0 - 1.0 / q + 3.0 / (q * q)
        return correction * math.exp(-q / 2.0) / (abs(z) * math.sqrt(math.pi / 2))
    return chi2(q, 1)


def chi2(x: float, n: int) -> float:
    """Return the upper-tail probability of a chi-squared distribution.

    Uses the power series of the incomplete gamma function, or the
    Wilson-Hilferty normal approximation when `x` or `n` exceeds 1000.

    Args:
        x (float): Chi-squared statistic.
        n (int): Degrees of freedom.

    Returns:
        float: `P(X > x)` for `X ~ chi2(n)`.
    """
    if x > _CHI2_SERIES_LIMIT or n > _CHI2_SERIES_LIMIT:
        c = (x / n) ** (1.0 / 3.0) + 2.0 / (9 * n) - 1
        q = norm(c / math.sqrt(2.0 / (9.0 * n))) / 2.0
        return q if x > n else 1.0 - q

    p = math.exp(-0.5 * x)
    if n % 2 == 1:
        p *= math.sqrt(2.0 * x / math.pi)
    k = n
    while k >= 2:
        p *= x / k
        k -= 2
    term = p
    a = n
    while term > _CHI2_TOLERANCE * p:
        a += 2
        term *= x / a
        p += term
    return 1 - p


def chi2_ppf(p: float, n: int) -> float:
    """Return the `p` quantile of a chi-squared distribution.

    Bisection on `v` in `(0, 1)` with `x = 1/v - 1`, halving the step until it
    drops below 1e-15 (about 50 iterations).

    Args:
        p (float): Lower-tail probability.
        n (int): Degrees of freedom.

    Returns:
        float: `x` such that `P(X <= x)` is approximately `p`.

    Examples:
        >>> round(chi2_ppf(0.99, 55), 2)
        82.29
    """
    target = 1 - p
    v = 0.5
    step = 0.5
    x = 0.0
    while step > _CHI2_TOLERANCE:
        x = 1 / v - 1
        step /= 2
        if chi2(x, n) > target:
            v -= step
        else:
            v += step
    return x


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def is_number(value: object) -> bool:
    """Return True for int or float values, excluding booleans.

    Args:
        value (object): Any value.

    Returns:
        bool: Whether `value` is a real number.
    """
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_arrays(distribution: Sequence[tuple[float, int]]) -> tuple[np.ndarray, np.ndarray]:
    """Split a numeric distribution into value and count arrays.

    Args:
        distribution (Sequence[tuple[float, int]]): Numeric distribution.

    Returns:
        tuple[np.ndarray, np.ndarray]: `(values, counts)` as float arrays.
    """
    if not distribution:
        return np.zeros(0), np.zeros(0)
    values = np.array([value for value, _ in distribution], dtype=float)
    counts = np.array([count for _, count in distribution], dtype=float)
    return values, counts
