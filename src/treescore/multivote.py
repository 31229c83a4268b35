"""Combination of member-model votes into a single ensemble prediction."""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, Final, NamedTuple

from loguru import logger

from treescore import stats
from treescore.exceptions import InsufficientVoteDataError
from treescore.models import CombinationMethod, DistributionEntry, DistributionUnit, PredictionResult, Vote

_TOP_RANGE: Final[float] = 10.0
_METHODS: Final[frozenset[str]] = frozenset({"plurality", "confidence", "probability", "threshold"})

# ---------------------------------------------------------------------------
# Private models
# ---------------------------------------------------------------------------


class _Ballot(NamedTuple):
    """One weighted contribution to a categorical tally."""

    category: Any
    weight: float
    order: int
    confidence: float | None
    count: int | None


class _Shaping(NamedTuple):
    """Which optional attributes the combined result carries."""

    confidence: bool
    distribution: bool
    count: bool
    median: bool
    min: bool
    max: bool


# ---------------------------------------------------------------------------
# Public interface -- MultiVote
# ---------------------------------------------------------------------------


class MultiVote:
    """Ordered collection of the votes cast for one input record.

    Every vote carries an arrival index (`order`). When any vote passed to the
    constructor lacks one, all votes are renumbered from 0 in the given order;
    votes added later receive `next_order()`.

    Examples:
        >>> multivote = MultiVote([Vote(prediction="A", confidence=0.9), Vote(prediction="B", confidence=0.7)])
        >>> multivote.combine("plurality").prediction
        'A'
    """

    def __init__(self, votes: Iterable[Vote] = ()) -> None:
        """Initialize the collection.

        Args:
            votes (Iterable[Vote]): Initial votes.
        """
        initial = list(votes)
        if any(vote.order is None for vote in initial):
            initial = [vote.model_copy(update={"order": index}) for index, vote in enumerate(initial)]
        self._votes: list[Vote] = initial

    @property
    def votes(self) -> tuple[Vote, ...]:
        """tuple[Vote, ...]: The votes in arrival order."""
        return tuple(self._votes)

    def __len__(self) -> int:
        return len(self._votes)

    def __iter__(self) -> Iterator[Vote]:
        return iter(self._votes)

    def next_order(self) -> int:
        """Return the arrival index the next appended vote receives.

        Returns:
            int: One past the largest index in use, or 0 when empty.
        """
        return max(vote.order for vote in self._votes) + 1 if self._votes else 0  # type: ignore[type-var]

    def append(self, vote: Vote) -> None:
        """Add a vote, stamping it with the next arrival index.

        Args:
            vote (Vote): The vote; its own `order` is replaced.
        """
        self._votes.append(vote.model_copy(update={"order": self.next_order()}))

    def extend(self, votes: Iterable[Vote]) -> None:
        """Add several votes in order.

        Args:
            votes (Iterable[Vote]): The votes.
        """
        for vote in votes:
            self.append(vote)

    @property
    def is_regression(self) -> bool:
        """bool: Whether every vote predicts a number."""
        return bool(self._votes) and all(stats.is_number(vote.prediction) for vote in self._votes)

    # -- Combination --------------------------------------------------------

    def combine(
        self,
        method: CombinationMethod = "plurality",
        *,
        add_confidence: bool = False,
        add_distribution: bool = False,
        add_count: bool = False,
        add_median: bool = False,
        add_min: bool = False,
        add_max: bool = False,
        threshold_k: int | None = None,
        threshold_category: str | None = None,
    ) -> PredictionResult:
        """Combine the votes into one prediction.

        Regression votes are averaged; the "confidence" method weights each
        vote by `exp(-(error - min_error) / error_range * 10)` and every other
        method uses uniform weights. Categorical votes are tallied with a
        per-method weight (1 for "plurality", the vote confidence for
        "confidence", the per-category probabilities for "probability"); the
        "threshold" method keeps the votes for `threshold_category` when
        there are at least `threshold_k` of them, otherwise the remaining
        votes, and tallies them by plurality. Equal tallies go to the category
        whose first vote arrived earliest.

        Args:
            method (CombinationMethod): Weighting rule.
            add_confidence (bool): Include the combined confidence.
            add_distribution (bool): Include the merged distribution.
            add_count (bool): Include the summed instance count.
            add_median (bool): Include the combined median (regression only).
            add_min (bool): Include the smallest minimum (regression only).
            add_max (bool): Include the largest maximum (regression only).
            threshold_k (int | None): Minimum votes for `threshold_category`.
            threshold_category (str | None): Category singled out by "threshold".

        Returns:
            PredictionResult: The combined prediction.

        Raises:
            ValueError: If there are no votes, the method is unknown, or the
                threshold arguments are invalid.
            InsufficientVoteDataError: If the votes lack the confidence,
                median or distribution the method needs.

        Examples:
            >>> votes = MultiVote([Vote(prediction="A", confidence=0.8), Vote(prediction="B", confidence=0.8)])
            >>> votes.combine("plurality", add_confidence=True).to_dict()
            {'prediction': 'A', 'confidence': 0.8}
        """
        if not self._votes:
            raise ValueError("Cannot combine an empty MultiVote")
        if method not in _METHODS:
            raise ValueError(f"Unknown combination method {method!r}; expected one of {sorted(_METHODS)}")
        shaping = _Shaping(add_confidence, add_distribution, add_count, add_median, add_min, add_max)

        if self.is_regression:
            result = self._combine_regression(method, shaping)
        elif method == "threshold":
            subset = self._single_out(threshold_k, threshold_category)
            result = subset._combine_categorical(subset._ballots("plurality"), method, shaping)
        else:
            result = self._combine_categorical(self._ballots(method), method, shaping)
        logger.debug("Votes combined", method=method, votes=len(self._votes), prediction=result.prediction)
        return result

    def _single_out(self, threshold_k: int | None, threshold_category: str | None) -> MultiVote:
        """Keep the votes for one category when there are enough of them.

        Args:
            threshold_k (int | None): Minimum number of matching votes.
            threshold_category (str | None): Category to single out.

        Returns:
            MultiVote: The matching votes when at least `threshold_k` exist,
                otherwise the remaining votes. Arrival indices are preserved.

        Raises:
            ValueError: If `threshold_k` is missing, below 1 or above the
                number of votes, or the category is missing or empty.
        """
        if threshold_k is None or threshold_k < 1 or not threshold_category:
            raise ValueError("method 'threshold' requires threshold_k >= 1 and a non-empty threshold_category")
        if threshold_k > len(self._votes):
            raise ValueError(f"threshold_k ({threshold_k}) exceeds the number of votes ({len(self._votes)})")
        matching = [vote for vote in self._votes if vote.prediction == threshold_category]
        if len(matching) >= threshold_k:
            return MultiVote(matching)
        return MultiVote(vote for vote in self._votes if vote.prediction != threshold_category)

    def _ballots(self, method: CombinationMethod) -> list[_Ballot]:
        """Turn the votes into weighted ballots for the given method.

        Args:
            method (CombinationMethod): Weighting rule.

        Returns:
            list[_Ballot]: One ballot per vote, or one per vote category for
                the "probability" method.

        Raises:
            InsufficientVoteDataError: If a vote lacks the data the method needs.
        """
        if method == "probability":
            ballots: list[_Ballot] = []
            for vote in self._votes:
                if not vote.distribution or not vote.count:
                    raise InsufficientVoteDataError(method, "distribution")
                ballots.extend(
                    _Ballot(category, instances / vote.count, vote.order, None, instances)  # type: ignore[arg-type]
                    for category, instances in vote.distribution
                )
            return ballots
        if method == "confidence":
            if any(vote.confidence is None for vote in self._votes):
                raise InsufficientVoteDataError(method, "confidence")
            return [
                _Ballot(vote.prediction, vote.confidence, vote.order, vote.confidence, vote.count)  # type: ignore[arg-type]
                for vote in self._votes
            ]
        return [
            _Ballot(vote.prediction, 1.0, vote.order, vote.confidence, vote.count)  # type: ignore[arg-type]
            for vote in self._votes
        ]

    def _combine_categorical(
        self,
        ballots: Sequence[_Ballot],
        method: CombinationMethod,
        shaping: _Shaping,
    ) -> PredictionResult:
        tally: dict[Any, list[float]] = {}
        for ballot in ballots:
            entry = tally.setdefault(ballot.category, [0.0, ballot.order])
            entry[0] += ballot.weight
            entry[1] = min(entry[1], ballot.order)
        winner = min(tally, key=lambda category: (-tally[category][0], tally[category][1]))

        distribution: list[DistributionEntry] | None = None
        if shaping.distribution:
            merged: list[Any] = []
            for vote in self._votes:
                merged = stats.merge_category_counts(merged, vote.distribution or [])
            distribution = sorted(merged, key=lambda entry: -entry[1])
        return PredictionResult(
            prediction=winner,
            confidence=_categorical_confidence(ballots, winner, tally) if shaping.confidence else None,
            distribution=distribution,
            distribution_unit="categories" if distribution is not None else None,
            count=sum(vote.count or 0 for vote in self._votes) if shaping.count else None,
        )

    def _combine_regression(self, method: CombinationMethod, shaping: _Shaping) -> PredictionResult:
        votes = self._votes
        if method == "confidence":
            weights = _error_weights(_required(votes, "confidence", method))
        else:
            weights = [1.0] * len(votes)
        normalization = sum(weights)
        if normalization == 0:
            logger.warning("Vote weights sum to zero", method=method, votes=len(votes))
            return PredictionResult(prediction=math.nan, confidence=0.0 if shaping.confidence else None)

        def weighted(values: Sequence[float]) -> float:
            return sum(weight * value for weight, value in zip(weights, values, strict=True)) / normalization

        prediction = weighted([float(vote.prediction) for vote in votes])
        confidence = weighted(_required(votes, "confidence", method)) if shaping.confidence else None
        median = weighted(_required(votes, "median", method)) if shaping.median else None
        minimum = min((vote.min for vote in votes if vote.min is not None), default=None) if shaping.min else None
        maximum = max((vote.max for vote in votes if vote.max is not None), default=None) if shaping.max else None

        distribution: list[tuple[float, int]] | None = None
        unit: DistributionUnit | None = None
        if shaping.distribution:
            distribution, unit = _grouped_distribution(votes)
        return PredictionResult(
            prediction=prediction,
            confidence=confidence,
            distribution=distribution,  # type: ignore[arg-type]
            distribution_unit=unit,
            count=sum(vote.count or 0 for vote in votes) if shaping.count else None,
            median=median,
            min=minimum,
            max=maximum,
        )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _required(votes: Sequence[Vote], key: str, method: str) -> list[float]:
    """Collect one numeric attribute from every vote.

    Args:
        votes (Sequence[Vote]): The votes.
        key (str): Attribute name, e.g. "confidence".
        method (str): Combination method, reported on failure.

    Returns:
        list[float]: The attribute values in vote order.

    Raises:
        InsufficientVoteDataError: If any vote lacks the attribute.
    """
    values = [getattr(vote, key) for vote in votes]
    if any(value is None for value in values):
        raise InsufficientVoteDataError(method, key)
    return values


def _error_weights(errors: Sequence[float]) -> list[float]:
    """Map error bounds to weights in `(0, 1]`, the smallest error weighing 1.

    Args:
        errors (Sequence[float]): Error bound of each vote.

    Returns:
        list[float]: `exp((min - error) / range * 10)` per vote, or 1 for
            every vote when all errors are equal.
    """
    low = min(errors)
    spread = max(errors) - low
    if spread == 0:
        return [1.0] * len(errors)
    return [math.exp((low - error) / spread * _TOP_RANGE) for error in errors]


def _categorical_confidence(ballots: Sequence[_Ballot], winner: Any, tally: dict[Any, list[float]]) -> float:
    """Return the confidence of the winning category.

    With per-vote confidences this is their mean over the winning ballots,
    weighted like the tally. Otherwise it is the Wilson score of the winner's
    weight over the total weight, using the summed vote counts as sample size.

    Args:
        ballots (Sequence[_Ballot]): The tallied ballots.
        winner (Any): Winning category.
        tally (dict[Any, list[float]]): Accumulated weight and first arrival
            index per category.

    Returns:
        float: The combined confidence.
    """
    if all(ballot.confidence is not None for ballot in ballots):
        winning = [ballot for ballot in ballots if ballot.category == winner]
        total_weight = sum(ballot.weight for ballot in winning)
        if total_weight == 0:
            return 0.0
        return sum(ballot.confidence * ballot.weight for ballot in winning) / total_weight  # type: ignore[operator]
    weight_total = sum(entry[0] for entry in tally.values())
    sample_size = sum(ballot.count or 0 for ballot in ballots) or weight_total
    return stats.ws_confidence(tally[winner][0], weight_total, sample_size=sample_size)


def _grouped_distribution(votes: Sequence[Vote]) -> tuple[list[tuple[float, int]], DistributionUnit]:
    """Merge the numeric distributions of regression votes.

    Args:
        votes (Sequence[Vote]): Regression votes.

    Returns:
        tuple[list[tuple[float, int]], DistributionUnit]: The value-sorted
            table collapsed to at most `BINS_LIMIT` bins, and its unit.
    """
    merged: list[tuple[float, int]] = []
    unit: DistributionUnit = "counts"
    for vote in votes:
        merged = stats.merge_distributions(merged, vote.distribution or [])  # type: ignore[arg-type]
        if vote.distribution_unit == "bins":
            unit = "bins"
    merged = sorted(merged, key=lambda entry: entry[0])
    if len(merged) > stats.BINS_LIMIT:
        unit = "bins"
    return stats.merge_bins(merged, stats.BINS_LIMIT), unit
