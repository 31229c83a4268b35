"""Tests for combining member votes with MultiVote."""

from __future__ import annotations

import math
from typing import Any

import pytest
from pytest_check import check

from treescore import stats
from treescore.exceptions import InsufficientVoteDataError
from treescore.models import Vote
from treescore.multivote import MultiVote


def _votes(*predictions: str | float, **members: Any) -> MultiVote:
    return MultiVote(Vote(prediction=prediction, **members) for prediction in predictions)


class TestCollection:
    """Tests for vote ordering and the collection interface."""

    def test_votes_without_order_are_renumbered(self) -> None:
        """Votes passed without an arrival index should be numbered from 0 in the given order."""
        # Act
        multivote = MultiVote([Vote(prediction="A", order=7), Vote(prediction="B")])

        # Assert
        with check:
            assert [vote.order for vote in multivote] == [0, 1]
        with check:
            assert len(multivote) == 2

    def test_explicit_orders_are_kept(self) -> None:
        """Votes that all carry an arrival index should keep it."""
        # Act
        multivote = MultiVote([Vote(prediction="A", order=4), Vote(prediction="B", order=2)])

        # Assert
        with check:
            assert [vote.order for vote in multivote.votes] == [4, 2]
        with check:
            assert multivote.next_order() == 5

    def test_append_and_extend_stamp_next_order(self) -> None:
        """Appended votes should receive increasing arrival indices regardless of their own."""
        # Arrange
        multivote = MultiVote()

        # Act
        first_order = multivote.next_order()
        multivote.append(Vote(prediction="A", order=9))
        multivote.extend([Vote(prediction="B"), Vote(prediction="C", order=0)])

        # Assert
        with check:
            assert first_order == 0
        with check:
            assert [vote.order for vote in multivote] == [0, 1, 2]
        with check:
            assert [vote.prediction for vote in multivote] == ["A", "B", "C"]

    def test_regression_detection(self) -> None:
        """A collection is a regression only when every prediction is a number."""
        with check:
            assert _votes(1.0, 2.5).is_regression
        with check:
            assert not _votes("A", "B").is_regression
        with check:
            assert not MultiVote().is_regression

    @pytest.mark.parametrize("method", ["plurality", "majority"], ids=["empty", "unknown-method"])
    def test_invalid_combinations_raise(self, method: str) -> None:
        """Empty collections and unknown methods cannot be combined.

        Args:
            method (str): Combination method.
        """
        multivote = MultiVote() if method == "plurality" else _votes("A")

        with pytest.raises(ValueError):
            multivote.combine(method)  # type: ignore[arg-type]


class TestCategorical:
    """Tests for classification combinations."""

    def test_plurality_counts_votes(self) -> None:
        """The category with the most votes should win."""
        assert _votes("A", "B", "A").combine("plurality").prediction == "A"

    @pytest.mark.parametrize(("predictions", "expected"), [(("A", "B"), "A"), (("B", "A"), "B")])
    def test_ties_go_to_the_earliest_vote(self, predictions: tuple[str, ...], expected: str) -> None:
        """Equal tallies should be won by the category whose first vote arrived first.

        Args:
            predictions (tuple[str, ...]): Predictions in arrival order.
            expected (str): Expected winner.
        """
        assert _votes(*predictions).combine("plurality").prediction == expected

    def test_tie_break_uses_arrival_index_not_position(self) -> None:
        """Arrival indices decide ties even when they differ from the list position."""
        # Arrange
        multivote = MultiVote([Vote(prediction="B", order=5), Vote(prediction="A", order=2)])

        # Act / Assert
        assert multivote.combine("plurality").prediction == "A"

    def test_plurality_confidence_is_mean_of_winning_votes(self) -> None:
        """With per-vote confidences the combined confidence averages the winning votes."""
        # Arrange
        multivote = MultiVote(
            [
                Vote(prediction="A", confidence=0.8),
                Vote(prediction="B", confidence=0.6),
                Vote(prediction="A", confidence=0.4),
            ]
        )

        # Act
        result = multivote.combine("plurality", add_confidence=True)

        # Assert
        assert result.to_dict() == {"prediction": "A", "confidence": pytest.approx(0.6)}

    def test_confidence_method_weights_by_confidence(self) -> None:
        """One confident vote can outweigh two weak ones."""
        # Arrange
        multivote = MultiVote(
            [
                Vote(prediction="A", confidence=0.3),
                Vote(prediction="B", confidence=0.9),
                Vote(prediction="A", confidence=0.2),
            ]
        )

        # Act
        result = multivote.combine("confidence", add_confidence=True)

        # Assert
        with check:
            assert result.prediction == "B"
        with check:
            assert result.confidence == pytest.approx(0.9)

    def test_confidence_method_requires_confidences(self) -> None:
        """Votes without confidence cannot be weighted by it."""
        with pytest.raises(InsufficientVoteDataError) as exc_info:
            MultiVote([Vote(prediction="A", confidence=0.5), Vote(prediction="B")]).combine("confidence")

        assert exc_info.value.missing_key == "confidence"

    def test_probability_method_sums_category_shares(self) -> None:
        """Each vote spreads its weight over its distribution.

        A: 0.75 + 0.25 + 0.75 = 1.75, B: 0.25 + 0.75 + 0.25 = 1.25.
        """
        # Arrange
        multivote = MultiVote(
            [
                Vote(prediction="A", distribution=[("A", 3), ("B", 1)], count=4),
                Vote(prediction="B", distribution=[("B", 3), ("A", 1)], count=4),
                Vote(prediction="A", distribution=[("A", 3), ("B", 1)], count=4),
            ]
        )

        # Act
        result = multivote.combine("probability", add_confidence=True, add_distribution=True, add_count=True)

        # Assert
        with check:
            assert result.prediction == "A"
        with check:
            assert result.confidence == pytest.approx(stats.ws_confidence(1.75, 3.0, sample_size=12))
        with check:
            assert result.distribution == [("A", 7), ("B", 5)]
        with check:
            assert result.distribution_unit == "categories"
        with check:
            assert result.count == 12

    def test_probability_method_requires_distributions(self) -> None:
        """Votes without a distribution cannot be weighted by probability."""
        with pytest.raises(InsufficientVoteDataError) as exc_info:
            _votes("A", "B").combine("probability")

        assert exc_info.value.missing_key == "distribution"

    @pytest.mark.parametrize(
        ("threshold_k", "expected"),
        [(1, "B"), (2, "A")],
        ids=["enough-votes", "too-few-votes"],
    )
    def test_threshold_singles_out_a_category(self, threshold_k: int, expected: str) -> None:
        """The category wins when it has at least k votes; otherwise the other votes decide.

        Args:
            threshold_k (int): Minimum number of votes for "B".
            expected (str): Expected winner.
        """
        # Arrange
        multivote = MultiVote(
            [
                Vote(prediction="A", confidence=0.5),
                Vote(prediction="A", confidence=0.6),
                Vote(prediction="B", confidence=0.9),
            ]
        )

        # Act
        result = multivote.combine("threshold", threshold_k=threshold_k, threshold_category="B", add_confidence=True)

        # Assert
        with check:
            assert result.prediction == expected
        with check:
            assert result.confidence == pytest.approx(0.9 if expected == "B" else 0.55)

    @pytest.mark.parametrize(
        ("threshold_k", "threshold_category"),
        [(None, "B"), (0, "B"), (4, "B"), (1, None), (1, "")],
        ids=["no-k", "zero-k", "k-above-votes", "no-category", "empty-category"],
    )
    def test_threshold_arguments_are_validated(self, threshold_k: int | None, threshold_category: str | None) -> None:
        """Invalid threshold arguments should be rejected.

        Args:
            threshold_k (int | None): Minimum number of votes.
            threshold_category (str | None): Category singled out.
        """
        with pytest.raises(ValueError):
            _votes("A", "A", "B").combine("threshold", threshold_k=threshold_k, threshold_category=threshold_category)


class TestRegression:
    """Tests for regression combinations."""

    def test_plurality_averages_predictions(self) -> None:
        """Every non-confidence method averages regression votes uniformly."""
        # Act
        result = _votes(1.0, 2.0, 6.0).combine("plurality")

        # Assert
        assert result.prediction == pytest.approx(3.0)

    def test_confidence_method_favours_the_smallest_error(self) -> None:
        """Weights decay exponentially with the error bound relative to the best vote."""
        # Arrange
        multivote = MultiVote(
            [
                Vote(prediction=10.0, confidence=1.0),
                Vote(prediction=20.0, confidence=3.0),
            ]
        )
        weight = math.exp(-10.0)

        # Act
        result = multivote.combine("confidence", add_confidence=True)

        # Assert
        with check:
            assert result.prediction == pytest.approx((10.0 + 20.0 * weight) / (1 + weight))
        with check:
            assert result.prediction == pytest.approx(10.0, abs=1e-3)
        with check:
            assert result.confidence == pytest.approx((1.0 + 3.0 * weight) / (1 + weight))

    def test_equal_errors_weigh_equally(self) -> None:
        """When every vote has the same error the confidence method is a plain average."""
        # Act
        result = _votes(10.0, 20.0, confidence=2.0).combine("confidence")

        # Assert
        assert result.prediction == pytest.approx(15.0)

    def test_summary_extras(self) -> None:
        """Median, extremes, count and the merged distribution can be requested."""
        # Arrange
        multivote = MultiVote(
            [
                Vote(prediction=2.0, median=2.0, min=1.0, max=3.0, count=5, distribution=[(1.0, 2), (3.0, 3)]),
                Vote(prediction=4.0, median=5.0, min=0.5, max=6.0, count=4, distribution=[(3.0, 1), (6.0, 3)]),
            ]
        )

        # Act
        result = multivote.combine(
            "plurality",
            add_median=True,
            add_min=True,
            add_max=True,
            add_count=True,
            add_distribution=True,
        )

        # Assert
        with check:
            assert result.median == pytest.approx(3.5)
        with check:
            assert (result.min, result.max) == (0.5, 6.0)
        with check:
            assert result.count == 9
        with check:
            assert result.distribution == [(1.0, 2), (3.0, 4), (6.0, 3)]
        with check:
            assert result.distribution_unit == "counts"

    def test_median_requires_vote_medians(self) -> None:
        """Requesting the median fails when a vote carries none."""
        with pytest.raises(InsufficientVoteDataError) as exc_info:
            _votes(1.0, 2.0).combine("plurality", add_median=True)

        assert exc_info.value.missing_key == "median"
