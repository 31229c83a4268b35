"""Tests for custom exceptions.

This module tests the exception classes raised while loading definitions and
scoring records, ensuring proper inheritance, attribute storage, and
catchability patterns.
"""

from __future__ import annotations

import pytest
from pytest_check import check

from treescore.exceptions import (
    FINISHED_STATUS_CODE,
    InsufficientVoteDataError,
    MalformedModelError,
    MissingNumericFieldError,
    ModelNotReadyError,
    PredicateTypeError,
    PredictionCancelledError,
    TreeScoreError,
)


class TestHierarchy:
    """Tests for the common base class and the builtin bases."""

    @pytest.mark.parametrize(
        ("error", "builtin"),
        [
            (ModelNotReadyError(3), Exception),
            (MalformedModelError("bad", path="model"), ValueError),
            (MissingNumericFieldError("000001", "petal width"), ValueError),
            (PredicateTypeError("000001", "abc", reason="not numeric"), TypeError),
            (InsufficientVoteDataError("confidence", "confidence"), ValueError),
            (PredictionCancelledError(2), Exception),
        ],
        ids=["not-ready", "malformed", "missing-numeric", "predicate-type", "vote-data", "cancelled"],
    )
    def test_every_error_is_catchable_as_base_and_builtin(self, error: TreeScoreError, builtin: type) -> None:
        """Verify each error is a TreeScoreError and an instance of its builtin base.

        Args:
            error (TreeScoreError): The exception instance.
            builtin (type): The builtin exception class it must also derive from.
        """
        # Act / Assert
        with pytest.raises(TreeScoreError):
            raise error
        with check:
            assert isinstance(error, builtin)


class TestModelNotReadyError:
    """Tests for ModelNotReadyError."""

    def test_stores_status_code_and_mentions_expected_code(self) -> None:
        """The status found should be stored and the message should name the finished code."""
        # Act
        error = ModelNotReadyError(status_code=1)

        # Assert
        with check:
            assert error.status_code == 1
        with check:
            assert str(FINISHED_STATUS_CODE) in str(error)

    def test_missing_status_is_none(self) -> None:
        """A definition without status should report None."""
        assert ModelNotReadyError(None).status_code is None


class TestMalformedModelError:
    """Tests for MalformedModelError."""

    def test_message_includes_path(self) -> None:
        """The location should be stored and appended to the message."""
        # Act
        error = MalformedModelError("node has no 'id' member", path="model.root.children[0]")

        # Assert
        with check:
            assert error.path == "model.root.children[0]"
        with check:
            assert str(error) == "node has no 'id' member (at model.root.children[0])"

    def test_without_path_message_is_unchanged(self) -> None:
        """An empty path should leave the message as given."""
        # Act
        error = MalformedModelError("invalid JSON")

        # Assert
        with check:
            assert str(error) == "invalid JSON"
        with check:
            assert error.path == ""

    def test_repr_includes_path(self) -> None:
        """repr should expose the path for debugging."""
        assert "path='fields.000001'" in repr(MalformedModelError("bad", path="fields.000001"))


class TestPredictionErrors:
    """Tests for the errors raised while scoring."""

    def test_missing_numeric_field_attributes(self) -> None:
        """The omitted field should be reported by id and name."""
        # Act
        error = MissingNumericFieldError("000003", "petal width")

        # Assert
        with check:
            assert error.field_id == "000003"
        with check:
            assert error.field_name == "petal width"
        with check:
            assert "'petal width' (000003)" in str(error)

    def test_predicate_type_error_attributes(self) -> None:
        """The offending value and field should be stored and shown in repr."""
        # Act
        error = PredicateTypeError("000000", "abc", reason="numeric field received a non-numeric string")

        # Assert
        with check:
            assert error.field_id == "000000"
        with check:
            assert error.value == "abc"
        with check:
            assert "non-numeric string" in str(error)
        with check:
            assert "value='abc'" in repr(error)

    def test_insufficient_vote_data_attributes(self) -> None:
        """The method and missing attribute should be stored."""
        # Act
        error = InsufficientVoteDataError("probability", "distribution")

        # Assert
        with check:
            assert (error.method, error.missing_key) == ("probability", "distribution")
        with check:
            assert "'distribution'" in str(error)

    def test_prediction_cancelled_counts_completed(self) -> None:
        """The number of evaluated members should be stored."""
        assert PredictionCancelledError(completed=4).completed == 4
