"""Custom exceptions for treescore.

Construction-time errors (the model cannot be built):
- ModelNotReadyError: The resource has not finished training.
- MalformedModelError: The definition lacks required members or carries
  unrecognized tags.

Prediction-time errors (caller contract violations or defects):
- MissingNumericFieldError: A numeric field was omitted for a model that does
  not accept missing numerics.
- PredicateTypeError: An input value's type does not fit the field's optype.
- InsufficientVoteDataError: A vote combination method needs data the votes
  do not carry.
- PredictionCancelledError: An ensemble fan-out was cancelled.

All of them derive from TreeScoreError; catch it to handle any failure raised
by the library.
"""

from __future__ import annotations

from typing import Any

FINISHED_STATUS_CODE = 5


class TreeScoreError(Exception):
    """Base exception for all treescore errors."""


class ModelNotReadyError(TreeScoreError):
    """Raised when a resource definition is not in the finished state.

    Attributes:
        status_code (int | None): The status code found in the definition, or
            `None` when the definition has no status at all.

    Examples:
        >>> err = ModelNotReadyError(status_code=3)
        >>> err.status_code
        3
    """

    status_code: int | None

    def __init__(self, status_code: int | None) -> None:
        """Initialize ModelNotReadyError.

        Args:
            status_code (int | None): The status code found in the definition.
        """
        super().__init__(
            f"Resource is not ready to predict: status code {status_code!r}, expected {FINISHED_STATUS_CODE}"
        )
        self.status_code = status_code


class MalformedModelError(TreeScoreError, ValueError):
    """Raised when a model or ensemble definition cannot be parsed.

    Attributes:
        path (str): Location inside the definition where the problem was
            found, e.g. `"model.root.children[1].predicate"`.

    Examples:
        >>> err = MalformedModelError("node has no id", path="model.root")
        >>> err.path
        'model.root'
    """

    path: str

    def __init__(self, message: str, *, path: str = "") -> None:
        """Initialize MalformedModelError.

        Args:
            message (str): Description of the problem.
            path (str): Location inside the definition. Defaults to "".
        """
        super().__init__(f"{message} (at {path})" if path else message)
        self.path = path

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message and path.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, path={self.path!r})"


class MissingNumericFieldError(TreeScoreError, ValueError):
    """Raised when a numeric input field is absent and the model requires it.

    Attributes:
        field_id (str): Id of the omitted field.
        field_name (str | None): Display name of the omitted field, if known.
    """

    field_id: str
    field_name: str | None

    def __init__(self, field_id: str, field_name: str | None = None) -> None:
        """Initialize MissingNumericFieldError.

        Args:
            field_id (str): Id of the omitted field.
            field_name (str | None): Display name of the omitted field.
        """
        label = f"{field_name!r} ({field_id})" if field_name else field_id
        super().__init__(f"Numeric field {label} is required: the model does not accept missing numerics")
        self.field_id = field_id
        self.field_name = field_name


class PredicateTypeError(TreeScoreError, TypeError):
    """Raised when an input value cannot be compared the way the field requires.

    Attributes:
        field_id (str): Id of the field being evaluated.
        value (Any): The offending input value.

    Examples:
        >>> err = PredicateTypeError("000001", "abc", reason="not numeric")
        >>> err.field_id
        '000001'
    """

    field_id: str
    value: Any

    def __init__(self, field_id: str, value: Any, *, reason: str) -> None:
        """Initialize PredicateTypeError.

        Args:
            field_id (str): Id of the field being evaluated.
            value (Any): The offending input value.
            reason (str): Why the value does not fit.
        """
        super().__init__(f"Invalid value {value!r} for field {field_id}: {reason}")
        self.field_id = field_id
        self.value = value

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message, field id and value.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, field_id={self.field_id!r}, value={self.value!r})"


class InsufficientVoteDataError(TreeScoreError, ValueError):
    """Raised when votes lack the data a combination method relies on.

    Attributes:
        method (str): The combination method that was requested.
        missing_key (str): The vote attribute that is absent.
    """

    method: str
    missing_key: str

    def __init__(self, method: str, missing_key: str) -> None:
        """Initialize InsufficientVoteDataError.

        Args:
            method (str): The combination method that was requested.
            missing_key (str): The vote attribute that is absent.
        """
        super().__init__(f"Cannot combine votes with method {method!r}: some votes have no {missing_key!r}")
        self.method = method
        self.missing_key = missing_key


class PredictionCancelledError(TreeScoreError):
    """Raised when a cancellation token is set during an ensemble fan-out.

    Attributes:
        completed (int): Number of member models evaluated before cancellation.
    """

    completed: int

    def __init__(self, completed: int) -> None:
        """Initialize PredictionCancelledError.

        Args:
            completed (int): Number of member models evaluated before cancellation.
        """
        super().__init__(f"Prediction cancelled after {completed} model evaluation(s)")
        self.completed = completed
