"""Pydantic value objects and type aliases shared across treescore."""

from __future__ import annotations

from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

Optype: TypeAlias = Literal["numeric", "categorical", "text", "items"]

TokenMode: TypeAlias = Literal["tokens_only", "full_terms_only", "all"]

Operator: TypeAlias = Literal["=", "!=", "<", "<=", ">", ">=", "in", "TRUE"]

MissingStrategy: TypeAlias = Literal["last_prediction", "proportional"]

CombinationMethod: TypeAlias = Literal["plurality", "confidence", "probability", "threshold"]

DistributionUnit: TypeAlias = Literal["counts", "bins", "categories"]

PredictionValue: TypeAlias = str | float

DistributionEntry: TypeAlias = tuple[str | float, int]

# ---------------------------------------------------------------------------
# Public models -- Predictions
# ---------------------------------------------------------------------------


class TreePrediction(BaseModel):
    """Raw outcome of descending a decision tree for one input record.

    Attributes:
        prediction (PredictionValue): Winning category or predicted number.
        confidence (float): Wilson score (classification) or error bound
            (regression). NaN when it cannot be computed.
        count (int): Training instances behind the prediction.
        distribution (list[DistributionEntry]): `(value, count)` table the
            prediction was drawn from.
        distribution_unit (DistributionUnit): Whether `distribution` holds
            categories, exact numeric counts or collapsed bins.
        median (float | None): Median of the distribution (regression only).
        min (float | None): Smallest training value reached (regression only).
        max (float | None): Largest training value reached (regression only).
        path (list[str]): Rules of the predicates followed from the root.
        children (list[int]): Arena indices of the children of the node
            where the descent stopped.

    Examples:
        >>> TreePrediction(prediction="Iris-setosa", confidence=0.93, count=50)
        TreePrediction(prediction='Iris-setosa', confidence=0.93, count=50, ...)  # doctest: +SKIP
    """

    model_config = ConfigDict(frozen=True)

    prediction: PredictionValue = Field(description="Winning category or predicted number.")
    confidence: float = Field(description="Wilson score or regression error bound; NaN when undefined.")
    count: int = Field(ge=0, description="Training instances behind the prediction.")
    distribution: list[DistributionEntry] = Field(
        default_factory=list,
        description="(value, count) table the prediction was drawn from.",
    )
    distribution_unit: DistributionUnit = Field(
        default="categories",
        description="Unit of the distribution entries: categories, counts or bins.",
    )
    median: float | None = Field(default=None, description="Median of the distribution (regression only).")
    min: float | None = Field(default=None, description="Minimum training value reached (regression only).")
    max: float | None = Field(default=None, description="Maximum training value reached (regression only).")
    path: list[str] = Field(default_factory=list, description="Rules followed from the root.")
    children: list[int] = Field(
        default_factory=list,
        description="Arena indices of the children of the node where the descent stopped.",
    )


class PredictionResult(BaseModel):
    """Caller-facing prediction, holding only what was asked for.

    Only `prediction` is always set. Every other attribute stays `None`
    unless the matching `add_*` option was requested.

    Examples:
        >>> result = PredictionResult(prediction="Iris-setosa", confidence=0.93)
        >>> result.to_dict()
        {'prediction': 'Iris-setosa', 'confidence': 0.93}
    """

    model_config = ConfigDict(frozen=True)

    prediction: PredictionValue = Field(description="Winning category or predicted number.")
    confidence: float | None = Field(default=None, description="Confidence of the prediction.")
    probability: float | None = Field(
        default=None,
        description="Share of the distribution held by the predicted category (classification only).",
    )
    path: list[str] | None = Field(default=None, description="Rules followed from the root.")
    distribution: list[DistributionEntry] | None = Field(default=None, description="(value, count) table.")
    distribution_unit: DistributionUnit | None = Field(default=None, description="Unit of the distribution.")
    count: int | None = Field(default=None, description="Training instances behind the prediction.")
    median: float | None = Field(default=None, description="Median of the distribution.")
    min: float | None = Field(default=None, description="Minimum training value reached.")
    max: float | None = Field(default=None, description="Maximum training value reached.")
    next: str | None = Field(default=None, description="Name of the field that splits the node reached.")

    def to_dict(self) -> dict[str, Any]:
        """Return the populated attributes as a plain dictionary.

        Returns:
            dict[str, Any]: Mapping of attribute name to value, omitting
                attributes that were not requested.
        """
        return self.model_dump(exclude_none=True)


class CategoryPrediction(BaseModel):
    """One entry of a top-K classification answer.

    Attributes:
        prediction (str): Category.
        confidence (float): Wilson score of the category count over the total.
        probability (float): Category count divided by the total.
        count (int): Training instances of the category.
    """

    model_config = ConfigDict(frozen=True)

    prediction: str = Field(description="Category.")
    confidence: float = Field(description="Wilson score of the category count over the total.")
    probability: float = Field(ge=0.0, le=1.0, description="Category count divided by the total.")
    count: int = Field(ge=0, description="Training instances of the category.")


class Vote(BaseModel):
    """One member model's prediction inside an ensemble combination.

    `order` is the arrival index of the vote; it only breaks ties between
    categories of equal weight and is never used as a weight.

    Examples:
        >>> Vote(prediction="A", confidence=0.8, order=0).order
        0
    """

    model_config = ConfigDict(frozen=True)

    prediction: PredictionValue = Field(description="Category or number predicted by the member model.")
    confidence: float | None = Field(default=None, description="Confidence or error bound of the member.")
    probability: float | None = Field(default=None, description="Probability of the predicted category.")
    distribution: list[DistributionEntry] | None = Field(default=None, description="(value, count) table.")
    distribution_unit: DistributionUnit | None = Field(default=None, description="Unit of the distribution.")
    count: int | None = Field(default=None, ge=0, description="Training instances behind the prediction.")
    median: float | None = Field(default=None, description="Median of the member distribution.")
    min: float | None = Field(default=None, description="Minimum training value reached.")
    max: float | None = Field(default=None, description="Maximum training value reached.")
    order: int | None = Field(default=None, ge=0, description="Arrival index used to break ties.")


# ---------------------------------------------------------------------------
# Public models -- Options
# ---------------------------------------------------------------------------


class PredictionOptions(BaseModel):
    """Options accepted by `Model.predict`.

    `by_name` and `missing_strategy` default to `None`, meaning the value from
    the active `ScoringSettings` is used.

    Examples:
        >>> opts = PredictionOptions(missing_strategy="proportional", add_path=True)
        >>> opts.add_confidence
        True
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    by_name: bool | None = Field(
        default=None,
        description="Whether input keys are field names (True) or field ids (False).",
    )
    missing_strategy: MissingStrategy | None = Field(
        default=None,
        description="How to handle input records missing a split field.",
    )
    multiple: int | None = Field(
        default=None,
        ge=1,
        description="Return the top-K categories instead of a single prediction (classification only).",
    )
    add_confidence: bool = Field(default=True, description="Include the confidence.")
    add_probability: bool = Field(default=False, description="Include the predicted category probability.")
    add_distribution: bool = Field(default=False, description="Include the distribution and its unit.")
    add_count: bool = Field(default=False, description="Include the instance count.")
    add_median: bool = Field(default=False, description="Include the median (regression only).")
    add_min: bool = Field(default=False, description="Include the minimum (regression only).")
    add_max: bool = Field(default=False, description="Include the maximum (regression only).")
    add_path: bool = Field(default=False, description="Include the rules followed from the root.")
    add_next: bool = Field(default=False, description="Include the name of the next split field.")


class EnsembleOptions(PredictionOptions):
    """Options accepted by `Ensemble.predict`.

    Examples:
        >>> EnsembleOptions(method="threshold", threshold_k=1, threshold_category="B").method
        'threshold'
    """

    method: CombinationMethod = Field(default="plurality", description="How member votes are weighted.")
    threshold_k: int | None = Field(
        default=None,
        ge=1,
        description="Minimum number of votes for `threshold_category` (threshold method only).",
    )
    threshold_category: str | None = Field(
        default=None,
        min_length=1,
        description="Category singled out by the threshold method.",
    )
    use_median: bool = Field(
        default=False,
        description="Replace each regression vote's prediction with its median.",
    )

    @model_validator(mode="after")
    def _validate_threshold_arguments(self) -> EnsembleOptions:
        """Validate that the threshold method carries its arguments.

        Returns:
            EnsembleOptions: The validated model instance.

        Raises:
            ValueError: If `method` is "threshold" and either `threshold_k`
                or `threshold_category` is missing.
        """
        if self.method == "threshold" and (self.threshold_k is None or self.threshold_category is None):
            raise ValueError("method 'threshold' requires both threshold_k and threshold_category")
        return self
