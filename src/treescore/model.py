"""Local scoring of a single decision-tree model definition."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, TypeVar

import polars as pl
from loguru import logger

from treescore import stats
from treescore.config import ScoringSettings, get_settings
from treescore.exceptions import (
    FINISHED_STATUS_CODE,
    MalformedModelError,
    MissingNumericFieldError,
    ModelNotReadyError,
)
from treescore.fields import FieldView
from treescore.logging import PREDICTION_LEVEL
from treescore.models import CategoryPrediction, PredictionOptions, PredictionResult, TreePrediction
from treescore.tree import DecisionTree

# ---------------------------------------------------------------------------
# Public interface -- Model
# ---------------------------------------------------------------------------


class Model:
    """A decision-tree model scored locally from its JSON definition.

    Attributes:
        resource_id (str | None): Resource id of the definition, e.g.
            `"model/5143a51a37203f2cf7000972"`.
        objective_id (str | None): Id of the objective field.
        locale (str | None): Locale the model was trained with.
        description (str): Free-text description of the model.
        missing_numerics (bool): Whether numeric fields may be absent from
            input records.
        fields (FieldView): Field view over the model's input fields.
        tree (DecisionTree): The node arena.
        settings (ScoringSettings): Defaults for unset prediction options.

    Examples:
        >>> model = Model(definition)  # doctest: +SKIP
        >>> model.predict({"petal width": 0.5}).prediction  # doctest: +SKIP
        'Iris-setosa'
    """

    def __init__(self, definition: Mapping[str, Any], *, settings: ScoringSettings | None = None) -> None:
        """Parse a model definition.

        Args:
            definition (Mapping[str, Any]): The model resource, optionally
                wrapped in an `object` member.
            settings (ScoringSettings | None): Defaults for unset prediction
                options. Uses `get_settings()` when None.

        Raises:
            ModelNotReadyError: If the resource status code is not 5.
            MalformedModelError: If required members are missing or invalid.
        """
        self.settings = settings or get_settings()
        resource = _unwrap(definition)
        _check_status(resource)
        self.resource_id: str | None = resource.get("resource")

        model = resource.get("model")
        if not isinstance(model, Mapping):
            raise MalformedModelError("definition has no 'model' object", path="model")
        root = model.get("root")
        if root is None:
            raise MalformedModelError("model has no tree root", path="model.root")

        self.objective_id: str | None = _objective_id(resource, model)
        self.locale: str | None = resource.get("locale")
        self.description: str = resource.get("description", "")
        self.missing_numerics: bool = bool(model.get("missing_numerics", True))
        self._importance: list[tuple[str, float]] = [
            (field_id, float(importance)) for field_id, importance in model.get("importance", [])
        ]
        missing_tokens = model.get("missing_tokens", self.settings.missing_tokens)
        self.fields = FieldView.from_json(_model_fields(model), self.objective_id, missing_tokens=missing_tokens)

        objective = self.fields.get(self.objective_id)
        regression = objective.optype == "numeric" if objective is not None else None
        training = (model.get("distribution") or {}).get("training")
        self.tree = DecisionTree(root, self.fields, regression=regression, training_distribution=training)
        logger.info(
            "Model loaded",
            model_id=self.resource_id,
            node_count=self.tree.node_count,
            depth=self.tree.depth,
            regression=self.tree.regression,
        )

    @classmethod
    def from_json(cls, text: str | bytes, *, settings: ScoringSettings | None = None) -> Model:
        """Parse a model definition from a JSON document.

        Args:
            text (str | bytes): The JSON document.
            settings (ScoringSettings | None): Defaults for unset prediction options.

        Returns:
            Model: The parsed model.

        Raises:
            MalformedModelError: If the document is not valid JSON or not a
                model definition.
            ModelNotReadyError: If the resource status code is not 5.
        """
        try:
            definition = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedModelError(f"invalid JSON: {exc.msg}") from exc
        if not isinstance(definition, Mapping):
            raise MalformedModelError("model definition must be a JSON object")
        return cls(definition, settings=settings)

    @property
    def is_regression(self) -> bool:
        """bool: Whether the model predicts a number."""
        return self.tree.regression

    def field_importance(self) -> list[tuple[str, float]]:
        """Return the importance of each input field, most important first.

        Returns:
            list[tuple[str, float]]: `(field id, importance)` pairs.
        """
        return sorted(self._importance, key=lambda item: item[1], reverse=True)

    # -- Prediction ---------------------------------------------------------

    def predict(
        self,
        input_data: Mapping[str, Any],
        options: PredictionOptions | None = None,
        **overrides: Any,
    ) -> PredictionResult | list[CategoryPrediction]:
        """Predict the objective field for one input record.

        Args:
            input_data (Mapping[str, Any]): Input values keyed by field name
                (or id when `by_name` is False).
            options (PredictionOptions | None): Prediction options.
            **overrides (Any): Individual option values, applied on top of
                `options`, e.g. `add_path=True`.

        Returns:
            PredictionResult | list[CategoryPrediction]: The prediction with
                the requested extras, or the top-K categories when
                `multiple` is set on a classification model.

        Raises:
            MissingNumericFieldError: If the model does not accept missing
                numerics and a numeric split field is absent.
            PredicateTypeError: If an input value does not fit its field.
            pydantic.ValidationError: If an option value is invalid.

        Examples:
            >>> model.predict({"petal width": 0.5}, add_path=True).path  # doctest: +SKIP
            ['petal width <= 0.8']
        """
        opts = resolve_options(PredictionOptions, options, overrides)
        outcome = self.predict_tree(input_data, by_name=opts.by_name, missing_strategy=opts.missing_strategy)
        logger.log(
            PREDICTION_LEVEL,
            "Model prediction",
            model_id=self.resource_id,
            prediction=outcome.prediction,
            confidence=outcome.confidence,
        )
        if opts.multiple is not None and not self.is_regression:
            return _top_categories(outcome, opts.multiple)
        return self._shape(outcome, opts)

    def predict_tree(
        self,
        input_data: Mapping[str, Any],
        *,
        by_name: bool | None = None,
        missing_strategy: str | None = None,
    ) -> TreePrediction:
        """Filter an input record and descend the tree.

        Args:
            input_data (Mapping[str, Any]): Raw input record.
            by_name (bool | None): Whether keys are field names; defaults to
                the settings value.
            missing_strategy (str | None): Missing-value strategy; defaults to
                the settings value.

        Returns:
            TreePrediction: The raw tree outcome.

        Raises:
            MissingNumericFieldError: If a required numeric field is absent.
            PredicateTypeError: If an input value does not fit its field.
        """
        by_name = self.settings.by_name if by_name is None else by_name
        strategy = missing_strategy or self.settings.missing_strategy
        filtered = self.fields.filter_input(input_data, by_name=by_name)
        self._check_missing_numerics(filtered)
        return self.tree.predict(filtered, strategy)  # type: ignore[arg-type]

    def predict_frame(
        self,
        df: pl.DataFrame,
        options: PredictionOptions | None = None,
        **overrides: Any,
    ) -> pl.DataFrame:
        """Score every row of a DataFrame.

        Columns are matched to fields the same way input record keys are.

        Args:
            df (pl.DataFrame): Input records, one per row.
            options (PredictionOptions | None): Prediction options.
            **overrides (Any): Individual option values.

        Returns:
            pl.DataFrame: `df` with `prediction` and `confidence` columns
                appended.

        Raises:
            ValueError: If `multiple` is requested.
        """
        opts = resolve_options(PredictionOptions, options, overrides)
        if opts.multiple is not None:
            raise ValueError("predict_frame does not support the 'multiple' option")
        predictions: list[Any] = []
        confidences: list[float | None] = []
        for row in df.iter_rows(named=True):
            outcome = self.predict_tree(row, by_name=opts.by_name, missing_strategy=opts.missing_strategy)
            predictions.append(outcome.prediction)
            confidences.append(outcome.confidence)
        logger.debug("DataFrame scored", model_id=self.resource_id, rows=df.height)
        dtype = pl.Float64 if self.is_regression else pl.String
        return df.with_columns(
            pl.Series("prediction", predictions, dtype=dtype),
            pl.Series("confidence", confidences, dtype=pl.Float64),
        )

    def next_field(self, outcome: TreePrediction) -> str | None:
        """Return the display name of the field that splits the node reached.

        Args:
            outcome (TreePrediction): A tree outcome of this model.

        Returns:
            str | None: The field name, or None when the node is a leaf.
        """
        for child in outcome.children:
            predicate = self.tree.node(child).predicate
            if not predicate.is_true and predicate.field_id is not None:
                return self.fields.name(predicate.field_id)
        return None

    def _shape(self, outcome: TreePrediction, opts: PredictionOptions) -> PredictionResult:
        regression = self.is_regression
        return PredictionResult(
            prediction=outcome.prediction,
            confidence=outcome.confidence if opts.add_confidence else None,
            probability=_probability(outcome) if opts.add_probability and not regression else None,
            path=outcome.path if opts.add_path else None,
            distribution=outcome.distribution if opts.add_distribution else None,
            distribution_unit=outcome.distribution_unit if opts.add_distribution else None,
            count=outcome.count if opts.add_count else None,
            median=outcome.median if opts.add_median and regression else None,
            min=outcome.min if opts.add_min and regression else None,
            max=outcome.max if opts.add_max and regression else None,
            next=self.next_field(outcome) if opts.add_next else None,
        )

    def _check_missing_numerics(self, filtered: Mapping[str, Any]) -> None:
        if self.missing_numerics:
            return
        for field_id in sorted(self.tree.split_fields):
            field = self.fields.get(field_id)
            if field is not None and field.optype == "numeric" and field_id not in filtered:
                logger.warning("Required numeric field missing", model_id=self.resource_id, field_id=field_id)
                raise MissingNumericFieldError(field_id, self.fields.name(field_id))


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


T = TypeVar("T", bound=PredictionOptions)


def resolve_options(
    options_type: type[T],
    options: PredictionOptions | None,
    overrides: Mapping[str, Any],
) -> T:
    """Combine an options object and keyword overrides into one validated object.

    Args:
        options_type (type[T]): Options model to build.
        options (PredictionOptions | None): Base options.
        overrides (Mapping[str, Any]): Keyword values applied on top.

    Returns:
        T: The validated options.
    """
    base = options.model_dump(exclude_unset=True) if options is not None else {}
    return options_type.model_validate({**base, **overrides})


def _unwrap(definition: Mapping[str, Any]) -> Mapping[str, Any]:
    if not isinstance(definition, Mapping):
        raise MalformedModelError("definition must be an object")
    wrapped = definition.get("object")
    return wrapped if isinstance(wrapped, Mapping) else definition


def _check_status(resource: Mapping[str, Any]) -> None:
    status = resource.get("status")
    code = status.get("code") if isinstance(status, Mapping) else None
    if code != FINISHED_STATUS_CODE:
        logger.warning("Resource not ready", resource_id=resource.get("resource"), status_code=code)
        raise ModelNotReadyError(code)


def _objective_id(resource: Mapping[str, Any], model: Mapping[str, Any]) -> str | None:
    objective_fields = resource.get("objective_fields") or model.get("objective_fields")
    if isinstance(objective_fields, list) and objective_fields:
        return objective_fields[0]
    return resource.get("objective_field") or model.get("objective_field")


def _model_fields(model: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Merge the `model_fields` entries with the name and summary from `fields`.

    Args:
        model (Mapping[str, Any]): The `model` member of the definition.

    Returns:
        dict[str, dict[str, Any]]: Field descriptors keyed by id.

    Raises:
        MalformedModelError: If a `model_fields` entry has no `fields` counterpart.
    """
    raw_fields = model.get("fields") or {}
    model_fields = model.get("model_fields") or raw_fields
    merged: dict[str, dict[str, Any]] = {}
    for field_id, entry in model_fields.items():
        if field_id not in raw_fields:
            raise MalformedModelError(
                f"field {field_id!r} is missing from the fields map",
                path=f"model.model_fields.{field_id}",
            )
        full = raw_fields[field_id]
        merged[field_id] = {
            **full,
            **entry,
            "name": full.get("name", entry.get("name", field_id)),
            "summary": full.get("summary", entry.get("summary", {})),
        }
    return merged


def _probability(outcome: TreePrediction) -> float | None:
    total = stats.instance_count(outcome.distribution)
    if total <= 0:
        return None
    hits = sum(count for value, count in outcome.distribution if value == outcome.prediction)
    return hits / total


def _top_categories(outcome: TreePrediction, limit: int) -> list[CategoryPrediction]:
    """Return the `limit` most frequent categories of a classification outcome.

    Args:
        outcome (TreePrediction): A classification tree outcome.
        limit (int): Maximum number of categories.

    Returns:
        list[CategoryPrediction]: Categories by decreasing count, ties by text.
    """
    total = stats.instance_count(outcome.distribution)
    if total <= 0:
        return []
    ranked = sorted(outcome.distribution, key=lambda entry: (-entry[1], str(entry[0])))
    return [
        CategoryPrediction(
            prediction=str(category),
            confidence=stats.ws_confidence(count, total),
            probability=count / total,
            count=count,
        )
        for category, count in ranked[:limit]
    ]
