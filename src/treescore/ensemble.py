"""Ensembles of decision-tree models scored locally."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from loguru import logger

from treescore.config import ScoringSettings, get_settings
from treescore.exceptions import (
    FINISHED_STATUS_CODE,
    MalformedModelError,
    ModelNotReadyError,
    PredictionCancelledError,
)
from treescore.logging import PREDICTION_LEVEL
from treescore.model import Model, resolve_options
from treescore.models import EnsembleOptions, PredictionOptions, PredictionResult, Vote
from treescore.multivote import MultiVote

# ---------------------------------------------------------------------------
# Public interface -- Ensemble
# ---------------------------------------------------------------------------


class Ensemble:
    """A set of decision-tree models whose predictions are combined by vote.

    Attributes:
        models (tuple[Model, ...]): Member models, in vote arrival order.
        resource_id (str | None): Resource id of the ensemble definition.
        settings (ScoringSettings): Defaults for unset prediction options and
            the number of worker threads.

    Examples:
        >>> ensemble = Ensemble([model_a, model_b, model_c])  # doctest: +SKIP
        >>> ensemble.predict({"petal width": 1.2}, method="confidence").prediction  # doctest: +SKIP
        'Iris-versicolor'
    """

    def __init__(
        self,
        models: Sequence[Model | Mapping[str, Any]],
        *,
        distributions: Sequence[Mapping[str, Any]] = (),
        resource_id: str | None = None,
        settings: ScoringSettings | None = None,
    ) -> None:
        """Initialize the ensemble.

        Args:
            models (Sequence[Model | Mapping[str, Any]]): Member models or
                their JSON definitions.
            distributions (Sequence[Mapping[str, Any]]): Per-member summaries
                holding an `importance` list, as found in the ensemble
                definition. Used by `field_importance()`.
            resource_id (str | None): Resource id of the ensemble definition.
            settings (ScoringSettings | None): Defaults for unset options.

        Raises:
            ValueError: If `models` is empty.
            MalformedModelError: If members mix classification and regression.
        """
        if not models:
            raise ValueError("An ensemble needs at least one model")
        self.settings = settings or get_settings()
        self.resource_id = resource_id
        self.models: tuple[Model, ...] = tuple(
            model if isinstance(model, Model) else Model(model, settings=self.settings) for model in models
        )
        if len({model.is_regression for model in self.models}) > 1:
            raise MalformedModelError("ensemble mixes classification and regression models", path="models")
        self._distributions = list(distributions)
        logger.info(
            "Ensemble loaded",
            ensemble_id=self.resource_id,
            model_count=len(self.models),
            regression=self.is_regression,
        )

    @classmethod
    def from_json(
        cls,
        model_definitions: Iterable[str | bytes | Mapping[str, Any]],
        *,
        ensemble_definition: str | bytes | Mapping[str, Any] | None = None,
        settings: ScoringSettings | None = None,
    ) -> Ensemble:
        """Build an ensemble from JSON definitions.

        When an ensemble definition is given, its `models` list fixes the
        member order (and therefore the tie-break order) and its
        `distributions` feed `field_importance()`.

        Args:
            model_definitions (Iterable[str | bytes | Mapping[str, Any]]):
                Member model definitions, as JSON text or parsed objects.
            ensemble_definition (str | bytes | Mapping[str, Any] | None): The
                ensemble resource, as JSON text or a parsed object.
            settings (ScoringSettings | None): Defaults for unset options.

        Returns:
            Ensemble: The ensemble.

        Raises:
            ModelNotReadyError: If the ensemble or a member is not finished.
            MalformedModelError: If a definition is invalid or a model listed
                by the ensemble was not supplied.
        """
        models = [
            Model(definition, settings=settings)
            if isinstance(definition, Mapping)
            else Model.from_json(definition, settings=settings)
            for definition in model_definitions
        ]
        if ensemble_definition is None:
            return cls(models, settings=settings)

        ensemble = _load(ensemble_definition)
        ensemble = ensemble.get("object", ensemble) if isinstance(ensemble.get("object"), Mapping) else ensemble
        status = ensemble.get("status")
        code = status.get("code") if isinstance(status, Mapping) else None
        if code != FINISHED_STATUS_CODE:
            logger.warning("Resource not ready", resource_id=ensemble.get("resource"), status_code=code)
            raise ModelNotReadyError(code)

        by_id = {model.resource_id: model for model in models}
        ordered: list[Model] = []
        for position, model_id in enumerate(ensemble.get("models") or []):
            if model_id not in by_id:
                raise MalformedModelError(
                    f"definition of member model {model_id!r} was not supplied",
                    path=f"models[{position}]",
                )
            ordered.append(by_id[model_id])
        return cls(
            ordered or models,
            distributions=ensemble.get("distributions") or [],
            resource_id=ensemble.get("resource"),
            settings=settings,
        )

    @property
    def is_regression(self) -> bool:
        """bool: Whether the members predict numbers."""
        return self.models[0].is_regression

    def field_importance(self) -> list[tuple[str, float]]:
        """Return each field's importance averaged over the members.

        Uses the ensemble `distributions` when available, otherwise the
        members' own importance lists. Fields a member does not use count as
        zero for that member.

        Returns:
            list[tuple[str, float]]: `(field id, importance)` pairs, most
                important first.
        """
        importances = [list(summary.get("importance") or []) for summary in self._distributions]
        if not importances:
            importances = [model.field_importance() for model in self.models]
        totals: dict[str, float] = {}
        for member in importances:
            for field_id, importance in member:
                totals[field_id] = totals.get(field_id, 0.0) + float(importance)
        averaged = [(field_id, total / len(importances)) for field_id, total in totals.items()]
        return sorted(averaged, key=lambda item: item[1], reverse=True)

    # -- Prediction ---------------------------------------------------------

    def predict(
        self,
        input_data: Mapping[str, Any],
        options: PredictionOptions | None = None,
        *,
        cancel: threading.Event | None = None,
        **overrides: Any,
    ) -> PredictionResult:
        """Predict the objective field by combining every member's vote.

        Each member predicts with confidence, distribution and count (plus
        median, minimum and maximum for regressions); the votes keep the
        member order as arrival index and are combined with `method`.

        Args:
            input_data (Mapping[str, Any]): Input values keyed by field name
                (or id when `by_name` is False).
            options (PredictionOptions | None): Prediction options; an
                `EnsembleOptions` also carries the combination method.
            cancel (threading.Event | None): Cancellation token checked before
                each member evaluation.
            **overrides (Any): Individual option values, e.g. `method="threshold"`.

        Returns:
            PredictionResult: The combined prediction.

        Raises:
            PredictionCancelledError: If `cancel` is set during the fan-out.
            InsufficientVoteDataError: If the method needs data the votes lack.
            ValueError: If the threshold arguments are invalid.
        """
        opts = resolve_options(EnsembleOptions, options, overrides)
        votes = self._collect_votes(input_data, opts, cancel)
        result = MultiVote(votes).combine(
            opts.method,
            add_confidence=opts.add_confidence,
            add_distribution=opts.add_distribution,
            add_count=opts.add_count,
            add_median=opts.add_median and self.is_regression,
            add_min=opts.add_min and self.is_regression,
            add_max=opts.add_max and self.is_regression,
            threshold_k=opts.threshold_k,
            threshold_category=opts.threshold_category,
        )
        logger.log(
            PREDICTION_LEVEL,
            "Ensemble prediction",
            ensemble_id=self.resource_id,
            method=opts.method,
            prediction=result.prediction,
        )
        return result

    def _collect_votes(
        self,
        input_data: Mapping[str, Any],
        opts: EnsembleOptions,
        cancel: threading.Event | None,
    ) -> list[Vote]:
        """Evaluate every member, sequentially or on a thread pool.

        Args:
            input_data (Mapping[str, Any]): Raw input record.
            opts (EnsembleOptions): Resolved options.
            cancel (threading.Event | None): Cancellation token.

        Returns:
            list[Vote]: One vote per member, in member order.

        Raises:
            PredictionCancelledError: If `cancel` was set before every member
                was evaluated.
        """
        max_workers = self.settings.max_workers
        if max_workers > 1 and len(self.models) > 1:
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="treescore") as executor:
                futures = [
                    executor.submit(self._member_vote, index, model, input_data, opts, cancel)
                    for index, model in enumerate(self.models)
                ]
                outcomes = [future.result() for future in futures]
            votes = [vote for vote in outcomes if vote is not None]
            if len(votes) < len(outcomes):
                logger.warning("Ensemble prediction cancelled", ensemble_id=self.resource_id, completed=len(votes))
                raise PredictionCancelledError(len(votes))
            return votes

        votes = []
        for index, model in enumerate(self.models):
            vote = self._member_vote(index, model, input_data, opts, cancel)
            if vote is None:
                logger.warning("Ensemble prediction cancelled", ensemble_id=self.resource_id, completed=index)
                raise PredictionCancelledError(index)
            votes.append(vote)
        return votes

    def _member_vote(
        self,
        index: int,
        model: Model,
        input_data: Mapping[str, Any],
        opts: EnsembleOptions,
        cancel: threading.Event | None,
    ) -> Vote | None:
        """Turn one member's prediction into a vote.

        Args:
            index (int): Member position, used as the vote's arrival index.
            model (Model): Member model.
            input_data (Mapping[str, Any]): Raw input record.
            opts (EnsembleOptions): Resolved options.
            cancel (threading.Event | None): Cancellation token.

        Returns:
            Vote | None: The vote, or None when cancellation was requested.
        """
        if cancel is not None and cancel.is_set():
            return None
        outcome = model.predict_tree(input_data, by_name=opts.by_name, missing_strategy=opts.missing_strategy)
        prediction = outcome.prediction
        if model.is_regression and opts.use_median and outcome.median is not None:
            prediction = outcome.median
        probability = None
        if not model.is_regression and outcome.count > 0:
            hits = sum(count for value, count in outcome.distribution if value == outcome.prediction)
            probability = hits / max(sum(count for _, count in outcome.distribution), 1)
        logger.trace("Member vote", member=index, model_id=model.resource_id, prediction=prediction)
        return Vote(
            prediction=prediction,
            confidence=outcome.confidence,
            probability=probability,
            distribution=outcome.distribution,
            distribution_unit=outcome.distribution_unit,
            count=outcome.count,
            median=outcome.median,
            min=outcome.min,
            max=outcome.max,
            order=index,
        )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _load(definition: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(definition, Mapping):
        return definition
    try:
        loaded = json.loads(definition)
    except json.JSONDecodeError as exc:
        raise MalformedModelError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(loaded, Mapping):
        raise MalformedModelError("ensemble definition must be a JSON object")
    return loaded
