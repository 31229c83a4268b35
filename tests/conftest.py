"""Shared model-definition fixtures for the treescore test suite.

The definitions mirror the JSON documents the training service returns:
a resource wrapped in `object`, a `status`, a `model` member holding
`fields`, `model_fields` and the nested tree under `root`.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any, TypeAlias

import pytest

Definition: TypeAlias = dict[str, Any]

# ---------------------------------------------------------------------------
# Classification tree
# ---------------------------------------------------------------------------
#
# root (A50 B30 C20)
# ├── petal width <= 1.0 (A45 B10 C5)
# │   ├── sepal length <= 5.0 (A38 B2)
# │   └── sepal length > 5.0 (A7 B8 C5)
# └── petal width > 1.0 (A5 B20 C15)
#     ├── sepal length <= 6.0 (A5 B12 C8)
#     └── sepal length > 6.0 (B8 C7)

_CLASSIFICATION_FIELDS: dict[str, Any] = {
    "000000": {"name": "sepal length", "optype": "numeric", "column_number": 0},
    "000001": {"name": "petal width", "optype": "numeric", "column_number": 1},
    "000002": {
        "name": "species",
        "optype": "categorical",
        "column_number": 2,
        "summary": {"categories": [["A", 50], ["B", 30], ["C", 20]]},
    },
}


def _node(
    node_id: int,
    predicate: Any,
    output: Any,
    distribution: list[list[Any]],
    confidence: float,
    children: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    node: dict[str, Any] = {
        "id": node_id,
        "predicate": predicate,
        "output": output,
        "count": sum(count for _, count in distribution),
        "confidence": confidence,
        "distribution": distribution,
    }
    if children:
        node["children"] = children
    return node


def _classification_root() -> dict[str, Any]:
    return _node(
        0,
        True,
        "A",
        [["A", 50], ["B", 30], ["C", 20]],
        0.40383,
        [
            _node(
                1,
                {"operator": "<=", "field": "000001", "value": 1.0},
                "A",
                [["A", 45], ["B", 10], ["C", 5]],
                0.62499,
                [
                    _node(3, {"operator": "<=", "field": "000000", "value": 5.0}, "A", [["A", 38], ["B", 2]], 0.83496),
                    _node(
                        4,
                        {"operator": ">", "field": "000000", "value": 5.0},
                        "B",
                        [["A", 7], ["B", 8], ["C", 5]],
                        0.21753,
                    ),
                ],
            ),
            _node(
                2,
                {"operator": ">", "field": "000001", "value": 1.0},
                "B",
                [["A", 5], ["B", 20], ["C", 15]],
                0.35188,
                [
                    _node(
                        5,
                        {"operator": "<=", "field": "000000", "value": 6.0},
                        "B",
                        [["A", 5], ["B", 12], ["C", 8]],
                        0.29797,
                    ),
                    _node(6, {"operator": ">", "field": "000000", "value": 6.0}, "B", [["B", 8], ["C", 7]], 0.29927),
                ],
            ),
        ],
    )


def _wrap(resource_id: str, model: dict[str, Any], objective_id: str) -> Definition:
    return {
        "code": 200,
        "resource": resource_id,
        "object": {
            "resource": resource_id,
            "status": {"code": 5, "message": "The model has been created"},
            "objective_fields": [objective_id],
            "locale": "en-US",
            "description": "",
            "model": model,
        },
    }


@pytest.fixture
def classification_definition() -> Definition:
    """Return a finished depth-2 classification model definition.

    Returns:
        Definition: Model JSON with numeric inputs "sepal length" and
            "petal width" and categorical objective "species".
    """
    model = {
        "fields": copy.deepcopy(_CLASSIFICATION_FIELDS),
        "model_fields": {
            field_id: {"optype": field["optype"], "column_number": field["column_number"]}
            for field_id, field in _CLASSIFICATION_FIELDS.items()
        },
        "importance": [["000001", 0.7], ["000000", 0.3]],
        "distribution": {"training": {"categories": [["A", 50], ["B", 30], ["C", 20]]}},
        "root": _classification_root(),
    }
    return _wrap("model/000000000000000000000001", model, "000002")


# ---------------------------------------------------------------------------
# Regression tree
# ---------------------------------------------------------------------------


@pytest.fixture
def regression_definition() -> Definition:
    """Return a finished depth-1 regression model definition.

    Returns:
        Definition: Model JSON with numeric input "x" and numeric objective
            "y"; the root splits on `x <= 0.5`.
    """
    fields = {
        "000000": {"name": "x", "optype": "numeric", "column_number": 0},
        "000001": {"name": "y", "optype": "numeric", "column_number": 1},
    }
    root = _node(
        0,
        True,
        5.0,
        [[1.0, 2], [2.0, 3], [8.0, 3], [9.0, 2]],
        2.0,
        [
            _node(1, {"operator": "<=", "field": "000000", "value": 0.5}, 1.6, [[1.0, 2], [2.0, 3]], 0.5),
            _node(2, {"operator": ">", "field": "000000", "value": 0.5}, 8.4, [[8.0, 3], [9.0, 2]], 0.6),
        ],
    )
    model = {"fields": fields, "model_fields": copy.deepcopy(fields), "root": root}
    return _wrap("model/000000000000000000000002", model, "000001")


# ---------------------------------------------------------------------------
# Text and items tree
# ---------------------------------------------------------------------------


@pytest.fixture
def text_definition() -> Definition:
    """Return a classification model splitting on a text term and an item.

    Returns:
        Definition: Model JSON with text field "review", items field
            "basket" and categorical objective "label".
    """
    fields = {
        "000000": {
            "name": "review",
            "optype": "text",
            "column_number": 0,
            "term_analysis": {"case_sensitive": False, "token_mode": "all"},
            "summary": {"term_forms": {"great": ["greatest"]}, "tag_cloud": [["great", 10], ["bad", 4]]},
        },
        "000001": {
            "name": "basket",
            "optype": "items",
            "column_number": 1,
            "item_analysis": {"separator": ";"},
            "summary": {"items": [["milk", 6], ["bread", 5]]},
        },
        "000002": {"name": "label", "optype": "categorical", "column_number": 2},
    }
    root = _node(
        0,
        True,
        "neg",
        [["pos", 10], ["neg", 12]],
        0.3,
        [
            _node(
                1,
                {"operator": ">", "field": "000000", "value": 0, "term": "great"},
                "pos",
                [["pos", 9], ["neg", 1]],
                0.6,
            ),
            _node(
                2,
                {"operator": "<=", "field": "000000", "value": 0, "term": "great"},
                "neg",
                [["pos", 1], ["neg", 11]],
                0.65,
                [
                    _node(
                        3,
                        {"operator": ">", "field": "000001", "value": 0, "term": "milk"},
                        "pos",
                        [["pos", 1], ["neg", 1]],
                        0.1,
                    ),
                    _node(
                        4,
                        {"operator": "<=", "field": "000001", "value": 0, "term": "milk"},
                        "neg",
                        [["neg", 10]],
                        0.7,
                    ),
                ],
            ),
        ],
    )
    model = {"fields": fields, "model_fields": copy.deepcopy(fields), "root": root}
    return _wrap("model/000000000000000000000003", model, "000002")


# ---------------------------------------------------------------------------
# Single-leaf models for ensembles
# ---------------------------------------------------------------------------


@pytest.fixture
def leaf_model_factory() -> Callable[..., Definition]:
    """Return a factory of single-node model definitions.

    Returns:
        Callable[..., Definition]: `factory(output, confidence, distribution,
            resource_id=...)` building a finished model whose root is a leaf.
            Numeric outputs build regression models.
    """

    def factory(
        output: str | float,
        confidence: float,
        distribution: list[list[Any]],
        *,
        resource_id: str = "model/leaf",
    ) -> Definition:
        objective_optype = "categorical" if isinstance(output, str) else "numeric"
        fields = {
            "000000": {"name": "x", "optype": "numeric", "column_number": 0},
            "000001": {"name": "target", "optype": objective_optype, "column_number": 1},
        }
        model = {
            "fields": fields,
            "model_fields": copy.deepcopy(fields),
            "root": _node(0, True, output, distribution, confidence),
        }
        return _wrap(resource_id, model, "000001")

    return factory
