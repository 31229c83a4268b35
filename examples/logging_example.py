"""Demonstrates how to enable and configure logging in treescore.

treescore logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.
When the last active handle is disabled, treescore logging is automatically turned off.

Key concepts shown here:

- ``level``: controls the minimum log level. The custom ``PREDICTION`` level
  (numeric value 25, between INFO and WARNING) surfaces every public ``predict``
  call; ``"DEBUG"`` adds model loading and vote combination details.
- ``log_format``: ``"short"`` shows ``timestamp | level | function - message``;
  ``"full"`` adds the module and line number.
- Unfinished resources are logged as warnings before the error is raised.
- Automatic cleanup: logging is re-disabled when the context manager exits.
"""

import polars as pl

from treescore import Ensemble, Model, enable_logging
from treescore.exceptions import ModelNotReadyError


def iris_model(resource_id: str, threshold: float) -> dict:
    """Build a one-split model definition on petal width."""
    fields = {
        "000000": {"name": "petal width", "optype": "numeric", "column_number": 0},
        "000001": {"name": "species", "optype": "categorical", "column_number": 1},
    }
    return {
        "resource": resource_id,
        "object": {
            "resource": resource_id,
            "status": {"code": 5},
            "objective_fields": ["000001"],
            "model": {
                "fields": fields,
                "model_fields": fields,
                "root": {
                    "id": 0,
                    "predicate": True,
                    "output": "setosa",
                    "count": 100,
                    "confidence": 0.42,
                    "distribution": [["setosa", 50], ["virginica", 50]],
                    "children": [
                        {
                            "id": 1,
                            "predicate": {"operator": "<=", "field": "000000", "value": threshold},
                            "output": "setosa",
                            "count": 50,
                            "confidence": 0.93,
                            "distribution": [["setosa", 50]],
                        },
                        {
                            "id": 2,
                            "predicate": {"operator": ">", "field": "000000", "value": threshold},
                            "output": "virginica",
                            "count": 50,
                            "confidence": 0.93,
                            "distribution": [["virginica", 50]],
                        },
                    ],
                },
            },
        },
    }


# Enable logging at DEBUG level (and above) with full log format for better visibility of log details
with enable_logging(
    level="DEBUG",
    log_format="full",
):
    model = Model(iris_model("model/a", 0.8))

    # Single prediction with the rules followed
    result = model.predict({"petal width": 1.5}, add_path=True)
    print(f"\n{result.to_dict()}\n")

    # Score a DataFrame row by row
    frame = pl.DataFrame({"petal width": [0.2, 1.9, None]})
    print(model.predict_frame(frame))

    # Combine three members by confidence
    ensemble = Ensemble([model, iris_model("model/b", 1.0), iris_model("model/c", 1.7)])
    print(ensemble.predict({"petal width": 1.2}, method="confidence").to_dict())

    # Unfinished models are logged before the error is raised
    try:
        Model({"status": {"code": 2}, "model": {}})
    except ModelNotReadyError as exc:
        print(f"\nNot ready: {exc}\n")

# Logging automatically disabled here
