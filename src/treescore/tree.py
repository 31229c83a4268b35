"""Arena-based decision tree and its two missing-value prediction strategies.

Nodes are stored in a flat tuple in pre-order and refer to their parent and
children by index, so the tree is built and walked without recursion limits
on construction and without any id-to-node side tables.
"""

from __future__ import annotations

import functools
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Final, NamedTuple

from loguru import logger

from treescore import stats
from treescore.exceptions import MalformedModelError
from treescore.fields import FieldView
from treescore.models import DistributionEntry, DistributionUnit, MissingStrategy, PredictionValue, TreePrediction
from treescore.predicates import Predicate

_REQUIRED_NODE_KEYS: Final[tuple[str, ...]] = ("id", "predicate", "output")
_SUMMARY_GROUPS: Final[tuple[DistributionUnit, ...]] = ("categories", "bins", "counts")
_TERM_OPTYPES: Final[frozenset[str]] = frozenset({"text", "items"})

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TreeNode:
    """One immutable node of a decision tree arena.

    Attributes:
        index (int): Position of the node in the arena.
        node_id (Any): Node id from the model definition.
        parent (int | None): Arena index of the parent; None for the root.
        predicate (Predicate): Condition the parent uses to select this node.
        count (int): Training instances that reached the node.
        output (PredictionValue): Category or number predicted at the node.
        confidence (float): Stored confidence of the node output.
        distribution (tuple[DistributionEntry, ...]): `(value, count)` table.
        distribution_unit (DistributionUnit): Unit of the distribution.
        regression (bool): Whether the node predicts a number.
        impurity (float | None): Gini impurity (classification only).
        median (float | None): Median of the training values (regression only).
        minimum (float | None): Smallest training value (regression only).
        maximum (float | None): Largest training value (regression only).
        children (tuple[int, ...]): Arena indices of the children, in stored order.
    """

    index: int
    node_id: Any
    parent: int | None
    predicate: Predicate
    count: int
    output: PredictionValue
    confidence: float
    distribution: tuple[DistributionEntry, ...]
    distribution_unit: DistributionUnit
    regression: bool
    impurity: float | None
    median: float | None
    minimum: float | None
    maximum: float | None
    children: tuple[int, ...]

    @property
    def is_leaf(self) -> bool:
        """bool: Whether the node has no children."""
        return not self.children


class _Reached(NamedTuple):
    """Where a proportional descent stopped and what it collected."""

    distribution: list[DistributionEntry]
    minimum: float | None
    maximum: float | None
    node: TreeNode


# ---------------------------------------------------------------------------
# Public interface -- DecisionTree
# ---------------------------------------------------------------------------


class DecisionTree:
    """Decision tree built once from the `root` member of a model definition.

    Examples:
        >>> tree = DecisionTree(root_json, field_view)  # doctest: +SKIP
        >>> tree.predict({"000003": 0.4}).prediction  # doctest: +SKIP
        'Iris-setosa'
    """

    def __init__(
        self,
        root: Mapping[str, Any],
        fields: FieldView,
        *,
        regression: bool | None = None,
        training_distribution: Mapping[str, Any] | None = None,
        path: str = "model.root",
    ) -> None:
        """Build the node arena.

        Args:
            root (Mapping[str, Any]): Root node of the definition.
            fields (FieldView): Field view every predicate is checked against.
            regression (bool | None): Whether the tree predicts numbers.
                Inferred from the root output when None.
            training_distribution (Mapping[str, Any] | None): Objective
                summary of the training data, used when the root carries no
                distribution of its own.
            path (str): Location of the root in the definition.

        Raises:
            MalformedModelError: If a node lacks `id`, `predicate` or
                `output`, a predicate references an unknown field, a term
                predicate targets a field that is not text or items, or the
                instance counts of a node and its children disagree.
        """
        if not isinstance(root, Mapping):
            raise MalformedModelError("tree root is not an object", path=path)
        self.fields = fields
        self.regression = regression if regression is not None else not isinstance(root.get("output"), str)
        self._nodes: tuple[TreeNode, ...] = tuple(self._build(root, training_distribution, path))
        logger.debug(
            "Decision tree built",
            node_count=self.node_count,
            depth=self.depth,
            regression=self.regression,
        )

    # -- Arena access -------------------------------------------------------

    @property
    def nodes(self) -> tuple[TreeNode, ...]:
        """tuple[TreeNode, ...]: All nodes in pre-order; the root is at index 0."""
        return self._nodes

    @property
    def root(self) -> TreeNode:
        """TreeNode: The root node."""
        return self._nodes[0]

    @property
    def node_count(self) -> int:
        """int: Number of nodes in the tree."""
        return len(self._nodes)

    def node(self, index: int) -> TreeNode:
        """Return the node stored at `index`.

        Args:
            index (int): Arena index.

        Returns:
            TreeNode: The node.
        """
        return self._nodes[index]

    def leaves(self) -> Iterator[TreeNode]:
        """Iterate over the leaf nodes in pre-order.

        Yields:
            TreeNode: Each node without children.
        """
        return (node for node in self._nodes if node.is_leaf)

    @functools.cached_property
    def depth(self) -> int:
        """int: Number of edges on the longest root-to-leaf path."""
        depths = [0] * len(self._nodes)
        for node in self._nodes:
            if node.parent is not None:
                depths[node.index] = depths[node.parent] + 1
        return max(depths)

    @functools.cached_property
    def split_fields(self) -> frozenset[str]:
        """frozenset[str]: Ids of the fields used by any predicate of the tree."""
        return frozenset(
            node.predicate.field_id
            for node in self._nodes
            if not node.predicate.is_true and node.predicate.field_id is not None
        )

    # -- Prediction ---------------------------------------------------------

    def predict(self, input_data: Mapping[str, Any], strategy: MissingStrategy = "last_prediction") -> TreePrediction:
        """Predict the objective for one filtered input record.

        Args:
            input_data (Mapping[str, Any]): Input values keyed by field id.
            strategy (MissingStrategy): "last_prediction" stops at the last
                node whose children cannot be resolved; "proportional" merges
                the distributions of every branch a missing value leaves open.

        Returns:
            TreePrediction: The prediction, its confidence and the rule path.

        Raises:
            PredicateTypeError: If an input value does not fit its field.
        """
        if strategy == "proportional":
            return self._predict_proportional(input_data)
        return self._predict_last(input_data)

    def _predict_last(self, input_data: Mapping[str, Any]) -> TreePrediction:
        path: list[str] = []
        node = self.root
        while True:
            matched = next(
                (
                    self._nodes[child]
                    for child in node.children
                    if self._nodes[child].predicate.apply(input_data, self.fields)
                ),
                None,
            )
            if matched is None:
                break
            path.append(matched.predicate.rule(self.fields))
            logger.trace("Descending", node_id=matched.node_id, rule=path[-1])
            node = matched
        return TreePrediction(
            prediction=node.output,
            confidence=node.confidence,
            count=node.count,
            distribution=list(node.distribution),
            distribution_unit=node.distribution_unit,
            median=node.median,
            min=node.minimum,
            max=node.maximum,
            path=path,
            children=list(node.children),
        )

    def _predict_proportional(self, input_data: Mapping[str, Any]) -> TreePrediction:
        path: list[str] = []
        reached = self._descend_proportional(0, input_data, path, missing_found=False)
        if self.regression:
            return self._regression_outcome(reached, path)
        return self._classification_outcome(reached, path)

    def _descend_proportional(
        self,
        index: int,
        input_data: Mapping[str, Any],
        path: list[str],
        *,
        missing_found: bool,
    ) -> _Reached:
        """Walk down from `index`, merging every branch a missing value leaves open.

        Args:
            index (int): Arena index of the current node.
            input_data (Mapping[str, Any]): Input values keyed by field id.
            path (list[str]): Rule path, extended in place while no merge
                has started.
            missing_found (bool): Whether an upstream node already merged.

        Returns:
            _Reached: Collected distribution, extremes and stopping node.
        """
        node = self._nodes[index]
        if node.is_leaf:
            return _Reached(list(node.distribution), node.minimum, node.maximum, node)

        if self._is_single_branch(node, input_data):
            for child_index in node.children:
                child = self._nodes[child_index]
                if child.predicate.apply(input_data, self.fields):
                    rule = child.predicate.rule(self.fields)
                    if rule not in path and not missing_found:
                        path.append(rule)
                    logger.trace("Descending", node_id=child.node_id, rule=rule)
                    return self._descend_proportional(child_index, input_data, path, missing_found=missing_found)
            return _Reached(list(node.distribution), node.minimum, node.maximum, node)

        logger.trace("Split field missing, merging branches", node_id=node.node_id, branches=len(node.children))
        merged: list[DistributionEntry] = []
        minimums: list[float] = []
        maximums: list[float] = []
        for child_index in node.children:
            reached = self._descend_proportional(child_index, input_data, path, missing_found=True)
            merged = self._merge(merged, reached.distribution)
            if reached.minimum is not None:
                minimums.append(reached.minimum)
            if reached.maximum is not None:
                maximums.append(reached.maximum)
        return _Reached(merged, min(minimums, default=None), max(maximums, default=None), node)

    def _is_single_branch(self, node: TreeNode, input_data: Mapping[str, Any]) -> bool:
        """Return True when exactly one child of `node` can be chosen for the input.

        Args:
            node (TreeNode): Inner node.
            input_data (Mapping[str, Any]): Input values keyed by field id.

        Returns:
            bool: True when the split field is present, or a child accepts
                missing values or tests the null sentinel.
        """
        predicates = [self._nodes[child].predicate for child in node.children]
        predicates = [predicate for predicate in predicates if not predicate.is_true]
        if not predicates:
            return True
        if any(predicate.missing or predicate.value is None for predicate in predicates):
            return True
        split_ids = {predicate.field_id for predicate in predicates}
        if len(split_ids) != 1:
            return False
        (split_id,) = split_ids
        return split_id in input_data

    def _merge(self, first: list[DistributionEntry], second: list[DistributionEntry]) -> list[DistributionEntry]:
        if self.regression:
            return stats.merge_distributions(first, second)  # type: ignore[arg-type,return-value]
        return stats.merge_category_counts(first, second)  # type: ignore[arg-type,return-value]

    def _regression_outcome(self, reached: _Reached, path: list[str]) -> TreePrediction:
        """Summarize a proportional descent of a regression tree.

        Args:
            reached (_Reached): Result of the descent.
            path (list[str]): Rule path.

        Returns:
            TreePrediction: Mean and error bound of the collected
                distribution, or the stopping node's own output when it holds
                a single instance.
        """
        last = reached.node
        distribution = reached.distribution
        if not distribution or (len(distribution) == 1 and distribution[0][1] == 1):
            return TreePrediction(
                prediction=last.output,
                confidence=last.confidence,
                count=stats.instance_count(distribution) if distribution else last.count,
                distribution=distribution,
                distribution_unit=last.distribution_unit,
                median=last.median,
                min=last.minimum,
                max=last.maximum,
                path=path,
                children=list(last.children),
            )

        distribution = sorted(distribution, key=lambda entry: entry[0])
        unit: DistributionUnit = "bins" if len(distribution) > stats.BINS_LIMIT else "counts"
        distribution = stats.merge_bins(distribution, stats.BINS_LIMIT)  # type: ignore[arg-type,assignment]
        total = stats.instance_count(distribution)
        prediction = stats.mean(distribution)  # type: ignore[arg-type]
        sample_variance = stats.variance(distribution, prediction, unbiased=True)  # type: ignore[arg-type]
        confidence = stats.regression_error(sample_variance, total)
        return TreePrediction(
            prediction=prediction,
            confidence=confidence,
            count=total,
            distribution=distribution,
            distribution_unit=unit,
            median=stats.median(distribution, total),  # type: ignore[arg-type]
            min=reached.minimum,
            max=reached.maximum,
            path=path,
            children=list(last.children),
        )

    def _classification_outcome(self, reached: _Reached, path: list[str]) -> TreePrediction:
        """Summarize a proportional descent of a classification tree.

        Args:
            reached (_Reached): Result of the descent.
            path (list[str]): Rule path.

        Returns:
            TreePrediction: The most frequent category (ties broken by its
                text) with the Wilson score of its count as confidence.
        """
        last = reached.node
        distribution = sorted(reached.distribution, key=lambda entry: (-entry[1], str(entry[0])))
        if not distribution:
            return TreePrediction(
                prediction=last.output,
                confidence=last.confidence,
                count=last.count,
                distribution_unit="categories",
                path=path,
                children=list(last.children),
            )
        winner, winner_count = distribution[0]
        total = stats.instance_count(distribution)
        return TreePrediction(
            prediction=winner,
            confidence=stats.ws_confidence(winner_count, total),
            count=total,
            distribution=distribution,
            distribution_unit="categories",
            path=path,
            children=list(last.children),
        )

    # -- Construction -------------------------------------------------------

    def _build(
        self,
        root: Mapping[str, Any],
        training_distribution: Mapping[str, Any] | None,
        root_path: str,
    ) -> list[TreeNode]:
        """Flatten the nested definition into pre-order arena nodes.

        Args:
            root (Mapping[str, Any]): Root node of the definition.
            training_distribution (Mapping[str, Any] | None): Fallback
                distribution source for the root.
            root_path (str): Location of the root in the definition.

        Returns:
            list[TreeNode]: The nodes, indexed by arena position.
        """
        pending: list[tuple[Any, int | None, str]] = [(root, None, root_path)]
        visited: list[tuple[Mapping[str, Any], int | None, str]] = []
        children: list[list[int]] = []
        while pending:
            payload, parent, path = pending.pop()
            if not isinstance(payload, Mapping):
                raise MalformedModelError("tree node is not an object", path=path)
            index = len(visited)
            visited.append((payload, parent, path))
            children.append([])
            if parent is not None:
                children[parent].append(index)
            child_payloads = payload.get("children") or []
            if not isinstance(child_payloads, list):
                raise MalformedModelError("node children must be a list", path=path)
            for position in reversed(range(len(child_payloads))):
                pending.append((child_payloads[position], index, f"{path}.children[{position}]"))

        nodes = [
            self._build_node(
                index,
                payload,
                parent,
                tuple(children[index]),
                path,
                training_distribution if parent is None else None,
            )
            for index, (payload, parent, path) in enumerate(visited)
        ]
        for node, (_, _, path) in zip(nodes, visited, strict=True):
            _check_counts(node, nodes, path)
        return nodes

    def _build_node(
        self,
        index: int,
        payload: Mapping[str, Any],
        parent: int | None,
        children: tuple[int, ...],
        path: str,
        training_distribution: Mapping[str, Any] | None,
    ) -> TreeNode:
        """Validate one node payload and turn it into a `TreeNode`.

        Args:
            index (int): Arena index of the node.
            payload (Mapping[str, Any]): Node definition.
            parent (int | None): Arena index of the parent.
            children (tuple[int, ...]): Arena indices of the children.
            path (str): Location of the node in the definition.
            training_distribution (Mapping[str, Any] | None): Fallback
                distribution source (root only).

        Returns:
            TreeNode: The node.

        Raises:
            MalformedModelError: If the payload is invalid.
        """
        for key in _REQUIRED_NODE_KEYS:
            if key not in payload:
                raise MalformedModelError(f"node has no {key!r} member", path=path)
        predicate = Predicate.from_json(payload["predicate"], path=f"{path}.predicate")
        self._check_predicate(predicate, path)

        output = payload["output"]
        if self.regression:
            if not stats.is_number(output):
                raise MalformedModelError(f"regression node output must be a number, got {output!r}", path=path)
            output = float(output)
        confidence = payload.get("confidence")
        count = payload.get("count", 0)
        if not stats.is_number(count) or count < 0:
            raise MalformedModelError(f"node count must be a non-negative number, got {count!r}", path=path)

        summary = payload.get("objective_summary") or {}
        distribution, unit = self._node_distribution(payload, summary, training_distribution, path)

        median = minimum = maximum = impurity = None
        if self.regression:
            values = [value for value, _ in distribution]
            median = summary.get("median")
            if median is None and distribution:
                median = stats.median(sorted(distribution))  # type: ignore[arg-type]
            minimum = summary.get("minimum", min(values, default=None))  # type: ignore[type-var]
            maximum = summary.get("maximum", max(values, default=None))  # type: ignore[type-var]
        else:
            impurity = _gini_impurity(distribution, int(count))

        return TreeNode(
            index=index,
            node_id=payload["id"],
            parent=parent,
            predicate=predicate,
            count=int(count),
            output=output,
            confidence=float(confidence) if stats.is_number(confidence) else math.nan,
            distribution=distribution,
            distribution_unit=unit,
            regression=self.regression,
            impurity=impurity,
            median=median,
            minimum=minimum,
            maximum=maximum,
            children=children,
        )

    def _check_predicate(self, predicate: Predicate, path: str) -> None:
        if predicate.is_true:
            return
        field = self.fields.get(predicate.field_id)
        if field is None:
            raise MalformedModelError(
                f"predicate references unknown field {predicate.field_id!r}",
                path=f"{path}.predicate",
            )
        if predicate.term is not None and field.optype not in _TERM_OPTYPES:
            raise MalformedModelError(
                f"term predicate on {field.optype} field {field.id!r}; only text and items fields have terms",
                path=f"{path}.predicate",
            )

    def _node_distribution(
        self,
        payload: Mapping[str, Any],
        summary: Mapping[str, Any],
        training_distribution: Mapping[str, Any] | None,
        path: str,
    ) -> tuple[tuple[DistributionEntry, ...], DistributionUnit]:
        """Find the distribution of a node and its unit.

        Args:
            payload (Mapping[str, Any]): Node definition.
            summary (Mapping[str, Any]): The node's `objective_summary`.
            training_distribution (Mapping[str, Any] | None): Fallback source.
            path (str): Location of the node in the definition.

        Returns:
            tuple[tuple[DistributionEntry, ...], DistributionUnit]: The parsed
                distribution and its unit.
        """
        default_unit: DistributionUnit = "counts" if self.regression else "categories"
        if "distribution" in payload:
            return self._parse_distribution(payload["distribution"], path), default_unit
        for source in (summary, training_distribution or {}):
            for group in _SUMMARY_GROUPS:
                if group in source:
                    return self._parse_distribution(source[group], path), group
        return (), default_unit

    def _parse_distribution(self, raw: Any, path: str) -> tuple[DistributionEntry, ...]:
        if not isinstance(raw, list):
            raise MalformedModelError("distribution must be a list of [value, count] pairs", path=path)
        entries: list[DistributionEntry] = []
        for entry in raw:
            try:
                value, count = entry
            except (TypeError, ValueError) as exc:
                raise MalformedModelError(f"invalid distribution entry {entry!r}", path=path) from exc
            if self.regression and not stats.is_number(value):
                raise MalformedModelError(f"regression distribution value must be a number, got {value!r}", path=path)
            entries.append((float(value) if self.regression else value, int(count)))
        return tuple(entries)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _gini_impurity(distribution: tuple[DistributionEntry, ...], count: int) -> float | None:
    """Return half of `1 - sum((c / count) ** 2)` over the category counts.

    An evenly split two-category node scores 0.25.

    Args:
        distribution (tuple[DistributionEntry, ...]): Category counts.
        count (int): Instances at the node.

    Returns:
        float | None: The impurity, or None for nodes without instances.
    """
    if count <= 0 or not distribution:
        return None
    return (1.0 - sum((instances / count) ** 2 for _, instances in distribution)) / 2


def _check_counts(node: TreeNode, nodes: list[TreeNode], path: str) -> None:
    """Check that instance counts are consistent between a node and its children.

    Raises:
        MalformedModelError: If the children hold more instances than the
            node, or a leaf's distribution total differs from its count.
    """
    if node.children:
        child_total = sum(nodes[child].count for child in node.children)
        if child_total > node.count:
            raise MalformedModelError(
                f"children hold {child_total} instances but the node holds {node.count}",
                path=path,
            )
    elif node.distribution and stats.instance_count(node.distribution) != node.count:
        raise MalformedModelError(
            f"leaf distribution holds {stats.instance_count(node.distribution)} instances, count is {node.count}",
            path=path,
        )
