"""Split conditions of decision-tree nodes: parsing, evaluation and rules."""

from __future__ import annotations

import operator
from collections.abc import Callable, Mapping
from typing import Any, Final, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from treescore.exceptions import MalformedModelError, PredicateTypeError
from treescore.fields import FieldView
from treescore.models import Operator
from treescore.stats import is_number
from treescore.text import is_full_term, item_count, term_count

PredicateScalar: TypeAlias = int | float | str | None

PredicateValue: TypeAlias = int | float | str | list[PredicateScalar] | None

RuleLabel: TypeAlias = Literal["name", "id"]

MISSING_SUFFIX: Final[str] = " or missing"

_OPERATOR_ALIASES: Final[dict[str, str]] = {"/=": "!=", "==": "="}

_TERM_RELATIONS: Final[dict[str, str]] = {
    "<=": "no more than {} {}",
    ">=": "{} {} at most",
    ">": "more than {} {}",
    "<": "less than {} {}",
    "=": "exactly {} {}",
    "!=": "not exactly {} {}",
}

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """The condition a parent node uses to select one of its children.

    Attributes:
        operator (Operator): Comparison operator; `"TRUE"` always holds.
        field_id (str | None): Id of the field the condition reads. Unset
            only for `"TRUE"` predicates.
        value (PredicateValue): Threshold, category, list of candidates for
            `"in"`, or `None` as the null sentinel.
        term (str | None): Term or item counted in text/items fields.
        missing (bool): Whether the condition also holds when the field is
            absent from the input.

    Examples:
        >>> p = Predicate.from_json({"operator": "<=*", "field": "000002", "value": 2.45})
        >>> p.missing
        True
        >>> str(p)
        '000002 <= 2.45 or missing'
    """

    model_config = ConfigDict(frozen=True)

    operator: Operator = Field(description="Comparison operator; 'TRUE' always holds.")
    field_id: str | None = Field(default=None, description="Id of the field the condition reads.")
    value: PredicateValue = Field(default=None, description="Comparison value; None is the null sentinel.")
    term: str | None = Field(default=None, description="Term or item counted in text/items fields.")
    missing: bool = Field(default=False, description="Whether absent input values satisfy the condition.")

    @model_validator(mode="after")
    def _validate_operands(self) -> Predicate:
        """Validate that the operands fit the operator.

        Returns:
            Predicate: The validated model instance.

        Raises:
            ValueError: If a non-TRUE predicate has no field, if `"in"` is
                paired with a non-list value, or if a term predicate has a
                non-numeric threshold.
        """
        if self.operator == "TRUE":
            return self
        if not self.field_id:
            raise ValueError(f"operator '{self.operator}' requires a field")
        if self.operator == "in" and not isinstance(self.value, list):
            raise ValueError("operator 'in' requires a list value")
        if self.term is not None and not is_number(self.value):
            raise ValueError(f"term predicates require a numeric count threshold, got {self.value!r}")
        return self

    @classmethod
    def from_json(cls, payload: Any, *, path: str = "predicate") -> Predicate:
        """Parse the `predicate` member of a tree node.

        Args:
            payload (Any): `True` for the always-true predicate, or a mapping
                with `operator`, `field`, `value` and optional `term`. A
                trailing `*` on the operator sets the missing modifier.
            path (str): Location of the payload, used in error messages.

        Returns:
            Predicate: The parsed predicate.

        Raises:
            MalformedModelError: If the payload is neither `True` nor a valid
                predicate mapping.
        """
        if payload is True:
            return cls(operator="TRUE")
        if not isinstance(payload, Mapping):
            raise MalformedModelError(f"predicate must be true or an object, got {payload!r}", path=path)
        raw_operator = payload.get("operator")
        if not isinstance(raw_operator, str):
            raise MalformedModelError("predicate has no operator", path=path)
        missing = raw_operator.endswith("*")
        op = raw_operator.rstrip("*")
        try:
            return cls(
                operator=_OPERATOR_ALIASES.get(op, op),
                field_id=payload.get("field"),
                value=payload.get("value"),
                term=payload.get("term"),
                missing=missing,
            )
        except ValidationError as exc:
            raise MalformedModelError(f"invalid predicate: {exc}", path=path) from exc

    @property
    def is_true(self) -> bool:
        """bool: Whether this is the always-true predicate."""
        return self.operator == "TRUE"

    def __str__(self) -> str:
        """Return the predicate as `"<field id> <operator> <value>"`.

        Returns:
            str: Id-based rendering, with `" or missing"` when the modifier is set.
        """
        if self.is_true:
            return "TRUE"
        suffix = MISSING_SUFFIX if self.missing else ""
        if self.term is not None:
            return f"{self.field_id} {self.operator} {self.value} ({self.term}){suffix}"
        return f"{self.field_id} {self.operator} {self.value}{suffix}"

    def apply(self, input_data: Mapping[str, Any], fields: FieldView) -> bool:
        """Evaluate the predicate against one filtered input record.

        Args:
            input_data (Mapping[str, Any]): Input values keyed by field id.
            fields (FieldView): Field view of the model.

        Returns:
            bool: Whether the condition holds.

        Raises:
            PredicateTypeError: If an ordering comparison meets values of
                incompatible types.
        """
        if self.is_true:
            return True
        field = fields.get(self.field_id)
        if field is None:
            return False
        input_value = input_data.get(self.field_id)  # type: ignore[arg-type]
        if input_value is None:
            return self.missing or (self.operator == "=" and self.value is None)
        if self.operator == "!=" and self.value is None:
            return True
        if self.operator == "in":
            return input_value in self.value  # type: ignore[operator]
        if self.term is not None and field.optype == "text":
            forms = [self.term, *field.term_forms.get(self.term, [])]
            count = term_count(
                str(input_value),
                forms,
                token_mode=field.term_analysis.token_mode,
                case_sensitive=field.term_analysis.case_sensitive,
            )
            return _compare(self.operator, count, self.value, field_id=field.id)
        if self.term is not None and field.optype == "items":
            count = item_count(
                str(input_value),
                self.term,
                separator=field.item_analysis.separator,
                separator_regexp=field.item_analysis.separator_regexp,
            )
            return _compare(self.operator, count, self.value, field_id=field.id)
        return _compare(self.operator, input_value, self.value, field_id=field.id)

    def is_full_term(self, fields: FieldView) -> bool:
        """Return True when the term is compared against the whole text value.

        Args:
            fields (FieldView): Field view of the model.

        Returns:
            bool: False for non-term predicates and non-text fields.
        """
        field = fields.get(self.field_id)
        if self.term is None or field is None or field.optype != "text":
            return False
        return is_full_term(self.term, field.term_analysis.token_mode)

    def rule(self, fields: FieldView, label: RuleLabel = "name") -> str:
        """Render the predicate as a human-readable rule.

        Args:
            fields (FieldView): Field view of the model.
            label (RuleLabel): Whether the field is shown by display name or id.

        Returns:
            str: The rule, e.g. `"petal width <= 1.75"`,
                `"review contains great more than 2 times"` or
                `"age is None or missing"`. Unknown fields render as the bare
                operator.

        Examples:
            >>> p = Predicate(operator=">", field_id="000001", value=3)
            >>> p.rule(FieldView({}, None))
            '>'
        """
        if self.is_true:
            return "TRUE"
        field = fields.get(self.field_id)
        if field is None:
            return self.operator
        name = fields.name(field.id) if label == "name" else field.id
        missing = MISSING_SUFFIX if self.missing else ""

        if self.term is not None:
            full_term = self.is_full_term(fields)
            relation_suffix = ""
            threshold: float = self.value  # type: ignore[assignment]
            if (self.operator == "<" and threshold <= 1) or (self.operator == "<=" and threshold == 0):
                relation = "is not equal to" if full_term else "does not contain"
            else:
                relation = "is equal to" if full_term else "contains"
                if not full_term and (self.operator != ">" or self.value != 0) and self.operator in _TERM_RELATIONS:
                    times = "time" if self.value == 1 else "times"
                    relation_suffix = _TERM_RELATIONS[self.operator].format(self.value, times)
            return f"{name} {relation} {self.term} {relation_suffix}{missing}"

        if self.value is None:
            relation = "is" if self.operator == "=" else "is not"
            return f"{name} {relation} None{missing}"
        return f"{name} {self.operator} {self.value}{missing}"


# ---------------------------------------------------------------------------
# Private helpers -- Operator evaluation
# ---------------------------------------------------------------------------

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
    "!=": operator.ne,
}


def _compare(op: Operator, x: Any, threshold: PredicateValue, *, field_id: str) -> bool:
    """Apply a scalar operator between an input value and a threshold.

    Args:
        op (Operator): The comparison operator.
        x (Any): Input value (or term/item count).
        threshold (PredicateValue): Stored comparison value.
        field_id (str): Id of the field, reported on type errors.

    Returns:
        bool: Result of applying `op` between `x` and `threshold`.

    Raises:
        PredicateTypeError: If an ordering operator meets operands that are
            not both numbers or both strings, or `op` is not a scalar operator.
    """
    if op not in _SCALAR_OPS:
        raise PredicateTypeError(field_id, x, reason=f"operator '{op}' is not a scalar comparison")
    if op in {"=", "!="}:
        return _SCALAR_OPS[op](x, threshold)
    if (is_number(x) and is_number(threshold)) or (isinstance(x, str) and isinstance(threshold, str)):
        return _SCALAR_OPS[op](x, threshold)
    raise PredicateTypeError(field_id, x, reason=f"cannot apply '{op}' against {threshold!r}")
