"""Field descriptors and the per-model field view.

The field view owns everything scoring needs to know about the input
columns of a model: display names (de-duplicated), the name to id map, the
missing tokens, and the filtering/casting of raw input records.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any, Final

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field as PydanticField, ValidationError

from treescore.exceptions import MalformedModelError, PredicateTypeError
from treescore.models import Optype, TokenMode
from treescore.stats import is_number

DEFAULT_MISSING_TOKENS: Final[tuple[str, ...]] = (
    "",
    "N/A",
    "n/a",
    "NULL",
    "null",
    "-",
    "#DIV/0",
    "#REF!",
    "#NAME?",
    "NIL",
    "nil",
    "NA",
    "na",
    "#VALUE!",
    "#NULL!",
    "NaN",
    "#N/A",
    "#NUM!",
    "?",
)

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class TermAnalysis(BaseModel):
    """Tokenization options of a text field."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    case_sensitive: bool = PydanticField(default=False, description="Whether term matching respects case.")
    token_mode: TokenMode = PydanticField(default="tokens_only", description="How text values are tokenized.")


class ItemAnalysis(BaseModel):
    """Separator options of an items field."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    separator: str | None = PydanticField(default=None, description="Literal item separator.")
    separator_regexp: str | None = PydanticField(default=None, description="Item separator regular expression.")


class Field(BaseModel):
    """Immutable descriptor of one model input or objective field.

    Attributes:
        id (str): Field id, e.g. `"000001"`.
        name (str): Raw field name as found in the definition.
        optype (Optype): Operation type; any other tag is rejected.
        column_number (int): Column position in the source dataset.
        prefix (str): Prefix stripped from numeric string inputs.
        suffix (str): Suffix stripped from numeric string inputs.
        categories (tuple[str, ...]): Ordered categories (categorical only).
        term_forms (dict[str, list[str]]): Alternative forms per term (text only).
        tag_cloud (dict[str, int]): Term counts (text only).
        term_analysis (TermAnalysis): Tokenization options (text only).
        items (tuple[str, ...]): Known items (items only).
        item_analysis (ItemAnalysis): Separator options (items only).

    Examples:
        >>> field = Field.from_json("000000", {"name": "sepal length", "optype": "numeric"})
        >>> field.optype
        'numeric'
    """

    model_config = ConfigDict(frozen=True)

    id: str = PydanticField(min_length=1, description="Field id.")
    name: str = PydanticField(description="Raw field name.")
    optype: Optype = PydanticField(description="Operation type of the field.")
    column_number: int = PydanticField(default=0, description="Column position in the source dataset.")
    prefix: str = PydanticField(default="", description="Prefix stripped from numeric string inputs.")
    suffix: str = PydanticField(default="", description="Suffix stripped from numeric string inputs.")
    categories: tuple[str, ...] = PydanticField(default=(), description="Ordered categories.")
    term_forms: dict[str, list[str]] = PydanticField(default_factory=dict, description="Alternative term forms.")
    tag_cloud: dict[str, int] = PydanticField(default_factory=dict, description="Term counts.")
    term_analysis: TermAnalysis = PydanticField(default_factory=TermAnalysis, description="Tokenization options.")
    items: tuple[str, ...] = PydanticField(default=(), description="Known items.")
    item_analysis: ItemAnalysis = PydanticField(default_factory=ItemAnalysis, description="Separator options.")

    @classmethod
    def from_json(cls, field_id: str, payload: Mapping[str, Any]) -> Field:
        """Build a field from its entry in a model's `fields` map.

        Args:
            field_id (str): Key of the entry.
            payload (Mapping[str, Any]): The field descriptor.

        Returns:
            Field: The parsed descriptor.

        Raises:
            MalformedModelError: If the descriptor is not a mapping, lacks a
                name or optype, or carries an unknown optype.
        """
        path = f"fields.{field_id}"
        if not isinstance(payload, Mapping):
            raise MalformedModelError("field descriptor is not an object", path=path)
        summary = payload.get("summary") or {}
        try:
            return cls(
                id=field_id,
                name=payload.get("name", field_id),
                optype=payload.get("optype"),
                column_number=payload.get("column_number", 0),
                prefix=payload.get("prefix", ""),
                suffix=payload.get("suffix", ""),
                categories=tuple(category for category, _ in summary.get("categories", [])),
                term_forms=summary.get("term_forms", {}),
                tag_cloud=dict(summary.get("tag_cloud", [])),
                term_analysis=payload.get("term_analysis", {}),
                items=tuple(item for item, _ in summary.get("items", [])),
                item_analysis=payload.get("item_analysis", {}),
            )
        except (ValidationError, TypeError, ValueError) as exc:
            raise MalformedModelError(f"invalid field descriptor: {exc}", path=path) from exc


# ---------------------------------------------------------------------------
# Public interface -- FieldView
# ---------------------------------------------------------------------------


class FieldView:
    """Read-only view over the fields of one model.

    Display names are de-duplicated deterministically: the objective field is
    named first, then the remaining fields in `(column_number, id)` order. A
    name already taken gets the column number appended; if that is taken too,
    `_<field id>` is appended instead.

    Examples:
        >>> view = FieldView(
        ...     {
        ...         "000000": Field(id="000000", name="x", optype="numeric", column_number=0),
        ...         "000001": Field(id="000001", name="x", optype="numeric", column_number=1),
        ...     },
        ...     objective_id=None,
        ... )
        >>> view.name("000001")
        'x1'
    """

    def __init__(
        self,
        fields: Mapping[str, Field],
        objective_id: str | None,
        *,
        missing_tokens: Sequence[str] = DEFAULT_MISSING_TOKENS,
    ) -> None:
        """Initialize the field view.

        Args:
            fields (Mapping[str, Field]): Field descriptors keyed by id.
            objective_id (str | None): Id of the objective field, if any.
            missing_tokens (Sequence[str]): String values treated as absent.
        """
        self._fields: Mapping[str, Field] = MappingProxyType(dict(fields))
        self.objective_id = objective_id
        self.missing_tokens: frozenset[str] = frozenset(missing_tokens)
        self._names = _unique_names(self._fields, objective_id)
        ids_by_name = {name: field_id for field_id, name in self._names.items()}
        for field_id, field in self._fields.items():
            ids_by_name.setdefault(field.name, field_id)
        self._ids_by_name: Mapping[str, str] = MappingProxyType(ids_by_name)

    @classmethod
    def from_json(
        cls,
        raw_fields: Mapping[str, Mapping[str, Any]],
        objective_id: str | None,
        *,
        missing_tokens: Sequence[str] = DEFAULT_MISSING_TOKENS,
    ) -> FieldView:
        """Build a field view from a raw `fields` map.

        Args:
            raw_fields (Mapping[str, Mapping[str, Any]]): Field descriptors keyed by id.
            objective_id (str | None): Id of the objective field, if any.
            missing_tokens (Sequence[str]): String values treated as absent.

        Returns:
            FieldView: The view.

        Raises:
            MalformedModelError: If any descriptor is invalid.
        """
        fields = {field_id: Field.from_json(field_id, payload) for field_id, payload in raw_fields.items()}
        return cls(fields, objective_id, missing_tokens=missing_tokens)

    @property
    def fields(self) -> Mapping[str, Field]:
        """Mapping[str, Field]: Read-only field descriptors keyed by id."""
        return self._fields

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def __getitem__(self, field_id: str) -> Field:
        return self._fields[field_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def get(self, field_id: str | None) -> Field | None:
        """Return the descriptor of `field_id`, or None when it is unknown.

        Args:
            field_id (str | None): Field id.

        Returns:
            Field | None: The descriptor.
        """
        if field_id is None:
            return None
        return self._fields.get(field_id)

    def name(self, field_id: str) -> str:
        """Return the de-duplicated display name of a field.

        Args:
            field_id (str): Field id.

        Returns:
            str: Display name, or the id itself for unknown fields.
        """
        return self._names.get(field_id, field_id)

    def field_id(self, key: str) -> str | None:
        """Resolve a display name, raw name or id to a field id.

        Args:
            key (str): Name or id supplied by the caller.

        Returns:
            str | None: The field id, or None when nothing matches.
        """
        if key in self._ids_by_name:
            return self._ids_by_name[key]
        if key in self._fields:
            return key
        return None

    def is_missing(self, value: Any) -> bool:
        """Return True for values that count as absent.

        Args:
            value (Any): Input value.

        Returns:
            bool: True for None and for missing-token strings.
        """
        return value is None or (isinstance(value, str) and value in self.missing_tokens)

    def filter_input(self, input_data: Mapping[str, Any], *, by_name: bool = True) -> dict[str, Any]:
        """Reduce a raw input record to the values the model can use.

        Keys are resolved to field ids (names are accepted when `by_name` is
        set), unknown fields, the objective field and missing values are
        dropped, numeric strings are cast to float after stripping the
        field's prefix and suffix, and numbers given for non-numeric fields
        are converted to strings.

        Args:
            input_data (Mapping[str, Any]): Raw input record.
            by_name (bool): Whether keys may be field names.

        Returns:
            dict[str, Any]: Input values keyed by field id.

        Raises:
            PredicateTypeError: If a numeric field receives a value that
                cannot be read as a number.
        """
        filtered: dict[str, Any] = {}
        for key, value in input_data.items():
            field_id = self.field_id(key) if by_name else (key if key in self._fields else None)
            if field_id is None or field_id == self.objective_id:
                logger.trace("Input value ignored", key=key)
                continue
            if self.is_missing(value):
                continue
            filtered[field_id] = _cast_value(self._fields[field_id], value)
        return filtered


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _unique_names(fields: Mapping[str, Field], objective_id: str | None) -> dict[str, str]:
    """Assign a distinct display name to every field.

    Args:
        fields (Mapping[str, Field]): Field descriptors keyed by id.
        objective_id (str | None): Id of the objective field, named first.

    Returns:
        dict[str, str]: Display name keyed by field id.
    """
    ordered = sorted(fields.values(), key=lambda field: (field.column_number, field.id))
    if objective_id in fields:
        ordered.sort(key=lambda field: field.id != objective_id)
    names: dict[str, str] = {}
    used: set[str] = set()
    for field in ordered:
        name = field.name
        if name in used:
            name = f"{field.name}{field.column_number}"
            if name in used:
                name = f"{field.name}{field.column_number}{field.id}"
        used.add(name)
        names[field.id] = name
    return names


def _cast_value(field: Field, value: Any) -> Any:
    """Convert an input value to the type the field's predicates compare.

    Args:
        field (Field): Descriptor of the field receiving the value.
        value (Any): Raw input value.

    Returns:
        Any: A float for numeric fields, a string for scalar values of other
            fields, or the value unchanged.

    Raises:
        PredicateTypeError: If a numeric field receives a non-numeric value.
    """
    if field.optype == "numeric":
        if is_number(value):
            return value
        if isinstance(value, str):
            text = value.strip()
            if field.prefix and text.startswith(field.prefix):
                text = text[len(field.prefix) :]
            if field.suffix and text.endswith(field.suffix):
                text = text[: -len(field.suffix)]
            try:
                return float(text)
            except ValueError as exc:
                raise PredicateTypeError(field.id, value, reason="numeric field received a non-numeric string") from exc
        raise PredicateTypeError(field.id, value, reason=f"numeric field received a {type(value).__name__}")
    if is_number(value):
        return str(value)
    return value
