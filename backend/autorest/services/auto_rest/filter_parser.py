"""
Filter Expression Parser

Turns untrusted filter, sort and projection parameters into validated,
immutable structures. The same parser validates user filters and rendered
row policies, so every value that reaches a query builder has been checked
against the column allow-list first.

Filter syntaxes:

    Structured (dict/list, or JSON text starting with "{" or "["):
        {"and": [...]}, {"or": [...]}
        {"field": "status", "op": "eq", "value": "shipped"}
        {"status": "shipped"}                 equality shorthand
        {"total": {"gte": 10, "lt": 20}}      operator shorthand
        [node, node]                          implicit and

    Textual:
        status:eq:"shipped",total:gt:10,deleted_at:isnull
"""
import json
from typing import Any, Iterable, List, Optional, Sequence, Union

from autorest.core.errors import InvalidFilterField, InvalidFilterOperator, InvalidFilterValue
from autorest.services.auto_rest.filter_ast import (
    Combinator,
    CombinatorKind,
    Condition,
    FilterNode,
    FilterOperator,
    SortSpec,
)

_SCALAR_TYPES = (str, int, float, bool)
_MISSING = object()

RawFilter = Union[None, str, dict, list, tuple]


def parse_filter(raw: RawFilter, allowed_columns: Iterable[str]) -> Optional[FilterNode]:
    """
    Parse a filter expression into a validated AST.

    Args:
        raw: Filter expression (text, JSON text, or already decoded structure)
        allowed_columns: Columns the expression may reference

    Returns:
        FilterNode, or None when there is no filter

    Raises:
        InvalidFilterField: A condition references a column outside the allow-list
        InvalidFilterOperator: A condition uses an unknown operator
        InvalidFilterValue: A value has the wrong shape or the expression is malformed
    """
    allowed = frozenset(allowed_columns)

    if raw is None:
        return None

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text[0] in "{[":
            try:
                structure = json.loads(text)
            except ValueError:
                raise InvalidFilterValue("Filter expression is not valid JSON")
            if not structure:
                return None
            return _parse_structure(structure, allowed)
        return _parse_text(text, allowed)

    if isinstance(raw, (dict, list, tuple)):
        if not raw:
            return None
        return _parse_structure(raw, allowed)

    raise InvalidFilterValue(f"Unsupported filter expression type: {type(raw).__name__}")


def parse_sort(raw: Union[None, str, Sequence[str]], allowed_columns: Iterable[str]) -> SortSpec:
    """
    Parse ``column``, ``column:dir`` or ``-column`` items.

    Columns outside the allow-list are dropped rather than rejected.
    """
    if not raw:
        return ()
    allowed = frozenset(allowed_columns)
    items = raw.split(",") if isinstance(raw, str) else list(raw)

    spec = []
    seen = set()
    for item in items:
        token = str(item).strip()
        if not token:
            continue
        direction = "asc"
        if token.startswith("-"):
            token, direction = token[1:], "desc"
        elif ":" in token:
            column, _, suffix = token.rpartition(":")
            if suffix.strip().lower() in ("asc", "desc"):
                token, direction = column, suffix.strip().lower()
        token = token.strip()
        if token in allowed and token not in seen:
            seen.add(token)
            spec.append((token, direction))
    return tuple(spec)


def sanitize_fields(raw: Union[None, str, Sequence[str]], visible_columns: Sequence[str]) -> List[str]:
    """
    Narrow a requested projection to the visible columns.

    Unknown or hidden fields are dropped silently; an empty result falls back
    to every visible column.
    """
    visible = list(visible_columns)
    if not raw:
        return visible
    requested = raw.split(",") if isinstance(raw, str) else list(raw)

    fields = []
    for name in requested:
        name = str(name).strip()
        if name in visible and name not in fields:
            fields.append(name)
    return fields or visible


# ---------------------------------------------------------------------------
# Structured form
# ---------------------------------------------------------------------------

def _parse_structure(node: Any, allowed: frozenset) -> FilterNode:
    if isinstance(node, (list, tuple)):
        return _group(CombinatorKind.AND, [_parse_structure(child, allowed) for child in node])

    if not isinstance(node, dict) or not node:
        raise InvalidFilterValue("Filter nodes must be non-empty objects or lists")

    keys = set(node)
    if "field" in keys and "op" in keys and keys <= {"field", "op", "value"}:
        return _build_condition(node["field"], node["op"], node.get("value", _MISSING), allowed)

    parts = []
    for key, value in node.items():
        lowered = key.lower() if isinstance(key, str) else key
        if lowered in ("and", "or"):
            if not isinstance(value, (list, tuple)):
                raise InvalidFilterValue(f"'{key}' expects a list of filter nodes")
            parts.append(_group(CombinatorKind(lowered), [_parse_structure(child, allowed) for child in value]))
        elif isinstance(value, dict):
            if not value:
                raise InvalidFilterValue(f"Empty operator object for field '{key}'")
            for op, operand in value.items():
                parts.append(_build_condition(key, op, operand, allowed))
        else:
            parts.append(_build_condition(key, FilterOperator.EQ.value, value, allowed))
    return _group(CombinatorKind.AND, parts)


def _group(kind: CombinatorKind, children: List[FilterNode]) -> FilterNode:
    if not children:
        raise InvalidFilterValue(f"'{kind.value}' group must not be empty")
    if len(children) == 1:
        return children[0]
    return Combinator(kind, tuple(children))


# ---------------------------------------------------------------------------
# Textual form
# ---------------------------------------------------------------------------

def _parse_text(text: str, allowed: frozenset) -> FilterNode:
    conditions = []
    for term in _split_terms(text):
        term = term.strip()
        if not term:
            continue
        pieces = term.split(":", 2)
        if len(pieces) < 2:
            raise InvalidFilterValue(f"Malformed filter term: {term}")
        field, op = pieces[0].strip(), pieces[1].strip()
        value = _decode_value(pieces[2]) if len(pieces) == 3 else _MISSING
        conditions.append(_build_condition(field, op, value, allowed))
    return _group(CombinatorKind.AND, conditions)


def _split_terms(text: str) -> List[str]:
    """Split on commas that are outside quotes and brackets."""
    terms = []
    depth = 0
    quote = None
    escaped = False
    current = []
    for char in text:
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char == '"':
            quote = char
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth = max(0, depth - 1)
        elif char == "," and depth == 0:
            terms.append("".join(current))
            current = []
            continue
        current.append(char)
    if quote:
        raise InvalidFilterValue("Unterminated quoted value in filter")
    terms.append("".join(current))
    return terms


def _decode_value(raw: str) -> Any:
    text = raw.strip()
    try:
        return json.loads(text)
    except ValueError:
        return text


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

def _build_condition(field: Any, op: Any, value: Any, allowed: frozenset) -> Condition:
    if not isinstance(field, str) or field not in allowed:
        raise InvalidFilterField(str(field))

    try:
        operator = FilterOperator(op.strip().lower() if isinstance(op, str) else op)
    except ValueError:
        raise InvalidFilterOperator(op)

    if operator is FilterOperator.ISNULL:
        if value is _MISSING:
            return Condition(field, operator, True)
        if not isinstance(value, bool):
            raise InvalidFilterValue(f"'isnull' on '{field}' expects true or false")
        return Condition(field, operator, value)

    if value is _MISSING:
        raise InvalidFilterValue(f"Operator '{operator.value}' on '{field}' requires a value")

    if operator is FilterOperator.IN:
        if not isinstance(value, (list, tuple)):
            raise InvalidFilterValue(f"'in' on '{field}' expects a list")
        return Condition(field, operator, tuple(_scalar(field, item) for item in value))

    if operator is FilterOperator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise InvalidFilterValue(f"'between' on '{field}' expects exactly two values")
        low, high = (_scalar(field, item) for item in value)
        if low is None or high is None:
            raise InvalidFilterValue(f"'between' bounds on '{field}' must not be null")
        return Condition(field, operator, (low, high))

    if operator in (FilterOperator.LIKE, FilterOperator.ILIKE):
        if not isinstance(value, str):
            raise InvalidFilterValue(f"'{operator.value}' on '{field}' expects a string pattern")
        return Condition(field, operator, value)

    value = _scalar(field, value)
    if value is None:
        if operator is FilterOperator.EQ:
            return Condition(field, FilterOperator.ISNULL, True)
        if operator is FilterOperator.NEQ:
            return Condition(field, FilterOperator.ISNULL, False)
        raise InvalidFilterValue(f"'{operator.value}' on '{field}' does not accept null")
    return Condition(field, operator, value)


def _scalar(field: str, value: Any) -> Any:
    if value is None or isinstance(value, _SCALAR_TYPES):
        return value
    raise InvalidFilterValue(f"Value for '{field}' must be a string, number, boolean or null")
