"""
Filter AST - dialect independent representation of a filter expression
"""
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union
import enum


class FilterOperator(str, enum.Enum):
    """Comparison operators accepted in filter conditions."""
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    LIKE = "like"
    ILIKE = "ilike"
    BETWEEN = "between"
    ISNULL = "isnull"


class CombinatorKind(str, enum.Enum):
    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class Condition:
    """Leaf node: ``field op value``. List values are stored as tuples."""
    field: str
    op: FilterOperator
    value: Any = None


@dataclass(frozen=True)
class Combinator:
    """Boolean node over one or more children."""
    kind: CombinatorKind
    children: Tuple["FilterNode", ...]


FilterNode = Union[Condition, Combinator]

SortSpec = Tuple[Tuple[str, str], ...]


def combine_filters(row_policy: Optional[FilterNode], user_filter: Optional[FilterNode]) -> Optional[FilterNode]:
    """
    Merge the row policy and the user filter.

    The row policy always comes first so generated queries are reproducible;
    neither input is modified.
    """
    if row_policy is not None and user_filter is not None:
        return Combinator(CombinatorKind.AND, (row_policy, user_filter))
    return row_policy if row_policy is not None else user_filter


def match_nothing(field: str) -> Condition:
    """A condition that is false for every row."""
    return Condition(field, FilterOperator.IN, ())


def referenced_fields(node: Optional[FilterNode]) -> Tuple[str, ...]:
    """Columns referenced anywhere in the tree, in first-seen order."""
    if node is None:
        return ()
    if isinstance(node, Condition):
        return (node.field,)
    seen = []
    for child in node.children:
        for name in referenced_fields(child):
            if name not in seen:
                seen.append(name)
    return tuple(seen)


def to_primitive(node: Optional[FilterNode]) -> Any:
    """JSON-friendly form used for fingerprints and logs."""
    if node is None:
        return None
    if isinstance(node, Condition):
        value = list(node.value) if isinstance(node.value, tuple) else node.value
        return {"field": node.field, "op": node.op.value, "value": value}
    return {node.kind.value: [to_primitive(child) for child in node.children]}
