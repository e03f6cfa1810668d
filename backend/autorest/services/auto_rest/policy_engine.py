"""
Policy Engine

Resolves which columns a role may see and which rows it may read. Field
policies narrow and mask columns; row policies are filter templates rendered
against the caller context and re-validated by the filter parser, so a policy
can never reference a column the entity does not have.
"""
from dataclasses import dataclass
import re
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

import structlog

from autorest.core.errors import InvalidFilter, PolicyTemplateRenderError
from autorest.services.auto_rest.filter_ast import FilterNode, match_nothing
from autorest.services.auto_rest.filter_parser import parse_filter

logger = structlog.get_logger()

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_SCALARS = (str, int, float, bool)
_MISSING = object()


@dataclass(frozen=True)
class FieldAccess:
    """Columns a caller may reference, and the subset emitted as null."""
    allowed_columns: Tuple[str, ...]
    masked_fields: Tuple[str, ...]

    @property
    def visible_columns(self) -> Tuple[str, ...]:
        """Allowed columns that are not masked; the only ones ever fetched."""
        masked = set(self.masked_fields)
        return tuple(column for column in self.allowed_columns if column not in masked)


def select_effective_policy(policies: Optional[Iterable[Any]], role_id: Optional[str]) -> Optional[Any]:
    """
    Pick the policy that applies to a role.

    An exact role match wins; otherwise the organization default (role_id
    None) applies; otherwise there is no policy.
    """
    if not policies:
        return None
    policies = list(policies)
    if role_id is not None:
        for policy in policies:
            if policy.role_id == role_id:
                return policy
    for policy in policies:
        if policy.role_id is None:
            return policy
    return None


def resolve_field_policy(entity: Any, role_id: Optional[str], discovered_columns: Sequence[str]) -> FieldAccess:
    """
    Compute the allowed and masked columns for a role.

    Args:
        entity: Entity snapshot carrying ``field_policies``
        role_id: Caller's role
        discovered_columns: Live columns of the table, in table order

    Returns:
        FieldAccess; include_fields wins over exclude_fields
    """
    columns = list(discovered_columns)
    policy = select_effective_policy(entity.field_policies, role_id)
    if policy is None:
        return FieldAccess(tuple(columns), ())

    include = set(policy.include_fields or ())
    exclude = set(policy.exclude_fields or ())
    if include:
        allowed = [column for column in columns if column in include]
    else:
        allowed = [column for column in columns if column not in exclude]

    masked = set(policy.masked_fields or ())
    return FieldAccess(tuple(allowed), tuple(column for column in allowed if column in masked))


def _lookup(context: Dict[str, Any], path: str) -> Any:
    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _embedded_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _render_string(template: str, context: Dict[str, Any]) -> Any:
    whole = _PLACEHOLDER.fullmatch(template.strip())
    if whole:
        value = _lookup(context, whole.group(1))
        if value is _MISSING or value is None:
            return None
        if not isinstance(value, _SCALARS):
            raise PolicyTemplateRenderError(f"Placeholder '{whole.group(1)}' does not resolve to a scalar")
        return value

    def substitute(match):
        value = _lookup(context, match.group(1))
        if value is _MISSING or value is None:
            raise PolicyTemplateRenderError(f"Placeholder '{match.group(1)}' has no value")
        if not isinstance(value, _SCALARS):
            raise PolicyTemplateRenderError(f"Placeholder '{match.group(1)}' does not resolve to a scalar")
        return _embedded_text(value)

    return _PLACEHOLDER.sub(substitute, template)


def render_policy_template(template: Any, context: Dict[str, Any]) -> Any:
    """
    Render ``{{dotted.path}}`` placeholders in a filter template.

    The template is walked structurally. A string that is exactly one
    placeholder becomes the scalar at that path (None when missing), keeping
    its type. Placeholders inside longer strings are substituted textually
    and must resolve to a value.

    Raises:
        PolicyTemplateRenderError: A placeholder resolves to a non-scalar, or
            an embedded placeholder has no value
    """
    if isinstance(template, dict):
        return {key: render_policy_template(value, context) for key, value in template.items()}
    if isinstance(template, (list, tuple)):
        return [render_policy_template(item, context) for item in template]
    if isinstance(template, str):
        return _render_string(template, context)
    if template is None or isinstance(template, _SCALARS):
        return template
    raise PolicyTemplateRenderError(f"Unsupported template node: {type(template).__name__}")


def resolve_row_policy(
    entity: Any,
    role_id: Optional[str],
    context: Dict[str, Any],
    columns: Sequence[str],
    fail_closed: bool = False,
    on_failure: Optional[Callable[[], None]] = None,
) -> Optional[FilterNode]:
    """
    Resolve the row filter for a role.

    A template that cannot be rendered or parsed never fails the request: the
    failure is logged and reported through ``on_failure``, then the policy
    degrades to no filter, or to a match-nothing filter when ``fail_closed``.
    """
    policy = select_effective_policy(entity.row_policies, role_id)
    if policy is None or not policy.filter_template:
        return None

    try:
        rendered = render_policy_template(policy.filter_template, context)
        return parse_filter(rendered, columns)
    except (PolicyTemplateRenderError, InvalidFilter) as e:
        logger.warning(
            "row_policy_render_failed",
            entity=getattr(entity, "name", None),
            role_id=role_id,
            error=str(e),
            fail_closed=fail_closed,
        )
        if on_failure is not None:
            on_failure()
        if fail_closed:
            return match_nothing(getattr(entity, "primary_key", None) or (columns[0] if columns else "id"))
        return None
