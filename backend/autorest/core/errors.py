"""
Auto-REST error taxonomy

Every error carries a stable machine-readable ``code`` and the HTTP status the
API layer maps it to. Client errors expose their message; server errors only
expose ``public_message`` so SQL text and credentials never reach a response.
"""
from typing import Any, Dict, Optional


class AutoRestError(Exception):
    """Base class for all auto-REST engine errors."""

    code = "SERVER_ERROR"
    status_code = 500
    public_message = "The request could not be completed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.public_message
        self.context: Dict[str, Any] = dict(context)
        super().__init__(self.message)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    def with_context(self, **context: Any) -> "AutoRestError":
        """Attach request context (service, entity, fingerprint) for logging."""
        self.context.update({k: v for k, v in context.items() if v is not None})
        return self

    def to_payload(self) -> Dict[str, Any]:
        """Structured error payload safe to return to callers."""
        message = self.message if self.is_client_error else self.public_message
        return {"error": {"code": self.code, "message": message}}


class EntityNotFound(AutoRestError):
    """Path alias/name does not match a readable exposed entity."""

    code = "ENTITY_NOT_FOUND"
    status_code = 404
    public_message = "Entity not found or not readable"


class InvalidFilter(AutoRestError):
    """Base class for malformed filter expressions."""

    code = "INVALID_FILTER"
    status_code = 400
    public_message = "Invalid filter expression"


class InvalidFilterField(InvalidFilter):
    code = "INVALID_FILTER_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Unknown or disallowed filter field: {field}", field=field)


class InvalidFilterOperator(InvalidFilter):
    code = "INVALID_FILTER_OPERATOR"

    def __init__(self, operator: Any):
        self.operator = operator
        super().__init__(f"Unknown filter operator: {operator}", operator=str(operator))


class InvalidFilterValue(InvalidFilter):
    code = "INVALID_FILTER_VALUE"


class UnsupportedDatabaseType(AutoRestError):
    """Backend type has no query builder or driver (configuration error)."""

    code = "UNSUPPORTED_DATABASE_TYPE"
    status_code = 422

    def __init__(self, db_type: Any):
        self.db_type = db_type
        super().__init__(f"Database type {db_type} is not supported", db_type=str(db_type))


class PolicyTemplateRenderError(AutoRestError):
    """Row policy template could not be rendered. Never surfaced to callers."""

    code = "POLICY_TEMPLATE_RENDER_ERROR"


class QueryExecutionError(AutoRestError):
    """Driver or backend failure while executing a built query."""

    code = "QUERY_EXECUTION_FAILED"
    status_code = 500
    public_message = "Query execution failed"


class QueryTimeoutError(AutoRestError):
    """Query execution exceeded its time bound."""

    code = "QUERY_TIMEOUT"
    status_code = 504
    public_message = "Query execution timed out"


class TableNotFound(AutoRestError):
    code = "TABLE_NOT_FOUND"
    status_code = 404
    public_message = "Table not found"


class EntityAlreadyExposed(AutoRestError):
    code = "ENTITY_ALREADY_EXPOSED"
    status_code = 409
    public_message = "Table is already exposed"


class PathAliasConflict(AutoRestError):
    code = "PATH_ALIAS_CONFLICT"
    status_code = 409
    public_message = "Path alias is already in use"


class ServiceNotFound(AutoRestError):
    """No service binding was resolved for the requested service name."""

    code = "SERVICE_NOT_FOUND"
    status_code = 404
    public_message = "Service not found"


class InvalidRequest(AutoRestError):
    code = "INVALID_REQUEST"
    status_code = 400
    public_message = "Invalid request"
