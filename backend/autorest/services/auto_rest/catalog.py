"""
Entity Catalog

Persists which tables/collections are exposed per service, together with
their field and row policies. Lookups return immutable snapshots so request
handling never holds a catalog session.
"""
from dataclasses import dataclass, field
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from autorest.core.context import ServiceBinding
from autorest.core.errors import EntityAlreadyExposed, EntityNotFound, PathAliasConflict, TableNotFound
from autorest.models.exposed_entity import EntityKind, ExposedEntity, FieldPolicy, RowPolicy
from autorest.services.auto_rest.dialects.base import TableRef

logger = structlog.get_logger()

_PREFIX = re.compile(r"^(gs|tbl)_?")
_UNSAFE = re.compile(r"[^a-z0-9._-]+")


@dataclass(frozen=True)
class FieldPolicySnapshot:
    role_id: Optional[str]
    masked_fields: Tuple[str, ...] = ()
    include_fields: Tuple[str, ...] = ()
    exclude_fields: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RowPolicySnapshot:
    role_id: Optional[str]
    filter_template: Any = None


@dataclass(frozen=True)
class EntitySnapshot:
    """Detached, read-only view of an exposed entity and its policies."""
    id: int
    service_id: str
    name: str
    path_slug: str
    kind: str = EntityKind.TABLE.value
    primary_key: str = "id"
    organization_id: Optional[str] = None
    connection_id: Optional[str] = None
    database_name: Optional[str] = None
    schema_name: Optional[str] = None
    default_sort: Tuple[str, ...] = ()
    allow_read: bool = True
    allow_create: bool = False
    allow_update: bool = False
    allow_delete: bool = False
    field_policies: Tuple[FieldPolicySnapshot, ...] = field(default_factory=tuple)
    row_policies: Tuple[RowPolicySnapshot, ...] = field(default_factory=tuple)

    @property
    def table_ref(self) -> TableRef:
        return TableRef(name=self.name, schema=self.schema_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "schema": self.schema_name,
            "type": self.kind,
            "primaryKey": self.primary_key,
            "defaultSort": list(self.default_sort),
            "pathSlug": self.path_slug,
        }


@dataclass(frozen=True)
class DiscoveredTable:
    """A table found in the target database, annotated for the expose UI."""
    name: str
    schema: Optional[str]
    type: str
    is_exposed: bool
    suggested_path_slug: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "type": self.type,
            "isExposed": self.is_exposed,
            "suggestedPathSlug": self.suggested_path_slug,
        }


def suggest_path_alias(table_name: str) -> str:
    """
    Suggest a URL-safe alias: lower-case, common ``gs_``/``tbl_`` prefixes
    removed, underscores replaced with hyphens.
    """
    slug = _PREFIX.sub("", table_name.strip().lower()).replace("_", "-")
    slug = _UNSAFE.sub("-", slug).strip("-")
    fallback = _UNSAFE.sub("-", table_name.strip().lower().replace("_", "-")).strip("-")
    return slug or fallback or "entity"


def _normalize_sort(default_sort: Any) -> List[str]:
    if not default_sort:
        return []
    if isinstance(default_sort, str):
        return [item.strip() for item in default_sort.split(",") if item.strip()]
    items = []
    for item in default_sort:
        if isinstance(item, (list, tuple)) and len(item) == 2:
            items.append(f"{item[0]}:{item[1]}")
        else:
            items.append(str(item).strip())
    return [item for item in items if item]


def _snapshot(entity: ExposedEntity) -> EntitySnapshot:
    return EntitySnapshot(
        id=entity.id,
        service_id=entity.service_id,
        name=entity.name,
        path_slug=entity.path_slug,
        kind=entity.kind,
        primary_key=entity.primary_key or "id",
        organization_id=entity.organization_id,
        connection_id=entity.connection_id,
        database_name=entity.database_name,
        schema_name=entity.schema_name,
        default_sort=tuple(_normalize_sort(entity.default_sort)),
        allow_read=entity.allow_read,
        allow_create=entity.allow_create,
        allow_update=entity.allow_update,
        allow_delete=entity.allow_delete,
        field_policies=tuple(
            FieldPolicySnapshot(
                role_id=policy.role_id,
                masked_fields=tuple(policy.masked_fields or ()),
                include_fields=tuple(policy.include_fields or ()),
                exclude_fields=tuple(policy.exclude_fields or ()),
            )
            for policy in entity.field_policies
        ),
        row_policies=tuple(
            RowPolicySnapshot(role_id=policy.role_id, filter_template=policy.filter_template)
            for policy in entity.row_policies
        ),
    )


class EntityCatalog:
    """Catalog repository over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # -- reads ---------------------------------------------------------------

    def list_exposed_entities(self, service_id: str) -> List[EntitySnapshot]:
        """Readable entities of a service, ordered by name."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(ExposedEntity)
                .where(ExposedEntity.service_id == service_id, ExposedEntity.allow_read.is_(True))
                .order_by(ExposedEntity.name)
            ).all()
            return [_snapshot(row) for row in rows]

    def get_readable_entity(self, service_id: str, entity_param: str) -> Optional[EntitySnapshot]:
        """
        Find a readable entity by path alias or name.

        A path alias match wins over a name match so aliases stay stable
        when another table happens to be named like an alias.
        """
        with self._session_factory() as session:
            rows = session.scalars(
                select(ExposedEntity).where(
                    ExposedEntity.service_id == service_id,
                    ExposedEntity.allow_read.is_(True),
                    or_(ExposedEntity.path_slug == entity_param, ExposedEntity.name == entity_param),
                )
            ).all()
            if not rows:
                return None
            rows = sorted(rows, key=lambda row: (row.path_slug != entity_param, row.id))
            return _snapshot(rows[0])

    def exposed_names(self, service_id: str) -> set:
        with self._session_factory() as session:
            return set(
                session.scalars(select(ExposedEntity.name).where(ExposedEntity.service_id == service_id)).all()
            )

    def annotate_discovered(self, service_id: str, tables: Iterable[Any]) -> List[DiscoveredTable]:
        """
        Mark discovered tables that are already exposed and suggest aliases.

        Args:
            service_id: Service the tables belong to
            tables: TableInfo records from the connector
        """
        exposed = self.exposed_names(service_id)
        return [
            DiscoveredTable(
                name=table.name,
                schema=table.schema,
                type=table.table_type,
                is_exposed=table.name in exposed,
                suggested_path_slug=suggest_path_alias(table.name),
            )
            for table in tables
        ]

    # -- writes --------------------------------------------------------------

    def expose_table(
        self,
        binding: ServiceBinding,
        table_name: str,
        schema: Optional[str] = None,
        kind: Optional[str] = None,
        path_slug: Optional[str] = None,
        primary_key: Optional[str] = None,
        default_sort: Any = None,
        database: Optional[str] = None,
        available_tables: Optional[Sequence[Any]] = None,
    ) -> EntitySnapshot:
        """
        Expose a table for reading.

        Args:
            binding: Service the table belongs to
            table_name: Table or collection name
            schema: Schema name (None for the backend default)
            kind: TABLE, VIEW or COLLECTION; taken from discovery when omitted
            path_slug: URL alias; suggested from the name when omitted
            primary_key: Primary key column (default ``_id`` for collections, else ``id``)
            default_sort: Sort applied when a request has none
            database: Database on the service's server (default: the binding's)
            available_tables: Discovered tables; when given the table must be among them

        Raises:
            TableNotFound: The table is not in ``available_tables``
            EntityAlreadyExposed: The service already exposes this table
            PathAliasConflict: Another entity of the service uses the alias
        """
        if available_tables is not None:
            match = next(
                (
                    table for table in available_tables
                    if table.name == table_name and (schema is None or table.schema == schema)
                ),
                None,
            )
            if match is None:
                raise TableNotFound(f"Table {table_name} does not exist", table=table_name)
            kind = kind or match.table_type
            schema = schema if schema is not None else match.schema

        slug = suggest_path_alias(path_slug) if path_slug else suggest_path_alias(table_name)
        resolved_kind = str(kind or EntityKind.TABLE.value).upper()
        if resolved_kind not in EntityKind.__members__:
            resolved_kind = EntityKind.TABLE.value

        with self._session_factory() as session:
            self._ensure_available(session, binding.service_id, table_name, slug)
            entity = ExposedEntity(
                organization_id=binding.organization_id,
                service_id=binding.service_id,
                connection_id=binding.connection_id,
                database_name=database or binding.connection.database,
                schema_name=schema or None,
                name=table_name,
                kind=resolved_kind,
                primary_key=primary_key or ("_id" if resolved_kind == EntityKind.COLLECTION.value else "id"),
                default_sort=_normalize_sort(default_sort) or None,
                path_slug=slug,
                allow_read=True,
                allow_create=False,
                allow_update=False,
                allow_delete=False,
            )
            session.add(entity)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                # Lost a race with a concurrent expose
                self._ensure_available(session, binding.service_id, table_name, slug)
                raise EntityAlreadyExposed(f"Table {table_name} is already exposed", table=table_name)
            session.refresh(entity)

            logger.info("entity_exposed", service_id=binding.service_id, entity=table_name, path_slug=slug)
            return _snapshot(entity)

    def revoke(self, service_id: str, entity_param: str) -> bool:
        """Delete an exposed entity and, through cascade, its policies."""
        with self._session_factory() as session:
            entity = self._find(session, service_id, entity_param)
            if entity is None:
                return False
            name = entity.name
            session.delete(entity)
            session.commit()
            logger.info("entity_revoked", service_id=service_id, entity=name)
            return True

    def set_field_policy(
        self,
        service_id: str,
        entity_param: str,
        role_id: Optional[str] = None,
        masked_fields: Sequence[str] = (),
        include_fields: Optional[Sequence[str]] = None,
        exclude_fields: Optional[Sequence[str]] = None,
    ) -> FieldPolicySnapshot:
        """Create or replace the field policy of one role (None: organization default)."""
        with self._session_factory() as session:
            entity = self._require(session, service_id, entity_param)
            policy = next((p for p in entity.field_policies if p.role_id == role_id), None)
            if policy is None:
                policy = FieldPolicy(entity_id=entity.id, role_id=role_id)
                entity.field_policies.append(policy)
            policy.masked_fields = list(masked_fields or [])
            policy.include_fields = list(include_fields) if include_fields else None
            policy.exclude_fields = list(exclude_fields) if exclude_fields else None
            session.commit()
            return FieldPolicySnapshot(
                role_id=role_id,
                masked_fields=tuple(policy.masked_fields),
                include_fields=tuple(policy.include_fields or ()),
                exclude_fields=tuple(policy.exclude_fields or ()),
            )

    def set_row_policy(
        self,
        service_id: str,
        entity_param: str,
        filter_template: Any,
        role_id: Optional[str] = None,
    ) -> RowPolicySnapshot:
        """Create or replace the row policy of one role (None: organization default)."""
        with self._session_factory() as session:
            entity = self._require(session, service_id, entity_param)
            policy = next((p for p in entity.row_policies if p.role_id == role_id), None)
            if policy is None:
                policy = RowPolicy(entity_id=entity.id, role_id=role_id)
                entity.row_policies.append(policy)
            policy.filter_template = filter_template
            session.commit()
            return RowPolicySnapshot(role_id=role_id, filter_template=filter_template)

    # -- helpers -------------------------------------------------------------

    def _find(self, session: Session, service_id: str, entity_param: str) -> Optional[ExposedEntity]:
        rows = session.scalars(
            select(ExposedEntity).where(
                ExposedEntity.service_id == service_id,
                or_(ExposedEntity.path_slug == entity_param, ExposedEntity.name == entity_param),
            )
        ).all()
        if not rows:
            return None
        return sorted(rows, key=lambda row: (row.path_slug != entity_param, row.id))[0]

    def _require(self, session: Session, service_id: str, entity_param: str) -> ExposedEntity:
        entity = self._find(session, service_id, entity_param)
        if entity is None:
            raise EntityNotFound(entity=entity_param)
        return entity

    def _ensure_available(self, session: Session, service_id: str, table_name: str, slug: str) -> None:
        if session.scalar(
            select(ExposedEntity.id).where(ExposedEntity.service_id == service_id, ExposedEntity.name == table_name)
        ) is not None:
            raise EntityAlreadyExposed(f"Table {table_name} is already exposed", table=table_name)
        if session.scalar(
            select(ExposedEntity.id).where(ExposedEntity.service_id == service_id, ExposedEntity.path_slug == slug)
        ) is not None:
            raise PathAliasConflict(f"Path alias '{slug}' is already in use", path_slug=slug)
