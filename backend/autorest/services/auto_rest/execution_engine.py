"""
Auto-REST Execution Engine

Turns a generic list/get request into a policy-constrained, parameterized
query for the service's backend and shapes the result:

    resolve entity -> live columns + policies -> parse filter -> build query
    -> cache / dedup -> execute -> mask + envelope -> (cache store)
"""
import asyncio
from dataclasses import dataclass
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from autorest.config import Settings, get_settings
from autorest.connections.connection_config import ConnectionConfig, DatabaseType
from autorest.connections.connection_manager import ConnectionManager
from autorest.connections.connectors.base_connector import BaseConnector, ColumnInfo
from autorest.core.context import CallerContext, ServiceBinding
from autorest.core.errors import AutoRestError, EntityNotFound, QueryExecutionError, QueryTimeoutError
from autorest.services.auto_rest.catalog import EntityCatalog, EntitySnapshot
from autorest.services.auto_rest.change_notifier import (
    POLLING,
    ChangeNotifier,
    TriggerSource,
)
from autorest.services.auto_rest.dialects import TableRef, get_query_builder
from autorest.services.auto_rest.filter_ast import FilterNode, combine_filters
from autorest.services.auto_rest.filter_parser import parse_filter, parse_sort, sanitize_fields
from autorest.services.auto_rest.pagination import clamp_page_size, has_next, normalize_page
from autorest.services.auto_rest.policy_engine import FieldAccess, resolve_field_policy, resolve_row_policy
from autorest.services.auto_rest.request_cache import RequestDeduplicator, ResponseCache, request_fingerprint

logger = structlog.get_logger()

_TRUE_VALUES = {"1", "true", "yes", "on"}
_INTEGER_TYPES = {"INT", "INTEGER", "BIGINT", "SMALLINT", "TINYINT", "MEDIUMINT", "SERIAL", "BIGSERIAL"}


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES if value is not None else False


@dataclass(frozen=True)
class ListParams:
    """Raw, untrusted list parameters."""
    page: Any = 1
    page_size: Any = None
    fields: Any = None
    sort: Any = None
    filter: Any = None
    cache: bool = False
    cache_ttl: Any = None
    realtime: bool = False

    @classmethod
    def from_mapping(cls, query: Mapping[str, Any]) -> "ListParams":
        """Build from query-string style keys (``pageSize``, ``page_size`` or ``limit``)."""
        page_size = query.get("pageSize", query.get("page_size", query.get("limit")))
        return cls(
            page=query.get("page", 1),
            page_size=page_size,
            fields=query.get("fields"),
            sort=query.get("sort"),
            filter=query.get("filter"),
            cache=_truthy(query.get("cache")),
            cache_ttl=query.get("cache_ttl"),
            realtime=_truthy(query.get("realtime")),
        )


@dataclass(frozen=True)
class ResolvedEntity:
    """Everything a request needs after catalog, introspection and policy resolution."""
    entity: EntitySnapshot
    config: ConnectionConfig
    builder: Any
    columns: Tuple[ColumnInfo, ...]
    access: FieldAccess
    row_policy: Optional[FilterNode]


class AutoRestEngine:
    """
    Generic read engine over exposed entities.

    All blocking work (catalog reads, driver calls) runs in worker threads;
    driver calls are bounded by the query timeout.
    """

    def __init__(
        self,
        catalog: EntityCatalog,
        connections: ConnectionManager,
        deduplicator: Optional[RequestDeduplicator] = None,
        response_cache: Optional[ResponseCache] = None,
        notifier: Optional[ChangeNotifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.connections = connections
        self.deduplicator = deduplicator or RequestDeduplicator(
            grace_seconds=self.settings.DEDUP_GRACE_SECONDS,
            max_entries=self.settings.DEDUP_MAX_ENTRIES,
        )
        self.response_cache = response_cache or ResponseCache(
            default_ttl=self.settings.RESPONSE_CACHE_TTL_SECONDS,
            max_ttl=self.settings.RESPONSE_CACHE_MAX_TTL_SECONDS,
            max_entries=self.settings.RESPONSE_CACHE_MAX_ENTRIES,
        )
        self.notifier = notifier
        self.policy_render_failures = 0

    # -- catalog operations --------------------------------------------------

    async def list_exposed_entities(self, binding: ServiceBinding) -> List[Dict[str, Any]]:
        entities = await asyncio.to_thread(self.catalog.list_exposed_entities, binding.service_id)
        return [entity.to_dict() for entity in entities]

    async def discover_tables(self, binding: ServiceBinding) -> List[Dict[str, Any]]:
        """List the backend's tables, flagging the ones already exposed."""
        tables = await self._run(binding.connection, lambda connector: connector.list_tables(), binding)
        discovered = await asyncio.to_thread(self.catalog.annotate_discovered, binding.service_id, tables)
        return [table.to_dict() for table in discovered]

    async def expose_table(
        self,
        binding: ServiceBinding,
        table_name: str,
        schema: Optional[str] = None,
        path_slug: Optional[str] = None,
        primary_key: Optional[str] = None,
        default_sort: Any = None,
        kind: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Expose a discovered table.

        Raises:
            TableNotFound: The backend has no such table
            EntityAlreadyExposed: The table is already exposed
            PathAliasConflict: The alias is taken
        """
        tables = await self._run(binding.connection, lambda connector: connector.list_tables(), binding)
        if not primary_key:
            primary_key = await self._detect_primary_key(binding, tables, table_name, schema)
        entity = await asyncio.to_thread(
            self.catalog.expose_table,
            binding,
            table_name,
            schema=schema,
            kind=kind,
            path_slug=path_slug,
            primary_key=primary_key,
            default_sort=default_sort,
            available_tables=tables,
        )
        return entity.to_dict()

    async def expose_tables(self, binding: ServiceBinding, tables: Sequence[Any]) -> Dict[str, Any]:
        """
        Expose several discovered tables at once, using suggested aliases.

        Per-table failures are collected instead of aborting the batch.

        Args:
            binding: Service the tables belong to
            tables: Table names, or mappings with ``name`` and optional
                ``schema``, ``pathSlug``, ``primaryKey``, ``defaultSort``
        """
        available = await self._run(binding.connection, lambda connector: connector.list_tables(), binding)
        exposed, errors = [], []
        for item in tables:
            options = item if isinstance(item, dict) else {"name": item}
            name = str(options.get("name") or "")
            try:
                primary_key = options.get("primaryKey") or await self._detect_primary_key(
                    binding, available, name, options.get("schema")
                )
                entity = await asyncio.to_thread(
                    self.catalog.expose_table,
                    binding,
                    name,
                    schema=options.get("schema"),
                    path_slug=options.get("pathSlug"),
                    primary_key=primary_key,
                    default_sort=options.get("defaultSort"),
                    available_tables=available,
                )
            except AutoRestError as e:
                if not e.is_client_error:
                    raise
                errors.append({"table": name, "code": e.code, "message": e.message})
                continue
            exposed.append({
                "id": entity.id,
                "name": entity.name,
                "pathSlug": entity.path_slug,
                "endpoint": f"/{binding.service_name}/_table/{entity.path_slug}",
            })
        logger.info("auto_rest_expose", service=binding.service_name, exposed=len(exposed), errors=len(errors))
        return {"exposed": exposed, "errors": errors, "total": len(exposed)}

    # -- read operations -----------------------------------------------------

    async def handle_list(
        self,
        binding: ServiceBinding,
        context: CallerContext,
        entity_param: str,
        params: ListParams,
    ) -> Dict[str, Any]:
        """
        List rows of an exposed entity.

        Returns:
            ``{data, page, pageSize, total, hasNext}`` plus ``realtime`` when requested

        Raises:
            EntityNotFound: Unknown or unreadable entity
            InvalidFilter: Malformed user filter
            UnsupportedDatabaseType: Backend has no query builder
            QueryExecutionError / QueryTimeoutError: Backend failure
        """
        started = time.monotonic()
        resolved = await self._resolve(binding, context, entity_param)
        entity, access = resolved.entity, resolved.access
        visible = access.visible_columns

        fields = sanitize_fields(params.fields, visible)
        masks = self._emitted_masks(params.fields, access)
        sort = parse_sort(params.sort or list(entity.default_sort), visible)
        user_filter = parse_filter(params.filter, visible)
        filter_ast = combine_filters(resolved.row_policy, user_filter)

        page = normalize_page(params.page)
        page_size = clamp_page_size(params.page_size, default=self.settings.DEFAULT_PAGE_SIZE)
        query = resolved.builder.build_list_query(entity.table_ref, fields, filter_ast, sort, page, page_size)
        fingerprint = self.fingerprint(binding, context, entity, resolved.config.db_type, query, masks)

        use_cache = params.cache or self.settings.RESPONSE_CACHE_ENABLED
        if use_cache:
            cached = self.response_cache.get(fingerprint)
            if cached is not None:
                logger.debug("auto_rest_cache_hit", service=binding.service_name, entity=entity.name)
                return self._with_realtime(cached, binding, entity, params)

        async def execute():
            return await self._run(
                resolved.config,
                lambda connector: connector.run_list(query),
                binding,
                entity=entity.name,
                fingerprint=fingerprint,
            )

        rows, total = await self.deduplicator.run(fingerprint, execute)
        data = self._shape_rows(rows, fields, masks, access)
        envelope = {
            "data": data,
            "page": page,
            "pageSize": page_size,
            "total": total,
            "hasNext": has_next(page, page_size, len(data), total),
        }
        if use_cache:
            self.response_cache.set(fingerprint, envelope, params.cache_ttl)

        logger.info(
            "auto_rest_list",
            service=binding.service_name,
            entity=entity.name,
            rows=len(data),
            total=total,
            fingerprint=fingerprint[:16],
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return self._with_realtime(envelope, binding, entity, params)

    async def handle_by_id(
        self,
        binding: ServiceBinding,
        context: CallerContext,
        entity_param: str,
        record_id: Any,
        fields: Any = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch one row by primary key.

        The row policy is part of the WHERE clause, so a row outside the
        caller's policy is reported as missing.
        """
        resolved = await self._resolve(binding, context, entity_param)
        entity, access = resolved.entity, resolved.access
        projection = sanitize_fields(fields, access.visible_columns)
        masks = self._emitted_masks(fields, access)
        record_id = self._coerce_id(record_id, entity.primary_key, resolved.columns)

        query = resolved.builder.build_by_id_query(
            entity.table_ref, projection, entity.primary_key, record_id, resolved.row_policy
        )
        row = await self._run(
            resolved.config,
            lambda connector: connector.run_by_id(query),
            binding,
            entity=entity.name,
        )
        if row is None:
            return None
        return self._shape_rows([row], projection, masks, access)[0]

    async def handle_count(
        self,
        binding: ServiceBinding,
        context: CallerContext,
        entity_param: str,
        filter_param: Any = None,
    ) -> Dict[str, int]:
        """Total rows visible to the caller that match the filter."""
        resolved = await self._resolve(binding, context, entity_param)
        visible = resolved.access.visible_columns
        filter_ast = combine_filters(resolved.row_policy, parse_filter(filter_param, visible))
        query = resolved.builder.build_list_query(resolved.entity.table_ref, visible, filter_ast, (), 1, 1)
        total = await self._run(
            resolved.config,
            lambda connector: connector.run_count(query),
            binding,
            entity=resolved.entity.name,
        )
        return {"total": total}

    async def describe_entity(
        self,
        binding: ServiceBinding,
        context: CallerContext,
        entity_param: str,
    ) -> Dict[str, Any]:
        """Live column metadata of the columns the caller may see."""
        resolved = await self._resolve(binding, context, entity_param)
        entity, access = resolved.entity, resolved.access
        masked = set(access.masked_fields)
        allowed = set(access.allowed_columns)
        columns = []
        for column in resolved.columns:
            if column.name not in allowed:
                continue
            description = column.to_dict()
            description["masked"] = column.name in masked
            columns.append(description)
        return {
            "name": entity.name,
            "pathSlug": entity.path_slug,
            "type": entity.kind,
            "primaryKey": entity.primary_key,
            "columns": columns,
        }

    # -- change notifications ------------------------------------------------

    async def subscribe_changes(
        self,
        client_id: str,
        binding: ServiceBinding,
        context: CallerContext,
        entity_param: str,
        send: Callable[[Dict[str, Any]], Any],
        method: str = POLLING,
        interval: Optional[float] = None,
        params: Optional[ListParams] = None,
    ) -> Dict[str, Any]:
        """
        Subscribe a client to change events of an entity.

        The watched data is page 1 of the caller's own list view, so row and
        field policies apply to notifications too.
        """
        if self.notifier is None:
            raise QueryExecutionError("Change notifications are not enabled")
        resolved = await self._resolve(binding, context, entity_param)
        entity = resolved.entity
        base = params or ListParams()
        watch = ListParams(
            page=1,
            page_size=self.settings.REALTIME_PAGE_SIZE,
            fields=base.fields,
            sort=base.sort,
            filter=base.filter,
        )

        async def fetch():
            return await self.handle_list(binding, context, entity_param, watch)

        trigger = None
        if resolved.config.db_type in (DatabaseType.POSTGRESQL, DatabaseType.MYSQL):
            config = resolved.config
            table = entity.table_ref
            trigger = TriggerSource(
                install=lambda channel: self.connections.run(
                    config, lambda connector: connector.install_change_trigger(table, channel)
                ),
                open_listener=lambda channel: self.connections.get_connector(config).open_change_listener(channel),
                scope=f"{config.fingerprint()}|{table.schema or ''}.{table.name}",
                label=table.name,
            )

        channel_id = self.notifier.channel_id(binding.service_name, entity.path_slug or entity.name)
        return await self.notifier.subscribe(
            client_id,
            channel_id,
            fetch,
            send,
            method=method,
            interval=interval,
            trigger=trigger,
        )

    # -- internals -----------------------------------------------------------

    async def _detect_primary_key(
        self,
        binding: ServiceBinding,
        tables: Sequence[Any],
        table_name: str,
        schema: Optional[str],
    ) -> Optional[str]:
        """First column the backend reports as primary key; None when unknown."""
        match = next(
            (table for table in tables if table.name == table_name and (schema is None or table.schema == schema)),
            None,
        )
        if match is None:
            # The catalog reports the missing table
            return None
        table = TableRef(match.name, match.schema)
        columns = await self._run(
            binding.connection, lambda connector: connector.get_columns(table), binding, entity=table_name
        )
        return next((column.name for column in columns if column.is_primary_key), None)

    def fingerprint(
        self,
        binding: ServiceBinding,
        context: CallerContext,
        entity: EntitySnapshot,
        db_type: DatabaseType,
        query: Any,
        masked_fields: Sequence[str],
    ) -> str:
        if hasattr(query, "sql"):
            text, params = query.sql, query.params
        else:
            text = {
                "collection": query.collection,
                "filter": query.filter,
                "projection": query.projection,
                "sort": query.sort,
            }
            params = {"skip": query.skip, "limit": query.limit}
        return request_fingerprint(
            service_id=binding.service_id,
            entity=entity.name,
            environment=context.environment,
            caller_mode=context.caller_mode,
            dialect=db_type.value,
            query=text,
            params=params,
            masked_fields=masked_fields,
        )

    def _record_policy_failure(self) -> None:
        self.policy_render_failures += 1

    async def _resolve(self, binding: ServiceBinding, context: CallerContext, entity_param: str) -> ResolvedEntity:
        entity = await asyncio.to_thread(self.catalog.get_readable_entity, binding.service_id, entity_param)
        if entity is None:
            raise EntityNotFound(service=binding.service_name, entity=entity_param)

        config = binding.connection.with_database(entity.database_name)
        # Unsupported backends fail here, before any driver work
        builder = get_query_builder(config.db_type)

        columns = await self._run(
            config,
            lambda connector: connector.get_columns(entity.table_ref),
            binding,
            entity=entity.name,
        )
        names = [column.name for column in columns]
        access = resolve_field_policy(entity, context.role_id, names)
        # Row policies may reference any real column, including hidden ones
        row_policy = resolve_row_policy(
            entity,
            context.role_id,
            context.template_context(),
            names,
            fail_closed=self.settings.ROW_POLICY_FAIL_CLOSED,
            on_failure=self._record_policy_failure,
        )
        return ResolvedEntity(
            entity=entity,
            config=config,
            builder=builder,
            columns=tuple(columns),
            access=access,
            row_policy=row_policy,
        )

    async def _run(
        self,
        config: ConnectionConfig,
        operation: Callable[[BaseConnector], Any],
        binding: ServiceBinding,
        entity: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> Any:
        """Run a blocking connector operation in a worker thread, bounded by the query timeout."""
        timeout = self.settings.QUERY_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.connections.run, config, operation),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "auto_rest_query_timeout",
                service=binding.service_name,
                entity=entity,
                fingerprint=fingerprint,
                timeout_seconds=timeout,
            )
            raise QueryTimeoutError(
                f"Query exceeded {timeout} seconds",
                service=binding.service_name,
                entity=entity,
                fingerprint=fingerprint,
            )
        except AutoRestError as e:
            if isinstance(e, QueryTimeoutError):
                logger.error(
                    "auto_rest_query_timeout",
                    service=binding.service_name,
                    entity=entity,
                    fingerprint=fingerprint,
                    timeout_seconds=timeout,
                    cancelled_by="driver",
                )
            raise e.with_context(service=binding.service_name, entity=entity, fingerprint=fingerprint)
        except Exception as e:
            # Driver messages may contain SQL text; they stay in the logs
            logger.error(
                "auto_rest_query_failed",
                service=binding.service_name,
                entity=entity,
                fingerprint=fingerprint,
                db_type=config.db_type.value,
                error=str(e),
            )
            raise QueryExecutionError(
                service=binding.service_name,
                entity=entity,
                fingerprint=fingerprint,
            ) from e

    @staticmethod
    def _emitted_masks(raw_fields: Any, access: FieldAccess) -> List[str]:
        """Masked columns to emit as null: all of them, or only the requested ones."""
        if not access.masked_fields:
            return []
        if not raw_fields:
            return list(access.masked_fields)
        requested = raw_fields.split(",") if isinstance(raw_fields, str) else list(raw_fields)
        requested = {str(name).strip() for name in requested}
        return [name for name in access.masked_fields if name in requested]

    @staticmethod
    def _shape_rows(
        rows: Sequence[Dict[str, Any]],
        fields: Sequence[str],
        masks: Sequence[str],
        access: FieldAccess,
    ) -> List[Dict[str, Any]]:
        """Order columns like the table, emitting masked columns as null."""
        fetched = set(fields)
        masked = set(masks)
        order = [column for column in access.allowed_columns if column in fetched or column in masked]
        return [
            {column: (None if column in masked else row.get(column)) for column in order}
            for row in rows
        ]

    @staticmethod
    def _coerce_id(record_id: Any, primary_key: str, columns: Sequence[ColumnInfo]) -> Any:
        if not isinstance(record_id, str):
            return record_id
        column = next((c for c in columns if c.name == primary_key), None)
        if column is not None and column.data_type.split("(")[0].strip().upper() in _INTEGER_TYPES:
            candidate = record_id.strip()
            if candidate.lstrip("-").isdigit():
                return int(candidate)
        return record_id

    def _with_realtime(
        self,
        envelope: Dict[str, Any],
        binding: ServiceBinding,
        entity: EntitySnapshot,
        params: ListParams,
    ) -> Dict[str, Any]:
        if params.realtime and self.notifier is not None:
            envelope["realtime"] = self.notifier.get_realtime_info(
                binding.service_name, entity.path_slug or entity.name
            )
        return envelope
