"""
Auto-REST API Routes - Generic read access to exposed tables and collections
"""
import json
import math
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
import structlog

from autorest.api.deps import get_caller_context, get_runtime, get_service_binding
from autorest.core.context import CallerContext, ServiceBinding
from autorest.core.errors import AutoRestError, EntityNotFound, InvalidRequest
from autorest.schemas.auto_rest import (
    CountResponse,
    DiscoveredTableResponse,
    ErrorResponse,
    ExposeRequest,
    ExposeResponse,
    ExposedEntityResponse,
    ListEnvelope,
)
from autorest.services.auto_rest.change_notifier import POLLING
from autorest.services.auto_rest.execution_engine import ListParams
from autorest.services.auto_rest.runtime import EngineRuntime

router = APIRouter()
logger = structlog.get_logger()

# Shortest polling interval a client may ask for
MIN_INTERVAL_SECONDS = 0.5


# ============================================================================
# CATALOG
# ============================================================================

@router.get("/{service}/_table", response_model=Dict[str, List[ExposedEntityResponse]])
async def list_exposed_entities(
    binding: ServiceBinding = Depends(get_service_binding),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """List readable exposed entities of a service."""
    return {"data": await runtime.engine.list_exposed_entities(binding)}


@router.get("/{service}/_discover")
async def discover_tables(
    binding: ServiceBinding = Depends(get_service_binding),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """List backend tables and whether each one is already exposed."""
    tables = await runtime.engine.discover_tables(binding)
    return {
        "data": [DiscoveredTableResponse(**table).model_dump(by_alias=True) for table in tables],
        "total": len(tables),
        "exposed": sum(1 for table in tables if table["isExposed"]),
    }


@router.post("/{service}/_expose", response_model=ExposeResponse)
async def expose_tables(
    body: ExposeRequest,
    binding: ServiceBinding = Depends(get_service_binding),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """Expose discovered tables for reading."""
    tables = [item if isinstance(item, str) else item.to_options() for item in body.tables]
    return await runtime.engine.expose_tables(binding, tables)


# ============================================================================
# READS
# ============================================================================

@router.get(
    "/{service}/_table/{entity}",
    responses={200: {"model": ListEnvelope}, 400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def list_rows(
    request: Request,
    entity: str,
    binding: ServiceBinding = Depends(get_service_binding),
    context: CallerContext = Depends(get_caller_context),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """
    List rows with pagination, projection, sorting and filtering.

    Query parameters: page, pageSize (or limit), fields, sort, filter,
    cache, cache_ttl, realtime.
    """
    params = ListParams.from_mapping(request.query_params)
    return await runtime.engine.handle_list(binding, context, entity, params)


@router.get("/{service}/_table/{entity}/_count", response_model=CountResponse)
async def count_rows(
    entity: str,
    filter: Optional[str] = Query(default=None),
    binding: ServiceBinding = Depends(get_service_binding),
    context: CallerContext = Depends(get_caller_context),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """Count rows matching an optional filter."""
    return await runtime.engine.handle_count(binding, context, entity, filter)


@router.get("/{service}/_table/{entity}/_schema")
async def describe_entity(
    entity: str,
    binding: ServiceBinding = Depends(get_service_binding),
    context: CallerContext = Depends(get_caller_context),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """Columns of an entity visible to the caller."""
    return {"data": await runtime.engine.describe_entity(binding, context, entity)}


@router.get("/{service}/_table/{entity}/{record_id}")
async def get_row(
    entity: str,
    record_id: str,
    fields: Optional[str] = Query(default=None),
    binding: ServiceBinding = Depends(get_service_binding),
    context: CallerContext = Depends(get_caller_context),
    runtime: EngineRuntime = Depends(get_runtime),
):
    """Fetch one row by primary key."""
    row = await runtime.engine.handle_by_id(binding, context, entity, record_id, fields)
    if row is None:
        raise EntityNotFound("Row not found", entity=entity)
    return row


# ============================================================================
# REALTIME
# ============================================================================

@router.websocket("/{service}/_realtime")
async def realtime(websocket: WebSocket, service: str):
    """
    Change notifications over a WebSocket.

    Messages from the client::

        {"action": "subscribe", "entity": "orders", "method": "polling", "interval": 5}
        {"action": "unsubscribe", "channelId": "shop_orders"}
    """
    runtime: EngineRuntime = websocket.app.state.runtime
    binding = getattr(websocket.state, "service_binding", None)
    resolver = getattr(websocket.app.state, "service_resolver", None)
    if binding is None and resolver is not None:
        binding = resolver(service, websocket)
    if binding is None or binding.service_name != service:
        await websocket.close(code=4404)
        return
    context = getattr(websocket.state, "caller_context", None) or CallerContext()

    await websocket.accept()
    client_id = uuid.uuid4().hex

    async def send(event: Dict[str, Any]) -> None:
        await websocket.send_json(event)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = _parse_message(raw)
                action = message.get("action")
                if action == "subscribe":
                    entity = message.get("entity")
                    if not entity:
                        raise InvalidRequest("'entity' is required")
                    await runtime.engine.subscribe_changes(
                        client_id,
                        binding,
                        context,
                        str(entity),
                        send,
                        method=message.get("method") or POLLING,
                        interval=_as_interval(message.get("interval")),
                        params=ListParams.from_mapping(_as_query(message.get("query"))),
                    )
                elif action == "unsubscribe":
                    removed = await runtime.notifier.unsubscribe(client_id, str(message.get("channelId")))
                    await send({"type": "unsubscribed", "channelId": message.get("channelId"), "removed": removed})
                else:
                    raise InvalidRequest(f"Unknown action: {action}")
            except AutoRestError as e:
                payload = e.to_payload()
                payload["type"] = "subscription_error"
                await send(payload)
    except WebSocketDisconnect:
        pass
    finally:
        dropped = await runtime.notifier.disconnect(client_id)
        logger.info("realtime_client_disconnected", client_id=client_id, subscriptions=dropped)


def _parse_message(raw: str) -> Dict[str, Any]:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        raise InvalidRequest("Message is not valid JSON")
    if not isinstance(message, dict):
        raise InvalidRequest("Message must be a JSON object")
    return message


def _as_query(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidRequest("'query' must be an object")
    return value


def _as_interval(value: Any) -> Optional[float]:
    """Polling interval in seconds, floored; None keeps the server default."""
    if value is None:
        return None
    try:
        interval = float(value)
    except (TypeError, ValueError):
        raise InvalidRequest("'interval' must be a number")
    if not math.isfinite(interval):
        raise InvalidRequest("'interval' must be a finite number")
    if interval <= 0:
        return None
    return max(interval, MIN_INTERVAL_SECONDS)
