"""
Engine runtime - owns the long-lived collaborators of the auto-REST engine
"""
from typing import Optional

import structlog
from sqlalchemy.orm import sessionmaker

from autorest.config import Settings, get_settings
from autorest.connections.connection_manager import ConnectionManager
from autorest.services.auto_rest.catalog import EntityCatalog
from autorest.services.auto_rest.change_notifier import ChangeNotifier
from autorest.services.auto_rest.execution_engine import AutoRestEngine
from autorest.services.auto_rest.request_cache import RequestDeduplicator, ResponseCache

logger = structlog.get_logger()


class EngineRuntime:
    """
    Explicit container for pools, caches and notification tasks.

    Created once per application (see the FastAPI lifespan) and torn down
    with ``shutdown()``; tests build their own with fakes.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[Settings] = None,
        connections: Optional[ConnectionManager] = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = EntityCatalog(session_factory)
        self.connections = connections or ConnectionManager(
            max_pools=self.settings.MAX_POOLS,
            pool_size=self.settings.POOL_SIZE,
            connect_timeout=self.settings.CONNECT_TIMEOUT_SECONDS,
            query_timeout=self.settings.QUERY_TIMEOUT_SECONDS,
        )
        self.deduplicator = RequestDeduplicator(
            grace_seconds=self.settings.DEDUP_GRACE_SECONDS,
            max_entries=self.settings.DEDUP_MAX_ENTRIES,
        )
        self.response_cache = ResponseCache(
            default_ttl=self.settings.RESPONSE_CACHE_TTL_SECONDS,
            max_ttl=self.settings.RESPONSE_CACHE_MAX_TTL_SECONDS,
            max_entries=self.settings.RESPONSE_CACHE_MAX_ENTRIES,
        )
        self.notifier = ChangeNotifier(
            poll_interval=self.settings.REALTIME_POLL_INTERVAL_SECONDS,
            websocket_url=self.settings.WEBSOCKET_URL,
        )
        self.engine = AutoRestEngine(
            catalog=self.catalog,
            connections=self.connections,
            deduplicator=self.deduplicator,
            response_cache=self.response_cache,
            notifier=self.notifier,
            settings=self.settings,
        )
        self._closed = False

    async def shutdown(self) -> None:
        """Stop notification tasks, drop cached responses and dispose every pool."""
        if self._closed:
            return
        self._closed = True
        await self.notifier.shutdown()
        self.response_cache.clear()
        self.connections.close_all()
        logger.info("engine_runtime_shutdown")
