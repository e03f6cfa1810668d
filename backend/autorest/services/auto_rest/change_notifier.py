"""
Change Notification Service

Pushes ``table_update`` events to subscribed clients. Polling is the default:
each subscription re-runs its list query on an interval and broadcasts when
the data checksum changes. Database triggers are opt-in for backends that
support them; a channel shares one listener across its subscribers.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import json
import math
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import structlog

from autorest.connections.connectors.base_connector import ChangeListener
from autorest.core.errors import AutoRestError

logger = structlog.get_logger()

POLLING = "polling"
DATABASE_TRIGGERS = "database_triggers"

# Bound on one blocking listener wait so closing a channel stays prompt
LISTENER_WAIT_SECONDS = 1.0

# Channel names stay within 47 characters so the trigger and function
# names derived from them fit PostgreSQL and MySQL identifier limits
CHANNEL_LABEL_CHARS = 25
CHANNEL_DIGEST_CHARS = 12

Fetch = Callable[[], Awaitable[Dict[str, Any]]]
Send = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class TriggerSource:
    """
    Blocking hooks that install a change trigger and open its listener.

    ``scope`` identifies the watched table on its database (connection
    fingerprint plus table); subscribers with the same scope share one
    trigger and one listener whatever service exposes the table.
    """
    install: Callable[[str], None]
    open_listener: Callable[[str], ChangeListener]
    scope: str = ""
    label: str = ""

    def channel(self, channel_id: str) -> str:
        return sanitize_channel(self.label or channel_id, self.scope or channel_id)


@dataclass
class Subscription:
    client_id: str
    channel_id: str
    method: str
    interval: Optional[float]
    fetch: Fetch
    send: Send
    task: Optional[asyncio.Task] = None
    last_checksum: Optional[str] = None
    wakeup: Optional[asyncio.Event] = None
    listener_channel: Optional[str] = None


@dataclass
class ChannelListener:
    """One trigger listener per notification channel."""
    channel: str
    listener: ChangeListener
    subscribers: Set[asyncio.Event] = field(default_factory=set)
    task: Optional[asyncio.Task] = None
    closing: bool = False


def compute_checksum(data: Any) -> str:
    encoded = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def sanitize_channel(label: str, scope: Optional[str] = None) -> str:
    """
    Database-safe notification channel name of at most 47 characters.

    A readable prefix from ``label`` plus a digest of ``scope`` (the label
    itself when omitted), so names stay distinct after truncation.
    """
    cleaned = re.sub(r"[^a-z0-9_]+", "_", label.lower()).strip("_")[:CHANNEL_LABEL_CHARS]
    digest = hashlib.sha256((scope if scope is not None else label).encode("utf-8")).hexdigest()
    return f"autorest_{cleaned}_{digest[:CHANNEL_DIGEST_CHARS]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChangeNotifier:
    """Per-subscription cancellable tasks, indexed by client."""

    def __init__(self, poll_interval: float = 5.0, websocket_url: str = "ws://localhost:8000"):
        self.poll_interval = poll_interval
        self.websocket_url = websocket_url
        self._subscriptions: Dict[Tuple[str, str], Subscription] = {}
        self._by_client: Dict[str, Set[str]] = {}
        self._channels: Dict[str, ChannelListener] = {}
        # Channels whose trigger install is in flight, resolved once the listener is registered
        self._pending: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def channel_id(service_name: str, entity: str) -> str:
        return f"{service_name}_{entity}"

    def get_realtime_info(self, service_name: str, entity: str) -> Dict[str, Any]:
        """Connection details attached to list responses that ask for realtime."""
        return {
            "enabled": True,
            "socketUrl": self.websocket_url,
            "channelId": self.channel_id(service_name, entity),
            "supportedMethods": [POLLING, DATABASE_TRIGGERS],
            "defaultMethod": POLLING,
        }

    def subscription_count(self, client_id: Optional[str] = None) -> int:
        if client_id is None:
            return len(self._subscriptions)
        return len(self._by_client.get(client_id, ()))

    # -- subscribe -----------------------------------------------------------

    async def subscribe(
        self,
        client_id: str,
        channel_id: str,
        fetch: Fetch,
        send: Send,
        method: str = POLLING,
        interval: Optional[float] = None,
        trigger: Optional[TriggerSource] = None,
    ) -> Dict[str, Any]:
        """
        Start watching a channel for a client.

        Args:
            client_id: Connection identifier of the subscriber
            channel_id: ``{service}_{entity}`` channel
            fetch: Coroutine function returning the current list envelope
            send: Coroutine function delivering one event to the client
            method: ``polling`` or ``database_triggers``
            interval: Polling interval in seconds
            trigger: Trigger hooks; required for ``database_triggers``

        Returns:
            The ``subscription_confirmed`` event sent to the client
        """
        await self.unsubscribe(client_id, channel_id)
        interval = interval if interval and math.isfinite(interval) and interval > 0 else self.poll_interval

        subscription = Subscription(
            client_id=client_id,
            channel_id=channel_id,
            method=POLLING,
            interval=interval,
            fetch=fetch,
            send=send,
        )

        if method == DATABASE_TRIGGERS:
            if trigger is None:
                logger.info("realtime_triggers_unsupported", channel_id=channel_id)
            else:
                try:
                    channel = trigger.channel(channel_id)
                    subscription.wakeup = await self._attach_listener(channel, trigger)
                    subscription.listener_channel = channel
                    subscription.method = DATABASE_TRIGGERS
                    subscription.interval = None
                except Exception as e:
                    logger.warning("realtime_trigger_setup_failed", channel_id=channel_id, error=str(e))

        async with self._lock:
            self._subscriptions[(client_id, channel_id)] = subscription
            self._by_client.setdefault(client_id, set()).add(channel_id)

        if subscription.method == DATABASE_TRIGGERS:
            subscription.task = asyncio.create_task(self._trigger_loop(subscription))
        else:
            subscription.task = asyncio.create_task(self._poll_loop(subscription))

        confirmation = {
            "type": "subscription_confirmed",
            "channelId": channel_id,
            "method": subscription.method,
            "pollingInterval": subscription.interval,
        }
        await self._deliver(subscription, confirmation)
        logger.info("realtime_subscribed", client_id=client_id, channel_id=channel_id, method=subscription.method)
        return confirmation

    async def unsubscribe(self, client_id: str, channel_id: str) -> bool:
        """Stop one subscription. Returns False when there was none."""
        async with self._lock:
            subscription = self._subscriptions.pop((client_id, channel_id), None)
            if subscription is None:
                return False
            channels = self._by_client.get(client_id)
            if channels is not None:
                channels.discard(channel_id)
                if not channels:
                    del self._by_client[client_id]

        await self._stop(subscription)
        logger.info("realtime_unsubscribed", client_id=client_id, channel_id=channel_id)
        return True

    async def disconnect(self, client_id: str) -> int:
        """Drop every subscription of one client. Returns how many were dropped."""
        channels = list(self._by_client.get(client_id, ()))
        dropped = 0
        for channel_id in channels:
            if await self.unsubscribe(client_id, channel_id):
                dropped += 1
        return dropped

    async def shutdown(self) -> None:
        """Cancel all subscriptions and close all listeners."""
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
            self._by_client.clear()
        for subscription in subscriptions:
            await self._stop(subscription)
        for channel in list(self._channels.values()):
            await self._close_channel(channel)
        self._channels.clear()
        logger.info("realtime_shutdown", subscriptions=len(subscriptions))

    # -- loops ---------------------------------------------------------------

    async def _poll_loop(self, subscription: Subscription) -> None:
        while True:
            if not await self._refresh(subscription):
                return
            await asyncio.sleep(subscription.interval)

    async def _trigger_loop(self, subscription: Subscription) -> None:
        # Baseline first so the first notification is compared against real data
        if not await self._refresh(subscription):
            return
        while True:
            await subscription.wakeup.wait()
            subscription.wakeup.clear()
            if not await self._refresh(subscription):
                return

    async def _refresh(self, subscription: Subscription) -> bool:
        """Fetch, compare and broadcast. Returns False when the client is gone."""
        try:
            envelope = await subscription.fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("realtime_poll_failed", channel_id=subscription.channel_id, error=str(e))
            message = e.to_payload()["error"]["message"] if isinstance(e, AutoRestError) else "Polling failed"
            return await self._deliver(
                subscription,
                {"type": "polling_error", "channelId": subscription.channel_id, "error": message},
            )

        data = envelope.get("data", [])
        checksum = compute_checksum(data)
        previous, subscription.last_checksum = subscription.last_checksum, checksum
        if previous is None or previous == checksum:
            return True

        logger.debug("realtime_change_detected", channel_id=subscription.channel_id)
        return await self._deliver(
            subscription,
            {
                "type": "table_update",
                "channelId": subscription.channel_id,
                "data": data,
                "total": envelope.get("total"),
                "timestamp": _now(),
                "updateType": "polling_refresh" if subscription.method == POLLING else "database_trigger",
            },
        )

    async def _deliver(self, subscription: Subscription, event: Dict[str, Any]) -> bool:
        try:
            await subscription.send(event)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("realtime_client_gone", client_id=subscription.client_id, error=str(e))
            async with self._lock:
                key = (subscription.client_id, subscription.channel_id)
                if self._subscriptions.get(key) is subscription:
                    del self._subscriptions[key]
                    channels = self._by_client.get(subscription.client_id)
                    if channels is not None:
                        channels.discard(subscription.channel_id)
                        if not channels:
                            del self._by_client[subscription.client_id]
            task = subscription.task
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
            if subscription.wakeup is not None:
                await self._detach_listener(subscription.listener_channel, subscription.wakeup)
                subscription.wakeup = None
            return False

    async def _stop(self, subscription: Subscription) -> None:
        task = subscription.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if subscription.wakeup is not None:
            await self._detach_listener(subscription.listener_channel, subscription.wakeup)
            subscription.wakeup = None

    # -- trigger listeners ---------------------------------------------------

    async def _attach_listener(self, channel: str, trigger: TriggerSource) -> asyncio.Event:
        """
        Join the shared listener of a channel, installing it on first use.

        The blocking install and open run outside the lock; concurrent
        subscribers of the same channel wait on the pending future instead.
        """
        wakeup = asyncio.Event()
        while True:
            async with self._lock:
                shared = self._channels.get(channel)
                if shared is not None:
                    shared.subscribers.add(wakeup)
                    return wakeup
                pending = self._pending.get(channel)
                owner = pending is None
                if owner:
                    pending = asyncio.get_running_loop().create_future()
                    self._pending[channel] = pending
            if owner:
                break
            # A failed install resolves to None and the next waiter retries it
            await asyncio.shield(pending)

        try:
            await asyncio.to_thread(trigger.install, channel)
            listener = await asyncio.to_thread(trigger.open_listener, channel)
        except BaseException:
            async with self._lock:
                self._pending.pop(channel, None)
            pending.set_result(None)
            raise

        shared = ChannelListener(channel=channel, listener=listener)
        shared.subscribers.add(wakeup)
        shared.task = asyncio.create_task(self._listen(shared))
        async with self._lock:
            self._channels[channel] = shared
            self._pending.pop(channel, None)
        pending.set_result(shared)
        logger.info("realtime_listener_opened", channel=channel)
        return wakeup

    async def _detach_listener(self, channel: str, wakeup: asyncio.Event) -> None:
        async with self._lock:
            shared = self._channels.get(channel)
            if shared is None:
                return
            shared.subscribers.discard(wakeup)
            if shared.subscribers:
                return
            del self._channels[channel]
        await self._close_channel(shared)

    async def _listen(self, shared: ChannelListener) -> None:
        while not shared.closing:
            try:
                events = await asyncio.to_thread(shared.listener.wait, LISTENER_WAIT_SECONDS)
            except Exception as e:
                logger.warning("realtime_listener_failed", channel=shared.channel, error=str(e))
                await asyncio.sleep(LISTENER_WAIT_SECONDS)
                continue
            if events:
                for wakeup in list(shared.subscribers):
                    wakeup.set()

    async def _close_channel(self, shared: ChannelListener) -> None:
        shared.closing = True
        if shared.task is not None:
            # The loop exits after its current bounded wait
            await shared.task
        await asyncio.to_thread(shared.listener.close)
        logger.info("realtime_listener_closed", channel=shared.channel)
