"""Notification stream for one MCP connection."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .models import ServerNotification


logger = logging.getLogger("mcp_client.notifications")

_CLOSED = object()


class NotificationSubscription:
    """Async iterator over notifications, in the order they arrived.

    Usage:
        async with connection.subscribe() as notifications:
            async for notification in notifications:
                print(notification.method, notification.params)
    """

    def __init__(self, channel: "NotificationChannel"):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _put(self, item: Any) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    def __aiter__(self) -> "NotificationSubscription":
        return self

    async def __anext__(self) -> ServerNotification:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def get(self, timeout: Optional[float] = None) -> ServerNotification:
        """Wait for the next notification; raises StopAsyncIteration once closed."""
        if timeout is None:
            return await self.__anext__()
        return await asyncio.wait_for(self.__anext__(), timeout)

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self._queue.put_nowait(_CLOSED)
        self.closed = True
        self._channel._unsubscribe(self)

    async def __aenter__(self) -> "NotificationSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class NotificationChannel:
    """Fans server notifications out to every subscriber."""

    def __init__(self):
        self._subscribers: List[NotificationSubscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> NotificationSubscription:
        subscription = NotificationSubscription(self)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        notification = ServerNotification(method=method, params=params if isinstance(params, dict) else None)
        logger.debug(f"Notification received: {method}")
        for subscription in list(self._subscribers):
            subscription._put(notification)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()

    def _unsubscribe(self, subscription: NotificationSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
