"""Request/response correlation for a JSON-RPC connection."""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .codec import encode_request, is_notification, is_response, is_server_request
from .errors import ConnectionClosedError, ProtocolError
from .models import RequestId
from .notifications import NotificationChannel


class MessageKind(str, Enum):
    """How an incoming message was routed."""
    RESPONSE = "response"
    NOTIFICATION = "notification"
    REQUEST = "request"
    UNMATCHED = "unmatched"
    INVALID = "invalid"


@dataclass
class PendingRequest:
    """A request that is waiting for its response."""
    request_id: RequestId
    method: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)


class RequestCorrelator:
    """Matches responses to outstanding requests by id.

    Ids start at 1 and are never reused for the lifetime of the correlator,
    which lives exactly as long as one transport connection. The correlator
    knows nothing about deadlines: transports decide when to call ``cancel``.
    """

    def __init__(
        self,
        notifications: Optional[NotificationChannel] = None,
        request_handler: Optional[Callable[[Dict[str, Any]], None]] = None,
        name: str = "mcp",
    ):
        self.notifications = notifications or NotificationChannel()
        self.request_handler = request_handler
        self._ids = itertools.count(1)
        self._pending: Dict[RequestId, PendingRequest] = {}
        self.logger = logging.getLogger(f"mcp_client.{name}.correlator")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_ids(self) -> List[RequestId]:
        return list(self._pending.keys())

    def is_pending(self, request_id: RequestId) -> bool:
        return request_id in self._pending

    def next_id(self) -> int:
        return next(self._ids)

    def create_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], asyncio.Future]:
        """Allocate an id, register it as pending and encode the request.

        Returns the request envelope and the future the response resolves.
        """
        request_id = self.next_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(request_id=request_id, method=method, future=future)
        return encode_request(request_id, method, params), future

    def resolve_incoming(self, message: Dict[str, Any]) -> MessageKind:
        """Route one decoded message from the server."""
        if is_notification(message):
            self.notifications.publish(message["method"], message.get("params"))
            return MessageKind.NOTIFICATION

        if is_server_request(message):
            if self.request_handler is not None:
                self.request_handler(message)
            else:
                self.logger.debug(f"Ignoring server request: {message['method']}")
            return MessageKind.REQUEST

        if not is_response(message):
            self.logger.debug(f"Dropping message that is not a valid notification, request or response: "
                              f"id={message.get('id')!r}")
            return MessageKind.INVALID

        request_id = message["id"]
        pending = self._pending.pop(request_id, None)
        if pending is None:
            self.logger.debug(f"Dropping response for unknown request id: {request_id!r}")
            return MessageKind.UNMATCHED
        if pending.future.done():
            return MessageKind.UNMATCHED

        error = message.get("error")
        if error is not None:
            pending.future.set_exception(ProtocolError.from_error_object(error))
        else:
            pending.future.set_result(message.get("result"))
        return MessageKind.RESPONSE

    def cancel(self, request_id: RequestId, exc: Optional[BaseException] = None) -> bool:
        """Drop a pending entry, failing it with ``exc`` or cancelling it."""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return False
        if not pending.future.done():
            if exc is None:
                pending.future.cancel()
            else:
                pending.future.set_exception(exc)
        return True

    def fail_all(self, reason: str = "Connection closed") -> int:
        """Fail every pending request with ``ConnectionClosedError(reason)``."""
        pending, self._pending = self._pending, {}
        failed = 0
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(ConnectionClosedError(reason))
                failed += 1
        if failed:
            self.logger.info(f"Failed {failed} pending request(s): {reason}")
        return failed
