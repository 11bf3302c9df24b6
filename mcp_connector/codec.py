"""JSON-RPC 2.0 encoding and per-transport framing."""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from .models import JSONRPC_VERSION, JSONRPCNotification, JSONRPCRequest, RequestId


logger = logging.getLogger("mcp_codec")

SSE_DATA_PREFIX = "data:"
SSE_DONE_MARKER = "[DONE]"


def encode_request(request_id: RequestId, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a request envelope."""
    return JSONRPCRequest(id=request_id, method=method, params=params or {}).model_dump()


def encode_notification(method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a notification envelope (the request shape without ``id``)."""
    return JSONRPCNotification(method=method, params=params).model_dump(exclude_none=True)


def encode_response(request_id: RequestId, result: Any = None, error: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a response envelope carrying either ``result`` or ``error``."""
    message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result if result is not None else {}
    return message


def dumps(message: Dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


def encode_line(message: Dict[str, Any]) -> bytes:
    """Render one message as a newline-terminated UTF-8 line."""
    return (dumps(message) + "\n").encode("utf-8")


def decode_message(text: str) -> Optional[Dict[str, Any]]:
    """Decode one JSON document; anything but a JSON object yields None."""
    try:
        value = json.loads(text)
    except ValueError:
        return None
    if not isinstance(value, dict):
        return None
    return value


def is_valid_id(value: Any) -> bool:
    """JSON-RPC ids are strings or integers; booleans, floats and containers are not."""
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def is_notification(message: Dict[str, Any]) -> bool:
    return isinstance(message.get("method"), str) and message.get("id") is None


def is_server_request(message: Dict[str, Any]) -> bool:
    return isinstance(message.get("method"), str) and is_valid_id(message.get("id"))


def is_response(message: Dict[str, Any]) -> bool:
    return "method" not in message and is_valid_id(message.get("id"))


class LineDecoder:
    """Rolling buffer for newline-delimited JSON.

    Bytes are appended as they arrive and every complete line is decoded on
    its own. Lines that are blank, not UTF-8 or not a JSON object are dropped
    and decoding carries on with the next line. Lines have no length limit.
    """

    def __init__(self):
        self.buffer = bytearray()
        self._scanned = 0

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        self.buffer.extend(data)
        messages = []
        while True:
            index = self.buffer.find(b"\n", self._scanned)
            if index == -1:
                # Only the new bytes need scanning on the next feed
                self._scanned = len(self.buffer)
                break
            line = bytes(self.buffer[:index])
            del self.buffer[:index + 1]
            self._scanned = 0
            message = self._decode_line(line)
            if message is not None:
                messages.append(message)
        return messages

    def flush(self) -> List[Dict[str, Any]]:
        """Decode whatever is left once the stream has ended."""
        line = bytes(self.buffer)
        self.buffer.clear()
        self._scanned = 0
        message = self._decode_line(line)
        return [message] if message is not None else []

    def _decode_line(self, line: bytes) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if not line:
            return None
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Discarding line that is not valid UTF-8")
            return None
        message = decode_message(text)
        if message is None:
            logger.debug(f"Discarding malformed line: {text[:200]!r}")
        return message


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode the payload of an SSE ``data:`` line.

    Other lines (event names, ids, comments, blank separators), empty
    payloads and the ``[DONE]`` marker yield None.
    """
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    payload = line[len(SSE_DATA_PREFIX):].strip()
    if not payload or payload == SSE_DONE_MARKER:
        return None
    message = decode_message(payload)
    if message is None:
        logger.debug(f"Discarding malformed SSE payload: {payload[:200]!r}")
    return message


async def aiter_sse_messages(lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
    async for line in lines:
        message = parse_sse_line(line)
        if message is not None:
            yield message


def parse_json_body(body: bytes) -> List[Dict[str, Any]]:
    """Parse a plain HTTP response body: one JSON document, or a batch array."""
    try:
        value = json.loads(body)
    except ValueError:
        logger.debug(f"Discarding malformed response body: {body[:200]!r}")
        return []
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return []
