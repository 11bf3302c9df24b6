"""Stdio transport: a child process speaking newline-delimited JSON-RPC."""

import asyncio
import logging
import os
from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from .codec import LineDecoder, encode_line, encode_notification
from .errors import ConnectionClosedError, TransportError
from .models import RequestId
from .notifications import NotificationChannel
from .transport import Transport


READ_CHUNK_SIZE = 65536

# Grace period between SIGTERM and SIGKILL
PROCESS_TERMINATE_TIMEOUT = 3.0


class ServerProcess:
    """Child process owned by one stdio connection.

    ``read_messages`` is restartable: the line buffer and any messages
    already decoded but not yet consumed survive between iterations.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        terminate_timeout: float = PROCESS_TERMINATE_TIMEOUT,
    ):
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.cwd = cwd
        self.terminate_timeout = terminate_timeout
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._decoder = LineDecoder()
        self._decoded: Deque[Dict[str, Any]] = deque()
        self._write_lock = asyncio.Lock()
        self._stderr_task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger("mcp_transport")

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def spawn(self) -> None:
        """Start the process with the environment overrides merged over ours."""
        process_env = os.environ.copy()
        process_env.update(self.env)

        self._decoder = LineDecoder()
        self._decoded.clear()
        self.logger.info(f"Starting MCP server process: {self.command} {' '.join(self.args)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                cwd=self.cwd,
            )
        except OSError as e:
            raise TransportError(f"Failed to start process '{self.command}': {e}") from e

        # stderr is never interpreted, but it must be drained or the child can block on a full pipe
        self._stderr_task = asyncio.ensure_future(self._drain_stderr(self._proc))

    async def _drain_stderr(self, proc: asyncio.subprocess.Process) -> None:
        while True:
            chunk = await proc.stderr.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            self.logger.debug(f"[{self.command} stderr] {chunk.decode('utf-8', errors='replace').rstrip()}")

    async def read_messages(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded messages from stdout until the stream ends."""
        proc = self._proc
        if proc is None:
            return
        while True:
            while self._decoded:
                yield self._decoded.popleft()
            chunk = await proc.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                self._decoded.extend(self._decoder.flush())
                while self._decoded:
                    yield self._decoded.popleft()
                return
            self._decoded.extend(self._decoder.feed(chunk))

    async def write(self, data: bytes) -> None:
        """Write one complete message; concurrent writers never interleave."""
        async with self._write_lock:
            proc = self._proc
            if proc is None or proc.stdin is None or proc.returncode is not None:
                raise ConnectionClosedError("Server process is not running")
            try:
                proc.stdin.write(data)
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportError(f"Failed to write to server process: {e}") from e

    async def wait(self) -> Optional[int]:
        proc = self._proc
        if proc is None:
            return None
        return await proc.wait()

    async def terminate(self) -> None:
        """Stop the process: close stdin, SIGTERM, then SIGKILL after the grace period."""
        proc, self._proc = self._proc, None
        if proc is None:
            return

        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()

        if proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), self.terminate_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"Process {proc.pid} ignored SIGTERM, killing it")
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass
            self._stderr_task = None
        self.logger.info(f"MCP server process {proc.pid} stopped (exit code {proc.returncode})")


class StdioTransport(Transport):
    """MCP over a child process's stdin/stdout.

    Usage:
        transport = StdioTransport("filesystem", "npx", ["-y", "@modelcontextprotocol/server-filesystem", "."])
        await transport.connect()
        result = await transport.send_request("tools/list")
        await transport.disconnect()
    """

    transport_type = "stdio"

    def __init__(
        self,
        server_id: str,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        notifications: Optional[NotificationChannel] = None,
        roots: Optional[List[Dict[str, str]]] = None,
    ):
        super().__init__(server_id, timeout=timeout, notifications=notifications, roots=roots)
        self.process = ServerProcess(command, args=args, env=env, cwd=cwd)
        self._reader_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        if not self._closed:
            return
        await self.process.spawn()
        self._closed = False
        self._reader_task = asyncio.ensure_future(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            async for message in self.process.read_messages():
                self.correlator.resolve_incoming(message)
            if not self._closed:
                returncode = await self.process.wait()
                self.logger.warning(f"MCP server process exited with code {returncode}")
        except OSError as e:
            self.logger.error(f"Error reading from server process: {e}")
        except Exception:
            self.logger.exception(f"Unexpected error reading from '{self.server_id}'")
        finally:
            # Whatever ends the reader ends the connection
            self._mark_closed("Connection closed")

    async def _write_request(self, message: Dict[str, Any], timeout: Optional[float]) -> None:
        await self._write(encode_line(message), request_id=message["id"])

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        if self._closed:
            raise ConnectionClosedError(f"Connection to '{self.server_id}' is closed")
        self.logger.debug(f"MCP Notification: {method}")
        await self._write(encode_line(encode_notification(method, params)))

    async def _send_response(self, message: Dict[str, Any]) -> None:
        if self._closed:
            return
        await self._write(encode_line(message))

    async def _write(self, data: bytes, request_id: Optional[RequestId] = None) -> None:
        try:
            await self.process.write(data)
        except TransportError as e:
            if request_id is not None:
                self.correlator.cancel(request_id)
            self.logger.error(f"Write to server process failed: {e}")
            self._mark_closed("Connection closed")
            raise

    async def disconnect(self) -> None:
        """Stop the process. Safe to call after it has already exited."""
        was_open = not self._closed
        self._mark_closed("Connection closed")

        reader = self._reader_task
        self._reader_task = None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        await self.process.terminate()
        if was_open:
            self.logger.info(f"Disconnected from '{self.server_id}'")
