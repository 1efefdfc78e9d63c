"""
JSON-RPC 2.0 connection to a language server over stdio.

Messages use Content-Length framing. The connection answers server-initiated
requests through registered handlers and fans notifications out to any number
of handlers per method.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from core.constants import (
    JSONRPC_INTERNAL_ERROR,
    JSONRPC_METHOD_NOT_FOUND,
    LSP_REQUEST_TIMEOUT_SECONDS,
)
from core.exceptions import LSPConnectionError, LSPRequestError, LSPTimeoutError

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[Any], None]
RequestHandler = Callable[[Any], Any]


class LSPConnection:
    """JSON-RPC 2.0 connection over stdio with Content-Length framing."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        name: str = "lsp",
    ):
        self.process = process
        self.reader = reader
        self.writer = writer
        self.name = name
        self._request_id = 0
        self._pending_requests: dict[int, tuple[str, asyncio.Future[Any]]] = {}
        self._notification_handlers: dict[str, list[NotificationHandler]] = {}
        self._request_handlers: dict[str, RequestHandler] = {}
        self._response_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._finalized = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on_notification(self, method: str, handler: NotificationHandler) -> Callable[[], None]:
        """Register a handler for a notification method.

        Args:
            method: LSP notification method name (e.g., "textDocument/publishDiagnostics")
            handler: Callback function that receives the params

        Returns:
            A function that removes the handler again
        """
        handlers = self._notification_handlers.setdefault(method, [])
        handlers.append(handler)

        def dispose() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return dispose

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """Register the handler answering a server-initiated request."""
        self._request_handlers[method] = handler

    async def start_response_listener(self) -> None:
        """Start background tasks reading stdout and draining stderr."""
        self._response_task = asyncio.create_task(self._response_listener())
        stderr = getattr(self.process, "stderr", None)
        if isinstance(stderr, asyncio.StreamReader):
            self._stderr_task = asyncio.create_task(self._stderr_listener(stderr))

    async def _response_listener(self) -> None:
        """Background task to read messages and dispatch them."""
        try:
            while not self._closed:
                message = await self._read_message()
                if message is None:
                    logger.debug("[%s] server closed its output", self.name)
                    break
                await self._dispatch(message)
        except asyncio.CancelledError:
            pass
        except (asyncio.IncompleteReadError, ConnectionError, ValueError) as e:
            logger.warning("[%s] connection read failed: %s", self.name, e)
        finally:
            self._closed = True
            self._fail_pending(LSPConnectionError(f"Connection to '{self.name}' closed"))

    async def _stderr_listener(self, stream: asyncio.StreamReader) -> None:
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                logger.debug("[%s] stderr: %s", self.name, line.decode("utf-8", "replace").rstrip())
        except (asyncio.CancelledError, ConnectionError):
            pass

    async def _dispatch(self, message: dict) -> None:
        msg_id = message.get("id")
        method = message.get("method")

        if method is None:
            # Response to one of our requests
            pending = self._pending_requests.pop(msg_id, None)
            if pending is None:
                return
            request_method, future = pending
            if future.done():
                return
            error = message.get("error")
            if error is not None:
                future.set_exception(
                    LSPRequestError(request_method, error.get("code", 0), error.get("message", ""))
                )
            else:
                future.set_result(message.get("result"))
        elif msg_id is None:
            for handler in list(self._notification_handlers.get(method, [])):
                try:
                    handler(message.get("params"))
                except Exception:
                    # Don't let handler errors crash the listener
                    logger.exception("[%s] handler for %s failed", self.name, method)
        else:
            await self._answer_request(msg_id, method, message.get("params"))

    async def _answer_request(self, msg_id: Any, method: str, params: Any) -> None:
        handler = self._request_handlers.get(method)
        if handler is None:
            logger.debug("[%s] unhandled server request %s", self.name, method)
            await self._write_safely(
                {
                    "jsonrpc": "2.0",
                    "id": msg_id,
                    "error": {"code": JSONRPC_METHOD_NOT_FOUND, "message": f"Unhandled method {method}"},
                }
            )
            return
        try:
            result = handler(params)
        except Exception as e:
            logger.exception("[%s] request handler for %s failed", self.name, method)
            await self._write_safely(
                {"jsonrpc": "2.0", "id": msg_id, "error": {"code": JSONRPC_INTERNAL_ERROR, "message": str(e)}}
            )
            return
        await self._write_safely({"jsonrpc": "2.0", "id": msg_id, "result": result})

    async def _read_message(self) -> dict | None:
        """Read Content-Length framed JSON message from reader."""
        headers: dict[str, str] = {}

        # Read headers until empty line
        while True:
            line = await self.reader.readline()
            if not line:
                return None

            line_str = line.decode("utf-8").strip()
            if not line_str:
                break

            if ":" in line_str:
                key, value = line_str.split(":", 1)
                headers[key.strip().lower()] = value.strip()

        content_length = int(headers.get("content-length", 0))
        if content_length == 0:
            return None

        body = await self.reader.readexactly(content_length)
        return json.loads(body.decode("utf-8"))

    async def _write_message(self, message: dict) -> None:
        """Write Content-Length framed JSON message to writer."""
        if self._closed:
            raise LSPConnectionError(f"Connection to '{self.name}' is closed")
        body = json.dumps(message).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8")
        try:
            async with self._write_lock:
                self.writer.write(header + body)
                await self.writer.drain()
        except (ConnectionError, RuntimeError) as e:
            raise LSPConnectionError(f"Failed to write to '{self.name}': {e}") from e

    async def _write_safely(self, message: dict) -> None:
        try:
            await self._write_message(message)
        except LSPConnectionError as e:
            logger.debug("[%s] dropped reply: %s", self.name, e)

    def _fail_pending(self, error: Exception) -> None:
        for _, future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    async def send_request(
        self,
        method: str,
        params: Any,
        timeout: float = LSP_REQUEST_TIMEOUT_SECONDS,
    ) -> Any:
        """Send JSON-RPC request and await response.

        Args:
            method: LSP method name
            params: Request parameters
            timeout: Seconds to wait for the response

        Returns:
            Response result

        Raises:
            LSPTimeoutError: If request times out
            LSPRequestError: If server returns error
            LSPConnectionError: If the connection is closed
        """
        self._request_id += 1
        request_id = self._request_id

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = (method, future)

        message = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
        }
        if params is not None:
            message["params"] = params

        try:
            await self._write_message(message)
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise LSPTimeoutError(f"Request '{method}' to '{self.name}' timed out after {timeout}s")
        finally:
            self._pending_requests.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        """Send JSON-RPC notification (no response expected).

        Args:
            method: LSP method name
            params: Notification parameters
        """
        message = {
            "jsonrpc": "2.0",
            "method": method,
        }
        if params is not None:
            message["params"] = params
        await self._write_message(message)

    async def close(self, timeout: float = 2.0) -> None:
        """Close connection and terminate process. Safe to call twice."""
        if self._finalized:
            return
        self._finalized = True
        self._closed = True

        for task in (self._response_task, self._stderr_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._fail_pending(LSPConnectionError(f"Connection to '{self.name}' closed"))

        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=1.0)
        except (asyncio.TimeoutError, ConnectionError, RuntimeError):
            pass

        await terminate_process(self.process, timeout)


async def terminate_process(process: asyncio.subprocess.Process, timeout: float = 2.0) -> None:
    """Terminate a child process, killing it if it ignores SIGTERM."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
    except ProcessLookupError:
        pass
