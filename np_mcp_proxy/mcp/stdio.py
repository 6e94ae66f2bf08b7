"""Stdio transport loop.

Reads newline-delimited JSON-RPC from stdin, hands each line to the
:class:`ProtocolBridge` in its own task and writes every response as one
JSON line on stdout.  Lines are processed concurrently, so responses may be
written in a different order than the requests arrived.

Nothing that goes wrong while handling a line is allowed to end the loop:
failures are logged and reported to the client as JSON-RPC errors with
``id: null``.  SIGINT / SIGTERM stop the loop cleanly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from typing import Any, BinaryIO

from np_mcp_proxy.core.errors import INTERNAL_ERROR_CODE, ParseError
from np_mcp_proxy.core.schemas import jsonrpc_error
from np_mcp_proxy.mcp.bridge import ProtocolBridge

logger = logging.getLogger(__name__)

# Tool results can be large; asyncio's default line limit is 64 KiB
STREAM_LIMIT = 8 * 1024 * 1024


def internal_error(message: str, detail: Any = None) -> dict[str, Any]:
    """Best-effort error for failures that cannot be tied to a request."""
    error: dict[str, Any] = {"code": INTERNAL_ERROR_CODE, "message": message}
    if detail is not None:
        error["data"] = str(detail)
    return jsonrpc_error(None, error)


async def connect_stdin(limit: int = STREAM_LIMIT) -> asyncio.StreamReader:
    """Return a non-blocking StreamReader connected to stdin."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


async def _skip_line(reader: asyncio.StreamReader) -> None:
    """Consume input up to and including the next newline, or until EOF."""
    while True:
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.IncompleteReadError:
            return
        except asyncio.LimitOverrunError as exc:
            await reader.readexactly(exc.consumed)


class StdioTransport:
    """Drives the proxy for the lifetime of the process."""

    def __init__(
        self,
        bridge: ProtocolBridge,
        reader: asyncio.StreamReader | None = None,
        writer: BinaryIO | None = None,
    ) -> None:
        self._bridge = bridge
        self._reader = reader
        self._writer = writer if writer is not None else sys.stdout.buffer
        self._tasks: set[asyncio.Task[None]] = set()
        self._main_task: asyncio.Task[Any] | None = None

    # ── lifecycle ───────────────────────────────────────────

    async def run(self) -> None:
        """Serve until EOF on stdin or a termination signal."""
        loop = asyncio.get_running_loop()
        self._main_task = asyncio.current_task()
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._on_loop_exception)
        signals = self._install_signal_handlers(loop)

        logger.info("MCP Proxy started and waiting for input...")
        try:
            reader = self._reader if self._reader is not None else await connect_stdin()
            await self._read_loop(reader)
            logger.info("EOF received, waiting for %d in-flight request(s)", len(self._tasks))
            await self._drain()
        except asyncio.CancelledError:
            # Cancelled by stop(); shutdown is a normal return
            asyncio.current_task().uncancel()
            logger.info("Shutting down, cancelling %d in-flight request(s)", len(self._tasks))
            await self._cancel_pending()
        except Exception as exc:
            # stdin itself failed; nothing more can be read
            logger.exception("Transport loop failed")
            self.send(internal_error("Internal proxy error", exc))
            await self._cancel_pending()
        finally:
            for sig in signals:
                loop.remove_signal_handler(sig)
            loop.set_exception_handler(previous_handler)
            self._main_task = None

    def stop(self, sig: signal.Signals | None = None) -> None:
        """Stop reading input; in-flight requests are cancelled."""
        if sig is not None:
            logger.info("Received %s signal, shutting down...", sig.name)
        if self._main_task is not None and not self._main_task.done():
            self._main_task.cancel()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not supported here (Windows, or not the main thread)
                continue
            installed.append(sig)
        return installed

    # ── reading ─────────────────────────────────────────────

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                raw = await reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                # EOF; a final line without a newline is still served
                raw = exc.partial
            except asyncio.LimitOverrunError as exc:
                logger.error("Discarding oversized input line: %s", exc)
                self.send(internal_error("Internal proxy error", exc))
                await _skip_line(reader)
                continue

            if not raw:
                return

            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError as exc:
                logger.error("Discarding input line that is not valid UTF-8: %s", exc)
                self.send(jsonrpc_error(None, ParseError(f"Invalid UTF-8 input: {exc}").to_error()))
                continue
            if not line:
                continue
            self._spawn(line)

    def _spawn(self, line: str) -> None:
        task = asyncio.create_task(self._handle_line(line))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def _handle_line(self, line: str) -> None:
        try:
            response = await self._bridge.process(line)
        except Exception as exc:
            logger.exception("Unexpected error processing line")
            response = internal_error("Internal proxy error", exc)
        self.send(response)

    async def _drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _cancel_pending(self) -> None:
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ── failure containment ─────────────────────────────────

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled failure in request task", exc_info=exc)
            self.send(internal_error("Internal proxy error (unhandled task failure)", exc))

    def _on_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")
        logger.error("Unhandled async failure: %s", message, exc_info=exc)
        self.send(
            internal_error(
                "Internal proxy error (unhandled async failure)",
                exc if exc is not None else message,
            )
        )

    # ── writing ─────────────────────────────────────────────

    def send(self, response: dict[str, Any] | None) -> None:
        """Write one response line; never raises."""
        if response is None:
            return
        try:
            try:
                encoded = json.dumps(response, separators=(",", ":"), ensure_ascii=False)
            except (TypeError, ValueError) as exc:
                logger.error("Response is not JSON serializable: %s", exc)
                fallback = internal_error("Internal proxy error", exc)
                request_id = response.get("id")
                if isinstance(request_id, (str, int)):
                    fallback["id"] = request_id
                encoded = json.dumps(fallback, separators=(",", ":"))
            logger.debug("Sending response: %s", encoded)
            self._writer.write(encoded.encode("utf-8") + b"\n")
            self._writer.flush()
        except Exception:
            logger.exception("Failed to write response to stdout")
