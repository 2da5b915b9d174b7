"""stdio transport for the gateway.

Wire format (newline-delimited JSON, UTF-8 encoded):
- Input (stdin):  one JSON-RPC request or notification per line
- Output (stdout): one JSON-RPC response or notification per line

Cross-platform considerations:
- Output is UTF-8 without BOM, LF newlines only
- Input accepts LF and CRLF; a leading BOM is stripped
- stdout carries protocol traffic only; logs go to stderr

Each line is handled in its own task, so a slow relayed command does not
hold up the requests behind it. Responses are written in completion
order under a write lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, BinaryIO

from ..protocol.jsonrpc import JsonRpcErrorCode, JsonRpcResponse, create_error_response
from .handler import GatewayHandler

logger = logging.getLogger(__name__)

# UTF-8 encoding for all JSON operations
ENCODING = "utf-8"

# Newline character (always LF for cross-platform consistency)
NEWLINE = "\n"

# Longest accepted input line; image payloads can be large
MAX_LINE_BYTES = 2**24


def oversized_line_error() -> JsonRpcResponse:
    """Error for a line longer than the reader limit. Its id cannot be recovered."""
    return create_error_response(
        None, JsonRpcErrorCode.PARSE_ERROR, "Parse error: message exceeds the maximum line length"
    )


class StdioGatewayAdapter:
    """Bidirectional stdio adapter around a :class:`GatewayHandler`.

    Usage:
        adapter = StdioGatewayAdapter(handler)
        await adapter.run()  # Blocks until stdin closes or shutdown

    Example session:
        → {"jsonrpc":"2.0","id":1,"method":"tools/call","params":{"name":"get_document_info"}}
        ← {"jsonrpc":"2.0","id":1,"error":{"code":-32002,"message":"WebSocket connection is not available. ..."}}
        → not json
        ← {"jsonrpc":"2.0","id":null,"error":{"code":-32700,"message":"Parse error: ..."}}
    """

    def __init__(
        self,
        handler: GatewayHandler,
        reader: asyncio.StreamReader | None = None,
        stdout: BinaryIO | None = None,
    ):
        """Initialize stdio adapter.

        Args:
            handler: Request handler shared with other transports
            reader: Input stream (default: a pipe reader over sys.stdin)
            stdout: Binary output stream (default: sys.stdout.buffer)
        """
        self._handler = handler
        self._reader = reader
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._write_lock = asyncio.Lock()
        self._in_flight: set[asyncio.Task[None]] = set()
        self._stop = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self) -> None:
        """Process stdin until EOF or a completed ``shutdown`` request."""
        reader = self._reader or await self._open_stdin()
        queue, unsubscribe = self._handler.broadcaster.subscribe()
        forwarder = asyncio.create_task(self._forward_notifications(queue))

        try:
            while not self._stop.is_set():
                try:
                    raw = await self._next_line(reader)
                except ValueError as e:
                    logger.warning(f"Dropping oversized stdio line: {e}")
                    await self._write(oversized_line_error().to_dict())
                    continue
                if raw is None:
                    break

                line = raw.decode(ENCODING, errors="replace").strip()
                if line.startswith("\ufeff"):
                    line = line[1:]
                if not line:
                    continue

                task = asyncio.create_task(self._process_line(line))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)

            # EOF: let in-flight calls finish writing their responses
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
        finally:
            unsubscribe()
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
            logger.info("stdio adapter stopped")

    def stop(self) -> None:
        """Stop reading new lines."""
        self._stop.set()

    async def _open_stdin(self) -> asyncio.StreamReader:
        reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
        protocol = asyncio.StreamReaderProtocol(reader)
        loop = asyncio.get_running_loop()
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    async def _next_line(self, reader: asyncio.StreamReader) -> bytes | None:
        """Next raw line, or None at EOF or once stopped."""
        read = asyncio.ensure_future(reader.readline())
        stopped = asyncio.ensure_future(self._stop.wait())
        done, _ = await asyncio.wait({read, stopped}, return_when=asyncio.FIRST_COMPLETED)
        if read in done:
            stopped.cancel()
            line = read.result()
            return line or None
        read.cancel()
        return None

    async def _process_line(self, line: str) -> None:
        try:
            response = await self._handler.process_message(line)
        except Exception as e:
            logger.exception(f"Error handling stdio line: {e}")
            response = create_error_response(
                None, JsonRpcErrorCode.INTERNAL_ERROR, str(e) or "Internal server error"
            )

        if response is not None:
            await self._write(response.to_dict())

        if self._handler.shutdown_requested:
            self.stop()

    async def _forward_notifications(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        """Write broadcast notifications; responses are written by their own task."""
        while True:
            message = await queue.get()
            if "id" in message:
                continue
            await self._write(message)

    async def _write(self, message: dict[str, Any]) -> None:
        data = json.dumps(message, ensure_ascii=False) + NEWLINE
        async with self._write_lock:
            self._stdout.write(data.encode(ENCODING))
            self._stdout.flush()
