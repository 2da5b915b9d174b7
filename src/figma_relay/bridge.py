"""stdio-to-HTTP bridge.

For assistants that can only spawn a stdio server while the gateway runs
in HTTP mode elsewhere: each JSON-RPC line read from stdin is POSTed to
the gateway's ``/mcp`` endpoint and the reply is written to stdout.

Failures become JSON-RPC errors carrying the request id:
- -32000: gateway unreachable
- -32001: body looked like JSON but did not parse
- -32002: body was not JSON (e.g. an HTML error page)
- -32003: empty body with a non-200 status
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, BinaryIO

import httpx

from .gateway.stdio import MAX_LINE_BYTES, oversized_line_error
from .protocol.jsonrpc import (
    JsonRpcErrorCode,
    JsonRpcResponse,
    create_error_response,
    recover_request_id,
)

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "http://localhost:3700/mcp"

ENCODING = "utf-8"


class StdioHttpBridge:
    """Forwards stdin JSON-RPC lines to a gateway over HTTP."""

    def __init__(
        self,
        url: str = DEFAULT_GATEWAY_URL,
        *,
        client: httpx.AsyncClient | None = None,
        reader: asyncio.StreamReader | None = None,
        stdout: BinaryIO | None = None,
        timeout: float = 60.0,
    ):
        self.url = url
        self._client = client
        self._reader = reader
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._timeout = timeout

    async def run(self) -> None:
        """Forward lines until stdin closes."""
        reader = self._reader or await self._open_stdin()
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        logger.info(f"Bridging stdio to {self.url}")

        try:
            while True:
                try:
                    raw = await reader.readline()
                except ValueError as e:
                    logger.warning(f"Dropping oversized stdin line: {e}")
                    self._write(oversized_line_error().to_json())
                    continue
                if not raw:
                    break
                line = raw.decode(ENCODING, errors="replace").strip().lstrip("\ufeff")
                if not line:
                    continue

                reply = await self.forward(client, line)
                if reply is not None:
                    self._write(reply)
        finally:
            if owns_client:
                await client.aclose()
            logger.info("Bridge stopped")

    async def forward(self, client: httpx.AsyncClient, line: str) -> str | None:
        """POST one line and return the text to write back (None for nothing)."""
        request_id = self._request_id(line)

        try:
            response = await client.post(
                self.url,
                content=line.encode(ENCODING),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Gateway request failed: {e}")
            return self._error(
                request_id,
                JsonRpcErrorCode.SERVER_UNREACHABLE,
                f"Failed to communicate with Figma server: {e}",
            )

        body = response.text.strip()
        if not body:
            if response.status_code in (200, 202, 204):
                return None
            return self._error(
                request_id,
                JsonRpcErrorCode.HTTP_STATUS_ERROR,
                f"Figma server returned status code: {response.status_code}",
            )

        if body[0] not in "{[":
            logger.warning(f"Non-JSON response from gateway (status {response.status_code})")
            return self._error(
                request_id,
                JsonRpcErrorCode.NON_JSON_RESPONSE,
                "Figma server returned non-JSON response",
            )

        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON from gateway: {e}")
            return self._error(
                request_id,
                JsonRpcErrorCode.INVALID_RESPONSE,
                "Figma server returned an invalid response",
            )
        return json.dumps(payload, ensure_ascii=False)

    async def _open_stdin(self) -> asyncio.StreamReader:
        reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
        protocol = asyncio.StreamReaderProtocol(reader)
        loop = asyncio.get_running_loop()
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    @staticmethod
    def _request_id(line: str) -> str | int | None:
        try:
            return recover_request_id(json.loads(line))
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _error(request_id: str | int | None, code: int, message: str) -> str:
        response: JsonRpcResponse = create_error_response(request_id, code, message)
        return response.to_json()

    def _write(self, text: str) -> None:
        self._stdout.write((text + "\n").encode(ENCODING))
        self._stdout.flush()
