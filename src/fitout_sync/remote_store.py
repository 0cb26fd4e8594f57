"""
Record store backed by the hosted backend's MCP server.

Each store operation is one tool call. The session is long-lived and
reconnects after transport failures. Reads get a single retry on a fresh
connection; writes are never retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import time
from datetime import timedelta
from typing import Any

from mcp.client.session import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamablehttp_client

from .result import Err, Ok, Result, from_envelope
from .store import Record, StoreError

logger = logging.getLogger(__name__)

DEFAULT_STORE_MCP_URL = "http://localhost:54321/functions/v1/mcp"
DEFAULT_TRANSPORT = "http"
DEFAULT_STDIO_COMMAND = "npx"
DEFAULT_STDIO_ARGS_PREFIX = ["-y", "mcp-remote"]


class McpRecordStore:
    """Async record store speaking to the backend through an MCP client session."""

    def __init__(
        self,
        transport: str | None = None,
        command: str | None = None,
        args: list[str] | None = None,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 30.0,
        sse_read_timeout_seconds: float = 300.0,
        read_timeout_seconds: float = 30.0,
    ):
        self._transport = (transport or os.getenv("FITOUT_STORE_MCP_TRANSPORT", DEFAULT_TRANSPORT)).lower()
        self._url = url or os.getenv("FITOUT_STORE_MCP_URL", DEFAULT_STORE_MCP_URL)
        self._headers = headers or self._parse_headers_from_env()
        self._command = command or os.getenv("FITOUT_STORE_MCP_COMMAND", DEFAULT_STDIO_COMMAND)
        self._args = args or self._parse_stdio_args_from_env(default_url=self._url)
        self._timeout_seconds = timeout_seconds
        self._sse_read_timeout_seconds = sse_read_timeout_seconds
        self._read_timeout_seconds = read_timeout_seconds

        if self._transport not in {"stdio", "http"}:
            raise ValueError("FITOUT_STORE_MCP_TRANSPORT must be one of: stdio, http")

        self._lock = asyncio.Lock()
        self._transport_cm: Any = None
        self._session_cm: Any = None
        self._session: ClientSession | None = None

        self._failure_count = 0
        self._last_error: str | None = None
        self._last_failure_at: float | None = None
        self._last_connected_at: float | None = None

    @staticmethod
    def _parse_headers_from_env() -> dict[str, str] | None:
        raw = os.getenv("FITOUT_STORE_MCP_HEADERS")
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict):
                return {str(k): str(v) for k, v in parsed.items()}
        except ValueError:
            logger.warning("Ignoring invalid FITOUT_STORE_MCP_HEADERS value")
        return None

    @staticmethod
    def _parse_stdio_args_from_env(default_url: str) -> list[str]:
        raw = os.getenv("FITOUT_STORE_MCP_ARGS")
        if not raw:
            return [*DEFAULT_STDIO_ARGS_PREFIX, default_url]

        # Prefer JSON array for exact argument boundaries.
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item) for item in parsed]
        except ValueError:
            pass

        try:
            return shlex.split(raw)
        except ValueError:
            logger.warning("Ignoring invalid FITOUT_STORE_MCP_ARGS value; using default args")
            return [*DEFAULT_STDIO_ARGS_PREFIX, default_url]

    async def _connect(self) -> ClientSession:
        if self._session is not None:
            return self._session

        if self._transport == "stdio":
            params = StdioServerParameters(command=self._command, args=self._args)
            self._transport_cm = stdio_client(params)
        else:
            self._transport_cm = streamablehttp_client(
                self._url,
                headers=self._headers,
                timeout=self._timeout_seconds,
                sse_read_timeout=self._sse_read_timeout_seconds,
                terminate_on_close=False,
            )
        transport_streams = await self._transport_cm.__aenter__()
        if len(transport_streams) == 3:
            read_stream, write_stream, _ = transport_streams
        elif len(transport_streams) == 2:
            read_stream, write_stream = transport_streams
        else:
            raise RuntimeError("store MCP transport returned unexpected stream tuple")

        self._session_cm = ClientSession(
            read_stream,
            write_stream,
            read_timeout_seconds=timedelta(seconds=self._read_timeout_seconds),
        )
        self._session = await self._session_cm.__aenter__()
        await self._session.initialize()
        self._last_connected_at = time.time()
        return self._session

    async def _disconnect(self) -> None:
        if self._session_cm is not None:
            try:
                await self._session_cm.__aexit__(None, None, None)
            except Exception as exc:
                self._log_cleanup_exception("Store MCP session cleanup failed", exc)
        if self._transport_cm is not None:
            try:
                await self._transport_cm.__aexit__(None, None, None)
            except Exception as exc:
                self._log_cleanup_exception("Store MCP transport cleanup failed", exc)

        self._session = None
        self._session_cm = None
        self._transport_cm = None

    @staticmethod
    def _log_cleanup_exception(prefix: str, exc: Exception) -> None:
        message = str(exc)
        if "Attempted to exit cancel scope in a different task" in message:
            logger.debug("%s: %s", prefix, exc)
            return
        logger.warning("%s: %s", prefix, exc)

    @staticmethod
    def _extract_text(result: Any) -> str:
        content = getattr(result, "content", None) or []
        texts: list[str] = []
        for block in content:
            if getattr(block, "type", None) == "text":
                text = getattr(block, "text", "")
                if text:
                    texts.append(text)
        return "\n".join(texts).strip()

    def _normalize_result(self, result: Any) -> Result[Any]:
        """Turn a tool result into Ok/Err; tool errors are business rejections."""
        if getattr(result, "isError", False):
            return Err(self._extract_text(result) or "store rejected the operation")

        structured = getattr(result, "structuredContent", None)
        if structured is not None:
            # FastMCP wraps non-object return values as {"result": ...}.
            if set(structured) == {"result"}:
                structured = structured["result"]
            return from_envelope(structured)

        text = self._extract_text(result)
        if text:
            try:
                return from_envelope(json.loads(text))
            except ValueError:
                raise StoreError("store_protocol_error", f"store returned non-JSON text: {text[:200]}") from None
        return Ok(None)

    def _record_failure(self, exc: Exception) -> None:
        self._failure_count += 1
        self._last_failure_at = time.time()
        self._last_error = f"{exc.__class__.__name__}: {exc}"
        logger.warning("Store MCP call failed (%s): %s", exc.__class__.__name__, exc)

    def _record_success(self) -> None:
        self._failure_count = 0
        self._last_error = None

    async def _call(self, name: str, arguments: dict[str, Any], *, retry: bool) -> Result[Any]:
        attempts = 2 if retry else 1
        async with self._lock:
            for attempt in range(attempts):
                try:
                    session = await self._connect()
                    result = await session.call_tool(name, arguments=arguments)
                    normalized = self._normalize_result(result)
                    self._record_success()
                    return normalized
                except StoreError:
                    raise
                except Exception as exc:
                    self._record_failure(exc)
                    await self._disconnect()
                    if attempt == attempts - 1:
                        raise StoreError(
                            "store_unavailable",
                            f"store call failed for tool '{name}': {exc}",
                        ) from exc
        raise StoreError("store_unavailable", "store unavailable")

    async def _read(self, name: str, arguments: dict[str, Any]) -> Any:
        result = await self._call(name, arguments, retry=True)
        if isinstance(result, Err):
            raise StoreError("store_rejected", result.error)
        return result.value

    async def list_records(self, entity: str, scope: str) -> list[Record]:
        value = await self._read("list_records", {"entity": entity, "scope": scope})
        if not isinstance(value, list):
            raise StoreError("store_protocol_error", f"list_records returned {type(value).__name__}")
        return value

    async def get_record(self, entity: str, record_id: str) -> Record | None:
        return await self._read("get_record", {"entity": entity, "id": record_id})

    async def count_records(
        self, entity: str, scope: str, filters: dict[str, Any] | None = None
    ) -> int:
        value = await self._read(
            "count_records", {"entity": entity, "scope": scope, "filters": filters or {}}
        )
        try:
            return int(value)
        except (TypeError, ValueError):
            raise StoreError("store_protocol_error", f"count_records returned {value!r}") from None

    async def create_record(self, entity: str, payload: dict[str, Any]) -> Result[Record]:
        return await self._call("create_record", {"entity": entity, "payload": payload}, retry=False)

    async def update_record(
        self, entity: str, record_id: str, patch: dict[str, Any]
    ) -> Result[Record]:
        return await self._call(
            "update_record", {"entity": entity, "id": record_id, "patch": patch}, retry=False
        )

    async def delete_record(self, entity: str, record_id: str) -> Result[None]:
        return await self._call("delete_record", {"entity": entity, "id": record_id}, retry=False)

    async def reorder_records(
        self, entity: str, scope: str, record_ids: list[str]
    ) -> Result[None]:
        return await self._call(
            "reorder_records", {"entity": entity, "scope": scope, "ids": record_ids}, retry=False
        )

    async def bulk_update_records(
        self,
        entity: str,
        scope: str,
        record_ids: list[str] | None,
        patch: dict[str, Any],
    ) -> Result[int]:
        return await self._call(
            "bulk_update_records",
            {"entity": entity, "scope": scope, "ids": record_ids, "patch": patch},
            retry=False,
        )

    def get_health(self) -> dict[str, Any]:
        health: dict[str, Any] = {
            "transport": self._transport,
            "url": self._url,
            "connected": self._session is not None,
            "failureCount": self._failure_count,
            "lastError": self._last_error,
            "lastFailureAt": self._last_failure_at,
            "lastConnectedAt": self._last_connected_at,
        }
        if self._transport == "stdio":
            health["command"] = self._command
            health["args"] = self._args
        else:
            health["hasHeaders"] = self._headers is not None
        return health

    async def close(self) -> None:
        async with self._lock:
            await self._disconnect()
