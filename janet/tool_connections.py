"""
Lazy MCP client connections to named tool servers.

Servers are configured by name (``todoist`` plus anything listed under
``tool_servers`` in the config file) and reached over MCP streamable HTTP.

Connections are scoped to a processing turn:

    async with tools.turn():
        specs = await tools.list_all_tools()
        ...
    # every connection opened inside the block is closed here

Each turn gets its own registry through a context variable, so the task that
opened a connection is the one that closes it, and concurrent turns for
different users never close each other's connections. Outside a turn a
process-level registry is used; ``close_all()`` releases it.
"""

import asyncio
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from janet.config import ToolServerConfig
from janet.errors import ToolConfigurationError, ToolServerError
from janet.models import ToolFailure, ToolResult, ToolSuccess

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ToolConnectionHandle:
    name: str
    session: Any
    stack: AsyncExitStack = field(repr=False)
    is_open: bool = True


@dataclass
class CallableTool:
    """A named operation the reasoning session may invoke."""
    name: str
    description: str
    input_schema: dict
    invoke: Callable[[dict], Awaitable[ToolResult]] = field(repr=False)
    server: Optional[str] = None  # None for in-process tools

    async def __call__(self, arguments: dict) -> ToolResult:
        return await self.invoke(arguments)

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema or {"type": "object", "properties": {}},
        }


Connector = Callable[[ToolServerConfig, AsyncExitStack], Awaitable[Any]]


async def open_mcp_session(server: ToolServerConfig, stack: AsyncExitStack) -> ClientSession:
    """Open and initialize an MCP client session whose lifetime is bound to ``stack``."""
    read, write, _ = await stack.enter_async_context(
        streamablehttp_client(server.url, headers=dict(server.headers))
    )
    session = await stack.enter_async_context(ClientSession(read, write))
    await session.initialize()
    return session


class _Registry:
    def __init__(self, label: str):
        self.label = label
        self.connections: dict[str, ToolConnectionHandle] = {}
        self.locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, name: str) -> asyncio.Lock:
        lock = self.locks.get(name)
        if lock is None:
            lock = self.locks[name] = asyncio.Lock()
        return lock


_turn_registry: ContextVar[Optional[_Registry]] = ContextVar("janet_tool_registry", default=None)


def _result_payload(result) -> Any:
    """Reduce an MCP CallToolResult to plain data."""
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured
    texts = [getattr(block, "text", None) for block in getattr(result, "content", None) or []]
    texts = [t for t in texts if t is not None]
    if not texts:
        return None
    joined = "\n".join(texts)
    try:
        return json.loads(joined)
    except (json.JSONDecodeError, TypeError):
        return joined


class ToolConnectionManager:
    def __init__(self, servers: dict[str, ToolServerConfig], connector: Connector = open_mcp_session):
        self.servers = dict(servers)
        self._connector = connector
        self._default = _Registry("process")
        self.turns_opened = 0

    @property
    def _registry(self) -> _Registry:
        return _turn_registry.get() or self._default

    def open_connections(self) -> list[str]:
        return [name for name, h in self._registry.connections.items() if h.is_open]

    # ── Turn scope ──────────────────────────────────────────────────────

    @asynccontextmanager
    async def turn(self):
        """Scope tool connections to one processing turn."""
        self.turns_opened += 1
        registry = _Registry(f"turn-{self.turns_opened}")
        token = _turn_registry.set(registry)
        try:
            yield self
        finally:
            try:
                await self._close_registry(registry)
            finally:
                _turn_registry.reset(token)

    # ── Connections ─────────────────────────────────────────────────────

    async def get_connection(self, name: str) -> ToolConnectionHandle:
        """Return the open connection for ``name``, connecting on first use."""
        server = self.servers.get(name)
        if server is None:
            raise ToolConfigurationError(f"Unknown tool server: {name!r}")

        registry = self._registry
        async with registry.lock_for(name):
            handle = registry.connections.get(name)
            if handle is not None and handle.is_open:
                return handle

            stack = AsyncExitStack()
            try:
                session = await self._connector(server, stack)
            except Exception as e:
                await self._safe_aclose(name, stack)
                raise ToolServerError(f"Failed to connect to tool server {name!r}: {e}")

            handle = ToolConnectionHandle(name=name, session=session, stack=stack)
            registry.connections[name] = handle
            logger.info(f"[MCP] Connected to {name} ({registry.label})")
            return handle

    async def _safe_aclose(self, name: str, stack: AsyncExitStack) -> bool:
        try:
            await stack.aclose()
            return True
        except Exception as e:
            logger.warning(f"[MCP] Error closing connection to {name}: {e}")
            return False

    async def _close_handle(self, registry: _Registry, name: str) -> bool:
        handle = registry.connections.pop(name, None)
        if handle is None or not handle.is_open:
            return False
        handle.is_open = False
        closed = await self._safe_aclose(name, handle.stack)
        if closed:
            logger.info(f"[MCP] Closed connection to {name} ({registry.label})")
        return closed

    async def _close_registry(self, registry: _Registry) -> None:
        for name in list(registry.connections):
            await self._close_handle(registry, name)

    async def close_one(self, name: str) -> bool:
        """Close one connection in the current scope. Failures are logged, not raised."""
        return await self._close_handle(self._registry, name)

    async def close_all(self) -> None:
        """Close every connection in the current scope, best effort."""
        await self._close_registry(self._registry)

    # ── Tools ───────────────────────────────────────────────────────────

    async def list_tools(self, name: str) -> dict[str, CallableTool]:
        handle = await self.get_connection(name)
        try:
            listing = await handle.session.list_tools()
        except Exception as e:
            raise ToolServerError(f"Failed to list tools on {name!r}: {e}")

        tools = {}
        for tool in listing.tools:
            tools[tool.name] = CallableTool(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
                invoke=self._bind(name, tool.name),
                server=name,
            )
        logger.info(f"[MCP] {name}: {len(tools)} tools")
        return tools

    def _bind(self, server: str, tool: str) -> Callable[[dict], Awaitable[ToolResult]]:
        async def invoke(arguments: dict) -> ToolResult:
            return await self.call_tool(server, tool, arguments)
        return invoke

    async def list_all_tools(self, names: Optional[list[str]] = None) -> dict[str, CallableTool]:
        """Aggregate tools from several servers; a name collision is a configuration error."""
        aggregated: dict[str, CallableTool] = {}
        for name in names if names is not None else list(self.servers):
            for tool_name, tool in (await self.list_tools(name)).items():
                if tool_name in aggregated:
                    raise ToolConfigurationError(
                        f"Tool {tool_name!r} is exposed by both {aggregated[tool_name].server!r} and {name!r}"
                    )
                aggregated[tool_name] = tool
        return aggregated

    async def call_tool(self, server: str, tool: str, arguments: dict) -> ToolResult:
        """Invoke a tool; connection and tool errors come back as ToolFailure."""
        try:
            handle = await self.get_connection(server)
        except ToolServerError as e:
            return ToolFailure(reason=str(e))

        try:
            result = await handle.session.call_tool(tool, arguments or {})
        except Exception as e:
            logger.error(f"[MCP] {server}.{tool} failed: {e}")
            await self.close_one(server)
            return ToolFailure(reason=f"{tool} failed: {e}")

        payload = _result_payload(result)
        if getattr(result, "isError", False):
            if payload is None or isinstance(payload, str):
                reason = payload
            else:
                reason = json.dumps(payload)
            logger.warning(f"[MCP] {server}.{tool} returned an error: {str(reason)[:200]}")
            return ToolFailure(reason=reason or f"{tool} returned an error")
        return ToolSuccess(payload=payload)
