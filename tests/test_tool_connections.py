"""Tests for the MCP tool-connection manager."""

import asyncio
from contextlib import AsyncExitStack
from types import SimpleNamespace

import pytest

from janet.config import ToolServerConfig
from janet.errors import ToolConfigurationError, ToolServerError
from janet.models import ToolFailure, ToolSuccess
from janet.tool_connections import ToolConnectionManager


class FakeSession:
    def __init__(self, tools, results=None):
        self._tools = tools
        self._results = results or {}
        self.calls = []

    async def list_tools(self):
        return SimpleNamespace(tools=[
            SimpleNamespace(name=name, description=f"{name} tool", inputSchema={"type": "object"})
            for name in self._tools
        ])

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        result = self._results.get(name)
        if isinstance(result, Exception):
            raise result
        return result or SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"ok": true}')],
            structuredContent=None,
            isError=False,
        )


class FakeConnector:
    """Stands in for open_mcp_session; records opens and closes."""

    def __init__(self, sessions, fail=(), close_fail=()):
        self.sessions = sessions
        self.fail = set(fail)
        self.close_fail = set(close_fail)
        self.opened = []
        self.closed = []

    async def __call__(self, server, stack: AsyncExitStack):
        self.opened.append(server.name)
        if server.name in self.fail:
            raise ConnectionError("refused")

        async def on_close():
            if server.name in self.close_fail:
                raise RuntimeError("close blew up")
            self.closed.append(server.name)

        stack.push_async_callback(on_close)
        return self.sessions[server.name]


def _servers(*names):
    return {n: ToolServerConfig(name=n, url=f"https://{n}.example/mcp") for n in names}


class TestConnections:
    @pytest.mark.asyncio
    async def test_lazy_and_cached(self):
        connector = FakeConnector({"todoist": FakeSession(["add-tasks"])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        assert connector.opened == []

        first = await manager.get_connection("todoist")
        second = await manager.get_connection("todoist")
        assert first is second
        assert connector.opened == ["todoist"]
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_concurrent_connects_open_once(self):
        connector = FakeConnector({"todoist": FakeSession([])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        handles = await asyncio.gather(*(manager.get_connection("todoist") for _ in range(4)))
        assert connector.opened == ["todoist"]
        assert all(h is handles[0] for h in handles)
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_unknown_server(self):
        manager = ToolConnectionManager(_servers("todoist"), connector=FakeConnector({}))
        with pytest.raises(ToolConfigurationError):
            await manager.get_connection("calendar")

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        connector = FakeConnector({}, fail={"todoist"})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        with pytest.raises(ToolServerError):
            await manager.get_connection("todoist")
        assert manager.open_connections() == []


class TestTurnScope:
    @pytest.mark.asyncio
    async def test_turn_closes_connections(self):
        connector = FakeConnector({"todoist": FakeSession(["add-tasks"])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        async with manager.turn():
            await manager.list_tools("todoist")
            assert manager.open_connections() == ["todoist"]
        assert connector.closed == ["todoist"]
        assert manager.open_connections() == []

    @pytest.mark.asyncio
    async def test_turn_closes_on_error(self):
        connector = FakeConnector({"todoist": FakeSession([])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        with pytest.raises(ValueError):
            async with manager.turn():
                await manager.get_connection("todoist")
                raise ValueError("reasoning failed")
        assert connector.closed == ["todoist"]

    @pytest.mark.asyncio
    async def test_close_failure_does_not_stop_others(self):
        connector = FakeConnector(
            {"a": FakeSession(["a1"]), "b": FakeSession(["b1"])}, close_fail={"a"},
        )
        manager = ToolConnectionManager(_servers("a", "b"), connector=connector)
        async with manager.turn():
            await manager.get_connection("a")
            await manager.get_connection("b")
        assert connector.closed == ["b"]

    @pytest.mark.asyncio
    async def test_concurrent_turns_are_isolated(self):
        connector = FakeConnector({"todoist": FakeSession([])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        release = asyncio.Event()
        opened = asyncio.Event()
        long_handle = {}

        async def long_turn():
            async with manager.turn():
                long_handle["h"] = await manager.get_connection("todoist")
                opened.set()
                await release.wait()
                assert long_handle["h"].is_open

        async def short_turn():
            async with manager.turn():
                await manager.get_connection("todoist")

        task = asyncio.create_task(long_turn())
        await opened.wait()
        await short_turn()
        assert long_handle["h"].is_open
        release.set()
        await task
        assert connector.opened == ["todoist", "todoist"]
        assert len(connector.closed) == 2

    @pytest.mark.asyncio
    async def test_close_one(self):
        connector = FakeConnector({"todoist": FakeSession([])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        await manager.get_connection("todoist")
        assert await manager.close_one("todoist")
        assert not await manager.close_one("todoist")


class TestTools:
    @pytest.mark.asyncio
    async def test_list_all_tools_aggregates(self):
        connector = FakeConnector({
            "todoist": FakeSession(["add-tasks", "find-tasks"]),
            "calendar": FakeSession(["list-events"]),
        })
        manager = ToolConnectionManager(_servers("todoist", "calendar"), connector=connector)
        async with manager.turn():
            tools = await manager.list_all_tools()
        assert set(tools) == {"add-tasks", "find-tasks", "list-events"}
        assert tools["list-events"].server == "calendar"
        assert tools["add-tasks"].to_anthropic()["input_schema"] == {"type": "object"}

    @pytest.mark.asyncio
    async def test_duplicate_tool_names_rejected(self):
        connector = FakeConnector({"a": FakeSession(["search"]), "b": FakeSession(["search"])})
        manager = ToolConnectionManager(_servers("a", "b"), connector=connector)
        async with manager.turn():
            with pytest.raises(ToolConfigurationError):
                await manager.list_all_tools()

    @pytest.mark.asyncio
    async def test_call_tool_success_parses_json(self):
        session = FakeSession(["add-tasks"])
        manager = ToolConnectionManager(_servers("todoist"), connector=FakeConnector({"todoist": session}))
        async with manager.turn():
            tools = await manager.list_tools("todoist")
            result = await tools["add-tasks"]({"tasks": [{"content": "milk"}]})
        assert result == ToolSuccess(payload={"ok": True})
        assert session.calls == [("add-tasks", {"tasks": [{"content": "milk"}]})]

    @pytest.mark.asyncio
    async def test_tool_reconnects_in_a_later_turn(self):
        connector = FakeConnector({"todoist": FakeSession(["find-tasks"])})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        async with manager.turn():
            tools = await manager.list_tools("todoist")
        async with manager.turn():
            result = await tools["find-tasks"]({})
        assert result.ok
        assert connector.opened == ["todoist", "todoist"]

    @pytest.mark.asyncio
    async def test_tool_error_result_is_failure(self):
        error = SimpleNamespace(content=[SimpleNamespace(type="text", text="project not found")],
                                structuredContent=None, isError=True)
        session = FakeSession(["add-tasks"], results={"add-tasks": error})
        manager = ToolConnectionManager(_servers("todoist"), connector=FakeConnector({"todoist": session}))
        result = await manager.call_tool("todoist", "add-tasks", {})
        assert result == ToolFailure(reason="project not found")
        await manager.close_all()

    @pytest.mark.asyncio
    async def test_tool_exception_is_failure_and_drops_connection(self):
        session = FakeSession(["add-tasks"], results={"add-tasks": RuntimeError("stream closed")})
        connector = FakeConnector({"todoist": session})
        manager = ToolConnectionManager(_servers("todoist"), connector=connector)
        result = await manager.call_tool("todoist", "add-tasks", {})
        assert not result.ok
        assert "stream closed" in result.reason
        assert manager.open_connections() == []

    @pytest.mark.asyncio
    async def test_unreachable_server_is_failure(self):
        manager = ToolConnectionManager(_servers("todoist"), connector=FakeConnector({}, fail={"todoist"}))
        result = await manager.call_tool("todoist", "find-tasks", {})
        assert isinstance(result, ToolFailure)
