"""Tests for the Janet MCP server."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from janet.config import Config
from janet.errors import ConfigurationError
from janet.models import Task
from janet.todoist import TodoistClient


def _fake_todoist(tasks):
    todoist = MagicMock()
    todoist.get_tasks = AsyncMock(return_value=tasks)
    todoist.get_tasks_for_range = AsyncMock(return_value=tasks)
    return todoist


def test_server_initializes():
    from janet.mcp_server import mcp
    assert mcp is not None
    assert mcp.name == "janet"


def test_tools_registered():
    from janet.mcp_server import mcp
    tool_names = set(mcp._tool_manager._tools.keys())
    expected = {"janet_analyze_task_conflicts", "janet_tasks_for_day"}
    assert expected.issubset(tool_names), f"Missing tools: {expected - tool_names}"


def test_resources_registered():
    from janet.mcp_server import mcp
    resource_uris = {str(u) for u in mcp._resource_manager._resources.keys()}
    assert any("conflict-rules" in u for u in resource_uris)


def test_conflict_rules_resource():
    from janet.mcp_server import resource_conflict_rules
    data = json.loads(resource_conflict_rules())
    assert data["workload_threshold"] == 8
    assert data["existing_task_minutes"] == 60
    assert ["research", "implement"] in data["dependency_keywords"]


@pytest.mark.asyncio
async def test_analyze_returns_json():
    from janet import mcp_server
    existing = [Task(id="1", content="Standup", due=datetime(2025, 3, 14, 9, tzinfo=timezone.utc))]
    with patch.object(mcp_server, "_todoist", return_value=_fake_todoist(existing)):
        result = await mcp_server.janet_analyze_task_conflicts("Dentist", "2025-03-14T09:30:00Z")
    data = json.loads(result)
    assert data["hasConflicts"] is True
    assert data["conflicts"][0]["type"] == "time_overlap"


@pytest.mark.asyncio
async def test_analyze_without_token_reports_error():
    from janet import mcp_server
    with patch.object(mcp_server, "_todoist", side_effect=ConfigurationError("TODOIST_API_TOKEN is not set")):
        result = await mcp_server.janet_analyze_task_conflicts("Dentist")
    assert "TODOIST_API_TOKEN" in json.loads(result)["error"]


@pytest.mark.asyncio
async def test_tasks_for_day():
    from janet import mcp_server
    task = Task(id="1", content="Standup", due=datetime(2025, 3, 14, 9, tzinfo=timezone.utc))
    todoist = _fake_todoist([task])
    with patch.object(mcp_server, "_todoist", return_value=todoist):
        result = await mcp_server.janet_tasks_for_day("2025-03-14")
    data = json.loads(result)
    assert data["day"] == "2025-03-14"
    assert data["count"] == 1
    assert data["tasks"][0]["content"] == "Standup"
    lower, upper = todoist.get_tasks_for_range.await_args.args
    assert lower < datetime(2025, 3, 14) < upper


@pytest.mark.asyncio
async def test_tasks_for_day_bad_input():
    from janet.mcp_server import janet_tasks_for_day
    data = json.loads(await janet_tasks_for_day("someday"))
    assert "error" in data


def test_todoist_uses_configured_token(monkeypatch):
    from janet import mcp_server
    monkeypatch.setattr(mcp_server, "_config", None)
    with pytest.raises(ConfigurationError):
        mcp_server._todoist(MagicMock())

    mcp_server.configure(Config(todoist_api_token="tok"))
    assert isinstance(mcp_server._todoist(MagicMock()), TodoistClient)

    mcp_server.configure(Config(todoist_api_token=""))
    with pytest.raises(ConfigurationError, match="TODOIST_API_TOKEN"):
        mcp_server._todoist(MagicMock())


def test_run_loads_config_once(monkeypatch):
    from janet import mcp_server
    monkeypatch.setattr(mcp_server, "_config", None)
    config = Config(todoist_api_token="tok")
    with patch.object(mcp_server, "load_config", return_value=config) as load, \
            patch.object(mcp_server.mcp, "run") as run:
        mcp_server.run()
    load.assert_called_once_with(validate=False)
    run.assert_called_once_with(transport="stdio")
    assert mcp_server._config is config
