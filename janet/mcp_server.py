#!/usr/bin/env python3
"""Janet MCP Server — expose task conflict analysis as MCP tools.

Run standalone:
    python -m janet.mcp_server

Or via CLI:
    janet mcp
"""

import json
from datetime import datetime, timedelta
from typing import Optional

import httpx
from mcp.server.fastmcp import FastMCP

from janet.config import Config, load_config
from janet.conflicts import DEPENDENCY_KEYWORDS, EXISTING_TASK_DURATION, WORKLOAD_THRESHOLD
from janet.errors import ConfigurationError, TaskApiError
from janet.task_tools import analyze_task_conflicts, parse_due
from janet.todoist import TodoistClient

# ── Server Setup ───────────────────────────────────────────────────────

mcp = FastMCP(
    name="janet",
    instructions=(
        "Janet manages the user's Todoist tasks. Use analyze_task_conflicts before "
        "creating a task to catch time overlaps, overloaded days, and unfinished "
        "prerequisites."
    ),
)


_config: Optional[Config] = None


def configure(config: Config) -> None:
    """Set the configuration the tools use. Called once by ``run()``."""
    global _config
    _config = config


def _todoist(http: httpx.AsyncClient) -> TodoistClient:
    config = _config
    if config is None:
        raise ConfigurationError("MCP server is not configured")
    if not config.todoist_api_token:
        raise ConfigurationError("TODOIST_API_TOKEN is not set")
    return TodoistClient(config.todoist_api_token, http, base_url=config.todoist_api_url)


# ── Tools ──────────────────────────────────────────────────────────────


@mcp.tool()
async def janet_analyze_task_conflicts(
    task_content: str,
    due_date: Optional[str] = None,
    project_id: Optional[str] = None,
    estimated_duration: Optional[float] = None,
) -> str:
    """Check a proposed task for conflicts with the user's existing tasks.

    Use this BEFORE creating a task. Reports time overlaps, days with too
    many tasks, and unfinished prerequisite tasks in the same project.

    Args:
        task_content: The proposed task text
        due_date: Due date/time in ISO 8601 (e.g. 2025-03-14T15:00:00)
        project_id: Todoist project id of the proposed task
        estimated_duration: Estimated duration in minutes (default 60)
    """
    async with httpx.AsyncClient(timeout=30) as http:
        try:
            result = await analyze_task_conflicts(
                _todoist(http), task_content, due_date, project_id, estimated_duration
            )
        except (ConfigurationError, TaskApiError, ValueError) as e:
            return json.dumps({"error": str(e)})
    return json.dumps(result)


@mcp.tool()
async def janet_tasks_for_day(day: str) -> str:
    """List the user's Todoist tasks due on one day.

    Args:
        day: The day in ISO format (YYYY-MM-DD)
    """
    try:
        start = parse_due(day).replace(hour=0, minute=0, second=0, microsecond=0)
    except (ValueError, AttributeError) as e:
        return json.dumps({"error": str(e)})
    # range bounds are exclusive
    lower = start - timedelta(microseconds=1)
    upper = start + timedelta(days=1)

    async with httpx.AsyncClient(timeout=30) as http:
        try:
            tasks = await _todoist(http).get_tasks_for_range(lower, upper)
        except (ConfigurationError, TaskApiError) as e:
            return json.dumps({"error": str(e)})
    return json.dumps({
        "day": start.date().isoformat(),
        "count": len(tasks),
        "tasks": [t.to_dict() for t in tasks],
    })


# ── Resources ──────────────────────────────────────────────────────────


@mcp.resource("janet://conflict-rules")
def resource_conflict_rules() -> str:
    """The rules the conflict analysis applies."""
    return json.dumps({
        "workload_threshold": WORKLOAD_THRESHOLD,
        "existing_task_minutes": int(EXISTING_TASK_DURATION.total_seconds() // 60),
        "default_estimate_minutes": 60,
        "dependency_keywords": [list(pair) for pair in DEPENDENCY_KEYWORDS],
        "generated_at": datetime.now().isoformat(),
    })


# ── Entry Point ────────────────────────────────────────────────────────


def run(config: Optional[Config] = None):
    """Run the MCP server (stdio transport for Claude Desktop)."""
    configure(config or load_config(validate=False))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    run()
