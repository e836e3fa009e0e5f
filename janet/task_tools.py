"""In-process tools offered to the reasoning session alongside the MCP tools."""

import logging
from datetime import datetime, tzinfo
from typing import Optional

from janet.conflicts import detect
from janet.errors import MemoryStoreError, TaskApiError
from janet.memory import MemoryClient
from janet.models import ProposedTask, ToolFailure, ToolResult, ToolSuccess
from janet.todoist import TodoistClient
from janet.tool_connections import CallableTool

logger = logging.getLogger(__name__)

ANALYZE_TOOL_NAME = "analyze_task_conflicts"

ANALYZE_TOOL_DESCRIPTION = (
    "Analyze potential conflicts for a proposed task. Use this BEFORE creating tasks "
    "to detect time overlaps, dependencies, or workload issues."
)

ANALYZE_TOOL_SCHEMA = {
    "type": "object",
    "properties": {
        "taskContent": {"type": "string", "description": "The proposed task content"},
        "dueDate": {"type": "string", "description": "The proposed due date and time (ISO 8601)"},
        "projectId": {"type": "string", "description": "The project ID for the task"},
        "estimatedDuration": {"type": "number", "description": "Estimated task duration in minutes"},
    },
    "required": ["taskContent"],
}


def parse_due(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 date or datetime -> datetime. A bare date means midnight."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Unrecognized due date: {value!r}")


async def analyze_task_conflicts(
    todoist: TodoistClient,
    task_content: str,
    due_date: Optional[str] = None,
    project_id: Optional[str] = None,
    estimated_duration: Optional[float] = None,
    tz: Optional[tzinfo] = None,
) -> dict:
    """Check a proposed task against the user's current Todoist tasks."""
    proposed = ProposedTask(
        content=task_content,
        due=parse_due(due_date),
        project_id=project_id,
        estimated_duration=float(estimated_duration) if estimated_duration else 60.0,
    )
    existing = await todoist.get_tasks()
    conflicts = detect(proposed, existing, tz=tz)
    return {
        "hasConflicts": bool(conflicts),
        "conflicts": [c.to_dict() for c in conflicts],
        "recommendation": (
            "Conflicts detected. Consider asking the user how they want to proceed."
            if conflicts
            else "No conflicts detected. Safe to create the task."
        ),
    }


def conflict_analysis_tool(todoist: TodoistClient, tz: Optional[tzinfo] = None) -> CallableTool:
    async def invoke(arguments: dict) -> ToolResult:
        content = arguments.get("taskContent")
        if not content:
            return ToolFailure(reason="taskContent is required")
        try:
            payload = await analyze_task_conflicts(
                todoist,
                content,
                due_date=arguments.get("dueDate"),
                project_id=arguments.get("projectId"),
                estimated_duration=arguments.get("estimatedDuration"),
                tz=tz,
            )
        except (TaskApiError, ValueError) as e:
            logger.error(f"[CONFLICT] Analysis failed: {e}")
            return ToolFailure(reason=f"Failed to analyze task conflicts: {e}")
        return ToolSuccess(payload=payload)

    return CallableTool(
        name=ANALYZE_TOOL_NAME,
        description=ANALYZE_TOOL_DESCRIPTION,
        input_schema=ANALYZE_TOOL_SCHEMA,
        invoke=invoke,
    )


# ── Task lookup ────────────────────────────────────────────────────────

TASK_DETAILS_TOOL_NAME = "get_task_details"


def task_details_tool(todoist: TodoistClient) -> CallableTool:
    async def invoke(arguments: dict) -> ToolResult:
        task_id = arguments.get("taskId")
        if not task_id:
            return ToolFailure(reason="taskId is required")
        try:
            task = await todoist.get_task(str(task_id))
        except TaskApiError as e:
            return ToolFailure(reason=f"Failed to fetch task {task_id}: {e}")
        return ToolSuccess(payload=task.to_dict())

    return CallableTool(
        name=TASK_DETAILS_TOOL_NAME,
        description="Fetch one Todoist task by id, including its due date, priority and project.",
        input_schema={
            "type": "object",
            "properties": {"taskId": {"type": "string", "description": "The Todoist task id"}},
            "required": ["taskId"],
        },
        invoke=invoke,
    )


# ── Memory tools (bound to one user) ───────────────────────────────────

PREFERENCE_KEYS = ("timezone", "workHours", "commonProjects", "preferredPriority")


def _saved(ok: bool, what: str) -> ToolResult:
    if ok:
        return ToolSuccess(payload={"saved": what})
    return ToolFailure(reason=f"Could not save {what} to memory")


def memory_tools(memory: MemoryClient, user_id: str) -> list[CallableTool]:
    """Tools that let the assistant read and write the user's long-term memory."""

    async def remember_preferences(arguments: dict) -> ToolResult:
        preferences = {k: arguments[k] for k in PREFERENCE_KEYS if arguments.get(k) is not None}
        if not preferences:
            return ToolFailure(reason=f"Give at least one of: {', '.join(PREFERENCE_KEYS)}")
        return _saved(await memory.update_preferences(user_id, preferences), "preferences")

    async def remember_project(arguments: dict) -> ToolResult:
        project_id, name = arguments.get("projectId"), arguments.get("projectName")
        if not project_id or not name:
            return ToolFailure(reason="projectId and projectName are required")
        return _saved(await memory.record_project(user_id, str(project_id), name), "project")

    async def record_task_duration(arguments: dict) -> ToolResult:
        task_type = arguments.get("taskType")
        try:
            minutes = float(arguments.get("durationMinutes"))
        except (TypeError, ValueError):
            return ToolFailure(reason="durationMinutes must be a number")
        if not task_type or minutes <= 0:
            return ToolFailure(reason="taskType and a positive durationMinutes are required")
        return _saved(await memory.record_task_pattern(user_id, task_type, minutes), "task duration")

    async def search_memory(arguments: dict) -> ToolResult:
        query = arguments.get("query")
        if not query:
            return ToolFailure(reason="query is required")
        try:
            results = await memory.search(user_id, query, limit=int(arguments.get("limit") or 5))
        except MemoryStoreError as e:
            return ToolFailure(reason=f"Memory search failed: {e}")
        return ToolSuccess(payload=[r.get("memory", r) if isinstance(r, dict) else r for r in results])

    return [
        CallableTool(
            name="remember_preferences",
            description="Save the user's scheduling preferences (timezone, work hours, usual projects, priority).",
            input_schema={
                "type": "object",
                "properties": {
                    "timezone": {"type": "string", "description": "IANA timezone, e.g. Europe/Lisbon"},
                    "workHours": {
                        "type": "object",
                        "properties": {"start": {"type": "string"}, "end": {"type": "string"}},
                    },
                    "commonProjects": {"type": "array", "items": {"type": "string"}},
                    "preferredPriority": {"type": "integer", "minimum": 1, "maximum": 4},
                },
            },
            invoke=remember_preferences,
        ),
        CallableTool(
            name="remember_project",
            description="Remember a Todoist project the user is actively working on.",
            input_schema={
                "type": "object",
                "properties": {
                    "projectId": {"type": "string"},
                    "projectName": {"type": "string"},
                },
                "required": ["projectId", "projectName"],
            },
            invoke=remember_project,
        ),
        CallableTool(
            name="record_task_duration",
            description="Record how long a kind of task took, to improve future time estimates.",
            input_schema={
                "type": "object",
                "properties": {
                    "taskType": {"type": "string", "description": "Short task category, e.g. email"},
                    "durationMinutes": {"type": "number"},
                },
                "required": ["taskType", "durationMinutes"],
            },
            invoke=record_task_duration,
        ),
        CallableTool(
            name="search_memory",
            description="Search what Janet remembers about the user.",
            input_schema={
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "limit": {"type": "integer", "minimum": 1, "maximum": 20},
                },
                "required": ["query"],
            },
            invoke=search_memory,
        ),
    ]
