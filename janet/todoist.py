"""Read-only Todoist REST client used by conflict analysis.

Task creation and editing go through the Todoist MCP server; this client
only fetches the user's existing tasks.
"""

import logging
from datetime import date, datetime
from typing import Optional

import httpx

from janet.errors import TaskApiError
from janet.models import Task

logger = logging.getLogger(__name__)


def _parse_datetime(value: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return None


def parse_task(data: dict) -> Task:
    """Todoist task JSON -> Task.

    ``due.datetime`` becomes ``Task.due``. The unified API has no
    ``due.datetime`` and puts timed dues in ``due.date`` instead
    (``2025-03-14T15:00:00``). A date-only due is kept in ``due_date`` and
    takes no part in time analysis.
    """
    due = data.get("due") or {}
    raw_date = due.get("date") or ""
    if due.get("datetime"):
        due_dt = _parse_datetime(due["datetime"])
    elif "T" in raw_date:
        due_dt = _parse_datetime(raw_date)
    else:
        due_dt = None
    due_date = _parse_date(raw_date) if raw_date else None
    if due_date is None and due_dt is not None:
        due_date = due_dt.date()
    return Task(
        id=str(data.get("id", "")),
        content=data.get("content", ""),
        project_id=str(data["project_id"]) if data.get("project_id") else None,
        is_completed=bool(data.get("is_completed", False)),
        priority=int(data.get("priority") or 1),
        due=due_dt,
        due_date=due_date,
        parent_id=str(data["parent_id"]) if data.get("parent_id") else None,
    )


class TodoistClient:
    def __init__(self, api_token: str, http: httpx.AsyncClient,
                 base_url: str = "https://api.todoist.com/rest/v2"):
        self.base_url = base_url.rstrip("/")
        self._http = http
        self._headers = {"Authorization": f"Bearer {api_token}"}

    async def _get(self, path: str, params: Optional[dict] = None):
        url = f"{self.base_url}{path}"
        try:
            resp = await self._http.get(url, headers=self._headers, params=params)
        except httpx.HTTPError as e:
            raise TaskApiError(f"Todoist unreachable: {e}")
        if resp.status_code >= 300:
            raise TaskApiError(
                f"Todoist error ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp.json()

    async def get_tasks(self, project_id: Optional[str] = None, label: Optional[str] = None,
                        filter: Optional[str] = None) -> list[Task]:
        params = {}
        if project_id:
            params["project_id"] = project_id
        if label:
            params["label"] = label
        if filter:
            params["filter"] = filter
        data = await self._get("/tasks", params=params or None)
        if isinstance(data, dict):
            data = data.get("results", [])
        tasks = [parse_task(item) for item in data or []]
        logger.info(f"[TODOIST] Fetched {len(tasks)} tasks")
        return tasks

    async def get_task(self, task_id: str) -> Task:
        return parse_task(await self._get(f"/tasks/{task_id}"))

    async def get_tasks_for_range(self, start: datetime, end: datetime) -> list[Task]:
        """Tasks due strictly between ``start`` and ``end``.

        Date-only dues count from midnight of that day. Naive bounds are
        compared against naive midnights, aware bounds against aware dues.
        """
        in_range = []
        for task in await self.get_tasks():
            if task.due is not None:
                moment = task.due
            elif task.due_date is not None:
                moment = datetime.combine(task.due_date, datetime.min.time(), tzinfo=start.tzinfo)
            else:
                continue
            if moment.tzinfo is None and start.tzinfo is not None:
                moment = moment.replace(tzinfo=start.tzinfo)
            elif moment.tzinfo is not None and start.tzinfo is None:
                moment = moment.astimezone().replace(tzinfo=None)
            if start < moment < end:
                in_range.append(task)
        return in_range
