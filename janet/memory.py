"""Mem0 memory store client.

The store only keeps tagged records; folding them into a ``UserContext``
happens here, client-side. Records carry ``metadata.type``:

    preference    metadata.data merged into preferences
    pattern       metadata.data {taskType, duration} -> average task duration
    recent_task   metadata.taskId appended to last_tasks
    project       metadata.projectId appended to current_projects
    conversation  a user/assistant exchange, not folded
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from janet.errors import MemoryStoreError
from janet.models import UserContext

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryClient:
    def __init__(self, api_key: str, http: httpx.AsyncClient, base_url: str = "https://api.mem0.ai"):
        self.base_url = base_url.rstrip("/")
        self._http = http
        self._headers = {"Authorization": f"Token {api_key}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = await self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise MemoryStoreError(f"Memory store unreachable: {e}")
        if resp.status_code >= 300:
            raise MemoryStoreError(
                f"Memory store error ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except json.JSONDecodeError:
            return resp.text

    # ── Store operations ────────────────────────────────────────────────

    async def add_record(self, user_id: str, content: str, metadata: Optional[dict] = None,
                         messages: Optional[list[dict]] = None) -> Any:
        body = {
            "messages": messages or [{"role": "user", "content": content}],
            "user_id": user_id,
        }
        if metadata:
            body["metadata"] = metadata
        return await self._request("POST", "/v1/memories/", json=body)

    async def list_all(self, user_id: str) -> list[dict]:
        data = await self._request("GET", "/v1/memories/", params={"user_id": user_id})
        if isinstance(data, dict):
            data = data.get("results", [])
        return data or []

    async def search(self, user_id: str, query: str, limit: int = 10) -> list[dict]:
        data = await self._request(
            "POST", "/v1/memories/search/",
            json={"query": query, "user_id": user_id, "limit": limit},
        )
        if isinstance(data, dict):
            data = data.get("results", [])
        return data or []

    async def delete_one(self, memory_id: str) -> None:
        await self._request("DELETE", f"/v1/memories/{memory_id}/")

    async def delete_all(self, user_id: str) -> None:
        await self._request("DELETE", "/v1/memories/", params={"user_id": user_id})
        logger.info(f"[MEMORY] Deleted all memories for {user_id}")

    # ── Folding ─────────────────────────────────────────────────────────

    async def get_user_context(self, user_id: str) -> UserContext:
        """Fold the user's tagged records into a UserContext."""
        records = await self.list_all(user_id)
        return fold_records(user_id, records)

    # ── Recording helpers (best effort) ─────────────────────────────────

    async def record_conversation(self, user_id: str, user_message: str, assistant_response: str) -> bool:
        try:
            await self.add_record(
                user_id,
                user_message,
                metadata={"type": "conversation", "timestamp": _now_iso()},
                messages=[
                    {"role": "user", "content": user_message},
                    {"role": "assistant", "content": assistant_response},
                ],
            )
            return True
        except MemoryStoreError as e:
            logger.error(f"[MEMORY] Failed to record conversation for {user_id}: {e}")
            return False

    async def record_task(self, user_id: str, task_id: str, task_content: str,
                          project_id: Optional[str] = None) -> bool:
        metadata = {"type": "recent_task", "taskId": task_id, "taskContent": task_content}
        if project_id:
            metadata["projectId"] = project_id
        try:
            await self.add_record(user_id, f"Created task: {task_content}", metadata=metadata)
            return True
        except MemoryStoreError as e:
            logger.error(f"[MEMORY] Failed to record task for {user_id}: {e}")
            return False

    async def record_project(self, user_id: str, project_id: str, project_name: str) -> bool:
        try:
            await self.add_record(
                user_id,
                f"Working on project: {project_name}",
                metadata={"type": "project", "projectId": project_id, "projectName": project_name},
            )
            return True
        except MemoryStoreError as e:
            logger.error(f"[MEMORY] Failed to record project for {user_id}: {e}")
            return False

    async def update_preferences(self, user_id: str, preferences: dict) -> bool:
        try:
            await self.add_record(
                user_id,
                f"User preferences: {json.dumps(preferences)}",
                metadata={"type": "preference", "data": preferences},
            )
            return True
        except MemoryStoreError as e:
            logger.error(f"[MEMORY] Failed to update preferences for {user_id}: {e}")
            return False

    async def record_task_pattern(self, user_id: str, task_type: str, duration: float) -> bool:
        try:
            await self.add_record(
                user_id,
                f'Task "{task_type}" took {duration} minutes to complete',
                metadata={
                    "type": "pattern",
                    "data": {"taskType": task_type, "duration": duration, "timestamp": _now_iso()},
                },
            )
            return True
        except MemoryStoreError as e:
            logger.error(f"[MEMORY] Failed to record task pattern for {user_id}: {e}")
            return False


def fold_records(user_id: str, records: list[dict]) -> UserContext:
    context = UserContext(user_id=user_id)
    pattern_counts: dict[str, int] = {}

    for record in records:
        metadata = record.get("metadata") if isinstance(record, dict) else None
        if not isinstance(metadata, dict):
            continue
        kind = metadata.get("type")

        if kind == "preference" and isinstance(metadata.get("data"), dict):
            context.preferences.update(metadata["data"])
        elif kind == "pattern" and isinstance(metadata.get("data"), dict):
            data = metadata["data"]
            task_type = data.get("taskType")
            try:
                duration = float(data.get("duration"))
            except (TypeError, ValueError):
                continue
            if not task_type:
                continue
            # running mean per task type
            n = pattern_counts.get(task_type, 0)
            previous = context.average_task_duration.get(task_type, 0.0)
            context.average_task_duration[task_type] = (previous * n + duration) / (n + 1)
            pattern_counts[task_type] = n + 1
        elif kind == "recent_task" and metadata.get("taskId"):
            context.last_tasks.append(str(metadata["taskId"]))
        elif kind == "project" and metadata.get("projectId"):
            context.current_projects.append(str(metadata["projectId"]))

    return context
