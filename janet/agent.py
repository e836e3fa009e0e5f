"""
Reasoning session — Claude with tool calling.

A ``ReasoningSession`` is bound to one user, a system prompt, and a set of
callable tools. ``generate()`` runs the tool loop for one turn: Claude may
chain several tool calls (find-projects then add-tasks, say) before it
answers, up to ``max_steps`` model calls.

``SessionFactory`` builds sessions for the session cache.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from anthropic import AsyncAnthropic

from janet.errors import MemoryStoreError, ToolConfigurationError
from janet.memory import MemoryClient
from janet.models import ToolFailure, ToolResult, UserContext
from janet.prompts import build_system_prompt
from janet.tool_connections import CallableTool, ToolConnectionManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
TEMPERATURE = 0.7

TASK_CREATION_TOOLS = {"add-tasks", "add-task", "create-task", "createTask"}


def is_task_creation_tool(name: str) -> bool:
    """Known task-creation tool names, plus any name mentioning both 'add' and 'task'."""
    if name in TASK_CREATION_TOOLS:
        return True
    lowered = name.lower()
    return "add" in lowered and "task" in lowered


@dataclass
class ToolCallRecord:
    name: str
    arguments: dict
    result: ToolResult


@dataclass
class AgentStep:
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    text: str = ""


@dataclass
class AgentResult:
    text: str
    steps: list[AgentStep] = field(default_factory=list)

    @property
    def tool_calls(self) -> list[ToolCallRecord]:
        return [call for step in self.steps for call in step.tool_calls]

    @property
    def tools_used(self) -> list[str]:
        return [call.name for call in self.tool_calls]


def _tool_result_content(result: ToolResult) -> str:
    if isinstance(result, ToolFailure):
        return result.reason or "Tool call failed"
    payload = result.payload
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str)


def created_tasks(payload: Any) -> list[dict]:
    """Pull task dicts with an id out of a task-creation tool payload."""
    if isinstance(payload, dict):
        if isinstance(payload.get("tasks"), list):
            payload = payload["tasks"]
        elif payload.get("id"):
            payload = [payload]
        else:
            return []
    if not isinstance(payload, list):
        return []
    return [t for t in payload if isinstance(t, dict) and t.get("id")]


class ReasoningSession:
    def __init__(
        self,
        client: AsyncAnthropic,
        model: str,
        system_prompt: str,
        tools: dict[str, CallableTool],
        user_id: str = "",
        max_steps: int = 20,
        thinking_budget: Optional[int] = None,
        memory: Optional[MemoryClient] = None,
    ):
        self._client = client
        self.model = model
        self.system_prompt = system_prompt
        self.tools = tools
        self.user_id = user_id
        self.max_steps = max_steps
        self.thinking_budget = thinking_budget
        self._memory = memory
        self.created_at = time.time()

    def _request_kwargs(self) -> dict:
        kwargs = {
            "model": self.model,
            "system": self.system_prompt,
            "max_tokens": DEFAULT_MAX_TOKENS,
        }
        if self.tools:
            kwargs["tools"] = [t.to_anthropic() for t in self.tools.values()]
        if self.thinking_budget:
            # extended thinking rejects a custom temperature
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
            kwargs["max_tokens"] = self.thinking_budget + DEFAULT_MAX_TOKENS
        else:
            kwargs["temperature"] = TEMPERATURE
        return kwargs

    async def _invoke_tool(self, name: str, arguments: dict) -> ToolResult:
        tool = self.tools.get(name)
        if tool is None:
            return ToolFailure(reason=f"Unknown tool: {name}")
        try:
            return await tool(arguments)
        except Exception as e:
            logger.error(f"[AGENT] Tool {name} raised: {e}")
            return ToolFailure(reason=f"{name} failed: {e}")

    async def generate(self, prompt: str) -> AgentResult:
        """Run one turn. Upstream errors from the model API propagate."""
        messages: list[dict] = [{"role": "user", "content": prompt}]
        steps: list[AgentStep] = []
        kwargs = self._request_kwargs()
        text = ""

        for step_number in range(1, self.max_steps + 1):
            response = await self._client.messages.create(messages=messages, **kwargs)
            text = "".join(b.text for b in response.content if b.type == "text").strip()
            tool_uses = [b for b in response.content if b.type == "tool_use"]
            step = AgentStep(text=text)
            steps.append(step)

            if response.stop_reason != "tool_use" or not tool_uses:
                break

            messages.append({"role": "assistant", "content": response.content})
            results = []
            for block in tool_uses:
                arguments = block.input if isinstance(block.input, dict) else {}
                logger.info(f"[AGENT] Step {step_number}: {block.name}")
                result = await self._invoke_tool(block.name, arguments)
                step.tool_calls.append(ToolCallRecord(name=block.name, arguments=arguments, result=result))
                results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": _tool_result_content(result),
                    "is_error": not result.ok,
                })
            messages.append({"role": "user", "content": results})
        else:
            logger.warning(f"[AGENT] Stopped after {self.max_steps} steps for {self.user_id}")

        result = AgentResult(text=text, steps=steps)
        if result.tools_used:
            logger.info(f"[AGENT] {len(steps)} steps using tools: {', '.join(result.tools_used)}")
        await self._record_created_tasks(result)
        return result

    async def _record_created_tasks(self, result: AgentResult) -> None:
        if self._memory is None or not self.user_id:
            return
        for call in result.tool_calls:
            if not is_task_creation_tool(call.name) or not call.result.ok:
                continue
            for task in created_tasks(call.result.payload):
                await self._memory.record_task(
                    self.user_id,
                    str(task["id"]),
                    str(task.get("content", "")),
                    task.get("projectId") or task.get("project_id"),
                )


class SessionFactory:
    """Creates a ReasoningSession for a user: memory context, tools, prompt."""

    def __init__(
        self,
        client: AsyncAnthropic,
        model: str,
        tools: ToolConnectionManager,
        memory: MemoryClient,
        local_tools: Optional[list[CallableTool]] = None,
        user_tools: Optional[Callable[[str], list[CallableTool]]] = None,
        max_steps: int = 20,
        thinking_budget: Optional[int] = None,
    ):
        self._client = client
        self.model = model
        self._tools = tools
        self._memory = memory
        self.local_tools = list(local_tools or [])
        self.user_tools = user_tools
        self.max_steps = max_steps
        self.thinking_budget = thinking_budget

    async def _user_context(self, user_id: str) -> UserContext:
        try:
            return await self._memory.get_user_context(user_id)
        except MemoryStoreError as e:
            logger.warning(f"[SESSION] No memory context for {user_id}: {e}")
            return UserContext(user_id=user_id)

    async def __call__(self, user_id: str) -> ReasoningSession:
        context = await self._user_context(user_id)
        tools = await self._tools.list_all_tools()
        local = list(self.local_tools)
        if self.user_tools is not None:
            local.extend(self.user_tools(user_id))
        for tool in local:
            if tool.name in tools:
                raise ToolConfigurationError(f"Local tool {tool.name!r} collides with a server tool")
            tools[tool.name] = tool

        logger.info(f"[SESSION] Building session for {user_id} with {len(tools)} tools")
        return ReasoningSession(
            client=self._client,
            model=self.model,
            system_prompt=build_system_prompt(context),
            tools=tools,
            user_id=user_id,
            max_steps=self.max_steps,
            thinking_budget=self.thinking_budget,
            memory=self._memory,
        )
