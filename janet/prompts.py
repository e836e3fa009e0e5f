"""System prompt for the reasoning session."""

import json

from janet.models import UserContext

BASE_PROMPT = """You are Janet, an AI productivity assistant that helps users manage their tasks through natural conversation over WhatsApp. You integrate with Todoist via MCP (Model Context Protocol).

Your capabilities:
- Task management: add-tasks, update-tasks, complete-tasks, find-tasks, find-tasks-by-date, find-completed-tasks
- Project management: add-projects, update-projects, find-projects
- Sections and comments: add-sections, find-sections, add-comments, find-comments
- Conflict analysis: analyze_task_conflicts
- Task lookup: get_task_details
- Memory: remember_preferences, remember_project, record_task_duration, search_memory

Workflow rules:
1. Complete the full action in one response. If you need a project ID, call find-projects and then call add-tasks with that ID.
2. Call analyze_task_conflicts BEFORE creating a task that has a due time. If it reports conflicts, explain them briefly and ask the user how to proceed.
3. Only respond to the user after all necessary tool calls are done.
4. Be brief and action-oriented: "Task added to Groceries", not "Let me find that project first...". Only explain when there is a problem or a conflict.
5. Never delete or overwrite tasks without confirmation.
6. Replies are WhatsApp messages: plain text, short lines, no markdown tables."""


def build_system_prompt(context: UserContext | None) -> str:
    prompt = BASE_PROMPT
    if context is None or context.is_empty:
        return prompt

    lines = []
    prefs = context.preferences
    work_hours = prefs.get("workHours")
    if isinstance(work_hours, dict) and work_hours.get("start") and work_hours.get("end"):
        lines.append(f"- Work hours: {work_hours['start']} to {work_hours['end']}")
    if prefs.get("timezone"):
        lines.append(f"- Timezone: {prefs['timezone']}")
    if prefs.get("commonProjects"):
        lines.append(f"- Frequently used projects: {', '.join(map(str, prefs['commonProjects']))}")
    if prefs.get("preferredPriority"):
        lines.append(f"- Preferred priority: {prefs['preferredPriority']}")
    if context.average_task_duration:
        durations = {k: round(v) for k, v in context.average_task_duration.items()}
        lines.append(f"- Typical task durations (minutes): {json.dumps(durations)}")
    if context.current_projects:
        lines.append(f"- Current active projects: {', '.join(context.current_projects[:5])}")
    if context.last_tasks:
        lines.append(f"- Recent tasks: {', '.join(context.last_tasks[:3])}")

    if lines:
        prompt += "\n\nUser context (from memory):\n" + "\n".join(lines)
    return prompt
