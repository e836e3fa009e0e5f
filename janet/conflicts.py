"""
Task Conflict Detector

Checks a proposed task against the user's existing tasks for:
  - workload: too many tasks on the same day
  - time_overlap: the proposed slot collides with an existing task
  - dependency: an unfinished prerequisite in the same project

Pure: no I/O, never mutates the tasks it is given. Results are advisory;
the reasoning session decides whether to proceed, ask, or stop.
"""

import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

from janet.models import ConflictKind, ProposedTask, Severity, Task, TaskConflict

logger = logging.getLogger(__name__)

WORKLOAD_THRESHOLD = 8
EXISTING_TASK_DURATION = timedelta(hours=1)
DEFAULT_PROPOSED_DURATION_MINUTES = 60

# (prerequisite, dependent) keyword pairs, checked in order
DEPENDENCY_KEYWORDS = [
    ("create", "send"),
    ("prepare", "submit"),
    ("draft", "finalize"),
    ("book", "confirm"),
    ("research", "implement"),
    ("design", "build"),
]

WORKLOAD_SUGGESTIONS = [
    "Consider spreading tasks across multiple days",
    "Review priorities and defer lower-priority tasks",
    "Combine similar tasks to reduce context switching",
]

DEPENDENCY_SUGGESTIONS = [
    "Complete prerequisite tasks first",
    "Create a parent-child task relationship",
    "Adjust task order in the project",
]


def _localize(dt: datetime, tz: Optional[tzinfo]) -> datetime:
    # Naive datetimes are read as host-local time.
    return dt.astimezone(tz)


def _local_date(dt: datetime, tz: Optional[tzinfo]) -> date:
    return _localize(dt, tz).date()


def _format_time(dt: datetime) -> str:
    return dt.strftime("%I:%M %p").lstrip("0")


def is_likely_dependency(existing_content: str, proposed_content: str) -> bool:
    """True when the existing task reads like a prerequisite of the proposed one."""
    existing_lower = existing_content.lower()
    proposed_lower = proposed_content.lower()
    for prerequisite, dependent in DEPENDENCY_KEYWORDS:
        if prerequisite in existing_lower and dependent in proposed_lower:
            return True
    return False


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """One start strictly inside the other span, or identical starts."""
    return (
        (start_b < start_a < end_b)
        or (start_a < start_b < end_a)
        or start_a == start_b
    )


def _workload_conflict(same_day: list[Task]) -> TaskConflict:
    return TaskConflict(
        kind=ConflictKind.WORKLOAD,
        severity=Severity.HIGH,
        message=f"You already have {len(same_day)} tasks scheduled for this day, which may be overwhelming.",
        conflicting_tasks=list(same_day),
        suggestions=list(WORKLOAD_SUGGESTIONS),
    )


def _overlap_conflicts(proposed: ProposedTask, same_day: list[Task], tz: Optional[tzinfo]) -> list[TaskConflict]:
    conflicts = []
    duration = proposed.estimated_duration or DEFAULT_PROPOSED_DURATION_MINUTES
    proposed_start = _localize(proposed.due, tz)
    proposed_end = proposed_start + timedelta(minutes=duration)

    for task in same_day:
        if task.due is None:
            continue
        existing_start = _localize(task.due, tz)
        existing_end = existing_start + EXISTING_TASK_DURATION
        if not intervals_overlap(proposed_start, proposed_end, existing_start, existing_end):
            continue
        conflicts.append(TaskConflict(
            kind=ConflictKind.TIME_OVERLAP,
            severity=Severity.HIGH,
            message=f'Time overlap detected with task: "{task.content}"',
            conflicting_tasks=[task],
            suggestions=[
                f"Schedule the new task before {_format_time(existing_start)}",
                f"Schedule the new task after {_format_time(existing_end)}",
                "Move one of the tasks to a different day",
            ],
        ))
    return conflicts


def _dependency_conflict(proposed: ProposedTask, existing: list[Task]) -> Optional[TaskConflict]:
    project_tasks = [
        t for t in existing
        if t.project_id == proposed.project_id and not t.is_completed
    ]
    prerequisites = [t for t in project_tasks if is_likely_dependency(t.content, proposed.content)]
    if not prerequisites:
        return None
    return TaskConflict(
        kind=ConflictKind.DEPENDENCY,
        severity=Severity.MEDIUM,
        message="Potential task dependencies detected",
        conflicting_tasks=prerequisites,
        suggestions=list(DEPENDENCY_SUGGESTIONS),
    )


def detect(proposed: ProposedTask, existing: list[Task], tz: Optional[tzinfo] = None) -> list[TaskConflict]:
    """Return the conflicts a proposed task would introduce.

    Args:
        proposed: The task about to be created.
        existing: The user's current tasks.
        tz: Timezone that defines a "calendar day". Defaults to host-local.

    Returns:
        Conflicts in order: workload, time overlaps, dependency.
        Empty when the proposed task has no due instant.
    """
    if proposed.due is None:
        return []

    target_day = _local_date(proposed.due, tz)
    same_day = [t for t in existing if t.due is not None and _local_date(t.due, tz) == target_day]

    conflicts: list[TaskConflict] = []
    if len(same_day) >= WORKLOAD_THRESHOLD:
        conflicts.append(_workload_conflict(same_day))

    conflicts.extend(_overlap_conflicts(proposed, same_day, tz))

    dependency = _dependency_conflict(proposed, existing)
    if dependency:
        conflicts.append(dependency)

    if conflicts:
        logger.info(f"[CONFLICT] {len(conflicts)} conflicts for '{proposed.content[:50]}' "
                    f"({', '.join(c.kind.value for c in conflicts)})")
    return conflicts
