"""Core data types flowing through the Janet pipeline."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class Provider(str, Enum):
    META = "meta"        # native WhatsApp Cloud API, JSON + signature
    TWILIO = "twilio"    # Twilio WhatsApp bridge, form-encoded


class MessageKind(str, Enum):
    TEXT = "text"
    VOICE = "voice"


@dataclass(frozen=True)
class InboundEnvelope:
    provider: Provider
    sender_id: str
    message_id: str
    payload: dict


@dataclass(frozen=True)
class VoiceReference:
    """Where to fetch a voice note from.

    ``source`` is a direct media URL for Twilio and a Graph API media id for
    Meta; the channel client of the owning provider knows how to download it.
    """
    source: str
    mime_type: str = "audio/ogg"


@dataclass(frozen=True)
class NormalizedMessage:
    provider: Provider
    sender_id: str
    display_name: str
    message_id: str
    text: Optional[str] = None
    voice: Optional[VoiceReference] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if (self.text is None) == (self.voice is None):
            raise ValueError("NormalizedMessage needs exactly one of text or voice")

    @property
    def kind(self) -> MessageKind:
        return MessageKind.VOICE if self.voice is not None else MessageKind.TEXT


@dataclass(frozen=True)
class ConversationTurn:
    role: str  # "user" | "assistant"
    text: str


@dataclass
class Task:
    """A task as reported by the task-management API."""
    id: str
    content: str
    project_id: Optional[str] = None
    is_completed: bool = False
    priority: int = 1  # 1 = normal ... 4 = urgent
    due: Optional[datetime] = None
    due_date: Optional[date] = None
    parent_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "project_id": self.project_id,
            "is_completed": self.is_completed,
            "priority": self.priority,
            "due": self.due.isoformat() if self.due else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "parent_id": self.parent_id,
        }


@dataclass
class ProposedTask:
    content: str
    due: Optional[datetime] = None
    project_id: Optional[str] = None
    estimated_duration: float = 60.0  # minutes


class ConflictKind(str, Enum):
    TIME_OVERLAP = "time_overlap"
    DEPENDENCY = "dependency"
    WORKLOAD = "workload"
    DEADLINE = "deadline"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class TaskConflict:
    kind: ConflictKind
    severity: Severity
    message: str
    conflicting_tasks: list[Task] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "conflictingTasks": [t.to_dict() for t in self.conflicting_tasks],
            "suggestions": list(self.suggestions),
        }


@dataclass
class UserContext:
    user_id: str
    preferences: dict[str, Any] = field(default_factory=dict)
    average_task_duration: dict[str, float] = field(default_factory=dict)  # task type -> minutes
    last_tasks: list[str] = field(default_factory=list)
    current_projects: list[str] = field(default_factory=list)
    recent_topics: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.preferences or self.average_task_duration
                    or self.last_tasks or self.current_projects)


# --- Tool call results ------------------------------------------------------

@dataclass(frozen=True)
class ToolSuccess:
    payload: Any = None

    ok = True


@dataclass(frozen=True)
class ToolFailure:
    reason: str

    ok = False


ToolResult = Union[ToolSuccess, ToolFailure]
