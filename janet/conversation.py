"""Per-user sliding window of recent turns."""

import logging
from collections import deque

from janet.models import ConversationTurn

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class ConversationHistory:
    """Keeps the last ``limit`` turns per user.

    Independent of the session cache: history survives session expiry.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.limit = limit
        self._turns: dict[str, deque[ConversationTurn]] = {}

    def append(self, user_id: str, role: str, text: str) -> None:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown role: {role!r}")
        turns = self._turns.get(user_id)
        if turns is None:
            turns = self._turns[user_id] = deque(maxlen=self.limit)
        turns.append(ConversationTurn(role=role, text=text))

    def get(self, user_id: str) -> list[ConversationTurn]:
        """All retained turns for a user, oldest first."""
        return list(self._turns.get(user_id, ()))

    def get_recent(self, user_id: str, count: int) -> list[ConversationTurn]:
        if count <= 0:
            return []
        return self.get(user_id)[-count:]

    def clear(self, user_id: str) -> None:
        self._turns.pop(user_id, None)

    def clear_all(self) -> None:
        self._turns.clear()

    @property
    def active_users(self) -> int:
        return len(self._turns)


def format_prompt(history: list[ConversationTurn], content: str) -> str:
    """Render prior turns ahead of the current message.

    With no history the current message is returned unchanged.
    """
    if not history:
        return content
    lines = ["Previous conversation:"]
    for turn in history:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.text}")
    lines.append("")
    lines.append(f"Current message: {content}")
    return "\n".join(lines)
