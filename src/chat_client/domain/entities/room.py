from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class ConversationRoom:
    conversation_id: str
    joined_at: datetime | None = None

    @property
    def is_joined(self) -> bool:
        return self.joined_at is not None
