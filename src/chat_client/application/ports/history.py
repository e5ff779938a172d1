from __future__ import annotations

from typing import Protocol

from chat_client.domain.entities.message import Message


class HistorySource(Protocol):
    async def load(self, conversation_id: str, limit: int) -> list[Message]:
        """Return up to ``limit`` most recent messages, newest first."""
        ...

    async def aclose(self) -> None: ...
