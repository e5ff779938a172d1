from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessageReceived:
    message: Message
    conversation_id: str | None = None


@dataclass(frozen=True, slots=True)
class TypingSignal:
    sender_id: str
    is_typing: bool
    conversation_id: str | None = None
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class ServerNotice:
    message: str

