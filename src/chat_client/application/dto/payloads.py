from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from chat_client.application.exceptions import ChatError
from chat_client.domain.entities.message import Attachment
from chat_client.domain.value_objects.enums import AttachmentKind


@dataclass(frozen=True, slots=True)
class MessagePayload:
    text: str | None = None
    image: str | None = None
    audio: str | None = None

    @property
    def clean_text(self) -> str:
        return (self.text or "").strip()

    @property
    def is_empty(self) -> bool:
        return not self.clean_text and not self.image and not self.audio

    @property
    def attachment(self) -> Attachment | None:
        if self.image:
            return Attachment(kind=AttachmentKind.IMAGE, url=self.image)
        if self.audio:
            return Attachment(kind=AttachmentKind.AUDIO, url=self.audio)
        return None

    def to_wire(self, conversation_id: str, temp_id: str) -> dict[str, Any]:
        data: dict[str, Any] = {"conversationId": conversation_id, "tempId": temp_id}
        if self.clean_text:
            data["text"] = self.clean_text
        if self.image:
            data["image"] = self.image
        if self.audio:
            data["audio"] = self.audio
        return data


@dataclass(slots=True)
class PendingSend:
    temp_id: str
    payload: MessagePayload
    conversation_id: str
    retries_used: int = 0
    task: asyncio.Task[None] | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class SendFailure:
    """A rolled-back send. Call ``retry()`` to submit the same payload again."""

    temp_id: str
    payload: MessagePayload
    error: ChatError
    retries_used: int
    retry: Callable[[], str] = field(repr=False)


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """Identity confirmed by the server during the handshake."""

    user_id: str
    display_name: str = ""
