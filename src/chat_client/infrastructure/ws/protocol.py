"""WebSocket frame envelope and payload models."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from chat_client.domain.value_objects.enums import AttachmentKind

# Client → Server
HANDSHAKE = "handshake"
JOIN_CONVERSATION = "join:conversation"
LEAVE_CONVERSATION = "leave:conversation"
SEND_MESSAGE = "send:message"
TYPING_START = "typing:start"
TYPING_STOP = "typing:stop"

# Server → Client
CONNECTION_ESTABLISHED = "connection_established"
CONVERSATION_JOINED = "conversation:joined"
MESSAGE_RECEIVED = "message:received"
SERVER_ERROR = "error"
ACK = "ack"

# Raised locally by the socket, never sent on the wire
LINK_LOST = "transport:lost"

# Close codes the server uses for a rejected token
AUTH_CLOSE_CODES = frozenset({1008, 4001})


class _WireModel(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True)


class WsFrame(BaseModel):
    """One JSON text frame, either direction."""

    type: str
    data: dict[str, Any] = {}
    ack: int | None = None


class AckEnvelope(_WireModel):
    success: bool
    message_id: str | None = Field(default=None, alias="messageId")
    error: str | None = None


class HandshakeConfirmation(_WireModel):
    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id", "id"), min_length=1)
    display_name: str = Field(default="", validation_alias=AliasChoices("displayName", "name"))


class ConversationJoinedPayload(_WireModel):
    conversation_id: str = Field(validation_alias=AliasChoices("conversationId", "conversation_id"))


class TypingPayload(_WireModel):
    sender_id: str = Field(
        validation_alias=AliasChoices("senderId", "userId", "sender_id"), min_length=1,
    )
    conversation_id: str | None = Field(
        default=None, validation_alias=AliasChoices("conversationId", "conversation_id"),
    )
    display_name: str | None = Field(default=None, validation_alias=AliasChoices("userName", "displayName"))

    @model_validator(mode="before")
    @classmethod
    def _flatten_sender(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("sender"), dict):
            sender = data["sender"]
            data = {**data, "senderId": sender.get("id"), "displayName": sender.get("displayName")}
        return data


class ServerErrorPayload(_WireModel):
    message: str = "Unknown server error"


class SenderRecord(_WireModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id"), min_length=1)
    display_name: str = Field(validation_alias=AliasChoices("displayName", "name"), min_length=1)


class AttachmentRecord(_WireModel):
    kind: AttachmentKind
    url: str = Field(min_length=1)


class MessageRecord(_WireModel):
    """Message as it arrives in ``message:received`` and history pages."""

    id: str = Field(validation_alias=AliasChoices("id", "_id"), min_length=1)
    text: str
    created_at: datetime = Field(validation_alias=AliasChoices("createdAt", "created_at"))
    sender: SenderRecord = Field(validation_alias=AliasChoices("sender", "user"))
    attachment: AttachmentRecord | None = None
    image: str | None = None
    audio: str | None = None
    conversation_id: str | None = Field(
        default=None, validation_alias=AliasChoices("conversationId", "conversation_id"),
    )

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _require_content(self) -> MessageRecord:
        if self.attachment is None:
            if self.image:
                self.attachment = AttachmentRecord(kind=AttachmentKind.IMAGE, url=self.image)
            elif self.audio:
                self.attachment = AttachmentRecord(kind=AttachmentKind.AUDIO, url=self.audio)
        if not self.text.strip() and self.attachment is None:
            raise ValueError("message has neither text nor attachment")
        return self
