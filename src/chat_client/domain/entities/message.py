from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.value_objects.enums import AttachmentKind


@dataclass(frozen=True, slots=True)
class Sender:
    id: str
    display_name: str


@dataclass(frozen=True, slots=True)
class Attachment:
    kind: AttachmentKind
    url: str


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    text: str
    created_at: datetime
    sender: Sender
    attachment: Attachment | None = None
    pending: bool = False
