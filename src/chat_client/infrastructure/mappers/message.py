from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from chat_client.domain.entities.message import Attachment, Message, Sender
from chat_client.infrastructure.ws.protocol import MessageRecord

logger = logging.getLogger(__name__)


def record_to_entity(record: MessageRecord) -> Message:
    attachment = None
    if record.attachment is not None:
        attachment = Attachment(kind=record.attachment.kind, url=record.attachment.url)
    return Message(
        id=record.id,
        text=record.text,
        created_at=record.created_at,
        sender=Sender(id=record.sender.id, display_name=record.sender.display_name),
        attachment=attachment,
    )


def parse_record(raw: Any) -> MessageRecord | None:
    """Validate a raw message record; log and return None when malformed."""
    try:
        return MessageRecord.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            "Dropping malformed message record: %s",
            "; ".join(f"{'.'.join(map(str, e['loc'])) or '<root>'}: {e['msg']}" for e in exc.errors()),
        )
        return None


def parse_message(raw: Any) -> Message | None:
    record = parse_record(raw)
    return record_to_entity(record) if record is not None else None
