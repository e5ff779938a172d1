from __future__ import annotations

import uuid
from typing import NewType

MessageId = NewType("MessageId", str)

TEMP_ID_PREFIX = "local-"


def new_temp_id() -> MessageId:
    return MessageId(f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}")
