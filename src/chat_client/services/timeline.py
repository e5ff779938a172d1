"""Observable, newest-first message sequence bound to the UI."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, Iterator

from chat_client.application.handlers import HandlerSet
from chat_client.domain.entities.message import Message

logger = logging.getLogger(__name__)

TimelineListener = Callable[[tuple[Message, ...]], None]


class MessageTimeline:
    """Ordered message list, newest first, unique by id.

    Listeners receive a fresh tuple snapshot after every change.
    """

    def __init__(self) -> None:
        self._items: list[Message] = []
        self._listeners: HandlerSet[TimelineListener] = HandlerSet("timeline")

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())

    def __contains__(self, message_id: object) -> bool:
        return self._index(message_id) is not None

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._items)

    def get(self, message_id: str) -> Message | None:
        index = self._index(message_id)
        return self._items[index] if index is not None else None

    def subscribe(self, listener: TimelineListener) -> None:
        self._listeners.add(listener)

    def unsubscribe(self, listener: TimelineListener) -> None:
        self._listeners.discard(listener)

    def add(self, message: Message) -> bool:
        """Insert as the newest message. Returns False for a known id."""
        if message.id in self:
            return False
        self._items.insert(0, message)
        self._notify()
        return True

    def extend_older(self, messages: Iterable[Message]) -> int:
        """Append a newest-first page of older messages, skipping known ids."""
        known = {m.id for m in self._items}
        added = 0
        for message in messages:
            if message.id in known:
                continue
            known.add(message.id)
            self._items.append(message)
            added += 1
        if added:
            self._notify()
        return added

    def confirm(self, temp_id: str, server_id: str) -> Message | None:
        """Swap a temporary id for the server id in place.

        If the server id is already present (its echo arrived first) the
        optimistic copy is dropped instead. Returns the confirmed message,
        or None when ``temp_id`` is no longer in the timeline.
        """
        index = self._index(temp_id)
        if index is None:
            return None
        existing = self._index(server_id)
        if existing is not None:
            del self._items[index]
            self._notify()
            return self._items[existing if existing < index else existing - 1]
        confirmed = replace(self._items[index], id=server_id, pending=False)
        self._items[index] = confirmed
        self._notify()
        return confirmed

    def remove(self, message_id: str) -> bool:
        index = self._index(message_id)
        if index is None:
            return False
        del self._items[index]
        self._notify()
        return True

    def clear(self) -> None:
        if self._items:
            self._items.clear()
            self._notify()

    def _index(self, message_id: object) -> int | None:
        for index, message in enumerate(self._items):
            if message.id == message_id:
                return index
        return None

    def _notify(self) -> None:
        self._listeners.emit(self.snapshot())
