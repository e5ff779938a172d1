from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import LinkStatus


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Immutable snapshot of link health published to the UI."""

    status: LinkStatus = LinkStatus.DISCONNECTED
    attempt: int = 0
    max_attempts: int = 0
    last_error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == LinkStatus.CONNECTED

    @property
    def label(self) -> str:
        if self.status == LinkStatus.RECONNECTING:
            return f"Reconnecting… attempt {self.attempt}/{self.max_attempts}"
        if self.status == LinkStatus.FAILED:
            return "Unable to connect to chat server"
        return self.status.value.capitalize()
