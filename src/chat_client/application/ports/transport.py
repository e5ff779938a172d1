from __future__ import annotations

from typing import Awaitable, Callable, Protocol


class WireConnection(Protocol):
    """One open text-frame connection.

    ``recv`` raises ``TransportClosedError`` once the peer closes; ``send``
    raises ``TransportError`` when the frame cannot be written.
    """

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


ConnectionFactory = Callable[[str], Awaitable[WireConnection]]
