from __future__ import annotations

from typing import Protocol


class TokenProvider(Protocol):
    async def get_token(self) -> str | None: ...


class StaticTokenProvider:
    """Serves a fixed bearer token, e.g. from settings."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    async def get_token(self) -> str | None:
        return self._token
