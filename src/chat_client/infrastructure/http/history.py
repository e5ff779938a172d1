"""REST client for past conversation messages."""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from chat_client.application.exceptions import AuthenticationError, HistoryLoadError, ValidationError
from chat_client.application.ports.auth import TokenProvider
from chat_client.domain.entities.message import Message
from chat_client.infrastructure.mappers.message import parse_message

logger = logging.getLogger(__name__)


class HistoryLoader:
    """Fetches one page of messages via ``GET /conversations/{id}/messages``.

    Records are validated with the same rules as live events; malformed
    ones are dropped. Results are newest first and are not merged with
    live messages.
    """

    def __init__(
        self,
        base_url: str,
        tokens: TokenProvider,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = tokens
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def _headers(self) -> dict[str, str]:
        token = await self._tokens.get_token()
        if not token:
            raise AuthenticationError("No authentication token found")
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def load(self, conversation_id: str, limit: int) -> list[Message]:
        if limit < 1:
            raise ValidationError("limit must be a positive integer")
        headers = await self._headers()
        try:
            resp = await self._client.get(
                f"/conversations/{quote(conversation_id, safe='')}/messages",
                params={"limit": limit},
                headers=headers,
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (401, 403):
                raise AuthenticationError("History request was not authorized") from exc
            raise HistoryLoadError(
                f"Failed to load message history (HTTP {exc.response.status_code})"
            ) from exc
        except httpx.HTTPError as exc:
            raise HistoryLoadError(f"Failed to load message history: {exc}") from exc
        except ValueError as exc:
            raise HistoryLoadError("History response is not valid JSON") from exc

        records = _extract_records(body)
        messages = [m for m in (parse_message(raw) for raw in records) if m is not None]
        dropped = len(records) - len(messages)
        if dropped:
            logger.warning("Dropped %d malformed record(s) from conversation %s history", dropped, conversation_id)
        messages.sort(key=lambda m: m.created_at, reverse=True)
        return messages[:limit]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _extract_records(body: Any) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get("messages"), list):
        return body["messages"]
    raise HistoryLoadError("Unexpected history response shape")
