"""Entrypoint: python -m chat_client <conversation-id>"""
from __future__ import annotations

import argparse
import asyncio
import logging

from chat_client.application.dto.events import TypingSignal
from chat_client.application.dto.payloads import SendFailure
from chat_client.application.exceptions import ChatError
from chat_client.application.ports.auth import StaticTokenProvider
from chat_client.config import settings
from chat_client.domain.entities.connection_state import ConnectionState
from chat_client.domain.entities.message import Message
from chat_client.logging_config import configure_logging
from chat_client.services.session import ChatSession

logger = logging.getLogger("chat_client")


def _print_message(message: Message) -> None:
    stamp = message.created_at.strftime("%H:%M")
    body = message.text
    if message.attachment is not None:
        body = f"{body} [{message.attachment.kind}] {message.attachment.url}".strip()
    print(f"[{stamp}] {message.sender.display_name or message.sender.id}: {body}")


async def run(conversation_id: str, token: str | None) -> None:
    session = ChatSession(StaticTokenProvider(token))

    def on_state(state: ConnectionState) -> None:
        print(f"* {state.label}")

    def on_failure(failure: SendFailure) -> None:
        print(f"! not sent ({failure.error.detail}); type /retry to resend")
        failed.append(failure)

    def on_typing(signal: TypingSignal) -> None:
        if signal.is_typing:
            print(f"* {signal.display_name or signal.sender_id} is typing…")

    failed: list[SendFailure] = []
    session.status.subscribe(on_state)
    session.delivery.on_failure(on_failure)
    session.inbound.on_message(lambda event: _print_message(event.message))
    session.inbound.on_typing(on_typing)
    session.inbound.on_error(lambda notice: print(f"! server: {notice.message}"))
    session.reconnection.on_failure(lambda error: print(f"! {error.detail}"))

    async with session:
        history = await session.open_conversation(conversation_id)
        for message in reversed(history):
            _print_message(message)
        while True:
            line = await asyncio.to_thread(input, "> ")
            if line.strip() == "/quit":
                break
            try:
                if line.strip() == "/retry":
                    while failed:
                        failed.pop(0).retry()
                else:
                    session.send(line)
            except ChatError as exc:
                print(f"! {exc.detail}")


def main() -> None:
    parser = argparse.ArgumentParser(prog="chat_client", description="Console chat over the real-time transport")
    parser.add_argument("conversation_id")
    parser.add_argument("--token", default=settings.CHAT_TOKEN, help="bearer token (default: $CHAT_TOKEN)")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(run(args.conversation_id, args.token))
    except (KeyboardInterrupt, EOFError):
        pass
    except ChatError as exc:
        logger.error("%s", exc.detail)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
