from __future__ import annotations


class ChatError(Exception):
    """Base chat client error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class AuthenticationError(ChatError):
    """No token available, or the server rejected it. Never retried automatically."""


class TransportError(ChatError):
    pass


class ConnectTimeoutError(TransportError):
    pass


class TransportClosedError(TransportError):
    def __init__(self, code: int = 1006, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"Connection closed ({code}) {reason}".strip())


class AckTimeoutError(TransportError):
    pass


class NotConnectedError(ChatError):
    pass


class NoActiveConversationError(ChatError):
    pass


class ValidationError(ChatError):
    pass


class JoinTimeoutError(ChatError):
    pass


class JoinCancelledError(ChatError):
    """A pending join was superseded by a newer join, a leave or a disconnect."""


class SendTimeoutError(ChatError):
    pass


class SendRejectedError(ChatError):
    pass


class ReconnectionFailedError(ChatError):
    pass


class HistoryLoadError(ChatError):
    pass
