from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class AuthError(AppError):
    """No usable credential, or the server rejected it."""


class ChatConnectionError(AppError):
    """Handshake or transport failure."""


class NotConnectedError(AppError):
    """Outbound action attempted while not live."""


class HistoryFetchError(AppError):
    pass


class FrameError(AppError):
    pass
