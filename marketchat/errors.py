from __future__ import annotations

from typing import Any, Optional


class MarketChatError(Exception):
    """Base class for every error raised by ``marketchat``."""


class CredentialsNotProvided(MarketChatError):
    def __init__(self, missing: str = "url and api key"):
        self.missing = missing
        super().__init__(
            f"Backend {missing} not found. Set them in config.ini or the "
            "MARKETCHAT_* environment variables."
        )


class RemoteServiceError(MarketChatError):
    """A call to the remote data service failed (network or HTTP error)."""

    def __init__(
        self,
        operation: str,
        status_code: Optional[int] = None,
        detail: Any = "",
    ):
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        message = f"{operation} failed"
        if status_code is not None:
            message += f" with status {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class UnexpectedResponseError(RemoteServiceError):
    def __init__(self, operation: str, error: Any, server_response: Any = ""):
        self.error = error
        self.server_response = server_response
        super().__init__(
            operation,
            detail=f"{error} (server returned: {str(server_response)[:200]!r})",
        )


class MalformedMessageError(MarketChatError, ValueError):
    """A message row is missing required fields or has ill-typed values."""

    def __init__(self, reason: str, row: Any = None):
        self.reason = reason
        self.row = row
        super().__init__(f"Malformed message row: {reason}")


class InvalidTransition(MarketChatError):
    def __init__(self, current: Any, target: Any):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move a message from {current} to {target}")
