"""
Failure taxonomy for the remote store.

  RemoteTimeout      no response within REMOTE_TIMEOUT_SECONDS   (retried)
  RemoteServerError  5xx or connection failure                  (retried)
  RemoteClientError  4xx: bad filter, unknown table/function    (not retried)
  RemoteMalformed    payload is not the JSON shape we expected   (not retried)

Every error carries the table or function name and the request params so a
log line alone is enough to reproduce the call.
"""

from typing import Any


class RemoteError(Exception):
    """Base class for every failure raised by remote.client."""

    retryable = False

    def __init__(self, message: str, target: str, params: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.target = target
        self.params = dict(params or {})

    def __str__(self) -> str:
        return f"{self.args[0]} (target={self.target}, params={self.params})"


class RemoteTimeout(RemoteError):
    retryable = True


class RemoteServerError(RemoteError):
    retryable = True

    def __init__(
        self,
        message: str,
        target: str,
        params: dict[str, Any] | None = None,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, target, params)
        self.status_code = status_code  # None = connection never completed
        self.body = body


class RemoteClientError(RemoteError):
    def __init__(
        self,
        message: str,
        target: str,
        params: dict[str, Any] | None = None,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, target, params)
        self.status_code = status_code
        self.body = body


class RemoteMalformed(RemoteError):
    pass
