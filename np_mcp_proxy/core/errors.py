"""Error taxonomy for the proxy.

Every error that reaches the JSON-RPC client is reported with the
JSON-RPC "internal error" code; the subclasses only differ in where they
are raised and what context they carry.
"""

from __future__ import annotations

import json
from typing import Any

INTERNAL_ERROR_CODE = -32603


class ProxyError(Exception):
    """Base class for failures that are converted into JSON-RPC errors."""

    code: int = INTERNAL_ERROR_CODE

    def __init__(self, message: str, data: Any = None) -> None:
        self.message = message
        self.data = data
        super().__init__(message)

    def to_error(self) -> dict[str, Any]:
        """Return the JSON-RPC ``error`` member for this failure."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ParseError(ProxyError):
    """Malformed JSON or malformed JSON-RPC envelope."""


class AuthError(ProxyError):
    """A bearer token could not be fetched or refreshed."""


class RemoteCallError(ProxyError):
    """The command endpoint answered with a non-success outcome."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class InternalError(ProxyError):
    """Anything unanticipated, usually caught at the transport boundary."""


def describe_body(body: Any) -> str:
    """Render an HTTP response body for an error message."""
    if body is None:
        return ""
    if isinstance(body, (dict, list)):
        return json.dumps(body)
    return str(body)
