"""Protocol bridge: turns one stdin line into at most one JSON-RPC response.

``initialize`` and ``ping`` are answered locally; every other request is
tunnelled to the control plane through the :class:`CommandDispatcher`.
Notifications never get a response.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from np_mcp_proxy.config import Settings
from np_mcp_proxy.core.errors import INTERNAL_ERROR_CODE, ParseError, ProxyError
from np_mcp_proxy.core.schemas import (
    JSONRPC_VERSION,
    RemoteError,
    RemoteResult,
    jsonrpc_error,
    jsonrpc_result,
)
from np_mcp_proxy.mcp.dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

NOTIFICATION_PREFIX = "notifications/"


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedRequest:
    message: dict[str, Any]

    @property
    def id(self) -> Any:
        return self.message.get("id")

    @property
    def method(self) -> str:
        return self.message["method"]

    @property
    def is_notification(self) -> bool:
        return "id" not in self.message or self.method.startswith(NOTIFICATION_PREFIX)


@dataclass(frozen=True)
class Rejected:
    error: ParseError
    request_id: Any = None


ParseOutcome = Union[ParsedRequest, Rejected]


def parse_request(raw_line: str) -> ParseOutcome:
    """Parse and validate one line of input without raising."""
    try:
        message = json.loads(raw_line)
    except ValueError as exc:
        return Rejected(ParseError(f"Invalid JSON format: {exc}"))

    if not isinstance(message, dict):
        return Rejected(ParseError("Invalid JSON-RPC request: expected an object"))

    request_id = message.get("id")
    if message.get("jsonrpc") != JSONRPC_VERSION:
        return Rejected(ParseError("Invalid JSON-RPC version"), request_id)

    method = message.get("method")
    if not isinstance(method, str) or not method:
        return Rejected(ParseError("Missing method"), request_id)

    return ParsedRequest(message)


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class ProtocolBridge:
    """Stateless request processor; all state lives in its collaborators."""

    def __init__(self, settings: Settings, dispatcher: CommandDispatcher) -> None:
        self._settings = settings
        self._dispatcher = dispatcher

    def server_info(self) -> dict[str, Any]:
        return {
            "protocolVersion": self._settings.PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {
                "name": self._settings.PROXY_NAME,
                "version": self._settings.PROXY_VERSION,
            },
        }

    async def process(self, raw_line: str) -> dict[str, Any] | None:
        """Return the JSON-RPC response for *raw_line*, or ``None`` for notifications."""
        logger.debug("Received command: %s", raw_line)

        outcome = parse_request(raw_line)
        if isinstance(outcome, Rejected):
            logger.error("Error processing command: %s", outcome.error.message)
            return jsonrpc_error(outcome.request_id, outcome.error.to_error())

        if outcome.is_notification:
            logger.info("Received notification: %s", outcome.method)
            return None

        try:
            return await self._dispatch(outcome)
        except ProxyError as exc:
            logger.error("Error processing %s: %s", outcome.method, exc.message)
            return jsonrpc_error(outcome.id, exc.to_error())
        except Exception as exc:
            logger.exception("Unexpected error processing %s", outcome.method)
            return jsonrpc_error(
                outcome.id,
                {"code": INTERNAL_ERROR_CODE, "message": str(exc) or type(exc).__name__},
            )

    async def _dispatch(self, request: ParsedRequest) -> dict[str, Any]:
        if request.method == "initialize":
            return jsonrpc_result(request.id, self.server_info())
        if request.method == "ping":
            return jsonrpc_result(request.id, {})

        outcome = await self._dispatcher.execute(request.message)
        if isinstance(outcome, RemoteError):
            return jsonrpc_error(request.id, outcome.error)
        if isinstance(outcome, RemoteResult):
            return jsonrpc_result(request.id, outcome.result)
        raise TypeError(f"Unexpected remote outcome: {outcome!r}")
