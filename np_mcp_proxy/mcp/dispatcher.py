"""Command dispatcher: forwards JSON-RPC calls to the control-plane API.

Each call is wrapped in an ``mcp-exec`` command envelope, routed to a single
agent id or to a selector, and POSTed with a bearer token obtained from the
:class:`~np_mcp_proxy.core.credentials.CredentialCache`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from np_mcp_proxy.config import Settings
from np_mcp_proxy.core.credentials import CredentialCache
from np_mcp_proxy.core.errors import INTERNAL_ERROR_CODE, RemoteCallError, describe_body
from np_mcp_proxy.core.http import read_body
from np_mcp_proxy.core.schemas import (
    CommandEnvelope,
    McpExecCommand,
    RemoteError,
    RemoteOutcome,
    RemoteResult,
)
from np_mcp_proxy.core.security import mask_authorization

logger = logging.getLogger(__name__)

# JSON-RPC members that belong to the local hop and are not forwarded
_LOCAL_FIELDS = frozenset({"jsonrpc", "id"})


def classify_payload(payload: Any) -> RemoteOutcome:
    """Turn the ``result`` member of a command response into a remote outcome.

    The remote agent may answer with its own JSON-RPC shaped object (carrying
    ``result`` or ``error``) or with a bare result value.  A ``null`` error
    does not count as an error, and an error that is not an object is
    wrapped so the client always receives ``{"code", "message"}``.
    """
    if isinstance(payload, Mapping) and ("error" in payload or "result" in payload):
        error = payload.get("error")
        if error is not None:
            if not isinstance(error, Mapping):
                error = {"code": INTERNAL_ERROR_CODE, "message": str(error)}
            return RemoteError(error)
        payload = payload.get("result")
    if payload is None:
        return RemoteResult({})
    return RemoteResult(payload)


class CommandDispatcher:
    """Signs and sends command envelopes to the configured API endpoint.

    Parameters
    ----------
    client:
        Shared HTTP client.
    credentials:
        Token source; its :class:`AuthError` propagates unchanged.
    endpoint:
        Absolute URL of the command endpoint.
    routing:
        Either ``{"agent_id": ...}`` or ``{"selector": {...}}``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialCache,
        *,
        endpoint: str,
        routing: Mapping[str, Any],
        timeout: float = 300.0,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._endpoint = endpoint
        self._routing = dict(routing)
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls,
        client: httpx.AsyncClient,
        credentials: CredentialCache,
        settings: Settings,
    ) -> CommandDispatcher:
        return cls(
            client,
            credentials,
            endpoint=str(settings.API_ENDPOINT),
            routing=settings.routing,
            timeout=settings.COMMAND_TIMEOUT,
        )

    def build_envelope(self, request: Mapping[str, Any]) -> CommandEnvelope:
        data = {key: value for key, value in request.items() if key not in _LOCAL_FIELDS}
        return CommandEnvelope(command=McpExecCommand(data=data), **self._routing)

    async def execute(self, request: Mapping[str, Any]) -> RemoteOutcome:
        """Forward *request* and return the classified remote outcome.

        Raises :class:`AuthError` when no token is available and
        :class:`RemoteCallError` on any HTTP-layer failure.
        """
        payload = self.build_envelope(request).to_payload()
        token = await self._credentials.get_token()
        headers = {"Authorization": f"Bearer {token}"}

        logger.info(
            "Command → %s (method=%s, id=%s)",
            self._endpoint,
            request.get("method"),
            request.get("id"),
        )
        logger.debug("Command headers: %s", mask_authorization(headers))

        try:
            response = await self._client.post(
                self._endpoint,
                json=payload,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Command endpoint unreachable: %s", exc)
            raise RemoteCallError(f"Cannot reach API endpoint: {exc}") from exc

        body = read_body(response)
        if not response.is_success:
            logger.error(
                "Command endpoint returned HTTP %d: %s",
                response.status_code,
                describe_body(body),
            )
            raise RemoteCallError(
                f"HTTP {response.status_code} from API endpoint: {describe_body(body)}",
                status_code=response.status_code,
                body=body,
            )
        if body is not None and not isinstance(body, Mapping):
            raise RemoteCallError(
                f"Unexpected response from API endpoint: {describe_body(body)}",
                status_code=response.status_code,
                body=body,
            )

        return classify_payload((body or {}).get("result"))
