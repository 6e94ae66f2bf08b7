"""Proxy context: every long-lived object of the process, built once."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from np_mcp_proxy.config import Settings
from np_mcp_proxy.core.credentials import CredentialCache
from np_mcp_proxy.core.http import create_http_client
from np_mcp_proxy.mcp.bridge import ProtocolBridge
from np_mcp_proxy.mcp.dispatcher import CommandDispatcher


@dataclass
class ProxyContext:
    """Owns the settings, the HTTP client and the objects wired on top of them."""

    settings: Settings
    http: httpx.AsyncClient
    credentials: CredentialCache
    dispatcher: CommandDispatcher
    bridge: ProtocolBridge

    @classmethod
    def create(cls, settings: Settings, http: httpx.AsyncClient | None = None) -> ProxyContext:
        client = http if http is not None else create_http_client()
        credentials = CredentialCache.from_settings(client, settings)
        dispatcher = CommandDispatcher.from_settings(client, credentials, settings)
        return cls(
            settings=settings,
            http=client,
            credentials=credentials,
            dispatcher=dispatcher,
            bridge=ProtocolBridge(settings, dispatcher),
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.http.aclose()

    async def __aenter__(self) -> ProxyContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
