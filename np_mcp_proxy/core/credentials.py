"""Bearer token cache for the control-plane API.

The API key is exchanged for an access token on first use.  The token is
refreshed lazily once it is less than ``REFRESH_MARGIN_MS`` away from
expiry; a failed refresh drops the cached record so the next call starts
over with a full fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from np_mcp_proxy.config import Settings
from np_mcp_proxy.core.errors import AuthError, describe_body
from np_mcp_proxy.core.http import read_body
from np_mcp_proxy.core.schemas import TokenRecord

logger = logging.getLogger(__name__)

REFRESH_MARGIN_MS = 10_000


def _now_millis() -> float:
    return time.time() * 1000


class CredentialCache:
    """Owns the API key and the single token record derived from it.

    Access to the record is serialized by an :class:`asyncio.Lock`, so
    interleaved callers that all see a stale token share one refresh.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        *,
        base_url: str,
        token_path: str = "/token",
        refresh_path: str = "/token",
        timeout: float = 10.0,
        clock: Callable[[], float] = _now_millis,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._token_path = token_path
        self._refresh_path = refresh_path
        self._timeout = timeout
        self._clock = clock
        self._record: TokenRecord | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> CredentialCache:
        return cls(
            client,
            settings.API_KEY,
            base_url=settings.AUTH_BASE_URL,
            token_path=settings.TOKEN_PATH,
            refresh_path=settings.TOKEN_REFRESH_PATH,
            timeout=settings.AUTH_TIMEOUT,
        )

    @property
    def record(self) -> TokenRecord | None:
        return self._record

    def expires_soon(self, record: TokenRecord) -> bool:
        return record.token_expires_at - self._clock() < REFRESH_MARGIN_MS

    async def get_token(self) -> str:
        """Return a currently valid access token, fetching or refreshing as needed."""
        async with self._lock:
            if self._record is None:
                self._record = await self._fetch()
            elif self.expires_soon(self._record):
                await self._refresh(self._record)
            return self._record.access_token

    # ------------------------------------------------------------------
    # Token service calls
    # ------------------------------------------------------------------

    async def _fetch(self) -> TokenRecord:
        logger.info("Fetching access token from %s%s", self._base_url, self._token_path)
        body = await self._post(self._token_path, {"apikey": self._api_key})
        return self._parse(body)

    async def _refresh(self, record: TokenRecord) -> None:
        logger.info(
            "Refreshing access token (expires in %.0f ms)",
            record.token_expires_at - self._clock(),
        )
        try:
            body = await self._post(
                self._refresh_path,
                {
                    "refresh_token": record.refresh_token,
                    "organization_id": record.organization_id,
                },
            )
            refreshed = self._parse(body)
        except AuthError:
            # Clear token if refresh fails
            self._record = None
            raise

        record.access_token = refreshed.access_token
        record.token_expires_at = refreshed.token_expires_at

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(
                f"{self._base_url}{path}",
                json=payload,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Token service unreachable: %s", exc)
            raise AuthError(f"Error getting token [{exc}]") from exc

        body = read_body(response)
        if response.status_code != 200 or body is None:
            logger.error("Token service returned HTTP %d", response.status_code)
            raise AuthError(f"Error getting token [{describe_body(body)}]")
        return body

    @staticmethod
    def _parse(body: Any) -> TokenRecord:
        try:
            return TokenRecord.model_validate(body)
        except ValidationError as exc:
            raise AuthError(f"Error getting token [{describe_body(body)}]") from exc
