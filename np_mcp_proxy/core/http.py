"""Shared HTTP plumbing for the token and command calls."""

from __future__ import annotations

from typing import Any

import httpx

USER_AGENT = "np-mcp-proxy"


def create_http_client() -> httpx.AsyncClient:
    """One client per process; timeouts are passed per request."""
    return httpx.AsyncClient(
        headers={
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        },
    )


def read_body(response: httpx.Response) -> Any:
    """Return the decoded JSON body, the raw text when it is not JSON, or ``None``."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
