"""Test doubles shared across the suite."""

from __future__ import annotations

import json
from typing import Any

import httpx

API_ENDPOINT = "https://api.example.test/controlplane/agent_command"
AUTH_BASE_URL = "https://auth.example.test"
AUTH_HOST = httpx.URL(AUTH_BASE_URL).host

FAR_FUTURE_MS = 32503680000000  # year 3000, epoch ms


class ControlPlane:
    """In-memory stand-in for the token service and the command endpoint."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_responses: list[httpx.Response] = []
        self.command_responses: list[httpx.Response] = []
        self.default_token: dict[str, Any] = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "organization_id": "org-1",
            "token_expires_at": FAR_FUTURE_MS,
        }
        self.default_command: dict[str, Any] = {"result": {"ok": True}}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == AUTH_HOST:
            if self.token_responses:
                return self.token_responses.pop(0)
            return httpx.Response(200, json=self.default_token)
        if self.command_responses:
            return self.command_responses.pop(0)
        return httpx.Response(200, json=self.default_command)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == AUTH_HOST]

    @property
    def command_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host != AUTH_HOST]


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content)
