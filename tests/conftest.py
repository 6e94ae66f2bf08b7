"""Shared test fixtures for np-mcp-proxy."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest

from helpers import API_ENDPOINT, AUTH_BASE_URL, ControlPlane
from np_mcp_proxy.config import Settings
from np_mcp_proxy.context import ProxyContext

_PROXY_ENV = {
    "API_KEY", "PROXY_NAME", "AGENT_ID", "SELECTOR", "API_ENDPOINT", "LOG_PATH",
    "LOG_LEVEL", "DEBUG", "PROTOCOL_VERSION", "PROXY_VERSION", "AUTH_BASE_URL",
    "TOKEN_PATH", "TOKEN_REFRESH_PATH", "AUTH_TIMEOUT", "COMMAND_TIMEOUT",
}


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep the developer's environment and any .env file out of the tests."""
    for name in list(os.environ):
        if name in _PROXY_ENV or name.startswith("SELECTOR_KEY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "API_KEY": "test-api-key",
            "AGENT_ID": "agent-1",
            "API_ENDPOINT": API_ENDPOINT,
            "AUTH_BASE_URL": AUTH_BASE_URL,
            "LOG_PATH": str(tmp_path / "logs"),
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def control_plane() -> ControlPlane:
    return ControlPlane()


@pytest.fixture
async def http_client(control_plane: ControlPlane) -> AsyncIterator[httpx.AsyncClient]:
    async with control_plane.client() as client:
        yield client


@pytest.fixture
async def context(make_settings, control_plane: ControlPlane) -> AsyncIterator[ProxyContext]:
    """Fully wired proxy context talking to the fake control plane."""
    async with ProxyContext.create(make_settings(), http=control_plane.client()) as ctx:
        yield ctx


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging(): drop the handlers it installed and reset the level."""
    root = logging.getLogger()
    before, level = set(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
