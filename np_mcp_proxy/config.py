"""Proxy settings loaded from the command line, environment variables and defaults.

Precedence is command line > environment (or ``.env`` file) > default.  The
command line is parsed with :mod:`argparse` and handed to :class:`Settings`
as init values, which pydantic-settings ranks above every other source.
"""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping, Sequence
from typing import Annotated, Any

from pydantic import HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_API_ENDPOINT = "https://api.nullplatform.com/controlplane/agent_command"
DEFAULT_AUTH_BASE_URL = "https://api.nullplatform.com"
LATEST_PROTOCOL_VERSION = "2024-11-05"

SELECTOR_ENV_PREFIX = "SELECTOR_KEY_"


# ---------------------------------------------------------------------------
# Selector parsing
# ---------------------------------------------------------------------------


def parse_selector(raw: str | None) -> dict[str, str] | None:
    """Parse ``"key1=value1,key2=value2"`` into a mapping.

    Pairs without a key or a value are dropped.  Returns ``None`` when nothing
    usable is left so callers can fall through to the next source.
    """
    if not raw:
        return None

    selector: dict[str, str] = {}
    for pair in raw.split(","):
        key, _, value = pair.partition("=")
        key, value = key.strip(), value.strip()
        if key and value:
            selector[key] = value

    return selector or None


def selector_from_env(environ: Mapping[str, str]) -> dict[str, str] | None:
    """Build a selector from ``SELECTOR`` or from ``SELECTOR_KEY_<key>`` entries."""
    if environ.get("SELECTOR"):
        return parse_selector(environ["SELECTOR"])

    selector = {
        key[len(SELECTOR_ENV_PREFIX):].lower(): value
        for key, value in environ.items()
        if key.startswith(SELECTOR_ENV_PREFIX) and key != SELECTOR_ENV_PREFIX
    }
    return selector or None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Proxy configuration: values come from CLI / env vars / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Credentials ───────────────────────────────────────
    API_KEY: str = ""

    # ── Routing ───────────────────────────────────────────
    PROXY_NAME: str = "Nullplatform MCP Proxy"
    AGENT_ID: str | None = None
    SELECTOR: Annotated[dict[str, str] | None, NoDecode] = None
    API_ENDPOINT: HttpUrl = DEFAULT_API_ENDPOINT  # type: ignore[assignment]

    # ── Token service ─────────────────────────────────────
    AUTH_BASE_URL: str = DEFAULT_AUTH_BASE_URL
    TOKEN_PATH: str = "/token"
    TOKEN_REFRESH_PATH: str = "/token"

    # ── Timeouts (seconds) ────────────────────────────────
    AUTH_TIMEOUT: float = 10.0
    COMMAND_TIMEOUT: float = 300.0

    # ── MCP handshake ─────────────────────────────────────
    PROTOCOL_VERSION: str = LATEST_PROTOCOL_VERSION
    PROXY_VERSION: str = "1.0.0"

    # ── Logging ──────────────────────────────────────────
    LOG_PATH: str = "logs"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    @field_validator("AGENT_ID", mode="before")
    @classmethod
    def _blank_agent_id_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("SELECTOR", mode="before")
    @classmethod
    def _parse_selector_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_selector(value)
        if isinstance(value, Mapping) and not value:
            return None
        return value

    @model_validator(mode="after")
    def _check_required(self) -> Settings:
        if not self.API_KEY:
            raise ValueError("API Key is required")
        if self.AGENT_ID is None and not self.SELECTOR:
            raise ValueError("Either agentId or non-empty selector must be provided")
        return self

    @property
    def routing(self) -> dict[str, Any]:
        """Routing fields of the outbound command envelope.

        ``agent_id`` takes precedence over ``selector`` when both are set.
        """
        if self.AGENT_ID is not None:
            return {"agent_id": self.AGENT_ID}
        return {"selector": dict(self.SELECTOR or {})}


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

# argparse dest → Settings field
_CLI_FIELDS: dict[str, str] = {
    "apiKey": "API_KEY",
    "name": "PROXY_NAME",
    "agentId": "AGENT_ID",
    "apiEndpoint": "API_ENDPOINT",
    "logPath": "LOG_PATH",
    "debug": "DEBUG",
    "protocolVersion": "PROTOCOL_VERSION",
    "proxyVersion": "PROXY_VERSION",
}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="np-mcp-proxy",
        description="Expose a remote control-plane agent as an MCP stdio server",
    )
    parser.add_argument("--apiKey", help="API Key for authentication (required)")
    parser.add_argument("--name", help="Name of the proxy service")
    parser.add_argument("--agentId", help="Agent ID (required if selector not provided)")
    parser.add_argument(
        "--selector",
        help='Selector key-value pairs in format "key1=value1,key2=value2"',
    )
    parser.add_argument("--apiEndpoint", help="API endpoint URL")
    parser.add_argument("--logPath", help="Path for log files")
    parser.add_argument(
        "--debug",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable debug logging",
    )
    parser.add_argument("--protocolVersion", help="MCP protocol version to use")
    parser.add_argument("--proxyVersion", help="Version of the proxy to report")
    return parser


def load_settings(argv: Sequence[str] | None = None) -> Settings:
    """Combine command line args with environment variables and defaults.

    Raises ``pydantic.ValidationError`` when the result is not a usable
    configuration.
    """
    args = build_arg_parser().parse_args(argv)

    overrides: dict[str, Any] = {}
    for dest, field in _CLI_FIELDS.items():
        value = getattr(args, dest)
        if value is not None and value != "":
            overrides[field] = value

    selector = parse_selector(args.selector) or selector_from_env(os.environ)
    if selector:
        overrides["SELECTOR"] = selector

    return Settings(**overrides)
