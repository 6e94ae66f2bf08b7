"""Wire shapes shared by the credential cache, the dispatcher and the bridge."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, field_validator

JSONRPC_VERSION = "2.0"


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------


def jsonrpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 success envelope."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def jsonrpc_error(request_id: Any, error: dict[str, Any]) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 error envelope."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenRecord(BaseModel):
    """Body of a successful token issuance call.

    ``token_expires_at`` is kept as epoch milliseconds; ISO-8601 timestamps
    are converted on the way in.  Unknown fields of the body are retained.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_expires_at: float
    refresh_token: str | None = None
    organization_id: str | int | None = None

    @field_validator("token_expires_at", mode="before")
    @classmethod
    def _to_epoch_millis(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return _datetime_to_millis(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return _datetime_to_millis(datetime.fromisoformat(value.replace("Z", "+00:00")))
        return value


def _datetime_to_millis(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp() * 1000


# ---------------------------------------------------------------------------
# Command endpoint
# ---------------------------------------------------------------------------


class McpExecCommand(BaseModel):
    type: Literal["mcp-exec"] = "mcp-exec"
    data: dict[str, Any]


class CommandEnvelope(BaseModel):
    """Outbound HTTP body: the forwarded request plus its routing target."""

    command: McpExecCommand
    agent_id: str | None = None
    selector: dict[str, str] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"command": self.command.model_dump()}
        if self.agent_id is not None:
            payload["agent_id"] = self.agent_id
        else:
            payload["selector"] = self.selector
        return payload


@dataclass(frozen=True)
class RemoteResult:
    """The remote side answered with a result payload."""

    result: Any


@dataclass(frozen=True)
class RemoteError:
    """The remote side answered with a JSON-RPC error object of its own."""

    error: Any


RemoteOutcome = Union[RemoteResult, RemoteError]
