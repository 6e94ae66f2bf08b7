"""Helpers that keep secrets out of the logs."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

SECRET_FIELDS = frozenset({"API_KEY", "apikey", "access_token", "refresh_token"})


def mask_secret(value: str, visible: int = 4) -> str:
    """Return a masked representation of a secret string for safe logging."""
    if len(value) <= visible:
        return "****"
    return value[:visible] + "*" * (len(value) - visible)


def mask_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy *data* with every known secret field replaced by ``****``."""
    masked: dict[str, Any] = {}
    for key, value in data.items():
        if key in SECRET_FIELDS and isinstance(value, str) and value:
            masked[key] = "****"
        else:
            masked[key] = value
    return masked


def mask_authorization(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy request headers, hiding the bearer token."""
    safe = dict(headers)
    for name in list(safe):
        if name.lower() == "authorization":
            scheme, _, token = safe[name].partition(" ")
            safe[name] = f"{scheme} {mask_secret(token)}" if token else "****"
    return safe
