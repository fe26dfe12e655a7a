"""Contracts for tenant records and stream messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_MESSAGE_FIELDS = ("id", "method", "params", "result", "error")


def _pick_str(data: dict[str, Any], *keys: str) -> str | None:
    """Pick the first non-empty string value from candidate keys."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class TenantRecord:
    """Directory entry for one tenant. Replaced wholesale, never mutated."""

    id: str
    name: str
    connection_info: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TenantRecord":
        tenant_id = _pick_str(data, "id", "tenant_id", "tenantId")
        if not tenant_id:
            raise ValueError("tenant record requires a non-empty id")
        return cls(
            id=tenant_id,
            name=_pick_str(data, "name") or tenant_id,
            connection_info=_pick_str(
                data, "connection_info", "connectionInfo", "databaseUrl"
            ) or "",
        )

    def public(self) -> dict[str, str]:
        """Listing view; connection info stays server-side."""
        return {"id": self.id, "name": self.name}


@dataclass
class Message:
    """A request, response or error travelling over a tenant stream."""

    id: str | int | None = None
    method: str | None = None
    params: Any = None
    result: Any = None
    error: Any = None

    @property
    def is_request(self) -> bool:
        return self.method is not None

    @property
    def is_response(self) -> bool:
        return self.result is not None or self.error is not None

    @classmethod
    def from_dict(cls, data: Any) -> "Message":
        if not isinstance(data, dict):
            raise ValueError("message must be a JSON object")
        method = data.get("method")
        if method is not None and not isinstance(method, str):
            raise ValueError("method must be a string")
        return cls(**{key: data.get(key) for key in _MESSAGE_FIELDS})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": "2.0"}
        for key in _MESSAGE_FIELDS:
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload
