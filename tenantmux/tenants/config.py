"""Tenantmux configuration from environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _optional_path(value: str | None) -> Path | None:
    if not value or not value.strip():
        return None
    return Path(value.strip()).expanduser()


@dataclass(frozen=True)
class TenantMuxConfig:
    """Config knobs for the tenant stream server."""

    host: str = "127.0.0.1"
    port: int = 3000
    heartbeat_interval_s: float = 15.0
    tenants_file: Path | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TenantMuxConfig":
        return cls(
            host=os.getenv("TENANTMUX_HOST", "127.0.0.1"),
            port=int(os.getenv("TENANTMUX_PORT") or os.getenv("PORT") or "3000"),
            heartbeat_interval_s=float(os.getenv("TENANTMUX_HEARTBEAT_S", "15")),
            tenants_file=_optional_path(os.getenv("TENANTMUX_TENANTS_FILE")),
            log_level=os.getenv("TENANTMUX_LOG_LEVEL", "INFO").upper(),
        )
