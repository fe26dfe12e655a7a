"""Tenant directory, streaming transports and the session registry."""

from tenantmux.tenants.commands import CommandHandler, TenantTool
from tenantmux.tenants.config import TenantMuxConfig
from tenantmux.tenants.contracts import Message, TenantRecord
from tenantmux.tenants.directory import TenantDirectory
from tenantmux.tenants.errors import (
    NoOpenStreamError,
    NotConnectedError,
    StreamReplacedError,
    TenantConfigError,
    TenantNotFoundError,
    TenantStreamError,
)
from tenantmux.tenants.heartbeat import Heartbeat
from tenantmux.tenants.registry import SessionRegistry
from tenantmux.tenants.transport import StreamTransport

__all__ = [
    "CommandHandler",
    "Heartbeat",
    "Message",
    "NoOpenStreamError",
    "NotConnectedError",
    "SessionRegistry",
    "StreamReplacedError",
    "StreamTransport",
    "TenantConfigError",
    "TenantDirectory",
    "TenantMuxConfig",
    "TenantNotFoundError",
    "TenantRecord",
    "TenantStreamError",
    "TenantTool",
]
