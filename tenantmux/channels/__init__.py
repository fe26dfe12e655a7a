"""Wire channels exposing tenant streams."""

from tenantmux.channels.tenant_stream import TenantStreamChannel

__all__ = ["TenantStreamChannel"]
