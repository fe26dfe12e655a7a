"""Error taxonomy for tenant streams."""


class TenantStreamError(RuntimeError):
    """Base class for recoverable tenant stream errors."""


class TenantNotFoundError(TenantStreamError):
    """Raised when a tenant id is not in the directory."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant not found: {tenant_id or '<empty>'}")
        self.tenant_id = tenant_id


class NotConnectedError(TenantStreamError):
    """Raised when sending on a transport that is not connected."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Transport for tenant={tenant_id} is not connected")
        self.tenant_id = tenant_id


class NoOpenStreamError(TenantStreamError):
    """Raised when a command targets a tenant without a live stream."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Stream not open for tenant={tenant_id}")
        self.tenant_id = tenant_id


class StreamReplacedError(TenantStreamError):
    """Close reason handed to observers when a reconnect supersedes a stream."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Stream for tenant={tenant_id} replaced by a newer one")
        self.tenant_id = tenant_id


class TenantConfigError(RuntimeError):
    """Raised when the tenant set cannot be loaded at startup."""
