"""In-memory tenant directory."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from loguru import logger

from tenantmux.tenants.contracts import TenantRecord
from tenantmux.tenants.errors import TenantNotFoundError


def normalize_tenant_id(raw: str) -> str:
    """Strip a single leading path separator; no other normalization."""
    return raw[1:] if raw.startswith("/") else raw


class TenantDirectory:
    """Map tenant ids to records. Every operation is one locked map access."""

    def __init__(self, records: Iterable[TenantRecord] = ()):
        self._lock = threading.Lock()
        self._tenants: dict[str, TenantRecord] = {}
        for record in records:
            self._tenants[record.id] = record

    def lookup(self, tenant_id: str) -> TenantRecord | None:
        key = normalize_tenant_id(tenant_id)
        if not key:
            return None
        with self._lock:
            return self._tenants.get(key)

    def require(self, tenant_id: str) -> TenantRecord:
        """Like lookup, but raise TenantNotFoundError on a miss."""
        record = self.lookup(tenant_id)
        if record is None:
            raise TenantNotFoundError(normalize_tenant_id(tenant_id))
        return record

    def list(self) -> list[TenantRecord]:
        with self._lock:
            return list(self._tenants.values())

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._tenants)

    def add(self, record: TenantRecord) -> None:
        with self._lock:
            replaced = record.id in self._tenants
            self._tenants[record.id] = record
        logger.info("Tenant {} {}", "updated" if replaced else "added", record.id)

    def remove(self, tenant_id: str) -> bool:
        with self._lock:
            removed = self._tenants.pop(tenant_id, None) is not None
        if removed:
            logger.info("Tenant removed {}", tenant_id)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._tenants)
