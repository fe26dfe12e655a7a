"""Session registry: at most one live stream per tenant."""

from __future__ import annotations

import threading

from loguru import logger

from tenantmux.tenants.contracts import Message
from tenantmux.tenants.errors import NoOpenStreamError, NotConnectedError, StreamReplacedError
from tenantmux.tenants.transport import StreamTransport


class SessionRegistry:
    """Own the tenant id -> live transport mapping.

    Slot states are Empty and Open. A reconnect goes Open -> Empty -> Open:
    the prior transport is closed with ``StreamReplacedError`` before the new
    one is installed, so two transports for one tenant are never connected at
    the same time. Build one per process and pass it to the wire channel.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, StreamTransport] = {}
        self._lock = threading.RLock()

    def open_session(self, tenant_id: str) -> StreamTransport:
        with self._lock:
            previous = self._sessions.pop(tenant_id, None)
            if previous is not None:
                if previous.connected:
                    logger.info("Replacing open stream for tenant={}", tenant_id)
                previous.close(StreamReplacedError(tenant_id))

            transport = StreamTransport(tenant_id)
            transport.on_close(lambda _reason: self._release(tenant_id, transport))
            transport.set_connected(True)
            self._sessions[tenant_id] = transport

        logger.info("Stream opened for tenant={}", tenant_id)
        return transport

    def get_session(self, tenant_id: str) -> StreamTransport | None:
        with self._lock:
            transport = self._sessions.get(tenant_id)
        if transport is None or not transport.connected:
            return None
        return transport

    def close_session(self, tenant_id: str) -> None:
        with self._lock:
            transport = self._sessions.pop(tenant_id, None)
            if transport is not None:
                transport.set_connected(False)
        if transport is not None:
            transport.close()
            logger.info("Stream closed for tenant={}", tenant_id)

    def route_command(self, tenant_id: str, message: Message) -> None:
        """Deliver ``message`` on the tenant's open stream."""
        transport = self.get_session(tenant_id)
        if transport is None:
            raise NoOpenStreamError(tenant_id)
        try:
            transport.send(message)
        except NotConnectedError as exc:
            raise NoOpenStreamError(tenant_id) from exc

    def close_all(self) -> None:
        """Close every live stream (server shutdown)."""
        with self._lock:
            transports = list(self._sessions.values())
            self._sessions.clear()
            for transport in transports:
                transport.set_connected(False)
        for transport in transports:
            transport.close()
        if transports:
            logger.info("Closed {} open stream(s)", len(transports))

    def tenant_ids(self) -> list[str]:
        with self._lock:
            return [tid for tid, t in self._sessions.items() if t.connected]

    def __len__(self) -> int:
        return len(self.tenant_ids())

    def _release(self, tenant_id: str, transport: StreamTransport) -> None:
        with self._lock:
            if self._sessions.get(tenant_id) is transport:
                del self._sessions[tenant_id]
                logger.info("Stream closed for tenant={}", tenant_id)
