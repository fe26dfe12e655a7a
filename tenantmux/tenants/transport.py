"""Single-use duplex transport bound to one tenant stream."""

from __future__ import annotations

import threading
from collections.abc import Callable

from loguru import logger

from tenantmux.tenants.contracts import Message
from tenantmux.tenants.errors import NotConnectedError

MessageObserver = Callable[[Message], None]
CloseObserver = Callable[[BaseException | None], None]


class StreamTransport:
    """Outbound delivery queue plus message/close observers for one stream.

    A transport starts disconnected until ``set_connected(True)``, and once
    closed it stays closed. ``send`` holds the lock while it checks the flag,
    queues the message and notifies observers, so a concurrent ``close``
    either lands after the whole delivery or causes ``NotConnectedError``.
    Close observers run outside the lock and may call back into the registry.
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._lock = threading.RLock()
        self._connected = False
        self._closed = False
        self._queue: list[Message] = []
        self._message_observers: list[MessageObserver] = []
        self._close_observers: list[CloseObserver] = []

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def messages(self) -> list[Message]:
        """Snapshot of every message sent so far."""
        with self._lock:
            return list(self._queue)

    def clear_messages(self) -> None:
        with self._lock:
            self._queue.clear()

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            if connected and self._closed:
                raise NotConnectedError(self.tenant_id)
            self._connected = connected

    def on_message(self, callback: MessageObserver) -> None:
        with self._lock:
            self._message_observers.append(callback)

    def on_close(self, callback: CloseObserver) -> None:
        with self._lock:
            self._close_observers.append(callback)

    def send(self, message: Message) -> None:
        with self._lock:
            if not self._connected:
                raise NotConnectedError(self.tenant_id)
            self._queue.append(message)
            for observer in list(self._message_observers):
                try:
                    observer(message)
                except Exception as e:
                    logger.warning(f"Message observer failed tenant={self.tenant_id}: {e}")

    def close(self, reason: BaseException | None = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._connected = False
            observers = list(self._close_observers)
        logger.debug("Transport closed tenant={} reason={}", self.tenant_id, reason)
        for observer in observers:
            try:
                observer(reason)
            except Exception as e:
                logger.warning(f"Close observer failed tenant={self.tenant_id}: {e}")
