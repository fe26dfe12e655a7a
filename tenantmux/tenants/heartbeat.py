"""Keep-alive ticks bound to a transport's lifetime."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from tenantmux.tenants.transport import StreamTransport


class Heartbeat:
    """Call ``beat`` every ``interval_s`` while the transport is connected.

    Closing the transport stops the loop; no tick is emitted after close.
    """

    def __init__(self, transport: StreamTransport, interval_s: float, beat: Callable[[], None]):
        self.transport = transport
        self.interval_s = interval_s
        self.ticks = 0
        self._beat = beat
        self._stopped = False
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._run())
        self.transport.on_close(lambda _reason: self.stop())

    def stop(self) -> None:
        """Idempotent; safe to call from any thread."""
        self._stopped = True
        task, loop = self._task, self._loop
        if task is None or loop is None or task.done() or loop.is_closed():
            return
        loop.call_soon_threadsafe(task.cancel)

    async def _run(self) -> None:
        while not self._stopped and self.transport.connected:
            await asyncio.sleep(self.interval_s)
            if self._stopped or not self.transport.connected:
                break
            self._beat()
            self.ticks += 1
            logger.debug("Heartbeat tenant={} tick={}", self.transport.tenant_id, self.ticks)
