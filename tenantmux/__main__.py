"""Run the tenant stream server: ``python -m tenantmux``."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys

from loguru import logger

from tenantmux.channels.tenant_stream import TenantStreamChannel
from tenantmux.tenants.bootstrap import build_channel
from tenantmux.tenants.config import TenantMuxConfig
from tenantmux.tenants.errors import TenantConfigError


async def serve_until_signalled(channel: TenantStreamChannel) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    server = asyncio.create_task(channel.start())
    stopper = asyncio.create_task(stop.wait())
    await asyncio.wait({server, stopper}, return_when=asyncio.FIRST_COMPLETED)
    if stop.is_set():
        logger.info("Shutdown signal received, stopping")
    stopper.cancel()
    await channel.stop()
    await server


def main() -> None:
    cfg = TenantMuxConfig.from_env()
    logger.remove()
    logger.add(sys.stderr, level=cfg.log_level)

    try:
        channel = build_channel(cfg)
    except TenantConfigError as exc:
        logger.error(f"Startup failed: {exc}")
        sys.exit(1)

    asyncio.run(serve_until_signalled(channel))


if __name__ == "__main__":
    main()
