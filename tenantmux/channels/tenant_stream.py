"""WebSocket channel serving one stream and one command socket per tenant."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any

from loguru import logger
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from tenantmux.tenants.commands import CommandHandler
from tenantmux.tenants.config import TenantMuxConfig
from tenantmux.tenants.contracts import Message, TenantRecord
from tenantmux.tenants.directory import TenantDirectory, normalize_tenant_id
from tenantmux.tenants.errors import (
    NoOpenStreamError,
    NotConnectedError,
    StreamReplacedError,
    TenantNotFoundError,
    TenantStreamError,
)
from tenantmux.tenants.heartbeat import Heartbeat
from tenantmux.tenants.registry import SessionRegistry

STREAM_SUFFIX = "stream"
COMMAND_SUFFIX = "command"

_ERROR_CODES: dict[type[TenantStreamError], str] = {
    TenantNotFoundError: "tenant_not_found",
    NoOpenStreamError: "stream_not_open",
    NotConnectedError: "stream_not_open",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_frame(code: str, message: str, request_id: Any = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": "error", "error": {"code": code, "message": message}}
    if request_id is not None:
        frame["id"] = request_id
    return frame


def _closed_frame(reason: BaseException | None) -> dict[str, Any]:
    return {
        "type": "closed",
        "reason": "replaced" if isinstance(reason, StreamReplacedError) else "closed",
    }


def _json_response(status: HTTPStatus, payload: dict[str, Any]) -> Response:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    headers = Headers(
        [
            ("Content-Type", "application/json; charset=utf-8"),
            ("Content-Length", str(len(body))),
            ("Connection", "close"),
        ]
    )
    return Response(status.value, status.phrase, headers, body)


class TenantStreamChannel:
    """Route tenant paths onto the session registry.

    ``/{tenant}/stream`` opens the tenant's single push stream and
    ``/{tenant}/command`` accepts request frames whose responses are pushed
    on that stream. Plain HTTP GETs serve health and tenant listings.
    """

    name = "tenant_stream"

    def __init__(
        self,
        *,
        config: TenantMuxConfig,
        directory: TenantDirectory,
        registry: SessionRegistry,
        commands: CommandHandler,
    ):
        self.config = config
        self.directory = directory
        self.registry = registry
        self.commands = commands
        self._server: Server | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the server and keep it running."""
        self._running = True
        self._server = await serve(
            self._handle_client,
            self.config.host,
            self.config.port,
            process_request=self._process_request,
        )
        logger.info(f"Tenant stream channel listening on ws://{self.config.host}:{self.config.port}")
        for route in ("GET  /health", "GET  /tenants", "GET  /{tenant_id}",
                      "WS   /{tenant_id}/stream", "WS   /{tenant_id}/command"):
            logger.info("  {}", route)

        try:
            await self._server.wait_closed()
        finally:
            self._running = False

    async def stop(self) -> None:
        """Close every open stream, then the server."""
        self._running = False
        self.registry.close_all()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Tenant stream channel stopped")

    async def dispatch_command(self, tenant_id: str, request: Message) -> None:
        """Run ``request`` and push its response on the stream open when it arrived.

        A stream replaced or closed while the command runs does not receive
        the response, and neither does its successor.
        """
        tenant = self.directory.require(tenant_id)
        transport = self.registry.get_session(tenant.id)
        if transport is None:
            raise NoOpenStreamError(tenant.id)
        response = await self.commands.handle(tenant, request)
        if response is None:
            return
        try:
            transport.send(response)
        except NotConnectedError as e:
            raise NoOpenStreamError(tenant.id) from e

    def route_http(self, path: str) -> tuple[HTTPStatus, dict[str, Any]]:
        """Answer the plain HTTP GET routes."""
        path = path.split("?", 1)[0]
        if path == "/health":
            return HTTPStatus.OK, {"status": "ok", "timestamp": _now()}
        if path == "/tenants":
            return HTTPStatus.OK, {
                "tenants": [t.public() for t in self.directory.list()],
                "message": "Use /{tenant_id} to inspect a specific tenant",
            }

        segments = normalize_tenant_id(path).split("/")
        if len(segments) == 1 and segments[0]:
            tenant = self.directory.lookup(segments[0])
            if tenant is None:
                return HTTPStatus.NOT_FOUND, {
                    "error": "tenant not found",
                    "availableTenants": self.directory.ids(),
                }
            return HTTPStatus.OK, {
                "tenant": tenant.public(),
                "streaming": self.registry.get_session(tenant.id) is not None,
                "streamEndpoint": f"/{tenant.id}/{STREAM_SUFFIX}",
                "commandEndpoint": f"/{tenant.id}/{COMMAND_SUFFIX}",
            }
        return HTTPStatus.NOT_FOUND, {"error": "not found"}

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None
        status, payload = self.route_http(request.path)
        return _json_response(status, payload)

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """Handle one websocket connection lifecycle."""
        path = websocket.request.path.split("?", 1)[0]
        segments = normalize_tenant_id(path).split("/")
        if len(segments) != 2 or segments[1] not in (STREAM_SUFFIX, COMMAND_SUFFIX):
            await self._send_json(websocket, _error_frame("bad_request", f"unsupported path: {path}"))
            await websocket.close(code=1008, reason="unsupported path")
            return

        tenant_id, kind = segments
        tenant = self.directory.lookup(tenant_id)
        if tenant is None:
            await self._send_json(
                websocket, _error_frame("tenant_not_found", f"Tenant not found: {tenant_id}")
            )
            await websocket.close(code=1008, reason="tenant not found")
            return

        try:
            if kind == STREAM_SUFFIX:
                await self._serve_stream(websocket, tenant)
            else:
                await self._serve_commands(websocket, tenant)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.warning(f"Tenant {kind} connection error tenant={tenant.id}: {e}")

    async def _serve_stream(self, ws: ServerConnection, tenant: TenantRecord) -> None:
        loop = asyncio.get_running_loop()
        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def push(frame: dict[str, Any]) -> None:
            loop.call_soon_threadsafe(outbox.put_nowait, frame)

        transport = self.registry.open_session(tenant.id)
        transport.on_message(lambda message: push(message.to_dict()))
        transport.on_close(lambda reason: push(_closed_frame(reason)))
        heartbeat = Heartbeat(
            transport,
            self.config.heartbeat_interval_s,
            lambda: push({"type": "heartbeat", "timestamp": _now()}),
        )

        push({"type": "endpoint", "uri": f"/{tenant.id}/{COMMAND_SUFFIX}"})
        heartbeat.start()
        writer = asyncio.create_task(self._pump(ws, outbox))
        reader = asyncio.create_task(self._drain(ws, tenant))
        try:
            await asyncio.wait({writer, reader}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            transport.close()
            heartbeat.stop()
            for task in (writer, reader):
                task.cancel()
            for result in await asyncio.gather(writer, reader, return_exceptions=True):
                if isinstance(result, Exception):
                    logger.warning(f"Stream task failed tenant={tenant.id}: {result}")

    async def _pump(self, ws: ServerConnection, outbox: asyncio.Queue[dict[str, Any]]) -> None:
        """Write queued frames until the transport reports closed."""
        while True:
            frame = await outbox.get()
            try:
                await self._send_json(ws, frame)
                if frame.get("type") == "closed":
                    await ws.close(code=1000, reason=f"stream {frame['reason']}")
                    return
            except ConnectionClosed:
                return

    async def _drain(self, ws: ServerConnection, tenant: TenantRecord) -> None:
        """Consume inbound frames until the client goes away."""
        try:
            async for _raw in ws:
                logger.debug("Ignoring inbound frame on stream tenant={}", tenant.id)
        except ConnectionClosed:
            pass

    async def _serve_commands(self, ws: ServerConnection, tenant: TenantRecord) -> None:
        async for raw in ws:
            reply = await self._handle_command_frame(tenant.id, raw)
            await self._send_json(ws, reply)

    async def _handle_command_frame(self, tenant_id: str, raw: Any) -> dict[str, Any]:
        data = self._parse_json(raw)
        if data is None:
            return _error_frame("bad_request", "invalid JSON payload")
        try:
            request = Message.from_dict(data)
        except ValueError as e:
            return _error_frame("bad_request", str(e), data.get("id"))
        if not request.is_request:
            return _error_frame("bad_request", "method is required", request.id)

        try:
            await self.dispatch_command(tenant_id, request)
        except TenantStreamError as e:
            logger.warning(f"Command {request.method} rejected for tenant={tenant_id}: {e}")
            return _error_frame(_ERROR_CODES.get(type(e), "error"), str(e), request.id)

        reply: dict[str, Any] = {"type": "accepted"}
        if request.id is not None:
            reply["id"] = request.id
        return reply

    @staticmethod
    def _parse_json(raw: Any) -> dict[str, Any] | None:
        """Best-effort JSON parse for text/bytes frames."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="ignore")
        if not isinstance(raw, str):
            return None
        try:
            obj = json.loads(raw)
        except ValueError:
            return None
        return obj if isinstance(obj, dict) else None

    @staticmethod
    async def _send_json(ws: ServerConnection, payload: dict[str, Any]) -> None:
        await ws.send(json.dumps(payload, ensure_ascii=False))
