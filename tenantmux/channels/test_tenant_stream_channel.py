"""Channel tests driven through in-memory websocket connections."""

import asyncio
import json
from collections.abc import Callable
from http import HTTPStatus
from types import SimpleNamespace
from typing import Any

import pytest
from websockets.asyncio.client import connect
from websockets.datastructures import Headers
from websockets.http11 import Request

from tenantmux.channels.tenant_stream import TenantStreamChannel
from tenantmux.tenants.commands import TENANT_ECHO, CommandHandler, TenantTool, text_result
from tenantmux.tenants.config import TenantMuxConfig
from tenantmux.tenants.contracts import TenantRecord
from tenantmux.tenants.directory import TenantDirectory
from tenantmux.tenants.registry import SessionRegistry


class FakeConnection:
    """Just enough of a server connection for the channel handlers."""

    def __init__(self, path: str):
        self.request = SimpleNamespace(path=path)
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    def client_send(self, payload: Any) -> None:
        self._incoming.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def disconnect(self) -> None:
        self._incoming.put_nowait(None)

    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for raw in self.sent]

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed_with is None:
            self.closed_with = (code, reason)
        self.disconnect()

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


def _make_channel(
    heartbeat_s: float = 60.0,
    commands: CommandHandler | None = None,
    port: int = 3000,
) -> TenantStreamChannel:
    directory = TenantDirectory(
        [
            TenantRecord(id="acme", name="Acme Co", connection_info="postgresql://acme@db/acme"),
            TenantRecord(id="globex", name="Globex Corp"),
        ]
    )
    return TenantStreamChannel(
        config=TenantMuxConfig(port=port, heartbeat_interval_s=heartbeat_s),
        directory=directory,
        registry=SessionRegistry(),
        commands=commands or CommandHandler(),
    )


async def _until(condition: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def _open_stream(channel: TenantStreamChannel, tenant_id: str) -> tuple[FakeConnection, asyncio.Task[None]]:
    ws = FakeConnection(f"/{tenant_id}/stream")
    task = asyncio.create_task(channel._handle_client(ws))
    await _until(lambda: bool(ws.sent))
    return ws, task


async def _run_commands(channel: TenantStreamChannel, tenant_id: str, *payloads: Any) -> list[dict[str, Any]]:
    ws = FakeConnection(f"/{tenant_id}/command")
    for payload in payloads:
        ws.client_send(payload)
    ws.disconnect()
    await channel._handle_client(ws)
    return ws.frames()


@pytest.mark.asyncio
async def test_stream_announces_command_endpoint() -> None:
    channel = _make_channel()
    ws, task = await _open_stream(channel, "acme")

    assert ws.frames()[0] == {"type": "endpoint", "uri": "/acme/command"}
    assert channel.registry.get_session("acme") is not None

    ws.disconnect()
    await task
    assert channel.registry.get_session("acme") is None


@pytest.mark.asyncio
async def test_command_response_is_pushed_on_stream() -> None:
    channel = _make_channel()
    ws, task = await _open_stream(channel, "acme")

    replies = await _run_commands(
        channel,
        "acme",
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "tenant_echo"}},
    )
    assert replies == [{"type": "accepted", "id": 1}]

    await _until(lambda: len(ws.sent) >= 2)
    assert ws.frames()[1] == {
        "jsonrpc": "2.0",
        "id": 1,
        "result": {"content": [{"type": "text", "text": "Request from Acme Co"}]},
    }

    ws.disconnect()
    await task


@pytest.mark.asyncio
async def test_command_without_open_stream_is_rejected() -> None:
    channel = _make_channel()
    replies = await _run_commands(channel, "acme", {"id": "a", "method": "ping"})
    assert replies[0]["type"] == "error"
    assert replies[0]["id"] == "a"
    assert replies[0]["error"]["code"] == "stream_not_open"


@pytest.mark.asyncio
async def test_command_frames_are_validated() -> None:
    channel = _make_channel()
    ws, task = await _open_stream(channel, "acme")

    replies = await _run_commands(channel, "acme", "{broken", {"id": 9, "result": {}}, {"method": 5})
    assert [r["error"]["code"] for r in replies] == ["bad_request"] * 3
    assert replies[1]["id"] == 9

    ws.disconnect()
    await task


@pytest.mark.asyncio
async def test_command_for_removed_tenant_reports_not_found() -> None:
    channel = _make_channel()
    ws, task = await _open_stream(channel, "acme")
    channel.directory.remove("acme")

    replies = await _run_commands(channel, "acme", {"id": 1, "method": "ping"})
    assert replies[0]["error"]["code"] == "tenant_not_found"

    ws.disconnect()
    await task


@pytest.mark.asyncio
async def test_reconnect_replaces_prior_stream() -> None:
    channel = _make_channel()
    first, first_task = await _open_stream(channel, "acme")
    second, second_task = await _open_stream(channel, "acme")

    await asyncio.wait_for(first_task, timeout=1.0)
    assert first.frames()[-1] == {"type": "closed", "reason": "replaced"}
    assert first.closed_with == (1000, "stream replaced")

    session = channel.registry.get_session("acme")
    assert session is not None and session.connected

    await _run_commands(channel, "acme", {"id": 2, "method": "ping"})
    await _until(lambda: len(second.sent) >= 2)
    assert second.frames()[1] == {"jsonrpc": "2.0", "id": 2, "result": {}}
    assert len(first.frames()) == 2

    second.disconnect()
    await second_task


@pytest.mark.asyncio
async def test_streams_are_isolated_between_tenants() -> None:
    channel = _make_channel()
    acme, acme_task = await _open_stream(channel, "acme")
    globex, globex_task = await _open_stream(channel, "globex")

    await _run_commands(channel, "globex", {"id": 1, "method": "ping"})
    await _until(lambda: len(globex.sent) >= 2)
    assert len(acme.sent) == 1

    acme.disconnect()
    await acme_task
    assert channel.registry.tenant_ids() == ["globex"]

    globex.disconnect()
    await globex_task


@pytest.mark.asyncio
async def test_heartbeat_frames_flow_while_connected() -> None:
    channel = _make_channel(heartbeat_s=0.01)
    ws, task = await _open_stream(channel, "acme")

    await _until(lambda: any(f["type"] == "heartbeat" for f in ws.frames()))

    ws.disconnect()
    await task
    count = len(ws.sent)
    await asyncio.sleep(0.05)
    assert len(ws.sent) == count


@pytest.mark.asyncio
async def test_stop_closes_open_streams() -> None:
    channel = _make_channel()
    ws, task = await _open_stream(channel, "acme")

    await channel.stop()
    await asyncio.wait_for(task, timeout=1.0)

    assert ws.frames()[-1] == {"type": "closed", "reason": "closed"}
    assert channel.registry.tenant_ids() == []


@pytest.mark.asyncio
async def test_unknown_tenant_and_path_are_refused() -> None:
    channel = _make_channel()

    ws = FakeConnection("/nobody/stream")
    await channel._handle_client(ws)
    assert ws.frames()[0]["error"]["code"] == "tenant_not_found"
    assert ws.closed_with is not None and ws.closed_with[0] == 1008

    ws = FakeConnection("/acme/elsewhere")
    await channel._handle_client(ws)
    assert ws.frames()[0]["error"]["code"] == "bad_request"
    assert ws.closed_with is not None and ws.closed_with[0] == 1008
    assert channel.registry.tenant_ids() == []


def test_http_routes() -> None:
    channel = _make_channel()

    status, body = channel.route_http("/health")
    assert status == HTTPStatus.OK and body["status"] == "ok"

    status, body = channel.route_http("/tenants")
    assert body["tenants"] == [
        {"id": "acme", "name": "Acme Co"},
        {"id": "globex", "name": "Globex Corp"},
    ]

    status, body = channel.route_http("/acme")
    assert status == HTTPStatus.OK
    assert body["streamEndpoint"] == "/acme/stream"
    assert body["streaming"] is False

    status, body = channel.route_http("/nobody")
    assert status == HTTPStatus.NOT_FOUND
    assert body["availableTenants"] == ["acme", "globex"]

    status, _ = channel.route_http("/acme/stream/extra")
    assert status == HTTPStatus.NOT_FOUND


def test_process_request_serves_json_and_passes_upgrades() -> None:
    channel = _make_channel()
    conn = SimpleNamespace()

    response = channel._process_request(conn, Request("/tenants", Headers()))
    assert response.status_code == 200
    assert json.loads(response.body)["tenants"][0]["id"] == "acme"

    upgrade = Request("/acme/stream", Headers([("Upgrade", "websocket")]))
    assert channel._process_request(conn, upgrade) is None


@pytest.mark.asyncio
async def test_response_stays_with_the_stream_it_was_issued_on() -> None:
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow(_tenant: TenantRecord, _arguments: dict[str, Any]) -> dict[str, Any]:
        entered.set()
        await release.wait()
        return text_result("late result")

    commands = CommandHandler([TENANT_ECHO, TenantTool(name="slow", description="waits", handler=slow)])
    channel = _make_channel(commands=commands)
    first, first_task = await _open_stream(channel, "acme")

    pending = asyncio.create_task(
        _run_commands(channel, "acme", {"id": 1, "method": "tools/call", "params": {"name": "slow"}})
    )
    await asyncio.wait_for(entered.wait(), timeout=1.0)

    second, second_task = await _open_stream(channel, "acme")
    await asyncio.wait_for(first_task, timeout=1.0)
    release.set()
    replies = await asyncio.wait_for(pending, timeout=1.0)

    assert replies[0]["error"]["code"] == "stream_not_open"
    await asyncio.sleep(0.02)
    assert second.frames() == [{"type": "endpoint", "uri": "/acme/command"}]
    assert first.frames()[-1] == {"type": "closed", "reason": "replaced"}

    second.disconnect()
    await second_task


async def _http_get(port: int, path: str) -> tuple[int, dict[str, Any]]:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n".encode())
    await writer.drain()
    raw = await asyncio.wait_for(reader.read(), timeout=1.0)
    writer.close()
    head, _, body = raw.partition(b"\r\n\r\n")
    status = int(head.split(b" ", 2)[1])
    return status, json.loads(body)


@pytest.mark.asyncio
async def test_real_server_round_trip() -> None:
    channel = _make_channel(port=0)
    server_task = asyncio.create_task(channel.start())
    await _until(lambda: channel._server is not None)
    port = next(iter(channel._server.sockets)).getsockname()[1]
    base = f"ws://127.0.0.1:{port}"

    try:
        status, body = await _http_get(port, "/tenants")
        assert status == 200
        assert [t["id"] for t in body["tenants"]] == ["acme", "globex"]

        status, body = await _http_get(port, "/nobody")
        assert status == 404

        async with connect(f"{base}/acme/stream") as stream:
            assert json.loads(await stream.recv()) == {"type": "endpoint", "uri": "/acme/command"}
            assert channel.registry.get_session("acme") is not None

            async with connect(f"{base}/acme/command") as command:
                await command.send(json.dumps({"id": 1, "method": "ping"}))
                assert json.loads(await command.recv()) == {"type": "accepted", "id": 1}

            frame = await asyncio.wait_for(stream.recv(), timeout=1.0)
            assert json.loads(frame) == {"jsonrpc": "2.0", "id": 1, "result": {}}

        await _until(lambda: channel.registry.get_session("acme") is None)
    finally:
        await channel.stop()
        await asyncio.wait_for(server_task, timeout=1.0)

    assert channel.is_running is False
