"""Named tenant operations answered over the tenant's open stream."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from tenantmux import __version__
from tenantmux.tenants.contracts import Message, TenantRecord

PROTOCOL_VERSION = "2024-11-05"
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

ToolHandler = Callable[[TenantRecord, dict[str, Any]], Awaitable[dict[str, Any]]]


def text_result(text: str, *, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


@dataclass(frozen=True)
class TenantTool:
    """An opaque operation with an input schema and a result."""

    name: str
    description: str
    handler: ToolHandler
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {
            "type": "object",
            "properties": {},
            "additionalProperties": False,
        }
    )

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


async def _tenant_echo(tenant: TenantRecord, _arguments: dict[str, Any]) -> dict[str, Any]:
    return text_result(f"Request from {tenant.name or tenant.id}")


TENANT_ECHO = TenantTool(
    name="tenant_echo",
    description="Return a short text naming the tenant the request came from",
    handler=_tenant_echo,
)


class CommandHandler:
    """Turn a request message into the response to push on the stream."""

    def __init__(self, tools: Iterable[TenantTool] = (TENANT_ECHO,)):
        self._tools = {tool.name: tool for tool in tools}
        self._methods: dict[str, Callable[[TenantRecord, dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def handle(self, tenant: TenantRecord, request: Message) -> Message | None:
        """Return the response for ``request``, or None for notifications."""
        if request.id is None:
            logger.debug("Notification {} for tenant={}", request.method, tenant.id)
            return None

        method = self._methods.get(request.method or "")
        if method is None:
            return Message(
                id=request.id,
                error={"code": METHOD_NOT_FOUND, "message": f"Method not found: {request.method}"},
            )

        params = request.params if isinstance(request.params, dict) else {}
        try:
            result = await method(tenant, params)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Command {request.method} failed for tenant={tenant.id}: {exc}")
            return Message(id=request.id, error={"code": INTERNAL_ERROR, "message": str(exc)})
        return Message(id=request.id, result=result)

    async def _initialize(self, tenant: TenantRecord, _params: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "tenantmux", "version": __version__},
            "tenant": tenant.public(),
        }

    async def _ping(self, _tenant: TenantRecord, _params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _list_tools(self, _tenant: TenantRecord, _params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool.describe() for tool in self._tools.values()]}

    async def _call_tool(self, tenant: TenantRecord, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        tool = self._tools.get(name) if isinstance(name, str) else None
        if tool is None:
            return text_result(f"Tool not found: {name}", is_error=True)
        arguments = params.get("arguments")
        return await tool.handler(tenant, arguments if isinstance(arguments, dict) else {})
