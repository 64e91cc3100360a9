"""JSON-RPC over stdio client and manager for external tool-provider processes."""

import asyncio
import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import RpcError, RpcProcessExitError, RpcRemoteError, RpcTimeoutError
from .tool_specs import ToolSpec

logger = logging.getLogger("Tool-Provider-RPC")

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "codeloop", "version": "0.1.0"}
DEFAULT_REQUEST_TIMEOUT = 30.0
STREAM_LIMIT = 16 * 1024 * 1024


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ToolProviderConfig:
    """Launch spec of one tool-provider server."""

    id: str
    name: str
    command: str
    args: List[str] = field(default_factory = list)
    env: Dict[str, str] = field(default_factory = dict)
    enabled: bool = True

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ToolProviderConfig":
        server_id = str(payload.get("id") or payload.get("name") or "")
        if not server_id or not payload.get("command"):
            raise ValueError(f"Tool provider config needs id and command: {payload}")
        return cls(
            id = server_id,
            name = str(payload.get("name") or server_id),
            command = str(payload["command"]),
            args = [str(arg) for arg in payload.get("args") or []],
            env = {str(key): str(value) for key, value in (payload.get("env") or {}).items()},
            enabled = bool(payload.get("enabled", True)),
        )


def load_tool_provider_configs(path: Path) -> List[ToolProviderConfig]:
    """Read a JSON list of server configs, or an object with a `servers` list."""
    payload = json.loads(Path(path).read_text(encoding = "utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("servers") or []
    return [ToolProviderConfig.from_dict(item) for item in payload]


class ToolProviderClient:
    """
    One live connection to a tool-provider subprocess.

    Requests are matched to responses through a pending map keyed by request id.
    Each request has its own timeout; process exit rejects everything pending.

    Parameters:
        config: Launch spec.
        request_timeout: Seconds before a request fails with RpcTimeoutError.
    """

    def __init__(self, config: ToolProviderConfig, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.config = config
        self.request_timeout = request_timeout
        self.state = ConnectionState.DISCONNECTED
        self.tools: List[ToolSpec] = []
        self._process: Optional[asyncio.subprocess.Process] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self) -> None:
        """Spawn, handshake and fetch the tool list. Any failure leaves the client disconnected."""
        if self.state != ConnectionState.DISCONNECTED:
            return

        self.state = ConnectionState.CONNECTING
        env = {**os.environ, **self.config.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin = asyncio.subprocess.PIPE,
                stdout = asyncio.subprocess.PIPE,
                stderr = asyncio.subprocess.PIPE,
                env = env,
                limit = STREAM_LIMIT,
            )
        except OSError as exc:
            self.state = ConnectionState.DISCONNECTED
            raise RpcProcessExitError(f"Failed to start {self.config.name}: {exc}") from exc

        self._reader_task = asyncio.create_task(self._read_loop(self._process))
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

        try:
            await self.request("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            })
            await self.notify("notifications/initialized", {})
            await self.refresh_tools()
            self.state = ConnectionState.CONNECTED
        except BaseException:
            await self.disconnect()
            raise
        logger.info(f"[{self.config.name}] connected with {len(self.tools)} tool(s)")

    async def disconnect(self) -> None:
        """Kill the process, reject pending requests and clear the catalogue."""
        process = self._process
        self._process = None
        self._fail_pending(RpcProcessExitError())
        self.state = ConnectionState.DISCONNECTED
        self.tools = []

        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        self._reader_task = None
        self._stderr_task = None

    async def refresh_tools(self) -> List[ToolSpec]:
        response = await self.request("tools/list", {})
        self.tools = [
            ToolSpec(
                name = str(tool["name"]),
                description = tool.get("description") or str(tool["name"]),
                parameters = tool.get("inputSchema") or {"type": "object", "properties": {}},
                server_id = self.config.id,
            )
            for tool in (response or {}).get("tools") or []
            if isinstance(tool, dict) and tool.get("name")
        ]
        return self.tools

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        response = await self.request("tools/call", {"name": name, "arguments": arguments}) or {}
        content = response.get("content") or []
        if not content:
            return "Tool execution failed (no output)" if response.get("isError") else "Done (no output)"

        texts = [
            item["text"]
            for item in content
            if isinstance(item, dict) and item.get("type") == "text" and item.get("text")
        ]
        return "\n".join(texts) or "Done"

    async def request(self, method: str, params: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """
        Send one request and wait for its response.

        Parameters:
            method: JSON-RPC method.
            params: Request params.
            timeout: Overrides the client's request timeout.
        """
        process = self._process
        if process is None or process.stdin is None or process.returncode is not None:
            raise RpcProcessExitError("MCP server not connected")

        request_id = uuid.uuid4().hex[:12]
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        message = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        try:
            process.stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await process.stdin.drain()
        except (ConnectionError, OSError) as exc:
            self._pending.pop(request_id, None)
            raise RpcProcessExitError() from exc

        wait_seconds = self.request_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(future, timeout = wait_seconds)
        except asyncio.TimeoutError:
            raise RpcTimeoutError(method, wait_seconds) from None
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None:
            return
        message = {"jsonrpc": "2.0", "method": method, "params": params}
        try:
            process.stdin.write((json.dumps(message) + "\n").encode("utf-8"))
            await process.stdin.drain()
        except (ConnectionError, OSError) as exc:
            logger.warning(f"[{self.config.name}] notification {method} failed: {exc}")

    async def _read_loop(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError as exc:
                logger.warning(f"[{self.config.name}] discarding oversized line: {exc}")
                continue
            if not line:
                break
            self._handle_line(line)

        await process.wait()
        if self._process is process:
            logger.warning(f"[{self.config.name}] process exited with code {process.returncode}")
            self._process = None
            self.state = ConnectionState.DISCONNECTED
            self.tools = []
            self._fail_pending(RpcProcessExitError())

    def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug(f"[{self.config.name}] ignoring non-JSON line")
            return
        if not isinstance(message, dict):
            return

        request_id = message.get("id")
        future = self._pending.get(request_id) if isinstance(request_id, str) else None
        if future is None or future.done():
            return

        error = message.get("error")
        if error:
            if isinstance(error, dict):
                future.set_exception(RpcRemoteError(error.get("code"), str(error.get("message") or "RPC error")))
            else:
                future.set_exception(RpcRemoteError(None, str(error)))
        else:
            future.set_result(message.get("result"))

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            logger.debug(f"[{self.config.name}] {line.decode('utf-8', errors = 'replace').rstrip()}")

    def _fail_pending(self, error: RpcError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)


class ToolProviderManager:
    """Owns named connections and routes tool calls by server id."""

    def __init__(self, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.request_timeout = request_timeout
        self.configs: Dict[str, ToolProviderConfig] = {}
        self.clients: Dict[str, ToolProviderClient] = {}

    def set_configs(self, configs: List[ToolProviderConfig]) -> None:
        self.configs = {config.id: config for config in configs}

    async def connect_server(self, config: ToolProviderConfig) -> ToolProviderClient:
        """Connect one server, replacing any existing connection with the same id."""
        await self.disconnect_server(config.id)
        self.configs[config.id] = config
        client = ToolProviderClient(config, request_timeout = self.request_timeout)
        await client.connect()
        self.clients[config.id] = client
        return client

    async def connect_enabled(self, configs: Optional[List[ToolProviderConfig]] = None) -> List[str]:
        """Connect every enabled server; failures are logged and skipped. Returns connected ids."""
        if configs is not None:
            self.set_configs(configs)
        connected = []
        for config in self.configs.values():
            if not config.enabled:
                continue
            try:
                await self.connect_server(config)
                connected.append(config.id)
            except (RpcError, OSError) as exc:
                logger.error(f"[{config.name}] failed to connect: {exc}")
        return connected

    async def disconnect_server(self, server_id: str) -> None:
        client = self.clients.pop(server_id, None)
        if client is not None:
            await client.disconnect()

    async def disconnect_all(self) -> None:
        for server_id in list(self.clients):
            await self.disconnect_server(server_id)

    def all_tools(self) -> List[ToolSpec]:
        tools: List[ToolSpec] = []
        for client in self.clients.values():
            if client.connected:
                tools.extend(client.tools)
        return tools

    async def call_tool(self, server_id: str, name: str, arguments: Dict[str, Any]) -> str:
        client = self.clients.get(server_id)
        if client is None or not client.connected:
            raise RpcProcessExitError(f"MCP server {server_id} not connected")
        return await client.call_tool(name, arguments)

    def has_connections(self) -> bool:
        return any(client.connected for client in self.clients.values())
