"""MCP server communication via stdio subprocess transport."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Dict, Optional, Set, Union

from pydantic import ValidationError

from mcplex.mcp.errors import MCPConnectionError, MCPParseError, MCPTimeoutError
from mcplex.mcp.schema import (
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    ServerConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_GRACE_PERIOD = 5.0
# Providers may return base64 images on a single line.
STREAM_LIMIT = 16 * 1024 * 1024


def encode_message(message: JsonRpcMessage) -> bytes:
    """Frame a request or notification as one UTF-8 JSON line."""
    return (json.dumps(message.to_wire(), ensure_ascii=False) + "\n").encode("utf-8")


def parse_response(line: Union[bytes, str]) -> JsonRpcResponse:
    """
    Parse one stdout line into a response.

    Raises ``MCPParseError`` for anything that is not a JSON-RPC response:
    blank lines, log noise, invalid JSON, batches, and server-initiated
    requests or notifications.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MCPParseError(f"invalid UTF-8: {exc}") from exc

    text = line.strip()
    if not text:
        raise MCPParseError("blank line")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MCPParseError(f"not JSON: {text[:80]!r}") from exc

    if not isinstance(payload, dict):
        raise MCPParseError("not a JSON object")
    if "method" in payload:
        raise MCPParseError(f"server-initiated message {payload.get('method')!r}")
    if "result" not in payload and "error" not in payload:
        raise MCPParseError("neither result nor error present")

    try:
        return JsonRpcResponse.model_validate(payload)
    except ValidationError as exc:
        raise MCPParseError(f"invalid response: {exc}") from exc


class StdioTransport:
    """
    Line-framed JSON-RPC over the stdin/stdout of one child process.

    A background task reads stdout and resolves the waiter registered for
    each response id; a second task drains stderr into the debug log so the
    child never blocks on a full pipe. Writes are serialized by a lock, and
    pending waits are keyed by request id, so several requests may be in
    flight at once.
    """

    def __init__(
        self,
        config: ServerConfig,
        name: Optional[str] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ):
        self.config = config
        self.name = name or os.path.basename(config.command)
        self.grace_period = grace_period
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._waiters: Dict[int, asyncio.Future] = {}
        # Responses that arrived before anyone asked for them.
        self._parked: Dict[int, JsonRpcResponse] = {}
        # Ids whose receive() already timed out; late answers are dropped.
        self._abandoned: Set[int] = set()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn the MCP server subprocess and start the background readers."""
        if self.is_running:
            return
        if self._process is not None:
            # Previous process died on its own; reap it before respawning.
            await self.stop()

        merged_env = {**os.environ, **self.config.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=merged_env,
                cwd=self.config.working_dir,
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as exc:
            raise MCPConnectionError(
                f"Failed to start MCP server '{self.name}' ({self.config.display()}): {exc}"
            ) from exc

        self._reader_task = asyncio.create_task(
            self._read_responses(self._process.stdout), name=f"mcp-{self.name}-stdout"
        )
        self._stderr_task = asyncio.create_task(
            self._drain_stderr(self._process.stderr), name=f"mcp-{self.name}-stderr"
        )
        logger.info("Started MCP server %s (pid=%s)", self.name, self._process.pid)

    async def stop(self, grace_period: Optional[float] = None) -> None:
        """
        Terminate the subprocess and release every handle.

        Sends SIGTERM, waits ``grace_period`` seconds (default: the
        transport's own), then SIGKILLs. Any pending ``receive()`` is woken
        with ``MCPConnectionError``. Safe to call more than once.
        """
        if grace_period is None:
            grace_period = self.grace_period
        process = self._process
        self._fail_waiters(MCPConnectionError(f"Transport for '{self.name}' was stopped"))

        tasks = [task for task in (self._reader_task, self._stderr_task) if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reader_task = None
        self._stderr_task = None

        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()

            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace_period)
                except asyncio.TimeoutError:
                    logger.warning(
                        "MCP server %s did not exit within %.1fs, killing it", self.name, grace_period
                    )
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()
            # Grandchildren may still hold the pipes open; release our ends now.
            pipe_transport = getattr(process, "_transport", None)
            if pipe_transport is not None:
                pipe_transport.close()
            logger.info("Stopped MCP server %s (exit code %s)", self.name, process.returncode)

        self._process = None
        self._parked.clear()
        self._abandoned.clear()

    @property
    def is_running(self) -> bool:
        """True while the child is alive and its stdout is still being read."""
        return (
            self._process is not None
            and self._process.returncode is None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    async def send(self, request: JsonRpcRequest) -> None:
        """Write one request line. Does not wait for the answer."""
        await self._write(request)

    async def send_notification(self, method: str, params: Optional[dict] = None) -> None:
        """Write one notification line (no ``id`` key)."""
        await self._write(JsonRpcNotification(method=method, params=params))

    async def receive(self, expected_id: int, timeout: float = DEFAULT_TIMEOUT) -> JsonRpcResponse:
        """
        Wait for the response to ``expected_id``.

        Raises ``MCPTimeoutError`` after ``timeout`` seconds, or
        ``MCPConnectionError`` as soon as the transport stops or the child
        closes stdout.
        """
        parked = self._parked.pop(expected_id, None)
        if parked is not None:
            return parked

        waiter = self._waiters.get(expected_id)
        if waiter is None:
            if not self.is_running:
                raise MCPConnectionError(f"Transport for '{self.name}' is not running")
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[expected_id] = waiter

        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            self._abandoned.add(expected_id)
            raise MCPTimeoutError(expected_id, timeout) from None
        finally:
            self._waiters.pop(expected_id, None)

    async def request(self, request: JsonRpcRequest, timeout: float = DEFAULT_TIMEOUT) -> JsonRpcResponse:
        """Send ``request`` and wait for its response."""
        await self.send(request)
        return await self.receive(request.id, timeout=timeout)

    # ── Internals ─────────────────────────────────────────────────────────

    async def _write(self, message: JsonRpcMessage) -> None:
        process = self._process
        if process is None or process.stdin is None or not self.is_running:
            raise MCPConnectionError(f"Transport for '{self.name}' is not running")

        data = encode_message(message)
        async with self._write_lock:
            try:
                process.stdin.write(data)
                await process.stdin.drain()
            except (ConnectionError, OSError) as exc:
                raise MCPConnectionError(f"Failed to write to MCP server '{self.name}': {exc}") from exc
        logger.debug("-> %s %s", self.name, message.method)

    async def _read_responses(self, stdout: asyncio.StreamReader) -> None:
        try:
            while True:
                try:
                    line = await stdout.readline()
                except ValueError as exc:
                    # Line longer than STREAM_LIMIT; the reader already skipped it.
                    logger.debug("Dropping oversized line from %s: %s", self.name, exc)
                    continue
                if not line:
                    break
                try:
                    response = parse_response(line)
                except MCPParseError as exc:
                    logger.debug("Dropping non-protocol line from %s: %s", self.name, exc)
                    continue
                self._dispatch(response)
        except Exception as exc:
            logger.debug("Reader for %s stopped: %s", self.name, exc)
        finally:
            self._fail_waiters(MCPConnectionError(f"MCP server '{self.name}' closed its output"))

    def _dispatch(self, response: JsonRpcResponse) -> None:
        if response.id is None:
            logger.debug("Dropping response without id from %s: %s", self.name, response.error)
            return

        waiter = self._waiters.pop(response.id, None)
        if waiter is not None:
            if not waiter.done():
                waiter.set_result(response)
            return

        if response.id in self._abandoned:
            self._abandoned.discard(response.id)
            logger.debug("Dropping late response %s from %s", response.id, self.name)
            return

        self._parked[response.id] = response

    async def _drain_stderr(self, stderr: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await stderr.read(4096)
                if not chunk:
                    break
                logger.debug("[%s stderr] %s", self.name, chunk.decode("utf-8", "replace").rstrip())
        except Exception as exc:
            logger.debug("stderr drain for %s stopped: %s", self.name, exc)

    def _fail_waiters(self, error: Exception) -> None:
        waiters = list(self._waiters.values())
        self._waiters.clear()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)
