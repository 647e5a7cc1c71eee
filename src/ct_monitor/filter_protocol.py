"""
Filter plugin protocol.

A filter plugin is an independently built executable that receives a batch
of issuances and returns the ones that should be reported, possibly
modified. The monitor spawns the executable, checks its handshake, makes a
single call, and kills it.

Wire protocol, over the child's standard streams:

1. The monitor sets ``CT_MONITOR_PLUGIN=issuance_filter`` in the child's
   environment. A plugin started without it refuses to run.
2. The plugin writes one handshake line to stdout:
   ``<protocol version>|<plugin key>|<format>``, i.e. ``1|issuance|jsonrpc``.
3. The monitor writes one JSON-RPC 2.0 request line to stdin, method
   ``Plugin.Filter``, params being the list of issuances in API wire shape.
4. The plugin writes one response line with either ``result`` (a list of
   issuances) or ``error`` (``{"code": int, "message": str}``).

Plugins must keep stdout for the protocol and log to stderr, which the
monitor inherits.
"""

import asyncio
import json
import os
import sys
from typing import Callable, Optional, Protocol, TextIO, runtime_checkable

from .exceptions import FilterChainError
from .models import Issuance

PROTOCOL_VERSION = 1
MAGIC_COOKIE_KEY = "CT_MONITOR_PLUGIN"
MAGIC_COOKIE_VALUE = "issuance_filter"
PLUGIN_KEY = "issuance"
WIRE_FORMAT = "jsonrpc"
FILTER_METHOD = "Plugin.Filter"
DEFAULT_START_TIMEOUT = 10.0

# Issuances carry base64 certificates; one response line can be large.
STREAM_LIMIT = 64 * 1024 * 1024

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
FILTER_FAILED = -32000


def handshake_line() -> str:
    return f"{PROTOCOL_VERSION}|{PLUGIN_KEY}|{WIRE_FORMAT}"


@runtime_checkable
class IssuanceFilter(Protocol):
    """Anything that can filter a batch of issuances."""

    async def filter(self, issuances: list[Issuance]) -> list[Issuance]:
        """
        Filter a batch.

        Raises:
            FilterChainError: If the filter could not produce a result
        """
        ...


class PluginFilter:
    """
    IssuanceFilter backed by a plugin executable.

    Each call spawns a fresh process, waits for its handshake within
    ``start_timeout`` seconds, performs one RPC and kills the process,
    on success and failure alike.
    """

    def __init__(
        self,
        path: str,
        start_timeout: float = DEFAULT_START_TIMEOUT,
        call_timeout: Optional[float] = None,
    ) -> None:
        self._path = str(path)
        self._start_timeout = start_timeout
        self._call_timeout = call_timeout

    @property
    def path(self) -> str:
        return self._path

    async def filter(self, issuances: list[Issuance]) -> list[Issuance]:
        process = await self._spawn()
        try:
            await self._handshake(process)
            return await self._call(process, issuances)
        finally:
            await self._terminate(process)

    async def _spawn(self) -> asyncio.subprocess.Process:
        env = dict(os.environ)
        env[MAGIC_COOKIE_KEY] = MAGIC_COOKIE_VALUE
        try:
            return await asyncio.create_subprocess_exec(
                self._path,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise self._error("spawn_failed", f"Failed to start filter plugin: {e}")

    async def _handshake(self, process: asyncio.subprocess.Process) -> None:
        try:
            raw = await asyncio.wait_for(
                process.stdout.readline(), timeout=self._start_timeout
            )
        except asyncio.TimeoutError:
            raise self._error(
                "handshake_timeout",
                f"Filter plugin did not complete its handshake within {self._start_timeout}s",
            )
        except (ValueError, asyncio.LimitOverrunError) as e:
            raise self._error("handshake_failed", f"Invalid handshake: {e}")

        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            raise self._error(
                "handshake_failed", "Filter plugin exited before completing its handshake"
            )

        parts = line.split("|")
        if len(parts) != 3:
            raise self._error("handshake_failed", f"Malformed handshake: {line!r}")

        version, key, wire_format = parts
        if version != str(PROTOCOL_VERSION):
            raise self._error(
                "handshake_failed",
                f"Incompatible protocol version: plugin {version}, monitor {PROTOCOL_VERSION}",
            )
        if key != PLUGIN_KEY:
            raise self._error("handshake_failed", f"Unknown plugin key: {key!r}")
        if wire_format != WIRE_FORMAT:
            raise self._error("handshake_failed", f"Unsupported wire format: {wire_format!r}")

    async def _call(
        self, process: asyncio.subprocess.Process, issuances: list[Issuance]
    ) -> list[Issuance]:
        request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": FILTER_METHOD,
            "params": [issuance.to_api() for issuance in issuances],
        }
        try:
            process.stdin.write((json.dumps(request) + "\n").encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise self._error("rpc_failed", f"Failed to send request to filter plugin: {e}")

        try:
            raw = await asyncio.wait_for(
                process.stdout.readline(), timeout=self._call_timeout
            )
        except asyncio.TimeoutError:
            raise self._error(
                "rpc_timeout", f"Filter plugin did not answer within {self._call_timeout}s"
            )
        except (ValueError, asyncio.LimitOverrunError) as e:
            raise self._error("rpc_failed", f"Invalid response from filter plugin: {e}")

        if not raw.strip():
            raise self._error("rpc_failed", "Filter plugin exited without answering")

        return self._parse_response(raw)

    def _parse_response(self, raw: bytes) -> list[Issuance]:
        try:
            response = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise self._error("rpc_failed", f"Unparseable response from filter plugin: {e}")

        if not isinstance(response, dict) or response.get("id") != 1:
            raise self._error("rpc_failed", "Response does not match the request")

        error = response.get("error")
        if error is not None:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise self._error(
                "plugin_error",
                f"Filter plugin returned an error: {message}",
                details={"rpc_error": error},
            )

        result = response.get("result")
        if not isinstance(result, list):
            raise self._error("rpc_failed", "Response result is not a list")

        try:
            return [Issuance.from_api(item) for item in result]
        except ValueError as e:
            raise self._error("rpc_failed", f"Malformed issuance in plugin response: {e}")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    def _error(
        self, code: str, message: str, details: Optional[dict] = None
    ) -> FilterChainError:
        return FilterChainError(
            code=code,
            message=message,
            filter_path=self._path,
            details=details,
        )


FilterFunc = Callable[[list[Issuance]], list[Issuance]]


def _rpc_error(request_id, code: int, message: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def handle_request(impl: FilterFunc, line: str) -> dict:
    """Decode one request line, run ``impl`` on it and build the response."""
    try:
        request = json.loads(line)
    except json.JSONDecodeError as e:
        return _rpc_error(None, PARSE_ERROR, f"parse error: {e}")

    if not isinstance(request, dict):
        return _rpc_error(None, INVALID_REQUEST, "request must be an object")

    request_id = request.get("id")
    if request.get("method") != FILTER_METHOD:
        return _rpc_error(request_id, METHOD_NOT_FOUND, f"unknown method {request.get('method')!r}")

    params = request.get("params")
    if not isinstance(params, list):
        return _rpc_error(request_id, INVALID_PARAMS, "params must be a list of issuances")

    try:
        issuances = [Issuance.from_api(item) for item in params]
    except ValueError as e:
        return _rpc_error(request_id, INVALID_PARAMS, str(e))

    try:
        result = impl(issuances)
    except Exception as e:
        return _rpc_error(request_id, FILTER_FAILED, str(e))

    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "result": [issuance.to_api() for issuance in result],
    }


def serve(
    impl: FilterFunc,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    environ: Optional[dict] = None,
) -> int:
    """
    Run a filter plugin: handshake, answer one request, return an exit code.

    Usage, in the plugin executable::

        def keep_first(issuances):
            return issuances[:1]

        if __name__ == "__main__":
            sys.exit(serve(keep_first))
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    environ = os.environ if environ is None else environ

    if environ.get(MAGIC_COOKIE_KEY) != MAGIC_COOKIE_VALUE:
        sys.stderr.write(
            "This binary is a ct-monitor filter plugin. "
            "It is not meant to be executed directly.\n"
        )
        return 1

    stdout.write(handshake_line() + "\n")
    stdout.flush()

    line = stdin.readline()
    if not line.strip():
        return 0

    stdout.write(json.dumps(handle_request(impl, line)) + "\n")
    stdout.flush()
    return 0
