"""
Worker process for script-mode sources.

Run as ``python -m sitefeed.script_worker``. The host writes one ``start``
message to stdin, the worker executes the script's ``main(ctx)`` and talks
back over JSON lines on stdout:

    worker -> host   {"type": "fetch", "id": 1, "url": ..., "options": {...}}
    host -> worker   {"type": "fetch_result", "id": 1, "response": {...}}
                     {"type": "fetch_error", "id": 1, "message": ...}
    worker -> host   {"type": "log", "level": "info", "message": ...}
    worker -> host   {"type": "result", "value": ...}
                     {"type": "error", "message": ..., "traceback": ...}

Anything the script prints goes to stderr so it cannot corrupt the channel.
The host owns the time budget and kills this process when it runs out.
"""

import asyncio
import inspect
import json
import sys
import traceback
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Optional, TextIO

SCRIPT_FILENAME = "<source-script>"


class ScriptFetchError(RuntimeError):
    """Raised inside a script when the host could not perform a fetch."""


class Channel:
    """Line-delimited JSON over a pair of text streams."""

    def __init__(self, reader: TextIO, writer: TextIO):
        self.reader = reader
        self.writer = writer

    def send(self, message: dict) -> None:
        self.writer.write(json.dumps(message, ensure_ascii=False, default=str) + "\n")
        self.writer.flush()

    def receive(self) -> dict:
        line = self.reader.readline()
        if not line:
            raise EOFError("host closed the channel")
        return json.loads(line)


class ScriptAuth:
    """Read-only view of the source credentials, as request headers."""

    __slots__ = ("type", "_headers")

    def __init__(self, auth_type: str, headers: dict[str, str]):
        self.type = auth_type
        self._headers = dict(headers)

    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def __repr__(self) -> str:
        return f"ScriptAuth(type={self.type!r})"


class ScriptContext:
    """
    The capabilities handed to ``main(ctx)``.

    The attribute set is fixed; anything else raises AttributeError.
    """

    __slots__ = ("url", "route_params", "auth", "_channel", "_next_id")

    def __init__(
        self,
        channel: Channel,
        url: str,
        route_params: Optional[dict[str, str]] = None,
        auth: Optional[ScriptAuth] = None,
    ):
        self._channel = channel
        self._next_id = 0
        self.url = url
        self.route_params = MappingProxyType(dict(route_params or {}))
        self.auth = auth or ScriptAuth("none", {})

    def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, Any]] = None,
        data: Any = None,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """
        Perform an HTTP request through the host.

        Source credentials are added by the host. Returns a dict with
        ``status``, ``ok``, ``headers``, ``text`` and ``json`` (None when the
        body is not JSON).

        Raises:
            ScriptFetchError: The request could not be performed
        """
        self._next_id += 1
        request_id = self._next_id
        self._channel.send({
            "type": "fetch",
            "id": request_id,
            "url": url,
            "options": {
                "method": method,
                "headers": headers,
                "params": params,
                "data": data,
                "json": json,
                "timeout": timeout,
            },
        })

        reply = self._channel.receive()
        if reply.get("id") != request_id:
            raise ScriptFetchError(f"out-of-order reply for request {request_id}")
        if reply.get("type") == "fetch_error":
            raise ScriptFetchError(reply.get("message", "fetch failed"))
        return reply["response"]

    def log(self, *args: Any, level: str = "info") -> None:
        """Send a debug line to the host log."""
        message = " ".join(a if isinstance(a, str) else _to_log_text(a) for a in args)
        self._channel.send({"type": "log", "level": level, "message": message})

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"ScriptContext(url={self.url!r})"


def _to_log_text(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(value)


def load_main(source: str):
    """Execute script source and return its ``main`` callable."""
    namespace = {"__name__": "sitefeed_script"}
    code = compile(source, SCRIPT_FILENAME, "exec")
    exec(code, namespace)
    main = namespace.get("main")
    if not callable(main):
        raise TypeError("script must define a callable main(ctx)")
    return main


def call_main(main, ctx: ScriptContext) -> Any:
    """Call ``main`` and drive it to completion if it is a coroutine."""
    result = main(ctx)
    if inspect.isawaitable(result):
        result = asyncio.run(_await(result))
    return result


async def _await(awaitable):
    return await awaitable


def run(channel: Channel) -> int:
    """Serve one script execution. Returns the process exit code."""
    start = channel.receive()
    if start.get("type") != "start":
        channel.send({"type": "error", "message": f"expected start message, got {start.get('type')!r}"})
        return 2

    auth = start.get("auth") or {}
    ctx = ScriptContext(
        channel,
        url=start.get("url", ""),
        route_params=start.get("routeParams"),
        auth=ScriptAuth(auth.get("type", "none"), auth.get("headers") or {}),
    )

    try:
        main = load_main(start.get("script", ""))
        value = call_main(main, ctx)
        # Fail here rather than in the host if the value cannot cross the channel
        payload = json.dumps({"type": "result", "value": value}, ensure_ascii=False, default=str)
    except Exception as e:
        channel.send({
            "type": "error",
            "message": f"{type(e).__name__}: {e}",
            "traceback": traceback.format_exc(),
        })
        return 1

    channel.writer.write(payload + "\n")
    channel.writer.flush()
    return 0


def main() -> int:
    protocol_out = sys.stdout
    sys.stdout = sys.stderr
    return run(Channel(sys.stdin, protocol_out))


if __name__ == "__main__":
    sys.exit(main())
