"""
Script-mode sources.

The user script runs in a child process (see ``sitefeed.script_worker``).
This side starts the worker, answers its fetch requests with the source's
credentials applied, collects its log lines and enforces the time budget.
"""

import asyncio
import json
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import httpx

from ..auth import AuthInjector
from ..config import Settings, get_settings
from ..errors import ScriptRuntimeError, ScriptTimeoutError, SourceConfigError
from ..logging_conf import get_logger
from ..models import SourceConfig
from .base import ContentSource, RawFeed

logger = get_logger(__name__)

WORKER_MODULE = "sitefeed.script_worker"
MAX_MESSAGE_BYTES = 16 * 1024 * 1024
# Directory holding the sitefeed package, so the worker imports this copy
PACKAGE_ROOT = str(Path(__file__).resolve().parents[2])
STDERR_TAIL_CHARS = 2000

ENVELOPE_FIELDS = ("title", "description", "link", "language", "image")


@dataclass
class ScriptResult:
    """Outcome of one script run."""
    value: Any
    logs: list[str] = field(default_factory=list)
    duration_ms: int = 0


def split_result(value: Any, source_id: Optional[str] = None) -> tuple[dict, list]:
    """
    Split a script return value into envelope metadata and raw items.

    Accepts a bare list of items or a dict with an ``items`` list.

    Raises:
        ScriptRuntimeError: The value has neither shape
    """
    if isinstance(value, list):
        return {}, value
    if isinstance(value, dict) and isinstance(value.get("items"), list):
        meta = {k: value[k] for k in ENVELOPE_FIELDS if isinstance(value.get(k), str)}
        return meta, value["items"]
    raise ScriptRuntimeError(
        f"script must return a list of items or an object with an 'items' list, "
        f"got {type(value).__name__}",
        source_id=source_id,
    )


def worker_env() -> dict[str, str]:
    env = dict(os.environ)
    paths = [PACKAGE_ROOT] + [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
    env["PYTHONPATH"] = os.pathsep.join(paths)
    env["PYTHONIOENCODING"] = "utf-8"
    return env


class ScriptRunner:
    """
    Runs source scripts in isolated worker processes.

    Args:
        settings: Settings (defaults to the cached application settings)
        transport: Optional httpx transport for script fetches (used by tests)
        max_message_bytes: Longest protocol line accepted from the worker
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.max_message_bytes = max_message_bytes

    async def run(
        self,
        source: SourceConfig,
        route_params: Optional[dict[str, str]] = None,
    ) -> ScriptResult:
        """
        Execute the source's script and return its raw value.

        Raises:
            ScriptTimeoutError: The run exceeded its budget; the worker is killed
            ScriptRuntimeError: The script raised or the worker died
        """
        if source.script is None or not source.script.enabled:
            raise SourceConfigError("script is missing or disabled", source_id=source.id)

        timeout_ms = source.script.timeout_ms or self.settings.script_timeout_ms
        injector = AuthInjector(source.auth, source.id)
        logs: list[str] = []
        started = time.monotonic()

        proc = await asyncio.create_subprocess_exec(
            sys.executable, "-m", WORKER_MODULE,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=self.max_message_bytes,
            env=worker_env(),
        )
        stderr_task = asyncio.create_task(self._drain(proc.stderr))
        logger.debug("script_started", source=source.id, pid=proc.pid, timeout_ms=timeout_ms)

        try:
            value = await asyncio.wait_for(
                self._converse(proc, source, injector, route_params, logs, stderr_task),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning("script_timeout", source=source.id, timeout_ms=timeout_ms)
            raise ScriptTimeoutError(
                f"script exceeded {timeout_ms}ms and was terminated",
                source_id=source.id,
            ) from None
        finally:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info("script_complete", source=source.id, duration_ms=duration_ms, logs=len(logs))
        return ScriptResult(value=value, logs=logs, duration_ms=duration_ms)

    async def _converse(
        self,
        proc: asyncio.subprocess.Process,
        source: SourceConfig,
        injector: AuthInjector,
        route_params: Optional[dict[str, str]],
        logs: list[str],
        stderr_task: asyncio.Task,
    ) -> Any:
        script_headers: dict[str, str] = {}
        injector.apply(script_headers)

        await self._send(proc, {
            "type": "start",
            "script": source.script.script,
            "url": source.url,
            "routeParams": route_params or {},
            "auth": {
                "type": source.auth.auth_type.value if injector.active else "none",
                "headers": script_headers,
            },
        })

        async with httpx.AsyncClient(
            timeout=self.settings.script_fetch_timeout,
            follow_redirects=True,
            headers={"User-Agent": self.settings.user_agent},
            transport=self.transport,
        ) as client:
            injector.apply_to_client(client, source.url)

            while True:
                try:
                    line = await proc.stdout.readline()
                except ValueError as e:
                    raise ScriptRuntimeError(
                        f"script worker message exceeds {self.max_message_bytes} bytes",
                        source_id=source.id,
                    ) from e
                if not line:
                    await proc.wait()
                    stderr = await stderr_task
                    raise ScriptRuntimeError(
                        f"script worker exited with code {proc.returncode}",
                        source_id=source.id,
                        script_traceback=stderr[-STDERR_TAIL_CHARS:] or None,
                    )

                try:
                    message = json.loads(line)
                except ValueError as e:
                    raise ScriptRuntimeError(
                        f"malformed message from script worker: {e}", source_id=source.id
                    ) from e

                kind = message.get("type")
                if kind == "log":
                    text = str(message.get("message", ""))
                    logs.append(text)
                    logger.info("script_log", source=source.id, script_level=message.get("level"), message=text)
                elif kind == "fetch":
                    await self._send(proc, await self._fetch(client, source, message))
                elif kind == "result":
                    return message.get("value")
                elif kind == "error":
                    logger.warning("script_error", source=source.id, error=message.get("message"))
                    raise ScriptRuntimeError(
                        message.get("message") or "script failed",
                        source_id=source.id,
                        script_traceback=message.get("traceback"),
                    )
                else:
                    logger.warning("script_unknown_message", source=source.id, type=kind)

    async def _fetch(self, client: httpx.AsyncClient, source: SourceConfig, message: dict) -> dict:
        request_id = message.get("id")
        url = message.get("url", "")
        options = message.get("options") or {}
        timeout = options.get("timeout") or self.settings.script_fetch_timeout

        try:
            response = await client.request(
                (options.get("method") or "GET").upper(),
                url,
                headers=options.get("headers"),
                params=options.get("params"),
                data=options.get("data"),
                json=options.get("json"),
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("script_fetch_failed", source=source.id, url=url, error=str(e))
            return {"type": "fetch_error", "id": request_id, "message": f"{type(e).__name__}: {e}"}

        try:
            body_json = response.json()
        except ValueError:
            body_json = None

        logger.debug("script_fetch", source=source.id, url=url, status=response.status_code)
        return {
            "type": "fetch_result",
            "id": request_id,
            "response": {
                "status": response.status_code,
                "ok": response.is_success,
                "headers": dict(response.headers),
                "text": response.text,
                "json": body_json,
            },
        }

    @staticmethod
    async def _send(proc: asyncio.subprocess.Process, message: dict) -> None:
        try:
            proc.stdin.write((json.dumps(message, ensure_ascii=False, default=str) + "\n").encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ScriptRuntimeError(f"script worker is gone: {e}") from e

    @staticmethod
    async def _drain(stream: asyncio.StreamReader) -> str:
        chunks = []
        while True:
            chunk = await stream.read(65536)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks).decode("utf-8", errors="replace")


class ScriptSource(ContentSource):
    """Source whose items come from a user script."""

    def __init__(
        self,
        config: SourceConfig,
        settings: Settings,
        runner: Optional[ScriptRunner] = None,
        **kwargs,
    ):
        super().__init__(config, settings, **kwargs)
        self.runner = runner or ScriptRunner(settings, transport=self.transport)

    async def fetch(self, route_params: Optional[dict[str, str]] = None) -> RawFeed:
        result = await self.runner.run(self.config, route_params)
        meta, items = split_result(result.value, self.config.id)

        logger.info("script_items", source=self.config.id, items=len(items))
        return RawFeed(
            candidates=items,
            numbered=True,
            logs=result.logs,
            **meta,
        )
