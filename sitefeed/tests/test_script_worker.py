"""
Tests for the script worker's side of the JSON-lines protocol.

The worker is driven in-process over in-memory streams.
"""

import io
import json

import pytest

from sitefeed.errors import ScriptRuntimeError
from sitefeed.script_worker import Channel, ScriptAuth, ScriptContext, run
from sitefeed.sources.script import split_result


def drive(script: str, replies: list[dict] = (), **start) -> list[dict]:
    """Run the worker against a scripted host and return what it sent."""
    start_message = {"type": "start", "script": script, "url": "https://x.example/", **start}
    lines = [json.dumps(start_message)] + [json.dumps(r) for r in replies]
    reader = io.StringIO("\n".join(lines) + "\n")
    writer = io.StringIO()

    run(Channel(reader, writer))

    return [json.loads(line) for line in writer.getvalue().splitlines()]


class TestWorkerProtocol:
    """Tests for messages sent by the worker."""

    def test_result_message(self):
        sent = drive("def main(ctx):\n    return [{'title': ctx.url}]\n")

        assert sent == [{"type": "result", "value": [{"title": "https://x.example/"}]}]

    def test_log_then_result(self):
        sent = drive("def main(ctx):\n    ctx.log('hello', {'n': 1}, level='debug')\n    return []\n")

        assert sent[0] == {"type": "log", "level": "debug", "message": 'hello {"n": 1}'}
        assert sent[1]["type"] == "result"

    def test_fetch_round_trip(self):
        script = (
            "def main(ctx):\n"
            "    r = ctx.fetch('https://api.example/', method='POST', json={'q': 1})\n"
            "    return [{'title': r['text']}]\n"
        )
        reply = {
            "type": "fetch_result",
            "id": 1,
            "response": {"status": 200, "ok": True, "headers": {}, "text": "pong", "json": None},
        }

        sent = drive(script, [reply])

        assert sent[0]["type"] == "fetch"
        assert sent[0]["options"]["method"] == "POST"
        assert sent[0]["options"]["json"] == {"q": 1}
        assert sent[1] == {"type": "result", "value": [{"title": "pong"}]}

    def test_fetch_error_raises_in_script(self):
        script = (
            "def main(ctx):\n"
            "    ctx.fetch('https://down.example/')\n"
        )

        sent = drive(script, [{"type": "fetch_error", "id": 1, "message": "ConnectError: refused"}])

        assert sent[-1]["type"] == "error"
        assert "ConnectError: refused" in sent[-1]["message"]

    def test_exception_reported_with_traceback(self):
        sent = drive("def main(ctx):\n    1 / 0\n")

        assert sent[0]["type"] == "error"
        assert sent[0]["message"].startswith("ZeroDivisionError")
        assert "<source-script>" in sent[0]["traceback"]

    def test_datetimes_serialized(self):
        sent = drive("def main(ctx):\n    return [{'pubDate': ctx.now()}]\n")

        assert isinstance(sent[0]["value"][0]["pubDate"], str)

    def test_route_params_and_auth(self):
        script = (
            "def main(ctx):\n"
            "    return [{'title': ctx.route_params['id'], 'author': ctx.auth.headers()['Authorization']}]\n"
        )

        sent = drive(
            script,
            routeParams={"id": "42"},
            auth={"type": "bearer", "headers": {"Authorization": "Bearer t"}},
        )

        assert sent[0]["value"] == [{"title": "42", "author": "Bearer t"}]


class TestScriptContext:
    """Tests for the fixed capability object."""

    def test_route_params_read_only(self):
        ctx = ScriptContext(Channel(io.StringIO(), io.StringIO()), "https://x", {"a": "1"})

        with pytest.raises(TypeError):
            ctx.route_params["a"] = "2"

    def test_no_extra_attributes(self):
        ctx = ScriptContext(Channel(io.StringIO(), io.StringIO()), "https://x")

        with pytest.raises(AttributeError):
            ctx.shell = "rm -rf /"

    def test_auth_headers_are_copies(self):
        auth = ScriptAuth("bearer", {"Authorization": "Bearer t"})

        auth.headers()["Authorization"] = "changed"

        assert auth.headers() == {"Authorization": "Bearer t"}


class TestSplitResult:
    """Tests for interpreting script return values."""

    def test_bare_list(self):
        assert split_result([{"title": "a"}]) == ({}, [{"title": "a"}])

    def test_envelope(self):
        meta, items = split_result({"title": "T", "language": "en", "items": [], "extra": 1})

        assert meta == {"title": "T", "language": "en"}
        assert items == []

    @pytest.mark.parametrize("value", [None, 42, "text", {"items": "nope"}])
    def test_invalid_shapes(self, value):
        with pytest.raises(ScriptRuntimeError):
            split_result(value, "s1")
