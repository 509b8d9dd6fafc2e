import asyncio

import httpx
import pytest

from app.clients.panel import open_panel_client, read_json, send_with_retry
from app.core.errors import TransportFailure, UpstreamProtocolError


def _run(coro):
    return asyncio.run(coro)


class Script:
    """Replays a list of outcomes: an int status, a dict body (200) or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.count = 0

    def __call__(self, request):
        self.count += 1
        outcome = self.outcomes.pop(0) if self.outcomes else 500
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, dict):
            return httpx.Response(200, json=outcome)
        return httpx.Response(outcome, text="x")


async def _send(script, attempts=3):
    async with httpx.AsyncClient(transport=httpx.MockTransport(script)) as client:
        return await send_with_retry(client, "GET", "http://panel.test/x", attempts=attempts)


def test_first_success_is_returned():
    script = Script({"ok": 1})
    r = _run(_send(script))
    assert r.json() == {"ok": 1}
    assert script.count == 1


def test_recovers_after_transient_failures():
    script = Script(httpx.ConnectError("boom"), 503, {"ok": 2})
    r = _run(_send(script))
    assert r.json() == {"ok": 2}
    assert script.count == 3


def test_gives_up_after_budget():
    script = Script(500, 500, 500, {"never": True})
    with pytest.raises(TransportFailure) as exc:
        _run(_send(script))
    assert script.count == 3
    assert exc.value.attempts == 3
    assert exc.value.status == 500


def test_transport_error_on_last_attempt_is_reported():
    script = Script(500, httpx.ReadTimeout("slow"))
    with pytest.raises(TransportFailure) as exc:
        _run(_send(script, attempts=2))
    assert exc.value.status is None
    assert "ReadTimeout" in exc.value.reason


def test_application_failure_is_not_retried():
    script = Script({"success": False, "msg": "wrong password"}, {"success": True})
    r = _run(_send(script))
    assert r.json()["success"] is False
    assert script.count == 1


def test_read_json_rejects_non_objects():
    req = httpx.Request("GET", "http://panel.test/x")
    with pytest.raises(UpstreamProtocolError):
        read_json(httpx.Response(200, text="<html>", request=req))
    with pytest.raises(UpstreamProtocolError):
        read_json(httpx.Response(200, json=[1, 2], request=req))
    assert read_json(httpx.Response(200, json={"a": 1}, request=req)) == {"a": 1}


def test_open_panel_client_uses_given_transport(cfg):
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json={})

    async def go():
        async with open_panel_client(cfg, transport=httpx.MockTransport(handler)) as client:
            await client.get(cfg.panel_url("/ping"))
        return client

    client = _run(go())
    assert seen == ["https://panel.test:2053/secret/ping"]
    assert client.is_closed
