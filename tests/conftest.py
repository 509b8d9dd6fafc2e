import base64
import json
from typing import Any, Dict, List, Optional, Set
from urllib.parse import unquote

import httpx
import pytest

from app.core.settings import Credentials, GatewayConfig

PANEL = "https://panel.test:2053/secret"
CONTENT = "https://sub.test:2096/sub/"


def make_inbound(inbound_id: int, remark: str, clients: List[Dict[str, Any]], *, raw_settings: Optional[str] = None):
    settings = raw_settings if raw_settings is not None else json.dumps({"clients": clients})
    return {"id": inbound_id, "remark": remark, "protocol": "vless", "settings": settings}


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class FakePanel:
    """Routes httpx requests to canned 3x-ui answers and records every call."""

    def __init__(self, inbounds=None, traffic=None):
        self.inbounds: List[Dict[str, Any]] = list(inbounds or [])
        self.traffic: Dict[str, Dict[str, Any]] = dict(traffic or {})
        self.failing_emails: Set[str] = set()
        # paths answered 200 with a body that fails gzip decoding
        self.garbled_paths: Set[str] = set()
        self.listing_result: Optional[Dict[str, Any]] = None
        self.login_result: Dict[str, Any] = {"success": True, "msg": "Login Successfully"}
        self.login_status = 200
        self.set_cookie: Optional[str] = "3x-ui=session-token; Path=/; HttpOnly"
        self.content: Dict[str, str] = {}
        self.calls: List[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def paths(self, fragment: str = "") -> List[str]:
        return [unquote(r.url.path) for r in self.calls if fragment in unquote(r.url.path)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = str(request.url)
        path = unquote(request.url.path)

        if path in self.garbled_paths:
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not-gzip")

        if url.startswith(CONTENT):
            sub_id = path.rsplit("/", 1)[-1]
            if sub_id not in self.content:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, text=self.content[sub_id])

        if path == "/secret/login" and request.method == "POST":
            headers = {"set-cookie": self.set_cookie} if self.set_cookie else {}
            return httpx.Response(self.login_status, json=self.login_result, headers=headers)

        if path == "/secret/panel/api/inbounds/list":
            if "3x-ui=session-token" not in request.headers.get("cookie", ""):
                return httpx.Response(401, text="unauthorized")
            body = self.listing_result or {"success": True, "msg": "", "obj": self.inbounds}
            return httpx.Response(200, json=body)

        prefix = "/secret/panel/api/inbounds/getClientTraffics/"
        if path.startswith(prefix):
            email = path[len(prefix):]
            if email in self.failing_emails:
                return httpx.Response(502, text="bad gateway")
            obj = self.traffic.get(email)
            return httpx.Response(200, json={"success": obj is not None, "msg": "", "obj": obj})

        return httpx.Response(404, text="no route")


@pytest.fixture
def cfg():
    return GatewayConfig(
        protocol="https",
        host="panel.test",
        port=2053,
        base_path="secret",
        credentials=Credentials(username="admin", password="pw"),
        subscription_url=CONTENT,
        retry_attempts=3,
        request_timeout=5,
        request_deadline=5,
    )


@pytest.fixture
def two_inbound_panel():
    """Subscription u1 spread over two inbounds, plus an unrelated u2 client."""
    panel = FakePanel(
        inbounds=[
            make_inbound(1, "Germany", [{"id": "uuid-a", "email": "u1-de", "subId": "u1"}]),
            make_inbound(2, "Finland", [
                {"id": "uuid-b", "email": "u1-fi", "subId": "u1"},
                {"id": "uuid-c", "email": "other", "subId": "u2"},
            ]),
        ],
        traffic={
            "u1-de": {"up": 100, "down": 200, "total": 1000, "expiryTime": 1767225600000, "enable": True},
            "u1-fi": {"up": 50, "down": 50, "total": 1000, "expiryTime": 1767225600000, "enable": True},
            "other": {"up": 1, "down": 1, "total": 0, "expiryTime": 0, "enable": True},
        },
    )
    panel.content["u1"] = b64("vless://uuid-a@de.example:443#DE\nvless://uuid-b@fi.example:443#FI")
    return panel
