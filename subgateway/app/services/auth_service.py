from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Union

import httpx
import pyotp

from ..clients.panel import read_json, send_with_retry
from ..core.errors import AuthenticationFailed, UpstreamProtocolError
from ..core.settings import Credentials, GatewayConfig

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/login"
TOTP_STEP_SEC = 30

Moment = Union[datetime, int, float, None]


@dataclass(frozen=True)
class Session:
    """Upstream session cookie. Owned by the request that logged in."""

    cookie: str

    def headers(self) -> Dict[str, str]:
        return {"Cookie": self.cookie, "Accept": "application/json"}


def current_totp(secret: str, at: Moment = None) -> str:
    totp = pyotp.TOTP(secret, interval=TOTP_STEP_SEC)
    if at is None:
        return totp.now()
    return totp.at(at)


def build_login_payload(credentials: Credentials, at: Moment = None) -> Dict[str, str]:
    payload = {"username": credentials.username, "password": credentials.password}
    if credentials.wants_totp:
        payload["twoFactorCode"] = current_totp(credentials.totp_secret, at)
    return payload


def _extract_cookie(response: httpx.Response) -> str:
    jar = "; ".join(f"{name}={value}" for name, value in response.cookies.items())
    if jar:
        return jar
    return str(response.headers.get("set-cookie") or "").strip()


async def login(client: httpx.AsyncClient, cfg: GatewayConfig, *, at: Moment = None) -> Session:
    payload = build_login_payload(cfg.credentials, at)
    r = await send_with_retry(
        client,
        "POST",
        cfg.panel_url(LOGIN_ENDPOINT),
        attempts=cfg.retry_attempts,
        data=payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    result = read_json(r)
    if not result.get("success"):
        msg = str(result.get("msg") or "").strip()
        logger.warning("upstream login rejected user=%s msg=%s", cfg.credentials.username, msg)
        raise AuthenticationFailed(msg)

    cookie = _extract_cookie(r)
    if not cookie:
        raise UpstreamProtocolError("Login succeeded but upstream sent no session cookie")
    return Session(cookie=cookie)
