from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..clients.panel import open_panel_client, send_with_retry
from ..core.errors import UpstreamProtocolError
from ..core.settings import GatewayConfig
from ..models import AggregatedTraffic

logger = logging.getLogger(__name__)

BROWSER_KEYWORDS = ("Mozilla", "Chrome", "Safari", "Edge", "Opera", "Firefox", "Trident", "WebKit")

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def is_browser_request(user_agent: Optional[str]) -> bool:
    ua = str(user_agent or "")
    return any(keyword in ua for keyword in BROWSER_KEYWORDS)


def decode_subscription_payload(raw: str) -> str:
    """Lenient base64 decode: whitespace, url-safe alphabet and missing padding are tolerated."""
    s = "".join(str(raw or "").split())
    if not s:
        return ""
    s = s.replace("-", "+").replace("_", "/")
    s += "=" * (-len(s) % 4)
    try:
        data = base64.b64decode(s)
    except (binascii.Error, ValueError) as exc:
        raise UpstreamProtocolError(f"Subscription content is not valid base64: {exc}") from None
    return data.decode("utf-8", errors="replace")


def encode_subscription_payload(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def compose_subscription_payload(raw_b64: str, backup_link: str = "") -> str:
    """Prepend the operator's backup link line to the decoded content and re-encode."""
    text = decode_subscription_payload(raw_b64)
    combined = "\n".join(part for part in (backup_link or "", text) if part)
    return encode_subscription_payload(combined)


async def fetch_subscription_content(
    cfg: GatewayConfig,
    sub_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    url = cfg.subscription_content_url(sub_id)
    async with open_panel_client(cfg, transport=transport, verify=cfg.content_verify_tls) as client:
        r = await send_with_retry(client, "GET", url, attempts=1)
        return r.text


def format_bytes(num: Any) -> str:
    try:
        value = float(num)
    except (TypeError, ValueError):
        return "0 B"
    sign = "-" if value < 0 else ""
    value = abs(value)
    unit = _BYTE_UNITS[0]
    for unit in _BYTE_UNITS:
        if value < 1024 or unit == _BYTE_UNITS[-1]:
            break
        value /= 1024.0
    if unit == "B":
        return f"{sign}{int(value)} B"
    return f"{sign}{value:.2f} {unit}"


def format_expiry(expiry_ms: Any) -> str:
    try:
        ms = int(expiry_ms or 0)
    except (TypeError, ValueError):
        ms = 0
    if ms <= 0:
        return "∞"
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d")


def build_page_context(
    cfg: GatewayConfig,
    aggregate: AggregatedTraffic,
    raw_payload: str,
    page_url: str,
) -> Dict[str, Any]:
    data: Dict[str, Any] = aggregate.to_api()
    data.update(
        {
            "expiryDate": format_expiry(aggregate.expiry_time),
            "totalUpText": format_bytes(aggregate.total_up),
            "totalDownText": format_bytes(aggregate.total_down),
            "totalUsedText": format_bytes(aggregate.total_used),
            "totalLimitText": format_bytes(aggregate.total_limit) if aggregate.total_limit > 0 else "∞",
            "remainingText": format_bytes(aggregate.remaining) if aggregate.total_limit > 0 else "∞",
            "suburl": page_url,
            "suburl_content": raw_payload,
            "backup_link": cfg.backup_link,
            "telegram_url": cfg.telegram_url,
            "whatsapp_url": cfg.whatsapp_url,
            "lang": cfg.default_lang,
        }
    )
    return {"data": data}
