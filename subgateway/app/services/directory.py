from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Union

import httpx

from ..clients.panel import read_json, send_with_retry
from ..core.errors import UpstreamDataMalformed, UpstreamProtocolError
from ..core.settings import GatewayConfig
from ..models import Client, Inbound
from .auth_service import Session

logger = logging.getLogger(__name__)

INBOUNDS_LIST_ENDPOINT = "/panel/api/inbounds/list"


def _client_key(raw: Dict[str, Any]) -> str:
    # vless/vmess carry a uuid in "id", trojan a "password", shadowsocks only email.
    for field in ("id", "password", "email"):
        v = str(raw.get(field) or "").strip()
        if v:
            return v
    return ""


def _parse_client(raw: Dict[str, Any]) -> Client:
    return Client(
        email=str(raw.get("email") or "").strip(),
        sub_id=str(raw.get("subId") or "").strip(),
        client_id=_client_key(raw),
        enable=bool(raw.get("enable", True)),
    )


def _decode_settings(settings: Any) -> Union[Dict[str, Any], str]:
    """Return the settings dict, or a reason string when it cannot be decoded."""
    if isinstance(settings, dict):
        return settings
    if settings is None or (isinstance(settings, str) and not settings.strip()):
        return {}
    if not isinstance(settings, str):
        return f"settings has unexpected type {type(settings).__name__}"
    try:
        data = json.loads(settings)
    except ValueError as exc:
        return f"settings is not valid JSON: {exc}"
    if not isinstance(data, dict):
        return f"settings decodes to {type(data).__name__}, expected object"
    return data


def parse_inbound(raw: Any) -> Union[Inbound, UpstreamDataMalformed]:
    """Decode one entry of the inbound listing.

    Never raises for bad upstream data: the failure comes back as an
    :class:`UpstreamDataMalformed` value so the caller can skip it.
    """
    if not isinstance(raw, dict):
        return UpstreamDataMalformed(0, "", f"inbound entry is {type(raw).__name__}, expected object")

    try:
        inbound_id = int(raw.get("id") or 0)
    except (TypeError, ValueError):
        return UpstreamDataMalformed(0, str(raw.get("remark") or ""), f"invalid inbound id {raw.get('id')!r}")
    remark = str(raw.get("remark") or "")

    settings = _decode_settings(raw.get("settings"))
    if isinstance(settings, str):
        return UpstreamDataMalformed(inbound_id, remark, settings)

    clients_raw = settings.get("clients")
    if clients_raw is None:
        clients_raw = []
    if not isinstance(clients_raw, list):
        return UpstreamDataMalformed(inbound_id, remark, "settings.clients is not a list")

    return Inbound(
        id=inbound_id,
        remark=remark,
        protocol=str(raw.get("protocol") or ""),
        clients=[_parse_client(c) for c in clients_raw if isinstance(c, dict)],
    )


def parse_inbound_list(items: List[Any]) -> List[Inbound]:
    inbounds: List[Inbound] = []
    for raw in items:
        parsed = parse_inbound(raw)
        if isinstance(parsed, UpstreamDataMalformed):
            logger.warning(
                "skipping malformed inbound id=%s remark=%s reason=%s",
                parsed.inbound_id,
                parsed.remark,
                parsed.reason,
            )
            continue
        inbounds.append(parsed)
    return inbounds


async def fetch_inbounds(client: httpx.AsyncClient, cfg: GatewayConfig, session: Session) -> List[Inbound]:
    r = await send_with_retry(
        client,
        "GET",
        cfg.panel_url(INBOUNDS_LIST_ENDPOINT),
        attempts=cfg.retry_attempts,
        headers=session.headers(),
    )
    body = read_json(r)
    if body.get("success") is False:
        raise UpstreamProtocolError(f"Inbound listing refused: {body.get('msg') or 'success=false'}")
    items = body.get("obj")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise UpstreamProtocolError("Inbound listing has no 'obj' list")

    inbounds = parse_inbound_list(items)
    logger.debug("inbound directory loaded total=%d usable=%d", len(items), len(inbounds))
    return inbounds
