from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Sequence
from urllib.parse import quote

import httpx

from ..clients.panel import read_json, send_with_retry
from ..core.errors import GatewayError, NoTrafficData, PerClientCollectionFailed
from ..core.settings import GatewayConfig
from ..models import ClientMatch, TrafficRecord
from ..utils.redact import mask_identifier
from .auth_service import Session

logger = logging.getLogger(__name__)

CLIENT_TRAFFIC_ENDPOINT = "/panel/api/inbounds/getClientTraffics/{email}"


def _as_int(obj: dict, key: str) -> int:
    raw: Any = obj.get(key)
    if raw is None or raw == "":
        return 0
    return int(raw)


def parse_traffic(obj: Any, match: ClientMatch) -> TrafficRecord:
    if not isinstance(obj, dict):
        raise PerClientCollectionFailed(match.client.email, match.inbound_id, "traffic payload has no 'obj' object")
    try:
        return TrafficRecord(
            up=_as_int(obj, "up"),
            down=_as_int(obj, "down"),
            total=_as_int(obj, "total"),
            expiry_time=_as_int(obj, "expiryTime"),
            enable=bool(obj.get("enable", True)),
            email=match.client.email,
            inbound_id=match.inbound_id,
            inbound_remark=match.inbound_remark,
            client_id=match.client.client_id,
        )
    except (TypeError, ValueError) as exc:
        raise PerClientCollectionFailed(match.client.email, match.inbound_id, f"bad counter value: {exc}") from None


async def fetch_client_traffic(
    client: httpx.AsyncClient,
    cfg: GatewayConfig,
    session: Session,
    match: ClientMatch,
) -> TrafficRecord:
    email = match.client.email
    if not email:
        raise PerClientCollectionFailed(email, match.inbound_id, "client has no email")
    path = CLIENT_TRAFFIC_ENDPOINT.format(email=quote(email, safe=""))
    r = await send_with_retry(
        client,
        "GET",
        cfg.panel_url(path),
        attempts=cfg.retry_attempts,
        headers=session.headers(),
    )
    return parse_traffic(read_json(r).get("obj"), match)


async def collect_traffic(
    client: httpx.AsyncClient,
    cfg: GatewayConfig,
    session: Session,
    matches: Sequence[ClientMatch],
    sub_id: str = "",
) -> List[TrafficRecord]:
    """Look every match up concurrently; drop the ones that fail.

    Records come back in match order regardless of completion order.
    """
    results = await asyncio.gather(
        *(fetch_client_traffic(client, cfg, session, m) for m in matches),
        return_exceptions=True,
    )

    records: List[TrafficRecord] = []
    for match, res in zip(matches, results):
        if isinstance(res, TrafficRecord):
            records.append(res)
            continue
        if isinstance(res, GatewayError):
            logger.warning(
                "dropping client from aggregate email=%s inbound=%s reason=%s",
                mask_identifier(match.client.email),
                match.inbound_id,
                res,
            )
            continue
        # Anything else is a bug, not an upstream hiccup.
        raise res

    if not records:
        raise NoTrafficData(sub_id, len(matches))
    return records
