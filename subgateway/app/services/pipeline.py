from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, List, Optional, TypeVar

import httpx

from ..clients.panel import open_panel_client
from ..core.errors import DeadlineExceeded
from ..core.settings import GatewayConfig
from ..models import AggregatedTraffic, ClientMatch
from ..utils.redact import mask_identifier
from .aggregate import aggregate_traffic
from .auth_service import login
from .delivery import fetch_subscription_content
from .directory import fetch_inbounds
from .matcher import list_subscription_ids, require_matches
from .traffic import collect_traffic

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SubscriptionReport:
    sub_id: str
    matches: List[ClientMatch]
    aggregate: AggregatedTraffic


@dataclass(frozen=True)
class SubscriptionResponse:
    report: SubscriptionReport
    raw_payload: str


async def with_deadline(cfg: GatewayConfig, aw: Awaitable[T]) -> T:
    seconds = float(cfg.request_deadline or 0)
    if seconds <= 0:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=seconds)
    except asyncio.TimeoutError:
        raise DeadlineExceeded(seconds) from None


async def aggregate_subscription(
    client: httpx.AsyncClient,
    cfg: GatewayConfig,
    sub_id: str,
) -> SubscriptionReport:
    session = await login(client, cfg)
    inbounds = await fetch_inbounds(client, cfg, session)
    matches = require_matches(inbounds, sub_id)
    records = await collect_traffic(client, cfg, session, matches, sub_id=sub_id)
    aggregate = aggregate_traffic(records)
    logger.info(
        "subscription aggregated sub=%s matches=%d records=%d used=%d limit=%d",
        mask_identifier(sub_id),
        len(matches),
        len(records),
        aggregate.total_used,
        aggregate.total_limit,
    )
    return SubscriptionReport(sub_id=sub_id, matches=matches, aggregate=aggregate)


async def list_subscriptions(client: httpx.AsyncClient, cfg: GatewayConfig) -> List[str]:
    session = await login(client, cfg)
    inbounds = await fetch_inbounds(client, cfg, session)
    return list_subscription_ids(inbounds)


async def _report(
    cfg: GatewayConfig,
    sub_id: str,
    transport: Optional[httpx.AsyncBaseTransport],
) -> SubscriptionReport:
    async with open_panel_client(cfg, transport=transport) as client:
        return await aggregate_subscription(client, cfg, sub_id)


async def report_subscription(
    cfg: GatewayConfig,
    sub_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SubscriptionReport:
    return await with_deadline(cfg, _report(cfg, sub_id, transport))


async def known_subscriptions(
    cfg: GatewayConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[str]:
    async def _run() -> List[str]:
        async with open_panel_client(cfg, transport=transport) as client:
            return await list_subscriptions(client, cfg)

    return await with_deadline(cfg, _run())


async def serve_subscription(
    cfg: GatewayConfig,
    sub_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SubscriptionResponse:
    """Fetch the raw subscription content and aggregate traffic side by side."""

    async def _both() -> SubscriptionResponse:
        content_task = asyncio.ensure_future(fetch_subscription_content(cfg, sub_id, transport=transport))
        report_task = asyncio.ensure_future(_report(cfg, sub_id, transport))
        try:
            raw_payload, report = await asyncio.gather(content_task, report_task)
        except BaseException:
            for task in (content_task, report_task):
                task.cancel()
            raise
        return SubscriptionResponse(report=report, raw_payload=raw_payload)

    return await with_deadline(cfg, _both())
