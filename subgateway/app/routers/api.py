from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..core.deps import get_config, get_upstream_transport
from ..core.errors import GatewayError
from ..core.settings import GatewayConfig
from ..services.pipeline import known_subscriptions, report_subscription

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(exc: GatewayError) -> JSONResponse:
    return JSONResponse({"success": False, "error": str(exc)}, status_code=exc.status_code)


@router.get("/api/subscriptions")
async def api_subscriptions(
    cfg: GatewayConfig = Depends(get_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    try:
        ids = await known_subscriptions(cfg, transport=transport)
    except GatewayError as exc:
        logger.error("listing subscriptions failed error=%s", exc)
        return _error(exc)
    return {"success": True, "count": len(ids), "subscriptions": ids}


@router.get("/api/traffic/{sub_id}")
async def api_traffic(
    sub_id: str,
    cfg: GatewayConfig = Depends(get_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
):
    try:
        report = await report_subscription(cfg, sub_id, transport=transport)
    except GatewayError as exc:
        logger.error("traffic lookup failed path=/traffic/%s error=%s", sub_id, exc)
        return _error(exc)
    return {"success": True, "subId": sub_id, "data": report.aggregate.to_api()}


@router.get("/healthz")
async def healthz():
    return {"ok": True}
