from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from ..core.deps import get_config, get_upstream_transport
from ..core.errors import GatewayError
from ..core.settings import GatewayConfig
from ..core.templates import page_template, templates
from ..services.delivery import build_page_context, compose_subscription_payload, is_browser_request
from ..services.pipeline import serve_subscription

logger = logging.getLogger(__name__)

# Mounted under /<subscription path>, see main.create_app.
router = APIRouter()


@router.get("/{sub_id}")
async def subscription(
    request: Request,
    sub_id: str,
    cfg: GatewayConfig = Depends(get_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
) -> Response:
    """Browser: rendered status page. VPN client: base64 subscription body."""
    user_agent = request.headers.get("user-agent", "")
    try:
        result = await serve_subscription(cfg, sub_id, transport=transport)
        if is_browser_request(user_agent):
            context = build_page_context(cfg, result.report.aggregate, result.raw_payload, str(request.url))
            return templates.TemplateResponse(request, page_template(cfg.template_name), context)
        body = compose_subscription_payload(result.raw_payload, cfg.backup_link)
    except GatewayError as exc:
        logger.error("subscription request failed path=%s error=%s", request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
    return PlainTextResponse(body)
