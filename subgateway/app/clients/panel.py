from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..core.errors import TransportFailure, UpstreamProtocolError
from ..core.settings import GatewayConfig

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
_HTTP_LIMITS = httpx.Limits(max_connections=50, max_keepalive_connections=10, keepalive_expiry=15.0)


def _retry_delay_sec(backoff: float, attempt_no: int) -> float:
    if backoff <= 0:
        return 0.0
    n = max(1, int(attempt_no or 1))
    return min(2.5, float(backoff) * (2 ** (n - 1)))


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    backoff: float = 0.0,
    **kwargs: Any,
) -> httpx.Response:
    """Send one request, retrying httpx errors and non-2xx answers.

    A 2xx response is returned as-is, even when its body reports an
    application-level failure. After the last attempt a single
    :class:`TransportFailure` is raised.
    """
    total = max(1, int(attempts or 1))
    method_u = str(method or "GET").upper()
    last_status: Optional[int] = None
    last_reason = ""

    for attempt in range(total):
        try:
            r = await client.request(method_u, url, **kwargs)
        except httpx.HTTPError as exc:
            last_status = None
            last_reason = f"{type(exc).__name__}: {exc}"
        else:
            if 200 <= r.status_code < 300:
                return r
            last_status = r.status_code
            last_reason = ""

        if attempt + 1 < total:
            logger.debug(
                "upstream call failed, retrying method=%s url=%s attempt=%d/%d status=%s reason=%s",
                method_u,
                url,
                attempt + 1,
                total,
                last_status,
                last_reason,
            )
            delay = _retry_delay_sec(backoff, attempt + 1)
            if delay > 0:
                await asyncio.sleep(delay)

    raise TransportFailure(url, total, status=last_status, reason=last_reason)


def read_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        snippet = (response.text or "").strip()[:200]
        raise UpstreamProtocolError(f"Upstream returned non-JSON body: {snippet!r}") from None
    if not isinstance(data, dict):
        raise UpstreamProtocolError(f"Upstream returned unexpected JSON type: {type(data).__name__}")
    return data


@asynccontextmanager
async def open_panel_client(
    cfg: GatewayConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    verify: Optional[bool] = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Per-request client; cookies never leak between subscription requests."""
    kwargs: Dict[str, Any] = {
        "timeout": httpx.Timeout(float(cfg.request_timeout)),
        "limits": _HTTP_LIMITS,
        "follow_redirects": True,
    }
    if transport is not None:
        kwargs["transport"] = transport
    else:
        kwargs["verify"] = bool(cfg.verify_tls if verify is None else verify)
    client = httpx.AsyncClient(**kwargs)
    try:
        yield client
    finally:
        await client.aclose()
