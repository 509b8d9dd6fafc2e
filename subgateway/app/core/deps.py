from __future__ import annotations

from typing import Optional

import httpx
from fastapi import Request

from .settings import GatewayConfig


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config


def get_upstream_transport(request: Request) -> Optional[httpx.AsyncBaseTransport]:
    # Tests swap in an httpx.MockTransport here; production leaves it unset.
    return getattr(request.app.state, "upstream_transport", None)
