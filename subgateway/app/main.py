from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .core.errors import GatewayError
from .core.logging_setup import (
    configure_runtime_logging,
    get_runtime_log_paths,
    install_asyncio_exception_logging,
)
from .core.paths import STATIC_DIR
from .core.settings import GatewayConfig, load_config, validate_config
from .routers import api, subscription

logger = logging.getLogger(__name__)


def create_app(cfg: Optional[GatewayConfig] = None, *, runtime_logging: bool = True) -> FastAPI:
    cfg = cfg or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if runtime_logging:
            configure_runtime_logging()
            install_asyncio_exception_logging()
        for warning in validate_config(cfg):
            logger.warning("config: %s", warning)
        logger.info(
            "gateway ready upstream=%s subscription_path=/%s",
            cfg.panel_base_url,
            cfg.subscription_path,
        )
        yield

    app = FastAPI(title="Subscription Gateway", version="1.0", lifespan=lifespan)
    app.state.config = cfg
    app.state.upstream_transport = None

    if STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError):
        logger.error("unhandled gateway error path=%s error=%s", request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception("unexpected error path=%s", request.url.path)
        return JSONResponse({"error": str(exc) or type(exc).__name__}, status_code=500)

    app.include_router(api.router)
    app.include_router(subscription.router, prefix=f"/{cfg.subscription_path}")
    return app


app = create_app()


def _servers(target: FastAPI, cfg: GatewayConfig) -> List[uvicorn.Server]:
    servers = [uvicorn.Server(uvicorn.Config(target, host="0.0.0.0", port=cfg.http_port, log_config=None))]
    if cfg.has_tls_material:
        servers.append(
            uvicorn.Server(
                uvicorn.Config(
                    target,
                    host="0.0.0.0",
                    port=cfg.https_port,
                    ssl_certfile=cfg.public_key_path,
                    ssl_keyfile=cfg.private_key_path,
                    log_config=None,
                )
            )
        )
    return servers


def run() -> None:
    """Serve HTTP, plus HTTPS when the operator supplied a certificate and key."""
    configure_runtime_logging()
    logger.info("log files %s", {k: str(v) for k, v in get_runtime_log_paths().items()})
    cfg: GatewayConfig = app.state.config
    servers = _servers(app, cfg)
    logger.info("HTTP server listening port=%d", cfg.http_port)
    if len(servers) > 1:
        logger.info("HTTPS server listening port=%d", cfg.https_port)
    else:
        logger.warning("SSL certificates not found, only the HTTP server is running")

    async def _serve_all() -> None:
        await asyncio.gather(*(s.serve() for s in servers))

    asyncio.run(_serve_all())


if __name__ == "__main__":
    run()
