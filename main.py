import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request

from routes.chat_ws import router as chat_router
from routes.port_route import router as port_router
from services.chat.heartbeat import ConnectionRegistry
from services.chat.relay import ChatRelay
from services.chat.session_store import SessionStore
from services.dify.chat_client import DifyChatClient
from utils.port_finder import find_available_port
from utils.settings import Settings, load_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the settings (DIFY_API_KEY is required)
      - the shared httpx client and the upstream chat relay
      - the session store and the heartbeat sweep over live connections
    and attach them to `app.state`.
    """
    settings: Optional[Settings] = app.state.settings
    if settings is None:
        settings = load_settings()
        app.state.settings = settings

    timeout = httpx.Timeout(settings.upstream_timeout, connect=10.0)
    http = httpx.AsyncClient(timeout=timeout, transport=app.state.upstream_transport)
    client = DifyChatClient(
        http,
        api_key=settings.dify_api_key,
        base_url=settings.dify_api_url,
        user=settings.dify_user,
    )
    app.state.relay = ChatRelay(client, timeout=settings.upstream_timeout)
    store = SessionStore()
    app.state.session_store = store
    registry = ConnectionRegistry(store, interval=settings.heartbeat_interval)
    app.state.registry = registry
    registry.start()

    try:
        yield
    finally:
        await registry.stop()
        await http.aclose()


def create_app(
    settings: Optional[Settings] = None,
    port: Optional[int] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.port = port
    app.state.upstream_transport = upstream_transport

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that reports upstream configuration and open connections.
        """
        registry = getattr(request.app.state, "registry", None)
        return {
            "ok": True,
            "upstream_configured": getattr(request.app.state, "relay", None) is not None,
            "connections": len(registry) if registry is not None else 0,
        }

    # Register application routers
    app.include_router(port_router)
    app.include_router(chat_router)

    return app


app = create_app()


def run() -> None:
    """Load configuration, pick a free port and serve until interrupted."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        settings = load_settings()
        port = find_available_port(settings.port, settings.host)
    except RuntimeError as exc:
        LOGGER.error("Startup failed: %s", exc)
        sys.exit(1)

    if port != settings.port:
        LOGGER.info("Port %s is busy, using %s instead", settings.port, port)
    LOGGER.info("Server running at http://%s:%s", settings.host, port)
    uvicorn.run(
        create_app(settings, port),
        host=settings.host,
        port=port,
        ws_ping_interval=settings.heartbeat_interval,
        ws_ping_timeout=settings.heartbeat_interval,
    )


if __name__ == "__main__":
    run()
