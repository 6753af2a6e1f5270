"""
FastAPI WebSocket server for the Blurb Board
Real-time threaded message board with a JSON read API
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from blurbboard import (
    ConnectionRegistry,
    ClientConnection,
    IdentityVerifier,
    LivenessMonitor,
    MessageHandler,
    MessageStore,
    RateLimiter,
    Settings,
    StoreError,
    get_logger,
    get_settings,
    log_security_event,
    log_system_event,
    log_websocket_event,
    set_log_level,
)

logger = get_logger()


def resolve_origin(websocket: WebSocket) -> str:
    """Client origin for rate limiting: first X-Forwarded-For hop, else the peer host"""
    forwarded_for = websocket.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return websocket.client.host if websocket.client else "unknown"


def parse_page(raw: Optional[str]) -> int:
    try:
        page = int(raw)
    except (TypeError, ValueError):
        return 1
    return page if page >= 1 else 1


def create_app(settings: Optional[Settings] = None, store: Optional[MessageStore] = None) -> FastAPI:
    """Wire the board components into a FastAPI application"""
    settings = settings or get_settings()
    store = store or MessageStore.from_url(settings.database_url)

    registry = ConnectionRegistry()
    handshake_limiter = RateLimiter(settings.rate_limit_cooldown_seconds, name="handshake")
    post_limiter = RateLimiter(settings.rate_limit_cooldown_seconds, name="post")
    message_handler = MessageHandler(
        registry=registry,
        store=store,
        verifier=IdentityVerifier(settings.jwt_secret, settings.jwt_algorithm),
        handshake_limiter=handshake_limiter,
        post_limiter=post_limiter,
        presence_enabled=settings.presence_broadcast_enabled,
    )
    monitor = LivenessMonitor(
        registry,
        message_handler,
        interval_seconds=settings.heartbeat_interval_seconds,
        rate_limiters=[handshake_limiter, post_limiter],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management"""
        set_log_level(settings.log_level)
        logger.info("Blurb Board server starting up...")

        await store.create_schema()
        monitor.start()

        yield

        await monitor.stop()
        await store.dispose()
        logger.info("Blurb Board server shutting down...")

    app = FastAPI(
        title="Blurb Board",
        description="Real-time threaded message board",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.message_handler = message_handler
    app.state.monitor = monitor

    @app.get("/health")
    async def health_check():
        """Liveness probe"""
        return Response(status_code=200)

    @app.get("/api/health")
    async def api_health_check():
        return Response(status_code=200)

    @app.get("/api/msgs")
    async def list_messages(p: Optional[str] = None):
        """One page of threads, newest threads first"""
        try:
            page = await store.list_page(parse_page(p))
        except StoreError:
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        return page.to_dict()

    @app.get("/api/users/{user_id}")
    async def get_user(user_id: str):
        if not user_id.isdigit():
            return JSONResponse(status_code=404, content={"error": "User not found"})
        try:
            user = await store.get_user(int(user_id))
        except StoreError:
            return JSONResponse(status_code=500, content={"error": "Internal server error"})
        if user is None:
            return JSONResponse(status_code=404, content={"error": "User not found"})
        return user.to_dict()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Per-connection receive loop: events are handled one at a time, in order"""
        await websocket.accept()

        connection = ClientConnection(websocket=websocket, ip_address=resolve_origin(websocket))
        log_websocket_event("connection_accepted", connection.connection_id,
                            f"client_ip={connection.ip_address}")

        count = await registry.add(connection)
        await message_handler.send_presence(websocket, count)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                frame = message.get("text")
                if frame is None:
                    frame = message.get("bytes") or b""
                await message_handler.handle_event(frame, connection)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {connection.connection_id} ({connection.ip_address})")

        except Exception as e:
            logger.error(f"WebSocket error on {connection.connection_id}: {e!r}")
            log_security_event("websocket_error", {
                "client_ip": connection.ip_address,
                "error": str(e),
            })

        finally:
            removed, was_authenticated, count = await registry.remove(connection.connection_id)
            if removed and was_authenticated:
                await message_handler.broadcast_presence(count)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Generic 500 for anything a route did not handle"""
        logger.error(f"Unhandled exception: {exc!r}")
        log_security_event("unhandled_exception", {
            "path": str(request.url.path),
            "error": type(exc).__name__,
        })
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


app = create_app()

if __name__ == "__main__":
    settings = get_settings()
    log_system_event("startup", f"Starting Blurb Board on {settings.host}:{settings.port}")

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
        access_log=True,
        ws="websockets",
        # Protocol-level liveness probe; see LivenessMonitor
        ws_ping_interval=settings.heartbeat_interval_seconds,
        ws_ping_timeout=settings.heartbeat_interval_seconds,
    )
