"""
ASGI entrypoint.

Run with: uvicorn app.main:asgi_app
Socket.IO answers on /socket.io, everything else goes to FastAPI.
"""
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.database import close_db, init_db, ping_db
from app.errors import register_exception_handlers
from app.rate_limit import limiter
from app.routers import chat as chat_router
from app.routers import media as media_router
from app.routers import upload as upload_router
from app.services.socket_service import get_socket_app, registry
from app.utils.logger import get_logger

logger = get_logger("main")
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV})")
    await init_db()
    logger.info("Database initialized")
    yield
    close_db()
    logger.info("Shutting down application...")


app = FastAPI(
    title="Clinic Chat API",
    debug=settings.APP_DEBUG,
    lifespan=lifespan,
)

app.state.limiter = limiter
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router.router)
app.include_router(upload_router.router)
app.include_router(media_router.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {time.perf_counter() - started:.3f}s"
    )
    return response


@app.get("/healthz")
async def healthz():
    return {
        "status": "ok",
        "connections": len(registry),
        "onlineUsers": len(registry.online_users()),
    }


@app.get("/readyz")
async def readyz():
    if not await ping_db():
        raise HTTPException(status_code=503, detail="Database not ready")
    return {"status": "ok", "database": "up"}


asgi_app = get_socket_app(app)
