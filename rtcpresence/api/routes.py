import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from rtcpresence.api.limiter import limiter
from rtcpresence.api.routers import presence, token, ws
from rtcpresence.core.config import settings
from rtcpresence.core.errors import ServiceError, service_error_handler
from rtcpresence.core.redis import close_redis, init_redis
from rtcpresence.services.presence import MemoryPresenceStore, RedisPresenceStore, ViewerPresence
from rtcpresence.services.rooms import RoomRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = await init_redis(settings.REDIS_URL)
    store = RedisPresenceStore(client) if client is not None else MemoryPresenceStore()
    app.state.presence = ViewerPresence(store, ttl_seconds=settings.VIEWER_TTL_SECONDS)
    app.state.rooms = RoomRegistry()
    logger.info("Presence store: %s (viewer TTL %ss)", store.name, settings.VIEWER_TTL_SECONDS)
    try:
        yield
    finally:
        app.state.rooms.close()
        await close_redis()


app = FastAPI(title="RTC Presence", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(ServiceError, service_error_handler)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["*"])


@app.get('/health')
def health():
    return {"status": "ok", "store": app.state.presence.store.name}


app.include_router(presence.router)
app.include_router(ws.router)
# token router last: it also answers on "/"
app.include_router(token.router)
