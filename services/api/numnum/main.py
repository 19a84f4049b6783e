"""
NumNum Social API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Start the async HTTP client for the hosted backend (REST + auth)
  3. Expose Prometheus /metrics endpoint
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from numnum.config import settings
from numnum.telemetry import setup_tracing, instrument_app
from numnum.clients.supabase_client import supabase_client
from numnum.routers import map_pins, posts, saved, users

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# httpx must be instrumented before the gateway opens its pool
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the gateway connection pool for the lifetime of the app."""
    logger.info("Starting NumNum Social API (env=%s)", settings.environment)
    if not settings.supabase_anon_key:
        logger.warning("SUPABASE_ANON_KEY is empty; the backend will reject requests")

    await supabase_client.start()
    logger.info("API ready.")
    yield

    logger.info("Closing gateway pool...")
    await supabase_client.stop()


app = FastAPI(
    title="NumNum Social API",
    description=(
        "Restaurant discovery social graph: follows with private-account "
        "requests, saved lists, reviews and a map of what your friends ate."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(map_pins.router, prefix="/map", tags=["Map"])
app.include_router(saved.router, prefix="/saved", tags=["Saved"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(posts.comments_router, prefix="/comments", tags=["Posts"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
