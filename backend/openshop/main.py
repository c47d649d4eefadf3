import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from openshop.config import settings
from openshop.database import create_tables
from openshop.middleware.exceptions import register_exception_handlers
from openshop.routers import health, wizard
from openshop.services.sessions import SessionRegistry
from openshop.utils.cache import close_redis

logger = logging.getLogger("openshop")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Provision the draft table if needed; close sessions on shutdown."""
    if settings.draft_backend == "sql":
        await create_tables()
    app.state.sessions = SessionRegistry()
    logger.info(f"Wizard service started (draft backend: {settings.draft_backend})")
    try:
        yield
    finally:
        await app.state.sessions.close_all()
        await close_redis()
        logger.info("Wizard service stopped")


app = FastAPI(
    title="OpenShop Wizard",
    description="Store onboarding workflow for marketplace merchants",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(wizard.router, prefix="/api/wizard", tags=["wizard"])
