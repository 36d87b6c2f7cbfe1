import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.middleware.exceptions import register_exception_handlers
from app.routers import health, onboarding
from app.services.onboarding import OnboardingSessionManager
from app.services.tenant_api import TenantApiClient
from app.utils.store import RedisKeyValueStore, close_redis

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("onboarding_console")


@asynccontextmanager
async def lifespan(app: FastAPI):
    tenant_api = TenantApiClient()
    app.state.session_manager = OnboardingSessionManager(RedisKeyValueStore(), tenant_api)
    logger.info(f"Onboarding console started ({settings.environment})")
    yield
    await tenant_api.aclose()
    await close_redis()
    logger.info("Onboarding console stopped")


app = FastAPI(
    title="Tenant Onboarding Console",
    description="Resumable tenant onboarding wizard with plan, branch and addon pricing",
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
app.include_router(onboarding.router, prefix="/api/onboarding", tags=["onboarding"])
