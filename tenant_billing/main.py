import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenant_billing.config import settings
from tenant_billing.context import build_service_context
from tenant_billing.middleware.error_handler import ErrorHandlerMiddleware
from tenant_billing.middleware.jwt_auth import JwtAuthMiddleware
from tenant_billing.routers import health, limits, pricing, billing, enterprise_packages, stripe_webhooks

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tenant-billing")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Tenant-Billing starting on %s:%s", settings.host, settings.port)
    if getattr(app.state, "service_context", None) is None:
        app.state.service_context = build_service_context(settings)
    yield
    app.state.service_context.db.close()
    logger.info("Tenant-Billing shutting down")


app = FastAPI(
    title="Tenant Billing Service",
    version="0.1.0",
    description="Package limits, enterprise pricing and Stripe subscription sync",
    lifespan=lifespan,
)

# Middleware (last added = outermost)
app.add_middleware(JwtAuthMiddleware)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router)
app.include_router(limits.router)
app.include_router(pricing.router)
app.include_router(billing.router)
app.include_router(enterprise_packages.router)
app.include_router(stripe_webhooks.router)
