"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from referral_hooks.core.config import settings
from referral_hooks.core.errors import register_exception_handlers
from referral_hooks.core.logging import setup_logging
from referral_hooks.core.otel import initialize_otel, instrument_fastapi, instrument_httpx, setup_otel_logging
from referral_hooks.services.airtable_service import AirtableClient
from referral_hooks.services.email_service import BrevoClient, validate_email_config
from referral_hooks.services.stripe_service import StripeGateway

# Import routers
from referral_hooks.api import monitoring, payments, promo

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        instrument_httpx()
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    email_ok, email_error = validate_email_config()
    if not email_ok:
        logger.warning(f"Email service not fully configured: {email_error}")

    app.state.stripe_gateway = StripeGateway.from_settings()
    app.state.record_store = AirtableClient.from_settings()
    app.state.email_client = BrevoClient.from_settings()
    logger.info(f"Clients ready (Stripe API version {settings.STRIPE_API_VERSION}, referral policy {settings.REFERRAL_POLICY})")

    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.record_store.close()
    app.state.email_client.close()


# Create FastAPI app
app = FastAPI(
    title="Referral Hooks",
    description="Stripe payment webhooks and referral promo codes backed by Airtable",
    version="1.0.0",
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_fastapi(app)

# CORS middleware
allowed_origins = settings.allowed_origins
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(payments.router)
app.include_router(promo.router)
app.include_router(monitoring.router)
