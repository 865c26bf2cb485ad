"""
Credit Gateway - FastAPI Backend
Metered billing for paid AI features: pricing, per-cycle credit balances and
the usage ledger.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings, validate_security_settings
from database import Database
import models  # noqa: F401
from routers import auth, billing, health, webhooks
from services.errors import GatewayError, InternalError, MissingFields
from services.pricing import load_pricing_table

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting Credit Gateway API...")
    validate_security_settings()
    app.state.pricing = load_pricing_table(settings.PRICING_TABLE_PATH)
    database = Database.from_settings(settings)
    app.state.database = database
    if settings.AUTO_CREATE_DB_SCHEMA:
        await database.create_schema()
        logger.info("Database schema verified.")
    yield
    # Shutdown
    await database.dispose()
    logger.info("Shutting down API...")


app = FastAPI(
    title="Credit Gateway API",
    description="Credit metering and subscription allotments for paid AI features",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
        name = ".".join(loc) or error.get("msg", "body")
        if name not in fields:
            fields.append(name)
    error = MissingFields(", ".join(fields) or None)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s: %s", request.method, request.url.path, exc)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(billing.router, tags=["Billing"])
app.include_router(webhooks.router, tags=["Webhooks"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Credit Gateway API",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT)
