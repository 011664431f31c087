from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from apps.api.routes import discovery, health
from apps.core.feature_flags import get_feature_flags
from apps.places.services.discovery_service import close_discovery_service

# Create FastAPI app
app = FastAPI(
    title="Places Discovery API",
    description="Cursor-paginated discovery of nearby places with filtering, persona scoring and promotions",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Include routers
app.include_router(health.router, prefix="/api")
app.include_router(discovery.router, prefix="/api", tags=["discovery"])

logger = logging.getLogger(__name__)


@app.on_event("startup")
async def log_startup():
    flags = get_feature_flags()
    logger.info(
        "startup complete",
        extra={"env": os.getenv("APP_ENV", "dev"), "port": os.getenv("PORT", "8000"), "flags": flags.get_all_flags()},
    )


@app.on_event("shutdown")
async def close_clients():
    await close_discovery_service()
    logger.info("shutdown complete")


@app.get("/")
async def root():
    return {"message": "Places Discovery API", "version": "1.0.0"}
