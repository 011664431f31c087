"""Health check endpoints exposed by the public API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from apps.core.db import get_db
from apps.core.feature_flags import get_feature_flags
from apps.places.services.discovery_service import PlacesDiscoveryService, get_discovery_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", summary="Constant-time readiness probe")
def health_fast() -> dict[str, str]:
    """Simple readiness probe that avoids touching the database."""
    return {"status": "ok", "timestamp": _utc_timestamp()}


@router.get("/db", summary="Promotion/event store connectivity check")
def health_db(db: Session = Depends(get_db)) -> dict[str, str]:
    db.execute(text("SELECT 1"))
    return {"status": "ok", "scope": "db", "timestamp": _utc_timestamp()}


@router.get("/cursor-store", summary="Cursor storage backend")
def health_cursor_store(
    service: PlacesDiscoveryService = Depends(get_discovery_service),
) -> dict[str, object]:
    return {
        "status": "ok",
        "storage": service.cursor_store.kind,
        "provider_configured": service.provider.is_configured(),
        "provider_calls": dict(getattr(service.provider, "stats", {})),
        "timestamp": _utc_timestamp(),
    }


@router.get("/feature-flags", summary="Feature flag snapshot")
def health_feature_flags() -> dict[str, object]:
    return {
        "ok": True,
        "flags": get_feature_flags().get_all_flags(),
        "timestamp": _utc_timestamp(),
    }
