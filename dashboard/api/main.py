"""
HubSpot Deal Analytics — API Server
=====================================

Serves saved deal reports and runs them on demand against HubSpot.

Route groups:
  /api/health              - Health check
  /api/reports/*           - Deal hygiene, stage aging and forecast reports
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.api.routers.reports import router as reports_router
from integrations.hubspot import HubSpotIntegration
from scripts.lib import supabase_client

load_dotenv()

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting HubSpot Deal Analytics...")

    app.state.hubspot = HubSpotIntegration()
    status = "configured" if app.state.hubspot.is_configured else "not configured"
    logger.info("HubSpot live integration: %s", status)

    if not supabase_client.is_configured():
        logger.warning("Supabase not configured; serving local report files only")

    logger.info("HubSpot Deal Analytics ready")
    yield
    logger.info("Shutting down HubSpot Deal Analytics...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8001"
).split(",")

app = FastAPI(
    title="HubSpot Deal Analytics",
    version=VERSION,
    description="Deal hygiene, stage aging and revenue forecasts over HubSpot CRM",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(reports_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with integration status."""
    hubspot = getattr(app.state, "hubspot", None)
    return {
        "status": "healthy",
        "service": "HubSpot Deal Analytics",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "supabase": supabase_client.is_configured(),
            "hubspot": bool(hubspot and hubspot.is_configured),
        },
    }
