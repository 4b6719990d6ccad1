"""
HubSpot Deal Analytics — Reports Router
=========================================
Saved and on-demand deal analytics reports.

Endpoints:
  GET  /api/reports                 - Available report types
  GET  /api/reports/{type}/latest   - Latest saved report (Supabase, else local JSON)
  POST /api/reports/{type}/run      - Run a report live against HubSpot
"""
from __future__ import annotations

import json
from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from scripts.analytics.config import load_engine_config
from scripts.analytics.engine import DealAnalyticsEngine
from scripts.deal_reports import PROCESSED_DIR, REPORT_TYPES, build_report, snapshot_source
from scripts.lib import supabase_client
from scripts.lib.errors import APIError, ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger("reports_router")

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _check_type(report_type: str) -> None:
    if report_type not in REPORT_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown report type: {report_type}")


def _load_local(report_type: str, processed_dir: Path):
    path = processed_dir / f"{snapshot_source(report_type)}.json"
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load %s: %s", path, e)
        raise HTTPException(status_code=500, detail="Failed to load saved report")


@router.get("")
async def list_reports():
    """Report types this service can serve."""
    return {"reports": list(REPORT_TYPES)}


@router.get("/{report_type}/latest")
async def latest_report(report_type: str, request: Request):
    """
    Latest saved report.
    Tries the Supabase snapshot first, falls back to the JSON export.
    """
    _check_type(report_type)

    if supabase_client.is_configured():
        data = supabase_client.get_latest_snapshot(snapshot_source(report_type))
        if data:
            return JSONResponse(content=data)

    processed_dir = getattr(request.app.state, "processed_dir", PROCESSED_DIR)
    data = _load_local(report_type, Path(processed_dir))
    if data is None:
        raise HTTPException(
            status_code=404,
            detail=f"No saved {report_type} report. Run: python scripts/deal_reports.py --report {report_type}",
        )
    return JSONResponse(content=data)


@router.post("/{report_type}/run")
async def run_report(report_type: str, request: Request):
    """Fetch from HubSpot and run one report now. Nothing is saved."""
    _check_type(report_type)

    hubspot = getattr(request.app.state, "hubspot", None)
    if not hubspot or not hubspot.is_configured:
        raise HTTPException(status_code=503, detail="HubSpot not configured")

    try:
        engine = DealAnalyticsEngine(load_engine_config())
    except ConfigError as e:
        logger.error("Invalid deal analytics config: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    try:
        report = await build_report(report_type, engine, hubspot)
    except APIError as e:
        logger.error("HubSpot request failed during %s run: %s", report_type, e)
        raise HTTPException(status_code=502, detail=str(e))

    return JSONResponse(content=report.model_dump(mode="json"))
