"""
HubSpot Deal Reports
====================
Fetches deals from HubSpot, runs the deal analytics engine, and exports the
results.

Reports:
    hygiene   — required-property completeness per deal
    aging     — days in stage, inactivity and past-due flags
    forecast  — quarterly ARR by month and owner
    weekly    — weighted open pipeline by stage, closed won/lost this week

Outputs:
    data/processed/deal_<report>.json   (structured report)
    data/processed/deal_<report>.txt    (rendered text, plus narrative when requested)

Usage:
    python scripts/deal_reports.py --report hygiene
    python scripts/deal_reports.py --report all --sync
    python scripts/deal_reports.py --report forecast --now 2025-02-15T12:00:00Z
    python scripts/deal_reports.py --report weekly --narrate --output-dir reports/
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from integrations.hubspot import HubSpotIntegration
from models.deal_models import Deal
from scripts.analytics.config import EngineConfig, load_engine_config
from scripts.analytics.engine import DealAnalyticsEngine
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.properties import DEAL_OWNER, get_str, stage_entry_property_names
from scripts.lib import supabase_client
from scripts.lib.errors import AnalyticsError, DataFetchError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json, atomic_write_text, parse_timestamp
from scripts.report_narrator import narrate_report
from scripts.report_renderer import render_report

logger = setup_logger("deal_reports")

PROCESSED_DIR = PROJECT_ROOT / "data" / "processed"
REPORT_TYPES = ("hygiene", "aging", "forecast", "weekly")


def snapshot_source(report_type: str) -> str:
    return f"deal_{report_type}"


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

async def _fetch_deals(
    client: HubSpotIntegration,
    stage_ids: Sequence[str],
    pipeline_id: Optional[str],
    extra_properties: Sequence[str] = (),
) -> List[Deal]:
    if not stage_ids:
        logger.warning("No matching stages found; nothing to fetch")
        return []
    return await client.search_deals(stage_ids, pipeline_id, extra_properties)


async def _lookup_for(client: HubSpotIntegration, base: CrmLookup, deals: Sequence[Deal]) -> CrmLookup:
    """Extend the pipeline lookup with the owners of ``deals``."""
    owners = await client.get_owners(get_str(d, DEAL_OWNER) for d in deals)
    return CrmLookup(base.pipelines, owners)


async def build_report(
    report_type: str,
    engine: DealAnalyticsEngine,
    client: HubSpotIntegration,
    pipelines: Optional[CrmLookup] = None,
) -> Any:
    """Fetch what one report needs from HubSpot and run it through the engine."""
    config = engine.config
    pipeline_id = config.sales_pipeline_id
    if pipelines is None:
        pipelines = CrmLookup(await client.list_pipelines())

    if report_type == "hygiene":
        stage_ids = pipelines.find_stage_ids(config.hygiene_stage_labels, pipeline_id)
        deals = await _fetch_deals(
            client, stage_ids, pipeline_id,
            [p.property_name for p in config.required_properties],
        )
        return engine.hygiene_report(deals, await _lookup_for(client, pipelines, deals))

    if report_type == "aging":
        stage_ids = [rule.stage_id for rule in config.stage_aging_rules]
        entry_properties = [name for sid in stage_ids for name in stage_entry_property_names(sid)]
        deals = await _fetch_deals(client, stage_ids, pipeline_id, entry_properties)
        return engine.stage_aging_report(deals, await _lookup_for(client, pipelines, deals))

    if report_type == "forecast":
        stage_ids = pipelines.find_stage_ids(config.forecast_stage_labels, pipeline_id)
        deals = await _fetch_deals(client, stage_ids, pipeline_id, [config.amount_property])
        return engine.quarterly_forecast(deals, await _lookup_for(client, pipelines, deals))

    if report_type == "weekly":
        stage_ids = pipelines.find_stage_ids(config.weekly_stage_labels, pipeline_id)
        open_deals = await _fetch_deals(client, stage_ids, pipeline_id, [config.amount_property])
        closed_ids = [config.closed_won_stage_id, config.closed_lost_stage_id]
        closed_deals = await _fetch_deals(
            client, closed_ids, pipeline_id,
            [name for sid in closed_ids for name in stage_entry_property_names(sid)],
        )
        return engine.weekly_forecast(open_deals, pipelines, closed_deals)

    raise ValueError(f"Unknown report type: {report_type}")


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_report(
    report_type: str,
    report: Any,
    output_dir: Path = PROCESSED_DIR,
    narrative: Optional[str] = None,
) -> Dict[str, Path]:
    """Write the JSON and text forms of a report. Returns the written paths."""
    output_dir = Path(output_dir)
    json_path = output_dir / f"{snapshot_source(report_type)}.json"
    text_path = output_dir / f"{snapshot_source(report_type)}.txt"

    data = report.model_dump(mode="json")
    if narrative:
        data["narrative"] = narrative

    text = render_report(report_type, report)
    if narrative:
        text = f"{text}\n\nSUMMARY\n{'-' * 60}\n{narrative}\n"

    written: Dict[str, Path] = {}
    if atomic_write_json(data, json_path):
        written["json"] = json_path
    if atomic_write_text(text, text_path):
        written["text"] = text_path
    return written


def sync_report(report_type: str, report: Any, narrative: Optional[str] = None) -> bool:
    """Push the snapshot and rendered document to Supabase. Failures are non-fatal."""
    if not supabase_client.is_configured():
        logger.warning("Supabase is not configured; skipping sync for %s", report_type)
        return False

    data = report.model_dump(mode="json")
    snapshot_ok = supabase_client.upsert_snapshot(snapshot_source(report_type), data)
    document_ok = supabase_client.save_report_document(
        report_type,
        render_report(report_type, report),
        narrative=narrative,
        generated_at=data.get("generated_at"),
    )
    return snapshot_ok and document_ok


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def run_reports(
    report_types: Sequence[str],
    config: Optional[EngineConfig] = None,
    now: Optional[datetime] = None,
    sync: bool = False,
    narrate: bool = False,
    output_dir: Path = PROCESSED_DIR,
    client: Optional[HubSpotIntegration] = None,
) -> Dict[str, Any]:
    config = config or load_engine_config()
    engine = DealAnalyticsEngine(config, clock=lambda: now) if now else DealAnalyticsEngine(config)
    client = client or HubSpotIntegration()
    if not client.is_configured:
        raise DataFetchError("HubSpot is not configured — set HUBSPOT_ACCESS_TOKEN", source="hubspot")

    pipelines = CrmLookup(await client.list_pipelines())
    logger.info("Loaded %d pipeline(s) from HubSpot", len(pipelines.pipelines))

    results: Dict[str, Any] = {}
    for report_type in report_types:
        logger.info("-" * 40)
        logger.info("Report: %s", report_type)
        logger.info("-" * 40)

        report = await build_report(report_type, engine, client, pipelines)
        narrative = await narrate_report(report_type, report) if narrate else None

        written = export_report(report_type, report, output_dir, narrative)
        for kind, path in written.items():
            logger.info("  %s: %s", kind.upper(), path)
        if sync:
            sync_report(report_type, report, narrative)

        results[report_type] = report
    return results


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _parse_now(value: str) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}")
    return parsed


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="HubSpot deal hygiene, aging and forecast reports")
    parser.add_argument(
        "--report", choices=[*REPORT_TYPES, "all"], default="all",
        help="Report to run. Default: all",
    )
    parser.add_argument("--now", type=_parse_now, help="Evaluate as of this ISO-8601 time")
    parser.add_argument("--config", type=str, help="Path to a deal analytics YAML config")
    parser.add_argument("--sync", action="store_true", help="Push results to Supabase")
    parser.add_argument("--narrate", action="store_true", help="Add an AI-written summary")
    parser.add_argument(
        "--output-dir", type=str, default=str(PROCESSED_DIR),
        help=f"Output directory. Default: {PROCESSED_DIR}",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = _parse_args(argv)
    report_types = list(REPORT_TYPES) if args.report == "all" else [args.report]

    logger.info("=" * 60)
    logger.info("  HubSpot Deal Reports: %s", ", ".join(report_types))
    logger.info("=" * 60)

    try:
        config = load_engine_config(args.config)
        asyncio.run(run_reports(
            report_types,
            config=config,
            now=args.now,
            sync=args.sync,
            narrate=args.narrate,
            output_dir=Path(args.output_dir),
        ))
    except AnalyticsError as e:
        logger.error("Deal reports failed: %s", e)
        return 1

    logger.info("=== Deal reports complete ===")
    return 0


if __name__ == "__main__":
    sys.exit(main())
