"""
HubSpot Property Discovery
==========================
Lists what a HubSpot portal offers so the deal analytics config can be filled in.

Commands:
    stages      — every pipeline stage with the stage-entry property names to
                  use in stage_aging rules (hs_v2_date_entered_<id> first,
                  hs_date_entered_<id> as fallback)
    properties  — every deal property, grouped, with custom properties marked
                  and the configured required properties checked against it

Usage:
    python scripts/discover_properties.py stages
    python scripts/discover_properties.py stages --pipeline default --labels sql demo proposal verbal
    python scripts/discover_properties.py properties --search ehr product collaborator
    python scripts/discover_properties.py properties --custom-only --json data/processed/deal_properties.json
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from integrations.hubspot import HubSpotIntegration
from models.deal_models import DealProperty, Pipeline
from scripts.analytics.config import RequiredProperty, load_engine_config
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.properties import stage_entry_property_names
from scripts.lib.errors import AnalyticsError, DataFetchError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json

logger = setup_logger("discover_properties")

DEFAULT_STAGE_LABELS = ("sql", "demo", "proposal", "verbal")

# Built-in deal properties that do not carry the hs_ prefix
STANDARD_DEAL_PROPERTIES = frozenset({
    "dealname", "amount", "closedate", "createdate", "dealstage", "pipeline",
    "hubspot_owner_id", "dealtype", "description", "hubspot_team_id",
    "num_associated_contacts", "num_contacted_notes", "num_notes",
    "closed_lost_reason", "closed_won_reason", "days_to_close",
})


def is_custom_property(prop: DealProperty) -> bool:
    if prop.hubspot_defined:
        return False
    return not prop.name.startswith("hs_") and prop.name not in STANDARD_DEAL_PROPERTIES


def filter_properties(properties: Iterable[DealProperty], keywords: Sequence[str]) -> List[DealProperty]:
    """Properties whose name, label or description contains any keyword (case-insensitive)."""
    wanted = [k.lower().strip() for k in keywords if k.strip()]
    if not wanted:
        return list(properties)
    matches = []
    for prop in properties:
        text = f"{prop.name} {prop.label} {prop.description}".lower()
        if any(keyword in text for keyword in wanted):
            matches.append(prop)
    return matches


def group_properties(properties: Iterable[DealProperty]) -> Dict[str, List[DealProperty]]:
    groups: Dict[str, List[DealProperty]] = defaultdict(list)
    for prop in properties:
        groups[prop.group_name or "uncategorized"].append(prop)
    return dict(sorted(groups.items()))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_stage_properties(
    pipelines: Sequence[Pipeline],
    labels: Sequence[str] = DEFAULT_STAGE_LABELS,
    pipeline_id: Optional[str] = None,
) -> str:
    lines = [f"PIPELINES ({len(pipelines)})", "=" * 60]
    for pipeline in pipelines:
        if pipeline_id and pipeline.id != pipeline_id:
            continue
        lines.append(f"\n{pipeline.label} (ID: {pipeline.id})")
        for stage in pipeline.stages:
            preferred, fallback = stage_entry_property_names(stage.id)
            probability = stage.metadata.get("probability")
            lines.append(f"  {stage.display_order}. {stage.label} (ID: {stage.id})")
            if probability is not None:
                lines.append(f"     probability: {probability}")
            lines.append(f"     entered: {preferred}  (fallback {fallback})")

    lookup = CrmLookup(pipelines)
    lines += ["", "STAGE AGING CANDIDATES", "=" * 60]
    for label in labels:
        stage_ids = lookup.find_stage_ids([label], pipeline_id)
        if not stage_ids:
            lines.append(f"  {label}: no matching stage")
            continue
        for stage_id in stage_ids:
            lines.append(f"  {label}: {lookup.stage_label(stage_id, pipeline_id)} -> stage_id {stage_id}")
    return "\n".join(lines) + "\n"


def render_deal_properties(
    properties: Sequence[DealProperty],
    required: Sequence[RequiredProperty] = (),
) -> str:
    custom_count = sum(1 for p in properties if is_custom_property(p))
    lines = [
        f"DEAL PROPERTIES ({len(properties)}, {custom_count} custom)",
        "=" * 60,
    ]
    for group, members in group_properties(properties).items():
        lines.append(f"\n{group.upper()} ({len(members)})")
        for prop in members:
            badges = [b for b, on in (("custom", is_custom_property(prop)),
                                      ("calculated", prop.calculated)) if on]
            suffix = f" [{', '.join(badges)}]" if badges else ""
            lines.append(f"  {prop.name}: {prop.label} ({prop.type}/{prop.field_type}){suffix}")

    if required:
        known = {p.name for p in properties}
        lines += ["", "REQUIRED PROPERTIES", "=" * 60]
        for req in required:
            status = "ok" if req.property_name in known else "NOT FOUND"
            lines.append(f"  {req.label} ({req.property_name}): {status}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

async def discover(args: argparse.Namespace, client: Optional[HubSpotIntegration] = None) -> str:
    client = client or HubSpotIntegration()
    if not client.is_configured:
        raise DataFetchError("HubSpot is not configured — set HUBSPOT_ACCESS_TOKEN", source="hubspot")

    if args.command == "stages":
        pipelines = await client.list_pipelines()
        logger.info("Loaded %d pipeline(s) from HubSpot", len(pipelines))
        return render_stage_properties(pipelines, args.labels, args.pipeline)

    properties = await client.list_deal_properties()
    logger.info("Loaded %d deal properties from HubSpot", len(properties))
    properties = filter_properties(properties, args.search or [])
    if args.custom_only:
        properties = [p for p in properties if is_custom_property(p)]
    if args.json:
        atomic_write_json([p.model_dump(mode="json") for p in properties], args.json)
        logger.info("  JSON: %s", args.json)

    required = load_engine_config(args.config).required_properties
    return render_deal_properties(properties, required)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Discover HubSpot stages and deal properties")
    sub = parser.add_subparsers(dest="command", required=True)

    stages = sub.add_parser("stages", help="List pipeline stages and stage-entry properties")
    stages.add_argument("--pipeline", help="Only this pipeline id")
    stages.add_argument("--labels", nargs="+", default=list(DEFAULT_STAGE_LABELS),
                        help="Stage labels to match for stage aging rules")

    props = sub.add_parser("properties", help="List deal properties")
    props.add_argument("--search", nargs="+", help="Keep properties matching any keyword")
    props.add_argument("--custom-only", action="store_true", help="Only portal-specific properties")
    props.add_argument("--json", type=Path, help="Also write the listed properties as JSON")
    props.add_argument("--config", type=str, help="Deal analytics YAML config to check against")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        print(asyncio.run(discover(args)))
    except AnalyticsError as e:
        logger.error("Discovery failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
