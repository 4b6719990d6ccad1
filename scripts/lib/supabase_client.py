"""
Supabase Client Helper for HubSpot Deal Analytics.
Stores report snapshots and rendered report documents.

Usage:
    from scripts.lib.supabase_client import upsert_snapshot, get_latest_snapshot

    upsert_snapshot("deal_hygiene", summary.model_dump(mode="json"))
    latest = get_latest_snapshot("deal_hygiene")

All writes are best effort: failures are logged and reported as False/None,
never raised into the report run.
"""
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SNAPSHOT_TABLE = "dashboard_snapshots"
DOCUMENT_TABLE = "report_documents"

_client = None


def _credentials():
    url = os.environ.get("SUPABASE_URL", "")
    key = (
        os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
        or os.environ.get("SUPABASE_KEY", "")
    )
    return url, key


def is_configured() -> bool:
    url, key = _credentials()
    return bool(url and key)


def get_client():
    """Create and return a Supabase client (singleton)."""
    global _client
    if _client is not None:
        return _client

    url, key = _credentials()
    if not url or not key:
        raise ConfigError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in .env",
            field="SUPABASE_URL",
        )

    from supabase import create_client
    _client = create_client(url, key)
    logger.info("Supabase client connected to %s", url)
    return _client


def upsert_snapshot(source: str, data: Dict) -> bool:
    """
    Insert a new dashboard snapshot for a given source.

    Args:
        source: Source identifier (e.g. "deal_hygiene", "deal_forecast").
        data: JSON-ready report dict.

    Returns:
        True on success, False on failure.
    """
    try:
        client = get_client()
        row = {
            "source": source,
            "data": data,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        client.table(SNAPSHOT_TABLE).insert(row).execute()
        logger.info("Snapshot inserted for source: %s", source)
        return True
    except Exception as e:
        logger.error("Supabase snapshot insert failed for %s: %s", source, e)
        return False


def get_latest_snapshot(source: str) -> Optional[Dict]:
    """
    Fetch the latest snapshot for a source.

    Returns:
        The data dict from the latest snapshot, or None.
    """
    try:
        client = get_client()
        result = (
            client.table(SNAPSHOT_TABLE)
            .select("data, generated_at")
            .eq("source", source)
            .order("generated_at", desc=True)
            .limit(1)
            .execute()
        )
        if result.data:
            return result.data[0].get("data")
        return None
    except Exception as e:
        logger.error("Supabase fetch failed for %s: %s", source, e)
        return None


def save_report_document(
    report_type: str,
    content: str,
    narrative: Optional[str] = None,
    generated_at: Optional[str] = None,
) -> bool:
    """Store the rendered text (and narration, if any) of one report run."""
    try:
        client = get_client()
        row = {
            "report_type": report_type,
            "content": content,
            "narrative": narrative,
            "generated_at": generated_at or datetime.now(timezone.utc).isoformat(),
        }
        client.table(DOCUMENT_TABLE).insert(row).execute()
        logger.info("Report document stored: %s", report_type)
        return True
    except Exception as e:
        logger.error("Supabase document insert failed for %s: %s", report_type, e)
        return False
