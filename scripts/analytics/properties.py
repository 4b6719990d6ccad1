"""
Deal Property Access
====================

Typed accessors over the open property bag every HubSpot deal carries, and
the stage-entry timestamp resolver.

HubSpot migrated its "date entered stage" properties from
``hs_date_entered_<stage_id>`` to ``hs_v2_date_entered_<stage_id>``. Portals
configured at different times expose one, the other, or both, so the
resolver tries the v2 name first and falls back to the legacy one.

None of the accessors raise on odd data: absent, blank or unparseable
values come back as None.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, NamedTuple, Optional, Tuple

from models.deal_models import Deal
from scripts.lib.utils import parse_number, parse_timestamp

V2_STAGE_ENTRY_PREFIX = "hs_v2_date_entered_"
LEGACY_STAGE_ENTRY_PREFIX = "hs_date_entered_"

# Properties the engine reads directly
DEAL_NAME = "dealname"
DEAL_STAGE = "dealstage"
DEAL_PIPELINE = "pipeline"
DEAL_OWNER = "hubspot_owner_id"
CLOSE_DATE = "closedate"
LAST_MODIFIED = "hs_lastmodifieddate"


class StageEntry(NamedTuple):
    """When a deal entered a stage, and which property said so."""
    property_name: str
    entered_at: datetime


def _prop(deal: Deal, key: str, default=None):
    """Safely retrieve a property from a deal."""
    return deal.properties.get(key, default)


def is_blank(value: Any) -> bool:
    """True for None, empty or whitespace-only strings, and empty lists."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def get_raw(deal: Deal, key: str) -> Any:
    return _prop(deal, key)


def get_str(deal: Deal, key: str) -> Optional[str]:
    value = _prop(deal, key)
    if is_blank(value):
        return None
    if isinstance(value, list):
        return ";".join(str(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def get_number(deal: Deal, key: str) -> Optional[float]:
    return parse_number(_prop(deal, key))


def get_datetime(deal: Deal, key: str) -> Optional[datetime]:
    return parse_timestamp(_prop(deal, key))


def deal_name(deal: Deal) -> str:
    return get_str(deal, DEAL_NAME) or "Unnamed Deal"


def last_modified(deal: Deal) -> Optional[datetime]:
    """hs_lastmodifieddate, falling back to the record's updatedAt."""
    return get_datetime(deal, LAST_MODIFIED) or deal.updated_at


def stage_entry_property_names(stage_id: str) -> Tuple[str, str]:
    """Candidate property names, preferred first."""
    return (
        f"{V2_STAGE_ENTRY_PREFIX}{stage_id}",
        f"{LEGACY_STAGE_ENTRY_PREFIX}{stage_id}",
    )


def resolve_stage_entry(deal: Deal, stage_id: str) -> Optional[StageEntry]:
    """Find the timestamp a deal entered ``stage_id``.

    A candidate that is absent, blank or not a timestamp is passed over.
    Returns None when neither schema has a usable value; callers skip the
    deal rather than fail the run.
    """
    for property_name in stage_entry_property_names(stage_id):
        entered_at = get_datetime(deal, property_name)
        if entered_at is not None:
            return StageEntry(property_name, entered_at)
    return None
