"""
HubSpot Integration
====================

Connects to HubSpot CRM for:
- Deal pipelines and their stages
- Deal search by stage (paged)
- Owner lookup
- Deal property definitions (for configuring required properties)

Setup:
1. Create a private app in HubSpot -> Settings -> Integrations -> Private Apps
   with the crm.objects.deals.read, crm.schemas.deals.read and
   crm.objects.owners.read scopes
2. Set HUBSPOT_ACCESS_TOKEN in .env (HUBSPOT_API_KEY is still read as a fallback)
"""

import asyncio
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from models.deal_models import Deal, DealProperty, Owner, Pipeline
from scripts.analytics.properties import (
    CLOSE_DATE,
    DEAL_NAME,
    DEAL_OWNER,
    DEAL_PIPELINE,
    DEAL_STAGE,
    LAST_MODIFIED,
)
from scripts.lib.errors import APIAuthError, APIError, APIRateLimitError

logger = logging.getLogger(__name__)

HUBSPOT_API_URL = "https://api.hubapi.com"
SEARCH_PAGE_SIZE = 100
OWNER_FETCH_CONCURRENCY = 5

BASE_DEAL_PROPERTIES = [
    DEAL_NAME,
    DEAL_STAGE,
    DEAL_PIPELINE,
    DEAL_OWNER,
    CLOSE_DATE,
    LAST_MODIFIED,
    "amount",
]


class HubSpotIntegration:
    """HubSpot CRM connector for deal analytics."""

    def __init__(self, timeout_seconds: float = 30.0):
        self.access_token = os.getenv("HUBSPOT_ACCESS_TOKEN") or os.getenv("HUBSPOT_API_KEY")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._owner_cache: Dict[str, Optional[Owner]] = {}
        self._owner_semaphore = asyncio.Semaphore(OWNER_FETCH_CONCURRENCY)

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> Dict[str, str]:
        """Build authorization headers."""
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json_body: dict = None) -> Optional[Dict]:
        """Make an authenticated request to the HubSpot API.

        Returns None when HubSpot is not configured. Raises APIError
        subclasses on HTTP and transport failures.
        """
        if not self.is_configured:
            logger.warning("HubSpot is not configured — set HUBSPOT_ACCESS_TOKEN in .env")
            return None

        url = f"{HUBSPOT_API_URL}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, headers=self._headers(), json=json_body) as resp:
                    if resp.status == 200:
                        return await resp.json()
                    if resp.status in (401, 403):
                        raise APIAuthError(url, status_code=resp.status)
                    if resp.status == 429:
                        retry_after = resp.headers.get("Retry-After")
                        raise APIRateLimitError(
                            url, retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                        )
                    text = await resp.text()
                    logger.error(f"HubSpot API {method} {path} returned {resp.status}: {text}")
                    raise APIError(f"HubSpot {method} {path} failed", status_code=resp.status, url=url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"HubSpot API error: {e}")
            raise APIError(f"HubSpot request failed: {e}", url=url) from e

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def list_pipelines(self) -> List[Pipeline]:
        """All deal pipelines with their stages, in HubSpot display order."""
        data = await self._request("GET", "/crm/v3/pipelines/deals")
        if not data or "results" not in data:
            return []
        pipelines = [Pipeline.model_validate(item) for item in data["results"]]
        return sorted(pipelines, key=lambda p: p.display_order)

    # ------------------------------------------------------------------
    # Deal properties
    # ------------------------------------------------------------------

    async def list_deal_properties(self) -> List[DealProperty]:
        """Every deal property definition, sorted by group then name."""
        data = await self._request("GET", "/crm/v3/properties/deals")
        if not data or "results" not in data:
            return []
        properties = [DealProperty.model_validate(item) for item in data["results"]]
        return sorted(properties, key=lambda p: (p.group_name, p.name))

    # ------------------------------------------------------------------
    # Deals
    # ------------------------------------------------------------------

    async def search_deals(
        self,
        stage_ids: Iterable[str],
        pipeline_id: Optional[str] = None,
        extra_properties: Iterable[str] = (),
    ) -> List[Deal]:
        """Every deal currently in one of ``stage_ids``, following pagination."""
        stage_ids = list(stage_ids)
        if not stage_ids:
            return []

        filters: List[Dict[str, Any]] = [
            {"propertyName": DEAL_STAGE, "operator": "IN", "values": stage_ids},
        ]
        if pipeline_id:
            filters.append({"propertyName": DEAL_PIPELINE, "operator": "EQ", "value": pipeline_id})

        properties = list(dict.fromkeys([*BASE_DEAL_PROPERTIES, *extra_properties]))
        deals: List[Deal] = []
        after: Optional[str] = None

        while True:
            body: Dict[str, Any] = {
                "filterGroups": [{"filters": filters}],
                "properties": properties,
                "limit": SEARCH_PAGE_SIZE,
            }
            if after:
                body["after"] = after

            data = await self._request("POST", "/crm/v3/objects/deals/search", json_body=body)
            if not data:
                break
            deals.extend(Deal.model_validate(item) for item in data.get("results", []))

            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break

        logger.info(f"Fetched {len(deals)} deals from {len(stage_ids)} stage(s)")
        return deals

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    async def get_owner(self, owner_id: str) -> Optional[Owner]:
        """Fetch one owner; cached per client instance.

        Owners only supply display names, so a failed lookup returns None and
        the report carries on. Auth failures still raise.
        """
        if owner_id in self._owner_cache:
            return self._owner_cache[owner_id]

        try:
            async with self._owner_semaphore:
                data = await self._request("GET", f"/crm/v3/owners/{owner_id}")
        except APIAuthError:
            raise
        except APIError as e:
            if e.status_code == 404:
                logger.warning(f"Owner {owner_id} not found")
            else:
                logger.error(f"Owner {owner_id} lookup failed: {e}")
            data = None

        owner = Owner.model_validate(data) if data else None
        self._owner_cache[owner_id] = owner
        return owner

    async def get_owners(self, owner_ids: Iterable[str]) -> Dict[str, Owner]:
        """Owners by id for every distinct non-empty id."""
        unique_ids = [oid for oid in dict.fromkeys(owner_ids) if oid]
        owners = await asyncio.gather(*(self.get_owner(oid) for oid in unique_ids))
        return {oid: owner for oid, owner in zip(unique_ids, owners) if owner is not None}

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": "HubSpot",
            "configured": self.is_configured,
            "features": ["pipelines", "deals", "owners", "deal_properties"],
        }
