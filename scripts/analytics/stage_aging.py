"""
Stage Aging Analyzer
====================

Days-in-stage, days-since-last-modified and past-due status for deals in
monitored stages. Flags accumulate in a fixed order:

    1. days in stage above the stage threshold  -> the stage's flag message
    2. days since modified above the global one -> "No Recent Activity"
    3. close date before now                    -> "Past-Due Close Date"

Deals in unmonitored stages, or without any stage-entry timestamp, come back
as SkippedDeal values instead of records.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Sequence, Union

from models.deal_models import Deal, SkippedDeal, StageAgingRecord
from scripts.analytics.aggregation import NO_ACTIVITY_FLAG, PAST_DUE_FLAG
from scripts.analytics.config import NO_ACTIVITY_THRESHOLD_DAYS, StageAgingRule
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.properties import (
    CLOSE_DATE,
    DEAL_OWNER,
    DEAL_PIPELINE,
    DEAL_STAGE,
    deal_name,
    get_datetime,
    get_number,
    get_str,
    last_modified,
    resolve_stage_entry,
)
from scripts.lib.errors import ConfigError
from scripts.lib.utils import ensure_utc

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from ``earlier`` to ``later``, truncated toward zero."""
    seconds = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    return int(seconds / _SECONDS_PER_DAY)


class StageAgingAnalyzer:
    def __init__(
        self,
        rules: Sequence[StageAgingRule],
        no_activity_threshold_days: int = NO_ACTIVITY_THRESHOLD_DAYS,
        amount_property: str = "amount",
    ):
        if not rules:
            raise ConfigError("Stage aging needs at least one monitored stage",
                              field="stage_aging_rules")
        self.rules = list(rules)
        self._rules_by_stage: Dict[str, StageAgingRule] = {r.stage_id: r for r in self.rules}
        self.no_activity_threshold_days = no_activity_threshold_days
        self.amount_property = amount_property

    def rule_for(self, stage_id: Optional[str]) -> Optional[StageAgingRule]:
        if not stage_id:
            return None
        return self._rules_by_stage.get(stage_id)

    def analyze(
        self,
        deal: Deal,
        now: datetime,
        lookup: Optional[CrmLookup] = None,
    ) -> Union[StageAgingRecord, SkippedDeal]:
        lookup = lookup or CrmLookup()
        now = ensure_utc(now)
        name = deal_name(deal)
        stage_id = get_str(deal, DEAL_STAGE)

        rule = self.rule_for(stage_id)
        if rule is None:
            logger.info("Skipping %s (%s): stage %s is not monitored", name, deal.id, stage_id)
            return SkippedDeal(deal_id=deal.id, deal_name=name,
                               reason=f"Stage {stage_id or 'unknown'} is not monitored")

        entry = resolve_stage_entry(deal, rule.stage_id)
        if entry is None:
            logger.warning("Skipping %s (%s): no entry date for stage %s",
                           name, deal.id, rule.stage_name)
            return SkippedDeal(deal_id=deal.id, deal_name=name,
                               reason=f"No stage entry date for {rule.stage_name}")

        days_in_stage = whole_days_between(entry.entered_at, now)

        modified_at = last_modified(deal)
        days_since_modified = whole_days_between(modified_at, now) if modified_at else None

        close_date = get_datetime(deal, CLOSE_DATE)
        exceeds = days_in_stage > rule.threshold_days

        flags = []
        if exceeds:
            flags.append(rule.flag_reason)
        if days_since_modified is not None and days_since_modified > self.no_activity_threshold_days:
            flags.append(NO_ACTIVITY_FLAG)
        if close_date is not None and close_date < now:
            flags.append(PAST_DUE_FLAG)

        pipeline_id = get_str(deal, DEAL_PIPELINE)
        owner_id = get_str(deal, DEAL_OWNER)

        return StageAgingRecord(
            deal_id=deal.id,
            deal_name=name,
            stage_id=rule.stage_id,
            stage_name=rule.stage_name,
            pipeline_id=pipeline_id,
            pipeline_name=lookup.pipeline_label(pipeline_id),
            owner_id=owner_id,
            owner_name=lookup.owner_name(owner_id),
            amount=get_number(deal, self.amount_property),
            close_date=close_date,
            entered_stage_at=entry.entered_at,
            date_property_used=entry.property_name,
            days_in_stage=days_in_stage,
            last_modified_at=modified_at,
            days_since_modified=days_since_modified,
            threshold_days=rule.threshold_days,
            exceeds_threshold=exceeds,
            flag_reasons=flags,
        )
