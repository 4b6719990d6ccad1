"""
Completeness Scorer
===================

Scores each deal against the configured list of required properties.

    score = round(100 * present / total)   (half-up, capped at 99 while anything is missing)
    tier  = excellent (>= 90) | good (70-89) | poor (< 70)

Unknown property names are just missing; nothing here raises on deal data.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

from models.deal_models import CompletenessTier, Deal, HygieneReport, PropertyCheck
from scripts.analytics.aggregation import round_half_up
from scripts.analytics.config import RequiredProperty, ZeroAmountPolicy
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.properties import (
    CLOSE_DATE,
    DEAL_OWNER,
    DEAL_PIPELINE,
    DEAL_STAGE,
    deal_name,
    get_datetime,
    get_raw,
    get_str,
    is_blank,
)
from scripts.lib.errors import ConfigError
from scripts.lib.utils import ensure_utc, parse_number

logger = logging.getLogger(__name__)

EXCELLENT_MIN_SCORE = 90
GOOD_MIN_SCORE = 70


def is_property_missing(
    property_name: str,
    value: Any,
    *,
    zero_amount_policy: ZeroAmountPolicy = ZeroAmountPolicy.PRESENT,
    amount_property: str = "amount",
) -> bool:
    """Shared missing-value predicate.

    Null, empty or whitespace-only strings and empty lists are missing. The
    amount property is also missing when it is not a number, and has a
    configurable rule for the value zero.
    """
    if is_blank(value):
        return True
    if property_name != amount_property:
        return False
    amount = parse_number(value)
    if amount is None:
        return True
    return amount == 0 and zero_amount_policy is ZeroAmountPolicy.MISSING


def tier_for(score: int) -> CompletenessTier:
    if score >= EXCELLENT_MIN_SCORE:
        return CompletenessTier.EXCELLENT
    if score >= GOOD_MIN_SCORE:
        return CompletenessTier.GOOD
    return CompletenessTier.POOR


class CompletenessScorer:
    """Per-deal completeness against a fixed required-property list."""

    def __init__(
        self,
        required: Sequence[RequiredProperty],
        zero_amount_policy: ZeroAmountPolicy = ZeroAmountPolicy.PRESENT,
        amount_property: str = "amount",
    ):
        if not required:
            raise ConfigError("Completeness scoring needs at least one required property",
                              field="required_properties")
        names = [requirement.property_name for requirement in required]
        if len(set(names)) != len(names):
            raise ConfigError("Required property list contains duplicates",
                              field="required_properties")

        self.required: List[RequiredProperty] = list(required)
        self.zero_amount_policy = zero_amount_policy
        self.amount_property = amount_property

    def _check(self, deal: Deal, requirement: RequiredProperty) -> PropertyCheck:
        value = get_raw(deal, requirement.property_name)
        return PropertyCheck(
            label=requirement.label,
            property_name=requirement.property_name,
            value=value,
            is_missing=is_property_missing(
                requirement.property_name,
                value,
                zero_amount_policy=self.zero_amount_policy,
                amount_property=self.amount_property,
            ),
        )

    def score(
        self,
        deal: Deal,
        lookup: Optional[CrmLookup] = None,
        now: Optional[datetime] = None,
    ) -> HygieneReport:
        """Build the HygieneReport for one deal. Pure; same input, same report."""
        lookup = lookup or CrmLookup()

        checks = [self._check(deal, requirement) for requirement in self.required]
        missing = [check for check in checks if check.is_missing]
        total = len(checks)
        present = total - len(missing)

        score = round_half_up(100.0 * present / total)
        if missing and score >= 100:
            score = 99

        close_date = get_datetime(deal, CLOSE_DATE)
        past_due = bool(close_date and now and close_date < ensure_utc(now))

        stage_id = get_str(deal, DEAL_STAGE)
        pipeline_id = get_str(deal, DEAL_PIPELINE)
        owner_id = get_str(deal, DEAL_OWNER)

        return HygieneReport(
            deal_id=deal.id,
            deal_name=deal_name(deal),
            deal_stage=stage_id,
            deal_stage_name=lookup.stage_label(stage_id, pipeline_id) or stage_id,
            deal_pipeline=pipeline_id,
            deal_pipeline_name=lookup.pipeline_label(pipeline_id) or pipeline_id,
            deal_owner=owner_id,
            deal_owner_name=lookup.owner_name(owner_id),
            property_checks=checks,
            missing_properties=missing,
            completeness_score=score,
            tier=tier_for(score),
            total_required=total,
            total_present=present,
            total_missing=len(missing),
            close_date=close_date,
            is_close_date_past_due=past_due,
        )
