"""
Forecast Builders
=================

Quarterly ARR forecast and weekly weighted pipeline forecast.

Quarterly skip policy:
    - no parseable close date        -> skipped (counted)
    - close date outside the quarter -> excluded silently (not counted)
    - no parseable amount            -> skipped (counted)
    - amount 0 under the "missing" zero-amount policy -> skipped (counted)
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from models.deal_models import (
    ClosedTotals,
    Deal,
    ForecastDeal,
    ForecastSummary,
    SkippedDeal,
    WeekWindow,
    WeeklyForecastReport,
)
from scripts.analytics.aggregation import PipelineAggregator, parse_amount
from scripts.analytics.config import ZeroAmountPolicy
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.periods import current_quarter, current_week, in_range
from scripts.analytics.properties import (
    CLOSE_DATE,
    DEAL_OWNER,
    DEAL_STAGE,
    deal_name,
    get_datetime,
    get_number,
    get_raw,
    get_str,
    resolve_stage_entry,
)

logger = logging.getLogger(__name__)


def owner_display_name(lookup: CrmLookup, owner_id: Optional[str]) -> str:
    if not owner_id:
        return "Unassigned"
    return lookup.owner_name(owner_id) or f"Owner {owner_id}"


class QuarterlyForecaster:
    """ARR closing in the calendar quarter of ``now``, by month and by owner."""

    def __init__(
        self,
        aggregator: PipelineAggregator,
        zero_amount_policy: ZeroAmountPolicy = ZeroAmountPolicy.PRESENT,
        amount_property: str = "amount",
    ):
        self.aggregator = aggregator
        self.zero_amount_policy = zero_amount_policy
        self.amount_property = amount_property

    def classify(
        self,
        deal: Deal,
        start: datetime,
        end: datetime,
        lookup: CrmLookup,
    ) -> Optional[ForecastDeal | SkippedDeal]:
        """ForecastDeal if in the population, SkippedDeal if defective, None if out of period."""
        name = deal_name(deal)
        close_date = get_datetime(deal, CLOSE_DATE)
        if close_date is None:
            logger.warning("Skipping %s (%s): no close date", name, deal.id)
            return SkippedDeal(deal_id=deal.id, deal_name=name, reason="Missing close date")

        if not in_range(close_date, start, end):
            return None

        amount = get_number(deal, self.amount_property)
        if amount is None:
            logger.warning("Skipping %s (%s): amount %r is not a number",
                           name, deal.id, get_raw(deal, self.amount_property))
            return SkippedDeal(deal_id=deal.id, deal_name=name, reason="Missing or invalid amount")
        if amount == 0 and self.zero_amount_policy is ZeroAmountPolicy.MISSING:
            logger.info("Skipping %s (%s): zero amount", name, deal.id)
            return SkippedDeal(deal_id=deal.id, deal_name=name, reason="Zero amount")

        stage_id = get_str(deal, DEAL_STAGE)
        owner_id = get_str(deal, DEAL_OWNER)
        return ForecastDeal(
            deal_id=deal.id,
            deal_name=name,
            stage_id=stage_id,
            stage_name=lookup.deal_stage_label(deal),
            owner_id=owner_id,
            owner_name=owner_display_name(lookup, owner_id),
            amount=amount,
            close_date=close_date,
        )

    def build(
        self,
        deals: Iterable[Deal],
        now: datetime,
        lookup: Optional[CrmLookup] = None,
        extra_skipped: Sequence[SkippedDeal] = (),
    ) -> ForecastSummary:
        lookup = lookup or CrmLookup()
        quarter = current_quarter(now)

        included: List[ForecastDeal] = []
        skipped: List[SkippedDeal] = list(extra_skipped)
        excluded = 0
        for deal in deals:
            result = self.classify(deal, quarter.start, quarter.end, lookup)
            if result is None:
                excluded += 1
            elif isinstance(result, SkippedDeal):
                skipped.append(result)
            else:
                included.append(result)

        logger.info("%s forecast: %d deals in quarter, %d skipped, %d outside the quarter",
                    quarter.label, len(included), len(skipped), excluded)
        return self.aggregator.summarize_forecast(included, quarter, now, skipped)


class WeeklyForecaster:
    """Weighted open pipeline plus closed-won / closed-lost for the current week."""

    def __init__(
        self,
        aggregator: PipelineAggregator,
        closed_won_stage_id: str = "closedwon",
        closed_lost_stage_id: str = "closedlost",
    ):
        self.aggregator = aggregator
        self.closed_won_stage_id = closed_won_stage_id
        self.closed_lost_stage_id = closed_lost_stage_id

    def closed_in_week(self, deals: Iterable[Deal], stage_id: str, week: WeekWindow) -> ClosedTotals:
        count = 0
        amount = 0.0
        for deal in deals:
            entry = resolve_stage_entry(deal, stage_id)
            if entry and in_range(entry.entered_at, week.week_start, week.week_end):
                count += 1
                amount += parse_amount(get_raw(deal, self.aggregator.amount_property))
        return ClosedTotals(count=count, amount=amount)

    def build(
        self,
        open_deals: Iterable[Deal],
        now: datetime,
        lookup: Optional[CrmLookup] = None,
        closed_deals: Iterable[Deal] = (),
    ) -> WeeklyForecastReport:
        lookup = lookup or CrmLookup()
        week = current_week(now)
        open_deals = list(open_deals)
        closed_deals = list(closed_deals)

        breakdown = self.aggregator.aggregate_by_stage(open_deals, lookup)
        won, lost = self._closed_totals(closed_deals, week)

        return WeeklyForecastReport(
            generated_at=now,
            week=week,
            total_pipeline=sum(stage.pipeline_amount for stage in breakdown),
            weighted_pipeline=sum(stage.weighted_amount for stage in breakdown),
            total_deals=sum(stage.deal_count for stage in breakdown),
            closed_won=won,
            closed_lost=lost,
            stage_breakdown=breakdown,
        )

    def _closed_totals(self, deals: List[Deal], week: WeekWindow) -> Tuple[ClosedTotals, ClosedTotals]:
        return (
            self.closed_in_week(deals, self.closed_won_stage_id, week),
            self.closed_in_week(deals, self.closed_lost_stage_id, week),
        )
