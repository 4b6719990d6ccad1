"""
Deal Analytics Engine
=====================

Facade over the scorer, the aging analyzer, the aggregator and the forecast
builders. Takes deals already fetched from the CRM and returns report objects;
performs no I/O.

Usage:
    engine = DealAnalyticsEngine(load_engine_config())
    summary = engine.hygiene_report(deals, lookup)
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from models.deal_models import (
    Deal,
    ForecastSummary,
    HygieneReport,
    HygieneSummary,
    SkippedDeal,
    StageAgingRecord,
    StageAgingSummary,
    WeeklyForecastReport,
)
from scripts.analytics.aggregation import PipelineAggregator
from scripts.analytics.config import EngineConfig, IssuePolicy
from scripts.analytics.forecast import QuarterlyForecaster, WeeklyForecaster
from scripts.analytics.hygiene import CompletenessScorer
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.properties import deal_name
from scripts.analytics.stage_aging import StageAgingAnalyzer
from scripts.lib.utils import ensure_utc

logger = logging.getLogger(__name__)

# Errors a single malformed deal can raise; anything else propagates
_PER_DEAL_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class DealAnalyticsEngine:
    """Runs every report over an in-memory deal list."""

    def __init__(self, config: Optional[EngineConfig] = None, clock: Callable[[], datetime] = _now_utc):
        self.config = (config or EngineConfig()).validate()
        self.clock = clock

        self.aggregator = PipelineAggregator(self.config.stage_weights, self.config.amount_property)
        self.scorer = CompletenessScorer(
            self.config.required_properties,
            zero_amount_policy=self.config.hygiene_zero_amount,
            amount_property=self.config.amount_property,
        )
        self.aging = StageAgingAnalyzer(
            self.config.stage_aging_rules,
            no_activity_threshold_days=self.config.no_activity_threshold_days,
            amount_property=self.config.amount_property,
        )
        self.quarterly = QuarterlyForecaster(
            self.aggregator,
            zero_amount_policy=self.config.forecast_zero_amount,
            amount_property=self.config.amount_property,
        )
        self.weekly = WeeklyForecaster(
            self.aggregator,
            closed_won_stage_id=self.config.closed_won_stage_id,
            closed_lost_stage_id=self.config.closed_lost_stage_id,
        )

    def now(self) -> datetime:
        """Current time in the report time zone."""
        return ensure_utc(self.clock()).astimezone(self.config.tzinfo)

    @staticmethod
    def _failed(deal: Deal, error: Exception) -> SkippedDeal:
        logger.exception("Failed to evaluate deal %s", deal.id)
        return SkippedDeal(deal_id=deal.id, deal_name=deal_name(deal),
                           reason=f"Evaluation error: {error}")

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def hygiene_report(
        self,
        deals: Iterable[Deal],
        lookup: Optional[CrmLookup] = None,
        issue_policy: Optional[IssuePolicy] = None,
    ) -> HygieneSummary:
        now = self.now()
        lookup = lookup or CrmLookup()
        reports: List[HygieneReport] = []
        skipped: List[SkippedDeal] = []

        for deal in deals:
            try:
                reports.append(self.scorer.score(deal, lookup, now))
            except _PER_DEAL_ERRORS as e:
                skipped.append(self._failed(deal, e))

        logger.info("Scored %d deals for hygiene", len(reports))
        return self.aggregator.summarize_hygiene(
            reports,
            self.config.required_properties,
            issue_policy or self.config.hygiene_issue_policy,
            now,
            skipped,
        )

    def stage_aging_report(
        self,
        deals: Iterable[Deal],
        lookup: Optional[CrmLookup] = None,
    ) -> StageAgingSummary:
        now = self.now()
        lookup = lookup or CrmLookup()
        records: List[StageAgingRecord] = []
        skipped: List[SkippedDeal] = []

        for deal in deals:
            try:
                result = self.aging.analyze(deal, now, lookup)
            except _PER_DEAL_ERRORS as e:
                skipped.append(self._failed(deal, e))
                continue
            if isinstance(result, SkippedDeal):
                skipped.append(result)
            else:
                records.append(result)

        logger.info("Stage aging: %d deals analyzed, %d skipped", len(records), len(skipped))
        return self.aggregator.summarize_stage_aging(records, self.config.stage_aging_rules, now, skipped)

    def quarterly_forecast(
        self,
        deals: Iterable[Deal],
        lookup: Optional[CrmLookup] = None,
    ) -> ForecastSummary:
        return self.quarterly.build(deals, self.now(), lookup)

    def weekly_forecast(
        self,
        open_deals: Iterable[Deal],
        lookup: Optional[CrmLookup] = None,
        closed_deals: Iterable[Deal] = (),
    ) -> WeeklyForecastReport:
        return self.weekly.build(open_deals, self.now(), lookup, closed_deals)
