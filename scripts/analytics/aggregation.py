"""
Pipeline Aggregator
===================

Cross-deal rollups shared by every report: stage buckets with weighted
amounts, owner and month buckets for the quarterly forecast, and the
hygiene and stage-aging summaries.

Output ordering is deterministic for identical input:
    - stage buckets follow the canonical order (SQL, Demo Completed, Proposal),
      unmatched labels after them in first-seen order;
    - owner buckets by descending amount, ties in first-seen order;
    - month buckets for every month of the period, zero-deal months included.

Empty populations give 0 for every percentage, mean and median.
"""
from __future__ import annotations

import logging
import math
import statistics
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from models.deal_models import (
    CompletenessTier,
    Deal,
    ForecastDeal,
    ForecastSummary,
    HygieneReport,
    HygieneSummary,
    MonthlyForecast,
    OwnerForecast,
    PropertyMissRate,
    QuarterInfo,
    SkippedDeal,
    StageAgingRecord,
    StageAgingSummary,
    StageBreakdown,
    StageForecast,
    TierBuckets,
)
from scripts.analytics.config import IssuePolicy, RequiredProperty, StageAgingRule, validate_stage_weights
from scripts.analytics.lookup import CrmLookup
from scripts.analytics.periods import months_in_period
from scripts.analytics.properties import DEAL_STAGE, get_raw, get_str
from scripts.lib.utils import safe_float

logger = logging.getLogger(__name__)

NO_ACTIVITY_FLAG = "No Recent Activity"
PAST_DUE_FLAG = "Past-Due Close Date"


# ---------------------------------------------------------------------------
# Stage label normalization
# ---------------------------------------------------------------------------

class StageBucket(NamedTuple):
    token: str                  # key into the stage weight table
    display_name: str
    keywords: Tuple[str, ...]   # all must appear in the lowercased label


# Checked in order; first match wins.
STAGE_VOCABULARY: Tuple[StageBucket, ...] = (
    StageBucket("sql", "SQL", ("sql",)),
    StageBucket("demo", "Demo Completed", ("demo", "complet")),
    StageBucket("proposal", "Proposal", ("proposal",)),
)

_CANONICAL_ORDER = [bucket.display_name for bucket in STAGE_VOCABULARY]


def classify_stage_label(label: Optional[str]) -> Optional[StageBucket]:
    """Map a free-form stage label to its bucket by keyword containment."""
    normalized = (label or "").lower().strip()
    if not normalized:
        return None
    for bucket in STAGE_VOCABULARY:
        if all(keyword in normalized for keyword in bucket.keywords):
            return bucket
    return None


def readable_stage_name(label: Optional[str]) -> str:
    bucket = classify_stage_label(label)
    if bucket:
        return bucket.display_name
    return label or "Unknown"


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def _safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Zero-safe division."""
    if denominator == 0:
        return default
    return numerator / denominator


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 away from zero for positives (12.5 -> 13)."""
    return int(math.floor(value + 0.5))


def mean(values: Sequence[float]) -> float:
    return _safe_div(sum(values), len(values))


def median(values: Sequence[float]) -> float:
    """Standard median; the mean of the two middle values for even counts."""
    if not values:
        return 0.0
    return float(statistics.median(values))


def percentage(part: float, total: float) -> float:
    return _safe_div(part * 100.0, total)


def parse_amount(value) -> float:
    """Deal amount for aggregation; 0 when absent or unparseable."""
    return safe_float(value)


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class PipelineAggregator:
    """Rollups over already-evaluated deals. Holds only the stage weight table."""

    def __init__(self, stage_weights: Mapping[str, float], amount_property: str = "amount"):
        validate_stage_weights(dict(stage_weights))
        self.stage_weights: Dict[str, float] = {k: float(v) for k, v in stage_weights.items()}
        self.amount_property = amount_property

    def weight_for(self, stage_label: Optional[str]) -> float:
        bucket = classify_stage_label(stage_label)
        if bucket is None:
            return 0.0
        return self.stage_weights[bucket.token]

    # ------------------------------------------------------------------
    # Stage buckets (weekly weighted forecast)
    # ------------------------------------------------------------------

    def aggregate_by_stage(self, deals: Iterable[Deal], lookup: CrmLookup) -> List[StageForecast]:
        buckets: Dict[str, Dict[str, float]] = {}

        for deal in deals:
            stage_id = get_str(deal, DEAL_STAGE)
            if not stage_id:
                logger.debug("Deal %s has no stage; left out of stage buckets", deal.id)
                continue

            label = lookup.deal_stage_label(deal) or "Unknown"
            name = readable_stage_name(label)
            entry = buckets.setdefault(name, {
                "deal_count": 0,
                "pipeline_amount": 0.0,
                "weight": self.weight_for(label),
            })
            entry["deal_count"] += 1
            entry["pipeline_amount"] += parse_amount(get_raw(deal, self.amount_property))

        # Percentages need the full total first
        total = sum(entry["pipeline_amount"] for entry in buckets.values())
        breakdown = [
            StageForecast(
                stage_name=name,
                deal_count=int(entry["deal_count"]),
                pipeline_amount=entry["pipeline_amount"],
                weighted_amount=entry["pipeline_amount"] * entry["weight"],
                stage_weight=entry["weight"],
                percentage_of_total=percentage(entry["pipeline_amount"], total),
            )
            for name, entry in buckets.items()
        ]

        def _order(stage: StageForecast) -> int:
            if stage.stage_name in _CANONICAL_ORDER:
                return _CANONICAL_ORDER.index(stage.stage_name)
            return len(_CANONICAL_ORDER)

        # sorted() is stable, so unmatched stages keep first-seen order
        return sorted(breakdown, key=_order)

    # ------------------------------------------------------------------
    # Owner and month buckets (quarterly forecast)
    # ------------------------------------------------------------------

    def aggregate_by_owner(self, deals: Sequence[ForecastDeal]) -> List[OwnerForecast]:
        total = sum(d.amount for d in deals)
        groups: Dict[Optional[str], List[ForecastDeal]] = {}
        for deal in deals:
            groups.setdefault(deal.owner_id, []).append(deal)

        owners = []
        for owner_id, owner_deals in groups.items():
            owner_arr = sum(d.amount for d in owner_deals)
            owners.append(OwnerForecast(
                owner_id=owner_id,
                owner_name=owner_deals[0].owner_name if owner_id else "Unassigned",
                total_arr=owner_arr,
                deal_count=len(owner_deals),
                average_deal_size=_safe_div(owner_arr, len(owner_deals)),
                percentage_of_total=percentage(owner_arr, total),
                deals=owner_deals,
            ))

        return sorted(owners, key=lambda o: -o.total_arr)

    def aggregate_by_month(
        self,
        deals: Sequence[ForecastDeal],
        period_start,
        period_end,
    ) -> List[MonthlyForecast]:
        total = sum(d.amount for d in deals)
        by_month: Dict[Tuple[int, int], List[ForecastDeal]] = {}
        for deal in deals:
            close = deal.close_date.astimezone(period_start.tzinfo)
            by_month.setdefault((close.year, close.month), []).append(deal)

        breakdown = []
        for year, month in months_in_period(period_start, period_end):
            month_deals = by_month.get((year, month), [])
            month_arr = sum(d.amount for d in month_deals)
            breakdown.append(MonthlyForecast(
                month=period_start.replace(year=year, month=month, day=1).strftime("%B %Y"),
                year=year,
                month_number=month,
                total_arr=month_arr,
                deal_count=len(month_deals),
                percentage_of_total=percentage(month_arr, total),
                deals=month_deals,
            ))
        return breakdown

    def summarize_forecast(
        self,
        deals: Sequence[ForecastDeal],
        quarter: QuarterInfo,
        generated_at,
        skipped: Sequence[SkippedDeal] = (),
    ) -> ForecastSummary:
        total_arr = sum(d.amount for d in deals)
        return ForecastSummary(
            generated_at=generated_at,
            quarter=quarter,
            total_arr=total_arr,
            total_deals=len(deals),
            average_deal_size=_safe_div(total_arr, len(deals)),
            monthly_breakdown=self.aggregate_by_month(deals, quarter.start, quarter.end),
            owner_breakdown=self.aggregate_by_owner(deals),
            all_deals=list(deals),
            skipped_deals_count=len(skipped),
            skipped_deals=list(skipped),
        )

    # ------------------------------------------------------------------
    # Stage aging
    # ------------------------------------------------------------------

    @staticmethod
    def build_stage_breakdown(rule: StageAgingRule, records: Sequence[StageAgingRecord]) -> StageBreakdown:
        stage_records = [r for r in records if r.stage_id == rule.stage_id]
        flagged = [r for r in stage_records if r.exceeds_threshold]
        days = [r.days_in_stage for r in stage_records]

        longest: Optional[StageAgingRecord] = None
        for record in stage_records:
            if longest is None or record.days_in_stage > longest.days_in_stage:
                longest = record

        return StageBreakdown(
            stage_id=rule.stage_id,
            stage_name=rule.stage_name,
            threshold_days=rule.threshold_days,
            total_deals=len(stage_records),
            flagged_deals=len(flagged),
            average_days_in_stage=mean(days),
            median_days_in_stage=median(days),
            longest_deal=longest,
            flagged_deals_list=flagged,
        )

    def summarize_stage_aging(
        self,
        records: Sequence[StageAgingRecord],
        rules: Sequence[StageAgingRule],
        generated_at,
        skipped: Sequence[SkippedDeal] = (),
    ) -> StageAgingSummary:
        days = [r.days_in_stage for r in records]
        return StageAgingSummary(
            generated_at=generated_at,
            total_deals=len(records),
            total_flagged=sum(1 for r in records if r.is_flagged),
            stale_deals=sum(1 for r in records if r.exceeds_threshold),
            no_activity_deals=sum(1 for r in records if NO_ACTIVITY_FLAG in r.flag_reasons),
            past_due_deals=sum(1 for r in records if PAST_DUE_FLAG in r.flag_reasons),
            stage_breakdowns=[self.build_stage_breakdown(rule, records) for rule in rules],
            overall_average_days=mean(days),
            overall_median_days=median(days),
            all_deals=list(records),
            skipped_deals=list(skipped),
        )

    # ------------------------------------------------------------------
    # Hygiene
    # ------------------------------------------------------------------

    def summarize_hygiene(
        self,
        reports: Sequence[HygieneReport],
        required: Sequence[RequiredProperty],
        issue_policy: IssuePolicy,
        generated_at,
        skipped: Sequence[SkippedDeal] = (),
    ) -> HygieneSummary:
        total = len(reports)

        miss_rates = []
        for requirement in required:
            missing_count = sum(
                1 for report in reports
                if any(mp.property_name == requirement.property_name for mp in report.missing_properties)
            )
            miss_rates.append(PropertyMissRate(
                label=requirement.label,
                property_name=requirement.property_name,
                missing_count=missing_count,
                percentage=round_half_up(percentage(missing_count, total)),
            ))

        tiers = TierBuckets(
            excellent=[r for r in reports if r.tier is CompletenessTier.EXCELLENT],
            good=[r for r in reports if r.tier is CompletenessTier.GOOD],
            poor=[r for r in reports if r.tier is CompletenessTier.POOR],
        )
        past_due = [r for r in reports if r.is_close_date_past_due]

        return HygieneSummary(
            generated_at=generated_at,
            total_deals=total,
            average_completeness=round_half_up(mean([r.completeness_score for r in reports])),
            property_missing_counts=miss_rates,
            deals_by_completeness=tiers,
            issue_policy=issue_policy.value,
            min_missing_for_issue=issue_policy.min_missing,
            deals_with_issues=[r for r in reports if r.total_missing >= issue_policy.min_missing],
            deals_with_past_due_close_dates=past_due,
            past_due_count=len(past_due),
            skipped_deals=list(skipped),
        )
