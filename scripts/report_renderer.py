"""
Deal Report Renderer
====================
Plain-text rendering of every deal analytics report. The text is what gets
exported next to the JSON, stored as a report document, and handed to the
narrator as prompt input.

Usage:
    from scripts.report_renderer import render_report
    text = render_report("hygiene", summary)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from models.deal_models import (
    ForecastSummary,
    HygieneReport,
    HygieneSummary,
    StageAgingRecord,
    StageAgingSummary,
    WeeklyForecastReport,
)
from scripts.lib.errors import ReportError

RULE = "=" * 60
THIN_RULE = "-" * 60

# Lists longer than this are cut with a "... and N more" line
MAX_LISTED_DEALS = 25


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def _fmt_currency(value: Any, symbol: str = "$") -> str:
    """Format a number as whole-dollar currency."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return f"{symbol}0"
    return f"{symbol}{v:,.0f}"


def _fmt_pct(value: float) -> str:
    return f"{value:.1f}%"


def _fmt_date(value: Optional[datetime]) -> str:
    if value is None:
        return "n/a"
    return value.strftime("%Y-%m-%d")


def _header(title: str, generated_at: datetime) -> List[str]:
    return [RULE, title, f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M %Z').strip()}", RULE]


def _truncated(items: List[Any], render: Callable[[Any], str]) -> List[str]:
    lines = [render(item) for item in items[:MAX_LISTED_DEALS]]
    if len(items) > MAX_LISTED_DEALS:
        lines.append(f"  ... and {len(items) - MAX_LISTED_DEALS} more")
    return lines


# ---------------------------------------------------------------------------
# Hygiene
# ---------------------------------------------------------------------------

def _hygiene_line(report: HygieneReport) -> str:
    missing = ", ".join(check.label for check in report.missing_properties) or "none"
    owner = report.deal_owner_name or "Unassigned"
    return (f"  - {report.deal_name} ({report.completeness_score}%, {owner}) "
            f"missing: {missing}")


def render_hygiene(summary: HygieneSummary) -> str:
    tiers = summary.deals_by_completeness
    lines = _header("DEAL HYGIENE REPORT", summary.generated_at)
    lines += [
        f"Deals analyzed:        {summary.total_deals}",
        f"Average completeness:  {summary.average_completeness}%",
        f"Excellent (>=90%):     {len(tiers.excellent)}",
        f"Good (70-89%):         {len(tiers.good)}",
        f"Poor (<70%):           {len(tiers.poor)}",
        f"Past-due close dates:  {summary.past_due_count}",
        "",
        "Missing properties",
        THIN_RULE,
    ]
    for rate in summary.property_missing_counts:
        lines.append(f"  {rate.label:<28} {rate.missing_count:>4} deals ({rate.percentage}%)")

    lines += [
        "",
        f"Deals needing attention ({len(summary.deals_with_issues)}, "
        f"{summary.min_missing_for_issue}+ missing)",
        THIN_RULE,
    ]
    lines += _truncated(summary.deals_with_issues, _hygiene_line)

    if summary.deals_with_past_due_close_dates:
        lines += ["", "Past-due close dates", THIN_RULE]
        lines += _truncated(
            summary.deals_with_past_due_close_dates,
            lambda r: f"  - {r.deal_name}: closed {_fmt_date(r.close_date)}",
        )

    if summary.skipped_deals:
        lines += ["", f"Skipped deals: {len(summary.skipped_deals)}"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Stage aging
# ---------------------------------------------------------------------------

def _aging_line(record: StageAgingRecord) -> str:
    owner = record.owner_name or "Unassigned"
    return (f"  - {record.deal_name} ({owner}): {record.days_in_stage}d in stage; "
            f"{'; '.join(record.flag_reasons)}")


def render_stage_aging(summary: StageAgingSummary) -> str:
    lines = _header("DEAL STAGE AGING REPORT", summary.generated_at)
    lines += [
        f"Deals analyzed:        {summary.total_deals}",
        f"Flagged deals:         {summary.total_flagged}",
        f"  Stalled in stage:    {summary.stale_deals}",
        f"  No recent activity:  {summary.no_activity_deals}",
        f"  Past-due close date: {summary.past_due_deals}",
        f"Average days in stage: {summary.overall_average_days:.1f}",
        f"Median days in stage:  {summary.overall_median_days:.1f}",
    ]

    for stage in summary.stage_breakdowns:
        lines += [
            "",
            f"{stage.stage_name} (threshold {stage.threshold_days} days)",
            THIN_RULE,
            f"  Deals: {stage.total_deals}   Over threshold: {stage.flagged_deals}",
            f"  Average: {stage.average_days_in_stage:.1f}d   Median: {stage.median_days_in_stage:.1f}d",
        ]
        if stage.longest_deal:
            lines.append(f"  Longest: {stage.longest_deal.deal_name} "
                         f"({stage.longest_deal.days_in_stage}d)")
        lines += _truncated(stage.flagged_deals_list, _aging_line)

    other_flagged = [r for r in summary.all_deals if r.is_flagged and not r.exceeds_threshold]
    if other_flagged:
        lines += ["", "Other flagged deals", THIN_RULE]
        lines += _truncated(other_flagged, _aging_line)

    if summary.skipped_deals:
        lines += ["", f"Skipped deals: {len(summary.skipped_deals)}"]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Forecasts
# ---------------------------------------------------------------------------

def render_forecast(summary: ForecastSummary) -> str:
    lines = _header(f"QUARTERLY ARR FORECAST: {summary.quarter.label}", summary.generated_at)
    lines += [
        f"Period:             {_fmt_date(summary.quarter.start)} to {_fmt_date(summary.quarter.end)}",
        f"Total ARR:          {_fmt_currency(summary.total_arr)}",
        f"Deals:              {summary.total_deals}",
        f"Average deal size:  {_fmt_currency(summary.average_deal_size)}",
        f"Skipped deals:      {summary.skipped_deals_count}",
        "",
        "By month",
        THIN_RULE,
    ]
    for month in summary.monthly_breakdown:
        lines.append(f"  {month.month:<16} {_fmt_currency(month.total_arr):>14} "
                     f"{month.deal_count:>4} deals {_fmt_pct(month.percentage_of_total):>7}")

    lines += ["", "By owner", THIN_RULE]
    for owner in summary.owner_breakdown:
        lines.append(f"  {owner.owner_name:<24} {_fmt_currency(owner.total_arr):>14} "
                     f"{owner.deal_count:>4} deals {_fmt_pct(owner.percentage_of_total):>7}")
    return "\n".join(lines)


def render_weekly(report: WeeklyForecastReport) -> str:
    week = f"{_fmt_date(report.week.week_start)} to {_fmt_date(report.week.week_end)}"
    lines = _header(f"WEEKLY WEIGHTED FORECAST: {week}", report.generated_at)
    lines += [
        f"Open pipeline:      {_fmt_currency(report.total_pipeline)} ({report.total_deals} deals)",
        f"Weighted pipeline:  {_fmt_currency(report.weighted_pipeline)}",
        f"Closed won:         {report.closed_won.count} deals, {_fmt_currency(report.closed_won.amount)}",
        f"Closed lost:        {report.closed_lost.count} deals, {_fmt_currency(report.closed_lost.amount)}",
        "",
        "By stage",
        THIN_RULE,
    ]
    for stage in report.stage_breakdown:
        lines.append(
            f"  {stage.stage_name:<18} {stage.deal_count:>4} deals "
            f"{_fmt_currency(stage.pipeline_amount):>14} x {stage.stage_weight:.2f} = "
            f"{_fmt_currency(stage.weighted_amount):>12} ({_fmt_pct(stage.percentage_of_total)})"
        )
    return "\n".join(lines)


RENDERERS: Dict[str, Callable[[Any], str]] = {
    "hygiene": render_hygiene,
    "aging": render_stage_aging,
    "forecast": render_forecast,
    "weekly": render_weekly,
}


def render_report(report_type: str, report: Any) -> str:
    renderer = RENDERERS.get(report_type)
    if renderer is None:
        raise ReportError(report_type, "no renderer for this report type")
    return renderer(report)
