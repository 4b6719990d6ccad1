"""
HubSpot Deal Analytics — Pydantic Models
=========================================

CRM records handed to the analytics engine (deals, pipelines, stages,
owners) and the report objects it derives from them. Report objects are
built fresh on every run and never persisted by the engine itself.
"""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scripts.lib.utils import parse_timestamp

# A single HubSpot property value
PropertyValue = Union[str, int, float, List[Any], None]


def _coerce_property(value: Any) -> PropertyValue:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None or isinstance(value, (str, int, float, list)):
        return value
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


# ─── CRM Records ────────────────────────────────────────────

class Deal(BaseModel):
    """A deal snapshot as returned by the CRM. Never mutated by the engine."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    properties: Dict[str, PropertyValue] = Field(default_factory=dict)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, value: Any) -> Dict[str, PropertyValue]:
        if not value:
            return {}
        return {str(k): _coerce_property(v) for k, v in dict(value).items()}

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)


class Stage(BaseModel):
    """A pipeline stage. Stage ids are only unique within their pipeline."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    label: str = ""
    display_order: int = Field(default=0, alias="displayOrder")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Pipeline(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    label: str = ""
    display_order: int = Field(default=0, alias="displayOrder")
    stages: List[Stage] = Field(default_factory=list)


class Owner(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    email: Optional[str] = None
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return value or ""

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email or self.id


class DealProperty(BaseModel):
    """A deal property definition from the HubSpot properties API."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    label: str = ""
    type: str = ""
    field_type: str = Field(default="", alias="fieldType")
    group_name: str = Field(default="", alias="groupName")
    description: str = ""
    calculated: bool = False
    hidden: bool = False
    hubspot_defined: bool = Field(default=False, alias="hubspotDefined")
    options: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("label", "type", "field_type", "group_name", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return value or ""


# ─── Shared ─────────────────────────────────────────────────

class SkippedDeal(BaseModel):
    """A deal left out of a report because of a data-quality issue."""
    deal_id: str
    deal_name: str
    reason: str


# ─── Hygiene ────────────────────────────────────────────────

class CompletenessTier(str, Enum):
    EXCELLENT = "excellent"   # 90-100
    GOOD = "good"             # 70-89
    POOR = "poor"             # below 70


class PropertyCheck(BaseModel):
    label: str
    property_name: str
    value: Any = None
    is_missing: bool


class HygieneReport(BaseModel):
    """Completeness of one deal against the required-property list."""
    deal_id: str
    deal_name: str
    deal_stage: Optional[str] = None
    deal_stage_name: Optional[str] = None
    deal_pipeline: Optional[str] = None
    deal_pipeline_name: Optional[str] = None
    deal_owner: Optional[str] = None
    deal_owner_name: Optional[str] = None
    property_checks: List[PropertyCheck] = Field(default_factory=list)
    missing_properties: List[PropertyCheck] = Field(default_factory=list)
    completeness_score: int
    tier: CompletenessTier
    total_required: int
    total_present: int
    total_missing: int
    close_date: Optional[datetime] = None
    is_close_date_past_due: bool = False


class PropertyMissRate(BaseModel):
    label: str
    property_name: str
    missing_count: int
    percentage: int


class TierBuckets(BaseModel):
    excellent: List[HygieneReport] = Field(default_factory=list)
    good: List[HygieneReport] = Field(default_factory=list)
    poor: List[HygieneReport] = Field(default_factory=list)


class HygieneSummary(BaseModel):
    generated_at: datetime
    total_deals: int
    average_completeness: int
    property_missing_counts: List[PropertyMissRate] = Field(default_factory=list)
    deals_by_completeness: TierBuckets = Field(default_factory=TierBuckets)
    issue_policy: str
    min_missing_for_issue: int
    deals_with_issues: List[HygieneReport] = Field(default_factory=list)
    deals_with_past_due_close_dates: List[HygieneReport] = Field(default_factory=list)
    past_due_count: int = 0
    skipped_deals: List[SkippedDeal] = Field(default_factory=list)


# ─── Stage Aging ────────────────────────────────────────────

class StageAgingRecord(BaseModel):
    """How long one deal has sat in its current stage, and why it is flagged."""
    deal_id: str
    deal_name: str
    stage_id: str
    stage_name: str
    pipeline_id: Optional[str] = None
    pipeline_name: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    amount: Optional[float] = None
    close_date: Optional[datetime] = None
    entered_stage_at: datetime
    date_property_used: str
    days_in_stage: int
    last_modified_at: Optional[datetime] = None
    days_since_modified: Optional[int] = None
    threshold_days: int
    exceeds_threshold: bool
    flag_reasons: List[str] = Field(default_factory=list)

    @property
    def is_flagged(self) -> bool:
        return bool(self.flag_reasons)


class StageBreakdown(BaseModel):
    stage_id: str
    stage_name: str
    threshold_days: int
    total_deals: int
    flagged_deals: int
    average_days_in_stage: float
    median_days_in_stage: float
    longest_deal: Optional[StageAgingRecord] = None
    flagged_deals_list: List[StageAgingRecord] = Field(default_factory=list)


class StageAgingSummary(BaseModel):
    generated_at: datetime
    total_deals: int
    total_flagged: int
    stale_deals: int
    no_activity_deals: int
    past_due_deals: int
    stage_breakdowns: List[StageBreakdown] = Field(default_factory=list)
    overall_average_days: float
    overall_median_days: float
    all_deals: List[StageAgingRecord] = Field(default_factory=list)
    skipped_deals: List[SkippedDeal] = Field(default_factory=list)


# ─── Time Windows ───────────────────────────────────────────

class QuarterInfo(BaseModel):
    year: int
    quarter: int
    start: datetime
    end: datetime
    label: str


class WeekWindow(BaseModel):
    week_start: datetime
    week_end: datetime


# ─── Forecasts ──────────────────────────────────────────────

class ForecastDeal(BaseModel):
    deal_id: str
    deal_name: str
    stage_id: Optional[str] = None
    stage_name: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: str
    amount: float
    close_date: datetime


class MonthlyForecast(BaseModel):
    month: str
    year: int
    month_number: int
    total_arr: float
    deal_count: int
    percentage_of_total: float
    deals: List[ForecastDeal] = Field(default_factory=list)


class OwnerForecast(BaseModel):
    owner_id: Optional[str] = None
    owner_name: str
    total_arr: float
    deal_count: int
    average_deal_size: float
    percentage_of_total: float
    deals: List[ForecastDeal] = Field(default_factory=list)


class ForecastSummary(BaseModel):
    """Quarterly ARR forecast."""
    generated_at: datetime
    quarter: QuarterInfo
    total_arr: float
    total_deals: int
    average_deal_size: float
    monthly_breakdown: List[MonthlyForecast] = Field(default_factory=list)
    owner_breakdown: List[OwnerForecast] = Field(default_factory=list)
    all_deals: List[ForecastDeal] = Field(default_factory=list)
    skipped_deals_count: int = 0
    skipped_deals: List[SkippedDeal] = Field(default_factory=list)


class StageForecast(BaseModel):
    stage_name: str
    deal_count: int
    pipeline_amount: float
    weighted_amount: float
    stage_weight: float
    percentage_of_total: float


class ClosedTotals(BaseModel):
    count: int = 0
    amount: float = 0.0


class WeeklyForecastReport(BaseModel):
    """Weighted pipeline for the current Monday-Sunday week."""
    generated_at: datetime
    week: WeekWindow
    total_pipeline: float
    weighted_pipeline: float
    total_deals: int
    closed_won: ClosedTotals = Field(default_factory=ClosedTotals)
    closed_lost: ClosedTotals = Field(default_factory=ClosedTotals)
    stage_breakdown: List[StageForecast] = Field(default_factory=list)
