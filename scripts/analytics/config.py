"""
Deal Analytics Configuration
============================

Required-property list, stage-aging thresholds, stage weights and the
zero-amount / issue-threshold policies. Every component receives these as
explicit arguments; nothing reads module state at evaluation time.

Defaults live here; a YAML file (configs/deal_analytics.yaml) and a few
environment variables can override them.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "configs" / "deal_analytics.yaml"


class ZeroAmountPolicy(str, Enum):
    """Whether an amount of exactly zero counts as a filled-in value."""
    PRESENT = "present"
    MISSING = "missing"


class IssuePolicy(str, Enum):
    """How many missing properties make a deal an issue in the hygiene summary."""
    ANY_MISSING = "any_missing"
    CRITICAL = "critical"

    @property
    def min_missing(self) -> int:
        return 1 if self is IssuePolicy.ANY_MISSING else 3


@dataclass(frozen=True)
class RequiredProperty:
    label: str
    property_name: str


@dataclass(frozen=True)
class StageAgingRule:
    stage_id: str
    stage_name: str
    threshold_days: int
    flag_reason: str


DEFAULT_REQUIRED_PROPERTIES: Tuple[RequiredProperty, ...] = (
    RequiredProperty("Next Meeting Start Time", "hs_next_meeting_start_time"),
    RequiredProperty("Product/s", "product_s"),
    RequiredProperty("Prior EHR", "prior_ehr"),
    RequiredProperty("Deal Collaborator", "hs_all_collaborator_owner_ids"),
    RequiredProperty("Last Activity Date (EDT)", "notes_last_updated"),
    RequiredProperty("Next Activity Date (EDT)", "notes_next_activity_date"),
    RequiredProperty("Next Step", "hs_next_step"),
    RequiredProperty("Close Date (EDT)", "closedate"),
    RequiredProperty("Deal Name", "dealname"),
    RequiredProperty("Deal Owner", "hubspot_owner_id"),
    RequiredProperty("Deal Stage", "dealstage"),
    RequiredProperty("Deal Substage", "proposal_stage"),
    RequiredProperty("Amount", "amount"),
)

DEFAULT_STAGE_AGING_RULES: Tuple[StageAgingRule, ...] = (
    StageAgingRule("17915773", "SQL", 10, "Stalled in SQL"),
    StageAgingRule("963167283", "Demo - Completed", 14, "Stalled in Demo"),
    StageAgingRule("59865091", "Proposal", 7, "Stalled in Proposal"),
)

# Probability-of-close per normalized stage token (weekly weighted forecast only)
DEFAULT_STAGE_WEIGHTS: Dict[str, float] = {
    "sql": 0.30,
    "demo": 0.30,
    "proposal": 0.50,
}

NO_ACTIVITY_THRESHOLD_DAYS = 7


@dataclass(frozen=True)
class EngineConfig:
    required_properties: Tuple[RequiredProperty, ...] = DEFAULT_REQUIRED_PROPERTIES
    stage_aging_rules: Tuple[StageAgingRule, ...] = DEFAULT_STAGE_AGING_RULES
    stage_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_STAGE_WEIGHTS))
    no_activity_threshold_days: int = NO_ACTIVITY_THRESHOLD_DAYS
    hygiene_issue_policy: IssuePolicy = IssuePolicy.ANY_MISSING
    hygiene_zero_amount: ZeroAmountPolicy = ZeroAmountPolicy.PRESENT
    forecast_zero_amount: ZeroAmountPolicy = ZeroAmountPolicy.PRESENT
    amount_property: str = "amount"
    closed_won_stage_id: str = "closedwon"
    closed_lost_stage_id: str = "closedlost"
    timezone: str = "UTC"
    sales_pipeline_id: Optional[str] = None
    hygiene_stage_labels: Tuple[str, ...] = ("proposal", "demo")
    forecast_stage_labels: Tuple[str, ...] = ("proposal",)
    weekly_stage_labels: Tuple[str, ...] = ("sql", "demo", "proposal")

    @property
    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown time zone: {self.timezone!r}", field="timezone") from e

    def validate(self) -> "EngineConfig":
        """Raise ConfigError on anything that would make a run meaningless."""
        if not self.required_properties:
            raise ConfigError("At least one required property must be configured",
                              field="required_properties")
        names = [p.property_name for p in self.required_properties]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigError(f"Duplicate required properties: {', '.join(duplicates)}",
                              field="required_properties")

        if not self.stage_aging_rules:
            raise ConfigError("At least one stage-aging rule must be configured",
                              field="stage_aging_rules")
        stage_ids = [r.stage_id for r in self.stage_aging_rules]
        if len(set(stage_ids)) != len(stage_ids):
            raise ConfigError("Stage-aging rules reference the same stage twice",
                              field="stage_aging_rules")
        for rule in self.stage_aging_rules:
            if rule.threshold_days < 0:
                raise ConfigError(f"Negative threshold for stage {rule.stage_name}",
                                  field="stage_aging_rules")
        if self.no_activity_threshold_days < 0:
            raise ConfigError("no_activity_threshold_days must be >= 0",
                              field="no_activity_threshold_days")

        validate_stage_weights(self.stage_weights)
        _ = self.tzinfo
        return self


def validate_stage_weights(weights: Dict[str, float]) -> None:
    # Local import: aggregation imports this module
    from scripts.analytics.aggregation import STAGE_VOCABULARY

    missing = [b.token for b in STAGE_VOCABULARY if b.token not in weights]
    if missing:
        raise ConfigError(f"Stage weight table has no entry for: {', '.join(missing)}",
                          field="stage_weights")
    for token, weight in weights.items():
        if not isinstance(weight, (int, float)) or isinstance(weight, bool) or not 0 <= weight <= 1:
            raise ConfigError(f"Stage weight for {token!r} must be within [0, 1], got {weight!r}",
                              field="stage_weights")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _required_from_yaml(items: Any) -> Tuple[RequiredProperty, ...]:
    return tuple(
        RequiredProperty(label=str(item["label"]), property_name=str(item["property"]))
        for item in items
    )


def _rules_from_yaml(items: Any) -> Tuple[StageAgingRule, ...]:
    return tuple(
        StageAgingRule(
            stage_id=str(item["stage_id"]),
            stage_name=str(item["stage_name"]),
            threshold_days=int(item["threshold_days"]),
            flag_reason=str(item.get("flag_reason") or f"Stalled in {item['stage_name']}"),
        )
        for item in items
    )


def config_from_dict(data: Dict[str, Any], config_path: Optional[str] = None) -> EngineConfig:
    """Build an EngineConfig from a parsed YAML mapping; unknown keys are ignored."""
    overrides: Dict[str, Any] = {}
    try:
        if "required_properties" in data:
            overrides["required_properties"] = _required_from_yaml(data["required_properties"] or [])
        if "stage_aging" in data:
            aging = data["stage_aging"] or {}
            if "stages" in aging:
                overrides["stage_aging_rules"] = _rules_from_yaml(aging["stages"] or [])
            if "no_activity_threshold_days" in aging:
                overrides["no_activity_threshold_days"] = int(aging["no_activity_threshold_days"])
        if "stage_weights" in data:
            overrides["stage_weights"] = {
                str(k).lower(): v for k, v in (data["stage_weights"] or {}).items()
            }
        hygiene = data.get("hygiene") or {}
        if "issue_policy" in hygiene:
            overrides["hygiene_issue_policy"] = IssuePolicy(hygiene["issue_policy"])
        if "zero_amount" in hygiene:
            overrides["hygiene_zero_amount"] = ZeroAmountPolicy(hygiene["zero_amount"])
        forecast = data.get("forecast") or {}
        if "zero_amount" in forecast:
            overrides["forecast_zero_amount"] = ZeroAmountPolicy(forecast["zero_amount"])
        for key in ("amount_property", "closed_won_stage_id", "closed_lost_stage_id",
                    "timezone", "sales_pipeline_id"):
            if data.get(key) is not None:
                overrides[key] = str(data[key])
        for key in ("hygiene_stage_labels", "forecast_stage_labels", "weekly_stage_labels"):
            if key in data:
                overrides[key] = tuple(str(label) for label in data[key] or [])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid deal analytics config: {e}", config_path=config_path) from e

    return EngineConfig(**overrides)


def load_engine_config(path: Optional[str | Path] = None) -> EngineConfig:
    """
    Load and validate the engine configuration.

    Args:
        path: YAML file to read. Defaults to DEAL_ANALYTICS_CONFIG, then
            configs/deal_analytics.yaml; built-in defaults apply when the
            default file does not exist.

    Returns:
        Validated EngineConfig, with HUBSPOT_SALES_PIPELINE_ID and
        REPORT_TIMEZONE applied on top.
    """
    explicit = path or os.getenv("DEAL_ANALYTICS_CONFIG")
    config_path = Path(explicit) if explicit else DEFAULT_CONFIG_PATH

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {config_path.name}: {e}",
                                  config_path=str(config_path)) from e
        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping", config_path=str(config_path))
        config = config_from_dict(data, config_path=str(config_path))
        logger.info("Loaded deal analytics config from %s", config_path)
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}", config_path=str(config_path))
    else:
        config = EngineConfig()

    env_overrides: Dict[str, Any] = {}
    if os.getenv("HUBSPOT_SALES_PIPELINE_ID"):
        env_overrides["sales_pipeline_id"] = os.environ["HUBSPOT_SALES_PIPELINE_ID"]
    if os.getenv("REPORT_TIMEZONE"):
        env_overrides["timezone"] = os.environ["REPORT_TIMEZONE"]
    if env_overrides:
        config = replace(config, **env_overrides)

    return config.validate()
