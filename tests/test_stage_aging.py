"""Tests for the stage aging analyzer."""

from datetime import datetime, timedelta, timezone

import pytest

from models.deal_models import SkippedDeal, StageAgingRecord
from scripts.analytics.config import DEFAULT_STAGE_AGING_RULES, StageAgingRule
from scripts.analytics.stage_aging import StageAgingAnalyzer, whole_days_between
from scripts.lib.errors import ConfigError

SQL_STAGE = "17915773"
DEMO_STAGE = "963167283"
PROPOSAL_STAGE = "59865091"


def _iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


@pytest.fixture
def analyzer():
    return StageAgingAnalyzer(DEFAULT_STAGE_AGING_RULES, no_activity_threshold_days=7)


class TestWholeDaysBetween:
    def test_truncates(self, now):
        assert whole_days_between(now - timedelta(days=3, hours=23), now) == 3
        assert whole_days_between(now - timedelta(hours=23), now) == 0

    def test_truncates_toward_zero_for_future(self, now):
        assert whole_days_between(now + timedelta(hours=30), now) == -1


class TestStageAgingAnalyzer:
    def test_stalled_deal(self, analyzer, make_deal, now, lookup):
        deal = make_deal(
            "1",
            dealname="Acme",
            dealstage=PROPOSAL_STAGE,
            hubspot_owner_id="101",
            hs_v2_date_entered_59865091=_iso(now - timedelta(days=11, hours=12)),
            hs_lastmodifieddate=_iso(now - timedelta(days=1)),
            closedate="2025-03-31T00:00:00Z",
        )
        record = analyzer.analyze(deal, now, lookup)
        assert isinstance(record, StageAgingRecord)
        assert record.days_in_stage == 11
        assert record.days_since_modified == 1
        assert record.exceeds_threshold is True
        assert record.flag_reasons == ["Stalled in Proposal"]
        assert record.date_property_used == "hs_v2_date_entered_59865091"
        assert record.owner_name == "Dana Reyes"

    def test_threshold_is_strictly_greater(self, analyzer, make_deal, now):
        deal = make_deal(
            dealstage=PROPOSAL_STAGE,
            hs_date_entered_59865091=_iso(now - timedelta(days=7, hours=23)),
        )
        record = analyzer.analyze(deal, now)
        assert record.days_in_stage == 7
        assert record.exceeds_threshold is False
        assert record.flag_reasons == []
        assert record.date_property_used == "hs_date_entered_59865091"

    def test_all_flags_in_fixed_order(self, analyzer, make_deal, now):
        deal = make_deal(
            dealstage=SQL_STAGE,
            hs_v2_date_entered_17915773=_iso(now - timedelta(days=30)),
            hs_lastmodifieddate=_iso(now - timedelta(days=8)),
            closedate="2025-02-01T00:00:00Z",
        )
        record = analyzer.analyze(deal, now)
        assert record.flag_reasons == ["Stalled in SQL", "No Recent Activity", "Past-Due Close Date"]
        assert record.is_flagged

    def test_activity_and_past_due_without_stall(self, analyzer, make_deal, now):
        deal = make_deal(
            dealstage=DEMO_STAGE,
            hs_v2_date_entered_963167283=_iso(now - timedelta(days=2)),
            closedate="2025-02-11T00:00:00Z",
            updated_at=_iso(now - timedelta(days=9)),
        )
        record = analyzer.analyze(deal, now)
        assert record.exceeds_threshold is False
        assert record.flag_reasons == ["No Recent Activity", "Past-Due Close Date"]

    def test_no_last_modified_gives_none(self, analyzer, make_deal, now):
        deal = make_deal(dealstage=SQL_STAGE, hs_v2_date_entered_17915773=_iso(now))
        record = analyzer.analyze(deal, now)
        assert record.days_since_modified is None
        assert record.flag_reasons == []

    def test_unmonitored_stage_is_skipped(self, analyzer, make_deal, now):
        result = analyzer.analyze(make_deal("9", dealname="Other", dealstage="closedwon"), now)
        assert isinstance(result, SkippedDeal)
        assert result.deal_id == "9"
        assert "not monitored" in result.reason

    def test_missing_stage_entry_is_skipped(self, analyzer, make_deal, now):
        result = analyzer.analyze(make_deal("9", dealstage=SQL_STAGE), now)
        assert isinstance(result, SkippedDeal)
        assert "entry date" in result.reason

    def test_custom_rules(self, make_deal, now):
        analyzer = StageAgingAnalyzer(
            [StageAgingRule("custom", "Custom", 0, "Stuck in Custom")],
            no_activity_threshold_days=30,
        )
        deal = make_deal(dealstage="custom", hs_v2_date_entered_custom=_iso(now - timedelta(days=1)))
        assert analyzer.analyze(deal, now).flag_reasons == ["Stuck in Custom"]

    def test_naive_now_treated_as_utc(self, analyzer, make_deal):
        deal = make_deal(dealstage=SQL_STAGE, hs_v2_date_entered_17915773="2025-02-01T00:00:00Z")
        record = analyzer.analyze(deal, datetime(2025, 2, 11, 0, 0))
        assert record.days_in_stage == 10
        assert record.entered_stage_at == datetime(2025, 2, 1, tzinfo=timezone.utc)

    def test_no_rules_is_config_error(self):
        with pytest.raises(ConfigError):
            StageAgingAnalyzer([])
