"""Tests for the quarterly and weekly forecast builders."""

import pytest

from models.deal_models import Pipeline, Stage
from scripts.analytics.aggregation import PipelineAggregator
from scripts.analytics.config import DEFAULT_STAGE_WEIGHTS, ZeroAmountPolicy
from scripts.analytics.forecast import QuarterlyForecaster, WeeklyForecaster
from scripts.analytics.lookup import CrmLookup

PROPOSAL_STAGE = "59865091"


@pytest.fixture
def aggregator():
    return PipelineAggregator(DEFAULT_STAGE_WEIGHTS)


class TestQuarterlyForecaster:
    def test_three_proposal_deals_one_without_close_date(self, aggregator, make_deal, now, lookup):
        deals = [
            make_deal("1", dealstage=PROPOSAL_STAGE, amount="1000", closedate="2025-02-20T00:00:00Z"),
            make_deal("2", dealstage=PROPOSAL_STAGE, amount="2000", closedate="2025-03-10T00:00:00Z"),
            make_deal("3", dealstage=PROPOSAL_STAGE, amount=None),
        ]
        summary = QuarterlyForecaster(aggregator).build(deals, now, lookup)
        assert summary.total_arr == 3000
        assert summary.total_deals == 2
        assert summary.skipped_deals_count == 1
        assert summary.average_deal_size == 1500
        assert summary.quarter.label == "Q1 2025"

    def test_stage_name_resolved_in_deal_pipeline(self, aggregator, make_deal, now, sales_pipeline):
        renewals = Pipeline(id="renewals", label="Renewals",
                            stages=[Stage(id=PROPOSAL_STAGE, label="Renewal Quote")])
        lookup = CrmLookup([sales_pipeline, renewals])
        deals = [
            make_deal("1", dealstage=PROPOSAL_STAGE, pipeline="renewals", amount="100",
                      closedate="2025-02-20T00:00:00Z"),
            make_deal("2", dealstage=PROPOSAL_STAGE, pipeline="default", amount="100",
                      closedate="2025-02-20T00:00:00Z"),
        ]
        summary = QuarterlyForecaster(aggregator).build(deals, now, lookup)
        assert [d.stage_name for d in summary.all_deals] == ["Renewal Quote", "Proposal"]

    def test_null_amount_in_quarter_is_skipped(self, aggregator, make_deal, now):
        deals = [make_deal("1", amount=None, closedate="2025-02-20T00:00:00Z")]
        summary = QuarterlyForecaster(aggregator).build(deals, now)
        assert summary.skipped_deals_count == 1
        assert summary.total_arr == 0
        assert summary.all_deals == []

    def test_out_of_quarter_excluded_silently(self, aggregator, make_deal, now):
        deals = [
            make_deal("1", amount="5000", closedate="2025-04-01T00:00:00Z"),
            make_deal("2", amount="5000", closedate="2024-12-31T23:59:59Z"),
        ]
        summary = QuarterlyForecaster(aggregator).build(deals, now)
        assert summary.skipped_deals_count == 0
        assert summary.total_deals == 0
        assert [m.deal_count for m in summary.monthly_breakdown] == [0, 0, 0]

    def test_unparseable_amount_is_skipped(self, aggregator, make_deal, now):
        deals = [make_deal("1", amount="TBD", closedate="2025-02-20T00:00:00Z")]
        summary = QuarterlyForecaster(aggregator).build(deals, now)
        assert summary.skipped_deals_count == 1
        assert summary.skipped_deals[0].reason == "Missing or invalid amount"

    def test_zero_amount_policy(self, aggregator, make_deal, now):
        deals = [make_deal("1", amount="0", closedate="2025-02-20T00:00:00Z")]
        lenient = QuarterlyForecaster(aggregator).build(deals, now)
        assert lenient.total_deals == 1
        assert lenient.skipped_deals_count == 0

        strict = QuarterlyForecaster(aggregator, zero_amount_policy=ZeroAmountPolicy.MISSING).build(deals, now)
        assert strict.total_deals == 0
        assert strict.skipped_deals_count == 1

    def test_owner_and_month_breakdown(self, aggregator, make_deal, now, lookup):
        deals = [
            make_deal("1", amount="1000", closedate="2025-01-15T00:00:00Z", hubspot_owner_id="102"),
            make_deal("2", amount="4000", closedate="2025-03-15T00:00:00Z", hubspot_owner_id="101"),
            make_deal("3", amount="500", closedate="2025-03-20T00:00:00Z"),
        ]
        summary = QuarterlyForecaster(aggregator).build(deals, now, lookup)
        assert [o.owner_name for o in summary.owner_breakdown] == ["Dana Reyes", "Sam Okafor", "Unassigned"]
        assert [m.total_arr for m in summary.monthly_breakdown] == [1000, 0, 4500]
        assert sum(m.percentage_of_total for m in summary.monthly_breakdown) == pytest.approx(100)

    def test_unknown_owner_id_gets_placeholder_name(self, aggregator, make_deal, now, lookup):
        deals = [make_deal("1", amount="10", closedate="2025-02-01T00:00:00Z", hubspot_owner_id="999")]
        summary = QuarterlyForecaster(aggregator).build(deals, now, lookup)
        assert summary.owner_breakdown[0].owner_name == "Owner 999"


class TestWeeklyForecaster:
    def test_weighted_pipeline(self, aggregator, make_deal, now, lookup):
        deals = [
            make_deal("1", dealstage="17915773", pipeline="default", amount="1000"),
            make_deal("2", dealstage="963167283", pipeline="default", amount="2000"),
            make_deal("3", dealstage=PROPOSAL_STAGE, pipeline="default", amount="4000"),
        ]
        report = WeeklyForecaster(aggregator).build(deals, now, lookup)
        assert report.total_pipeline == 7000
        assert report.weighted_pipeline == pytest.approx(300 + 600 + 2000)
        assert report.total_deals == 3
        assert report.week.week_start.day == 10

    def test_closed_won_and_lost_this_week(self, aggregator, make_deal, now, lookup):
        closed = [
            make_deal("w1", dealstage="closedwon", amount="1000",
                      hs_v2_date_entered_closedwon="2025-02-11T10:00:00Z"),
            make_deal("w2", dealstage="closedwon", amount="3000",
                      hs_date_entered_closedwon="2025-02-10T00:00:00Z"),
            make_deal("w3", dealstage="closedwon", amount="9000",
                      hs_v2_date_entered_closedwon="2025-02-09T23:59:59Z"),
            make_deal("l1", dealstage="closedlost", amount="700",
                      hs_v2_date_entered_closedlost="2025-02-16T23:00:00Z"),
            make_deal("l2", dealstage="closedlost", amount="700"),
        ]
        report = WeeklyForecaster(aggregator).build([], now, lookup, closed)
        assert report.closed_won.count == 2
        assert report.closed_won.amount == 4000
        assert report.closed_lost.count == 1
        assert report.closed_lost.amount == 700
        assert report.total_pipeline == 0
        assert report.stage_breakdown == []
