"""Tests for the completeness scorer."""

import pytest

from models.deal_models import CompletenessTier
from scripts.analytics.config import DEFAULT_REQUIRED_PROPERTIES, RequiredProperty, ZeroAmountPolicy
from scripts.analytics.hygiene import CompletenessScorer, is_property_missing, tier_for
from scripts.lib.errors import ConfigError


def _specs(*names):
    return [RequiredProperty(label=name.title(), property_name=name) for name in names]


class TestIsPropertyMissing:
    @pytest.mark.parametrize("value", [None, "", "   ", [], "\t\n"])
    def test_blank_values_are_missing(self, value):
        assert is_property_missing("prior_ehr", value) is True

    @pytest.mark.parametrize("value", ["Epic", 0, "0", ["a"], 12.5])
    def test_filled_values_are_present(self, value):
        assert is_property_missing("prior_ehr", value) is False

    def test_zero_amount_present_by_default(self):
        assert is_property_missing("amount", 0) is False
        assert is_property_missing("amount", "0") is False

    def test_zero_amount_missing_policy(self):
        policy = ZeroAmountPolicy.MISSING
        assert is_property_missing("amount", 0, zero_amount_policy=policy) is True
        assert is_property_missing("amount", "0.00", zero_amount_policy=policy) is True
        assert is_property_missing("amount", "500", zero_amount_policy=policy) is False

    @pytest.mark.parametrize("value", ["abc", "$1,000", "n/a", {"value": 5}])
    def test_non_numeric_amount_is_missing(self, value):
        assert is_property_missing("amount", value) is True
        assert is_property_missing("amount", value, zero_amount_policy=ZeroAmountPolicy.MISSING) is True

    def test_non_numeric_other_property_is_present(self):
        assert is_property_missing("prior_ehr", "abc") is False

    def test_zero_policy_only_applies_to_amount_property(self):
        policy = ZeroAmountPolicy.MISSING
        assert is_property_missing("num_employees", 0, zero_amount_policy=policy) is False
        assert is_property_missing("arr", 0, zero_amount_policy=policy, amount_property="arr") is True


class TestTierFor:
    @pytest.mark.parametrize("score,tier", [
        (100, CompletenessTier.EXCELLENT),
        (90, CompletenessTier.EXCELLENT),
        (89, CompletenessTier.GOOD),
        (70, CompletenessTier.GOOD),
        (69, CompletenessTier.POOR),
        (0, CompletenessTier.POOR),
    ])
    def test_thresholds(self, score, tier):
        assert tier_for(score) is tier


class TestCompletenessScorer:
    def test_complete_deal_scores_100(self, make_deal, complete_properties):
        scorer = CompletenessScorer(DEFAULT_REQUIRED_PROPERTIES)
        report = scorer.score(make_deal("1", **complete_properties))
        assert report.completeness_score == 100
        assert report.tier is CompletenessTier.EXCELLENT
        assert report.missing_properties == []
        assert report.total_present == 13

    def test_score_formula(self, make_deal):
        scorer = CompletenessScorer(_specs("a", "b", "c", "d"))
        report = scorer.score(make_deal(a="x", b="y", c="z"))
        assert report.completeness_score == 75
        assert report.tier is CompletenessTier.GOOD
        assert [c.property_name for c in report.missing_properties] == ["d"]

    def test_rounds_half_up(self, make_deal):
        scorer = CompletenessScorer(_specs(*"abcdefgh"))
        # 1 of 8 present -> 12.5 -> 13
        report = scorer.score(make_deal(a="x"))
        assert report.completeness_score == 13

    def test_never_100_with_a_missing_property(self, make_deal):
        names = [f"p{i}" for i in range(250)]
        scorer = CompletenessScorer(_specs(*names))
        deal = make_deal(**{name: "x" for name in names[:-1]})
        report = scorer.score(deal)
        assert report.total_missing == 1
        assert report.completeness_score == 99

    def test_unknown_property_is_missing(self, make_deal):
        scorer = CompletenessScorer(_specs("dealname", "does_not_exist"))
        report = scorer.score(make_deal(dealname="Acme"))
        assert report.completeness_score == 50
        assert report.missing_properties[0].property_name == "does_not_exist"

    def test_missing_list_follows_configured_order(self, make_deal):
        scorer = CompletenessScorer(_specs("c", "a", "b"))
        report = scorer.score(make_deal())
        assert [c.property_name for c in report.missing_properties] == ["c", "a", "b"]

    def test_idempotent(self, make_deal, complete_properties, lookup, now):
        complete_properties.pop("prior_ehr")
        scorer = CompletenessScorer(DEFAULT_REQUIRED_PROPERTIES)
        deal = make_deal("7", **complete_properties)
        assert scorer.score(deal, lookup, now) == scorer.score(deal, lookup, now)

    def test_zero_amount_policy_is_applied(self, make_deal):
        deal = make_deal(amount=0)
        assert CompletenessScorer(_specs("amount")).score(deal).completeness_score == 100
        strict = CompletenessScorer(_specs("amount"), zero_amount_policy=ZeroAmountPolicy.MISSING)
        assert strict.score(deal).completeness_score == 0

    def test_unparseable_amount_counts_as_missing(self, make_deal):
        report = CompletenessScorer(_specs("amount")).score(make_deal(amount="abc"))
        assert report.total_missing == 1
        assert report.completeness_score == 0
        assert report.missing_properties[0].value == "abc"

    def test_enrichment_from_lookup(self, make_deal, complete_properties, lookup, now):
        complete_properties["pipeline"] = "default"
        report = CompletenessScorer(DEFAULT_REQUIRED_PROPERTIES).score(
            make_deal("1", **complete_properties), lookup, now,
        )
        assert report.deal_stage_name == "Proposal"
        assert report.deal_pipeline_name == "Sales Pipeline"
        assert report.deal_owner_name == "Dana Reyes"

    def test_past_due_close_date(self, make_deal, now):
        scorer = CompletenessScorer(_specs("closedate"))
        assert scorer.score(make_deal(closedate="2025-01-31T00:00:00Z"), now=now).is_close_date_past_due
        assert not scorer.score(make_deal(closedate="2025-03-31T00:00:00Z"), now=now).is_close_date_past_due
        assert not scorer.score(make_deal(), now=now).is_close_date_past_due

    def test_empty_required_list_is_config_error(self):
        with pytest.raises(ConfigError):
            CompletenessScorer([])

    def test_duplicate_required_properties_is_config_error(self):
        with pytest.raises(ConfigError):
            CompletenessScorer(_specs("amount", "amount"))
