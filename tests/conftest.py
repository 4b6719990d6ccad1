"""Shared fixtures: a fixed clock, a deal factory and a small CRM lookup."""

from datetime import datetime, timezone

import pytest

from models.deal_models import Deal, Owner, Pipeline, Stage
from scripts.analytics.lookup import CrmLookup

# Wednesday of ISO week 7, inside Q1 2025
NOW = datetime(2025, 2, 12, 12, 0, tzinfo=timezone.utc)

SQL_STAGE = "17915773"
DEMO_STAGE = "963167283"
PROPOSAL_STAGE = "59865091"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_deal():
    def _make(deal_id="1", updated_at=None, **properties):
        return Deal(id=deal_id, properties=properties, updatedAt=updated_at)
    return _make


@pytest.fixture
def complete_properties():
    """Every default required property filled in."""
    return {
        "hs_next_meeting_start_time": "2025-02-20T15:00:00Z",
        "product_s": "EHR Migration",
        "prior_ehr": "Epic",
        "hs_all_collaborator_owner_ids": "102",
        "notes_last_updated": "2025-02-10T09:00:00Z",
        "notes_next_activity_date": "2025-02-18T09:00:00Z",
        "hs_next_step": "Send pricing",
        "closedate": "2025-03-15T00:00:00Z",
        "dealname": "Acme Clinic",
        "hubspot_owner_id": "101",
        "dealstage": PROPOSAL_STAGE,
        "proposal_stage": "Pricing review",
        "amount": "12000",
    }


@pytest.fixture
def sales_pipeline():
    return Pipeline(
        id="default",
        label="Sales Pipeline",
        stages=[
            Stage(id="appointmentscheduled", label="Discovery", displayOrder=0),
            Stage(id=SQL_STAGE, label="SQL", displayOrder=1),
            Stage(id=DEMO_STAGE, label="Demo - Completed", displayOrder=2),
            Stage(id=PROPOSAL_STAGE, label="Proposal", displayOrder=3),
            Stage(id="closedwon", label="Closed Won", displayOrder=4),
            Stage(id="closedlost", label="Closed Lost", displayOrder=5),
        ],
    )


@pytest.fixture
def lookup(sales_pipeline):
    return CrmLookup(
        pipelines=[sales_pipeline],
        owners={
            "101": Owner(id="101", firstName="Dana", lastName="Reyes", email="dana@example.com"),
            "102": Owner(id="102", firstName="Sam", lastName="Okafor", email="sam@example.com"),
        },
    )
