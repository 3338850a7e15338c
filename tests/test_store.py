# =============================================================================
# test_store.py — Unit tests for the in-memory CRM store
#
# These tests verify that:
#   1. Derived fields (score, weighted value, approval, profitability) are
#      computed on every write and stored with the record
#   2. Rejected writes report every broken field at once
#   3. References to unknown companies or contacts are rejected
#   4. Deletes cascade, and snapshots taken earlier are never mutated
# =============================================================================

import sys
import os
import itertools
import pytest
from datetime import date, datetime, timedelta, timezone

# Add the api/ directory to the Python path so we can import our modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from exceptions import FormValidationError, NotFoundError
from models import (
    Address,
    ContactDraft,
    EntityDraft,
    InteractionDraft,
    MissionDraft,
    OpportunityDraft,
)
from store import CrmStore

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


# ─── Test Fixtures ─────────────────────────────────────────────────────────────

class TickingClock:
    """Starts at NOW and advances one minute per reading."""

    def __init__(self):
        self.current = NOW

    def __call__(self):
        reading = self.current
        self.current += timedelta(minutes=1)
        return reading


@pytest.fixture
def store():
    counter = itertools.count(1)
    return CrmStore(clock=TickingClock(), id_factory=lambda: f"id-{next(counter)}")


def entity_draft(**overrides):
    data = dict(
        company_name="Sahel Mines",
        sector="Mining",
        region="Centre",
        revenue=75_000_000,
        employees=60,
        status="client",
        address=Address(street="Avenue Kwame Nkrumah", city="Ouagadougou"),
    )
    data.update(overrides)
    return EntityDraft(**data)


def contact_draft(entity_id, **overrides):
    data = dict(
        name="Awa Ouedraogo", entity_id=entity_id, role="CFO",
        email="awa@sahelmines.bf", phone="+226 70 00 00 00",
    )
    data.update(overrides)
    return ContactDraft(**data)


def mission_draft(entity_id, **overrides):
    data = dict(
        title="Legal audit", description="Annual compliance audit", entity_id=entity_id,
        start_date=date(2024, 6, 1), end_date=date(2024, 9, 30), budget=10_000_000, actual_cost=7_500_000,
    )
    data.update(overrides)
    return MissionDraft(**data)


def opportunity_draft(entity_id, **overrides):
    data = dict(
        title="Business continuity plan", description="PCA for head office", entity_id=entity_id,
        value=60_000_000, probability=40, deadline=date(2024, 9, 1),
    )
    data.update(overrides)
    return OpportunityDraft(**data)


@pytest.fixture
def entity(store):
    return store.create_entity(entity_draft())


# ─── Test: Entities ───────────────────────────────────────────────────────────

class TestEntities:

    def test_score_is_computed_on_create(self, entity):
        assert entity.score == 85
        assert entity.id == "id-1"
        assert entity.created_at == entity.updated_at == NOW

    def test_score_is_recomputed_on_update(self, store, entity):
        updated = store.update_entity(entity.id, {"status": "prospect", "revenue": None})
        assert updated.score == 5 + 25 + 15
        assert updated.created_at == entity.created_at
        assert updated.updated_at > entity.updated_at

    def test_client_supplied_score_is_ignored(self, store):
        created = store.create_entity(EntityDraft.model_validate({
            **entity_draft().model_dump(by_alias=True),
            "score": 100,
        }))
        assert created.score == 85

    def test_every_broken_field_is_reported(self, store):
        with pytest.raises(FormValidationError) as excinfo:
            store.create_entity(EntityDraft(revenue=-1, email="not-an-email"))
        assert set(excinfo.value.errors) == {
            "companyName", "sector", "region", "revenue", "address.street", "address.city", "email",
        }
        assert store.entities == ()

    def test_unparseable_update_is_a_field_error(self, store, entity):
        with pytest.raises(FormValidationError) as excinfo:
            store.update_entity(entity.id, {"revenue": "a lot"})
        assert "revenue" in excinfo.value.errors

    def test_unknown_id(self, store):
        with pytest.raises(NotFoundError):
            store.get_entity("missing")

    def test_delete_cascades(self, store, entity):
        other = store.create_entity(entity_draft(company_name="Banque du Centre"))
        store.create_contact(contact_draft(entity.id))
        store.create_mission(mission_draft(entity.id))
        store.create_opportunity(opportunity_draft(entity.id))
        store.create_opportunity(opportunity_draft(other.id))

        store.delete_entity(entity.id)

        assert [e.id for e in store.entities] == [other.id]
        assert store.contacts == ()
        assert store.missions == ()
        assert [o.entity_id for o in store.opportunities] == [other.id]

    def test_snapshots_are_not_mutated(self, store, entity):
        before = store.entities
        store.update_entity(entity.id, {"employees": 500})
        store.create_entity(entity_draft(company_name="Faso Energie"))
        assert len(before) == 1
        assert before[0].employees == 60
        assert len(store.entities) == 2


# ─── Test: Contacts ───────────────────────────────────────────────────────────

class TestContacts:

    def test_unknown_company_is_rejected(self, store):
        with pytest.raises(FormValidationError) as excinfo:
            store.create_contact(contact_draft("nope"))
        assert excinfo.value.errors == {"entityId": "Unknown company"}

    def test_new_primary_demotes_the_old_one(self, store, entity):
        first = store.create_contact(contact_draft(entity.id, is_primary=True))
        second = store.create_contact(contact_draft(entity.id, name="Issa Kaboré", is_primary=True))

        primaries = [c.id for c in store.contacts if c.is_primary]
        assert primaries == [second.id]
        assert store.get_contact(first.id).is_primary is False

    def test_primary_is_per_entity(self, store, entity):
        other = store.create_entity(entity_draft(company_name="Banque du Centre"))
        store.create_contact(contact_draft(entity.id, is_primary=True))
        store.create_contact(contact_draft(other.id, is_primary=True))
        assert sum(1 for c in store.contacts if c.is_primary) == 2

    def test_deleting_a_contact_unlinks_its_interactions(self, store, entity):
        contact = store.create_contact(contact_draft(entity.id))
        interaction = store.create_interaction(InteractionDraft(
            type="email", subject="Proposal", description="Sent the proposal",
            entity_id=entity.id, contact_id=contact.id,
        ))
        store.delete_contact(contact.id)
        assert store.get_interaction(interaction.id).contact_id is None
        assert store.contacts_for_entity(entity.id) == []


# ─── Test: Missions & Opportunities ───────────────────────────────────────────

class TestMissionsAndOpportunities:

    def test_mission_profitability_is_stored(self, store, entity):
        mission = store.create_mission(mission_draft(entity.id))
        assert mission.profitability == 25

        updated = store.update_mission(mission.id, {"actualCost": 11_000_000})
        assert updated.profitability == -10

    def test_mission_validation(self, store, entity):
        with pytest.raises(FormValidationError) as excinfo:
            store.create_mission(mission_draft(
                entity.id, budget=0, actual_cost=-5, start_date=date(2024, 6, 1), end_date=date(2024, 5, 1),
            ))
        assert set(excinfo.value.errors) == {"budget", "actualCost", "endDate"}

    def test_opportunity_derived_fields(self, store, entity):
        opportunity = store.create_opportunity(opportunity_draft(entity.id))
        assert opportunity.weighted_value == 24_000_000
        assert opportunity.requires_approval is True

        updated = store.update_opportunity(opportunity.id, {"value": 50_000_000, "probability": 75})
        assert updated.weighted_value == 37_500_000
        assert updated.requires_approval is False

    def test_opportunity_validation(self, store, entity):
        with pytest.raises(FormValidationError) as excinfo:
            store.create_opportunity(opportunity_draft(entity.id, value=0, probability=120, deadline=None))
        assert set(excinfo.value.errors) == {"value", "probability", "deadline"}


# ─── Test: Interactions ───────────────────────────────────────────────────────

class TestInteractions:

    def test_date_defaults_to_write_time(self, store, entity):
        interaction = store.create_interaction(InteractionDraft(
            type="meeting", subject="Kick-off", description="Kick-off meeting", entity_id=entity.id,
        ))
        assert interaction.date == interaction.created_at

    def test_call_requires_duration(self, store, entity):
        with pytest.raises(FormValidationError) as excinfo:
            store.create_interaction(InteractionDraft(
                type="call", subject="Follow-up", description="Phone follow-up", entity_id=entity.id,
                follow_up_required=True,
            ))
        assert set(excinfo.value.errors) == {"duration", "followUpDate"}

    def test_unknown_contact_is_rejected(self, store, entity):
        with pytest.raises(FormValidationError) as excinfo:
            store.create_interaction(InteractionDraft(
                type="email", subject="Hello", description="Intro", entity_id=entity.id, contact_id="ghost",
            ))
        assert excinfo.value.errors == {"contactId": "Unknown contact"}
