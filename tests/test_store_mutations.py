# tests/test_store_mutations.py
"""Property / lead / deal mutations and their activity, audit and notification fan-out."""
import logging
from datetime import datetime, timezone

import pytest

from core.config import ACTIVITY_CAP, AUDIT_LOG_CAP
from core.errors import NotAuthenticatedError, NotFoundError, RemoteStoreError
from core.models import (
    ActivityAction,
    DealSnapshot,
    DealStatus,
    LeadSnapshot,
    NotificationType,
    Priority,
    PropertySnapshot,
    PropertyStatus,
)
from core.store import CrmStore, prepend
from crm_testkit import ADMIN_ID, AGENT_ID, OTHER_AGENT_ID


# --------------------------------------------------------------------------- #
# Properties
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_admin_creates_property_with_full_fan_out(admin_store: CrmStore, backend):
    prop = await admin_store.create_property(
        {"title": "Downtown Loft", "price": 2_000_000, "location": "Downtown", "type": "apartment"}
    )

    assert admin_store.state.properties[0] == prop
    assert prop.created_by == ADMIN_ID

    activity = admin_store.state.activities[0]
    assert activity.action == ActivityAction.PROPERTY_ADDED
    assert activity.entity_id == prop.id
    assert activity.entity_name == "Downtown Loft"

    audit = admin_store.state.audit_logs[0]
    assert audit.action == "property_added"
    assert audit.entity_id == prop.id
    assert isinstance(audit.new_value, PropertySnapshot)
    assert (audit.new_value.title, audit.new_value.price, audit.new_value.location) == (
        "Downtown Loft", 2_000_000, "Downtown",
    )

    for agent in (AGENT_ID, OTHER_AGENT_ID):
        [note] = admin_store.get_notifications_for_user(agent)
        assert note.type == NotificationType.PROPERTY_ADDED
        assert note.title == "New Property Listed"
        assert "Downtown Loft" in note.message and "Downtown" in note.message
    assert admin_store.get_notifications_for_user(ADMIN_ID) == []

    # remote write first, then activity, audit, notifications
    assert backend.writes()[:3] == [
        ("insert", "properties"),
        ("insert", "activities"),
        ("insert", "audit_logs"),
    ]
    assert backend.writes()[3:] == [("insert", "notifications")] * 2


@pytest.mark.asyncio
async def test_agent_property_sends_no_notifications(agent_store: CrmStore):
    await agent_store.create_property({"title": "Flat", "price": 1, "location": "JLT"})
    assert agent_store.state.notifications == []


@pytest.mark.asyncio
async def test_update_property_caches_remote_result(admin_store: CrmStore, remote):
    updated = await admin_store.update_property("p1", {"price": 9_000_000, "status": "sold"})

    remote_copy = await remote.properties.get_by_id("p1")
    assert admin_store.get_property_by_id("p1") == updated == remote_copy
    assert updated.status == PropertyStatus.SOLD

    audit = admin_store.state.audit_logs[0]
    assert audit.action == "property_updated"
    assert audit.old_value.price == 8_500_000
    assert audit.old_value.status == PropertyStatus.AVAILABLE
    assert audit.new_value.price == 9_000_000


@pytest.mark.asyncio
async def test_update_cannot_reassign_property_creator(admin_store: CrmStore):
    updated = await admin_store.update_property("p2", {"created_by": ADMIN_ID, "title": "Villa"})
    assert updated.created_by == AGENT_ID


@pytest.mark.asyncio
async def test_archive_and_delete_property(admin_store: CrmStore):
    archived = await admin_store.archive_property("p1")
    assert archived.status == PropertyStatus.ARCHIVED
    assert admin_store.state.activities[0].action == ActivityAction.PROPERTY_ARCHIVED
    audit = admin_store.state.audit_logs[0]
    assert audit.old_value.status == PropertyStatus.AVAILABLE
    assert audit.new_value.status == PropertyStatus.ARCHIVED

    await admin_store.delete_property("p2")
    assert admin_store.get_property_by_id("p2") is None
    audit = admin_store.state.audit_logs[0]
    assert audit.action == "property_deleted"
    assert audit.old_value.title == "Palm Jumeirah Villa"
    assert audit.new_value is None


@pytest.mark.asyncio
async def test_primary_failure_leaves_cache_and_skips_side_effects(admin_store: CrmStore, backend):
    backend.fail("insert", "properties")
    before = list(admin_store.state.properties)

    with pytest.raises(RemoteStoreError):
        await admin_store.create_property({"title": "Ghost", "price": 1, "location": "Nowhere"})

    assert admin_store.state.properties == before
    assert ("insert", "activities") not in backend.calls
    assert ("insert", "audit_logs") not in backend.calls


@pytest.mark.asyncio
async def test_update_of_unknown_id_is_not_found(admin_store: CrmStore):
    with pytest.raises(NotFoundError):
        await admin_store.update_property("missing", {"price": 1})


@pytest.mark.asyncio
async def test_mutations_require_signed_in_user(store: CrmStore, backend):
    with pytest.raises(NotAuthenticatedError):
        await store.create_property({"title": "X", "price": 1, "location": "Y"})
    with pytest.raises(NotAuthenticatedError):
        await store.create_lead({"name": "Z"})
    assert backend.writes() == []


# --------------------------------------------------------------------------- #
# Leads
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_audit_failure_never_fails_the_lead(agent_store: CrmStore, backend, caplog):
    caplog.set_level(logging.WARNING)
    backend.fail("insert", "audit_logs")

    lead = await agent_store.create_lead({"name": "New Buyer", "source": "Website"})

    assert agent_store.state.leads[0] == lead
    assert agent_store.state.audit_logs == []
    assert agent_store.state.activities[0].action == ActivityAction.LEAD_ADDED
    assert any("not recorded" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_agent_lead_notifies_admins(agent_store: CrmStore):
    lead = await agent_store.create_lead({"name": "Fatima", "source": "Referral"})

    [note] = agent_store.get_notifications_for_user(ADMIN_ID)
    assert note.type == NotificationType.LEAD_ADDED
    assert note.message == "Sarah Thompson added a new lead: Fatima"
    assert note.entity_id == lead.id

    audit = agent_store.state.audit_logs[0]
    assert isinstance(audit.new_value, LeadSnapshot)
    assert audit.new_value.source == "Referral"


@pytest.mark.asyncio
async def test_reassigning_lead_notifies_new_assignee(admin_store: CrmStore):
    lead = await admin_store.update_lead("l2", {"assigned_to": AGENT_ID, "status": "contacted"})

    assert lead.assigned_to == AGENT_ID
    [note] = admin_store.get_notifications_for_user(AGENT_ID)
    assert note.type == NotificationType.LEAD_ASSIGNED
    assert note.priority == Priority.HIGH
    audit = admin_store.state.audit_logs[0]
    assert audit.action == "lead_updated"
    assert audit.old_value.name == "Emma Wilson"


@pytest.mark.asyncio
async def test_archive_and_delete_lead(admin_store: CrmStore):
    await admin_store.archive_lead("l1")
    assert admin_store.get_lead_by_id("l1").status == "archived"
    assert admin_store.state.activities[0].action == ActivityAction.LEAD_ARCHIVED

    await admin_store.delete_lead("l2")
    assert admin_store.get_lead_by_id("l2") is None
    assert admin_store.state.audit_logs[0].action == "lead_deleted"


# --------------------------------------------------------------------------- #
# Deals
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_admin_deal_notifies_agents_and_closer(admin_store: CrmStore):
    deal = await admin_store.create_deal(
        {"property_id": "p1", "lead_id": "l1", "deal_value": 8_000_000, "commission_rate": 2, "closer_id": AGENT_ID}
    )

    assert deal.commission_amount == 160_000
    assert admin_store.state.deals[0] == deal
    assert admin_store.state.activities[0].entity_name == "Dubai Marina Penthouse"

    audit = admin_store.state.audit_logs[0]
    assert isinstance(audit.new_value, DealSnapshot)
    assert audit.new_value.property == "Dubai Marina Penthouse"
    assert audit.new_value.value == 8_000_000

    titles = sorted(n.title for n in admin_store.get_notifications_for_user(AGENT_ID))
    assert titles == ["Deal Assigned to You", "New Deal Created"]
    [other] = admin_store.get_notifications_for_user(OTHER_AGENT_ID)
    assert "AED 8,000,000" in other.message


@pytest.mark.asyncio
async def test_supplied_commission_is_kept(admin_store: CrmStore):
    deal = await admin_store.create_deal(
        {"property_id": "p1", "deal_value": 1_000_000, "commission_rate": 2, "commission_amount": 15_000}
    )
    assert deal.commission_amount == 15_000


@pytest.mark.asyncio
async def test_close_deal_stamps_closed_at_and_logs(admin_store: CrmStore):
    deal = await admin_store.create_deal({"property_id": "p2", "deal_value": 25_000_000, "closer_id": AGENT_ID})

    closed = await admin_store.close_deal(deal.id)

    assert closed.status == DealStatus.CLOSED
    assert closed.closed_at is not None
    assert admin_store.state.activities[0].action == ActivityAction.DEAL_CLOSED
    audit = admin_store.state.audit_logs[0]
    assert audit.action == "deal_closed"
    assert audit.old_value.status == DealStatus.PENDING


@pytest.mark.asyncio
async def test_deleting_deal_cancels_it(admin_store: CrmStore, remote):
    deal = await admin_store.create_deal({"property_id": "p1", "deal_value": 500_000})

    cancelled = await admin_store.delete_deal(deal.id)

    assert cancelled.status == DealStatus.CANCELLED
    assert admin_store.get_deal_by_id(deal.id).status == DealStatus.CANCELLED
    assert (await remote.deals.get_by_id(deal.id)).status == DealStatus.CANCELLED
    audit = admin_store.state.audit_logs[0]
    assert audit.action == "deal_deleted"
    assert audit.new_value.status == DealStatus.CANCELLED


# --------------------------------------------------------------------------- #
# History caps
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_activity_history_is_capped_newest_first(admin_store: CrmStore):
    for i in range(ACTIVITY_CAP + 5):
        await admin_store.add_activity(
            {"user_id": ADMIN_ID, "action": "login", "entity_type": "user",
             "entity_id": ADMIN_ID, "entity_name": f"login {i}"}
        )

    assert len(admin_store.state.activities) == ACTIVITY_CAP
    assert admin_store.state.activities[0].entity_name == f"login {ACTIVITY_CAP + 4}"


def test_prepend_trims_to_cap():
    items = list(range(AUDIT_LOG_CAP))
    out = prepend(items, -1, AUDIT_LOG_CAP)
    assert len(out) == AUDIT_LOG_CAP
    assert out[0] == -1 and out[-1] == AUDIT_LOG_CAP - 2
    assert len(items) == AUDIT_LOG_CAP


@pytest.mark.asyncio
async def test_audit_history_is_capped_newest_first(admin_store: CrmStore):
    for i in range(AUDIT_LOG_CAP + 1):
        await admin_store.add_audit_log(
            {"user_id": ADMIN_ID, "action": "lead_updated", "entity_type": "lead", "entity_id": f"e{i}"}
        )

    logs = admin_store.state.audit_logs
    assert len(logs) == AUDIT_LOG_CAP
    assert logs[0].entity_id == f"e{AUDIT_LOG_CAP}"
    assert "e0" not in {log.entity_id for log in logs}

    await admin_store.update_lead("l1", {"status": "negotiating"})
    logs = admin_store.state.audit_logs
    assert len(logs) == AUDIT_LOG_CAP
    assert (logs[0].action, logs[0].entity_id) == ("lead_updated", "l1")
    assert logs[1].entity_id == f"e{AUDIT_LOG_CAP}"


@pytest.mark.asyncio
async def test_each_covered_mutation_adds_one_audit_entry(admin_store: CrmStore):
    started = datetime.now(timezone.utc)
    before = len(admin_store.state.audit_logs)

    prop = await admin_store.create_property({"title": "Creek Studio", "price": 900_000, "location": "Creek"})
    await admin_store.update_property(prop.id, {"price": 950_000})
    await admin_store.archive_property(prop.id)
    lead = await admin_store.create_lead({"name": "Omar Saleh", "source": "Website"})
    await admin_store.update_lead(lead.id, {"status": "contacted"})
    deal = await admin_store.create_deal({"property_id": "p1", "lead_id": lead.id, "deal_value": 900_000})
    await admin_store.close_deal(deal.id)
    await admin_store.delete_lead(lead.id)
    mutations = 8

    logs = admin_store.state.audit_logs
    assert len(logs) == before + mutations
    fresh = logs[:mutations]
    assert [log.action for log in fresh] == [
        "lead_deleted", "deal_closed", "deal_created", "lead_updated",
        "lead_added", "property_archived", "property_updated", "property_added",
    ]
    assert all(log.created_at >= started for log in fresh)
