# tests/test_notifications.py
"""Notification read state, announcements and degraded loads."""
from datetime import datetime, timedelta, timezone

import pytest

from core.config import NOTIFICATION_CAP
from core.store import CrmStore
from crm_testkit import ADMIN_ID, AGENT_ID


async def _notify(store: CrmStore, recipient: str, title: str):
    return await store.add_notification(
        {"recipient_id": recipient, "type": "announcement", "title": title, "message": title}
    )


@pytest.mark.asyncio
async def test_mark_read_updates_unread_count(admin_store: CrmStore):
    first = await _notify(admin_store, AGENT_ID, "one")
    await _notify(admin_store, AGENT_ID, "two")
    await _notify(admin_store, ADMIN_ID, "mine")
    assert admin_store.get_unread_count_for_user(AGENT_ID) == 2

    await admin_store.mark_notification_read(first.id)
    assert admin_store.get_unread_count_for_user(AGENT_ID) == 1

    await admin_store.mark_all_notifications_read(AGENT_ID)
    assert admin_store.get_unread_count_for_user(AGENT_ID) == 0
    assert admin_store.get_unread_count_for_user(ADMIN_ID) == 1


@pytest.mark.asyncio
async def test_load_notifications_replaces_recipient_slice(admin_store: CrmStore, remote):
    await remote.notifications.create(
        {"recipient_id": AGENT_ID, "type": "lead_added", "title": "Remote", "message": "m"}
    )

    fetched = await admin_store.load_notifications(AGENT_ID)

    assert [n.title for n in fetched] == ["Remote"]
    assert [n.title for n in admin_store.get_notifications_for_user(AGENT_ID)] == ["Remote"]


@pytest.mark.asyncio
async def test_notification_load_failure_degrades(admin_store: CrmStore, backend):
    backend.fail("select", "notifications")
    assert await admin_store.load_notifications(AGENT_ID) == []


@pytest.mark.asyncio
async def test_notification_cache_is_capped(admin_store: CrmStore):
    for i in range(NOTIFICATION_CAP + 3):
        await _notify(admin_store, AGENT_ID, f"n{i}")
    assert len(admin_store.state.notifications) == NOTIFICATION_CAP
    assert admin_store.state.notifications[0].title == f"n{NOTIFICATION_CAP + 2}"


@pytest.mark.asyncio
async def test_delete_notification(admin_store: CrmStore):
    note = await _notify(admin_store, AGENT_ID, "bye")
    await admin_store.delete_notification(note.id)
    assert admin_store.get_notifications_for_user(AGENT_ID) == []


@pytest.mark.asyncio
async def test_expired_announcements_are_hidden(admin_store: CrmStore):
    now = datetime.now(timezone.utc)
    live = await admin_store.add_announcement({"title": "Offsite", "message": "Friday"})
    await admin_store.add_announcement(
        {"title": "Old", "message": "gone", "expires_at": now - timedelta(days=1)}
    )

    assert [a.id for a in admin_store.get_active_announcements()] == [live.id]
    assert live.created_by == ADMIN_ID

    await admin_store.delete_announcement(live.id)
    assert admin_store.get_active_announcements() == []


@pytest.mark.asyncio
async def test_naive_expiry_is_read_as_utc(admin_store: CrmStore):
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    future = (now + timedelta(days=30)).isoformat()
    past = (now - timedelta(days=1)).isoformat()
    live = await admin_store.add_announcement({"title": "Launch", "message": "Soon", "expires_at": future})
    await admin_store.add_announcement({"title": "Done", "message": "Over", "expires_at": past})

    assert live.expires_at.tzinfo is None
    assert [a.id for a in admin_store.get_active_announcements()] == [live.id]

    assert await admin_store.load_initial_data(ADMIN_ID, True)
    assert [a.id for a in admin_store.state.announcements] == [live.id]


@pytest.mark.asyncio
async def test_stats_fall_back_to_zeros(admin_store: CrmStore, backend):
    stats = await admin_store.get_stats(is_admin=True)
    assert stats.total_properties == 2

    backend.fail("select", "properties")
    zeroed = await admin_store.get_stats(is_admin=True)
    assert zeroed.total_properties == 0 and zeroed.total_value == 0
