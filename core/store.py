"""
core/store.py
-------------
Cache & Mutation Store for one running session.

The store is the single source of truth the UI reads from. It

- caches the records fetched from the remote store client,
- routes every create / update / delete / archive through the remote client
  and applies the acknowledged result to the cache (never a local guess),
- fans each covered mutation out into an Activity entry and an immutable
  AuditLog entry (best-effort, never rolls back the primary write),
- serves role-scoped projections over the cached collections without
  re-fetching.

Construct one `CrmStore` per session and pass it to whatever consumes it.

Mutation order
--------------
remote write -> activity (if any) -> audit log -> notifications -> cache
update -> listeners. Side-effect writes are awaited but their failures are
only logged.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from analytics.rewards import advance_status, build_reward_progress, summarize_referrals
from core.config import ACTIVITY_CAP, AUDIT_LOG_CAP, MIN_PASSWORD_LENGTH, NOTIFICATION_CAP
from core.errors import InvalidInputError, NotAuthenticatedError
from core.models import (
    Activity,
    ActivityAction,
    Announcement,
    AuditLog,
    DashboardStats,
    Deal,
    DealSnapshot,
    DealStatus,
    EntityType,
    GenericSnapshot,
    Lead,
    LeadSnapshot,
    LeadStatus,
    Notification,
    NotificationType,
    Priority,
    Property,
    PropertySnapshot,
    PropertyStatus,
    ReferralEarning,
    ReferralSummary,
    Reward,
    RewardProgress,
    RewardStatus,
    User,
    UserReward,
    UserRole,
    UserSnapshot,
    UserStatus,
)
from core.remote import RemoteStoreClient, to_payload, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E", bound=BaseModel)

Listener = Callable[["StoreState"], None]

LOAD_ERROR_MESSAGE = "Failed to load data. Please refresh the page."


# --------------------------------------------------------------------------- #
# State container
# --------------------------------------------------------------------------- #

@dataclass
class StoreState:
    properties: List[Property] = field(default_factory=list)
    leads: List[Lead] = field(default_factory=list)
    deals: List[Deal] = field(default_factory=list)
    activities: List[Activity] = field(default_factory=list)
    users: List[User] = field(default_factory=list)
    audit_logs: List[AuditLog] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)
    announcements: List[Announcement] = field(default_factory=list)
    rewards: List[Reward] = field(default_factory=list)
    user_rewards: List[UserReward] = field(default_factory=list)
    referral_earnings: List[ReferralEarning] = field(default_factory=list)
    referred_users: List[User] = field(default_factory=list)

    current_user_id: Optional[str] = None
    is_loading: bool = False
    error: Optional[str] = None
    points_balance: int = 0


# --------------------------------------------------------------------------- #
# List helpers (copy-on-write; readers never see a half-applied change)
# --------------------------------------------------------------------------- #

def prepend(items: List[T], item: T, cap: Optional[int] = None) -> List[T]:
    """New list with `item` at the head, trimmed to the newest `cap` entries."""
    out = [item, *items]
    return out[:cap] if cap is not None else out


def replace(items: List[E], item: E) -> List[E]:
    """Swap the entry with the same id; unknown ids are prepended."""
    if not any(getattr(x, "id") == getattr(item, "id") for x in items):
        return [item, *items]
    return [item if getattr(x, "id") == getattr(item, "id") else x for x in items]


def without(items: List[E], row_id: str) -> List[E]:
    return [x for x in items if getattr(x, "id") != row_id]


def find(items: Iterable[E], row_id: str) -> Optional[E]:
    return next((x for x in items if getattr(x, "id") == row_id), None)


def _as_dict(data: Mapping[str, Any] | BaseModel) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=True)
    return dict(data)


def _snapshot(cls: Type[BaseModel], values: Mapping[str, Any]) -> Dict[str, Any]:
    """Audit bag for `values` in the entity's snapshot shape."""
    clean = to_payload(values)
    try:
        snap = cls.model_validate(clean)
    except ValidationError:
        snap = GenericSnapshot.model_validate(clean)
    return snap.as_dict()


# --------------------------------------------------------------------------- #
# Per-key locking
# --------------------------------------------------------------------------- #

class _KeyedLocks:
    """asyncio locks created on demand per key and dropped once nobody holds or awaits them."""

    def __init__(self):
        self._entries: Dict[str, List[Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]


# --------------------------------------------------------------------------- #
# Store
# --------------------------------------------------------------------------- #

class CrmStore:
    """Session-wide cache and mutation dispatcher over a RemoteStoreClient."""

    def __init__(self, remote: RemoteStoreClient):
        self.remote = remote
        self.state = StoreState()
        self._listeners: List[Listener] = []
        self._locks = _KeyedLocks()

    # ------------------------------------------------------------------ #
    # Session scalars & change notification
    # ------------------------------------------------------------------ #

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(state)` after every committed change. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:  # noqa: BLE001 - a broken consumer must not break the store
                logger.exception("Store listener %r failed", listener)

    def set_current_user(self, user_id: Optional[str]) -> None:
        self.state.current_user_id = user_id
        self._commit()

    def reset(self) -> None:
        """Drop every cached record (sign-out)."""
        self.state = StoreState()
        self._commit()

    def _require_user(self) -> str:
        if not self.state.current_user_id:
            raise NotAuthenticatedError("No signed-in user for this action")
        return self.state.current_user_id

    def _is_admin(self, user_id: Optional[str]) -> bool:
        user = find(self.state.users, user_id) if user_id else None
        return bool(user and user.role == UserRole.ADMIN)

    # ------------------------------------------------------------------ #
    # Bulk load
    # ------------------------------------------------------------------ #

    async def _load_announcements(self) -> List[Announcement]:
        try:
            return await self.remote.announcements.get_active()
        except Exception as e:  # noqa: BLE001
            logger.warning("Announcements unavailable, showing none: %s", e)
            return []

    async def load_initial_data(self, user_id: str, is_admin: bool) -> bool:
        """
        Fetch every cached collection for `user_id` and replace the cache.

        All fetches run concurrently. The cache is replaced only when all of
        them succeed; otherwise `state.error` is set and the previous cache
        stays in place. Returns True on success.
        """
        self.state.current_user_id = user_id
        self.state.is_loading = True
        self.state.error = None
        self._commit()

        try:
            properties, leads, deals, activities, users, announcements = await asyncio.gather(
                self.remote.properties.get_by_user(user_id, is_admin),
                self.remote.leads.get_by_user(user_id, is_admin),
                self.remote.deals.get_by_user(user_id, is_admin),
                self.remote.activities.get_by_user(user_id, is_admin, limit=ACTIVITY_CAP),
                self.remote.users.get_all(),
                self._load_announcements(),
            )
        except Exception as e:  # noqa: BLE001 - surfaced as one user-facing message
            logger.error("Initial data load for %s failed: %s", user_id, e)
            self.state.error = LOAD_ERROR_MESSAGE
            self.state.is_loading = False
            self._commit()
            return False

        self.state.properties = properties
        self.state.leads = leads
        self.state.deals = deals
        self.state.activities = activities[:ACTIVITY_CAP]
        self.state.users = users
        self.state.announcements = announcements
        me = find(users, user_id)
        self.state.points_balance = me.points_balance if me else 0
        self.state.is_loading = False
        self._commit()
        logger.info(
            "Loaded %d properties, %d leads, %d deals for %s",
            len(properties), len(leads), len(deals), user_id,
        )
        return True

    async def refresh_data(self, user_id: str, is_admin: bool) -> bool:
        return await self.load_initial_data(user_id, is_admin)

    def mark_load_failed(self, message: str) -> None:
        """Abandon an in-flight bulk load (e.g. after a timeout) with `message`."""
        self.state.is_loading = False
        self.state.error = message
        self._commit()

    # ------------------------------------------------------------------ #
    # Side effects (best-effort)
    # ------------------------------------------------------------------ #

    async def _best_effort(self, label: str, write: Awaitable[T]) -> Optional[T]:
        try:
            return await write
        except Exception as e:  # noqa: BLE001 - side effects never fail the primary write
            logger.warning("%s not recorded: %s", label, e)
            return None

    async def _record(
        self,
        *,
        audit: Dict[str, Any],
        activity: Optional[Dict[str, Any]] = None,
    ) -> None:
        if activity is not None:
            created = await self._best_effort(
                f"Activity {activity['action']}", self.remote.activities.create(activity)
            )
            if created is not None:
                self.state.activities = prepend(self.state.activities, created, ACTIVITY_CAP)

        logged = await self._best_effort(
            f"Audit log {audit['action']}", self.remote.audit_logs.create(audit)
        )
        if logged is not None:
            self.state.audit_logs = prepend(self.state.audit_logs, logged, AUDIT_LOG_CAP)

    @staticmethod
    def _activity(
        actor: str, action: ActivityAction, entity_type: EntityType, entity_id: str, name: str
    ) -> Dict[str, Any]:
        return {
            "user_id": actor,
            "action": action.value,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "entity_name": name,
        }

    @staticmethod
    def _audit(
        actor: str,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        old: Optional[Dict[str, Any]] = None,
        new: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return {
            "user_id": actor,
            "action": action,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "old_value": old,
            "new_value": new,
        }

    async def _notify(self, recipients: Iterable[str], **fields: Any) -> None:
        for recipient_id in recipients:
            payload = {**fields, "recipient_id": recipient_id}
            created = await self._best_effort(
                f"Notification {fields.get('type')} for {recipient_id}",
                self.remote.notifications.create(payload),
            )
            if created is not None:
                self.state.notifications = prepend(self.state.notifications, created, NOTIFICATION_CAP)

    def _active_agents(self, exclude: Optional[str] = None) -> List[str]:
        return [
            u.id for u in self.state.users
            if u.role == UserRole.USER and u.status == UserStatus.ACTIVE and u.id != exclude
        ]

    def _admins(self, exclude: Optional[str] = None) -> List[str]:
        return [u.id for u in self.state.users if u.role == UserRole.ADMIN and u.id != exclude]

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    async def create_property(self, payload: Mapping[str, Any] | BaseModel) -> Property:
        actor = self._require_user()
        data = _as_dict(payload)
        data.setdefault("created_by", actor)

        prop = await self.remote.properties.create(data)

        await self._record(
            activity=self._activity(actor, ActivityAction.PROPERTY_ADDED, EntityType.PROPERTY, prop.id, prop.title),
            audit=self._audit(
                actor, "property_added", EntityType.PROPERTY, prop.id,
                new=_snapshot(PropertySnapshot, {
                    "title": prop.title, "price": prop.price,
                    "location": prop.location, "status": prop.status,
                }),
            ),
        )
        if self._is_admin(prop.created_by):
            await self._notify(
                self._active_agents(exclude=prop.created_by),
                type=NotificationType.PROPERTY_ADDED.value,
                title="New Property Listed",
                message=f"New property available: {prop.title} in {prop.location}",
                priority=Priority.MEDIUM.value,
                sender_id=prop.created_by,
                entity_type=EntityType.PROPERTY.value,
                entity_id=prop.id,
            )

        self.state.properties = prepend(self.state.properties, prop)
        self._commit()
        return prop

    async def update_property(self, property_id: str, changes: Mapping[str, Any] | BaseModel) -> Property:
        actor = self._require_user()
        data = _as_dict(changes)
        data.pop("created_by", None)
        before = self.get_property_by_id(property_id)

        prop = await self.remote.properties.update(property_id, data)

        await self._record(
            audit=self._audit(
                actor, "property_updated", EntityType.PROPERTY, property_id,
                old=_snapshot(PropertySnapshot, {
                    "title": before.title, "price": before.price, "status": before.status,
                }) if before else None,
                new=_snapshot(PropertySnapshot, data),
            ),
        )
        self.state.properties = replace(self.state.properties, prop)
        self._commit()
        return prop

    async def delete_property(self, property_id: str) -> None:
        actor = self._require_user()
        before = self.get_property_by_id(property_id)

        await self.remote.properties.delete(property_id)

        await self._record(
            audit=self._audit(
                actor, "property_deleted", EntityType.PROPERTY, property_id,
                old=_snapshot(PropertySnapshot, {"title": before.title, "price": before.price}) if before else None,
            ),
        )
        self.state.properties = without(self.state.properties, property_id)
        self._commit()

    async def archive_property(self, property_id: str) -> Property:
        actor = self._require_user()
        before = self.get_property_by_id(property_id)

        prop = await self.remote.properties.archive(property_id)

        await self._record(
            activity=self._activity(
                actor, ActivityAction.PROPERTY_ARCHIVED, EntityType.PROPERTY, property_id,
                before.title if before else prop.title,
            ),
            audit=self._audit(
                actor, "property_archived", EntityType.PROPERTY, property_id,
                old=_snapshot(PropertySnapshot, {"status": before.status}) if before else None,
                new=_snapshot(PropertySnapshot, {"status": PropertyStatus.ARCHIVED}),
            ),
        )
        self.state.properties = replace(self.state.properties, prop)
        self._commit()
        return prop

    # ------------------------------------------------------------------ #
    # Leads
    # ------------------------------------------------------------------ #

    async def create_lead(self, payload: Mapping[str, Any] | BaseModel) -> Lead:
        actor = self._require_user()
        data = _as_dict(payload)
        data.setdefault("created_by", actor)

        lead = await self.remote.leads.create(data)

        await self._record(
            activity=self._activity(actor, ActivityAction.LEAD_ADDED, EntityType.LEAD, lead.id, lead.name),
            audit=self._audit(
                actor, "lead_added", EntityType.LEAD, lead.id,
                new=_snapshot(LeadSnapshot, {"name": lead.name, "status": lead.status, "source": lead.source}),
            ),
        )
        if not self._is_admin(lead.created_by):
            creator = self.get_user_by_id(lead.created_by)
            await self._notify(
                self._admins(exclude=lead.created_by),
                type=NotificationType.LEAD_ADDED.value,
                title="New Lead Added",
                message=f"{creator.full_name if creator else 'A user'} added a new lead: {lead.name}",
                priority=Priority.MEDIUM.value,
                sender_id=lead.created_by,
                entity_type=EntityType.LEAD.value,
                entity_id=lead.id,
            )

        self.state.leads = prepend(self.state.leads, lead)
        self._commit()
        return lead

    async def update_lead(self, lead_id: str, changes: Mapping[str, Any] | BaseModel) -> Lead:
        actor = self._require_user()
        data = _as_dict(changes)
        data.pop("created_by", None)
        before = self.get_lead_by_id(lead_id)

        lead = await self.remote.leads.update(lead_id, data)

        await self._record(
            audit=self._audit(
                actor, "lead_updated", EntityType.LEAD, lead_id,
                old=_snapshot(LeadSnapshot, {"name": before.name, "status": before.status}) if before else None,
                new=_snapshot(LeadSnapshot, data),
            ),
        )
        reassigned = "assigned_to" in data and (before is None or before.assigned_to != lead.assigned_to)
        if reassigned and lead.assigned_to and lead.assigned_to != actor:
            await self._notify(
                [lead.assigned_to],
                type=NotificationType.LEAD_ASSIGNED.value,
                title="Lead Assigned to You",
                message=f"You have been assigned the lead {lead.name}",
                priority=Priority.HIGH.value,
                sender_id=actor,
                entity_type=EntityType.LEAD.value,
                entity_id=lead.id,
            )

        self.state.leads = replace(self.state.leads, lead)
        self._commit()
        return lead

    async def delete_lead(self, lead_id: str) -> None:
        actor = self._require_user()
        before = self.get_lead_by_id(lead_id)

        await self.remote.leads.delete(lead_id)

        await self._record(
            audit=self._audit(
                actor, "lead_deleted", EntityType.LEAD, lead_id,
                old=_snapshot(LeadSnapshot, {"name": before.name, "status": before.status}) if before else None,
            ),
        )
        self.state.leads = without(self.state.leads, lead_id)
        self._commit()

    async def archive_lead(self, lead_id: str) -> Lead:
        actor = self._require_user()
        before = self.get_lead_by_id(lead_id)

        lead = await self.remote.leads.archive(lead_id)

        await self._record(
            activity=self._activity(
                actor, ActivityAction.LEAD_ARCHIVED, EntityType.LEAD, lead_id,
                before.name if before else lead.name,
            ),
            audit=self._audit(
                actor, "lead_archived", EntityType.LEAD, lead_id,
                old=_snapshot(LeadSnapshot, {"status": before.status}) if before else None,
                new=_snapshot(LeadSnapshot, {"status": LeadStatus.ARCHIVED}),
            ),
        )
        self.state.leads = replace(self.state.leads, lead)
        self._commit()
        return lead

    # ------------------------------------------------------------------ #
    # Deals
    # ------------------------------------------------------------------ #

    def _deal_title(self, deal: Deal) -> str:
        if deal.property and deal.property.title:
            return deal.property.title
        prop = self.get_property_by_id(deal.property_id)
        return prop.title if prop else "New Deal"

    async def create_deal(self, payload: Mapping[str, Any] | BaseModel) -> Deal:
        actor = self._require_user()
        data = _as_dict(payload)
        if not data.get("property_id"):
            raise InvalidInputError("A deal must reference a property")
        data.setdefault("closer_id", actor)
        data.setdefault("created_by", actor)

        deal = await self.remote.deals.create(data)
        title = self._deal_title(deal)
        creator_id = deal.created_by or deal.closer_id

        await self._record(
            activity=self._activity(actor, ActivityAction.DEAL_CREATED, EntityType.DEAL, deal.id, title),
            audit=self._audit(
                actor, "deal_created", EntityType.DEAL, deal.id,
                new=_snapshot(DealSnapshot, {"property": title, "value": deal.deal_value, "status": deal.status}),
            ),
        )
        if self._is_admin(creator_id):
            await self._notify(
                self._active_agents(exclude=creator_id),
                type=NotificationType.DEAL_CREATED.value,
                title="New Deal Created",
                message=f"New deal created for {title} - Value: AED {deal.deal_value:,.0f}",
                priority=Priority.MEDIUM.value,
                sender_id=creator_id,
                entity_type=EntityType.DEAL.value,
                entity_id=deal.id,
            )
        if deal.closer_id != creator_id and self.get_user_by_id(deal.closer_id):
            await self._notify(
                [deal.closer_id],
                type=NotificationType.DEAL_CREATED.value,
                title="Deal Assigned to You",
                message=f"You have been assigned as closer for {title}",
                priority=Priority.HIGH.value,
                sender_id=creator_id,
                entity_type=EntityType.DEAL.value,
                entity_id=deal.id,
            )

        self.state.deals = prepend(self.state.deals, deal)
        self._commit()
        return deal

    async def update_deal(self, deal_id: str, changes: Mapping[str, Any] | BaseModel) -> Deal:
        actor = self._require_user()
        data = _as_dict(changes)
        before = self.get_deal_by_id(deal_id)

        deal = await self.remote.deals.update(deal_id, data)

        closing = deal.status == DealStatus.CLOSED and (before is None or before.status != DealStatus.CLOSED)
        await self._record(
            activity=self._activity(
                actor, ActivityAction.DEAL_CLOSED, EntityType.DEAL, deal_id, self._deal_title(deal)
            ) if closing else None,
            audit=self._audit(
                actor, "deal_closed" if closing else "deal_updated", EntityType.DEAL, deal_id,
                old=_snapshot(DealSnapshot, {"status": before.status, "value": before.deal_value}) if before else None,
                new=_snapshot(DealSnapshot, data),
            ),
        )
        self.state.deals = replace(self.state.deals, deal)
        self._commit()
        return deal

    async def close_deal(self, deal_id: str) -> Deal:
        return await self.update_deal(deal_id, {"status": DealStatus.CLOSED})

    async def delete_deal(self, deal_id: str) -> Deal:
        """Deals are never purged: "delete" cancels the deal."""
        actor = self._require_user()
        before = self.get_deal_by_id(deal_id)

        deal = await self.remote.deals.update(deal_id, {"status": DealStatus.CANCELLED})

        await self._record(
            audit=self._audit(
                actor, "deal_deleted", EntityType.DEAL, deal_id,
                old=_snapshot(DealSnapshot, {"status": before.status, "value": before.deal_value}) if before else None,
                new=_snapshot(DealSnapshot, {"status": DealStatus.CANCELLED}),
            ),
        )
        self.state.deals = replace(self.state.deals, deal)
        self._commit()
        return deal

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #

    async def create_user(self, payload: Mapping[str, Any] | BaseModel) -> User:
        actor = self._require_user()
        data = _as_dict(payload)
        password = data.get("password") or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(
                f"Password is required and must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        email = str(data.get("email") or "").strip().lower()
        if any(u.email.lower() == email for u in self.state.users):
            raise InvalidInputError("A user with this email already exists")

        user = await self.remote.users.create(data)

        await self._record(
            audit=self._audit(
                actor, "user_created", EntityType.USER, user.id,
                new=_snapshot(UserSnapshot, {"full_name": user.full_name, "email": user.email, "role": user.role}),
            ),
        )
        self.state.users = prepend(self.state.users, user)
        self._commit()
        return user

    async def update_user(self, user_id: str, changes: Mapping[str, Any] | BaseModel) -> User:
        actor = self._require_user()
        data = _as_dict(changes)
        if "password" in data:
            raise InvalidInputError("Use change_password to set a password")
        before = self.get_user_by_id(user_id)

        user = await self.remote.users.update(user_id, data)

        await self._record(
            audit=self._audit(
                actor, "user_updated", EntityType.USER, user_id,
                old=_snapshot(UserSnapshot, {
                    "full_name": before.full_name, "role": before.role, "status": before.status,
                }) if before else None,
                new=_snapshot(UserSnapshot, data),
            ),
        )
        self.state.users = replace(self.state.users, user)
        if user_id == self.state.current_user_id:
            self.state.points_balance = user.points_balance
        self._commit()
        return user

    async def delete_user(self, user_id: str) -> None:
        actor = self._require_user()
        if user_id == actor:
            raise InvalidInputError("You cannot delete your own account")
        before = self.get_user_by_id(user_id)

        await self.remote.users.delete(user_id)

        await self._record(
            audit=self._audit(
                actor, "user_deleted", EntityType.USER, user_id,
                old=_snapshot(UserSnapshot, {"full_name": before.full_name, "email": before.email}) if before else None,
            ),
        )
        self.state.users = without(self.state.users, user_id)
        self._commit()

    async def toggle_user_status(self, user_id: str) -> User:
        """
        Flip a user between active and inactive.

        The remote side does a compare-and-set; calls for the same user are
        additionally serialised here so their audit entries come out in order.
        """
        actor = self._require_user()
        async with self._locks.hold(f"user:{user_id}"):
            user = await self.remote.users.toggle_status(user_id)
            previous = UserStatus.ACTIVE if user.status == UserStatus.INACTIVE else UserStatus.INACTIVE

            await self._record(
                audit=self._audit(
                    actor, "user_status_changed", EntityType.USER, user_id,
                    old=_snapshot(UserSnapshot, {"status": previous}),
                    new=_snapshot(UserSnapshot, {"status": user.status}),
                ),
            )
            self.state.users = replace(self.state.users, user)
            self._commit()
        return user

    async def change_password(self, user_id: str, new_password: str) -> None:
        actor = self._require_user()
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        await self.remote.users.change_password(user_id, new_password)

        await self._record(audit=self._audit(actor, "password_changed", EntityType.USER, user_id))
        self._commit()

    # ------------------------------------------------------------------ #
    # Activity & audit log (create-only)
    # ------------------------------------------------------------------ #

    async def add_activity(self, payload: Mapping[str, Any] | BaseModel) -> Activity:
        activity = await self.remote.activities.create(_as_dict(payload))
        self.state.activities = prepend(self.state.activities, activity, ACTIVITY_CAP)
        self._commit()
        return activity

    async def add_audit_log(self, payload: Mapping[str, Any] | BaseModel) -> AuditLog:
        log = await self.remote.audit_logs.create(_as_dict(payload))
        self.state.audit_logs = prepend(self.state.audit_logs, log, AUDIT_LOG_CAP)
        self._commit()
        return log

    async def load_audit_logs(
        self,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[AuditLog]:
        logs = await self.remote.audit_logs.get_all(
            user_id=user_id, entity_type=entity_type, action=action, limit=AUDIT_LOG_CAP
        )
        self.state.audit_logs = logs[:AUDIT_LOG_CAP]
        self._commit()
        return self.state.audit_logs

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    async def load_notifications(self, user_id: str) -> List[Notification]:
        try:
            fetched = await self.remote.notifications.get_for_user(user_id, limit=NOTIFICATION_CAP)
        except Exception as e:  # noqa: BLE001
            logger.warning("Notifications for %s unavailable: %s", user_id, e)
            return []
        others = [n for n in self.state.notifications if n.recipient_id != user_id]
        self.state.notifications = (fetched + others)[:NOTIFICATION_CAP]
        self._commit()
        return fetched

    async def add_notification(self, payload: Mapping[str, Any] | BaseModel) -> Notification:
        data = _as_dict(payload)
        if self.state.current_user_id:
            data.setdefault("sender_id", self.state.current_user_id)
        notification = await self.remote.notifications.create(data)
        self.state.notifications = prepend(self.state.notifications, notification, NOTIFICATION_CAP)
        self._commit()
        return notification

    async def mark_notification_read(self, notification_id: str) -> None:
        await self.remote.notifications.mark_as_read(notification_id)
        self.state.notifications = [
            n.model_copy(update={"read": True}) if n.id == notification_id else n
            for n in self.state.notifications
        ]
        self._commit()

    async def mark_all_notifications_read(self, user_id: str) -> None:
        await self.remote.notifications.mark_all_as_read(user_id)
        self.state.notifications = [
            n.model_copy(update={"read": True}) if n.recipient_id == user_id else n
            for n in self.state.notifications
        ]
        self._commit()

    async def delete_notification(self, notification_id: str) -> None:
        await self.remote.notifications.delete(notification_id)
        self.state.notifications = without(self.state.notifications, notification_id)
        self._commit()

    # ------------------------------------------------------------------ #
    # Announcements
    # ------------------------------------------------------------------ #

    async def add_announcement(self, payload: Mapping[str, Any] | BaseModel) -> Announcement:
        actor = self._require_user()
        data = _as_dict(payload)
        data.setdefault("created_by", actor)
        announcement = await self.remote.announcements.create(data)
        self.state.announcements = prepend(self.state.announcements, announcement)
        self._commit()
        return announcement

    async def delete_announcement(self, announcement_id: str) -> None:
        await self.remote.announcements.delete(announcement_id)
        self.state.announcements = without(self.state.announcements, announcement_id)
        self._commit()

    # ------------------------------------------------------------------ #
    # Rewards & referrals
    # ------------------------------------------------------------------ #

    async def load_rewards(self, user_id: str, include_inactive: bool = False) -> bool:
        try:
            rewards, user_rewards, balance = await asyncio.gather(
                self.remote.rewards.get_all(include_inactive=include_inactive),
                self.remote.user_rewards.get_for_user(user_id),
                self.remote.users.get_points_balance(user_id),
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Rewards for %s unavailable: %s", user_id, e)
            return False
        self.state.rewards = rewards
        others = [ur for ur in self.state.user_rewards if ur.user_id != user_id]
        self.state.user_rewards = user_rewards + others
        user = self.get_user_by_id(user_id)
        if user is not None and user.points_balance != balance:
            self.state.users = replace(self.state.users, user.model_copy(update={"points_balance": balance}))
        if user_id == self.state.current_user_id:
            self.state.points_balance = balance
        self._commit()
        return True

    def _sort_rewards(self, rewards: List[Reward]) -> List[Reward]:
        return sorted(rewards, key=lambda r: r.sort_order)

    async def create_reward(self, payload: Mapping[str, Any] | BaseModel) -> Reward:
        actor = self._require_user()
        data = _as_dict(payload)
        data.setdefault("created_by", actor)
        reward = await self.remote.rewards.create(data)
        self.state.rewards = self._sort_rewards(prepend(self.state.rewards, reward))
        self._commit()
        return reward

    async def update_reward(self, reward_id: str, changes: Mapping[str, Any] | BaseModel) -> Reward:
        reward = await self.remote.rewards.update(reward_id, _as_dict(changes))
        self.state.rewards = self._sort_rewards(replace(self.state.rewards, reward))
        self._commit()
        return reward

    async def toggle_reward_active(self, reward_id: str, is_active: bool) -> Reward:
        reward = await self.remote.rewards.toggle_active(reward_id, is_active)
        self.state.rewards = self._sort_rewards(replace(self.state.rewards, reward))
        self._commit()
        return reward

    async def delete_reward(self, reward_id: str) -> None:
        await self.remote.rewards.delete(reward_id)
        self.state.rewards = without(self.state.rewards, reward_id)
        self._commit()

    async def update_user_reward(self, user_reward_id: str, changes: Mapping[str, Any] | BaseModel) -> UserReward:
        """Update a user reward; a requested status never moves it backwards."""
        data = _as_dict(changes)
        current = find(self.state.user_rewards, user_reward_id)
        if data.get("status") is not None:
            requested = RewardStatus(data["status"])
            data["status"] = advance_status(current.status, requested) if current else requested
            if data["status"] == RewardStatus.EARNED and not (current and current.earned_at):
                data.setdefault("earned_at", utcnow())

        user_reward = await self.remote.user_rewards.update(user_reward_id, data)
        self.state.user_rewards = replace(self.state.user_rewards, user_reward)
        self._commit()
        return user_reward

    async def fulfill_user_reward(self, user_reward_id: str, notes: Optional[str] = None) -> UserReward:
        actor = self._require_user()
        user_reward = await self.remote.user_rewards.fulfill(user_reward_id, actor, notes)
        self.state.user_rewards = replace(self.state.user_rewards, user_reward)
        self._commit()
        return user_reward

    async def load_referrals(self, user_id: str) -> bool:
        try:
            earnings, referred = await asyncio.gather(
                self.remote.referrals.get_earnings_for_user(user_id),
                self.remote.users.get_referred(user_id),
            )
        except Exception as e:  # noqa: BLE001
            logger.warning("Referral data for %s unavailable: %s", user_id, e)
            return False
        self.state.referral_earnings = earnings
        self.state.referred_users = referred
        self._commit()
        return True

    async def record_referral_earning(self, payload: Mapping[str, Any] | BaseModel) -> ReferralEarning:
        earning = await self.remote.referrals.create_earning(_as_dict(payload))
        self.state.referral_earnings = prepend(self.state.referral_earnings, earning)
        self._commit()
        return earning

    # ------------------------------------------------------------------ #
    # Remote aggregate
    # ------------------------------------------------------------------ #

    async def get_stats(self, is_admin: bool = False) -> DashboardStats:
        """Dashboard counters from the remote aggregate; zeros when unavailable."""
        user_id = self.state.current_user_id
        if not user_id:
            logger.warning("Stats requested without a signed-in user")
            return DashboardStats()
        try:
            return await self.remote.stats.get_dashboard_stats(user_id, is_admin)
        except Exception as e:  # noqa: BLE001
            logger.warning("Dashboard stats unavailable: %s", e)
            return DashboardStats()

    # ------------------------------------------------------------------ #
    # Read accessors (cache only)
    # ------------------------------------------------------------------ #

    def get_property_by_id(self, property_id: str) -> Optional[Property]:
        return find(self.state.properties, property_id)

    def get_lead_by_id(self, lead_id: str) -> Optional[Lead]:
        return find(self.state.leads, lead_id)

    def get_deal_by_id(self, deal_id: str) -> Optional[Deal]:
        return find(self.state.deals, deal_id)

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        return find(self.state.users, user_id)

    def get_properties_for_user(self, user_id: str, is_admin: bool) -> List[Property]:
        # Full listing visibility for every role.
        return list(self.state.properties)

    def get_deals_for_user(self, user_id: str, is_admin: bool) -> List[Deal]:
        # Full pipeline visibility for every role.
        return list(self.state.deals)

    def get_leads_for_user(self, user_id: str, is_admin: bool) -> List[Lead]:
        if is_admin:
            return list(self.state.leads)
        return [lead for lead in self.state.leads if lead.created_by == user_id or lead.assigned_to == user_id]

    def get_activities_for_user(self, user_id: str, is_admin: bool) -> List[Activity]:
        if is_admin:
            return list(self.state.activities)
        return [a for a in self.state.activities if a.user_id == user_id]

    def get_notifications_for_user(self, user_id: str) -> List[Notification]:
        return [n for n in self.state.notifications if n.recipient_id == user_id]

    def get_unread_count_for_user(self, user_id: str) -> int:
        return sum(1 for n in self.state.notifications if n.recipient_id == user_id and not n.read)

    def get_active_announcements(self, now: Optional[datetime] = None) -> List[Announcement]:
        now = now or utcnow()
        return [a for a in self.state.announcements if a.is_active(now)]

    def get_audit_logs(
        self,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[AuditLog]:
        logs = self.state.audit_logs
        if user_id:
            logs = [log for log in logs if log.user_id == user_id]
        if entity_type:
            logs = [log for log in logs if log.entity_type == entity_type]
        if action:
            needle = action.lower()
            logs = [log for log in logs if needle in log.action.lower()]
        return list(logs)

    def get_user_activity_summary(self, user_id: str) -> Dict[str, int]:
        """Global counts for one user, independent of the caller's visibility."""
        return {
            "leads": sum(1 for lead in self.state.leads if lead.created_by == user_id),
            "properties": sum(1 for p in self.state.properties if p.created_by == user_id),
            "deals": sum(1 for d in self.state.deals if d.created_by == user_id or d.closer_id == user_id),
        }

    def get_reward_progress(self, user_id: str) -> List[RewardProgress]:
        if user_id == self.state.current_user_id:
            balance = self.state.points_balance
        else:
            user = self.get_user_by_id(user_id)
            balance = user.points_balance if user else 0
        mine = [ur for ur in self.state.user_rewards if ur.user_id == user_id]
        return build_reward_progress(self.state.rewards, mine, balance)

    def get_referral_summary(self, user_id: str, now: Optional[datetime] = None) -> ReferralSummary:
        earnings = [e for e in self.state.referral_earnings if e.referrer_id == user_id]
        referred = [u for u in self.state.referred_users if u.referred_by == user_id]
        return summarize_referrals(earnings, referred, self.state.deals, now=now)
