"""
core/remote.py
--------------
Remote Store Client: typed, asynchronous CRUD services per entity kind.

Every service is written once against a small backend primitive contract
(`Backend`). Two backends implement it:

- supabase_client.backend.SupabaseBackend  (production, Supabase/PostgREST)
- database.queries.LocalBackend            (demo mode & tests, SQLite)

Services never retry. Backend failures surface as RemoteStoreError; a write
that matches no row surfaces as NotFoundError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from core.config import MIN_PASSWORD_LENGTH
from core.errors import InvalidInputError, NotFoundError, RemoteStoreError
from core.models import (
    Activity,
    Announcement,
    AuditLog,
    DashboardStats,
    Deal,
    DealStatus,
    Entity,
    Lead,
    LeadStatus,
    Notification,
    Property,
    PropertyStatus,
    ReferralEarning,
    Reward,
    RewardStatus,
    User,
    UserReward,
    UserStatus,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_payload(data: Mapping[str, Any] | BaseModel, *, drop: Iterable[str] = ()) -> Dict[str, Any]:
    """JSON-safe dict for a remote write, without relation / server fields."""
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    dropped = set(drop)
    return {k: to_jsonable_python(v) for k, v in data.items() if k not in dropped}


# --------------------------------------------------------------------------- #
# Backend contract
# --------------------------------------------------------------------------- #

class Backend:
    """
    Primitive operations a remote backend provides.

    Filters:
        eq      : column -> value, all must match
        any_eq  : column -> value, at least one must match
        ilike   : column -> substring, case-insensitive
    """

    name = "abstract"

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        eq: Optional[Mapping[str, Any]] = None,
        any_eq: Optional[Mapping[str, Any]] = None,
        ilike: Optional[Mapping[str, str]] = None,
        order: Optional[str] = "created_at",
        desc: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert(self, table: str, row: Mapping[str, Any], *, columns: str = "*") -> Dict[str, Any]:
        raise NotImplementedError

    async def update(
        self,
        table: str,
        changes: Mapping[str, Any],
        *,
        eq: Mapping[str, Any],
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def delete(self, table: str, *, eq: Mapping[str, Any]) -> None:
        raise NotImplementedError

    async def count(self, table: str, *, eq: Optional[Mapping[str, Any]] = None) -> int:
        raise NotImplementedError

    async def fetch_row_direct(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        """Bypass the client SDK and read one row (fallback path)."""
        raise NotImplementedError

    async def ping(self) -> None:
        raise NotImplementedError

    # --- auth ----------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Return {"user_id", "email", "access_token"}."""
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError

    async def get_session(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> str:
        """Create an auth account and return its id."""
        raise NotImplementedError

    async def update_password(self, user_id: str, new_password: str) -> None:
        raise NotImplementedError

    async def delete_auth_user(self, user_id: str) -> bool:
        """
        Remove the auth account together with its profile row.

        Returns False when the backend could not do it, in which case only
        the profile should be removed.
        """
        raise NotImplementedError


# --------------------------------------------------------------------------- #
# Generic table service
# --------------------------------------------------------------------------- #

_SERVER_FIELDS = ("id", "created_at", "updated_at")


class TableService:
    table: str = ""
    model: Type[Entity] = Entity
    columns: str = "*"
    relations: tuple = ()

    def __init__(self, backend: Backend):
        self.backend = backend

    def _parse(self, row: Mapping[str, Any]):
        return self.model.model_validate(row)

    def _parse_all(self, rows: Iterable[Mapping[str, Any]]) -> list:
        return [self._parse(r) for r in rows]

    def _create_payload(self, data) -> Dict[str, Any]:
        return to_payload(data, drop=self.relations + _SERVER_FIELDS)

    def _update_payload(self, data) -> Dict[str, Any]:
        return to_payload(data, drop=self.relations + _SERVER_FIELDS)

    async def get_all(self) -> list:
        rows = await self.backend.select(self.table, columns=self.columns)
        return self._parse_all(rows)

    async def get_by_id(self, row_id: str):
        rows = await self.backend.select(self.table, columns=self.columns, eq={"id": row_id}, limit=1)
        return self._parse(rows[0]) if rows else None

    async def create(self, data):
        row = await self.backend.insert(self.table, self._create_payload(data), columns=self.columns)
        return self._parse(row)

    async def update(self, row_id: str, changes):
        payload = self._update_payload(changes)
        payload["updated_at"] = utcnow().isoformat()
        rows = await self.backend.update(self.table, payload, eq={"id": row_id}, columns=self.columns)
        if not rows:
            raise NotFoundError(f"No {self.table} row with id {row_id}", table=self.table)
        return self._parse(rows[0])

    async def delete(self, row_id: str) -> None:
        await self.backend.delete(self.table, eq={"id": row_id})


# --------------------------------------------------------------------------- #
# Entity services
# --------------------------------------------------------------------------- #

class PropertyService(TableService):
    table = "properties"
    model = Property
    columns = "*, creator:users!properties_created_by_fkey(id, full_name, email, role)"
    relations = ("creator",)

    async def get_by_user(self, user_id: str, is_admin: bool) -> List[Property]:
        # Every role sees every listing.
        return await self.get_all()

    async def archive(self, row_id: str) -> Property:
        return await self.update(row_id, {"status": PropertyStatus.ARCHIVED})


class LeadService(TableService):
    table = "leads"
    model = Lead
    columns = "*, assignee:users!leads_assigned_to_fkey(id, full_name, email, role)"
    relations = ("assignee",)

    async def get_by_user(self, user_id: str, is_admin: bool) -> List[Lead]:
        if is_admin:
            return await self.get_all()
        rows = await self.backend.select(
            self.table,
            columns=self.columns,
            any_eq={"created_by": user_id, "assigned_to": user_id},
        )
        return self._parse_all(rows)

    async def archive(self, row_id: str) -> Lead:
        return await self.update(row_id, {"status": LeadStatus.ARCHIVED})


class DealService(TableService):
    table = "deals"
    model = Deal
    columns = (
        "*, property:properties(id, title, price, location, status), "
        "lead:leads(id, name, email, phone), "
        "closer:users!deals_closer_id_fkey(id, full_name, email, role)"
    )
    relations = ("property", "lead", "closer")

    async def get_by_user(self, user_id: str, is_admin: bool) -> List[Deal]:
        # Agents need full pipeline visibility, so every role sees every deal.
        return await self.get_all()

    def _create_payload(self, data) -> Dict[str, Any]:
        payload = super()._create_payload(data)
        if payload.get("commission_amount") is None and "deal_value" in payload:
            rate = payload.get("commission_rate") or 0
            payload["commission_amount"] = payload["deal_value"] * rate / 100
        return payload

    def _update_payload(self, data) -> Dict[str, Any]:
        payload = super()._update_payload(data)
        if payload.get("status") == DealStatus.CLOSED.value and not payload.get("closed_at"):
            payload["closed_at"] = utcnow().isoformat()
        return payload


class ActivityService(TableService):
    table = "activities"
    model = Activity
    columns = "*, user:users(id, full_name, email, role)"
    relations = ("user",)

    async def get_all(self, limit: int = 100) -> List[Activity]:
        rows = await self.backend.select(self.table, columns=self.columns, limit=limit)
        return self._parse_all(rows)

    async def get_by_user(self, user_id: str, is_admin: bool, limit: int = 100) -> List[Activity]:
        if is_admin:
            return await self.get_all(limit)
        rows = await self.backend.select(
            self.table, columns=self.columns, eq={"user_id": user_id}, limit=limit
        )
        return self._parse_all(rows)


class UserService(TableService):
    table = "users"
    model = User

    async def get_by_email(self, email: str) -> Optional[User]:
        rows = await self.backend.select(self.table, eq={"email": email.lower()}, limit=1)
        return self._parse(rows[0]) if rows else None

    async def get_referred(self, user_id: str) -> List[User]:
        rows = await self.backend.select(self.table, eq={"referred_by": user_id})
        return self._parse_all(rows)

    async def create(self, data) -> User:
        payload = self._create_payload(data)
        password = payload.pop("password", None)
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(
                f"Password is required and must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        email = str(payload.get("email") or "").strip().lower()
        if not email:
            raise InvalidInputError("Email is required")
        payload["email"] = email
        if await self.get_by_email(email) is not None:
            raise InvalidInputError("A user with this email already exists")

        try:
            auth_id = await self.backend.sign_up(
                email,
                password,
                {"full_name": payload.get("full_name"), "role": payload.get("role", "user")},
            )
        except RemoteStoreError as e:
            if "already registered" in str(e).lower():
                raise InvalidInputError("A user with this email already exists") from e
            raise

        payload["id"] = auth_id
        payload.setdefault("status", UserStatus.ACTIVE.value)
        try:
            row = await self.backend.insert(self.table, payload)
        except RemoteStoreError as e:
            logger.error("Auth account %s created but profile insert failed: %s", auth_id, e)
            raise RemoteStoreError(
                "User account created but profile creation failed. Please contact admin.",
                table=self.table,
                cause=e,
            ) from e
        return self._parse(row)

    async def toggle_status(self, row_id: str) -> User:
        """
        Flip active <-> inactive with a remote compare-and-set.

        Each conditional update only matches the stored status it expects,
        so a stale local snapshot can never pick the wrong target.
        """
        for _ in range(3):
            for current, target in (
                (UserStatus.ACTIVE, UserStatus.INACTIVE),
                (UserStatus.INACTIVE, UserStatus.ACTIVE),
            ):
                rows = await self.backend.update(
                    self.table,
                    {"status": target.value, "updated_at": utcnow().isoformat()},
                    eq={"id": row_id, "status": current.value},
                )
                if rows:
                    return self._parse(rows[0])
            user = await self.get_by_id(row_id)
            if user is None:
                raise NotFoundError(f"No users row with id {row_id}", table=self.table)
            if user.status == UserStatus.SUSPENDED:
                raise InvalidInputError("Suspended accounts cannot be toggled")
        raise RemoteStoreError(f"Status of user {row_id} kept changing; toggle abandoned", table=self.table)

    async def change_password(self, user_id: str, new_password: str) -> None:
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        await self.backend.update_password(user_id, new_password)

    async def set_points(self, user_id: str, points: int) -> User:
        return await self.update(user_id, {"points_balance": int(points)})

    async def get_points_balance(self, user_id: str) -> int:
        user = await self.get_by_id(user_id)
        return user.points_balance if user else 0

    async def delete(self, row_id: str) -> None:
        if await self.backend.delete_auth_user(row_id):
            return
        logger.warning("Auth account %s kept; removing the profile only", row_id)
        await self.backend.delete(self.table, eq={"id": row_id})


class AuditLogService(TableService):
    table = "audit_logs"
    model = AuditLog
    columns = "*, user:users(id, full_name, email, role)"
    relations = ("user",)

    async def get_all(
        self,
        user_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 500,
    ) -> List[AuditLog]:
        eq: Dict[str, Any] = {}
        if user_id:
            eq["user_id"] = user_id
        if entity_type:
            eq["entity_type"] = entity_type
        rows = await self.backend.select(
            self.table,
            columns=self.columns,
            eq=eq or None,
            ilike={"action": action} if action else None,
            limit=limit,
        )
        return self._parse_all(rows)


class NotificationService(TableService):
    table = "notifications"
    model = Notification
    columns = "*, sender:users!notifications_sender_id_fkey(id, full_name, email)"
    relations = ("sender",)

    async def get_for_user(self, user_id: str, limit: int = 100) -> List[Notification]:
        rows = await self.backend.select(
            self.table, columns=self.columns, eq={"recipient_id": user_id}, limit=limit
        )
        return self._parse_all(rows)

    async def get_unread_count(self, user_id: str) -> int:
        return await self.backend.count(self.table, eq={"recipient_id": user_id, "read": False})

    def _create_payload(self, data) -> Dict[str, Any]:
        payload = super()._create_payload(data)
        payload["read"] = False
        return payload

    async def mark_as_read(self, row_id: str) -> None:
        await self.backend.update(self.table, {"read": True}, eq={"id": row_id})

    async def mark_all_as_read(self, user_id: str) -> None:
        await self.backend.update(self.table, {"read": True}, eq={"recipient_id": user_id})


class AnnouncementService(TableService):
    table = "announcements"
    model = Announcement
    columns = "*, creator:users!announcements_created_by_fkey(id, full_name, email)"
    relations = ("creator",)

    async def get_active(self, now: Optional[datetime] = None) -> List[Announcement]:
        now = now or utcnow()
        return [a for a in await self.get_all() if a.is_active(now)]


class RewardService(TableService):
    table = "rewards"
    model = Reward
    columns = "*, creator:users!rewards_created_by_fkey(id, full_name, email)"
    relations = ("creator",)

    async def get_all(self, include_inactive: bool = False) -> List[Reward]:
        rows = await self.backend.select(
            self.table,
            columns=self.columns,
            eq=None if include_inactive else {"is_active": True},
            order="sort_order",
            desc=False,
        )
        return self._parse_all(rows)

    def _create_payload(self, data) -> Dict[str, Any]:
        payload = super()._create_payload(data)
        payload.setdefault("is_active", True)
        payload.setdefault("sort_order", 0)
        return payload

    async def toggle_active(self, row_id: str, is_active: bool) -> Reward:
        return await self.update(row_id, {"is_active": is_active})


class UserRewardService(TableService):
    table = "user_rewards"
    model = UserReward
    columns = "*, reward:rewards(*)"
    relations = ("reward", "user", "fulfiller")

    async def get_for_user(self, user_id: str) -> List[UserReward]:
        rows = await self.backend.select(self.table, columns=self.columns, eq={"user_id": user_id})
        return self._parse_all(rows)

    async def fulfill(self, row_id: str, fulfilled_by: str, notes: Optional[str] = None) -> UserReward:
        return await self.update(
            row_id,
            {
                "status": RewardStatus.FULFILLED,
                "fulfilled_at": utcnow(),
                "fulfilled_by": fulfilled_by,
                "notes": notes,
            },
        )


class ReferralService(TableService):
    table = "referral_earnings"
    model = ReferralEarning
    relations = ("referrer", "referred_agent", "deal")

    async def get_earnings_for_user(self, user_id: str) -> List[ReferralEarning]:
        rows = await self.backend.select(self.table, eq={"referrer_id": user_id})
        return self._parse_all(rows)

    async def get_all_earnings(self) -> List[ReferralEarning]:
        return await self.get_all()

    async def create_earning(self, data) -> ReferralEarning:
        return await self.create(data)


class StatsService:
    """Dashboard aggregate computed from the remote tables, never the cache."""

    def __init__(self, backend: Backend):
        self.backend = backend

    async def get_dashboard_stats(self, user_id: str, is_admin: bool) -> DashboardStats:
        properties = await self.backend.select(
            "properties", columns="status", eq=None if is_admin else {"created_by": user_id}, order=None
        )
        leads = await self.backend.select(
            "leads",
            columns="status",
            any_eq=None if is_admin else {"created_by": user_id, "assigned_to": user_id},
            order=None,
        )
        deals = await self.backend.select(
            "deals",
            columns="deal_value, status",
            any_eq=None if is_admin else {"created_by": user_id, "closer_id": user_id},
            order=None,
        )
        team_size = await self.backend.count("users")

        inactive_leads = {LeadStatus.WON.value, LeadStatus.LOST.value, LeadStatus.ARCHIVED.value}
        return DashboardStats(
            total_properties=len(properties),
            properties_sold=sum(1 for p in properties if p.get("status") == PropertyStatus.SOLD.value),
            available_properties=sum(
                1 for p in properties if p.get("status") == PropertyStatus.AVAILABLE.value
            ),
            team_size=team_size,
            active_leads=sum(1 for lead in leads if lead.get("status") not in inactive_leads),
            total_value=sum(
                float(d.get("deal_value") or 0) for d in deals if d.get("status") == DealStatus.CLOSED.value
            ),
        )


class AuthService:
    """Thin pass-through to the backend's authentication boundary."""

    def __init__(self, backend: Backend):
        self.backend = backend

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        return await self.backend.sign_in(email.strip().lower(), password)

    async def sign_out(self) -> None:
        await self.backend.sign_out()

    async def get_session(self) -> Optional[Dict[str, Any]]:
        return await self.backend.get_session()


# --------------------------------------------------------------------------- #
# Facade
# --------------------------------------------------------------------------- #

class RemoteStoreClient:
    """One object exposing every entity service over a single backend."""

    def __init__(self, backend: Backend):
        self.backend = backend
        self.properties = PropertyService(backend)
        self.leads = LeadService(backend)
        self.deals = DealService(backend)
        self.activities = ActivityService(backend)
        self.users = UserService(backend)
        self.audit_logs = AuditLogService(backend)
        self.notifications = NotificationService(backend)
        self.announcements = AnnouncementService(backend)
        self.rewards = RewardService(backend)
        self.user_rewards = UserRewardService(backend)
        self.referrals = ReferralService(backend)
        self.stats = StatsService(backend)
        self.auth = AuthService(backend)
