# database/queries.py
"""
Local remote-store backend on SQLAlchemy.

Stands in for the hosted service in demo mode and in the test-suite: every
remote table becomes a set of JSON documents in one `records` table, and the
auth service becomes a local credential table. Ids and timestamps are
assigned here, like a real server would.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import select, text
from sqlalchemy.orm import sessionmaker

from core.errors import RemoteStoreError
from core.remote import Backend

from .db_setup import DEFAULT_DB_URL, Base, get_engine
from .models import Credential, Record

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 100_000).hex()


def _matches(
    payload: Mapping[str, Any],
    eq: Optional[Mapping[str, Any]],
    any_eq: Optional[Mapping[str, Any]],
    ilike: Optional[Mapping[str, str]],
) -> bool:
    if eq and any(payload.get(k) != to_jsonable_python(v) for k, v in eq.items()):
        return False
    if any_eq and not any(payload.get(k) == to_jsonable_python(v) for k, v in any_eq.items()):
        return False
    if ilike:
        for k, sub in ilike.items():
            if str(sub).lower() not in str(payload.get(k) or "").lower():
                return False
    return True


class LocalBackend(Backend):
    """
    SQLite-backed implementation of the remote backend contract.

    SQLAlchemy calls are blocking, so each primitive runs in a worker thread
    (like the Supabase backend) and holds `_lock`, because the in-memory
    database is a single shared connection.
    """

    name = "local"

    def __init__(self, url: str = DEFAULT_DB_URL):
        self.engine = get_engine(url)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self._session: Optional[Dict[str, Any]] = None
        self._lock = threading.RLock()

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------
    def _rows(self, session, table: str) -> List[Record]:
        stmt = select(Record).where(Record.table_name == table).order_by(Record.seq)
        return list(session.scalars(stmt).all())

    def _insert_sync(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        payload = to_jsonable_python(dict(row))
        now = _now_iso()
        payload["id"] = str(payload.get("id") or uuid.uuid4())
        payload.setdefault("created_at", now)
        payload.setdefault("updated_at", now)
        with self._lock, self.SessionLocal() as session:
            session.add(Record(table_name=table, record_id=payload["id"], payload=payload))
            session.commit()
        return payload

    def _select_sync(
        self,
        table: str,
        eq: Optional[Mapping[str, Any]],
        any_eq: Optional[Mapping[str, Any]],
        ilike: Optional[Mapping[str, str]],
        order: Optional[str],
        desc: bool,
        limit: Optional[int],
    ) -> List[Dict[str, Any]]:
        with self._lock, self.SessionLocal() as session:
            records = [r for r in self._rows(session, table) if _matches(r.payload, eq, any_eq, ilike)]

        if order:
            def sort_key(r: Record):
                value = r.payload.get(order)
                return (0 if value is None else 1, value if value is not None else "", r.seq)

            records.sort(key=sort_key, reverse=desc)
        rows = [dict(r.payload) for r in records]
        return rows[:limit] if limit is not None else rows

    def _update_sync(self, table: str, changes: Mapping[str, Any], eq: Mapping[str, Any]) -> List[Dict[str, Any]]:
        changes = to_jsonable_python(dict(changes))
        updated: List[Dict[str, Any]] = []
        with self._lock, self.SessionLocal() as session:
            for record in self._rows(session, table):
                if not _matches(record.payload, eq, None, None):
                    continue
                # Reassign so the JSON column is flagged dirty.
                record.payload = {**record.payload, **changes}
                updated.append(dict(record.payload))
            session.commit()
        return updated

    def _delete_sync(self, table: str, eq: Mapping[str, Any]) -> None:
        with self._lock, self.SessionLocal() as session:
            for record in self._rows(session, table):
                if _matches(record.payload, eq, None, None):
                    session.delete(record)
            session.commit()

    def _ping_sync(self) -> None:
        with self._lock, self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def _check_credentials(self, email: str, password: str) -> Dict[str, Any]:
        with self._lock, self.SessionLocal() as session:
            cred = session.scalars(select(Credential).where(Credential.email == email.lower())).first()
            if cred is None or _hash_password(password, cred.salt) != cred.password_hash:
                raise RemoteStoreError("Invalid login credentials")
            return {"user_id": cred.user_id, "email": cred.email}

    def _set_password_sync(self, user_id: str, new_password: str) -> None:
        with self._lock, self.SessionLocal() as session:
            cred = session.get(Credential, user_id)
            if cred is None:
                raise RemoteStoreError(f"No auth account for user {user_id}")
            cred.salt = secrets.token_hex(16)
            cred.password_hash = _hash_password(new_password, cred.salt)
            session.commit()

    def _delete_account_sync(self, user_id: str) -> None:
        with self._lock, self.SessionLocal() as session:
            cred = session.get(Credential, user_id)
            if cred is not None:
                session.delete(cred)
            for record in self._rows(session, "users"):
                if record.record_id == user_id:
                    session.delete(record)
            session.commit()

    # -----------------------------------------------------------------
    # Table primitives
    # -----------------------------------------------------------------
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
        return await asyncio.to_thread(self._select_sync, table, eq, any_eq, ilike, order, desc, limit)

    async def insert(self, table: str, row: Mapping[str, Any], *, columns: str = "*") -> Dict[str, Any]:
        return await asyncio.to_thread(self._insert_sync, table, row)

    async def update(
        self,
        table: str,
        changes: Mapping[str, Any],
        *,
        eq: Mapping[str, Any],
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._update_sync, table, changes, eq)

    async def delete(self, table: str, *, eq: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._delete_sync, table, eq)

    async def count(self, table: str, *, eq: Optional[Mapping[str, Any]] = None) -> int:
        return len(await self.select(table, eq=eq, order=None))

    async def fetch_row_direct(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, eq={"id": row_id}, limit=1)
        return rows[0] if rows else None

    async def ping(self) -> None:
        await asyncio.to_thread(self._ping_sync)

    # -----------------------------------------------------------------
    # Auth
    # -----------------------------------------------------------------
    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        account = await asyncio.to_thread(self._check_credentials, email, password)
        self._session = {**account, "access_token": secrets.token_urlsafe(24)}
        return dict(self._session)

    async def sign_out(self) -> None:
        self._session = None

    async def get_session(self) -> Optional[Dict[str, Any]]:
        return dict(self._session) if self._session else None

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> str:
        return await asyncio.to_thread(self.add_credentials, str(uuid.uuid4()), email, password)

    async def update_password(self, user_id: str, new_password: str) -> None:
        await asyncio.to_thread(self._set_password_sync, user_id, new_password)

    async def delete_auth_user(self, user_id: str) -> bool:
        """Drop the credential and the profile together, like the admin edge function."""
        await asyncio.to_thread(self._delete_account_sync, user_id)
        return True

    # -----------------------------------------------------------------
    # Seeding (demo bootstrapping & tests)
    # -----------------------------------------------------------------
    def add_credentials(self, user_id: str, email: str, password: str) -> str:
        """Register a local auth account. Returns the user id."""
        with self._lock, self.SessionLocal() as session:
            exists = session.scalars(select(Credential).where(Credential.email == email.lower())).first()
            if exists is not None:
                raise RemoteStoreError("User already registered")
            salt = secrets.token_hex(16)
            session.add(
                Credential(
                    user_id=user_id,
                    email=email.lower(),
                    salt=salt,
                    password_hash=_hash_password(password, salt),
                )
            )
            session.commit()
        return user_id

    def seed(self, table: str, rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Insert rows synchronously; returns them with server fields filled in."""
        return [self._insert_sync(table, row) for row in rows]


# ---------------------------------------------------------------------
# Demo roster
# ---------------------------------------------------------------------
DEMO_PASSWORD = "demo12345"

DEMO_USERS = [
    {"id": "1", "email": "admin@nebriix.com", "full_name": "Ahmed Al-Rashid", "role": "admin",
     "status": "active", "phone": "+971 50 123 4567"},
    {"id": "2", "email": "user@nebriix.com", "full_name": "Sarah Thompson", "role": "user",
     "status": "active", "phone": "+971 50 234 5678", "referred_by": "1"},
    {"id": "3", "email": "john@nebriix.com", "full_name": "John Smith", "role": "user",
     "status": "active", "referred_by": "1"},
]

DEMO_PROPERTIES = [
    {"id": "p1", "title": "Dubai Marina Penthouse", "type": "penthouse", "status": "available",
     "price": 8_500_000, "location": "Dubai Marina", "area_sqft": 4200, "bedrooms": 4,
     "bathrooms": 5, "features": ["Private pool", "Marina view"], "created_by": "1"},
    {"id": "p2", "title": "Palm Jumeirah Villa", "type": "villa", "status": "under_offer",
     "price": 25_000_000, "location": "Palm Jumeirah", "area_sqft": 12000, "bedrooms": 6,
     "bathrooms": 8, "features": ["Private beach"], "created_by": "2"},
]

DEMO_LEADS = [
    {"id": "l1", "name": "Mohammed Hassan", "email": "m.hassan@example.com", "phone": "+971501112233",
     "source": "Website", "status": "qualified", "budget_min": 5_000_000, "budget_max": 10_000_000,
     "preferred_type": "penthouse", "assigned_to": "2", "created_by": "1"},
    {"id": "l2", "name": "Emma Wilson", "email": "emma.w@example.com", "phone": "+971502223344",
     "source": "Referral", "status": "new", "created_by": "3"},
]


def seed_demo_data(backend: LocalBackend) -> None:
    """Populate an empty local backend with the demo roster. Idempotent."""
    with backend.SessionLocal() as session:
        if backend._rows(session, "users"):
            return
    for user in DEMO_USERS:
        backend.add_credentials(user["id"], user["email"], DEMO_PASSWORD)
    backend.seed("users", DEMO_USERS)
    backend.seed("properties", DEMO_PROPERTIES)
    backend.seed("leads", DEMO_LEADS)
    logger.info("Seeded demo roster (%d users)", len(DEMO_USERS))
