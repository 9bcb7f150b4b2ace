# supabase_client/backend.py
"""
Supabase implementation of the remote backend contract.

Query building follows supabase-py v2 (PostgREST builder + GoTrue auth).
Every call goes through helpers.run_blocking so the store's event loop is
never blocked and failures arrive as RemoteStoreError.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from pydantic_core import to_jsonable_python

from core.errors import RemoteStoreError
from core.remote import Backend
from supabase_client.config import get_supabase_client
from supabase_client.helpers import fetch_row_rest, rest_request, run_blocking

logger = logging.getLogger(__name__)


def _apply_eq(query, eq: Optional[Mapping[str, Any]]):
    for column, value in (eq or {}).items():
        value = to_jsonable_python(value)
        query = query.is_(column, "null") if value is None else query.eq(column, value)
    return query


class SupabaseBackend(Backend):
    name = "supabase"

    def __init__(self, client=None, url: Optional[str] = None, anon_key: Optional[str] = None):
        self.url = url or os.getenv("SUPABASE_URL", "")
        self.anon_key = anon_key or os.getenv("SUPABASE_ANON_KEY", "")
        self.client = client or get_supabase_client(self.url, self.anon_key)

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
        query = _apply_eq(self.client.table(table).select(columns), eq)
        if any_eq:
            query = query.or_(",".join(f"{k}.eq.{to_jsonable_python(v)}" for k, v in any_eq.items()))
        for column, substring in (ilike or {}).items():
            query = query.ilike(column, f"%{substring}%")
        if order:
            query = query.order(order, desc=desc)
        if limit is not None:
            query = query.limit(limit)
        res = await run_blocking(query.execute, table=table)
        return res.data or []

    async def _reselect(self, table: str, ids: List[str], columns: str) -> List[Dict[str, Any]]:
        query = self.client.table(table).select(columns).in_("id", ids)
        res = await run_blocking(query.execute, table=table)
        return res.data or []

    async def insert(self, table: str, row: Mapping[str, Any], *, columns: str = "*") -> Dict[str, Any]:
        query = self.client.table(table).insert(to_jsonable_python(dict(row)))
        res = await run_blocking(query.execute, table=table)
        if not res.data:
            raise RemoteStoreError(f"Insert into '{table}' returned no data (check RLS / schema)", table=table)
        inserted = res.data[0]
        if columns != "*":
            # Inserts return bare rows; re-read to embed relations.
            embedded = await self._reselect(table, [inserted["id"]], columns)
            return embedded[0] if embedded else inserted
        return inserted

    async def update(
        self,
        table: str,
        changes: Mapping[str, Any],
        *,
        eq: Mapping[str, Any],
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        query = _apply_eq(self.client.table(table).update(to_jsonable_python(dict(changes))), eq)
        res = await run_blocking(query.execute, table=table)
        rows = res.data or []
        if rows and columns != "*":
            return await self._reselect(table, [r["id"] for r in rows], columns)
        return rows

    async def delete(self, table: str, *, eq: Mapping[str, Any]) -> None:
        query = _apply_eq(self.client.table(table).delete(), eq)
        await run_blocking(query.execute, table=table)

    async def count(self, table: str, *, eq: Optional[Mapping[str, Any]] = None) -> int:
        query = _apply_eq(self.client.table(table).select("id", count="exact"), eq)
        res = await run_blocking(query.execute, table=table)
        return int(getattr(res, "count", None) or 0)

    async def fetch_row_direct(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        session = await self.get_session()
        token = session["access_token"] if session else None
        logger.warning("Falling back to direct REST fetch for %s/%s", table, row_id)
        return await run_blocking(
            fetch_row_rest, self.url, table, row_id, api_key=self.anon_key, access_token=token, table=table
        )

    async def ping(self) -> None:
        query = self.client.table("users").select("id").limit(1)
        await run_blocking(query.execute, table="users")

    # -----------------------------------------------------------------
    # Auth
    # -----------------------------------------------------------------
    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        res = await run_blocking(
            self.client.auth.sign_in_with_password, {"email": email, "password": password}
        )
        if res.user is None or res.session is None:
            raise RemoteStoreError("Invalid login credentials")
        return {"user_id": res.user.id, "email": res.user.email, "access_token": res.session.access_token}

    async def sign_out(self) -> None:
        await run_blocking(self.client.auth.sign_out)

    async def get_session(self) -> Optional[Dict[str, Any]]:
        session = await run_blocking(self.client.auth.get_session)
        if session is None or session.user is None:
            return None
        return {"user_id": session.user.id, "email": session.user.email, "access_token": session.access_token}

    async def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> str:
        res = await run_blocking(
            self.client.auth.sign_up,
            {"email": email, "password": password, "options": {"data": dict(metadata)}},
        )
        if res.user is None:
            raise RemoteStoreError("Failed to create auth user")
        return res.user.id

    async def update_password(self, user_id: str, new_password: str) -> None:
        session = await self.get_session()
        if session is None:
            raise RemoteStoreError("Not authenticated")
        if session["user_id"] == user_id:
            await run_blocking(self.client.auth.update_user, {"password": new_password})
            return

        # Other accounts need the admin edge function (service role on the server side).
        resp = await run_blocking(
            rest_request,
            "POST",
            f"{self.url.rstrip('/')}/functions/v1/admin-user",
            api_key=self.anon_key,
            access_token=session["access_token"],
            json={"action": "change_password", "userId": user_id, "newPassword": new_password},
        )
        if resp.status_code >= 400:
            raise RemoteStoreError(
                "Changing another user's password requires the admin-user edge function to be deployed."
            )

    async def delete_auth_user(self, user_id: str) -> bool:
        session = await self.get_session()
        if session is None:
            raise RemoteStoreError("Not authenticated")
        try:
            resp = await run_blocking(
                rest_request,
                "POST",
                f"{self.url.rstrip('/')}/functions/v1/admin-user",
                api_key=self.anon_key,
                access_token=session["access_token"],
                json={"action": "delete_user", "userId": user_id},
            )
        except RemoteStoreError as e:
            logger.warning("admin-user edge function unreachable for delete of %s: %s", user_id, e)
            return False
        if resp.status_code >= 400:
            logger.warning("admin-user edge function refused delete of %s: %s", user_id, resp.status_code)
            return False
        return True
