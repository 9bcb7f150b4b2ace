# tests/test_supabase_backend.py
"""SupabaseBackend query building and error wrapping, against a stub supabase-py client."""
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from core.errors import RemoteStoreError
from core.remote import RemoteStoreClient
from supabase_client import helpers
from supabase_client.backend import SupabaseBackend


class StubQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, table, data, error=None):
        self.table_name = table
        self.data = data
        self.error = error
        self.ops = []

    def __getattr__(self, name):
        def op(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self
        return op

    def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data, count=len(self.data))


class StubClient:
    def __init__(self, data=None, error=None, session=None):
        self.data = data if data is not None else []
        self.error = error
        self.queries = []
        self.auth = SimpleNamespace(
            sign_in_with_password=lambda creds: SimpleNamespace(user=None, session=None),
            get_session=lambda: session,
        )

    def table(self, name):
        query = StubQuery(name, self.data, self.error)
        self.queries.append(query)
        return query


def _backend(client):
    return SupabaseBackend(client=client, url="https://demo.supabase.co", anon_key="anon")


@pytest.mark.asyncio
async def test_select_applies_filters_and_newest_first_order():
    client = StubClient(data=[{"id": "l1"}])
    rows = await _backend(client).select("leads", eq={"assigned_to": "2", "closed_at": None})

    assert rows == [{"id": "l1"}]
    ops = client.queries[0].ops
    assert ("eq", ("assigned_to", "2"), {}) in ops
    assert ("is_", ("closed_at", "null"), {}) in ops
    assert ("order", ("created_at",), {"desc": True}) in ops


@pytest.mark.asyncio
async def test_api_error_becomes_remote_store_error():
    client = StubClient(error=APIError({"message": "permission denied for table deals", "code": "42501"}))

    with pytest.raises(RemoteStoreError) as exc:
        await _backend(client).select("deals")
    assert exc.value.table == "deals"
    assert "permission denied" in str(exc.value)


@pytest.mark.asyncio
async def test_insert_without_returned_row_is_an_error():
    with pytest.raises(RemoteStoreError):
        await _backend(StubClient(data=[])).insert("properties", {"title": "Loft"})


@pytest.mark.asyncio
async def test_count_reads_exact_count():
    client = StubClient(data=[{"id": "1"}, {"id": "2"}])
    assert await _backend(client).count("users", eq={"status": "active"}) == 2


@pytest.mark.asyncio
async def test_rejected_sign_in_raises():
    with pytest.raises(RemoteStoreError):
        await _backend(StubClient()).sign_in("someone@nebriix.com", "wrong-password")


@pytest.mark.asyncio
async def test_direct_fetch_uses_rest_endpoint(monkeypatch):
    seen = {}

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        seen.update(method=method, url=url, headers=headers, params=params)
        return SimpleNamespace(status_code=200, json=lambda: [{"id": "1", "email": "admin@nebriix.com"}])

    monkeypatch.setattr(helpers.requests, "request", fake_request)
    row = await _backend(StubClient()).fetch_row_direct("users", "1")

    assert row["email"] == "admin@nebriix.com"
    assert seen["url"] == "https://demo.supabase.co/rest/v1/users"
    assert seen["params"] == {"id": "eq.1", "select": "*"}
    assert seen["headers"]["Authorization"] == "Bearer anon"


@pytest.mark.asyncio
async def test_direct_fetch_error_status_raises(monkeypatch):
    monkeypatch.setattr(
        helpers.requests, "request", lambda *a, **k: SimpleNamespace(status_code=503, json=lambda: [])
    )
    with pytest.raises(RemoteStoreError):
        await _backend(StubClient()).fetch_row_direct("users", "1")


def _signed_in_client():
    session = SimpleNamespace(
        user=SimpleNamespace(id="1", email="admin@nebriix.com"), access_token="admin-token"
    )
    return StubClient(session=session)


@pytest.mark.asyncio
async def test_user_delete_goes_through_admin_function(monkeypatch):
    seen = {}

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        seen.update(url=url, json=json, auth=headers["Authorization"])
        return SimpleNamespace(status_code=200, json=lambda: {"success": True})

    monkeypatch.setattr(helpers.requests, "request", fake_request)
    client = _signed_in_client()
    await RemoteStoreClient(_backend(client)).users.delete("3")

    assert seen["url"] == "https://demo.supabase.co/functions/v1/admin-user"
    assert seen["json"] == {"action": "delete_user", "userId": "3"}
    assert seen["auth"] == "Bearer admin-token"
    assert client.queries == []


@pytest.mark.asyncio
async def test_user_delete_falls_back_to_profile_row(monkeypatch):
    monkeypatch.setattr(
        helpers.requests, "request", lambda *a, **k: SimpleNamespace(status_code=404, json=lambda: {})
    )
    client = _signed_in_client()
    await RemoteStoreClient(_backend(client)).users.delete("3")

    assert [q.table_name for q in client.queries] == ["users"]
    ops = client.queries[0].ops
    assert ("delete", (), {}) in ops
    assert ("eq", ("id", "3"), {}) in ops
