# tests/test_identity.py
"""Sign-in, session restore, inactive-account gating and load timeouts."""
import asyncio

import pytest

from core.errors import InactiveAccountError, InvalidInputError, NotAuthenticatedError
from core.identity import LOAD_TIMEOUT_MESSAGE, IdentityProvider
from core.models import UserRole
from core.store import CrmStore
from crm_testkit import ADMIN_ID, AGENT_ID, OTHER_AGENT_ID
from database.queries import DEMO_PASSWORD


@pytest.fixture
def identity(remote, store) -> IdentityProvider:
    return IdentityProvider(remote, store, profile_timeout=0.5, load_timeout=2)


@pytest.mark.asyncio
async def test_sign_in_resolves_profile_and_loads_store(identity: IdentityProvider, store: CrmStore, remote):
    me = await identity.sign_in("Admin@Nebriix.com", DEMO_PASSWORD)

    assert me.user_id == ADMIN_ID
    assert me.is_admin and identity.is_admin
    assert identity.has_role("admin")
    assert identity.has_role([UserRole.ADMIN, UserRole.USER])
    assert not identity.has_role(UserRole.USER)
    assert store.state.current_user_id == ADMIN_ID
    assert len(store.state.properties) == 2
    assert (await remote.users.get_by_id(ADMIN_ID)).last_login is not None


@pytest.mark.asyncio
async def test_wrong_password_is_rejected(identity: IdentityProvider):
    with pytest.raises(NotAuthenticatedError):
        await identity.sign_in("admin@nebriix.com", "wrong-password")
    assert identity.current_identity() is None


@pytest.mark.asyncio
async def test_empty_credentials_are_invalid(identity: IdentityProvider):
    with pytest.raises(InvalidInputError):
        await identity.sign_in("", "")


@pytest.mark.asyncio
async def test_inactive_account_is_signed_out(identity: IdentityProvider, backend, store: CrmStore):
    await backend.update("users", {"status": "inactive"}, eq={"id": OTHER_AGENT_ID})

    with pytest.raises(InactiveAccountError):
        await identity.sign_in("john@nebriix.com", DEMO_PASSWORD)

    assert identity.current_identity() is None
    assert await backend.get_session() is None
    assert store.state.current_user_id is None


@pytest.mark.asyncio
async def test_restore_session_picks_up_existing_login(identity: IdentityProvider, remote):
    await identity.sign_in("user@nebriix.com", DEMO_PASSWORD)

    fresh = IdentityProvider(remote, CrmStore(remote))
    restored = await fresh.restore_session()

    assert restored is not None and restored.user_id == AGENT_ID
    assert fresh.store.state.current_user_id == AGENT_ID


@pytest.mark.asyncio
async def test_restore_without_session_returns_none(identity: IdentityProvider):
    assert await identity.restore_session() is None


@pytest.mark.asyncio
async def test_slow_profile_lookup_falls_back_to_direct_fetch(identity: IdentityProvider, remote, monkeypatch):
    async def stalled(user_id):
        await asyncio.sleep(5)

    monkeypatch.setattr(remote.users, "get_by_id", stalled)
    identity.profile_timeout = 0.05

    me = await identity.sign_in("admin@nebriix.com", DEMO_PASSWORD)
    assert me.user_id == ADMIN_ID


@pytest.mark.asyncio
async def test_load_timeout_clears_loading_flag(identity: IdentityProvider, store: CrmStore, monkeypatch):
    async def stalled(user_id, is_admin):
        store.state.is_loading = True
        await asyncio.sleep(5)

    monkeypatch.setattr(store, "load_initial_data", stalled)
    identity.load_timeout = 0.05

    await identity.sign_in("admin@nebriix.com", DEMO_PASSWORD)

    assert store.state.is_loading is False
    assert store.state.error == LOAD_TIMEOUT_MESSAGE


@pytest.mark.asyncio
async def test_profile_update_cannot_change_own_role(identity: IdentityProvider):
    await identity.sign_in("user@nebriix.com", DEMO_PASSWORD)

    with pytest.raises(InvalidInputError):
        await identity.update_profile({"role": "admin"})

    user = await identity.update_profile({"full_name": "Sarah T.", "role": "user"})
    assert user.full_name == "Sarah T."
    assert identity.current_identity().user.full_name == "Sarah T."


@pytest.mark.asyncio
async def test_sign_out_clears_identity_and_store(identity: IdentityProvider, store: CrmStore):
    await identity.sign_in("admin@nebriix.com", DEMO_PASSWORD)
    await identity.sign_out()

    assert identity.current_identity() is None
    assert store.state.properties == []
    with pytest.raises(NotAuthenticatedError):
        await identity.change_password("whatever-long")
