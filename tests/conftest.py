# tests/conftest.py
"""
Shared fixtures: a seeded in-memory backend that can be told to fail
specific operations, plus a RemoteStoreClient / CrmStore over it.
"""
import pytest
import pytest_asyncio

from core.remote import RemoteStoreClient
from core.store import CrmStore
from database.queries import seed_demo_data
from crm_testkit import ADMIN_ID, AGENT_ID, FlakyBackend


@pytest.fixture
def backend() -> FlakyBackend:
    b = FlakyBackend()
    seed_demo_data(b)
    return b


@pytest.fixture
def remote(backend) -> RemoteStoreClient:
    return RemoteStoreClient(backend)


@pytest.fixture
def store(remote) -> CrmStore:
    return CrmStore(remote)


@pytest_asyncio.fixture
async def admin_store(store, backend) -> CrmStore:
    assert await store.load_initial_data(ADMIN_ID, True)
    backend.calls.clear()
    return store


@pytest_asyncio.fixture
async def agent_store(store, backend) -> CrmStore:
    assert await store.load_initial_data(AGENT_ID, False)
    backend.calls.clear()
    return store
