"""
Property listing routes.
"""

from typing import List

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_store
from backend.schemas import PropertyCreate, PropertyUpdate
from core.errors import NotFoundError
from core.models import Identity, Property
from core.store import CrmStore

router = APIRouter(prefix="/properties", tags=["properties"])


@router.get("", response_model=List[Property])
async def list_properties(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.get_properties_for_user(me.user_id, me.is_admin)


@router.get("/{property_id}", response_model=Property)
async def get_property(
    property_id: str,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    prop = store.get_property_by_id(property_id)
    if prop is None:
        raise NotFoundError(f"Property {property_id} not found", table="properties")
    return prop


@router.post("", response_model=Property, status_code=201)
async def create_property(
    body: PropertyCreate,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    return await store.create_property(body.model_dump())


@router.patch("/{property_id}", response_model=Property)
async def update_property(
    property_id: str,
    body: PropertyUpdate,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    return await store.update_property(property_id, body.model_dump(exclude_unset=True))


@router.post("/{property_id}/archive", response_model=Property)
async def archive_property(
    property_id: str,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    return await store.archive_property(property_id)


@router.delete("/{property_id}")
async def delete_property(
    property_id: str,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    await store.delete_property(property_id)
    return {"status": "deleted", "id": property_id}
