"""
Lead routes. Non-admins only see leads they created or were assigned.
"""

from typing import List

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_store
from backend.schemas import LeadCreate, LeadUpdate
from core.errors import NotFoundError
from core.models import Identity, Lead
from core.store import CrmStore

router = APIRouter(prefix="/leads", tags=["leads"])


def _visible_lead(store: CrmStore, me: Identity, lead_id: str) -> Lead:
    lead = next((lead for lead in store.get_leads_for_user(me.user_id, me.is_admin) if lead.id == lead_id), None)
    if lead is None:
        raise NotFoundError(f"Lead {lead_id} not found", table="leads")
    return lead


@router.get("", response_model=List[Lead])
async def list_leads(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.get_leads_for_user(me.user_id, me.is_admin)


@router.get("/{lead_id}", response_model=Lead)
async def get_lead(lead_id: str, me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return _visible_lead(store, me, lead_id)


@router.post("", response_model=Lead, status_code=201)
async def create_lead(
    body: LeadCreate,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    return await store.create_lead(body.model_dump())


@router.patch("/{lead_id}", response_model=Lead)
async def update_lead(
    lead_id: str,
    body: LeadUpdate,
    me: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    _visible_lead(store, me, lead_id)
    return await store.update_lead(lead_id, body.model_dump(exclude_unset=True))


@router.post("/{lead_id}/archive", response_model=Lead)
async def archive_lead(lead_id: str, me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    _visible_lead(store, me, lead_id)
    return await store.archive_lead(lead_id)


@router.delete("/{lead_id}")
async def delete_lead(lead_id: str, me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    _visible_lead(store, me, lead_id)
    await store.delete_lead(lead_id)
    return {"status": "deleted", "id": lead_id}
