"""
Deal routes. Deleting a deal cancels it; nothing is purged.
"""

from typing import List

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_store
from backend.schemas import DealCreate, DealUpdate
from core.errors import NotFoundError
from core.models import Deal, Identity
from core.store import CrmStore

router = APIRouter(prefix="/deals", tags=["deals"])


@router.get("", response_model=List[Deal])
async def list_deals(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.get_deals_for_user(me.user_id, me.is_admin)


@router.get("/{deal_id}", response_model=Deal)
async def get_deal(deal_id: str, _: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    deal = store.get_deal_by_id(deal_id)
    if deal is None:
        raise NotFoundError(f"Deal {deal_id} not found", table="deals")
    return deal


@router.post("", response_model=Deal, status_code=201)
async def create_deal(body: DealCreate, _: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return await store.create_deal(body.model_dump(exclude_none=True))


@router.patch("/{deal_id}", response_model=Deal)
async def update_deal(
    deal_id: str,
    body: DealUpdate,
    _: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
):
    return await store.update_deal(deal_id, body.model_dump(exclude_unset=True))


@router.post("/{deal_id}/close", response_model=Deal)
async def close_deal(deal_id: str, _: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return await store.close_deal(deal_id)


@router.delete("/{deal_id}", response_model=Deal)
async def cancel_deal(deal_id: str, _: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return await store.delete_deal(deal_id)
