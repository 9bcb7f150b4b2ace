"""
Team account routes. Everything but reads is admin-only.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_store, require_admin
from backend.schemas import PasswordChangeRequest, UserCreate, UserUpdate
from core.errors import NotFoundError
from core.models import Identity, User
from core.store import CrmStore

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[User])
async def list_users(_: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.state.users


@router.get("/{user_id}", response_model=User)
async def get_user(user_id: str, _: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    user = store.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", table="users")
    return user


@router.get("/{user_id}/summary", response_model=Dict[str, int])
async def user_summary(user_id: str, _: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.get_user_activity_summary(user_id)


@router.post("", response_model=User, status_code=201)
async def create_user(body: UserCreate, _: Identity = Depends(require_admin), store: CrmStore = Depends(get_store)):
    return await store.create_user(body.model_dump())


@router.patch("/{user_id}", response_model=User)
async def update_user(
    user_id: str,
    body: UserUpdate,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    return await store.update_user(user_id, body.model_dump(exclude_unset=True))


@router.post("/{user_id}/toggle-status", response_model=User)
async def toggle_status(user_id: str, _: Identity = Depends(require_admin), store: CrmStore = Depends(get_store)):
    return await store.toggle_user_status(user_id)


@router.post("/{user_id}/password")
async def set_password(
    user_id: str,
    body: PasswordChangeRequest,
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    await store.change_password(user_id, body.new_password)
    return {"status": "password_changed", "id": user_id}


@router.delete("/{user_id}")
async def delete_user(user_id: str, _: Identity = Depends(require_admin), store: CrmStore = Depends(get_store)):
    await store.delete_user(user_id)
    return {"status": "deleted", "id": user_id}
