"""
Session routes: sign in / out, current account, self-service profile.
"""

from fastapi import APIRouter, Depends

from backend.deps import current_identity, get_identity
from backend.schemas import PasswordChangeRequest, ProfileUpdate, SignInRequest
from core.errors import NotAuthenticatedError
from core.identity import IdentityProvider
from core.models import Identity, User

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/sign-in", response_model=User)
async def sign_in(body: SignInRequest, identity: IdentityProvider = Depends(get_identity)):
    me = await identity.sign_in(body.email, body.password)
    return me.user


@router.post("/sign-out")
async def sign_out(identity: IdentityProvider = Depends(get_identity)):
    await identity.sign_out()
    return {"status": "signed_out"}


@router.get("/me", response_model=User)
async def whoami(me: Identity = Depends(current_identity)):
    return me.user


@router.post("/restore", response_model=User)
async def restore(identity: IdentityProvider = Depends(get_identity)):
    restored = await identity.restore_session()
    if restored is None:
        raise NotAuthenticatedError("No active session")
    return restored.user


@router.patch("/profile", response_model=User)
async def update_profile(
    body: ProfileUpdate,
    _: Identity = Depends(current_identity),
    identity: IdentityProvider = Depends(get_identity),
):
    return await identity.update_profile(body.model_dump(exclude_unset=True))


@router.post("/password")
async def change_password(
    body: PasswordChangeRequest,
    _: Identity = Depends(current_identity),
    identity: IdentityProvider = Depends(get_identity),
):
    await identity.change_password(body.new_password)
    return {"status": "password_changed"}
