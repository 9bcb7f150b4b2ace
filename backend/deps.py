"""
FastAPI dependencies: the per-app store / identity provider and access gates.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from core.errors import NotAuthenticatedError
from core.identity import IdentityProvider
from core.models import Identity
from core.store import CrmStore


def get_store(request: Request) -> CrmStore:
    return request.app.state.store


def get_identity(request: Request) -> IdentityProvider:
    return request.app.state.identity


def current_identity(identity: IdentityProvider = Depends(get_identity)) -> Identity:
    me = identity.current_identity()
    if me is None:
        raise NotAuthenticatedError("Not signed in")
    return me


def require_admin(me: Identity = Depends(current_identity)) -> Identity:
    if not me.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return me
