"""
Nebriix CRM Backend API
=======================

FastAPI surface over one session's CrmStore and IdentityProvider.

Design Intent
-------------
• One app == one session: the store and identity provider live on
  `app.state` and every route dispatches store actions against them.
• Routes read from the store's cache; mutations go through the store so the
  activity feed, audit trail and notifications stay consistent.
• CrmError subclasses are mapped onto HTTP status codes in one place.

Run locally (demo mode when no Supabase env is set):

    uvicorn backend.main:app --reload
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.routes import auth, deals, insights, leads, notifications, properties, rewards, users
from core.config import build_backend, configure_logging, is_demo_mode
from core.errors import (
    CrmError,
    InactiveAccountError,
    InvalidInputError,
    NotAuthenticatedError,
    NotFoundError,
    RemoteStoreError,
)
from core.health import system_health
from core.identity import IdentityProvider
from core.metadata import __project__, __version__, get_metadata
from core.remote import RemoteStoreClient
from core.store import CrmStore

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------- #
# Error mapping (most specific first)
# --------------------------------------------------------------------------- #

_ERROR_STATUS = (
    (NotFoundError, 404),
    (RemoteStoreError, 502),
    (InvalidInputError, 400),
    (InactiveAccountError, 403),
    (NotAuthenticatedError, 401),
)


async def _crm_error_handler(request: Request, exc: CrmError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


# --------------------------------------------------------------------------- #
# App factory
# --------------------------------------------------------------------------- #

def create_app(remote: Optional[RemoteStoreClient] = None) -> FastAPI:
    """
    Build the API around `remote` (defaults to the configured backend).

    Tests pass a RemoteStoreClient over a LocalBackend.
    """
    remote = remote or RemoteStoreClient(build_backend())

    app = FastAPI(
        title=f"{__project__} Backend API",
        version=__version__,
        description=(
            "Session cache & mutation store for the real-estate CRM.\n"
            "- Listings, leads, deals and team accounts.\n"
            "- Activity feed, audit trail and in-app notifications.\n"
            "- Rewards and referral program."
        ),
    )

    store = CrmStore(remote)
    app.state.remote = remote
    app.state.store = store
    app.state.identity = IdentityProvider(remote, store)

    app.add_exception_handler(CrmError, _crm_error_handler)

    for module in (auth, properties, leads, deals, users, insights, notifications, rewards):
        app.include_router(module.router)

    @app.get("/")
    async def root():
        """Basic liveness probe."""
        return {
            "status": "ok",
            "message": f"{__project__} backend is live.",
            **get_metadata(),
            "backend": remote.backend.name,
            "signed_in": app.state.identity.current_identity() is not None,
        }

    @app.get("/health")
    async def health():
        """Remote store connectivity plus host metrics."""
        return await system_health(remote.backend)

    logger.info("API ready on %s backend", remote.backend.name)
    return app


def _default_app() -> FastAPI:
    configure_logging()
    if is_demo_mode():
        logger.warning("SUPABASE_URL / SUPABASE_ANON_KEY not set; running in demo mode")
    return create_app()


app = _default_app()
