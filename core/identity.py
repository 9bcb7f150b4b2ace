"""
core/identity.py
----------------
Identity / session boundary.

Resolves the signed-in account (auth session -> `users` profile), gates
inactive accounts, and drives the store's bulk load for that account.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from core.config import LOAD_TIMEOUT, PROFILE_TIMEOUT
from core.errors import InactiveAccountError, InvalidInputError, NotAuthenticatedError, RemoteStoreError
from core.models import Identity, User, UserRole, UserStatus
from core.remote import RemoteStoreClient, utcnow
from core.store import CrmStore

logger = logging.getLogger(__name__)

LOAD_TIMEOUT_MESSAGE = "Loading timed out. Please refresh the page."

# Fields an account may not change on itself
_SELF_LOCKED_FIELDS = ("role", "email", "status")


class IdentityProvider:
    def __init__(
        self,
        remote: RemoteStoreClient,
        store: CrmStore,
        *,
        profile_timeout: float = PROFILE_TIMEOUT,
        load_timeout: float = LOAD_TIMEOUT,
    ):
        self.remote = remote
        self.store = store
        self.profile_timeout = profile_timeout
        self.load_timeout = load_timeout
        self._identity: Optional[Identity] = None

    # -----------------------------------------------------------------
    # Accessors
    # -----------------------------------------------------------------
    def current_identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def is_admin(self) -> bool:
        return bool(self._identity and self._identity.is_admin)

    def has_role(self, roles: Union[str, UserRole, Iterable[Union[str, UserRole]]]) -> bool:
        if self._identity is None:
            return False
        if isinstance(roles, (str, UserRole)):
            roles = [roles]
        return self._identity.role in {UserRole(r) for r in roles}

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise NotAuthenticatedError("Not signed in")
        return self._identity

    # -----------------------------------------------------------------
    # Profile resolution
    # -----------------------------------------------------------------
    async def _fetch_profile(self, user_id: str) -> Optional[User]:
        """Profile by id; falls back to a direct fetch when the client stalls."""
        try:
            return await asyncio.wait_for(self.remote.users.get_by_id(user_id), self.profile_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Profile lookup for %s exceeded %.1fs; using direct fetch", user_id, self.profile_timeout
            )
        row = await self.remote.backend.fetch_row_direct("users", user_id)
        return User.model_validate(row) if row else None

    async def _resolve_profile(self, user_id: str, email: Optional[str]) -> Optional[User]:
        user = await self._fetch_profile(user_id)
        if user is None and email:
            logger.info("No profile with id %s; trying email lookup", user_id)
            user = await self.remote.users.get_by_email(email)
        return user

    async def _force_sign_out(self) -> None:
        try:
            await self.remote.auth.sign_out()
        except Exception as e:  # noqa: BLE001
            logger.warning("Forced sign-out failed: %s", e)
        self._identity = None

    async def _touch_last_login(self, user: User) -> User:
        try:
            return await self.remote.users.update(user.id, {"last_login": utcnow()})
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not record last login for %s: %s", user.id, e)
            return user

    async def _adopt(self, user: User, access_token: Optional[str]) -> Identity:
        if user.status != UserStatus.ACTIVE:
            await self._force_sign_out()
            raise InactiveAccountError("Your account is not active. Please contact an administrator.")
        self._identity = Identity(user=user, access_token=access_token)
        self.store.set_current_user(user.id)
        await self.load_for_identity()
        return self._identity

    # -----------------------------------------------------------------
    # Session lifecycle
    # -----------------------------------------------------------------
    async def sign_in(self, email: str, password: str) -> Identity:
        if not email or not password:
            raise InvalidInputError("Email and password are required")

        try:
            session = await self.remote.auth.sign_in(email, password)
        except RemoteStoreError as e:
            logger.info("Sign-in for %s rejected: %s", email, e)
            raise NotAuthenticatedError(str(e) or "Invalid login credentials") from e
        user = await self._resolve_profile(session["user_id"], session.get("email") or email)
        if user is None:
            await self._force_sign_out()
            raise NotAuthenticatedError("User profile not found. Please contact an administrator.")
        if user.status == UserStatus.ACTIVE:
            user = await self._touch_last_login(user)

        identity = await self._adopt(user, session.get("access_token"))
        logger.info("Signed in %s (%s)", identity.user.email, identity.role.value)
        return identity

    async def restore_session(self) -> Optional[Identity]:
        """Resume an existing auth session, if any. Inactive accounts are signed out."""
        session = await self.remote.auth.get_session()
        if not session:
            return None

        user = await self._resolve_profile(session["user_id"], session.get("email"))
        if user is None:
            logger.warning("Session for %s has no profile; signing out", session["user_id"])
            await self._force_sign_out()
            return None
        try:
            return await self._adopt(user, session.get("access_token"))
        except InactiveAccountError:
            logger.warning("Session for inactive account %s dropped", user.id)
            return None

    async def sign_out(self) -> None:
        try:
            await self.remote.auth.sign_out()
        finally:
            self._identity = None
            self.store.reset()

    async def load_for_identity(self) -> bool:
        """Run the store's bulk load for the current identity, bounded by `load_timeout`."""
        identity = self._require_identity()
        try:
            return await asyncio.wait_for(
                self.store.load_initial_data(identity.user_id, identity.is_admin),
                self.load_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Bulk load for %s exceeded %.1fs", identity.user_id, self.load_timeout)
            self.store.mark_load_failed(LOAD_TIMEOUT_MESSAGE)
            return False

    # -----------------------------------------------------------------
    # Self-service
    # -----------------------------------------------------------------
    async def update_profile(self, changes: Mapping[str, Any]) -> User:
        identity = self._require_identity()
        data = dict(changes)
        for key in _SELF_LOCKED_FIELDS:
            if key in data and data[key] != getattr(identity.user, key):
                raise InvalidInputError(f"You cannot change your own {key}")
            data.pop(key, None)

        user = await self.store.update_user(identity.user_id, data)
        self._identity = Identity(user=user, access_token=identity.access_token)
        return user

    async def change_password(self, new_password: str) -> None:
        identity = self._require_identity()
        await self.store.change_password(identity.user_id, new_password)
