"""
core/errors.py
--------------
Error taxonomy for the CRM client layer.

Primary CRUD failures propagate to the caller as one of these; side-effect
(activity / audit / notification) failures never leave the store.
"""

from __future__ import annotations

from typing import Optional


class CrmError(Exception):
    """Base class for every error raised by the CRM client layer."""


class RemoteStoreError(CrmError):
    """Transport or remote-level failure (network, timeout, API rejection)."""

    def __init__(self, message: str, *, table: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.table = table
        self.cause = cause


class NotFoundError(RemoteStoreError):
    """The remote store returned no row for the requested id."""


class InvalidInputError(CrmError):
    """Local validation failed before any remote call was made."""


class NotAuthenticatedError(CrmError):
    """A user-scoped action was invoked without a resolved identity."""


class InactiveAccountError(NotAuthenticatedError):
    """The resolved profile exists but its status is not ``active``."""
