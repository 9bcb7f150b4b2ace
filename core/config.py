"""
core/config.py
--------------
Central configuration for the CRM client layer.

- Reads Supabase credentials and runtime knobs from environment variables.
- Chooses the remote backend: Supabase when credentials are present,
  otherwise the local SQLite backend (demo mode).
- Provides the history caps and validation constants used by the store.
"""

from __future__ import annotations

import logging
import os

# ---------------------------------------------------------------------------
# Remote store configuration
# ---------------------------------------------------------------------------

SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY: str | None = os.getenv("SUPABASE_ANON_KEY")

# Demo / offline backend
DATABASE_URL: str = os.getenv("CRM_DATABASE_URL", "sqlite://")

# ---------------------------------------------------------------------------
# Timeouts (seconds)
# ---------------------------------------------------------------------------

PROFILE_TIMEOUT: float = float(os.getenv("CRM_PROFILE_TIMEOUT", "5"))
LOAD_TIMEOUT: float = float(os.getenv("CRM_LOAD_TIMEOUT", "15"))
REQUEST_TIMEOUT: float = float(os.getenv("CRM_REQUEST_TIMEOUT", "10"))

# ---------------------------------------------------------------------------
# Store limits
# ---------------------------------------------------------------------------

ACTIVITY_CAP = 100
AUDIT_LOG_CAP = 500
NOTIFICATION_CAP = 100
MIN_PASSWORD_LENGTH = 8

LOG_LEVEL: str = os.getenv("CRM_LOG_LEVEL", "INFO").upper()


def is_demo_mode() -> bool:
    """True when no Supabase credentials are configured."""
    return not (os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_ANON_KEY"))


def build_backend():
    """Return the configured remote backend instance."""
    if is_demo_mode():
        from database.queries import LocalBackend, seed_demo_data

        backend = LocalBackend(os.getenv("CRM_DATABASE_URL", DATABASE_URL))
        seed_demo_data(backend)
        return backend

    from supabase_client.backend import SupabaseBackend

    return SupabaseBackend()


def configure_logging(level: str | None = None) -> None:
    """Install a basic logging config for the process."""
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
