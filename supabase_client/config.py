# supabase_client/config.py
import logging
from typing import Optional

from supabase import Client, ClientOptions, create_client

from core.config import REQUEST_TIMEOUT, SUPABASE_ANON_KEY, SUPABASE_URL
from core.errors import RemoteStoreError

logger = logging.getLogger(__name__)


def get_supabase_client(url: Optional[str] = None, anon_key: Optional[str] = None) -> Client:
    """Build the CRM's Supabase client from explicit or environment credentials."""
    url = url or SUPABASE_URL
    anon_key = anon_key or SUPABASE_ANON_KEY
    if not url or not anon_key:
        raise RemoteStoreError("SUPABASE_URL / SUPABASE_ANON_KEY are not set")

    options = ClientOptions(postgrest_client_timeout=REQUEST_TIMEOUT, persist_session=True)
    logger.info("Connecting to Supabase at %s", url)
    return create_client(url, anon_key, options=options)
