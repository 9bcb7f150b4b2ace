# supabase_client/helpers.py
"""
Utility layer for talking to Supabase.

Features
--------
- Runs blocking supabase-py / PostgREST calls off the event loop.
- Converts PostgREST `APIError` and transport failures into RemoteStoreError.
- Direct REST requests (via `requests`) for the documented fallback path
  when the client SDK stalls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import requests
from postgrest.exceptions import APIError

from core.config import REQUEST_TIMEOUT
from core.errors import RemoteStoreError

logger = logging.getLogger(__name__)


async def run_blocking(fn: Callable[..., Any], *args: Any, table: Optional[str] = None, **kwargs: Any) -> Any:
    """
    Run a blocking Supabase call in a worker thread.

    Parameters
    ----------
    fn : callable
        Usually a query builder's bound `execute`, or an auth method.
    table : str, optional
        Table name, only used to label errors.

    Raises
    ------
    RemoteStoreError
        On any PostgREST, auth or transport failure.
    """
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except APIError as e:
        logger.warning("Supabase API error on '%s': %s", table, e.message)
        raise RemoteStoreError(e.message or str(e), table=table, cause=e) from e
    except RemoteStoreError:
        raise
    except Exception as e:  # noqa: BLE001 - transport errors come in many types
        logger.warning("Supabase call on '%s' failed: %s: %s", table, type(e).__name__, e)
        raise RemoteStoreError(str(e), table=table, cause=e) from e


def rest_request(
    method: str,
    url: str,
    *,
    api_key: str,
    access_token: Optional[str] = None,
    params: Optional[Dict[str, str]] = None,
    json: Optional[Dict[str, Any]] = None,
) -> requests.Response:
    """Plain HTTP call against the Supabase REST / functions endpoints."""
    headers = {
        "apikey": api_key,
        "Authorization": f"Bearer {access_token or api_key}",
        "Content-Type": "application/json",
    }
    return requests.request(method, url, headers=headers, params=params, json=json, timeout=REQUEST_TIMEOUT)


def fetch_row_rest(
    base_url: str,
    table: str,
    row_id: str,
    *,
    api_key: str,
    access_token: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Fetch a single row straight from `/rest/v1/<table>`.

    Returns
    -------
    dict or None
        The row, or None when no row matches.
    """
    resp = rest_request(
        "GET",
        f"{base_url.rstrip('/')}/rest/v1/{table}",
        api_key=api_key,
        access_token=access_token,
        params={"id": f"eq.{row_id}", "select": "*"},
    )
    if resp.status_code >= 400:
        raise RemoteStoreError(f"REST API error: {resp.status_code}", table=table)
    rows = resp.json()
    return rows[0] if rows else None
