"""
core/health.py
--------------
System health diagnostics for the CRM backend.

Purpose
-------
- Used by the FastAPI `/health` endpoint.
- Validates remote store connectivity (Supabase or the local demo database).
- Reports uptime, version, CPU/memory usage.
- Returns a JSON-safe dict ready for serialization.
"""

from __future__ import annotations

import logging
import platform
import time
from typing import Any, Dict

import psutil

from core.metadata import __version__
from core.remote import Backend

logger = logging.getLogger(__name__)

# Cache the process start time for uptime calculation
START_TIME = time.time()


async def system_health(backend: Backend) -> Dict[str, Any]:
    """
    Return structured backend health diagnostics.

    Parameters
    ----------
    backend : Backend
        The remote backend the session store talks to.

    Returns
    -------
    dict
        status is "ok" when the backend answers a ping, else "degraded".
    """
    status = "ok"
    message = "Backend operational."
    connected = False

    # --- Remote store connectivity ---
    started = time.perf_counter()
    try:
        await backend.ping()
        connected = True
    except Exception as e:  # noqa: BLE001
        status = "degraded"
        message = f"Remote store check failed: {e.__class__.__name__}"
        logger.warning("Health ping on %s backend failed: %s", backend.name, e)
    latency_ms = round((time.perf_counter() - started) * 1000, 2)

    # --- System metrics ---
    try:
        cpu_load = psutil.cpu_percent(interval=0.1)
        memory_usage = round(psutil.virtual_memory().used / (1024 * 1024), 2)
    except (psutil.Error, OSError) as e:
        logger.debug("psutil metrics unavailable: %s", e)
        cpu_load = None
        memory_usage = None

    return {
        "status": status,
        "message": message,
        "version": __version__,
        "backend": backend.name,
        "remote_connected": connected,
        "remote_latency_ms": latency_ms if connected else None,
        "cpu_load": cpu_load,
        "memory_usage": memory_usage,
        "uptime_sec": round(time.time() - START_TIME, 2),
        "system": platform.system(),
        "release": platform.release(),
    }
