"""
Read-side routes: activity feed, audit trail, dashboard stats and analytics.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from analytics.dashboard import compute_dashboard_summary
from backend.deps import current_identity, get_store, require_admin
from core.models import Activity, AuditLog, DashboardStats, Identity
from core.store import CrmStore

router = APIRouter(tags=["insights"])


@router.get("/activities", response_model=List[Activity])
async def list_activities(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return store.get_activities_for_user(me.user_id, me.is_admin)


@router.get("/audit-logs", response_model=List[AuditLog])
async def list_audit_logs(
    user_id: Optional[str] = Query(None, description="Only entries by this user"),
    entity_type: Optional[str] = Query(None, description="property, lead, deal or user"),
    action: Optional[str] = Query(None, description="Case-insensitive substring of the action"),
    refresh: bool = Query(False, description="Re-fetch from the remote store first"),
    _: Identity = Depends(require_admin),
    store: CrmStore = Depends(get_store),
):
    if refresh:
        return await store.load_audit_logs(user_id=user_id, entity_type=entity_type, action=action)
    return store.get_audit_logs(user_id=user_id, entity_type=entity_type, action=action)


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(me: Identity = Depends(current_identity), store: CrmStore = Depends(get_store)):
    return await store.get_stats(is_admin=me.is_admin)


@router.get("/analytics/summary")
async def analytics_summary(
    me: Identity = Depends(current_identity),
    store: CrmStore = Depends(get_store),
) -> Dict[str, Any]:
    return compute_dashboard_summary(
        store.get_properties_for_user(me.user_id, me.is_admin),
        store.get_leads_for_user(me.user_id, me.is_admin),
        store.get_deals_for_user(me.user_id, me.is_admin),
        store.state.users,
    )
