"""
analytics/dashboard.py
----------------------

Pure projections over the store's cached collections for dashboard views.

This module must remain network-agnostic and pure:
- Input: lists of core.models entities (as held by CrmStore.state)
- Output: JSON-serializable dicts / lists

Used by backend.routes.analytics:/analytics/summary.
"""

from __future__ import annotations

from typing import Any, Dict, List

import numpy as np
import pandas as pd

from core.models import LEAD_PIPELINE, Deal, DealStatus, Lead, LeadStatus, Property, User


def lead_pipeline(leads: List[Lead]) -> List[Dict[str, Any]]:
    """Lead counts per funnel stage, in funnel order."""
    counts = {stage: 0 for stage in LEAD_PIPELINE}
    for lead in leads:
        if lead.status in counts:
            counts[lead.status] += 1
    return [{"status": stage.value, "count": n} for stage, n in counts.items()]


def lead_sources(leads: List[Lead]) -> Dict[str, int]:
    sources: Dict[str, int] = {}
    for lead in leads:
        key = lead.source or "Unknown"
        sources[key] = sources.get(key, 0) + 1
    return sources


def properties_by_type(properties: List[Property]) -> Dict[str, int]:
    by_type: Dict[str, int] = {}
    for prop in properties:
        by_type[prop.type.value] = by_type.get(prop.type.value, 0) + 1
    return by_type


def conversion_rate(leads: List[Lead]) -> float:
    """Won leads as a percentage of all non-archived leads."""
    live = [lead for lead in leads if lead.status != LeadStatus.ARCHIVED]
    if not live:
        return 0.0
    won = sum(1 for lead in live if lead.status == LeadStatus.WON)
    return round(won / len(live) * 100, 2)


def agent_performance(deals: List[Deal], users: List[User]) -> List[Dict[str, Any]]:
    """
    Closed-deal totals per closer, best first.

    Returns
    -------
    list of dict with keys: user_id, full_name, deals_closed, total_value,
    total_commission
    """
    names = {u.id: u.full_name for u in users}
    rows: Dict[str, Dict[str, Any]] = {}

    for deal in deals:
        if deal.status != DealStatus.CLOSED:
            continue
        row = rows.setdefault(
            deal.closer_id,
            {
                "user_id": deal.closer_id,
                "full_name": names.get(deal.closer_id, "Unknown"),
                "deals_closed": 0,
                "total_value": 0.0,
                "total_commission": 0.0,
            },
        )
        row["deals_closed"] += 1
        row["total_value"] += deal.deal_value
        row["total_commission"] += deal.commission_amount

    return sorted(rows.values(), key=lambda r: r["total_value"], reverse=True)


def deal_value_summary(deals: List[Deal]) -> Dict[str, float]:
    """count / total / mean / min / max over closed deal values."""
    values = [d.deal_value for d in deals if d.status == DealStatus.CLOSED]
    if not values:
        return {}
    arr = np.array(values, dtype=float)
    return {
        "count": len(arr),
        "total": float(np.nansum(arr)),
        "mean": float(np.nanmean(arr)),
        "min": float(np.nanmin(arr)),
        "max": float(np.nanmax(arr)),
    }


def monthly_closed_totals(deals: List[Deal]) -> List[Dict[str, Any]]:
    """Closed deal value per calendar month (YYYY-MM), oldest first."""
    rows = [
        {"closed_at": d.closed_at or d.updated_at or d.created_at, "value": d.deal_value}
        for d in deals
        if d.status == DealStatus.CLOSED
    ]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    df["closed_at"] = pd.to_datetime(df["closed_at"], utc=True)
    df = df.dropna(subset=["closed_at"])
    if df.empty:
        return []

    df["month"] = df["closed_at"].dt.strftime("%Y-%m")
    grouped = (
        df.groupby("month")
        .agg(total=("value", "sum"), count=("value", "size"))
        .reset_index()
        .sort_values("month")
    )
    return [
        {"month": r["month"], "total": float(r["total"]), "count": int(r["count"])}
        for r in grouped.to_dict("records")
    ]


def compute_dashboard_summary(
    properties: List[Property],
    leads: List[Lead],
    deals: List[Deal],
    users: List[User],
) -> Dict[str, Any]:
    """Every dashboard projection in one JSON-serializable dict."""
    return {
        "lead_pipeline": lead_pipeline(leads),
        "lead_sources": lead_sources(leads),
        "properties_by_type": properties_by_type(properties),
        "conversion_rate": conversion_rate(leads),
        "agent_performance": agent_performance(deals, users),
        "deal_value_summary": deal_value_summary(deals),
        "monthly_closed_totals": monthly_closed_totals(deals),
    }
