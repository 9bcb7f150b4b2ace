# tests/test_dashboard.py
"""Dashboard projections over cached collections."""
from datetime import datetime, timezone

from analytics.dashboard import (
    agent_performance,
    compute_dashboard_summary,
    conversion_rate,
    deal_value_summary,
    lead_pipeline,
    lead_sources,
    monthly_closed_totals,
    properties_by_type,
)
from core.models import Deal, Lead, Property, User


def _lead(i, status, source="Website"):
    return Lead(id=f"l{i}", name=f"Lead {i}", status=status, source=source, created_by="1")


def _deal(i, closer, value, status="closed", closed_at=None):
    return Deal(id=f"d{i}", property_id="p1", closer_id=closer, deal_value=value,
                commission_amount=value * 0.02, status=status, closed_at=closed_at)


LEADS = [_lead(1, "new"), _lead(2, "new", "Referral"), _lead(3, "won", ""), _lead(4, "lost"), _lead(5, "archived")]
USERS = [User(id="2", email="a@x.com", full_name="Agent A"), User(id="3", email="b@x.com", full_name="Agent B")]
DEALS = [
    _deal(1, "2", 1_000_000, closed_at=datetime(2025, 1, 5, tzinfo=timezone.utc)),
    _deal(2, "2", 3_000_000, closed_at=datetime(2025, 2, 9, tzinfo=timezone.utc)),
    _deal(3, "3", 5_000_000, closed_at=datetime(2025, 2, 20, tzinfo=timezone.utc)),
    _deal(4, "3", 9_000_000, status="pending"),
]


def test_pipeline_follows_funnel_order():
    pipeline = lead_pipeline(LEADS)
    assert [row["status"] for row in pipeline][:2] == ["new", "contacted"]
    assert {row["status"]: row["count"] for row in pipeline}["new"] == 2
    assert {row["status"]: row["count"] for row in pipeline}["won"] == 1


def test_sources_and_types():
    assert lead_sources(LEADS) == {"Website": 3, "Referral": 1, "Unknown": 1}
    props = [Property(id="p1", title="A", type="villa", created_by="1"),
             Property(id="p2", title="B", type="villa", created_by="1"),
             Property(id="p3", title="C", type="office", created_by="1")]
    assert properties_by_type(props) == {"villa": 2, "office": 1}


def test_conversion_rate_ignores_archived():
    assert conversion_rate(LEADS) == 25.0
    assert conversion_rate([]) == 0.0


def test_agent_performance_ranks_by_closed_value():
    rows = agent_performance(DEALS, USERS)
    assert [r["user_id"] for r in rows] == ["3", "2"]
    assert rows[0]["deals_closed"] == 1 and rows[0]["total_value"] == 5_000_000
    assert rows[1]["deals_closed"] == 2 and rows[1]["total_commission"] == 80_000


def test_deal_value_summary_uses_closed_deals_only():
    summary = deal_value_summary(DEALS)
    assert summary["count"] == 3
    assert summary["total"] == 9_000_000
    assert summary["min"] == 1_000_000 and summary["max"] == 5_000_000
    assert deal_value_summary([]) == {}


def test_monthly_closed_totals():
    assert monthly_closed_totals(DEALS) == [
        {"month": "2025-01", "total": 1_000_000.0, "count": 1},
        {"month": "2025-02", "total": 8_000_000.0, "count": 2},
    ]
    assert monthly_closed_totals([]) == []


def test_summary_bundles_every_view():
    summary = compute_dashboard_summary([], LEADS, DEALS, USERS)
    assert set(summary) == {
        "lead_pipeline", "lead_sources", "properties_by_type", "conversion_rate",
        "agent_performance", "deal_value_summary", "monthly_closed_totals",
    }
