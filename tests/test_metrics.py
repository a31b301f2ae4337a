"""Tests for dashboard KPIs, lead stats and agent performance."""

from datetime import datetime, timedelta, timezone

import database
import metrics

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)


def _lead(status, agent=None, days_ago=1, closed_after_days=None, **extra):
    created = NOW - timedelta(days=days_ago)
    lead = {"name": f"{status} lead", "status": status, "assigned_to": agent, "created_at": created, **extra}
    if closed_after_days is not None:
        lead["updated_at"] = created + timedelta(days=closed_after_days)
    return lead


def test_normalize_timestamp_shapes():
    aware = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert metrics.normalize_timestamp(aware) == aware
    assert metrics.normalize_timestamp(datetime(2026, 1, 1)) == aware
    assert metrics.normalize_timestamp("2026-01-01T00:00:00Z") == aware
    assert metrics.normalize_timestamp({"seconds": aware.timestamp()}) == aware
    assert metrics.normalize_timestamp("yesterday") is None
    assert metrics.normalize_timestamp(None) is None
    assert metrics.normalize_timestamp(42) is None


def test_filter_since_keeps_undated_leads():
    leads = [_lead("New", days_ago=2), _lead("New", days_ago=40), {"name": "legacy", "status": "New"}]
    kept = metrics.filter_since(leads, 30, now=NOW)
    assert [l["name"] for l in kept] == ["New lead", "legacy"]
    assert len(metrics.filter_since(leads, 0, now=NOW)) == 3


def test_kpis():
    leads = [
        _lead("New"),
        _lead("Hot"),
        _lead("Contacted"),
        _lead("Closed", closed_after_days=4),
        _lead("closed", closed_after_days=6),
        _lead("Lost"),
    ]
    attendance = [{"attendance_status": "present"}, {"attendance_status": "absent"}, {"status": "Present"}]
    data = metrics.kpis(leads, attendance)
    assert data["total_leads"] == 6
    assert data["active_leads"] == 3
    assert data["closed_deals"] == 2
    assert data["lost_leads"] == 1
    assert data["qualified_leads"] == 1
    assert data["employees_present"] == 2
    assert data["conversion_rate"] == 33.3
    assert data["follow_up_rate"] == 50.0
    assert data["avg_time_to_conversion"] == 5


def test_kpis_empty():
    data = metrics.kpis([], [])
    assert data["conversion_rate"] == 0
    assert data["avg_time_to_conversion"] == 0


def test_leads_by_agent_names_and_colors():
    users = [{"id": "a1", "name": "Ravi"}, {"id": "a2", "name": "Meera"}]
    leads = [_lead("New", "a1"), _lead("Hot", ["a2", "a1"]), _lead("New", "a1"), _lead("New"), _lead("New", "ghost")]
    rows = metrics.leads_by_agent(leads, users)
    assert [(r["agent"], r["leads"]) for r in rows] == [("Ravi", 2), ("Meera", 1), ("Unassigned", 1), ("ghost", 1)]
    assert [r["fill"] for r in rows] == metrics.AGENT_COLORS[:4]


def test_dashboard_orders_recent_leads():
    users = [{"id": "a1", "name": "Ravi"}]
    leads = [_lead("New", "a1", days_ago=5), _lead("Hot", days_ago=1)]
    data = metrics.dashboard(leads, [], users)
    assert [l["status"] for l in data["recent_leads"]] == ["Hot", "New"]
    assert data["recent_leads"][0]["assigned_to_name"] == "Unassigned"
    assert data["recent_leads"][1]["assigned_to_name"] == "Ravi"
    assert data["leads_by_status"] == [{"status": "Hot", "count": 1}, {"status": "New", "count": 1}]


def test_lead_stats():
    leads = [_lead("Contacted"), _lead("Converted"), _lead("Closed"), _lead("New"), _lead("Follow-up"), _lead("Lost"), _lead("Odd")]
    stats = metrics.lead_stats(leads)
    assert stats == {
        "total": 7,
        "contacted": 1,
        "converted": 2,
        "new_leads": 1,
        "followups": 1,
        "lost": 1,
        "conversion_rate": "28.6",
    }
    assert metrics.lead_stats([])["conversion_rate"] == "0"


def test_agent_stats():
    leads = [_lead("New"), _lead("Contacted"), _lead("Hot"), _lead("followup"), _lead("Closed"), _lead("Lost"), _lead("In Progress")]
    stats = metrics.agent_stats(leads)
    assert stats["assigned_leads"] == 7
    assert stats["closed_deals"] == 1
    assert stats["hot_leads"] == 1
    assert stats["follow_up_leads"] == 1
    assert stats["lost_leads"] == 1
    assert stats["in_progress_leads"] == 3
    assert stats["status_breakdown"]["Hot"] == 1


def test_dashboard_endpoint(client, admin_headers, agent_id, agent_headers):
    client.post("/leads", json={"name": "A", "status": "Hot", "assigned_to": agent_id}, headers=admin_headers)
    client.post("/leads", json={"name": "B", "status": "Closed"}, headers=admin_headers)
    client.post("/attendance/punch-in", json={}, headers=agent_headers)

    assert client.get("/dashboard", headers=agent_headers).status_code == 403
    data = client.get("/dashboard", params={"days": 7}, headers=admin_headers).json()
    assert data["kpi_data"]["total_leads"] == 2
    assert data["kpi_data"]["closed_deals"] == 1
    assert data["kpi_data"]["employees_present"] == 1
    agents = {r["agent"]: r["leads"] for r in data["leads_by_agent"]}
    assert agents == {"Ravi Agent": 1, "Unassigned": 1}


def test_agent_stats_and_performance_endpoints(client, admin_headers, agent_id, agent_headers, other_agent_id):
    client.post("/leads", json={"name": "A", "status": "Hot", "assigned_to": agent_id}, headers=admin_headers)
    client.post("/leads", json={"name": "B", "status": "Lost", "assigned_to": agent_id}, headers=admin_headers)

    stats = client.get(f"/agents/{agent_id}/stats", headers=agent_headers).json()
    assert stats["agent_id"] == agent_id
    assert stats["assigned_leads"] == 2
    assert stats["hot_leads"] == 1
    assert client.get(f"/agents/{other_agent_id}/stats", headers=agent_headers).status_code == 403

    client.post("/attendance/punch-in", json={}, headers=agent_headers)
    performance = client.get(f"/agents/{agent_id}/performance", headers=admin_headers).json()
    assert performance["agent"]["name"] == "Ravi Agent"
    assert "password_hash" not in performance["agent"]
    assert len(performance["leads"]) == 2
    assert len(performance["attendance"]) == 1
    assert client.get(f"/agents/{'0' * 24}/performance", headers=admin_headers).status_code == 404


def test_lead_stats_report(client, admin_headers):
    client.post("/leads", json={"name": "A", "status": "Converted"}, headers=admin_headers)
    client.post("/leads", json={"name": "B"}, headers=admin_headers)
    stats = client.get("/reports/lead-stats", headers=admin_headers).json()
    assert stats["converted"] == 1
    assert stats["new_leads"] == 1
    assert stats["conversion_rate"] == "50.0"


def test_agent_stats_count_legacy_assigned_to_field(client, admin_headers, agent_id, agent_headers):
    database.create_document("leads", {"name": "Legacy", "status": "Hot", "assignedTo": agent_id})
    database.create_document("leads", {"name": "Migrated", "status": "Lost", "assigned_to": None, "assignedTo": agent_id})
    stats = client.get(f"/agents/{agent_id}/stats", headers=agent_headers).json()
    assert stats["assigned_leads"] == 2
    assert stats["hot_leads"] == 1
    performance = client.get(f"/agents/{agent_id}/performance", headers=admin_headers).json()
    assert {l["name"] for l in performance["leads"]} == {"Legacy", "Migrated"}
