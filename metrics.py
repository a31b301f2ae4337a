"""
Derived KPIs for the dashboard, reports and agent performance views.

Everything here works on lists of already-fetched documents; nothing is
written back.
"""

from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

ACTIVE_STATUSES = ("new", "contacted", "follow-up", "hot")
IN_PROGRESS_STATUSES = ("new", "contacted", "in-progress", "in progress")
AGENT_COLORS = ["#3b82f6", "#10b981", "#f59e0b", "#ef4444", "#8b5cf6", "#06b6d4"]
UNASSIGNED = "Unassigned"


def normalize_timestamp(value: Any) -> Optional[datetime]:
    """Datetime, ISO string or {"seconds": n} to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict) and isinstance(value.get("seconds"), (int, float)):
        return datetime.fromtimestamp(value["seconds"], tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _status(doc: dict) -> str:
    return str(doc.get("status") or "").strip().lower()


def _attendance_status(doc: dict) -> str:
    return str(doc.get("attendance_status") or doc.get("status") or "").strip().lower()


def _epoch(value: Any) -> float:
    ts = normalize_timestamp(value)
    return ts.timestamp() if ts else 0.0


def _first_assignee(lead: dict) -> Optional[str]:
    value = lead.get("assigned_to") or lead.get("assignedTo")
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else None
    return str(value) if value else None


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0


def filter_since(leads: Iterable[dict], days: int, now: Optional[datetime] = None) -> List[dict]:
    """Leads created within the last `days`; leads without created_at are kept."""
    leads = list(leads)
    if days <= 0:
        return leads
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    kept = []
    for lead in leads:
        created = normalize_timestamp(lead.get("created_at"))
        if created is None or created >= cutoff:
            kept.append(lead)
    return kept


def kpis(leads: List[dict], attendance: List[dict]) -> Dict[str, Any]:
    total = len(leads)
    statuses = [_status(l) for l in leads]
    active = sum(1 for s in statuses if s in ACTIVE_STATUSES)
    closed = statuses.count("closed")

    closed_with_dates = [
        l for l in leads
        if _status(l) == "closed" and normalize_timestamp(l.get("created_at")) and normalize_timestamp(l.get("updated_at"))
    ]
    avg_days = 0
    if closed_with_dates:
        total_days = sum(
            (_epoch(l["updated_at"]) - _epoch(l["created_at"])) / 86400 for l in closed_with_dates
        )
        avg_days = round(total_days / len(closed_with_dates))

    return {
        "total_leads": total,
        "active_leads": active,
        "closed_deals": closed,
        "lost_leads": statuses.count("lost"),
        "employees_present": sum(1 for a in attendance if _attendance_status(a) == "present"),
        "conversion_rate": _percent(closed, total),
        "qualified_leads": statuses.count("hot"),
        "follow_up_rate": _percent(active, total),
        "avg_time_to_conversion": avg_days,
    }


def leads_by_status(leads: List[dict]) -> List[Dict[str, Any]]:
    counts: "OrderedDict[str, int]" = OrderedDict()
    for lead in leads:
        status = str(lead.get("status") or "Unknown")
        counts[status] = counts.get(status, 0) + 1
    return [{"status": s, "count": c} for s, c in counts.items()]


def agent_names(users: List[dict]) -> Dict[str, str]:
    return {str(u.get("id") or u.get("_id")): u.get("name") for u in users}


def agent_name(names: Dict[str, str], agent_id: Optional[str]) -> str:
    if not agent_id:
        return UNASSIGNED
    return names.get(agent_id) or agent_id


def leads_by_agent(leads: List[dict], users: List[dict]) -> List[Dict[str, Any]]:
    names = agent_names(users)
    counts: "OrderedDict[str, int]" = OrderedDict()
    for lead in leads:
        agent_id = _first_assignee(lead) or UNASSIGNED
        counts[agent_id] = counts.get(agent_id, 0) + 1
    return [
        {
            "agent": agent_name(names, None if agent_id == UNASSIGNED else agent_id),
            "leads": count,
            "fill": AGENT_COLORS[idx % len(AGENT_COLORS)],
            "id": agent_id,
        }
        for idx, (agent_id, count) in enumerate(counts.items())
    ]


def recent_leads(leads: List[dict], users: List[dict], limit: Optional[int] = None) -> List[dict]:
    names = agent_names(users)
    rows = [dict(l, assigned_to_name=agent_name(names, _first_assignee(l))) for l in leads]
    rows.sort(key=lambda l: _epoch(l.get("created_at")), reverse=True)
    return rows[:limit] if limit else rows


def dashboard(leads: List[dict], attendance: List[dict], users: List[dict], time_range_days: int = 0) -> Dict[str, Any]:
    leads = filter_since(leads, time_range_days)
    leads.sort(key=lambda l: _epoch(l.get("created_at")), reverse=True)
    return {
        "kpi_data": kpis(leads, attendance),
        "leads_by_status": leads_by_status(leads),
        "leads_by_agent": leads_by_agent(leads, users),
        "recent_leads": recent_leads(leads, users),
    }


def lead_stats(leads: List[dict]) -> Dict[str, Any]:
    """Report summary; conversion_rate is a string with one decimal."""
    stats = {
        "total": len(leads),
        "contacted": 0,
        "converted": 0,
        "new_leads": 0,
        "followups": 0,
        "lost": 0,
        "conversion_rate": "0",
    }
    for lead in leads:
        s = _status(lead)
        if s == "contacted":
            stats["contacted"] += 1
        elif s in ("converted", "closed"):
            stats["converted"] += 1
        elif s == "new":
            stats["new_leads"] += 1
        elif s == "follow-up":
            stats["followups"] += 1
        elif s == "lost":
            stats["lost"] += 1
    if stats["total"]:
        stats["conversion_rate"] = f"{stats['converted'] / stats['total'] * 100:.1f}"
    return stats


def agent_stats(leads: List[dict]) -> Dict[str, Any]:
    statuses = [_status(l) for l in leads]
    breakdown: Dict[str, int] = {}
    for lead in leads:
        key = str(lead.get("status") or "unknown")
        breakdown[key] = breakdown.get(key, 0) + 1
    return {
        "assigned_leads": len(leads),
        "closed_deals": statuses.count("closed"),
        "hot_leads": statuses.count("hot"),
        "follow_up_leads": sum(1 for s in statuses if s in ("follow-up", "followup")),
        "lost_leads": statuses.count("lost"),
        "in_progress_leads": sum(1 for s in statuses if s in IN_PROGRESS_STATUSES),
        "status_breakdown": breakdown,
    }
