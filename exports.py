"""CSV export rows and rendering for leads, attendance and invoices."""

import csv
import io
from datetime import date, datetime
from typing import Iterable, List, Optional


def prepare_leads(leads: Iterable[dict]) -> List[dict]:
    rows = []
    for lead in leads:
        assigned = lead.get("assigned_to") or lead.get("assignedTo")
        if isinstance(assigned, (list, tuple)):
            assigned = ";".join(str(a) for a in assigned)
        rows.append({
            "id": lead.get("id"),
            "name": lead.get("name"),
            "phone": lead.get("phone"),
            "email": lead.get("email"),
            "source": lead.get("source"),
            "budget": lead.get("budget"),
            "status": lead.get("status"),
            "assigned_to": assigned,
            "created_at": lead.get("created_at"),
            "updated_at": lead.get("updated_at") or lead.get("created_at"),
        })
    return rows


def prepare_attendance(records: Iterable[dict]) -> List[dict]:
    rows = []
    for record in records:
        duration = record.get("duration_minutes")
        rows.append({
            "user_id": record.get("user_id"),
            "name": record.get("name"),
            "date": record.get("date"),
            "punch_in": record.get("punch_in_time"),
            "punch_out": record.get("punch_out_time") or "Not punched out",
            "duration": f"{duration // 60}h {duration % 60}m" if duration is not None else "In progress",
            "office_ip": record.get("office_ip") or "N/A",
        })
    return rows


def prepare_invoices(invoices: Iterable[dict]) -> List[dict]:
    return [
        {
            "Invoice No": inv.get("invoice_no"),
            "Client": inv.get("lead_name"),
            "Date": inv.get("issued_date"),
            "Amount": inv.get("amount"),
            "Status": inv.get("status"),
        }
        for inv in invoices
    ]


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def to_csv(rows: List[dict]) -> Optional[str]:
    """Render rows with the first row's keys as header; None when empty."""
    if not rows:
        return None
    headers = list(rows[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(h)) for h in headers])
    return buffer.getvalue()


def export_filename(kind: str, today: Optional[date] = None) -> str:
    return f"{kind}_{(today or date.today()).isoformat()}.csv"
