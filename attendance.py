"""
Attendance and leave workflow rules.

Records come from several generations of clients, so field names are
normalized before any decision is taken on them.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import HTTPException

from metrics import normalize_timestamp

LEAVE_STATUSES = ("leave", "half_day")

_ALIASES = {
    "attendance_status": ("attendanceStatus", "status"),
    "approval_status": ("approvalStatus",),
    "record_type": ("recordType",),
    "start_date": ("startDate", "day_start"),
    "end_date": ("endDate", "day_end"),
    "half_day_start": ("halfDayStart",),
    "half_day_end": ("halfDayEnd",),
    "punch_in_time": ("punchInTime", "punchIn"),
    "punch_out_time": ("punchOutTime", "punchOut"),
    "user_id": ("userId",),
}


def normalize_record(record: dict) -> dict:
    data = dict(record)
    for field, aliases in _ALIASES.items():
        if data.get(field) is None:
            for alias in aliases:
                if data.get(alias) is not None:
                    data[field] = data[alias]
                    break
    if not data.get("attendance_status"):
        data["attendance_status"] = "present"
    if not data.get("approval_status"):
        data["approval_status"] = "none"
    if not data.get("record_type"):
        data["record_type"] = "leave" if data["attendance_status"] in LEAVE_STATUSES else "attendance"
    return data


def is_leave(record: dict) -> bool:
    return normalize_record(record)["record_type"] == "leave"


def duration_minutes(punch_in, punch_out) -> Optional[int]:
    start = normalize_timestamp(punch_in)
    end = normalize_timestamp(punch_out)
    if not start or not end:
        return None
    return max(0, int((end - start).total_seconds() // 60))


def leave_request_fields(attendance_status: str, start_date: date, end_date: Optional[date],
                         half_day_start: Optional[str], half_day_end: Optional[str]) -> dict:
    if attendance_status not in LEAVE_STATUSES:
        raise HTTPException(status_code=400, detail="attendance_status must be leave or half_day")
    end_date = end_date or start_date
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date is before start_date")
    if attendance_status == "half_day":
        if not half_day_start or not half_day_end:
            raise HTTPException(status_code=400, detail="Half day leave needs start and end times")
        if parse_clock(half_day_end) <= parse_clock(half_day_start):
            raise HTTPException(status_code=400, detail="half_day_end must be after half_day_start")
    return {
        "date": start_date.isoformat(),
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "half_day_start": half_day_start if attendance_status == "half_day" else None,
        "half_day_end": half_day_end if attendance_status == "half_day" else None,
        "attendance_status": attendance_status,
        "record_type": "leave",
        "approval_status": "pending",
    }


def decision_changes(record: dict, decision: str) -> dict:
    record = normalize_record(record)
    if record["record_type"] != "leave" or record["approval_status"] != "pending":
        raise HTTPException(status_code=409, detail="Only pending leave requests can be decided")
    if decision not in ("approved", "rejected"):
        raise HTTPException(status_code=400, detail="decision must be approved or rejected")
    return {
        "approval_status": decision,
        "attendance_status": record["attendance_status"] if decision == "approved" else "present",
    }


def override_changes(record: dict, attendance_status: str, reason: Optional[str]) -> dict:
    if is_leave(record):
        raise HTTPException(status_code=409, detail="Leave records cannot be overridden")
    return {
        "attendance_status": attendance_status,
        "admin_override": True,
        "override_reason": reason or None,
    }


def parse_clock(value: str) -> time:
    try:
        hours, minutes = value.split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail="Time must be HH:MM")


def manual_punch_out_changes(record: dict, clock: str) -> dict:
    record = normalize_record(record)
    if record["record_type"] == "leave":
        raise HTTPException(status_code=409, detail="Leave records have no punches")
    if record.get("punch_out_time"):
        raise HTTPException(status_code=409, detail="Already punched out")
    punch_in = normalize_timestamp(record.get("punch_in_time"))
    day = punch_in.date() if punch_in else datetime.now(timezone.utc).date()
    punch_out = datetime.combine(day, parse_clock(clock), tzinfo=timezone.utc)
    if punch_in and punch_out < punch_in:
        raise HTTPException(status_code=400, detail="Punch-out is before punch-in")
    return {
        "punch_out_time": punch_out,
        "duration_minutes": duration_minutes(punch_in, punch_out),
        "system_completed": True,
    }


def is_today(record: dict, today: Optional[date] = None) -> bool:
    punch_in = normalize_timestamp(record.get("punch_in_time"))
    if punch_in is None:
        return False
    return punch_in.date() == (today or datetime.now(timezone.utc).date())
