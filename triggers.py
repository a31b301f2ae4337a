"""
Document-change triggers.

Handlers are registered per (collection, kind) and receive a ChangeEvent
holding the document snapshots before and after the write. They run once,
after the write, with no retries; a failing handler is logged and skipped.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

import database
from database import create_document
from notifications import notify_admins, notify_user
from schemas import LeadHistory

logger = logging.getLogger(__name__)


@dataclass
class ChangeEvent:
    kind: str
    collection: str
    document_id: str
    before: Optional[dict]
    after: Optional[dict]


_handlers: Dict[Tuple[str, str], List[Callable[[ChangeEvent], None]]] = {}


def on_document(collection: str, *kinds: str):
    def decorator(func):
        for kind in kinds:
            _handlers.setdefault((collection, kind), []).append(func)
        return func
    return decorator


def dispatch(event: ChangeEvent) -> int:
    """Run every handler registered for the event; returns how many succeeded."""
    ran = 0
    for handler in _handlers.get((event.collection, event.kind), []):
        try:
            handler(event)
            ran += 1
        except Exception:
            logger.exception("%s failed for %s/%s", handler.__name__, event.collection, event.document_id)
    return ran


def _listener(kind, collection, document_id, before, after):
    dispatch(ChangeEvent(kind, collection, document_id, before, after))


database.add_listener(_listener)


# ----- Leads -----

def assignees(doc: Optional[dict]) -> Set[str]:
    if not doc:
        return set()
    value = doc.get("assigned_to") or doc.get("assignedTo")
    if value is None or value == "":
        return set()
    if isinstance(value, (list, tuple, set)):
        return {str(v) for v in value if v}
    return {str(value)}


@on_document("leads", "created", "updated")
def on_lead_assigned(event: ChangeEvent):
    if event.after is None:
        return
    if event.kind == "updated" and event.before is None:
        return
    before = assignees(event.before)
    after = assignees(event.after)
    if before == after:
        logger.debug("No change in assigned_to for lead %s", event.document_id)
        return
    logger.info(
        "Lead %s: reassigned %s -> %s",
        event.document_id,
        sorted(before) or None,
        sorted(after) or None,
    )
    lead_name = event.after.get("name") or "a lead"
    for user_id in sorted(after - before):
        notify_user(
            user_id,
            "New lead assigned",
            f"You've been assigned a new lead: {lead_name}",
            type="lead_assigned",
            data={"lead_id": event.document_id},
        )


def _history(event: ChangeEvent, type: str, message: str, old, new):
    create_document(
        "lead_history",
        LeadHistory(
            lead_id=event.document_id,
            type=type,
            message=message,
            old_value=old,
            new_value=new,
            by=event.after.get("updated_by"),
            by_name=event.after.get("updated_by_name"),
        ),
    )


@on_document("leads", "updated")
def on_lead_history(event: ChangeEvent):
    before, after = event.before, event.after
    if not before or not after:
        return
    if before.get("status") != after.get("status"):
        _history(
            event,
            "STATUS_CHANGE",
            f"Status changed from {before.get('status')} to {after.get('status')}",
            before.get("status"),
            after.get("status"),
        )
    if assignees(before) != assignees(after):
        _history(
            event,
            "ASSIGNMENT_CHANGE",
            "Lead assignment updated",
            sorted(assignees(before)),
            sorted(assignees(after)),
        )
    if (before.get("remarks") or "") != (after.get("remarks") or ""):
        _history(event, "REMARKS_UPDATE", "Remarks updated", before.get("remarks") or "", after.get("remarks") or "")


# ----- Attendance -----

def approval_status(doc: Optional[dict]) -> str:
    if not doc:
        return "none"
    return doc.get("approval_status") or doc.get("approvalStatus") or "none"


def is_leave_record(doc: Optional[dict]) -> bool:
    if not doc:
        return False
    record_type = doc.get("record_type") or doc.get("recordType")
    if record_type:
        return record_type == "leave"
    status = doc.get("attendance_status") or doc.get("attendanceStatus")
    return status in ("leave", "half_day")


@on_document("attendance", "created", "updated")
def on_leave_requested(event: ChangeEvent):
    after = event.after
    if not is_leave_record(after) or approval_status(after) != "pending":
        return
    if event.kind == "updated" and approval_status(event.before) == "pending":
        return
    kind = "Half day leave" if after.get("attendance_status") == "half_day" else "Leave"
    message = f"{kind} requested by {after.get('name') or 'an agent'}"
    start = after.get("start_date") or after.get("date")
    if start:
        end = after.get("end_date")
        message += f" ({start} to {end})" if end and end != start else f" ({start})"
    notify_admins(
        "Leave approval request",
        message,
        type="leave_request",
        data={"attendance_id": event.document_id, "user_id": after.get("user_id")},
    )
    logger.info("Leave request %s pending approval", event.document_id)


@on_document("attendance", "updated")
def on_leave_decided(event: ChangeEvent):
    before, after = event.before, event.after
    if not before or not after or not is_leave_record(after):
        return
    decision = approval_status(after)
    if approval_status(before) != "pending" or decision not in ("approved", "rejected"):
        return
    user_id = after.get("user_id")
    if not user_id:
        logger.warning("Leave %s decided but has no user_id", event.document_id)
        return
    logger.info("Leave %s %s", event.document_id, decision)
    notify_user(
        user_id,
        "Leave approved" if decision == "approved" else "Leave rejected",
        "Your leave request has been approved" if decision == "approved" else "Your leave request has been rejected",
        type="leave_decision",
        data={"attendance_id": event.document_id, "decision": decision},
    )
