import logging
import os
import re
from datetime import date, datetime, time, timezone
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo import DESCENDING

import attendance as attendance_rules
import database
import metrics
import notifications
import triggers
from auth import (
    create_session,
    get_current_admin,
    get_current_user,
    hash_password,
    is_admin,
    public_user,
    revoke_sessions,
    verify_password,
)
from billing import invoice_totals, next_invoice_number
from database import (
    create_document,
    delete_document,
    get_document,
    get_documents,
    paginate,
    serialize,
    update_document,
    utc_naive,
)
from exports import export_filename, prepare_attendance, prepare_invoices, prepare_leads, to_csv
from schemas import (
    SYSTEM_LEAD_STATUS,
    AttendanceRecord,
    AttendanceStatus,
    GstType,
    Invoice,
    InvoiceStatus,
    Lead,
    LeadNote,
    LeadStatus,
    LookupItem,
    Role,
    User,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Lead CRM API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

NOTES_DEFAULT_LIMIT = 100
NOTES_MAX_LIMIT = 300
REPORT_PAGE_SIZE = 200
AGENT_STATS_LIMIT = 500
AGENT_EDITABLE_LEAD_FIELDS = {"status", "remarks", "follow_up_date"}


@app.get("/")
def read_root():
    return {"message": "Lead CRM API"}


@app.get("/test")
def test_database():
    """Verify database connectivity and list collections"""
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": "Set" if os.getenv("DATABASE_NAME") else "Not Set",
        "trigger_mode": database.TRIGGER_MODE,
        "collections": [],
    }
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()[:20]
        response["database"] = "Connected & Working"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"Connected but Error: {str(e)[:80]}"
    return response


def ensure_default_admin():
    """Create the bootstrap admin from DEFAULT_ADMIN_EMAIL/PASSWORD if missing."""
    email = os.getenv("DEFAULT_ADMIN_EMAIL")
    password = os.getenv("DEFAULT_ADMIN_PASSWORD")
    if database.db is None or not email or not password:
        return
    try:
        if database.collection("users").find_one({"email": email.lower()}):
            return
        data = User(name="Admin", email=email.lower(), password_hash=hash_password(password), role="admin")
        create_document("users", data)
        logger.info("Default admin %s created", email)
    except Exception:
        # startup must not fail because the store is unreachable
        logger.warning("Could not seed default admin", exc_info=True)


@app.on_event("startup")
async def startup_event():
    if database.db is not None:
        database.ensure_indexes()
    ensure_default_admin()


@app.exception_handler(database.InvalidCursor)
async def invalid_cursor_handler(request: Request, exc: database.InvalidCursor):
    return JSONResponse(status_code=400, content={"detail": "Unknown cursor"})


def _not_found(what: str):
    return HTTPException(status_code=404, detail=f"{what} not found")


def _changes(payload: BaseModel) -> dict:
    return payload.model_dump(exclude_unset=True)


# ----- Auth -----
class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user_id: str
    name: str
    role: Role


@app.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, request: Request):
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    user = database.collection("users").find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(payload.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("active", True):
        raise HTTPException(status_code=401, detail="Account disabled")
    token = create_session(
        user,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    logger.info("User %s signed in", user["_id"])
    return LoginResponse(token=token, user_id=str(user["_id"]), name=user.get("name", "User"), role=user.get("role", "agent"))


class SessionRequest(BaseModel):
    device_id: Optional[str] = None
    fcm_token: Optional[str] = None


@app.post("/auth/session")
def register_session(payload: SessionRequest, request: Request, user: dict = Depends(get_current_user)):
    ip = request.client.host if request.client else None
    update_document("sessions", user["_session_id"], {"device_id": payload.device_id, "ip": ip})
    if payload.fcm_token:
        database.collection("users").update_one({"_id": user["_id"]}, {"$addToSet": {"fcm_tokens": payload.fcm_token}})
    logger.info("Session registered for user %s", user["_id"])
    return {"status": "success", "message": "Session registered", "received": payload.model_dump()}


@app.post("/auth/logout")
def logout(user: dict = Depends(get_current_user)):
    delete_document("sessions", user["_session_id"])
    return {"success": True}


@app.get("/auth/me")
def me(user: dict = Depends(get_current_user)):
    return public_user(user)


@app.get("/auth/role")
def get_user_role(uid: Optional[str] = None, user: dict = Depends(get_current_user)):
    if not uid:
        raise HTTPException(status_code=400, detail="Missing UID")
    target = get_document("users", uid)
    if not target:
        raise _not_found("User")
    return {"uid": uid, "role": target.get("role"), "name": target.get("name")}


# ----- Admin user management -----
class UserCreate(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    name: Optional[str] = None
    role: Optional[Role] = None
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None


@app.post("/admin/users")
def admin_create_user(payload: UserCreate, admin: dict = Depends(get_current_admin)):
    if not payload.email or not payload.password or not payload.name or not payload.role:
        raise HTTPException(status_code=400, detail="Missing required fields: email, password, name, role")
    email = payload.email.lower()
    if database.collection("users").find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already exists")
    data = User(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        phone=payload.phone,
        date_of_birth=payload.date_of_birth,
        gender=payload.gender,
        address=payload.address,
    )
    uid = create_document("users", data)
    logger.info("User created: %s", uid)
    return {"success": True, "uid": uid}


class PasswordRequest(BaseModel):
    password: Optional[str] = None


@app.post("/admin/users/{uid}/password")
def admin_set_user_password(uid: str, payload: PasswordRequest, admin: dict = Depends(get_current_admin)):
    if not payload.password:
        raise HTTPException(status_code=400, detail="Missing uid or password")
    if update_document("users", uid, {"password_hash": hash_password(payload.password)}) is None:
        raise _not_found("User")
    revoke_sessions(uid)
    return {"success": True}


@app.delete("/admin/users/{uid}")
def admin_delete_user(uid: str, admin: dict = Depends(get_current_admin)):
    if not delete_document("users", uid):
        raise _not_found("User")
    revoke_sessions(uid)
    logger.info("User deleted: %s", uid)
    return {"success": True}


class ActiveRequest(BaseModel):
    active: bool


@app.patch("/admin/users/{uid}/active")
def toggle_agent_status(uid: str, payload: ActiveRequest, admin: dict = Depends(get_current_admin)):
    if update_document("users", uid, {"active": payload.active}) is None:
        raise _not_found("User")
    if not payload.active:
        revoke_sessions(uid)
    return {"success": True, "active": payload.active}


@app.get("/users", response_model=List[dict])
def list_users(user: dict = Depends(get_current_user)):
    return [public_user(u) for u in get_documents("users", sort=[("name", 1)])]


# ----- Leads -----
class LeadCreate(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    purpose: Optional[str] = None
    budget: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Union[str, List[str], None] = None
    remarks: Optional[str] = None
    follow_up_date: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None


class LeadUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    purpose: Optional[str] = None
    budget: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Union[str, List[str], None] = None
    remarks: Optional[str] = None
    follow_up_date: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None


def _assigned_filter(uid: str) -> dict:
    return {"$or": [{"assigned_to": uid}, {"assignedTo": uid}]}


def _get_lead_for(lead_id: str, user: dict) -> dict:
    lead = get_document("leads", lead_id)
    if not lead:
        raise _not_found("Lead")
    if not is_admin(user) and str(user["_id"]) not in triggers.assignees(lead):
        raise _not_found("Lead")
    return lead


@app.post("/leads", response_model=dict)
def create_lead(payload: LeadCreate, admin: dict = Depends(get_current_admin)):
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Lead name is required")
    data = Lead(**{**payload.model_dump(exclude_none=True), "created_by": str(admin["_id"])})
    if not data.status.strip():
        data.status = SYSTEM_LEAD_STATUS
    inserted_id = create_document("leads", data)
    return {"id": inserted_id}


@app.get("/leads", response_model=dict)
def list_leads(
    status: Optional[str] = None,
    page_size: int = Query(100, ge=1, le=500),
    cursor: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    query = {} if is_admin(user) else _assigned_filter(str(user["_id"]))
    if status:
        query["status"] = status
    return paginate("leads", query, "created_at", page_size, cursor)


@app.get("/leads/{lead_id}", response_model=dict)
def get_lead(lead_id: str, user: dict = Depends(get_current_user)):
    return serialize(_get_lead_for(lead_id, user))


@app.patch("/leads/{lead_id}", response_model=dict)
def update_lead(lead_id: str, payload: LeadUpdate, user: dict = Depends(get_current_user)):
    _get_lead_for(lead_id, user)
    changes = _changes(payload)
    if not is_admin(user):
        forbidden = set(changes) - AGENT_EDITABLE_LEAD_FIELDS
        if forbidden:
            raise HTTPException(status_code=403, detail=f"Agents cannot change: {', '.join(sorted(forbidden))}")
    changes["updated_by"] = str(user["_id"])
    changes["updated_by_name"] = user.get("name")
    _, after = update_document("leads", lead_id, changes)
    return serialize(after)


@app.delete("/leads/{lead_id}")
def delete_lead(lead_id: str, admin: dict = Depends(get_current_admin)):
    if not delete_document("leads", lead_id):
        raise _not_found("Lead")
    database.collection("lead_notes").delete_many({"lead_id": lead_id})
    database.collection("lead_history").delete_many({"lead_id": lead_id})
    return {"success": True}


class NoteCreate(BaseModel):
    text: str


@app.get("/leads/{lead_id}/notes", response_model=List[dict])
def list_lead_notes(lead_id: str, limit: int = Query(NOTES_DEFAULT_LIMIT, ge=1), user: dict = Depends(get_current_user)):
    _get_lead_for(lead_id, user)
    docs = get_documents("lead_notes", {"lead_id": lead_id}, limit=min(limit, NOTES_MAX_LIMIT), sort=[("created_at", 1)])
    return [serialize(d) for d in docs]


@app.post("/leads/{lead_id}/notes", response_model=dict)
def add_lead_note(lead_id: str, payload: NoteCreate, user: dict = Depends(get_current_user)):
    _get_lead_for(lead_id, user)
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Note text is required")
    inserted_id = create_document("lead_notes", LeadNote(lead_id=lead_id, text=payload.text.strip(), by=str(user["_id"])))
    return {"id": inserted_id}


@app.get("/leads/{lead_id}/history", response_model=List[dict])
def list_lead_history(lead_id: str, user: dict = Depends(get_current_user)):
    _get_lead_for(lead_id, user)
    docs = get_documents("lead_history", {"lead_id": lead_id}, sort=[("created_at", DESCENDING)])
    return [serialize(d) for d in docs]


# ----- Lookups -----
class NameRequest(BaseModel):
    name: str


@app.get("/lead-statuses", response_model=List[dict])
def list_lead_statuses(user: dict = Depends(get_current_user)):
    docs = get_documents("lead_statuses", sort=[("created_at", 1)])
    return [{"id": str(d["_id"]), "name": d["name"]} for d in docs if d.get("name")]


@app.get("/lead-statuses/all", response_model=List[str])
def list_all_lead_statuses(user: dict = Depends(get_current_user)):
    return [SYSTEM_LEAD_STATUS] + [s["name"] for s in list_lead_statuses(user)]


@app.post("/lead-statuses", response_model=dict)
def add_lead_status(payload: NameRequest, admin: dict = Depends(get_current_admin)):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Status name is required")
    if name.lower() == SYSTEM_LEAD_STATUS.lower():
        raise HTTPException(status_code=400, detail=f'"{SYSTEM_LEAD_STATUS}" is a system status')
    pattern = {"$regex": f"^{re.escape(name)}$", "$options": "i"}
    if database.collection("lead_statuses").find_one({"name": pattern}):
        raise HTTPException(status_code=409, detail="Status already exists")
    return {"id": create_document("lead_statuses", LeadStatus(name=name))}


@app.delete("/lead-statuses/{name}")
def delete_lead_status(name: str, admin: dict = Depends(get_current_admin)):
    deleted = database.collection("lead_statuses").delete_many({"name": name}).deleted_count
    return {"deleted": deleted}


def _register_lookup(path: str, collection_name: str):
    @app.get(f"/{path}", response_model=List[dict], name=f"list_{collection_name}")
    def list_items(user: dict = Depends(get_current_user)):
        return [serialize(d) for d in get_documents(collection_name, sort=[("name", 1)])]

    @app.post(f"/{path}", response_model=dict, name=f"add_{collection_name}")
    def add_item(payload: NameRequest, admin: dict = Depends(get_current_admin)):
        if not payload.name.strip():
            raise HTTPException(status_code=400, detail="Name is required")
        return {"id": create_document(collection_name, LookupItem(name=payload.name.strip()))}

    @app.put(f"/{path}/{{item_id}}", response_model=dict, name=f"rename_{collection_name}")
    def rename_item(item_id: str, payload: NameRequest, admin: dict = Depends(get_current_admin)):
        if not payload.name.strip():
            raise HTTPException(status_code=400, detail="Name is required")
        result = update_document(collection_name, item_id, {"name": payload.name.strip()})
        if result is None:
            raise _not_found("Item")
        return serialize(result[1])

    @app.delete(f"/{path}/{{item_id}}", name=f"delete_{collection_name}")
    def delete_item(item_id: str, admin: dict = Depends(get_current_admin)):
        if not delete_document(collection_name, item_id):
            raise _not_found("Item")
        return {"success": True}


_register_lookup("lead-sources", "lead_sources")
_register_lookup("lead-purposes", "lead_purposes")


# ----- Attendance -----
class PunchInRequest(BaseModel):
    location: Optional[str] = None
    office_ip: Optional[str] = None


class ManualAttendance(BaseModel):
    user_id: Optional[str] = None
    name: str
    date: date
    punch_in: str
    punch_out: Optional[str] = None
    location: str
    attendance_status: AttendanceStatus = "present"


class AttendanceUpdate(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    office_ip: Optional[str] = None
    punch_in_time: Optional[datetime] = None
    punch_out_time: Optional[datetime] = None
    attendance_status: Optional[AttendanceStatus] = None


class LeaveRequest(BaseModel):
    attendance_status: AttendanceStatus = "leave"
    start_date: date
    end_date: Optional[date] = None
    half_day_start: Optional[str] = None
    half_day_end: Optional[str] = None
    reason: Optional[str] = None


class DecisionRequest(BaseModel):
    decision: str


class OverrideRequest(BaseModel):
    attendance_status: AttendanceStatus
    reason: Optional[str] = None


class ManualPunchOut(BaseModel):
    time: str


def _open_record(user_id: str) -> Optional[dict]:
    return database.collection("attendance").find_one({
        "user_id": user_id,
        "record_type": "attendance",
        "punch_in_time": {"$ne": None},
        "punch_out_time": None,
    })


def _get_attendance(record_id: str) -> dict:
    record = get_document("attendance", record_id)
    if not record:
        raise _not_found("Attendance record")
    return record


def _claim_punch_in(uid: str, stamp: datetime) -> bool:
    """Flip users.punched_in in one write; of two concurrent punch-ins only one claims it."""
    claimed = database.collection("users").find_one_and_update(
        {"_id": database.to_object_id(uid), "punched_in": {"$ne": True}},
        {"$set": {"punched_in": True, "punch_in_time": stamp, "updated_at": stamp}},
    )
    return claimed is not None


def _sync_punched_in(user_id: Optional[str]) -> None:
    if user_id:
        update_document("users", user_id, {"punched_in": _open_record(user_id) is not None})


@app.post("/attendance/punch-in", response_model=dict)
def punch_in(payload: PunchInRequest, request: Request, user: dict = Depends(get_current_user)):
    uid = str(user["_id"])
    stamp = database.now()
    if not _claim_punch_in(uid, stamp):
        raise HTTPException(status_code=409, detail="Already punched in")
    if _open_record(uid):
        raise HTTPException(status_code=409, detail="Already punched in")
    data = AttendanceRecord(
        user_id=uid,
        name=user.get("name", ""),
        date=stamp.date().isoformat(),
        punch_in_time=stamp,
        location=payload.location,
        office_ip=payload.office_ip or (request.client.host if request.client else None),
    )
    try:
        inserted_id = create_document("attendance", data)
    except Exception:
        update_document("users", uid, {"punched_in": False})
        raise
    logger.info("User %s punched in", uid)
    return {"status": "success", "id": inserted_id}


@app.post("/attendance/punch-out", response_model=dict)
def punch_out(user: dict = Depends(get_current_user)):
    uid = str(user["_id"])
    record = _open_record(uid)
    if not record:
        raise HTTPException(status_code=409, detail="Not punched in")
    stamp = database.now()
    update_document("attendance", record["_id"], {
        "punch_out_time": stamp,
        "duration_minutes": attendance_rules.duration_minutes(record.get("punch_in_time"), stamp),
    })
    update_document("users", uid, {"punched_in": False, "punch_out_time": stamp})
    logger.info("User %s punched out", uid)
    return {"status": "success", "id": str(record["_id"])}


@app.get("/attendance/today", response_model=dict)
def attendance_today(admin: dict = Depends(get_current_admin)):
    records = get_documents("attendance", {"record_type": "attendance"})
    return {"present": sum(1 for r in records if attendance_rules.is_today(r))}


@app.get("/attendance", response_model=List[dict])
def list_attendance(
    start: Optional[date] = None,
    end: Optional[date] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    user: dict = Depends(get_current_user),
):
    query = {} if is_admin(user) else {"user_id": str(user["_id"])}
    if start and end:
        query["punch_in_time"] = {
            "$gte": utc_naive(datetime.combine(start, time.min, tzinfo=timezone.utc)),
            "$lte": utc_naive(datetime.combine(end, time.max, tzinfo=timezone.utc)),
        }
    docs = get_documents("attendance", query, sort=[("punch_in_time", DESCENDING), ("created_at", DESCENDING)])
    records = [attendance_rules.normalize_record(serialize(d)) for d in docs]
    if status:
        records = [r for r in records if r["attendance_status"] == status]
    if search:
        needle = search.lower()
        records = [r for r in records if needle in (r.get("name") or "").lower()]
    return records


@app.post("/attendance", response_model=dict)
def add_attendance(payload: ManualAttendance, admin: dict = Depends(get_current_admin)):
    punch_in_time = datetime.combine(payload.date, attendance_rules.parse_clock(payload.punch_in), tzinfo=timezone.utc)
    punch_out_time = None
    if payload.punch_out:
        punch_out_time = datetime.combine(payload.date, attendance_rules.parse_clock(payload.punch_out), tzinfo=timezone.utc)
        if punch_out_time < punch_in_time:
            raise HTTPException(status_code=400, detail="Punch-out is before punch-in")
    data = AttendanceRecord(
        user_id=payload.user_id,
        name=payload.name,
        date=payload.date.isoformat(),
        punch_in_time=punch_in_time,
        punch_out_time=punch_out_time,
        duration_minutes=attendance_rules.duration_minutes(punch_in_time, punch_out_time),
        location=payload.location,
        attendance_status=payload.attendance_status,
    )
    return {"id": create_document("attendance", data)}


@app.patch("/attendance/{record_id}", response_model=dict)
def update_attendance(record_id: str, payload: AttendanceUpdate, admin: dict = Depends(get_current_admin)):
    record = _get_attendance(record_id)
    changes = _changes(payload)
    if "punch_in_time" in changes or "punch_out_time" in changes:
        changes["duration_minutes"] = attendance_rules.duration_minutes(
            changes.get("punch_in_time", record.get("punch_in_time")),
            changes.get("punch_out_time", record.get("punch_out_time")),
        )
    _, after = update_document("attendance", record_id, changes)
    _sync_punched_in(after.get("user_id"))
    return serialize(after)


@app.delete("/attendance/{record_id}")
def delete_attendance(record_id: str, admin: dict = Depends(get_current_admin)):
    record = _get_attendance(record_id)
    delete_document("attendance", record_id)
    _sync_punched_in(record.get("user_id"))
    return {"success": True}


@app.post("/attendance/leave", response_model=dict)
def request_leave(payload: LeaveRequest, user: dict = Depends(get_current_user)):
    fields = attendance_rules.leave_request_fields(
        payload.attendance_status,
        payload.start_date,
        payload.end_date,
        payload.half_day_start,
        payload.half_day_end,
    )
    data = AttendanceRecord(user_id=str(user["_id"]), name=user.get("name", ""), reason=payload.reason, **fields)
    inserted_id = create_document("attendance", data)
    return {"id": inserted_id, "approval_status": "pending"}


@app.post("/attendance/{record_id}/decision", response_model=dict)
def decide_leave(record_id: str, payload: DecisionRequest, admin: dict = Depends(get_current_admin)):
    record = _get_attendance(record_id)
    changes = attendance_rules.decision_changes(record, payload.decision)
    changes["decided_by"] = str(admin["_id"])
    _, after = update_document("attendance", record_id, changes)
    return serialize(after)


@app.post("/attendance/{record_id}/override", response_model=dict)
def override_attendance(record_id: str, payload: OverrideRequest, admin: dict = Depends(get_current_admin)):
    record = _get_attendance(record_id)
    changes = attendance_rules.override_changes(record, payload.attendance_status, payload.reason)
    _, after = update_document("attendance", record_id, changes)
    return serialize(after)


@app.post("/attendance/{record_id}/punch-out", response_model=dict)
def manual_punch_out(record_id: str, payload: ManualPunchOut, admin: dict = Depends(get_current_admin)):
    record = _get_attendance(record_id)
    changes = attendance_rules.manual_punch_out_changes(record, payload.time)
    _, after = update_document("attendance", record_id, changes)
    _sync_punched_in(after.get("user_id"))
    return serialize(after)


# ----- Invoices -----
class InvoiceCreate(BaseModel):
    invoice_no: Optional[str] = None
    lead_name: Optional[str] = None
    lead_number: Optional[str] = None
    issued_date: Optional[date] = None
    amount: Optional[float] = Field(None, ge=0)
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    bank_details: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    client_gst: Optional[str] = None
    gst_type: Optional[GstType] = None
    igst_rate: Optional[float] = None
    cgst_rate: Optional[float] = None
    sgst_rate: Optional[float] = None
    status: Optional[InvoiceStatus] = None


def _with_totals(invoice: dict) -> dict:
    data = serialize(invoice)
    data["totals"] = invoice_totals(invoice)
    return data


@app.post("/invoices", response_model=dict)
def add_invoice(payload: InvoiceCreate, admin: dict = Depends(get_current_admin)):
    if not (payload.lead_name or "").strip() or payload.amount is None:
        raise HTTPException(status_code=400, detail="Client name and amount are required")
    fields = payload.model_dump(exclude_none=True)
    fields["invoice_no"] = (payload.invoice_no or "").strip() or next_invoice_number()
    fields["issued_date"] = (payload.issued_date or datetime.now(timezone.utc).date()).isoformat()
    data = Invoice(**fields)
    return {"id": create_document("invoices", data), "invoice_no": data.invoice_no}


@app.get("/invoices", response_model=dict)
def list_invoices(
    search: Optional[str] = None,
    status: Optional[str] = None,
    page_size: int = Query(100, ge=1, le=500),
    cursor: Optional[str] = None,
    admin: dict = Depends(get_current_admin),
):
    query = {}
    if status and status != "all":
        query["status"] = status
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"lead_name": pattern}, {"invoice_no": pattern}, {"lead_number": {"$regex": re.escape(search)}}]
    page = paginate("invoices", query, "issued_date", page_size, cursor)
    page["data"] = [dict(inv, totals=invoice_totals(inv)) for inv in page["data"]]
    return page


@app.get("/invoices/{invoice_id}", response_model=dict)
def get_invoice(invoice_id: str, admin: dict = Depends(get_current_admin)):
    invoice = get_document("invoices", invoice_id)
    if not invoice:
        raise _not_found("Invoice")
    return _with_totals(invoice)


@app.patch("/invoices/{invoice_id}", response_model=dict)
def update_invoice(invoice_id: str, payload: InvoiceCreate, admin: dict = Depends(get_current_admin)):
    invoice = get_document("invoices", invoice_id)
    if not invoice:
        raise _not_found("Invoice")
    changes = _changes(payload)
    # validate the merged result before writing
    merged = {k: v for k, v in serialize(invoice).items() if k in Invoice.model_fields}
    merged.update({k: v.isoformat() if isinstance(v, date) else v for k, v in changes.items()})
    try:
        validated = Invoice(**merged).model_dump()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e.errors()[0].get("msg")))
    _, after = update_document("invoices", invoice_id, {k: validated[k] for k in changes})
    return _with_totals(after)


@app.delete("/invoices/{invoice_id}")
def delete_invoice(invoice_id: str, admin: dict = Depends(get_current_admin)):
    if not delete_document("invoices", invoice_id):
        raise _not_found("Invoice")
    return {"success": True}


# ----- Notifications -----
def _feed_item(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "title": doc.get("title") if isinstance(doc.get("title"), str) else "",
        "message": doc.get("message") if isinstance(doc.get("message"), str) else "",
        "read": doc.get("read") if isinstance(doc.get("read"), bool) else False,
        "type": doc.get("type"),
        "data": doc.get("data") or {},
        "created_at": doc.get("created_at"),
    }


@app.get("/notifications", response_model=dict)
def list_notifications(user: dict = Depends(get_current_user)):
    items = [_feed_item(d) for d in notifications.user_feed(str(user["_id"]))]
    return {"notifications": items, "unread": sum(1 for n in items if not n["read"])}


@app.post("/notifications/read", response_model=dict)
def read_notifications(user: dict = Depends(get_current_user)):
    return {"updated": notifications.mark_user_feed_read(str(user["_id"]))}


@app.get("/admin/notifications", response_model=dict)
def list_admin_notifications(admin: dict = Depends(get_current_admin)):
    items = [_feed_item(d) for d in notifications.admin_feed()]
    return {"notifications": items, "unread": sum(1 for n in items if not n["read"])}


@app.post("/admin/notifications/read", response_model=dict)
def read_admin_notifications(admin: dict = Depends(get_current_admin)):
    return {"updated": notifications.mark_admin_feed_read()}


# ----- Dashboard & agent performance -----
def _all(collection_name: str, query: Optional[dict] = None, sort_field: str = "created_at", limit: Optional[int] = None) -> List[dict]:
    return [serialize(d) for d in get_documents(collection_name, query or {}, limit=limit, sort=[(sort_field, DESCENDING)])]


@app.get("/dashboard", response_model=dict)
def dashboard(days: int = Query(0, ge=0), admin: dict = Depends(get_current_admin)):
    leads = _all("leads")
    today = [r for r in _all("attendance", {"record_type": "attendance"}, "punch_in_time") if attendance_rules.is_today(r)]
    users = [public_user(u) for u in get_documents("users")]
    return metrics.dashboard(leads, today, users, time_range_days=days)


def _agent_or_self(agent_id: str, user: dict) -> dict:
    if not is_admin(user) and str(user["_id"]) != agent_id:
        raise HTTPException(status_code=403, detail="Permission denied")
    agent = get_document("users", agent_id)
    if not agent:
        raise _not_found("Agent")
    return agent


@app.get("/agents/{agent_id}/stats", response_model=dict)
def agent_stats(agent_id: str, user: dict = Depends(get_current_user)):
    _agent_or_self(agent_id, user)
    leads = _all("leads", _assigned_filter(agent_id), limit=AGENT_STATS_LIMIT)
    return {"agent_id": agent_id, **metrics.agent_stats(leads)}


@app.get("/agents/{agent_id}/performance", response_model=dict)
def agent_performance(agent_id: str, user: dict = Depends(get_current_user)):
    agent = _agent_or_self(agent_id, user)
    leads = _all("leads", _assigned_filter(agent_id), limit=AGENT_STATS_LIMIT)
    records = [attendance_rules.normalize_record(r) for r in _all("attendance", {"user_id": agent_id}, "date")]
    return {
        "agent": public_user(agent),
        "stats": metrics.agent_stats(leads),
        "leads": leads,
        "attendance": records,
    }


# ----- Reports & exports -----
@app.get("/reports/leads", response_model=dict)
def leads_report(cursor: Optional[str] = None, admin: dict = Depends(get_current_admin)):
    return paginate("leads", {}, "created_at", REPORT_PAGE_SIZE, cursor)


@app.get("/reports/attendance", response_model=dict)
def attendance_report(cursor: Optional[str] = None, admin: dict = Depends(get_current_admin)):
    return paginate("attendance", {}, "created_at", REPORT_PAGE_SIZE, cursor)


@app.get("/reports/invoices", response_model=dict)
def invoices_report(cursor: Optional[str] = None, admin: dict = Depends(get_current_admin)):
    return paginate("invoices", {}, "created_at", REPORT_PAGE_SIZE, cursor)


@app.get("/reports/lead-stats", response_model=dict)
def lead_stats_report(admin: dict = Depends(get_current_admin)):
    return metrics.lead_stats(_all("leads"))


def _csv_response(kind: str, rows: List[dict]) -> Response:
    content = to_csv(rows)
    if content is None:
        raise HTTPException(status_code=404, detail="No data to export")
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(kind)}"'},
    )


@app.get("/export/leads.csv")
def export_leads(admin: dict = Depends(get_current_admin)):
    return _csv_response("leads", prepare_leads(_all("leads")))


@app.get("/export/attendance.csv")
def export_attendance(admin: dict = Depends(get_current_admin)):
    return _csv_response("attendance", prepare_attendance(_all("attendance", sort_field="punch_in_time")))


@app.get("/export/invoices.csv")
def export_invoices(admin: dict = Depends(get_current_admin)):
    return _csv_response("invoices", prepare_invoices(_all("invoices", sort_field="issued_date")))


# ----- Settings -----
class SettingsUpdate(BaseModel):
    company_name: Optional[str] = None
    office_ips: Optional[List[str]] = None
    work_start: Optional[str] = None
    work_end: Optional[str] = None
    default_bank_details: Optional[str] = None


@app.get("/settings", response_model=dict)
def get_settings(user: dict = Depends(get_current_user)):
    doc = database.collection("admin").find_one({"_id": "settings"})
    return serialize(doc) or {"id": "settings"}


@app.put("/settings", response_model=dict)
def update_settings(payload: SettingsUpdate, admin: dict = Depends(get_current_admin)):
    changes = _changes(payload)
    changes["updated_at"] = database.now()
    database.collection("admin").update_one({"_id": "settings"}, {"$set": changes}, upsert=True)
    return serialize(database.collection("admin").find_one({"_id": "settings"}))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
