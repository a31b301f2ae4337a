"""
Database Schemas for the Lead CRM

Each Pydantic model represents a collection in MongoDB.
Collection names are given in each docstring.
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Any, Dict, List, Literal, Optional, Union
from datetime import datetime

Role = Literal["admin", "agent"]
AttendanceStatus = Literal["present", "absent", "on-break", "leave", "half_day"]
RecordType = Literal["attendance", "leave"]
ApprovalStatus = Literal["none", "pending", "approved", "rejected"]
GstType = Literal["IGST", "CGST_SGST"]
InvoiceStatus = Literal["active", "paid", "pending", "overdue"]

SYSTEM_LEAD_STATUS = "New"


class User(BaseModel):
    """
    Admins and agents
    Collection: "users"
    """
    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="Login email")
    password_hash: str = Field(..., description="PBKDF2 password hash")
    role: Role = "agent"
    phone: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    active: bool = Field(True, description="Whether the account may sign in")
    assigned_leads: int = 0
    closed_deals: int = 0
    punched_in: bool = False
    fcm_tokens: List[str] = Field(default_factory=list, description="Push device tokens")


class Session(BaseModel):
    """
    Bearer-token sessions
    Collection: "sessions"
    """
    token: str
    user_id: str
    role: Role
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    expires_at: datetime


class Lead(BaseModel):
    """
    Leads worked by agents
    Collection: "leads"
    """
    name: str = Field(..., description="Lead full name")
    email: Optional[EmailStr] = Field(None, description="Lead email")
    phone: Optional[str] = Field(None, description="Lead phone")
    source: Optional[str] = Field(None, description="Acquisition source")
    purpose: Optional[str] = None
    budget: Optional[str] = None
    status: str = SYSTEM_LEAD_STATUS
    assigned_to: Union[str, List[str], None] = Field(None, description="Assigned user id(s)")
    remarks: Optional[str] = None
    follow_up_date: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    created_by: Optional[str] = None


class LeadNote(BaseModel):
    """
    Notes on a lead
    Collection: "lead_notes"
    """
    lead_id: str
    text: str
    by: str


class LeadHistory(BaseModel):
    """
    Audit trail of lead changes
    Collection: "lead_history"
    """
    lead_id: str
    type: Literal["STATUS_CHANGE", "ASSIGNMENT_CHANGE", "REMARKS_UPDATE"]
    message: str
    old_value: Any = None
    new_value: Any = None
    by: Optional[str] = None
    by_name: Optional[str] = None


class LeadStatus(BaseModel):
    """
    Admin-defined lead statuses
    Collection: "lead_statuses"
    """
    name: str


class LookupItem(BaseModel):
    """
    Lead sources and purposes
    Collections: "lead_sources", "lead_purposes"
    """
    name: str


class AttendanceRecord(BaseModel):
    """
    Punch records and leave requests
    Collection: "attendance"
    """
    user_id: Optional[str] = None
    name: str
    date: Optional[str] = Field(None, description="YYYY-MM-DD of the punch or leave start")
    punch_in_time: Optional[datetime] = None
    punch_out_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    location: Optional[str] = None
    office_ip: Optional[str] = None
    attendance_status: AttendanceStatus = "present"
    record_type: RecordType = "attendance"
    approval_status: ApprovalStatus = "none"
    start_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    end_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    half_day_start: Optional[str] = None
    half_day_end: Optional[str] = None
    reason: Optional[str] = None
    admin_override: bool = False
    override_reason: Optional[str] = None
    system_completed: bool = False


class Invoice(BaseModel):
    """
    Tax invoices
    Collection: "invoices"
    """
    invoice_no: str
    lead_name: str
    lead_number: Optional[str] = None
    issued_date: str
    amount: float = Field(..., ge=0)
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    bank_details: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = "Payment due within 30 days."
    client_gst: Optional[str] = None
    gst_type: GstType = "CGST_SGST"
    igst_rate: float = 18
    cgst_rate: float = 9
    sgst_rate: float = 9
    status: InvoiceStatus = "active"


class Notification(BaseModel):
    """
    Per-user notification feed
    Collection: "notifications"
    """
    user_id: str
    title: str
    message: str
    type: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)
    read: bool = False


class AdminNotification(BaseModel):
    """
    Admin notification feed
    Collection: "admin_notifications"
    """
    title: str
    message: str
    type: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)
    read: bool = False


class AdminSettings(BaseModel):
    """
    Singleton settings document
    Collection: "admin", id "settings"
    """
    company_name: Optional[str] = None
    office_ips: List[str] = Field(default_factory=list)
    work_start: Optional[str] = None
    work_end: Optional[str] = None
    default_bank_details: Optional[str] = None
