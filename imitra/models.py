# Enums, vocabularies and Pydantic models shared by the API and the workflow

import re
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(str, Enum):
    CITIZEN = "citizen"
    OFFICER = "officer"
    MITRA = "mitra"
    ADMIN = "admin"

class Department(str, Enum):
    PWD = "pwd"
    WATER_WORKS = "water_works"
    ELECTRICITY = "electricity"
    SANITATION = "sanitation"
    TRAFFIC_POLICE = "traffic_police"
    HEALTH_DEPARTMENT = "health_department"
    EDUCATION = "education"
    FIRE_DEPARTMENT = "fire_department"
    REVENUE = "revenue"
    TOWN_PLANNING = "town_planning"
    HORTICULTURE = "horticulture"
    STREET_LIGHTING = "street_lighting"
    MUNICIPAL_CORPORATION = "municipal_corporation"

class Category(str, Enum):
    ROAD_INFRASTRUCTURE = "road_infrastructure"
    WATER_SUPPLY = "water_supply"
    ELECTRICITY = "electricity"
    SANITATION = "sanitation"
    TRAFFIC_TRANSPORTATION = "traffic_transportation"
    HEALTH_SAFETY = "health_safety"
    EDUCATION = "education"
    FIRE_SAFETY = "fire_safety"
    REVENUE_TAX = "revenue_tax"
    URBAN_PLANNING = "urban_planning"
    ENVIRONMENT = "environment"
    STREET_LIGHTING = "street_lighting"
    OTHER = "other"

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class ComplaintStatus(str, Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    CLOSED = "closed"

class SLAStatus(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    BREACH = "breach"

class Zone(str, Enum):
    CENTRAL = "central"
    EAST = "east"
    WEST = "west"
    NORTH = "north"
    SOUTH = "south"
    NORTH_EAST = "north_east"
    NORTH_WEST = "north_west"
    SOUTH_EAST = "south_east"
    SOUTH_WEST = "south_west"

class TimelineAction(str, Enum):
    SUBMITTED = "submitted"
    CLASSIFIED = "classified"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    REOPENED = "reopened"
    FEEDBACK_RECEIVED = "feedback_received"
    CLOSED = "closed"
    REMARK_ADDED = "remark_added"

class ClassificationMethod(str, Enum):
    AI = "ai"
    KEYWORD = "keyword"

class Language(str, Enum):
    ENGLISH = "en"
    HINDI = "hi"

CATEGORY_DEPARTMENT: Dict[Category, Department] = {
    Category.ROAD_INFRASTRUCTURE: Department.PWD,
    Category.WATER_SUPPLY: Department.WATER_WORKS,
    Category.ELECTRICITY: Department.ELECTRICITY,
    Category.SANITATION: Department.SANITATION,
    Category.TRAFFIC_TRANSPORTATION: Department.TRAFFIC_POLICE,
    Category.HEALTH_SAFETY: Department.HEALTH_DEPARTMENT,
    Category.EDUCATION: Department.EDUCATION,
    Category.FIRE_SAFETY: Department.FIRE_DEPARTMENT,
    Category.REVENUE_TAX: Department.REVENUE,
    Category.URBAN_PLANNING: Department.TOWN_PLANNING,
    Category.ENVIRONMENT: Department.HORTICULTURE,
    Category.STREET_LIGHTING: Department.STREET_LIGHTING,
    Category.OTHER: Department.MUNICIPAL_CORPORATION,
}

STAFF_ROLES = (UserRole.OFFICER.value, UserRole.MITRA.value, UserRole.ADMIN.value)

# ---------------------------------------------------------------------------
# User models
# ---------------------------------------------------------------------------
def _check_phone(v: Optional[str]) -> Optional[str]:
    if v is not None and not PHONE_PATTERN.match(v):
        raise ValueError("Phone must be a valid 10-digit mobile number")
    return v

class NotificationPreferences(BaseModel):
    email: bool = True
    sms: bool = True
    push: bool = True

class NotificationPreferencesUpdate(BaseModel):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    push: Optional[bool] = None

def role_field_error(role, department, employee_id, address, zone,
                     assigned_officer) -> Optional[str]:
    """Message for the first role-dependent field that is missing, or None."""
    role = UserRole(role)
    if role in (UserRole.OFFICER, UserRole.MITRA):
        if not department:
            return "Department is required for officers and mitra"
        if not employee_id:
            return "Employee ID is required for officers and mitra"
    if role == UserRole.CITIZEN and (not address or not zone):
        return "Address and zone are required for citizens"
    if role == UserRole.MITRA and not assigned_officer:
        return "Mitra must be assigned to an officer"
    return None

class UserCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str
    password: str = Field(..., min_length=6, max_length=72)
    role: UserRole = UserRole.CITIZEN
    department: Optional[Department] = None
    employee_id: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    zone: Optional[Zone] = None
    assigned_officer: Optional[str] = None
    preferred_language: Language = Language.ENGLISH

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)

    @model_validator(mode="after")
    def check_role_fields(self):
        error = role_field_error(self.role, self.department, self.employee_id, self.address,
                                 self.zone, self.assigned_officer)
        if error:
            raise ValueError(error)
        return self

class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    role: Optional[UserRole] = None
    department: Optional[Department] = None
    employee_id: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    zone: Optional[Zone] = None
    assigned_officer: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=6, max_length=72)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    zone: Optional[Zone] = None
    preferred_language: Optional[Language] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)

class UserLogin(BaseModel):
    email: str
    password: str

class PasswordUpdate(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6, max_length=72)

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6, max_length=72)

class PhoneVerification(BaseModel):
    code: str = Field(..., pattern=r"^\d{6}$")

class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    role: UserRole
    department: Optional[str] = None
    employee_id: Optional[str] = None
    address: Optional[str] = None
    zone: Optional[str] = None
    assigned_officer: Optional[str] = None
    is_active: bool = True
    phone_verified: bool = False
    preferred_language: str = Language.ENGLISH.value
    last_login: Optional[datetime] = None
    created_at: datetime

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

# ---------------------------------------------------------------------------
# Complaint models
# ---------------------------------------------------------------------------
class Location(BaseModel):
    address: str = Field(..., min_length=3, max_length=500)
    landmark: Optional[str] = Field(None, max_length=200)
    zone: Zone
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def check_coordinates(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("Latitude and longitude must be provided together")
        return self

class ComplaintCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    location: Location
    language: Language = Language.ENGLISH

class Classification(BaseModel):
    category: Category
    department: Department
    priority: Priority
    confidence: float = Field(..., ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    method: ClassificationMethod
    model: Optional[str] = None
    classified_at: datetime

class CitizenInfo(BaseModel):
    user_id: str
    name: str
    email: str
    phone: Optional[str] = None

class SLAInfo(BaseModel):
    deadline: datetime
    hours_allocated: float
    status: SLAStatus = SLAStatus.SAFE
    warning_notified: bool = False
    breach_notified: bool = False
    escalation_level: int = Field(0, ge=0, le=3)

class TimelineEntry(BaseModel):
    action: TimelineAction
    performed_by: Optional[str] = None
    performed_by_role: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

class Remark(BaseModel):
    id: str
    text: str
    added_by: str
    added_by_name: Optional[str] = None
    added_by_role: UserRole
    is_internal: bool = False
    created_at: datetime

class Attachment(BaseModel):
    filename: str
    original_name: str
    content_type: str
    size: int
    url: str
    uploaded_at: datetime

class Feedback(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    satisfied: bool
    comments: Optional[str] = Field(None, max_length=500)
    would_recommend: Optional[bool] = None
    submitted_at: Optional[datetime] = None

class Resolution(BaseModel):
    description: Optional[str] = None
    resolved_by: str
    resolved_at: datetime
    resolution_time_hours: float

class EscalationEntry(BaseModel):
    level: int
    reason: Optional[str] = None
    escalated_by: Optional[str] = None
    escalated_at: datetime

class ComplaintResponse(BaseModel):
    id: str
    complaint_id: str
    title: str
    description: str
    language: str = Language.ENGLISH.value
    citizen: CitizenInfo
    location: Location
    classification: Classification
    status: ComplaintStatus
    assigned_officer: Optional[str] = None
    assigned_mitra: Optional[str] = None
    assigned_at: Optional[datetime] = None
    sla: SLAInfo
    timeline: List[TimelineEntry] = Field(default_factory=list)
    remarks: List[Remark] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    proof_attachments: List[Attachment] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    resolution: Optional[Resolution] = None
    escalation_history: List[EscalationEntry] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    view_count: int = 0
    created_at: datetime
    updated_at: datetime

class ComplaintListResponse(BaseModel):
    count: int
    total: int
    page: int
    pages: int
    data: List[ComplaintResponse]

class AssignRequest(BaseModel):
    mitra_id: str
    remarks: Optional[str] = Field(None, max_length=1000)

class RemarkCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)
    is_internal: bool = False

class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    satisfied: bool
    comments: Optional[str] = Field(None, max_length=500)
    would_recommend: Optional[bool] = None

class EscalateRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)

class ReopenRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)

class BulkAssignRequest(BaseModel):
    complaint_ids: List[str] = Field(..., min_length=1, max_length=100)
    mitra_id: str

class BulkStatusRequest(BaseModel):
    complaint_ids: List[str] = Field(..., min_length=1, max_length=100)
    status: ComplaintStatus
    remarks: Optional[str] = Field(None, max_length=1000)

class BulkResult(BaseModel):
    succeeded: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)

# ---------------------------------------------------------------------------
# Notifications & analytics
# ---------------------------------------------------------------------------
class NotificationResponse(BaseModel):
    id: str
    event: str
    message: str
    complaint_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime

class DashboardResponse(BaseModel):
    total_complaints: int
    pending_count: int
    resolved_count: int
    resolution_rate: float
    sla_compliance_rate: float
    sla_breached_count: int
    avg_resolution_time_hours: float
    avg_rating: Optional[float] = None
    status_distribution: Dict[str, int] = Field(default_factory=dict)
    priority_distribution: Dict[str, int] = Field(default_factory=dict)
    recent_complaints: List[Dict[str, Any]] = Field(default_factory=list)
