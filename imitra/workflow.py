# Complaint workflow rules: status transitions, SLA deadlines, timeline and access

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any

from fastapi import HTTPException

from .config import SLA_POLICY, as_utc, now_utc
from .models import (
    ComplaintStatus, Department, Priority, SLAStatus, TimelineAction, UserRole,
)

logger = logging.getLogger(__name__)

S = ComplaintStatus

# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------
VALID_TRANSITIONS: Dict[ComplaintStatus, frozenset] = {
    S.NEW: frozenset({S.ASSIGNED, S.REJECTED}),
    S.ASSIGNED: frozenset({S.IN_PROGRESS, S.REJECTED}),
    S.IN_PROGRESS: frozenset({S.RESOLVED, S.ESCALATED}),
    S.RESOLVED: frozenset({S.CLOSED}),
    S.REJECTED: frozenset({S.NEW, S.ESCALATED}),
    S.ESCALATED: frozenset({S.ASSIGNED, S.IN_PROGRESS, S.RESOLVED}),
    S.CLOSED: frozenset(),
}

OPEN_STATUSES = (S.NEW.value, S.ASSIGNED.value, S.IN_PROGRESS.value, S.ESCALATED.value)
DONE_STATUSES = (S.RESOLVED.value, S.CLOSED.value)
REOPENABLE_STATUSES = (S.RESOLVED.value, S.REJECTED.value, S.CLOSED.value)

STATUS_ACTIONS = {
    S.NEW: TimelineAction.REOPENED,
    S.ASSIGNED: TimelineAction.ASSIGNED,
    S.IN_PROGRESS: TimelineAction.IN_PROGRESS,
    S.RESOLVED: TimelineAction.RESOLVED,
    S.REJECTED: TimelineAction.REJECTED,
    S.ESCALATED: TimelineAction.ESCALATED,
    S.CLOSED: TimelineAction.CLOSED,
}

MAX_ESCALATION_LEVEL = 3

def can_transition(current: str, new: str) -> bool:
    return ComplaintStatus(new) in VALID_TRANSITIONS[ComplaintStatus(current)]

def check_transition(current: str, new: str) -> None:
    if not can_transition(current, new):
        raise HTTPException(status_code=400, detail=f"Cannot change status from {current} to {new}")

# ---------------------------------------------------------------------------
# SLA
# ---------------------------------------------------------------------------
D = Department

# hours for (critical, high, medium, low)
SLA_MATRIX: Dict[Department, tuple] = {
    D.PWD: (4, 24, 72, 168),
    D.WATER_WORKS: (2, 8, 48, 120),
    D.ELECTRICITY: (1, 4, 24, 72),
    D.SANITATION: (6, 24, 72, 168),
    D.TRAFFIC_POLICE: (2, 8, 48, 120),
    D.HEALTH_DEPARTMENT: (2, 12, 48, 120),
    D.EDUCATION: (24, 72, 168, 336),
    D.FIRE_DEPARTMENT: (1, 2, 12, 48),
    D.REVENUE: (24, 72, 168, 336),
    D.TOWN_PLANNING: (48, 168, 336, 720),
    D.HORTICULTURE: (12, 48, 168, 336),
    D.STREET_LIGHTING: (4, 24, 72, 168),
}
_MATRIX_COLUMNS = (Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW)

PRIORITY_SLA_HOURS = {Priority.CRITICAL: 4, Priority.HIGH: 24, Priority.MEDIUM: 48, Priority.LOW: 72}
URGENT_DEPARTMENTS = frozenset({D.FIRE_DEPARTMENT, D.HEALTH_DEPARTMENT, D.ELECTRICITY, D.WATER_WORKS})

WARNING_FRACTION = 0.2

def sla_hours(department: str, priority: str, policy: str = SLA_POLICY) -> float:
    department, priority = Department(department), Priority(priority)
    if policy == "priority":
        hours = PRIORITY_SLA_HOURS[priority]
        if department in URGENT_DEPARTMENTS:
            hours = max(1, hours // 2)
        return float(hours)
    row = SLA_MATRIX.get(department, SLA_MATRIX[D.PWD])
    return float(row[_MATRIX_COLUMNS.index(priority)])

def compute_sla_status(deadline: datetime, hours_allocated: float,
                       now: Optional[datetime] = None) -> SLAStatus:
    now = now or now_utc()
    remaining = (as_utc(deadline) - now).total_seconds() / 3600
    if remaining < 0:
        return SLAStatus.BREACH
    if remaining <= hours_allocated * WARNING_FRACTION:
        return SLAStatus.WARNING
    return SLAStatus.SAFE

def new_sla(department: str, priority: str, start: Optional[datetime] = None,
            escalation_level: int = 0) -> Dict[str, Any]:
    start = start or now_utc()
    hours = sla_hours(department, priority)
    deadline = start + timedelta(hours=hours)
    return {
        "deadline": deadline, "hours_allocated": hours,
        "status": compute_sla_status(deadline, hours, start).value,
        "warning_notified": False, "breach_notified": False,
        "escalation_level": escalation_level,
    }

def refresh_sla(complaint: dict, now: Optional[datetime] = None) -> bool:
    """Recompute sla.status in place for open complaints. Returns True when it changed."""
    if complaint.get("status") not in OPEN_STATUSES:
        return False
    sla = complaint["sla"]
    status = compute_sla_status(sla["deadline"], sla["hours_allocated"], now).value
    if status == sla.get("status"):
        return False
    sla["status"] = status
    return True

# ---------------------------------------------------------------------------
# Timeline & escalation
# ---------------------------------------------------------------------------
def timeline_entry(action: TimelineAction, user: Optional[dict] = None,
                   description: Optional[str] = None, **metadata) -> Dict[str, Any]:
    return {
        "action": action.value,
        "performed_by": str(user["_id"]) if user else None,
        "performed_by_role": user["role"] if user else "system",
        "description": description,
        "metadata": metadata,
        "timestamp": now_utc(),
    }

def next_escalation(complaint: dict, reason: Optional[str], user: Optional[dict],
                    strict: bool = True) -> Optional[Dict[str, Any]]:
    """Escalation-history entry one level above the current one.

    At the top level this raises 400 when strict, otherwise returns None.
    """
    level = complaint["sla"].get("escalation_level", 0)
    if level >= MAX_ESCALATION_LEVEL:
        if strict:
            raise HTTPException(status_code=400, detail="Maximum escalation level reached")
        return None
    return {
        "level": level + 1, "reason": reason,
        "escalated_by": str(user["_id"]) if user else None,
        "escalated_at": now_utc(),
    }

def resolution_hours(complaint: dict, resolved_at: datetime) -> float:
    return round((resolved_at - as_utc(complaint["created_at"])).total_seconds() / 3600, 2)

# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------
def can_access(user: dict, complaint: dict) -> bool:
    role, user_id = user["role"], str(user["_id"])
    if role == UserRole.ADMIN.value:
        return True
    if role == UserRole.CITIZEN.value:
        return complaint["citizen"]["user_id"] == user_id
    same_dept = complaint["classification"]["department"] == user.get("department")
    if role == UserRole.OFFICER.value:
        return same_dept or complaint.get("assigned_officer") == user_id
    if role == UserRole.MITRA.value:
        return complaint.get("assigned_mitra") == user_id
    return False

def scope_query(user: dict) -> Dict[str, Any]:
    """Mongo filter limiting complaints to what a user may see."""
    query: Dict[str, Any] = {"is_deleted": {"$ne": True}}
    role, user_id = user["role"], str(user["_id"])
    if role == UserRole.CITIZEN.value:
        query["citizen.user_id"] = user_id
    elif role == UserRole.OFFICER.value:
        query["$or"] = [{"classification.department": user.get("department")},
                        {"assigned_officer": user_id}]
    elif role == UserRole.MITRA.value:
        query["assigned_mitra"] = user_id
    return query

def check_department_access(user: dict, department: str) -> None:
    if user["role"] == UserRole.ADMIN.value:
        return
    if user["role"] == UserRole.CITIZEN.value or user.get("department") != department:
        raise HTTPException(status_code=403, detail="Not authorized to access this department")

def visible_remarks(user: dict, remarks: List[dict]) -> List[dict]:
    if user["role"] == UserRole.CITIZEN.value:
        return [r for r in remarks if not r.get("is_internal")]
    return remarks
