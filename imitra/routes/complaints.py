# Complaint lifecycle endpoints: filing, listing, workflow actions, bulk ops and export

import asyncio
import csv
import io
import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response

from ..classifier import classify
from ..config import MAX_UPLOAD_BYTES, MAX_UPLOAD_FILES, UPLOAD_DIR, as_utc, new_id, now_utc
from ..db import executor, generate_complaint_id, get_db
from ..errors import UploadRejected
from ..messaging import notify_user
from ..models import (
    AssignRequest, BulkAssignRequest, BulkResult, BulkStatusRequest, Category, ComplaintCreate,
    ComplaintListResponse, ComplaintResponse, ComplaintStatus, Department, EscalateRequest,
    FeedbackCreate, Priority, RemarkCreate, ReopenRequest, SLAStatus, STAFF_ROLES,
    TimelineAction, UserRole, Zone,
)
from ..monitor import sweep_sla
from ..realtime import publish
from ..security import get_current_user, require_role, validate_uuid
from ..workflow import (
    REOPENABLE_STATUSES, STATUS_ACTIONS, can_access, check_department_access, check_transition,
    new_sla, next_escalation, refresh_sla, resolution_hours, scope_query, timeline_entry,
    visible_remarks,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/complaints", tags=["complaints"])

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp",
    "video/mp4": ".mp4", "video/webm": ".webm", "video/quicktime": ".mov",
}
SORT_FIELDS = {
    "created_at": "created_at", "updated_at": "updated_at", "status": "status",
    "priority": "classification.priority", "sla_deadline": "sla.deadline",
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def complaint_to_response(c: dict, user: dict) -> ComplaintResponse:
    data = {**c, "remarks": visible_remarks(user, c.get("remarks", []))}
    return ComplaintResponse(**data, id=c["_id"])

def complaint_summary(c: dict) -> Dict[str, Any]:
    return {
        "id": c["_id"], "complaint_id": c["complaint_id"], "title": c["title"],
        "status": c["status"], "priority": c["classification"]["priority"],
        "department": c["classification"]["department"], "zone": c["location"]["zone"],
        "sla_status": c["sla"]["status"],
    }

async def fetch_user(db, user_id: Optional[str]) -> Optional[dict]:
    if not user_id:
        return None
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})

async def load_complaint(db, complaint_id: str, user: dict) -> dict:
    complaint_id = validate_uuid(complaint_id, "complaint_id")
    loop = asyncio.get_event_loop()
    c = await loop.run_in_executor(
        executor, db.complaints.find_one, {"_id": complaint_id, "is_deleted": {"$ne": True}})
    if not c:
        raise HTTPException(status_code=404, detail="Complaint not found")
    if not can_access(user, c):
        raise HTTPException(status_code=403, detail="Access denied")
    return c

async def reload(db, complaint_id: str) -> dict:
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, db.complaints.find_one, {"_id": complaint_id})

async def save_uploads(files: Optional[List[UploadFile]], folder: str) -> List[Dict[str, Any]]:
    """Validate every file first, then write them under UPLOAD_DIR/<folder>."""
    files = [f for f in (files or []) if f.filename]
    if len(files) > MAX_UPLOAD_FILES:
        raise UploadRejected(f"Too many files. Maximum {MAX_UPLOAD_FILES} files allowed")
    payloads = []
    for f in files:
        if f.content_type not in ALLOWED_CONTENT_TYPES:
            raise UploadRejected(f"Unsupported file type: {f.content_type}")
        content = await f.read()
        if len(content) > MAX_UPLOAD_BYTES:
            raise UploadRejected(f"File too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)}MB")
        payloads.append((f, content))
    if not payloads:
        return []
    target = Path(UPLOAD_DIR) / folder
    def write():
        target.mkdir(parents=True, exist_ok=True)
        saved = []
        for f, content in payloads:
            name = f"{new_id()}{ALLOWED_CONTENT_TYPES[f.content_type]}"
            (target / name).write_bytes(content)
            saved.append({"filename": name, "original_name": f.filename,
                          "content_type": f.content_type, "size": len(content),
                          "url": f"/uploads/{folder}/{name}", "uploaded_at": now_utc()})
        return saved
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, write)

async def persist_sla(db, complaints: List[dict]) -> None:
    changed = [c for c in complaints if refresh_sla(c)]
    if not changed:
        return
    def update():
        for c in changed:
            db.complaints.update_one({"_id": c["_id"]}, {"$set": {"sla.status": c["sla"]["status"]}})
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, update)

def sla_snapshot(c: dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Recompute sla.status on the stored state and return it as a $set fragment."""
    refresh_sla(c, now)
    return {"sla.status": c["sla"]["status"]}

def remark_doc(text: str, user: dict, is_internal: bool = False) -> Dict[str, Any]:
    return {"id": new_id(), "text": text, "added_by": str(user["_id"]),
            "added_by_name": user.get("name"), "added_by_role": user["role"],
            "is_internal": is_internal, "created_at": now_utc()}

def list_query(user: dict, status, priority, department, zone, sla_status, category,
               start_date, end_date, search) -> Dict[str, Any]:
    conditions: List[Dict[str, Any]] = [scope_query(user)]
    if status:
        conditions.append({"status": status.value})
    if priority:
        conditions.append({"classification.priority": priority.value})
    if department:
        conditions.append({"classification.department": department.value})
    if category:
        conditions.append({"classification.category": category.value})
    if zone:
        conditions.append({"location.zone": zone.value})
    if sla_status:
        conditions.append({"sla.status": sla_status.value})
    if start_date or end_date:
        created: Dict[str, Any] = {}
        if start_date:
            created["$gte"] = as_utc(start_date)
        if end_date:
            created["$lte"] = as_utc(end_date)
        conditions.append({"created_at": created})
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        conditions.append({"$or": [{"title": pattern}, {"description": pattern},
                                   {"complaint_id": pattern}]})
    return conditions[0] if len(conditions) == 1 else {"$and": conditions}

# ---------------------------------------------------------------------------
# Workflow operations (shared by single and bulk endpoints)
# ---------------------------------------------------------------------------
async def change_status(db, user: dict, c: dict, new_status: ComplaintStatus,
                        remarks: Optional[str] = None,
                        proof: Optional[List[Dict[str, Any]]] = None) -> dict:
    check_transition(c["status"], new_status.value)
    now = now_utc()
    set_fields: Dict[str, Any] = {"status": new_status.value, "updated_at": now,
                                  **sla_snapshot(c, now)}
    push: Dict[str, List[Any]] = {"timeline": [timeline_entry(
        STATUS_ACTIONS[new_status], user, remarks, previous_status=c["status"])]}
    if new_status == ComplaintStatus.RESOLVED:
        set_fields["resolved_at"] = now
        set_fields["resolution"] = {"description": remarks, "resolved_by": str(user["_id"]),
                                    "resolved_at": now, "resolution_time_hours": resolution_hours(c, now)}
        if proof:
            push["proof_attachments"] = proof
    elif new_status == ComplaintStatus.CLOSED:
        set_fields["closed_at"] = now
    elif new_status == ComplaintStatus.ESCALATED:
        entry = next_escalation(c, remarks, user, strict=False)
        if entry:
            set_fields["sla.escalation_level"] = entry["level"]
            push["escalation_history"] = [entry]
    if remarks:
        push["remarks"] = [remark_doc(remarks, user)]
    update = {"$set": set_fields, "$push": {k: {"$each": v} for k, v in push.items()}}
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one({"_id": c["_id"]}, update))
    updated = await reload(db, c["_id"])
    logger.info("Complaint %s: %s -> %s by %s", c["complaint_id"], c["status"], new_status.value, user["_id"])

    await publish(db, "complaint_status_updated",
                  {**complaint_summary(updated), "previous_status": c["status"], "remarks": remarks},
                  f"Complaint {c['complaint_id']} is now {new_status.value}",
                  users=[c["citizen"]["user_id"]],
                  departments=[c["classification"]["department"]],
                  roles=[UserRole.ADMIN.value], complaint_id=c["_id"])
    citizen = await fetch_user(db, c["citizen"]["user_id"])
    await notify_user(citizen, "status_updated", f"Complaint {c['complaint_id']} update",
                      complaint_id=c["complaint_id"], title=c["title"],
                      status=new_status.value.replace("_", " "), remarks=remarks)
    return updated

async def assign_mitra(db, user: dict, c: dict, mitra_id: str, remarks: Optional[str] = None) -> dict:
    mitra_id = validate_uuid(mitra_id, "mitra_id")
    mitra = await fetch_user(db, mitra_id)
    if not mitra or mitra["role"] != UserRole.MITRA.value:
        raise HTTPException(status_code=400, detail="Mitra not found")
    if not mitra.get("is_active", True):
        raise HTTPException(status_code=400, detail="Mitra account is inactive")
    if mitra.get("department") != c["classification"]["department"]:
        raise HTTPException(status_code=400, detail="Mitra must belong to the complaint's department")
    if c["status"] in (ComplaintStatus.RESOLVED.value, ComplaintStatus.REJECTED.value,
                       ComplaintStatus.CLOSED.value):
        raise HTTPException(status_code=400, detail=f"Cannot assign a {c['status']} complaint")
    now = now_utc()
    set_fields: Dict[str, Any] = {"assigned_mitra": mitra_id, "assigned_officer": str(user["_id"]),
                                  "assigned_at": now, "updated_at": now, **sla_snapshot(c, now)}
    if c["status"] in (ComplaintStatus.NEW.value, ComplaintStatus.ESCALATED.value):
        set_fields["status"] = ComplaintStatus.ASSIGNED.value
    push: Dict[str, List[Any]] = {"timeline": [timeline_entry(
        TimelineAction.ASSIGNED, user, f"Assigned to {mitra['name']}", mitra_id=mitra_id)]}
    if remarks:
        push["remarks"] = [remark_doc(remarks, user)]
    update = {"$set": set_fields, "$push": {k: {"$each": v} for k, v in push.items()}}
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one({"_id": c["_id"]}, update))
    updated = await reload(db, c["_id"])
    logger.info("Complaint %s assigned to mitra %s by %s", c["complaint_id"], mitra_id, user["_id"])

    await publish(db, "complaint_assigned",
                  {**complaint_summary(updated), "assigned_mitra": mitra_id, "mitra_name": mitra["name"]},
                  f"Complaint {c['complaint_id']} assigned to {mitra['name']}",
                  users=[mitra_id, c["citizen"]["user_id"]],
                  departments=[c["classification"]["department"]], complaint_id=c["_id"])
    await notify_user(mitra, "complaint_assigned", f"New assignment {c['complaint_id']}", email=False,
                      complaint_id=c["complaint_id"], title=c["title"],
                      address=c["location"]["address"], priority=c["classification"]["priority"],
                      deadline=as_utc(c["sla"]["deadline"]).strftime("%d %b %Y %H:%M UTC"))
    return updated

# ---------------------------------------------------------------------------
# COMPLAINT ENDPOINTS
# ---------------------------------------------------------------------------
@router.post("", response_model=ComplaintResponse, status_code=201)
async def create_complaint(
    title: str = Form(...), description: str = Form(...),
    address: str = Form(...), zone: str = Form(...),
    landmark: Optional[str] = Form(None),
    latitude: Optional[float] = Form(None), longitude: Optional[float] = Form(None),
    language: str = Form("en"),
    attachments: Optional[List[UploadFile]] = File(None),
    user=Depends(require_role(UserRole.CITIZEN.value)), db=Depends(get_db)):
    data = ComplaintCreate(
        title=title.strip(), description=description.strip(), language=language,
        location={"address": address, "zone": zone, "landmark": landmark,
                  "latitude": latitude, "longitude": longitude})
    saved = await save_uploads(attachments, "complaints")
    classification = await classify(data.title, data.description)
    now = now_utc()
    cls = classification.model_dump(mode="json")
    cls["classified_at"] = classification.classified_at
    doc = {
        "_id": new_id(), "title": data.title, "description": data.description,
        "language": data.language.value,
        "citizen": {"user_id": str(user["_id"]), "name": user["name"],
                    "email": user["email"], "phone": user.get("phone")},
        "location": data.location.model_dump(mode="json"),
        "classification": cls,
        "status": ComplaintStatus.NEW.value,
        "assigned_officer": None, "assigned_mitra": None, "assigned_at": None,
        "sla": new_sla(cls["department"], cls["priority"], now),
        "timeline": [
            timeline_entry(TimelineAction.SUBMITTED, user, "Complaint submitted"),
            timeline_entry(TimelineAction.CLASSIFIED, None,
                           f"Routed to {cls['department']} as {cls['priority']} priority",
                           method=cls["method"], category=cls["category"],
                           confidence=cls["confidence"]),
        ],
        "remarks": [], "attachments": saved, "proof_attachments": [],
        "feedback": None, "resolution": None, "escalation_history": [],
        "resolved_at": None, "closed_at": None, "view_count": 0, "is_deleted": False,
        "created_at": now, "updated_at": now,
    }
    def insert():
        doc["complaint_id"] = generate_complaint_id(db, now)
        db.complaints.insert_one(doc)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, insert)
    logger.info("Complaint %s filed by %s -> %s/%s (%s, %.2f)", doc["complaint_id"], user["_id"],
                cls["department"], cls["priority"], cls["method"], cls["confidence"])

    # Best-effort side effects; the complaint is already stored
    await publish(db, "new_complaint", complaint_summary(doc),
                  f"New complaint {doc['complaint_id']}: {doc['title']}",
                  departments=[cls["department"]], roles=[UserRole.ADMIN.value],
                  complaint_id=doc["_id"])
    await notify_user(user, "complaint_submitted", f"Complaint {doc['complaint_id']} registered",
                      complaint_id=doc["complaint_id"], title=doc["title"],
                      department=cls["department"].replace("_", " ").title(),
                      priority=cls["priority"],
                      deadline=doc["sla"]["deadline"].strftime("%d %b %Y %H:%M UTC"))
    return complaint_to_response(doc, user)

@router.get("", response_model=ComplaintListResponse)
async def list_complaints(
    status: Optional[ComplaintStatus] = None, priority: Optional[Priority] = None,
    department: Optional[Department] = None, zone: Optional[Zone] = None,
    sla_status: Optional[SLAStatus] = None, category: Optional[Category] = None,
    start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("created_at"), sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1, le=10000), limit: int = Query(20, ge=1, le=100),
    user=Depends(get_current_user), db=Depends(get_db)):
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by {sort_by}")
    query = list_query(user, status, priority, department, zone, sla_status, category,
                       start_date, end_date, search)
    direction = -1 if sort_order == "desc" else 1
    def fetch():
        total = db.complaints.count_documents(query)
        docs = list(db.complaints.find(query).sort(SORT_FIELDS[sort_by], direction)
                    .skip((page - 1) * limit).limit(limit))
        return total, docs
    loop = asyncio.get_event_loop()
    total, docs = await loop.run_in_executor(executor, fetch)
    await persist_sla(db, docs)
    return ComplaintListResponse(
        count=len(docs), total=total, page=page, pages=math.ceil(total / limit) if total else 0,
        data=[complaint_to_response(c, user) for c in docs])

@router.get("/public/stats")
async def public_stats(db=Depends(get_db)):
    def fetch():
        base = {"is_deleted": {"$ne": True}}
        total = db.complaints.count_documents(base)
        resolved = db.complaints.count_documents({**base, "status": {"$in": ["resolved", "closed"]}})
        pending = db.complaints.count_documents(
            {**base, "status": {"$in": ["new", "assigned", "in_progress", "escalated"]}})
        def group(field):
            return {r["_id"]: r["count"] for r in db.complaints.aggregate([
                {"$match": base}, {"$group": {"_id": f"${field}", "count": {"$sum": 1}}}])}
        rating = list(db.complaints.aggregate([
            {"$match": {**base, "feedback.rating": {"$exists": True}}},
            {"$group": {"_id": None, "avg": {"$avg": "$feedback.rating"}, "count": {"$sum": 1}}}]))
        return {
            "total_complaints": total, "resolved": resolved, "pending": pending,
            "resolution_rate": round(resolved / total * 100, 1) if total else 0.0,
            "avg_rating": round(rating[0]["avg"], 2) if rating and rating[0].get("avg") else None,
            "by_department": group("classification.department"),
            "by_zone": group("location.zone"),
            "by_priority": group("classification.priority"),
        }
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/department/{department}", response_model=ComplaintListResponse)
async def department_complaints(department: Department, status: Optional[ComplaintStatus] = None,
                                page: int = Query(1, ge=1, le=10000), limit: int = Query(20, ge=1, le=100),
                                user=Depends(require_role(*STAFF_ROLES)), db=Depends(get_db)):
    check_department_access(user, department.value)
    query: Dict[str, Any] = {"classification.department": department.value, "is_deleted": {"$ne": True}}
    if status:
        query["status"] = status.value
    def fetch():
        total = db.complaints.count_documents(query)
        docs = list(db.complaints.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
        return total, docs
    loop = asyncio.get_event_loop()
    total, docs = await loop.run_in_executor(executor, fetch)
    await persist_sla(db, docs)
    return ComplaintListResponse(
        count=len(docs), total=total, page=page, pages=math.ceil(total / limit) if total else 0,
        data=[complaint_to_response(c, user) for c in docs])

@router.get("/export/{fmt}")
async def export_complaints(fmt: str, status: Optional[ComplaintStatus] = None,
                            department: Optional[Department] = None,
                            user=Depends(require_role(UserRole.OFFICER.value, UserRole.ADMIN.value)),
                            db=Depends(get_db)):
    if fmt not in ("csv", "json"):
        raise HTTPException(status_code=400, detail="Export format must be csv or json")
    query = list_query(user, status, None, department, None, None, None, None, None, None)
    loop = asyncio.get_event_loop()
    docs = await loop.run_in_executor(
        executor, lambda: list(db.complaints.find(query).sort("created_at", -1).limit(5000)))
    if fmt == "json":
        return [complaint_to_response(c, user) for c in docs]
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["complaint_id", "title", "status", "category", "department", "priority",
                     "zone", "sla_status", "sla_deadline", "escalation_level", "rating", "created_at"])
    for c in docs:
        writer.writerow([
            c["complaint_id"], c["title"], c["status"], c["classification"]["category"],
            c["classification"]["department"], c["classification"]["priority"],
            c["location"]["zone"], c["sla"]["status"], as_utc(c["sla"]["deadline"]).isoformat(),
            c["sla"].get("escalation_level", 0), (c.get("feedback") or {}).get("rating", ""),
            as_utc(c["created_at"]).isoformat()])
    return Response(content=buf.getvalue(), media_type="text/csv",
                    headers={"Content-Disposition": "attachment; filename=complaints.csv"})

@router.post("/sla/sweep")
async def run_sla_sweep(user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    return await sweep_sla(db)

@router.post("/bulk/assign", response_model=BulkResult)
async def bulk_assign(req: BulkAssignRequest, user=Depends(require_role(UserRole.ADMIN.value)),
                      db=Depends(get_db)):
    result = BulkResult()
    for complaint_id in req.complaint_ids:
        try:
            c = await load_complaint(db, complaint_id, user)
            await assign_mitra(db, user, c, req.mitra_id)
            result.succeeded.append(complaint_id)
        except HTTPException as e:
            result.failed[complaint_id] = e.detail
    return result

@router.post("/bulk/status", response_model=BulkResult)
async def bulk_status(req: BulkStatusRequest, user=Depends(require_role(UserRole.ADMIN.value)),
                      db=Depends(get_db)):
    result = BulkResult()
    for complaint_id in req.complaint_ids:
        try:
            c = await load_complaint(db, complaint_id, user)
            await change_status(db, user, c, req.status, req.remarks)
            result.succeeded.append(complaint_id)
        except HTTPException as e:
            result.failed[complaint_id] = e.detail
    return result

@router.get("/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(complaint_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    refresh_sla(c)
    c["view_count"] = c.get("view_count", 0) + 1
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one(
        {"_id": c["_id"]}, {"$set": {"sla.status": c["sla"]["status"]}, "$inc": {"view_count": 1}}))
    return complaint_to_response(c, user)

@router.put("/{complaint_id}/status", response_model=ComplaintResponse)
async def update_status(complaint_id: str, status: ComplaintStatus = Form(...),
                        remarks: Optional[str] = Form(None, max_length=1000),
                        proof: Optional[List[UploadFile]] = File(None),
                        user=Depends(require_role(*STAFF_ROLES)), db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    check_transition(c["status"], status.value)
    saved = await save_uploads(proof, "proof") if status == ComplaintStatus.RESOLVED else []
    updated = await change_status(db, user, c, status, remarks, saved)
    return complaint_to_response(updated, user)

@router.put("/{complaint_id}/assign", response_model=ComplaintResponse)
async def assign_complaint(complaint_id: str, req: AssignRequest,
                           user=Depends(require_role(UserRole.OFFICER.value, UserRole.ADMIN.value)),
                           db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    updated = await assign_mitra(db, user, c, req.mitra_id, req.remarks)
    return complaint_to_response(updated, user)

@router.post("/{complaint_id}/remarks", response_model=ComplaintResponse, status_code=201)
async def add_remark(complaint_id: str, req: RemarkCreate,
                     user=Depends(get_current_user), db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    is_citizen = user["role"] == UserRole.CITIZEN.value
    if is_citizen and req.is_internal:
        raise HTTPException(status_code=400, detail="Citizens cannot add internal remarks")
    remark = remark_doc(req.text, user, req.is_internal)
    now = now_utc()
    sla_fields = sla_snapshot(c, now)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one(
        {"_id": c["_id"]},
        {"$push": {"remarks": remark,
                   "timeline": timeline_entry(TimelineAction.REMARK_ADDED, user, None,
                                              remark_id=remark["id"], is_internal=req.is_internal)},
         "$set": {"updated_at": now, **sla_fields}}))
    updated = await reload(db, c["_id"])
    payload = {**complaint_summary(updated), "remark": remark}
    if is_citizen:
        await publish(db, "new_remark", payload, f"Citizen remark on {c['complaint_id']}",
                      users=[c.get("assigned_officer"), c.get("assigned_mitra")],
                      departments=[c["classification"]["department"]],
                      roles=[UserRole.ADMIN.value], complaint_id=c["_id"])
    elif not req.is_internal:
        await publish(db, "new_remark", payload, f"New update on {c['complaint_id']}",
                      users=[c["citizen"]["user_id"]], roles=[UserRole.ADMIN.value],
                      complaint_id=c["_id"])
    return complaint_to_response(updated, user)

@router.post("/{complaint_id}/feedback", response_model=ComplaintResponse)
async def submit_feedback(complaint_id: str, req: FeedbackCreate,
                          user=Depends(require_role(UserRole.CITIZEN.value)), db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    if c["status"] != ComplaintStatus.RESOLVED.value:
        raise HTTPException(status_code=400, detail="Feedback can only be submitted for resolved complaints")
    if c.get("feedback"):
        raise HTTPException(status_code=400, detail="Feedback already submitted")
    now = now_utc()
    feedback = {**req.model_dump(), "submitted_at": now}
    set_fields: Dict[str, Any] = {"feedback": feedback, "updated_at": now, **sla_snapshot(c, now)}
    timeline = [timeline_entry(TimelineAction.FEEDBACK_RECEIVED, user, req.comments,
                               rating=req.rating, satisfied=req.satisfied)]
    push: Dict[str, Any] = {}
    if req.satisfied:
        set_fields["status"] = ComplaintStatus.CLOSED.value
        set_fields["closed_at"] = now
        timeline.append(timeline_entry(TimelineAction.CLOSED, user, "Closed after citizen confirmation"))
    else:
        reason = req.comments or "Citizen not satisfied with resolution"
        set_fields["status"] = ComplaintStatus.ESCALATED.value
        entry = next_escalation(c, reason, user, strict=False)
        if entry:
            set_fields["sla.escalation_level"] = entry["level"]
            push["escalation_history"] = entry
        timeline.append(timeline_entry(TimelineAction.ESCALATED, user, reason,
                                       level=entry["level"] if entry else c["sla"]["escalation_level"]))
    push["timeline"] = {"$each": timeline}
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one(
        {"_id": c["_id"]}, {"$set": set_fields, "$push": push}))
    updated = await reload(db, c["_id"])
    logger.info("Feedback on %s: rating=%d satisfied=%s", c["complaint_id"], req.rating, req.satisfied)
    await publish(db, "feedback_received",
                  {**complaint_summary(updated), "rating": req.rating, "satisfied": req.satisfied},
                  f"Feedback on {c['complaint_id']}: {req.rating}/5",
                  users=[c.get("assigned_officer"), c.get("assigned_mitra")],
                  departments=[c["classification"]["department"]],
                  roles=[UserRole.ADMIN.value], complaint_id=c["_id"])
    return complaint_to_response(updated, user)

@router.put("/{complaint_id}/escalate", response_model=ComplaintResponse)
async def escalate_complaint(complaint_id: str, req: EscalateRequest,
                             user=Depends(require_role(UserRole.OFFICER.value, UserRole.ADMIN.value)),
                             db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    if c["status"] == ComplaintStatus.CLOSED.value:
        raise HTTPException(status_code=400, detail="Cannot escalate a closed complaint")
    entry = next_escalation(c, req.reason, user)
    now = now_utc()
    sla_fields = sla_snapshot(c, now)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one(
        {"_id": c["_id"]},
        {"$set": {"status": ComplaintStatus.ESCALATED.value, "sla.escalation_level": entry["level"],
                  "updated_at": now, **sla_fields},
         "$push": {"escalation_history": entry,
                   "timeline": timeline_entry(TimelineAction.ESCALATED, user, req.reason,
                                              level=entry["level"], previous_status=c["status"])}}))
    updated = await reload(db, c["_id"])
    logger.info("Complaint %s escalated to level %d", c["complaint_id"], entry["level"])
    await publish(db, "complaint_escalated", {**complaint_summary(updated), "level": entry["level"]},
                  f"Complaint {c['complaint_id']} escalated to level {entry['level']}",
                  users=[c["citizen"]["user_id"], c.get("assigned_mitra")],
                  departments=[c["classification"]["department"]],
                  roles=[UserRole.ADMIN.value], complaint_id=c["_id"])
    return complaint_to_response(updated, user)

@router.put("/{complaint_id}/reopen", response_model=ComplaintResponse)
async def reopen_complaint(complaint_id: str, req: ReopenRequest,
                           user=Depends(require_role(UserRole.CITIZEN.value, UserRole.ADMIN.value)),
                           db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    if c["status"] not in REOPENABLE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot reopen a {c['status']} complaint")
    now = now_utc()
    sla = new_sla(c["classification"]["department"], c["classification"]["priority"], now,
                  c["sla"].get("escalation_level", 0))
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one(
        {"_id": c["_id"]},
        {"$set": {"status": ComplaintStatus.NEW.value, "sla": sla, "feedback": None,
                  "resolution": None, "resolved_at": None, "closed_at": None, "updated_at": now},
         "$push": {"timeline": timeline_entry(TimelineAction.REOPENED, user, req.reason,
                                              previous_status=c["status"])}}))
    updated = await reload(db, c["_id"])
    logger.info("Complaint %s reopened by %s", c["complaint_id"], user["_id"])
    await publish(db, "complaint_status_updated",
                  {**complaint_summary(updated), "previous_status": c["status"], "remarks": req.reason},
                  f"Complaint {c['complaint_id']} reopened",
                  users=[c["citizen"]["user_id"], c.get("assigned_mitra")],
                  departments=[c["classification"]["department"]],
                  roles=[UserRole.ADMIN.value], complaint_id=c["_id"])
    return complaint_to_response(updated, user)

@router.delete("/{complaint_id}")
async def delete_complaint(complaint_id: str, user=Depends(require_role(UserRole.ADMIN.value)),
                           db=Depends(get_db)):
    c = await load_complaint(db, complaint_id, user)
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.complaints.update_one(
        {"_id": c["_id"]},
        {"$set": {"is_deleted": True, "deleted_at": now_utc(), "deleted_by": str(user["_id"])}}))
    logger.info("Admin %s deleted complaint %s", user["_id"], c["complaint_id"])
    return {"detail": f"Complaint {c['complaint_id']} deleted"}
