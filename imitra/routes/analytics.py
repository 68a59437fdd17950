# Analytics endpoints: dashboards and aggregate reports over complaints

import asyncio
import logging
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from ..config import as_utc, now_utc
from ..db import executor, get_db
from ..models import DashboardResponse, Department, Priority, STAFF_ROLES, UserRole
from ..security import get_current_user, require_role
from ..workflow import DONE_STATUSES, OPEN_STATUSES, check_department_access, scope_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0

def _group(db, match: Dict[str, Any], field: str) -> Dict[str, int]:
    return {r["_id"]: r["count"] for r in db.complaints.aggregate([
        {"$match": match}, {"$group": {"_id": f"${field}", "count": {"$sum": 1}}}])
        if r["_id"] is not None}

def _average(db, match: Dict[str, Any], field: str):
    rows = list(db.complaints.aggregate([
        {"$match": {**match, field: {"$exists": True, "$ne": None}}},
        {"$group": {"_id": None, "avg": {"$avg": f"${field}"}}}]))
    return rows[0]["avg"] if rows and rows[0].get("avg") is not None else None

def dashboard_stats(db, match: Dict[str, Any]) -> DashboardResponse:
    total = db.complaints.count_documents(match)
    pending = db.complaints.count_documents({**match, "status": {"$in": list(OPEN_STATUSES)}})
    resolved = db.complaints.count_documents({**match, "status": {"$in": list(DONE_STATUSES)}})
    breached = db.complaints.count_documents({**match, "sla.status": "breach"})
    avg_hours = _average(db, match, "resolution.resolution_time_hours")
    avg_rating = _average(db, match, "feedback.rating")
    recent = [
        {"id": c["_id"], "complaint_id": c["complaint_id"], "title": c["title"],
         "status": c["status"], "priority": c["classification"]["priority"],
         "created_at": c["created_at"]}
        for c in db.complaints.find(match).sort("created_at", -1).limit(5)]
    return DashboardResponse(
        total_complaints=total, pending_count=pending, resolved_count=resolved,
        resolution_rate=_rate(resolved, total),
        sla_compliance_rate=round(100 - _rate(breached, total), 1) if total else 100.0,
        sla_breached_count=breached,
        avg_resolution_time_hours=round(avg_hours or 0.0, 1),
        avg_rating=round(avg_rating, 2) if avg_rating is not None else None,
        status_distribution=_group(db, match, "status"),
        priority_distribution=_group(db, match, "classification.priority"),
        recent_complaints=recent)

# ---------------------------------------------------------------------------
# ANALYTICS ENDPOINTS
# ---------------------------------------------------------------------------
@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(user=Depends(get_current_user), db=Depends(get_db)):
    match = scope_query(user)
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, dashboard_stats, db, match)

@router.get("/trends")
async def trends(days: int = Query(30, ge=1, le=365), user=Depends(get_current_user), db=Depends(get_db)):
    start = now_utc() - timedelta(days=days)
    match = {**scope_query(user), "created_at": {"$gte": start}}
    def fetch():
        submitted, resolved = Counter(), Counter()
        categories = Counter()
        for c in db.complaints.find(match, {"created_at": 1, "resolved_at": 1, "classification": 1}):
            submitted[as_utc(c["created_at"]).date().isoformat()] += 1
            categories[c["classification"]["category"]] += 1
            if c.get("resolved_at"):
                resolved[as_utc(c["resolved_at"]).date().isoformat()] += 1
        series = []
        for i in range(days, -1, -1):
            day = (now_utc() - timedelta(days=i)).date().isoformat()
            series.append({"date": day, "submitted": submitted[day], "resolved": resolved[day]})
        return {"days": days, "daily": series, "by_category": dict(categories.most_common())}
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/performance")
async def performance(user=Depends(require_role(UserRole.OFFICER.value, UserRole.ADMIN.value)),
                      db=Depends(get_db)):
    match = scope_query(user)
    def fetch():
        departments: Dict[str, Dict[str, Any]] = defaultdict(
            lambda: {"total": 0, "resolved": 0, "breached": 0, "hours": []})
        mitras: Dict[str, Dict[str, Any]] = defaultdict(
            lambda: {"assigned": 0, "resolved": 0, "ratings": []})
        for c in db.complaints.find(match):
            d = departments[c["classification"]["department"]]
            d["total"] += 1
            done = c["status"] in DONE_STATUSES
            d["resolved"] += done
            d["breached"] += c["sla"]["status"] == "breach"
            if c.get("resolution"):
                d["hours"].append(c["resolution"]["resolution_time_hours"])
            if c.get("assigned_mitra"):
                m = mitras[c["assigned_mitra"]]
                m["assigned"] += 1
                m["resolved"] += done
                if c.get("feedback"):
                    m["ratings"].append(c["feedback"]["rating"])
        names = {u["_id"]: u["name"] for u in db.users.find({"_id": {"$in": list(mitras)}}, {"name": 1})}
        return {
            "departments": [
                {"department": name, "total": d["total"], "resolved": d["resolved"],
                 "resolution_rate": _rate(d["resolved"], d["total"]),
                 "sla_compliance_rate": round(100 - _rate(d["breached"], d["total"]), 1),
                 "avg_resolution_time_hours": round(sum(d["hours"]) / len(d["hours"]), 1) if d["hours"] else None}
                for name, d in sorted(departments.items())],
            "mitras": sorted([
                {"mitra_id": mid, "name": names.get(mid), "assigned": m["assigned"],
                 "resolved": m["resolved"], "resolution_rate": _rate(m["resolved"], m["assigned"]),
                 "avg_rating": round(sum(m["ratings"]) / len(m["ratings"]), 2) if m["ratings"] else None}
                for mid, m in mitras.items()], key=lambda m: -m["resolved"]),
        }
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/zones")
async def zones(user=Depends(get_current_user), db=Depends(get_db)):
    match = scope_query(user)
    def fetch():
        stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {"total": 0, "resolved": 0, "critical": 0})
        for c in db.complaints.find(match, {"location.zone": 1, "status": 1, "classification.priority": 1}):
            z = stats[c["location"]["zone"]]
            z["total"] += 1
            z["resolved"] += c["status"] in DONE_STATUSES
            z["critical"] += c["classification"]["priority"] == Priority.CRITICAL.value
        return [{"zone": zone, **s, "resolution_rate": _rate(s["resolved"], s["total"])}
                for zone, s in sorted(stats.items(), key=lambda kv: -kv[1]["total"])]
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/sla")
async def sla_report(user=Depends(get_current_user), db=Depends(get_db)):
    match = scope_query(user)
    open_match = {**match, "status": {"$in": list(OPEN_STATUSES)}}
    def fetch():
        per_dept: Dict[str, Dict[str, int]] = defaultdict(lambda: {"total": 0, "breached": 0})
        for c in db.complaints.find(match, {"classification.department": 1, "sla.status": 1}):
            d = per_dept[c["classification"]["department"]]
            d["total"] += 1
            d["breached"] += c["sla"]["status"] == "breach"
        at_risk = [
            {"id": c["_id"], "complaint_id": c["complaint_id"], "title": c["title"],
             "department": c["classification"]["department"],
             "priority": c["classification"]["priority"],
             "sla_status": c["sla"]["status"], "deadline": c["sla"]["deadline"]}
            for c in db.complaints.find({**open_match, "sla.status": {"$in": ["warning", "breach"]}})
                                  .sort("sla.deadline", 1).limit(20)]
        return {
            "distribution": _group(db, open_match, "sla.status"),
            "departments": [{"department": name, **d,
                             "compliance_rate": round(100 - _rate(d["breached"], d["total"]), 1)}
                            for name, d in sorted(per_dept.items())],
            "at_risk": at_risk,
        }
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/satisfaction")
async def satisfaction(user=Depends(get_current_user), db=Depends(get_db)):
    match = {**scope_query(user), "feedback.rating": {"$exists": True}}
    def fetch():
        ratings = Counter()
        satisfied = 0
        per_dept: Dict[str, list] = defaultdict(list)
        docs = list(db.complaints.find(match, {"feedback": 1, "classification.department": 1}))
        for c in docs:
            ratings[c["feedback"]["rating"]] += 1
            satisfied += bool(c["feedback"].get("satisfied"))
            per_dept[c["classification"]["department"]].append(c["feedback"]["rating"])
        total = len(docs)
        return {
            "total_feedback": total,
            "rating_distribution": {str(r): ratings[r] for r in range(1, 6)},
            "avg_rating": round(sum(r * n for r, n in ratings.items()) / total, 2) if total else None,
            "satisfied_rate": _rate(satisfied, total),
            "departments": [{"department": name, "count": len(rs),
                             "avg_rating": round(sum(rs) / len(rs), 2)}
                            for name, rs in sorted(per_dept.items())],
        }
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/realtime")
async def realtime_stats(user=Depends(require_role(*STAFF_ROLES)), db=Depends(get_db)):
    match = scope_query(user)
    now = now_utc()
    def fetch():
        return {
            "last_24h": db.complaints.count_documents({**match, "created_at": {"$gte": now - timedelta(hours=24)}}),
            "last_hour": db.complaints.count_documents({**match, "created_at": {"$gte": now - timedelta(hours=1)}}),
            "critical_pending": db.complaints.count_documents(
                {**match, "status": {"$in": list(OPEN_STATUSES)},
                 "classification.priority": Priority.CRITICAL.value}),
            "sla_warning": db.complaints.count_documents(
                {**match, "status": {"$in": list(OPEN_STATUSES)}, "sla.status": "warning"}),
            "sla_breach": db.complaints.count_documents(
                {**match, "status": {"$in": list(OPEN_STATUSES)}, "sla.status": "breach"}),
            "timestamp": now,
        }
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@router.get("/department/{department}", response_model=DashboardResponse)
async def department_stats(department: Department, user=Depends(require_role(*STAFF_ROLES)),
                           db=Depends(get_db)):
    check_department_access(user, department.value)
    match = {"classification.department": department.value, "is_deleted": {"$ne": True}}
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, dashboard_stats, db, match)

@router.get("/hotspots")
async def hotspots(min_count: int = Query(3, ge=1, le=1000), precision: int = Query(2, ge=1, le=4),
                   days: int = Query(90, ge=1, le=365),
                   user=Depends(require_role(UserRole.ADMIN.value)), db=Depends(get_db)):
    """Group geotagged complaints into lat/lng grid cells rounded to `precision` decimals."""
    start = now_utc() - timedelta(days=days)
    def fetch():
        cells: Dict[tuple, Dict[str, Any]] = {}
        for c in db.complaints.find({"is_deleted": {"$ne": True}, "created_at": {"$gte": start},
                                     "location.latitude": {"$ne": None},
                                     "location.longitude": {"$ne": None}}).limit(5000):
            loc = c["location"]
            key = (round(loc["latitude"], precision), round(loc["longitude"], precision))
            cell = cells.setdefault(key, {"latitude": key[0], "longitude": key[1], "count": 0,
                                          "categories": Counter(), "critical": 0})
            cell["count"] += 1
            cell["categories"][c["classification"]["category"]] += 1
            cell["critical"] += c["classification"]["priority"] == Priority.CRITICAL.value
        result = []
        for cell in sorted(cells.values(), key=lambda x: -x["count"]):
            if cell["count"] < min_count:
                continue
            cell["top_category"] = cell["categories"].most_common(1)[0][0]
            cell["categories"] = dict(cell["categories"])
            result.append(cell)
        return result
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)
