# Notification inbox and delivery preferences

import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import now_utc
from ..db import executor, get_db
from ..models import NotificationPreferences, NotificationPreferencesUpdate
from ..security import get_current_user, validate_uuid

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

def notification_to_response(n: dict) -> Dict[str, Any]:
    return {"id": n["_id"], "event": n["event"], "message": n["message"],
            "complaint_id": n.get("complaint_id"), "data": n.get("data") or {},
            "read": n.get("read", False), "created_at": n["created_at"]}

@router.get("")
async def list_notifications(unread: bool = False, page: int = Query(1, ge=1, le=10000),
                             limit: int = Query(20, ge=1, le=100),
                             user=Depends(get_current_user), db=Depends(get_db)):
    query: Dict[str, Any] = {"user_id": user["_id"]}
    if unread:
        query["read"] = False
    def fetch():
        total = db.notifications.count_documents(query)
        unread_count = db.notifications.count_documents({"user_id": user["_id"], "read": False})
        docs = list(db.notifications.find(query).sort("created_at", -1)
                    .skip((page - 1) * limit).limit(limit))
        return total, unread_count, docs
    loop = asyncio.get_event_loop()
    total, unread_count, docs = await loop.run_in_executor(executor, fetch)
    return {"total": total, "unread": unread_count, "page": page,
            "data": [notification_to_response(n) for n in docs]}

@router.put("/read-all")
async def mark_all_read(user=Depends(get_current_user), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(executor, lambda: db.notifications.update_many(
        {"user_id": user["_id"], "read": False}, {"$set": {"read": True, "read_at": now_utc()}}))
    return {"updated": result.modified_count}

@router.put("/{notification_id}/read")
async def mark_read(notification_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    notification_id = validate_uuid(notification_id, "notification_id")
    loop = asyncio.get_event_loop()
    result = await loop.run_in_executor(executor, lambda: db.notifications.update_one(
        {"_id": notification_id, "user_id": user["_id"]},
        {"$set": {"read": True, "read_at": now_utc()}}))
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"detail": "Notification marked as read"}

@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(user=Depends(get_current_user)):
    return NotificationPreferences(**(user.get("notification_preferences") or {}))

@router.put("/preferences", response_model=NotificationPreferences)
async def update_preferences(update: NotificationPreferencesUpdate,
                             user=Depends(get_current_user), db=Depends(get_db)):
    current = NotificationPreferences(**(user.get("notification_preferences") or {}))
    prefs = current.model_copy(update=update.model_dump(exclude_none=True))
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, lambda: db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"notification_preferences": prefs.model_dump(), "updated_at": now_utc()}}))
    return prefs
