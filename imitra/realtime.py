# Real-time push: WebSocket rooms per role, department and user

import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from .config import new_id, now_utc
from .db import get_db, executor
from .models import UserRole
from .security import TOKEN_COOKIE, decode_token

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------
class ConnectionManager:
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    def join(self, websocket: WebSocket, rooms: Iterable[str]) -> None:
        for room in rooms:
            self.rooms.setdefault(room, set()).add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        for room in list(self.rooms):
            members = self.rooms[room]
            members.discard(websocket)
            if not members:
                del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit(self, rooms: Iterable[str], event: str, data: dict) -> int:
        """Send one frame to every socket in the given rooms, once per socket."""
        message = json.dumps({"event": event, "data": jsonable_encoder(data),
                              "timestamp": now_utc().isoformat()})
        targets: Set[WebSocket] = set()
        for room in rooms:
            targets.update(self.rooms.get(room, ()))
        sent = 0
        for websocket in targets:
            try:
                await websocket.send_text(message)
                sent += 1
            except Exception as e:
                logger.warning("Dropping websocket after send failure: %s", e)
                self.disconnect(websocket)
        return sent

manager = ConnectionManager()

def rooms_for(user: dict) -> List[str]:
    rooms = [f"role_{user['role']}", f"user_{user['_id']}"]
    if user.get("department") and user["role"] in (UserRole.OFFICER.value, UserRole.MITRA.value):
        rooms.append(f"dept_{user['department']}")
    return rooms

# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------
async def publish(db, event: str, data: dict, message: str, *,
                  users: Iterable[Optional[str]] = (), departments: Iterable[Optional[str]] = (),
                  roles: Iterable[str] = (), complaint_id: Optional[str] = None) -> None:
    """Store inbox entries for target users, then fan out to rooms.

    Fire-and-forget: nothing here raises into the caller.
    """
    user_ids = list(dict.fromkeys(u for u in users if u))
    try:
        def store():
            if not user_ids:
                return set()
            now = now_utc()
            db.notifications.insert_many([
                {"_id": new_id(), "user_id": uid, "event": event, "message": message,
                 "complaint_id": complaint_id, "data": jsonable_encoder(data),
                 "read": False, "created_at": now}
                for uid in user_ids])
            muted = db.users.find({"_id": {"$in": user_ids},
                                   "notification_preferences.push": False}, {"_id": 1})
            return {u["_id"] for u in muted}
        loop = asyncio.get_event_loop()
        muted = await loop.run_in_executor(executor, store)
    except Exception as e:
        logger.error("Storing %s notifications failed: %s", event, e)
        muted = set()
    rooms = [f"user_{uid}" for uid in user_ids if uid not in muted]
    rooms += [f"dept_{d}" for d in departments if d]
    rooms += [f"role_{r}" for r in roles]
    try:
        await manager.emit(rooms, event, data)
    except Exception as e:
        logger.error("Broadcasting %s failed: %s", event, e)

# ---------------------------------------------------------------------------
# Socket endpoint
# ---------------------------------------------------------------------------
def socket_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    auth = websocket.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return websocket.cookies.get(TOKEN_COOKIE)

async def authenticate_socket(websocket: WebSocket, db) -> Optional[dict]:
    token = socket_token(websocket)
    if not token:
        return None
    try:
        user_id = decode_token(token)
    except HTTPException:
        return None
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if not user or not user.get("is_active", True):
        return None
    return user

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, db=Depends(get_db)):
    user = await authenticate_socket(websocket, db)
    if user is None:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    rooms = rooms_for(user)
    manager.join(websocket, rooms)
    logger.info("Socket connected: %s (%s)", user["_id"], user["role"])
    await websocket.send_text(json.dumps({
        "event": "connected", "data": {"user_id": user["_id"], "rooms": rooms},
        "timestamp": now_utc().isoformat()}))
    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                frame = text.strip().lower()
            if frame == "ping" or (isinstance(frame, dict) and frame.get("event") == "ping"):
                await websocket.send_text(json.dumps({"event": "pong", "data": {},
                                                      "timestamp": now_utc().isoformat()}))
    except WebSocketDisconnect:
        logger.info("Socket disconnected: %s", user["_id"])
    finally:
        manager.disconnect(websocket)
