# MongoDB access: client lifecycle, thread-pool executor and id generation

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Optional

from pymongo import MongoClient, ReturnDocument, ASCENDING, DESCENDING

from .config import MONGODB_URL, MONGODB_DB, now_utc

logger = logging.getLogger(__name__)

db_client: Optional[MongoClient] = None
db = None
executor = ThreadPoolExecutor(max_workers=10)

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
def ensure_indexes(database) -> None:
    database.users.create_index([("email", ASCENDING)], unique=True)
    database.users.create_index([("employee_id", ASCENDING)], unique=True, sparse=True)
    database.users.create_index([("role", ASCENDING), ("department", ASCENDING)])
    database.complaints.create_index([("complaint_id", ASCENDING)], unique=True)
    database.complaints.create_index([("citizen.user_id", ASCENDING), ("created_at", DESCENDING)])
    database.complaints.create_index([("status", ASCENDING), ("classification.department", ASCENDING)])
    database.complaints.create_index([("classification.priority", ASCENDING), ("created_at", DESCENDING)])
    database.complaints.create_index([("location.zone", ASCENDING), ("status", ASCENDING)])
    database.complaints.create_index([("sla.status", ASCENDING), ("sla.deadline", ASCENDING)])
    database.complaints.create_index([("assigned_mitra", ASCENDING), ("status", ASCENDING)])
    database.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

async def startup_db():
    global db_client, db
    if db is None:
        db_client = MongoClient(MONGODB_URL, tz_aware=True)
        db = db_client[MONGODB_DB]
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, ensure_indexes, db)
    logger.info("Database initialized (%s)", MONGODB_DB)

def shutdown_db():
    global db_client, db
    if db_client:
        db_client.close()
        db_client = None
        db = None

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_db():
    return db

# ---------------------------------------------------------------------------
# Complaint ids
# ---------------------------------------------------------------------------
def generate_complaint_id(database, when: Optional[datetime] = None) -> str:
    """IMC + year + month + a per-month sequence, e.g. IMC202410000042."""
    when = when or now_utc()
    period = f"{when.year}{when.month:02d}"
    counter = database.counters.find_one_and_update(
        {"_id": f"complaint_{period}"}, {"$inc": {"seq": 1}},
        upsert=True, return_document=ReturnDocument.AFTER)
    return f"IMC{period}{counter['seq']:06d}"
