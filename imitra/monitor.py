# Periodic SLA sweep: refresh sla.status and send one-shot warning/breach notices

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import SLA_SWEEP_INTERVAL_SECONDS, as_utc, now_utc
from .db import executor
from .messaging import notify_user
from .models import SLAStatus, UserRole
from .realtime import publish
from .workflow import OPEN_STATUSES, compute_sla_status

logger = logging.getLogger(__name__)


def _summary(c: dict) -> Dict[str, Any]:
    return {"id": c["_id"], "complaint_id": c["complaint_id"], "title": c["title"],
            "status": c["status"], "department": c["classification"]["department"],
            "priority": c["classification"]["priority"], "sla_status": c["sla"]["status"],
            "deadline": c["sla"]["deadline"]}

async def sweep_sla(db, now=None) -> Dict[str, int]:
    """Recompute SLA status for every open complaint.

    A complaint gets at most one warning and one breach notice over its
    lifetime; the flags are reset only when a reopen issues a fresh SLA.
    """
    now = now or now_utc()
    def scan():
        warnings: List[dict] = []
        breaches: List[dict] = []
        complaints = list(db.complaints.find(
            {"status": {"$in": list(OPEN_STATUSES)}, "is_deleted": {"$ne": True}}))
        for c in complaints:
            sla = c["sla"]
            status = compute_sla_status(sla["deadline"], sla["hours_allocated"], now).value
            updates: Dict[str, Any] = {}
            if status != sla.get("status"):
                updates["sla.status"] = status
            if status == SLAStatus.WARNING.value and not sla.get("warning_notified"):
                updates["sla.warning_notified"] = True
                warnings.append(c)
            elif status == SLAStatus.BREACH.value and not sla.get("breach_notified"):
                updates["sla.breach_notified"] = True
                updates["sla.warning_notified"] = True
                breaches.append(c)
            if updates:
                db.complaints.update_one({"_id": c["_id"]}, {"$set": updates})
                sla["status"] = status
        return len(complaints), warnings, breaches
    loop = asyncio.get_event_loop()
    checked, warnings, breaches = await loop.run_in_executor(executor, scan)

    for c in warnings:
        await publish(db, "sla_warning", _summary(c),
                      f"SLA deadline approaching for {c['complaint_id']}",
                      users=[c.get("assigned_officer"), c.get("assigned_mitra")],
                      departments=[c["classification"]["department"]], complaint_id=c["_id"])
    for c in breaches:
        await publish(db, "sla_breach", _summary(c), f"SLA breached for {c['complaint_id']}",
                      users=[c.get("assigned_officer"), c.get("assigned_mitra")],
                      departments=[c["classification"]["department"]],
                      roles=[UserRole.ADMIN.value], complaint_id=c["_id"])
        if c.get("assigned_officer"):
            officer = await loop.run_in_executor(
                executor, db.users.find_one, {"_id": c["assigned_officer"]})
            await notify_user(officer, "sla_breach", f"SLA breached: {c['complaint_id']}",
                              complaint_id=c["complaint_id"], title=c["title"],
                              deadline=as_utc(c["sla"]["deadline"]).strftime("%d %b %Y %H:%M UTC"),
                              escalation_level=c["sla"].get("escalation_level", 0))

    if warnings or breaches:
        logger.info("SLA sweep: %d checked, %d warnings, %d breaches",
                    checked, len(warnings), len(breaches))
    return {"checked": checked, "warnings": len(warnings), "breaches": len(breaches)}

async def run_sla_monitor(get_database, interval: Optional[int] = None) -> None:
    """Loop forever running sweep_sla; cancelled on shutdown."""
    interval = interval or SLA_SWEEP_INTERVAL_SECONDS
    while True:
        try:
            database = await get_database()
            if database is not None:
                await sweep_sla(database)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("SLA sweep failed: %s", e)
        await asyncio.sleep(interval)
