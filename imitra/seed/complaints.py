# Seed data: Complaints spread over the last few weeks in every workflow state

from datetime import timedelta
from typing import Dict, List

from ..classifier import keyword_classify
from ..config import new_id, now_utc
from ..db import generate_complaint_id
from ..models import TimelineAction
from ..workflow import compute_sla_status, new_sla, timeline_entry

# ---------------------------------------------------------------------------
# Raw complaint definitions
# ---------------------------------------------------------------------------
COMPLAINTS = [
    {"title": "Deep pothole on MG Road near bus stand",
     "description": "A large pothole has formed outside the bus stand and two-wheelers keep skidding. It fills with water when it rains.",
     "citizen": "citizen1", "zone": "central", "address": "MG Road bus stand", "lat": 23.2599, "lng": 77.4126,
     "status": "in_progress", "age_days": 3},
    {"title": "No water supply for three days",
     "description": "Our lane has had no water supply since Monday. The tanker has not come either and families are buying drinking water.",
     "citizen": "citizen2", "zone": "east", "address": "Lake View Colony lane 4", "lat": 23.2612, "lng": 77.4301,
     "status": "assigned", "age_days": 1},
    {"title": "Fire in garbage dump behind market",
     "description": "Emergency: the garbage dump behind the vegetable market is on fire and smoke is entering nearby homes.",
     "citizen": "citizen3", "zone": "north", "address": "Old vegetable market", "lat": 23.2805, "lng": 77.4011,
     "status": "resolved", "age_days": 6},
    {"title": "Streetlight not working for two weeks",
     "description": "The streetlight outside house 22 is not working and the street is completely dark at night, which feels unsafe.",
     "citizen": "citizen4", "zone": "south_west", "address": "Sector 9 Housing Board", "lat": 23.2201, "lng": 77.3905,
     "status": "closed", "age_days": 12, "feedback": {"rating": 5, "satisfied": True, "comments": "Fixed quickly"}},
    {"title": "Sewage overflow on main street",
     "description": "Sewage is overflowing from the manhole near the temple and the smell is unbearable. Children walk through it daily.",
     "citizen": "citizen1", "zone": "central", "address": "Temple Road", "lat": 23.2598, "lng": 77.4129,
     "status": "escalated", "age_days": 9},
    {"title": "Frequent power cut in our colony",
     "description": "There is a power cut every evening for two to three hours. The transformer makes a loud noise before the outage.",
     "citizen": "citizen2", "zone": "east", "address": "Lake View Colony", "lat": 23.2615, "lng": 77.4305,
     "status": "new", "age_days": 0},
    {"title": "Traffic signal stuck on red at crossing",
     "description": "The traffic signal at the Station Road crossing has been stuck on red since morning causing a long jam.",
     "citizen": "citizen3", "zone": "north", "address": "Station Road crossing", "lat": 23.2810, "lng": 77.4020,
     "status": "new", "age_days": 2},
    {"title": "Suggestion for park beautification",
     "description": "Request to add benches and plant more trees in the neighbourhood park so that elders can sit in the evening.",
     "citizen": "citizen4", "zone": "south_west", "address": "Sector 9 park", "lat": None, "lng": None,
     "status": "rejected", "age_days": 15},
    {"title": "Mosquito breeding in stagnant water",
     "description": "Stagnant water near the school has become a mosquito breeding ground and several dengue cases were reported.",
     "citizen": "citizen1", "zone": "central", "address": "Government school, Civil Lines", "lat": 23.2601, "lng": 77.4131,
     "status": "resolved", "age_days": 20},
]

# Path each status takes from "new"
PATHS = {
    "new": [],
    "assigned": ["assigned"],
    "in_progress": ["assigned", "in_progress"],
    "resolved": ["assigned", "in_progress", "resolved"],
    "closed": ["assigned", "in_progress", "resolved", "closed"],
    "escalated": ["assigned", "in_progress", "escalated"],
    "rejected": ["rejected"],
}
ACTIONS = {
    "assigned": TimelineAction.ASSIGNED, "in_progress": TimelineAction.IN_PROGRESS,
    "resolved": TimelineAction.RESOLVED, "closed": TimelineAction.CLOSED,
    "escalated": TimelineAction.ESCALATED, "rejected": TimelineAction.REJECTED,
}

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def _entry(action, user, when, description=None, **metadata):
    entry = timeline_entry(action, user, description, **metadata)
    entry["timestamp"] = when
    return entry

async def import_complaints(db, user_ids: Dict[str, str]) -> List[dict]:
    """Insert seed complaints with consistent timelines, SLA state and feedback."""
    print("\n  Importing complaints...")
    now = now_utc()
    users = {u["_id"]: u for u in db.users.find({})}
    inserted: List[dict] = []
    for i, c in enumerate(COMPLAINTS):
        created = now - timedelta(days=c["age_days"], hours=i)
        citizen = users[user_ids[c["citizen"]]]
        cls = keyword_classify(c["title"], c["description"]).model_dump(mode="json")
        cls["classified_at"] = created
        dept = cls["department"]
        officer = users.get(user_ids.get(f"officer_{dept}"))
        mitra = users.get(user_ids.get(f"mitra_{dept}"))
        actor = officer or users[user_ids["admin"]]

        sla = new_sla(dept, cls["priority"], created)
        timeline = [
            _entry(TimelineAction.SUBMITTED, citizen, created, "Complaint submitted"),
            _entry(TimelineAction.CLASSIFIED, None, created,
                   f"Routed to {dept} as {cls['priority']} priority", method=cls["method"]),
        ]
        doc = {
            "_id": new_id(), "complaint_id": generate_complaint_id(db, created),
            "title": c["title"], "description": c["description"], "language": "en",
            "citizen": {"user_id": citizen["_id"], "name": citizen["name"],
                        "email": citizen["email"], "phone": citizen["phone"]},
            "location": {"address": c["address"], "landmark": None, "zone": c["zone"],
                         "latitude": c["lat"], "longitude": c["lng"]},
            "classification": cls, "status": "new",
            "assigned_officer": None, "assigned_mitra": None, "assigned_at": None,
            "sla": sla, "timeline": timeline, "remarks": [], "attachments": [],
            "proof_attachments": [], "feedback": None, "resolution": None,
            "escalation_history": [], "resolved_at": None, "closed_at": None,
            "view_count": 0, "is_deleted": False, "created_at": created, "updated_at": created,
        }
        when = created
        for step in PATHS[c["status"]]:
            when = min(when + timedelta(hours=max(sla["hours_allocated"] / 4, 1)), now)
            if step == "assigned" and mitra:
                doc.update(assigned_mitra=mitra["_id"], assigned_officer=actor["_id"], assigned_at=when)
            if step == "resolved":
                doc["resolved_at"] = when
                doc["resolution"] = {"description": "Work completed on site", "resolved_by": actor["_id"],
                                     "resolved_at": when,
                                     "resolution_time_hours": round((when - created).total_seconds() / 3600, 2)}
            if step == "closed":
                doc["closed_at"] = when
            if step == "escalated":
                sla["escalation_level"] = 1
                doc["escalation_history"].append({"level": 1, "reason": "No progress reported",
                                                  "escalated_by": actor["_id"], "escalated_at": when})
            timeline.append(_entry(ACTIONS[step], actor, when))
            doc["status"] = step
        if c.get("feedback"):
            doc["feedback"] = {**c["feedback"], "would_recommend": None, "submitted_at": when}
            timeline.append(_entry(TimelineAction.FEEDBACK_RECEIVED, citizen, when,
                                   c["feedback"]["comments"], rating=c["feedback"]["rating"]))
        if doc["status"] in ("new", "assigned", "in_progress", "escalated"):
            sla["status"] = compute_sla_status(sla["deadline"], sla["hours_allocated"], now).value
        doc["updated_at"] = when
        db.complaints.insert_one(doc)
        inserted.append(doc)
        print(f"    [{i+1:2d}/{len(COMPLAINTS)}] {doc['status']:12s} {doc['complaint_id']}  {c['title'][:48]}...")

    print(f"  => {len(COMPLAINTS)} complaints imported")
    return inserted
