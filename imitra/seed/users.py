# Seed data: Users (citizens, one officer and one mitra per department, admin)

from typing import Dict

from ..config import new_id, now_utc
from ..security import hash_password

# ---------------------------------------------------------------------------
# Raw user definitions
# ---------------------------------------------------------------------------
CITIZENS = [
    {"key": "citizen1", "name": "Rajesh Kumar", "email": "rajesh.kumar@email.com",
     "phone": "9876543210", "address": "12 MG Road, Civil Lines", "zone": "central"},
    {"key": "citizen2", "name": "Anita Sharma", "email": "anita.sharma@email.com",
     "phone": "9876543211", "address": "44 Lake View Colony", "zone": "east"},
    {"key": "citizen3", "name": "Mohammed Irfan", "email": "irfan.m@email.com",
     "phone": "9876543212", "address": "7 Station Road", "zone": "north"},
    {"key": "citizen4", "name": "Kavita Devi", "email": "kavita.devi@email.com",
     "phone": "9876543213", "address": "Sector 9, Housing Board", "zone": "south_west"},
]

# (department, officer name, mitra name)
STAFF = [
    ("pwd", "Er. Suresh Patel", "Ramesh Yadav"),
    ("water_works", "Er. Meena Iyer", "Gopal Singh"),
    ("electricity", "Er. Arvind Rao", "Sunil Verma"),
    ("sanitation", "Smt. Rekha Nair", "Pappu Kumar"),
    ("traffic_police", "Insp. Vikram Chauhan", "Harish Joshi"),
    ("health_department", "Dr. Farah Khan", "Lata Mishra"),
    ("fire_department", "Stn. Officer Raj Malhotra", "Deepak Thakur"),
    ("street_lighting", "Er. Prakash Gupta", "Manoj Tiwari"),
    ("municipal_corporation", "Sri Alok Saxena", "Vinod Pal"),
]

ADMIN = {"key": "admin", "name": "System Administrator", "email": "admin@imitra.gov.in",
         "phone": "9000000001"}

PASSWORDS = {"citizen": "citizen123", "officer": "officer123", "mitra": "mitra123", "admin": "admin123"}

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def _user_doc(role: str, name: str, email: str, phone: str, **extra) -> dict:
    now = now_utc()
    return {
        "_id": new_id(), "name": name, "email": email, "phone": phone,
        "hashed_password": hash_password(PASSWORDS[role]), "role": role,
        "is_active": True, "phone_verified": True, "preferred_language": "en",
        "notification_preferences": {"email": True, "sms": True, "push": True},
        "last_login": None, "created_at": now, "updated_at": now, **extra,
    }

async def import_users(db) -> Dict[str, str]:
    """Insert seed users. Returns {key: _id}, keys like citizen1, officer_pwd, mitra_pwd."""
    print("\n  Importing seed users...")
    user_ids: Dict[str, str] = {}
    for c in CITIZENS:
        doc = _user_doc("citizen", c["name"], c["email"], c["phone"],
                        address=c["address"], zone=c["zone"])
        db.users.insert_one(doc)
        user_ids[c["key"]] = doc["_id"]
        print(f"    {c['key']:28s}  (citizen)")
    for i, (dept, officer_name, mitra_name) in enumerate(STAFF, start=1):
        officer = _user_doc("officer", officer_name, f"officer.{dept}@imitra.gov.in",
                            f"98100{i:05d}", department=dept, employee_id=f"OFF{i:03d}")
        db.users.insert_one(officer)
        mitra = _user_doc("mitra", mitra_name, f"mitra.{dept}@imitra.gov.in",
                          f"98200{i:05d}", department=dept, employee_id=f"MIT{i:03d}",
                          assigned_officer=officer["_id"])
        db.users.insert_one(mitra)
        user_ids[f"officer_{dept}"] = officer["_id"]
        user_ids[f"mitra_{dept}"] = mitra["_id"]
        print(f"    {'officer_' + dept:28s}  (officer)")
        print(f"    {'mitra_' + dept:28s}  (mitra)")
    admin = _user_doc("admin", ADMIN["name"], ADMIN["email"], ADMIN["phone"])
    db.users.insert_one(admin)
    user_ids["admin"] = admin["_id"]
    print(f"    {'admin':28s}  (admin)")
    print(f"  => {len(user_ids)} users created")
    return user_ids
