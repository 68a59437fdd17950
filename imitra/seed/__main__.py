# i-Mitra seed data importer
# Usage:  python -m imitra.seed        (drops and repopulates the configured database)

import asyncio

from pymongo import MongoClient

from ..config import MONGODB_DB, MONGODB_URL
from ..db import ensure_indexes
from .complaints import COMPLAINTS, import_complaints
from .users import CITIZENS, PASSWORDS, STAFF, import_users

COLLECTIONS = ["users", "complaints", "notifications", "counters"]

async def seed(db) -> dict:
    for name in COLLECTIONS:
        db[name].drop()
    ensure_indexes(db)
    user_ids = await import_users(db)
    complaints = await import_complaints(db, user_ids)
    return {"users": len(user_ids), "complaints": len(complaints)}

async def main():
    print("=" * 64)
    print("  i-Mitra seed importer")
    print("=" * 64)
    client = MongoClient(MONGODB_URL, tz_aware=True)
    try:
        counts = await seed(client[MONGODB_DB])
    finally:
        client.close()
    print("\n" + "=" * 64)
    print("  IMPORT COMPLETE")
    print("=" * 64)
    print(f"  Users:       {counts['users']}")
    print(f"  Complaints:  {counts['complaints']}")
    print()
    print("  Test credentials:")
    print(f"    {CITIZENS[0]['email']:36s} / {PASSWORDS['citizen']}")
    print(f"    officer.{STAFF[0][0]}@imitra.gov.in{'':10s} / {PASSWORDS['officer']}")
    print(f"    mitra.{STAFF[0][0]}@imitra.gov.in{'':12s} / {PASSWORDS['mitra']}")
    print(f"    {'admin@imitra.gov.in':36s} / {PASSWORDS['admin']}")
    print(f"  ({len(COMPLAINTS)} complaints across {len(STAFF)} departments)")

if __name__ == "__main__":
    asyncio.run(main())
