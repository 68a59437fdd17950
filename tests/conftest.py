"""
Shared pytest fixtures for the i-Mitra test suite.

The app runs in-process against a mongomock database (tz_aware, like the
real client). OpenAI, SMTP and Twilio are unconfigured, so classification
uses the keyword path and email/SMS run in demo mode.
"""

import os
import tempfile
import uuid

# Must be set before the package reads its configuration
os.environ["JWT_SECRET"] = "test-secret-key-for-imitra-suite-0123456789"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["SLA_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="imitra-uploads-")

import httpx
import mongomock
import pytest
import pytest_asyncio

from imitra import db as db_module
from imitra.app import app
from imitra.config import now_utc
from imitra.db import ensure_indexes
from imitra.security import hash_password, limiter, token_for

PASSWORD = "secret123"


@pytest.fixture
def database():
    """Fresh mongomock database installed as the app's database."""
    limiter.enabled = False
    client = mongomock.MongoClient(tz_aware=True)
    database = client["imitra_test"]
    ensure_indexes(database)
    db_module.db = database
    yield database
    db_module.db = None
    client.close()


@pytest_asyncio.fixture
async def client(database):
    """In-process httpx AsyncClient."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def make_user(database):
    """Insert a user straight into the database and return its document."""
    def _make(role="citizen", department=None, **extra):
        unique = uuid.uuid4().hex[:8]
        now = now_utc()
        doc = {
            "_id": str(uuid.uuid4()), "name": f"Test {role.title()} {unique}",
            "email": f"{role}_{unique}@example.com",
            "phone": "9" + str(uuid.uuid4().int)[:9],
            "hashed_password": hash_password(PASSWORD), "role": role,
            "is_active": True, "phone_verified": False, "preferred_language": "en",
            "notification_preferences": {"email": True, "sms": True, "push": True},
            "last_login": None, "created_at": now, "updated_at": now,
        }
        if role == "citizen":
            doc.update(address="1 Test Street", zone="central")
        if role in ("officer", "mitra"):
            doc.update(department=department or "pwd", employee_id=f"EMP{unique}")
        doc.update(extra)
        database.users.insert_one(doc)
        return doc
    return _make


def auth(user: dict) -> dict:
    """Authorization headers for a user document."""
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def citizen(make_user):
    return make_user("citizen")


@pytest.fixture
def other_citizen(make_user):
    return make_user("citizen")


@pytest.fixture
def officer(make_user):
    return make_user("officer", "pwd")


@pytest.fixture
def mitra(make_user, officer):
    return make_user("mitra", "pwd", assigned_officer=officer["_id"])


@pytest.fixture
def water_mitra(make_user):
    return make_user("mitra", "water_works")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


POTHOLE = {
    "title": "Pothole on main road",
    "description": "A big pothole near the market is damaging two-wheelers every day.",
    "address": "Main road near market",
    "zone": "central",
}


async def file_complaint(client, user, **overrides) -> dict:
    """File a complaint as `user` and return the response body."""
    data = {**POTHOLE, **overrides}
    resp = await client.post("/api/complaints", data=data, headers=auth(user))
    assert resp.status_code == 201, resp.text
    return resp.json()
