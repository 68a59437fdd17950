"""Analytics endpoint tests."""

import pytest

from conftest import auth, file_complaint

pytestmark = pytest.mark.asyncio

FIRE = {
    "title": "Fire emergency in market",
    "description": "A shop in the market caught fire, emergency services needed immediately.",
    "address": "Old market", "zone": "north", "latitude": "23.2805", "longitude": "77.4011",
}


async def _close_with_rating(client, complaint, officer, mitra, citizen, rating, satisfied=True):
    cid = complaint["id"]
    await client.put(f"/api/complaints/{cid}/assign", json={"mitra_id": mitra["_id"]}, headers=auth(officer))
    await client.put(f"/api/complaints/{cid}/status", data={"status": "in_progress"}, headers=auth(mitra))
    await client.put(f"/api/complaints/{cid}/status", data={"status": "resolved"}, headers=auth(mitra))
    resp = await client.post(f"/api/complaints/{cid}/feedback", headers=auth(citizen),
                             json={"rating": rating, "satisfied": satisfied})
    assert resp.status_code == 200, resp.text


class TestDashboard:
    async def test_dashboard_counts(self, client, citizen, officer, mitra, admin):
        first = await file_complaint(client, citizen)
        await file_complaint(client, citizen)
        await file_complaint(client, citizen, **FIRE)
        await _close_with_rating(client, first, officer, mitra, citizen, 4)

        resp = await client.get("/api/analytics/dashboard", headers=auth(admin))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_complaints"] == 3
        assert data["resolved_count"] == 1
        assert data["pending_count"] == 2
        assert data["resolution_rate"] == pytest.approx(33.3)
        assert data["avg_rating"] == 4
        assert data["status_distribution"] == {"closed": 1, "new": 2}
        assert data["priority_distribution"] == {"high": 2, "critical": 1}
        assert len(data["recent_complaints"]) == 3

    async def test_dashboard_scoped_for_citizen(self, client, citizen, other_citizen):
        await file_complaint(client, citizen)
        await file_complaint(client, other_citizen)
        resp = await client.get("/api/analytics/dashboard", headers=auth(citizen))
        assert resp.json()["total_complaints"] == 1

    async def test_dashboard_requires_auth(self, client):
        resp = await client.get("/api/analytics/dashboard")
        assert resp.status_code == 401


class TestReports:
    async def test_trends(self, client, citizen, admin):
        await file_complaint(client, citizen)
        resp = await client.get("/api/analytics/trends", headers=auth(admin), params={"days": 7})
        data = resp.json()
        assert len(data["daily"]) == 8
        assert data["daily"][-1]["submitted"] == 1
        assert data["by_category"] == {"road_infrastructure": 1}

    async def test_performance(self, client, citizen, officer, mitra, admin):
        complaint = await file_complaint(client, citizen)
        await _close_with_rating(client, complaint, officer, mitra, citizen, 5)
        resp = await client.get("/api/analytics/performance", headers=auth(admin))
        data = resp.json()
        assert data["departments"][0]["department"] == "pwd"
        assert data["departments"][0]["resolution_rate"] == 100.0
        assert data["mitras"][0]["mitra_id"] == mitra["_id"]
        assert data["mitras"][0]["avg_rating"] == 5

    async def test_performance_forbidden_for_citizen(self, client, citizen):
        resp = await client.get("/api/analytics/performance", headers=auth(citizen))
        assert resp.status_code == 403

    async def test_zones(self, client, citizen, admin):
        await file_complaint(client, citizen)
        await file_complaint(client, citizen, **FIRE)
        resp = await client.get("/api/analytics/zones", headers=auth(admin))
        zones = {z["zone"]: z for z in resp.json()}
        assert zones["north"]["critical"] == 1
        assert zones["central"]["total"] == 1

    async def test_sla_report(self, client, citizen, admin, database):
        complaint = await file_complaint(client, citizen)
        database.complaints.update_one({"_id": complaint["id"]}, {"$set": {"sla.status": "breach"}})
        resp = await client.get("/api/analytics/sla", headers=auth(admin))
        data = resp.json()
        assert data["distribution"] == {"breach": 1}
        assert data["at_risk"][0]["complaint_id"] == complaint["complaint_id"]
        assert data["departments"][0]["compliance_rate"] == 0.0

    async def test_satisfaction(self, client, citizen, officer, mitra, admin):
        a = await file_complaint(client, citizen)
        b = await file_complaint(client, citizen)
        await _close_with_rating(client, a, officer, mitra, citizen, 5)
        await _close_with_rating(client, b, officer, mitra, citizen, 2, satisfied=False)
        data = (await client.get("/api/analytics/satisfaction", headers=auth(admin))).json()
        assert data["total_feedback"] == 2
        assert data["rating_distribution"]["5"] == 1
        assert data["rating_distribution"]["2"] == 1
        assert data["satisfied_rate"] == 50.0
        assert data["avg_rating"] == 3.5

    async def test_realtime(self, client, citizen, officer):
        await file_complaint(client, citizen)
        data = (await client.get("/api/analytics/realtime", headers=auth(officer))).json()
        assert data["last_24h"] == 1
        assert data["last_hour"] == 1
        assert data["critical_pending"] == 0

    async def test_department_access(self, client, citizen, officer, make_user):
        await file_complaint(client, citizen)
        resp = await client.get("/api/analytics/department/pwd", headers=auth(officer))
        assert resp.json()["total_complaints"] == 1
        outsider = make_user("officer", "sanitation")
        resp = await client.get("/api/analytics/department/pwd", headers=auth(outsider))
        assert resp.status_code == 403

    async def test_hotspots(self, client, citizen, admin, officer):
        for _ in range(3):
            await file_complaint(client, citizen, **FIRE)
        await file_complaint(client, citizen)
        resp = await client.get("/api/analytics/hotspots", headers=auth(admin), params={"min_count": 2})
        cells = resp.json()
        assert len(cells) == 1
        assert cells[0]["count"] == 3
        assert cells[0]["top_category"] == "fire_safety"
        resp = await client.get("/api/analytics/hotspots", headers=auth(officer))
        assert resp.status_code == 403
