"""Complaint lifecycle API tests: filing, access, workflow, feedback and bulk ops."""

from datetime import timedelta

import pytest

from conftest import auth, file_complaint
from imitra.config import now_utc

pytestmark = pytest.mark.asyncio

FIRE = {
    "title": "Fire emergency in market",
    "description": "A shop in the market caught fire, emergency services needed immediately.",
    "address": "Old market", "zone": "north",
}


async def _set_status(client, user, complaint, status, **data):
    return await client.put(f"/api/complaints/{complaint['id']}/status",
                            data={"status": status, **data}, headers=auth(user))


async def _assigned(client, citizen, officer, mitra):
    complaint = await file_complaint(client, citizen)
    resp = await client.put(f"/api/complaints/{complaint['id']}/assign",
                            json={"mitra_id": mitra["_id"]}, headers=auth(officer))
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _resolved(client, citizen, officer, mitra):
    complaint = await _assigned(client, citizen, officer, mitra)
    assert (await _set_status(client, mitra, complaint, "in_progress")).status_code == 200
    resp = await _set_status(client, mitra, complaint, "resolved", remarks="Pothole filled")
    assert resp.status_code == 200, resp.text
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════════
# FILING
# ═══════════════════════════════════════════════════════════════════════════════

class TestCreateComplaint:
    async def test_create_classifies_and_sets_sla(self, client, citizen):
        data = await file_complaint(client, citizen)
        assert data["complaint_id"].startswith("IMC")
        assert len(data["complaint_id"]) == 15
        assert data["status"] == "new"
        assert data["classification"]["department"] == "pwd"
        assert data["classification"]["priority"] == "high"
        assert 0.0 <= data["classification"]["confidence"] <= 1.0
        assert data["sla"]["hours_allocated"] == 24
        assert data["sla"]["status"] == "safe"
        assert [t["action"] for t in data["timeline"]] == ["submitted", "classified"]
        assert data["citizen"]["user_id"] == citizen["_id"]

    async def test_fire_emergency_routes_to_fire_department(self, client, citizen):
        data = await file_complaint(client, citizen, **FIRE)
        assert data["classification"]["department"] == "fire_department"
        assert data["classification"]["priority"] == "critical"
        assert data["sla"]["hours_allocated"] == 1

    async def test_sequential_ids(self, client, citizen):
        first = await file_complaint(client, citizen)
        second = await file_complaint(client, citizen)
        assert int(second["complaint_id"][-6:]) == int(first["complaint_id"][-6:]) + 1

    async def test_short_title_rejected(self, client, citizen):
        resp = await client.post("/api/complaints", headers=auth(citizen), data={
            "title": "Hole", "description": "A hole in the road outside", "address": "Road",
            "zone": "central"})
        assert resp.status_code == 400

    async def test_unknown_zone_rejected(self, client, citizen):
        resp = await client.post("/api/complaints", headers=auth(citizen), data={
            "title": "Pothole on road", "description": "Large pothole outside my house",
            "address": "Road 1", "zone": "moon"})
        assert resp.status_code == 400

    async def test_only_citizens_file(self, client, officer):
        resp = await client.post("/api/complaints", headers=auth(officer), data={
            "title": "Pothole on road", "description": "Large pothole outside my house",
            "address": "Road 1", "zone": "central"})
        assert resp.status_code == 403

    async def test_attachment_saved(self, client, citizen):
        resp = await client.post(
            "/api/complaints", headers=auth(citizen),
            data={"title": "Pothole on main road", "description": "Big pothole shown in the photo",
                  "address": "Main road", "zone": "central"},
            files=[("attachments", ("photo.jpg", b"\xff\xd8\xff fake jpeg", "image/jpeg"))])
        assert resp.status_code == 201, resp.text
        attachments = resp.json()["attachments"]
        assert len(attachments) == 1
        assert attachments[0]["original_name"] == "photo.jpg"
        assert attachments[0]["url"].startswith("/uploads/complaints/")

    async def test_bad_attachment_type(self, client, citizen):
        resp = await client.post(
            "/api/complaints", headers=auth(citizen),
            data={"title": "Pothole on main road", "description": "Big pothole shown in the file",
                  "address": "Main road", "zone": "central"},
            files=[("attachments", ("run.exe", b"MZ", "application/octet-stream"))])
        assert resp.status_code == 400
        assert "Unsupported file type" in resp.json()["detail"]

    async def test_too_many_attachments(self, client, citizen):
        files = [("attachments", (f"p{i}.png", b"png", "image/png")) for i in range(6)]
        resp = await client.post(
            "/api/complaints", headers=auth(citizen),
            data={"title": "Pothole on main road", "description": "Big pothole shown in the photos",
                  "address": "Main road", "zone": "central"}, files=files)
        assert resp.status_code == 400

    async def test_new_complaint_push_creates_no_inbox_entries(self, client, citizen, database):
        await file_complaint(client, citizen)
        assert database.notifications.count_documents({}) == 0


# ═══════════════════════════════════════════════════════════════════════════════
# READ & ACCESS
# ═══════════════════════════════════════════════════════════════════════════════

class TestAccess:
    async def test_owner_can_read(self, client, citizen):
        complaint = await file_complaint(client, citizen)
        resp = await client.get(f"/api/complaints/{complaint['id']}", headers=auth(citizen))
        assert resp.status_code == 200
        assert resp.json()["view_count"] == 1

    async def test_other_citizen_forbidden(self, client, citizen, other_citizen):
        complaint = await file_complaint(client, citizen)
        resp = await client.get(f"/api/complaints/{complaint['id']}", headers=auth(other_citizen))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Access denied"

    async def test_officer_of_other_department_forbidden(self, client, citizen, make_user):
        complaint = await file_complaint(client, citizen)
        outsider = make_user("officer", "sanitation")
        resp = await client.get(f"/api/complaints/{complaint['id']}", headers=auth(outsider))
        assert resp.status_code == 403

    async def test_missing_complaint(self, client, admin):
        resp = await client.get("/api/complaints/3f1c6f0e-7d43-4c4e-9a57-2b0e2a8c1f00", headers=auth(admin))
        assert resp.status_code == 404

    async def test_invalid_id(self, client, admin):
        resp = await client.get("/api/complaints/abc", headers=auth(admin))
        assert resp.status_code == 400

    async def test_list_is_role_scoped(self, client, citizen, other_citizen, officer, mitra):
        mine = await file_complaint(client, citizen)
        await file_complaint(client, other_citizen)
        await file_complaint(client, other_citizen, **FIRE)

        resp = await client.get("/api/complaints", headers=auth(citizen))
        assert resp.json()["total"] == 1
        assert resp.json()["data"][0]["id"] == mine["id"]

        resp = await client.get("/api/complaints", headers=auth(officer))
        assert resp.json()["total"] == 2

        resp = await client.get("/api/complaints", headers=auth(mitra))
        assert resp.json()["total"] == 0

    async def test_list_filters_and_search(self, client, citizen, admin):
        await file_complaint(client, citizen)
        await file_complaint(client, citizen, **FIRE)
        resp = await client.get("/api/complaints", headers=auth(admin), params={"priority": "critical"})
        assert resp.json()["total"] == 1
        resp = await client.get("/api/complaints", headers=auth(admin), params={"search": "MARKET"})
        assert resp.json()["total"] == 2
        resp = await client.get("/api/complaints", headers=auth(admin), params={"search": "(.*"})
        assert resp.status_code == 200
        assert resp.json()["total"] == 0
        resp = await client.get("/api/complaints", headers=auth(admin), params={"zone": "north"})
        assert resp.json()["total"] == 1

    async def test_list_pagination(self, client, citizen):
        for _ in range(3):
            await file_complaint(client, citizen)
        resp = await client.get("/api/complaints", headers=auth(citizen), params={"limit": 2, "page": 2})
        body = resp.json()
        assert body["total"] == 3 and body["pages"] == 2 and body["count"] == 1

    async def test_list_bad_sort(self, client, citizen):
        resp = await client.get("/api/complaints", headers=auth(citizen), params={"sort_by": "hashed_password"})
        assert resp.status_code == 400

    async def test_read_refreshes_sla(self, client, citizen, database):
        complaint = await file_complaint(client, citizen)
        database.complaints.update_one({"_id": complaint["id"]},
                                       {"$set": {"sla.deadline": now_utc() - timedelta(hours=1)}})
        resp = await client.get(f"/api/complaints/{complaint['id']}", headers=auth(citizen))
        assert resp.json()["sla"]["status"] == "breach"
        assert database.complaints.find_one({"_id": complaint["id"]})["sla"]["status"] == "breach"

    async def test_public_stats(self, client, citizen):
        await file_complaint(client, citizen)
        resp = await client.get("/api/complaints/public/stats")
        assert resp.status_code == 200
        assert resp.json()["total_complaints"] == 1
        assert resp.json()["by_department"] == {"pwd": 1}

    async def test_department_listing(self, client, citizen, officer, make_user):
        await file_complaint(client, citizen)
        resp = await client.get("/api/complaints/department/pwd", headers=auth(officer))
        assert resp.json()["total"] == 1
        resp = await client.get("/api/complaints/department/sanitation", headers=auth(officer))
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═══════════════════════════════════════════════════════════════════════════════

class TestWorkflow:
    async def test_new_to_resolved_rejected(self, client, citizen, officer):
        complaint = await file_complaint(client, citizen)
        resp = await _set_status(client, officer, complaint, "resolved")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot change status from new to resolved"

    async def test_citizen_cannot_change_status(self, client, citizen):
        complaint = await file_complaint(client, citizen)
        resp = await _set_status(client, citizen, complaint, "rejected")
        assert resp.status_code == 403

    async def test_assign_moves_to_assigned(self, client, citizen, officer, mitra, database):
        data = await _assigned(client, citizen, officer, mitra)
        assert data["status"] == "assigned"
        assert data["assigned_mitra"] == mitra["_id"]
        assert data["assigned_officer"] == officer["_id"]
        assert data["timeline"][-1]["action"] == "assigned"
        assert database.notifications.count_documents({"user_id": mitra["_id"],
                                                       "event": "complaint_assigned"}) == 1

    async def test_assign_mitra_from_other_department(self, client, citizen, officer, water_mitra):
        complaint = await file_complaint(client, citizen)
        resp = await client.put(f"/api/complaints/{complaint['id']}/assign",
                                json={"mitra_id": water_mitra["_id"]}, headers=auth(officer))
        assert resp.status_code == 400

    async def test_assign_inactive_mitra(self, client, citizen, officer, make_user):
        complaint = await file_complaint(client, citizen)
        inactive = make_user("mitra", "pwd", is_active=False)
        resp = await client.put(f"/api/complaints/{complaint['id']}/assign",
                                json={"mitra_id": inactive["_id"]}, headers=auth(officer))
        assert resp.status_code == 400

    async def test_assign_non_mitra(self, client, citizen, officer):
        complaint = await file_complaint(client, citizen)
        resp = await client.put(f"/api/complaints/{complaint['id']}/assign",
                                json={"mitra_id": officer["_id"]}, headers=auth(officer))
        assert resp.status_code == 400

    async def test_full_resolution(self, client, citizen, officer, mitra, database):
        data = await _resolved(client, citizen, officer, mitra)
        assert data["status"] == "resolved"
        assert data["resolution"]["resolved_by"] == mitra["_id"]
        assert data["resolution"]["description"] == "Pothole filled"
        assert data["resolved_at"] is not None
        assert data["remarks"][-1]["text"] == "Pothole filled"
        actions = [t["action"] for t in data["timeline"]]
        assert actions == ["submitted", "classified", "assigned", "in_progress", "resolved"]
        assert database.notifications.count_documents({"user_id": citizen["_id"],
                                                       "event": "complaint_status_updated"}) == 2

    async def test_resolve_with_proof(self, client, citizen, officer, mitra):
        complaint = await _assigned(client, citizen, officer, mitra)
        await _set_status(client, mitra, complaint, "in_progress")
        resp = await client.put(f"/api/complaints/{complaint['id']}/status", headers=auth(mitra),
                                data={"status": "resolved"},
                                files=[("proof", ("after.png", b"png-bytes", "image/png"))])
        assert resp.status_code == 200, resp.text
        assert resp.json()["proof_attachments"][0]["url"].startswith("/uploads/proof/")

    async def test_unassigned_mitra_forbidden(self, client, citizen, officer, mitra, make_user):
        complaint = await _assigned(client, citizen, officer, mitra)
        other = make_user("mitra", "pwd")
        resp = await _set_status(client, other, complaint, "in_progress")
        assert resp.status_code == 403

    async def test_status_escalation_raises_level(self, client, citizen, officer, mitra):
        complaint = await _assigned(client, citizen, officer, mitra)
        await _set_status(client, mitra, complaint, "in_progress")
        resp = await _set_status(client, officer, complaint, "escalated", remarks="Stuck")
        assert resp.status_code == 200
        assert resp.json()["sla"]["escalation_level"] == 1
        assert resp.json()["escalation_history"][0]["reason"] == "Stuck"

    async def test_rejected_can_be_reopened_to_new(self, client, citizen, officer):
        complaint = await file_complaint(client, citizen)
        assert (await _set_status(client, officer, complaint, "rejected")).status_code == 200
        resp = await client.put(f"/api/complaints/{complaint['id']}/reopen", headers=auth(citizen),
                                json={"reason": "Still not fixed"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "new"
        assert resp.json()["timeline"][-1]["action"] == "reopened"

    async def test_reopen_open_complaint_rejected(self, client, citizen):
        complaint = await file_complaint(client, citizen)
        resp = await client.put(f"/api/complaints/{complaint['id']}/reopen", headers=auth(citizen),
                                json={"reason": "Why not"})
        assert resp.status_code == 400

    async def test_late_resolution_records_breach(self, client, citizen, officer, mitra, admin, database):
        complaint = await _assigned(client, citizen, officer, mitra)
        database.complaints.update_one({"_id": complaint["id"]},
                                       {"$set": {"sla.deadline": now_utc() - timedelta(hours=1)}})
        assert (await _set_status(client, mitra, complaint, "in_progress")).status_code == 200
        resp = await _set_status(client, mitra, complaint, "resolved", remarks="Done late")
        assert resp.status_code == 200
        assert resp.json()["sla"]["status"] == "breach"
        assert database.complaints.find_one({"_id": complaint["id"]})["sla"]["status"] == "breach"

        resp = await client.get("/api/analytics/dashboard", headers=auth(admin))
        assert resp.json()["sla_breached_count"] == 1
        assert resp.json()["sla_compliance_rate"] == 0.0

    async def test_remark_saves_current_sla_status(self, client, citizen, database):
        complaint = await file_complaint(client, citizen)
        database.complaints.update_one({"_id": complaint["id"]},
                                       {"$set": {"sla.deadline": now_utc() - timedelta(hours=1)}})
        resp = await client.post(f"/api/complaints/{complaint['id']}/remarks", headers=auth(citizen),
                                 json={"text": "Any update?"})
        assert resp.status_code == 201
        assert database.complaints.find_one({"_id": complaint["id"]})["sla"]["status"] == "breach"


# ═══════════════════════════════════════════════════════════════════════════════
# REMARKS, FEEDBACK, ESCALATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestRemarks:
    async def test_internal_remarks_hidden_from_citizen(self, client, citizen, officer):
        complaint = await file_complaint(client, citizen)
        url = f"/api/complaints/{complaint['id']}/remarks"
        resp = await client.post(url, headers=auth(officer), json={"text": "Crew busy", "is_internal": True})
        assert resp.status_code == 201
        resp = await client.post(url, headers=auth(officer), json={"text": "Team scheduled"})
        assert resp.status_code == 201

        citizen_view = (await client.get(f"/api/complaints/{complaint['id']}", headers=auth(citizen))).json()
        assert [r["text"] for r in citizen_view["remarks"]] == ["Team scheduled"]
        officer_view = (await client.get(f"/api/complaints/{complaint['id']}", headers=auth(officer))).json()
        assert len(officer_view["remarks"]) == 2

    async def test_citizen_cannot_post_internal(self, client, citizen):
        complaint = await file_complaint(client, citizen)
        resp = await client.post(f"/api/complaints/{complaint['id']}/remarks", headers=auth(citizen),
                                 json={"text": "Hello", "is_internal": True})
        assert resp.status_code == 400

    async def test_public_staff_remark_notifies_citizen(self, client, citizen, officer, database):
        complaint = await file_complaint(client, citizen)
        await client.post(f"/api/complaints/{complaint['id']}/remarks", headers=auth(officer),
                          json={"text": "We are on it"})
        assert database.notifications.count_documents({"user_id": citizen["_id"], "event": "new_remark"}) == 1


class TestFeedback:
    async def test_satisfied_closes(self, client, citizen, officer, mitra):
        complaint = await _resolved(client, citizen, officer, mitra)
        resp = await client.post(f"/api/complaints/{complaint['id']}/feedback", headers=auth(citizen),
                                 json={"rating": 5, "satisfied": True, "comments": "Great"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "closed"
        assert data["closed_at"] is not None
        assert data["feedback"]["rating"] == 5

    async def test_unsatisfied_escalates(self, client, citizen, officer, mitra):
        complaint = await _resolved(client, citizen, officer, mitra)
        resp = await client.post(f"/api/complaints/{complaint['id']}/feedback", headers=auth(citizen),
                                 json={"rating": 1, "satisfied": False, "comments": "Still broken"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "escalated"
        assert data["sla"]["escalation_level"] == 1
        assert data["escalation_history"][0]["reason"] == "Still broken"

    async def test_feedback_only_once(self, client, citizen, officer, mitra):
        complaint = await _resolved(client, citizen, officer, mitra)
        url = f"/api/complaints/{complaint['id']}/feedback"
        await client.post(url, headers=auth(citizen), json={"rating": 1, "satisfied": False})
        # Escalated and back to resolved, feedback already recorded
        await _set_status(client, officer, complaint, "resolved")
        resp = await client.post(url, headers=auth(citizen), json={"rating": 4, "satisfied": True})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Feedback already submitted"

    async def test_feedback_requires_resolved(self, client, citizen):
        complaint = await file_complaint(client, citizen)
        resp = await client.post(f"/api/complaints/{complaint['id']}/feedback", headers=auth(citizen),
                                 json={"rating": 4, "satisfied": True})
        assert resp.status_code == 400

    async def test_rating_range(self, client, citizen, officer, mitra):
        complaint = await _resolved(client, citizen, officer, mitra)
        resp = await client.post(f"/api/complaints/{complaint['id']}/feedback", headers=auth(citizen),
                                 json={"rating": 6, "satisfied": True})
        assert resp.status_code == 422

    async def test_other_citizen_cannot_rate(self, client, citizen, other_citizen, officer, mitra):
        complaint = await _resolved(client, citizen, officer, mitra)
        resp = await client.post(f"/api/complaints/{complaint['id']}/feedback",
                                 headers=auth(other_citizen), json={"rating": 5, "satisfied": True})
        assert resp.status_code == 403


class TestEscalate:
    async def test_escalate_up_to_max(self, client, citizen, officer):
        complaint = await file_complaint(client, citizen)
        url = f"/api/complaints/{complaint['id']}/escalate"
        for level in (1, 2, 3):
            resp = await client.put(url, headers=auth(officer), json={"reason": "No response"})
            assert resp.status_code == 200
            assert resp.json()["sla"]["escalation_level"] == level
        resp = await client.put(url, headers=auth(officer), json={"reason": "No response"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Maximum escalation level reached"

    async def test_escalate_closed_rejected(self, client, citizen, officer, mitra):
        complaint = await _resolved(client, citizen, officer, mitra)
        await _set_status(client, officer, complaint, "closed")
        resp = await client.put(f"/api/complaints/{complaint['id']}/escalate", headers=auth(officer),
                                json={"reason": "Too late"})
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════════
# ADMIN OPERATIONS
# ═══════════════════════════════════════════════════════════════════════════════

class TestAdminOperations:
    async def test_soft_delete(self, client, citizen, admin, database):
        complaint = await file_complaint(client, citizen)
        resp = await client.delete(f"/api/complaints/{complaint['id']}", headers=auth(admin))
        assert resp.status_code == 200
        assert database.complaints.find_one({"_id": complaint["id"]})["is_deleted"] is True
        resp = await client.get(f"/api/complaints/{complaint['id']}", headers=auth(citizen))
        assert resp.status_code == 404
        resp = await client.get("/api/complaints", headers=auth(admin))
        assert resp.json()["total"] == 0

    async def test_bulk_assign(self, client, citizen, admin, mitra):
        pwd_complaint = await file_complaint(client, citizen)
        fire_complaint = await file_complaint(client, citizen, **FIRE)
        resp = await client.post("/api/complaints/bulk/assign", headers=auth(admin), json={
            "complaint_ids": [pwd_complaint["id"], fire_complaint["id"], "bogus"],
            "mitra_id": mitra["_id"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["succeeded"] == [pwd_complaint["id"]]
        assert set(body["failed"]) == {fire_complaint["id"], "bogus"}

    async def test_bulk_status(self, client, citizen, admin):
        a = await file_complaint(client, citizen)
        b = await file_complaint(client, citizen)
        await _set_status(client, admin, b, "rejected")
        resp = await client.post("/api/complaints/bulk/status", headers=auth(admin), json={
            "complaint_ids": [a["id"], b["id"]], "status": "rejected", "remarks": "Duplicate"})
        body = resp.json()
        assert body["succeeded"] == [a["id"]]
        assert "Cannot change status" in body["failed"][b["id"]]

    async def test_bulk_requires_admin(self, client, officer):
        resp = await client.post("/api/complaints/bulk/status", headers=auth(officer), json={
            "complaint_ids": ["x"], "status": "rejected"})
        assert resp.status_code == 403

    async def test_export_csv(self, client, citizen, officer):
        complaint = await file_complaint(client, citizen)
        resp = await client.get("/api/complaints/export/csv", headers=auth(officer))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("complaint_id,title,status")
        assert complaint["complaint_id"] in lines[1]

    async def test_export_json_and_bad_format(self, client, citizen, admin):
        await file_complaint(client, citizen)
        resp = await client.get("/api/complaints/export/json", headers=auth(admin))
        assert len(resp.json()) == 1
        resp = await client.get("/api/complaints/export/xml", headers=auth(admin))
        assert resp.status_code == 400
