"""HTTP tests for the leave API.

Covers:
  - Health check, authentication failures, admin-only endpoints
  - RFC 7807 problem responses (validation, conflict, insufficient balance)
  - Apply → approve → cancel through the API with balance reads
  - Leave type CRUD and yearly balance initialization endpoints
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import select

from clinic.common.constants import LeaveStatus
from clinic.leave.models import LeaveRequest
from tests.conftest import _seed_balance, _seed_user, auth_headers


BASE = "/api/v1"


def _apply_body(leave_type_id, staff_id, start="2025-09-10", end="2025-09-15") -> dict:
    return {
        "leave_type_id": str(leave_type_id),
        "staff_id": str(staff_id),
        "start_date": start,
        "end_date": end,
        "reason": "Family trip",
    }


# ═════════════════════════════════════════════════════════════════════
# System & auth
# ═════════════════════════════════════════════════════════════════════


class TestSystem:

    async def test_health(self, client):
        resp = await client.get(f"{BASE}/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, client):
        resp = await client.get(f"{BASE}/leave-types")
        assert resp.status_code == 401
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("/unauthorized")
        assert resp.headers["www-authenticate"] == "Bearer"

    async def test_expired_token(self, client, staff_user):
        resp = await client.get(
            f"{BASE}/leave-types", headers=auth_headers(staff_user["id"], expired=True),
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Token has expired."

    async def test_inactive_user_rejected(self, client, db):
        user = await _seed_user(db, is_active=False)
        resp = await client.get(f"{BASE}/leave-types", headers=auth_headers(user["id"]))
        assert resp.status_code == 401


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════


class TestLeaveTypeEndpoints:

    async def test_admin_creates_and_lists(self, client, admin_user):
        headers = auth_headers(admin_user["id"])
        resp = await client.post(
            f"{BASE}/leave-types",
            json={"name": "Sick Leave", "default_days": 10, "color_tag": "#e74c3c"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert Decimal(str(resp.json()["default_days"])) == Decimal("10")

        listed = await client.get(f"{BASE}/leave-types", headers=headers)
        assert [t["name"] for t in listed.json()] == ["Sick Leave"]

    async def test_duplicate_name_is_conflict(self, client, admin_user, annual_leave):
        resp = await client.post(
            f"{BASE}/leave-types",
            json={"name": "ANNUAL LEAVE"},
            headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 409
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("/conflict")

    async def test_staff_cannot_create(self, client, staff_user):
        resp = await client.post(
            f"{BASE}/leave-types",
            json={"name": "Free Days"},
            headers=auth_headers(staff_user["id"]),
        )
        assert resp.status_code == 403
        assert resp.json()["type"].endswith("/forbidden")

    async def test_invalid_color_is_validation_problem(self, client, admin_user):
        resp = await client.post(
            f"{BASE}/leave-types",
            json={"name": "Study Leave", "color_tag": "blue"},
            headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 422
        assert "color_tag" in resp.json()["errors"]

    async def test_deactivate_then_delete(self, client, admin_user, annual_leave):
        headers = auth_headers(admin_user["id"])
        resp = await client.patch(
            f"{BASE}/leave-types/{annual_leave['id']}/status",
            json={"is_active": False},
            headers=headers,
        )
        assert resp.json()["is_active"] is False

        resp = await client.delete(f"{BASE}/leave-types/{annual_leave['id']}", headers=headers)
        assert resp.status_code == 204
        resp = await client.get(f"{BASE}/leave-types/{annual_leave['id']}", headers=headers)
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════
# Leave requests
# ═════════════════════════════════════════════════════════════════════


class TestLeaveRequestEndpoints:

    async def test_apply_approve_cancel_flow(
        self, client, db, notifier, admin_user, staff_user, staff_member, annual_leave,
    ):
        staff_headers = auth_headers(staff_user["id"])
        admin_headers = auth_headers(admin_user["id"])

        resp = await client.post(
            f"{BASE}/leave-requests",
            json=_apply_body(annual_leave["id"], staff_member["id"]),
            headers=staff_headers,
        )
        assert resp.status_code == 201
        request_id = resp.json()["id"]
        assert resp.json()["status"] == "pending"

        mine = await client.get(f"{BASE}/leave-requests/my", headers=staff_headers)
        assert mine.json()["meta"]["total"] == 1

        resp = await client.patch(
            f"{BASE}/leave-requests/{request_id}/approve",
            json={"notes": "Approved"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        balance = await client.get(
            f"{BASE}/leave-balances/staff/{staff_member['id']}",
            params={"year": 2025},
            headers=admin_headers,
        )
        [entry] = balance.json()["entries"]
        assert Decimal(str(entry["used"])) == Decimal("6")
        assert Decimal(str(entry["available"])) == Decimal("14")

        resp = await client.patch(
            f"{BASE}/leave-requests/{request_id}/cancel",
            json={"reason": "Plans changed"},
            headers=staff_headers,
        )
        assert resp.status_code == 200

        status = (
            await db.execute(
                select(LeaveRequest.status).where(LeaveRequest.id == uuid.UUID(request_id))
            )
        ).scalar_one()
        assert status == LeaveStatus.cancelled
        assert len(notifier.sent) == 3

    async def test_requests_of_one_applicant(
        self, client, admin_user, staff_user, staff_member, annual_leave,
    ):
        await client.post(
            f"{BASE}/leave-requests",
            json=_apply_body(annual_leave["id"], staff_member["id"]),
            headers=auth_headers(staff_user["id"]),
        )
        admin_headers = auth_headers(admin_user["id"])

        resp = await client.get(
            f"{BASE}/leave-requests/entity/staff/{staff_member['id']}",
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1
        assert resp.json()["data"][0]["entity_id"] == str(staff_member["id"])

        approved = await client.get(
            f"{BASE}/leave-requests/entity/staff/{staff_member['id']}",
            params={"status": "approved"},
            headers=admin_headers,
        )
        assert approved.json()["meta"]["total"] == 0

        missing = await client.get(
            f"{BASE}/leave-requests/entity/doctor/{uuid.uuid4()}", headers=admin_headers,
        )
        assert missing.status_code == 404

    async def test_apply_with_attachments(self, client, staff_user, staff_member, annual_leave):
        body = _apply_body(annual_leave["id"], staff_member["id"])
        body["attachments"] = [
            {"name": "note.pdf", "path": "uploads/note.pdf", "mime_type": "application/pdf"},
        ]

        resp = await client.post(
            f"{BASE}/leave-requests", json=body, headers=auth_headers(staff_user["id"]),
        )

        assert resp.status_code == 201
        [attachment] = resp.json()["attachments"]
        assert attachment["name"] == "note.pdf"
        assert attachment["mime_type"] == "application/pdf"
        assert attachment["uploaded_at"] is not None

    async def test_insufficient_balance_problem(
        self, client, db, staff_user, staff_member, staff_ref, annual_leave,
    ):
        await _seed_balance(
            db, staff_ref, 2025, annual_leave["id"],
            allocated=Decimal("10"), used=Decimal("8"),
        )

        resp = await client.post(
            f"{BASE}/leave-requests",
            json=_apply_body(annual_leave["id"], staff_member["id"], "2025-09-01", "2025-09-05"),
            headers=auth_headers(staff_user["id"]),
        )

        assert resp.status_code == 422
        body = resp.json()
        assert body["type"].endswith("/insufficient-balance")
        assert body["available"] == 2.0
        assert body["requested"] == 5.0
        assert body["detail"] == "Insufficient leave balance. Available: 2, Requested: 5."

    async def test_overlap_is_conflict(self, client, staff_user, staff_member, annual_leave):
        headers = auth_headers(staff_user["id"])
        body = _apply_body(annual_leave["id"], staff_member["id"])
        assert (await client.post(f"{BASE}/leave-requests", json=body, headers=headers)).status_code == 201

        resp = await client.post(f"{BASE}/leave-requests", json=body, headers=headers)
        assert resp.status_code == 409
        assert "dates" in resp.json()["errors"]

    async def test_reject_requires_notes(self, client, admin_user, staff_user, staff_member, annual_leave):
        created = await client.post(
            f"{BASE}/leave-requests",
            json=_apply_body(annual_leave["id"], staff_member["id"]),
            headers=auth_headers(staff_user["id"]),
        )
        resp = await client.patch(
            f"{BASE}/leave-requests/{created.json()['id']}/reject",
            json={},
            headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 422
        assert "notes" in resp.json()["errors"]

    async def test_staff_cannot_review(self, client, staff_user, staff_member, annual_leave):
        headers = auth_headers(staff_user["id"])
        created = await client.post(
            f"{BASE}/leave-requests",
            json=_apply_body(annual_leave["id"], staff_member["id"]),
            headers=headers,
        )
        resp = await client.patch(
            f"{BASE}/leave-requests/{created.json()['id']}/approve",
            json={},
            headers=headers,
        )
        assert resp.status_code == 403

    async def test_staff_cannot_list_everything(self, client, staff_user):
        resp = await client.get(f"{BASE}/leave-requests", headers=auth_headers(staff_user["id"]))
        assert resp.status_code == 403

    async def test_stranger_cannot_view_request(self, client, db, staff_user, staff_member, annual_leave):
        created = await client.post(
            f"{BASE}/leave-requests",
            json=_apply_body(annual_leave["id"], staff_member["id"]),
            headers=auth_headers(staff_user["id"]),
        )
        stranger = await _seed_user(db)
        resp = await client.get(
            f"{BASE}/leave-requests/{created.json()['id']}",
            headers=auth_headers(stranger["id"]),
        )
        assert resp.status_code == 403

    async def test_unknown_request_is_not_found(self, client, admin_user):
        resp = await client.get(
            f"{BASE}/leave-requests/{uuid.uuid4()}", headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 404
        assert resp.json()["title"] == "LeaveRequest Not Found"


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


class TestBalanceEndpoints:

    async def test_my_balances(self, client, staff_user, staff_member, annual_leave):
        resp = await client.get(
            f"{BASE}/leave-balances/my",
            params={"year": 2025},
            headers=auth_headers(staff_user["id"]),
        )
        assert resp.status_code == 200
        assert [b["entity_kind"] for b in resp.json()] == ["staff", "user"]

    async def test_allocation_override(self, client, admin_user, staff_member, annual_leave):
        resp = await client.patch(
            f"{BASE}/leave-balances/staff/{staff_member['id']}/allocation",
            json={"year": 2025, "leave_type_id": str(annual_leave["id"]), "allocated": 25},
            headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 200
        [entry] = resp.json()["entries"]
        assert Decimal(str(entry["allocated"])) == Decimal("25")

    async def test_negative_carry_forward_rejected(self, client, admin_user, staff_member, annual_leave):
        resp = await client.patch(
            f"{BASE}/leave-balances/staff/{staff_member['id']}/carry-forward",
            json={"year": 2025, "leave_type_id": str(annual_leave["id"]), "carry_forward": -1},
            headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 422

    async def test_initialize(self, client, admin_user, staff_member, annual_leave):
        resp = await client.post(
            f"{BASE}/leave-balances/initialize",
            json={"year": 2026},
            headers=auth_headers(admin_user["id"]),
        )
        assert resp.status_code == 200
        assert resp.json() == {"year": 2026, "initialized": 3, "skipped": 0}

    async def test_list_balances_for_year(self, client, admin_user, staff_member, annual_leave):
        headers = auth_headers(admin_user["id"])
        await client.post(f"{BASE}/leave-balances/initialize", json={"year": 2026}, headers=headers)

        resp = await client.get(f"{BASE}/leave-balances", params={"year": 2026}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 3
        assert {b["year"] for b in resp.json()["data"]} == {2026}

        staff_only = await client.get(
            f"{BASE}/leave-balances",
            params={"year": 2026, "entity_kind": "staff"},
            headers=headers,
        )
        assert [b["entity_id"] for b in staff_only.json()["data"]] == [str(staff_member["id"])]

    async def test_list_balances_is_admin_only(self, client, staff_user):
        resp = await client.get(
            f"{BASE}/leave-balances", params={"year": 2026}, headers=auth_headers(staff_user["id"]),
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# Rate limiting
# ═════════════════════════════════════════════════════════════════════


class TestRateLimiting:

    async def test_request_edits_are_rate_limited(self, client, staff_user):
        headers = auth_headers(staff_user["id"])
        url = f"{BASE}/leave-requests/{uuid.uuid4()}"

        # The limit is checked before the handler, so 404s still count
        for _ in range(30):
            resp = await client.patch(url, json={"reason": "Edit"}, headers=headers)
            assert resp.status_code == 404

        resp = await client.patch(url, json={"reason": "Edit"}, headers=headers)
        assert resp.status_code == 429


# ═════════════════════════════════════════════════════════════════════
# Paging
# ═════════════════════════════════════════════════════════════════════


class TestPaging:

    async def test_page_size_above_limit_rejected(self, client, staff_user):
        resp = await client.get(
            f"{BASE}/leave-requests/my",
            params={"page_size": 10_000},
            headers=auth_headers(staff_user["id"]),
        )
        assert resp.status_code == 422
        assert "page_size" in resp.json()["errors"]

    async def test_empty_listing_meta(self, client, staff_user):
        resp = await client.get(
            f"{BASE}/leave-requests/my",
            params={"page": 3, "page_size": 5},
            headers=auth_headers(staff_user["id"]),
        )
        assert resp.json()["meta"] == {
            "page": 3,
            "page_size": 5,
            "total": 0,
            "total_pages": 0,
            "has_next": False,
            "has_prev": True,
        }
