"""
HRIS Core - API Endpoint Tests

HTTP tests for the access and case routers.
"""

import uuid

import pytest

from hris_core.utils.security import create_access_token
from tests.conftest import auth_headers


async def file_nte(client, approver_ids, subject="u-emp1", requester="u-hr"):
    return await client.post(
        "/api/v1/cases/nte",
        json={"subject_employee_id": subject, "approver_ids": approver_ids, "title": "Tardiness"},
        headers=auth_headers(requester),
    )


class TestHealthAndAuth:
    """Test cases for health and authentication."""
    
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
    
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/access/me")
        
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"
    
    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(
            "/api/v1/access/me",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "TOKEN_INVALID"
    
    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        response = await client.get("/api/v1/access/me", headers=auth_headers("u-nobody"))
        
        assert response.status_code == 401
    
    @pytest.mark.asyncio
    async def test_inactive_user(self, client):
        response = await client.get("/api/v1/access/me", headers=auth_headers("u-gone"))
        
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "ACCOUNT_DISABLED"
    
    @pytest.mark.asyncio
    async def test_cookie_token(self, client):
        token = create_access_token({"sub": "u-emp1"})
        
        response = await client.get("/api/v1/access/me", headers={"Cookie": f"access_token={token}"})
        
        assert response.status_code == 200
        assert response.json()["actor"]["id"] == "u-emp1"


class TestAccessEndpoints:
    """Test cases for /access endpoints."""
    
    @pytest.mark.asyncio
    async def test_manager_access_summary(self, client):
        response = await client.get("/api/v1/access/me", headers=auth_headers("u-mgr"))
        
        assert response.status_code == 200
        data = response.json()
        assert data["visible_employee_ids"] == ["u-emp1", "u-emp2", "u-mgr"]
        assert data["has_direct_reports"] is True
        assert data["access_scope"] == "HOME_ONLY"
        assert [u["id"] for u in data["accessible_business_units"]] == ["bu-north"]
        assert data["case_capabilities"]["ot"]["scope"] == "team"
        assert data["case_capabilities"]["ot"]["can_approve"] is True
    
    @pytest.mark.asyncio
    async def test_permission_check(self, client):
        headers = auth_headers("u-mgr")
        
        denied = await client.get(
            "/api/v1/access/check",
            params={"resource": "Payroll", "permission": "edit"},
            headers=headers,
        )
        allowed = await client.get(
            "/api/v1/access/check",
            params={"resource": "Payroll", "permission": "view"},
            headers=headers,
        )
        
        assert denied.json()["allowed"] is False
        assert allowed.json()["allowed"] is True
    
    @pytest.mark.asyncio
    async def test_unknown_resource_rejected(self, client):
        response = await client.get(
            "/api/v1/access/check",
            params={"resource": "Spaceship", "permission": "view"},
            headers=auth_headers("u-mgr"),
        )
        
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


class TestCaseEndpoints:
    """Test cases for /cases endpoints."""
    
    @pytest.mark.asyncio
    async def test_submit_case(self, client):
        response = await file_nte(client, ["u-bod1", "u-gm"])
        
        assert response.status_code == 201
        data = response.json()
        assert data["kind"] == "nte"
        assert data["status"] == "PendingApproval"
        assert [s["approver_user_id"] for s in data["steps"]] == ["u-bod1", "u-gm"]
        assert [s["order"] for s in data["steps"]] == [1, 2]
        assert data["version"] == 1
    
    @pytest.mark.asyncio
    async def test_submit_without_board_member(self, client):
        response = await file_nte(client, ["u-gm"])
        
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "APPROVER_COMPOSITION_INVALID"
        assert detail["message"] == "At least one selected approver must be a Board of Director."
        assert detail["field"] == "approvers"
    
    @pytest.mark.asyncio
    async def test_submit_unknown_approver(self, client):
        response = await file_nte(client, ["u-bod1", "u-ghost"])
        
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "ACTOR_NOT_FOUND"
    
    @pytest.mark.asyncio
    async def test_submit_out_of_scope(self, client):
        response = await file_nte(client, ["u-bod1"], subject="u-emp3", requester="u-mgr")
        
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "OUT_OF_SCOPE"
    
    @pytest.mark.asyncio
    async def test_unknown_kind(self, client):
        response = await client.get("/api/v1/cases/loan", headers=auth_headers("u-hr"))
        
        assert response.status_code == 422
    
    @pytest.mark.asyncio
    async def test_full_approval(self, client):
        case_id = (await file_nte(client, ["u-bod1", "u-gm"])).json()["id"]
        
        first = await client.post(
            f"/api/v1/cases/nte/{case_id}/decisions",
            json={"decision": "Approved"},
            headers=auth_headers("u-bod1"),
        )
        assert first.status_code == 200
        assert first.json()["new_status"] == "PendingApproval"
        assert first.json()["next_approver_ids"] == ["u-gm"]
        
        second = await client.post(
            f"/api/v1/cases/nte/{case_id}/decisions",
            json={"decision": "Approved", "reason": "Agreed"},
            headers=auth_headers("u-gm"),
        )
        assert second.status_code == 200
        data = second.json()
        assert data["became_approved"] is True
        assert data["case"]["status"] == "Approved"
        assert data["satisfied_approver_id"] == "u-gm"
    
    @pytest.mark.asyncio
    async def test_decline_requires_reason(self, client):
        case_id = (await file_nte(client, ["u-bod1"])).json()["id"]
        
        response = await client.post(
            f"/api/v1/cases/nte/{case_id}/decisions",
            json={"decision": "Declined", "reason": "  "},
            headers=auth_headers("u-bod1"),
        )
        
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "REJECTION_REASON_REQUIRED"
    
    @pytest.mark.asyncio
    async def test_decision_must_be_approve_or_decline(self, client):
        case_id = (await file_nte(client, ["u-bod1"])).json()["id"]
        
        response = await client.post(
            f"/api/v1/cases/nte/{case_id}/decisions",
            json={"decision": "Pending"},
            headers=auth_headers("u-bod1"),
        )
        
        assert response.status_code == 422
    
    @pytest.mark.asyncio
    async def test_non_approver_cannot_decide(self, client):
        case_id = (await file_nte(client, ["u-bod1"])).json()["id"]
        
        response = await client.post(
            f"/api/v1/cases/nte/{case_id}/decisions",
            json={"decision": "Approved"},
            headers=auth_headers("u-bod2"),
        )
        
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "NO_PENDING_STEP"
    
    @pytest.mark.asyncio
    async def test_unknown_case(self, client):
        response = await client.get(f"/api/v1/cases/nte/{uuid.uuid4()}", headers=auth_headers("u-hr"))
        
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "CASE_NOT_FOUND"
    
    @pytest.mark.asyncio
    async def test_decline_then_resubmit(self, client):
        case_id = (await file_nte(client, ["u-bod1", "u-bod2"], subject="u-emp2")).json()["id"]
        declined = await client.post(
            f"/api/v1/cases/nte/{case_id}/decisions",
            json={"decision": "Declined", "reason": "incomplete"},
            headers=auth_headers("u-bod2"),
        )
        assert declined.json()["case"]["status"] == "Declined"
        steps = {s["approver_user_id"]: s for s in declined.json()["case"]["steps"]}
        assert steps["u-bod1"]["status"] == "Pending"
        
        resubmitted = await client.post(
            f"/api/v1/cases/nte/{case_id}/resubmit",
            json={},
            headers=auth_headers("u-hr"),
        )
        assert resubmitted.status_code == 200
        data = resubmitted.json()
        assert data["cycle"] == 2
        assert data["status"] == "PendingApproval"
        assert len(data["previous_steps"]) == 2
    
    @pytest.mark.asyncio
    async def test_list_and_get(self, client):
        case_id = (await file_nte(client, ["u-bod1"])).json()["id"]
        await file_nte(client, ["u-bod1"], subject="u-emp3")
        
        team = await client.get("/api/v1/cases/nte", headers=auth_headers("u-mgr"))
        assert team.status_code == 200
        assert [c["id"] for c in team.json()["cases"]] == [case_id]
        
        pending = await client.get(
            "/api/v1/cases/nte",
            params={"pending_for_me": "true"},
            headers=auth_headers("u-bod1"),
        )
        assert pending.json()["total"] == 2
        
        declined_only = await client.get(
            "/api/v1/cases/nte",
            params={"status": "Declined"},
            headers=auth_headers("u-hr"),
        )
        assert declined_only.json()["total"] == 0
        
        fetched = await client.get(f"/api/v1/cases/nte/{case_id}", headers=auth_headers("u-emp1"))
        assert fetched.status_code == 200
        hidden = await client.get(f"/api/v1/cases/nte/{case_id}", headers=auth_headers("u-emp2"))
        assert hidden.status_code == 403
    
    @pytest.mark.asyncio
    async def test_approver_candidates(self, client):
        response = await client.get(
            "/api/v1/cases/award/approver-candidates",
            params={"business_unit_id": "bu-hq"},
            headers=auth_headers("u-hr"),
        )
        
        assert response.status_code == 200
        assert {c["id"] for c in response.json()["candidates"]} == {"u-bod1", "u-bod2", "u-gm"}
    
    @pytest.mark.asyncio
    async def test_approver_candidates_need_filing_rights(self, client):
        response = await client.get(
            "/api/v1/cases/nte/approver-candidates",
            params={"business_unit_id": "bu-hq"},
            headers=auth_headers("u-emp1"),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["details"]["required_permission"] == "Feedback:create"

    @pytest.mark.asyncio
    async def test_acknowledge_and_close(self, client):
        created = await client.post(
            "/api/v1/cases/pan",
            json={"subject_employee_id": "u-emp1", "approver_ids": ["u-gm"]},
            headers=auth_headers("u-hr"),
        )
        case_id = created.json()["id"]
        approved = await client.post(
            f"/api/v1/cases/pan/{case_id}/decisions",
            json={"decision": "Approved"},
            headers=auth_headers("u-gm"),
        )
        assert approved.json()["case"]["status"] == "PendingAcknowledgement"
        
        wrong_person = await client.post(f"/api/v1/cases/pan/{case_id}/acknowledge", headers=auth_headers("u-hr"))
        assert wrong_person.status_code == 403
        
        acknowledged = await client.post(f"/api/v1/cases/pan/{case_id}/acknowledge", headers=auth_headers("u-emp1"))
        assert acknowledged.json()["status"] == "Acknowledged"
        
        closed = await client.post(
            f"/api/v1/cases/pan/{case_id}/close",
            json={"reason": "Filed to 201"},
            headers=auth_headers("u-hr"),
        )
        assert closed.status_code == 200
        assert closed.json()["status"] == "Closed"
    
    @pytest.mark.asyncio
    async def test_reopen_pending_case_conflicts(self, client):
        case_id = (await file_nte(client, ["u-bod1"])).json()["id"]
        
        response = await client.post(f"/api/v1/cases/nte/{case_id}/reopen", headers=auth_headers("u-hr"))
        
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_STATUS_TRANSITION"
